"""Serializable game-state records shared by the story services."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

PLAYER_SENDER_ID = "player"

MESSAGE_TYPES = ("text", "image", "system")
CHARACTER_ROLES = ("friend", "romantic_interest", "antagonist", "mystery")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: Optional[str] = None) -> str:
    token = uuid.uuid4().hex
    return f"{prefix}_{token}" if prefix else token


def _parse_timestamp(raw: Any) -> datetime:
    if isinstance(raw, datetime):
        value = raw
    elif isinstance(raw, str) and raw.strip():
        try:
            value = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
        except ValueError:
            return utcnow()
    else:
        return utcnow()
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _optional_timestamp(raw: Any) -> Optional[datetime]:
    if raw in (None, ""):
        return None
    return _parse_timestamp(raw)


def _mapping(raw: Any) -> Mapping[str, Any]:
    return raw if isinstance(raw, Mapping) else {}


def _int_map(raw: Any) -> Dict[str, int]:
    if not isinstance(raw, Mapping):
        return {}
    result: Dict[str, int] = {}
    for key, value in raw.items():
        try:
            result[str(key)] = int(value)
        except (TypeError, ValueError):
            continue
    return result


def _str_list(raw: Any) -> List[str]:
    if not isinstance(raw, (list, tuple)):
        return []
    return [str(item) for item in raw if isinstance(item, str) and item.strip()]


@dataclass
class Message:
    id: str
    sender_id: str
    text: str
    timestamp: datetime = field(default_factory=utcnow)
    type: str = "text"
    image_url: Optional[str] = None
    is_read: bool = False
    is_typing: bool = False

    @property
    def from_player(self) -> bool:
        return self.sender_id == PLAYER_SENDER_ID

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sender_id": self.sender_id,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
            "type": self.type,
            "image_url": self.image_url,
            "is_read": self.is_read,
            "is_typing": self.is_typing,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Message":
        message_type = data.get("type")
        return cls(
            id=str(data.get("id") or new_id()),
            sender_id=str(data.get("sender_id") or ""),
            text=str(data.get("text") or ""),
            timestamp=_parse_timestamp(data.get("timestamp")),
            type=message_type if message_type in MESSAGE_TYPES else "text",
            image_url=data.get("image_url") or None,
            is_read=bool(data.get("is_read", False)),
            is_typing=bool(data.get("is_typing", False)),
        )


@dataclass
class Choice:
    id: str
    text: str
    consequence: str
    relationship_effect: Dict[str, int] = field(default_factory=dict)
    unlock_characters: List[str] = field(default_factory=list)
    trigger_event: Optional[str] = None
    is_paywall_locked: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "consequence": self.consequence,
            "relationship_effect": dict(self.relationship_effect),
            "unlock_characters": list(self.unlock_characters),
            "trigger_event": self.trigger_event,
            "is_paywall_locked": self.is_paywall_locked,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Choice":
        return cls(
            id=str(data.get("id") or new_id("choice")),
            text=str(data.get("text") or ""),
            consequence=str(data.get("consequence") or ""),
            relationship_effect=_int_map(data.get("relationship_effect")),
            unlock_characters=_str_list(data.get("unlock_characters")),
            trigger_event=data.get("trigger_event") or None,
            is_paywall_locked=bool(data.get("is_paywall_locked", False)),
        )


@dataclass
class Character:
    id: str
    name: str
    avatar: str
    description: str
    role: str = "friend"
    is_unlocked: bool = False
    is_online: bool = False
    relationship_level: int = 0
    last_seen: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "avatar": self.avatar,
            "description": self.description,
            "role": self.role,
            "is_unlocked": self.is_unlocked,
            "is_online": self.is_online,
            "relationship_level": self.relationship_level,
            "last_seen": self.last_seen.isoformat() if self.last_seen else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Character":
        role = data.get("role")
        try:
            relationship_level = int(data.get("relationship_level") or 0)
        except (TypeError, ValueError):
            relationship_level = 0
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or "???"),
            avatar=str(data.get("avatar") or ""),
            description=str(data.get("description") or ""),
            role=role if role in CHARACTER_ROLES else "mystery",
            is_unlocked=bool(data.get("is_unlocked", False)),
            is_online=bool(data.get("is_online", False)),
            relationship_level=relationship_level,
            last_seen=_optional_timestamp(data.get("last_seen")),
        )


@dataclass
class ConversationState:
    character_id: str
    messages: List[Message] = field(default_factory=list)
    current_scene_id: str = "opening"
    available_choices: List[Choice] = field(default_factory=list)
    is_waiting_for_response: bool = False

    @property
    def visible_messages(self) -> List[Message]:
        return [message for message in self.messages if not message.is_typing]

    @property
    def is_typing(self) -> bool:
        return any(message.is_typing for message in self.messages)

    def find_choice(self, choice_id: str) -> Optional[Choice]:
        return next((choice for choice in self.available_choices if choice.id == choice_id), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "character_id": self.character_id,
            "messages": [message.to_dict() for message in self.messages],
            "current_scene_id": self.current_scene_id,
            "available_choices": [choice.to_dict() for choice in self.available_choices],
            "is_waiting_for_response": self.is_waiting_for_response,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConversationState":
        return cls(
            character_id=str(data.get("character_id") or ""),
            messages=[
                Message.from_dict(item) for item in data.get("messages") or [] if isinstance(item, Mapping)
            ],
            current_scene_id=str(data.get("current_scene_id") or "opening"),
            available_choices=[
                Choice.from_dict(item)
                for item in data.get("available_choices") or []
                if isinstance(item, Mapping)
            ],
            is_waiting_for_response=bool(data.get("is_waiting_for_response", False)),
        )


@dataclass
class GameState:
    player_id: str
    player_name: str
    current_chapter: int = 1
    completed_scenes: List[str] = field(default_factory=list)
    characters: Dict[str, Character] = field(default_factory=dict)
    conversations: Dict[str, ConversationState] = field(default_factory=dict)
    global_flags: Dict[str, bool] = field(default_factory=dict)
    relationship_scores: Dict[str, int] = field(default_factory=dict)
    unlocked_endings: List[str] = field(default_factory=list)
    game_started: datetime = field(default_factory=utcnow)
    last_played: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "player_id": self.player_id,
            "player_name": self.player_name,
            "current_chapter": self.current_chapter,
            "completed_scenes": list(self.completed_scenes),
            "characters": {key: character.to_dict() for key, character in self.characters.items()},
            "conversations": {
                key: conversation.to_dict() for key, conversation in self.conversations.items()
            },
            "global_flags": dict(self.global_flags),
            "relationship_scores": dict(self.relationship_scores),
            "unlocked_endings": list(self.unlocked_endings),
            "game_started": self.game_started.isoformat(),
            "last_played": self.last_played.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GameState":
        characters_raw = _mapping(data.get("characters"))
        conversations_raw = _mapping(data.get("conversations"))
        flags_raw = _mapping(data.get("global_flags"))
        try:
            chapter = max(1, int(data.get("current_chapter") or 1))
        except (TypeError, ValueError):
            chapter = 1
        return cls(
            player_id=str(data.get("player_id") or PLAYER_SENDER_ID),
            player_name=str(data.get("player_name") or "Player"),
            current_chapter=chapter,
            completed_scenes=_str_list(data.get("completed_scenes")),
            characters={
                str(key): Character.from_dict(value)
                for key, value in characters_raw.items()
                if isinstance(value, Mapping)
            },
            conversations={
                str(key): ConversationState.from_dict(value)
                for key, value in conversations_raw.items()
                if isinstance(value, Mapping)
            },
            global_flags={str(key): bool(value) for key, value in flags_raw.items()},
            relationship_scores=_int_map(data.get("relationship_scores")),
            unlocked_endings=_str_list(data.get("unlocked_endings")),
            game_started=_parse_timestamp(data.get("game_started")),
            last_played=_parse_timestamp(data.get("last_played")),
        )
