"""Conversation orchestration for the story chat game.

:class:`StoryService` owns the in-memory :class:`GameState` and drives every
conversation through the same loop::

    not started -> awaiting choice -> choice applied -> generating response
                        ^                                        |
                        +----------------------------------------+

Starting a conversation installs fallback content synchronously and then asks
the AI provider for something better in the background. Applying a choice
records the player message, shows a typing placeholder and schedules the AI
continuation after a short delay. Every AI step has a deterministic fallback
(see :mod:`.fallbacks`) so a conversation can never stall, and every mutation
is persisted through the key-value storage adapter. Persistence failures are
logged and swallowed; the in-memory state stays authoritative.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from flask import Flask, current_app

from . import fallbacks, story_ai
from .game_state import (
    PLAYER_SENDER_ID,
    Character,
    Choice,
    ConversationState,
    GameState,
    Message,
    new_id,
    utcnow,
)
from .storage import GAME_STATE_KEY, KeyValueStorage, SQLAlchemyStorage, StorageError


LOGGER = logging.getLogger(__name__)

PREMIUM_FLAG = "premium"
HISTORY_WINDOW = 5
MIN_OPENING_LENGTH = 10
SERVICE_CACHE_KEY = "_STORY_SERVICE_INSTANCE"

Task = Callable[[], None]
Listener = Callable[[], None]


class StoryServiceError(RuntimeError):
    """Base class for errors raised by the story service."""


class GameNotInitializedError(StoryServiceError):
    """Raised when an operation needs a game that has not been started or loaded."""


class CharacterUnavailableError(StoryServiceError):
    """Raised when a character does not exist or is still locked."""


class ConversationNotFoundError(StoryServiceError):
    """Raised when no conversation has been started with a character."""


class ChoiceNotFoundError(StoryServiceError):
    """Raised when a choice id is not among the currently offered choices."""


class ChoiceLockedError(StoryServiceError):
    """Raised when a premium-only choice is picked without the premium flag."""


def initial_characters() -> Dict[str, Character]:
    return {
        "alex": Character(
            id="alex",
            name="Alex Chen",
            avatar="https://images.pexels.com/photos/2379004/pexels-photo-2379004.jpeg",
            description=(
                "Your best friend since college. Tech-savvy and always curious about the "
                "strange happenings in town."
            ),
            role="friend",
            is_unlocked=True,
            is_online=True,
        ),
        "maya": Character(
            id="maya",
            name="Dr. Maya Rodriguez",
            avatar="https://images.pexels.com/photos/3796217/pexels-photo-3796217.jpeg",
            description="A quantum physicist studying temporal anomalies. Brilliant but secretive.",
            role="romantic_interest",
        ),
        "unknown": Character(
            id="unknown",
            name="???",
            avatar="https://images.pexels.com/photos/1624438/pexels-photo-1624438.jpeg",
            description="Strange messages from an unknown sender...",
            role="mystery",
        ),
    }


class InlineScheduler:
    """Run scheduled work immediately, ignoring the delay."""

    def __call__(self, delay: float, task: Task) -> None:
        task()


class ThreadScheduler:
    """Run scheduled work on daemon timer threads inside an app context."""

    def __init__(self, app: Flask) -> None:
        self._app = app

    def __call__(self, delay: float, task: Task) -> None:
        def run() -> None:
            with self._app.app_context():
                try:
                    task()
                except Exception:  # pragma: no cover - background safety net
                    LOGGER.exception("Background story task failed")

        timer = threading.Timer(max(0.0, float(delay)), run)
        timer.daemon = True
        timer.start()


class StoryService:
    def __init__(
        self,
        storage: KeyValueStorage,
        *,
        scheduler: Optional[Callable[[float, Task], None]] = None,
        response_delay: float = 1.5,
    ) -> None:
        self._storage = storage
        self._schedule = scheduler or InlineScheduler()
        self.response_delay = max(0.0, float(response_delay))
        self._game_state: Optional[GameState] = None
        self._lock = threading.RLock()
        self._listeners: Dict[str, List[Listener]] = {}

    # ---------------- game lifecycle ----------------
    def initialize_game(self, player_name: str) -> GameState:
        name = (player_name or "").strip() or "Player"
        with self._lock:
            self._game_state = GameState(
                player_id=PLAYER_SENDER_ID,
                player_name=name,
                characters=initial_characters(),
            )
            LOGGER.info("Initialised a new game for %s", name)
            self.start_conversation("alex")
            self.save_game()
            return self._game_state

    def load_game(self) -> Optional[GameState]:
        try:
            raw = self._storage.get_item(GAME_STATE_KEY)
        except StorageError:
            LOGGER.exception("Failed to load game")
            return None
        if not raw:
            return None

        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("saved game must be a JSON object")
            state = GameState.from_dict(data)
        except (TypeError, ValueError):
            LOGGER.exception("Failed to load game")
            return None

        with self._lock:
            recovered = self._recover_interrupted_responses(state)
            self._game_state = state
        if recovered:
            self.save_game()
        return state

    def save_game(self) -> None:
        # Snapshot and write under one lock hold so saves land in mutation order.
        with self._lock:
            state = self._game_state
            if state is None:
                return
            state.last_played = utcnow()
            payload = json.dumps(state.to_dict(), ensure_ascii=False)
            try:
                self._storage.set_item(GAME_STATE_KEY, payload)
            except StorageError:
                LOGGER.exception("Failed to save game")

    def reset_game(self) -> None:
        with self._lock:
            try:
                self._storage.remove_item(GAME_STATE_KEY)
            except StorageError:
                LOGGER.exception("Failed to reset game")
                return
            self._game_state = None
        LOGGER.info("Game state reset")

    def get_game_state(self) -> Optional[GameState]:
        return self._game_state

    # ---------------- conversation loop ----------------
    def start_conversation(self, character_id: str) -> ConversationState:
        with self._lock:
            state = self._require_state()
            character = state.characters.get(character_id)
            if character is None or not character.is_unlocked:
                raise CharacterUnavailableError("Character not available")

            conversation = state.conversations.get(character_id)
            enhancement: Optional[Task] = None
            if conversation is None:
                LOGGER.info("Starting conversation with %s", character_id)
                opening = Message(
                    id=new_id(),
                    sender_id=character_id,
                    text=fallbacks.opening_message(character_id, state.player_name),
                )
                conversation = ConversationState(
                    character_id=character_id,
                    messages=[opening],
                    current_scene_id="opening",
                    available_choices=_build_choices(fallbacks.opening_choices(character_id), character_id),
                    is_waiting_for_response=True,
                )
                state.conversations[character_id] = conversation
                context = self._opening_context(state, character)
                choice_ids = [choice.id for choice in conversation.available_choices]
                opening_id = opening.id

                def enhancement() -> None:
                    self._enhance_conversation(character_id, context, opening_id, choice_ids)

        self.save_game()
        if enhancement is not None:
            self._schedule(0.0, enhancement)
        return conversation

    def make_choice(self, character_id: str, choice_id: str) -> ConversationState:
        with self._lock:
            state = self._require_state()
            conversation = state.conversations.get(character_id)
            if conversation is None:
                raise ConversationNotFoundError("Conversation not found")

            choice = conversation.find_choice(choice_id)
            if choice is None:
                raise ChoiceNotFoundError("Choice not found")
            if choice.is_paywall_locked and not state.global_flags.get(PREMIUM_FLAG):
                raise ChoiceLockedError("This choice requires premium access.")

            conversation.messages.append(
                Message(id=new_id(), sender_id=PLAYER_SENDER_ID, text=choice.text, is_read=True)
            )
            conversation.available_choices = []
            conversation.is_waiting_for_response = False

            typing = Message(id=new_id("typing"), sender_id=character_id, text="...", is_typing=True)
            conversation.messages.append(typing)

            self._apply_relationship_effects(state, choice.relationship_effect)
            self._unlock_characters(state, choice.unlock_characters)
            if choice.trigger_event:
                state.global_flags[choice.trigger_event] = True

            consequence = choice.consequence
            typing_id = typing.id

        self.save_game()
        self._notify(character_id)

        def respond() -> None:
            self._generate_response(character_id, consequence, typing_id)

        self._schedule(self.response_delay, respond)
        return conversation

    def _generate_response(self, character_id: str, consequence: str, typing_id: str) -> None:
        with self._lock:
            conversation = self._pending_conversation(character_id, typing_id)
            if conversation is None:
                return
            state = self._require_state()
            character = state.characters[character_id]
            context = self._response_context(state, character, conversation, consequence)
            message_count = len(conversation.visible_messages) + 1
            level = character.relationship_level
            character_name = character.name

        try:
            prompt = story_ai.build_continuation_prompt(character_name, consequence)
            ai_text = story_ai.generate_story_content(prompt, context)
            if _is_usable_response(ai_text):
                response_text = ai_text
            else:
                LOGGER.warning("Invalid AI response for %s; using fallback text: %r", character_id, ai_text)
                response_text = fallbacks.response_text(character_id)

            choice_context = dict(context)
            choice_context.update(
                last_ai_response=ai_text or "",
                story_progression=fallbacks.story_progression(message_count),
                relationship_tier=fallbacks.relationship_tier(level),
            )
            choice_result = story_ai.generate_choices(choice_context, character_id)
        except Exception:
            LOGGER.exception("Error generating AI response for %s", character_id)
            self._install_error_state(character_id, typing_id)
            return

        with self._lock:
            conversation = self._pending_conversation(character_id, typing_id)
            if conversation is None:
                LOGGER.info("Discarding stale response for %s", character_id)
                return
            state = self._require_state()
            conversation.messages = [message for message in conversation.messages if not message.is_typing]
            conversation.messages.append(Message(id=new_id(), sender_id=character_id, text=response_text))
            conversation.available_choices = _build_choices(choice_result.choices, character_id)
            conversation.is_waiting_for_response = True
            self._update_progress(state, conversation)

        self.save_game()
        self._notify(character_id)

    def _install_error_state(self, character_id: str, typing_id: str) -> None:
        with self._lock:
            conversation = self._pending_conversation(character_id, typing_id)
            if conversation is None:
                return
            conversation.messages = [message for message in conversation.messages if not message.is_typing]
            conversation.messages.append(
                Message(id=new_id(), sender_id=character_id, text=fallbacks.ERROR_MESSAGE)
            )
            conversation.available_choices = _build_choices(
                [fallbacks.retry_choice(character_id)], character_id, prefix="retry"
            )
            conversation.is_waiting_for_response = True

        self.save_game()
        self._notify(character_id)

    def _enhance_conversation(
        self,
        character_id: str,
        context: Mapping[str, Any],
        opening_id: str,
        choice_ids: List[str],
    ) -> None:
        try:
            prompt = story_ai.build_opening_prompt(str(context["character"]["name"]))
            ai_message = story_ai.generate_story_content(prompt, context)
            choice_result = story_ai.generate_choices(context, character_id)
        except Exception as exc:
            LOGGER.warning("Failed to enhance conversation with AI for %s: %s", character_id, exc)
            return

        with self._lock:
            state = self._game_state
            conversation = state.conversations.get(character_id) if state else None
            if conversation is None:
                return

            updated = False
            still_opening = len(conversation.messages) == 1 and conversation.messages[0].id == opening_id
            if still_opening and ai_message and len(ai_message) > MIN_OPENING_LENGTH:
                conversation.messages[0].text = ai_message
                updated = True
                LOGGER.info("Updated opening message for %s with AI content", character_id)

            current_ids = [choice.id for choice in conversation.available_choices]
            if current_ids == choice_ids and not choice_result.used_fallback and choice_result.choices:
                conversation.available_choices = _build_choices(
                    choice_result.choices, character_id, prefix="choice_ai"
                )
                updated = True
                LOGGER.info("Updated opening choices for %s with AI content", character_id)

        if updated:
            self.save_game()
            self._notify(character_id)

    # ---------------- direct mutations ----------------
    def update_conversation(self, character_id: str, conversation: ConversationState) -> None:
        with self._lock:
            state = self._require_state()
            state.conversations[character_id] = conversation
        self.save_game()

    def mark_conversation_read(self, character_id: str) -> int:
        with self._lock:
            state = self._require_state()
            conversation = state.conversations.get(character_id)
            if conversation is None:
                raise ConversationNotFoundError("Conversation not found")
            changed = 0
            for message in conversation.messages:
                if not message.from_player and not message.is_typing and not message.is_read:
                    message.is_read = True
                    changed += 1
        if changed:
            self.save_game()
        return changed

    def unlock_character(self, character_id: str) -> Character:
        with self._lock:
            state = self._require_state()
            character = state.characters.get(character_id)
            if character is None:
                raise CharacterUnavailableError("Character not available")
            self._unlock_characters(state, [character_id])
        self.save_game()
        return character

    def set_global_flag(self, flag: str, value: bool) -> Dict[str, bool]:
        with self._lock:
            state = self._require_state()
            state.global_flags[flag] = bool(value)
            flags = dict(state.global_flags)
        self.save_game()
        return flags

    # ---------------- listeners ----------------
    def on_conversation_update(self, character_id: str, callback: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.setdefault(character_id, []).append(callback)

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._listeners.get(character_id)
                if callbacks and callback in callbacks:
                    callbacks.remove(callback)

        return unsubscribe

    def _notify(self, character_id: str) -> None:
        with self._lock:
            callbacks = list(self._listeners.get(character_id, ()))
        for callback in callbacks:
            try:
                callback()
            except Exception:
                LOGGER.exception("Error in conversation update callback for %s", character_id)

    # ---------------- read models ----------------
    def contacts_overview(self) -> List[Dict[str, Any]]:
        with self._lock:
            state = self._require_state()
            contacts = []
            for character in state.characters.values():
                conversation = state.conversations.get(character.id)
                visible = conversation.visible_messages if conversation else []
                last = visible[-1] if visible else None
                contacts.append(
                    {
                        "character": character.to_dict(),
                        "last_message": last.text if last else None,
                        "last_message_time": last.timestamp.isoformat() if last else None,
                        "has_unread": any(not m.from_player and not m.is_read for m in visible),
                        "is_typing": bool(conversation and conversation.is_typing),
                    }
                )
            return contacts

    def progress_summary(self) -> Dict[str, Any]:
        with self._lock:
            state = self._require_state()
            unlocked = [character for character in state.characters.values() if character.is_unlocked]
            return {
                "player_name": state.player_name,
                "chapter": state.current_chapter,
                "play_time": format_play_time(state.game_started, state.last_played),
                "contacts": len(unlocked),
                "scenes_completed": len(state.completed_scenes),
                "relationships": [
                    {
                        "character_id": character.id,
                        "name": character.name,
                        "description": character.description,
                        "score": state.relationship_scores.get(character.id, 0),
                        "status": fallbacks.relationship_status(state.relationship_scores.get(character.id, 0)),
                        "tier": fallbacks.relationship_tier(character.relationship_level),
                    }
                    for character in unlocked
                ],
            }

    # ---------------- helpers ----------------
    def _require_state(self) -> GameState:
        if self._game_state is None:
            raise GameNotInitializedError("Game not initialized")
        return self._game_state

    def _pending_conversation(self, character_id: str, typing_id: str) -> Optional[ConversationState]:
        state = self._game_state
        if state is None:
            return None
        conversation = state.conversations.get(character_id)
        if conversation is None or character_id not in state.characters:
            return None
        if not any(message.id == typing_id for message in conversation.messages):
            return None
        return conversation

    @staticmethod
    def _apply_relationship_effects(state: GameState, effects: Mapping[str, int]) -> None:
        for character_id, effect in effects.items():
            character = state.characters.get(character_id)
            if character is None:
                continue
            character.relationship_level += effect
            state.relationship_scores[character_id] = state.relationship_scores.get(character_id, 0) + effect

    @staticmethod
    def _unlock_characters(state: GameState, character_ids: Iterable[str]) -> None:
        for character_id in character_ids:
            character = state.characters.get(character_id)
            if character is None:
                continue
            if not character.is_unlocked:
                LOGGER.info("Unlocked character %s", character_id)
            character.is_unlocked = True
            character.is_online = True

    @staticmethod
    def _update_progress(state: GameState, conversation: ConversationState) -> None:
        stage = fallbacks.story_progression(len(conversation.visible_messages))
        if stage != conversation.current_scene_id:
            scene = f"{conversation.character_id}:{conversation.current_scene_id}"
            if scene not in state.completed_scenes:
                state.completed_scenes.append(scene)
            conversation.current_scene_id = stage

        total = sum(len(item.visible_messages) for item in state.conversations.values())
        state.current_chapter = max(state.current_chapter, fallbacks.chapter_for_message_count(total))

    @staticmethod
    def _recover_interrupted_responses(state: GameState) -> bool:
        """Unblock conversations saved while a response was still pending."""

        recovered = False
        for character_id, conversation in state.conversations.items():
            if not conversation.is_typing:
                continue
            conversation.messages = [message for message in conversation.messages if not message.is_typing]
            if not conversation.available_choices:
                stage = fallbacks.story_progression(len(conversation.messages))
                conversation.available_choices = _build_choices(
                    fallbacks.stage_choices(character_id, stage), character_id
                )
            conversation.is_waiting_for_response = True
            recovered = True
            LOGGER.info("Recovered interrupted response for %s", character_id)
        return recovered

    @staticmethod
    def _opening_context(state: GameState, character: Character) -> Dict[str, Any]:
        return {
            "character": character.to_dict(),
            "player_name": state.player_name,
            "chapter": state.current_chapter,
            "relationship_level": character.relationship_level,
        }

    @staticmethod
    def _response_context(
        state: GameState,
        character: Character,
        conversation: ConversationState,
        consequence: str,
    ) -> Dict[str, Any]:
        visible = conversation.visible_messages
        return {
            "character": character.to_dict(),
            "player_name": state.player_name,
            "choice_consequence": consequence,
            "relationship_level": character.relationship_level,
            "conversation_history": [
                {
                    "sender": "player" if message.from_player else character.name,
                    "message": message.text,
                }
                for message in visible[-HISTORY_WINDOW:]
            ],
            "chapter": state.current_chapter,
            "total_messages": len(visible),
            "game_flags": dict(state.global_flags),
        }


def _build_choices(
    raw_choices: Iterable[Mapping[str, Any]],
    character_id: str,
    *,
    prefix: str = "choice",
) -> List[Choice]:
    batch = new_id(prefix)
    choices: List[Choice] = []
    for index, raw in enumerate(raw_choices):
        effect = raw.get("relationship_effect") or {character_id: 0}
        choices.append(
            Choice(
                id=f"{batch}_{index}",
                text=str(raw.get("text") or "Continue..."),
                consequence=str(raw.get("consequence") or "neutral response"),
                relationship_effect={str(key): int(value) for key, value in dict(effect).items()},
                unlock_characters=list(raw.get("unlock_characters") or []),
                trigger_event=raw.get("trigger_event"),
                is_paywall_locked=bool(raw.get("is_paywall_locked", False)),
            )
        )
    return choices


def _is_usable_response(text: Optional[str]) -> bool:
    if not text or len(text) < story_ai.MIN_STORY_TEXT_LENGTH:
        return False
    return "Something went wrong" not in text


def format_play_time(started: datetime, last_played: datetime) -> str:
    elapsed = max(0, int((last_played - started).total_seconds()))
    hours, remainder = divmod(elapsed, 3600)
    minutes = remainder // 60
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def get_story_service() -> StoryService:
    """Return the story service bound to the current application."""

    app = current_app._get_current_object()
    service = app.config.get(SERVICE_CACHE_KEY)
    if isinstance(service, StoryService):
        return service

    if app.config.get("STORY_BACKGROUND_TASKS", True):
        scheduler: Callable[[float, Task], None] = ThreadScheduler(app)
    else:
        scheduler = InlineScheduler()
    service = StoryService(
        SQLAlchemyStorage(),
        scheduler=scheduler,
        response_delay=float(app.config.get("STORY_RESPONSE_DELAY", 1.5)),
    )
    app.config[SERVICE_CACHE_KEY] = service
    return service
