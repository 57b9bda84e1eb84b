"""Static fallback content and the heuristics that select it.

Every AI-backed step in the conversation loop has a deterministic substitute
here, keyed on the character id or on the heuristic story stage, so a
conversation can continue when the provider is slow, offline or returns
something unusable.
"""

from __future__ import annotations

from typing import Dict, List

STORY_STAGES = ("beginning", "developing", "climax", "resolution")

ERROR_MESSAGE = "Something went wrong... let me try again."
RETRY_CHOICE_TEXT = "Try again"
RETRY_CONSEQUENCE = "retry the conversation"

_CHAPTER_MESSAGE_SPAN = 30


def opening_message(character_id: str, player_name: str) -> str:
    if character_id == "alex":
        return f"Hey {player_name}! Something strange is happening in town..."
    return "Hello... I need to tell you something important."


def response_text(character_id: str) -> str:
    if character_id == "alex":
        return "That's... not what I expected. Let me think about this."
    if character_id == "maya":
        return "Interesting choice. The data suggests this could work."
    return "Your choice has consequences... we'll see what happens."


def opening_choices(character_id: str) -> List[Dict[str, object]]:
    return [
        _choice("Tell me more about this", "shows interest in character's story", character_id, 1),
        _choice("That sounds suspicious...", "character becomes more defensive", character_id, -1),
        _choice("I'm here to help", "builds trust with character", character_id, 2),
        _choice("What's going on?", "asks for more information", character_id, 0),
    ]


def stage_choices(character_id: str, story_stage: str) -> List[Dict[str, object]]:
    """Return the canned choice set for ``story_stage``.

    Unknown stages are treated as ``developing``, the stage the choice prompt
    assumes when no progression is supplied.
    """

    if story_stage == "beginning":
        return [
            _choice("Tell me more about this", "shows interest in character's story", character_id, 1),
            _choice("That sounds suspicious...", "character becomes more defensive", character_id, -1),
            _choice("I'm here to help", "builds trust with character", character_id, 2),
            _choice("Why should I trust you?", "challenges character's motives", character_id, 0),
        ]
    if story_stage == "climax":
        return [
            _choice("We need to stop this now!", "takes decisive action", character_id, 1),
            _choice("I won't let anything happen to you", "protective declaration", character_id, 3),
            _choice("Maybe we should run...", "suggests retreat", character_id, -1),
            _choice("Trust me, I have a plan", "leads with confidence", character_id, 2),
        ]
    if story_stage == "resolution":
        return [
            _choice("What happens now?", "seeks closure", character_id, 0),
            _choice("I'm glad we're safe", "expresses relief", character_id, 1),
            _choice("This isn't over, is it?", "hints at continuation", character_id, 0),
            _choice("Thank you for everything", "shows gratitude", character_id, 2),
        ]
    return [
        _choice("What aren't you telling me?", "pushes for deeper truth", character_id, 0),
        _choice("I believe you", "strengthens bond", character_id, 2),
        _choice("This is getting dangerous", "shows concern", character_id, 1),
        _choice("Let's investigate together", "commits to shared adventure", character_id, 2),
    ]


def retry_choice(character_id: str) -> Dict[str, object]:
    return _choice(RETRY_CHOICE_TEXT, RETRY_CONSEQUENCE, character_id, 0)


def story_progression(message_count: int) -> str:
    if message_count < 6:
        return "beginning"
    if message_count < 15:
        return "developing"
    if message_count < 25:
        return "climax"
    return "resolution"


def relationship_tier(level: int) -> str:
    if level < -10:
        return "hostile"
    if level < 0:
        return "unfriendly"
    if level < 5:
        return "neutral"
    if level < 15:
        return "friendly"
    if level < 25:
        return "close"
    return "intimate"


def relationship_status(score: int) -> str:
    """Coarser label used by the progress summary."""

    if score >= 15:
        return "Very Close"
    if score >= 10:
        return "Close"
    if score >= 5:
        return "Friendly"
    if score >= 0:
        return "Neutral"
    if score >= -5:
        return "Distant"
    return "Hostile"


def chapter_for_message_count(total_messages: int) -> int:
    return 1 + max(0, total_messages) // _CHAPTER_MESSAGE_SPAN


def _choice(text: str, consequence: str, character_id: str, effect: int) -> Dict[str, object]:
    return {
        "text": text,
        "consequence": consequence,
        "relationship_effect": {character_id: effect},
    }
