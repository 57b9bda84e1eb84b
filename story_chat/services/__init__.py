"""Service layer for the story chat game."""

from __future__ import annotations

from .kindness import KindnessEntry, KindnessEntryError, KindnessJournal  # noqa: F401
from .storage import MemoryStorage, SQLAlchemyStorage, StorageError  # noqa: F401
from .story_service import (  # noqa: F401
    CharacterUnavailableError,
    ChoiceLockedError,
    ChoiceNotFoundError,
    ConversationNotFoundError,
    GameNotInitializedError,
    StoryService,
    StoryServiceError,
    get_story_service,
)

__all__ = [
    "CharacterUnavailableError",
    "ChoiceLockedError",
    "ChoiceNotFoundError",
    "ConversationNotFoundError",
    "GameNotInitializedError",
    "KindnessEntry",
    "KindnessEntryError",
    "KindnessJournal",
    "MemoryStorage",
    "SQLAlchemyStorage",
    "StorageError",
    "StoryService",
    "StoryServiceError",
    "get_story_service",
]
