"""Data models for Koine Reader."""

from .card import (
    Flashcard,
    FlashcardId,
    LocalId,
    RemoteId,
    WordAnalysis,
    parse_flashcard_id,
)
from .scripture import ChapterData, Identity, SelectionState, Verse

__all__ = [
    'ChapterData',
    'Flashcard',
    'FlashcardId',
    'Identity',
    'LocalId',
    'RemoteId',
    'SelectionState',
    'Verse',
    'WordAnalysis',
    'parse_flashcard_id',
]
