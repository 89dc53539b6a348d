"""
Flashcard Service - operations behind the flashcard screen.

Wraps the AnnotationStore with the owner-scoped list, delete and export
operations the flashcard screen needs, keeping the last listing cached.
"""

import logging
import os
from typing import Callable, List, Optional, Union

import pandas as pd

from ..config import Config
from ..deck import FlashcardExporter
from ..models import Flashcard, FlashcardId, Identity, parse_flashcard_id
from .errors import NotFound
from .repository import AnnotationStore

logger = logging.getLogger(__name__)


class FlashcardService:
    """
    Service for browsing and exporting an identity's flashcards.

    Usage:
        service = FlashcardService(store)
        cards = await service.list_for(identity)
        await service.delete(cards[0].id)
        await service.export_csv(identity, "cards.csv")
    """

    def __init__(self, store: AnnotationStore, exporter: Optional[FlashcardExporter] = None):
        self._store = store
        self._exporter = exporter or FlashcardExporter()
        self._cards: List[Flashcard] = []
        self._owner: Optional[Identity] = None
        self._on_change_callbacks: List[Callable[[], None]] = []

    @property
    def cards(self) -> List[Flashcard]:
        """Last listing, newest first."""
        return list(self._cards)

    @property
    def count(self) -> int:
        return len(self._cards)

    def on_change(self, callback: Callable[[], None]) -> None:
        """Register callback for listing changes."""
        self._on_change_callbacks.append(callback)

    def _notify_change(self) -> None:
        for callback in self._on_change_callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Flashcard change callback failed")

    async def list_for(self, owner: Identity) -> List[Flashcard]:
        """
        Load the owner's flashcards, newest first.

        Raises:
            StoreUnavailable: If the remote store cannot be reached
        """
        cards = await self._store.list_by_owner(owner)
        self._cards = cards
        self._owner = owner
        logger.debug("Loaded %d flashcards for %s", len(cards), owner.uid)
        self._notify_change()
        return self.cards

    def get(self, flashcard_id: Union[FlashcardId, str]) -> Flashcard:
        """
        Find a flashcard in the last listing.

        Raises:
            NotFound: If the id is not in the listing
        """
        key = str(flashcard_id)
        for card in self._cards:
            if str(card.id) == key:
                return card
        raise NotFound(f"Flashcard {key} is not in the current listing.")

    async def delete(
        self, flashcard_id: Union[FlashcardId, str], owner: Optional[Identity] = None
    ) -> None:
        """
        Delete a flashcard; unknown ids are a no-op.

        Remote deletes are authorized as owner, or as the owner of the
        last listing when none is given.

        Raises:
            StoreUnavailable: If the owning store cannot be reached
        """
        if isinstance(flashcard_id, str):
            flashcard_id = parse_flashcard_id(flashcard_id)
        await self._store.delete(flashcard_id, owner or self._owner)
        key = str(flashcard_id)
        remaining = [card for card in self._cards if str(card.id) != key]
        if len(remaining) != len(self._cards):
            self._cards = remaining
            self._notify_change()

    def to_dataframe(self, cards: Optional[List[Flashcard]] = None) -> pd.DataFrame:
        return self._exporter.to_dataframe(self._cards if cards is None else cards)

    def _default_path(self, owner: Identity, extension: str) -> str:
        return os.path.join(Config.EXPORT_DIR, f"flashcards_{owner.uid}.{extension}")

    async def export_csv(self, owner: Identity, path: Optional[str] = None) -> int:
        """
        Export the owner's flashcards as pipe-separated CSV.

        Returns:
            Number of rows written
        """
        cards = await self.list_for(owner)
        return self._exporter.write_csv(cards, path or self._default_path(owner, "csv"))

    async def export_apkg(self, owner: Identity, path: Optional[str] = None) -> int:
        """
        Export the owner's flashcards as an Anki package.

        Returns:
            Number of notes written
        """
        cards = await self.list_for(owner)
        return self._exporter.write_apkg(cards, path or self._default_path(owner, "apkg"))
