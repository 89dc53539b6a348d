"""Flashcard export: pipe-separated CSV and Anki packages."""

import hashlib
import html
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Sequence

import genanki
import pandas as pd

from ..models import Flashcard

logger = logging.getLogger(__name__)

COLUMNS = [
    "ID",
    "Original",
    "Romanization",
    "Gloss",
    "Lemma",
    "Part_of_Speech",
    "Parsing",
    "VerseReference",
    "CreatedAt",
]

BASE_MODEL_ID = 1712040401

CARD_CSS = """
.card { font-family: "Gentium Plus", "SBL Greek", serif; font-size: 22px; text-align: center; }
.greek { font-size: 40px; }
.roman { color: #666; font-style: italic; }
.gloss { font-size: 28px; margin: 12px 0; }
.meta { font-size: 16px; color: #444; }
.ref { font-size: 14px; color: #999; margin-top: 10px; }
"""

FRONT_TEMPLATE = '<div class="greek">{{Original}}</div>'

BACK_TEMPLATE = """{{FrontSide}}
<hr id="answer">
<div class="roman">{{Romanization}}</div>
<div class="gloss">{{Gloss}}</div>
<div class="meta">{{Lemma}} &middot; {{Part_of_Speech}}</div>
<div class="meta">{{Parsing}}</div>
<div class="ref">{{VerseReference}}</div>
"""


def _stable_id(text: str, digits: int = 6) -> int:
    """Deterministic numeric id (Python's hash() varies between sessions)."""
    return int(hashlib.md5(text.encode("utf-8")).hexdigest()[:digits], 16)


class FlashcardExporter:
    """
    Turns flashcards into tabular or Anki form.

    Usage:
        exporter = FlashcardExporter("Koine Greek")
        df = exporter.to_dataframe(cards)
        exporter.write_csv(cards, "export/cards.csv")
        exporter.write_apkg(cards, "export/cards.apkg")
    """

    def __init__(self, deck_name: str = "Koine Greek"):
        self.deck_name = deck_name
        self.model_id = BASE_MODEL_ID
        self.deck_id = BASE_MODEL_ID * 1000 + _stable_id(deck_name, 3) % 1000

    def to_dataframe(self, cards: Sequence[Flashcard]) -> pd.DataFrame:
        rows = [
            {
                "ID": str(card.id),
                "Original": card.original,
                "Romanization": card.romanization,
                "Gloss": card.gloss,
                "Lemma": card.lemma,
                "Part_of_Speech": card.part_of_speech,
                "Parsing": card.parsing,
                "VerseReference": card.verse_reference,
                "CreatedAt": datetime.fromtimestamp(card.created_at / 1000, tz=timezone.utc).isoformat(),
            }
            for card in cards
        ]
        return pd.DataFrame(rows, columns=COLUMNS)

    def write_csv(self, cards: Sequence[Flashcard], path: str) -> int:
        """
        Write flashcards as a pipe-separated CSV.

        Returns:
            Number of rows written
        """
        df = self.to_dataframe(cards)
        _ensure_parent(path)
        df.to_csv(path, sep="|", index=False, encoding="utf-8-sig")
        logger.info("Exported %d flashcards to %s", len(df), path)
        return len(df)

    def _create_model(self) -> genanki.Model:
        return genanki.Model(
            self.model_id,
            "Koine Reader Vocabulary",
            fields=[{"name": name} for name in COLUMNS[:-1]],
            templates=[
                {
                    "name": "Greek -> Meaning",
                    "qfmt": FRONT_TEMPLATE,
                    "afmt": BACK_TEMPLATE,
                }
            ],
            css=CARD_CSS,
        )

    def build_deck(self, cards: Sequence[Flashcard]) -> genanki.Deck:
        """Build a deck with one note per flashcard; note GUIDs follow flashcard ids."""
        model = self._create_model()
        deck = genanki.Deck(self.deck_id, self.deck_name)
        for card in cards:
            fields = [
                str(card.id),
                card.original,
                card.romanization,
                card.gloss,
                card.lemma,
                card.part_of_speech,
                card.parsing,
                card.verse_reference,
            ]
            note = genanki.Note(
                model=model,
                fields=[html.escape(value) for value in fields],
                guid=genanki.guid_for(card.user_id, str(card.id)),
                tags=[_reference_tag(card.verse_reference)],
            )
            deck.add_note(note)
        return deck

    def write_apkg(self, cards: Sequence[Flashcard], path: str) -> int:
        """
        Write flashcards as an Anki package.

        Returns:
            Number of notes written
        """
        deck = self.build_deck(cards)
        _ensure_parent(path)
        genanki.Package(deck).write_to_file(path)
        logger.info("Exported %d notes to %s", len(deck.notes), path)
        return len(deck.notes)


def _reference_tag(verse_reference: str) -> str:
    # "1 John 2:3" -> "1_John"
    book = verse_reference.rsplit(" ", 1)[0] if " " in verse_reference else verse_reference
    return book.replace(" ", "_") or "Koine"


def _ensure_parent(path: str) -> None:
    parent = Path(path).parent
    if str(parent) not in ("", "."):
        os.makedirs(parent, exist_ok=True)
