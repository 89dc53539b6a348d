"""Word analysis and flashcard data models."""

from dataclasses import dataclass
from typing import Any, Dict, Union

LOCAL_ID_PREFIX = "local-"

# Analysis field name -> key used by the generative service and the remote store
ANALYSIS_WIRE_KEYS = {
    "original": "original",
    "romanization": "romanization",
    "gloss": "gloss",
    "lemma": "lemma",
    "part_of_speech": "partOfSpeech",
    "parsing": "parsing",
}


@dataclass(frozen=True)
class WordAnalysis:
    """Structured analysis of one word occurrence."""

    original: str
    romanization: str
    gloss: str
    lemma: str
    part_of_speech: str
    parsing: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WordAnalysis":
        """
        Build an analysis from a mapping.

        Accepts both camelCase wire keys and snake_case field names.

        Raises:
            KeyError: If a field is missing
        """
        values = {}
        for field_name, wire_key in ANALYSIS_WIRE_KEYS.items():
            if wire_key in data:
                raw = data[wire_key]
            else:
                raw = data[field_name]
            values[field_name] = "" if raw is None else str(raw)
        return cls(**values)

    def to_wire(self) -> Dict[str, str]:
        """Return the analysis with camelCase keys."""
        return {
            wire_key: getattr(self, field_name)
            for field_name, wire_key in ANALYSIS_WIRE_KEYS.items()
        }


@dataclass(frozen=True)
class LocalId:
    """Identifier of a flashcard held by the local backend."""

    seq: int

    def __str__(self) -> str:
        return f"{LOCAL_ID_PREFIX}{self.seq}"


@dataclass(frozen=True)
class RemoteId:
    """Identifier assigned by the remote document store."""

    value: str

    def __str__(self) -> str:
        return self.value


FlashcardId = Union[LocalId, RemoteId]


def parse_flashcard_id(text: str) -> FlashcardId:
    """
    Map the string form of a flashcard id back to its tagged variant.

    Args:
        text: Id as rendered by str()

    Returns:
        LocalId for 'local-<n>' strings, RemoteId otherwise
    """
    text = str(text).strip()
    if text.startswith(LOCAL_ID_PREFIX):
        suffix = text[len(LOCAL_ID_PREFIX):]
        if suffix.isdigit():
            return LocalId(int(suffix))
    return RemoteId(text)


@dataclass(frozen=True)
class Flashcard:
    """A saved word analysis owned by one identity."""

    id: FlashcardId
    user_id: str
    analysis: WordAnalysis
    verse_reference: str
    created_at: int  # epoch milliseconds

    # Flat accessors keep call sites close to the saved word
    @property
    def original(self) -> str:
        return self.analysis.original

    @property
    def romanization(self) -> str:
        return self.analysis.romanization

    @property
    def gloss(self) -> str:
        return self.analysis.gloss

    @property
    def lemma(self) -> str:
        return self.analysis.lemma

    @property
    def part_of_speech(self) -> str:
        return self.analysis.part_of_speech

    @property
    def parsing(self) -> str:
        return self.analysis.parsing

    def to_record(self) -> Dict[str, Any]:
        """Serialize all fields for the local JSON store."""
        record: Dict[str, Any] = {"id": str(self.id)}
        record.update(self.analysis.to_wire())
        record["userId"] = self.user_id
        record["verseReference"] = self.verse_reference
        record["createdAt"] = self.created_at
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Flashcard":
        """Rebuild a flashcard from a serialized record."""
        return cls(
            id=parse_flashcard_id(record["id"]),
            user_id=str(record["userId"]),
            analysis=WordAnalysis.from_dict(record),
            verse_reference=str(record.get("verseReference", "")),
            created_at=int(record.get("createdAt", 0)),
        )
