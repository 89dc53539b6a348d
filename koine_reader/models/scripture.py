"""Chapter text, selection and identity models."""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

LOCAL_IDENTITY_PREFIX = "local-user-"


@dataclass(frozen=True)
class Verse:
    """One verse in both languages."""

    verse: int
    greek: str
    english: str


@dataclass(frozen=True)
class ChapterData:
    """A full chapter as returned by the generative service."""

    book: str
    chapter: int
    verses: Tuple[Verse, ...] = field(default_factory=tuple)

    def get_verse(self, number: int) -> Optional[Verse]:
        """Find a verse by its number."""
        for verse in self.verses:
            if verse.verse == number:
                return verse
        return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChapterData":
        """
        Build a chapter from decoded JSON.

        Raises:
            KeyError, TypeError, ValueError: If the payload does not have the chapter shape
        """
        raw_verses = data["verses"]
        if not isinstance(raw_verses, list):
            raise TypeError("verses must be a list")
        verses = tuple(
            Verse(
                verse=int(item["verse"]),
                greek=str(item["greek"]),
                english=str(item["english"]),
            )
            for item in raw_verses
        )
        return cls(book=str(data["book"]), chapter=int(data["chapter"]), verses=verses)


@dataclass(frozen=True)
class SelectionState:
    """The currently tapped word and where it came from."""

    word: str
    verse_context: str
    verse_reference: str


@dataclass(frozen=True)
class Identity:
    """Opaque owner identity."""

    uid: str
    display_name: str = ""
    email: str = ""
    id_token: Optional[str] = field(default=None, compare=False, repr=False)

    @property
    def is_local(self) -> bool:
        """True for demo identities minted by the local identity provider."""
        return self.uid.startswith(LOCAL_IDENTITY_PREFIX)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uid": self.uid,
            "displayName": self.display_name,
            "email": self.email,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Identity":
        return cls(
            uid=str(data["uid"]),
            display_name=str(data.get("displayName") or ""),
            email=str(data.get("email") or ""),
        )
