"""Text parsing utilities for consistent text processing across the application."""

import re
import unicodedata
from typing import List


class TextParser:
    """
    Centralized text parsing utilities.

    Single source of truth for word cleanup, verse tokenization
    and verse reference formatting.
    """

    # Latin and Greek punctuation that can cling to a tapped word
    # (NFC folds the Greek question mark and ano teleia into ';' and U+00B7)
    PUNCTUATION_PATTERN = re.compile(
        r"[.,;:!?··;()\[\]{}\"'‘’“”«»—–⸀-⸅-]"
    )

    WHITESPACE_PATTERN = re.compile(r'\s+')

    @classmethod
    def normalize_unicode(cls, text: str) -> str:
        """
        Normalize text to NFC form for consistent Unicode handling.

        Greek polytonic letters can be encoded precomposed or as base
        letter plus combining accents; NFC picks one form.
        """
        if not text:
            return ""
        return unicodedata.normalize('NFC', str(text))

    @classmethod
    def clean_word(cls, word: str) -> str:
        """
        Strip punctuation and whitespace from a tapped word.

        Args:
            word: Raw token as rendered in the verse

        Returns:
            Cleaned word, or an empty string if nothing is left
        """
        if not word:
            return ""
        text = cls.normalize_unicode(word)
        text = cls.PUNCTUATION_PATTERN.sub('', text)
        return cls.WHITESPACE_PATTERN.sub('', text)

    @classmethod
    def split_words(cls, verse_text: str) -> List[str]:
        """Split verse text on whitespace, keeping attached punctuation."""
        if not verse_text:
            return []
        return [w for w in cls.WHITESPACE_PATTERN.split(cls.normalize_unicode(verse_text)) if w]

    @classmethod
    def verse_reference(cls, book: str, chapter: int, verse: int) -> str:
        """Format a human-readable reference like 'John 1:1'."""
        return f"{book} {chapter}:{verse}"
