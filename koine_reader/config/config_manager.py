"""Reader preferences persisted as JSON, with environment overrides."""

import json
import logging
import os
import uuid
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional, Tuple

from .books import INITIAL_BOOK, INITIAL_CHAPTER, chapter_count
from .settings import Config

logger = logging.getLogger(__name__)


class SettingsManager:
    """
    Process-wide store for reader preferences.

    Holds the last reading position and the language view. Values come
    from the JSON file, then environment variables of the same name win.

    Usage:
        settings = SettingsManager()
        book, chapter = settings.position()
        settings.remember_position("Mark", 3)
    """

    _instance: Optional["SettingsManager"] = None
    _lock: Lock = Lock()

    DEFAULTS: Dict[str, Any] = {
        "START_BOOK": INITIAL_BOOK,
        "START_CHAPTER": INITIAL_CHAPTER,
        "VIEW_MODE": "PARALLEL",
    }

    def __new__(cls, settings_file: Optional[str] = None) -> "SettingsManager":
        """Singleton pattern to ensure only one instance exists."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    instance = super().__new__(cls)
                    instance._initialized = False
                    cls._instance = instance
        return cls._instance

    def __init__(self, settings_file: Optional[str] = None) -> None:
        """
        Args:
            settings_file: Preferences file (defaults to Config.SETTINGS_FILE)
        """
        if getattr(self, "_initialized", False):
            return

        self.path = Path(settings_file or Config.SETTINGS_FILE)
        self._values: Dict[str, Any] = dict(self.DEFAULTS)
        self._write_lock = Lock()
        self._load()
        self._initialized = True

    def _load(self) -> None:
        if self.path.exists():
            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    stored = json.load(f)
            except (json.JSONDecodeError, OSError) as e:
                logger.warning("Ignoring unreadable preferences %s: %s", self.path, e)
            else:
                if isinstance(stored, dict):
                    self._values.update(stored)

        for key in self.DEFAULTS:
            if key in os.environ:
                self._values[key] = os.environ[key].strip()

        # Chapter numbers may arrive as strings from the environment
        try:
            self._values["START_CHAPTER"] = int(self._values["START_CHAPTER"])
        except (TypeError, ValueError):
            logger.warning("Invalid START_CHAPTER %r, using %s", self._values["START_CHAPTER"], INITIAL_CHAPTER)
            self._values["START_CHAPTER"] = INITIAL_CHAPTER

    def _save(self) -> None:
        """Write preferences atomically (temp file + rename)."""
        with self._write_lock:
            temp_file = f"{self.path}.{uuid.uuid4().hex[:8]}.tmp"
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(temp_file, "w", encoding="utf-8") as f:
                    json.dump(self._values, f, indent=2, ensure_ascii=False)
                os.replace(temp_file, self.path)
            except OSError as e:
                logger.warning("Could not save preferences %s: %s", self.path, e)
            finally:
                if os.path.exists(temp_file):
                    os.remove(temp_file)

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: str, value: Any, persist: bool = True) -> None:
        """
        Change one preference.

        Args:
            key: Preference name
            value: New value
            persist: Write the file immediately
        """
        self._values[key] = value
        if persist:
            self._save()

    def position(self) -> Tuple[str, int]:
        """
        Remembered reading position, kept inside the book's chapter range.

        Unknown books are returned as stored; only the chapter floor applies.
        """
        book = str(self._values.get("START_BOOK") or INITIAL_BOOK)
        chapter = max(1, int(self._values.get("START_CHAPTER") or INITIAL_CHAPTER))
        limit = chapter_count(book)
        if limit:
            chapter = min(chapter, limit)
        return book, chapter

    def remember_position(self, book: str, chapter: int) -> None:
        """Store the reading position with a single write."""
        if (book, chapter) == (self._values.get("START_BOOK"), self._values.get("START_CHAPTER")):
            return
        self._values["START_BOOK"] = book
        self._values["START_CHAPTER"] = int(chapter)
        self._save()

    @classmethod
    def reset_instance(cls) -> None:
        """Drop the singleton so the next call reloads from disk."""
        with cls._lock:
            cls._instance = None
