"""Configuration module for Koine Reader."""

from .settings import Config
from .books import INITIAL_BOOK, INITIAL_CHAPTER, NEW_TESTAMENT_BOOKS, chapter_count
from .config_manager import SettingsManager

__all__ = [
    'Config',
    'SettingsManager',
    'INITIAL_BOOK',
    'INITIAL_CHAPTER',
    'NEW_TESTAMENT_BOOKS',
    'chapter_count',
]
