"""Koine Reader - Greek New Testament reader with word analysis and flashcards"""

__version__ = "1.0.0"

from .config import Config
from .models import ChapterData, Flashcard, Identity, WordAnalysis
from .services import AnnotationStore, FlashcardService, ScriptureService, SessionController
from .app import ReaderApp

__all__ = [
    'Config',
    'ChapterData',
    'Flashcard',
    'Identity',
    'WordAnalysis',
    'AnnotationStore',
    'FlashcardService',
    'ScriptureService',
    'SessionController',
    'ReaderApp',
]
