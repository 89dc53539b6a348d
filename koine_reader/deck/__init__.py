"""Flashcard export to CSV and Anki packages."""

from .exporter import COLUMNS, FlashcardExporter

__all__ = ['COLUMNS', 'FlashcardExporter']
