"""
Session Controller - chapter navigation and word selection state machine.

Coordinates one authoritative chapter load and one authoritative word
analysis at a time. Superseded requests are never cancelled; their results
are dropped on arrival by comparing staleness tokens.

Usage:
    controller = SessionController(scripture, store, identity_provider)
    controller.subscribe(render)          # receives SessionSnapshot
    await controller.start()              # loads the starting chapter
    await controller.select_word("λόγος,", 1)
    await controller.save()
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Protocol

from ..config import INITIAL_BOOK, INITIAL_CHAPTER, chapter_count
from ..models import ChapterData, Flashcard, Identity, SelectionState, WordAnalysis
from ..utils.parsing import TextParser
from .auth import IdentityProvider
from .errors import AnalysisFailure, FetchFailure, StoreUnavailable
from .repository import AnnotationStore

logger = logging.getLogger(__name__)

CHAPTER_ERROR_MESSAGE = "Failed to load chapter. Please check your internet or API key."
ANALYSIS_ERROR_MESSAGE = "Could not analyze this word. Please try again."
SAVE_ERROR_MESSAGE = "Could not save the flashcard. Please try again."


class ScriptureSource(Protocol):
    """Port for the generative text service."""

    async def fetch_chapter(self, book: str, chapter: int) -> ChapterData: ...

    async def analyze_word(self, word: str, context: str) -> WordAnalysis: ...


class ChapterStatus(Enum):
    IDLE = "idle"
    LOADING_CHAPTER = "loading_chapter"
    CHAPTER_READY = "chapter_ready"
    CHAPTER_FAILED = "chapter_failed"


class SelectionStatus(Enum):
    NO_SELECTION = "no_selection"
    ANALYZING_WORD = "analyzing_word"
    ANALYSIS_READY = "analysis_ready"
    ANALYSIS_FAILED = "analysis_failed"
    SAVING = "saving"
    SAVED = "saved"


class ViewMode(Enum):
    GREEK = "GREEK"
    ENGLISH = "ENGLISH"
    PARALLEL = "PARALLEL"


class AppScreen(Enum):
    READER = "READER"
    FLASHCARDS = "FLASHCARDS"


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view of the session handed to subscribers."""

    chapter_status: ChapterStatus
    book: str
    chapter: int
    chapter_data: Optional[ChapterData]
    chapter_error: Optional[str]
    selection_status: SelectionStatus
    selection: Optional[SelectionState]
    analysis: Optional[WordAnalysis]
    analysis_error: Optional[str]
    save_error: Optional[str]
    saved_card: Optional[Flashcard]
    identity: Optional[Identity]
    view_mode: ViewMode
    screen: AppScreen


SnapshotCallback = Callable[[SessionSnapshot], None]


class SessionController:
    """
    State machine for one reading session.

    Chapter states: IDLE -> LOADING_CHAPTER -> CHAPTER_READY | CHAPTER_FAILED.
    Selection sub-states (meaningful while a chapter is ready):
    NO_SELECTION -> ANALYZING_WORD -> ANALYSIS_READY | ANALYSIS_FAILED,
    ANALYSIS_READY -> SAVING -> SAVED | ANALYSIS_READY (with save_error).
    """

    def __init__(
        self,
        scripture: ScriptureSource,
        store: AnnotationStore,
        identity_provider: IdentityProvider,
        book: str = INITIAL_BOOK,
        chapter: int = INITIAL_CHAPTER,
        view_mode: ViewMode = ViewMode.PARALLEL,
    ):
        """
        Initialize the controller in the IDLE state.

        Args:
            scripture: Chapter and word analysis source
            store: Flashcard store
            identity_provider: Source of identity changes and sign-in flow
            book: Starting book
            chapter: Starting chapter
            view_mode: Initial language view
        """
        self._scripture = scripture
        self._store = store
        self._identity_provider = identity_provider

        self._book = book
        self._chapter = max(1, int(chapter))
        self._view_mode = view_mode
        self._screen = AppScreen.READER
        self._identity: Optional[Identity] = None

        self._chapter_status = ChapterStatus.IDLE
        self._chapter_data: Optional[ChapterData] = None
        self._chapter_error: Optional[str] = None
        self._chapter_token = 0

        self._selection_status = SelectionStatus.NO_SELECTION
        self._selection: Optional[SelectionState] = None
        self._analysis: Optional[WordAnalysis] = None
        self._analysis_error: Optional[str] = None
        self._save_error: Optional[str] = None
        self._saved_card: Optional[Flashcard] = None
        self._selection_token = 0

        self._subscribers: List[SnapshotCallback] = []
        self._unsubscribe_identity: Optional[Callable[[], None]] = None

    # ==================== Snapshots ====================

    @property
    def snapshot(self) -> SessionSnapshot:
        """Current state as an immutable snapshot."""
        return SessionSnapshot(
            chapter_status=self._chapter_status,
            book=self._book,
            chapter=self._chapter,
            chapter_data=self._chapter_data,
            chapter_error=self._chapter_error,
            selection_status=self._selection_status,
            selection=self._selection,
            analysis=self._analysis,
            analysis_error=self._analysis_error,
            save_error=self._save_error,
            saved_card=self._saved_card,
            identity=self._identity,
            view_mode=self._view_mode,
            screen=self._screen,
        )

    def subscribe(self, callback: SnapshotCallback) -> Callable[[], None]:
        """
        Register a callback for state changes.

        Returns:
            Function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        """Send the current snapshot to all subscribers."""
        snapshot = self.snapshot
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Session subscriber failed")

    # ==================== Lifecycle ====================

    async def start(self) -> None:
        """Subscribe to identity changes and load the starting chapter."""
        if self._unsubscribe_identity is None:
            self._unsubscribe_identity = self._identity_provider.subscribe(self._on_identity_changed)
        await self._load_chapter()

    def stop(self) -> None:
        """Detach from the identity provider."""
        if self._unsubscribe_identity is not None:
            self._unsubscribe_identity()
            self._unsubscribe_identity = None

    def _on_identity_changed(self, identity: Optional[Identity]) -> None:
        self._identity = identity
        if identity is None:
            self._reset_selection()
            self._screen = AppScreen.READER
        logger.info("Identity changed: %s", identity.uid if identity else "signed out")
        self._notify()

    async def sign_in(self) -> None:
        await self._identity_provider.sign_in()

    async def sign_out(self) -> None:
        await self._identity_provider.sign_out()

    # ==================== Navigation ====================

    async def set_book(self, book: str) -> None:
        """Switch book; the chapter resets to 1."""
        book = (book or "").strip()
        if not book:
            raise ValueError("Book name must not be empty.")
        self._book = book
        self._chapter = 1
        await self._load_chapter()

    async def set_chapter(self, chapter: int) -> None:
        """Switch chapter within the current book (clamped to the book's range)."""
        chapter = max(1, int(chapter))
        limit = chapter_count(self._book)
        if limit:
            chapter = min(chapter, limit)
        self._chapter = chapter
        await self._load_chapter()

    async def retry(self) -> None:
        """Reload the same chapter after a failure."""
        if self._chapter_status is not ChapterStatus.CHAPTER_FAILED:
            return
        await self._load_chapter()

    async def _load_chapter(self) -> None:
        self._chapter_token += 1
        token = self._chapter_token
        book, chapter = self._book, self._chapter

        self._chapter_status = ChapterStatus.LOADING_CHAPTER
        self._chapter_data = None
        self._chapter_error = None
        self._reset_selection()
        self._notify()

        try:
            data = await self._scripture.fetch_chapter(book, chapter)
        except Exception as e:
            if token != self._chapter_token:
                logger.debug("Dropping stale chapter failure for %s %s", book, chapter)
                return
            if isinstance(e, FetchFailure):
                logger.warning("Chapter %s %s failed to load: %s", book, chapter, e)
            else:
                logger.exception("Unexpected error loading %s %s", book, chapter)
            self._chapter_status = ChapterStatus.CHAPTER_FAILED
            self._chapter_error = CHAPTER_ERROR_MESSAGE
            self._notify()
            return

        if token != self._chapter_token:
            logger.debug("Dropping stale chapter %s %s", book, chapter)
            return
        self._chapter_data = data
        self._chapter_status = ChapterStatus.CHAPTER_READY
        self._notify()

    # ==================== Selection ====================

    def _reset_selection(self) -> None:
        """Collapse the selection sub-machine and invalidate its token."""
        self._selection_token += 1
        self._selection_status = SelectionStatus.NO_SELECTION
        self._selection = None
        self._analysis = None
        self._analysis_error = None
        self._save_error = None
        self._saved_card = None

    async def select_word(self, raw_word: str, verse_number: int) -> None:
        """
        Handle a tap on a word of the displayed chapter.

        Taps that clean up to nothing, or that arrive while no chapter
        is ready, are ignored.
        """
        data = self._chapter_data
        if self._chapter_status is not ChapterStatus.CHAPTER_READY or data is None:
            return
        word = TextParser.clean_word(raw_word)
        if not word:
            return
        verse = data.get_verse(verse_number)
        if verse is None:
            logger.warning("Ignoring tap in unknown verse %s of %s %s", verse_number, data.book, data.chapter)
            return

        selection = SelectionState(
            word=word,
            verse_context=verse.greek,
            verse_reference=TextParser.verse_reference(data.book, data.chapter, verse.verse),
        )
        await self._analyze(selection)

    async def retry_analysis(self) -> None:
        """Run the analysis again for the current selection after a failure."""
        if self._selection_status is not SelectionStatus.ANALYSIS_FAILED or self._selection is None:
            return
        await self._analyze(self._selection)

    async def _analyze(self, selection: SelectionState) -> None:
        self._reset_selection()
        token = self._selection_token
        self._selection = selection
        self._selection_status = SelectionStatus.ANALYZING_WORD
        self._notify()

        try:
            analysis = await self._scripture.analyze_word(selection.word, selection.verse_context)
        except Exception as e:
            if token != self._selection_token:
                logger.debug("Dropping stale analysis failure for %r", selection.word)
                return
            if isinstance(e, AnalysisFailure):
                logger.warning("Analysis of %r failed: %s", selection.word, e)
            else:
                logger.exception("Unexpected error analyzing %r", selection.word)
            self._selection_status = SelectionStatus.ANALYSIS_FAILED
            self._analysis_error = ANALYSIS_ERROR_MESSAGE
            self._notify()
            return

        if token != self._selection_token:
            logger.debug("Dropping stale analysis for %r", selection.word)
            return
        self._analysis = analysis
        self._selection_status = SelectionStatus.ANALYSIS_READY
        self._notify()

    def close_selection(self) -> None:
        """Close the word-detail view and drop any pending result for it."""
        had_selection = self._selection_status is not SelectionStatus.NO_SELECTION
        self._reset_selection()
        if had_selection:
            self._notify()

    # ==================== Saving ====================

    async def save(self) -> None:
        """
        Save the current analysis as a flashcard.

        Without an identity this starts the sign-in flow instead and
        leaves the state untouched. Saves while SAVING or SAVED are no-ops.
        """
        if self._selection_status is not SelectionStatus.ANALYSIS_READY:
            return
        analysis, selection = self._analysis, self._selection
        if analysis is None or selection is None:
            return

        owner = self._identity
        if owner is None:
            logger.info("Save requested while signed out; starting sign-in")
            try:
                await self._identity_provider.sign_in()
            except Exception:
                logger.exception("Sign-in flow failed to start")
            return

        token = self._selection_token
        self._selection_status = SelectionStatus.SAVING
        self._save_error = None
        self._notify()

        try:
            card = await self._store.save(owner, analysis, selection.verse_reference)
        except Exception as e:
            if token != self._selection_token:
                logger.warning("Save of %r failed after the selection changed: %s", selection.word, e)
                return
            if isinstance(e, StoreUnavailable):
                logger.warning("Flashcard store unavailable: %s", e)
            else:
                logger.exception("Unexpected error saving %r", selection.word)
            self._selection_status = SelectionStatus.ANALYSIS_READY
            self._save_error = SAVE_ERROR_MESSAGE
            self._notify()
            return

        if token != self._selection_token:
            logger.debug("Saved %s after the selection changed", card.id)
            return
        self._saved_card = card
        self._selection_status = SelectionStatus.SAVED
        self._notify()

    # ==================== View state ====================

    def set_view_mode(self, mode: ViewMode) -> None:
        self._view_mode = ViewMode(mode)
        self._notify()

    def set_screen(self, screen: AppScreen) -> None:
        """Switch screens; the flashcard screen needs an identity."""
        screen = AppScreen(screen)
        if screen is AppScreen.FLASHCARDS and self._identity is None:
            return
        self._screen = screen
        self._notify()
