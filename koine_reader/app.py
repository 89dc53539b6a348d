"""
Reader application wiring.

Builds the store, the generative service and the identity provider once,
hands them to a SessionController and remembers the reading position.
"""

import logging
from typing import Optional, Type

from .config import Config, SettingsManager
from .services import (
    AnnotationStore,
    ChapterStatus,
    FlashcardService,
    IdentityProvider,
    LocalIdentityProvider,
    RemoteIdentityProvider,
    ScriptureService,
    SessionController,
    SessionSnapshot,
    ViewMode,
    create_annotation_store,
)
from .services.session import ScriptureSource

logger = logging.getLogger(__name__)


class ReaderApp:
    """
    Top-level container for one reader process.

    Usage:
        async with await ReaderApp.create() as app:
            await app.start()
            print(app.session.snapshot.chapter_data)
    """

    def __init__(
        self,
        scripture: ScriptureSource,
        store: AnnotationStore,
        identity_provider: IdentityProvider,
        settings: Optional[SettingsManager] = None,
        book: Optional[str] = None,
        chapter: Optional[int] = None,
    ):
        """
        Wire the session and flashcard services.

        Args:
            book: Starting book (defaults to the remembered position)
            chapter: Starting chapter (defaults to the remembered position)
        """
        self.scripture = scripture
        self.store = store
        self.identity_provider = identity_provider
        self.settings = settings or SettingsManager()

        remembered_book, remembered_chapter = self.settings.position()
        try:
            view_mode = ViewMode(self.settings.get("VIEW_MODE", ViewMode.PARALLEL.value))
        except ValueError:
            view_mode = ViewMode.PARALLEL

        self.session = SessionController(
            scripture,
            store,
            identity_provider,
            book=book or remembered_book,
            chapter=chapter or remembered_chapter,
            view_mode=view_mode,
        )
        self.flashcards = FlashcardService(store)
        self.session.subscribe(self._remember_position)

    @classmethod
    async def create(
        cls,
        config: Type[Config] = Config,
        scripture: Optional[ScriptureSource] = None,
        identity_provider: Optional[IdentityProvider] = None,
        settings: Optional[SettingsManager] = None,
        probe: bool = True,
        book: Optional[str] = None,
        chapter: Optional[int] = None,
    ) -> "ReaderApp":
        """
        Build an app from configuration.

        The store's backend set is decided here, once, by probing the remote
        store. A remote store gets remote identities; demo mode gets local ones.
        """
        store = await create_annotation_store(config, probe=probe)
        scripture = scripture or ScriptureService()
        if identity_provider is None:
            identity_provider = cls._identity_provider_for(config, store)
        if not store.remote_enabled:
            logger.info("Flashcards are stored locally in %s", config.FLASHCARDS_FILE)
        return cls(scripture, store, identity_provider, settings, book=book, chapter=chapter)

    @staticmethod
    def _identity_provider_for(config: Type[Config], store: AnnotationStore) -> IdentityProvider:
        if not store.remote_enabled:
            return LocalIdentityProvider(config.IDENTITY_FILE)
        return RemoteIdentityProvider(
            config.FIREBASE_API_KEY,
            config.REMOTE_IDENTITY_FILE,
            email=config.FIREBASE_EMAIL,
            password=config.FIREBASE_PASSWORD,
            auth_url=config.FIREBASE_AUTH_URL,
            token_url=config.FIREBASE_TOKEN_URL,
            timeout=config.STORE_TIMEOUT,
        )

    def _remember_position(self, snapshot: SessionSnapshot) -> None:
        if snapshot.view_mode.value != self.settings.get("VIEW_MODE"):
            self.settings.set("VIEW_MODE", snapshot.view_mode.value)
        if snapshot.chapter_status is ChapterStatus.CHAPTER_READY:
            self.settings.remember_position(snapshot.book, snapshot.chapter)

    async def start(self) -> None:
        await self.identity_provider.refresh()
        await self.session.start()

    async def close(self) -> None:
        """Detach the session and release network sessions."""
        self.session.stop()
        await self.store.close()
        await self.identity_provider.close()
        close = getattr(self.scripture, "close", None)
        if close is not None:
            await close()

    async def __aenter__(self) -> "ReaderApp":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
