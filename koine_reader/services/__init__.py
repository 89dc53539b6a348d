"""Services layer for business logic separation."""

from .errors import (
    AnalysisFailure,
    AuthenticationFailure,
    ConfigurationError,
    FetchFailure,
    KoineReaderError,
    NotFound,
    StoreUnavailable,
)
from .ai_service import AIConfig, AIProvider, ScriptureService, create_scripture_service
from .repository import (
    AnnotationStore,
    LocalAnnotationBackend,
    RemoteAnnotationBackend,
    create_annotation_store,
)
from .auth import (
    ExternalIdentityProvider,
    IdentityProvider,
    LocalIdentityProvider,
    RemoteIdentityProvider,
)
from .session import (
    AppScreen,
    ChapterStatus,
    SelectionStatus,
    SessionController,
    SessionSnapshot,
    ViewMode,
)
from .flashcard_service import FlashcardService

__all__ = [
    "KoineReaderError",
    "ConfigurationError",
    "FetchFailure",
    "AnalysisFailure",
    "StoreUnavailable",
    "NotFound",
    "AuthenticationFailure",
    "AIConfig",
    "AIProvider",
    "ScriptureService",
    "create_scripture_service",
    "AnnotationStore",
    "LocalAnnotationBackend",
    "RemoteAnnotationBackend",
    "create_annotation_store",
    "IdentityProvider",
    "LocalIdentityProvider",
    "ExternalIdentityProvider",
    "RemoteIdentityProvider",
    "SessionController",
    "SessionSnapshot",
    "ChapterStatus",
    "SelectionStatus",
    "ViewMode",
    "AppScreen",
    "FlashcardService",
]
