"""Error taxonomy shared by the services layer."""


class KoineReaderError(Exception):
    """Base class for all reader errors."""


class ConfigurationError(KoineReaderError):
    """Raised when a request needs settings that are not configured."""


class FetchFailure(KoineReaderError):
    """Raised when a chapter cannot be fetched or is malformed."""


class AnalysisFailure(KoineReaderError):
    """Raised when a word analysis cannot be produced or is malformed."""


class StoreUnavailable(KoineReaderError):
    """Raised when the remote flashcard store is unreachable or rejects a call."""


class NotFound(KoineReaderError):
    """
    Raised for lookups of absent records.

    Deleting an absent flashcard is a no-op and never raises this.
    """


class AuthenticationFailure(KoineReaderError):
    """Raised when the remote sign-in service refuses or cannot be reached."""
