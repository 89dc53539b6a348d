"""Global settings and configuration."""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load from project root
_env_path = Path(__file__).parent.parent.parent / ".env"
load_dotenv(_env_path)


def _env(name: str, default: str = "") -> str:
    """Read an environment variable, treating the literal 'undefined' as unset."""
    value = os.environ.get(name, default).strip()
    if value.lower() == "undefined":
        return ""
    return value


def _env_int(name: str, default: int) -> int:
    try:
        return int(_env(name, str(default)))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(_env(name, str(default)))
    except ValueError:
        return default


DEFAULT_MODELS = {
    "gemini": "gemini-2.5-flash",
    "openai": "gpt-4o-mini",
}


def default_model(provider: str) -> str:
    """Model used when AI_MODEL is not set for the given provider."""
    return DEFAULT_MODELS.get(provider.lower(), DEFAULT_MODELS["gemini"])


class Config:
    """Application-wide configuration."""

    # Cross-platform paths using pathlib
    # BASE_DIR is the project root (parent of koine_reader/)
    BASE_DIR: Path = Path(__file__).parent.parent.parent.resolve()

    # Generative text service
    AI_PROVIDER: str = _env("AI_PROVIDER", "gemini").lower()
    AI_MODEL: str = _env("AI_MODEL") or default_model(AI_PROVIDER)
    AI_API_KEY: str = (
        _env("API_KEY") or _env("GEMINI_API_KEY") or _env("OPENAI_API_KEY")
    )
    AI_BASE_URL: str = _env("AI_BASE_URL")
    AI_TIMEOUT: int = _env_int("AI_TIMEOUT", 60)
    AI_TEMPERATURE: float = _env_float("AI_TEMPERATURE", 0.2)

    # Remote document store (Firestore REST API)
    # NEVER hardcode secret keys in source code!
    FIREBASE_API_KEY: str = _env("FIREBASE_API_KEY")
    FIREBASE_PROJECT_ID: str = _env("FIREBASE_PROJECT_ID")
    FIRESTORE_BASE_URL: str = _env(
        "FIRESTORE_BASE_URL", "https://firestore.googleapis.com/v1"
    )
    STORE_TIMEOUT: int = _env_int("STORE_TIMEOUT", 15)

    # Remote sign-in (Firebase Auth REST API); without credentials the
    # sign-in is anonymous
    FIREBASE_AUTH_URL: str = _env(
        "FIREBASE_AUTH_URL", "https://identitytoolkit.googleapis.com/v1"
    )
    FIREBASE_TOKEN_URL: str = _env(
        "FIREBASE_TOKEN_URL", "https://securetoken.googleapis.com/v1"
    )
    FIREBASE_EMAIL: str = _env("FIREBASE_EMAIL")
    FIREBASE_PASSWORD: str = _env("FIREBASE_PASSWORD")

    # Local persistence
    DATA_DIR: str = _env("DATA_DIR") or str(BASE_DIR / "data")
    FLASHCARDS_FILE: str = str(Path(DATA_DIR) / "flashcards.json")
    IDENTITY_FILE: str = str(Path(DATA_DIR) / "identity.json")
    REMOTE_IDENTITY_FILE: str = str(Path(DATA_DIR) / "remote_identity.json")
    SETTINGS_FILE: str = str(Path(DATA_DIR) / "settings.json")
    EXPORT_DIR: str = str(Path(DATA_DIR) / "export")

    # Logging
    LOG_LEVEL: str = _env("LOG_LEVEL", "INFO").upper()
    FILE_LOG_LEVEL: str = _env("FILE_LOG_LEVEL", "DEBUG").upper()
    LOG_DIR: str = _env("LOG_DIR") or str(BASE_DIR / "logs")

    @classmethod
    def remote_store_configured(cls) -> bool:
        """Check whether remote document store settings are present."""
        return bool(cls.FIREBASE_API_KEY and cls.FIREBASE_PROJECT_ID)
