"""
AI Service - generative text integration for the reader.

Provides abstraction over LLM providers (Gemini, OpenAI-compatible APIs)
for the two remote calls the reader depends on:
- Fetching a chapter in Koine Greek and English
- Analyzing a single Greek word in its verse context
"""

import asyncio
import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import aiohttp

from ..config import Config
from ..config.settings import default_model
from ..models import ChapterData, WordAnalysis
from .errors import AnalysisFailure, ConfigurationError, FetchFailure, KoineReaderError

logger = logging.getLogger(__name__)


class AIProvider(Enum):
    """Supported AI providers."""
    GEMINI = "gemini"
    OPENAI = "openai"  # Also any OpenAI-compatible server via base_url


class AIProviderError(KoineReaderError):
    """Raised when a provider request fails or returns an unusable payload."""


@dataclass
class AIConfig:
    """Configuration for AI service."""
    provider: AIProvider = AIProvider.GEMINI
    model: str = "gemini-2.5-flash"
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    temperature: float = 0.2
    timeout: int = 60


CODE_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*(.*?)\s*```\s*$", re.DOTALL)


def _strip_code_fence(text: str) -> str:
    match = CODE_FENCE_RE.match(text)
    return match.group(1) if match else text


def _parse_gemini_response(data: Dict[str, Any]) -> str:
    """Extract the generated text from a Gemini generateContent response."""
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        raise AIProviderError("Gemini response has no candidates.")
    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        raise AIProviderError("Gemini response has no content parts.")
    text = "".join(
        part["text"] for part in parts if isinstance(part, dict) and isinstance(part.get("text"), str)
    ).strip()
    if not text:
        raise AIProviderError("Gemini returned an empty message.")
    return text


def _parse_chat_response(data: Dict[str, Any]) -> str:
    """Extract the generated text from a chat completions response."""
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        raise AIProviderError("Chat response has no choices.")
    message = choices[0].get("message") if isinstance(choices[0], dict) else None
    if not isinstance(message, dict) or not isinstance(message.get("content"), str):
        raise AIProviderError("Chat response has no message content.")
    text = message["content"].strip()
    if not text:
        raise AIProviderError("Chat completion returned an empty message.")
    return text


def decode_json_payload(text: str) -> Dict[str, Any]:
    """
    Decode a JSON object from generated text.

    Args:
        text: Raw model output, optionally wrapped in a markdown code fence

    Returns:
        Decoded JSON object

    Raises:
        AIProviderError: If the text is not a JSON object
    """
    try:
        payload = json.loads(_strip_code_fence(text))
    except json.JSONDecodeError as exc:
        raise AIProviderError(f"Invalid JSON from model: {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise AIProviderError("Model output is not a JSON object.")
    return payload


class BaseAIProvider(ABC):
    """Abstract base class for AI providers."""

    def __init__(self, config: AIConfig):
        self.config = config
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        """Close the session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    def _require_api_key(self) -> str:
        if not self.config.api_key:
            raise ConfigurationError(
                f"No API key configured for {self.config.provider.value}; set API_KEY."
            )
        return self.config.api_key

    @abstractmethod
    async def complete_json(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        schema: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Generate a JSON completion for the given prompt and return the raw text."""
        pass


class GeminiProvider(BaseAIProvider):
    """Google Gemini generateContent REST provider."""

    DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

    async def complete_json(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        schema: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Generate a structured completion using the Gemini API."""
        api_key = self._require_api_key()
        session = await self._get_session()

        base_url = (self.config.base_url or self.DEFAULT_BASE_URL).rstrip("/")
        url = f"{base_url}/models/{self.config.model}:generateContent"

        generation_config: Dict[str, Any] = {
            "responseMimeType": "application/json",
            "temperature": self.config.temperature,
        }
        if schema:
            generation_config["responseSchema"] = schema

        payload: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": generation_config,
        }
        if system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": system_prompt}]}

        try:
            async with session.post(url, params={"key": api_key}, json=payload) as response:
                if response.status == 200:
                    return _parse_gemini_response(await response.json())
                error = await response.text()
                raise AIProviderError(f"Gemini API error {response.status}: {error[:200]}")
        except asyncio.TimeoutError as exc:
            raise AIProviderError("Gemini API timeout") from exc


class OpenAIProvider(BaseAIProvider):
    """OpenAI API provider (also works with compatible APIs)."""

    DEFAULT_BASE_URL = "https://api.openai.com/v1"

    async def complete_json(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        schema: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Generate a JSON completion using the chat completions API."""
        api_key = self._require_api_key()
        session = await self._get_session()

        base_url = (self.config.base_url or self.DEFAULT_BASE_URL).rstrip("/")
        url = f"{base_url}/chat/completions"

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        if schema:
            prompt = f"{prompt}\n\nRespond with a JSON object matching this schema:\n{json.dumps(schema)}"
        messages.append({"role": "user", "content": prompt})

        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.config.model,
            "messages": messages,
            "temperature": self.config.temperature,
            "response_format": {"type": "json_object"},
        }

        try:
            async with session.post(url, headers=headers, json=payload) as response:
                if response.status == 200:
                    return _parse_chat_response(await response.json())
                error = await response.text()
                raise AIProviderError(f"OpenAI API error {response.status}: {error[:200]}")
        except asyncio.TimeoutError as exc:
            raise AIProviderError("OpenAI API timeout") from exc


CHAPTER_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "book": {"type": "STRING"},
        "chapter": {"type": "INTEGER"},
        "verses": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "verse": {"type": "INTEGER"},
                    "greek": {"type": "STRING", "description": "The Greek text of the verse"},
                    "english": {"type": "STRING", "description": "The English KJV text of the verse"},
                },
                "required": ["verse", "greek", "english"],
            },
        },
    },
    "required": ["book", "chapter", "verses"],
}

WORD_ANALYSIS_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "original": {"type": "STRING"},
        "romanization": {"type": "STRING", "description": "Romanized transliteration of the word"},
        "gloss": {"type": "STRING"},
        "lemma": {"type": "STRING"},
        "partOfSpeech": {"type": "STRING"},
        "parsing": {"type": "STRING"},
    },
    "required": ["original", "romanization", "gloss", "lemma", "partOfSpeech", "parsing"],
}


class ScriptureService:
    """
    High-level generative service for the reader.

    Wraps a provider and turns its output into domain models:
    - fetch_chapter() returns a ChapterData or raises FetchFailure
    - analyze_word() returns a WordAnalysis or raises AnalysisFailure

    Neither call retries; callers decide when to try again.
    """

    SYSTEM_PROMPTS = {
        "chapter": "You are a precise biblical scholar database. Provide accurate Greek and English texts.",
        "analysis": "You are an expert ancient Greek linguist.",
    }

    def __init__(self, config: Optional[AIConfig] = None):
        """
        Initialize the service.

        Args:
            config: AI configuration. If None, uses Config (environment).
        """
        self.config = config or self._config_from_settings()
        self._provider: Optional[BaseAIProvider] = None

    def _config_from_settings(self) -> AIConfig:
        """Create config from the environment-backed Config."""
        provider_map = {
            "gemini": AIProvider.GEMINI,
            "openai": AIProvider.OPENAI,
        }
        provider = provider_map.get(Config.AI_PROVIDER, AIProvider.GEMINI)
        return AIConfig(
            provider=provider,
            model=Config.AI_MODEL or default_model(provider.value),
            api_key=Config.AI_API_KEY or None,
            base_url=Config.AI_BASE_URL or None,
            temperature=Config.AI_TEMPERATURE,
            timeout=Config.AI_TIMEOUT,
        )

    def _get_provider(self) -> BaseAIProvider:
        """Get or create the appropriate provider."""
        if self._provider is None:
            provider_classes = {
                AIProvider.GEMINI: GeminiProvider,
                AIProvider.OPENAI: OpenAIProvider,
            }
            provider_class = provider_classes.get(self.config.provider, GeminiProvider)
            self._provider = provider_class(self.config)
        return self._provider

    async def close(self) -> None:
        """Close the service and release resources."""
        if self._provider:
            await self._provider.close()
            self._provider = None

    async def __aenter__(self) -> "ScriptureService":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def is_configured(self) -> bool:
        """Check if the service has an API key."""
        return bool(self.config.api_key)

    async def _request(self, prompt: str, system_key: str, schema: Dict[str, Any]) -> Dict[str, Any]:
        provider = self._get_provider()
        text = await provider.complete_json(prompt, self.SYSTEM_PROMPTS[system_key], schema)
        return decode_json_payload(text)

    async def fetch_chapter(self, book: str, chapter: int) -> ChapterData:
        """
        Fetch a chapter in Koine Greek and KJV English.

        Args:
            book: Book name, e.g. "John"
            chapter: Chapter number (1-based)

        Returns:
            ChapterData with verses in order

        Raises:
            FetchFailure: On any transport, configuration or format error
        """
        prompt = (
            f"Provide the full text of {book} Chapter {chapter} in the original Koine Greek "
            f"(Textus Receptus or Nestle-Aland style) and the King James Version (KJV) English. \n"
            f"Ensure verse numbers match perfectly. Return a JSON object containing the book, "
            f"chapter, and an array of verses."
        )
        try:
            payload = await self._request(prompt, "chapter", CHAPTER_SCHEMA)
            data = ChapterData.from_dict(payload)
        except (KoineReaderError, aiohttp.ClientError) as exc:
            logger.error("Error fetching %s %s: %s", book, chapter, exc)
            raise FetchFailure(f"Failed to load {book} {chapter}: {exc}") from exc
        except (KeyError, TypeError, ValueError) as exc:
            logger.error("Malformed chapter payload for %s %s: %r", book, chapter, exc)
            raise FetchFailure(f"Malformed chapter data for {book} {chapter}") from exc

        if not data.verses:
            raise FetchFailure(f"No verses returned for {book} {chapter}")
        logger.info("Fetched %s %s (%d verses)", data.book, data.chapter, len(data.verses))
        return data

    async def analyze_word(self, word: str, context: str) -> WordAnalysis:
        """
        Analyze a Greek word as it appears in a verse.

        Args:
            word: Cleaned Greek word
            context: Full verse text

        Returns:
            WordAnalysis for this occurrence

        Raises:
            AnalysisFailure: On any transport, configuration or format error
        """
        prompt = (
            f'Analyze the Greek word "{word}" as it appears in this verse context: "{context}".\n'
            f"Provide the Romanization (transliteration), English gloss (brief definition), "
            f"the lemma (lexical form), the part of speech, and the morphological parsing "
            f"(case, gender, number, tense, voice, mood, etc)."
        )
        try:
            payload = await self._request(prompt, "analysis", WORD_ANALYSIS_SCHEMA)
            analysis = WordAnalysis.from_dict(payload)
        except (KoineReaderError, aiohttp.ClientError) as exc:
            logger.error("Error analyzing word %r: %s", word, exc)
            raise AnalysisFailure(f"Failed to analyze {word}: {exc}") from exc
        except (KeyError, TypeError, ValueError) as exc:
            logger.error("Malformed analysis payload for %r: %r", word, exc)
            raise AnalysisFailure(f"Malformed analysis for {word}") from exc

        logger.debug("Analyzed %r -> lemma=%r", word, analysis.lemma)
        return analysis


# Convenience factory function
def create_scripture_service(
    provider: str = "gemini",
    model: Optional[str] = None,
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
) -> ScriptureService:
    """
    Create a scripture service with specified configuration.

    Args:
        provider: Provider name (gemini, openai)
        model: Model name (uses default if None)
        api_key: API key (uses Config if None)
        base_url: Endpoint override

    Returns:
        Configured ScriptureService instance
    """
    provider_enum = {
        "gemini": AIProvider.GEMINI,
        "openai": AIProvider.OPENAI,
    }.get(provider.lower(), AIProvider.GEMINI)

    config = AIConfig(
        provider=provider_enum,
        model=model or default_model(provider_enum.value),
        api_key=api_key or Config.AI_API_KEY or None,
        base_url=base_url,
        temperature=Config.AI_TEMPERATURE,
        timeout=Config.AI_TIMEOUT,
    )
    return ScriptureService(config)
