"""
Repository Pattern - flashcard persistence over swappable backends.

AnnotationStore presents one contract (save, list_by_owner, delete) over:
- LocalAnnotationBackend: a JSON document on disk (demo / offline mode)
- RemoteAnnotationBackend: a Firestore-compatible document REST API

The backend set is fixed when the store is built. A failing remote call
raises StoreUnavailable; it never falls back to local storage.
"""

import asyncio
import json
import logging
import os
import time
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, Union

import aiofiles
import aiohttp

from ..config import Config
from ..models import (
    Flashcard,
    FlashcardId,
    Identity,
    LocalId,
    RemoteId,
    WordAnalysis,
    parse_flashcard_id,
)
from ..models.card import ANALYSIS_WIRE_KEYS
from .errors import StoreUnavailable

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class AnnotationBackend(ABC):
    """
    Abstract base class for flashcard storage backends.

    Defines the contract for all data access operations.
    """

    name: str = "backend"

    @abstractmethod
    async def create(self, owner: Identity, analysis: WordAnalysis, verse_reference: str) -> Flashcard:
        """Persist a new flashcard and return it with its assigned id and timestamp."""
        pass

    @abstractmethod
    async def list_by_owner(self, owner: Identity) -> List[Flashcard]:
        """Return the owner's flashcards, newest first."""
        pass

    @abstractmethod
    async def delete(self, flashcard_id: FlashcardId, owner: Optional[Identity] = None) -> None:
        """Remove a flashcard if present; owner supplies credentials where needed."""
        pass

    async def close(self) -> None:
        """Release any open resources."""
        pass


# ==================== Local backend ====================


class LocalAnnotationBackend(AnnotationBackend):
    """
    JSON-file backend used when no remote store is available.

    All records live in one document:
        {"version": 1, "next_seq": 3, "last_created_at": ..., "flashcards": [...]}

    Read-modify-write sequences are serialized with an asyncio lock and every
    write replaces the file atomically.
    """

    name = "local"
    FORMAT_VERSION = 1

    def __init__(self, path: Optional[str] = None, clock: Optional[Clock] = None):
        """
        Initialize local backend.

        Args:
            path: Path to the flashcards JSON file
            clock: Millisecond clock (defaults to wall time)
        """
        self.path = Path(path or Config.FLASHCARDS_FILE)
        self._clock = clock or _now_ms
        self._async_lock: Optional[asyncio.Lock] = None

    def _get_async_lock(self) -> asyncio.Lock:
        """Get or create async lock (lazy initialization)."""
        if self._async_lock is None:
            self._async_lock = asyncio.Lock()
        return self._async_lock

    def _empty_document(self) -> Dict[str, Any]:
        return {
            "version": self.FORMAT_VERSION,
            "next_seq": 1,
            "last_created_at": 0,
            "flashcards": [],
        }

    async def _read(self, for_write: bool = False) -> Dict[str, Any]:
        """
        Load the store document.

        A corrupt file reads as empty. Before a write it is moved aside
        so its contents are never overwritten.
        """
        if not self.path.exists():
            return self._empty_document()

        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                raw = await f.read()
            document = json.loads(raw) if raw.strip() else self._empty_document()
            if not isinstance(document, dict) or not isinstance(document.get("flashcards"), list):
                raise ValueError("unexpected flashcard store layout")
            for counter in ("next_seq", "last_created_at"):
                if counter in document and not _is_int(document[counter]):
                    raise ValueError(f"{counter} is not an integer: {document[counter]!r}")
        except (json.JSONDecodeError, ValueError) as e:
            logger.error("Flashcard store %s is unreadable: %s", self.path, e)
            if for_write:
                backup = self.path.with_name(
                    f"{self.path.name}.corrupt-{datetime.now().strftime('%Y%m%d_%H%M%S')}"
                )
                os.replace(self.path, backup)
                logger.warning("Moved unreadable flashcard store aside to %s", backup)
            return self._empty_document()

        document.setdefault("next_seq", len(document["flashcards"]) + 1)
        document.setdefault("last_created_at", 0)
        return document

    async def _write(self, document: Dict[str, Any]) -> None:
        """Write the store document (atomic write: temp file + rename)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_file = f"{self.path}.{uuid.uuid4().hex[:8]}.tmp"
        try:
            async with aiofiles.open(temp_file, "w", encoding="utf-8") as f:
                await f.write(json.dumps(document, ensure_ascii=False, indent=2))
            os.replace(temp_file, self.path)
        finally:
            if os.path.exists(temp_file):
                os.remove(temp_file)

    async def create(self, owner: Identity, analysis: WordAnalysis, verse_reference: str) -> Flashcard:
        async with self._get_async_lock():
            document = await self._read(for_write=True)
            seq = int(document["next_seq"])
            created_at = max(self._clock(), int(document["last_created_at"]) + 1)

            card = Flashcard(
                id=LocalId(seq),
                user_id=owner.uid,
                analysis=analysis,
                verse_reference=verse_reference,
                created_at=created_at,
            )
            document["flashcards"].append(card.to_record())
            document["next_seq"] = seq + 1
            document["last_created_at"] = created_at
            await self._write(document)
        return card

    async def list_by_owner(self, owner: Identity) -> List[Flashcard]:
        async with self._get_async_lock():
            document = await self._read()

        owned: List[Tuple[int, Flashcard]] = []
        for position, record in enumerate(document["flashcards"]):
            if not isinstance(record, dict):
                logger.warning("Skipping malformed flashcard record %r", record)
                continue
            if record.get("userId") != owner.uid:
                continue
            try:
                owned.append((position, Flashcard.from_record(record)))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed flashcard record %r: %s", record.get("id"), e)

        # Newest first; later insertion wins ties
        owned.sort(key=lambda item: (item[1].created_at, item[0]), reverse=True)
        return [card for _, card in owned]

    async def delete(self, flashcard_id: FlashcardId, owner: Optional[Identity] = None) -> None:
        key = str(flashcard_id)
        async with self._get_async_lock():
            document = await self._read(for_write=True)
            # Malformed records are kept as they are
            remaining = [
                r for r in document["flashcards"] if not isinstance(r, dict) or str(r.get("id")) != key
            ]
            if len(remaining) == len(document["flashcards"]):
                logger.debug("Delete of unknown local flashcard %s ignored", key)
                return
            document["flashcards"] = remaining
            await self._write(document)


# ==================== Remote backend ====================


def encode_flashcard_fields(
    owner_uid: str, analysis: WordAnalysis, verse_reference: str, created_at: int
) -> Dict[str, Any]:
    """Encode a flashcard as Firestore typed field values."""
    fields: Dict[str, Any] = {
        wire_key: {"stringValue": value} for wire_key, value in analysis.to_wire().items()
    }
    fields["userId"] = {"stringValue": owner_uid}
    fields["verseReference"] = {"stringValue": verse_reference}
    fields["createdAt"] = {"integerValue": str(created_at)}
    return fields


def _decode_value(value: Dict[str, Any]) -> Any:
    if "stringValue" in value:
        return value["stringValue"]
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "nullValue" in value:
        return None
    return None


def decode_document(document: Dict[str, Any]) -> Flashcard:
    """
    Decode a Firestore document into a Flashcard.

    Raises:
        KeyError, TypeError, ValueError: If the document lacks flashcard fields
    """
    fields = {name: _decode_value(value) for name, value in document["fields"].items()}
    doc_id = str(document["name"]).rsplit("/", 1)[-1]
    analysis = WordAnalysis.from_dict({key: fields.get(key, "") for key in ANALYSIS_WIRE_KEYS.values()})
    return Flashcard(
        id=RemoteId(doc_id),
        user_id=str(fields["userId"]),
        analysis=analysis,
        verse_reference=str(fields.get("verseReference") or ""),
        created_at=int(fields.get("createdAt") or 0),
    )


class RemoteAnnotationBackend(AnnotationBackend):
    """
    Firestore REST backend.

    Provides:
    - Server-assigned document ids (RemoteId)
    - Owner-scoped queries ordered by createdAt descending
    - Native single-document atomicity
    """

    name = "remote"
    COLLECTION = "flashcards"

    def __init__(
        self,
        api_key: str,
        project_id: str,
        base_url: str = "https://firestore.googleapis.com/v1",
        timeout: int = 15,
        clock: Optional[Clock] = None,
    ):
        self.api_key = api_key
        self.project_id = project_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._clock = clock or _now_ms
        self._last_created_at = 0
        self._session: Optional[aiohttp.ClientSession] = None
        self._session_lock: Optional[asyncio.Lock] = None

    @property
    def documents_url(self) -> str:
        return f"{self.base_url}/projects/{self.project_id}/databases/(default)/documents"

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create a shared aiohttp session (connection pooling)."""
        if self._session_lock is None:
            self._session_lock = asyncio.Lock()
        async with self._session_lock:
            if self._session is None or self._session.closed:
                timeout = aiohttp.ClientTimeout(total=self.timeout)
                self._session = aiohttp.ClientSession(timeout=timeout)
            return self._session

    async def close(self) -> None:
        """Close the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    def _headers(self, owner: Optional[Identity]) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if owner is not None and owner.id_token:
            headers["Authorization"] = f"Bearer {owner.id_token}"
        return headers

    async def _call(
        self,
        method: str,
        url: str,
        owner: Optional[Identity] = None,
        ok_statuses: Tuple[int, ...] = (200,),
        payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Tuple[int, Any]:
        """Issue one request; every transport or HTTP failure becomes StoreUnavailable."""
        session = await self._get_session()
        query = {"key": self.api_key}
        query.update(params or {})
        try:
            async with session.request(
                method, url, params=query, json=payload, headers=self._headers(owner)
            ) as response:
                if response.status in ok_statuses:
                    if response.content_type == "application/json":
                        return response.status, await response.json()
                    return response.status, None
                error = await response.text()
                raise StoreUnavailable(
                    f"Remote store error {response.status} on {method}: {error[:200]}"
                )
        except asyncio.TimeoutError as e:
            raise StoreUnavailable(f"Remote store timeout on {method}") from e
        except aiohttp.ClientError as e:
            raise StoreUnavailable(f"Remote store unreachable: {e}") from e

    async def probe(self) -> None:
        """
        Check that the remote store answers.

        Any HTTP answer below 500 counts as reachable; security rules may
        legitimately refuse an unauthenticated listing.

        Raises:
            StoreUnavailable: If the store cannot be reached
        """
        await self._call(
            "GET",
            f"{self.documents_url}/{self.COLLECTION}",
            ok_statuses=tuple(range(200, 500)),
            params={"pageSize": 1},
        )

    async def create(self, owner: Identity, analysis: WordAnalysis, verse_reference: str) -> Flashcard:
        created_at = max(self._clock(), self._last_created_at + 1)
        self._last_created_at = created_at
        body = {"fields": encode_flashcard_fields(owner.uid, analysis, verse_reference, created_at)}
        _, document = await self._call(
            "POST", f"{self.documents_url}/{self.COLLECTION}", owner=owner, payload=body
        )
        try:
            return decode_document(document)
        except (KeyError, TypeError, ValueError) as e:
            raise StoreUnavailable(f"Remote store returned an unexpected document: {e!r}") from e

    async def list_by_owner(self, owner: Identity) -> List[Flashcard]:
        body = {
            "structuredQuery": {
                "from": [{"collectionId": self.COLLECTION}],
                "where": {
                    "fieldFilter": {
                        "field": {"fieldPath": "userId"},
                        "op": "EQUAL",
                        "value": {"stringValue": owner.uid},
                    }
                },
                "orderBy": [{"field": {"fieldPath": "createdAt"}, "direction": "DESCENDING"}],
            }
        }
        _, rows = await self._call("POST", f"{self.documents_url}:runQuery", owner=owner, payload=body)

        cards: List[Flashcard] = []
        for row in rows or []:
            document = row.get("document") if isinstance(row, dict) else None
            if not document:
                continue
            try:
                card = decode_document(document)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed remote flashcard: %r", e)
                continue
            if card.user_id == owner.uid:
                cards.append(card)
        # Stable sort keeps server order for equal timestamps
        cards.sort(key=lambda card: card.created_at, reverse=True)
        return cards

    async def delete(self, flashcard_id: FlashcardId, owner: Optional[Identity] = None) -> None:
        await self._call(
            "DELETE",
            f"{self.documents_url}/{self.COLLECTION}/{flashcard_id}",
            owner=owner,
            ok_statuses=(200, 204, 404),
        )


# ==================== Store ====================


class AnnotationStore:
    """
    Backend-selecting flashcard store.

    Usage:
        store = AnnotationStore(LocalAnnotationBackend(path))
        card = await store.save(identity, analysis, "John 1:1")
        cards = await store.list_by_owner(identity)
        await store.delete(card.id, identity)
    """

    def __init__(self, local: LocalAnnotationBackend, remote: Optional[RemoteAnnotationBackend] = None):
        """
        Initialize the store.

        Args:
            local: Local fallback backend (always present)
            remote: Remote backend, or None to run every identity locally
        """
        self.local = local
        self.remote = remote

    @property
    def remote_enabled(self) -> bool:
        return self.remote is not None

    def backend_for(self, owner: Identity) -> AnnotationBackend:
        """Pick the backend for an identity: local for demo identities or when no remote exists."""
        if self.remote is None or owner.is_local:
            return self.local
        return self.remote

    async def save(self, owner: Identity, analysis: WordAnalysis, verse_reference: str) -> Flashcard:
        """
        Save an analysis as a new flashcard.

        Raises:
            StoreUnavailable: If the remote backend cannot complete the write
        """
        if owner is None:
            raise ValueError("A flashcard needs an owner identity.")
        backend = self.backend_for(owner)
        card = await backend.create(owner, analysis, verse_reference)
        logger.info("Saved flashcard %s (%s) via %s backend", card.id, analysis.lemma, backend.name)
        return card

    async def list_by_owner(self, owner: Identity) -> List[Flashcard]:
        """Return the owner's flashcards, newest first."""
        return await self.backend_for(owner).list_by_owner(owner)

    async def delete(
        self, flashcard_id: Union[FlashcardId, str], owner: Optional[Identity] = None
    ) -> None:
        """
        Delete a flashcard by id; unknown ids are ignored.

        The backend is chosen by the id's own variant, not by the caller.
        The owner only supplies credentials for the remote call.

        Raises:
            StoreUnavailable: For remote ids when no remote backend is configured or reachable
        """
        if isinstance(flashcard_id, str):
            flashcard_id = parse_flashcard_id(flashcard_id)

        if isinstance(flashcard_id, LocalId):
            await self.local.delete(flashcard_id)
        elif self.remote is None:
            raise StoreUnavailable(f"Flashcard {flashcard_id} belongs to a remote store that is not configured.")
        else:
            await self.remote.delete(flashcard_id, owner)
        logger.info("Deleted flashcard %s", flashcard_id)

    async def close(self) -> None:
        await self.local.close()
        if self.remote is not None:
            await self.remote.close()


async def create_annotation_store(
    config: Type[Config] = Config,
    clock: Optional[Clock] = None,
    probe: bool = True,
) -> AnnotationStore:
    """
    Build the store once at startup.

    The remote backend is used only if it is configured and answers the
    startup probe. Otherwise the process runs on local storage for its
    whole lifetime.

    Args:
        config: Configuration source
        clock: Millisecond clock for both backends
        probe: Probe the remote store before enabling it

    Returns:
        Ready AnnotationStore
    """
    local = LocalAnnotationBackend(config.FLASHCARDS_FILE, clock=clock)
    if not config.remote_store_configured():
        logger.info("Running in demo mode (local storage): remote store keys are missing.")
        return AnnotationStore(local)

    remote = RemoteAnnotationBackend(
        api_key=config.FIREBASE_API_KEY,
        project_id=config.FIREBASE_PROJECT_ID,
        base_url=config.FIRESTORE_BASE_URL,
        timeout=config.STORE_TIMEOUT,
        clock=clock,
    )
    if probe:
        try:
            await remote.probe()
        except StoreUnavailable as e:
            logger.warning("Remote store init failed, falling back to local storage: %s", e)
            await remote.close()
            return AnnotationStore(local)

    logger.info("Remote store enabled for project %s", config.FIREBASE_PROJECT_ID)
    return AnnotationStore(local, remote)
