"""
Identity providers.

The reader needs a change subscription, a fire-and-forget sign-in and a
sign-out from an identity provider. Demo mode mints local identities;
with a remote store configured, identities come from Firebase Auth.
"""

import asyncio
import inspect
import json
import logging
import os
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import aiofiles
import aiohttp

from ..config import Config
from ..models import Identity
from ..models.scripture import LOCAL_IDENTITY_PREFIX
from .errors import AuthenticationFailure

logger = logging.getLogger(__name__)

IdentityCallback = Callable[[Optional[Identity]], None]


async def _write_slot(path: Path, data: Dict[str, Any]) -> None:
    """Replace the identity slot file atomically."""
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_file = f"{path}.{uuid.uuid4().hex[:8]}.tmp"
    async with aiofiles.open(temp_file, "w", encoding="utf-8") as f:
        await f.write(json.dumps(data, ensure_ascii=False))
    os.replace(temp_file, path)


class IdentityProvider(ABC):
    """Abstract identity provider with change notification."""

    def __init__(self) -> None:
        self._current: Optional[Identity] = None
        self._subscribers: List[IdentityCallback] = []

    @property
    def current(self) -> Optional[Identity]:
        return self._current

    def subscribe(self, callback: IdentityCallback) -> Callable[[], None]:
        """
        Register a callback for identity changes.

        The callback is invoked immediately with the current identity.

        Returns:
            Function that removes the subscription
        """
        self._subscribers.append(callback)
        callback(self._current)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _publish(self, identity: Optional[Identity]) -> None:
        """Store the new identity and notify all subscribers."""
        self._current = identity
        for callback in list(self._subscribers):
            try:
                callback(identity)
            except Exception:
                logger.exception("Identity change subscriber failed")

    @abstractmethod
    async def sign_in(self) -> None:
        """Start the sign-in flow; the result arrives via subscribers."""
        pass

    @abstractmethod
    async def sign_out(self) -> None:
        """Sign the current identity out."""
        pass

    async def refresh(self) -> None:
        """Renew the credentials of a restored identity."""
        pass

    async def close(self) -> None:
        """Release any open resources."""
        pass


class LocalIdentityProvider(IdentityProvider):
    """
    Demo-mode identity provider.

    Keeps a single durable slot (a small JSON file) holding the current
    local identity; a missing file means signed out.
    """

    def __init__(self, path: Optional[str] = None, clock: Optional[Callable[[], int]] = None) -> None:
        """
        Initialize local provider and restore the stored identity.

        Args:
            path: Identity slot file (defaults to Config.IDENTITY_FILE)
            clock: Millisecond clock used to mint ids
        """
        super().__init__()
        self.path = Path(path or Config.IDENTITY_FILE)
        self._clock = clock or (lambda: int(time.time() * 1000))
        self._current = self._load()

    def _load(self) -> Optional[Identity]:
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return Identity.from_dict(json.load(f))
        except (json.JSONDecodeError, KeyError, TypeError, OSError) as e:
            logger.warning("Ignoring unreadable identity slot %s: %s", self.path, e)
            return None

    async def _store(self, identity: Identity) -> None:
        await _write_slot(self.path, identity.to_dict())

    async def sign_in(self) -> None:
        """Mint a demo identity and persist it."""
        identity = Identity(
            uid=f"{LOCAL_IDENTITY_PREFIX}{str(self._clock())[-4:]}",
            display_name="Demo User",
            email="demo@example.com",
        )
        await self._store(identity)
        logger.info("Signed in as local identity %s", identity.uid)
        self._publish(identity)

    async def sign_out(self) -> None:
        """Clear the durable slot."""
        if self.path.exists():
            os.remove(self.path)
        logger.info("Signed out local identity")
        self._publish(None)


class ExternalIdentityProvider(IdentityProvider):
    """
    Identity provider driven by an outside sign-in flow.

    sign_in() only starts the flow through the given handler; the
    integration reports the outcome later through set_identity().
    """

    def __init__(self, sign_in_handler: Optional[Callable[[], Any]] = None,
                 sign_out_handler: Optional[Callable[[], Any]] = None) -> None:
        super().__init__()
        self._sign_in_handler = sign_in_handler
        self._sign_out_handler = sign_out_handler

    def set_identity(self, identity: Optional[Identity]) -> None:
        """Report the identity produced by the outside flow."""
        self._publish(identity)

    async def sign_in(self) -> None:
        if self._sign_in_handler is None:
            logger.warning("No sign-in flow is configured")
            return
        result = self._sign_in_handler()
        if inspect.isawaitable(result):
            await result

    async def sign_out(self) -> None:
        if self._sign_out_handler is not None:
            result = self._sign_out_handler()
            if inspect.isawaitable(result):
                await result
        self._publish(None)


class RemoteIdentityProvider(IdentityProvider):
    """
    Firebase Auth REST identity provider.

    With an email and password configured, sign_in() calls
    accounts:signInWithPassword; otherwise it creates an anonymous account
    through accounts:signUp. The identity and its tokens are kept in a
    durable slot so a restart stays signed in; refresh() renews the id
    token of a restored identity.

    Usage:
        provider = RemoteIdentityProvider(api_key, path)
        await provider.sign_in()
        provider.current.id_token
    """

    ANONYMOUS_NAME = "Guest Reader"

    def __init__(
        self,
        api_key: str,
        path: Optional[str] = None,
        email: str = "",
        password: str = "",
        auth_url: str = "https://identitytoolkit.googleapis.com/v1",
        token_url: str = "https://securetoken.googleapis.com/v1",
        timeout: int = 15,
    ) -> None:
        super().__init__()
        self.api_key = api_key
        self.path = Path(path or Config.REMOTE_IDENTITY_FILE)
        self.email = email
        self.password = password
        self.auth_url = auth_url.rstrip("/")
        self.token_url = token_url.rstrip("/")
        self.timeout = timeout
        self._refresh_token: Optional[str] = None
        self._session: Optional[aiohttp.ClientSession] = None
        self._session_lock: Optional[asyncio.Lock] = None
        self._current = self._load()

    def _load(self) -> Optional[Identity]:
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            identity = replace(Identity.from_dict(data), id_token=data.get("idToken"))
        except (json.JSONDecodeError, KeyError, TypeError, AttributeError, OSError) as e:
            logger.warning("Ignoring unreadable identity slot %s: %s", self.path, e)
            return None
        self._refresh_token = data.get("refreshToken")
        return identity

    async def _store(self, identity: Identity) -> None:
        data = identity.to_dict()
        data["idToken"] = identity.id_token
        data["refreshToken"] = self._refresh_token
        await _write_slot(self.path, data)

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

    async def _post(
        self,
        url: str,
        payload: Optional[Dict[str, Any]] = None,
        form: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Issue one auth request; every failure becomes AuthenticationFailure."""
        session = await self._get_session()
        try:
            async with session.post(url, params={"key": self.api_key}, json=payload, data=form) as response:
                body = await response.json(content_type=None)
                if response.status != 200:
                    error = body.get("error", {}) if isinstance(body, dict) else {}
                    message = error.get("message") if isinstance(error, dict) else None
                    raise AuthenticationFailure(f"Sign-in refused ({response.status}): {message or body}")
        except asyncio.TimeoutError as e:
            raise AuthenticationFailure("Sign-in service timed out") from e
        except aiohttp.ClientError as e:
            raise AuthenticationFailure(f"Sign-in service unreachable: {e}") from e
        except ValueError as e:
            raise AuthenticationFailure(f"Sign-in service sent an unreadable reply: {e}") from e

        if not isinstance(body, dict):
            raise AuthenticationFailure("Sign-in service sent an unexpected reply")
        return body

    async def sign_in(self) -> None:
        """
        Sign in and publish the remote identity.

        Raises:
            AuthenticationFailure: If the service refuses or cannot be reached
        """
        if self.email and self.password:
            body = await self._post(
                f"{self.auth_url}/accounts:signInWithPassword",
                {"email": self.email, "password": self.password, "returnSecureToken": True},
            )
        else:
            body = await self._post(f"{self.auth_url}/accounts:signUp", {"returnSecureToken": True})

        try:
            identity = Identity(
                uid=str(body["localId"]),
                display_name=str(body.get("displayName") or body.get("email") or self.ANONYMOUS_NAME),
                email=str(body.get("email") or ""),
                id_token=str(body["idToken"]),
            )
        except KeyError as e:
            raise AuthenticationFailure(f"Sign-in reply is missing {e}") from e
        self._refresh_token = body.get("refreshToken")

        await self._store(identity)
        logger.info("Signed in as remote identity %s", identity.uid)
        self._publish(identity)

    async def refresh(self) -> None:
        """Exchange the stored refresh token for a new id token; failures keep the old one."""
        if self._current is None or not self._refresh_token:
            return
        try:
            body = await self._post(
                f"{self.token_url}/token",
                form={"grant_type": "refresh_token", "refresh_token": self._refresh_token},
            )
        except AuthenticationFailure as e:
            logger.warning("Could not renew sign-in for %s: %s", self._current.uid, e)
            return
        if not body.get("id_token"):
            logger.warning("Token renewal for %s returned no id token", self._current.uid)
            return

        self._refresh_token = body.get("refresh_token") or self._refresh_token
        identity = replace(self._current, id_token=str(body["id_token"]))
        await self._store(identity)
        logger.debug("Renewed id token for %s", identity.uid)
        self._publish(identity)

    async def sign_out(self) -> None:
        """Forget the tokens and clear the durable slot."""
        if self.path.exists():
            os.remove(self.path)
        self._refresh_token = None
        logger.info("Signed out remote identity")
        self._publish(None)
