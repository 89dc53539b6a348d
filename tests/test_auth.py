import asyncio
import json
from pathlib import Path

import pytest
from aiohttp import test_utils

from fakes import FakeFirebase
from koine_reader.models import Identity
from koine_reader.services import (
    AuthenticationFailure,
    ExternalIdentityProvider,
    LocalIdentityProvider,
    RemoteIdentityProvider,
)


def test_local_sign_in_mints_demo_identity_and_persists(tmp_path: Path):
    path = tmp_path / "identity.json"
    provider = LocalIdentityProvider(str(path), clock=lambda: 1700000012345)
    seen = []
    provider.subscribe(seen.append)

    asyncio.run(provider.sign_in())

    identity = provider.current
    assert identity.uid == "local-user-2345"
    assert identity.is_local is True
    assert identity.display_name == "Demo User"
    assert identity.email == "demo@example.com"
    assert seen == [None, identity]
    assert json.loads(path.read_text(encoding="utf-8"))["uid"] == "local-user-2345"


def test_local_identity_survives_restart(tmp_path: Path):
    path = tmp_path / "identity.json"
    asyncio.run(LocalIdentityProvider(str(path), clock=lambda: 42).sign_in())

    restored = LocalIdentityProvider(str(path))

    assert restored.current == Identity(uid="local-user-42", display_name="Demo User", email="demo@example.com")


def test_local_sign_out_clears_slot(tmp_path: Path):
    path = tmp_path / "identity.json"
    provider = LocalIdentityProvider(str(path))
    asyncio.run(provider.sign_in())
    seen = []
    provider.subscribe(seen.append)

    asyncio.run(provider.sign_out())

    assert provider.current is None
    assert not path.exists()
    assert seen[-1] is None
    assert LocalIdentityProvider(str(path)).current is None


def test_unreadable_identity_slot_means_signed_out(tmp_path: Path):
    path = tmp_path / "identity.json"
    path.write_text("garbage", encoding="utf-8")

    assert LocalIdentityProvider(str(path)).current is None


def test_external_provider_publishes_outside_results():
    started = []

    async def start_flow():
        started.append(True)

    provider = ExternalIdentityProvider(sign_in_handler=start_flow)
    seen = []
    provider.subscribe(seen.append)

    asyncio.run(provider.sign_in())
    assert provider.current is None

    identity = Identity(uid="firebase-uid-1", display_name="Lydia", id_token="jwt")
    provider.set_identity(identity)
    asyncio.run(provider.sign_out())

    assert started == [True]
    assert seen == [None, identity, None]
    assert identity.is_local is False


def test_failing_subscriber_does_not_block_others():
    provider = ExternalIdentityProvider()
    seen = []

    def broken(_identity):
        if _identity is not None:
            raise RuntimeError("listener failed")

    provider.subscribe(broken)
    provider.subscribe(seen.append)
    provider.set_identity(Identity(uid="u1"))

    assert seen == [None, Identity(uid="u1")]


def test_unsubscribe_stops_notifications():
    provider = ExternalIdentityProvider()
    seen = []
    unsubscribe = provider.subscribe(seen.append)

    unsubscribe()
    provider.set_identity(Identity(uid="u1"))

    assert seen == [None]


async def _with_auth(fake, tmp_path, body):
    server = test_utils.TestServer(fake.application())
    await server.start_server()
    url = str(server.make_url("")).rstrip("/")
    providers = []

    def make(**kwargs):
        provider = RemoteIdentityProvider(
            "test-key", str(tmp_path / "remote_identity.json"), auth_url=url, token_url=url, timeout=5, **kwargs
        )
        providers.append(provider)
        return provider

    try:
        return await body(make)
    finally:
        for provider in providers:
            await provider.close()
        await server.close()


def test_remote_anonymous_sign_in_publishes_token_identity(tmp_path: Path):
    fake = FakeFirebase()
    seen = []

    async def body(make):
        provider = make()
        provider.subscribe(seen.append)
        await provider.sign_in()
        return provider.current

    identity = asyncio.run(_with_auth(fake, tmp_path, body))

    assert identity.uid == "firebase-uid-1"
    assert identity.id_token == "token-1"
    assert identity.display_name == "Guest Reader"
    assert identity.is_local is False
    assert seen == [None, identity]
    assert fake.requests[0][:3] == ("POST", "/accounts:signUp", {"key": "test-key"})
    stored = json.loads((tmp_path / "remote_identity.json").read_text(encoding="utf-8"))
    assert (stored["uid"], stored["idToken"], stored["refreshToken"]) == ("firebase-uid-1", "token-1", "refresh-1")


def test_remote_password_sign_in(tmp_path: Path):
    async def body(make):
        provider = make(email="reader@example.com", password=FakeFirebase.PASSWORD)
        await provider.sign_in()
        return provider.current

    identity = asyncio.run(_with_auth(FakeFirebase(), tmp_path, body))

    assert identity == Identity(uid="firebase-uid-reader", display_name="Lydia", email="reader@example.com")
    assert identity.id_token == "token-pw"


def test_remote_refused_sign_in_raises_and_stays_signed_out(tmp_path: Path):
    async def body(make):
        provider = make(email="reader@example.com", password="wrong")
        with pytest.raises(AuthenticationFailure):
            await provider.sign_in()
        return provider.current

    assert asyncio.run(_with_auth(FakeFirebase(), tmp_path, body)) is None
    assert not (tmp_path / "remote_identity.json").exists()


def test_remote_identity_is_restored_and_renewed(tmp_path: Path):
    fake = FakeFirebase()

    async def body(make):
        await make().sign_in()
        restored = make()
        before = restored.current
        await restored.refresh()
        return before, restored.current

    before, after = asyncio.run(_with_auth(fake, tmp_path, body))

    assert before.uid == "firebase-uid-1"
    assert before.id_token == "token-1"
    assert after.id_token == "refresh-1-renewed"
    assert ("POST", "/token", {"key": "test-key"}, None) in fake.requests
    stored = json.loads((tmp_path / "remote_identity.json").read_text(encoding="utf-8"))
    assert stored["idToken"] == "refresh-1-renewed"


def test_failed_renewal_keeps_restored_token(tmp_path: Path):
    fake = FakeFirebase()
    fake.revoked.add("refresh-1")

    async def body(make):
        await make().sign_in()
        restored = make()
        await restored.refresh()
        return restored.current

    assert asyncio.run(_with_auth(fake, tmp_path, body)).id_token == "token-1"


def test_remote_sign_out_clears_slot(tmp_path: Path):
    async def body(make):
        provider = make()
        await provider.sign_in()
        await provider.sign_out()
        return provider.current, make().current

    assert asyncio.run(_with_auth(FakeFirebase(), tmp_path, body)) == (None, None)
    assert not (tmp_path / "remote_identity.json").exists()


def test_unreachable_sign_in_service_raises(tmp_path: Path):
    provider = RemoteIdentityProvider(
        "k", str(tmp_path / "remote_identity.json"), auth_url="http://127.0.0.1:1", timeout=2
    )

    async def scenario():
        try:
            with pytest.raises(AuthenticationFailure):
                await provider.sign_in()
        finally:
            await provider.close()

    asyncio.run(scenario())
