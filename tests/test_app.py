import asyncio
from pathlib import Path

from aiohttp import test_utils

import read_chapter
from fakes import FakeFirebase
from koine_reader import ReaderApp
from koine_reader.config import Config, SettingsManager
from koine_reader.models import RemoteId
from koine_reader.services import (
    AnnotationStore,
    ChapterStatus,
    FetchFailure,
    LocalAnnotationBackend,
    LocalIdentityProvider,
    SelectionStatus,
    ViewMode,
)
from koine_reader.services.session import CHAPTER_ERROR_MESSAGE


def test_app_starts_at_remembered_position(scripture, identities, local_store, settings):
    settings.set("START_BOOK", "Mark")
    settings.set("START_CHAPTER", 4)
    app = ReaderApp(scripture, local_store, identities, settings)

    asyncio.run(app.start())

    assert scripture.chapter_calls == [("Mark", 4)]
    assert app.session.snapshot.chapter_status is ChapterStatus.CHAPTER_READY


def test_explicit_position_wins_over_remembered(scripture, identities, local_store, settings):
    settings.set("START_BOOK", "Mark")
    app = ReaderApp(scripture, local_store, identities, settings, book="Romans", chapter=2)

    asyncio.run(app.start())

    assert scripture.chapter_calls == [("Romans", 2)]


def test_app_remembers_last_ready_chapter_and_view_mode(tmp_path: Path, scripture, identities, local_store, settings):
    scripture.chapter_errors[("John", 5)] = FetchFailure("offline")
    app = ReaderApp(scripture, local_store, identities, settings)

    async def scenario():
        await app.start()
        await app.session.set_chapter(3)
        await app.session.set_chapter(5)
        app.session.set_view_mode(ViewMode.GREEK)
        await app.close()

    asyncio.run(scenario())
    SettingsManager.reset_instance()
    reloaded = SettingsManager(str(tmp_path / "settings.json"))

    assert reloaded.get("START_BOOK") == "John"
    assert reloaded.get("START_CHAPTER") == 3
    assert reloaded.get("VIEW_MODE") == "GREEK"


def test_unknown_view_mode_setting_falls_back(scripture, identities, local_store, settings):
    settings.set("VIEW_MODE", "SIDEWAYS")

    app = ReaderApp(scripture, local_store, identities, settings)

    assert app.session.snapshot.view_mode is ViewMode.PARALLEL


def test_create_builds_local_store_when_remote_is_not_configured(tmp_path: Path, scripture, identities, settings):
    class _Config(Config):
        FIREBASE_API_KEY = ""
        FLASHCARDS_FILE = str(tmp_path / "flashcards.json")

    app = asyncio.run(ReaderApp.create(_Config, scripture=scripture, identity_provider=identities, settings=settings))

    assert app.store.remote_enabled is False
    assert app.flashcards.count == 0


def test_demo_mode_app_uses_local_identities(tmp_path: Path, scripture, settings):
    class _Config(Config):
        FIREBASE_API_KEY = ""
        FLASHCARDS_FILE = str(tmp_path / "flashcards.json")
        IDENTITY_FILE = str(tmp_path / "identity.json")

    async def scenario():
        async with await ReaderApp.create(_Config, scripture=scripture, settings=settings) as app:
            await app.start()
            await app.session.sign_in()
            return app.identity_provider, app.session.snapshot.identity

    provider, identity = asyncio.run(scenario())

    assert isinstance(provider, LocalIdentityProvider)
    assert identity.is_local is True


def test_remote_configured_app_saves_and_deletes_remotely(tmp_path: Path, scripture, settings):
    fake = FakeFirebase()

    async def scenario():
        server = test_utils.TestServer(fake.application())
        await server.start_server()
        url = str(server.make_url("")).rstrip("/")

        class _Config(Config):
            FIREBASE_API_KEY = "test-key"
            FIREBASE_PROJECT_ID = "demo-project"
            FIRESTORE_BASE_URL = url
            FIREBASE_AUTH_URL = url
            FIREBASE_TOKEN_URL = url
            FIREBASE_EMAIL = ""
            FIREBASE_PASSWORD = ""
            STORE_TIMEOUT = 5
            FLASHCARDS_FILE = str(tmp_path / "flashcards.json")
            REMOTE_IDENTITY_FILE = str(tmp_path / "remote_identity.json")

        try:
            async with await ReaderApp.create(_Config, scripture=scripture, settings=settings) as app:
                await app.start()
                await app.session.sign_in()
                await app.session.select_word("λόγος,", 1)
                await app.session.save()
                snapshot = app.session.snapshot
                listed = await app.flashcards.list_for(snapshot.identity)
                await app.flashcards.delete(snapshot.saved_card.id)
                return app.store.remote_enabled, snapshot, listed, app.flashcards.count
        finally:
            await server.close()

    remote_enabled, snapshot, listed, remaining = asyncio.run(scenario())

    assert remote_enabled is True
    assert snapshot.identity.uid == "firebase-uid-1"
    assert snapshot.selection_status is SelectionStatus.SAVED
    assert snapshot.saved_card.id == RemoteId("doc1")
    assert [card.id for card in listed] == [RemoteId("doc1")]
    assert remaining == 0
    assert fake.documents == {}
    assert ("DELETE", f"{FakeFirebase.DOCUMENTS}/flashcards/doc1", {"key": "test-key"}, "Bearer token-1") in fake.requests
    assert not (tmp_path / "flashcards.json").exists()


def _patch_app(monkeypatch, tmp_path, scripture, settings):
    async def create(book=None, chapter=None, **_kwargs):
        store = AnnotationStore(LocalAnnotationBackend(str(tmp_path / "flashcards.json")))
        identities = LocalIdentityProvider(str(tmp_path / "identity.json"))
        return ReaderApp(scripture, store, identities, settings, book=book, chapter=chapter)

    monkeypatch.setattr(read_chapter.ReaderApp, "create", staticmethod(create))
    monkeypatch.setattr(read_chapter, "setup_logger", lambda: None)


def test_cli_reads_saves_lists_and_exports(tmp_path: Path, monkeypatch, capsys, scripture, settings):
    _patch_app(monkeypatch, tmp_path, scripture, settings)
    csv_path = tmp_path / "cards.csv"

    ok = asyncio.run(
        read_chapter.main(
            ["John", "1", "--login", "--word", "λόγος,", "--verse", "1", "--save", "--list", "--export-csv", str(csv_path)]
        )
    )

    out = capsys.readouterr().out
    assert ok is True
    assert "=== John 1 ===" in out
    assert "[OK] Saved flashcard local-1" in out
    assert "1 flashcard(s)" in out
    assert csv_path.exists()


def test_cli_save_signs_in_on_first_attempt(tmp_path: Path, monkeypatch, capsys, scripture, settings):
    _patch_app(monkeypatch, tmp_path, scripture, settings)

    ok = asyncio.run(read_chapter.main(["John", "1", "--word", "θεόν", "--verse", "1", "--save"]))

    assert ok is True
    assert "[OK] Saved flashcard local-1" in capsys.readouterr().out


def test_cli_reports_failed_chapter(tmp_path: Path, monkeypatch, capsys, scripture, settings):
    _patch_app(monkeypatch, tmp_path, scripture, settings)
    scripture.chapter_errors[("John", 1)] = FetchFailure("offline")

    ok = asyncio.run(read_chapter.main(["John", "1"]))

    assert ok is False
    assert CHAPTER_ERROR_MESSAGE in capsys.readouterr().out


def test_cli_listing_needs_identity(tmp_path: Path, monkeypatch, capsys, scripture, settings):
    _patch_app(monkeypatch, tmp_path, scripture, settings)

    ok = asyncio.run(read_chapter.main(["John", "1", "--list"]))

    assert ok is False
    assert "Sign in" in capsys.readouterr().out
