"""Fakes for the reader's external collaborators."""

import asyncio

from aiohttp import web

from koine_reader.models import ChapterData, Verse, WordAnalysis
from koine_reader.services.auth import IdentityProvider

JOHN_1_1 = "Ἐν ἀρχῇ ἦν ὁ λόγος, καὶ ὁ λόγος ἦν πρὸς τὸν θεόν, καὶ θεὸς ἦν ὁ λόγος."
JOHN_1_2 = "οὗτος ἦν ἐν ἀρχῇ πρὸς τὸν θεόν."


def make_chapter(book="John", chapter=1):
    return ChapterData(
        book=book,
        chapter=chapter,
        verses=(
            Verse(1, JOHN_1_1, "In the beginning was the Word, and the Word was with God, and the Word was God."),
            Verse(2, JOHN_1_2, "The same was in the beginning with God."),
        ),
    )


def make_analysis(word="λόγος"):
    return WordAnalysis(
        original=word,
        romanization="logos",
        gloss="word",
        lemma="λόγος",
        part_of_speech="Noun",
        parsing="Nominative Singular Masculine",
    )


async def settle(rounds=5):
    """Let scheduled tasks run up to their next real suspension point."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeScripture:
    """
    In-memory chapter and analysis source.

    With manual_chapters / manual_words set, each call parks on a future
    that the test resolves explicitly, in any order.
    """

    def __init__(self):
        self.manual_chapters = False
        self.manual_words = False
        self.chapter_errors = {}
        self.word_errors = {}
        self.chapter_calls = []
        self.word_calls = []
        self._pending_chapters = {}
        self._pending_words = {}

    async def fetch_chapter(self, book, chapter):
        self.chapter_calls.append((book, chapter))
        if self.manual_chapters:
            future = asyncio.get_running_loop().create_future()
            self._pending_chapters.setdefault((book, chapter), []).append(future)
            return await future
        if (book, chapter) in self.chapter_errors:
            raise self.chapter_errors[(book, chapter)]
        return make_chapter(book, chapter)

    async def analyze_word(self, word, context):
        self.word_calls.append((word, context))
        if self.manual_words:
            future = asyncio.get_running_loop().create_future()
            self._pending_words.setdefault(word, []).append(future)
            return await future
        if word in self.word_errors:
            raise self.word_errors[word]
        return make_analysis(word)

    def resolve_chapter(self, book, chapter, error=None):
        future = self._pending_chapters[(book, chapter)].pop(0)
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(make_chapter(book, chapter))

    def resolve_word(self, word, error=None):
        future = self._pending_words[word].pop(0)
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(make_analysis(word))


class FakeIdentityProvider(IdentityProvider):
    """Identity provider whose sign-in publishes a preset identity (or nothing)."""

    def __init__(self, identity=None, sign_in_identity=None):
        super().__init__()
        self._current = identity
        self.sign_in_identity = sign_in_identity
        self.sign_in_calls = 0

    async def sign_in(self):
        self.sign_in_calls += 1
        if self.sign_in_identity is not None:
            self._publish(self.sign_in_identity)

    async def sign_out(self):
        self._publish(None)


class FakeFirebase:
    """
    Firestore and Auth REST endpoints backed by dicts.

    Mount with application() on an aiohttp TestServer. Every request is
    logged as (method, path, query, Authorization header).
    """

    DOCUMENTS = "/projects/demo-project/databases/(default)/documents"
    PASSWORD = "secret"

    def __init__(self):
        self.documents = {}
        self.requests = []
        self.failing = False
        self.accounts = 0
        self.revoked = set()

    def application(self):
        app = web.Application()
        app.router.add_route("*", "/{tail:.*}", self.handle)
        return app

    async def handle(self, request):
        self.requests.append((request.method, request.path, dict(request.query), request.headers.get("Authorization")))
        if self.failing:
            return web.json_response({"error": {"status": "UNAVAILABLE"}}, status=503)
        path = request.path
        if path.startswith("/accounts:") or path == "/token":
            return await self._handle_auth(request)
        if request.method == "GET":
            return web.json_response({"error": {"status": "PERMISSION_DENIED"}}, status=403)
        if request.method == "POST" and path == f"{self.DOCUMENTS}/flashcards":
            body = await request.json()
            name = f"{self.DOCUMENTS}/flashcards/doc{len(self.documents) + 1}"
            self.documents[name] = {"name": name, "fields": body["fields"]}
            return web.json_response(self.documents[name])
        if request.method == "POST" and path == f"{self.DOCUMENTS}:runQuery":
            body = await request.json()
            uid = body["structuredQuery"]["where"]["fieldFilter"]["value"]["stringValue"]
            rows = [
                {"document": document}
                for document in self.documents.values()
                if document["fields"]["userId"]["stringValue"] == uid
            ]
            rows.sort(key=lambda row: int(row["document"]["fields"]["createdAt"]["integerValue"]), reverse=True)
            return web.json_response(rows or [{"readTime": "2024-01-01T00:00:00Z"}])
        if request.method == "DELETE":
            if request.headers.get("Authorization") is None:
                return web.json_response({"error": {"status": "PERMISSION_DENIED"}}, status=403)
            if self.documents.pop(path, None) is None:
                return web.json_response({"error": {"status": "NOT_FOUND"}}, status=404)
            return web.json_response({})
        return web.json_response({"error": "unexpected"}, status=400)

    async def _handle_auth(self, request):
        path = request.path
        if path == "/accounts:signUp":
            self.accounts += 1
            n = self.accounts
            return web.json_response(
                {"localId": f"firebase-uid-{n}", "idToken": f"token-{n}", "refreshToken": f"refresh-{n}", "expiresIn": "3600"}
            )
        if path == "/accounts:signInWithPassword":
            body = await request.json()
            if body.get("password") != self.PASSWORD:
                return web.json_response({"error": {"code": 400, "message": "INVALID_PASSWORD"}}, status=400)
            return web.json_response(
                {
                    "localId": "firebase-uid-reader",
                    "email": body["email"],
                    "displayName": "Lydia",
                    "idToken": "token-pw",
                    "refreshToken": "refresh-pw",
                }
            )
        form = await request.post()
        token = form.get("refresh_token")
        if form.get("grant_type") != "refresh_token" or token in self.revoked:
            return web.json_response({"error": {"code": 400, "message": "TOKEN_EXPIRED"}}, status=400)
        return web.json_response({"id_token": f"{token}-renewed", "refresh_token": token, "user_id": "firebase-uid-1"})
