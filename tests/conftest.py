from urllib.parse import urlsplit

import pytest

from manga_sync.api.base import APIError
from manga_sync.api.mangadex import AtHomeServer, ChapterRecord, MangaRecord
from manga_sync.config import ImportConfig
from manga_sync.db.database import Database


@pytest.fixture
def database():
    db = Database("sqlite://")
    db.create_all()
    yield db
    db.close()


@pytest.fixture
def config():
    return ImportConfig(database_url="sqlite://", request_delay_ms=1000, max_retries=3)


class Sleeper:
    """Records requested waits instead of sleeping."""

    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def sleeper():
    return Sleeper()


def manga_record(source_id, title=None, **kwargs):
    return MangaRecord(source_id=source_id, title=title or f"Title {source_id}", **kwargs)


def chapter_record(source_id, number, title=None, pages=3):
    return ChapterRecord(source_id=source_id, chapter_number=number, title=title, published_at=None, pages=pages)


def at_home(chapter_id, count=3, base_url="https://node.mangadex.network"):
    return AtHomeServer(
        base_url=base_url,
        chapter_hash="a" * 32,
        filenames=[f"{chapter_id}-{i}.png" for i in range(1, count + 1)],
        saver_filenames=[f"{chapter_id}-{i}.jpg" for i in range(1, count + 1)],
    )


class FakeMangaDexClient:
    """In-memory stand-in for MangaDexClient."""

    def __init__(self, manga=None, chapters=None, page_counts=None):
        self.manga = list(manga or [])
        self.chapters = dict(chapters or {})
        self.page_counts = dict(page_counts or {})
        self.popular_errors = []
        self.chapter_errors = {}
        self.page_errors = {}
        self.calls = []

    def fetch_popular_manga(self, limit=100, offset=0):
        self.calls.append(("popular", limit))
        if self.popular_errors:
            raise self.popular_errors.pop(0)
        return list(self.manga[:limit])

    def search_manga(self, query, limit=20, offset=0):
        self.calls.append(("search", query))
        return [m for m in self.manga if query.lower() in m.title.lower()][:limit]

    def fetch_chapters(self, manga_id, limit=100, offset=0):
        self.calls.append(("chapters", manga_id))
        if manga_id in self.chapter_errors:
            raise self.chapter_errors[manga_id]
        return list(self.chapters.get(manga_id, []))[:limit]

    def get_at_home_server(self, chapter_id):
        self.calls.append(("at_home", chapter_id))
        if chapter_id in self.page_errors:
            raise self.page_errors[chapter_id]
        return at_home(chapter_id, self.page_counts.get(chapter_id, 3))

    def fetch_chapter_pages(self, chapter_id):
        return self.get_at_home_server(chapter_id).page_urls("data-saver")

    def close(self):
        pass


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text="", headers=None, chunks=None):
        self.status_code = status_code
        self._payload = payload
        self.text = text
        self.headers = headers or {}
        self._chunks = chunks or []
        self.closed = False

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload

    def iter_content(self, chunk_size=1):
        return iter(self._chunks)

    def close(self):
        self.closed = True


class FakeSession:
    """requests.Session stand-in routing on URL path."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.headers = {}
        self.requests = []
        self.closed = False

    def request(self, method, url, **kwargs):
        path = urlsplit(url).path
        self.requests.append((method, path, kwargs))
        response = self.routes.get(path)
        if response is None:
            return FakeResponse(404, {"result": "error", "errors": [{"title": "Not Found"}]})
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url, **kwargs):
        return self.request("GET", url, **kwargs)

    def close(self):
        self.closed = True


def rate_limited():
    return APIError("Too Many Requests", status_code=429)


def server_error():
    return APIError("Service Unavailable", status_code=503)
