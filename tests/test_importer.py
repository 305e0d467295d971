import pytest

from manga_sync.api.mangadex import MangaDexClient, PageRecord
from manga_sync.db.models import Chapter, ImportRun, Manga
from manga_sync.sync.importer import MangaImporter, chapter_label
from manga_sync.sync.models import ImportState, RunControl
from manga_sync.sync.retry import RetryExhaustedError

from conftest import (
    FakeMangaDexClient,
    FakeResponse,
    FakeSession,
    chapter_record,
    manga_record,
    rate_limited,
    server_error,
)


def _counts(database):
    with database.session() as session:
        return session.query(Manga).count(), session.query(Chapter).count()


def _chapter(database, source_id):
    with database.session() as session:
        return session.query(Chapter).filter(Chapter.source_id == source_id).one()


def _manga(database, source_id):
    with database.session() as session:
        return session.query(Manga).filter(Manga.source_id == source_id).one()


def test_end_to_end_import_skips_chapters_without_pages(database, config, sleeper):
    manga_payload = {
        "id": "m-1",
        "attributes": {
            "title": {"en": "Solo Title"},
            "altTitles": [],
            "description": {"en": "desc"},
            "status": "completed",
            "year": 2020,
            "tags": [],
            "lastChapter": "40",
        },
        "relationships": [],
    }
    feed = {"data": [
        {"id": "ch-empty", "attributes": {"chapter": "1", "pages": 0}},
        {"id": "ch-full", "attributes": {"chapter": "2", "pages": 3, "publishAt": "2024-05-01T00:00:00+00:00"}},
    ]}
    at_home = {
        "baseUrl": "https://node.mangadex.network",
        "chapter": {"hash": "b" * 32, "data": ["1.png", "2.png", "3.png"], "dataSaver": ["1.jpg", "2.jpg", "3.jpg"]},
    }
    session = FakeSession({
        "/manga": FakeResponse(200, {"data": [manga_payload]}),
        "/manga/m-1/feed": FakeResponse(200, feed),
        "/at-home/server/ch-full": FakeResponse(200, at_home),
    })
    importer = MangaImporter(MangaDexClient(session=session), database, config, sleep=sleeper)

    result = importer.run()

    assert result.status == "completed"
    assert _counts(database) == (1, 1)
    manga = _manga(database, "m-1")
    assert manga.total_chapters == 1
    assert manga.status == "Completed"
    assert manga.last_imported_at is not None
    chapter = _chapter(database, "ch-full")
    assert chapter.manga_id == manga.id
    assert chapter.chapter_number == 2.0
    assert [p["imageUrl"].rsplit("/", 1)[1] for p in chapter.pages] == ["1.jpg", "2.jpg", "3.jpg"]
    assert [p["index"] for p in chapter.pages] == [0, 1, 2]
    assert importer.state == ImportState.IDLE


def test_import_twice_creates_no_duplicates(database, config, sleeper):
    client = FakeMangaDexClient(
        manga=[manga_record("m-1"), manga_record("m-2")],
        chapters={
            "m-1": [chapter_record("c-1", 1), chapter_record("c-2", 2)],
            "m-2": [chapter_record("c-3", 1)],
        },
    )
    importer = MangaImporter(client, database, config, sleep=sleeper)

    first = importer.run()
    counts_after_first = _counts(database)
    second = importer.run()

    assert counts_after_first == (2, 3)
    assert _counts(database) == (2, 3)
    assert first.chapters_imported == 3
    assert second.chapters_imported == 0
    assert second.chapters_skipped == 3
    assert _manga(database, "m-1").total_chapters == 2


def test_existing_chapters_are_never_rewritten(database, config, sleeper):
    client = FakeMangaDexClient(
        manga=[manga_record("m-1")],
        chapters={"m-1": [chapter_record("c-1", 1, title="Original")]},
        page_counts={"c-1": 2},
    )
    importer = MangaImporter(client, database, config, sleep=sleeper)
    importer.run()
    before = _chapter(database, "c-1")

    client.chapters["m-1"] = [chapter_record("c-1", 7, title="Edited")]
    client.page_counts["c-1"] = 9
    importer.run()

    after = _chapter(database, "c-1")
    assert after.title == "Original"
    assert after.chapter_number == 1
    assert after.pages == before.pages
    assert ("at_home", "c-1") in client.calls
    assert client.calls.count(("at_home", "c-1")) == 1


def test_failing_title_does_not_stop_the_run(database, config, sleeper):
    client = FakeMangaDexClient(
        manga=[manga_record(f"m-{i}") for i in range(1, 5)],
        chapters={f"m-{i}": [chapter_record(f"c-{i}", 1)] for i in range(1, 5)},
    )
    client.chapter_errors["m-2"] = server_error()
    importer = MangaImporter(client, database, config, sleep=sleeper)

    result = importer.run()

    assert result.status == "completed"
    assert result.titles_processed == 4
    assert result.titles_failed == 1
    assert result.failures[0].source_id == "m-2"
    assert client.calls.count(("chapters", "m-2")) == 3
    with database.session() as session:
        imported = {c.source_id for c in session.query(Chapter).all()}
    assert imported == {"c-1", "c-3", "c-4"}


def test_failing_chapter_pages_skip_only_that_chapter(database, config, sleeper):
    client = FakeMangaDexClient(
        manga=[manga_record("m-1")],
        chapters={"m-1": [chapter_record("c-1", 1), chapter_record("c-2", 2), chapter_record("c-3", 3)]},
    )
    client.page_errors["c-2"] = rate_limited()
    importer = MangaImporter(client, database, config, sleep=sleeper)

    result = importer.run()

    assert result.chapters_imported == 2
    assert result.chapters_failed == 1
    assert result.failures[0].label == "Title m-1 ch.2"
    assert _manga(database, "m-1").total_chapters == 2
    assert 60 in sleeper.calls and 120 in sleeper.calls


def test_popular_fetch_failure_aborts_run(database, config, sleeper):
    client = FakeMangaDexClient(manga=[manga_record("m-1")])
    client.popular_errors = [server_error(), server_error(), server_error()]
    importer = MangaImporter(client, database, config, sleep=sleeper)

    with pytest.raises(RetryExhaustedError) as exc_info:
        importer.run(run_id="fatal01")

    assert exc_info.value.label == "fetchPopularManga"
    assert _counts(database) == (0, 0)
    with database.session() as session:
        run = session.query(ImportRun).filter(ImportRun.run_id == "fatal01").one()
        assert run.status == "failed"
        assert "fetchPopularManga" in run.error_message
        assert run.completed_at is not None


def test_popular_fetch_recovers_from_rate_limit(database, config, sleeper):
    client = FakeMangaDexClient(manga=[manga_record("m-1")], chapters={"m-1": []})
    client.popular_errors = [rate_limited()]
    importer = MangaImporter(client, database, config, sleep=sleeper)

    result = importer.run()

    assert result.status == "completed"
    assert sleeper.calls[0] == 60


def test_calls_are_paced_with_request_delay(database, config, sleeper):
    client = FakeMangaDexClient(
        manga=[manga_record("m-1")],
        chapters={"m-1": [chapter_record("c-1", 1), chapter_record("c-2", 2)]},
    )
    importer = MangaImporter(client, database, config, sleep=sleeper)

    importer.run()

    # One delay before the chapter feed, one before each page fetch
    assert sleeper.calls == [1.0, 1.0, 1.0]


def test_import_limits_are_passed_to_client(database, config, sleeper):
    config = config.model_copy(update={"import_limit": 1, "chapters_per_manga": 1})
    client = FakeMangaDexClient(
        manga=[manga_record("m-1"), manga_record("m-2")],
        chapters={"m-1": [chapter_record("c-1", 1), chapter_record("c-2", 2)]},
    )
    importer = MangaImporter(client, database, config, sleep=sleeper)

    result = importer.run()

    assert client.calls[0] == ("popular", 1)
    assert result.titles_processed == 1
    assert _counts(database) == (1, 1)


def test_upsert_refreshes_fields_and_keeps_missing_ones(database, config):
    importer = MangaImporter(FakeMangaDexClient(), database, config)

    first_id = importer.upsert_manga(manga_record("m-1", "Old", year=2001, author="A"))
    first_seen = _manga(database, "m-1").last_imported_at
    second_id = importer.upsert_manga(manga_record("m-1", "New", year=None, author="B"))

    manga = _manga(database, "m-1")
    assert first_id == second_id
    assert manga.title == "New"
    assert manga.author == "B"
    assert manga.year == 2001
    assert manga.last_imported_at >= first_seen
    assert _counts(database) == (1, 0)


def test_duplicate_chapter_insert_is_benign(database, config):
    importer = MangaImporter(FakeMangaDexClient(), database, config)
    manga_id = importer.upsert_manga(manga_record("m-1"))
    pages = [PageRecord(0, "https://node.mangadex.network/data-saver/x/1.jpg")]

    assert importer.insert_chapter(manga_id, chapter_record("c-1", 1), pages) is True
    assert importer.insert_chapter(manga_id, chapter_record("c-1", 1), pages) is False
    assert _counts(database) == (1, 1)


def test_cancelled_run_stops_before_next_title(database, config, sleeper):
    client = FakeMangaDexClient(manga=[manga_record("m-1")], chapters={"m-1": []})
    control = RunControl()
    control.cancel()
    importer = MangaImporter(client, database, config, sleep=sleeper)

    result = importer.run(run_id="cancel01", control=control)

    assert result.status == "cancelled"
    assert result.titles_processed == 0
    with database.session() as session:
        assert session.query(ImportRun).filter(ImportRun.run_id == "cancel01").one().status == "cancelled"


def test_deadline_cancels_run_during_pacing(database, config):
    now = [0.0]
    control = RunControl(timeout_seconds=10, clock=lambda: now[0])

    def advancing_sleep(seconds):
        now[0] += 30
        control.check()

    client = FakeMangaDexClient(
        manga=[manga_record("m-1"), manga_record("m-2")],
        chapters={"m-1": [chapter_record("c-1", 1)]},
    )
    importer = MangaImporter(client, database, config, sleep=advancing_sleep)

    result = importer.run(control=control)

    assert result.status == "cancelled"
    assert "deadline" in result.error_message
    assert ("chapters", "m-2") not in client.calls


def test_rating_is_clamped_and_creators_default_to_unknown(database):
    with database.session() as session:
        session.add(Manga(source_id="m-x", title="X", rating=42, author=None, artist=""))

    manga = _manga(database, "m-x")
    assert manga.rating == 10.0
    assert manga.author == "Unknown"
    assert manga.artist == "Unknown"


def test_chapter_label_formats_side_chapters():
    assert chapter_label("Berserk", 10.5) == "Berserk ch.10.5"
    assert chapter_label("Berserk", 3.0) == "Berserk ch.3"
