"""
Catalog import job for Manga Sync Service.

Pulls the most followed MangaDex titles, upserts them into the catalog,
and inserts chapters that have not been seen before together with a page
snapshot.
"""

from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from manga_sync.api.mangadex import MangaDexClient, MangaRecord, ChapterRecord, PageRecord
from manga_sync.config import ImportConfig
from manga_sync.db.models import Manga, Chapter, ImportRun
from manga_sync.sync.models import (
    ImportCancelled,
    ImportRunResult,
    ImportState,
    RunControl,
    TitleFailure,
    new_run_id,
)
from manga_sync.sync.retry import with_retry
from manga_sync.utils.logging import get_logger, ImportLogger

logger = get_logger(__name__)


def chapter_label(title: str, chapter_number: float) -> str:
    return f"{title} ch.{chapter_number:g}"


class MangaImporter:
    """
    Runs one catalog import at a time.

    Titles and chapters are processed sequentially with a fixed delay
    between MangaDex calls. A failure inside one title or chapter is logged
    and skipped; only a failure to fetch the popular list aborts the run.
    """

    def __init__(
        self,
        client: MangaDexClient,
        database,
        config: ImportConfig,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        """
        Initialize importer.

        Args:
            client: MangaDex client
            database: Database holding the catalog
            config: Import configuration
            sleep: Wait function for pacing and backoff (defaults to the run's control)
        """
        self.client = client
        self.database = database
        self.config = config
        self._sleep = sleep
        self.state = ImportState.IDLE

    def run(
        self,
        run_id: Optional[str] = None,
        control: Optional[RunControl] = None,
        trigger: str = "scheduled",
    ) -> ImportRunResult:
        """
        Run a full import.

        Args:
            run_id: Optional run ID (auto-generated if not provided)
            control: Cancellation and deadline for this run
            trigger: What started the run (scheduled, manual)

        Returns:
            ImportRunResult; status is completed or cancelled

        Raises:
            Exception: The popular-titles fetch failure, after the run is recorded as failed
        """
        run_id = run_id or new_run_id()
        control = control or RunControl(self.config.run_timeout_seconds)
        run_logger = ImportLogger(run_id)
        wait = self._sleep or control.sleep

        result = ImportRunResult(run_id=run_id, started_at=datetime.utcnow())
        self._create_run_record(result, trigger)
        run_logger.info("Starting import run", trigger=trigger, limit=self.config.import_limit)

        try:
            self.state = ImportState.FETCHING_CATALOG
            manga_list = with_retry(
                lambda: self.client.fetch_popular_manga(self.config.import_limit),
                "fetchPopularManga",
                self.config.max_retries,
                sleep=wait,
            )
            result.titles_fetched = len(manga_list)
            run_logger.info("Fetched popular manga", count=len(manga_list))

            for record in manga_list:
                control.check()
                self._import_title(record, result, control, wait, run_logger)

            result.status = "completed"
            run_logger.info(
                "Import run completed",
                titles=result.titles_processed,
                titles_failed=result.titles_failed,
                chapters_imported=result.chapters_imported,
                chapters_skipped=result.chapters_skipped,
                chapters_failed=result.chapters_failed,
            )

        except ImportCancelled as e:
            result.status = "cancelled"
            result.error_message = str(e)
            run_logger.warning("Import run cancelled", reason=str(e))

        except Exception as e:
            result.status = "failed"
            result.error_message = str(e)
            run_logger.exception("Import run failed", error=str(e))
            raise

        finally:
            self.state = ImportState.IDLE
            result.completed_at = datetime.utcnow()
            self._finish_run_record(result)

        return result

    def _import_title(
        self,
        record: MangaRecord,
        result: ImportRunResult,
        control: RunControl,
        wait: Callable[[float], None],
        run_logger: ImportLogger,
    ) -> None:
        """Reconcile one title and its new chapters; failures stay inside the title."""
        self.state = ImportState.RECONCILING_TITLE
        result.titles_processed += 1

        try:
            manga_id = self.upsert_manga(record)

            wait(self.config.request_delay_seconds)

            self.state = ImportState.RECONCILING_CHAPTERS
            chapters = with_retry(
                lambda: self.client.fetch_chapters(record.source_id, self.config.chapters_per_manga),
                record.title,
                self.config.max_retries,
                sleep=wait,
            )
            run_logger.info("Fetched chapters", title=record.title, count=len(chapters))

            for chapter in chapters:
                control.check()
                self._import_chapter(manga_id, record, chapter, result, wait, run_logger)

            total = self.refresh_total_chapters(manga_id)
            run_logger.debug("Updated chapter count", title=record.title, total_chapters=total)

        except ImportCancelled:
            raise

        except Exception as e:
            result.titles_failed += 1
            result.failures.append(TitleFailure(record.source_id, record.title, str(e)))
            run_logger.error("Skipping title after failure", title=record.title, source_id=record.source_id, error=str(e))

    def _import_chapter(
        self,
        manga_id: int,
        record: MangaRecord,
        chapter: ChapterRecord,
        result: ImportRunResult,
        wait: Callable[[float], None],
        run_logger: ImportLogger,
    ) -> None:
        """Insert a chapter the catalog has not seen; existing chapters are left untouched."""
        if self.chapter_exists(chapter.source_id):
            result.chapters_skipped += 1
            return

        wait(self.config.request_delay_seconds)

        self.state = ImportState.FETCHING_CHAPTER_PAGES
        label = chapter_label(record.title, chapter.chapter_number)
        try:
            pages = with_retry(
                lambda: self.client.fetch_chapter_pages(chapter.source_id),
                label,
                self.config.max_retries,
                sleep=wait,
            )
        except ImportCancelled:
            raise
        except Exception as e:
            result.chapters_failed += 1
            result.failures.append(TitleFailure(chapter.source_id, label, str(e)))
            run_logger.error("Skipping chapter after failure", chapter=label, source_id=chapter.source_id, error=str(e))
            return

        if self.insert_chapter(manga_id, chapter, pages):
            result.chapters_imported += 1
            run_logger.info("Chapter imported", chapter=label, pages=len(pages))
        else:
            result.chapters_skipped += 1
            run_logger.info("Chapter already imported", chapter=label)

    def upsert_manga(self, record: MangaRecord) -> int:
        """
        Insert or update a title keyed by its MangaDex ID.

        Fields missing from the record keep their stored (or default) values.

        Returns:
            Internal manga ID
        """
        values = {
            "source": record.source,
            "title": record.title,
            "alternative_titles": record.alternative_titles,
            "author": record.author,
            "artist": record.artist,
            "description": record.description,
            "genre": record.genre,
            "status": record.status,
            "cover_image": record.cover_image,
            "year": record.year,
        }
        values = {key: value for key, value in values.items() if value is not None}

        try:
            return self._write_manga(record.source_id, values)
        except IntegrityError:
            # Another run inserted the same title first; update theirs
            logger.debug("Manga inserted concurrently, updating", source_id=record.source_id)
            return self._write_manga(record.source_id, values)

    def _write_manga(self, source_id: str, values: dict) -> int:
        with self.database.session() as session:
            manga = session.query(Manga).filter(Manga.source_id == source_id).first()
            if manga is None:
                manga = Manga(source_id=source_id, **values)
                session.add(manga)
            else:
                for key, value in values.items():
                    setattr(manga, key, value)
            manga.last_imported_at = datetime.utcnow()
            session.flush()
            return manga.id

    def chapter_exists(self, source_id: str) -> bool:
        with self.database.session() as session:
            return session.query(Chapter.id).filter(Chapter.source_id == source_id).first() is not None

    def insert_chapter(self, manga_id: int, chapter: ChapterRecord, pages: List[PageRecord]) -> bool:
        """
        Insert a new chapter.

        Returns:
            False if a chapter with the same MangaDex ID already exists
        """
        try:
            with self.database.session() as session:
                session.add(Chapter(
                    manga_id=manga_id,
                    source_id=chapter.source_id,
                    chapter_number=chapter.chapter_number,
                    title=chapter.title,
                    published_at=chapter.published_at,
                    pages=[page.to_dict() for page in pages],
                ))
        except IntegrityError:
            return False
        return True

    def refresh_total_chapters(self, manga_id: int) -> int:
        """Store the number of imported chapters on the title."""
        with self.database.session() as session:
            count = session.query(func.count(Chapter.id)).filter(Chapter.manga_id == manga_id).scalar() or 0
            manga = session.get(Manga, manga_id)
            if manga is not None:
                manga.total_chapters = count
            return count

    def _create_run_record(self, result: ImportRunResult, trigger: str) -> None:
        with self.database.session() as session:
            session.add(ImportRun(
                run_id=result.run_id,
                trigger=trigger,
                started_at=result.started_at,
                status="running",
            ))

    def _finish_run_record(self, result: ImportRunResult) -> None:
        try:
            with self.database.session() as session:
                run = session.query(ImportRun).filter(ImportRun.run_id == result.run_id).first()
                if run is None:
                    return
                run.completed_at = result.completed_at
                run.status = result.status
                run.titles_processed = result.titles_processed
                run.titles_failed = result.titles_failed
                run.chapters_imported = result.chapters_imported
                run.chapters_skipped = result.chapters_skipped
                run.chapters_failed = result.chapters_failed
                run.error_message = result.error_message
        except Exception as e:
            logger.error("Failed to save import run", run_id=result.run_id, error=str(e))
