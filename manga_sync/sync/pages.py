"""
Page resolution for chapter reads.

At-home base URLs are tied to a delivery node and expire, so page URLs are
resolved when a reader opens a chapter. The snapshot stored at import time
is only served when fresh resolution fails.
"""

from dataclasses import dataclass
from typing import List, Dict, Any

from manga_sync.api.mangadex import MangaDexClient, PageRecord
from manga_sync.db.models import Chapter
from manga_sync.utils.logging import get_logger

logger = get_logger(__name__)


class ChapterNotFoundError(Exception):
    """Raised when a chapter id is not in the catalog."""

    def __init__(self, chapter_id):
        super().__init__(f"Chapter not found: {chapter_id}")
        self.chapter_id = chapter_id


class PagesUnavailableError(Exception):
    """Raised when neither fresh pages nor a snapshot exist for a chapter."""

    def __init__(self, chapter_id, reason: str = ""):
        super().__init__(f"Pages unavailable for chapter {chapter_id}" + (f": {reason}" if reason else ""))
        self.chapter_id = chapter_id
        self.reason = reason


class PageResolver:
    """Builds fresh page URLs from a newly assigned delivery node."""

    def __init__(self, client: MangaDexClient, quality: str = "data-saver"):
        self.client = client
        self.quality = quality

    def resolve_fresh_pages(self, chapter_source_id: str) -> List[PageRecord]:
        """
        Resolve the ordered page URLs of a chapter.

        Args:
            chapter_source_id: MangaDex chapter ID

        Returns:
            List of PageRecord, never cached
        """
        server = self.client.get_at_home_server(chapter_source_id)
        return server.page_urls(self.quality)


@dataclass
class ChapterPages:
    """Chapter metadata plus the pages to render."""
    chapter: Dict[str, Any]
    pages: List[Dict[str, Any]]
    fresh: bool

    def to_dict(self) -> Dict[str, Any]:
        return {**self.chapter, "pages": self.pages, "fresh": self.fresh}


class ChapterPageService:
    """
    Serves a chapter's pages, preferring fresh resolution over the snapshot.
    """

    def __init__(self, database, resolver: PageResolver):
        self.database = database
        self.resolver = resolver

    def get_chapter_pages(self, chapter_id: int) -> ChapterPages:
        """
        Get metadata and pages for a stored chapter.

        Raises:
            ChapterNotFoundError: If the chapter does not exist
            PagesUnavailableError: If fresh resolution fails and no snapshot exists
        """
        with self.database.session() as session:
            chapter = session.get(Chapter, chapter_id)
            if chapter is None:
                raise ChapterNotFoundError(chapter_id)
            metadata = chapter.to_dict()
            snapshot = list(chapter.pages or [])
            source_id = chapter.source_id

        try:
            pages = self.resolver.resolve_fresh_pages(source_id)
        except Exception as e:
            if not snapshot:
                logger.error(
                    "Fresh page resolution failed with no snapshot",
                    chapter_id=chapter_id,
                    source_id=source_id,
                    error=str(e),
                )
                raise PagesUnavailableError(chapter_id, str(e)) from e

            logger.warning(
                "Fresh page resolution failed, serving stored snapshot",
                chapter_id=chapter_id,
                source_id=source_id,
                error=str(e),
            )
            return ChapterPages(chapter=metadata, pages=snapshot, fresh=False)

        if not pages:
            if snapshot:
                logger.warning("Fresh resolution returned no pages, serving snapshot", chapter_id=chapter_id)
                return ChapterPages(chapter=metadata, pages=snapshot, fresh=False)
            raise PagesUnavailableError(chapter_id, "no pages delivered")

        return ChapterPages(chapter=metadata, pages=[p.to_dict() for p in pages], fresh=True)
