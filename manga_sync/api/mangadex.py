"""
MangaDex API client for Manga Sync Service.

Documentation: https://api.mangadex.org/docs/

Translates MangaDex wire shapes (locale maps, tag groups, relationships)
into the catalog's normalized records. Nothing here touches the database,
and HTTP failures propagate to the caller as APIError.
"""

from typing import Optional, List, Dict, Any
from dataclasses import dataclass, field
from datetime import datetime, timezone

from manga_sync.api.base import BaseClient
from manga_sync.utils.logging import get_logger

logger = get_logger(__name__)

MANGADEX_API_URL = "https://api.mangadex.org"
COVER_BASE_URL = "https://uploads.mangadex.org/covers"
UNKNOWN = "Unknown"

STATUS_MAP = {
    "ongoing": "Ongoing",
    "completed": "Completed",
    "hiatus": "Hiatus",
    "cancelled": "Cancelled",
}
DEFAULT_STATUS = "Ongoing"


@dataclass
class MangaRecord:
    """A normalized MangaDex title."""
    source_id: str
    title: str
    alternative_titles: List[str] = field(default_factory=list)
    author: str = UNKNOWN
    artist: str = UNKNOWN
    description: str = ""
    genre: List[str] = field(default_factory=list)
    status: str = DEFAULT_STATUS
    cover_image: str = ""
    year: Optional[int] = None
    # Self-reported by MangaDex; the importer stores its own count
    last_chapter: int = 0
    source: str = "mangadex"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sourceId": self.source_id,
            "source": self.source,
            "title": self.title,
            "alternativeTitles": self.alternative_titles,
            "author": self.author,
            "artist": self.artist,
            "description": self.description,
            "genre": self.genre,
            "status": self.status,
            "coverImage": self.cover_image,
            "year": self.year,
            "totalChapters": self.last_chapter,
        }


@dataclass
class ChapterRecord:
    """A normalized MangaDex chapter with readable pages."""
    source_id: str
    chapter_number: float
    title: Optional[str]
    published_at: Optional[datetime]
    pages: int = 0


@dataclass
class PageRecord:
    """One page image of a chapter."""
    index: int
    image_url: str

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "imageUrl": self.image_url}


@dataclass
class AtHomeServer:
    """Delivery node assignment for one chapter."""
    base_url: str
    chapter_hash: str
    filenames: List[str]
    saver_filenames: List[str] = field(default_factory=list)

    def page_urls(self, quality: str = "data-saver") -> List[PageRecord]:
        """
        Build {base_url}/{tier}/{hash}/{filename} for each page, in order.

        Without data-saver filenames the full-quality ``data`` tier is used,
        since each tier only serves its own files.
        """
        if quality == "data-saver" and self.saver_filenames:
            tier, files = "data-saver", self.saver_filenames
        else:
            tier, files = "data", self.filenames
        base = self.base_url.rstrip("/")
        return [
            PageRecord(index=i, image_url=f"{base}/{tier}/{self.chapter_hash}/{filename}")
            for i, filename in enumerate(files)
        ]


def pick_title(titles: Optional[Dict[str, str]]) -> str:
    """Prefer English, then romanized Japanese, then any locale."""
    if not titles:
        return UNKNOWN
    for locale in ("en", "ja-ro"):
        if titles.get(locale):
            return titles[locale]
    for value in titles.values():
        if value:
            return value
    return UNKNOWN


def map_status(status: Optional[str]) -> str:
    """Map a MangaDex status string; unknown values default to Ongoing."""
    return STATUS_MAP.get((status or "").lower(), DEFAULT_STATUS)


def build_cover_url(manga_id: str, filename: Optional[str]) -> str:
    if not filename:
        return ""
    return f"{COVER_BASE_URL}/{manga_id}/{filename}.256.jpg"


def parse_chapter_number(value: Optional[str]) -> float:
    """Parse "10.5"-style chapter numbers; missing or non-numeric become 0."""
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    # Stored naive in UTC like the rest of the schema
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _find_relationship(manga: Dict[str, Any], rel_type: str) -> Dict[str, Any]:
    for rel in manga.get("relationships") or []:
        if rel.get("type") == rel_type:
            return rel
    return {}


def normalize_manga(manga: Dict[str, Any]) -> MangaRecord:
    """
    Normalize a MangaDex manga object into a MangaRecord.

    Args:
        manga: Raw manga data including cover_art/author/artist relationships

    Returns:
        MangaRecord
    """
    attributes = manga.get("attributes") or {}
    manga_id = manga["id"]

    cover = _find_relationship(manga, "cover_art").get("attributes") or {}
    author = _find_relationship(manga, "author").get("attributes") or {}
    artist = _find_relationship(manga, "artist").get("attributes") or {}

    genres = [
        pick_title((tag.get("attributes") or {}).get("name"))
        for tag in attributes.get("tags") or []
        if (tag.get("attributes") or {}).get("group") == "genre"
    ]

    alt_titles = []
    for alt in attributes.get("altTitles") or []:
        first = next(iter(alt.values()), None) if alt else None
        if first:
            alt_titles.append(first)

    description = (attributes.get("description") or {}).get("en") or ""

    try:
        last_chapter = int(float(attributes.get("lastChapter") or 0))
    except (TypeError, ValueError):
        last_chapter = 0

    return MangaRecord(
        source_id=manga_id,
        title=pick_title(attributes.get("title")),
        alternative_titles=alt_titles,
        author=author.get("name") or UNKNOWN,
        artist=artist.get("name") or UNKNOWN,
        description=description,
        genre=genres,
        status=map_status(attributes.get("status")),
        cover_image=build_cover_url(manga_id, cover.get("fileName")),
        year=attributes.get("year"),
        last_chapter=last_chapter,
    )


def normalize_chapter(chapter: Dict[str, Any]) -> Optional[ChapterRecord]:
    """Normalize a MangaDex chapter, or None if it has no readable pages."""
    attributes = chapter.get("attributes") or {}
    pages = attributes.get("pages") or 0
    if pages <= 0:
        return None

    return ChapterRecord(
        source_id=chapter["id"],
        chapter_number=parse_chapter_number(attributes.get("chapter")),
        title=attributes.get("title") or None,
        published_at=parse_datetime(attributes.get("publishAt")),
        pages=pages,
    )


class MangaDexClient(BaseClient):
    """
    Client for the MangaDex API.

    Provides methods to list popular titles, search, read chapter feeds
    and request at-home delivery nodes.
    """

    def __init__(
        self,
        base_url: str = MANGADEX_API_URL,
        timeout: int = 30,
        translated_language: str = "en",
        content_ratings: Optional[List[str]] = None,
        page_quality: str = "data-saver",
        session=None,
    ):
        super().__init__(base_url, timeout=timeout, session=session)
        self.translated_language = translated_language
        self.content_ratings = content_ratings or ["safe", "suggestive"]
        self.page_quality = page_quality

    def _manga_params(self, limit: int, offset: int) -> Dict[str, Any]:
        return {
            "limit": limit,
            "offset": offset,
            "contentRating[]": self.content_ratings,
            "includes[]": ["cover_art", "author", "artist"],
            "order[followedCount]": "desc",
            "availableTranslatedLanguage[]": [self.translated_language],
        }

    def fetch_popular_manga(self, limit: int = 100, offset: int = 0) -> List[MangaRecord]:
        """
        Get the most followed titles.

        Args:
            limit: Maximum number of titles
            offset: Paging offset

        Returns:
            List of MangaRecord in MangaDex order
        """
        response = self.get("/manga", params=self._manga_params(limit, offset))
        records = [normalize_manga(m) for m in response.get("data", [])]
        logger.debug("Fetched popular manga", count=len(records), offset=offset)
        return records

    def search_manga(self, query: str, limit: int = 20, offset: int = 0) -> List[MangaRecord]:
        """Search titles by text."""
        params = self._manga_params(limit, offset)
        params["title"] = query
        response = self.get("/manga", params=params)
        return [normalize_manga(m) for m in response.get("data", [])]

    def fetch_chapters(self, manga_id: str, limit: int = 100, offset: int = 0) -> List[ChapterRecord]:
        """
        Get chapters of a title, ascending by chapter number.

        Chapters without pages in the requested language are dropped.

        Args:
            manga_id: MangaDex manga ID
            limit: Maximum number of chapters
            offset: Paging offset

        Returns:
            List of ChapterRecord
        """
        response = self.get(
            f"/manga/{manga_id}/feed",
            params={
                "limit": limit,
                "offset": offset,
                "translatedLanguage[]": [self.translated_language],
                "order[chapter]": "asc",
                "contentRating[]": self.content_ratings,
            },
        )

        chapters = []
        for raw in response.get("data", []):
            record = normalize_chapter(raw)
            if record is None:
                logger.debug("Skipping chapter without pages", chapter_id=raw.get("id"))
                continue
            chapters.append(record)
        return chapters

    def get_at_home_server(self, chapter_id: str) -> AtHomeServer:
        """
        Request a delivery node for a chapter.

        The returned base URL is session-scoped and expires; never store it.
        """
        response = self.get(f"/at-home/server/{chapter_id}")
        chapter = response.get("chapter") or {}
        return AtHomeServer(
            base_url=response["baseUrl"],
            chapter_hash=chapter["hash"],
            filenames=list(chapter.get("data") or []),
            saver_filenames=list(chapter.get("dataSaver") or []),
        )

    def fetch_chapter_pages(self, chapter_id: str) -> List[PageRecord]:
        """Get the current page URLs of a chapter."""
        return self.get_at_home_server(chapter_id).page_urls(self.page_quality)
