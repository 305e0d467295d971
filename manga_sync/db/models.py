"""
SQLAlchemy database models for Manga Sync Service.
"""

from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Float, DateTime, Text, JSON, ForeignKey, CheckConstraint,
)
from sqlalchemy.orm import declarative_base, validates

Base = declarative_base()

UNKNOWN = "Unknown"
MANGA_STATUSES = ("Ongoing", "Completed", "Hiatus", "Cancelled")
RATING_MIN = 0.0
RATING_MAX = 10.0


class Manga(Base):
    """A catalog title imported from MangaDex."""
    __tablename__ = 'manga'
    __table_args__ = (
        CheckConstraint(f'rating >= {RATING_MIN} AND rating <= {RATING_MAX}', name='ck_manga_rating'),
    )

    id = Column(Integer, primary_key=True)
    source = Column(String(50), nullable=False, default='mangadex')
    source_id = Column(String(100), unique=True, index=True, nullable=False)
    title = Column(String(500), nullable=False, index=True)
    alternative_titles = Column(JSON, nullable=False, default=list)
    author = Column(String(255), nullable=False, default=UNKNOWN)
    artist = Column(String(255), nullable=False, default=UNKNOWN)
    description = Column(Text, nullable=False, default='')
    genre = Column(JSON, nullable=False, default=list)
    status = Column(String(20), nullable=False, default='Ongoing')
    cover_image = Column(String(1000), nullable=False, default='')
    rating = Column(Float, nullable=False, default=0.0)
    year = Column(Integer, nullable=True)
    total_chapters = Column(Integer, nullable=False, default=0)
    last_imported_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @validates('rating')
    def validate_rating(self, key, value):
        if value is None:
            return RATING_MIN
        return min(max(float(value), RATING_MIN), RATING_MAX)

    @validates('author', 'artist')
    def validate_creator(self, key, value):
        return value or UNKNOWN

    @validates('status')
    def validate_status(self, key, value):
        if value not in MANGA_STATUSES:
            raise ValueError(f"Invalid manga status: {value!r}")
        return value

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'source': self.source,
            'sourceId': self.source_id,
            'title': self.title,
            'alternativeTitles': self.alternative_titles or [],
            'author': self.author,
            'artist': self.artist,
            'description': self.description,
            'genre': self.genre or [],
            'status': self.status,
            'coverImage': self.cover_image,
            'rating': self.rating,
            'year': self.year,
            'totalChapters': self.total_chapters,
            'lastImportedAt': self.last_imported_at.isoformat() if self.last_imported_at else None,
        }


class Chapter(Base):
    """A chapter of a catalog title, with the page snapshot taken at import."""
    __tablename__ = 'chapter'

    id = Column(Integer, primary_key=True)
    manga_id = Column(Integer, ForeignKey('manga.id'), index=True, nullable=False)
    source = Column(String(50), nullable=False, default='mangadex')
    source_id = Column(String(100), unique=True, index=True, nullable=False)
    chapter_number = Column(Float, nullable=False)
    title = Column(String(500), nullable=True)
    pages = Column(JSON, nullable=False, default=list)  # [{"index": 0, "imageUrl": "..."}]
    published_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'mangaId': self.manga_id,
            'sourceId': self.source_id,
            'chapterNumber': self.chapter_number,
            'title': self.title,
            'publishedAt': self.published_at.isoformat() if self.published_at else None,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
        }


class Config(Base):
    """Operator overrides for import settings."""
    __tablename__ = 'config'

    id = Column(Integer, primary_key=True)
    import_limit = Column(Integer, nullable=True)
    chapters_per_manga = Column(Integer, nullable=True)
    request_delay_ms = Column(Integer, nullable=True)
    max_retries = Column(Integer, nullable=True)
    import_interval_hours = Column(Float, nullable=True)
    run_timeout_minutes = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ImportLog(Base):
    """Persisted log lines for import runs."""
    __tablename__ = 'import_log'

    id = Column(Integer, primary_key=True)
    level = Column(String(20), nullable=False)  # DEBUG, INFO, WARNING, ERROR
    message = Column(Text, nullable=False)
    details = Column(JSON, nullable=True)
    run_id = Column(String(50), index=True, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)


class ImportRun(Base):
    """A single execution of the import job."""
    __tablename__ = 'import_run'

    id = Column(Integer, primary_key=True)
    run_id = Column(String(50), unique=True, index=True, nullable=False)
    trigger = Column(String(20), default='scheduled')  # scheduled, manual
    started_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)
    status = Column(String(20), default='running')  # running, completed, failed, cancelled
    titles_processed = Column(Integer, default=0)
    titles_failed = Column(Integer, default=0)
    chapters_imported = Column(Integer, default=0)
    chapters_skipped = Column(Integer, default=0)
    chapters_failed = Column(Integer, default=0)
    error_message = Column(Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            'run_id': self.run_id,
            'trigger': self.trigger,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'status': self.status,
            'titles_processed': self.titles_processed,
            'titles_failed': self.titles_failed,
            'chapters_imported': self.chapters_imported,
            'chapters_skipped': self.chapters_skipped,
            'chapters_failed': self.chapters_failed,
            'error': self.error_message,
        }
