"""
Data models for import runs.
"""

import enum
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional


def new_run_id() -> str:
    return str(uuid.uuid4())[:8]


class ImportState(str, enum.Enum):
    """Where the importer currently is within a run."""
    IDLE = "idle"
    FETCHING_CATALOG = "fetching_catalog"
    RECONCILING_TITLE = "reconciling_title"
    RECONCILING_CHAPTERS = "reconciling_chapters"
    FETCHING_CHAPTER_PAGES = "fetching_chapter_pages"


class ImportCancelled(Exception):
    """Raised inside a run when it is cancelled or passes its deadline."""


class RunControl:
    """
    Cancellation flag and optional deadline for one import run.

    ``sleep`` waits on the cancel event so a cancelled run wakes up
    immediately instead of finishing its backoff.
    """

    def __init__(
        self,
        timeout_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._clock = clock
        self._cancelled = threading.Event()
        self.deadline = clock() + timeout_seconds if timeout_seconds else None

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return self.deadline - self._clock()

    def check(self) -> None:
        """
        Raises:
            ImportCancelled: If cancelled or past the deadline
        """
        if self.cancelled:
            raise ImportCancelled("Import run cancelled")
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise ImportCancelled("Import run deadline exceeded")

    def sleep(self, seconds: float) -> None:
        self.check()
        if seconds <= 0:
            return
        remaining = self.remaining()
        timeout = seconds if remaining is None else min(seconds, max(remaining, 0))
        self._cancelled.wait(timeout)
        self.check()


@dataclass
class TitleFailure:
    """A title or chapter skipped during a run."""
    source_id: str
    label: str
    error: str


@dataclass
class ImportRunResult:
    """Result of a complete import run."""
    run_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None

    # Counts
    titles_fetched: int = 0
    titles_processed: int = 0
    titles_failed: int = 0
    chapters_imported: int = 0
    chapters_skipped: int = 0
    chapters_failed: int = 0

    # Status: running, completed, failed, cancelled
    status: str = "running"
    error_message: Optional[str] = None

    failures: List[TitleFailure] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status == "completed"

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "titles_fetched": self.titles_fetched,
            "titles_processed": self.titles_processed,
            "titles_failed": self.titles_failed,
            "chapters_imported": self.chapters_imported,
            "chapters_skipped": self.chapters_skipped,
            "chapters_failed": self.chapters_failed,
            "error": self.error_message,
            "failures": [f.__dict__ for f in self.failures],
        }
