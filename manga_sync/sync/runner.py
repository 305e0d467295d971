"""
Import run management: one run at a time, observable by run id.
"""

import threading
from collections import OrderedDict
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional, Tuple

from manga_sync.sync.importer import MangaImporter
from manga_sync.sync.models import ImportRunResult, RunControl, new_run_id
from manga_sync.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_HANDLES = 20


@dataclass
class ImportHandle:
    """Status of a submitted import run."""
    run_id: str
    trigger: str
    control: RunControl
    status: str = "pending"
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result: Optional[ImportRunResult] = None
    error: Optional[str] = None
    future: Optional[Future] = None
    importer: Optional[MangaImporter] = field(default=None, repr=False)
    _done: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._done.wait(timeout)

    @property
    def phase(self) -> Optional[str]:
        """The importer's current step, once the run has started."""
        state = getattr(self.importer, "state", None)
        return getattr(state, "value", state)

    def to_dict(self) -> dict:
        data = {
            "run_id": self.run_id,
            "trigger": self.trigger,
            "status": self.status,
            "phase": self.phase,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error,
        }
        if self.result is not None:
            data["result"] = self.result.to_dict()
        return data


class ImportRunner:
    """
    Runs the importer behind a single-slot guard.

    Manual triggers run on a one-worker executor and return a handle right
    away; scheduled runs execute on the caller's thread. Either kind is
    refused while another run is in flight.
    """

    def __init__(
        self,
        importer_factory: Callable[[], MangaImporter],
        run_timeout_seconds: Optional[float] = None,
        executor: Optional[Executor] = None,
        max_handles: int = DEFAULT_MAX_HANDLES,
    ):
        self.importer_factory = importer_factory
        self.run_timeout_seconds = run_timeout_seconds
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="manga-import")
        self._lock = threading.Lock()
        self._current: Optional[ImportHandle] = None
        self.max_handles = max_handles
        self._handles: "OrderedDict[str, ImportHandle]" = OrderedDict()

    @property
    def current(self) -> Optional[ImportHandle]:
        with self._lock:
            return self._current

    def is_running(self) -> bool:
        handle = self.current
        return handle is not None and not handle.done

    def _claim(self, trigger: str) -> Tuple[ImportHandle, bool]:
        with self._lock:
            if self._current is not None and not self._current.done:
                return self._current, False

            handle = ImportHandle(
                run_id=new_run_id(),
                trigger=trigger,
                control=RunControl(self.run_timeout_seconds),
            )
            self._current = handle
            self._handles[handle.run_id] = handle
            self._prune_handles()
            return handle, True

    def _prune_handles(self) -> None:
        # Finished runs stay queryable through their ImportRun rows
        while len(self._handles) > self.max_handles:
            run_id, oldest = next(iter(self._handles.items()))
            if not oldest.done:
                break
            del self._handles[run_id]

    def _execute(self, handle: ImportHandle) -> ImportHandle:
        handle.status = "running"
        handle.started_at = datetime.utcnow()
        try:
            importer = self.importer_factory()
            handle.importer = importer
            result = importer.run(run_id=handle.run_id, control=handle.control, trigger=handle.trigger)
            handle.result = result
            handle.status = result.status
            handle.error = result.error_message
        except Exception as e:
            handle.status = "failed"
            handle.error = str(e)
            logger.error("Import run failed", run_id=handle.run_id, error=str(e))
        finally:
            handle.completed_at = datetime.utcnow()
            handle._done.set()
        return handle

    def trigger_import(self) -> Tuple[ImportHandle, bool]:
        """
        Start an import in the background.

        Returns:
            (handle, accepted); when a run is already in flight its handle is
            returned with accepted False
        """
        handle, accepted = self._claim("manual")
        if not accepted:
            logger.info("Import already running", run_id=handle.run_id)
            return handle, False

        handle.future = self._executor.submit(self._execute, handle)
        logger.info("Import submitted", run_id=handle.run_id)
        return handle, True

    def run_scheduled(self) -> Optional[ImportHandle]:
        """Run an import on the calling thread, skipping if one is in flight."""
        handle, accepted = self._claim("scheduled")
        if not accepted:
            logger.warning("Previous import still running, skipping scheduled run", run_id=handle.run_id)
            return None
        return self._execute(handle)

    def cancel(self) -> Optional[str]:
        """
        Cancel the in-flight run.

        Returns:
            The cancelled run id, or None if nothing was running
        """
        with self._lock:
            handle = self._current
            if handle is None or handle.done:
                return None
            handle.control.cancel()
        logger.info("Import cancel requested", run_id=handle.run_id)
        return handle.run_id

    def get_handle(self, run_id: str) -> Optional[ImportHandle]:
        with self._lock:
            return self._handles.get(run_id)

    def shutdown(self, wait: bool = False) -> None:
        self.cancel()
        self._executor.shutdown(wait=wait)
