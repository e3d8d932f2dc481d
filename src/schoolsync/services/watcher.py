"""Export directory watching and the single-consumer reconcile loop."""

from __future__ import annotations

import asyncio
import logging
import threading
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from schoolsync.services.normalizer import is_export_file
from schoolsync.services.synchronizer import SyncOutcome, Synchronizer

logger = logging.getLogger(__name__)


class Debouncer:
    """Collapse a burst of pokes into one callback after a quiet window."""

    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self._callback = callback
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    def poke(self) -> None:
        """Restart the quiet window."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.delay, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _fire(self) -> None:
        with self._lock:
            self._timer = None
        self._callback()


class ExportEventHandler(FileSystemEventHandler):
    """Pokes the debouncer when an export file is created, modified or moved in."""

    def __init__(self, debouncer: Debouncer, prefix: str = "export_") -> None:
        super().__init__()
        self.debouncer = debouncer
        self.prefix = prefix

    def _is_relevant(self, event: FileSystemEvent) -> bool:
        if event.is_directory:
            return False
        paths = [event.src_path, getattr(event, "dest_path", "")]
        return any(p and is_export_file(Path(str(p)), self.prefix) for p in paths)

    def on_created(self, event: FileSystemEvent) -> None:
        if self._is_relevant(event):
            self.debouncer.poke()

    def on_modified(self, event: FileSystemEvent) -> None:
        if self._is_relevant(event):
            self.debouncer.poke()

    def on_moved(self, event: FileSystemEvent) -> None:
        if self._is_relevant(event):
            self.debouncer.poke()


class ReconcileLoop:
    """Single consumer of sync triggers.

    Triggers go through a bounded queue. When it is full a new trigger is
    dropped: a pass is already pending and passes are idempotent.
    """

    def __init__(self, synchronizer: Synchronizer, maxsize: int = 10) -> None:
        self.synchronizer = synchronizer
        self.maxsize = maxsize
        self._queue: Optional[asyncio.Queue[None]] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stopping = False
        self.ready = threading.Event()
        self.passes = 0

    def _enqueue(self) -> None:
        if self._queue is None:
            return
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            logger.debug("Sync already queued, coalescing trigger")

    def signal(self) -> None:
        """Request a pass; safe to call from any thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug("Reconcile loop not running, trigger ignored")
            return
        loop.call_soon_threadsafe(self._enqueue)

    def stop(self) -> None:
        """Ask the consumer to exit after the current pass."""
        self._stopping = True
        self.signal()

    async def run(self, on_ready: Optional[Callable[[], None]] = None) -> None:
        """Consume triggers until `stop()` is called.

        `on_ready` runs once the loop accepts signals; start event sources
        there so no trigger is lost before the queue exists.
        """
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self.maxsize)
        self._stopping = False
        self.ready.set()
        try:
            if on_ready is not None:
                on_ready()
            while True:
                await self._queue.get()
                if self._stopping:
                    break
                logger.info("Detected changes in %s", self.synchronizer.data_dir)
                try:
                    outcome: SyncOutcome = await asyncio.to_thread(self.synchronizer.run_pass)
                except Exception:
                    logger.exception("Reconciliation pass crashed, waiting for next trigger")
                    continue
                finally:
                    self.passes += 1
                outcome.log()
        finally:
            self.ready.clear()
            self._queue = None
            self._loop = None


class ExportWatcher:
    """Watches the export directory on a background thread."""

    def __init__(
        self,
        data_dir: Path,
        on_change: Callable[[], None],
        prefix: str = "export_",
        debounce_seconds: float = 2.0,
    ) -> None:
        self.data_dir = Path(data_dir)
        self.debouncer = Debouncer(debounce_seconds, on_change)
        self.handler = ExportEventHandler(self.debouncer, prefix)
        self._observer: Optional[Observer] = None

    def start(self) -> None:
        if not self.data_dir.exists():
            self.data_dir.mkdir(parents=True, exist_ok=True)
            logger.info("Created %s directory", self.data_dir)
        observer = Observer()
        observer.schedule(self.handler, str(self.data_dir), recursive=False)
        observer.daemon = True
        observer.start()
        self._observer = observer
        logger.info("Watching %s for changes", self.data_dir)

    def stop(self) -> None:
        self.debouncer.cancel()
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None
            logger.info("Stopped watching %s", self.data_dir)
