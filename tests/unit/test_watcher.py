"""Unit tests for export watching and the reconcile loop."""

import asyncio
import threading
import time
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError
from watchdog.events import (
    DirModifiedEvent,
    FileCreatedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from schoolsync.services.synchronizer import SyncOutcome, SyncStatus
from schoolsync.services.watcher import (
    Debouncer,
    ExportEventHandler,
    ExportWatcher,
    ReconcileLoop,
)


def wait_for(predicate, timeout: float = 5.0) -> bool:
    """Poll until predicate() is true or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class FakeSynchronizer:
    """Synchronizer stand-in that counts passes and can be held mid-pass."""

    def __init__(self, data_dir="data"):
        self.data_dir = data_dir
        self.calls = 0
        self.started = threading.Event()
        self.release = threading.Event()
        self.release.set()

    def run_pass(self):
        self.calls += 1
        self.started.set()
        self.release.wait(5)
        return SyncOutcome(status=SyncStatus.NO_CHANGE)


@pytest.fixture
def fake_synchronizer():
    return FakeSynchronizer()


def start_loop(loop: ReconcileLoop) -> threading.Thread:
    thread = threading.Thread(target=lambda: asyncio.run(loop.run()), daemon=True)
    thread.start()
    assert loop.ready.wait(5)
    return thread


class TestDebouncer:
    """Tests for Debouncer."""

    def test_burst_fires_once(self):
        """Test many pokes within the window produce one callback."""
        callback = MagicMock()
        debouncer = Debouncer(0.1, callback)

        for _ in range(5):
            debouncer.poke()
            time.sleep(0.01)

        assert wait_for(lambda: callback.call_count == 1)
        time.sleep(0.2)
        assert callback.call_count == 1

    def test_separate_bursts_fire_separately(self):
        """Test pokes after the window start a new callback."""
        callback = MagicMock()
        debouncer = Debouncer(0.05, callback)

        debouncer.poke()
        assert wait_for(lambda: callback.call_count == 1)
        debouncer.poke()
        assert wait_for(lambda: callback.call_count == 2)

    def test_cancel(self):
        """Test a cancelled window never fires."""
        callback = MagicMock()
        debouncer = Debouncer(0.05, callback)

        debouncer.poke()
        debouncer.cancel()
        time.sleep(0.2)

        callback.assert_not_called()


class TestExportEventHandler:
    """Tests for event filtering."""

    @pytest.fixture
    def debouncer(self):
        return MagicMock()

    @pytest.fixture
    def handler(self, debouncer):
        return ExportEventHandler(debouncer, prefix="export_")

    def test_export_created(self, handler, debouncer):
        """Test a new export triggers a sync."""
        handler.on_created(FileCreatedEvent("/data/export_1.xls"))

        debouncer.poke.assert_called_once()

    def test_export_modified(self, handler, debouncer):
        """Test a rewritten export triggers a sync."""
        handler.on_modified(FileModifiedEvent("/data/export_1.xlsx"))

        debouncer.poke.assert_called_once()

    def test_moved_into_place(self, handler, debouncer):
        """Test a temp file renamed to an export name triggers a sync."""
        handler.on_moved(FileMovedEvent("/data/.tmp123", "/data/export_1.xls"))

        debouncer.poke.assert_called_once()

    def test_other_files_ignored(self, handler, debouncer):
        """Test unrelated files are ignored."""
        handler.on_created(FileCreatedEvent("/data/homework.db"))
        handler.on_modified(FileModifiedEvent("/data/notes.xls"))

        debouncer.poke.assert_not_called()

    def test_directories_ignored(self, handler, debouncer):
        """Test directory events are ignored."""
        handler.on_modified(DirModifiedEvent("/data/export_dir.xls"))

        debouncer.poke.assert_not_called()


class TestReconcileLoop:
    """Tests for ReconcileLoop."""

    def test_signal_runs_a_pass(self, fake_synchronizer):
        """Test one trigger gives one pass."""
        loop = ReconcileLoop(fake_synchronizer)
        thread = start_loop(loop)

        loop.signal()
        assert wait_for(lambda: loop.passes == 1)

        loop.stop()
        thread.join(5)
        assert not thread.is_alive()
        assert fake_synchronizer.calls == 1

    def test_full_queue_coalesces(self, fake_synchronizer):
        """Test triggers arriving during a pass collapse into one more pass."""
        fake_synchronizer.release.clear()
        loop = ReconcileLoop(fake_synchronizer, maxsize=1)
        thread = start_loop(loop)

        loop.signal()
        assert fake_synchronizer.started.wait(5)
        for _ in range(5):
            loop.signal()
        time.sleep(0.1)
        fake_synchronizer.release.set()

        assert wait_for(lambda: loop.passes == 2)
        time.sleep(0.1)
        loop.stop()
        thread.join(5)
        assert fake_synchronizer.calls == 2

    def test_signal_before_start_is_ignored(self, fake_synchronizer):
        """Test signalling a loop that is not running does nothing."""
        loop = ReconcileLoop(fake_synchronizer)

        loop.signal()

        assert fake_synchronizer.calls == 0

    def test_crashed_pass_keeps_loop_running(self, fake_synchronizer, caplog):
        """Test a pass that raises is logged and the next trigger still runs."""
        original = fake_synchronizer.run_pass
        failures = iter([OperationalError("SELECT 1", {}, Exception("database is locked"))])

        def run_pass():
            error = next(failures, None)
            if error is not None:
                fake_synchronizer.calls += 1
                raise error
            return original()

        fake_synchronizer.run_pass = run_pass
        loop = ReconcileLoop(fake_synchronizer)
        thread = start_loop(loop)

        loop.signal()
        assert wait_for(lambda: loop.passes == 1)
        loop.signal()
        assert wait_for(lambda: loop.passes == 2)

        loop.stop()
        thread.join(5)
        assert fake_synchronizer.calls == 2
        assert "Reconciliation pass crashed" in caplog.text

    def test_on_ready_signal_is_not_lost(self, fake_synchronizer):
        """Test a trigger sent from on_ready, before the first await, runs a pass."""
        loop = ReconcileLoop(fake_synchronizer)
        ready_seen = []

        def on_ready():
            ready_seen.append(loop.ready.is_set())
            loop.signal()

        thread = threading.Thread(
            target=lambda: asyncio.run(loop.run(on_ready=on_ready)), daemon=True
        )
        thread.start()

        assert wait_for(lambda: loop.passes == 1)
        loop.stop()
        thread.join(5)
        assert ready_seen == [True]
        assert fake_synchronizer.calls == 1

    def test_ready_cleared_after_stop(self, fake_synchronizer):
        """Test the ready flag follows the loop's lifetime."""
        loop = ReconcileLoop(fake_synchronizer)
        thread = start_loop(loop)

        loop.stop()
        thread.join(5)

        assert loop.ready.is_set() is False
        assert fake_synchronizer.calls == 0


class TestExportWatcher:
    """Tests for ExportWatcher."""

    def test_start_creates_directory(self, temp_dir):
        """Test a missing export directory is created."""
        data_dir = temp_dir / "exports"
        watcher = ExportWatcher(data_dir, on_change=MagicMock(), debounce_seconds=0.1)

        watcher.start()
        try:
            assert data_dir.is_dir()
        finally:
            watcher.stop()

    def test_stop_is_idempotent(self, temp_dir):
        """Test stopping twice is harmless."""
        watcher = ExportWatcher(temp_dir, on_change=MagicMock())

        watcher.start()
        watcher.stop()
        watcher.stop()
