"""
Download queue / progress store
In-memory registry of transfers keyed by id. Each transfer runs on its own worker
thread and only ever updates its own record.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, replace
from enum import Enum
from functools import partial
from typing import Optional

from .config import BrowserSettings
from .errors import BrowserError, ErrorKind
from .paths import base_name
from .transfer import download_directory, download_file

logger = logging.getLogger(__name__)


class TransferStatus(Enum):
    PENDING = 'pending'
    ACTIVE = 'active'
    COMPLETED = 'completed'
    FAILED = 'failed'
    CANCELLED = 'cancelled'


TERMINAL = (TransferStatus.COMPLETED, TransferStatus.FAILED, TransferStatus.CANCELLED)


@dataclass(frozen=True)
class TransferRecord:
    id: str
    filename: str
    remote_path: str
    local_path: str
    is_directory: bool = False
    total_bytes: int = 0
    bytes_transferred: int = 0
    speed: float = 0.0
    eta: Optional[float] = None
    status: TransferStatus = TransferStatus.PENDING
    error: Optional[str] = None
    current_file: Optional[str] = None
    finished_at: Optional[float] = None

    @property
    def is_terminal(self):
        return self.status in TERMINAL

    @property
    def percent(self):
        if not self.total_bytes:
            return None
        return min(100.0, self.bytes_transferred * 100.0 / self.total_bytes)


def _start_daemon(target, *args):
    threading.Thread(target=target, args=args, daemon=True).start()


class DownloadQueue:
    """Registry of transfers; updated by the engine's callbacks, read by the display"""

    def __init__(self, connection_factory, settings=None, on_change=None,
                 clock=time.monotonic, spawn=_start_daemon):
        self._connection_factory = connection_factory
        self._settings = settings or BrowserSettings()
        self._on_change = on_change
        self._clock = clock
        self._spawn = spawn

        self._lock = threading.Lock()
        self._records = {}  # id -> TransferRecord, insertion ordered
        self._cancel_events = {}
        self._done_events = {}
        self._listeners = {}  # id -> per-transfer progress consumer
        # Append-only log of finished transfers, kept after they leave the visible set
        self.history = []

        cap = self._settings.max_active_downloads
        self._slots = threading.BoundedSemaphore(cap) if cap else None

    # -------------------------
    # queueing
    # -------------------------
    def enqueue(self, remote_path, local_path, is_directory=False, on_progress=None):
        """Register a transfer and start it; returns its id"""
        transfer_id = str(uuid.uuid4())
        record = TransferRecord(
            id=transfer_id,
            filename=base_name(remote_path),
            remote_path=remote_path,
            local_path=local_path,
            is_directory=is_directory,
        )
        with self._lock:
            self._records[transfer_id] = record
            self._cancel_events[transfer_id] = threading.Event()
            self._done_events[transfer_id] = threading.Event()
            if on_progress:
                self._listeners[transfer_id] = on_progress

        logger.info("Queued %s %s -> %s", "directory" if is_directory else "file", remote_path, local_path)
        self._changed(record)
        self._spawn(self._run, transfer_id)
        return transfer_id

    def retry(self, transfer_id):
        """Queue a failed or cancelled transfer again (a partial file is resumed)"""
        record = self.get(transfer_id)
        if record is None or record.status not in (TransferStatus.FAILED, TransferStatus.CANCELLED):
            return None
        return self.enqueue(record.remote_path, record.local_path, record.is_directory)

    def cancel(self, transfer_id):
        """Mark a pending/active transfer cancelled; its worker stops at the next chunk"""
        with self._lock:
            record = self._records.get(transfer_id)
            if record is None or record.is_terminal:
                return False
            record = replace(record, status=TransferStatus.CANCELLED, speed=0.0, eta=None,
                             finished_at=self._clock())
            self._records[transfer_id] = record
            self._cancel_events[transfer_id].set()
            self._listeners.pop(transfer_id, None)

        logger.info("Cancelled %s", record.remote_path)
        self._changed(record)
        return True

    def cancel_all(self):
        for record in self.records():
            self.cancel(record.id)

    # -------------------------
    # worker
    # -------------------------
    def _run(self, transfer_id):
        cancel_event = self._cancel_events[transfer_id]
        acquired = False
        try:
            if self._slots is not None:
                self._slots.acquire()
                acquired = True
            if cancel_event.is_set():
                return

            record = self._update(transfer_id, status=TransferStatus.ACTIVE)
            if record is None:
                return

            options = {
                'cancel_event': cancel_event,
                'resume_threshold': self._settings.resume_threshold,
                'progress_interval': self._settings.progress_interval,
            }
            on_progress = partial(self._on_progress, transfer_id)
            if record.is_directory:
                download_directory(self._connection_factory, record.remote_path, record.local_path,
                                   on_progress, **options)
            else:
                download_file(self._connection_factory, record.remote_path, record.local_path,
                              on_progress, **options)
        except BrowserError as exc:
            if exc.kind is ErrorKind.CANCELLED:
                self._finish(transfer_id, TransferStatus.CANCELLED)
            else:
                logger.warning("Download of %s failed: %s", transfer_id, exc.message)
                self._finish(transfer_id, TransferStatus.FAILED, exc.message)
        except Exception as exc:
            # A worker must never take the process down with it
            logger.exception("Unexpected error in transfer %s", transfer_id)
            self._finish(transfer_id, TransferStatus.FAILED, str(exc) or "Download failed")
        else:
            self._finish(transfer_id, TransferStatus.COMPLETED)
        finally:
            if acquired:
                self._slots.release()
            self._done_events[transfer_id].set()
            with self._lock:
                if transfer_id not in self._records:
                    # Pruned while unwinding
                    self._done_events.pop(transfer_id, None)
                    self._cancel_events.pop(transfer_id, None)

    def _on_progress(self, transfer_id, progress):
        with self._lock:
            record = self._records.get(transfer_id)
            if record is None or record.status is not TransferStatus.ACTIVE:
                # Cancelled (or pruned): no further progress for this id
                return
            if progress.bytes_transferred < record.bytes_transferred:
                return
            record = replace(
                record,
                total_bytes=progress.total_bytes if not record.is_directory or progress.completed else 0,
                bytes_transferred=progress.bytes_transferred,
                speed=progress.speed,
                eta=progress.eta,
                current_file=progress.current_file,
            )
            self._records[transfer_id] = record
            listener = self._listeners.get(transfer_id)

        if listener:
            listener(record)
        self._changed(record)

    def _update(self, transfer_id, **changes):
        """Apply changes to a non-terminal record; None if it is gone or already finished"""
        with self._lock:
            record = self._records.get(transfer_id)
            if record is None or record.is_terminal:
                return None
            record = replace(record, **changes)
            self._records[transfer_id] = record
        self._changed(record)
        return record

    def _finish(self, transfer_id, status, error=None):
        changes = {'status': status, 'error': error, 'speed': 0.0, 'finished_at': self._clock(),
                   'current_file': None}
        if status is TransferStatus.COMPLETED:
            changes['eta'] = 0.0
        record = self._update(transfer_id, **changes)
        with self._lock:
            self._listeners.pop(transfer_id, None)
        if record is not None:
            logger.info("Transfer %s %s", record.remote_path, status.value)

    # -------------------------
    # reading
    # -------------------------
    def get(self, transfer_id):
        with self._lock:
            record = self._records.get(transfer_id)
            history = list(self.history)
        if record is not None:
            return record
        for record in history:
            if record.id == transfer_id:
                return record
        return None

    def records(self):
        """Snapshot of the visible records, in queue order"""
        with self._lock:
            return list(self._records.values())

    def active_count(self):
        with self._lock:
            return sum(1 for record in self._records.values() if not record.is_terminal)

    def prune(self, now=None):
        """Drop finished records older than the retention delay from the visible set"""
        now = self._clock() if now is None else now
        retention = self._settings.download_retention
        removed = []
        with self._lock:
            for transfer_id, record in list(self._records.items()):
                if record.is_terminal and record.finished_at is not None and now - record.finished_at >= retention:
                    removed.append(self._records.pop(transfer_id))
            for record in removed:
                # A cancelled worker may still be unwinding; keep its events until it exits
                done = self._done_events.get(record.id)
                if done is not None and done.is_set():
                    del self._done_events[record.id]
                    self._cancel_events.pop(record.id, None)
                self._listeners.pop(record.id, None)
            self.history.extend(removed)
        for record in removed:
            self._changed(record)
        return removed

    def wait(self, transfer_id, timeout=None):
        """Block until the transfer's worker has exited"""
        event = self._done_events.get(transfer_id)
        if event is None:
            return True
        return event.wait(timeout)

    def _changed(self, record):
        if self._on_change:
            self._on_change(record)
