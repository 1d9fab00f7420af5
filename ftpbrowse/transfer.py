"""
Transfer engine
Downloads one file (or a whole directory tree) over transfer-dedicated connections,
with resume, throttled progress and cooperative cancellation.
"""

import logging
import os
import time
from dataclasses import dataclass
from typing import Optional

from .config import PROGRESS_INTERVAL, RESUME_THRESHOLD
from .errors import BrowserError, ErrorKind, DEFAULT_MESSAGES, classify_local_error, is_not_found
from .paths import base_name, child_path, normalize_path

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8192  # 8KB chunks


@dataclass(frozen=True)
class TransferProgress:
    remote_path: str
    local_path: str
    filename: str
    total_bytes: int  # 0 until known
    bytes_transferred: int
    speed: float  # bytes/second
    eta: Optional[float]  # seconds; None when it can't be estimated
    completed: bool = False
    # File currently in flight (directory transfers only)
    current_file: Optional[str] = None

    @property
    def percent(self):
        if not self.total_bytes:
            return None
        return min(100.0, self.bytes_transferred * 100.0 / self.total_bytes)


def ensure_local_dir(path):
    """Create a local directory (and parents); PERMISSION / INVALID_PATH on failure"""
    if not path:
        return
    try:
        os.makedirs(path, exist_ok=True)
    except OSError as exc:
        raise classify_local_error(exc, path) from exc


def local_size(path):
    """Size of a local (partial) file, 0 if there is none"""
    try:
        return os.path.getsize(path)
    except FileNotFoundError:
        return 0
    except PermissionError as exc:
        raise BrowserError(ErrorKind.PERMISSION, f"Cannot access file: {exc}") from exc


def resume_offset(local_path, total_bytes, resume_threshold=RESUME_THRESHOLD):
    """Offset to resume from: the partial file's size if it is a strict prefix, else 0"""
    if total_bytes <= 0 or total_bytes < resume_threshold:
        # Unknown size or too small to bother
        return 0
    existing = local_size(local_path)
    if 0 < existing < total_bytes:
        return existing
    return 0


def _transfer_error(exc, remote_path):
    """Classify a transport failure: FILE_NOT_FOUND for 550-class errors, else DOWNLOAD"""
    if isinstance(exc, BrowserError):
        return exc
    if is_not_found(exc):
        return BrowserError(ErrorKind.FILE_NOT_FOUND,
                            f"{DEFAULT_MESSAGES[ErrorKind.FILE_NOT_FOUND]}: {remote_path}")
    return BrowserError(ErrorKind.DOWNLOAD, f"{DEFAULT_MESSAGES[ErrorKind.DOWNLOAD]}: {exc}")


def _close_quietly(conn):
    try:
        conn.close()
    except Exception as exc:
        logger.debug("Ignoring error while closing transfer connection: %s", exc)


def _check_cancelled(cancel_event):
    if cancel_event is not None and cancel_event.is_set():
        raise BrowserError(ErrorKind.CANCELLED)


def download_file(connection_factory, remote_path, local_path, on_progress=None, *,
                  resume_threshold=RESUME_THRESHOLD, progress_interval=PROGRESS_INTERVAL,
                  cancel_event=None, clock=time.monotonic, chunk_size=CHUNK_SIZE):
    """Download one remote file to `local_path` over its own connection

    Resumes from a partial local file when possible. Progress events are throttled to
    one per `progress_interval`; a final completed event is always emitted on success.
    """
    remote_path = normalize_path(remote_path)
    filename = base_name(remote_path)

    # Create local directory if needed
    ensure_local_dir(os.path.dirname(local_path))

    conn = connection_factory()
    try:
        size = conn.size(remote_path)
        total = size or 0
        offset = resume_offset(local_path, total, resume_threshold)
        if offset:
            logger.info("Resuming %s at byte %d of %d", remote_path, offset, total)

        downloaded = offset
        start_time = clock()
        last_update_time = start_time

        # Remote first, so a missing file doesn't leave an empty local one behind
        with conn.open_read(remote_path, offset) as remote_file:
            try:
                local_file = open(local_path, 'ab' if offset else 'wb')
            except OSError as exc:
                raise classify_local_error(exc, local_path) from exc

            with local_file:
                while True:
                    _check_cancelled(cancel_event)
                    chunk = remote_file.read(chunk_size)
                    if not chunk:
                        break

                    local_file.write(chunk)
                    downloaded += len(chunk)

                    current_time = clock()
                    if on_progress and current_time - last_update_time >= progress_interval:
                        last_update_time = current_time
                        elapsed = current_time - start_time
                        # Speed over this session only; resumed bytes weren't transferred now
                        speed = (downloaded - offset) / elapsed if elapsed > 0 else 0.0
                        remaining = total - downloaded if total else None
                        eta = remaining / speed if speed > 0 and remaining and remaining > 0 else None
                        on_progress(TransferProgress(
                            remote_path=remote_path,
                            local_path=local_path,
                            filename=filename,
                            total_bytes=total,
                            bytes_transferred=downloaded,
                            speed=speed,
                            eta=eta,
                        ))

        # Preserve the modification time from the remote file
        try:
            remote_mtime = conn.mtime(remote_path)
            os.utime(local_path, (remote_mtime, remote_mtime))
        except Exception as exc:
            logger.debug("Could not preserve mtime of %s: %s", remote_path, exc)

        done = TransferProgress(
            remote_path=remote_path,
            local_path=local_path,
            filename=filename,
            total_bytes=downloaded,
            bytes_transferred=downloaded,
            speed=0.0,
            eta=0.0,
            completed=True,
        )
        if on_progress:
            on_progress(done)
        logger.info("Downloaded %s -> %s (%d bytes)", remote_path, local_path, downloaded)
        return done

    except BrowserError:
        raise
    except Exception as exc:
        # Closing an aborted stream can raise over the cancellation itself
        _check_cancelled(cancel_event)
        raise _transfer_error(exc, remote_path) from exc
    finally:
        _close_quietly(conn)


def download_directory(connection_factory, remote_path, local_path, on_progress=None, *,
                       cancel_event=None, clock=time.monotonic, **file_options):
    """Download a remote directory tree, recreating its structure under `local_path`

    Symlinks are skipped. The first failing file fails the whole operation; files
    already written stay on disk.
    """
    remote_path = normalize_path(remote_path)
    ensure_local_dir(local_path)

    state = {'bytes': 0, 'start': clock()}
    walker = connection_factory()
    try:
        _download_tree(walker, connection_factory, remote_path, local_path, remote_path, local_path,
                       on_progress, state, cancel_event, clock, file_options)
    finally:
        _close_quietly(walker)

    done = TransferProgress(
        remote_path=remote_path,
        local_path=local_path,
        filename=base_name(remote_path),
        total_bytes=state['bytes'],
        bytes_transferred=state['bytes'],
        speed=0.0,
        eta=0.0,
        completed=True,
    )
    if on_progress:
        on_progress(done)
    logger.info("Downloaded directory %s -> %s (%d bytes)", remote_path, local_path, state['bytes'])
    return done


def _list_remote(walker, remote_path):
    try:
        return walker.list(remote_path)
    except BrowserError:
        raise
    except Exception as exc:
        raise _transfer_error(exc, remote_path) from exc


def _download_tree(walker, connection_factory, remote_dir, local_dir, root_remote, root_local,
                   on_progress, state, cancel_event, clock, file_options):
    """Recursively download all files from a directory"""
    _check_cancelled(cancel_event)
    for entry in _list_remote(walker, remote_dir):
        _check_cancelled(cancel_event)
        remote_item = child_path(remote_dir, entry.name)
        local_item = os.path.join(local_dir, entry.name)

        if entry.is_dir:
            ensure_local_dir(local_item)
            _download_tree(walker, connection_factory, remote_item, local_item, root_remote, root_local,
                           on_progress, state, cancel_event, clock, file_options)
        elif entry.is_file:
            base = state['bytes']

            def relay(progress, base=base, name=entry.name):
                # One aggregate, monotonically increasing count for the whole tree
                if on_progress is None or progress.completed:
                    return
                elapsed = clock() - state['start']
                transferred = base + progress.bytes_transferred
                on_progress(TransferProgress(
                    remote_path=root_remote,
                    local_path=root_local,
                    filename=base_name(root_remote),
                    total_bytes=0,
                    bytes_transferred=transferred,
                    speed=transferred / elapsed if elapsed > 0 else 0.0,
                    eta=None,
                    current_file=name,
                ))

            done = download_file(connection_factory, remote_item, local_item, relay,
                                 cancel_event=cancel_event, clock=clock, **file_options)
            state['bytes'] = base + done.bytes_transferred
        else:
            logger.debug("Skipping symlink %s", remote_item)
