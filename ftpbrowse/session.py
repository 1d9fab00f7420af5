"""
Connection session: owns the single browsing (control) connection
Listing, preview and file info all go through here; transfers never touch it.
"""

import ftplib
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from .connection import open_control_connection, open_transfer_connection
from .errors import BrowserError, ErrorKind, DEFAULT_MESSAGES, classify_connect_error, is_not_found
from .listing import DirectoryEntry, EntryType, parse_listing
from .paths import ROOT, base_name, normalize_path, parent_path

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8192


class ConnectionStatus(Enum):
    DISCONNECTED = 'disconnected'
    CONNECTING = 'connecting'
    CONNECTED = 'connected'


@dataclass(frozen=True)
class SessionSnapshot:
    status: ConnectionStatus
    current_path: str
    entries: Tuple[DirectoryEntry, ...]
    last_error: Optional[str]
    busy: bool


def _connection_lost(exc):
    """True for failures that mean the control connection itself is gone"""
    if isinstance(exc, (EOFError, ConnectionError)):
        return True
    # 421 Service not available, closing control connection
    return isinstance(exc, ftplib.error_temp) and str(exc).startswith('421')


def _not_found(path):
    return BrowserError(ErrorKind.FILE_NOT_FOUND, f"{DEFAULT_MESSAGES[ErrorKind.FILE_NOT_FOUND]}: {path}")


class FTPSession:
    """The browsing connection and the state that belongs to it"""

    def __init__(self, config, ftp_factory=open_control_connection,
                 client_factory=open_transfer_connection, on_event=None):
        self.config = config
        self._ftp_factory = ftp_factory
        self._client_factory = client_factory
        self._on_event = on_event

        self._ftp = None
        self._closed = False
        # Serializes every command on the control connection (browse + search threads)
        self._lock = threading.RLock()
        # At most one connect in flight
        self._connecting = threading.Lock()
        # Guards the fields below; never held during network I/O
        self._state_lock = threading.Lock()

        self.status = ConnectionStatus.DISCONNECTED
        self.current_path = ROOT
        self.entries = ()
        self.last_error = None
        self.busy = False

    # -------------------------
    # lifecycle: connect/disconnect
    # -------------------------
    def connect(self):
        """Open the control connection; raises BrowserError (CONNECTION/AUTHENTICATION/TIMEOUT)"""
        if not self._connecting.acquire(blocking=False):
            raise BrowserError(ErrorKind.CONNECTION, "A connection attempt is already in progress")
        try:
            self._closed = False
            with self._lock:
                self._open()
            with self._state_lock:
                self.current_path = ROOT
                self.last_error = None
            self._emit('connected', {'host': self.config.host, 'user': self.config.user})
            return True
        finally:
            self._connecting.release()

    def _open(self):
        """Replace the control connection with a fresh one (caller holds self._lock)"""
        with self._state_lock:
            self.status = ConnectionStatus.CONNECTING
        logger.info("Connecting to %s:%s as %s", self.config.host, self.config.port, self.config.user)

        self._close_quietly(self._ftp)
        self._ftp = None
        try:
            ftp = self._ftp_factory(self.config)
        except Exception as exc:
            error = classify_connect_error(exc)
            logger.warning("Connection to %s failed: %s", self.config.host, exc)
            with self._state_lock:
                self.status = ConnectionStatus.DISCONNECTED
                self.last_error = error.message
            raise error from exc

        self._ftp = ftp
        with self._state_lock:
            self.status = ConnectionStatus.CONNECTED
        logger.info("Connected to %s", self.config.host)
        return ftp

    def _reconnect(self):
        """Tear down and re-open the control connection with the stored configuration"""
        if not self._connecting.acquire(blocking=False):
            raise BrowserError(ErrorKind.CONNECTION, "A connection attempt is already in progress")
        try:
            logger.info("Re-establishing control connection to %s", self.config.host)
            return self._open()
        finally:
            self._connecting.release()

    def disconnect(self):
        """Close the control connection; idempotent and never raises"""
        self._closed = True
        ftp, self._ftp = self._ftp, None
        was_connected = ftp is not None
        self._close_quietly(ftp)
        with self._state_lock:
            self.status = ConnectionStatus.DISCONNECTED
            self.current_path = ROOT
            self.entries = ()
            self.last_error = None
            self.busy = False
        if was_connected:
            logger.info("Disconnected from %s", self.config.host)
            self._emit('disconnected', {'host': self.config.host})

    @staticmethod
    def _close_quietly(ftp):
        if ftp is None:
            return
        try:
            ftp.quit()
        except Exception as exc:
            logger.debug("QUIT failed (%s), closing socket", exc)
            try:
                ftp.close()
            except Exception as close_exc:
                logger.debug("Ignoring close error: %s", close_exc)

    def _emit(self, name, payload):
        if self._on_event:
            self._on_event(name, payload)

    # -------------------------
    # control connection access
    # -------------------------
    def _ensure_connected(self):
        """Probe the control connection and transparently re-open it if it went away"""
        if self._closed:
            raise BrowserError(ErrorKind.NOT_CONNECTED)
        if self._ftp is not None:
            try:
                self._ftp.pwd()
                return self._ftp
            except ftplib.all_errors as exc:
                logger.info("Liveness probe failed: %s", exc)
        return self._reconnect()

    def _run(self, operation):
        """Run `operation(ftp)` on a live control connection, retrying once after a reconnect"""
        with self._lock:
            ftp = self._ensure_connected()
            try:
                return operation(ftp)
            except Exception as exc:
                if not _connection_lost(exc):
                    raise
                logger.info("Control connection lost during command (%s), retrying", exc)
            ftp = self._reconnect()
            return operation(ftp)

    # -------------------------
    # browsing requests
    # -------------------------
    def list(self, path):
        """Sorted entries of a remote directory; raises FILE_NOT_FOUND for missing paths"""
        normalized = normalize_path(path)

        def list_lines(ftp):
            lines = []
            ftp.retrlines(f'LIST {normalized}', lines.append)
            return lines

        try:
            lines = self._run(list_lines)
        except ftplib.Error as exc:
            if is_not_found(exc):
                raise _not_found(normalized) from exc
            raise
        return parse_listing(lines)

    def navigate(self, path):
        """List `path` and make it the current directory; on failure the prior location is kept"""
        normalized = normalize_path(path)
        with self._state_lock:
            self.busy = True
        try:
            entries = self.list(normalized)
        except Exception as exc:
            with self._state_lock:
                self.busy = False
                self.last_error = exc.message if isinstance(exc, BrowserError) else str(exc)
            raise

        with self._state_lock:
            self.current_path = normalized
            self.entries = tuple(entries)
            self.last_error = None
            self.busy = False
        return self.entries

    def refresh(self):
        return self.navigate(self.current_path)

    def go_back(self):
        """Navigate to the parent directory (no-op at root)"""
        if self.current_path == ROOT:
            return self.entries
        return self.navigate(parent_path(self.current_path))

    def preview(self, path, max_bytes):
        """First `max_bytes` of a remote file, decoded as UTF-8"""
        normalized = normalize_path(path)

        def read_head(ftp):
            ftp.voidcmd('TYPE I')
            conn = ftp.transfercmd(f'RETR {normalized}')
            chunks = []
            received = 0
            try:
                while received < max_bytes:
                    block = conn.recv(min(CHUNK_SIZE, max_bytes - received))
                    if not block:
                        break
                    chunks.append(block)
                    received += len(block)
            finally:
                conn.close()
            try:
                ftp.voidresp()
            except (ftplib.error_temp, ftplib.error_perm) as exc:
                # 426/451 after we closed the data channel early
                logger.debug("Preview of %s cut short: %s", normalized, exc)
            return b''.join(chunks)

        try:
            data = self._run(read_head)
        except ftplib.Error as exc:
            if is_not_found(exc):
                raise _not_found(normalized) from exc
            raise
        return data.decode('utf-8', errors='replace')

    def get_file_info(self, path):
        """Directory entry for exactly `path` (looked up in its parent's listing)"""
        normalized = normalize_path(path)
        if normalized == ROOT:
            return DirectoryEntry(type=EntryType.DIR, name=ROOT)

        name = base_name(normalized)
        for entry in self.list(parent_path(normalized)):
            if entry.name == name:
                return entry
        raise _not_found(normalized)

    def create_download_client(self):
        """A new, independent connection for one transfer; its fate never touches browsing state"""
        try:
            return self._client_factory(self.config)
        except Exception as exc:
            raise classify_connect_error(exc) from exc

    def snapshot(self):
        with self._state_lock:
            return SessionSnapshot(
                status=self.status,
                current_path=self.current_path,
                entries=self.entries,
                last_error=self.last_error,
                busy=self.busy,
            )
