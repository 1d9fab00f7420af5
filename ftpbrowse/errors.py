"""
Error taxonomy for the browser
One exception type carrying a kind, so new kinds need no new subclasses
"""

import errno
import ftplib
import socket
from enum import Enum


class ErrorKind(Enum):
    CONNECTION = 'connection'
    AUTHENTICATION = 'authentication'
    TIMEOUT = 'timeout'
    FILE_NOT_FOUND = 'file_not_found'
    PERMISSION = 'permission'
    INVALID_PATH = 'invalid_path'
    DOWNLOAD = 'download'
    CANCELLED = 'cancelled'
    NOT_CONNECTED = 'not_connected'


DEFAULT_MESSAGES = {
    ErrorKind.CONNECTION: "Cannot connect to FTP server",
    ErrorKind.AUTHENTICATION: "Authentication failed",
    ErrorKind.TIMEOUT: "Connection timeout",
    ErrorKind.FILE_NOT_FOUND: "File or directory not found",
    ErrorKind.PERMISSION: "Permission denied",
    ErrorKind.INVALID_PATH: "Invalid path",
    ErrorKind.DOWNLOAD: "Download failed",
    ErrorKind.CANCELLED: "Transfer cancelled",
    ErrorKind.NOT_CONNECTED: "Not connected to FTP server",
}

# Sub-reasons for ErrorKind.CONNECTION
TAG_RESOLVE = "cannot resolve host"
TAG_CONNECT = "cannot connect"

RESOLVE_MESSAGE = "Cannot resolve hostname"


class BrowserError(Exception):
    """Any failure the browser core reports to its callers"""

    def __init__(self, kind, message=None, tag=None):
        self.kind = kind
        self.message = message or DEFAULT_MESSAGES[kind]
        self.tag = tag
        super().__init__(self.message)

    def __repr__(self):
        return f"BrowserError({self.kind.name}, {self.message!r})"


def is_not_found(exc):
    """True if an FTP failure means the remote path does not exist ('550'-class)"""
    text = str(exc).lower()
    return '550' in text or 'not found' in text or 'no such file' in text


def classify_connect_error(exc):
    """Map a transport failure raised while connecting to a BrowserError"""
    if isinstance(exc, BrowserError):
        return exc

    # Typed checks first, then fall back to the error text
    if isinstance(exc, socket.timeout):
        return BrowserError(ErrorKind.TIMEOUT)
    if isinstance(exc, socket.gaierror):
        return BrowserError(ErrorKind.CONNECTION, RESOLVE_MESSAGE, tag=TAG_RESOLVE)
    if isinstance(exc, ftplib.error_perm) and str(exc).startswith('530'):
        return BrowserError(ErrorKind.AUTHENTICATION)
    if isinstance(exc, (ConnectionRefusedError, ConnectionResetError)):
        return BrowserError(ErrorKind.CONNECTION, tag=TAG_CONNECT)

    text = str(exc).lower()
    if 'timeout' in text or 'timed out' in text:
        return BrowserError(ErrorKind.TIMEOUT)
    if 'login' in text or 'auth' in text or '530' in text:
        return BrowserError(ErrorKind.AUTHENTICATION)
    if 'resolve' in text or 'dns' in text or 'name or service not known' in text:
        return BrowserError(ErrorKind.CONNECTION, RESOLVE_MESSAGE, tag=TAG_RESOLVE)
    return BrowserError(ErrorKind.CONNECTION, tag=TAG_CONNECT)


def classify_local_error(exc, path):
    """Map a local filesystem failure (mkdir/open) to PERMISSION or INVALID_PATH"""
    if isinstance(exc, BrowserError):
        return exc
    if isinstance(exc, PermissionError) or getattr(exc, 'errno', None) in (errno.EACCES, errno.EPERM, errno.EROFS):
        return BrowserError(ErrorKind.PERMISSION, f"Cannot create directory: {exc}")
    if isinstance(exc, (FileNotFoundError, NotADirectoryError, FileExistsError)) or getattr(exc, 'errno', None) in (errno.ENOENT, errno.EINVAL, errno.ENOTDIR):
        return BrowserError(ErrorKind.INVALID_PATH, f"Invalid path: {path}")
    return BrowserError(ErrorKind.INVALID_PATH, f"Invalid path: {path} ({exc})")
