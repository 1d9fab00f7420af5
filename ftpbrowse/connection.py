"""
Opening FTP connections
The browsing (control) connection is a plain ftplib session; every transfer gets
its own ftputil host built on the same session factory.
"""

import ftplib
import logging
import stat
from datetime import datetime

import ftputil
import ftputil.error

from .listing import DirectoryEntry, EntryType, sort_entries
from .paths import child_path

logger = logging.getLogger(__name__)


def create_no_utf8_session_factory(base_class, port=21, use_passive_mode=True, encrypt_data_channel=False, timeout=None):
    """Create a session factory that doesn't send OPTS UTF8 ON command"""
    def session_factory(host, username, password):
        # Create the base FTP connection manually without UTF8 command
        session = base_class(timeout=timeout)
        session.connect(host, port)
        try:
            session.login(username, password)
            if encrypt_data_channel and hasattr(session, 'prot_p'):
                session.prot_p()
            session.set_pasv(use_passive_mode)
        except BaseException:
            # Don't leave the socket from connect() open
            session.close()
            raise
        return session

    return session_factory


def session_factory_for(config):
    """Session factory matching a SessionConfig (FTPS when config.secure)"""
    if config.secure:
        return create_no_utf8_session_factory(
            base_class=ftplib.FTP_TLS,
            port=config.port,
            use_passive_mode=config.passive,
            encrypt_data_channel=True,
            timeout=config.timeout,
        )
    return create_no_utf8_session_factory(
        base_class=ftplib.FTP,
        port=config.port,
        use_passive_mode=config.passive,
        encrypt_data_channel=False,
        timeout=config.timeout,
    )


def open_control_connection(config):
    """Open and log in the browsing connection"""
    factory = session_factory_for(config)
    return factory(config.host, config.user, config.password)


def open_transfer_connection(config):
    """Open a brand-new, independent connection for one transfer"""
    host = ftputil.FTPHost(config.host, config.user, config.password,
                           session_factory=session_factory_for(config))
    return TransferConnection(host)


def entry_from_stat(name, st):
    """Build a DirectoryEntry from an ftputil stat result"""
    if stat.S_ISLNK(st.st_mode):
        entry_type = EntryType.LINK
    elif stat.S_ISDIR(st.st_mode):
        entry_type = EntryType.DIR
    else:
        entry_type = EntryType.FILE

    modified_at = None
    if st.st_mtime:
        modified_at = datetime.fromtimestamp(st.st_mtime)

    return DirectoryEntry(
        type=entry_type,
        name=name,
        size=None if entry_type is EntryType.DIR else st.st_size,
        modified_at=modified_at,
        permissions=stat.filemode(st.st_mode),
        link_target=getattr(st, '_st_target', None),
    )


class TransferConnection:
    """A transfer-dedicated connection; owned by exactly one transfer (ftputil hosts aren't thread-safe)"""

    def __init__(self, host):
        self._host = host

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def size(self, path):
        """Remote size in bytes, or None if the server won't say"""
        try:
            return self._host.path.getsize(path)
        except ftputil.error.FTPError as exc:
            logger.debug("Size unavailable for %s: %s", path, exc)
            return None

    def mtime(self, path):
        return self._host.path.getmtime(path)

    def open_read(self, path, offset=0):
        """Binary read stream, starting at `offset` (REST) when resuming"""
        return self._host.open(path, 'rb', rest=offset or None)

    def list(self, path):
        """Sorted entries of a remote directory"""
        entries = []
        for name in self._host.listdir(path):
            if name in ('.', '..'):
                continue
            # lstat so that links are reported as links, not followed
            st = self._host.lstat(child_path(path, name))
            entries.append(entry_from_stat(name, st))
        return sort_entries(entries)

    def close(self):
        self._host.close()
