"""
Interactive browser state machine
Maps key names to actions on the session, search runner and download queue.
Slow work runs on worker threads; the front end only calls handle_key(), tick()
and snapshot().
"""

import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import Optional, Tuple

from .config import BrowserSettings
from .downloads import DownloadQueue, TransferRecord
from .errors import BrowserError
from .listing import DirectoryEntry
from .navigation import Mode, SelectionState, entry_path, link_candidates
from .paths import ROOT
from .search import IncrementalSearch
from .session import ConnectionStatus

logger = logging.getLogger(__name__)

# Search focus
FOCUS_QUERY = 'query'
FOCUS_RESULTS = 'results'

DISMISS_KEYS = ('q', 'escape', 'up', 'down', 'left', 'right')


@dataclass(frozen=True)
class BrowserSnapshot:
    """Everything the front end draws, taken under the browser lock"""
    mode: Mode
    status: ConnectionStatus
    host: str
    current_path: str
    items: Tuple[DirectoryEntry, ...]
    page: int
    total_pages: int
    page_size: int
    cursor: int
    checked: frozenset
    selected: Optional[DirectoryEntry]
    busy: bool
    message: Optional[str]
    message_is_error: bool
    search_query: str
    search_focus: str
    searching: bool
    preview_title: Optional[str]
    preview_content: Optional[str]
    downloads: Tuple[TransferRecord, ...]

    @property
    def global_index(self):
        return self.page * self.page_size + self.cursor

    def page_items(self):
        """(global index, entry, checked) for every item on the current page"""
        start = self.page * self.page_size
        return [(index, entry, index in self.checked)
                for index, entry in enumerate(self.items[start:start + self.page_size], start)]


def _start_daemon(target, *args):
    threading.Thread(target=target, args=args, daemon=True).start()


class Browser:
    def __init__(self, session, settings=None, downloads=None, spawn=_start_daemon,
                 clock=time.monotonic, search_factory=IncrementalSearch):
        self.session = session
        self.settings = settings or BrowserSettings()
        self.downloads = downloads or DownloadQueue(session.create_download_client, self.settings)
        self._spawn = spawn
        self._clock = clock

        self._lock = threading.RLock()
        self.mode = Mode.CONNECTING
        self.selection = SelectionState(self.settings.items_per_page)
        self.busy = False

        self._search = search_factory(
            session.list,
            on_batch=self._on_search_batch,
            on_done=self._on_search_done,
            max_depth=self.settings.max_search_depth,
            debounce=self.settings.search_debounce,
            flush_interval=self.settings.search_flush_interval,
        )
        self.search_query = ''
        self.search_focus = FOCUS_QUERY
        self.search_results = []
        self.searching = False

        self.preview_title = None
        self.preview_content = None

        self._message = None
        self._message_is_error = False
        self._message_expires = None  # None = stays until replaced

    # -------------------------
    # lifecycle
    # -------------------------
    def start(self):
        """Connect in the background; the browser leaves CONNECTING whatever the outcome"""
        with self._lock:
            self.mode = Mode.CONNECTING
            self.busy = True
        self._spawn(self._connect)

    def _connect(self):
        try:
            self.session.connect()
            entries = self.session.navigate(ROOT)
        except Exception as exc:
            message = exc.message if isinstance(exc, BrowserError) else str(exc) or "Connection failed"
            logger.warning("Initial connection failed: %s", message)
            with self._lock:
                self._set_message(message, error=True, persistent=True)
                self.selection.reset(0)
        else:
            with self._lock:
                self.selection.reset(len(entries))
                self._clear_message()
        finally:
            with self._lock:
                self.mode = Mode.BROWSE
                self.busy = False

    def close(self):
        self._search.cancel()
        self.downloads.cancel_all()
        self.session.disconnect()

    # -------------------------
    # periodic housekeeping
    # -------------------------
    def set_viewport(self, rows):
        with self._lock:
            self.selection.set_page_size(self.settings.page_size_for(rows))

    def tick(self, now=None):
        """Expire transient messages and drop finished downloads past their retention"""
        now = self._clock() if now is None else now
        self.downloads.prune(now)
        with self._lock:
            if self._message_expires is not None and now >= self._message_expires:
                self._clear_message()

    # -------------------------
    # messages
    # -------------------------
    def _set_message(self, text, error=False, persistent=False):
        self._message = text
        self._message_is_error = error
        self._message_expires = None if persistent else self._clock() + self.settings.error_display

    def _clear_message(self):
        self._message = None
        self._message_is_error = False
        self._message_expires = None

    def _flash(self, text, error=True):
        with self._lock:
            self._set_message(text, error=error)

    # -------------------------
    # key dispatch
    # -------------------------
    def handle_key(self, key):
        """Apply one key press; returns False when the user asked to quit"""
        with self._lock:
            mode, busy = self.mode, self.busy

        if mode is Mode.CONNECTING:
            return key != 'q'
        if busy:
            # Only quit is honoured while a request is in flight
            return key != 'q'

        if mode in (Mode.PREVIEW, Mode.HELP):
            if key in DISMISS_KEYS:
                self.dismiss()
            return True
        if mode is Mode.SEARCH:
            self._handle_search_key(key)
            return True
        return self._handle_browse_key(key)

    def _handle_browse_key(self, key):
        if key == 'q':
            return False

        if key == 'escape':
            with self._lock:
                if self.selection.checked:
                    self.selection.clear_checked()
                    return True
            if self.session.current_path != ROOT:
                self.go_back()
        elif key in ('?', 'h'):
            with self._lock:
                self.mode = Mode.HELP
        elif key in ('up', 'k'):
            self._move(-1)
        elif key in ('down', 'j'):
            self._move(1)
        elif key in ('left', 'backspace'):
            self.go_back()
        elif key == 'right':
            entry = self.selected_entry()
            if entry is not None and not entry.is_file:
                self.enter(entry)
        elif key == 'enter':
            entry = self.selected_entry()
            if entry is not None:
                if entry.is_file:
                    self._toggle()
                else:
                    self.enter(entry)
        elif key in ('space', ' '):
            self._toggle()
        elif key == 'a':
            with self._lock:
                self.selection.toggle_all()
        elif key == 'd':
            self.download_selected()
        elif key == 'p':
            entry = self.selected_entry()
            if entry is not None and entry.is_file:
                self.preview(entry)
        elif key == '/':
            self.start_search()
        elif key == 'r':
            self.refresh()
        elif key in ('n', 'pagedown'):
            self._page('next_page')
        elif key == 'pageup':
            self._page('prev_page')
        elif key == 'g':
            self._page('first_page')
        elif key == 'G':
            self._page('last_page')
        elif len(key) == 1 and '1' <= key <= '9':
            with self._lock:
                self.selection.quick_move(int(key))
        return True

    def _handle_search_key(self, key):
        if key == 'escape':
            self.cancel_search()
            return
        if key == 'tab':
            with self._lock:
                self.search_focus = FOCUS_RESULTS if self.search_focus == FOCUS_QUERY else FOCUS_QUERY
            return

        with self._lock:
            focus = self.search_focus
        if focus == FOCUS_QUERY:
            if key == 'backspace':
                self.set_search_query(self.search_query[:-1])
            elif key == 'space':
                self.set_search_query(self.search_query + ' ')
            elif key == 'enter':
                with self._lock:
                    self.search_focus = FOCUS_RESULTS
            elif len(key) == 1 and key.isprintable():
                self.set_search_query(self.search_query + key)
            return

        if key in ('up', 'k'):
            self._move(-1)
        elif key in ('down', 'j'):
            self._move(1)
        elif key in ('space', ' '):
            self._toggle()
        elif key in ('n', 'pagedown'):
            self._page('next_page')
        elif key == 'pageup':
            self._page('prev_page')
        elif key == 'd':
            self.download_selected()
        elif key in ('enter', 'right', 'p'):
            entry = self.selected_entry()
            if entry is None:
                return
            if entry.is_file:
                self.preview(entry)
            elif key != 'p':
                self.enter(entry)

    # -------------------------
    # selection helpers
    # -------------------------
    def _items(self):
        if self.mode is Mode.SEARCH:
            return self.search_results
        return self.session.entries

    def selected_entry(self):
        with self._lock:
            items = self._items()
            index = self.selection.global_index
            return items[index] if 0 <= index < len(items) else None

    def _move(self, delta):
        with self._lock:
            self.selection.move_by(delta)

    def _toggle(self):
        with self._lock:
            self.selection.toggle()

    def _page(self, action):
        with self._lock:
            getattr(self.selection, action)()

    # -------------------------
    # navigation
    # -------------------------
    def _background(self, target, *args):
        with self._lock:
            self.busy = True
        self._spawn(self._run_background, target, args)

    def _run_background(self, target, args):
        try:
            target(*args)
        except Exception:
            logger.exception("Background request failed")
            self._flash("Request failed")
        finally:
            with self._lock:
                self.busy = False

    def _navigate(self, path):
        """Navigate and reset the selection; True on success, message on failure"""
        try:
            entries = self.session.navigate(path)
        except BrowserError as exc:
            logger.info("Navigation to %s failed: %s", path, exc.message)
            return False, exc.message
        except Exception as exc:
            logger.info("Navigation to %s failed: %s", path, exc)
            return False, str(exc) or "Navigation failed"
        with self._lock:
            self.selection.reset(len(entries))
            if self._message_expires is None:
                # A successful listing clears a standing connection error
                self._clear_message()
        return True, None

    def _navigate_or_report(self, path):
        ok, error = self._navigate(path)
        if not ok:
            self._flash(error)

    def _follow_link(self, base, target):
        for candidate in link_candidates(base, target, self.settings.follow_link_fallback):
            ok, _error = self._navigate(candidate)
            if ok:
                return
        self._flash(f"Cannot access link target: {target}")

    def enter(self, entry):
        """Open a directory or follow a link; leaves search mode first"""
        with self._lock:
            base = entry.origin_path or self.session.current_path
            if self.mode is Mode.SEARCH:
                self._leave_search()
                self.mode = Mode.BROWSE

        if entry.is_dir:
            self._background(self._navigate_or_report, entry_path(entry, base))
        elif entry.is_link:
            self._background(self._follow_link, base, entry.link_target or entry.name)

    def go_back(self):
        if self.session.current_path == ROOT:
            return
        self._background(self._go_back)

    def _go_back(self):
        try:
            entries = self.session.go_back()
        except BrowserError as exc:
            self._flash(exc.message)
            return
        with self._lock:
            self.selection.reset(len(entries))

    def refresh(self):
        """Re-list the current directory (re-opens the connection if needed)"""
        self._background(self._navigate_or_report, self.session.current_path)

    # -------------------------
    # preview / help
    # -------------------------
    def preview(self, entry):
        path = entry_path(entry, self.session.current_path)
        with self._lock:
            self.mode = Mode.PREVIEW
            self.preview_title = path
            self.preview_content = None
        self._background(self._load_preview, path, entry.name)

    def _load_preview(self, path, name):
        try:
            content = self.session.preview(path, self.settings.max_preview_bytes)
        except Exception as exc:
            logger.info("Preview of %s failed: %s", path, exc)
            content = f"Failed to preview {name}"
        with self._lock:
            if self.mode is Mode.PREVIEW and self.preview_title == path:
                self.preview_content = content

    def dismiss(self):
        """Close preview/help and return to browsing"""
        with self._lock:
            if self.search_results or self.searching:
                self._leave_search()
            self.mode = Mode.BROWSE
            self.preview_title = None
            self.preview_content = None

    # -------------------------
    # search
    # -------------------------
    def start_search(self):
        self._search.cancel()
        with self._lock:
            self.mode = Mode.SEARCH
            self.search_query = ''
            self.search_focus = FOCUS_QUERY
            self.search_results = []
            self.searching = False
            self.selection.reset(0)

    def set_search_query(self, query):
        """Replace the query; results are cleared and a new search is scheduled"""
        with self._lock:
            # Retire the old generation first so its late batches are dropped
            self._search.cancel()
            self.search_query = query
            self.search_results = []
            self.selection.reset(0)
            self.searching = bool(query.strip())
            self._search.submit(query, self.session.current_path)

    def cancel_search(self):
        with self._lock:
            self._leave_search()
            self.mode = Mode.BROWSE

    def _leave_search(self):
        """Cancel any walk and put the selection back on the directory listing"""
        self._search.cancel()
        self.search_query = ''
        self.search_results = []
        self.searching = False
        self.search_focus = FOCUS_QUERY
        self.selection.reset(len(self.session.entries))

    def _on_search_batch(self, generation, entries):
        with self._lock:
            if generation != self._search.generation or self.mode is not Mode.SEARCH:
                return
            self.search_results.extend(entries)
            self.selection.extend(len(self.search_results))

    def _on_search_done(self, generation):
        with self._lock:
            if generation == self._search.generation:
                self.searching = False

    # -------------------------
    # downloads
    # -------------------------
    def download_selected(self):
        """Queue every checked entry, or the one under the cursor; returns the new ids"""
        with self._lock:
            items = list(self._items())
            indices = self.selection.checked_indices()
            if indices:
                targets = [items[index] for index in indices if index < len(items)]
                self.selection.clear_checked()
            else:
                entry = self.selected_entry()
                targets = [entry] if entry is not None else []
            current = self.session.current_path

        ids = []
        skipped = 0
        for entry in targets:
            if entry.is_link:
                skipped += 1
                continue
            remote = entry_path(entry, current)
            local = os.path.join(self.settings.download_dir, entry.name)
            ids.append(self.downloads.enqueue(remote, local, is_directory=entry.is_dir))

        if skipped:
            self._flash(f"Skipped {skipped} link(s); open a link to download its contents")
        elif ids:
            self._flash(f"Queued {len(ids)} download(s)", error=False)
        return ids

    # -------------------------
    # snapshot
    # -------------------------
    def snapshot(self):
        session = self.session.snapshot()
        downloads = tuple(self.downloads.records())
        with self._lock:
            items = tuple(self.search_results) if self.mode is Mode.SEARCH else session.entries
            selection = self.selection
            index = selection.global_index
            return BrowserSnapshot(
                mode=self.mode,
                status=session.status,
                host=self.session.config.host,
                current_path=session.current_path,
                items=items,
                page=selection.page,
                total_pages=selection.total_pages,
                page_size=selection.page_size,
                cursor=selection.cursor,
                checked=frozenset(selection.checked),
                selected=items[index] if 0 <= index < len(items) else None,
                busy=self.busy or session.busy,
                message=self._message,
                message_is_error=self._message_is_error,
                search_query=self.search_query,
                search_focus=self.search_focus,
                searching=self.searching,
                preview_title=self.preview_title,
                preview_content=self.preview_content,
                downloads=downloads,
            )
