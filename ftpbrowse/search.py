"""
Recursive name search
SearchEngine walks the tree depth-first; IncrementalSearch adds search-as-you-type
(debounce timer) and periodic batching of matches (flush timer) on top of it.
"""

import logging
import threading

from .config import MAX_SEARCH_DEPTH, SEARCH_DEBOUNCE, SEARCH_FLUSH_INTERVAL
from .paths import child_path, normalize_path

logger = logging.getLogger(__name__)


class SearchEngine:
    """Depth-limited, cancellable, case-insensitive substring search

    `lister(path)` returns the sorted entries of a directory (normally FTPSession.list).
    One engine serves one query; cancel() is final.
    """

    def __init__(self, lister):
        self._lister = lister
        self._cancelled = threading.Event()

    def cancel(self):
        self._cancelled.set()

    @property
    def cancelled(self):
        return self._cancelled.is_set()

    def search(self, start_path, pattern, max_depth=MAX_SEARCH_DEPTH, on_match=None, on_directory=None):
        """Walk from `start_path`, reporting every entry whose name contains `pattern`

        Matches are tagged with the directory they were found in and passed to
        `on_match` as soon as they are seen. Returns all matches found.
        """
        results = []
        self._walk(normalize_path(start_path), pattern.lower(), 0, max_depth,
                   results, on_match, on_directory)
        return results

    def _walk(self, path, needle, depth, max_depth, results, on_match, on_directory):
        if self.cancelled or depth >= max_depth:
            return
        if on_directory:
            on_directory(path)

        try:
            entries = self._lister(path)
        except Exception as exc:
            # One unreadable directory never ends the search
            logger.debug("Search skipped %s: %s", path, exc)
            return

        for entry in entries:
            if self.cancelled:
                return
            if needle in entry.name.lower():
                match = entry.with_origin(path)
                results.append(match)
                if on_match:
                    on_match(match)
            if entry.is_dir and depth + 1 < max_depth:
                self._walk(child_path(path, entry.name), needle, depth + 1, max_depth,
                           results, on_match, on_directory)


class IncrementalSearch:
    """Search-as-you-type: debounced start, matches delivered in periodic batches

    Every submit()/cancel() starts a new generation; batches from older generations
    are dropped, so a stale walk can never leak results into a newer query.
    `on_batch(generation, entries)` and `on_done(generation)` are called from worker threads.
    """

    def __init__(self, lister, on_batch, on_done=None, max_depth=MAX_SEARCH_DEPTH,
                 debounce=SEARCH_DEBOUNCE, flush_interval=SEARCH_FLUSH_INTERVAL,
                 timer_factory=threading.Timer):
        self._lister = lister
        self._on_batch = on_batch
        self._on_done = on_done
        self._max_depth = max_depth
        self._debounce = debounce
        self._flush_interval = flush_interval
        self._timer_factory = timer_factory

        self._lock = threading.Lock()
        # Held across take-and-deliver so batches arrive in match order
        self._flush_lock = threading.Lock()
        self._generation = 0
        self._debounce_timer = None
        self._engine = None
        self._flush_stop = None
        self._buffer = []
        self.searching = False

    @property
    def generation(self):
        return self._generation

    def submit(self, query, start_path):
        """Schedule a search for `query` after the debounce delay; returns its generation"""
        query = query.strip()
        with self._lock:
            self._cancel_locked()
            generation = self._generation
            if not query:
                return generation
            self.searching = True
            timer = self._timer_factory(self._debounce, self._run, args=(generation, query, start_path))
            timer.daemon = True
            self._debounce_timer = timer
        timer.start()
        return generation

    def cancel(self):
        """Stop any pending or running search; safe to call repeatedly"""
        with self._lock:
            self._cancel_locked()

    def _cancel_locked(self):
        if self._debounce_timer is not None:
            self._debounce_timer.cancel()
            self._debounce_timer = None
        if self._engine is not None:
            self._engine.cancel()
            self._engine = None
        if self._flush_stop is not None:
            self._flush_stop.set()
            self._flush_stop = None
        self._buffer = []
        self.searching = False
        self._generation += 1

    def _run(self, generation, query, start_path):
        engine = SearchEngine(self._lister)
        stop = threading.Event()
        with self._lock:
            if generation != self._generation:
                return
            self._debounce_timer = None
            self._engine = engine
            self._flush_stop = stop

        logger.info("Searching %s for %r", start_path, query)
        flusher = threading.Thread(target=self._flush_loop, args=(generation, stop), daemon=True)
        flusher.start()
        try:
            matches = engine.search(start_path, query, self._max_depth,
                                    on_match=lambda entry: self._buffer_match(generation, entry))
        finally:
            stop.set()
            flusher.join()
            self._flush(generation)

        with self._lock:
            finished = generation == self._generation
            if finished:
                self._engine = None
                self._flush_stop = None
                self.searching = False
        if finished:
            logger.info("Search for %r finished with %d matches", query, len(matches))
            if self._on_done:
                self._on_done(generation)

    def _buffer_match(self, generation, entry):
        with self._lock:
            if generation == self._generation:
                self._buffer.append(entry)

    def _flush_loop(self, generation, stop):
        while not stop.wait(self._flush_interval):
            self._flush(generation)

    def _flush(self, generation):
        with self._flush_lock:
            with self._lock:
                if generation != self._generation or not self._buffer:
                    return
                batch, self._buffer = self._buffer, []
            self._on_batch(generation, batch)
