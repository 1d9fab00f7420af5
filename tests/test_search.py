import threading
import time
import unittest

from ftpbrowse.search import IncrementalSearch, SearchEngine

from fakes import FakeTree, ImmediateTimer


def make_tree():
    return FakeTree(files={
        '/Report.txt': b'r',
        '/docs/report-2023.pdf': b'p',
        '/docs/notes.txt': b'n',
        '/docs/old/report-2019.pdf': b'o',
        '/docs/old/archive/a/b/report-deep.txt': b'd',
        '/media/song.mp3': b's',
    }, dirs=['/reports'])


class RecordingLister:
    def __init__(self, tree, broken=()):
        self.tree = tree
        self.broken = set(broken)
        self.listed = []

    def __call__(self, path):
        self.listed.append(path)
        if path in self.broken:
            raise PermissionError(f"550 {path}: Permission denied")
        return self.tree.children(path)


class TestSearchEngine(unittest.TestCase):
    """Depth-first, depth-limited name search"""

    def setUp(self):
        self.lister = RecordingLister(make_tree())

    def test_matches_are_tagged_with_their_directory(self):
        matches = SearchEngine(self.lister).search('/', 'REPORT', max_depth=3)
        found = [(entry.origin_path, entry.name) for entry in matches]
        # Depth-first: a directory's subtree is searched before its later siblings
        self.assertEqual(found, [
            ('/docs/old', 'report-2019.pdf'),
            ('/docs', 'report-2023.pdf'),
            ('/', 'reports'),
            ('/', 'Report.txt'),
        ])

    def test_depth_limit(self):
        shallow = SearchEngine(self.lister).search('/', 'report', max_depth=1)
        self.assertEqual({entry.origin_path for entry in shallow}, {'/'})
        self.assertEqual(self.lister.listed, ['/'])

        deep = SearchEngine(RecordingLister(make_tree())).search('/', 'report', max_depth=10)
        self.assertIn('report-deep.txt', [entry.name for entry in deep])

    def test_zero_depth_lists_nothing(self):
        self.assertEqual(SearchEngine(self.lister).search('/', 'x', max_depth=0), [])
        self.assertEqual(self.lister.listed, [])

    def test_unreadable_directory_is_skipped(self):
        lister = RecordingLister(make_tree(), broken=['/docs'])
        matches = SearchEngine(lister).search('/', 'song', max_depth=5)
        self.assertEqual([entry.name for entry in matches], ['song.mp3'])

    def test_callbacks(self):
        matched, visited = [], []
        SearchEngine(self.lister).search('/docs', 'pdf', max_depth=2,
                                         on_match=matched.append, on_directory=visited.append)
        self.assertEqual([entry.name for entry in matched], ['report-2019.pdf', 'report-2023.pdf'])
        self.assertEqual(visited, ['/docs', '/docs/old'])

    def test_cancel_stops_new_listings(self):
        engine = SearchEngine(self.lister)

        def on_match(entry):
            engine.cancel()

        matches = engine.search('/', 'report', max_depth=3, on_match=on_match)
        self.assertEqual(len(matches), 1)
        self.assertEqual(self.lister.listed, ['/', '/docs', '/docs/old'])
        self.assertTrue(engine.cancelled)

    def test_cancelled_engine_does_nothing(self):
        engine = SearchEngine(self.lister)
        engine.cancel()
        engine.cancel()
        self.assertEqual(engine.search('/', 'report'), [])


class TestIncrementalSearch(unittest.TestCase):
    """Debounced, batch-flushed search runner"""

    def setUp(self):
        self.lister = RecordingLister(make_tree())
        self.batches = []
        self.done = []

    def make(self, **options):
        options.setdefault('timer_factory', ImmediateTimer)
        options.setdefault('flush_interval', 0.05)
        return IncrementalSearch(self.lister, lambda generation, entries: self.batches.append((generation, entries)),
                                 on_done=self.done.append, **options)

    def test_results_are_delivered(self):
        search = self.make(max_depth=3)
        generation = search.submit('report', '/')
        names = [entry.name for _gen, batch in self.batches for entry in batch]
        self.assertEqual(names, ['report-2019.pdf', 'report-2023.pdf', 'reports', 'Report.txt'])
        self.assertTrue(all(gen == generation for gen, _batch in self.batches))
        self.assertEqual(self.done, [generation])
        self.assertFalse(search.searching)

    def test_empty_query_starts_nothing(self):
        search = self.make()
        search.submit('   ', '/')
        self.assertEqual(self.batches, [])
        self.assertEqual(self.done, [])
        self.assertEqual(self.lister.listed, [])

    def test_new_submit_supersedes_old(self):
        search = self.make()
        first = search.submit('song', '/')
        second = search.submit('notes', '/')
        self.assertGreater(second, first)
        self.assertEqual([entry.name for _gen, batch in self.batches if _gen == second for entry in batch],
                         ['notes.txt'])

    def test_cancel_is_idempotent(self):
        search = self.make()
        before = search.generation
        search.cancel()
        search.cancel()
        self.assertEqual(search.generation, before + 2)
        self.assertFalse(search.searching)

    def test_cancel_during_debounce(self):
        search = self.make(timer_factory=threading.Timer, debounce=0.1)
        search.submit('report', '/')
        self.assertTrue(search.searching)
        search.cancel()
        time.sleep(0.3)
        self.assertEqual(self.batches, [])
        self.assertEqual(self.lister.listed, [])

    def test_debounced_search_runs(self):
        finished = threading.Event()
        search = IncrementalSearch(self.lister, lambda generation, entries: self.batches.append(entries),
                                   on_done=lambda generation: finished.set(), debounce=0.05, flush_interval=0.05)
        search.submit('song', '/media')
        self.assertTrue(finished.wait(5))
        self.assertEqual([entry.name for batch in self.batches for entry in batch], ['song.mp3'])
        self.assertEqual(self.batches[0][0].origin_path, '/media')


if __name__ == '__main__':
    unittest.main()
