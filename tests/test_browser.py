import os
import shutil
import tempfile
import unittest
from functools import partial

from ftpbrowse.browser import Browser, FOCUS_RESULTS
from ftpbrowse.config import BrowserSettings, SessionConfig
from ftpbrowse.downloads import DownloadQueue, TransferStatus
from ftpbrowse.listing import DirectoryEntry, EntryType
from ftpbrowse.navigation import Mode
from ftpbrowse.search import IncrementalSearch
from ftpbrowse.session import ConnectionStatus, FTPSession

from fakes import ConnectionFactory, FakeClock, FakeFTP, FakeTree, ImmediateTimer, run_now


def make_tree():
    return FakeTree(
        files={
            '/readme.txt': b'hello',
            '/pub/a.txt': b'a' * 100,
            '/pub/b.txt': b'b' * 200,
            '/pub/docs/guide.txt': b'g',
            '/releases/v1/notes.txt': b'n',
        },
        links={
            '/latest': '/srv/ftp/releases/v1',
            '/broken': '/nowhere/at/all',
            '/pub/rel': '../releases',
        },
    )


class BrowserTestCase(unittest.TestCase):
    """Browser wired to fakes, with every background job run inline"""

    def setUp(self):
        self.tmp = tempfile.mkdtemp(prefix="ftpbrowse-browser-")
        self.tree = make_tree()
        self.ftp = FakeFTP(self.tree)
        self.clock = FakeClock()
        self.settings = BrowserSettings(download_dir=self.tmp, progress_interval=0)
        self.factory = ConnectionFactory(self.tree)

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def make_browser(self, ftp_factory=None):
        session = FTPSession(SessionConfig(host="ftp.example.com"),
                             ftp_factory=ftp_factory or (lambda config: self.ftp))
        downloads = DownloadQueue(self.factory, self.settings, clock=self.clock, spawn=run_now)
        browser = Browser(session, self.settings, downloads=downloads, spawn=run_now, clock=self.clock,
                          search_factory=partial(IncrementalSearch, timer_factory=ImmediateTimer))
        browser.start()
        return browser

    def names(self, browser):
        return [entry.name for entry in browser.snapshot().items]

    def press(self, browser, *keys):
        for key in keys:
            browser.handle_key(key)


class TestBrowse(BrowserTestCase):

    def setUp(self):
        super().setUp()
        self.browser = self.make_browser()

    def test_start(self):
        snap = self.browser.snapshot()
        self.assertEqual(snap.mode, Mode.BROWSE)
        self.assertEqual(snap.status, ConnectionStatus.CONNECTED)
        self.assertEqual(snap.current_path, '/')
        self.assertEqual(self.names(self.browser), ['pub', 'releases', 'broken', 'latest', 'readme.txt'])
        self.assertFalse(snap.busy)
        self.assertIsNone(snap.message)

    def test_enter_directory_and_back(self):
        self.press(self.browser, 'j', 'j', 'j', 'j', 'space', 'k', 'k', 'k', 'k', 'enter')
        snap = self.browser.snapshot()
        self.assertEqual(snap.current_path, '/pub')
        self.assertEqual(self.names(self.browser), ['docs', 'a.txt', 'b.txt', 'rel'])
        self.assertEqual(snap.checked, frozenset())
        self.assertEqual(snap.global_index, 0)

        self.press(self.browser, 'left')
        self.assertEqual(self.browser.snapshot().current_path, '/')

    def test_enter_on_file_toggles(self):
        self.press(self.browser, '5', 'enter')
        self.assertEqual(self.browser.snapshot().checked, frozenset({4}))
        self.press(self.browser, 'enter')
        self.assertEqual(self.browser.snapshot().checked, frozenset())

    def test_right_ignores_files(self):
        self.press(self.browser, '5', 'right')
        self.assertEqual(self.browser.snapshot().current_path, '/')

    def test_absolute_link_falls_back(self):
        self.press(self.browser, '4', 'enter')
        self.assertEqual(self.browser.snapshot().current_path, '/releases/v1')
        self.assertEqual(self.names(self.browser), ['notes.txt'])

    def test_relative_link(self):
        self.press(self.browser, 'enter', '4', 'right')
        self.assertEqual(self.browser.snapshot().current_path, '/releases')

    def test_broken_link(self):
        self.press(self.browser, '3', 'enter')
        snap = self.browser.snapshot()
        self.assertEqual(snap.current_path, '/')
        self.assertEqual(snap.message, "Cannot access link target: /nowhere/at/all")
        self.assertTrue(snap.message_is_error)

        self.clock.advance(self.settings.error_display + 1)
        self.browser.tick()
        self.assertIsNone(self.browser.snapshot().message)

    def test_escape(self):
        self.press(self.browser, 'space', 'escape')
        self.assertEqual(self.browser.snapshot().checked, frozenset())
        self.press(self.browser, 'escape')
        self.assertEqual(self.browser.snapshot().current_path, '/')
        self.press(self.browser, 'enter', 'escape')
        self.assertEqual(self.browser.snapshot().current_path, '/')

    def test_select_all(self):
        self.press(self.browser, 'a')
        self.assertEqual(len(self.browser.snapshot().checked), 5)
        self.press(self.browser, 'a')
        self.assertEqual(len(self.browser.snapshot().checked), 0)

    def test_quit(self):
        self.assertFalse(self.browser.handle_key('q'))

    def test_busy_ignores_keys(self):
        self.browser.busy = True
        self.assertTrue(self.browser.handle_key('j'))
        self.assertEqual(self.browser.snapshot().global_index, 0)
        self.assertFalse(self.browser.handle_key('q'))

    def test_viewport(self):
        self.browser.set_viewport(30)
        self.assertEqual(self.browser.snapshot().page_size, 15)

    def test_help(self):
        self.press(self.browser, '?')
        self.assertEqual(self.browser.snapshot().mode, Mode.HELP)
        self.press(self.browser, 'x')
        self.assertEqual(self.browser.snapshot().mode, Mode.HELP)
        self.press(self.browser, 'escape')
        self.assertEqual(self.browser.snapshot().mode, Mode.BROWSE)

    def test_preview(self):
        self.press(self.browser, '5', 'p')
        snap = self.browser.snapshot()
        self.assertEqual(snap.mode, Mode.PREVIEW)
        self.assertEqual(snap.preview_title, '/readme.txt')
        self.assertEqual(snap.preview_content, 'hello')
        self.assertTrue(self.browser.handle_key('q'))
        self.assertEqual(self.browser.snapshot().mode, Mode.BROWSE)

    def test_preview_failure(self):
        del self.tree.files['/readme.txt']
        self.press(self.browser, '5', 'p')
        self.assertEqual(self.browser.snapshot().preview_content, "Failed to preview readme.txt")

    def test_preview_ignores_directories(self):
        self.press(self.browser, 'p')
        self.assertEqual(self.browser.snapshot().mode, Mode.BROWSE)


class TestConnectFailure(BrowserTestCase):

    def test_error_stays_until_refresh_succeeds(self):
        attempts = []

        def flaky(config):
            attempts.append(config)
            if len(attempts) == 1:
                raise ConnectionRefusedError(111, "Connection refused")
            return self.ftp

        browser = self.make_browser(flaky)
        snap = browser.snapshot()
        self.assertEqual(snap.mode, Mode.BROWSE)
        self.assertEqual(snap.message, "Cannot connect to FTP server")
        self.assertEqual(snap.items, ())

        self.clock.advance(60)
        browser.tick()
        self.assertEqual(browser.snapshot().message, "Cannot connect to FTP server")

        browser.handle_key('r')
        snap = browser.snapshot()
        self.assertIsNone(snap.message)
        self.assertEqual(len(snap.items), 5)
        self.assertEqual(len(attempts), 2)


class TestDownloads(BrowserTestCase):

    def setUp(self):
        super().setUp()
        self.browser = self.make_browser()

    def test_checked_entries(self):
        self.press(self.browser, 'enter', 'j', 'space', 'j', 'space', 'd')
        records = self.browser.downloads.records()
        self.assertEqual([record.filename for record in records], ['a.txt', 'b.txt'])
        self.assertTrue(all(record.status is TransferStatus.COMPLETED for record in records))
        self.assertEqual(os.path.getsize(os.path.join(self.tmp, 'b.txt')), 200)
        snap = self.browser.snapshot()
        self.assertEqual(snap.checked, frozenset())
        self.assertEqual(snap.message, "Queued 2 download(s)")
        self.assertFalse(snap.message_is_error)

    def test_cursor_directory_is_recursive(self):
        self.press(self.browser, 'd')
        record, = self.browser.downloads.records()
        self.assertTrue(record.is_directory)
        self.assertEqual(record.remote_path, '/pub')
        self.assertEqual(record.status, TransferStatus.COMPLETED)
        self.assertTrue(os.path.isfile(os.path.join(self.tmp, 'pub', 'docs', 'guide.txt')))

    def test_links_are_skipped(self):
        self.press(self.browser, '4', 'd')
        self.assertEqual(self.browser.downloads.records(), [])
        self.assertIn("Skipped 1 link", self.browser.snapshot().message)

    def test_finished_downloads_are_pruned(self):
        self.press(self.browser, '5', 'd')
        self.assertEqual(len(self.browser.snapshot().downloads), 1)
        self.clock.advance(self.settings.download_retention)
        self.browser.tick()
        self.assertEqual(self.browser.snapshot().downloads, ())


class TestSearch(BrowserTestCase):

    def setUp(self):
        super().setUp()
        self.browser = self.make_browser()

    def test_search_preview_and_dismiss(self):
        self.press(self.browser, '/')
        self.assertEqual(self.browser.snapshot().mode, Mode.SEARCH)
        self.press(self.browser, 'g', 'u', 'i')
        snap = self.browser.snapshot()
        self.assertEqual(snap.search_query, 'gui')
        self.assertEqual([(entry.origin_path, entry.name) for entry in snap.items], [('/pub/docs', 'guide.txt')])
        self.assertFalse(snap.searching)

        self.press(self.browser, 'tab')
        self.assertEqual(self.browser.snapshot().search_focus, FOCUS_RESULTS)
        self.press(self.browser, 'enter')
        snap = self.browser.snapshot()
        self.assertEqual(snap.mode, Mode.PREVIEW)
        self.assertEqual(snap.preview_title, '/pub/docs/guide.txt')
        self.assertEqual(snap.preview_content, 'g')

        self.press(self.browser, 'escape')
        snap = self.browser.snapshot()
        self.assertEqual(snap.mode, Mode.BROWSE)
        self.assertEqual(len(snap.items), 5)
        self.assertEqual(snap.search_query, '')

    def test_escape_cancels(self):
        self.press(self.browser, '/', 'n', 'o', 'escape')
        snap = self.browser.snapshot()
        self.assertEqual(snap.mode, Mode.BROWSE)
        self.assertEqual(snap.search_query, '')
        self.assertEqual(self.names(self.browser), ['pub', 'releases', 'broken', 'latest', 'readme.txt'])

    def test_new_query_clears_checked(self):
        self.press(self.browser, '/', 't', 'x', 't', 'tab', 'space')
        self.assertEqual(self.browser.snapshot().checked, frozenset({0}))
        self.press(self.browser, 'tab', 'backspace')
        snap = self.browser.snapshot()
        self.assertEqual(snap.search_query, 'tx')
        self.assertEqual(snap.checked, frozenset())

    def test_enter_directory_from_results(self):
        self.press(self.browser, '/', 'd', 'o', 'c', 's', 'tab', 'enter')
        snap = self.browser.snapshot()
        self.assertEqual(snap.mode, Mode.BROWSE)
        self.assertEqual(snap.current_path, '/pub/docs')
        self.assertEqual(self.names(self.browser), ['guide.txt'])

    def test_download_from_results(self):
        self.press(self.browser, '/', 'n', 'o', 't', 'e', 's', 'tab', 'd')
        record, = self.browser.downloads.records()
        self.assertEqual(record.remote_path, '/releases/v1/notes.txt')
        self.assertEqual(record.status, TransferStatus.COMPLETED)

    def test_late_batch_from_previous_query_is_dropped(self):
        self.press(self.browser, '/')
        search = self.browser._search
        previous = search.generation
        search._buffer_match(previous, DirectoryEntry(EntryType.FILE, 'old-query-hit.txt').with_origin('/'))

        submit = search.submit

        def flush_then_submit(query, start_path):
            # The previous walk's flusher gets in just before the new search is scheduled
            search._flush(previous)
            return submit(query, start_path)

        search.submit = flush_then_submit
        self.browser.set_search_query('zzz')
        snap = self.browser.snapshot()
        self.assertEqual(snap.search_query, 'zzz')
        self.assertEqual(snap.items, ())

    def test_starting_search_clears_previous_results(self):
        self.press(self.browser, '/', 'a', 'escape', '/')
        snap = self.browser.snapshot()
        self.assertEqual(snap.search_query, '')
        self.assertEqual(snap.items, ())


if __name__ == '__main__':
    unittest.main()
