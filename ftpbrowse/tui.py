"""
Curses front end
Draws Browser snapshots and feeds key names back into Browser.handle_key()
"""

import curses

from .downloads import TransferStatus
from .navigation import Mode
from .session import ConnectionStatus

HELP_LINES = [
    "Navigation",
    "  Up/k, Down/j     Move cursor",
    "  Left/Backspace   Parent directory",
    "  Right/Enter      Open directory or link (Enter on a file toggles it)",
    "  n/PgDn, PgUp     Next / previous page",
    "  g, G             First / last page",
    "  1-9              Jump to item on this page",
    "",
    "Actions",
    "  Space            Toggle selection",
    "  a                Select all / none",
    "  d                Download selected (or current) items",
    "  p                Preview file",
    "  /                Search below the current directory",
    "  Tab              Switch between query and results (search)",
    "  r                Refresh",
    "  Esc              Clear selection, else parent directory",
    "  ?/h              This help",
    "  q                Quit",
]

KEY_NAMES = {
    curses.KEY_UP: 'up',
    curses.KEY_DOWN: 'down',
    curses.KEY_LEFT: 'left',
    curses.KEY_RIGHT: 'right',
    curses.KEY_ENTER: 'enter',
    curses.KEY_BACKSPACE: 'backspace',
    curses.KEY_PPAGE: 'pageup',
    curses.KEY_NPAGE: 'pagedown',
    10: 'enter',
    13: 'enter',
    127: 'backspace',
    8: 'backspace',
    9: 'tab',
    27: 'escape',
    32: 'space',
}


def key_name(code):
    """Name of a getch() code, or None for codes the browser does not use"""
    if code in KEY_NAMES:
        return KEY_NAMES[code]
    if 32 < code < 127:
        return chr(code)
    return None


def format_size(size):
    if size is None:
        return "-"
    for unit in ['B', 'KB', 'MB', 'GB']:
        if size < 1024:
            return f"{size:.0f} {unit}" if unit == 'B' else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


def format_speed(bytes_per_second):
    return f"{format_size(bytes_per_second or 0)}/s"


def format_eta(seconds):
    """'1:05', '1:02:03', or '--:--' when unknown"""
    if seconds is None:
        return "--:--"
    seconds = int(round(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def format_date(stamp):
    if stamp is None:
        return "-"
    return stamp.strftime("%Y-%m-%d %H:%M")


def progress_bar(percent, width):
    if width <= 0:
        return ""
    filled = int(width * (percent or 0) / 100)
    return '#' * filled + '-' * (width - filled)


def truncate(text, width):
    if width <= 0:
        return ""
    if len(text) <= width:
        return text
    if width <= 3:
        return text[:width]
    return text[:width - 3] + '...'


def describe_download(record, width):
    """One status line for a transfer record"""
    name = record.current_file or record.filename
    if record.status is TransferStatus.ACTIVE:
        if record.percent is None:
            detail = f"{format_size(record.bytes_transferred)}  {format_speed(record.speed)}"
            return truncate(f" {name}  {detail}", width)
        bar = progress_bar(record.percent, 20)
        detail = (f"[{bar}] {record.percent:5.1f}%  {format_speed(record.speed)}  "
                  f"ETA {format_eta(record.eta)}")
        return truncate(f" {name}  {detail}", width)
    if record.status is TransferStatus.FAILED:
        return truncate(f" {name}  failed: {record.error}", width)
    return truncate(f" {name}  {record.status.value}", width)


class BrowserScreen:
    def __init__(self, stdscr, browser):
        self.stdscr = stdscr
        self.browser = browser

        curses.start_color()
        curses.use_default_colors()
        curses.init_pair(1, curses.COLOR_CYAN, -1)      # Info messages
        curses.init_pair(2, curses.COLOR_GREEN, -1)     # Connected
        curses.init_pair(3, curses.COLOR_RED, -1)       # Errors
        curses.init_pair(4, curses.COLOR_YELLOW, -1)    # Help bar / checked
        curses.init_pair(5, curses.COLOR_BLACK, curses.COLOR_CYAN)  # Header bar
        curses.init_pair(6, curses.COLOR_WHITE, curses.COLOR_BLUE)  # Cursor
        curses.init_pair(7, curses.COLOR_BLUE, -1)      # Directories
        curses.curs_set(0)
        self.stdscr.keypad(True)
        # Poll so background results show up without a key press
        self.stdscr.timeout(100)

    def run(self):
        self.browser.start()
        while True:
            h, _w = self.stdscr.getmaxyx()
            self.browser.set_viewport(h)
            self.browser.tick()
            self.draw(self.browser.snapshot())

            code = self.stdscr.getch()
            if code == -1:
                continue
            if code == curses.KEY_RESIZE:
                continue
            key = key_name(code)
            if key is None:
                continue
            if not self.browser.handle_key(key):
                break

    def _put(self, y, x, text, attr=0):
        h, w = self.stdscr.getmaxyx()
        if y < 0 or y >= h or x >= w:
            return
        try:
            self.stdscr.addnstr(y, x, text, max(0, w - x - 1), attr)
        except curses.error:
            pass

    def draw(self, snap):
        self.stdscr.erase()
        h, w = self.stdscr.getmaxyx()

        # Header
        if snap.status is ConnectionStatus.CONNECTED:
            status, color = f" * {snap.host} ", curses.color_pair(2) | curses.A_BOLD
        elif snap.status is ConnectionStatus.CONNECTING or snap.mode is Mode.CONNECTING:
            status, color = f" ~ connecting to {snap.host} ", curses.color_pair(1) | curses.A_BOLD
        else:
            status, color = " o Disconnected ", curses.color_pair(3) | curses.A_BOLD
        self._put(0, 0, " FTP Browser".ljust(w), curses.color_pair(5) | curses.A_BOLD)
        self._put(0, max(0, w - len(status) - 1), status, color)

        # Breadcrumb
        crumb = f" {snap.current_path}"
        if snap.total_pages > 1:
            crumb += f"   (page {snap.page + 1}/{snap.total_pages})"
        if snap.checked:
            crumb += f"   [{len(snap.checked)} selected]"
        self._put(1, 0, crumb, curses.color_pair(7) | curses.A_BOLD)

        body_top = 2
        if snap.mode is Mode.SEARCH:
            marker = '>' if snap.search_focus == 'query' else ' '
            state = "searching..." if snap.searching else f"{len(snap.items)} found"
            self._put(2, 0, f"{marker} Search: {snap.search_query}   {state}", curses.color_pair(4))
            body_top = 3

        footer_rows = 2 + min(len(snap.downloads), 4)
        if snap.mode is Mode.HELP:
            self._draw_lines(HELP_LINES, body_top, h - footer_rows)
        elif snap.mode is Mode.PREVIEW:
            content = snap.preview_content if snap.preview_content is not None else "Loading..."
            self._put(body_top, 0, f" Preview: {snap.preview_title}", curses.A_BOLD)
            self._draw_lines(content.splitlines(), body_top + 1, h - footer_rows)
        else:
            self._draw_items(snap, body_top, h - footer_rows, w)

        # Downloads
        y = h - footer_rows
        for record in snap.downloads[-4:]:
            self._put(y, 0, describe_download(record, w - 1), curses.color_pair(1))
            y += 1

        # Message / help bar
        if snap.message:
            attr = curses.color_pair(3) if snap.message_is_error else curses.color_pair(2)
            self._put(h - 2, 0, f" {snap.message}", attr)
        elif snap.busy:
            self._put(h - 2, 0, " Loading...", curses.color_pair(1))
        help_text = " ?:Help  /:Search  d:Download  p:Preview  Space:Select  r:Refresh  q:Quit "
        self._put(h - 1, 0, help_text, curses.color_pair(4))

        self.stdscr.refresh()

    def _draw_lines(self, lines, top, bottom):
        for offset, line in enumerate(lines[:max(0, bottom - top)]):
            self._put(top + offset, 0, line.expandtabs(4))

    def _draw_items(self, snap, top, bottom, w):
        if not snap.items and snap.mode is Mode.BROWSE:
            self._put(top, 0, "  (empty)" if not snap.busy else "  Loading...")
            return
        for row, (index, entry, checked) in enumerate(snap.page_items()):
            y = top + row
            if y >= bottom:
                break
            mark = '[x]' if checked else '[ ]'
            name = entry.name + ('/' if entry.is_dir else '')
            if entry.is_link and entry.link_target:
                name += f" -> {entry.link_target}"
            if entry.origin_path:
                name = f"{entry.origin_path.rstrip('/')}/{name}"
            size = "<DIR>" if entry.is_dir else format_size(entry.size)
            right = f"{size:>10}  {format_date(entry.modified_at)}"
            line = f" {mark} {truncate(name, max(0, w - len(right) - 9))}"
            line = line.ljust(max(0, w - len(right) - 2)) + right

            if index == snap.global_index:
                attr = curses.color_pair(6) | curses.A_BOLD
            elif checked:
                attr = curses.color_pair(4)
            elif entry.is_dir:
                attr = curses.color_pair(7)
            else:
                attr = 0
            self._put(y, 0, line, attr)


def run(stdscr, browser):
    BrowserScreen(stdscr, browser).run()
