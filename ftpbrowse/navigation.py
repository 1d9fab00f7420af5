"""
Navigation state: modes, cursor/page/checked-set model and link target resolution
"""

from enum import Enum

from .config import DEFAULT_ITEMS_PER_PAGE
from .paths import child_path, is_absolute, join_path, normalize_path, split_path


class Mode(Enum):
    CONNECTING = 'connecting'
    BROWSE = 'browse'
    SEARCH = 'search'
    PREVIEW = 'preview'
    HELP = 'help'


class SelectionState:
    """Cursor, page and checked-set over one displayed list

    Items are addressed by a global index; (page, cursor) is always
    divmod(global_index, page_size). Replacing the list (reset) clears the checked-set.
    """

    def __init__(self, page_size=DEFAULT_ITEMS_PER_PAGE):
        if page_size < 1:
            raise ValueError("page_size must be positive")
        self.page_size = page_size
        self.page = 0
        self.cursor = 0
        self.checked = set()
        self.item_count = 0

    @property
    def global_index(self):
        return self.page * self.page_size + self.cursor

    def locate(self, index):
        """(page, offset within page) of a global index"""
        return divmod(index, self.page_size)

    @property
    def total_pages(self):
        return max(1, -(-self.item_count // self.page_size))

    def page_bounds(self):
        """Global index range [start, end) of the current page"""
        start = self.page * self.page_size
        return start, min(start + self.page_size, self.item_count)

    # -------------------------
    # list changes
    # -------------------------
    def reset(self, item_count=0):
        """A new list replaced the old one: cursor to 0, nothing checked"""
        self.item_count = item_count
        self.page = 0
        self.cursor = 0
        self.checked = set()

    def extend(self, item_count):
        """Items were appended; existing indices still point at the same items"""
        self.item_count = max(self.item_count, item_count)

    def set_page_size(self, page_size):
        """Change the page size, keeping the cursor on the same item"""
        if page_size < 1 or page_size == self.page_size:
            return
        index = self.global_index
        self.page_size = page_size
        self.page, self.cursor = self.locate(index)

    # -------------------------
    # cursor movement
    # -------------------------
    def move_to(self, index):
        if index < 0 or index >= self.item_count:
            return False
        self.page, self.cursor = self.locate(index)
        return True

    def move_by(self, delta):
        return self.move_to(self.global_index + delta)

    def quick_move(self, number):
        """Move to the `number`-th item (1-based) of the current page"""
        return self.move_to(self.page * self.page_size + number - 1)

    def next_page(self):
        last = self.total_pages - 1
        if self.page < last:
            self.page += 1
            self.cursor = 0

    def prev_page(self):
        if self.page > 0:
            self.page -= 1
            self.cursor = 0

    def first_page(self):
        self.page = 0
        self.cursor = 0

    def last_page(self):
        self.page = self.total_pages - 1
        self.cursor = 0

    # -------------------------
    # checked-set
    # -------------------------
    def toggle(self, index=None):
        index = self.global_index if index is None else index
        if index < 0 or index >= self.item_count:
            return
        if index in self.checked:
            self.checked.discard(index)
        else:
            self.checked.add(index)

    def toggle_all(self):
        """Check every item, or uncheck everything when all are already checked"""
        if self.item_count and len(self.checked) == self.item_count:
            self.checked = set()
        else:
            self.checked = set(range(self.item_count))

    def clear_checked(self):
        self.checked = set()

    def checked_indices(self):
        return sorted(self.checked)


def link_candidates(base_path, target, fallback=True):
    """Paths to try, in order, when following a link to `target` found in `base_path`

    A relative target is resolved against the link's directory. For an absolute
    target that does not exist (a chrooted server often exposes a link whose
    target is absolute on the host), leading segments are stripped one by one.
    """
    if is_absolute(target):
        first = normalize_path(target)
    else:
        first = join_path(base_path, target)
    candidates = [first]

    if fallback and is_absolute(target):
        segments = split_path(target)
        for start in range(1, len(segments)):
            stripped = normalize_path('/'.join(segments[start:]))
            if stripped not in candidates:
                candidates.append(stripped)
    return candidates


def entry_path(entry, current_path):
    """Remote path of an entry; search hits carry the directory they were found in"""
    return child_path(entry.origin_path or current_path, entry.name)
