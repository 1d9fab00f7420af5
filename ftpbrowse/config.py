"""
Connection configuration and browser settings
"""

from dataclasses import dataclass
from typing import Optional

# Default FTP settings
DEFAULT_PORT = 21
DEFAULT_USER = "anonymous"
DEFAULT_PASS = ""
DEFAULT_TIMEOUT_MS = 10000
DEFAULT_SECURE = False
DEFAULT_PASSIVE = True

# UI
DEFAULT_ITEMS_PER_PAGE = 20
MIN_ITEMS_PER_PAGE = 10
MAX_ITEMS_PER_PAGE = 40
CHROME_ROWS = 15  # header + breadcrumb + info panel + status bar + spacing
MAX_PREVIEW_BYTES = 10240  # 10KB

# Search
MAX_SEARCH_DEPTH = 5
SEARCH_DEBOUNCE = 0.3  # seconds after the last keystroke
SEARCH_FLUSH_INTERVAL = 0.2  # seconds between result batches

# Download
DEFAULT_DOWNLOAD_DIR = "./downloads"
RESUME_THRESHOLD = 1024  # files smaller than this are always restarted
PROGRESS_INTERVAL = 0.2  # at most one progress event per interval
DOWNLOAD_RETENTION = 3.0  # seconds a finished transfer stays visible
ERROR_DISPLAY = 8.0  # seconds a transient error stays visible


@dataclass(frozen=True)
class SessionConfig:
    """Everything needed to open (and re-open) a connection to one server"""
    host: str
    port: int = DEFAULT_PORT
    user: str = DEFAULT_USER
    password: str = DEFAULT_PASS
    secure: bool = DEFAULT_SECURE
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    passive: bool = DEFAULT_PASSIVE

    def __post_init__(self):
        if not self.host or not self.host.strip():
            raise ValueError("host is required")
        if not 1 <= int(self.port) <= 65535:
            raise ValueError(f"port must be between 1 and 65535, got {self.port}")
        if self.timeout_ms <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout_ms}")

    @property
    def timeout(self):
        """Connect timeout in seconds, as ftplib expects it"""
        return self.timeout_ms / 1000.0


@dataclass(frozen=True)
class BrowserSettings:
    download_dir: str = DEFAULT_DOWNLOAD_DIR
    items_per_page: int = DEFAULT_ITEMS_PER_PAGE
    min_items_per_page: int = MIN_ITEMS_PER_PAGE
    max_items_per_page: int = MAX_ITEMS_PER_PAGE
    chrome_rows: int = CHROME_ROWS
    max_preview_bytes: int = MAX_PREVIEW_BYTES
    max_search_depth: int = MAX_SEARCH_DEPTH
    search_debounce: float = SEARCH_DEBOUNCE
    search_flush_interval: float = SEARCH_FLUSH_INTERVAL
    resume_threshold: int = RESUME_THRESHOLD
    progress_interval: float = PROGRESS_INTERVAL
    download_retention: float = DOWNLOAD_RETENTION
    error_display: float = ERROR_DISPLAY
    # None = every queued transfer starts immediately
    max_active_downloads: Optional[int] = None
    # Retry absolute link targets with leading segments stripped
    follow_link_fallback: bool = True

    def page_size_for(self, rows):
        """Items per page for a viewport of `rows` terminal rows"""
        return min(self.max_items_per_page, max(self.min_items_per_page, rows - self.chrome_rows))
