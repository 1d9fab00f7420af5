"""
Command line entry point
"""

import argparse
import curses
import logging
import os
import sys

from .browser import Browser
from .config import (
    BrowserSettings, SessionConfig,
    DEFAULT_DOWNLOAD_DIR, DEFAULT_PASS, DEFAULT_PORT, DEFAULT_TIMEOUT_MS, DEFAULT_USER,
)
from .session import FTPSession
from .tui import run

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
LOG_DATEFMT = "%H:%M:%S"


def build_parser():
    ap = argparse.ArgumentParser(
        prog="ftpbrowse",
        description="Browse, search, preview and download from an FTP/FTPS server in the terminal."
    )
    ap.add_argument("host", help="FTP server host name or address")
    ap.add_argument("-P", "--port", type=int, default=DEFAULT_PORT, help="Port (default: 21)")
    ap.add_argument("-u", "--user", default=DEFAULT_USER, help="Username (default: anonymous)")
    ap.add_argument("-p", "--password", default=DEFAULT_PASS, help="Password (default: empty)")
    ap.add_argument("-s", "--secure", action="store_true", help="Use explicit TLS (FTPS)")
    ap.add_argument("-d", "--download-dir", default=DEFAULT_DOWNLOAD_DIR,
                    help="Where downloads are written (default: ./downloads)")
    ap.add_argument("--timeout", type=int, default=DEFAULT_TIMEOUT_MS,
                    help="Connect timeout in milliseconds (default: 10000)")
    ap.add_argument("--active", action="store_true", help="Use active mode (default: passive)")
    ap.add_argument("--max-downloads", type=int, default=None,
                    help="Run at most this many transfers at once (default: no limit)")
    ap.add_argument("--log-file", help="Write a log to this file")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging (with --log-file)")
    return ap


def configure_logging(log_file=None, verbose=False):
    """Log to a file if asked; never to the terminal curses is drawing on"""
    package_logger = logging.getLogger("ftpbrowse")
    if not log_file:
        package_logger.addHandler(logging.NullHandler())
        package_logger.propagate = False
        return package_logger

    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    package_logger.propagate = False
    return package_logger


def main(argv=None):
    ap = build_parser()
    args = ap.parse_args(argv)

    try:
        config = SessionConfig(
            host=args.host,
            port=args.port,
            user=args.user,
            password=args.password,
            secure=args.secure,
            timeout_ms=args.timeout,
            passive=not args.active,
        )
    except ValueError as exc:
        ap.error(str(exc))
    if args.max_downloads is not None and args.max_downloads < 1:
        ap.error("--max-downloads must be at least 1")

    settings = BrowserSettings(download_dir=args.download_dir, max_active_downloads=args.max_downloads)
    logger = configure_logging(args.log_file, args.verbose)
    logger.info("Starting browser for %s:%s", config.host, config.port)

    session = FTPSession(config)
    browser = Browser(session, settings)

    # Escape should register immediately, not after curses' default 1s delay
    os.environ.setdefault("ESCDELAY", "25")
    try:
        curses.wrapper(run, browser)
    except KeyboardInterrupt:
        pass
    finally:
        browser.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
