"""
Directory entries and LIST output parsing
Handles Unix-style and DOS/Windows-style lines, auto-detected per line
"""

import re
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional


class EntryType(Enum):
    DIR = 'DIR'
    FILE = 'FILE'
    LINK = 'LINK'


@dataclass(frozen=True)
class DirectoryEntry:
    """One item of a directory listing (or one search hit)"""
    type: EntryType
    name: str
    size: Optional[int] = None
    modified_at: Optional[datetime] = None
    permissions: Optional[str] = None
    link_target: Optional[str] = None
    # Directory a search hit was found in; None for plain listings
    origin_path: Optional[str] = None

    @property
    def is_dir(self):
        return self.type is EntryType.DIR

    @property
    def is_file(self):
        return self.type is EntryType.FILE

    @property
    def is_link(self):
        return self.type is EntryType.LINK

    def with_origin(self, path):
        return replace(self, origin_path=path)


# drwxr-xr-x 2 user group 4096 Jan 28 10:30 filename
UNIX_LINE = re.compile(
    r'^([dl\-])([rwxsStTl\-]{9})[+@.]?\s+\d+\s+(\S+)\s+(\S+)\s+(\d+)\s+'
    r'(\w{3}\s+\d{1,2}\s+(?:\d{1,2}:\d{2}(?::\d{2})?|\d{4}))\s(.+)$'
)

# 01-28-24 10:30AM <DIR> folder / 01-28-24 10:30AM 12345 file.txt
WINDOWS_LINE = re.compile(
    r'^(\d{2}-\d{2}-\d{2,4})\s+(\d{1,2}:\d{2}\s*(?:AM|PM))\s+(<DIR>|\d+)\s+(.+)$',
    re.IGNORECASE
)

SYMLINK_NAME = re.compile(r'^(.+?)\s+->\s+(.+)$')

MONTHS = {
    'jan': 1, 'feb': 2, 'mar': 3, 'apr': 4, 'may': 5, 'jun': 6,
    'jul': 7, 'aug': 8, 'sep': 9, 'oct': 10, 'nov': 11, 'dec': 12,
}


def parse_listing(text, now=None):
    """Parse raw LIST output (a string or an iterable of lines) into sorted entries

    Unparseable lines ("total 12", banners, garbage) are skipped, as are '.' and '..'.
    """
    lines = text.splitlines() if isinstance(text, str) else text
    entries = []
    for line in lines:
        line = line.rstrip('\r\n')
        if not line.strip():
            continue
        entry = parse_unix_line(line, now) or parse_windows_line(line)
        if entry is None or entry.name in ('.', '..'):
            continue
        entries.append(entry)
    return sort_entries(entries)


def sort_entries(entries):
    """Directories first, then case-sensitive by name"""
    return sorted(entries, key=lambda entry: (not entry.is_dir, entry.name))


def parse_unix_line(line, now=None):
    match = UNIX_LINE.match(line)
    if not match:
        return None

    type_char, perms, _owner, _group, size_str, date_str, name_part = match.groups()

    if type_char == 'd':
        entry_type = EntryType.DIR
    elif type_char == 'l':
        entry_type = EntryType.LINK
    else:
        entry_type = EntryType.FILE

    name = name_part.strip()
    target = None
    if entry_type is EntryType.LINK:
        link = SYMLINK_NAME.match(name)
        if link:
            name, target = link.group(1).strip(), link.group(2).strip()

    if not name:
        return None

    return DirectoryEntry(
        type=entry_type,
        name=name,
        size=None if entry_type is EntryType.DIR else int(size_str),
        modified_at=parse_unix_date(date_str, now),
        permissions=type_char + perms,
        link_target=target,
    )


def parse_windows_line(line):
    match = WINDOWS_LINE.match(line)
    if not match:
        return None

    date_str, time_str, dir_or_size, name_part = match.groups()
    name = name_part.strip()
    if not name:
        return None

    if dir_or_size.upper() == '<DIR>':
        entry_type, size = EntryType.DIR, None
    else:
        entry_type, size = EntryType.FILE, int(dir_or_size)

    return DirectoryEntry(
        type=entry_type,
        name=name,
        size=size,
        modified_at=parse_windows_date(date_str, time_str),
    )


def parse_unix_date(text, now=None):
    """'Jan 28 10:30' (recent, year implied) or 'Jan 28 2024'"""
    parts = text.split()
    if len(parts) < 3:
        return None
    month = MONTHS.get(parts[0].lower())
    if month is None:
        return None

    now = now or datetime.now()
    try:
        day = int(parts[1])
        if ':' in parts[2]:
            hour, minute = (int(value) for value in parts[2].split(':')[:2])
            stamp = datetime(now.year, month, day, hour, minute)
            # Servers drop the year for the last six months, so a date
            # "in the future" belongs to last year
            if stamp > now + timedelta(days=1):
                stamp = stamp.replace(year=now.year - 1)
            return stamp
        year = int(parts[2])
        if year < 100:
            year += 2000
        return datetime(year, month, day)
    except ValueError:
        return None


def parse_windows_date(date_str, time_str):
    """'01-28-24' + '10:30AM'"""
    try:
        month, day, year = (int(value) for value in date_str.split('-'))
        if year < 100:
            year += 2000
        clock = time_str.replace(' ', '').upper()
        hour, minute = (int(value) for value in clock[:-2].split(':'))
        if clock.endswith('PM') and hour != 12:
            hour += 12
        elif clock.endswith('AM') and hour == 12:
            hour = 0
        return datetime(year, month, day, hour, minute)
    except ValueError:
        return None
