"""
Remote path helpers
Pure functions for slash-separated FTP paths (never os.path, the server is always '/')
"""

ROOT = '/'
SEPARATOR = '/'
CURRENT = '.'
PARENT = '..'


def normalize_path(path):
    """Normalize a remote path: single leading slash, no trailing slash, no '.'/'..' segments"""
    if not path:
        return ROOT

    # Some servers hand back Windows separators in link targets
    path = path.replace('\\', SEPARATOR)

    resolved = []
    for segment in path.split(SEPARATOR):
        if segment in ('', CURRENT):
            continue
        if segment == PARENT:
            # '..' above root stays at root
            if resolved:
                resolved.pop()
            continue
        resolved.append(segment)

    return ROOT + SEPARATOR.join(resolved)


def join_path(*segments):
    """Join path segments and normalize the result"""
    parts = [segment for segment in segments if segment]
    if not parts:
        return ROOT
    return normalize_path(SEPARATOR.join(parts))


def child_path(parent, name):
    """Path of an entry called `name` inside directory `parent`"""
    parent = normalize_path(parent)
    if parent == ROOT:
        return f"/{name}"
    return f"{parent}/{name}"


def parent_path(path):
    """Parent directory of `path` (root is its own parent)"""
    segments = split_path(path)
    if len(segments) <= 1:
        return ROOT
    return ROOT + SEPARATOR.join(segments[:-1])


def base_name(path):
    """Last segment of `path`, or '/' for root"""
    segments = split_path(path)
    if not segments:
        return ROOT
    return segments[-1]


def split_path(path):
    """Segments of the normalized path, root gives an empty list"""
    return [segment for segment in normalize_path(path).split(SEPARATOR) if segment]


def is_absolute(path):
    return bool(path) and path.replace('\\', SEPARATOR).startswith(SEPARATOR)
