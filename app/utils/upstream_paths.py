"""
Checks for client-supplied values that end up inside upstream URL paths.

Werkzeug decodes ``%2F`` and ``%2E`` before routing and requests collapses
``..`` segments before sending, so an id or sub-path has to be checked here
or it can address any Jellyfin endpoint.
"""
from typing import Optional

_UNSAFE_SEGMENTS = ('', '.', '..')
_UNSAFE_CHARACTERS = ('/', '\\', '?', '#')


def is_safe_id(value: Optional[str]) -> bool:
    """A single path segment: no separators, no query or fragment, not a dot segment."""
    if not value or value in _UNSAFE_SEGMENTS:
        return False
    return not any(char in value for char in _UNSAFE_CHARACTERS)


def is_safe_sub_path(path: Optional[str]) -> bool:
    """A relative path of safe segments, e.g. ``hls1/main/0.ts``."""
    if not path:
        return False
    return all(is_safe_id(segment) for segment in path.split('/'))
