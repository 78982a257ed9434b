"""
Transfer Protocol Constants

Design Decision: Wire Protocol
==============================

Options Considered:
1. Custom TCP framing (length-prefixed messages)
   - Full control, but needs a dedicated client on both ends
2. Plain HTTP with the token in the URL path
   - Any browser or curl can be the peer
   - Range requests give us resume for free

Decision: Plain HTTP
- Downloads:  GET  /d/<token>
- Uploads:    GET  /u/<token>  (HTML form)
              POST /u/<token>  (raw body with X-File-Name, or multipart)
"""

import re
from typing import Optional, Tuple

from ..errors import RangeUnsatisfiable

DOWNLOAD_PREFIX = "/d/"
UPLOAD_PREFIX = "/u/"

# Out-of-band filename header selecting the raw upload path
FILENAME_HEADER = "X-File-Name"

# Defaults (seconds / bytes)
READ_TIMEOUT = 30.0
WRITE_TIMEOUT = 30.0
IDLE_TIMEOUT = 60.0
BUFFER_SIZE = 32 * 1024
MAX_UPLOAD_SIZE = 10 << 30  # 10 GiB

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
}

STDOUT_MARKER = "(stdout)"

_OPEN_RANGE = re.compile(r"^bytes=(\d+)-$")
_CONTENT_RANGE = re.compile(r"^bytes (\d+)-(\d+)/(\d+)$")


def parse_range_start(header: Optional[str], size: int) -> int:
    """
    Parse an open-ended ``Range: bytes=N-`` header.

    Returns 0 when there is no usable range (absent header, N == 0, or a
    form we do not support). Raises RangeUnsatisfiable when N is past the
    end of the resource.
    """
    if not header:
        return 0
    match = _OPEN_RANGE.match(header.strip())
    if not match:
        return 0
    start = int(match.group(1))
    if start >= size:
        raise RangeUnsatisfiable(f"range start {start} beyond size {size}")
    return start


def content_range(start: int, size: int) -> str:
    """Build the Content-Range value for a resumed response."""
    return f"bytes {start}-{size - 1}/{size}"


def parse_content_range(header: Optional[str]) -> Optional[Tuple[int, int, int]]:
    """
    Parse ``Content-Range: bytes S-E/T``.

    Returns (start, end, total), or None for a missing or unparsable value
    (including an unknown ``*`` total).
    """
    if not header:
        return None
    match = _CONTENT_RANGE.match(header.strip())
    if not match:
        return None
    start, end, total = (int(g) for g in match.groups())
    return start, end, total


def attachment(filename: str) -> str:
    """Build a Content-Disposition attachment value."""
    safe = filename.replace('"', "'").replace("\r", "").replace("\n", "")
    return f'attachment; filename="{safe}"'


def download_path(token: str) -> str:
    return f"{DOWNLOAD_PREFIX}{token}"


def upload_path(token: str) -> str:
    return f"{UPLOAD_PREFIX}{token}"
