"""
Directory Archive Streamer

Design Decision: Directory Transfer
===================================

Options Considered:
1. Build a temporary .zip, then serve it
   - Needs free disk space equal to the archive
   - Receiver waits for the whole archive to be built
2. Hand-written streaming ZIP writer
   - Full control, lots of format details to get right
3. zipfile writing into a non-seekable sink
   - zipfile falls back to data descriptors when it cannot seek
   - We drain the sink after every block we feed it

Decision: zipfile into a drained sink
- Members are ZIP_DEFLATED, named by their POSIX path relative to the root
- One file is read at a time, in fixed-size blocks
- Memory use does not depend on archive size
"""

import logging
import os
import zipfile
from pathlib import Path
from typing import Iterator, List, Tuple

from .protocol import BUFFER_SIZE

logger = logging.getLogger(__name__)


class _DrainSink:
    """Write-only, non-seekable file object whose contents are taken out by the reader."""

    def __init__(self):
        self._chunks: List[bytes] = []

    def write(self, data) -> int:
        if data:
            self._chunks.append(bytes(data))
        return len(data)

    def flush(self):
        pass

    def drain(self) -> bytes:
        data = b''.join(self._chunks)
        self._chunks.clear()
        return data


def iter_directory(root: Path) -> Iterator[Tuple[str, Path]]:
    """
    Walk ``root`` in a stable (sorted) order.

    Yields:
        (relative POSIX path, absolute path) for every regular file
    """
    root = Path(root)
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in sorted(filenames):
            path = Path(dirpath) / name
            yield path.relative_to(root).as_posix(), path


def stream_directory(root: Path, chunk_size: int = BUFFER_SIZE,
                     compresslevel: int = 6) -> Iterator[bytes]:
    """
    Serialize a directory tree as a deflate ZIP stream.

    Args:
        root: Directory to archive
        chunk_size: Block size used when reading each file
        compresslevel: zlib compression level

    Yields:
        Successive pieces of the archive
    """
    sink = _DrainSink()
    count = 0

    with zipfile.ZipFile(sink, mode='w', compression=zipfile.ZIP_DEFLATED,
                         compresslevel=compresslevel) as zf:
        for arcname, path in iter_directory(root):
            zinfo = zipfile.ZipInfo.from_file(path, arcname, strict_timestamps=False)
            zinfo.compress_type = zipfile.ZIP_DEFLATED

            with open(path, 'rb') as src, zf.open(zinfo, mode='w') as dst:
                while True:
                    block = src.read(chunk_size)
                    if not block:
                        break
                    dst.write(block)
                    data = sink.drain()
                    if data:
                        yield data

            count += 1
            data = sink.drain()
            if data:
                yield data

    # Central directory is written on close
    data = sink.drain()
    if data:
        yield data

    logger.debug(f"Archived {count} files from {root}")
