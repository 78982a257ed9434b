"""
Upload Ingestion (host mode)

Design Decision: Upload Paths
=============================

Options Considered:
1. multipart/form-data only
   - What every HTML form sends
   - Boundary scanning on every byte, awkward to stream
2. Raw request body, filename in a header
   - No parsing at all: socket -> buffer -> file
   - Needs a scripted client (our upload page / CLI)
3. Both, selected per request

Decision: Both
- Raw fast path when the X-File-Name header is present
- Incremental multipart parsing (python-multipart push parser) otherwise

Both paths share the same guarantees:
- Names are reduced to a base name inside the upload directory
- Collisions become "name (1).ext", "name (2).ext", ... never overwrites
- A write that does not complete deletes its file
"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, List, Optional, Tuple
from urllib.parse import unquote

import aiofiles
import aiofiles.os
from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header
from starlette.requests import ClientDisconnect

from ..errors import BadUpload, SizeLimitExceeded, TransferIOError
from .buffers import BufferPool, BufferedSink
from .progress import format_size, throughput_mbps
from .protocol import MAX_UPLOAD_SIZE

logger = logging.getLogger(__name__)

# Numbered candidates tried before falling back to a timestamp suffix
MAX_NUMBERED_NAMES = 1000
# Attempts at exclusive creation when a concurrent upload wins the race
MAX_CREATE_ATTEMPTS = 5

# Errors meaning the transfer itself broke (peer gone, deadline, disk)
_STREAM_ERRORS = (OSError, asyncio.TimeoutError, ClientDisconnect)


@dataclass
class SavedUpload:
    """A file fully written to the upload directory."""
    filename: str
    size: int
    path: Path
    elapsed: float = 0.0

    @property
    def mbps(self) -> float:
        return throughput_mbps(self.size, self.elapsed)

    def to_dict(self) -> dict:
        return {'filename': self.filename, 'size': self.size}


def sanitize_filename(name: str) -> str:
    """
    Reduce a client-supplied name to a bare file name.

    Both separators are stripped so a Windows-style path from a browser
    cannot smuggle directories either.

    Raises:
        BadUpload: for empty, ".", ".." or NUL-containing names
    """
    base = name.replace('\\', '/').rsplit('/', 1)[-1].strip()
    if base in ('', '.', '..') or '\x00' in base:
        raise BadUpload("invalid filename")
    return base


def decode_filename(encoded: str) -> str:
    """Percent-decode the X-File-Name header value and sanitize it."""
    try:
        name = unquote(encoded, errors='strict')
    except UnicodeDecodeError:
        raise BadUpload("invalid filename")
    return sanitize_filename(name)


def unique_path(directory: Path, name: str) -> Path:
    """
    Find a free path for ``name`` inside ``directory``.

    Tries the name itself, then "stem (1).ext" ... "stem (999).ext", then
    falls back to a nanosecond timestamp suffix.
    """
    path = directory / name
    if not path.exists():
        return path

    stem, ext = os.path.splitext(name)
    for i in range(1, MAX_NUMBERED_NAMES):
        path = directory / f"{stem} ({i}){ext}"
        if not path.exists():
            return path

    return directory / f"{stem}_{time.time_ns()}{ext}"


@dataclass
class _OpenFile:
    """Destination currently being written."""
    name: str
    path: Path
    file: object
    sink: BufferedSink
    started: float = field(default_factory=time.monotonic)


class UploadIngestor:
    """
    Writes uploaded bodies into the upload directory.

    One ingestor serves the whole session; requests share only its buffer pool.
    """

    def __init__(self, directory: Path, pool: Optional[BufferPool] = None,
                 max_upload_size: int = MAX_UPLOAD_SIZE):
        self.directory = Path(directory)
        self.pool = pool or BufferPool()
        self.max_upload_size = max_upload_size

        # Statistics
        self.files_received = 0
        self.bytes_received = 0

    async def _ensure_directory(self):
        await aiofiles.os.makedirs(self.directory, exist_ok=True)

    async def _create_exclusive(self, name: str) -> Tuple[Path, object]:
        """Probe for a free name, then create it exclusively."""
        for _ in range(MAX_CREATE_ATTEMPTS):
            path = unique_path(self.directory, name)
            try:
                f = await aiofiles.open(path, 'xb')
            except FileExistsError:
                logger.debug(f"Lost creation race for {path.name}, probing again")
                continue
            return path, f
        raise TransferIOError(f"could not create a unique file for {name}")

    async def _discard(self, path: Path, reason: str):
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass
        logger.warning(f"Upload canceled/failed: deleted incomplete file {path.name} ({reason})")

    def _record(self, saved: SavedUpload):
        self.files_received += 1
        self.bytes_received += saved.size
        logger.info(f"{saved.filename}, {format_size(saved.size)} received in "
                    f"{saved.elapsed:.2f}s ({saved.mbps:.1f} Mbps)")

    # === Raw fast path ===

    async def ingest_raw(self, stream: AsyncIterator[bytes], encoded_name: str,
                         content_length: Optional[int] = None) -> SavedUpload:
        """
        Store a raw request body as one file.

        Args:
            stream: Request body chunks
            encoded_name: Percent-encoded X-File-Name header value
            content_length: Declared body length, if any

        Returns:
            The saved upload (final, possibly disambiguated, name)
        """
        if content_length is not None and content_length > self.max_upload_size:
            raise SizeLimitExceeded(f"file too large ({format_size(content_length)})")

        name = decode_filename(encoded_name)
        await self._ensure_directory()

        started = time.monotonic()
        path, f = await self._create_exclusive(name)
        received = 0
        success = False
        reason = "stream error"

        try:
            if content_length:
                try:
                    await f.truncate(content_length)
                except OSError as e:
                    logger.debug(f"Could not pre-size {path.name}: {e}")

            with self.pool.borrow() as buf:
                sink = BufferedSink(f, buf)
                async for chunk in stream:
                    received += len(chunk)
                    if received > self.max_upload_size:
                        reason = "size limit"
                        raise SizeLimitExceeded("file too large")
                    await sink.write(chunk)
                await sink.flush()

            if content_length is not None and received != content_length:
                reason = "short body"
                raise BadUpload(f"incomplete body: {received} of {content_length} bytes")

            success = True
        except _STREAM_ERRORS as e:
            reason = type(e).__name__
            raise TransferIOError(f"upload stream failed for {path.name}") from e
        finally:
            await f.close()
            if not success:
                await self._discard(path, reason)

        saved = SavedUpload(path.name, received, path, time.monotonic() - started)
        self._record(saved)
        return saved

    # === Structured (multipart) path ===

    async def ingest_multipart(self, stream: AsyncIterator[bytes],
                               content_type: Optional[str]) -> List[SavedUpload]:
        """
        Store every file part of a multipart/form-data body.

        Non-file fields are skipped. At least one file part is required.
        """
        mime, params = parse_options_header(content_type or '')
        boundary = params.get(b'boundary')
        if mime != b'multipart/form-data' or not boundary:
            raise BadUpload("invalid form")

        await self._ensure_directory()

        events: List[tuple] = []

        def on_data(kind):
            def callback(data, start, end):
                events.append((kind, bytes(data[start:end])))
            return callback

        callbacks = {
            'on_part_begin': lambda: events.append(('part_begin', b'')),
            'on_header_field': on_data('header_field'),
            'on_header_value': on_data('header_value'),
            'on_header_end': lambda: events.append(('header_end', b'')),
            'on_headers_finished': lambda: events.append(('headers_finished', b'')),
            'on_part_data': on_data('part_data'),
            'on_part_end': lambda: events.append(('part_end', b'')),
        }
        parser = MultipartParser(boundary, callbacks)

        saved: List[SavedUpload] = []
        current: Optional[_OpenFile] = None
        skipping = True
        field_name = b''
        headers = {}
        received = 0

        with self.pool.borrow() as buf:
            try:
                async for chunk in stream:
                    received += len(chunk)
                    if received > self.max_upload_size:
                        raise SizeLimitExceeded("upload too large")
                    try:
                        parser.write(chunk)
                    except MultipartParseError as e:
                        raise BadUpload(f"malformed multipart body: {e}")

                    for kind, data in events:
                        if kind == 'part_begin':
                            headers = {}
                            field_name = b''
                            skipping = True
                        elif kind == 'header_field':
                            field_name += data
                        elif kind == 'header_value':
                            key = field_name.lower()
                            headers[key] = headers.get(key, b'') + data
                        elif kind == 'header_end':
                            field_name = b''
                        elif kind == 'headers_finished':
                            current = await self._open_part(headers, buf)
                            skipping = current is None
                        elif kind == 'part_data' and not skipping:
                            await current.sink.write(data)
                        elif kind == 'part_end' and current is not None:
                            part, current = current, None
                            skipping = True
                            saved.append(await self._close_part(part))
                    events.clear()

                parser.finalize()
                if current is not None:
                    raise BadUpload("multipart body ended inside a part")
            except _STREAM_ERRORS as e:
                if current is not None:
                    await current.file.close()
                    await self._discard(current.path, type(e).__name__)
                raise TransferIOError("multipart upload stream failed") from e
            except BaseException as e:
                if current is not None:
                    await current.file.close()
                    await self._discard(current.path, type(e).__name__)
                raise

        if not saved:
            raise BadUpload("no file provided")
        return saved

    async def _open_part(self, headers: dict, buf: bytearray) -> Optional[_OpenFile]:
        """Open the destination for a part, or None when the part is skipped."""
        disposition = headers.get(b'content-disposition')
        if not disposition:
            return None
        _, options = parse_options_header(disposition)
        raw_name = options.get(b'filename')
        if not raw_name:
            return None

        try:
            name = sanitize_filename(raw_name.decode('utf-8', errors='replace'))
        except BadUpload:
            logger.debug(f"Skipping part with invalid filename {raw_name!r}")
            return None

        path, f = await self._create_exclusive(name)
        return _OpenFile(name=name, path=path, file=f, sink=BufferedSink(f, buf))

    async def _close_part(self, part: _OpenFile) -> SavedUpload:
        success = False
        try:
            await part.sink.flush()
            success = True
        finally:
            await part.file.close()
            if not success:
                await self._discard(part.path, "write error")

        saved = SavedUpload(part.path.name, part.sink.written, part.path,
                            time.monotonic() - part.started)
        self._record(saved)
        return saved

    def get_stats(self) -> dict:
        """Get ingestion statistics."""
        return {
            'files_received': self.files_received,
            'bytes_received': self.bytes_received,
            'directory': str(self.directory),
            'buffers': self.pool.stats(),
        }
