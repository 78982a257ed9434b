"""
Transfer Client

Design Decision: Resume Strategy
================================

Options Considered:
1. Always download from scratch
   - Simple, but a dropped 4GB transfer starts over
2. HEAD first, then ranged GET
   - Extra round trip, and HEAD is not implemented for every payload
3. Plain GET first, decide from its headers, reissue with Range if needed

Decision: GET first
- The first response tells us the payload kind (inline text or attachment),
  the file name and the total length
- When nothing can be resumed we simply keep reading that same response
- When a shorter local file exists we drop it and reissue with
  ``Range: bytes=<local length>-``
- A server that does not answer 206 gets a full download instead
"""

import logging
import os
import re
import sys
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Optional, Union
from urllib.parse import quote, unquote, urlsplit

import aiofiles
import httpx

from ..errors import DestinationConflict, TransferError
from .progress import ProgressCallback, TransferProgress
from .protocol import (
    BUFFER_SIZE, DOWNLOAD_PREFIX, FILENAME_HEADER, STDOUT_MARKER, parse_content_range,
)

logger = logging.getLogger(__name__)

FALLBACK_NAME = "download.bin"

_FILENAME_PARAM = re.compile(r'filename\s*=\s*(?:"([^"]*)"|([^;]*))', re.IGNORECASE)


def filename_from_disposition(disposition: Optional[str]) -> Optional[str]:
    """Extract ``filename=`` from a Content-Disposition header."""
    if not disposition:
        return None
    match = _FILENAME_PARAM.search(disposition)
    if not match:
        return None
    value = match.group(1) if match.group(1) is not None else match.group(2)
    name = os.path.basename(value.strip())
    return name or None


def filename_from_url(url: str) -> Optional[str]:
    segment = PurePosixPath(unquote(urlsplit(url).path)).name
    return segment or None


def build_url(address: str, token: str, prefix: str = DOWNLOAD_PREFIX) -> str:
    """Build a session URL from ``host:port`` (or a full base URL) and a token."""
    if '://' not in address:
        address = f"http://{address}"
    return f"{address.rstrip('/')}{prefix}{token}"


def is_inline_text(response: httpx.Response) -> bool:
    content_type = response.headers.get('content-type', '')
    return (content_type.startswith('text/plain')
            and 'content-disposition' not in response.headers)


def _expect_ok(response: httpx.Response):
    if response.status_code not in (200, 206):
        raise TransferError(f"http status {response.status_code}")


def _declared_length(response: httpx.Response) -> Optional[int]:
    value = response.headers.get('content-length')
    if value is None or not value.isdigit():
        return None
    return int(value)


def _range_matches(response: httpx.Response, offset: int, total: Optional[int]) -> bool:
    """True when a 206 answer covers exactly ``offset`` to the end of ``total`` bytes."""
    span = parse_content_range(response.headers.get('content-range'))
    if span is None:
        return False
    start, end, size = span
    return start == offset and size == total and end == size - 1


class Receiver:
    """
    Downloads one session payload.

    Holds an ``httpx.AsyncClient``; pass your own (for example one bound to
    an ASGI transport in tests) or let the receiver create and close one.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None,
                 chunk_size: int = BUFFER_SIZE, timeout: float = 30.0):
        self._client = client
        self._owns_client = client is None
        self.chunk_size = chunk_size
        self.timeout = timeout

    async def __aenter__(self) -> 'Receiver':
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self

    async def __aexit__(self, *exc):
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def receive(self, url: str, output: Optional[Union[str, Path]] = None,
                      force: bool = False,
                      progress: Optional[ProgressCallback] = None,
                      sink: Optional[BinaryIO] = None) -> str:
        """
        Download ``url``.

        Args:
            url: Session download URL
            output: Destination file, or existing directory to save into
            force: Overwrite an existing destination instead of failing
            progress: Called with a TransferProgress after every chunk
            sink: Where inline text goes (default: stdout)

        Returns:
            Saved file path, or STDOUT_MARKER for inline text

        Raises:
            TransferError: unexpected status, transport failure or local I/O failure
            DestinationConflict: destination exists and cannot be resumed
        """
        try:
            async with self._client.stream('GET', url) as response:
                _expect_ok(response)

                if is_inline_text(response):
                    await self._write_text(response, sink)
                    return STDOUT_MARKER

                name = (filename_from_disposition(response.headers.get('content-disposition'))
                        or filename_from_url(str(response.url))
                        or FALLBACK_NAME)
                dest = self._destination(output, name)
                total = _declared_length(response)
                offset = self._resume_offset(dest, total, force)

                if offset == 0:
                    await self._save(response, dest, 'wb', 0, total, progress)
                    return str(dest)

            # Reissue for the missing tail only
            logger.info(f"Resuming {dest.name} from byte {offset:,}")
            headers = {'Range': f"bytes={offset}-"}
            async with self._client.stream('GET', url, headers=headers) as response:
                _expect_ok(response)
                if response.status_code == 206 and _range_matches(response, offset, total):
                    await self._save(response, dest, 'ab', offset, total, progress)
                    return str(dest)

                if response.status_code == 200:
                    logger.warning("Server ignored the range request, downloading from scratch")
                    await self._save(response, dest, 'wb', 0,
                                     _declared_length(response) or total, progress)
                    return str(dest)

                logger.warning(f"Server answered range {response.headers.get('content-range')!r} "
                               f"instead of bytes {offset}-, downloading from scratch")

            async with self._client.stream('GET', url) as response:
                _expect_ok(response)
                await self._save(response, dest, 'wb', 0,
                                 _declared_length(response) or total, progress)
                return str(dest)
        except httpx.HTTPError as e:
            raise TransferError(f"transfer failed: {e}") from e
        except OSError as e:
            raise TransferError(f"cannot write download: {e}") from e

    def _destination(self, output: Optional[Union[str, Path]], name: str) -> Path:
        if output is None or str(output) == '':
            return Path(name)
        output = Path(output)
        if output.is_dir():
            return output / name
        return output

    def _resume_offset(self, dest: Path, total: Optional[int], force: bool) -> int:
        """
        Decide how much of ``dest`` can be kept.

        Returns:
            Byte offset to resume from (0 means download everything)
        """
        try:
            existing = dest.stat().st_size
        except FileNotFoundError:
            return 0
        if force:
            return 0
        if existing > 0 and total is not None and existing < total:
            return existing
        raise DestinationConflict(f"destination exists: {dest}; use --force to overwrite")

    async def _write_text(self, response: httpx.Response, sink: Optional[BinaryIO]):
        if sink is None:
            sink = sys.stdout.buffer
        async for chunk in response.aiter_bytes(self.chunk_size):
            sink.write(chunk)
        sink.flush()

    async def _save(self, response: httpx.Response, dest: Path, mode: str,
                    offset: int, total: Optional[int],
                    progress: Optional[ProgressCallback]):
        state = TransferProgress(file_name=dest.name, total=total,
                                 transferred=offset, resumed_from=offset)
        if progress:
            progress(state)

        async with aiofiles.open(dest, mode) as f:
            async for chunk in response.aiter_bytes(self.chunk_size):
                await f.write(chunk)
                state.transferred += len(chunk)
                if progress:
                    progress(state)

        logger.debug(f"Saved {dest} ({state.transferred:,} bytes)")


class Uploader:
    """Pushes a local file to a host-mode session over the raw upload path."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None,
                 chunk_size: int = BUFFER_SIZE, timeout: float = 30.0):
        self._client = client
        self._owns_client = client is None
        self.chunk_size = chunk_size
        self.timeout = timeout

    async def __aenter__(self) -> 'Uploader':
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self

    async def __aexit__(self, *exc):
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def upload(self, url: str, path: Union[str, Path],
                     progress: Optional[ProgressCallback] = None) -> dict:
        """
        Upload ``path`` to a host session.

        Returns:
            The server's JSON answer (final file name and size)
        """
        path = Path(path)
        try:
            size = path.stat().st_size
        except OSError as e:
            raise TransferError(f"cannot read {path}: {e}") from e
        state = TransferProgress(file_name=path.name, total=size)

        async def body():
            async with aiofiles.open(path, 'rb') as f:
                while True:
                    chunk = await f.read(self.chunk_size)
                    if not chunk:
                        break
                    state.transferred += len(chunk)
                    if progress:
                        progress(state)
                    yield chunk

        headers = {
            FILENAME_HEADER: quote(path.name),
            'Content-Length': str(size),
            'Content-Type': 'application/octet-stream',
        }
        try:
            response = await self._client.post(url, content=body(), headers=headers)
        except httpx.HTTPError as e:
            raise TransferError(f"upload failed: {e}") from e
        except OSError as e:
            raise TransferError(f"cannot read {path}: {e}") from e
        if response.status_code != 200:
            raise TransferError(f"http status {response.status_code}: {response.text}")
        try:
            return response.json()
        except ValueError as e:
            raise TransferError(f"unexpected upload answer: {response.text[:200]!r}") from e


async def receive(url: str, output: Optional[Union[str, Path]] = None,
                  force: bool = False, progress: Optional[ProgressCallback] = None,
                  sink: Optional[BinaryIO] = None,
                  client: Optional[httpx.AsyncClient] = None) -> str:
    """Download a session URL. See Receiver.receive."""
    async with Receiver(client) as receiver:
        return await receiver.receive(url, output, force, progress, sink)


async def fetch(address: str, token: str, destination: Optional[Union[str, Path]] = None,
                overwrite: bool = False, progress: Optional[ProgressCallback] = None,
                sink: Optional[BinaryIO] = None,
                client: Optional[httpx.AsyncClient] = None) -> str:
    """Download from ``address`` (host:port) using ``token``."""
    return await receive(build_url(address, token), destination, overwrite,
                         progress, sink, client)


async def upload(url: str, path: Union[str, Path],
                 progress: Optional[ProgressCallback] = None,
                 client: Optional[httpx.AsyncClient] = None) -> dict:
    """Upload a local file to a host session URL."""
    async with Uploader(client) as uploader:
        return await uploader.upload(url, path, progress)
