"""
HTTP endpoint for one warp session

Design Decision: API Framework
==============================

Options Considered:
1. http.server - stdlib, but thread-per-request and manual header handling
2. FastAPI - async, streaming responses, exception handlers
3. aiohttp - async, but a second web stack next to uvicorn

Decision: FastAPI on uvicorn
- StreamingResponse keeps file and archive downloads at bounded memory
- request.stream() gives us the raw upload body chunk by chunk
- Exception handlers map our error types to status codes in one place

Only the route for the session's mode is mounted:
- send mode:  GET /d/<token>
- host mode:  GET|POST /u/<token>
"""

import logging
from importlib import resources
from typing import List

import aiofiles
import aiofiles.os
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse, Response, StreamingResponse
from pydantic import BaseModel

from ..crypto import tokens_match
from ..errors import AuthError, NotFound, RangeUnsatisfiable, WarpError, BadUpload
from ..session import (
    DirectoryPayload, FilePayload, Session, TextPayload, UploadTarget,
)
from ..transfer.archive import stream_directory
from ..transfer.buffers import BufferPool
from ..transfer.protocol import (
    DOWNLOAD_PREFIX, FILENAME_HEADER, NO_CACHE_HEADERS, UPLOAD_PREFIX,
    attachment, content_range, parse_range_start,
)
from ..transfer.uploader import UploadIngestor
from .middleware import DeadlineMiddleware

logger = logging.getLogger(__name__)

UPLOAD_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


# === Pydantic Models ===

class SavedFile(BaseModel):
    """One stored upload."""
    filename: str
    size: int


class RawUploadResult(BaseModel):
    """Answer to a raw (X-File-Name) upload."""
    success: bool = True
    filename: str
    size: int


class MultipartUploadResult(BaseModel):
    """Answer to a multipart upload."""
    success: bool = True
    files: List[SavedFile]


def load_upload_page() -> str:
    """Read the packaged HTML upload form."""
    return resources.files('warp.api').joinpath('static/upload.html').read_text('utf-8')


# === Download responders ===

def _text_responder(payload: TextPayload, pool: BufferPool):
    data = payload.data

    async def respond(request: Request) -> Response:
        return Response(content=data, media_type="text/plain; charset=utf-8",
                        headers=NO_CACHE_HEADERS)
    return respond


def _file_responder(payload: FilePayload, pool: BufferPool):
    path = payload.path
    chunk_size = pool.buffer_size

    async def respond(request: Request) -> Response:
        try:
            size = (await aiofiles.os.stat(path)).st_size
            f = await aiofiles.open(path, 'rb')
        except OSError as e:
            logger.warning(f"Cannot open {path}: {e}")
            raise NotFound(f"{path.name} is no longer available")

        start = 0
        try:
            start = parse_range_start(request.headers.get('range'), size)
            if start:
                await f.seek(start)
        except (RangeUnsatisfiable, OSError) as e:
            logger.debug(f"Range not honored, sending full file: {e}")
            start = 0
            await f.seek(0)

        async def body():
            try:
                while True:
                    chunk = await f.read(chunk_size)
                    if not chunk:
                        break
                    yield chunk
            finally:
                await f.close()

        headers = {
            'Content-Disposition': attachment(path.name),
            'Accept-Ranges': 'bytes',
            'Content-Length': str(size - start),
        }
        if start:
            headers['Content-Range'] = content_range(start, size)
            logger.info(f"Resumed download from byte {start} for {path.name}")
            return StreamingResponse(body(), status_code=206, headers=headers,
                                     media_type="application/octet-stream")
        return StreamingResponse(body(), headers=headers,
                                 media_type="application/octet-stream")
    return respond


def _directory_responder(payload: DirectoryPayload, pool: BufferPool):
    root = payload.path
    chunk_size = pool.buffer_size

    async def respond(request: Request) -> Response:
        if not root.is_dir():
            raise NotFound(f"{root.name} is no longer available")

        def body():
            try:
                yield from stream_directory(root, chunk_size)
            except OSError as e:
                logger.error(f"Archive of {root} aborted: {e}")
                raise

        headers = {'Content-Disposition': attachment(f"{root.name}.zip")}
        return StreamingResponse(body(), headers=headers, media_type="application/zip")
    return respond


_RESPONDERS = {
    TextPayload: _text_responder,
    FilePayload: _file_responder,
    DirectoryPayload: _directory_responder,
}


# === API Creation ===

def create_app(session: Session) -> FastAPI:
    """
    Create the FastAPI application for ``session``.

    Args:
        session: The immutable session to serve

    Returns:
        FastAPI application
    """
    settings = session.settings
    pool = BufferPool(settings.buffer_size, settings.buffer_pool_size)

    app = FastAPI(
        title="warp",
        description="Token-gated LAN file, directory and text transfer",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.add_middleware(DeadlineMiddleware, read_timeout=settings.read_timeout,
                       write_timeout=settings.write_timeout)
    app.state.session = session
    app.state.pool = pool

    @app.exception_handler(WarpError)
    async def warp_error_handler(request: Request, exc: WarpError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path}: {exc.message}")
        else:
            logger.info(f"{request.method} {request.url.path}: {exc.status_code} {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message},
                            headers=NO_CACHE_HEADERS)

    def check_token(presented: str):
        if not tokens_match(session.token, presented):
            raise AuthError("forbidden")

    if isinstance(session.payload, UploadTarget):
        _mount_upload(app, session, pool, check_token)
    else:
        respond = _RESPONDERS[type(session.payload)](session.payload, pool)

        @app.get(DOWNLOAD_PREFIX + "{token:path}")
        async def download(token: str, request: Request):
            """Serve the shared payload."""
            check_token(token)
            return await respond(request)

    return app


def _mount_upload(app: FastAPI, session: Session, pool: BufferPool, check_token):
    ingestor = UploadIngestor(session.payload.directory, pool,
                              session.settings.max_upload_size)
    page = load_upload_page()
    app.state.ingestor = ingestor

    @app.api_route(UPLOAD_PREFIX + "{token:path}", methods=UPLOAD_METHODS)
    async def upload(token: str, request: Request):
        """Upload form (GET) and upload ingestion (POST)."""
        check_token(token)

        if request.method == "GET":
            return HTMLResponse(page)
        if request.method != "POST":
            return JSONResponse(status_code=405, content={"detail": "method not allowed"},
                                headers={"Allow": "GET, POST"})

        encoded_name = request.headers.get(FILENAME_HEADER)
        if encoded_name:
            length = request.headers.get('content-length')
            if length is not None and not length.isdigit():
                raise BadUpload("invalid content-length")
            saved = await ingestor.ingest_raw(
                request.stream(), encoded_name,
                int(length) if length is not None else None,
            )
            result = RawUploadResult(filename=saved.filename, size=saved.size)
        else:
            saved_files = await ingestor.ingest_multipart(
                request.stream(), request.headers.get('content-type'),
            )
            result = MultipartUploadResult(
                files=[SavedFile(**s.to_dict()) for s in saved_files]
            )

        return JSONResponse(content=result.model_dump(), headers=NO_CACHE_HEADERS)
