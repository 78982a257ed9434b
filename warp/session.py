"""
Session Model

A session describes what one running instance shares (send mode) or
collects (host mode), and under which token. It is built once at startup,
never mutated, and passed explicitly to everything that needs it.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from .crypto import generate_token
from .errors import NotFound
from .transfer.protocol import (
    BUFFER_SIZE, IDLE_TIMEOUT, MAX_UPLOAD_SIZE, READ_TIMEOUT, WRITE_TIMEOUT,
    download_path, upload_path,
)


class Mode(Enum):
    """Session modes, advertised as the mDNS mode tag."""
    SEND = "send"
    HOST = "host"


@dataclass(frozen=True)
class TextPayload:
    """A text snippet served inline."""
    text: str

    @property
    def data(self) -> bytes:
        return self.text.encode('utf-8')


@dataclass(frozen=True)
class FilePayload:
    """A single file served as an attachment."""
    path: Path


@dataclass(frozen=True)
class DirectoryPayload:
    """A directory served as a streamed ZIP archive."""
    path: Path


@dataclass(frozen=True)
class UploadTarget:
    """Directory receiving uploads in host mode."""
    directory: Path


Payload = Union[TextPayload, FilePayload, DirectoryPayload, UploadTarget]


@dataclass(frozen=True)
class ServerSettings:
    """Runtime limits for the transfer server."""
    max_upload_size: int = MAX_UPLOAD_SIZE
    buffer_size: int = BUFFER_SIZE
    buffer_pool_size: int = 16
    read_timeout: float = READ_TIMEOUT
    write_timeout: float = WRITE_TIMEOUT
    idle_timeout: float = IDLE_TIMEOUT


@dataclass(frozen=True)
class Session:
    """
    One sharing session.

    Use the ``send_*`` / ``host`` constructors; they resolve the payload kind
    once so request handlers never have to inspect the filesystem to decide
    what they are serving.
    """
    token: str
    payload: Payload
    host: str = '0.0.0.0'
    port: int = 0
    settings: ServerSettings = field(default_factory=ServerSettings)

    @property
    def mode(self) -> Mode:
        if isinstance(self.payload, UploadTarget):
            return Mode.HOST
        return Mode.SEND

    @property
    def path(self) -> str:
        """URL path of the session endpoint."""
        if self.mode is Mode.HOST:
            return upload_path(self.token)
        return download_path(self.token)

    @classmethod
    def send_path(cls, path: Union[str, Path], token: Optional[str] = None,
                  **kwargs) -> 'Session':
        """Share a file or directory."""
        path = Path(path)
        if path.is_dir():
            payload = DirectoryPayload(path)
        elif path.is_file():
            payload = FilePayload(path)
        else:
            raise NotFound(f"No such file or directory: {path}")
        return cls(token=token or generate_token(), payload=payload, **kwargs)

    @classmethod
    def send_text(cls, text: str, token: Optional[str] = None,
                  **kwargs) -> 'Session':
        """Share a text snippet."""
        return cls(token=token or generate_token(), payload=TextPayload(text), **kwargs)

    @classmethod
    def host(cls, directory: Union[str, Path] = '.', token: Optional[str] = None,
             **kwargs) -> 'Session':
        """Collect uploads into ``directory``."""
        directory = Path(directory)
        os.makedirs(directory, exist_ok=True)
        return cls(token=token or generate_token(), payload=UploadTarget(directory),
                   **kwargs)

    def describe(self) -> str:
        """Short human description of what is being served."""
        payload = self.payload
        if isinstance(payload, TextPayload):
            return f"text ({len(payload.data)} bytes)"
        if isinstance(payload, UploadTarget):
            return f"uploads to '{payload.directory}'"
        return f"'{payload.path}'"
