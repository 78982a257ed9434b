"""Pytest configuration and fixtures"""

import asyncio
import hashlib
import os
import shutil
import tempfile
from pathlib import Path

import httpx
import pytest

BASE_URL = "http://testserver"


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests"""
    tmpdir = tempfile.mkdtemp()
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def sample_file(temp_dir):
    """A 256 KiB file of random bytes"""
    path = temp_dir / "sample.bin"
    path.write_bytes(os.urandom(256 * 1024))
    return path


@pytest.fixture
def sample_tree(temp_dir):
    """Directory with files at two levels"""
    root = temp_dir / "tree"
    (root / "sub").mkdir(parents=True)
    (root / "a.txt").write_bytes(b"alpha\n" * 1000)
    (root / "sub" / "b.bin").write_bytes(os.urandom(100 * 1024))
    return root


def asgi_client(app) -> httpx.AsyncClient:
    """httpx client talking to an ASGI app in-process"""
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url=BASE_URL)


def sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def http_scope(method: str, path: str, headers: dict) -> dict:
    """Minimal ASGI HTTP scope for driving an app by hand"""
    return {
        "type": "http",
        "asgi": {"version": "3.0", "spec_version": "2.3"},
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode(),
        "query_string": b"",
        "root_path": "",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
        "client": ("127.0.0.1", 50000),
        "server": ("testserver", 80),
    }


class ScriptedPeer:
    """
    ASGI receive/send pair replaying a fixed list of messages.

    Once the script is exhausted, receive() either reports a disconnect or
    stalls forever (to trip read deadlines).
    """

    def __init__(self, messages, stall: bool = False):
        self._messages = list(messages)
        self._stall = stall
        self.sent = []

    async def receive(self):
        if self._messages:
            return self._messages.pop(0)
        if self._stall:
            await asyncio.sleep(3600)
        return {"type": "http.disconnect"}

    async def send(self, message):
        self.sent.append(message)

    @property
    def status(self):
        for message in self.sent:
            if message["type"] == "http.response.start":
                return message["status"]
        return None
