"""Tests for host-mode upload ingestion"""

import os

import pytest

from warp.api import create_app
from warp.errors import BadUpload
from warp.session import ServerSettings, Session
from warp.transfer import uploader
from warp.transfer.uploader import decode_filename, sanitize_filename, unique_path

from .conftest import ScriptedPeer, asgi_client, http_scope

TOKEN = "0123456789abcdef0123456789abcdef"
WRONG = "fedcba9876543210fedcba9876543210"
BOUNDARY = "warptestboundary"


def host_app(directory, **settings):
    session = Session.host(directory, token=TOKEN, settings=ServerSettings(**settings))
    return create_app(session)


def multipart_body(*parts) -> bytes:
    """Build a multipart/form-data body from (field, filename, data) tuples."""
    body = b''
    for field, filename, data in parts:
        disposition = f'form-data; name="{field}"'
        if filename is not None:
            disposition += f'; filename="{filename}"'
        body += (f"--{BOUNDARY}\r\nContent-Disposition: {disposition}\r\n"
                 f"Content-Type: application/octet-stream\r\n\r\n").encode()
        body += data + b"\r\n"
    return body + f"--{BOUNDARY}--\r\n".encode()


MULTIPART_TYPE = f"multipart/form-data; boundary={BOUNDARY}"


class TestFilenames:
    """Test filename handling"""

    @pytest.mark.parametrize("name,expected", [
        ("report.pdf", "report.pdf"),
        ("../../etc/passwd", "passwd"),
        ("/abs/path/x.txt", "x.txt"),
        ("C:\\Users\\me\\notes.txt", "notes.txt"),
        ("my file (final).txt", "my file (final).txt"),
    ])
    def test_sanitize(self, name, expected):
        assert sanitize_filename(name) == expected

    @pytest.mark.parametrize("name", ["", ".", "..", "dir/..", "dir/", "a\x00b"])
    def test_sanitize_rejects(self, name):
        with pytest.raises(BadUpload):
            sanitize_filename(name)

    def test_decode_percent_encoding(self):
        assert decode_filename("na%C3%AFve%20file.txt") == "naïve file.txt"
        assert decode_filename("..%2F..%2Fsecret") == "secret"

    def test_unique_path_numbering(self, temp_dir):
        assert unique_path(temp_dir, "x.txt") == temp_dir / "x.txt"
        (temp_dir / "x.txt").touch()
        assert unique_path(temp_dir, "x.txt") == temp_dir / "x (1).txt"
        (temp_dir / "x (1).txt").touch()
        assert unique_path(temp_dir, "x.txt") == temp_dir / "x (2).txt"

    def test_unique_path_without_extension(self, temp_dir):
        (temp_dir / "Makefile").touch()
        assert unique_path(temp_dir, "Makefile") == temp_dir / "Makefile (1)"

    def test_unique_path_timestamp_fallback(self, temp_dir, monkeypatch):
        monkeypatch.setattr(uploader, "MAX_NUMBERED_NAMES", 3)
        for name in ["x.txt", "x (1).txt", "x (2).txt"]:
            (temp_dir / name).touch()

        path = unique_path(temp_dir, "x.txt")
        assert path.parent == temp_dir
        assert path.name.startswith("x_")
        assert path.suffix == ".txt"
        assert path.stem[2:].isdigit()


class TestRawUpload:
    """Test the X-File-Name fast path"""

    @pytest.mark.asyncio
    async def test_upload_saves_file(self, temp_dir):
        data = os.urandom(100 * 1024)
        async with asgi_client(host_app(temp_dir)) as client:
            r = await client.post(f"/u/{TOKEN}", content=data,
                                  headers={"X-File-Name": "photo.jpg"})

        assert r.status_code == 200
        assert r.json() == {"success": True, "filename": "photo.jpg", "size": len(data)}
        assert (temp_dir / "photo.jpg").read_bytes() == data

    @pytest.mark.asyncio
    async def test_collisions_never_overwrite(self, temp_dir):
        async with asgi_client(host_app(temp_dir)) as client:
            first = await client.post(f"/u/{TOKEN}", content=b"one",
                                      headers={"X-File-Name": "x.txt"})
            second = await client.post(f"/u/{TOKEN}", content=b"two",
                                       headers={"X-File-Name": "x.txt"})

        assert first.json()["filename"] == "x.txt"
        assert second.json()["filename"] == "x (1).txt"
        assert (temp_dir / "x.txt").read_bytes() == b"one"
        assert (temp_dir / "x (1).txt").read_bytes() == b"two"

    @pytest.mark.asyncio
    async def test_traversal_name_stays_inside(self, temp_dir):
        upload_dir = temp_dir / "uploads"
        async with asgi_client(host_app(upload_dir)) as client:
            r = await client.post(f"/u/{TOKEN}", content=b"data",
                                  headers={"X-File-Name": "..%2F..%2Fevil.sh"})

        assert r.status_code == 200
        assert r.json()["filename"] == "evil.sh"
        assert (upload_dir / "evil.sh").read_bytes() == b"data"
        assert not (temp_dir / "evil.sh").exists()

    @pytest.mark.asyncio
    async def test_dot_dot_rejected(self, temp_dir):
        async with asgi_client(host_app(temp_dir)) as client:
            r = await client.post(f"/u/{TOKEN}", content=b"data",
                                  headers={"X-File-Name": ".."})

        assert r.status_code == 400
        assert os.listdir(temp_dir) == []

    @pytest.mark.asyncio
    async def test_declared_length_over_limit(self, temp_dir):
        async with asgi_client(host_app(temp_dir, max_upload_size=1000)) as client:
            r = await client.post(f"/u/{TOKEN}", content=b"x" * 2000,
                                  headers={"X-File-Name": "big.bin"})

        assert r.status_code == 413
        assert os.listdir(temp_dir) == []

    @pytest.mark.asyncio
    async def test_streamed_body_over_limit(self, temp_dir):
        async def body():
            for _ in range(4):
                yield b"x" * 500

        async with asgi_client(host_app(temp_dir, max_upload_size=1000)) as client:
            r = await client.post(f"/u/{TOKEN}", content=body(),
                                  headers={"X-File-Name": "big.bin"})

        assert r.status_code == 413
        assert os.listdir(temp_dir) == []

    @pytest.mark.asyncio
    async def test_wrong_token(self, temp_dir):
        async with asgi_client(host_app(temp_dir)) as client:
            r = await client.post(f"/u/{WRONG}", content=b"data",
                                  headers={"X-File-Name": "a.txt"})

        assert r.status_code == 403
        assert os.listdir(temp_dir) == []

    @pytest.mark.asyncio
    async def test_disconnect_mid_upload_leaves_nothing(self, temp_dir):
        app = host_app(temp_dir)
        peer = ScriptedPeer([
            {"type": "http.request", "body": b"x" * 1000, "more_body": True},
        ])
        scope = http_scope("POST", f"/u/{TOKEN}", {
            "X-File-Name": "partial.bin",
            "Content-Length": "100000",
        })

        await app(scope, peer.receive, peer.send)

        assert peer.status == 500
        assert os.listdir(temp_dir) == []

    @pytest.mark.asyncio
    async def test_stalled_peer_hits_read_deadline(self, temp_dir):
        app = host_app(temp_dir, read_timeout=0.2)
        peer = ScriptedPeer([
            {"type": "http.request", "body": b"x" * 1000, "more_body": True},
        ], stall=True)
        scope = http_scope("POST", f"/u/{TOKEN}", {
            "X-File-Name": "stalled.bin",
            "Content-Length": "100000",
        })

        await app(scope, peer.receive, peer.send)

        assert peer.status == 500
        assert os.listdir(temp_dir) == []


class TestMultipartUpload:
    """Test the form upload path"""

    @pytest.mark.asyncio
    async def test_browser_form(self, temp_dir):
        data = os.urandom(50 * 1024)
        async with asgi_client(host_app(temp_dir)) as client:
            r = await client.post(f"/u/{TOKEN}", data={"note": "hi"},
                                  files={"file": ("song.mp3", data)})

        assert r.status_code == 200
        assert r.json() == {"success": True,
                            "files": [{"filename": "song.mp3", "size": len(data)}]}
        assert (temp_dir / "song.mp3").read_bytes() == data
        assert sorted(os.listdir(temp_dir)) == ["song.mp3"]

    @pytest.mark.asyncio
    async def test_several_files(self, temp_dir):
        body = multipart_body(
            ("file", "a.txt", b"alpha"),
            ("comment", None, b"ignored"),
            ("file", "../b.txt", b"beta"),
        )
        async with asgi_client(host_app(temp_dir)) as client:
            r = await client.post(f"/u/{TOKEN}", content=body,
                                  headers={"Content-Type": MULTIPART_TYPE})

        assert r.status_code == 200
        assert [f["filename"] for f in r.json()["files"]] == ["a.txt", "b.txt"]
        assert (temp_dir / "a.txt").read_bytes() == b"alpha"
        assert (temp_dir / "b.txt").read_bytes() == b"beta"

    @pytest.mark.asyncio
    async def test_name_collision_renamed(self, temp_dir):
        (temp_dir / "a.txt").write_bytes(b"existing")
        body = multipart_body(("file", "a.txt", b"new"))
        async with asgi_client(host_app(temp_dir)) as client:
            r = await client.post(f"/u/{TOKEN}", content=body,
                                  headers={"Content-Type": MULTIPART_TYPE})

        assert r.json()["files"][0]["filename"] == "a (1).txt"
        assert (temp_dir / "a.txt").read_bytes() == b"existing"

    @pytest.mark.asyncio
    async def test_no_file_part(self, temp_dir):
        body = multipart_body(("comment", None, b"just text"))
        async with asgi_client(host_app(temp_dir)) as client:
            r = await client.post(f"/u/{TOKEN}", content=body,
                                  headers={"Content-Type": MULTIPART_TYPE})

        assert r.status_code == 400
        assert os.listdir(temp_dir) == []

    @pytest.mark.asyncio
    async def test_not_a_form(self, temp_dir):
        async with asgi_client(host_app(temp_dir)) as client:
            r = await client.post(f"/u/{TOKEN}", content=b"plain body",
                                  headers={"Content-Type": "text/plain"})

        assert r.status_code == 400
        assert os.listdir(temp_dir) == []

    @pytest.mark.asyncio
    async def test_disconnect_mid_part_leaves_nothing(self, temp_dir):
        app = host_app(temp_dir)
        head = (f"--{BOUNDARY}\r\nContent-Disposition: form-data; name=\"file\"; "
                f"filename=\"cut.bin\"\r\n\r\n").encode()
        peer = ScriptedPeer([
            {"type": "http.request", "body": head + b"x" * 5000, "more_body": True},
        ])
        scope = http_scope("POST", f"/u/{TOKEN}", {"Content-Type": MULTIPART_TYPE})

        await app(scope, peer.receive, peer.send)

        assert peer.status == 500
        assert os.listdir(temp_dir) == []

    @pytest.mark.asyncio
    async def test_body_ending_inside_part(self, temp_dir):
        head = (f"--{BOUNDARY}\r\nContent-Disposition: form-data; name=\"file\"; "
                f"filename=\"cut.bin\"\r\n\r\n").encode()
        async with asgi_client(host_app(temp_dir)) as client:
            r = await client.post(f"/u/{TOKEN}", content=head + b"truncated",
                                  headers={"Content-Type": MULTIPART_TYPE})

        assert r.status_code == 400
        assert os.listdir(temp_dir) == []


class TestUploadPage:
    """Test the upload form and method handling"""

    @pytest.mark.asyncio
    async def test_get_returns_form(self, temp_dir):
        async with asgi_client(host_app(temp_dir)) as client:
            r = await client.get(f"/u/{TOKEN}")

        assert r.status_code == 200
        assert r.headers['content-type'].startswith("text/html")
        assert "X-File-Name" in r.text

    @pytest.mark.asyncio
    async def test_get_with_wrong_token(self, temp_dir):
        async with asgi_client(host_app(temp_dir)) as client:
            r = await client.get(f"/u/{WRONG}")

        assert r.status_code == 403

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["PUT", "PATCH", "DELETE"])
    async def test_other_methods(self, temp_dir, method):
        async with asgi_client(host_app(temp_dir)) as client:
            r = await client.request(method, f"/u/{TOKEN}")

        assert r.status_code == 405
        assert r.headers['allow'] == "GET, POST"

    @pytest.mark.asyncio
    async def test_download_route_not_mounted(self, temp_dir):
        async with asgi_client(host_app(temp_dir)) as client:
            r = await client.get(f"/d/{TOKEN}")

        assert r.status_code == 404
