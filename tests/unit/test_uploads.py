"""Unit tests for scratch storage of uploaded images."""

import asyncio
import io

import pytest
from starlette.datastructures import UploadFile
from starlette.requests import Request

from zaytoon.core.errors import InputValidationError, UploadStorageError, UploadTooLargeError
from zaytoon.core.uploads import (
    ALLOWED_EXTENSIONS,
    CHUNK_SIZE,
    allowed_extension,
    discard_upload,
    ensure_upload_dir,
    is_writable,
    limited_request,
    make_storage_name,
    read_upload,
    store_upload,
)


def _upload(data: bytes, filename: str) -> UploadFile:
    return UploadFile(file=io.BytesIO(data), filename=filename)


class TestAllowedExtension:

    @pytest.mark.parametrize("filename, expected", [
        ("leaf.jpg", ".jpg"),
        ("leaf.jpeg", ".jpeg"),
        ("leaf.png", ".png"),
        ("LEAF.PNG", ".png"),
        ("olive.tree.JpEg", ".jpeg"),
    ])
    def test_whitelisted(self, filename, expected):
        assert allowed_extension(filename) == expected

    @pytest.mark.parametrize("filename", ["leaf.gif", "leaf", "", None, "jpg", "leaf.png.exe"])
    def test_rejected(self, filename):
        with pytest.raises(InputValidationError, match=r"Only \.jpg, \.jpeg or \.png files are allowed\."):
            allowed_extension(filename)

    def test_whitelist_contents(self):
        assert ALLOWED_EXTENSIONS == {".jpg", ".jpeg", ".png"}


class TestStorageName:

    def test_keeps_extension(self):
        assert make_storage_name(".png").endswith(".png")

    def test_unique_within_same_millisecond(self, mocker):
        mocker.patch("zaytoon.core.uploads.time.time", return_value=1700000000.123)
        names = {make_storage_name(".jpg") for _ in range(100)}
        assert len(names) == 100
        assert all(name.startswith("1700000000123-") for name in names)


class TestStoreUpload:

    def test_stores_file(self, tmp_path):
        stored = asyncio.run(store_upload(_upload(b"abc", "Leaf.JPG"), tmp_path / "up", 10))
        assert stored.path.read_bytes() == b"abc"
        assert stored.path.parent == tmp_path / "up"
        assert stored.extension == ".jpg"
        assert stored.size == 3
        assert stored.original_filename == "Leaf.JPG"
        assert stored.mime_type == "image/jpg"

    def test_creates_directory(self, tmp_path):
        target = tmp_path / "nested" / "uploads"
        asyncio.run(store_upload(_upload(b"abc", "a.png"), target, 10))
        assert target.is_dir()

    def test_too_large_leaves_nothing(self, tmp_path):
        with pytest.raises(UploadTooLargeError, match="File too large") as exc:
            asyncio.run(store_upload(_upload(b"x" * 11, "a.png"), tmp_path, 10))
        assert exc.value.status_code == 400
        assert list(tmp_path.iterdir()) == []

    def test_exactly_at_limit(self, tmp_path):
        stored = asyncio.run(store_upload(_upload(b"x" * 10, "a.png"), tmp_path, 10))
        assert stored.size == 10

    def test_bad_extension_writes_nothing(self, tmp_path):
        target = tmp_path / "uploads"
        with pytest.raises(InputValidationError):
            asyncio.run(store_upload(_upload(b"abc", "a.bmp"), target, 10))
        assert not target.exists()

    def test_disk_failure_is_storage_error(self, tmp_path, mocker):
        mocker.patch("zaytoon.core.uploads._copy_limited", side_effect=OSError("disk full"))
        with pytest.raises(UploadStorageError) as exc:
            asyncio.run(store_upload(_upload(b"abc", "a.png"), tmp_path, 10))
        assert exc.value.status_code == 500


class TestReadAndDiscard:

    def test_read_then_discard(self, tmp_path):
        stored = asyncio.run(store_upload(_upload(b"pixels", "a.png"), tmp_path, 100))
        assert asyncio.run(read_upload(stored)) == b"pixels"
        asyncio.run(discard_upload(stored))
        assert not stored.path.exists()

    def test_discard_missing_file_is_noop(self, tmp_path):
        stored = asyncio.run(store_upload(_upload(b"pixels", "a.png"), tmp_path, 100))
        stored.path.unlink()
        asyncio.run(discard_upload(stored))


class TestDirectory:

    def test_ensure_is_idempotent(self, tmp_path):
        target = tmp_path / "uploads"
        assert ensure_upload_dir(target) == target
        assert ensure_upload_dir(target) == target

    def test_is_writable(self, tmp_path):
        target = ensure_upload_dir(tmp_path / "uploads")
        assert is_writable(target)
        assert list(target.iterdir()) == []

    def test_missing_directory_not_writable(self, tmp_path):
        assert not is_writable(tmp_path / "uploads")
        assert not (tmp_path / "uploads").exists()

    def test_not_writable_when_path_is_a_file(self, tmp_path):
        blocker = tmp_path / "uploads"
        blocker.write_text("not a directory")
        assert not is_writable(blocker)


def _streaming_request(total: int, chunk: int = CHUNK_SIZE, content_length: int | None = None):
    """Request whose body arrives in ``chunk``-sized messages; returns it with a byte counter."""
    consumed = {"bytes": 0}

    async def receive():
        remaining = total - consumed["bytes"]
        size = min(chunk, remaining)
        consumed["bytes"] += size
        return {"type": "http.request", "body": b"\x00" * size, "more_body": consumed["bytes"] < total}

    headers = []
    if content_length is not None:
        headers.append((b"content-length", str(content_length).encode()))
    scope = {"type": "http", "method": "POST", "path": "/", "headers": headers, "query_string": b""}
    return Request(scope, receive), consumed


class TestLimitedRequest:

    def test_stops_reading_past_limit(self):
        limit = 5 * 1024 * 1024
        request, consumed = _streaming_request(total=30 * 1024 * 1024)

        async def drain():
            async for _ in limited_request(request, limit).stream():
                pass

        with pytest.raises(UploadTooLargeError, match="File too large"):
            asyncio.run(drain())
        assert limit < consumed["bytes"] <= limit + CHUNK_SIZE

    def test_declared_length_refused_without_reading(self):
        request, consumed = _streaming_request(total=30, content_length=30)
        with pytest.raises(UploadTooLargeError):
            limited_request(request, 10)
        assert consumed["bytes"] == 0

    def test_small_body_passes_through(self):
        request, consumed = _streaming_request(total=100, chunk=40, content_length=100)

        async def read_all():
            return await limited_request(request, 1000).body()

        assert asyncio.run(read_all()) == b"\x00" * 100
        assert consumed["bytes"] == 100
