"""
Unit tests for DownloadStreamer.

These tests verify:
- Range header parsing and its edge cases
- Full and partial file payloads, live and at older commits
- The materialization cache (keying, sharing, reuse, sweeping)
- Streamed ZIP archives of directories
"""
import asyncio
import io
import os
import time
import zipfile

import pytest

from shared import head_sha
from vfiles.errors import NotFoundError, RangeNotSatisfiableError, ValidationError
from vfiles.services.downloads import content_disposition, guess_media_type, parse_range


async def collect(body) -> bytes:
    return b"".join([chunk async for chunk in body])


@pytest.fixture
def downloads(services):
    return services.downloads


# -----------------------------------------------------------------------------
# Range parsing
# -----------------------------------------------------------------------------

class TestParseRange:
    """Tests for parse_range()."""

    @pytest.mark.parametrize("header,expected", [
        ("bytes=0-9", (0, 9)),
        ("bytes=10-", (10, 99)),
        ("bytes=-10", (90, 99)),
        ("bytes=95-200", (95, 99)),
        ("bytes=-500", (0, 99)),
        ("BYTES=1-1", (1, 1)),
    ])
    def test_satisfiable(self, header, expected):
        byte_range = parse_range(header, 100)
        assert (byte_range.start, byte_range.end) == expected
        assert byte_range.total == 100

    @pytest.mark.parametrize("header", [None, "", "bytes=", "bytes=-", "items=0-1", "bytes=0-1,5-6", "bytes=a-b"])
    def test_ignored(self, header):
        """Malformed and multi-range headers fall back to the full content."""
        assert parse_range(header, 100) is None

    @pytest.mark.parametrize("header", ["bytes=100-", "bytes=100-200", "bytes=50-10", "bytes=-0"])
    def test_unsatisfiable(self, header):
        with pytest.raises(RangeNotSatisfiableError) as exc_info:
            parse_range(header, 100)
        assert exc_info.value.total == 100

    def test_any_range_on_empty_resource_unsatisfiable(self):
        with pytest.raises(RangeNotSatisfiableError):
            parse_range("bytes=0-", 0)

    def test_length_and_content_range(self):
        byte_range = parse_range("bytes=10-19", 50)
        assert byte_range.length == 10
        assert byte_range.content_range() == "bytes 10-19/50"


class TestHeaders:
    """Tests for header helpers."""

    def test_content_disposition_ascii(self):
        assert content_disposition("report.pdf") == (
            "attachment; filename=\"report.pdf\"; filename*=UTF-8''report.pdf"
        )

    def test_content_disposition_unicode(self):
        value = content_disposition("résumé.txt", "inline")
        assert value.startswith("inline; filename=\"r_sum_.txt\"")
        assert "filename*=UTF-8''r%C3%A9sum%C3%A9.txt" in value

    def test_content_disposition_quotes_escaped(self):
        assert 'filename="a_b.txt"' in content_disposition('a"b.txt')

    def test_media_type(self):
        assert guess_media_type("a.txt") == "text/plain"
        assert guess_media_type("blob.unknownext") == "application/octet-stream"


# -----------------------------------------------------------------------------
# Single files
# -----------------------------------------------------------------------------

class TestOpenFile:
    """Tests for DownloadStreamer.open_file()."""

    async def test_full_content(self, downloads, handle, store):
        await store.save_file("docs/a.txt", b"0123456789", "add")
        payload = await downloads.open_file(handle, "docs/a.txt")
        assert payload.status_code == 200
        assert payload.headers["Content-Length"] == "10"
        assert payload.headers["Accept-Ranges"] == "bytes"
        assert payload.headers["Content-Disposition"].startswith("attachment;")
        assert payload.media_type == "text/plain"
        assert await collect(payload.body) == b"0123456789"

    async def test_range_current(self, downloads, handle, store):
        await store.save_file("r.bin", bytes(range(256)), "add")
        payload = await downloads.open_file(handle, "r.bin", range_header="bytes=10-19")
        assert payload.status_code == 206
        assert payload.headers["Content-Range"] == "bytes 10-19/256"
        assert payload.headers["Content-Length"] == "10"
        assert await collect(payload.body) == bytes(range(10, 20))

    async def test_range_at_old_commit(self, downloads, handle, store):
        """Ranges over committed blobs skip then limit the blob stream."""
        first = await store.save_file("v.txt", b"abcdefghij", "v1")
        await store.save_file("v.txt", b"ZZZZZZZZZZZZ", "v2")
        payload = await downloads.open_file(handle, "v.txt", commit=first, range_header="bytes=3-5")
        assert payload.status_code == 206
        assert payload.headers["Content-Range"] == "bytes 3-5/10"
        assert await collect(payload.body) == b"def"

    async def test_suffix_range(self, downloads, handle, store):
        await store.save_file("tail.txt", b"hello world", "add")
        payload = await downloads.open_file(handle, "tail.txt", range_header="bytes=-5")
        assert await collect(payload.body) == b"world"

    async def test_large_blob_range_spans_chunks(self, downloads, handle, store):
        data = os.urandom(700 * 1024)
        sha = await store.save_file("big.bin", data, "add")
        start, end = 300 * 1024 - 7, 600 * 1024 + 11
        payload = await downloads.open_file(handle, "big.bin", commit=sha, range_header=f"bytes={start}-{end}")
        assert await collect(payload.body) == data[start:end + 1]

    async def test_old_commit_full_content(self, downloads, handle, store):
        first = await store.save_file("h.txt", b"first", "v1")
        await store.save_file("h.txt", b"second", "v2")
        payload = await downloads.open_file(handle, "h.txt", commit=first)
        assert payload.status_code == 200
        assert await collect(payload.body) == b"first"

    async def test_unsatisfiable(self, downloads, handle, store):
        await store.save_file("short.txt", b"abc", "add")
        with pytest.raises(RangeNotSatisfiableError) as exc_info:
            await downloads.open_file(handle, "short.txt", range_header="bytes=3-")
        assert exc_info.value.total == 3

    async def test_missing_not_found(self, downloads, handle):
        with pytest.raises(NotFoundError):
            await downloads.open_file(handle, "missing.txt")

    async def test_directory_rejected(self, downloads, handle, store):
        await store.save_file("dir/x.txt", b"x", "add")
        with pytest.raises(ValidationError):
            await downloads.open_file(handle, "dir")

    async def test_root_rejected(self, downloads, handle):
        with pytest.raises(ValidationError):
            await downloads.open_file(handle, "")

    async def test_unknown_commit_not_found(self, downloads, handle, store):
        await store.save_file("a.txt", b"a", "add")
        with pytest.raises(NotFoundError):
            await downloads.open_file(handle, "a.txt", commit="e" * 40)

    async def test_abandoned_stream_can_be_closed(self, downloads, handle, store):
        """Closing a body early releases its producer."""
        sha = await store.save_file("abandon.bin", os.urandom(600 * 1024), "add")
        payload = await downloads.open_file(handle, "abandon.bin", commit=sha)
        first = await payload.body.__anext__()
        assert first
        await payload.body.aclose()


# -----------------------------------------------------------------------------
# Materialization cache
# -----------------------------------------------------------------------------

class TestMaterializationCache:
    """Tests for DownloadStreamer.materialize() and the cache sweep."""

    @pytest.fixture
    def smudge_calls(self, handle):
        """Replace the lfs smudge pipeline with a counted in-memory one."""
        calls = []

        async def fake_smudge(path, commit):
            calls.append((path, commit))
            await asyncio.sleep(0.01)
            yield f"real bytes of {path}@{commit[:7]}".encode()

        handle.lfs.smudge = fake_smudge
        return calls

    async def test_concurrent_requests_share_one_smudge(self, downloads, handle, smudge_calls):
        sha = await head_sha(handle)
        paths = await asyncio.gather(*(downloads.materialize(handle, "media/v.mp4", sha) for _ in range(5)))
        assert len(set(paths)) == 1
        assert len(smudge_calls) == 1
        assert paths[0].read_bytes() == f"real bytes of media/v.mp4@{sha[:7]}".encode()

    async def test_fresh_entry_reused(self, downloads, handle, smudge_calls):
        sha = await head_sha(handle)
        await downloads.materialize(handle, "a.png", sha)
        await downloads.materialize(handle, "a.png", sha)
        assert len(smudge_calls) == 1

    async def test_keyed_by_commit_and_path(self, downloads, handle):
        sha = await head_sha(handle)
        assert downloads.cache_path(handle, "a.png", sha) != downloads.cache_path(handle, "b.png", sha)
        assert downloads.cache_path(handle, "a.png", sha) != downloads.cache_path(handle, "a.png", "0" * 40)
        assert downloads.cache_path(handle, "a.png", sha).parent.name == handle.digest

    async def test_expired_entry_recomputed(self, downloads, handle, smudge_calls):
        sha = await head_sha(handle)
        target = await downloads.materialize(handle, "a.png", sha)
        old = time.time() - downloads.ttl - 60
        os.utime(target, (old, old))
        await downloads.materialize(handle, "a.png", sha)
        assert len(smudge_calls) == 2

    async def test_sweep_removes_expired(self, downloads, handle, smudge_calls):
        sha = await head_sha(handle)
        stale = await downloads.materialize(handle, "stale.png", sha)
        fresh = await downloads.materialize(handle, "fresh.png", sha)
        old = time.time() - downloads.ttl - 60
        os.utime(stale, (old, old))

        assert await downloads.sweep_cache() == 1
        assert not stale.exists()
        assert fresh.exists()

    async def test_entry_swept_before_serving_is_rebuilt(
        self, downloads, handle, store, smudge_calls, monkeypatch,
    ):
        sha = await store.save_file("media/clip.bin", b"stored pointer", "clip")

        async def always_pointer(path, commit):
            return True

        original = downloads.materialize

        async def swept_after_first(handle_, rel, commit):
            path = await original(handle_, rel, commit)
            if len(smudge_calls) == 1:
                path.unlink()
            return path

        monkeypatch.setattr(handle.lfs, "is_pointer", always_pointer)
        monkeypatch.setattr(downloads, "materialize", swept_after_first)

        payload = await downloads.open_file(handle, "media/clip.bin", commit=sha)
        assert await collect(payload.body) == f"real bytes of media/clip.bin@{sha[:7]}".encode()
        assert len(smudge_calls) == 2


# -----------------------------------------------------------------------------
# Archives
# -----------------------------------------------------------------------------

class TestStreamArchive:
    """Tests for DownloadStreamer.stream_archive()."""

    async def read_zip(self, stream) -> zipfile.ZipFile:
        return zipfile.ZipFile(io.BytesIO(await collect(stream)))

    async def test_directory_archive(self, downloads, handle, store):
        await store.save_file("photos/a.txt", b"alpha", "a")
        await store.save_file("photos/trip/b.txt", b"beta", "b")
        await store.save_file("elsewhere.txt", b"x", "x")

        filename, stream = await downloads.stream_archive(handle, "photos")
        archive = await self.read_zip(stream)

        assert filename == "photos.zip"
        assert sorted(archive.namelist()) == ["photos/a.txt", "photos/trip/b.txt"]
        assert archive.read("photos/trip/b.txt") == b"beta"
        assert archive.testzip() is None

    async def test_root_archive_prefix(self, downloads, handle, store):
        await store.save_file("top.txt", b"t", "t")
        filename, stream = await downloads.stream_archive(handle, "")
        archive = await self.read_zip(stream)
        assert filename == "root.zip"
        assert archive.namelist() == ["root/top.txt"]

    async def test_hidden_files_excluded(self, downloads, handle, store):
        await store.create_directory("kept", "mkdir")
        await store.save_file("kept/file.txt", b"f", "f")
        _, stream = await downloads.stream_archive(handle, "kept")
        archive = await self.read_zip(stream)
        assert archive.namelist() == ["kept/file.txt"]

    async def test_archive_at_commit(self, downloads, handle, store):
        first = await store.save_file("snap/one.txt", b"1", "one")
        await store.save_file("snap/two.txt", b"2", "two")
        _, stream = await downloads.stream_archive(handle, "snap", first)
        archive = await self.read_zip(stream)
        assert archive.namelist() == ["snap/one.txt"]

    async def test_large_entry(self, downloads, handle, store):
        data = os.urandom(600 * 1024)
        await store.save_file("blobs/big.bin", data, "add")
        _, stream = await downloads.stream_archive(handle, "blobs")
        archive = await self.read_zip(stream)
        assert archive.read("blobs/big.bin") == data

    async def test_missing_directory_not_found(self, downloads, handle):
        with pytest.raises(NotFoundError):
            await downloads.stream_archive(handle, "nothing")

    async def test_file_rejected(self, downloads, handle, store):
        await store.save_file("single.txt", b"s", "s")
        with pytest.raises(ValidationError):
            await downloads.stream_archive(handle, "single.txt")
