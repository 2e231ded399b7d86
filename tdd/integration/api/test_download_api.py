"""
Integration tests for the Download API endpoints.
"""
import io
import zipfile

from shared.assertions import (
    assert_error_response,
    assert_not_found,
    assert_partial_content,
    assert_status_code,
    assert_validation_error,
)


async def put_file(client, path: str, content: bytes) -> str:
    response = await client.put("/api/files/content", params={"path": path}, content=content)
    assert_status_code(response, 200)
    return response.json()["commit"]


class TestDownloadFile:
    """Tests for GET /api/download endpoint."""

    async def test_attachment(self, client):
        await put_file(client, "docs/report.txt", b"report body")

        response = await client.get("/api/download", params={"path": "docs/report.txt"})

        assert_status_code(response, 200)
        assert response.content == b"report body"
        assert response.headers["content-disposition"] == (
            "attachment; filename=\"report.txt\"; filename*=UTF-8''report.txt"
        )
        assert response.headers["content-length"] == "11"
        assert response.headers["content-type"].startswith("text/plain")

    async def test_range_at_commit(self, client):
        sha = await put_file(client, "v.bin", bytes(range(100)))
        await put_file(client, "v.bin", b"changed")

        response = await client.get(
            "/api/download", params={"path": "v.bin", "commit": sha}, headers={"Range": "bytes=-10"}
        )

        assert assert_partial_content(response, 90, 99, 100) == bytes(range(90, 100))

    async def test_multi_range_serves_full_content(self, client):
        await put_file(client, "m.txt", b"0123456789")
        response = await client.get(
            "/api/download", params={"path": "m.txt"}, headers={"Range": "bytes=0-1,4-5"}
        )
        assert_status_code(response, 200)
        assert response.content == b"0123456789"

    async def test_unsatisfiable(self, client):
        await put_file(client, "s.txt", b"abc")
        response = await client.get("/api/download", params={"path": "s.txt"}, headers={"Range": "bytes=5-9"})
        assert_error_response(response, 416)
        assert response.headers["content-range"] == "bytes */3"

    async def test_missing(self, client):
        assert_not_found(await client.get("/api/download", params={"path": "none.txt"}))

    async def test_directory_rejected(self, client):
        await put_file(client, "dir/a.txt", b"a")
        assert_validation_error(await client.get("/api/download", params={"path": "dir"}))


class TestDownloadFolder:
    """Tests for GET /api/download/folder endpoint."""

    async def test_zip(self, client):
        await put_file(client, "album/one.txt", b"1")
        await put_file(client, "album/nested/two.txt", b"22")

        response = await client.get("/api/download/folder", params={"path": "album"})

        assert_status_code(response, 200)
        assert response.headers["content-type"] == "application/zip"
        assert 'filename="album.zip"' in response.headers["content-disposition"]
        archive = zipfile.ZipFile(io.BytesIO(response.content))
        assert sorted(archive.namelist()) == ["album/nested/two.txt", "album/one.txt"]
        assert archive.read("album/nested/two.txt") == b"22"

    async def test_zip_at_commit(self, client):
        sha = await put_file(client, "snap/a.txt", b"a")
        await put_file(client, "snap/b.txt", b"b")
        response = await client.get("/api/download/folder", params={"path": "snap", "commit": sha})
        archive = zipfile.ZipFile(io.BytesIO(response.content))
        assert archive.namelist() == ["snap/a.txt"]

    async def test_missing_folder(self, client):
        assert_not_found(await client.get("/api/download/folder", params={"path": "nowhere"}))
