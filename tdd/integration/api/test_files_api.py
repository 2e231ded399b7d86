"""
Integration tests for the Files API endpoints.

These tests verify the full request/response cycle through the FastAPI
application against real repositories in both layouts.
"""
import pytest

from shared.assertions import (
    assert_commit_response,
    assert_entry_names,
    assert_error_response,
    assert_json_contains,
    assert_not_found,
    assert_partial_content,
    assert_status_code,
    assert_validation_error,
)
from shared.factories import author_payload, directory_payload, make_settings, move_payload


async def put_file(client, path: str, content: bytes, **params):
    return await client.put("/api/files/content", params={"path": path, **params}, content=content)


class TestListFiles:
    """Tests for GET /api/files endpoint."""

    async def test_empty_root(self, client):
        response = await client.get("/api/files")
        assert_status_code(response, 200)
        assert_json_contains(response, path="", commit=None, entries=[])

    async def test_directories_first(self, client):
        await put_file(client, "zeta.txt", b"z")
        await put_file(client, "alpha/inner.txt", b"a")
        await put_file(client, "beta.txt", b"b")

        response = await client.get("/api/files")

        assert_status_code(response, 200)
        entries = response.json()["entries"]
        assert_entry_names(entries, ["alpha", "beta.txt", "zeta.txt"])
        assert entries[0]["kind"] == "directory"
        assert entries[1]["kind"] == "file"
        assert entries[1]["size"] == 1

    async def test_entries_carry_last_commit(self, client):
        await put_file(client, "docs/a.txt", b"a", message="Add a")
        response = await client.get("/api/files", params={"path": "docs"})
        [entry] = response.json()["entries"]
        assert entry["path"] == "docs/a.txt"
        assert entry["last_commit"]["message"] == "Add a"

    async def test_listing_at_commit(self, client):
        first = assert_commit_response(await put_file(client, "a.txt", b"1"))
        await put_file(client, "b.txt", b"2")

        response = await client.get("/api/files", params={"commit": first})

        assert_status_code(response, 200)
        assert response.json()["commit"] == first
        assert_entry_names(response.json()["entries"], ["a.txt"])

    async def test_missing_directory(self, client):
        assert_not_found(await client.get("/api/files", params={"path": "nope"}))

    async def test_path_escape_rejected(self, client):
        assert_validation_error(await client.get("/api/files", params={"path": "../etc"}))

    async def test_bad_commit_rejected(self, client):
        assert_validation_error(await client.get("/api/files", params={"commit": "HEAD"}))


class TestFileContent:
    """Tests for GET/PUT /api/files/content endpoints."""

    async def test_put_then_get(self, client):
        commit = assert_commit_response(
            await put_file(client, "notes/today.txt", b"hello"), path="notes/today.txt"
        )
        response = await client.get("/api/files/content", params={"path": "notes/today.txt"})

        assert_status_code(response, 200)
        assert response.content == b"hello"
        assert response.headers["content-disposition"].startswith("inline;")
        assert response.headers["accept-ranges"] == "bytes"

        old = await client.get("/api/files/content", params={"path": "notes/today.txt", "commit": commit})
        assert old.content == b"hello"

    async def test_overwrite_keeps_old_version(self, client):
        first = assert_commit_response(await put_file(client, "v.txt", b"one"))
        assert_commit_response(await put_file(client, "v.txt", b"two"))

        current = await client.get("/api/files/content", params={"path": "v.txt"})
        old = await client.get("/api/files/content", params={"path": "v.txt", "commit": first})
        assert current.content == b"two"
        assert old.content == b"one"

    async def test_range(self, client):
        await put_file(client, "r.txt", b"0123456789")
        response = await client.get(
            "/api/files/content", params={"path": "r.txt"}, headers={"Range": "bytes=2-5"}
        )
        assert assert_partial_content(response, 2, 5, 10) == b"2345"

    async def test_unsatisfiable_range(self, client):
        await put_file(client, "r.txt", b"0123456789")
        response = await client.get(
            "/api/files/content", params={"path": "r.txt"}, headers={"Range": "bytes=50-"}
        )
        assert_error_response(response, 416)
        assert response.headers["content-range"] == "bytes */10"

    async def test_default_message(self, client, handle):
        commit = assert_commit_response(await put_file(client, "m.txt", b"m"))
        record = await handle.history.get_commit_details(commit)
        assert record.message == "Update m.txt"

    async def test_author_headers(self, client, handle):
        response = await client.put(
            "/api/files/content",
            params={"path": "signed.txt", "message": "Signed"},
            content=b"s",
            headers={"X-Author-Name": "Grace Hopper", "X-Author-Email": "grace@example.com"},
        )
        record = await handle.history.get_commit_details(assert_commit_response(response))
        assert record.author_name == "Grace Hopper"
        assert record.author_email == "grace@example.com"
        assert record.message == "Signed"

    async def test_half_author_rejected(self, client):
        response = await client.put(
            "/api/files/content",
            params={"path": "x.txt"},
            content=b"x",
            headers={"X-Author-Name": "Nobody"},
        )
        assert_error_response(response, 400, "X-Author-Email")

    async def test_put_over_directory_conflicts(self, client):
        await put_file(client, "dir/a.txt", b"a")
        assert_error_response(await put_file(client, "dir", b"x"), 409)

    async def test_put_root_rejected(self, client):
        assert_validation_error(await put_file(client, "/", b"x"))

    async def test_message_too_long(self, client):
        assert_validation_error(await put_file(client, "a.txt", b"a", message="x" * 201))

    async def test_missing_file(self, client):
        assert_not_found(await client.get("/api/files/content", params={"path": "ghost.txt"}))

    async def test_missing_path_parameter(self, client):
        assert_status_code(await client.get("/api/files/content"), 422)


class TestLimits:
    """Size, type and prefix limits on writes."""

    @pytest.fixture
    def settings(self, temp_dir, repo_mode):
        return make_settings(
            temp_dir,
            repo_mode,
            max_file_size=16,
            allowed_file_types=["txt", "image/png"],
            allowed_path_prefixes=["public"],
        )

    async def test_too_large(self, client):
        assert_error_response(await put_file(client, "public/big.txt", b"x" * 17), 413)

    async def test_at_limit(self, client):
        assert_commit_response(await put_file(client, "public/fits.txt", b"x" * 16))

    async def test_type_not_allowed(self, client):
        assert_error_response(await put_file(client, "public/run.sh", b"#!"), 415)

    async def test_type_allowed_by_mime(self, client):
        response = await client.put(
            "/api/files/content",
            params={"path": "public/pic"},
            content=b"\x89PNG",
            headers={"Content-Type": "image/png"},
        )
        assert_commit_response(response)

    async def test_prefix_not_allowed(self, client):
        assert_error_response(await put_file(client, "private/a.txt", b"a"), 403)

    async def test_reads_ignore_prefixes(self, client):
        assert_status_code(await client.get("/api/files"), 200)


class TestDelete:
    """Tests for DELETE /api/files endpoint."""

    async def test_delete_file(self, client):
        await put_file(client, "gone.txt", b"g")
        assert_commit_response(await client.delete("/api/files", params={"path": "gone.txt"}), path="gone.txt")
        assert_not_found(await client.get("/api/files/content", params={"path": "gone.txt"}))

    async def test_delete_directory(self, client):
        await put_file(client, "tree/a.txt", b"a")
        await put_file(client, "tree/sub/b.txt", b"b")
        assert_commit_response(await client.delete("/api/files", params={"path": "tree"}))
        assert_not_found(await client.get("/api/files", params={"path": "tree"}))

    async def test_delete_missing(self, client):
        assert_not_found(await client.delete("/api/files", params={"path": "ghost.txt"}))

    async def test_delete_root_rejected(self, client):
        assert_validation_error(await client.delete("/api/files", params={"path": ""}))


class TestMove:
    """Tests for POST /api/files/move endpoint."""

    async def test_move_file(self, client, handle):
        await put_file(client, "old.txt", b"o")
        response = await client.post(
            "/api/files/move",
            json={**move_payload("old.txt", "archive/new.txt", "Archive"), "author": author_payload("Ada", "ada@example.com")},
        )
        commit = assert_commit_response(response, path="archive/new.txt")

        assert_not_found(await client.get("/api/files/content", params={"path": "old.txt"}))
        moved = await client.get("/api/files/content", params={"path": "archive/new.txt"})
        assert moved.content == b"o"
        record = await handle.history.get_commit_details(commit)
        assert record.message == "Archive"
        assert record.author_name == "Ada"

    async def test_move_onto_existing_conflicts(self, client):
        await put_file(client, "a.txt", b"a")
        await put_file(client, "b.txt", b"b")
        response = await client.post("/api/files/move", json=move_payload("a.txt", "b.txt"))
        assert_error_response(response, 409)

    async def test_move_missing(self, client):
        assert_not_found(await client.post("/api/files/move", json=move_payload("ghost.txt", "x.txt")))

    async def test_move_into_itself_rejected(self, client):
        await put_file(client, "d/a.txt", b"a")
        assert_validation_error(await client.post("/api/files/move", json=move_payload("d", "d/inner")))


class TestCreateDirectory:
    """Tests for POST /api/files/dir endpoint."""

    async def test_create(self, client):
        response = await client.post("/api/files/dir", json=directory_payload("photos/2024"))
        assert_commit_response(response, path="photos/2024", status_code=201)

        listing = await client.get("/api/files", params={"path": "photos"})
        assert_entry_names(listing.json()["entries"], ["2024"])

        inner = await client.get("/api/files", params={"path": "photos/2024"})
        assert inner.json()["entries"] == []

    async def test_existing_conflicts(self, client):
        await client.post("/api/files/dir", json=directory_payload("dup"))
        assert_error_response(await client.post("/api/files/dir", json=directory_payload("dup")), 409)

    async def test_invalid_author(self, client):
        response = await client.post(
            "/api/files/dir", json=directory_payload("x", author={"name": "", "email": "a@b.c"})
        )
        assert_status_code(response, 422)
