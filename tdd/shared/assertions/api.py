"""
Custom assertion helpers for API testing.

These helpers provide cleaner, more expressive assertions for common
patterns in API tests.
"""
from typing import Any

from httpx import Response

from .models import assert_commit_hash


def assert_status_code(response: Response, expected: int) -> None:
    """Assert response has expected status code with helpful error message."""
    assert response.status_code == expected, (
        f"Expected status {expected}, got {response.status_code}. "
        f"Response body: {response.text}"
    )


def assert_json_contains(response: Response, expected: dict[str, Any] = None, **kwargs) -> None:
    """Assert response JSON contains all expected key-value pairs.

    This allows for partial matching - the response can contain additional
    fields not specified in expected.

    Can be called as:
        assert_json_contains(response, {"name": "value"})
        assert_json_contains(response, name="value")
    """
    if expected is None:
        expected = kwargs
    else:
        expected = {**expected, **kwargs}

    actual = response.json()
    for key, value in expected.items():
        assert key in actual, f"Expected key '{key}' not found in response: {actual}"
        assert actual[key] == value, (
            f"Expected {key}={value!r}, got {key}={actual[key]!r}"
        )


def assert_error_response(response: Response, status_code: int, detail: str | None = None) -> None:
    """Assert response is an error with expected status and, optionally, a detail substring."""
    assert_status_code(response, status_code)
    actual = response.json()
    assert "detail" in actual, f"Expected 'detail' in error response: {actual}"
    if detail is not None:
        assert detail in actual["detail"], (
            f"Expected '{detail}' in detail, got '{actual['detail']}'"
        )


def assert_not_found(response: Response) -> None:
    """Assert response is a 404 Not Found error with a "not found" message."""
    assert_status_code(response, 404)
    actual = response.json()
    assert "detail" in actual, f"Expected 'detail' in error response: {actual}"
    assert "not found" in actual["detail"].lower(), (
        f"Expected 'not found' in detail, got '{actual['detail']}'"
    )


def assert_validation_error(response: Response) -> dict[str, Any]:
    """Assert response is a storage validation error (400).

    Returns the error body for further inspection.
    """
    assert_status_code(response, 400)
    return response.json()


def assert_commit_response(response: Response, path: str | None = None, status_code: int = 200) -> str:
    """Assert a mutation succeeded and return the new commit hash."""
    assert_status_code(response, status_code)
    actual = response.json()
    assert_commit_hash(actual.get("commit"))
    if path is not None:
        assert actual["path"] == path, f"Expected path {path!r}, got {actual['path']!r}"
    return actual["commit"]


def assert_partial_content(response: Response, start: int, end: int, total: int) -> bytes:
    """Assert a 206 response for bytes ``start..end`` of ``total``."""
    assert_status_code(response, 206)
    assert response.headers["content-range"] == f"bytes {start}-{end}/{total}"
    assert int(response.headers["content-length"]) == end - start + 1
    assert len(response.content) == end - start + 1
    return response.content
