"""
Custom assertion helpers for model testing.

These helpers provide cleaner assertions for storage dataclasses and
pydantic schemas.
"""
import re
from typing import Any, Iterable

COMMIT_HASH = re.compile(r"^[0-9a-f]{40}$")


def assert_model_fields(model: Any, expected: dict[str, Any]) -> None:
    """Assert model instance has expected field values."""
    for field, value in expected.items():
        actual = getattr(model, field, None)
        assert actual == value, (
            f"Expected {field}={value!r}, got {field}={actual!r}"
        )


def assert_commit_hash(value: Any) -> None:
    """Assert value is a full lowercase 40-hex commit hash."""
    assert isinstance(value, str), f"Expected str hash, got {type(value)}"
    assert COMMIT_HASH.match(value), f"Not a full commit hash: {value!r}"


def assert_entry_names(entries: Iterable[Any], expected: list[str]) -> None:
    """Assert entries (FileEntry objects or JSON dicts) have exactly these names, in order."""
    names = [e["name"] if isinstance(e, dict) else e.name for e in entries]
    assert names == expected, f"Expected entries {expected}, got {names}"
