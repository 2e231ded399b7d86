"""
API request/response factories.

These factories create dictionaries suitable for API request payloads.
They help keep tests DRY and maintainable.
"""
from typing import Any

from .base import fake, json_ready


def author_payload(name: str | None = None, email: str | None = None) -> dict[str, Any]:
    return {"name": name or fake.name(), "email": email or fake.email()}


def upload_init_payload(
    filename: str,
    size: int,
    path: str = "",
    last_modified: int | None = None,
    mime: str | None = None,
) -> dict[str, Any]:
    """Create a payload for POST /api/files/upload/init."""
    return json_ready({
        "path": path,
        "filename": filename,
        "size": size,
        "last_modified": last_modified,
        "mime": mime,
    })


def upload_complete_payload(upload_id: str, message: str | None = None, author: dict | None = None) -> dict[str, Any]:
    """Create a payload for POST /api/files/upload/complete."""
    return json_ready({"upload_id": upload_id, "message": message, "author": author})


def move_payload(from_path: str, to_path: str, message: str | None = None) -> dict[str, Any]:
    """Create a payload for POST /api/files/move."""
    return json_ready({"from_path": from_path, "to_path": to_path, "message": message})


def directory_payload(path: str, message: str | None = None, author: dict | None = None) -> dict[str, Any]:
    """Create a payload for POST /api/files/dir."""
    return json_ready({"path": path, "message": message, "author": author})
