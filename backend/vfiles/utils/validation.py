"""
Request parameter validation.

Helpers here raise the storage error taxonomy directly, so routers can call
them inline and let the application exception handler render the result.
"""
import posixpath
import re
from pathlib import Path, PurePosixPath

from vfiles.errors import (
    PathNotAllowedError,
    UnsupportedTypeError,
    ValidationError,
)

COMMIT_HASH_PATTERN = re.compile(r"^[0-9a-f]{40}$")
UPLOAD_ID_PATTERN = re.compile(r"^[0-9a-f]{64}$")

MESSAGE_MAX_LENGTH = 200
FILENAME_MAX_LENGTH = 255


def normalize_request_path(raw: str | None) -> str:
    """Normalize a client supplied path to a repo-relative posix path.

    Backslashes become slashes, leading slashes are dropped and ``.``
    segments collapse; the repository root is the empty string.
    """
    path = (raw or "").strip().replace("\\", "/")
    path = path.lstrip("/")
    if not path:
        return ""
    path = posixpath.normpath(path)
    return "" if path == "." else path


def join_request_path(directory: str | None, filename: str) -> str:
    """Target path for ``filename`` inside ``directory``; the name may not carry separators."""
    if not is_safe_upload_filename(filename):
        raise ValidationError(f"Invalid filename: {filename}")
    base = normalize_request_path(directory)
    return f"{base}/{filename}" if base else filename


def to_repo_path(raw: str | None) -> str:
    """Normalize and reject paths that escape the repository root."""
    path = normalize_request_path(raw)
    parts = PurePosixPath(path).parts
    if ".." in parts:
        raise ValidationError(f"Invalid path: {raw}")
    if any(part == ".git" for part in parts):
        raise ValidationError(f"Invalid path: {raw}")
    return path


def resolve_in_root(root: Path, rel: str) -> Path:
    """Absolute location of ``rel`` under ``root``; symlinks may not escape it."""
    base = root.resolve()
    target = (base / rel).resolve() if rel else base
    if target != base and not target.is_relative_to(base):
        raise ValidationError(f"Path escapes repository root: {rel}")
    return target


def is_allowed_path_by_prefixes(path: str, allowed_prefixes: list[str]) -> bool:
    if not allowed_prefixes:
        return True
    requested = normalize_request_path(path)
    for raw_prefix in allowed_prefixes:
        prefix = normalize_request_path(raw_prefix)
        if not prefix or requested == prefix or requested.startswith(prefix + "/"):
            return True
    return False


def require_allowed_path(path: str, allowed_prefixes: list[str]) -> None:
    if not is_allowed_path_by_prefixes(path, allowed_prefixes):
        raise PathNotAllowedError(f"Writing to {path} is not allowed")


def parse_limit(raw: str | int | None, default: int = 50, minimum: int = 1, maximum: int = 200) -> int:
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError("Invalid limit")
    if value < minimum or value > maximum:
        raise ValidationError(f"limit must be between {minimum} and {maximum}")
    return value


def validate_commit_hash(value: str | None, name: str = "commit") -> str | None:
    """Accept a full lowercase 40-hex hash, or nothing."""
    if not value:
        return None
    value = value.strip().lower()
    if not COMMIT_HASH_PATTERN.match(value):
        raise ValidationError(f"Invalid {name} hash")
    return value


def validate_upload_id(value: str | None) -> str:
    value = (value or "").strip().lower()
    if not UPLOAD_ID_PATTERN.match(value):
        raise ValidationError("Invalid uploadId")
    return value


def clean_message(value: str | None, default: str, max_length: int = MESSAGE_MAX_LENGTH) -> str:
    """Trim an optional commit message, falling back to ``default``."""
    if value is None:
        return default
    value = value.strip()
    if not value:
        return default
    if len(value) > max_length:
        raise ValidationError(f"message must be at most {max_length} characters")
    return value


def is_safe_upload_filename(filename: str) -> bool:
    if not filename or len(filename) > FILENAME_MAX_LENGTH:
        return False
    if "/" in filename or "\\" in filename or "\0" in filename:
        return False
    return filename not in (".", "..")


def is_allowed_file_type(filename: str, mime: str | None, allowed_types: list[str]) -> bool:
    """Match against an allow-list of extensions (``png``, ``.png``) or mime types (``image/png``).

    An empty allow-list allows everything.
    """
    if not allowed_types:
        return True
    suffix = PurePosixPath(filename).suffix.lower()
    mime = (mime or "").lower()
    for entry in allowed_types:
        entry = entry.strip().lower()
        if not entry:
            continue
        if "/" in entry:
            if mime and mime == entry:
                return True
        elif suffix and suffix == (entry if entry.startswith(".") else f".{entry}"):
            return True
    return False


def validate_upload_target(filename: str, mime: str | None, allowed_types: list[str]) -> None:
    if not is_safe_upload_filename(filename):
        raise ValidationError(f"Invalid filename: {filename}")
    if not is_allowed_file_type(filename, mime, allowed_types):
        raise UnsupportedTypeError(f"File type not allowed: {filename}")
