"""
File operations: listing, raw content, writes, moves, directories and
chunked uploads.

Every mutating endpoint produces exactly one commit and returns its hash.
"""
import logging

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import StreamingResponse

from vfiles.dependencies import StorageServices, get_repository, get_services
from vfiles.errors import PayloadTooLargeError, ValidationError
from vfiles.models import Author
from vfiles.schemas import (
    AuthorIn,
    CommitResult,
    DirectoryCreate,
    DirectoryListing,
    FileEntryRead,
    MoveRequest,
    UploadChunkRead,
    UploadCompleteRequest,
    UploadInitRead,
    UploadInitRequest,
)
from vfiles.services.repository import RepositoryHandle
from vfiles.services.streams import limit_stream
from vfiles.services.uploads import DEFAULT_MESSAGE as DEFAULT_UPLOAD_MESSAGE
from vfiles.utils.validation import (
    clean_message,
    join_request_path,
    require_allowed_path,
    to_repo_path,
    validate_commit_hash,
    validate_upload_id,
    validate_upload_target,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/files", tags=["files"])


def _author(author: AuthorIn | None) -> Author | None:
    if author is None:
        return None
    return Author(author.name, author.email)


def _header_author(request: Request) -> Author | None:
    """Optional commit identity from ``X-Author-Name``/``X-Author-Email``."""
    name = request.headers.get("x-author-name", "").strip()
    email = request.headers.get("x-author-email", "").strip()
    if not name and not email:
        return None
    if not name or not email:
        raise ValidationError("Both X-Author-Name and X-Author-Email are required")
    return Author(name, email)


def _writable(path: str, services: StorageServices) -> str:
    rel = to_repo_path(path)
    if not rel:
        raise ValidationError("Path must not be the repository root")
    require_allowed_path(rel, services.settings.allowed_path_prefixes)
    return rel


# -----------------------------------------------------------------------------
# Reads
# -----------------------------------------------------------------------------

@router.get("", response_model=DirectoryListing)
async def list_files(
    path: str = "",
    commit: str | None = None,
    handle: RepositoryHandle = Depends(get_repository),
):
    rel = to_repo_path(path)
    commit = validate_commit_hash(commit)
    entries = await handle.store.list_files(rel, commit)
    return DirectoryListing(
        path=rel,
        commit=commit,
        entries=[FileEntryRead.model_validate(e) for e in entries],
    )


@router.get("/content")
async def get_file_content(
    request: Request,
    path: str,
    commit: str | None = None,
    handle: RepositoryHandle = Depends(get_repository),
    services: StorageServices = Depends(get_services),
):
    """Raw file bytes, inline, honouring a single ``Range`` header."""
    payload = await services.downloads.open_file(
        handle,
        path,
        commit=validate_commit_hash(commit),
        range_header=request.headers.get("range"),
        disposition="inline",
    )
    return StreamingResponse(
        payload.body,
        status_code=payload.status_code,
        media_type=payload.media_type,
        headers=payload.headers,
    )


# -----------------------------------------------------------------------------
# Writes
# -----------------------------------------------------------------------------

@router.put("/content", response_model=CommitResult)
async def put_file_content(
    request: Request,
    path: str,
    message: str | None = None,
    handle: RepositoryHandle = Depends(get_repository),
    services: StorageServices = Depends(get_services),
):
    """Create or replace a file with the raw request body."""
    settings = services.settings
    rel = _writable(path, services)
    validate_upload_target(
        rel.rpartition("/")[2],
        request.headers.get("content-type"),
        settings.allowed_file_types,
    )
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > settings.max_file_size:
        raise PayloadTooLargeError(
            f"File too large, maximum is {settings.max_file_size // (1024 * 1024)}MB"
        )

    sha = await handle.store.save_file(
        rel,
        limit_stream(request.stream(), settings.max_file_size),
        clean_message(message, f"Update {rel}"),
        _header_author(request),
    )
    return CommitResult(commit=sha, path=rel)


@router.delete("", response_model=CommitResult)
async def delete_path(
    request: Request,
    path: str,
    message: str | None = None,
    handle: RepositoryHandle = Depends(get_repository),
    services: StorageServices = Depends(get_services),
):
    """Delete a file or a whole directory in one commit."""
    rel = _writable(path, services)
    sha = await handle.store.delete_file(
        rel, clean_message(message, f"Delete {rel}"), _header_author(request)
    )
    return CommitResult(commit=sha, path=rel)


@router.post("/move", response_model=CommitResult)
async def move_path(
    body: MoveRequest,
    handle: RepositoryHandle = Depends(get_repository),
    services: StorageServices = Depends(get_services),
):
    src = _writable(body.from_path, services)
    dst = _writable(body.to_path, services)
    sha = await handle.store.move_path(
        src,
        dst,
        clean_message(body.message, f"Move {src} to {dst}"),
        _author(body.author),
    )
    return CommitResult(commit=sha, path=dst)


@router.post("/dir", response_model=CommitResult, status_code=201)
async def create_directory(
    body: DirectoryCreate,
    handle: RepositoryHandle = Depends(get_repository),
    services: StorageServices = Depends(get_services),
):
    rel = _writable(body.path, services)
    sha = await handle.store.create_directory(
        rel, clean_message(body.message, f"Create directory {rel}"), _author(body.author)
    )
    return CommitResult(commit=sha, path=rel)


# -----------------------------------------------------------------------------
# Chunked uploads
# -----------------------------------------------------------------------------

@router.post("/upload/init", response_model=UploadInitRead)
async def upload_init(
    body: UploadInitRequest,
    handle: RepositoryHandle = Depends(get_repository),
    services: StorageServices = Depends(get_services),
):
    """Start an upload, or resume one with the same path, size and mtime."""
    target = join_request_path(body.path, body.filename)
    result = await services.uploads.init(
        handle,
        target,
        body.size,
        last_modified=body.last_modified,
        mime=body.mime,
    )
    return UploadInitRead.model_validate(result)


@router.post("/upload/chunk", response_model=UploadChunkRead)
async def upload_chunk(
    request: Request,
    upload_id: str = Query(...),
    index: int = Query(...),
    handle: RepositoryHandle = Depends(get_repository),
    services: StorageServices = Depends(get_services),
):
    size = await services.uploads.put_chunk(handle, upload_id, index, request.stream())
    return UploadChunkRead(upload_id=upload_id, index=index, size=size)


@router.post("/upload/complete", response_model=CommitResult)
async def upload_complete(
    body: UploadCompleteRequest,
    handle: RepositoryHandle = Depends(get_repository),
    services: StorageServices = Depends(get_services),
):
    upload_id = validate_upload_id(body.upload_id)
    session = services.uploads.load_session(handle, upload_id)
    sha = await services.uploads.complete(
        handle,
        upload_id,
        message=clean_message(body.message, DEFAULT_UPLOAD_MESSAGE),
        author=_author(body.author),
    )
    return CommitResult(commit=sha, path=session.target_path if session else "")
