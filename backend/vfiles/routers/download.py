from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from vfiles.dependencies import StorageServices, get_repository, get_services
from vfiles.services.downloads import content_disposition
from vfiles.services.repository import RepositoryHandle
from vfiles.utils.validation import validate_commit_hash

router = APIRouter(prefix="/api/download", tags=["download"])


@router.get("")
async def download_file(
    request: Request,
    path: str,
    commit: str | None = None,
    handle: RepositoryHandle = Depends(get_repository),
    services: StorageServices = Depends(get_services),
):
    """Download a file as an attachment; single ranges are answered with 206."""
    payload = await services.downloads.open_file(
        handle,
        path,
        commit=validate_commit_hash(commit),
        range_header=request.headers.get("range"),
    )
    return StreamingResponse(
        payload.body,
        status_code=payload.status_code,
        media_type=payload.media_type,
        headers=payload.headers,
    )


@router.get("/folder")
async def download_folder(
    path: str = "",
    commit: str | None = None,
    handle: RepositoryHandle = Depends(get_repository),
    services: StorageServices = Depends(get_services),
):
    """Stream a directory as a ZIP archive built on the fly."""
    filename, stream = await services.downloads.stream_archive(
        handle, path, validate_commit_hash(commit)
    )
    return StreamingResponse(
        stream,
        media_type="application/zip",
        headers={"Content-Disposition": content_disposition(filename)},
    )
