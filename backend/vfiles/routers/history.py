from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from vfiles.dependencies import get_repository
from vfiles.errors import ValidationError
from vfiles.schemas import CommitRead, FileHistoryRead
from vfiles.services.repository import RepositoryHandle
from vfiles.utils.validation import parse_limit, to_repo_path, validate_commit_hash

router = APIRouter(prefix="/api/history", tags=["history"])


@router.get("", response_model=FileHistoryRead)
async def get_file_history(
    path: str,
    limit: str | None = None,
    handle: RepositoryHandle = Depends(get_repository),
):
    """Commits touching ``path``, newest first."""
    rel = to_repo_path(path)
    if not rel:
        raise ValidationError("Path must name a file or directory")
    history = await handle.history.get_file_history(rel, parse_limit(limit))
    return FileHistoryRead(
        path=rel,
        commits=[CommitRead.model_validate(c) for c in history.commits],
        current_version=history.current_version,
        total_count=history.total_count,
    )


@router.get("/commit/{commit_hash}", response_model=CommitRead)
async def get_commit(commit_hash: str, handle: RepositoryHandle = Depends(get_repository)):
    sha = validate_commit_hash(commit_hash)
    if sha is None:
        raise ValidationError("Invalid commit hash")
    record = await handle.history.get_commit_details(sha)
    return CommitRead.model_validate(record)


@router.get("/diff", response_class=PlainTextResponse)
async def get_file_diff(
    path: str,
    commit: str,
    parent: str | None = None,
    handle: RepositoryHandle = Depends(get_repository),
):
    """Unified diff of ``path`` introduced by ``commit`` (or against ``parent``)."""
    rel = to_repo_path(path)
    sha = validate_commit_hash(commit)
    if sha is None:
        raise ValidationError("Invalid commit hash")
    diff = await handle.history.get_file_diff(rel, sha, validate_commit_hash(parent, "parent"))
    return PlainTextResponse(diff)
