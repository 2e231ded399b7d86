import logging

from fastapi import APIRouter, Depends, Query

from vfiles.dependencies import StorageServices, get_repository, get_services
from vfiles.models import EntryKind
from vfiles.schemas import FileEntryRead, SearchMode, SearchResults
from vfiles.services.repository import RepositoryHandle
from vfiles.utils.validation import to_repo_path

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/search", tags=["search"])


@router.get("", response_model=SearchResults)
async def search(
    q: str = Query(..., min_length=1, max_length=200),
    path: str = "",
    type: EntryKind | None = None,
    mode: SearchMode = SearchMode.NAME,
    handle: RepositoryHandle = Depends(get_repository),
    services: StorageServices = Depends(get_services),
):
    """Search entry names, or file contents when ``mode=content``."""
    rel = to_repo_path(path)
    if mode == SearchMode.CONTENT:
        found = await services.search.search_by_content(handle, q, rel, type)
    else:
        found = await services.search.search_by_name(handle, q, rel, type)
    logger.debug(f"Search {mode.value} {q!r} under {rel or '/'}: {len(found)} results")
    return SearchResults(
        query=q,
        mode=mode,
        path=rel,
        results=[FileEntryRead.model_validate(e) for e in found],
    )
