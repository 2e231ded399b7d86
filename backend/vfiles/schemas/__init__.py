from vfiles.schemas.files import (
    AuthorIn,
    CommitResult,
    CommitSummaryRead,
    ContentMatchRead,
    DirectoryCreate,
    DirectoryListing,
    FileEntryRead,
    MoveRequest,
)
from vfiles.schemas.history import CommitRead, FileHistoryRead
from vfiles.schemas.upload import (
    UploadChunkRead,
    UploadCompleteRequest,
    UploadInitRead,
    UploadInitRequest,
)
from vfiles.schemas.search import SearchMode, SearchResults

__all__ = [
    "AuthorIn",
    "CommitResult",
    "CommitSummaryRead",
    "ContentMatchRead",
    "DirectoryCreate",
    "DirectoryListing",
    "FileEntryRead",
    "MoveRequest",
    "CommitRead",
    "FileHistoryRead",
    "UploadChunkRead",
    "UploadCompleteRequest",
    "UploadInitRead",
    "UploadInitRequest",
    "SearchMode",
    "SearchResults",
]
