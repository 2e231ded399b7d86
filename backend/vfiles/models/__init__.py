from vfiles.models.repository import RepoMode
from vfiles.models.commit import Author, CommitRecord, CommitSummary, FileHistory
from vfiles.models.file import ContentMatch, EntryKind, FileEntry
from vfiles.models.transfer import ByteRange, DownloadPayload, UploadInit
from vfiles.models.upload import UploadSession

__all__ = [
    "RepoMode",
    "Author",
    "CommitRecord",
    "CommitSummary",
    "FileHistory",
    "ContentMatch",
    "EntryKind",
    "FileEntry",
    "ByteRange",
    "DownloadPayload",
    "UploadInit",
    "UploadSession",
]
