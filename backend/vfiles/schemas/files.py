from pydantic import BaseModel, Field

from vfiles.models import EntryKind


class CommitSummaryRead(BaseModel):
    hash: str
    author: str
    date: str
    message: str

    class Config:
        from_attributes = True


class ContentMatchRead(BaseModel):
    line: int
    text: str

    class Config:
        from_attributes = True


class FileEntryRead(BaseModel):
    name: str
    path: str
    kind: EntryKind
    size: int
    modified_at: str
    last_commit: CommitSummaryRead | None = None
    matches: list[ContentMatchRead] | None = None

    class Config:
        from_attributes = True


class DirectoryListing(BaseModel):
    path: str
    commit: str | None = None
    entries: list[FileEntryRead]


class AuthorIn(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    email: str = Field(min_length=3, max_length=200)


class MoveRequest(BaseModel):
    from_path: str
    to_path: str
    message: str | None = None
    author: AuthorIn | None = None


class DirectoryCreate(BaseModel):
    path: str
    message: str | None = None
    author: AuthorIn | None = None


class CommitResult(BaseModel):
    """Response of every mutating endpoint."""
    commit: str
    path: str
