from pydantic import BaseModel


class CommitRead(BaseModel):
    hash: str
    parent_hashes: list[str]
    author_name: str
    author_email: str
    committed_at: str
    message: str

    class Config:
        from_attributes = True


class FileHistoryRead(BaseModel):
    path: str
    commits: list[CommitRead]
    current_version: str
    total_count: int
