from pydantic import BaseModel, Field

from vfiles.schemas.files import AuthorIn


class UploadInitRequest(BaseModel):
    path: str = ""  # target directory
    filename: str = Field(min_length=1, max_length=255)
    size: int = Field(ge=0)
    last_modified: int | None = None
    mime: str | None = None


class UploadInitRead(BaseModel):
    upload_id: str
    chunk_size: int
    total_chunks: int
    received: list[int]
    resumable: bool

    class Config:
        from_attributes = True


class UploadChunkRead(BaseModel):
    upload_id: str
    index: int
    size: int


class UploadCompleteRequest(BaseModel):
    upload_id: str
    message: str | None = None
    author: AuthorIn | None = None
