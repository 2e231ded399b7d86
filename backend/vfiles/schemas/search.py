from enum import Enum

from pydantic import BaseModel

from vfiles.schemas.files import FileEntryRead


class SearchMode(str, Enum):
    """What a search query is matched against."""
    NAME = "name"
    CONTENT = "content"


class SearchResults(BaseModel):
    query: str
    mode: SearchMode
    path: str
    results: list[FileEntryRead]
