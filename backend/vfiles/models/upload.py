from pydantic import BaseModel


class UploadSession(BaseModel):
    """Descriptor persisted as ``session.json`` in an upload session directory.

    The set of received chunk indices is not stored here; it is the set of
    ``chunk_<i>.part`` files next to the descriptor.
    """
    upload_id: str
    target_path: str
    filename: str
    size: int
    mime: str | None = None
    last_modified: int | None = None
    chunk_size: int
    total_chunks: int
    created_at: float
    updated_at: float

    def matches(self, target_path: str, size: int, chunk_size: int) -> bool:
        return (
            self.target_path == target_path
            and self.size == size
            and self.chunk_size == chunk_size
        )

    def chunk_length(self, index: int) -> int:
        """Exact byte length chunk ``index`` must have; the last one may be short."""
        return max(0, min(self.chunk_size, self.size - index * self.chunk_size))
