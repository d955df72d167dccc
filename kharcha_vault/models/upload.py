"""Uploaded file handles passed in by the UI layer."""

from pathlib import Path
from typing import IO, Union

from pydantic import BaseModel, Field


class UploadedFile(BaseModel):
    """A file chosen by the user, already read into memory."""

    name: str = Field(..., min_length=1)
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def extension(self) -> str:
        return Path(self.name).suffix.lower()

    def text(self) -> str:
        """Decode as UTF-8, dropping a byte-order mark if present."""
        return self.content.decode("utf-8-sig")


FileSource = Union[UploadedFile, Path, str, IO[bytes], IO[str]]


def read_upload(source: FileSource) -> UploadedFile:
    """
    Normalize the accepted file inputs to an UploadedFile.

    Accepts an UploadedFile, a filesystem path, or an open file object
    (binary or text) with a ``name`` attribute.
    """
    if isinstance(source, UploadedFile):
        return source

    if isinstance(source, (str, Path)):
        path = Path(source)
        return UploadedFile(name=path.name, content=path.read_bytes())

    raw = source.read()
    if isinstance(raw, str):
        raw = raw.encode("utf-8")
    name = Path(str(getattr(source, "name", "upload"))).name
    return UploadedFile(name=name, content=raw)
