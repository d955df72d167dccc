"""
Export Sinks

Exports and backups produce a named file for the user to keep. Handing that
file to the user (a browser download, a save dialog, a mail attachment) is
the UI layer's business; the core only passes the finished bytes to an
``ExportSink``.
"""

from abc import ABC, abstractmethod
from pathlib import Path

import structlog


logger = structlog.get_logger(__name__)

CSV_MEDIA_TYPE = "text/csv;charset=utf-8"
JSON_MEDIA_TYPE = "application/json"


class ExportSink(ABC):
    """Receives finished export files."""

    @abstractmethod
    async def deliver(self, filename: str, content: str, media_type: str) -> None:
        """
        Hand a finished file to the user.

        Args:
            filename: Suggested file name
            content: Full file text
            media_type: MIME type of the content
        """
        pass


class DirectoryExportSink(ExportSink):
    """Writes exported files into a directory."""

    def __init__(self, directory: Path):
        self._directory = Path(directory)

    async def deliver(self, filename: str, content: str, media_type: str) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        target = self._directory / filename
        target.write_bytes(content.encode("utf-8"))
        logger.info("export_written", path=str(target), media_type=media_type)


class InMemoryExportSink(ExportSink):
    """Keeps delivered files in a dict. Used by tests and previews."""

    def __init__(self):
        self.files: dict[str, str] = {}
        self.media_types: dict[str, str] = {}

    async def deliver(self, filename: str, content: str, media_type: str) -> None:
        self.files[filename] = content
        self.media_types[filename] = media_type
