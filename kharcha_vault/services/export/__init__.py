"""Export sink package."""

from kharcha_vault.services.export.sink import (
    CSV_MEDIA_TYPE,
    JSON_MEDIA_TYPE,
    DirectoryExportSink,
    ExportSink,
    InMemoryExportSink,
)

__all__ = [
    "CSV_MEDIA_TYPE",
    "JSON_MEDIA_TYPE",
    "DirectoryExportSink",
    "ExportSink",
    "InMemoryExportSink",
]
