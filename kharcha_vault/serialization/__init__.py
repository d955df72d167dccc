"""Serialization package: CSV dataset text and JSON snapshot documents."""

from kharcha_vault.serialization.errors import FormatError
from kharcha_vault.serialization.csv_codec import (
    COLUMN_HEADER,
    CSV_FORMAT_VERSION,
    DecodedRow,
    DecodeResult,
    ExpenseCsvCodec,
    escape_field,
    is_column_header,
)
from kharcha_vault.serialization.snapshot import (
    encode_snapshot,
    parse_snapshot,
    records_payload,
    snapshot_checksum,
)

__all__ = [
    "FormatError",
    # CSV
    "COLUMN_HEADER",
    "CSV_FORMAT_VERSION",
    "DecodedRow",
    "DecodeResult",
    "ExpenseCsvCodec",
    "escape_field",
    "is_column_header",
    # Snapshots
    "encode_snapshot",
    "parse_snapshot",
    "records_payload",
    "snapshot_checksum",
]
