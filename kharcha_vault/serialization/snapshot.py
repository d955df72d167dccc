"""
Snapshot Document Codec

Snapshots are JSON documents. Reading one is untrusted input handling:

1. The text must parse as a JSON object
2. The ``format`` tag must equal ``SNAPSHOT_FORMAT_TAG`` - checked before
   any other field is looked at
3. ``metadata`` and ``records`` must both be present and well formed
4. Individual records are NOT validated here; the restore flow validates
   each one so a single bad record does not sink the whole file

Anything failing steps 1-3 raises ``FormatError``.
"""

import json
from collections.abc import Mapping
from typing import Any, Union

from pydantic import ValidationError

from kharcha_vault.integrity import compute_checksum
from kharcha_vault.models.backup import SNAPSHOT_FORMAT_TAG, BackupSnapshot
from kharcha_vault.serialization.errors import FormatError


def records_payload(records: list[Any]) -> str:
    """
    Canonical text of a record array, the input of the snapshot checksum.

    Compact separators and unescaped unicode, the same text a browser's
    ``JSON.stringify`` produces for the array.
    """
    return json.dumps(records, separators=(",", ":"), ensure_ascii=False)


def snapshot_checksum(records: list[Any]) -> str:
    return compute_checksum(records_payload(records))


def encode_snapshot(snapshot: BackupSnapshot) -> str:
    """Pretty-printed JSON document for storage and downloads."""
    return json.dumps(snapshot.to_document(), indent=2, ensure_ascii=False)


def parse_snapshot(source: Union[str, bytes, Mapping[str, Any]]) -> BackupSnapshot:
    """
    Parse and shape-check a snapshot document.

    Args:
        source: JSON text, UTF-8 bytes, or an already decoded mapping

    Returns:
        The snapshot with its records still as raw documents

    Raises:
        FormatError: If the document is not a recognizable backup
    """
    if isinstance(source, bytes):
        try:
            source = source.decode("utf-8-sig")
        except UnicodeDecodeError:
            raise FormatError("Backup file is not valid UTF-8 text")

    if isinstance(source, str):
        try:
            document = json.loads(source)
        except json.JSONDecodeError as e:
            raise FormatError(f"Backup file is not valid JSON: {e.msg}")
    else:
        document = source

    if not isinstance(document, Mapping):
        raise FormatError("Invalid backup file format")

    # The tag is checked before anything else in the document is trusted
    if document.get("format") != SNAPSHOT_FORMAT_TAG:
        raise FormatError("Invalid backup file format")

    records = document.get("records", document.get("expenses"))
    if document.get("metadata") is None or records is None:
        raise FormatError("Corrupted backup file - missing required sections")
    if not isinstance(records, list):
        raise FormatError("Corrupted backup file - records must be a list")

    try:
        return BackupSnapshot.model_validate(
            {
                "metadata": document["metadata"],
                "records": records,
                "format": document["format"],
            }
        )
    except ValidationError as e:
        raise FormatError(
            f"Corrupted backup file - invalid metadata ({e.error_count()} problems)"
        )
