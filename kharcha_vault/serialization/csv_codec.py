"""
CSV Expense Codec

The stored dataset and the plain export share one text format:

    # Pak-Kharcha Expense Data Export
    # Version: 2.0
    # User: alice
    # Export Date: 2024-01-31T09:15:00+00:00
    # Total Expenses: 2
    #
    id,amount,category,description,date
    e1,500,Food & Groceries,"Lunch, with friends",2024-01-01
    e2,1200.50,Utilities,Electricity bill,2024-01-05

Comment lines are informational only. A field containing a comma, a quote
or a line break is wrapped in quotes with embedded quotes doubled, exactly
what ``csv.reader`` undoes on the way back in.

DESIGN DECISION: Decoding is tolerant. A row that fails validation is
skipped and reported, the rest of the file still loads. Only a missing
column header on an import is fatal (``FormatError``).
"""

import csv
import io
from collections.abc import Iterable, Iterator
from datetime import datetime
from typing import Callable, Optional

from pydantic import BaseModel, Field

from kharcha_vault.models.expense import EXPENSE_FIELDS, Expense, new_expense_id
from kharcha_vault.models.results import RecordValidation, ValidationIssue
from kharcha_vault.serialization.errors import FormatError
from kharcha_vault.validation import ExpenseValidator


CSV_FORMAT_VERSION = "2.0"
EXPORT_TITLE = "Pak-Kharcha Expense Data Export"
COLUMN_HEADER = ",".join(EXPENSE_FIELDS)
DELIMITER = ","
QUOTE = '"'
COMMENT = "#"

_NEEDS_QUOTING = (DELIMITER, QUOTE, "\n", "\r")


def escape_field(value: str) -> str:
    """
    Quote ``value`` if it contains the delimiter, a quote or a line break,
    or if it would make its line read as a comment.
    """
    if any(marker in value for marker in _NEEDS_QUOTING) or value.lstrip().startswith(COMMENT):
        return QUOTE + value.replace(QUOTE, QUOTE * 2) + QUOTE
    return value


def encode_row(expense: Expense) -> str:
    return DELIMITER.join(
        escape_field(field)
        for field in (
            expense.id,
            format(expense.amount, "f"),
            expense.category,
            expense.description,
            expense.date.isoformat(),
        )
    )


def split_lines(text: str) -> list[str]:
    """Split on \\n, \\r and \\r\\n only, keeping line endings for csv.reader."""
    return list(io.StringIO(text, newline=""))


def is_column_header(line: str) -> bool:
    """Signature match for the column header line."""
    lowered = line.strip().lower()
    if not lowered or lowered.startswith(COMMENT):
        return False
    return "id" in lowered and "amount" in lowered and "category" in lowered


class DecodedRow(BaseModel):
    """One data row after tokenizing and validation."""

    line_number: int
    validation: RecordValidation

    @property
    def error(self) -> Optional[str]:
        if self.validation.is_valid:
            return None
        return f"Row {self.line_number}: {self.validation.summary()}"


class DecodeResult(BaseModel):
    """Valid records and the errors of the rows that were skipped."""

    records: list[Expense] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    rows_seen: int = 0
    header_found: bool = False

    @property
    def skipped_count(self) -> int:
        return self.rows_seen - len(self.records)


class _RowFeed:
    """
    Line iterator for ``csv.reader``.

    Skips blank and comment lines, but only between rows: inside a quoted
    field they are part of the value. Remembers the line number each row
    started on for error messages.
    """

    def __init__(self, lines: Iterable[str], first_line_number: int):
        self._lines = iter(lines)
        self._line_number = first_line_number - 1
        self._in_quotes = False
        self.row_start = first_line_number

    def __iter__(self) -> "_RowFeed":
        return self

    def __next__(self) -> str:
        while True:
            line = next(self._lines)
            self._line_number += 1
            if not self._in_quotes:
                stripped = line.strip()
                if not stripped or stripped.startswith(COMMENT):
                    continue
                self.row_start = self._line_number
            if line.count(QUOTE) % 2:
                self._in_quotes = not self._in_quotes
            return line


class ExpenseCsvCodec:
    """
    Encodes datasets to the CSV text format and decodes them back.

    Every decoded row is passed through the shared ``ExpenseValidator``.
    """

    def __init__(
        self,
        validator: ExpenseValidator,
        id_factory: Callable[[], str] = new_expense_id,
    ):
        self._validator = validator
        self._id_factory = id_factory

    def header_lines(self, owner: str, record_count: int, exported_at: datetime) -> list[str]:
        return [
            f"{COMMENT} {EXPORT_TITLE}",
            f"{COMMENT} Version: {CSV_FORMAT_VERSION}",
            f"{COMMENT} User: {owner}",
            f"{COMMENT} Export Date: {exported_at.isoformat()}",
            f"{COMMENT} Total Expenses: {record_count}",
            COMMENT,
        ]

    def encode(self, owner: str, records: list[Expense], exported_at: datetime) -> str:
        """
        Encode ``records`` with the informational header.

        Args:
            owner: Owner named in the header
            records: Dataset in order
            exported_at: Timestamp written to the header

        Returns:
            The complete file text, newline terminated
        """
        lines = self.header_lines(owner, len(records), exported_at)
        lines.append(COLUMN_HEADER)
        lines.extend(encode_row(expense) for expense in records)
        return "\n".join(lines) + "\n"

    def _column_order(self, header_line: str) -> list[str]:
        names = [name.strip().lower() for name in next(csv.reader([header_line]))]
        if sorted(names) == sorted(EXPENSE_FIELDS):
            return names
        return list(EXPENSE_FIELDS)

    def _to_candidate(self, fields: list[str], columns: list[str]) -> dict[str, str]:
        candidate = dict(zip(columns, (field.strip() for field in fields)))
        if not candidate.get("id"):
            # Rows typed in by hand often have no id; give them one
            candidate["id"] = self._id_factory()
        return candidate

    def iter_rows(self, text: str, require_header: bool = False) -> Iterator[DecodedRow]:
        """
        Tokenize and validate each data row of ``text``.

        Raises:
            FormatError: If ``require_header`` is set and no column header exists
        """
        lines = split_lines(text)
        header_index = next(
            (index for index, line in enumerate(lines) if is_column_header(line)),
            None,
        )

        if header_index is None:
            if require_header:
                raise FormatError("Invalid CSV format: Header row not found")
            columns = list(EXPENSE_FIELDS)
            data_start = 0
        else:
            columns = self._column_order(lines[header_index])
            data_start = header_index + 1

        feed = _RowFeed(lines[data_start:], first_line_number=data_start + 1)
        reader = csv.reader(feed, delimiter=DELIMITER, quotechar=QUOTE)

        while True:
            try:
                fields = next(reader)
            except StopIteration:
                return
            except csv.Error as e:
                yield DecodedRow(
                    line_number=feed.row_start,
                    validation=RecordValidation(issues=[ValidationIssue(
                        field="row",
                        issue_type="parse_error",
                        message=f"Parsing error - {e}",
                    )]),
                )
                return

            if len(fields) != len(columns):
                yield DecodedRow(
                    line_number=feed.row_start,
                    validation=RecordValidation(issues=[ValidationIssue(
                        field="row",
                        issue_type="field_count",
                        message=f"Expected {len(columns)} fields, got {len(fields)}",
                    )]),
                )
                continue

            yield DecodedRow(
                line_number=feed.row_start,
                validation=self._validator.validate(self._to_candidate(fields, columns)),
            )

    def decode(self, text: str, require_header: bool = False) -> DecodeResult:
        """
        Decode ``text`` into valid records plus per-row errors.

        Invalid rows are skipped, never fatal.
        """
        result = DecodeResult(
            header_found=any(is_column_header(line) for line in split_lines(text)),
        )
        for row in self.iter_rows(text, require_header=require_header):
            result.rows_seen += 1
            if row.validation.is_valid:
                result.records.append(row.validation.expense)
            else:
                result.errors.append(row.error)
        return result
