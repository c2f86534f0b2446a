"""Row codec for comma-delimited SmartREST payloads.

A SmartREST message carries one or more rows separated by line terminators.
Each row is a CSV record whose first field is the numeric template
identifier. Fields containing the delimiter or the quote character are
wrapped in double quotes with inner quotes doubled; line terminators are not
allowed inside a field.
"""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from .errors import MalformedRowError

DELIMITER = ","
QUOTE_CHAR = '"'
ROW_SEPARATOR = "\n"


@dataclass(frozen=True, slots=True)
class TemplateRow:
    """A decoded row; ``fields[0]`` is the template identifier."""

    fields: Tuple[str, ...]

    @classmethod
    def from_fields(cls, fields: Iterable[str]) -> "TemplateRow":
        values = tuple(fields)
        if not values:
            raise MalformedRowError("Row must contain at least one field")
        return cls(values)

    @property
    def template_id(self) -> str:
        return self.fields[0]

    def __len__(self) -> int:
        return len(self.fields)


@dataclass(frozen=True, slots=True)
class DecodedLine:
    """Outcome of decoding one line of a multi-row payload."""

    line_number: int
    raw: str
    row: Optional[TemplateRow] = None
    error: Optional[MalformedRowError] = None

    @property
    def ok(self) -> bool:
        return self.row is not None


def encode_row(fields: Sequence[str]) -> str:
    """Encode ``fields`` into a single escaped row (no trailing terminator)."""

    if not fields:
        raise MalformedRowError("Cannot encode an empty row")

    values: List[str] = []
    for value in fields:
        text = "" if value is None else str(value)
        if "\n" in text or "\r" in text:
            raise MalformedRowError(
                "Field contains a line terminator", row=list(fields)
            )
        values.append(text)

    buffer = io.StringIO()
    writer = csv.writer(
        buffer,
        delimiter=DELIMITER,
        quotechar=QUOTE_CHAR,
        quoting=csv.QUOTE_MINIMAL,
        lineterminator="",
    )
    writer.writerow(values)
    return buffer.getvalue()


def encode_rows(rows: Iterable[Sequence[str]]) -> str:
    """Encode several rows into one newline separated payload."""

    encoded = [encode_row(row) for row in rows]
    if not encoded:
        raise MalformedRowError("Cannot encode an empty batch")
    return ROW_SEPARATOR.join(encoded)


def decode_row(raw: str) -> List[str]:
    """Decode one row into its fields.

    Raises:
        MalformedRowError: if the row is empty, spans several lines or its
            quoting is unbalanced.
    """

    if raw is None or not raw.strip():
        raise MalformedRowError("Row is empty", row=raw)

    line = raw.rstrip("\r\n")
    if "\n" in line or "\r" in line:
        raise MalformedRowError("Row contains a line terminator", row=raw)

    reader = csv.reader(
        [line],
        delimiter=DELIMITER,
        quotechar=QUOTE_CHAR,
        doublequote=True,
        strict=True,
    )
    try:
        records = list(reader)
    except csv.Error as exc:
        raise MalformedRowError(f"Invalid quoting: {exc}", row=raw) from exc

    if len(records) != 1 or not records[0]:
        raise MalformedRowError("Row is empty", row=raw)
    return records[0]


def decode_all(raw: str | bytes) -> List[DecodedLine]:
    """Decode every non-empty line of a payload independently.

    A malformed line is reported through its :class:`DecodedLine` and does
    not prevent the remaining lines from being decoded.
    """

    if isinstance(raw, (bytes, bytearray)):
        text = bytes(raw).decode("utf-8", errors="replace")
    else:
        text = raw

    results: List[DecodedLine] = []
    for index, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            row = TemplateRow.from_fields(decode_row(line))
        except MalformedRowError as exc:
            results.append(DecodedLine(line_number=index, raw=line, error=exc))
        else:
            results.append(DecodedLine(line_number=index, raw=line, row=row))
    return results
