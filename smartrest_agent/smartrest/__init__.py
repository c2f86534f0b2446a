"""SmartREST protocol primitives: row codec, template registry and facts."""

from .codec import (
    DecodedLine,
    TemplateRow,
    decode_all,
    decode_row,
    encode_row,
    encode_rows,
)
from .errors import MalformedRowError, TransportError
from .templates import TemplateDescriptor, describe, group_count, validate

__all__ = [
    "DecodedLine",
    "MalformedRowError",
    "TemplateDescriptor",
    "TemplateRow",
    "TransportError",
    "decode_all",
    "decode_row",
    "describe",
    "encode_row",
    "encode_rows",
    "group_count",
    "validate",
]
