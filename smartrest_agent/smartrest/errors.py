"""Error types shared by the SmartREST codec, dispatcher and publisher."""

from __future__ import annotations

from typing import Optional, Sequence


class MalformedRowError(ValueError):
    """Raised when a row violates the SmartREST structure (quoting, arity)."""

    def __init__(
        self,
        message: str,
        *,
        row: Optional[Sequence[str] | str] = None,
        template_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.row = row
        self.template_id = template_id


class TransportError(RuntimeError):
    """Raised when a payload cannot be handed to the transport."""
