"""Outbound facts published by the device.

Every fact is a write-once value: it is constructed, encoded by the
publisher, sent and discarded. SmartREST facts render to one or more rows
(``rows()``); :class:`CustomJsonFragment` renders to a JSON document on its
own topic.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .. import constants

Row = Tuple[str, ...]


def format_timestamp(value: Optional[datetime] = None) -> str:
    """Render ``value`` (default: now) as an ISO-8601 UTC timestamp."""

    moment = value or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _trim(values: Sequence[Any], *, keep: int) -> Row:
    """Drop trailing empty optional fields beyond the first ``keep`` values."""

    items = [_text(value) for value in values]
    while len(items) > keep and items[-1] == "":
        items.pop()
    return tuple(items)


class OperationOutcome(str, Enum):
    EXECUTING = "EXECUTING"
    SUCCESSFUL = "SUCCESSFUL"
    FAILED = "FAILED"

    @property
    def template_id(self) -> str:
        return _STATUS_TEMPLATES[self]


_STATUS_TEMPLATES: Dict[OperationOutcome, str] = {
    OperationOutcome.EXECUTING: "501",
    OperationOutcome.FAILED: "502",
    OperationOutcome.SUCCESSFUL: "503",
}


class AlarmSeverity(str, Enum):
    CRITICAL = "CRITICAL"
    MAJOR = "MAJOR"
    MINOR = "MINOR"
    WARNING = "WARNING"

    @property
    def template_id(self) -> str:
        return _ALARM_TEMPLATES[self]


_ALARM_TEMPLATES: Dict[AlarmSeverity, str] = {
    AlarmSeverity.CRITICAL: "301",
    AlarmSeverity.MAJOR: "302",
    AlarmSeverity.MINOR: "303",
    AlarmSeverity.WARNING: "304",
}


class OutboundFact:
    """Base class for facts published by the device."""

    topic: str = constants.SMARTREST_UPSTREAM_TOPIC

    def rows(self) -> List[Row]:
        raise NotImplementedError


@dataclass(frozen=True, slots=True)
class SoftwareEntry:
    name: str
    version: str = ""
    url: str = ""


@dataclass(frozen=True)
class InventoryUpdate(OutboundFact):
    """Inventory template row (100, 110, 112, 115-118, 122)."""

    template_id: str
    values: Tuple[str, ...] = ()

    def rows(self) -> List[Row]:
        return [(self.template_id, *self.values)]

    @classmethod
    def device_creation(cls, name: str, device_type: str = "") -> "InventoryUpdate":
        return cls("100", _trim((name, device_type), keep=1))

    @classmethod
    def hardware(
        cls, serial: str, model: str = "", revision: str = ""
    ) -> "InventoryUpdate":
        return cls("110", _trim((serial, model, revision), keep=1))

    @classmethod
    def position(
        cls,
        latitude: float | str,
        longitude: float | str,
        altitude: float | str | None = None,
        accuracy: float | str | None = None,
    ) -> "InventoryUpdate":
        return cls("112", _trim((latitude, longitude, altitude, accuracy), keep=2))

    @classmethod
    def firmware(cls, name: str, version: str, url: str = "") -> "InventoryUpdate":
        return cls("115", _trim((name, version, url), keep=2))

    @classmethod
    def software_list(cls, packages: Sequence[SoftwareEntry]) -> "InventoryUpdate":
        values: List[str] = []
        for package in packages:
            values.extend((package.name, package.version, package.url))
        return cls("116", tuple(values))

    @classmethod
    def required_interval(cls, minutes: int) -> "InventoryUpdate":
        return cls("117", (str(int(minutes)),))

    @classmethod
    def supported_logs(cls, log_types: Sequence[str]) -> "InventoryUpdate":
        return cls("118", tuple(log_types))

    @classmethod
    def agent(
        cls, name: str, version: str, url: str = "", maintainer: str = ""
    ) -> "InventoryUpdate":
        return cls("122", _trim((name, version, url, maintainer), keep=2))


@dataclass(frozen=True)
class CapabilityDeclaration(OutboundFact):
    """Supported operations (114)."""

    capabilities: Tuple[str, ...]

    def rows(self) -> List[Row]:
        return [("114", *self.capabilities)]


@dataclass(frozen=True)
class Measurement(OutboundFact):
    """Single measurement (200)."""

    fragment: str
    series: str
    value: float | int | str
    unit: str = ""
    time: Optional[datetime] = None

    def rows(self) -> List[Row]:
        return [
            ("200",)
            + _trim(
                (self.fragment, self.series, self.value, self.unit, self.time), keep=3
            )
        ]


@dataclass(frozen=True, slots=True)
class MeasurementValue:
    fragment: str
    series: str
    value: float | int | str
    unit: str = ""


@dataclass(frozen=True)
class MeasurementBatch(OutboundFact):
    """Several series in one measurement of a given type (201)."""

    type: str
    values: Tuple[MeasurementValue, ...]
    time: Optional[datetime] = None

    def rows(self) -> List[Row]:
        row: List[str] = ["201", self.type, _text(self.time)]
        for item in self.values:
            row.extend(
                (item.fragment, item.series, _text(item.value), item.unit)
            )
        return [tuple(row)]


@dataclass(frozen=True)
class Event(OutboundFact):
    """Event (400)."""

    type: str
    text: str
    time: Optional[datetime] = None

    def rows(self) -> List[Row]:
        return [("400",) + _trim((self.type, self.text, self.time), keep=2)]


@dataclass(frozen=True)
class Alarm(OutboundFact):
    """Alarm (301-304 depending on severity)."""

    type: str
    text: str = ""
    severity: AlarmSeverity = AlarmSeverity.CRITICAL
    time: Optional[datetime] = None

    def rows(self) -> List[Row]:
        return [
            (self.severity.template_id,)
            + _trim((self.type, self.text, self.time), keep=1)
        ]


@dataclass(frozen=True)
class OperationStatus(OutboundFact):
    """Operation status transition (501 executing, 502 failed, 503 successful)."""

    capability: str
    outcome: OperationOutcome
    reason: str = ""
    parameters: Tuple[str, ...] = ()

    def rows(self) -> List[Row]:
        if self.outcome is OperationOutcome.FAILED:
            return [("502", self.capability, self.reason)]
        if self.outcome is OperationOutcome.SUCCESSFUL:
            return [("503", self.capability, *self.parameters)]
        return [("501", self.capability)]

    @classmethod
    def executing(cls, capability: str) -> "OperationStatus":
        return cls(capability, OperationOutcome.EXECUTING)

    @classmethod
    def successful(cls, capability: str, *parameters: str) -> "OperationStatus":
        return cls(capability, OperationOutcome.SUCCESSFUL, parameters=parameters)

    @classmethod
    def failed(cls, capability: str, reason: str) -> "OperationStatus":
        """Failure status; line breaks in ``reason`` are folded into spaces."""
        lines = [part.strip() for part in reason.splitlines() if part.strip()]
        return cls(capability, OperationOutcome.FAILED, reason=" ".join(lines))


@dataclass(frozen=True)
class RowBatch(OutboundFact):
    """Several SmartREST facts sent as one newline separated message."""

    facts: Tuple[OutboundFact, ...]

    def rows(self) -> List[Row]:
        rows: List[Row] = []
        for fact in self.facts:
            if isinstance(fact, CustomJsonFragment):
                raise TypeError("JSON fragments cannot be batched with SmartREST rows")
            rows.extend(fact.rows())
        return rows


@dataclass(frozen=True)
class CustomJsonFragment(OutboundFact):
    """JSON document published on a JSON-via-MQTT topic."""

    topic: str
    document: Mapping[str, Any] = field(default_factory=dict)

    def rows(self) -> List[Row]:
        raise TypeError("JSON fragments are not rendered as SmartREST rows")

    def to_json(self) -> str:
        return json.dumps(self.document, separators=(",", ":"), default=_text)

    @classmethod
    def inventory_update(
        cls, serial: str, document: Mapping[str, Any]
    ) -> "CustomJsonFragment":
        return cls(f"{constants.INVENTORY_UPDATE_TOPIC_PREFIX}/{serial}", document)

    @classmethod
    def event(
        cls,
        event_type: str,
        text: str,
        *,
        time: Optional[datetime] = None,
        **fragments: Any,
    ) -> "CustomJsonFragment":
        document: Dict[str, Any] = {
            "time": format_timestamp(time),
            "text": text,
            "type": event_type,
        }
        document.update(fragments)
        return cls(constants.EVENT_CREATE_TOPIC, document)
