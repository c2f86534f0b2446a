"""Static SmartREST template registry.

Maps each numeric template identifier to a descriptor of its shape. The
registry covers the subset of the static template catalog that the agent
publishes (inventory, telemetry, operation status) and the operation
requests it accepts from the platform.

Templates with a repeating tail (for example ``116`` software lists or
``528`` software update requests) describe a fixed prefix followed by groups
of ``group_width`` fields::

    528,serial,name,version,url,action,name,version,url,action
    \\______/ \\_______________________/ \\_______________________/
     prefix             group                     group
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Sequence, Tuple

from .errors import MalformedRowError


class Direction(str, Enum):
    UPSTREAM = "upstream"
    DOWNSTREAM = "downstream"


@dataclass(frozen=True, slots=True)
class TemplateDescriptor:
    """Immutable description of a template's field layout.

    Attributes:
        identifier: Template identifier (``fields[0]``).
        name: Symbolic name used in logs.
        direction: Whether the device publishes or receives the template.
        min_fields: Minimum field count, identifier included.
        roles: Semantic names of the fields after the identifier. For
            repeating templates these are the prefix roles followed by the
            roles of one group.
        group_width: Width of one repeating group, ``0`` for fixed templates.
        prefix_length: Number of fields, identifier included, before the
            first group.
        operation: Operation kind name for operation-request templates.
    """

    identifier: str
    name: str
    direction: Direction
    min_fields: int
    roles: Tuple[str, ...] = ()
    group_width: int = 0
    prefix_length: int = 1
    operation: Optional[str] = None

    @property
    def variable_tail(self) -> bool:
        return self.group_width > 0

    @property
    def max_fields(self) -> Optional[int]:
        if self.variable_tail:
            return None
        return 1 + len(self.roles)

    @property
    def group_roles(self) -> Tuple[str, ...]:
        if not self.variable_tail:
            return ()
        return self.roles[self.prefix_length - 1 :]

    @property
    def is_operation_request(self) -> bool:
        return self.operation is not None


def _fixed(
    identifier: str,
    name: str,
    direction: Direction,
    roles: Sequence[str],
    *,
    required: int,
    operation: Optional[str] = None,
) -> TemplateDescriptor:
    return TemplateDescriptor(
        identifier=identifier,
        name=name,
        direction=direction,
        min_fields=1 + required,
        roles=tuple(roles),
        operation=operation,
    )


def _repeating(
    identifier: str,
    name: str,
    direction: Direction,
    prefix_roles: Sequence[str],
    group_roles: Sequence[str],
    *,
    min_groups: int,
    operation: Optional[str] = None,
) -> TemplateDescriptor:
    prefix_length = 1 + len(prefix_roles)
    width = len(group_roles)
    return TemplateDescriptor(
        identifier=identifier,
        name=name,
        direction=direction,
        min_fields=prefix_length + min_groups * width,
        roles=tuple(prefix_roles) + tuple(group_roles),
        group_width=width,
        prefix_length=prefix_length,
        operation=operation,
    )


_UP = Direction.UPSTREAM
_DOWN = Direction.DOWNSTREAM

_TEMPLATES: Tuple[TemplateDescriptor, ...] = (
    # Inventory
    _fixed("100", "device_creation", _UP, ("device_name", "device_type"), required=0),
    _fixed("110", "hardware", _UP, ("serial", "model", "revision"), required=0),
    _fixed(
        "112",
        "position",
        _UP,
        ("latitude", "longitude", "altitude", "accuracy"),
        required=2,
    ),
    _repeating("114", "supported_operations", _UP, (), ("operation",), min_groups=1),
    _fixed("115", "firmware", _UP, ("name", "version", "url"), required=2),
    _repeating(
        "116", "software_list", _UP, (), ("name", "version", "url"), min_groups=0
    ),
    _fixed("117", "required_interval", _UP, ("interval",), required=1),
    _repeating("118", "supported_logs", _UP, (), ("log_type",), min_groups=0),
    _fixed(
        "122", "agent", _UP, ("name", "version", "url", "maintainer"), required=2
    ),
    # Measurements
    _fixed(
        "200",
        "measurement",
        _UP,
        ("fragment", "series", "value", "unit", "time"),
        required=3,
    ),
    _repeating(
        "201",
        "measurement_batch",
        _UP,
        ("type", "time"),
        ("fragment", "series", "value", "unit"),
        min_groups=1,
    ),
    # Alarms and events
    _fixed("301", "critical_alarm", _UP, ("type", "text", "time"), required=1),
    _fixed("302", "major_alarm", _UP, ("type", "text", "time"), required=1),
    _fixed("303", "minor_alarm", _UP, ("type", "text", "time"), required=1),
    _fixed("304", "warning_alarm", _UP, ("type", "text", "time"), required=1),
    _fixed("400", "event", _UP, ("type", "text", "time"), required=2),
    # Operation status
    _fixed("501", "operation_executing", _UP, ("fragment",), required=1),
    _fixed("502", "operation_failed", _UP, ("fragment", "reason"), required=1),
    _repeating(
        "503", "operation_successful", _UP, ("fragment",), ("parameter",), min_groups=0
    ),
    # Operation requests
    _fixed("510", "restart", _DOWN, ("serial",), required=1, operation="restart"),
    _fixed(
        "511", "command", _DOWN, ("serial", "command"), required=2, operation="shell"
    ),
    _fixed(
        "515",
        "firmware_update",
        _DOWN,
        ("serial", "name", "version", "url"),
        required=4,
        operation="firmware_update",
    ),
    _fixed(
        "522",
        "logfile_request",
        _DOWN,
        ("serial", "log_file", "date_from", "date_to", "search_text", "max_lines"),
        required=6,
        operation="logfile_request",
    ),
    _repeating(
        "528",
        "software_update",
        _DOWN,
        ("serial",),
        ("name", "version", "url", "action"),
        min_groups=1,
        operation="software_update",
    ),
    _fixed(
        "530",
        "remote_access_connect",
        _DOWN,
        ("serial", "host", "port", "connection_key"),
        required=4,
        operation="remote_access_connect",
    ),
)

REGISTRY: Mapping[str, TemplateDescriptor] = MappingProxyType(
    {descriptor.identifier: descriptor for descriptor in _TEMPLATES}
)


def describe(identifier: str) -> Optional[TemplateDescriptor]:
    """Return the descriptor for ``identifier`` or ``None`` when unknown."""

    return REGISTRY.get(identifier)


def group_count(descriptor: TemplateDescriptor, total_fields: int) -> int:
    """Number of repeating groups in a row of ``total_fields`` fields."""

    if not descriptor.variable_tail:
        return 0

    if total_fields < descriptor.min_fields:
        raise MalformedRowError(
            f"Template {descriptor.identifier} requires at least "
            f"{descriptor.min_fields} fields, got {total_fields}",
            template_id=descriptor.identifier,
        )

    groups, remainder = divmod(
        total_fields - descriptor.prefix_length, descriptor.group_width
    )
    if remainder:
        raise MalformedRowError(
            f"Template {descriptor.identifier} expects groups of "
            f"{descriptor.group_width} fields after a prefix of "
            f"{descriptor.prefix_length}, got {total_fields} fields",
            template_id=descriptor.identifier,
        )
    return groups


def validate(fields: Sequence[str]) -> TemplateDescriptor:
    """Check ``fields`` against the registry and return its descriptor.

    Raises:
        MalformedRowError: if the template is unknown or the field count does
            not match its descriptor.
    """

    if not fields:
        raise MalformedRowError("Row must contain at least one field")

    identifier = fields[0]
    descriptor = describe(identifier)
    if descriptor is None:
        raise MalformedRowError(
            f"Unknown template {identifier!r}", row=list(fields), template_id=identifier
        )

    total = len(fields)
    if total < descriptor.min_fields:
        raise MalformedRowError(
            f"Template {identifier} requires at least {descriptor.min_fields} "
            f"fields, got {total}",
            row=list(fields),
            template_id=identifier,
        )

    if descriptor.variable_tail:
        group_count(descriptor, total)
    elif descriptor.max_fields is not None and total > descriptor.max_fields:
        raise MalformedRowError(
            f"Template {identifier} accepts at most {descriptor.max_fields} "
            f"fields, got {total}",
            row=list(fields),
            template_id=identifier,
        )
    return descriptor
