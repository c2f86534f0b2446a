"""Operation requests and the table-driven dispatcher.

``dispatch`` turns a decoded downstream row into a typed
:class:`OperationRequest`. It is stateless and never publishes; unknown
templates are not errors and yield an :class:`UnsupportedRequest`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from ..smartrest.codec import TemplateRow
from ..smartrest.errors import MalformedRowError
from ..smartrest.templates import TemplateDescriptor, describe, group_count


class OperationKind(str, Enum):
    RESTART = "restart"
    SHELL = "shell"
    FIRMWARE_UPDATE = "firmware_update"
    LOGFILE_REQUEST = "logfile_request"
    SOFTWARE_UPDATE = "software_update"
    REMOTE_ACCESS_CONNECT = "remote_access_connect"
    UNSUPPORTED = "unsupported"

    @property
    def capability(self) -> Optional[str]:
        """Platform fragment name used in operation status rows."""
        return CAPABILITIES.get(self)


CAPABILITIES: Dict[OperationKind, str] = {
    OperationKind.RESTART: "c8y_Restart",
    OperationKind.SHELL: "c8y_Command",
    OperationKind.FIRMWARE_UPDATE: "c8y_Firmware",
    OperationKind.LOGFILE_REQUEST: "c8y_LogfileRequest",
    OperationKind.SOFTWARE_UPDATE: "c8y_SoftwareUpdate",
    OperationKind.REMOTE_ACCESS_CONNECT: "c8y_RemoteAccessConnect",
}


@dataclass(frozen=True)
class OperationRequest:
    template_id: str
    device_serial: str

    kind = OperationKind.UNSUPPORTED

    @property
    def capability(self) -> Optional[str]:
        return self.kind.capability


@dataclass(frozen=True)
class RestartRequest(OperationRequest):
    kind = OperationKind.RESTART


@dataclass(frozen=True)
class ShellRequest(OperationRequest):
    command: str = ""

    kind = OperationKind.SHELL


@dataclass(frozen=True)
class FirmwareUpdateRequest(OperationRequest):
    name: str = ""
    version: str = ""
    url: str = ""

    kind = OperationKind.FIRMWARE_UPDATE


@dataclass(frozen=True)
class LogfileRequest(OperationRequest):
    log_file: str = ""
    date_from: str = ""
    date_to: str = ""
    search_text: str = ""
    max_lines: int = 0

    kind = OperationKind.LOGFILE_REQUEST


@dataclass(frozen=True, slots=True)
class SoftwarePackage:
    name: str
    version: str
    url: str
    action: str


@dataclass(frozen=True)
class SoftwareUpdateRequest(OperationRequest):
    packages: Tuple[SoftwarePackage, ...] = ()

    kind = OperationKind.SOFTWARE_UPDATE


@dataclass(frozen=True)
class RemoteAccessConnectRequest(OperationRequest):
    host: str = ""
    port: int = 0
    connection_key: str = ""

    kind = OperationKind.REMOTE_ACCESS_CONNECT


@dataclass(frozen=True)
class UnsupportedRequest(OperationRequest):
    fields: Tuple[str, ...] = ()

    kind = OperationKind.UNSUPPORTED


def _parse_int(value: str, *, role: str, template_id: str) -> int:
    try:
        return int(value.strip())
    except ValueError as exc:
        raise MalformedRowError(
            f"Template {template_id} field {role!r} must be an integer, got {value!r}",
            template_id=template_id,
        ) from exc


def _restart(row: TemplateRow, descriptor: TemplateDescriptor) -> OperationRequest:
    return RestartRequest(template_id=row.template_id, device_serial=row.fields[1])


def _shell(row: TemplateRow, descriptor: TemplateDescriptor) -> OperationRequest:
    fields = row.fields
    return ShellRequest(
        template_id=row.template_id, device_serial=fields[1], command=fields[2]
    )


def _firmware_update(
    row: TemplateRow, descriptor: TemplateDescriptor
) -> OperationRequest:
    fields = row.fields
    return FirmwareUpdateRequest(
        template_id=row.template_id,
        device_serial=fields[1],
        name=fields[2],
        version=fields[3],
        url=fields[4],
    )


def _logfile_request(
    row: TemplateRow, descriptor: TemplateDescriptor
) -> OperationRequest:
    fields = row.fields
    return LogfileRequest(
        template_id=row.template_id,
        device_serial=fields[1],
        log_file=fields[2],
        date_from=fields[3],
        date_to=fields[4],
        search_text=fields[5],
        max_lines=_parse_int(
            fields[6], role="max_lines", template_id=row.template_id
        ),
    )


def _software_update(
    row: TemplateRow, descriptor: TemplateDescriptor
) -> OperationRequest:
    fields = row.fields
    count = group_count(descriptor, len(fields))
    start = descriptor.prefix_length
    width = descriptor.group_width
    packages = tuple(
        SoftwarePackage(*fields[start + index * width : start + (index + 1) * width])
        for index in range(count)
    )
    return SoftwareUpdateRequest(
        template_id=row.template_id, device_serial=fields[1], packages=packages
    )


def _remote_access_connect(
    row: TemplateRow, descriptor: TemplateDescriptor
) -> OperationRequest:
    fields = row.fields
    return RemoteAccessConnectRequest(
        template_id=row.template_id,
        device_serial=fields[1],
        host=fields[2],
        port=_parse_int(fields[3], role="port", template_id=row.template_id),
        connection_key=fields[4],
    )


Extractor = Callable[[TemplateRow, TemplateDescriptor], OperationRequest]

EXTRACTORS: Dict[str, Extractor] = {
    "510": _restart,
    "511": _shell,
    "515": _firmware_update,
    "522": _logfile_request,
    "528": _software_update,
    "530": _remote_access_connect,
}


def dispatch(row: TemplateRow) -> OperationRequest:
    """Resolve ``row`` into a typed operation request.

    Raises:
        MalformedRowError: if a recognised operation row has fewer fields
            than its template requires or malformed typed parameters.
    """

    template_id = row.template_id
    descriptor = describe(template_id)
    extractor = EXTRACTORS.get(template_id)
    if descriptor is None or extractor is None or not descriptor.is_operation_request:
        serial = row.fields[1] if len(row.fields) > 1 else ""
        return UnsupportedRequest(
            template_id=template_id, device_serial=serial, fields=row.fields
        )

    if len(row.fields) < descriptor.min_fields:
        raise MalformedRowError(
            f"Template {template_id} ({descriptor.name}) requires at least "
            f"{descriptor.min_fields} fields, got {len(row.fields)}",
            row=list(row.fields),
            template_id=template_id,
        )

    return extractor(row, descriptor)
