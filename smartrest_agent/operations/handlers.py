"""Simulated action handlers.

The agent does not flash firmware, run shell commands or open tunnels; each
handler logs what it was asked to do, waits for a configurable duration and
reports the outcome. Real deployments replace these through the mapping
passed to :class:`~smartrest_agent.operations.lifecycle.OperationController`.
"""

from __future__ import annotations

import logging
from typing import Dict, Sequence

from ..smartrest.facts import InventoryUpdate, SoftwareEntry
from .lifecycle import OperationContext, OperationHandler, OperationResult
from .requests import (
    LogfileRequest,
    OperationKind,
    OperationRequest,
    RemoteAccessConnectRequest,
    ShellRequest,
    SoftwareUpdateRequest,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_SIMULATED_DURATION = 3.0
SOFTWARE_ACTIONS = frozenset({"install", "delete"})


class SimulatedDevice:
    """Tracks the software the simulated device reports as installed."""

    def __init__(
        self,
        *,
        duration: float = DEFAULT_SIMULATED_DURATION,
        software: Sequence[SoftwareEntry] = (),
    ) -> None:
        self.duration = duration
        self._software: Dict[str, SoftwareEntry] = {
            entry.name: entry for entry in software
        }

    @property
    def software(self) -> list[SoftwareEntry]:
        return list(self._software.values())

    async def restart(
        self, request: OperationRequest, context: OperationContext
    ) -> OperationResult:
        LOGGER.info("Simulating restart of %s", request.device_serial)
        await context.sleep(self.duration)
        return OperationResult.success()

    async def shell(
        self, request: OperationRequest, context: OperationContext
    ) -> OperationResult:
        assert isinstance(request, ShellRequest)
        if not request.command.strip():
            return OperationResult.failed("Empty command")
        LOGGER.info("Simulating shell command: %s", request.command)
        await context.sleep(self.duration)
        return OperationResult.success()

    async def firmware_update(
        self, request: OperationRequest, context: OperationContext
    ) -> OperationResult:
        LOGGER.info("Simulating firmware update on %s", request.device_serial)
        await context.sleep(self.duration)
        return OperationResult.success()

    async def logfile_request(
        self, request: OperationRequest, context: OperationContext
    ) -> OperationResult:
        assert isinstance(request, LogfileRequest)
        LOGGER.info(
            "Simulating upload of log %s (%s .. %s, search=%r, max_lines=%d)",
            request.log_file,
            request.date_from,
            request.date_to,
            request.search_text,
            request.max_lines,
        )
        await context.sleep(self.duration)
        return OperationResult.success()

    async def software_update(
        self, request: OperationRequest, context: OperationContext
    ) -> OperationResult:
        assert isinstance(request, SoftwareUpdateRequest)
        for package in request.packages:
            if package.action.lower() not in SOFTWARE_ACTIONS:
                return OperationResult.failed(
                    f"Unsupported software action {package.action!r} for {package.name}"
                )

        await context.sleep(self.duration)

        for package in request.packages:
            if package.action.lower() == "install":
                self._software[package.name] = SoftwareEntry(
                    package.name, package.version, package.url
                )
            else:
                self._software.pop(package.name, None)

        return OperationResult.success(InventoryUpdate.software_list(self.software))

    async def remote_access_connect(
        self, request: OperationRequest, context: OperationContext
    ) -> OperationResult:
        assert isinstance(request, RemoteAccessConnectRequest)
        LOGGER.info(
            "Simulating remote access tunnel to %s:%d", request.host, request.port
        )
        await context.sleep(self.duration)
        return OperationResult.success()

    def handlers(self) -> Dict[OperationKind, OperationHandler]:
        return {
            OperationKind.RESTART: self.restart,
            OperationKind.SHELL: self.shell,
            OperationKind.FIRMWARE_UPDATE: self.firmware_update,
            OperationKind.LOGFILE_REQUEST: self.logfile_request,
            OperationKind.SOFTWARE_UPDATE: self.software_update,
            OperationKind.REMOTE_ACCESS_CONNECT: self.remote_access_connect,
        }


def build_simulated_handlers(
    duration: float = DEFAULT_SIMULATED_DURATION,
    software: Sequence[SoftwareEntry] = (),
) -> Dict[OperationKind, OperationHandler]:
    return SimulatedDevice(duration=duration, software=software).handlers()
