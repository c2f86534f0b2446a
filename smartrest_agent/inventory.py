"""Device identity and startup inventory facts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .config import DeviceConfig
from .smartrest.facts import (
    CapabilityDeclaration,
    CustomJsonFragment,
    InventoryUpdate,
    OutboundFact,
    SoftwareEntry,
)


@dataclass(frozen=True)
class DeviceInventory:
    """Read-only description of the device reported at startup."""

    name: str
    type: str
    serial: str
    hardware_model: str = ""
    hardware_revision: str = ""
    firmware: Tuple[str, str, str] = ("", "", "")
    software: Tuple[SoftwareEntry, ...] = ()
    position: Optional[Tuple[float, float]] = None
    log_types: Tuple[str, ...] = ()
    capabilities: Tuple[str, ...] = ()
    agent: Tuple[str, str, str, str] = ("", "", "", "")
    required_interval_minutes: int = 0
    custom_fragment: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_config(cls, device: DeviceConfig) -> "DeviceInventory":
        position = None
        if device.latitude is not None and device.longitude is not None:
            position = (device.latitude, device.longitude)
        return cls(
            name=device.name,
            type=device.type,
            serial=device.serial,
            hardware_model=device.hardware_model,
            hardware_revision=device.hardware_revision,
            firmware=(
                device.firmware_name,
                device.firmware_version,
                device.firmware_url,
            ),
            software=tuple(SoftwareEntry(*entry) for entry in device.software),
            position=position,
            log_types=tuple(device.log_types),
            capabilities=tuple(device.capabilities),
            agent=(
                device.agent_name,
                device.agent_version,
                device.agent_url,
                device.agent_maintainer,
            ),
            required_interval_minutes=device.required_interval_minutes,
            custom_fragment=dict(device.custom_fragment),
        )

    def registration(self) -> InventoryUpdate:
        """Device creation row; creates the device if it does not exist yet."""
        return InventoryUpdate.device_creation(self.name, self.type)

    def startup_facts(self) -> List[OutboundFact]:
        """Facts published once after registration, in publishing order."""

        facts: List[OutboundFact] = []
        if self.capabilities:
            facts.append(CapabilityDeclaration(self.capabilities))
        if self.firmware[0]:
            facts.append(InventoryUpdate.firmware(*self.firmware))
        if self.software:
            facts.append(InventoryUpdate.software_list(self.software))
        facts.append(
            InventoryUpdate.hardware(
                self.serial, self.hardware_model, self.hardware_revision
            )
        )
        if self.position is not None:
            facts.append(InventoryUpdate.position(*self.position))
        if self.log_types:
            facts.append(InventoryUpdate.supported_logs(self.log_types))
        if self.agent[0]:
            facts.append(InventoryUpdate.agent(*self.agent))
        if self.required_interval_minutes > 0:
            facts.append(
                InventoryUpdate.required_interval(self.required_interval_minutes)
            )
        if self.custom_fragment:
            facts.append(
                CustomJsonFragment.inventory_update(self.serial, self.custom_fragment)
            )
        return facts
