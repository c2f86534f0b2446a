"""Configuration loader for smartrest-agent."""

from __future__ import annotations

import json
import os
from configparser import ConfigParser
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from . import constants

DEFAULT_CAPABILITIES = [
    "c8y_Firmware",
    "c8y_Restart",
    "c8y_Command",
    "c8y_SoftwareList",
    "c8y_SoftwareUpdate",
    "c8y_LogfileRequest",
    "c8y_RemoteAccessConnect",
    "c8y_DeviceProfile",
]

DEFAULT_LOG_TYPES = ["dpkg", "container", "logread"]

DEFAULT_SOFTWARE = [
    "software1|1.0.1|url1",
    "software2|1.0.2|url2",
    "software3|1.0.3|",
]

DEFAULT_CUSTOM_FRAGMENT = (
    '{"yourCustomFragment": {"a": "abc", "b": 123, "c": [1, 2, 3]}}'
)


@dataclass(slots=True)
class CloudConfig:
    broker_host: str = constants.DEFAULT_BROKER_HOST
    broker_port: int = constants.DEFAULT_BROKER_PORT
    tls: bool = True
    username: Optional[str] = None
    password: Optional[str] = None
    client_id: Optional[str] = None


@dataclass(slots=True)
class DeviceConfig:
    name: str = constants.DEFAULT_DEVICE_NAME
    type: str = constants.DEFAULT_DEVICE_TYPE
    serial: str = constants.DEFAULT_DEVICE_SERIAL
    hardware_model: str = "myHardwareModel"
    hardware_revision: str = "1.2.3"
    firmware_name: str = "firmwareName"
    firmware_version: str = "firmwareVersion"
    firmware_url: str = "firmwareUrl"
    software: List[Tuple[str, str, str]] = field(
        default_factory=lambda: [_parse_software(item) for item in DEFAULT_SOFTWARE]
    )
    latitude: Optional[float] = 50.323423
    longitude: Optional[float] = 6.423423
    log_types: List[str] = field(default_factory=lambda: list(DEFAULT_LOG_TYPES))
    capabilities: List[str] = field(
        default_factory=lambda: list(DEFAULT_CAPABILITIES)
    )
    agent_name: str = "your-device-agent"
    agent_version: str = "0.1"
    agent_url: str = "https://cumulocity.com"
    agent_maintainer: str = ""
    required_interval_minutes: int = 60
    custom_fragment: Dict[str, Any] = field(
        default_factory=lambda: json.loads(DEFAULT_CUSTOM_FRAGMENT)
    )


@dataclass(slots=True)
class TelemetryConfig:
    enabled: bool = True
    interval_seconds: float = 5.0


@dataclass(slots=True)
class OperationsConfig:
    simulated_duration_seconds: float = 3.0
    publish_timeout_seconds: float = 10.0
    terminal_retries: int = 1


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = None
    log_network: bool = False


@dataclass(slots=True)
class ResilienceConfig:
    reconnect_min_seconds: int = 1
    reconnect_max_seconds: int = 30
    startup_settle_seconds: float = 2.0
    health_enabled: bool = False
    health_host: str = "127.0.0.1"
    health_port: int = 0


@dataclass(slots=True)
class AgentConfig:
    cloud: CloudConfig
    device: DeviceConfig
    telemetry: TelemetryConfig
    operations: OperationsConfig
    logging: LoggingConfig
    resilience: ResilienceConfig
    raw: ConfigParser
    path: Path

    @property
    def client_id(self) -> str:
        return self.cloud.client_id or self.device.serial


class ConfigurationError(ValueError):
    """Raised when a configuration value cannot be interpreted."""


def _parse_list(value: str, *, default: Iterable[str]) -> List[str]:
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_software(value: str) -> Tuple[str, str, str]:
    parts = [part.strip() for part in value.split("|")]
    if not parts[0]:
        raise ConfigurationError(f"Software entry without a name: {value!r}")
    parts.extend([""] * (3 - len(parts)))
    return parts[0], parts[1], parts[2]


def _parse_optional_float(value: Optional[str]) -> Optional[float]:
    if value is None or not value.strip():
        return None
    try:
        return float(value)
    except ValueError as exc:
        raise ConfigurationError(f"Expected a number, got {value!r}") from exc


def load_config(path: Optional[Path] = None) -> AgentConfig:
    """Load configuration from disk, applying defaults where necessary."""

    config_path = path or constants.DEFAULT_CONFIG_PATH
    device_defaults = DeviceConfig()
    parser = ConfigParser(interpolation=None)
    parser.read_dict(
        {
            "cloud": {
                "broker_host": constants.DEFAULT_BROKER_HOST,
                "broker_port": str(constants.DEFAULT_BROKER_PORT),
                "tls": "true",
            },
            "device": {
                "name": device_defaults.name,
                "type": device_defaults.type,
                "serial": device_defaults.serial,
                "hardware_model": device_defaults.hardware_model,
                "hardware_revision": device_defaults.hardware_revision,
                "firmware_name": device_defaults.firmware_name,
                "firmware_version": device_defaults.firmware_version,
                "firmware_url": device_defaults.firmware_url,
                "software": ",".join(DEFAULT_SOFTWARE),
                "latitude": str(device_defaults.latitude),
                "longitude": str(device_defaults.longitude),
                "log_types": ",".join(DEFAULT_LOG_TYPES),
                "capabilities": ",".join(DEFAULT_CAPABILITIES),
                "agent_name": device_defaults.agent_name,
                "agent_version": device_defaults.agent_version,
                "agent_url": device_defaults.agent_url,
                "agent_maintainer": device_defaults.agent_maintainer,
                "required_interval_minutes": str(
                    device_defaults.required_interval_minutes
                ),
                "custom_fragment": DEFAULT_CUSTOM_FRAGMENT,
            },
            "telemetry": {
                "enabled": "true",
                "interval_seconds": "5.0",
            },
            "operations": {
                "simulated_duration_seconds": "3.0",
                "publish_timeout_seconds": "10.0",
                "terminal_retries": "1",
            },
            "logging": {
                "level": "INFO",
                "path": "",
                "log_network": "false",
            },
            "resilience": {
                "reconnect_min_seconds": "1",
                "reconnect_max_seconds": "30",
                "startup_settle_seconds": "2.0",
                "health_enabled": "false",
                "health_host": "127.0.0.1",
                "health_port": "0",
            },
        }
    )

    if config_path.exists():
        parser.read(config_path)

    broker_host_value = parser.get("cloud", "broker_host")
    broker_port_value = parser.getint(
        "cloud", "broker_port", fallback=constants.DEFAULT_BROKER_PORT
    )

    if ":" in broker_host_value:
        host_part, port_part = broker_host_value.rsplit(":", 1)
        try:
            parsed_port = int(port_part)
        except ValueError:
            pass
        else:
            broker_host_value = host_part
            broker_port_value = parsed_port
            parser.set("cloud", "broker_host", host_part)
            parser.set("cloud", "broker_port", str(parsed_port))

    cloud = CloudConfig(
        broker_host=broker_host_value,
        broker_port=broker_port_value,
        tls=parser.getboolean("cloud", "tls", fallback=True),
        username=parser.get("cloud", "username", fallback=None)
        or os.environ.get(constants.ENV_USERNAME)
        or None,
        password=parser.get("cloud", "password", fallback=None)
        or os.environ.get(constants.ENV_PASSWORD)
        or None,
        client_id=parser.get("cloud", "client_id", fallback=None) or None,
    )

    custom_fragment_raw = parser.get("device", "custom_fragment", fallback="")
    try:
        custom_fragment = json.loads(custom_fragment_raw) if custom_fragment_raw else {}
    except json.JSONDecodeError as exc:
        raise ConfigurationError(
            f"[device] custom_fragment is not valid JSON: {exc}"
        ) from exc

    device = DeviceConfig(
        name=parser.get("device", "name"),
        type=parser.get("device", "type"),
        serial=parser.get("device", "serial"),
        hardware_model=parser.get("device", "hardware_model"),
        hardware_revision=parser.get("device", "hardware_revision"),
        firmware_name=parser.get("device", "firmware_name"),
        firmware_version=parser.get("device", "firmware_version"),
        firmware_url=parser.get("device", "firmware_url"),
        software=[
            _parse_software(item)
            for item in _parse_list(
                parser.get("device", "software", fallback=""), default=()
            )
        ],
        latitude=_parse_optional_float(parser.get("device", "latitude", fallback="")),
        longitude=_parse_optional_float(
            parser.get("device", "longitude", fallback="")
        ),
        log_types=_parse_list(
            parser.get("device", "log_types", fallback=""), default=()
        ),
        capabilities=_parse_list(
            parser.get("device", "capabilities", fallback=""),
            default=DEFAULT_CAPABILITIES,
        ),
        agent_name=parser.get("device", "agent_name"),
        agent_version=parser.get("device", "agent_version"),
        agent_url=parser.get("device", "agent_url"),
        agent_maintainer=parser.get("device", "agent_maintainer"),
        required_interval_minutes=parser.getint(
            "device", "required_interval_minutes", fallback=60
        ),
        custom_fragment=custom_fragment,
    )

    default_interval = TelemetryConfig().interval_seconds
    try:
        interval_value = parser.getfloat(
            "telemetry", "interval_seconds", fallback=default_interval
        )
    except ValueError:
        interval_value = default_interval

    telemetry = TelemetryConfig(
        enabled=parser.getboolean("telemetry", "enabled", fallback=True),
        interval_seconds=max(0.1, interval_value),
    )

    operations = OperationsConfig(
        simulated_duration_seconds=max(
            0.0,
            parser.getfloat(
                "operations", "simulated_duration_seconds", fallback=3.0
            ),
        ),
        publish_timeout_seconds=max(
            0.1,
            parser.getfloat("operations", "publish_timeout_seconds", fallback=10.0),
        ),
        terminal_retries=max(
            0, parser.getint("operations", "terminal_retries", fallback=1)
        ),
    )

    log_path_value = parser.get("logging", "path", fallback="")
    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO"),
        path=Path(log_path_value).expanduser() if log_path_value else None,
        log_network=parser.getboolean("logging", "log_network", fallback=False),
    )

    resilience = ResilienceConfig(
        reconnect_min_seconds=max(
            1, parser.getint("resilience", "reconnect_min_seconds", fallback=1)
        ),
        reconnect_max_seconds=max(
            1, parser.getint("resilience", "reconnect_max_seconds", fallback=30)
        ),
        startup_settle_seconds=max(
            0.0,
            parser.getfloat("resilience", "startup_settle_seconds", fallback=2.0),
        ),
        health_enabled=parser.getboolean(
            "resilience", "health_enabled", fallback=False
        ),
        health_host=parser.get("resilience", "health_host", fallback="127.0.0.1"),
        health_port=parser.getint("resilience", "health_port", fallback=0),
    )

    return AgentConfig(
        cloud=cloud,
        device=device,
        telemetry=telemetry,
        operations=operations,
        logging=logging_config,
        resilience=resilience,
        raw=parser,
        path=config_path,
    )


def save_config(config: AgentConfig) -> None:
    """Persist the current configuration to disk."""

    config_path = config.path
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as stream:
        config.raw.write(stream)
