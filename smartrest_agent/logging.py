"""Logging setup for the agent process.

Every published and received SmartREST row is logged at INFO by the
publisher and the operation processor. Transport chatter from paho-mqtt and
the health endpoint is kept at WARNING unless ``[logging] log_network`` is
enabled in the configuration.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

NETWORK_LOGGERS = ("paho", "aiohttp.access", "aiohttp.server")
MQTT_ADAPTER_LOGGER = "smartrest_agent.adapters.mqtt"


def configure_logging(
    level: str = "INFO", *, log_path: Optional[Path] = None, log_network: bool = False
) -> None:
    """Replace the root handlers with console (and optionally file) output.

    Unknown level names fall back to INFO.
    """

    logging.captureWarnings(True)

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )

    if log_path:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(file_handler)

    network_level = logging.NOTSET if log_network else logging.WARNING
    for name in NETWORK_LOGGERS:
        logging.getLogger(name).setLevel(network_level)
    # paho logs its packet trace at DEBUG through the adapter logger.
    logging.getLogger(MQTT_ADAPTER_LOGGER).setLevel(
        logging.NOTSET if log_network else logging.INFO
    )
