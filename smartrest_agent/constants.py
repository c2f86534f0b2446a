"""Constants used across the smartrest-agent package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "smartrest-agent"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / APP_NAME / DEFAULT_CONFIG_FILENAME

DEFAULT_BROKER_HOST = "mqtt.eu-latest.cumulocity.com"
DEFAULT_BROKER_PORT = 8883

DEFAULT_DEVICE_NAME = "showcase-device-01"
DEFAULT_DEVICE_TYPE = "yourDeviceType"
DEFAULT_DEVICE_SERIAL = "kobu-sn-7123"

# SmartREST static template topics
SMARTREST_UPSTREAM_TOPIC = "s/us"
SMARTREST_DOWNSTREAM_TOPIC = "s/ds"
SMARTREST_ERROR_TOPIC = "s/e"

# JSON via MQTT topics
EVENT_CREATE_TOPIC = "event/events/create"
INVENTORY_UPDATE_TOPIC_PREFIX = "inventory/managedObjects/update"

ENV_USERNAME = "C8Y_USERNAME"
ENV_PASSWORD = "C8Y_PASSWORD"
