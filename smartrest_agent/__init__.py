"""Device-side SmartREST agent over MQTT."""

__version__ = "0.1.0"
