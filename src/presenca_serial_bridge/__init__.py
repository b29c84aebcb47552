"""Serial → MQTT bridge for ESP32 RFID attendance readers."""

__version__ = "0.1.0"
