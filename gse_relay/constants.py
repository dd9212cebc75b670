"""Constants used across the gse-relay package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "gse-relay"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / APP_NAME / DEFAULT_CONFIG_FILENAME

DEFAULT_HUB_HOST = "127.0.0.1"
DEFAULT_HUB_PORT = 8080
DEFAULT_HUB_URL = f"ws://localhost:{DEFAULT_HUB_PORT}/ws"

DEFAULT_BAUD_RATE = 9600
DEFAULT_VENDOR_HINTS = ("arduino", "usb", "ch340", "cp210", "ftdi")

DEFAULT_RECONNECT_INTERVAL_SECONDS = 5.0
DEFAULT_HEARTBEAT_INTERVAL_SECONDS = 5.0
DEFAULT_SIMULATION_INTERVAL_SECONDS = 1.0

VIEWER_WS_PATH = "/ws"
STATUS_PATH = "/api/status"
HEALTH_PATH = "/healthz"
