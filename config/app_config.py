"""Centralised application settings (dotenv + env overrides)."""
from __future__ import annotations
import os
from pathlib import Path
from dotenv import load_dotenv

ROOT = Path(__file__).parents[1]
load_dotenv(ROOT / ".env", override=False)


def _int_list(raw: str) -> tuple[int, ...]:
    return tuple(int(part) for part in raw.split(",") if part.strip())


class settings:                            # pylint: disable=too-few-public-methods
    # broker
    MQTT_BROKER_URL       = os.getenv("MQTT_BROKER_URL", "mqtt://localhost:1883")
    MQTT_USERNAME         = os.getenv("MQTT_USERNAME")
    MQTT_PASSWORD         = os.getenv("MQTT_PASSWORD")
    MQTT_RECONNECT_PERIOD = int(os.getenv("MQTT_RECONNECT_PERIOD", 5))       # seconds
    MQTT_CONNECT_TIMEOUT  = float(os.getenv("MQTT_CONNECT_TIMEOUT", 30))     # seconds
    MQTT_KEEPALIVE        = int(os.getenv("MQTT_KEEPALIVE", 60))             # seconds
    MQTT_TRACK_HEARTBEATS = os.getenv("MQTT_TRACK_HEARTBEATS", "true").lower() in ("1", "true", "yes")

    # ingestion endpoint
    INTERNAL_API_KEY      = os.getenv("INTERNAL_API_KEY", "dev-internal-key-change-in-production")
    API_BASE_URL          = os.getenv("API_BASE_URL", "http://localhost:3000")
    HTTP_TIMEOUT          = float(os.getenv("HTTP_TIMEOUT", 10))             # seconds

    # delivery retry policy
    RETRY_MAX_RETRIES     = int(os.getenv("MQTT_RETRY_MAX_RETRIES", 5))
    RETRY_BASE_DELAY      = int(os.getenv("MQTT_RETRY_BASE_DELAY", 1000))    # ms
    RETRY_MAX_DELAY       = int(os.getenv("MQTT_RETRY_MAX_DELAY", 30000))    # ms
    RETRY_FACTOR          = float(os.getenv("MQTT_RETRY_EXPONENTIAL_BASE", 2))
    RETRY_TERMINAL_STATUSES = _int_list(os.getenv("MQTT_RETRY_TERMINAL_STATUSES", ""))

    # ingestion endpoint (server side)
    INGEST_RATE_LIMIT_WINDOW = int(os.getenv("INGEST_RATE_LIMIT_WINDOW", 60))  # seconds
    INGEST_RATE_LIMIT_MAX    = int(os.getenv("INGEST_RATE_LIMIT_MAX", 1000))
    DEVICE_REGISTRY_FILE     = os.getenv("DEVICE_REGISTRY_FILE")

    SHUTDOWN_TIMEOUT      = float(os.getenv("SHUTDOWN_TIMEOUT", 10))         # seconds
    DEAD_LETTER_CAPACITY  = int(os.getenv("DEAD_LETTER_CAPACITY", 1000))
    LOG_LEVEL             = os.getenv("LOG_LEVEL", "INFO").upper()
