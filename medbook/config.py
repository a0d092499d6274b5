"""Configuration for the appointment scheduling engine.

All tunables centralized here - override through environment variables
(or a .env file) without touching code.
"""
import os

from dotenv import load_dotenv

load_dotenv()

# Record store (json-server style REST API)
API_BASE_URL = os.getenv("MEDBOOK_API_BASE_URL", "http://localhost:3001").rstrip("/")
HTTP_TIMEOUT_SECONDS = float(os.getenv("MEDBOOK_HTTP_TIMEOUT", "15"))

# Only idempotent reads are retried; writes surface failures to the caller
READ_RETRIES = int(os.getenv("MEDBOOK_READ_RETRIES", "2"))

# Circuit breaker around the record store
BREAKER_FAILURE_THRESHOLD = int(os.getenv("MEDBOOK_BREAKER_THRESHOLD", "5"))
BREAKER_TIMEOUT_SECONDS = int(os.getenv("MEDBOOK_BREAKER_TIMEOUT", "60"))

LOG_LEVEL = os.getenv("MEDBOOK_LOG_LEVEL", "INFO")

# Local development store (python -m medbook.mock_store)
MOCK_STORE_PORT = int(os.getenv("MEDBOOK_MOCK_PORT", "3001"))

# Wire formats for the appointment instant
DATE_FORMAT = "%Y-%m-%d"
TIME_FORMAT = "%H:%M"
TIME_FORMAT_SECONDS = "%H:%M:%S"

SERVER_ERROR_MESSAGE = (
    "Cannot connect to the appointment server. "
    "Make sure the record store is running and reachable."
)
