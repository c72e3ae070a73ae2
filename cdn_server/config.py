"""Configuration settings for the CDN Server."""
import os


class ConfigurationError(RuntimeError):
    """Raised when required configuration is missing or malformed."""


# Upload limits
MAX_UPLOAD_SIZE = 1024 * 1024 * 1024  # 1GB
CHUNK_SIZE = 8192  # 8KB

# Directory layout under the root
FILES_DIR = "files"
UNVERSIONED_DIR = "unversioned"
VERSIONED_DIR = "versioned"
TEMP_DIR = ".tmp"

# Environment
PORT_ENV = "CDN_PORT"
API_KEYS_ENV = "API_KEYS"

ROOT_DIR = os.getenv("CDN_ROOT_DIR", os.getcwd())
HOST = os.getenv("CDN_HOST", "0.0.0.0")
LOGS_DIR = os.getenv("CDN_LOGS_DIR", "logs")

# Sent by every custom handler, including preflight answers
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}


def get_port() -> int:
    """Read the listening port from the environment. There is no default."""
    value = os.getenv(PORT_ENV, "").strip()
    if not value:
        raise ConfigurationError(f"{PORT_ENV} environment variable is not set")
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{PORT_ENV} must be an integer, got {value!r}")


def get_api_keys() -> str:
    """Return the raw semicolon-delimited allow-list, read at call time."""
    return os.getenv(API_KEYS_ENV, "")
