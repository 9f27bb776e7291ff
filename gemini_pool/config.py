import os
import sys
from typing import Any, Dict, List, Optional

import yaml
from loguru import logger


# ===========================
# Constants
# ===========================

class Constants:
    """Centralized constants for the key pool proxy."""

    CONFIG_FILE = "config.yaml"
    CONFIG_ENV_VAR = "GEMINI_POOL_CONFIG"

    # Upstream
    DEFAULT_UPSTREAM_URL = "https://generativelanguage.googleapis.com"
    DEFAULT_KEY_PARAM = "key"

    # Routing
    DEFAULT_PROXY_PREFIX = "/gemini"
    DEFAULT_PASSTHROUGH_PREFIXES = ["/v1beta"]

    # Server
    DEFAULT_HOST = "0.0.0.0"
    DEFAULT_PORT = 8000
    DEFAULT_LOG_LEVEL = "INFO"

    # Error log
    ERROR_LOG_CAPACITY = 1000

    # Connection limits
    MAX_KEEPALIVE_CONNECTIONS = 20
    MAX_CONNECTIONS = 100

    # Headers never copied from the inbound request
    EXCLUDED_HEADERS = {"host", "content-length", "connection", "authorization"}

    NO_KEY_SENTINEL = "N/A"
    NO_KEY_MESSAGE = "No available API keys"
    DEFAULT_CONTENT_TYPE = "application/json"

    CORS_HEADERS = {"Access-Control-Allow-Origin": "*"}
    PREFLIGHT_HEADERS = {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Methods": "GET,POST,PUT,DELETE,OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type,Authorization",
    }

    KEY_MASK_LENGTH = 4

    LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}


# ===========================
# Configuration Management
# ===========================

def _normalize_prefix(prefix: str) -> str:
    """Ensure a leading slash and no trailing slash."""
    prefix = prefix if prefix.startswith("/") else f"/{prefix}"
    return prefix.rstrip("/")


class Settings:
    """Application settings loaded from config.yaml."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        server = self._section(config, "server")
        upstream = self._section(config, "upstream")
        routing = self._section(config, "routing")
        pool = self._section(config, "pool")

        # Server Settings
        self.host: str = self._typed(server, "server.host", "host", str, Constants.DEFAULT_HOST)
        self.port: int = self._typed(server, "server.port", "port", int, Constants.DEFAULT_PORT)
        self.log_level: str = self._typed(
            server, "server.log_level", "log_level", str, Constants.DEFAULT_LOG_LEVEL
        ).upper()
        if self.log_level not in Constants.LOG_LEVELS:
            logger.warning(
                f"'server.log_level' is unknown: '{self.log_level}', set '{Constants.DEFAULT_LOG_LEVEL}'"
            )
            self.log_level = Constants.DEFAULT_LOG_LEVEL

        # Upstream Settings
        self.upstream_base_url: str = self._typed(
            upstream, "upstream.base_url", "base_url", str, Constants.DEFAULT_UPSTREAM_URL
        ).rstrip("/")
        self.key_param: str = self._typed(
            upstream, "upstream.key_param", "key_param", str, Constants.DEFAULT_KEY_PARAM
        )
        self.request_timeout: Optional[float] = self._timeout(upstream.get("request_timeout"))

        # Routing Settings
        self.proxy_prefix: str = _normalize_prefix(self._typed(
            routing, "routing.proxy_prefix", "proxy_prefix", str, Constants.DEFAULT_PROXY_PREFIX
        ))
        self.passthrough_prefixes: List[str] = self._prefixes(routing.get("passthrough_prefixes"))

        # Pool Settings
        self.keys: List[str] = self._keys(pool.get("keys"))
        self.error_log_capacity: int = self._typed(
            pool, "pool.error_log_capacity", "error_log_capacity", int, Constants.ERROR_LOG_CAPACITY
        )
        if self.error_log_capacity < 1:
            logger.warning(
                f"'pool.error_log_capacity' must be positive. Using default: {Constants.ERROR_LOG_CAPACITY}"
            )
            self.error_log_capacity = Constants.ERROR_LOG_CAPACITY
        seed = pool.get("random_seed")
        self.random_seed: Optional[int] = seed if isinstance(seed, int) and not isinstance(seed, bool) else None

    @staticmethod
    def load_config(path: Optional[str] = None) -> Dict[str, Any]:
        """Load configuration from a YAML file."""
        path = path or os.getenv(Constants.CONFIG_ENV_VAR, Constants.CONFIG_FILE)
        try:
            with open(path, "r", encoding="utf-8") as f:
                return yaml.safe_load(f) or {}
        except FileNotFoundError:
            logger.error(f"{path} not found! Starting with default settings.")
            return {}
        except yaml.YAMLError as e:
            logger.error(f"Error parsing {path}: {e}")
            return {}

    @classmethod
    def from_file(cls, path: Optional[str] = None) -> "Settings":
        """Build settings from a YAML file."""
        return cls(cls.load_config(path))

    @staticmethod
    def _section(config: Dict[str, Any], name: str) -> Dict[str, Any]:
        section = config.get(name)
        if section is None:
            return {}
        if not isinstance(section, dict):
            logger.warning(f"'{name}' section invalid in config.yaml. Using defaults.")
            return {}
        return section

    @staticmethod
    def _typed(section: Dict[str, Any], label: str, name: str, kind: type, default: Any) -> Any:
        value = section.get(name)
        if value is None:
            return default
        # bool is an int subclass
        if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
            logger.warning(f"'{label}' invalid in config.yaml. Using default: {default}")
            return default
        return value

    @staticmethod
    def _timeout(value: Any) -> Optional[float]:
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            logger.warning("'upstream.request_timeout' invalid in config.yaml. Requests will not time out.")
            return None
        return float(value)

    @staticmethod
    def _prefixes(value: Any) -> List[str]:
        if value is None:
            return list(Constants.DEFAULT_PASSTHROUGH_PREFIXES)
        if not isinstance(value, list):
            logger.warning(
                f"'routing.passthrough_prefixes' invalid in config.yaml. "
                f"Using default: {Constants.DEFAULT_PASSTHROUGH_PREFIXES}"
            )
            return list(Constants.DEFAULT_PASSTHROUGH_PREFIXES)

        prefixes = []
        for i, prefix in enumerate(value):
            if not isinstance(prefix, str) or not prefix.strip("/"):
                logger.warning(f"Item {i} in 'routing.passthrough_prefixes' is not a valid prefix. Skipping.")
                continue
            prefixes.append(_normalize_prefix(prefix))
        return prefixes

    @staticmethod
    def _keys(value: Any) -> List[str]:
        if value is None:
            return []
        if not isinstance(value, list):
            logger.warning("'pool.keys' invalid in config.yaml. Using empty list.")
            return []

        keys = []
        for i, key in enumerate(value):
            if not isinstance(key, str) or not key.strip():
                logger.warning(f"Item {i} in 'pool.keys' is not a string. Skipping.")
                continue
            keys.append(key.strip())
        return keys


# ===========================
# Logging
# ===========================

def configure_logging(level: str = Constants.DEFAULT_LOG_LEVEL) -> None:
    """Route loguru output to stderr at the configured level."""
    logger.remove()
    logger.add(sys.stderr, level=level)


def mask_key(key: str) -> str:
    """Mask an API key for logging purposes."""
    if not key:
        return key
    if len(key) <= 8:
        return "****"
    return f"{key[:Constants.KEY_MASK_LENGTH]}****{key[-Constants.KEY_MASK_LENGTH:]}"
