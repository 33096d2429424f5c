"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized configuration for the push server: where to listen, which
TLS material to use, and how the connection workers behave.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. JSON configuration file                                        │
    │      └── load_config("config.json")                                │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── HTTPPUSH_PORT=8443 python -m httppush ...                 │
    │                                                                      │
    │   3. Default values (in this dataclass)                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
JSON FORMAT
=============================================================================

    {
        "Host": "localhost",
        "Port": "8443",
        "RootCA": "certs/rootCA.pem",
        "CertFile": "certs/localhost.pem",
        "KeyFile": "certs/localhost-key.pem"
    }

The capitalized keys are the historical format. The snake_case field
names of ServerConfig ("keep_alive_timeout", "max_workers", ...) are
accepted as well. Unknown keys are ignored.

Relative certificate paths are resolved against the directory holding
the configuration file, so a config can travel with its certificates.

=============================================================================
ERRORS
=============================================================================

    ConfigError
    ├── ConfigNotFoundError    (also a FileNotFoundError)
    ├── ConfigNotJSONError     (also a ValueError)
    └── ConfigValidationError  (also a ValueError)

A missing file and a file that is not JSON are different problems with
different fixes, so callers can tell them apart:

    try:
        config = load_config(path)
    except ConfigNotFoundError:
        ...  # wrong path
    except ConfigNotJSONError:
        ...  # wrong file

=============================================================================
"""

import errno
import json
import logging
import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional, Tuple


logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Base class for configuration problems. Fatal to server startup."""


class ConfigNotFoundError(ConfigError, FileNotFoundError):
    """A configuration or certificate file does not exist."""

    def __init__(self, path: str):
        super().__init__(errno.ENOENT, os.strerror(errno.ENOENT), path)
        self.path = path


class ConfigNotJSONError(ConfigError, ValueError):
    """The configuration file exists but does not hold a JSON object."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Config file {path} is not JSON: {reason}")
        self.path = path
        self.reason = reason


class ConfigValidationError(ConfigError, ValueError):
    """A configuration value is out of range or has the wrong type."""


# Historical capitalized keys → dataclass field names
JSON_KEY_ALIASES = {
    "Host": "host",
    "Port": "port",
    "RootCA": "root_ca",
    "CertFile": "cert_file",
    "KeyFile": "key_file",
}

PATH_FIELDS = ("root_ca", "cert_file", "key_file")

# JSON value coercion per field; None allowed only where listed
INT_FIELDS = ("port", "backlog", "buffer_size", "max_request_size", "max_workers")
FLOAT_FIELDS = ("timeout", "keep_alive_timeout")
BOOL_FIELDS = ("keep_alive", "allow_h2c")
STR_FIELDS = ("host", "log_level", "server_name")
NULLABLE_FIELDS = ("timeout",) + PATH_FIELDS


def _coerce(name: str, value: Any) -> Any:
    """
    Convert one decoded JSON value to the type of its field.

    Numbers may arrive as strings ("Port": "8443" is the historical
    format). Booleans must be JSON booleans.

    Raises:
        ConfigValidationError: The value has the wrong type.
    """
    if value is None and name in NULLABLE_FIELDS:
        return None

    try:
        if name in BOOL_FIELDS:
            if not isinstance(value, bool):
                raise TypeError(f"expected true or false, got {type(value).__name__}")
            return value
        if isinstance(value, bool):
            raise TypeError("unexpected boolean")
        if name in INT_FIELDS:
            return int(value)
        if name in FLOAT_FIELDS:
            return float(value)
        if name in STR_FIELDS or name in PATH_FIELDS:
            if not isinstance(value, str):
                raise TypeError(f"expected a string, got {type(value).__name__}")
    except (TypeError, ValueError) as e:
        raise ConfigValidationError(f"Invalid {name}: {value!r} ({e})") from e
    return value


@dataclass
class ServerConfig:
    """
    Configuration for the push server.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK SETTINGS
    - host, port, backlog, buffer_size, timeout

    TLS SETTINGS
    - root_ca, cert_file, key_file

    HTTP SETTINGS
    - keep_alive, keep_alive_timeout, max_request_size, allow_h2c

    WORKERS
    - max_workers

    LOGGING
    - log_level

    =========================================================================
    TLS MODES
    =========================================================================

        cert_file  key_file   mode
        ─────────  ────────   ─────────────────────────────────────────
        unset      unset      plain TCP (HTTP/1.1 and h2c)
        set        set        TLS with ALPN (h2 and http/1.1)
        one of them set       ConfigNotFoundError when TLS is built

    root_ca is only used on the client side (tests, tooling) to trust
    the server certificate.

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "127.0.0.1"
    """
    The IP address or hostname to bind to.
    """

    port: int = 8080
    """
    The port to listen on. 0 lets the OS pick a free port; the bound
    port is reported through the ready signal.
    """

    backlog: int = 128
    """Maximum number of queued connections."""

    buffer_size: int = 65535
    """
    Size of each socket read in bytes. 65535 matches the default
    HTTP/2 connection window so a full window fits in one read.
    """

    timeout: Optional[float] = 30.0
    """
    Socket timeout in seconds for the first request on a connection.
    """

    # ─────────────────────────────────────────────────────────────────────
    # TLS SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    root_ca: Optional[str] = None
    cert_file: Optional[str] = None
    key_file: Optional[str] = None

    # ─────────────────────────────────────────────────────────────────────
    # HTTP SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    keep_alive: bool = True
    """Enable HTTP/1.1 keep-alive connections."""

    keep_alive_timeout: float = 5.0
    """
    Idle timeout in seconds. HTTP/1.1 connections close after this much
    silence between requests; HTTP/2 connections with no open streams
    receive GOAWAY.
    """

    max_request_size: int = 10 * 1024 * 1024  # 10 MB
    """Maximum allowed request size in bytes."""

    allow_h2c: bool = True
    """
    Accept cleartext HTTP/2 with prior knowledge (client starts with the
    connection preface). Only relevant when TLS is off.
    """

    # ─────────────────────────────────────────────────────────────────────
    # WORKERS
    # ─────────────────────────────────────────────────────────────────────

    max_workers: int = 16
    """
    Maximum number of connection worker threads.
    Each connection is served by one worker for its lifetime.
    """

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING / IDENTITY
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)."""

    server_name: str = "httppush/1.0"
    """Value of the Server response header."""

    @property
    def address(self) -> Tuple[str, int]:
        """The configured (host, port) pair."""
        return (self.host, self.port)

    @property
    def tls_enabled(self) -> bool:
        """True when any TLS key material is configured."""
        return bool(self.cert_file or self.key_file)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base_dir: Optional[str] = None) -> "ServerConfig":
        """
        Build a configuration from a decoded JSON object.

        Args:
            data: Mapping with historical or snake_case keys.
            base_dir: Directory that relative certificate paths are
                      resolved against. None leaves them untouched.

        Raises:
            ConfigValidationError: If a value cannot be converted.
        """
        known = {f.name: f for f in fields(cls)}
        values: Dict[str, Any] = {}

        for key, value in data.items():
            name = JSON_KEY_ALIASES.get(key, key)
            if name not in known:
                logger.debug(f"Ignoring unknown config key {key!r}")
                continue
            values[name] = _coerce(name, value)

        for name in PATH_FIELDS:
            path = values.get(name)
            if path == "":
                values[name] = None
            elif path and base_dir and not os.path.isabs(path):
                values[name] = os.path.normpath(os.path.join(base_dir, path))

        config = cls(**values)
        config.validate()
        return config

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        HTTPPUSH_HOST       Server host (default: 127.0.0.1)
        HTTPPUSH_PORT       Server port (default: 8080)
        HTTPPUSH_ROOT_CA    Root CA certificate (client side)
        HTTPPUSH_CERT_FILE  Server certificate chain
        HTTPPUSH_KEY_FILE   Server private key
        HTTPPUSH_WORKERS    Max worker threads (default: 16)
        HTTPPUSH_LOG_LEVEL  Logging level (default: INFO)

        =====================================================================
        """
        try:
            config = cls(
                host=os.getenv("HTTPPUSH_HOST", "127.0.0.1"),
                port=int(os.getenv("HTTPPUSH_PORT", "8080")),
                root_ca=os.getenv("HTTPPUSH_ROOT_CA") or None,
                cert_file=os.getenv("HTTPPUSH_CERT_FILE") or None,
                key_file=os.getenv("HTTPPUSH_KEY_FILE") or None,
                max_workers=int(os.getenv("HTTPPUSH_WORKERS", "16")),
                log_level=os.getenv("HTTPPUSH_LOG_LEVEL", "INFO"),
            )
        except ValueError as e:
            raise ConfigValidationError(f"Invalid environment configuration: {e}")
        config.validate()
        return config

    def validate(self) -> None:
        """
        Validate configuration values.

        Called at load time and again by HTTPServer, so a half-valid
        configuration never reaches the socket layer.
        """
        if not isinstance(self.port, int) or not 0 <= self.port < 65536:
            raise ConfigValidationError(f"Invalid port: {self.port}. Must be 0-65535.")

        if not self.host or not isinstance(self.host, str):
            raise ConfigValidationError("host must be a non-empty string")

        for name in INT_FIELDS:
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise ConfigValidationError(f"{name} must be an integer, got {value!r}")

        for name in FLOAT_FIELDS:
            value = getattr(self, name)
            if value is None and name in NULLABLE_FIELDS:
                continue
            if not isinstance(value, (int, float)) or isinstance(value, bool):
                raise ConfigValidationError(f"{name} must be a number, got {value!r}")

        if self.max_workers < 1:
            raise ConfigValidationError("max_workers must be >= 1")

        if self.buffer_size < 1024:
            raise ConfigValidationError("buffer_size must be >= 1024")

        if self.timeout is not None and self.timeout <= 0:
            raise ConfigValidationError("timeout must be > 0")

        if self.keep_alive_timeout <= 0:
            raise ConfigValidationError("keep_alive_timeout must be > 0")

        if getattr(logging, str(self.log_level).upper(), None) is None:
            raise ConfigValidationError(f"Unknown log level: {self.log_level}")

    def log_summary(self) -> None:
        """Log the effective configuration at INFO level."""
        logger.info(f"Host:     {self.host}")
        logger.info(f"Port:     {self.port}")
        logger.info(f"RootCA:   {self.root_ca or '-'}")
        logger.info(f"CertFile: {self.cert_file or '-'}")
        logger.info(f"KeyFile:  {self.key_file or '-'}")
        logger.info(f"TLS:      {'on' if self.tls_enabled else 'off'}")


def load_config(path: str) -> ServerConfig:
    """
    Load a ServerConfig from a JSON file.

    Args:
        path: Path to the JSON configuration file.

    Returns:
        A validated ServerConfig.

    Raises:
        ConfigNotFoundError: The file does not exist.
        ConfigNotJSONError: The file is not a JSON object.
        ConfigValidationError: A value is invalid.
    """
    if not os.path.isfile(path):
        raise ConfigNotFoundError(path)

    try:
        with open(path, "rb") as f:
            raw = f.read()
        data = json.loads(raw.decode("utf-8"))
    except FileNotFoundError:
        # Removed between the check and the read
        raise ConfigNotFoundError(path)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ConfigNotJSONError(path, str(e))

    if not isinstance(data, dict):
        raise ConfigNotJSONError(path, f"expected an object, got {type(data).__name__}")

    base_dir = os.path.dirname(os.path.abspath(path))
    config = ServerConfig.from_dict(data, base_dir=base_dir)
    logger.debug(f"Loaded config from {path}")
    return config
