"""Configuration management for the connector.

This module provides centralized configuration loading from multiple sources:
- YAML/TOML configuration files
- Environment variables (.env)
- Default values

Includes validation to ensure configuration values are correct, and the
conversion into the immutable :class:`ConnectorSettings` consumed by the
connector itself.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

try:
    import tomllib  # Python 3.11+
except ImportError:
    import tomli as tomllib  # type: ignore

import yaml
from dotenv import load_dotenv

from .endpoints import ENDPOINTS, get_endpoint
from .errors import ValidationError

ENV_PREFIX = "WCH_"

_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off"}


def _to_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ValidationError(f"{key} must be a boolean, got {value!r}")


def _to_int(value: Any, key: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be an integer, got {value!r}") from None


def _to_float(value: Any, key: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be a number, got {value!r}") from None


@dataclass(frozen=True)
class Credentials:
    """Basic auth credentials for the login endpoint."""

    username: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class ConnectorSettings:
    """Immutable settings for one connector instance.

    Attributes
    ----------
    endpoint: str
        ``authoring`` or ``delivery``.
    base_url: Optional[str]
        API URL used for login (and for everything when anonymous). Defaults
        to the endpoint's base URL.
    tenant_id: Optional[str]
        Sent as ``x-ibm-dx-tenant-id`` on login.
    credentials: Optional[Credentials]
        When absent the connector runs anonymously.
    reject_unauthorized: bool
        Verify TLS certificates.
    max_sockets: int
        Upper bound on concurrent connections; bulk operations use a fifth.
    timeout: float
        Transport timeout in seconds.
    """

    endpoint: str = "delivery"
    base_url: Optional[str] = None
    tenant_id: Optional[str] = None
    credentials: Optional[Credentials] = None
    reject_unauthorized: bool = True
    max_sockets: int = 10
    timeout: float = 30.0

    def __post_init__(self) -> None:
        get_endpoint(self.endpoint)
        if self.max_sockets < 1:
            raise ValidationError("max_sockets must be a positive integer")
        if self.timeout <= 0:
            raise ValidationError("timeout must be a positive number")

    @property
    def resolved_base_url(self) -> str:
        """The configured base URL, falling back to the endpoint default."""
        return (self.base_url or get_endpoint(self.endpoint).base_url).rstrip("/")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConnectorSettings":
        """Create settings from a mapping.

        Accepts snake_case keys as well as the camelCase names used by older
        connector configurations (``baseUrl``, ``tenantid``, ``maxSockets``,
        ``rejectUnauthorized``, ``credentials.usrname``/``pwd``).
        """

        def pick(*names: str) -> Any:
            for name in names:
                if data.get(name) is not None:
                    return data[name]
            return None

        credentials = None
        creds = data.get("credentials")
        if isinstance(creds, Credentials):
            credentials = creds
        elif creds:
            username = creds.get("username") or creds.get("usrname")
            password = creds.get("password") or creds.get("pwd")
            if not username or password is None:
                raise ValidationError("credentials require a username and a password")
            credentials = Credentials(str(username), str(password))

        kwargs: Dict[str, Any] = {"credentials": credentials}
        endpoint = pick("endpoint")
        if endpoint is not None:
            kwargs["endpoint"] = str(endpoint)
        base_url = pick("base_url", "baseUrl")
        if base_url:
            kwargs["base_url"] = str(base_url)
        tenant_id = pick("tenant_id", "tenantid", "tenantId")
        if tenant_id:
            kwargs["tenant_id"] = str(tenant_id)
        reject = pick("reject_unauthorized", "rejectUnauthorized")
        if reject is not None:
            kwargs["reject_unauthorized"] = _to_bool(reject, "reject_unauthorized")
        max_sockets = pick("max_sockets", "maxSockets")
        if max_sockets is not None:
            kwargs["max_sockets"] = _to_int(max_sockets, "max_sockets")
        timeout = pick("timeout", "timeout_seconds")
        if timeout is not None:
            kwargs["timeout"] = _to_float(timeout, "timeout")
        return cls(**kwargs)


DEFAULTS: Dict[str, Dict[str, Any]] = {
    "logging": {"level": "INFO", "file": "", "json": False},
    "connector": {
        "endpoint": "delivery",
        "base_url": "",
        "tenant_id": "",
        "reject_unauthorized": True,
        "max_sockets": 10,
        "timeout_seconds": 30,
    },
    "credentials": {"username": "", "password": ""},
}

# Searched in order when no file is given
CONFIG_CANDIDATES = tuple(
    directory / f"wchconnector.{suffix}"
    for directory in (Path("config"), Path("."))
    for suffix in ("yaml", "yml", "toml")
)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
# More sockets than this usually gets the tenant throttled
SOCKET_WARNING_THRESHOLD = 100


def env_key(key: str) -> str:
    """Environment variable overriding the dotted ``key``."""
    return ENV_PREFIX + key.upper().replace(".", "_")


@dataclass
class ValidationResult:
    """Errors and warnings collected by :meth:`Config.validate`."""

    is_valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def add_error(self, message: str) -> None:
        self.errors.append(message)
        self.is_valid = False

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def __str__(self) -> str:
        if not self.errors and not self.warnings:
            return "Configuration is valid."
        lines = []
        for title, messages in (("Errors:", self.errors), ("Warnings:", self.warnings)):
            if messages:
                lines.append(title)
                lines.extend(f"  - {message}" for message in messages)
        return "\n".join(lines)


class Config:
    """Layered configuration: defaults < config file < environment."""

    def __init__(self, config_file: Optional[str] = None):
        """
        Load ``.env``, then ``config_file`` (or the first existing candidate
        file) and fill every missing key from :data:`DEFAULTS`.

        Args:
            config_file: Path to a YAML or TOML file (optional)
        """
        self.logger = logging.getLogger(self.__class__.__name__)
        if Path(".env").exists():
            load_dotenv(".env")
            self.logger.info("Loaded environment variables from .env")
        self._config: Dict[str, Any] = self._load(config_file)

    def _load(self, config_file: Optional[str]) -> Dict[str, Any]:
        if config_file:
            loaded = self._read_file(Path(config_file))
        else:
            found = next((path for path in CONFIG_CANDIDATES if path.exists()), None)
            if found is None:
                self.logger.debug("No config file found, using defaults and environment variables")
            loaded = self._read_file(found) if found is not None else {}

        merged = dict(loaded)
        for section, values in DEFAULTS.items():
            merged[section] = {**values, **(loaded.get(section) or {})}
        return merged

    def _read_file(self, path: Path) -> Dict[str, Any]:
        """Parse a YAML or TOML file; problems are logged and yield ``{}``."""
        if not path.exists():
            self.logger.warning(f"Config file not found: {path}")
            return {}
        if path.suffix not in (".yaml", ".yml", ".toml"):
            self.logger.error(f"Unsupported config format: {path}")
            return {}
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f) if path.suffix == ".toml" else yaml.safe_load(f)
        except (OSError, yaml.YAMLError, tomllib.TOMLDecodeError) as e:
            self.logger.error(f"Failed to load config file {path}: {e}")
            return {}
        self.logger.info(f"Loaded config from {path}")
        return data if isinstance(data, dict) else {}

    def get(self, key: str, default: Any = None) -> Any:
        """
        Look up a dotted key such as ``connector.max_sockets``.

        ``WCH_CONNECTOR_MAX_SOCKETS`` wins over the file value; environment
        values are returned as strings.
        """
        env_value = os.getenv(env_key(key))
        if env_value is not None:
            return env_value

        value: Any = self._config
        for part in key.split("."):
            if not isinstance(value, dict) or part not in value:
                return default
            value = value[part]
        return value

    def set(self, key: str, value: Any) -> None:
        """Set a dotted key at runtime, creating intermediate sections."""
        *parents, last = key.split(".")
        section = self._config
        for part in parents:
            section = section.setdefault(part, {})
        section[last] = value
        self.logger.debug(f"Set config {key} = {value}")

    def get_section(self, section: str) -> Dict[str, Any]:
        return self._config.get(section, {})

    def to_dict(self) -> Dict[str, Any]:
        return self._config.copy()

    def reload(self, config_file: Optional[str] = None) -> None:
        """Discard runtime changes and load ``config_file`` (or the candidates) again."""
        self._config = self._load(config_file)
        self.logger.info("Configuration reloaded")

    def connector_settings(self) -> ConnectorSettings:
        """Build :class:`ConnectorSettings` from the merged configuration.

        Raises:
            ValidationError: If a value cannot be coerced to its type
        """
        username = self.get("credentials.username") or ""
        credentials = None
        if username:
            credentials = {"username": username, "password": self.get("credentials.password") or ""}
        return ConnectorSettings.from_dict(
            {
                "endpoint": self.get("connector.endpoint", "delivery"),
                "base_url": self.get("connector.base_url") or None,
                "tenant_id": self.get("connector.tenant_id") or None,
                "reject_unauthorized": self.get("connector.reject_unauthorized", True),
                "max_sockets": self.get("connector.max_sockets", 10),
                "timeout": self.get("connector.timeout_seconds", 30),
                "credentials": credentials,
            }
        )

    # -- validation -------------------------------------------------------

    def _check_logging(self, result: ValidationResult) -> None:
        level = str(self.get("logging.level", "INFO"))
        if level.upper() not in LOG_LEVELS:
            result.add_error(f"Invalid logging level '{level}'. Must be one of: {', '.join(LOG_LEVELS)}")

    def _check_connector(self, result: ValidationResult) -> None:
        endpoint = self.get("connector.endpoint", "delivery")
        if endpoint not in ENDPOINTS:
            result.add_error(
                f"Invalid connector.endpoint '{endpoint}'. Must be one of: {', '.join(sorted(ENDPOINTS))}"
            )

        try:
            max_sockets = _to_int(self.get("connector.max_sockets", 10), "connector.max_sockets")
        except ValidationError as e:
            result.add_error(str(e))
        else:
            if max_sockets < 1:
                result.add_error("connector.max_sockets must be a positive integer")
            elif max_sockets > SOCKET_WARNING_THRESHOLD:
                result.add_warning(f"connector.max_sockets={max_sockets} is high, may cause throttling")

        try:
            timeout = _to_float(self.get("connector.timeout_seconds", 30), "connector.timeout_seconds")
        except ValidationError as e:
            result.add_error(str(e))
        else:
            if timeout <= 0:
                result.add_error("connector.timeout_seconds must be a positive number")

    def _check_credentials(self, result: ValidationResult) -> None:
        username = self.get("credentials.username")
        if username and not self.get("credentials.password"):
            result.add_error("credentials.password is required when credentials.username is set")
        elif not username:
            result.add_warning("No credentials configured, connector runs anonymously")
            if self.get("connector.endpoint") == "authoring":
                result.add_warning("The authoring endpoint rejects anonymous requests")

    def validate(self) -> ValidationResult:
        """
        Check the logging level, the connector section and the credentials.

        Returns:
            ValidationResult with errors and warnings, both also logged
        """
        result = ValidationResult()
        self._check_logging(result)
        self._check_connector(result)
        self._check_credentials(result)

        for error in result.errors:
            self.logger.error(f"Config validation error: {error}")
        for warning in result.warnings:
            self.logger.warning(f"Config validation warning: {warning}")
        return result

    def validate_and_raise(self) -> None:
        """
        Raises:
            ValueError: If :meth:`validate` reports errors
        """
        result = self.validate()
        if not result.is_valid:
            raise ValueError(f"Invalid configuration:\n{result}")


_global_config: Optional[Config] = None


def get_config(config_file: Optional[str] = None) -> Config:
    """Process-wide configuration; ``config_file`` only matters on the first call."""
    global _global_config
    if _global_config is None:
        _global_config = Config(config_file)
    return _global_config


def reload_config(config_file: Optional[str] = None) -> None:
    global _global_config
    if _global_config is None:
        _global_config = Config(config_file)
    else:
        _global_config.reload(config_file)
