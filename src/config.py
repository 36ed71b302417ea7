"""Configuration loading and validation module.

This module handles all YAML configuration loading and provides a typed
Config dataclass consumed by all other modules.
"""

from dataclasses import dataclass, field
from typing import Optional, Any
import yaml


class ConfigError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


@dataclass(frozen=True)
class PidConstants:
    """PID gains."""
    proportional: float = 0.1
    integral: float = 0.01
    derivative: float = 0.1


@dataclass(frozen=True)
class ControllerConfig:
    """Control loop configuration."""
    target_rate: float
    initial_percent_kept: float
    minimum_percent: float
    window_ms: int = 300000
    pid_constants: PidConstants = field(default_factory=PidConstants)
    adjustment_min: float = -0.25
    adjustment_max: float = 0.25

    @property
    def target_bytes_per_window(self) -> float:
        """Bytes the index should grow by during one window."""
        return self.target_rate * 1024 * 1024 * (self.window_ms / 1000)


@dataclass(frozen=True)
class SampleConnectionConfig:
    """Cluster holding the daily index whose size is measured."""
    url: str
    daily_index_prefix: str
    date_delimiter: str = "."
    username: Optional[str] = None
    password: Optional[str] = None


@dataclass(frozen=True)
class StoreConnectionConfig:
    """Cluster and document where the percentage is stored."""
    url: str
    index: str
    document_id: str
    username: Optional[str] = None
    password: Optional[str] = None


@dataclass(frozen=True)
class ConnectionsConfig:
    """Connection configuration."""
    sample: SampleConnectionConfig
    store: StoreConnectionConfig
    request_timeout_seconds: float = 30


@dataclass(frozen=True)
class MetricsConfig:
    """Prometheus exporter configuration."""
    enabled: bool = False
    port: int = 9100
    cluster: str = ""


@dataclass(frozen=True)
class AuditConfig:
    """Audit log configuration. Auditing is off when database_path is None."""
    database_path: Optional[str] = None
    max_entries: int = 10000
    housekeeping_interval_seconds: int = 3600


@dataclass(frozen=True)
class Config:
    """Root configuration dataclass."""
    controller: ControllerConfig
    connections: ConnectionsConfig
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)


def _get_nested(data: dict, path: str, required: bool = True, default: Any = None) -> Any:
    """Get a nested value from a dictionary using dot notation.

    Args:
        data: The dictionary to search
        path: Dot-separated path to the value (e.g., "sample.daily_index_prefix")
        required: If True, raises ConfigError when value is missing
        default: Default value if not required and missing

    Returns:
        The value at the path, or default if not required and missing

    Raises:
        ConfigError: If required value is missing
    """
    keys = path.split(".")
    current = data

    for key in keys:
        if not isinstance(current, dict):
            if required:
                raise ConfigError(f"Configuration path '{path}' is not a valid nested structure")
            return default
        if key not in current or current[key] is None:
            if required:
                raise ConfigError(f"Missing required configuration field: {path}")
            return default
        current = current[key]

    return current


def _validate_type(value: Any, expected_type: type, field_name: str) -> None:
    """Validate that a value is of the expected type.

    Numbers accept both int and float; bool is never accepted as a number.

    Args:
        value: The value to validate
        expected_type: The expected type
        field_name: Name of the field for error messages

    Raises:
        ConfigError: If value is not of the expected type
    """
    if expected_type is int:
        if not isinstance(value, int) or isinstance(value, bool):
            raise ConfigError(
                f"Field '{field_name}' must be an integer, got {type(value).__name__}"
            )
    elif expected_type is float:
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            raise ConfigError(
                f"Field '{field_name}' must be a number, got {type(value).__name__}"
            )
    elif expected_type is str:
        if not isinstance(value, str):
            raise ConfigError(
                f"Field '{field_name}' must be a string, got {type(value).__name__}"
            )
    elif expected_type is dict:
        if not isinstance(value, dict):
            raise ConfigError(
                f"Field '{field_name}' must be a mapping, got {type(value).__name__}"
            )
    else:
        if not isinstance(value, expected_type):
            raise ConfigError(
                f"Field '{field_name}' must be of type {expected_type.__name__}, got {type(value).__name__}"
            )


def _optional_str(data: dict, key: str, field_name: str) -> Optional[str]:
    value = _get_nested(data, key, required=False, default=None)
    if value is not None:
        _validate_type(value, str, field_name)
    return value


def _load_controller(data: dict) -> ControllerConfig:
    controller_data = _get_nested(data, "controller")
    _validate_type(controller_data, dict, "controller")

    target_rate = _get_nested(controller_data, "target_rate")
    _validate_type(target_rate, float, "controller.target_rate")

    window_ms = _get_nested(controller_data, "window_ms", required=False, default=300000)
    _validate_type(window_ms, int, "controller.window_ms")

    initial_percent_kept = _get_nested(controller_data, "initial_percent_kept")
    _validate_type(initial_percent_kept, float, "controller.initial_percent_kept")

    minimum_percent = _get_nested(controller_data, "minimum_percent")
    _validate_type(minimum_percent, float, "controller.minimum_percent")

    pid_data = _get_nested(controller_data, "pid_constants", required=False, default={})
    _validate_type(pid_data, dict, "controller.pid_constants")
    defaults = PidConstants()
    gains = {}
    for name in ("proportional", "integral", "derivative"):
        value = _get_nested(pid_data, name, required=False, default=getattr(defaults, name))
        _validate_type(value, float, f"controller.pid_constants.{name}")
        gains[name] = float(value)

    limits_data = _get_nested(controller_data, "adjustment_limits", required=False, default={})
    _validate_type(limits_data, dict, "controller.adjustment_limits")
    adjustment_min = _get_nested(limits_data, "minimum", required=False, default=-0.25)
    _validate_type(adjustment_min, float, "controller.adjustment_limits.minimum")
    adjustment_max = _get_nested(limits_data, "maximum", required=False, default=0.25)
    _validate_type(adjustment_max, float, "controller.adjustment_limits.maximum")

    # Range validation
    if target_rate <= 0:
        raise ConfigError("controller.target_rate must be > 0")
    if window_ms <= 0:
        raise ConfigError("controller.window_ms must be > 0")
    if not 1 <= initial_percent_kept <= 100:
        raise ConfigError("controller.initial_percent_kept must be between 1 and 100")
    if not 0 <= minimum_percent <= 100:
        raise ConfigError("controller.minimum_percent must be between 0 and 100")
    if initial_percent_kept < minimum_percent:
        raise ConfigError(
            "controller.initial_percent_kept must be >= controller.minimum_percent"
        )
    if adjustment_min >= adjustment_max:
        raise ConfigError(
            "controller.adjustment_limits.minimum must be < controller.adjustment_limits.maximum"
        )

    return ControllerConfig(
        target_rate=float(target_rate),
        initial_percent_kept=float(initial_percent_kept),
        minimum_percent=float(minimum_percent),
        window_ms=window_ms,
        pid_constants=PidConstants(**gains),
        adjustment_min=float(adjustment_min),
        adjustment_max=float(adjustment_max),
    )


def _load_connections(data: dict, window_ms: int) -> ConnectionsConfig:
    connections_data = _get_nested(data, "connections")
    _validate_type(connections_data, dict, "connections")

    request_timeout_seconds = _get_nested(
        connections_data, "request_timeout_seconds", required=False, default=30
    )
    _validate_type(request_timeout_seconds, float, "connections.request_timeout_seconds")
    if request_timeout_seconds <= 0:
        raise ConfigError("connections.request_timeout_seconds must be > 0")
    if request_timeout_seconds * 1000 >= window_ms:
        raise ConfigError(
            "connections.request_timeout_seconds must be shorter than controller.window_ms"
        )

    # Sample connection
    sample_data = _get_nested(connections_data, "sample")
    _validate_type(sample_data, dict, "connections.sample")

    sample_url = _get_nested(sample_data, "url")
    _validate_type(sample_url, str, "connections.sample.url")

    daily_index_prefix = _get_nested(sample_data, "daily_index_prefix")
    _validate_type(daily_index_prefix, str, "connections.sample.daily_index_prefix")
    if not daily_index_prefix:
        raise ConfigError("connections.sample.daily_index_prefix must not be empty")

    date_delimiter = _get_nested(sample_data, "date_delimiter", required=False, default=".")
    _validate_type(date_delimiter, str, "connections.sample.date_delimiter")

    sample = SampleConnectionConfig(
        url=sample_url.rstrip("/"),
        daily_index_prefix=daily_index_prefix,
        date_delimiter=date_delimiter,
        username=_optional_str(sample_data, "username", "connections.sample.username"),
        password=_optional_str(sample_data, "password", "connections.sample.password"),
    )

    # Store connection
    store_data = _get_nested(connections_data, "store")
    _validate_type(store_data, dict, "connections.store")

    store_url = _get_nested(store_data, "url")
    _validate_type(store_url, str, "connections.store.url")

    store_index = _get_nested(store_data, "index")
    _validate_type(store_index, str, "connections.store.index")

    document_id = _get_nested(store_data, "document_id")
    _validate_type(document_id, str, "connections.store.document_id")

    store = StoreConnectionConfig(
        url=store_url.rstrip("/"),
        index=store_index,
        document_id=document_id,
        username=_optional_str(store_data, "username", "connections.store.username"),
        password=_optional_str(store_data, "password", "connections.store.password"),
    )

    return ConnectionsConfig(
        sample=sample,
        store=store,
        request_timeout_seconds=request_timeout_seconds,
    )


def _load_metrics(data: dict) -> MetricsConfig:
    metrics_data = _get_nested(data, "metrics", required=False, default={})
    _validate_type(metrics_data, dict, "metrics")

    enabled = _get_nested(metrics_data, "enabled", required=False, default=False)
    _validate_type(enabled, bool, "metrics.enabled")

    port = _get_nested(metrics_data, "port", required=False, default=9100)
    _validate_type(port, int, "metrics.port")
    if not 0 < port < 65536:
        raise ConfigError("metrics.port must be between 1 and 65535")

    cluster = _get_nested(metrics_data, "cluster", required=False, default="")
    _validate_type(cluster, str, "metrics.cluster")

    return MetricsConfig(enabled=enabled, port=port, cluster=cluster)


def _load_audit(data: dict) -> AuditConfig:
    audit_data = _get_nested(data, "audit", required=False, default={})
    _validate_type(audit_data, dict, "audit")

    database_path = _optional_str(audit_data, "database_path", "audit.database_path")

    max_entries = _get_nested(audit_data, "max_entries", required=False, default=10000)
    _validate_type(max_entries, int, "audit.max_entries")

    housekeeping_interval_seconds = _get_nested(
        audit_data, "housekeeping_interval_seconds", required=False, default=3600
    )
    _validate_type(
        housekeeping_interval_seconds, int, "audit.housekeeping_interval_seconds"
    )

    if max_entries < 1:
        raise ConfigError("audit.max_entries must be >= 1")
    if housekeeping_interval_seconds <= 0:
        raise ConfigError("audit.housekeeping_interval_seconds must be > 0")

    return AuditConfig(
        database_path=database_path,
        max_entries=max_entries,
        housekeeping_interval_seconds=housekeeping_interval_seconds,
    )


def load_config(path: str) -> Config:
    """Load and validate configuration from a YAML file.

    Args:
        path: Path to the YAML configuration file

    Returns:
        Config: Validated configuration object

    Raises:
        ConfigError: If the file cannot be read or configuration is invalid
    """
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"Configuration file not found: {path}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in configuration file: {e}")

    if data is None:
        raise ConfigError("Configuration file is empty")

    if not isinstance(data, dict):
        raise ConfigError("Configuration file must contain a YAML dictionary")

    controller = _load_controller(data)

    return Config(
        controller=controller,
        connections=_load_connections(data, controller.window_ms),
        metrics=_load_metrics(data),
        audit=_load_audit(data),
    )
