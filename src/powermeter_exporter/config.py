import os
import re
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from powermeter_exporter.registers import DEFAULT_ENERGY_SCALE

CONN_ENV_VAR = "POWERMETER_CONN"

_METRIC_NAME_RE = re.compile(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")


def _substitute_env_vars(value: str) -> str:
    """Replace ${ENV_VAR} patterns with environment variable values."""

    def replacer(match: re.Match) -> str:
        var_name = match.group(1)
        env_val = os.environ.get(var_name)
        if env_val is None:
            raise ValueError(f"Environment variable {var_name!r} is not set")
        return env_val

    return re.sub(r"\$\{([^}]+)}", replacer, value)


def _walk_and_substitute(obj: object) -> object:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _walk_and_substitute(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_walk_and_substitute(item) for item in obj]
    return obj


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 9100
    log_level: str = "info"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.lower()
        if v not in ("critical", "error", "warning", "info", "debug"):
            raise ValueError("log_level must be one of critical, error, warning, info, debug")
        return v


class PrometheusFrontendConfig(BaseModel):
    path: str = "/metrics"
    prefix: str = "powermeter"

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("path must start with '/'")
        return v

    @field_validator("prefix")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        if not _METRIC_NAME_RE.match(v):
            raise ValueError("prefix must be a valid Prometheus metric name")
        return v


class FrontendConfig(BaseModel):
    type: str = "prometheus"
    prometheus: PrometheusFrontendConfig = Field(default_factory=PrometheusFrontendConfig)


class ModbusConfig(BaseModel):
    conn: str
    device_id: int = 1
    timeout: float = 5.0
    baudrate: int = 9600
    mode: Literal["on_demand", "interval"] = "on_demand"
    poll_interval: float = 10.0

    @model_validator(mode="before")
    @classmethod
    def conn_from_env(cls, data: Any) -> Any:
        """Fall back to $POWERMETER_CONN when no endpoint is configured."""
        if isinstance(data, dict) and not data.get("conn"):
            env_val = os.environ.get(CONN_ENV_VAR)
            if not env_val:
                raise ValueError(f"{CONN_ENV_VAR} environment variable not set")
            data = {**data, "conn": env_val}
        return data

    @field_validator("device_id")
    @classmethod
    def validate_device_id(cls, v: int) -> int:
        if not 0 <= v <= 247:
            raise ValueError("device_id must be between 0 and 247")
        return v

    @field_validator("timeout", "poll_interval")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be positive")
        return v


class BackendConfig(BaseModel):
    type: str = "modbus"
    modbus: ModbusConfig = Field(default_factory=dict, validate_default=True)


class RegisterOverride(BaseModel):
    scale: float | None = None
    metric: str | None = None
    help: str | None = None


class RegistersConfig(BaseModel):
    energy_scale: float = DEFAULT_ENERGY_SCALE
    overrides: dict[str, RegisterOverride] = Field(default_factory=dict)

    @field_validator("energy_scale")
    @classmethod
    def validate_energy_scale(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("energy_scale must be positive")
        return v


class AppConfig(BaseModel):
    server: ServerConfig = Field(default_factory=ServerConfig)
    frontend: FrontendConfig = Field(default_factory=FrontendConfig)
    backend: BackendConfig = Field(default_factory=BackendConfig)
    registers: RegistersConfig = Field(default_factory=RegistersConfig)


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load and validate configuration from a YAML file.

    Without a path every default applies and the bus endpoint is taken from
    the environment.
    """
    raw = None
    if path is not None:
        path = Path(path)
        with path.open() as f:
            raw = yaml.safe_load(f)

    if raw is None:
        raw = {}

    raw = _walk_and_substitute(raw)
    return AppConfig.model_validate(raw)
