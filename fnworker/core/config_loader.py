"""Worker configuration loading.

Sources, lowest precedence first:
- field defaults
- optional YAML file (``--config`` or FNWORKER_CONFIG_FILE)
- FNWORKER_* environment variables
- command line flags
"""
from __future__ import annotations
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigError
from .logging import LOG_LEVEL, normalize_level
from .transport import DEFAULT_CONNECT_ATTEMPTS, DEFAULT_CONNECT_INTERVAL

ENV_PREFIX = "FNWORKER_"
CONFIG_FILE_ENV = ENV_PREFIX + "CONFIG_FILE"
VALID_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}


class WorkerConfig(BaseModel):
    """Startup settings for a single worker process."""
    handler: str = Field(description="Handler reference, module.sub:callable")
    socket_path: str = Field(description="Unix socket of the event channel")
    control_socket_path: Optional[str] = Field(default=None, description="Unix socket of the control channel")
    log_level: str = LOG_LEVEL
    platform_kind: Literal["local", "kube"] = "local"
    namespace: Optional[str] = None
    trigger_kind: Optional[str] = None
    trigger_name: Optional[str] = None
    worker_id: Optional[str] = None
    decode_event_strings: bool = True
    handler_paths: List[str] = Field(default_factory=list, description="Extra import roots for the handler module")
    connect_attempts: int = Field(default=DEFAULT_CONNECT_ATTEMPTS, ge=1)
    connect_interval: float = Field(default=DEFAULT_CONNECT_INTERVAL, ge=0)

    @field_validator("log_level", mode="before")
    @classmethod
    def _check_log_level(cls, value):
        name = normalize_level(value)
        if name not in VALID_LOG_LEVELS:
            raise ValueError(f"unknown log level {value!r}")
        return name

    @field_validator("worker_id", mode="before")
    @classmethod
    def _worker_id_as_text(cls, value):
        return None if value is None else str(value)

    @field_validator("handler_paths", mode="before")
    @classmethod
    def _split_paths(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [p for p in value.split(os.pathsep) if p]
        return list(value)


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    # allow both snake_case and dashed keys
    return {str(k).replace("-", "_"): v for k, v in data.items()}


def _from_env(environ: Mapping[str, str]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for name in WorkerConfig.model_fields:
        raw = environ.get(ENV_PREFIX + name.upper())
        if raw is not None and raw != "":
            values[name] = raw
    return values


def load_config(overrides: Optional[Mapping[str, Any]] = None,
                config_file: Optional[str] = None,
                environ: Optional[Mapping[str, str]] = None) -> WorkerConfig:
    """Merge every configuration source into a validated ``WorkerConfig``.

    ``overrides`` are the explicit CLI values; ``None`` entries mean "not given"
    and do not shadow lower-precedence sources.
    """
    environ = os.environ if environ is None else environ
    merged: Dict[str, Any] = {}

    config_file = config_file or environ.get(CONFIG_FILE_ENV)
    if config_file:
        merged.update(_read_yaml(Path(config_file)))

    merged.update(_from_env(environ))
    merged.update({k: v for k, v in (overrides or {}).items() if v is not None})

    unknown = set(merged) - set(WorkerConfig.model_fields)
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")

    try:
        return WorkerConfig(**merged)
    except ValidationError as e:
        raise ConfigError(f"Invalid worker configuration: {e}") from e


__all__ = ["WorkerConfig", "load_config", "ENV_PREFIX", "CONFIG_FILE_ENV"]
