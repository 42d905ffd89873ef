"""Runtime configuration helpers for the SQL data layer."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError
from .mapping import MappingConfig

# dataset source config keys
TABLE_NAME = "table_name"
FLUSH_THRESHOLD = "flush_threshold"
APPEND_MODE = "append_mode"
SINCE_COLUMN = "since_column"
SINCE_PRECISION = "since_precision"
ENTITY_COLUMN = "entity_column"
SINCE_TABLE = "since_table"
DATA_QUERY = "data_query"

DEFAULT_FLUSH_THRESHOLD = 1000
DEFAULT_SINCE_PRECISION = "6"


@dataclass(frozen=True)
class Settings:
    """Immutable container for process configuration."""

    db_host: str
    db_port: int
    db_name: str
    db_user: str
    db_password: str
    db_schema: str
    pool_min: int
    pool_max: int
    itersize: int
    layer_config_path: Optional[Path]
    log_level: str = "INFO"


@dataclass(frozen=True)
class NativeSystemConfig:
    """Connection parameters for the backing PostgreSQL database."""

    host: str = "localhost"
    port: int = 5432
    database: str = ""
    user: str = ""
    password: str = ""
    schema: str = "public"


@dataclass
class DatasetDefinition:
    """One configured dataset: its source options and both mapping directions."""

    name: str
    source_config: Dict[str, Any] = field(default_factory=dict)
    incoming_mapping_config: Optional[MappingConfig] = None
    outgoing_mapping_config: Optional[MappingConfig] = None

    def get_option(self, key: str) -> str:
        """Return a string source option, or ``""`` when unset or not a string."""
        value = self.source_config.get(key)
        if not isinstance(value, str):
            return ""
        return value

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "DatasetDefinition":
        name = payload.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ConfigurationError("dataset definition must include a 'name'")
        source_config = payload.get("source_config") or {}
        if not isinstance(source_config, Mapping):
            raise ConfigurationError(f"source_config for dataset {name} must be an object")
        incoming = payload.get("incoming_mapping_config")
        outgoing = payload.get("outgoing_mapping_config")
        return cls(
            name=name,
            source_config=dict(source_config),
            incoming_mapping_config=(
                MappingConfig.from_mapping(incoming) if incoming is not None else None
            ),
            outgoing_mapping_config=(
                MappingConfig.from_mapping(outgoing) if outgoing is not None else None
            ),
        )


@dataclass
class LayerConfig:
    """Layer-wide configuration: database connection plus dataset definitions."""

    native_system_config: NativeSystemConfig = field(default_factory=NativeSystemConfig)
    dataset_definitions: List[DatasetDefinition] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "LayerConfig":
        native = payload.get("native_system_config") or {}
        if not isinstance(native, Mapping):
            raise ConfigurationError("native_system_config must be an object")
        try:
            native_config = NativeSystemConfig(
                host=str(native.get("host", "localhost")),
                port=int(native.get("port", 5432)),
                database=str(native.get("database", "")),
                user=str(native.get("user", "")),
                password=str(native.get("password", "")),
                schema=str(native.get("schema", "public")),
            )
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"invalid native_system_config: {exc}") from exc

        definitions = payload.get("dataset_definitions") or []
        if not isinstance(definitions, list):
            raise ConfigurationError("dataset_definitions must be a list")
        return cls(
            native_system_config=native_config,
            dataset_definitions=[
                DatasetDefinition.from_mapping(entry) for entry in definitions
            ],
        )


def _as_int(name: str, value: Optional[str], default: int) -> int:
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from exc


def load_settings() -> Settings:
    """Load configuration from the environment (and `.env`)."""
    load_dotenv()
    config_path = os.getenv("LAYER_CONFIG_PATH", "").strip()
    return Settings(
        db_host=os.getenv("PGHOST", "localhost"),
        db_port=_as_int("PGPORT", os.getenv("PGPORT"), 5432),
        db_name=os.getenv("PGDATABASE", ""),
        db_user=os.getenv("PGUSER", "postgres"),
        db_password=os.getenv("PGPASSWORD", ""),
        db_schema=os.getenv("PGSCHEMA", "public"),
        pool_min=_as_int("DB_POOL_MIN", os.getenv("DB_POOL_MIN"), 1),
        pool_max=_as_int("DB_POOL_MAX", os.getenv("DB_POOL_MAX"), 10),
        itersize=_as_int("DB_ITERSIZE", os.getenv("DB_ITERSIZE"), 2000),
        layer_config_path=Path(config_path) if config_path else None,
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )


def load_layer_config(path: Path | str) -> LayerConfig:
    """Read a JSON layer configuration file."""
    config_path = Path(path)
    try:
        raw = config_path.read_text(encoding="utf-8")
        data = json.loads(raw)
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(
            f"failed to load layer config {config_path}: {exc}"
        ) from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"layer config {config_path} must be a JSON object")
    return LayerConfig.from_mapping(data)


def enrich_config(config: LayerConfig) -> LayerConfig:
    """Override connection parameters with `PG*` environment variables when set."""
    native = config.native_system_config
    overrides: Dict[str, Any] = {}
    for env_name, attr in (
        ("PGHOST", "host"),
        ("PGDATABASE", "database"),
        ("PGUSER", "user"),
        ("PGPASSWORD", "password"),
        ("PGSCHEMA", "schema"),
    ):
        value = os.getenv(env_name)
        if value:
            overrides[attr] = value
    port = os.getenv("PGPORT")
    if port:
        overrides["port"] = _as_int("PGPORT", port, native.port)
    if overrides:
        config.native_system_config = replace(native, **overrides)
    return config


__all__ = [
    "APPEND_MODE",
    "DATA_QUERY",
    "DEFAULT_FLUSH_THRESHOLD",
    "DEFAULT_SINCE_PRECISION",
    "DatasetDefinition",
    "ENTITY_COLUMN",
    "FLUSH_THRESHOLD",
    "LayerConfig",
    "NativeSystemConfig",
    "SINCE_COLUMN",
    "SINCE_PRECISION",
    "SINCE_TABLE",
    "Settings",
    "TABLE_NAME",
    "enrich_config",
    "load_layer_config",
    "load_settings",
]
