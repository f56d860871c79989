"""Application settings loaded from environment variables and config files.

Configuration is loaded from (highest priority first):
1. Environment variables (prefix: ``EXPLORER_``, nested via ``__``)
2. YAML config file (``--config path`` or ``EXPLORER_CONFIG_PATH`` env var)
3. Defaults defined here

Every model is frozen: the ``AppConfig`` built at startup is handed by
reference to each component and never mutated afterwards.
"""

from __future__ import annotations

import enum
from pathlib import Path
from typing import Any, Self

import yaml
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Enums for validated choices
# ---------------------------------------------------------------------------


class DatabaseEngine(enum.StrEnum):
    """Supported database engines."""

    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"


# Human-readable address prefixes
MAINNET_HRP = "sm"
TESTNET_HRP = "stest"

# Bech32 separator + 39 payload/checksum characters
_ADDRESS_BODY_LENGTH = 40


# ---------------------------------------------------------------------------
# Sub-config models
# ---------------------------------------------------------------------------


class NodeConfig(BaseSettings):
    """Blockchain node API endpoints."""

    model_config = SettingsConfigDict(
        env_prefix="EXPLORER_NODE__",
        case_sensitive=False,
        frozen=True,
    )

    public_address: str = Field(
        default="localhost:9092",
        description="Public node API address in format <host>:<port>",
    )
    private_address: str = Field(
        default="localhost:9093",
        description="Private (administrative) node API address in format <host>:<port>",
    )
    timeout: float = 5.0
    use_tls: bool = False

    def url(self, address: str) -> str:
        """Build a base URL for a ``<host>:<port>`` address."""
        if "://" in address:
            return address.rstrip("/")
        scheme = "https" if self.use_tls else "http"
        return f"{scheme}://{address}"


class DatabaseConfig(BaseSettings):
    """Database settings."""

    model_config = SettingsConfigDict(
        env_prefix="EXPLORER_DB__",
        case_sensitive=False,
        frozen=True,
    )

    engine: DatabaseEngine = Field(
        default=DatabaseEngine.SQLITE,
        description="Database backend: sqlite or postgresql",
    )
    dsn: str = Field(
        default="sqlite+aiosqlite:///./explorer.db",
        description="Async database connection string",
    )
    name: str = "explorer"
    max_idle_connections: int = 5
    max_open_connections: int = 10
    debug_sql: bool = False
    operation_timeout: float = 5.0


class NetworkConfig(BaseSettings):
    """Network constants known before the node has been queried."""

    model_config = SettingsConfigDict(
        env_prefix="EXPLORER_NETWORK__",
        case_sensitive=False,
        frozen=True,
    )

    testnet: bool = Field(
        default=False,
        description='Use the testnet preset ("stest" instead of "sm" for wallet addresses)',
    )
    layers_per_epoch: int = Field(default=4032, gt=0)

    @property
    def hrp(self) -> str:
        """Address human-readable prefix for the selected network."""
        return TESTNET_HRP if self.testnet else MAINNET_HRP

    @property
    def address_length(self) -> int:
        """Literal length of an encoded account address (42 on mainnet)."""
        return len(self.hrp) + _ADDRESS_BODY_LENGTH


class SyncConfig(BaseSettings):
    """Synchronization engine, gap backfill and epoch statistics settings."""

    model_config = SettingsConfigDict(
        env_prefix="EXPLORER_SYNC__",
        case_sensitive=False,
        frozen=True,
    )

    from_layer: int | None = Field(
        default=None,
        ge=0,
        description="Replay live sync from this layer instead of the stored watermark",
    )
    sync_missing_layers: bool = True
    atx_sync: bool = True
    recalculate_epoch_stats: bool = False

    max_layers_per_advance: int = Field(default=100, gt=0)
    poll_interval: float = 1.0
    restart_backoff: float = 5.0

    backfill_workers: int = Field(default=4, gt=0)
    backfill_chunk_size: int = Field(default=100, gt=0)
    gap_scan_period: float = 300.0
    gap_retry_base: float = 5.0
    gap_retry_max: float = 600.0


class ServerConfig(BaseSettings):
    """HTTP API server settings."""

    model_config = SettingsConfigDict(
        env_prefix="EXPLORER_SERVER__",
        case_sensitive=False,
        frozen=True,
    )

    host: str = "127.0.0.1"
    port: int = 8080


class MetricsConfig(BaseSettings):
    """Prometheus metrics settings."""

    model_config = SettingsConfigDict(
        env_prefix="EXPLORER_METRICS__",
        case_sensitive=False,
        frozen=True,
    )

    enabled: bool = True
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 9090


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


def _load_yaml(path: str | Path) -> dict[str, Any]:
    """Load a YAML configuration file and return its contents as a dict.

    Returns an empty dict if the file doesn't exist or is empty.
    """
    p = Path(path)
    if not p.exists():
        return {}
    text = p.read_text(encoding="utf-8")
    data = yaml.safe_load(text)
    return data if isinstance(data, dict) else {}


class AppConfig(BaseSettings):
    """Top-level application configuration.

    Loads settings from environment variables (``EXPLORER_`` prefix),
    an optional YAML file, and built-in defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="EXPLORER_",
        env_nested_delimiter="__",
        case_sensitive=False,
        frozen=True,
    )

    debug: bool = False
    version: str = "0.1.0"
    config_path: str = ""
    pid_file: str = "/var/run/explorer-collector"

    node: NodeConfig = Field(default_factory=NodeConfig)
    db: DatabaseConfig = Field(default_factory=DatabaseConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)

    @model_validator(mode="before")
    @classmethod
    def _merge_yaml(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Merge YAML config file contents under the env var overrides."""
        config_path = values.get("config_path", "")
        if not config_path:
            return values
        yaml_data = _load_yaml(config_path)
        # YAML values serve as defaults; env vars (already in *values*) win.
        for key, val in yaml_data.items():
            if key not in values or values[key] is None:
                values[key] = val
            elif isinstance(val, dict) and isinstance(values.get(key), dict):
                merged = {**val, **values[key]}
                values[key] = merged
        return values

    @classmethod
    def from_yaml(cls, path: str | Path) -> Self:
        """Construct ``AppConfig`` loading defaults from a YAML file.

        Environment variables still override YAML values.
        """
        return cls(config_path=str(path))
