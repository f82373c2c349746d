from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

DEFAULT_PARAMS_PATH = "params.yaml"
TRUTHY = {"1", "true", "yes", "y", "on"}


def is_truthy(value: str | None) -> bool:
    if not value:
        return False
    return value.strip().lower() in TRUTHY


def parse_settings(raw: str | None) -> dict[str, str]:
    """Parse ``"threads=4 memory_limit=2GB"`` into a DuckDB config dict."""
    settings: dict[str, str] = {}
    if not raw:
        return settings
    for pair in raw.split():
        key, sep, value = pair.partition("=")
        if not sep or not key:
            logger.warning("Ignoring malformed DUCKDB_SETTINGS entry: %r", pair)
            continue
        settings[key] = value
    return settings


def chess_ext_is_local(params_path: str | Path) -> bool:
    """True when params.yaml pins a locally built (unsigned) chess extension."""
    path = Path(params_path)
    if not path.exists():
        return False
    try:
        with open(path, "r", encoding="utf-8") as fh:
            params = yaml.safe_load(fh) or {}
    except yaml.YAMLError as e:
        logger.warning("Could not parse %s: %s", path, e)
        return False
    if not isinstance(params, dict):
        return False
    version = params.get("chess_ext_version")
    return version is not None and "local" in str(version).lower()


@dataclass(frozen=True)
class PipelineConfig:
    duckdb_unsigned: bool = False
    duckdb_settings: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_environment(cls, params_path: str | Path = DEFAULT_PARAMS_PATH) -> "PipelineConfig":
        """Build the process-wide config once; callers pass it down explicitly."""
        unsigned = chess_ext_is_local(params_path) or is_truthy(os.getenv("DUCKDB_UNSIGNED"))
        return cls(
            duckdb_unsigned=unsigned,
            duckdb_settings=parse_settings(os.getenv("DUCKDB_SETTINGS")),
        )

    def duckdb_config(self) -> dict[str, str]:
        config = dict(self.duckdb_settings)
        if self.duckdb_unsigned:
            config["allow_unsigned_extensions"] = "true"
        return config
