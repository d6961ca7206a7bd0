"""
Configuration loader (``costing_config.loader``).

Responsibility
--------------
Reads a YAML configuration file and parses it into the frozen dataclasses of
``costing_config.schema``.  Runtime callers go through
``costing_config.get_active_config()``; this module is its implementation.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required sections  -> ``KeyError``.
* Invalid values  -> ``ValueError`` from the schema dataclasses.

Audit relevance
---------------
``compute_checksum`` produces a deterministic SHA-256 over the parsed
content so the configuration that governed a costing run is identifiable.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from costing_config.schema import (
    AgingBucketDef,
    AgingSettings,
    CostingConfig,
    CostingSettings,
    DatabaseSettings,
)


def _decimal(value: Any, key: str) -> Decimal:
    if isinstance(value, float):
        # YAML floats lose precision; require quoted strings or ints
        raise ValueError(f"{key} must be written as a quoted decimal string, got {value!r}")
    return Decimal(str(value))


def parse_costing(data: dict[str, Any]) -> CostingSettings:
    return CostingSettings(
        home_currency=data["home_currency"],
        cost_decimal_places=int(data.get("cost_decimal_places", 9)),
        price_decimal_places=int(data.get("price_decimal_places", 2)),
        default_wholesale_margin_pct=_decimal(
            data.get("default_wholesale_margin_pct", "20"), "default_wholesale_margin_pct"
        ),
        default_retail_margin_pct=_decimal(
            data.get("default_retail_margin_pct", "50"), "default_retail_margin_pct"
        ),
    )


def parse_aging(data: dict[str, Any]) -> AgingSettings:
    buckets = tuple(
        AgingBucketDef(
            name=str(b["name"]),
            min_days=int(b["min_days"]),
            risk=str(b["risk"]),
        )
        for b in data["buckets"]
    )
    return AgingSettings(buckets=buckets)


def parse_database(data: dict[str, Any] | None) -> DatabaseSettings:
    if not data:
        return DatabaseSettings()
    return DatabaseSettings(
        url=str(data.get("url", DatabaseSettings.url)),
        echo=bool(data.get("echo", False)),
        pool_size=int(data.get("pool_size", 20)),
        max_overflow=int(data.get("max_overflow", 10)),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of the raw configuration mapping."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def load_yaml(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file {path} must contain a mapping")
    return data


def parse_config(data: dict[str, Any], source: str = "") -> CostingConfig:
    return CostingConfig(
        costing=parse_costing(data["costing"]),
        aging=parse_aging(data["aging"]),
        database=parse_database(data.get("database")),
        checksum=compute_checksum(data),
        source=source,
    )


def load_config(path: Path) -> CostingConfig:
    return parse_config(load_yaml(path), source=str(path))
