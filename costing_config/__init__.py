"""
costing_config -- single public entrypoint for costing configuration.

Responsibility:
    ``get_active_config()`` is the only way runtime code obtains
    configuration.  Services receive the returned ``CostingConfig`` through
    their constructors and never read files or environment variables.

Failure modes:
    - ``FileNotFoundError`` -- the requested configuration file is missing.
    - ``ValueError`` -- schema validation failed.

Audit relevance:
    Every successful load emits a ``COSTING_CONFIG_TRACE`` log entry with the
    source path and checksum, tying costing runs to the configuration that
    governed them.
"""

from __future__ import annotations

import logging
from pathlib import Path

from costing_config.loader import load_config
from costing_config.schema import (
    AgingBucketDef,
    AgingSettings,
    CostingConfig,
    CostingSettings,
    DatabaseSettings,
)

_logger = logging.getLogger("costing_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(config_path: Path | None = None) -> CostingConfig:
    """Load, validate and return the costing configuration.

    Args:
        config_path: YAML file to load.  Defaults to the packaged
            ``defaults.yaml``.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    config = load_config(path)

    _logger.info(
        "COSTING_CONFIG_TRACE",
        extra={
            "trace_type": "COSTING_CONFIG_TRACE",
            "source": config.source,
            "checksum": config.checksum,
            "home_currency": config.costing.home_currency,
            "bucket_count": len(config.aging.buckets),
        },
    )
    return config


__all__ = [
    "get_active_config",
    "CostingConfig",
    "CostingSettings",
    "AgingSettings",
    "AgingBucketDef",
    "DatabaseSettings",
    "DEFAULT_CONFIG_PATH",
]
