"""
ledger_config -- single public entrypoint for reconciliation configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Engines and services receive the returned
    ``ReconciliationConfig`` by injection; they never read files.

Architecture position:
    Configuration.  Sits above ``ledger_kernel`` and below
    ``ledger_engines`` / ``ledger_services``.  The kernel MUST NEVER import
    from ``ledger_config``.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``LEDGER_CONFIG_TRACE`` log entry containing the config_id, version,
    checksum and source path.
"""

from __future__ import annotations

import logging
from pathlib import Path

from ledger_config.loader import LoadedConfig, compute_checksum, load_config
from ledger_config.schema import DEFAULT_CATEGORY_NAMES, ReconciliationConfig

_logger = logging.getLogger("ledger.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"

__all__ = [
    "DEFAULT_CATEGORY_NAMES",
    "DEFAULT_CONFIG_PATH",
    "LoadedConfig",
    "ReconciliationConfig",
    "compute_checksum",
    "get_active_config",
    "load_config",
]


def get_active_config(path: Path | str | None = None) -> ReconciliationConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: YAML file to load.  Defaults to the packaged defaults.yaml.

    Raises:
        FileNotFoundError: If the file does not exist.
        InvalidConfigurationError: If a value fails validation.
    """
    loaded = load_config(Path(path) if path is not None else DEFAULT_CONFIG_PATH)

    _logger.info(
        "LEDGER_CONFIG_TRACE",
        extra={
            "trace_type": "LEDGER_CONFIG_TRACE",
            "config_id": loaded.config.config_id,
            "config_version": loaded.config.version,
            "checksum": loaded.checksum,
            "source": loaded.source,
        },
    )

    return loaded.config
