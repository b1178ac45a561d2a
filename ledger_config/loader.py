"""
Configuration Loader (``ledger_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into a typed
``ReconciliationConfig``.  The single public entry point for runtime
config is ``ledger_config.get_active_config()``.

Invariants enforced
-------------------
* Every parse error raises ``InvalidConfigurationError`` naming the field;
  no silent defaults for malformed values.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Top-level document not a mapping  -> ``InvalidConfigurationError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import ReconciliationConfig
from ledger_kernel.exceptions import InvalidConfigurationError


@dataclass(frozen=True)
class LoadedConfig:
    """A parsed configuration plus its identity."""

    config: ReconciliationConfig
    checksum: str
    source: str


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        InvalidConfigurationError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise InvalidConfigurationError(str(path), "top-level YAML must be a mapping")
    return data


def parse_config(data: dict[str, Any]) -> ReconciliationConfig:
    return ReconciliationConfig.from_dict(data)


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Postconditions:
        - Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def load_config(path: Path) -> LoadedConfig:
    """Load, parse and fingerprint one configuration file."""
    config = parse_config(load_yaml_file(path))
    return LoadedConfig(
        config=config,
        checksum=compute_checksum(config.to_dict()),
        source=str(path),
    )
