"""
Settings loader (``school_config.loader``).

Reads the YAML settings file into a plain dict and fingerprints it.  No
service calls this directly; the public entry point is
``school_config.load_settings()``.

Failure modes:
    * Missing file       -> ``FileNotFoundError`` propagates.
    * Malformed YAML     -> ``yaml.YAMLError`` propagates.
    * Top level not a mapping -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load one YAML file; an empty file gives an empty dict."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of the settings, for the config trace."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
