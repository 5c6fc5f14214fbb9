"""
school_config -- the single public entry point for ledger settings.

``load_settings()`` is the only way the rest of the system obtains
configuration.  Resolution order, later wins:

    1. ``LedgerSettings`` field defaults
    2. the YAML file (``path`` argument, else ``SCHOOL_LEDGER_CONFIG``,
       else the bundled ``defaults/ledger.yaml``)
    3. environment overrides:
         SCHOOL_LEDGER_DATABASE_URL   -> database_url
         SCHOOL_LEDGER_LOG_LEVEL      -> log_level

Every successful load emits a ``SCHOOL_CONFIG_TRACE`` log record with the
source path and a checksum of the effective values.

The kernel MUST NOT import from this package; services receive a
``LedgerSettings`` instance from their caller.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from school_config.loader import compute_checksum, load_yaml_file
from school_config.settings import LedgerSettings

_logger = logging.getLogger("school_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults" / "ledger.yaml"

CONFIG_PATH_ENV = "SCHOOL_LEDGER_CONFIG"

ENV_OVERRIDES = {
    "SCHOOL_LEDGER_DATABASE_URL": "database_url",
    "SCHOOL_LEDGER_LOG_LEVEL": "log_level",
}


def load_settings(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> LedgerSettings:
    """
    Load and validate ledger settings.

    Raises:
        FileNotFoundError: explicit path does not exist.
        yaml.YAMLError: malformed YAML.
        ValueError: unknown keys or invalid values.
    """
    env = os.environ if environ is None else environ

    if path is None:
        path = env.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH
    source = Path(path)

    data = load_yaml_file(source)
    for env_name, field_name in ENV_OVERRIDES.items():
        value = env.get(env_name)
        if value:
            data[field_name] = value

    settings = LedgerSettings.from_dict(data)

    effective = dict(data)
    effective.pop("database_url", None)  # may carry credentials
    _logger.info(
        "SCHOOL_CONFIG_TRACE",
        extra={
            "trace_type": "SCHOOL_CONFIG_TRACE",
            "config_source": str(source),
            "checksum": compute_checksum(effective),
            "env_overrides": sorted(k for k in ENV_OVERRIDES if env.get(k)),
        },
    )
    return settings


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "LedgerSettings",
    "load_settings",
]
