"""
obligation_config -- single public entrypoint for engine settings.

Responsibility:
    Provides the ONLY way to obtain settings at runtime through
    ``get_active_settings()``.  Services receive plain values from the
    caller; nothing under ``obligation_kernel`` reads files or environment
    variables.

Invariants enforced:
    - Layering: packaged ``defaults.yaml`` < override file (argument or
      ``OBLIGATION_CONFIG``) < ``OBLIGATION_DATABASE_URL``.
    - Every returned ``EngineSettings`` has passed ``validate()``.

Failure modes:
    - ``FileNotFoundError`` -- override file does not exist.
    - ``ValueError`` -- unknown keys or invalid values.

Audit relevance:
    Every successful call emits an ``OBLIGATION_CONFIG_TRACE`` log entry
    with the checksum of the effective settings, tying each run to the
    configuration that governed it.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from obligation_config.loader import build_settings, compute_checksum, flatten, load_yaml_file
from obligation_config.schema import EngineSettings

_logger = logging.getLogger("obligation_kernel.config")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

CONFIG_ENV_VAR = "OBLIGATION_CONFIG"
DATABASE_URL_ENV_VAR = "OBLIGATION_DATABASE_URL"


def get_active_settings(config_path: Path | str | None = None) -> EngineSettings:
    """The ONLY public settings entrypoint.

    Args:
        config_path: Override file.  Defaults to ``$OBLIGATION_CONFIG`` when
            set, otherwise only the packaged defaults apply.

    Returns:
        Validated, frozen EngineSettings.
    """
    layers = [flatten(load_yaml_file(DEFAULTS_PATH), str(DEFAULTS_PATH))]

    override = config_path or os.environ.get(CONFIG_ENV_VAR)
    if override:
        override_path = Path(override)
        layers.append(flatten(load_yaml_file(override_path), str(override_path)))

    env_url = os.environ.get(DATABASE_URL_ENV_VAR)
    if env_url:
        layers.append({"database_url": env_url})

    settings = build_settings(*layers)

    _logger.info(
        "OBLIGATION_CONFIG_TRACE",
        extra={
            "trace_type": "OBLIGATION_CONFIG_TRACE",
            "checksum": compute_checksum(settings),
            "override_file": str(override) if override else None,
            "database_dialect": settings.database_url.split(":", 1)[0],
            "max_depth": settings.max_depth,
            "overpay_policy": settings.overpay_policy,
        },
    )
    return settings


__all__ = ["EngineSettings", "get_active_settings"]
