"""
billing_config -- single public entrypoint for billing configuration.

Responsibility:
    Provides the ONLY way to obtain billing settings at runtime through
    ``get_active_config()``.  No other component reads configuration files
    directly.

Architecture position:
    Configuration.  Sits beside ``billing_kernel`` and below
    ``billing_batch``.  The kernel MUST NEVER import from
    ``billing_config``; the run executor passes plain values into kernel
    services.

Failure modes:
    - ``FileNotFoundError`` -- the requested settings set does not exist.
    - ``ConfigError`` -- a setting is unknown or invalid.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any

from billing_config.loader import load_yaml_file, parse_settings
from billing_config.schema import BillingSettings, ConfigError

_logger = logging.getLogger("billing_kernel.config")

# Default settings sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"


def get_active_config(
    config_dir: Path | None = None,
    overrides: dict[str, Any] | None = None,
    set_name: str = "default",
) -> BillingSettings:
    """The ONLY public configuration entrypoint.

    Args:
        config_dir: Override path to the settings sets directory.
            Defaults to billing_config/sets/.
        overrides: Values applied on top of the file, validated the same
            way (used by tests and the CLI).
        set_name: Settings file stem inside ``config_dir``.

    Raises:
        FileNotFoundError: If the settings file is missing.
        ConfigError: If validation fails.
    """
    sets_dir = Path(config_dir) if config_dir else _DEFAULT_CONFIG_DIR
    path = sets_dir / f"{set_name}.yaml"
    data = load_yaml_file(path)
    if overrides:
        data = {**data, **overrides}

    settings = parse_settings(data, name=set_name)
    _logger.info(
        "BILLING_CONFIG_TRACE",
        extra={
            "config_name": settings.name,
            "checksum": settings.checksum,
            "settings": {
                k: v for k, v in asdict(settings).items() if k not in ("name", "checksum")
            },
        },
    )
    return settings


__all__ = ["BillingSettings", "ConfigError", "get_active_config"]
