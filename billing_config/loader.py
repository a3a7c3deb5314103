"""
Configuration Loader (``billing_config.loader``).

Responsibility
--------------
Loads a YAML settings file and parses it into a validated, frozen
``BillingSettings``.  Runtime callers go through
``billing_config.get_active_config()`` instead of calling this directly.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown key or invalid value  -> ``ConfigError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from billing_config.schema import BillingSettings, ConfigError

_BILLING_MODES = ("delivered", "upfront")
_RUN_TYPES = ("monthly", "term", "custom", "manual")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    return data or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of the settings mapping."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _require_int(data: dict[str, Any], key: str, minimum: int, nullable: bool = False):
    value = data[key]
    if value is None and nullable:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(key, f"expected an integer, got {value!r}")
    if value < minimum:
        raise ConfigError(key, f"must be >= {minimum}")
    return value


def parse_settings(data: dict[str, Any], name: str = "default") -> BillingSettings:
    """Validate a raw mapping and build BillingSettings.

    Keys absent from ``data`` take the dataclass defaults.
    """
    known = {f.name for f in fields(BillingSettings)} - {"name", "checksum"}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(sorted(unknown)[0], "unknown setting")

    merged = {
        f.name: f.default for f in fields(BillingSettings) if f.name in known
    }
    merged.update(data)

    mode = merged["default_billing_mode"]
    if mode not in _BILLING_MODES:
        raise ConfigError("default_billing_mode", f"must be one of {_BILLING_MODES}")
    run_type = merged["default_run_type"]
    if run_type not in _RUN_TYPES:
        raise ConfigError("default_run_type", f"must be one of {_RUN_TYPES}")

    prefix = merged["invoice_number_prefix"]
    if not isinstance(prefix, str) or not prefix.strip():
        raise ConfigError("invoice_number_prefix", "must be a non-empty string")

    require_email = merged["require_payer_email"]
    if not isinstance(require_email, bool):
        raise ConfigError("require_payer_email", "must be true or false")

    return BillingSettings(
        default_fallback_rate_minor=_require_int(merged, "default_fallback_rate_minor", 0),
        invoice_due_days=_require_int(merged, "invoice_due_days", 0),
        default_cancellation_notice_hours=_require_int(
            merged, "default_cancellation_notice_hours", 0,
        ),
        credit_expiry_days=_require_int(merged, "credit_expiry_days", 1, nullable=True),
        default_billing_mode=mode,
        default_run_type=run_type,
        invoice_number_prefix=prefix.strip(),
        require_payer_email=require_email,
        credit_expiry_warning_days=_require_int(merged, "credit_expiry_warning_days", 0),
        name=name,
        checksum=compute_checksum(merged),
    )


def load_settings_file(path: Path) -> BillingSettings:
    return parse_settings(load_yaml_file(path), name=path.stem)
