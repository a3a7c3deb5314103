"""
Billing configuration schema (``billing_config.schema``).

Frozen dataclasses describing a validated settings set.  Instances are
only produced by ``billing_config.loader.parse_settings``; callers obtain
them through ``billing_config.get_active_config()``.
"""

from __future__ import annotations

from dataclasses import dataclass


class ConfigError(ValueError):
    """A settings file is missing a key or holds an invalid value."""

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid billing setting {key!r}: {reason}")


@dataclass(frozen=True)
class BillingSettings:
    """Validated billing settings.

    Attributes:
        default_fallback_rate_minor: Price used when no rate card matches.
        invoice_due_days: Days from issue date to due date.
        default_cancellation_notice_hours: Notice needed for a make-up
            credit when the organisation sets none.
        credit_expiry_days: Lifetime of cancellation credits; None = never.
        default_billing_mode: "delivered" or "upfront".
        default_run_type: Run type recorded when a request gives none.
        invoice_number_prefix: Prefix of per-org invoice numbers.
        require_payer_email: Refuse to invoice payers without an e-mail.
        credit_expiry_warning_days: Window used by the expiry warning report.
    """

    default_fallback_rate_minor: int = 3000
    invoice_due_days: int = 14
    default_cancellation_notice_hours: int = 24
    credit_expiry_days: int | None = 90
    default_billing_mode: str = "delivered"
    default_run_type: str = "manual"
    invoice_number_prefix: str = "INV"
    require_payer_email: bool = True
    credit_expiry_warning_days: int = 3
    name: str = "default"
    checksum: str = ""
