"""
PaymentGateway protocol.

The card processor is an external collaborator.  The kernel only knows
this interface; PaymentRecorder.collect_payment() drives it and records a
payment when the charge succeeds.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable

from billing_kernel.domain.dtos import PayerRef


class ChargeOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REQUIRES_ACTION = "requires_action"  # e.g. 3-D Secure challenge


@dataclass(frozen=True)
class ChargeResult:
    outcome: ChargeOutcome
    provider_reference: str | None = None
    message: str | None = None


@runtime_checkable
class PaymentGateway(Protocol):
    """
    Contract:
        ``charge()`` attempts to take ``amount_minor`` from the payer and
        reports the outcome.  It must not raise for a declined card; only
        transport-level problems propagate as exceptions.
    """

    def charge(self, payer_ref: PayerRef, amount_minor: int) -> ChargeResult:
        ...
