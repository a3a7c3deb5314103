"""Billing run ORM models."""

from billing_batch.models.billing_run import BillingRunModel

__all__ = ["BillingRunModel"]
