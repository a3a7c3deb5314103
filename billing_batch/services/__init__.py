"""Billing run services."""

from billing_batch.services.run_executor import BillingRunExecutor
from billing_batch.services.run_guard import OrgRunGuard, default_run_guard

__all__ = ["BillingRunExecutor", "OrgRunGuard", "default_run_guard"]
