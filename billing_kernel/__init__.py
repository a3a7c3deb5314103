"""
Billing Kernel

Lesson billing and make-up credit reconciliation for a music-school SaaS:
- Idempotent payer grouping (one invoice per payer per run)
- Atomic per-payer invoice assembly
- Monotonic make-up credit lifecycle with compare-and-set redemption
- Non-negative invoice totals in integer minor units
- Payment reconciliation against issued invoices
"""

__version__ = "0.1.0"
