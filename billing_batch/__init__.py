"""
billing_batch -- Billing run orchestration.

Turns a period's lessons into one invoice per payer with SAVEPOINT
isolation per payer, records per-payer failures in the run summary, and
supports explicit retry of failed payers.

Architecture:
    billing_batch/ is a top-level package.  Nothing in billing_kernel
    imports from billing_batch.

Invariants:
    - SAVEPOINT isolation per payer
    - One invoice per payer per run
    - At most one active run per organisation
    - Clock injection (no datetime.now() calls)
    - Run status derived from cumulative counts
"""
