"""
Module: billing_kernel.db.types
Responsibility: Column-level validation shared by billing models.
Architecture position: Kernel > DB.  May be imported by models/.
    MUST NOT import from models/, domain/, services/, or selectors/.

Invariants enforced:
    - Currency codes are 3-letter upper-case ISO 4217 codes.
"""


def validate_currency(code: str) -> str:
    """
    Validate and normalise a currency code.

    Raises:
        ValueError: If the code is not three ASCII letters.
    """
    normalized = (code or "").strip().upper()
    if len(normalized) != 3 or not normalized.isascii() or not normalized.isalpha():
        raise ValueError(f"Invalid currency code: {code!r}")
    return normalized
