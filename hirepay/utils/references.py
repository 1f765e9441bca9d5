"""Generators for business references"""

import secrets
import string
import time
import uuid
from datetime import datetime

_BASE36 = string.digits + string.ascii_uppercase


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def _random_suffix(length: int = 6) -> str:
    return "".join(secrets.choice(_BASE36) for _ in range(length))


def generate_transaction_ref() -> str:
    """TXN + base36 millisecond timestamp + 8 hex chars, e.g. TXNLZ3K9Q2A4F1C9B7E"""
    timestamp = to_base36(int(time.time() * 1000))
    return f"TXN{timestamp}{uuid.uuid4().hex[:8].upper()}"


def generate_contract_number(now: datetime | None = None) -> str:
    """CON + YYMM + 6 random chars"""
    now = now or datetime.now()
    return f"CON{now:%y%m}{_random_suffix()}"


def generate_preapproval_reference() -> str:
    return f"PREAPPR-{int(time.time() * 1000)}-{_random_suffix()}"
