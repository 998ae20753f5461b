"""
Receipt number generation.
Format: prefix + base36 millisecond timestamp + 4 random alphanumeric, e.g. RCP-MB1X2K3Q-7KQ2.
Uniqueness is enforced by the payments.receipt_number constraint; a clash surfaces as a retryable conflict.
"""

import secrets
import string
import time

_ALPHABET = string.digits + string.ascii_uppercase


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_ALPHABET[rem])
    return "".join(reversed(digits))


def generate_receipt_number(prefix: str = "RCP") -> str:
    timestamp = _base36(int(time.time() * 1000))
    random_part = "".join(secrets.choice(_ALPHABET) for _ in range(4))
    return f"{prefix}-{timestamp}-{random_part}"
