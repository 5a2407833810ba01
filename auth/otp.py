"""
auth/otp.py -- One-time numeric passcodes.

secrets.randbelow(10**length) draws uniformly from the whole code space, so
there is no modulo bias toward low codes. The value is formatted with a
fixed-width zero pad; no branch depends on the digits drawn.
"""

from __future__ import annotations

import secrets

DEFAULT_OTP_LENGTH = 6


def generate_otp(length: int = DEFAULT_OTP_LENGTH) -> str:
    """Return a numeric string of exactly `length` digits."""
    if length <= 0:
        length = DEFAULT_OTP_LENGTH
    return f"{secrets.randbelow(10**length):0{length}d}"
