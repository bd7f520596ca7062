"""
auth/codes.py -- One-time code generation.

Codes are drawn from the secrets CSPRNG so they cannot be predicted within
their validity window. If the OS randomness source is unavailable, secrets
raises and the error propagates: there is no fallback to a predictable source.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

from auth.models import VerificationRecord

CODE_DIGITS = 6
_CODE_SPACE = 10**CODE_DIGITS


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_code(validity: timedelta, now: datetime | None = None) -> VerificationRecord:
    """Return a fresh record holding a zero-padded 6-digit code.

    expires_at is now + validity. now defaults to the current UTC time; pass
    it explicitly when the caller owns an injected clock.
    """
    issued_at = now if now is not None else utcnow()
    code = f"{secrets.randbelow(_CODE_SPACE):0{CODE_DIGITS}d}"
    return VerificationRecord(code=code, expires_at=issued_at + validity)
