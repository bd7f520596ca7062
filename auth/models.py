"""
auth/models.py -- Domain dataclasses for accounts and one-time codes.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these only own the domain shape.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Purpose(str, Enum):
    """Which flow a one-time code belongs to. Each purpose has its own slot."""

    EMAIL_VERIFY = "email_verify"
    PASSWORD_RESET = "password_reset"


@dataclass(frozen=True)
class VerificationRecord:
    """An outstanding one-time code and the instant it stops being accepted.

    A record is either fully present (this object) or fully absent (None on
    the owning Account). A record whose expires_at has passed is stale: it is
    still stored, but submissions against it are rejected.
    """

    code: str  # 6 decimal digits, zero-padded
    expires_at: datetime  # aware UTC


@dataclass
class Account:
    """A registered identity.

    email is the lookup key for every code flow; the API layer lower-cases and
    strips it before it reaches the store. is_verified stays False until an
    email-verification code is accepted.

    id and created_at are None before the record is written to the database.
    """

    email: str
    name: str
    hashed_password: str
    id: int | None = None
    phone_country_code: str | None = None
    phone_number: str | None = None
    is_verified: bool = False
    created_at: datetime | None = None
    email_verification: VerificationRecord | None = None
    password_reset: VerificationRecord | None = None
