"""
auth/verification.py -- One-time-code lifecycle for email verification and password reset.

States per (account, purpose):

    NoCode ──issue──> Pending(code, expires_at) ──submit ok──> Verified  (EMAIL_VERIFY)
                            │   ^                 └──submit ok──> Consumed  (PASSWORD_RESET)
                            │   └── reissue (policy below)
                            └── submit wrong/expired: rejected, record untouched

Acceptance: the submitted code equals the stored code exactly and now is
strictly before expires_at. A rejected submission never clears the record, so
the caller can retry until the code is reissued or the account is swept.

Reissue policy differs per purpose:
  EMAIL_VERIFY   -- refused when already verified (AlreadyCompleted) or while
                    a live code exists (AlreadyInProgress); otherwise a fresh
                    code overwrites the stale one.
  PASSWORD_RESET -- always overwrites. A request for an unknown address is
                    a silent no-op so callers cannot probe for accounts.

Email delivery failures are swallowed (logged) only for the first code sent at
registration. Explicit reissues and reset requests surface TransportFailure.

Consumed is reported as the result of a successful reset but is not stored:
once the reset slot is cleared the account reads back as NoCode for that
purpose, ready for the next forgot-password request.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hmac
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Union

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.codes import generate_code, utcnow
from auth.errors import (
    AccountExists,
    AlreadyCompleted,
    AlreadyInProgress,
    InvalidOrExpired,
    NotFound,
    PersistenceUnavailable,
    TransportFailure,
)
from auth.mailer import EmailTransport, compose_code_email
from auth.models import Account, Purpose, VerificationRecord
from auth.store import AccountStore
from core.config import Settings

logger = logging.getLogger("authgate.auth.verification")

Clock = Callable[[], datetime]

# ---------------------------------------------------------------------------
# States
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NoCode:
    pass


@dataclass(frozen=True)
class Pending:
    code: str
    expires_at: datetime

    def is_live(self, now: datetime) -> bool:
        return now < self.expires_at


@dataclass(frozen=True)
class Verified:
    pass


@dataclass(frozen=True)
class Consumed:
    pass


CodeState = Union[NoCode, Pending, Verified, Consumed]


def state_of(account: Account, purpose: Purpose) -> CodeState:
    """Derive the current state of one purpose's code slot on account."""
    if purpose is Purpose.EMAIL_VERIFY:
        if account.is_verified:
            return Verified()
        record = account.email_verification
    else:
        record = account.password_reset
    if record is None:
        return NoCode()
    return Pending(code=record.code, expires_at=record.expires_at)


# ---------------------------------------------------------------------------
# Transitions (pure -- no I/O)
# ---------------------------------------------------------------------------


def check_issue_allowed(state: CodeState, purpose: Purpose, now: datetime) -> None:
    """Raise if a new code for purpose may not be issued from state."""
    if purpose is Purpose.PASSWORD_RESET:
        if isinstance(state, (NoCode, Pending, Consumed)):
            return
        raise TypeError(f"Unexpected password reset state: {state!r}")

    if isinstance(state, Verified):
        raise AlreadyCompleted()
    if isinstance(state, Pending):
        if state.is_live(now):
            raise AlreadyInProgress()
        return
    if isinstance(state, NoCode):
        return
    raise TypeError(f"Unexpected email verification state: {state!r}")


def accept_code(state: CodeState, purpose: Purpose, code: str, now: datetime) -> Verified | Consumed:
    """Return the terminal state reached by submitting code, or raise InvalidOrExpired."""
    if isinstance(state, Pending):
        matches = hmac.compare_digest(state.code.encode("utf-8"), code.encode("utf-8"))
        if matches and state.is_live(now):
            return Verified() if purpose is Purpose.EMAIL_VERIFY else Consumed()
        raise InvalidOrExpired()
    if isinstance(state, (NoCode, Verified, Consumed)):
        raise InvalidOrExpired()
    raise TypeError(f"Unexpected state: {state!r}")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@contextmanager
def _store_call(action: str) -> Iterator[None]:
    """Translate database errors into PersistenceUnavailable, logging the detail."""
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception("Store call failed during %s", action)
        raise PersistenceUnavailable(detail=exc.__class__.__name__) from exc


def _missing_account(purpose: Purpose) -> Exception:
    # Reset codes answer the same for unknown addresses as for wrong codes.
    if purpose is Purpose.PASSWORD_RESET:
        return InvalidOrExpired()
    return NotFound()


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class VerificationService:
    """Runs the one-time-code flows against an AccountStore and an email transport.

    clock is injectable so tests can move time past an expiry without
    sleeping. It must return aware UTC datetimes.
    """

    def __init__(
        self,
        store: AccountStore,
        transport: EmailTransport,
        *,
        email_verify_minutes: int = 3,
        password_reset_minutes: int = 10,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._transport = transport
        self._clock = clock
        self._validity = {
            Purpose.EMAIL_VERIFY: timedelta(minutes=email_verify_minutes),
            Purpose.PASSWORD_RESET: timedelta(minutes=password_reset_minutes),
        }

    @classmethod
    def from_settings(
        cls, store: AccountStore, transport: EmailTransport, settings: Settings, clock: Clock = utcnow
    ) -> VerificationService:
        return cls(
            store,
            transport,
            email_verify_minutes=settings.email_verify_minutes,
            password_reset_minutes=settings.password_reset_minutes,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register(self, account: Account) -> Account:
        """Create account with its first email-verification code and send it.

        account.hashed_password must already be set. A failed email send is
        logged and the account is kept: the user can ask for a new code once
        this one expires.
        """
        now = self._clock()
        account.created_at = now
        account.is_verified = False
        account.email_verification = generate_code(self._validity[Purpose.EMAIL_VERIFY], now)
        account.password_reset = None

        with _store_call("register"):
            if self._store.get_by_email(account.email) is not None:
                raise AccountExists()
            try:
                account.id = self._store.create_account(account)
            except IntegrityError as exc:
                # A concurrent registration for the same address won the insert.
                raise AccountExists() from exc
        logger.info("Account %d registered", account.id)

        try:
            await self._deliver(account.email, Purpose.EMAIL_VERIFY, account.email_verification)
        except TransportFailure:
            logger.warning("Verification email for account %d not sent; code can be reissued after expiry", account.id)
        return account

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    async def issue(self, email: str, purpose: Purpose) -> VerificationRecord | None:
        """Issue a fresh code for purpose and email it.

        Returns the stored record, or None when a password reset was requested
        for an address with no account (nothing is stored or sent).
        """
        now = self._clock()
        with _store_call("issue"):
            account = self._store.get_by_email(email)

        if account is None:
            if purpose is Purpose.PASSWORD_RESET:
                logger.info("Password reset requested for an unknown address")
                return None
            raise NotFound()

        check_issue_allowed(state_of(account, purpose), purpose, now)
        record = generate_code(self._validity[purpose], now)

        with _store_call("issue"):
            if purpose is Purpose.EMAIL_VERIFY:
                written = self._store.replace_stale_record(account.id, purpose, record, now)
            else:
                written = self._store.put_record(account.id, purpose, record)
            if not written:
                # Lost a race against a concurrent reissue, verification, or sweep.
                self._raise_for_lost_issue(email, purpose, now)

        logger.info("Issued %s code for account %d", purpose.value, account.id)
        await self._deliver(email, purpose, record)
        return record

    def _raise_for_lost_issue(self, email: str, purpose: Purpose, now: datetime) -> None:
        fresh = self._store.get_by_email(email)
        if fresh is None:
            raise NotFound()
        check_issue_allowed(state_of(fresh, purpose), purpose, now)
        raise AlreadyInProgress()

    # ------------------------------------------------------------------
    # Submit / check
    # ------------------------------------------------------------------

    def submit(
        self, email: str, purpose: Purpose, code: str, new_password_hash: str | None = None
    ) -> Verified | Consumed:
        """Accept code for purpose and apply its effect exactly once.

        EMAIL_VERIFY marks the account verified. PASSWORD_RESET replaces the
        password hash with new_password_hash (required for that purpose).
        Rejections raise InvalidOrExpired and leave the stored record as is.
        """
        if purpose is Purpose.PASSWORD_RESET and new_password_hash is None:
            raise ValueError("new_password_hash is required to consume a password reset code")

        now = self._clock()
        with _store_call("submit"):
            account = self._store.get_by_email(email)
        if account is None:
            raise _missing_account(purpose)

        outcome = accept_code(state_of(account, purpose), purpose, code, now)
        if isinstance(outcome, Verified):
            updates = {"is_verified": True}
        else:
            updates = {"hashed_password": new_password_hash}

        with _store_call("submit"):
            won = self._store.consume_record(account.id, purpose, code, now, **updates)
        if not won:
            # Another submission or a reissue changed the slot after our read.
            raise InvalidOrExpired()

        logger.info("Account %d completed %s", account.id, purpose.value)
        return outcome

    def check(self, email: str, purpose: Purpose, code: str) -> None:
        """Validate code without consuming it. Raises on rejection, returns None on success.

        Backs the first step of the two-step reset form, where the user
        confirms the code before choosing a new password.
        """
        now = self._clock()
        with _store_call("check"):
            account = self._store.get_by_email(email)
        if account is None:
            raise _missing_account(purpose)
        accept_code(state_of(account, purpose), purpose, code, now)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def _deliver(self, email: str, purpose: Purpose, record: VerificationRecord) -> None:
        minutes = int(self._validity[purpose].total_seconds() // 60)
        subject, text_body, html_body = compose_code_email(purpose, record.code, minutes)
        await self._transport.send(email, subject, text_body, html_body)
