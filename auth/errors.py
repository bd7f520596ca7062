"""
auth/errors.py -- Exception taxonomy for the account and one-time-code flows.

Every error carries a stable machine-readable code and a human message. The
API layer maps each class to an HTTP status in one exception handler, so
services raise these and never touch HTTP concepts.

Layer rule: no imports from api/.
"""

from __future__ import annotations


class AuthFlowError(Exception):
    """Base class for errors recovered at the request boundary."""

    code = "auth_error"
    message = "The request could not be completed."

    def __init__(self, message: str | None = None, detail: str | None = None) -> None:
        self.message = message or self.message
        self.detail = detail
        super().__init__(self.message)


class NotFound(AuthFlowError):
    code = "not_found"
    message = "Account not found."


class AccountExists(AuthFlowError):
    code = "account_exists"
    message = "User already exists."


class AlreadyInProgress(AuthFlowError):
    """An email-verification code is still live; wait for it to expire."""

    code = "already_in_progress"
    message = "A verification code was already sent. Please wait until it expires before requesting a new one."


class AlreadyCompleted(AuthFlowError):
    code = "already_completed"
    message = "This email address is already verified."


class InvalidOrExpired(AuthFlowError):
    code = "invalid_or_expired"
    message = "Invalid or expired code."


class TransportFailure(AuthFlowError):
    code = "email_failed"
    message = "The email could not be sent. Please try again later."


class PersistenceUnavailable(AuthFlowError):
    code = "store_unavailable"
    message = "The service is temporarily unavailable."


class SweepTickFailure(Exception):
    """A sweeper tick failed. Logged and kept on the sweeper; never propagated."""
