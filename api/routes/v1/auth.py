"""
api/routes/v1/auth.py -- Account and one-time-code REST endpoints.

Routes:
  POST /api/v1/auth/register             -- create account, email first code, set JWT cookie
  POST /api/v1/auth/login                -- password login; sets JWT cookie
  POST /api/v1/auth/logout               -- clears cookie; 200
  GET  /api/v1/auth/me                   -- current account (requires auth)
  POST /api/v1/auth/verify-email         -- submit email-verification code
  POST /api/v1/auth/resend-verification  -- reissue email-verification code
  POST /api/v1/auth/forgot-password      -- issue password-reset code (generic reply)
  POST /api/v1/auth/verify-reset-code    -- check a reset code without consuming it
  POST /api/v1/auth/reset-password       -- consume reset code and set new password

Domain errors (auth.errors.AuthFlowError) are not caught here; the handler in
api/main.py turns them into the shared error envelope with the right status.

Security:
  Login and every code route are rate-limited per client IP.
  Login and register responses carry Cache-Control: no-store.
  forgot-password answers identically whether or not the address is registered.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AccountResponse,
    CodeSubmission,
    EmailRequest,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    ResetPasswordRequest,
)
from auth.dependencies import get_current_account
from auth.models import Account, Purpose
from auth.store import AccountStore
from auth.tokens import (
    authenticate_account,
    clear_auth_cookie,
    create_access_token,
    hash_password,
    set_auth_cookie,
)
from auth.verification import VerificationService
from core.config import get_settings

_settings = get_settings()

RESET_REQUESTED_MESSAGE = "If an account exists for that email, a password reset code has been sent."

# Auth policy:
# - GET /api/v1/auth/me: requires auth (get_current_account)
# - everything else: public -- these routes are how a caller becomes authenticated
router = APIRouter()


def _session_response(account: Account, status_code: int) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=AccountResponse.from_account(account).model_dump(),
    )
    set_auth_cookie(resp, create_access_token(account.id, account.email))
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Registration and sessions
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AccountResponse, status_code=201)
@limiter.limit(_settings.login_rate_limit)
async def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an unverified account and email its first verification code.

    The account is kept even if the email cannot be sent; the client can
    request a new code once the first one expires.
    """
    service: VerificationService = request.app.state.verification
    account = await service.register(
        Account(
            email=body.email,
            name=body.name,
            hashed_password=hash_password(body.password),
            phone_country_code=body.phone_country_code,
            phone_number=body.phone_number,
        )
    )
    return _session_response(account, status_code=201)


@router.post("/auth/login", response_model=AccountResponse)
@limiter.limit(_settings.login_rate_limit)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set JWT cookie.

    Wrong email and wrong password produce the same response.
    """
    store: AccountStore = request.app.state.account_store
    account = authenticate_account(store, body.email, body.password)
    if account is None:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid email or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp
    return _session_response(account, status_code=200)


@router.post("/auth/logout", response_model=MessageResponse)
async def logout() -> JSONResponse:
    """Clear the JWT cookie."""
    resp = JSONResponse(content=MessageResponse(message="Logged out successfully").model_dump())
    clear_auth_cookie(resp)
    return resp


@router.get("/auth/me", response_model=AccountResponse)
async def me(current_account: Account = Depends(get_current_account)) -> AccountResponse:
    return AccountResponse.from_account(current_account)


# ---------------------------------------------------------------------------
# Email verification
# ---------------------------------------------------------------------------


@router.post("/auth/verify-email", response_model=MessageResponse)
@limiter.limit(_settings.code_rate_limit)
def verify_email(request: Request, body: CodeSubmission) -> MessageResponse:
    service: VerificationService = request.app.state.verification
    service.submit(body.email, Purpose.EMAIL_VERIFY, body.code)
    return MessageResponse(message="Email verified successfully")


@router.post("/auth/resend-verification", response_model=MessageResponse)
@limiter.limit(_settings.code_rate_limit)
async def resend_verification(request: Request, body: EmailRequest) -> MessageResponse:
    """Reissue the verification code once the previous one has expired.

    Unlike registration, a failed email send here is reported to the caller.
    """
    service: VerificationService = request.app.state.verification
    await service.issue(body.email, Purpose.EMAIL_VERIFY)
    return MessageResponse(
        message="Verification code sent",
        expires_in_seconds=_settings.email_verify_minutes * 60,
    )


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post("/auth/forgot-password", response_model=MessageResponse)
@limiter.limit(_settings.code_rate_limit)
async def forgot_password(request: Request, body: EmailRequest) -> MessageResponse:
    service: VerificationService = request.app.state.verification
    await service.issue(body.email, Purpose.PASSWORD_RESET)
    return MessageResponse(message=RESET_REQUESTED_MESSAGE)


@router.post("/auth/verify-reset-code", response_model=MessageResponse)
@limiter.limit(_settings.code_rate_limit)
def verify_reset_code(request: Request, body: CodeSubmission) -> MessageResponse:
    """Confirm a reset code is valid without consuming it."""
    service: VerificationService = request.app.state.verification
    service.check(body.email, Purpose.PASSWORD_RESET, body.code)
    return MessageResponse(message="Code verified successfully")


@router.post("/auth/reset-password", response_model=MessageResponse)
@limiter.limit(_settings.code_rate_limit)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    service: VerificationService = request.app.state.verification
    service.submit(
        body.email,
        Purpose.PASSWORD_RESET,
        body.code,
        new_password_hash=hash_password(body.new_password),
    )
    return MessageResponse(message="Password has been reset successfully")
