"""Phone + verification-code authentication endpoints.

- POST /send-code: issue and deliver a code (public)
- POST /login: verify a code, register on first login, issue a token (public)
- POST /complete-registration: confirm registration (no-op once logged in)
- GET /me: current identity
- POST /maintenance/sweep: run one expired-code sweep (admin)

Security considerations:
- Per-phone resend interval in the service, per-IP slowapi limits here
- Failure messages never say more than "account not found" already does
- Codes are never echoed back or logged
"""

from fastapi import APIRouter, Request
from pydantic import BaseModel, ConfigDict, Field

from smsauth.api.deps import AdminIdentity, CurrentIdentity, Services
from smsauth.core.config import settings
from smsauth.core.errors import ValidationError
from smsauth.core.rate_limiting import limiter
from smsauth.core.responses import DataResponse

# Mainland mobile number, or any E.164 number
_PHONE_PATTERN = r"^(1[3-9]\d{9}|\+[1-9]\d{6,14})$"

router = APIRouter()


# ===================================================================
# Request models
# ===================================================================


class SendCodeRequest(BaseModel):
    """Request body for POST /auth/send-code."""

    model_config = ConfigDict(extra="forbid")

    phone: str = Field(pattern=_PHONE_PATTERN)


class LoginRequest(BaseModel):
    """Request body for POST /auth/login."""

    model_config = ConfigDict(extra="forbid")

    phone: str = Field(pattern=_PHONE_PATTERN)
    code: str = Field(pattern=r"^\d+$", min_length=1, max_length=10)


class CompleteRegistrationRequest(BaseModel):
    """Request body for POST /auth/complete-registration."""

    model_config = ConfigDict(extra="forbid")

    nickname: str | None = Field(None, min_length=1, max_length=50)


# ===================================================================
# POST /auth/send-code
# ===================================================================


@router.post("/send-code")
@limiter.limit(lambda: settings.rate_limit_send_code)
async def send_code(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: SendCodeRequest,
    services: Services,
) -> DataResponse[dict]:
    """Send a verification code by SMS.

    Creates a provisional identity for unseen numbers. Returns 429 with
    ``remaining_seconds`` inside the resend interval and 503 when the SMS
    provider rejects the message.
    """
    await services.verification.send_code(body.phone)
    return DataResponse(data={"sent": True})


# ===================================================================
# POST /auth/login
# ===================================================================


@router.post("/login")
@limiter.limit(lambda: settings.rate_limit_login)
async def login(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: LoginRequest,
    services: Services,
) -> DataResponse[dict]:
    """Verify the code and issue a session token.

    The first successful login promotes a provisional identity to a user.
    """
    if len(body.code) != services.config.code_length:
        raise ValidationError(
            f"Verification code must be {services.config.code_length} digits"
        )

    result = await services.login.verify_and_login(body.phone, body.code)
    return DataResponse(
        data={
            "identity": result.identity.to_response(),
            "token": result.token.token,
            "expires_at": result.token.expires_at.isoformat(),
        }
    )


# ===================================================================
# POST /auth/complete-registration
# ===================================================================


@router.post("/complete-registration")
async def complete_registration(
    body: CompleteRegistrationRequest,
    identity: CurrentIdentity,
    services: Services,
) -> DataResponse[dict]:
    """Complete registration for the caller. Idempotent.

    Login already promotes provisional identities and CurrentIdentity
    rejects provisional callers, so every caller reaching this handler is
    registered: the snapshot comes back unchanged and ``nickname`` is
    ignored. Kept so clients can confirm registration explicitly.
    """
    snapshot = await services.login.complete_registration(
        identity.id, nickname=body.nickname
    )
    return DataResponse(data=snapshot.to_response())


# ===================================================================
# GET /auth/me
# ===================================================================


@router.get("/me")
async def me(identity: CurrentIdentity) -> DataResponse[dict]:
    """Return the authenticated identity."""
    return DataResponse(data=identity.to_response())


# ===================================================================
# POST /auth/maintenance/sweep
# ===================================================================


@router.post("/maintenance/sweep")
async def sweep_expired_codes(
    _admin: AdminIdentity,
    services: Services,
) -> DataResponse[dict]:
    """Run one expired-code sweep immediately."""
    result = await services.sweeper.run_once()
    return DataResponse(
        data={
            "cleared": result.cleared,
            "finished_at": result.finished_at.isoformat(),
        }
    )
