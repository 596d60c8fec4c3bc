"""API error classes.

Every failure the service can report is an ``APIError`` subclass carrying a
machine-readable code and an HTTP status. The exception handler in
``smsauth.main`` turns them into the standard error envelope.

Verification failures (rate limit, missing/expired/mismatched code, unknown
identity) are expected business outcomes: typed, caught by the handler, and
mapped to distinct statuses. ``DecryptionFailureError`` is internal-class and
always surfaces as a 500.
"""


class APIError(Exception):
    """Base class for API errors.

    Attributes:
        code: Machine-readable error code (e.g., "NOT_FOUND").
        message: Human-readable error message.
        status_code: HTTP status code to return.
        details: Optional list of additional error details.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: list[dict] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class ValidationError(APIError):
    """Field validation failed (400)."""

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=400,
            details=details,
        )


class UnauthorizedError(APIError):
    """Authentication required (401).

    Security: the message never says WHY auth failed (expired, bad
    signature, unknown identity).
    """

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(
            code="UNAUTHORIZED",
            message=message,
            status_code=401,
        )


class ForbiddenError(APIError):
    """Authenticated but not allowed (403)."""

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(
            code="FORBIDDEN",
            message=message,
            status_code=403,
        )


class AdminRequiredError(ForbiddenError):
    """Admin role required (403)."""

    def __init__(self) -> None:
        APIError.__init__(
            self,
            code="ADMIN_REQUIRED",
            message="Admin access required",
            status_code=403,
        )


class InternalError(APIError):
    """Unexpected server error (500).

    Never expose stack traces or internal detail to clients.
    """

    def __init__(self, message: str = "An unexpected error occurred") -> None:
        super().__init__(
            code="INTERNAL_ERROR",
            message=message,
            status_code=500,
        )


# =============================================================================
# Verification-code errors
# =============================================================================


class RateLimitedError(APIError):
    """A code was sent to this phone too recently (429).

    Args:
        remaining_seconds: Whole seconds until another code may be sent.
    """

    def __init__(self, remaining_seconds: int) -> None:
        self.remaining_seconds = remaining_seconds
        super().__init__(
            code="RATE_LIMITED",
            message=f"Please wait {remaining_seconds} seconds before requesting a new code",
            status_code=429,
            details=[{"remaining_seconds": remaining_seconds}],
        )


class DeliveryFailedError(APIError):
    """The SMS provider did not accept the code (503).

    The code stays persisted and the resend window still applies.
    """

    def __init__(self, message: str = "Failed to send verification code") -> None:
        super().__init__(
            code="DELIVERY_FAILED",
            message=message,
            status_code=503,
        )


class IdentityNotFoundError(APIError):
    """No active identity for the phone number or id (404)."""

    def __init__(self) -> None:
        super().__init__(
            code="NOT_FOUND",
            message="Account not found",
            status_code=404,
        )


class CodeNotRequestedError(APIError):
    """No pending code for this identity (400)."""

    def __init__(self) -> None:
        super().__init__(
            code="CODE_NOT_REQUESTED",
            message="Please request a verification code first",
            status_code=400,
        )


class CodeExpiredError(APIError):
    """The pending code passed its expiry and was cleared (400)."""

    def __init__(self) -> None:
        super().__init__(
            code="CODE_EXPIRED",
            message="Verification code expired, please request a new one",
            status_code=400,
        )


class CodeMismatchError(APIError):
    """Submitted code differs from the pending one (400)."""

    def __init__(self) -> None:
        super().__init__(
            code="CODE_MISMATCH",
            message="Incorrect verification code",
            status_code=400,
        )


class DecryptionFailureError(InternalError):
    """Stored phone ciphertext failed integrity or key check (500).

    Signals data or key corruption. Never swallowed; the message stays
    generic so nothing about the key leaks to clients.
    """


class RegistrationFailureError(APIError):
    """Completing a provisional identity failed (500)."""

    def __init__(self, message: str = "Failed to complete registration") -> None:
        super().__init__(
            code="REGISTRATION_FAILED",
            message=message,
            status_code=500,
        )
