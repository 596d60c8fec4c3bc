"""Phone + code login on top of the verification service.

verify_and_login: verify the code, finish registration for provisional
identities, then issue a role-scoped session token.

authenticate: resolve a bearer token back to a live, registered identity.
"""

import logging
import uuid
from dataclasses import dataclass

from smsauth.core.auth import IssuedToken, TokenIssuer
from smsauth.core.errors import (
    APIError,
    DecryptionFailureError,
    IdentityNotFoundError,
    RegistrationFailureError,
    UnauthorizedError,
)
from smsauth.services.identity_types import IdentitySnapshot
from smsauth.services.verification_service import VerificationService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoginResult:
    """Successful login.

    Attributes:
        identity: Registered identity snapshot.
        token: Signed session token and its expiry.
    """

    identity: IdentitySnapshot
    token: IssuedToken


class LoginService:
    """Coordinates code verification, registration and token issuance.

    Args:
        verification: Verification service.
        tokens: Session token issuer.
    """

    def __init__(self, verification: VerificationService, tokens: TokenIssuer) -> None:
        self._verification = verification
        self._tokens = tokens

    async def verify_and_login(self, phone: str, code: str) -> LoginResult:
        """Log in with a phone number and a verification code.

        Raises:
            IdentityNotFoundError, CodeNotRequestedError, CodeExpiredError,
            CodeMismatchError: From code verification.
            DecryptionFailureError: Stored phone ciphertext is unreadable.
            RegistrationFailureError: The provisional identity could not be
                promoted. The code has already been consumed.
        """
        identity = await self._verification.verify_code(phone, code)

        if identity.is_provisional:
            try:
                identity = await self._verification.complete_registration(identity.id)
            except DecryptionFailureError:
                raise
            except APIError as exc:
                logger.error(
                    "Registration failed for identity %s: %s", identity.id, exc.code
                )
                raise RegistrationFailureError() from exc
            if identity.is_provisional:
                raise RegistrationFailureError()

        token = self._tokens.issue(identity)
        logger.info("Issued %s session for identity %s", identity.role.value, identity.id)
        return LoginResult(identity=identity, token=token)

    async def authenticate(self, token: str) -> IdentitySnapshot:
        """Resolve a session token to its identity.

        Raises:
            UnauthorizedError: Invalid/expired token, or the identity is
                unknown, deactivated or still provisional.
        """
        claims = self._tokens.decode(token)
        try:
            identity_id = uuid.UUID(claims["sub"])
        except (KeyError, TypeError, ValueError) as exc:
            raise UnauthorizedError() from exc

        identity = await self._verification.get_snapshot(identity_id)
        if identity is None or not identity.is_active or identity.is_provisional:
            raise UnauthorizedError()
        return identity

    async def complete_registration(
        self, identity_id: uuid.UUID, nickname: str | None = None
    ) -> IdentitySnapshot:
        """Caller-facing registration completion.

        Raises:
            IdentityNotFoundError: Unknown or deactivated identity.
            DecryptionFailureError: Stored phone ciphertext is unreadable.
            RegistrationFailureError: Any other failure while promoting.
        """
        try:
            return await self._verification.complete_registration(
                identity_id, nickname=nickname
            )
        except (IdentityNotFoundError, DecryptionFailureError):
            raise
        except APIError as exc:
            raise RegistrationFailureError() from exc
