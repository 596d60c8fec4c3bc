"""Session token issuance and validation.

Tokens are HS256 JWTs. Lifetime depends on role: admin sessions are short
(default 1 day), user sessions long (default 30 days). Provisional
identities never receive a token.

Claims: sub (identity id), phone, role, iat, exp, aud, iss.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import jwt

from smsauth.core.clock import Clock, SystemClock
from smsauth.core.config import AuthConfig
from smsauth.core.errors import UnauthorizedError
from smsauth.services.identity_types import IdentitySnapshot, Role

_ALGORITHM = "HS256"
_BEARER_PREFIX = "Bearer"

# Tolerated clock skew between issuer and validator
_LEEWAY = timedelta(seconds=30)


@dataclass(frozen=True)
class IssuedToken:
    """Signed token plus its expiry."""

    token: str
    expires_at: datetime


class TokenIssuer:
    """Signs and validates session tokens.

    Args:
        config: Token secret, issuer, audience and per-role TTLs.
        clock: Time source for iat/exp. Defaults to system UTC time.

    Raises:
        ValueError: If the token secret is empty.
    """

    def __init__(self, config: AuthConfig, clock: Clock | None = None) -> None:
        if not config.token_secret:
            raise ValueError("Token secret is not configured")
        self._config = config
        self._clock = clock or SystemClock()

    def ttl_for(self, role: Role) -> timedelta:
        """Session lifetime for a role.

        Raises:
            ValueError: For provisional (UNSET) identities.
        """
        if role is Role.ADMIN:
            return self._config.admin_token_ttl
        if role is Role.USER:
            return self._config.user_token_ttl
        raise ValueError("Provisional identities cannot hold a session")

    def issue(self, identity: IdentitySnapshot) -> IssuedToken:
        """Sign a session token for an identity."""
        now = self._clock.now()
        expires_at = now + self.ttl_for(identity.role)
        payload = {
            "sub": str(identity.id),
            "phone": identity.phone,
            "role": identity.role.value,
            "aud": self._config.token_audience,
            "iss": self._config.token_issuer,
            "iat": now,
            "exp": expires_at,
        }
        token = jwt.encode(payload, self._config.token_secret, algorithm=_ALGORITHM)
        return IssuedToken(token=token, expires_at=expires_at)

    def decode(self, token: str) -> dict[str, Any]:
        """Verify signature, exp, aud and iss; return the claims.

        Raises:
            UnauthorizedError: For any invalid or expired token.
        """
        try:
            return jwt.decode(
                token,
                self._config.token_secret,
                algorithms=[_ALGORITHM],
                audience=self._config.token_audience,
                issuer=self._config.token_issuer,
                leeway=_LEEWAY,
                options={"require": ["sub", "exp", "iat"]},
            )
        except jwt.InvalidTokenError as exc:
            raise UnauthorizedError() from exc


def extract_bearer_token(authorization: str | None) -> str | None:
    """Pull the token out of an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme != _BEARER_PREFIX or not token:
        return None
    return token.strip() or None
