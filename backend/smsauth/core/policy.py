"""Per-route access policy.

Each endpoint declares one ``RoutePolicy`` value; the API dependencies call
``enforce_policy`` with the identity resolved from the bearer token (or
None when no valid token was presented).

- PUBLIC: anyone
- AUTHENTICATED: any registered, active identity
- ADMIN: identities with the admin role
"""

from enum import Enum

from smsauth.core.errors import AdminRequiredError, UnauthorizedError
from smsauth.services.identity_types import IdentitySnapshot, Role


class RoutePolicy(str, Enum):
    """Access level required by an endpoint."""

    PUBLIC = "public"
    AUTHENTICATED = "authenticated"
    ADMIN = "admin"


def enforce_policy(
    policy: RoutePolicy, identity: IdentitySnapshot | None
) -> IdentitySnapshot | None:
    """Check an identity against a route policy.

    Args:
        policy: The route's declared policy.
        identity: Authenticated identity, or None.

    Returns:
        The identity, unchanged.

    Raises:
        UnauthorizedError: Non-public route without a usable identity.
        AdminRequiredError: Admin route, identity is not an admin.
    """
    if policy is RoutePolicy.PUBLIC:
        return identity
    if identity is None or not identity.is_active or identity.is_provisional:
        raise UnauthorizedError()
    if policy is RoutePolicy.ADMIN and identity.role is not Role.ADMIN:
        raise AdminRequiredError()
    return identity
