"""Tests for per-route access policies."""

import uuid

import pytest

from smsauth.core.errors import AdminRequiredError, UnauthorizedError
from smsauth.core.policy import RoutePolicy, enforce_policy
from smsauth.services.identity_types import IdentitySnapshot, Role


def _identity(role: Role = Role.USER, *, is_active: bool = True) -> IdentitySnapshot:
    return IdentitySnapshot(
        id=uuid.uuid4(), phone="13800138000", role=role, is_active=is_active
    )


class TestEnforcePolicy:
    """Tests for enforce_policy."""

    def test_public_allows_anonymous(self) -> None:
        assert enforce_policy(RoutePolicy.PUBLIC, None) is None

    def test_authenticated_requires_identity(self) -> None:
        with pytest.raises(UnauthorizedError):
            enforce_policy(RoutePolicy.AUTHENTICATED, None)

    @pytest.mark.parametrize("role", [Role.USER, Role.ADMIN])
    def test_authenticated_allows_registered(self, role: Role) -> None:
        identity = _identity(role)
        assert enforce_policy(RoutePolicy.AUTHENTICATED, identity) is identity

    def test_provisional_identity_rejected(self) -> None:
        with pytest.raises(UnauthorizedError):
            enforce_policy(RoutePolicy.AUTHENTICATED, _identity(Role.UNSET))

    def test_inactive_identity_rejected(self) -> None:
        with pytest.raises(UnauthorizedError):
            enforce_policy(RoutePolicy.AUTHENTICATED, _identity(is_active=False))

    def test_admin_rejects_user(self) -> None:
        with pytest.raises(AdminRequiredError) as exc_info:
            enforce_policy(RoutePolicy.ADMIN, _identity(Role.USER))
        assert exc_info.value.status_code == 403

    def test_admin_rejects_anonymous_with_401(self) -> None:
        with pytest.raises(UnauthorizedError):
            enforce_policy(RoutePolicy.ADMIN, None)

    def test_admin_allows_admin(self) -> None:
        identity = _identity(Role.ADMIN)
        assert enforce_policy(RoutePolicy.ADMIN, identity) is identity
