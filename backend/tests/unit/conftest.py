"""Shared fixtures for unit tests."""

import pytest

from smsauth.core.auth import TokenIssuer
from smsauth.services.identity_types import IdentityRecord, Role
from tests.conftest import TEST_PHONE


@pytest.fixture
def user_identity(seed_identity) -> IdentityRecord:
    """Registered user with no pending code."""
    return seed_identity(TEST_PHONE, role=Role.USER, nickname="alice")


@pytest.fixture
def auth_headers(token_issuer: TokenIssuer, verification_service):
    """Build an Authorization header for a seeded identity."""

    async def _headers(record: IdentityRecord) -> dict[str, str]:
        snapshot = await verification_service.get_snapshot(record.id)
        issued = token_issuer.issue(snapshot)
        return {"Authorization": f"Bearer {issued.token}"}

    return _headers
