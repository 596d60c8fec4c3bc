"""Shared dependencies for API endpoints.

Service wiring plus bearer-token authentication. Every route states its
access level with a ``RoutePolicy``; ``require(policy)`` resolves the
caller's identity from ``Authorization: Bearer <token>`` and enforces it.

WHY DEPENDENCY INJECTION:
- One place builds the store, gateway and services from settings
- Tests swap the whole container via ``app.dependency_overrides``
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Request

from smsauth.core.auth import TokenIssuer, extract_bearer_token
from smsauth.core.clock import Clock
from smsauth.core.codec import PhoneCodec
from smsauth.core.config import AuthConfig, Settings, settings
from smsauth.core.database import async_session_factory
from smsauth.core.policy import RoutePolicy, enforce_policy
from smsauth.services.cleanup_sweeper import CleanupSweeper
from smsauth.services.identity_store import IdentityStore, SqlIdentityStore
from smsauth.services.identity_types import IdentitySnapshot
from smsauth.services.login_service import LoginService
from smsauth.services.sms_delivery import (
    DeliveryGateway,
    HttpSmsGateway,
    LoggingSmsGateway,
)
from smsauth.services.verification_service import VerificationService


@dataclass(frozen=True)
class AuthServices:
    """Wired service graph shared by all requests."""

    config: AuthConfig
    verification: VerificationService
    login: LoginService
    sweeper: CleanupSweeper


def build_gateway(app_settings: Settings) -> DeliveryGateway:
    """Pick the SMS gateway named by SMS_PROVIDER."""
    if app_settings.sms_provider == "http":
        return HttpSmsGateway(
            api_url=app_settings.sms_api_url,
            api_key=app_settings.sms_api_key.get_secret_value(),
            sign_name=app_settings.sms_sign_name,
            template_id=app_settings.sms_template_id,
            timeout=app_settings.sms_timeout_seconds,
        )
    return LoggingSmsGateway()


def build_services(
    config: AuthConfig,
    store: IdentityStore,
    gateway: DeliveryGateway,
    clock: Clock | None = None,
) -> AuthServices:
    """Wire the services around one store and gateway.

    Raises:
        ValueError: If key material or the token secret is missing.
    """
    codec = PhoneCodec(
        encryption_key=config.phone_encryption_key,
        hash_key=config.phone_hash_key,
    )
    verification = VerificationService(
        config=config,
        codec=codec,
        store=store,
        gateway=gateway,
        clock=clock,
    )
    login = LoginService(verification, TokenIssuer(config, clock))
    sweeper = CleanupSweeper(
        store,
        interval_seconds=config.sweep_interval.total_seconds(),
        clock=clock,
    )
    return AuthServices(
        config=config, verification=verification, login=login, sweeper=sweeper
    )


@lru_cache
def get_services() -> AuthServices:
    """Process-wide services backed by PostgreSQL."""
    return build_services(
        settings.auth_config(),
        SqlIdentityStore(async_session_factory),
        build_gateway(settings),
    )


Services = Annotated[AuthServices, Depends(get_services)]


def require(policy: RoutePolicy):
    """Build a dependency that enforces ``policy`` for a route.

    The returned dependency yields the authenticated identity. Any token
    problem surfaces as a generic 401.
    """

    async def dependency(
        request: Request, services: Services
    ) -> IdentitySnapshot | None:
        identity = None
        if policy is not RoutePolicy.PUBLIC:
            token = extract_bearer_token(request.headers.get("Authorization"))
            if token is not None:
                identity = await services.login.authenticate(token)
        return enforce_policy(policy, identity)

    return dependency


# Reusable type aliases for dependency injection
CurrentIdentity = Annotated[IdentitySnapshot, Depends(require(RoutePolicy.AUTHENTICATED))]
AdminIdentity = Annotated[IdentitySnapshot, Depends(require(RoutePolicy.ADMIN))]
