import socket
import uuid
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from smsauth.core.auth import TokenIssuer
from smsauth.core.codec import PhoneCodec
from smsauth.core.config import AuthConfig, settings
from smsauth.models.base import Base
from smsauth.services.identity_store import InMemoryIdentityStore
from smsauth.services.identity_types import IdentityRecord, Role
from smsauth.services.login_service import LoginService
from smsauth.services.sms_delivery import DeliveryResult
from smsauth.services.verification_service import VerificationService

# Use separate test database
TEST_DATABASE_URL = settings.database_url.replace(
    settings.database_name, f"{settings.database_name}_test"
)

# Security: test-only key material. Production keys come from env.
TEST_AUTH_SECRET = "test-secret-key-that-is-at-least-32-characters-long"  # nosec B105  # gitleaks:allow
TEST_HASH_KEY = "test-phone-hash-key-that-is-at-least-32-chars"  # nosec B105  # gitleaks:allow
TEST_ENCRYPTION_KEY = "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY="  # nosec B105  # gitleaks:allow

TEST_PHONE = "13800138000"
OTHER_PHONE = "13900139000"


def _is_postgres_available() -> bool:
    """Check if PostgreSQL is accepting connections.

    Returns:
        True if PostgreSQL is reachable on port 5432, False otherwise.
    """
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(1)
        result = sock.connect_ex(("127.0.0.1", 5432))
        sock.close()
        return result == 0
    except OSError:
        return False


# Check once at module load time
_POSTGRES_AVAILABLE = _is_postgres_available()


def skip_if_no_postgres() -> None:
    """Skip test if PostgreSQL is not available."""
    if not _POSTGRES_AVAILABLE:
        pytest.skip(
            "PostgreSQL not available on port 5432. "
            "Start database with: docker compose up -d"
        )


# =============================================================================
# Test doubles
# =============================================================================


class FrozenClock:
    """Clock that only moves when told to.

    Starts at the current wall time (whole seconds) so issued tokens still
    pass PyJWT's own exp/iat checks.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime.now(UTC).replace(microsecond=0)

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


class FakeGateway:
    """Records sends; returns ``result`` or raises ``error``."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, int]] = []
        self.result = DeliveryResult(success=True, reference_id="fake-ref")
        self.error: Exception | None = None

    async def send(self, phone_e164: str, code: str, ttl_minutes: int) -> DeliveryResult:
        self.sent.append((phone_e164, code, ttl_minutes))
        if self.error is not None:
            raise self.error
        return self.result

    @property
    def last_code(self) -> str:
        return self.sent[-1][1]


def make_auth_config(**overrides: object) -> AuthConfig:
    """AuthConfig with test key material."""
    values: dict[str, object] = {
        "token_secret": TEST_AUTH_SECRET,
        "phone_encryption_key": TEST_ENCRYPTION_KEY,
        "phone_hash_key": TEST_HASH_KEY,
    }
    values.update(overrides)
    return AuthConfig(**values)  # type: ignore[arg-type]


# =============================================================================
# Service fixtures (in-memory store, no database)
# =============================================================================


@pytest.fixture
def auth_config() -> AuthConfig:
    return make_auth_config()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def codec(auth_config: AuthConfig) -> PhoneCodec:
    return PhoneCodec(
        encryption_key=auth_config.phone_encryption_key,
        hash_key=auth_config.phone_hash_key,
    )


@pytest.fixture
def store(clock: FrozenClock) -> InMemoryIdentityStore:
    return InMemoryIdentityStore(clock)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def verification_service(
    auth_config: AuthConfig,
    codec: PhoneCodec,
    store: InMemoryIdentityStore,
    gateway: FakeGateway,
    clock: FrozenClock,
) -> VerificationService:
    return VerificationService(
        config=auth_config,
        codec=codec,
        store=store,
        gateway=gateway,
        clock=clock,
    )


@pytest.fixture
def token_issuer(auth_config: AuthConfig, clock: FrozenClock) -> TokenIssuer:
    return TokenIssuer(auth_config, clock)


@pytest.fixture
def login_service(
    verification_service: VerificationService, token_issuer: TokenIssuer
) -> LoginService:
    return LoginService(verification_service, token_issuer)


@pytest.fixture
def seed_identity(store: InMemoryIdentityStore, codec: PhoneCodec, clock: FrozenClock):
    """Insert an identity directly into the in-memory store."""

    def _seed(
        phone: str = TEST_PHONE,
        *,
        role: Role = Role.USER,
        is_active: bool = True,
        **fields: object,
    ) -> IdentityRecord:
        record = IdentityRecord(
            id=uuid.uuid4(),
            phone_ciphertext=codec.encrypt(phone),
            phone_hash=codec.hash(phone),
            role=role,
            is_active=is_active,
            created_at=clock.now(),
            updated_at=clock.now(),
            **fields,  # type: ignore[arg-type]
        )
        store.put(record)
        return record

    return _seed


# =============================================================================
# Database fixtures
# =============================================================================


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create test database engine.

    Skips test if PostgreSQL is not available (e.g., Docker not running).
    """
    skip_if_no_postgres()

    engine = create_async_engine(TEST_DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


# =============================================================================
# API fixtures
# =============================================================================


@pytest_asyncio.fixture
async def client(
    auth_config: AuthConfig,
    store: InMemoryIdentityStore,
    gateway: FakeGateway,
    clock: FrozenClock,
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to in-memory services.

    Overrides the services container so no database is needed and
    disables slowapi limits so tests can call endpoints repeatedly.
    """
    from smsauth.api.deps import build_services, get_services
    from smsauth.core.rate_limiting import limiter
    from smsauth.main import app

    services = build_services(auth_config, store, gateway, clock)
    app.dependency_overrides[get_services] = lambda: services

    original_limiter_enabled = limiter.enabled
    limiter.enabled = False

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    limiter.enabled = original_limiter_enabled
    app.dependency_overrides.clear()
