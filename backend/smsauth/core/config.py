"""Application configuration loaded from environment variables.

Settings for database, API, token signing, phone protection keys, and the
verification-code policy. Uses pydantic-settings for validation and .env
file support.

Components never read ``settings`` directly. ``Settings.auth_config()``
builds an immutable ``AuthConfig`` that is passed into constructors.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Literal

from cryptography.fernet import Fernet
from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Known insecure default password that must not be used in production
_INSECURE_DEFAULT_PASSWORD = "smsauth_dev_password"  # nosec B105

# Minimum length for AUTH_SECRET / PHONE_HASH_KEY in production (256 bits)
_MIN_SECRET_LENGTH = 32

_MIN_CODE_LENGTH = 4
_MAX_CODE_LENGTH = 10


@dataclass(frozen=True)
class AuthConfig:
    """Immutable configuration for the verification and token components.

    Attributes:
        code_length: Number of digits in a verification code.
        code_ttl: Validity window of an issued code.
        resend_interval: Minimum gap between two codes for the same phone.
        sweep_interval: Period of the expired-code sweeper.
        admin_token_ttl: Session lifetime for admin identities.
        user_token_ttl: Session lifetime for regular identities.
        token_secret: HMAC secret for session tokens.
        token_issuer: ``iss`` claim.
        token_audience: ``aud`` claim.
        phone_encryption_key: Fernet key for phone ciphertext.
        phone_hash_key: HMAC key for the phone lookup hash.
        sms_country_prefix: Prefix added to numbers without a ``+``.
    """

    code_length: int = 6
    code_ttl: timedelta = timedelta(minutes=5)
    resend_interval: timedelta = timedelta(seconds=60)
    sweep_interval: timedelta = timedelta(minutes=5)
    admin_token_ttl: timedelta = timedelta(days=1)
    user_token_ttl: timedelta = timedelta(days=30)
    token_secret: str = ""
    token_issuer: str = "smsauth"
    token_audience: str = "smsauth"
    phone_encryption_key: str = ""
    phone_hash_key: str = ""
    sms_country_prefix: str = "+86"

    @property
    def code_ttl_minutes(self) -> int:
        """Code TTL rounded up to whole minutes (SMS template parameter)."""
        return max(1, -(-int(self.code_ttl.total_seconds()) // 60))


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_host: str = "localhost"
    database_port: int = 5432
    database_name: str = "smsauth"
    database_user: str = "smsauth_user"
    database_password: str = _INSECURE_DEFAULT_PASSWORD
    database_command_timeout: float = 30.0

    # API
    allowed_origins: list[str] = ["http://localhost:3000"]

    # Application
    environment: str = "development"
    log_level: str = "INFO"

    # Session tokens
    auth_secret: SecretStr = SecretStr("")
    auth_issuer: str = "smsauth"
    auth_audience: str = "smsauth"
    admin_token_ttl_hours: int = 24
    user_token_ttl_days: int = 30

    # Phone protection
    # PHONE_ENCRYPTION_KEY: urlsafe base64 Fernet key (44 chars)
    # PHONE_HASH_KEY: independent secret for the lookup HMAC
    phone_encryption_key: SecretStr = SecretStr("")
    phone_hash_key: SecretStr = SecretStr("")

    # Verification codes
    verification_code_length: int = 6
    verification_code_ttl_seconds: int = 300
    verification_resend_interval_seconds: int = 60
    verification_sweep_interval_seconds: int = 300

    # SMS delivery
    sms_provider: Literal["log", "http"] = "log"
    sms_api_url: str = ""
    sms_api_key: SecretStr = SecretStr("")
    sms_sign_name: str = ""
    sms_template_id: str = ""
    sms_country_prefix: str = "+86"
    sms_timeout_seconds: float = 10.0

    # Rate limiting (per client IP, on top of the per-phone resend interval)
    rate_limit_enabled: bool = True
    rate_limit_send_code: str = "5/minute"
    rate_limit_login: str = "10/minute"

    @property
    def database_url(self) -> str:
        """Async database URL for SQLAlchemy."""
        return (
            f"postgresql+asyncpg://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    def auth_config(self) -> AuthConfig:
        """Build the immutable component configuration.

        Raises:
            ValueError: AUTH_SECRET, PHONE_ENCRYPTION_KEY or PHONE_HASH_KEY is
                empty. Settings itself only requires them in production.
        """
        missing = [
            name
            for name, secret in (
                ("AUTH_SECRET", self.auth_secret),
                ("PHONE_ENCRYPTION_KEY", self.phone_encryption_key),
                ("PHONE_HASH_KEY", self.phone_hash_key),
            )
            if not secret.get_secret_value()
        ]
        if missing:
            msg = (
                f"Missing required key material: {', '.join(missing)}. "
                "Set them in the environment or .env before starting the API."
            )
            raise ValueError(msg)

        return AuthConfig(
            code_length=self.verification_code_length,
            code_ttl=timedelta(seconds=self.verification_code_ttl_seconds),
            resend_interval=timedelta(
                seconds=self.verification_resend_interval_seconds
            ),
            sweep_interval=timedelta(
                seconds=self.verification_sweep_interval_seconds
            ),
            admin_token_ttl=timedelta(hours=self.admin_token_ttl_hours),
            user_token_ttl=timedelta(days=self.user_token_ttl_days),
            token_secret=self.auth_secret.get_secret_value(),
            token_issuer=self.auth_issuer,
            token_audience=self.auth_audience,
            phone_encryption_key=self.phone_encryption_key.get_secret_value(),
            phone_hash_key=self.phone_hash_key.get_secret_value(),
            sms_country_prefix=self.sms_country_prefix,
        )

    @model_validator(mode="after")
    def check_security_and_policy(self) -> "Settings":
        """Validate verification policy and production security requirements.

        Checks (all environments):
        - Code length within 4-10 digits
        - Code TTL, resend interval, sweep interval and token TTLs positive
        - CORS must not use wildcard origin
        - PHONE_ENCRYPTION_KEY, when set, must be a valid Fernet key
        - HTTP SMS provider requires SMS_API_URL

        Checks (production):
        - Database password must not be the default
        - AUTH_SECRET and PHONE_HASH_KEY set and >= 32 chars
        - PHONE_ENCRYPTION_KEY set
        """
        if not _MIN_CODE_LENGTH <= self.verification_code_length <= _MAX_CODE_LENGTH:
            msg = (
                f"VERIFICATION_CODE_LENGTH must be between {_MIN_CODE_LENGTH} "
                f"and {_MAX_CODE_LENGTH}. Got: {self.verification_code_length}"
            )
            raise ValueError(msg)

        positive = {
            "VERIFICATION_CODE_TTL_SECONDS": self.verification_code_ttl_seconds,
            "VERIFICATION_RESEND_INTERVAL_SECONDS": self.verification_resend_interval_seconds,
            "VERIFICATION_SWEEP_INTERVAL_SECONDS": self.verification_sweep_interval_seconds,
            "ADMIN_TOKEN_TTL_HOURS": self.admin_token_ttl_hours,
            "USER_TOKEN_TTL_DAYS": self.user_token_ttl_days,
        }
        for name, value in positive.items():
            if value <= 0:
                msg = f"{name} must be positive. Got: {value}"
                raise ValueError(msg)

        if "*" in self.allowed_origins:
            msg = "ALLOWED_ORIGINS must not contain '*' (wildcard)."
            raise ValueError(msg)

        encryption_key = self.phone_encryption_key.get_secret_value()
        if encryption_key:
            try:
                Fernet(encryption_key.encode())
            except ValueError as exc:
                msg = (
                    "PHONE_ENCRYPTION_KEY must be a urlsafe base64 Fernet key. "
                    'Generate with: python -c "from cryptography.fernet import '
                    'Fernet; print(Fernet.generate_key().decode())"'
                )
                raise ValueError(msg) from exc

        if self.sms_provider == "http" and not self.sms_api_url:
            msg = "SMS_API_URL must be set when SMS_PROVIDER=http."
            raise ValueError(msg)

        if self.environment == "production":
            if self.database_password == _INSECURE_DEFAULT_PASSWORD:
                msg = (
                    "Cannot use default database password in production. "
                    "Set DATABASE_PASSWORD environment variable to a secure value."
                )
                raise ValueError(msg)

            for name, secret in (
                ("AUTH_SECRET", self.auth_secret),
                ("PHONE_HASH_KEY", self.phone_hash_key),
            ):
                if len(secret.get_secret_value()) < _MIN_SECRET_LENGTH:
                    msg = (
                        f"{name} must be set to at least {_MIN_SECRET_LENGTH} "
                        "characters in production."
                    )
                    raise ValueError(msg)

            if not encryption_key:
                msg = "PHONE_ENCRYPTION_KEY must be set in production."
                raise ValueError(msg)

        return self


settings = Settings()
