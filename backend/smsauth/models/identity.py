"""Identity model - one row per distinct phone number.

The phone number is never stored in plaintext: ``phone_ciphertext`` holds a
Fernet token and ``phone_hash`` a keyed digest used for every lookup.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Index,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from smsauth.models.base import Base, TimestampMixin
from smsauth.services.identity_types import IdentityRecord, Role

_ROLE_VALUES = ", ".join(f"'{role.value}'" for role in Role)


class Identity(Base, TimestampMixin):
    """Phone-keyed account record, possibly provisional.

    Attributes:
        numeric_id: Internal surrogate primary key.
        id: External UUID exposed to clients.
        phone_ciphertext: Encrypted phone number.
        phone_hash: HMAC-SHA256 hex digest of the phone number. Unique.
        nickname: Optional display name (max 50 chars).
        role: 'unset' (provisional), 'user' or 'admin'.
        code: Pending verification code.
        code_expires_at: Expiry of the pending code.
        last_code_sent_at: When the last code was issued.
        is_active: Soft-delete flag.
    """

    __tablename__ = "identities"
    __table_args__ = (
        CheckConstraint(
            f"role IN ({_ROLE_VALUES})",
            name="ck_identities_role",
        ),
        # code and its expiry are set and cleared together
        CheckConstraint(
            "(code IS NULL) = (code_expires_at IS NULL)",
            name="ck_identities_code_pair",
        ),
        # Sweeper scan: only rows holding a code
        Index(
            "ix_identities_code_expires_at",
            "code_expires_at",
            postgresql_where=text("code IS NOT NULL"),
        ),
    )

    numeric_id: Mapped[int] = mapped_column(
        BigInteger,
        primary_key=True,
        autoincrement=True,
    )
    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        unique=True,
        nullable=False,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    phone_ciphertext: Mapped[str] = mapped_column(
        Text(),
        nullable=False,
    )
    phone_hash: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
    )
    nickname: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )
    role: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default=Role.UNSET.value,
        server_default=text(f"'{Role.UNSET.value}'"),
    )
    code: Mapped[str | None] = mapped_column(
        String(10),
        nullable=True,
    )
    code_expires_at: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )
    last_code_sent_at: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )

    def to_record(self) -> IdentityRecord:
        """Detach the row into an immutable domain value."""
        return IdentityRecord(
            id=self.id,
            phone_ciphertext=self.phone_ciphertext,
            phone_hash=self.phone_hash,
            role=Role(self.role),
            nickname=self.nickname,
            code=self.code,
            code_expires_at=self.code_expires_at,
            last_code_sent_at=self.last_code_sent_at,
            is_active=self.is_active,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
