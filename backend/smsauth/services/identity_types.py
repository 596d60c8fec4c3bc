"""Identity value types shared by the store, services, and API.

Domain code never touches ORM rows. Stores hand out frozen ``IdentityRecord``
values; the verification flow hands callers an ``IdentitySnapshot`` carrying
the decrypted phone and none of the code fields.

Role lifecycle:
- UNSET: provisional record created only to hold a pending code
- UNSET → USER: first successful login (at most once)
- ADMIN: granted outside this service, never by it
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    """Identity role."""

    UNSET = "unset"
    USER = "user"
    ADMIN = "admin"


@dataclass(frozen=True)
class IdentityRecord:
    """Stored identity row.

    Attributes:
        id: Opaque external identifier.
        phone_ciphertext: Fernet token of the phone number.
        phone_hash: Keyed lookup digest; unique.
        role: Current role.
        nickname: Optional display name.
        code: Pending verification code, if any.
        code_expires_at: Expiry of the pending code. Set iff ``code`` is set.
        last_code_sent_at: When the last code was issued (rate limiting).
        is_active: False once the account is deactivated.
        created_at: Row creation time.
        updated_at: Last modification time.
    """

    id: uuid.UUID
    phone_ciphertext: str
    phone_hash: str
    role: Role = Role.UNSET
    nickname: str | None = None
    code: str | None = None
    code_expires_at: datetime | None = None
    last_code_sent_at: datetime | None = None
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class IdentitySnapshot:
    """Identity as seen by the login flow and API callers.

    Attributes:
        id: External identifier.
        phone: Decrypted phone number.
        role: Current role.
        nickname: Optional display name.
        is_active: Soft-delete flag.
        created_at: Row creation time.
    """

    id: uuid.UUID
    phone: str
    role: Role
    nickname: str | None = None
    is_active: bool = True
    created_at: datetime | None = None

    @property
    def is_provisional(self) -> bool:
        return self.role is Role.UNSET

    def to_response(self) -> dict:
        """Public JSON payload. Never includes hash, ciphertext or code."""
        return {
            "id": str(self.id),
            "phone": self.phone,
            "nickname": self.nickname,
            "role": self.role.value,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
