"""Repository for Identity table operations.

Provides database access for the identities table. All methods take an
AsyncSession so the caller controls transaction boundaries.
"""

import uuid
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from smsauth.models.identity import Identity
from smsauth.services.identity_types import Role

# Fields that may be updated via IdentityRepository.update().
# Security: 'id', 'phone_hash' and 'phone_ciphertext' are immutable once
# written; 'is_active' changes through account deactivation only.
UPDATABLE_FIELDS: frozenset[str] = frozenset(
    {
        "nickname",
        "role",
        "code",
        "code_expires_at",
        "last_code_sent_at",
    }
)


class IdentityRepository:
    """Stateless repository for Identity table operations.

    All methods are static; no instance state.
    """

    @staticmethod
    async def get_by_hash(
        db: AsyncSession,
        phone_hash: str,
        *,
        active_only: bool = False,
        for_update: bool = False,
    ) -> Identity | None:
        """Fetch an identity by phone hash.

        Args:
            db: Async database session.
            phone_hash: Keyed phone digest.
            active_only: Skip deactivated identities.
            for_update: Take an exclusive row lock (SELECT ... FOR UPDATE)
                held until the surrounding transaction ends.

        Returns:
            Identity if found, None otherwise.
        """
        stmt = select(Identity).where(Identity.phone_hash == phone_hash)
        if active_only:
            stmt = stmt.where(Identity.is_active.is_(True))
        if for_update:
            stmt = stmt.with_for_update()
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_id(db: AsyncSession, identity_id: uuid.UUID) -> Identity | None:
        """Fetch an identity by its external id.

        Args:
            db: Async database session.
            identity_id: External UUID.

        Returns:
            Identity if found, None otherwise.
        """
        stmt = select(Identity).where(Identity.id == identity_id)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        phone_ciphertext: str,
        phone_hash: str,
        code: str | None = None,
        code_expires_at: datetime | None = None,
        last_code_sent_at: datetime | None = None,
        role: Role = Role.UNSET,
    ) -> Identity:
        """Insert a new identity.

        Returns:
            Created Identity with database-generated fields populated.

        Raises:
            sqlalchemy.exc.IntegrityError: If the phone hash already exists.
        """
        identity = Identity(
            phone_ciphertext=phone_ciphertext,
            phone_hash=phone_hash,
            code=code,
            code_expires_at=code_expires_at,
            last_code_sent_at=last_code_sent_at,
            role=role.value,
        )
        db.add(identity)
        await db.flush()
        await db.refresh(identity)
        return identity

    @staticmethod
    async def update(
        db: AsyncSession,
        identity_id: uuid.UUID,
        *,
        only_if_role: Role | None = None,
        **kwargs: object,
    ) -> int:
        """Update identity fields in a single UPDATE statement.

        Args:
            db: Async database session.
            identity_id: External UUID of the row.
            only_if_role: When set, the row is only updated while it still
                has this role (compare-and-set).
            **kwargs: Field names and values to update.

        Returns:
            Number of rows updated (0 or 1).

        Raises:
            ValueError: If an unknown field name is passed.
        """
        unknown = set(kwargs) - UPDATABLE_FIELDS
        if unknown:
            msg = f"Unknown fields: {', '.join(sorted(unknown))}"
            raise ValueError(msg)

        values = {
            field: value.value if isinstance(value, Role) else value
            for field, value in kwargs.items()
        }
        stmt = update(Identity).where(Identity.id == identity_id).values(**values)
        if only_if_role is not None:
            stmt = stmt.where(Identity.role == only_if_role.value)
        # Rows already loaded in this session must not shadow the new values
        stmt = stmt.execution_options(synchronize_session="fetch")
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count

    @staticmethod
    async def clear_expired_codes(db: AsyncSession, *, now: datetime) -> int:
        """Clear code and expiry on every row whose code expired before now.

        Args:
            db: Async database session.
            now: Reference time.

        Returns:
            Number of rows cleared.
        """
        stmt = (
            update(Identity)
            .where(
                Identity.code.is_not(None),
                Identity.code_expires_at < now,
            )
            .values(code=None, code_expires_at=None)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count
