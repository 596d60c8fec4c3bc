"""Identity persistence behind a storage-agnostic interface.

The verification flow talks to an ``IdentityStore``:

- ``find_by_hash`` / ``find_by_id``: plain reads
- ``create``: insert, raising ``IdentityConflictError`` on a duplicate hash
- ``update``: single-statement write, optionally compare-and-set on role
- ``with_lock``: run a callback inside one transaction holding an exclusive
  lock on the row matching a phone hash; commit when the callback returns,
  roll back when it raises
- ``sweep_expired``: clear every code that expired before ``now``

Two implementations:
- ``SqlIdentityStore``: PostgreSQL via SQLAlchemy (``SELECT ... FOR UPDATE``)
- ``InMemoryIdentityStore``: per-hash ``asyncio.Lock``; local development
  and tests
"""

import asyncio
import dataclasses
import logging
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Protocol, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from smsauth.core.clock import Clock, SystemClock
from smsauth.models.identity import Identity
from smsauth.repositories.identity_repository import (
    UPDATABLE_FIELDS,
    IdentityRepository,
)
from smsauth.services.identity_types import IdentityRecord, Role

logger = logging.getLogger(__name__)

T = TypeVar("T")


class IdentityConflictError(Exception):
    """An identity with the same phone hash already exists."""


class LockedIdentity(Protocol):
    """Handle on a locked identity row inside ``with_lock``."""

    @property
    def record(self) -> IdentityRecord | None:
        """The active identity under lock, or None if there is none."""
        ...

    async def update(self, **fields: Any) -> IdentityRecord:
        """Write fields to the locked row and return the new state."""
        ...


class IdentityStore(Protocol):
    """Persistence operations needed by the verification flow."""

    async def find_by_hash(self, phone_hash: str) -> IdentityRecord | None: ...

    async def find_by_id(self, identity_id: uuid.UUID) -> IdentityRecord | None: ...

    async def create(
        self,
        *,
        phone_ciphertext: str,
        phone_hash: str,
        code: str | None = None,
        code_expires_at: datetime | None = None,
        last_code_sent_at: datetime | None = None,
    ) -> IdentityRecord: ...

    async def update(
        self,
        identity_id: uuid.UUID,
        *,
        only_if_role: Role | None = None,
        **fields: Any,
    ) -> bool: ...

    async def with_lock(
        self,
        phone_hash: str,
        fn: Callable[[LockedIdentity], Awaitable[T]],
    ) -> T: ...

    async def sweep_expired(self, now: datetime) -> int: ...


def _check_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        msg = f"Unknown fields: {', '.join(sorted(unknown))}"
        raise ValueError(msg)


# =============================================================================
# PostgreSQL
# =============================================================================


class _SqlLockedIdentity:
    """Locked ORM row, valid only inside the owning transaction."""

    def __init__(self, db: AsyncSession, row: Identity | None) -> None:
        self._db = db
        self._row = row

    @property
    def record(self) -> IdentityRecord | None:
        return self._row.to_record() if self._row is not None else None

    async def update(self, **fields: Any) -> IdentityRecord:
        if self._row is None:
            raise LookupError("No identity is locked")
        _check_fields(fields)
        for field, value in fields.items():
            setattr(self._row, field, value.value if isinstance(value, Role) else value)
        await self._db.flush()
        await self._db.refresh(self._row)
        return self._row.to_record()


class SqlIdentityStore:
    """IdentityStore backed by PostgreSQL.

    Each call runs in its own session and transaction.

    Args:
        session_factory: Async session factory (expire_on_commit=False).
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def find_by_hash(self, phone_hash: str) -> IdentityRecord | None:
        async with self._session_factory() as db:
            row = await IdentityRepository.get_by_hash(db, phone_hash)
            return row.to_record() if row is not None else None

    async def find_by_id(self, identity_id: uuid.UUID) -> IdentityRecord | None:
        async with self._session_factory() as db:
            row = await IdentityRepository.get_by_id(db, identity_id)
            return row.to_record() if row is not None else None

    async def create(
        self,
        *,
        phone_ciphertext: str,
        phone_hash: str,
        code: str | None = None,
        code_expires_at: datetime | None = None,
        last_code_sent_at: datetime | None = None,
    ) -> IdentityRecord:
        async with self._session_factory() as db:
            try:
                async with db.begin():
                    row = await IdentityRepository.create(
                        db,
                        phone_ciphertext=phone_ciphertext,
                        phone_hash=phone_hash,
                        code=code,
                        code_expires_at=code_expires_at,
                        last_code_sent_at=last_code_sent_at,
                    )
                    record = row.to_record()
            except IntegrityError as exc:
                raise IdentityConflictError(phone_hash[:8]) from exc
            return record

    async def update(
        self,
        identity_id: uuid.UUID,
        *,
        only_if_role: Role | None = None,
        **fields: Any,
    ) -> bool:
        async with self._session_factory() as db, db.begin():
            count = await IdentityRepository.update(
                db, identity_id, only_if_role=only_if_role, **fields
            )
        return count > 0

    async def with_lock(
        self,
        phone_hash: str,
        fn: Callable[[LockedIdentity], Awaitable[T]],
    ) -> T:
        async with self._session_factory() as db:
            async with db.begin():
                row = await IdentityRepository.get_by_hash(
                    db, phone_hash, active_only=True, for_update=True
                )
                result = await fn(_SqlLockedIdentity(db, row))
            return result

    async def sweep_expired(self, now: datetime) -> int:
        async with self._session_factory() as db, db.begin():
            return await IdentityRepository.clear_expired_codes(db, now=now)


# =============================================================================
# In-memory
# =============================================================================


class _InMemoryLockedIdentity:
    """Staged copy of a row; written back only if the callback succeeds."""

    def __init__(self, record: IdentityRecord | None, clock: Clock) -> None:
        self._record = record
        self._clock = clock
        self.dirty = False

    @property
    def record(self) -> IdentityRecord | None:
        return self._record

    async def update(self, **fields: Any) -> IdentityRecord:
        if self._record is None:
            raise LookupError("No identity is locked")
        _check_fields(fields)
        self._record = dataclasses.replace(
            self._record, **fields, updated_at=self._clock.now()
        )
        self.dirty = True
        return self._record


@dataclasses.dataclass
class _RowLock:
    lock: asyncio.Lock = dataclasses.field(default_factory=asyncio.Lock)
    users: int = 0


class InMemoryIdentityStore:
    """IdentityStore kept in process memory.

    Row locks are per-hash ``asyncio.Lock`` objects. ``update`` takes the
    same lock, so a write to a row blocks while ``with_lock`` holds it,
    mirroring PostgreSQL row-lock behaviour. A lock is dropped once no
    caller holds or waits on it, so unknown hashes leave nothing behind.

    Args:
        clock: Source for created_at/updated_at. Defaults to system time.
    """

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._rows: dict[str, IdentityRecord] = {}
        self._hash_by_id: dict[uuid.UUID, str] = {}
        self._locks: dict[str, _RowLock] = {}

    @asynccontextmanager
    async def _row_lock(self, phone_hash: str) -> AsyncIterator[None]:
        entry = self._locks.get(phone_hash)
        if entry is None:
            entry = self._locks[phone_hash] = _RowLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[phone_hash]

    def put(self, record: IdentityRecord) -> None:
        """Insert or replace a record directly (seeding, admin tooling)."""
        self._rows[record.phone_hash] = record
        self._hash_by_id[record.id] = record.phone_hash

    async def find_by_hash(self, phone_hash: str) -> IdentityRecord | None:
        return self._rows.get(phone_hash)

    async def find_by_id(self, identity_id: uuid.UUID) -> IdentityRecord | None:
        phone_hash = self._hash_by_id.get(identity_id)
        return self._rows.get(phone_hash) if phone_hash is not None else None

    async def create(
        self,
        *,
        phone_ciphertext: str,
        phone_hash: str,
        code: str | None = None,
        code_expires_at: datetime | None = None,
        last_code_sent_at: datetime | None = None,
    ) -> IdentityRecord:
        if phone_hash in self._rows:
            raise IdentityConflictError(phone_hash[:8])
        now = self._clock.now()
        record = IdentityRecord(
            id=uuid.uuid4(),
            phone_ciphertext=phone_ciphertext,
            phone_hash=phone_hash,
            code=code,
            code_expires_at=code_expires_at,
            last_code_sent_at=last_code_sent_at,
            created_at=now,
            updated_at=now,
        )
        self.put(record)
        return record

    async def update(
        self,
        identity_id: uuid.UUID,
        *,
        only_if_role: Role | None = None,
        **fields: Any,
    ) -> bool:
        _check_fields(fields)
        phone_hash = self._hash_by_id.get(identity_id)
        if phone_hash is None:
            return False
        async with self._row_lock(phone_hash):
            current = self._rows[phone_hash]
            if only_if_role is not None and current.role is not only_if_role:
                return False
            self._rows[phone_hash] = dataclasses.replace(
                current, **fields, updated_at=self._clock.now()
            )
        return True

    async def with_lock(
        self,
        phone_hash: str,
        fn: Callable[[LockedIdentity], Awaitable[T]],
    ) -> T:
        async with self._row_lock(phone_hash):
            current = self._rows.get(phone_hash)
            if current is not None and not current.is_active:
                current = None
            txn = _InMemoryLockedIdentity(current, self._clock)
            # Yield like a real round-trip so concurrent callers interleave
            await asyncio.sleep(0)
            result = await fn(txn)
            if txn.dirty and txn.record is not None:
                self._rows[phone_hash] = txn.record
            return result

    async def sweep_expired(self, now: datetime) -> int:
        cleared = 0
        for phone_hash in list(self._rows):
            async with self._row_lock(phone_hash):
                record = self._rows[phone_hash]
                if record.code is None or record.code_expires_at is None:
                    continue
                if record.code_expires_at >= now:
                    continue
                self._rows[phone_hash] = dataclasses.replace(
                    record,
                    code=None,
                    code_expires_at=None,
                    updated_at=self._clock.now(),
                )
                cleared += 1
        logger.debug("In-memory sweep cleared %d codes", cleared)
        return cleared
