"""Verification code issue and check.

Send flow:
1. Look up the identity by keyed phone hash
2. Enforce the resend interval (RateLimitedError with remaining seconds)
3. Generate a code with expiry now + TTL
4. Create a provisional identity or update the existing one
5. Persist, then deliver. A failed delivery raises DeliveryFailedError but
   leaves the code and last_code_sent_at in place, so failed attempts still
   count toward the resend window.

Verify flow runs inside ``IdentityStore.with_lock`` on the phone-hash row.
That lock is the only cross-request ordering: of N concurrent verifications
with the correct code exactly one sees it, clears it, and succeeds. The
critical section returns an outcome instead of raising so that clearing an
expired code is committed before CodeExpiredError reaches the caller.
"""

import hmac
import logging
import math
import uuid
from collections.abc import Callable
from datetime import datetime
from enum import Enum

from smsauth.core.clock import Clock, SystemClock
from smsauth.core.code_generator import generate_code
from smsauth.core.codec import PhoneCodec, mask_phone
from smsauth.core.config import AuthConfig
from smsauth.core.errors import (
    CodeExpiredError,
    CodeMismatchError,
    CodeNotRequestedError,
    DeliveryFailedError,
    IdentityNotFoundError,
    RateLimitedError,
)
from smsauth.services.identity_store import (
    IdentityConflictError,
    IdentityStore,
    LockedIdentity,
)
from smsauth.services.identity_types import IdentityRecord, IdentitySnapshot, Role
from smsauth.services.sms_delivery import DeliveryGateway, to_e164

logger = logging.getLogger(__name__)


class _VerifyOutcome(Enum):
    NOT_FOUND = "not_found"
    NOT_REQUESTED = "not_requested"
    EXPIRED = "expired"
    MISMATCH = "mismatch"
    OK = "ok"


_OUTCOME_ERRORS: dict[_VerifyOutcome, type[Exception]] = {
    _VerifyOutcome.NOT_FOUND: IdentityNotFoundError,
    _VerifyOutcome.NOT_REQUESTED: CodeNotRequestedError,
    _VerifyOutcome.EXPIRED: CodeExpiredError,
    _VerifyOutcome.MISMATCH: CodeMismatchError,
}


class VerificationService:
    """Issues and checks one-time SMS codes.

    Args:
        config: Code length, TTL, resend interval, SMS prefix.
        codec: Phone hash/encryption.
        store: Identity persistence.
        gateway: SMS delivery.
        clock: Time source. Defaults to system UTC time.
        code_generator: ``length -> code``. Defaults to ``generate_code``.
    """

    def __init__(
        self,
        *,
        config: AuthConfig,
        codec: PhoneCodec,
        store: IdentityStore,
        gateway: DeliveryGateway,
        clock: Clock | None = None,
        code_generator: Callable[[int], str] = generate_code,
    ) -> None:
        self._config = config
        self._codec = codec
        self._store = store
        self._gateway = gateway
        self._clock = clock or SystemClock()
        self._generate_code = code_generator

    # ------------------------------------------------------------------
    # Send
    # ------------------------------------------------------------------

    async def send_code(self, phone: str) -> None:
        """Issue a new code for a phone number and deliver it by SMS.

        Args:
            phone: Validated phone number.

        Raises:
            IdentityNotFoundError: The phone belongs to a deactivated account.
            RateLimitedError: A code was sent less than resend_interval ago.
            DeliveryFailedError: The SMS provider did not accept the message.
                The new code stays valid.
        """
        phone_hash = self._codec.hash(phone)
        now = self._clock.now()
        code = self._generate_code(self._config.code_length)
        expires_at = now + self._config.code_ttl

        existing = await self._store.find_by_hash(phone_hash)
        if existing is None:
            try:
                await self._store.create(
                    phone_ciphertext=self._codec.encrypt(phone),
                    phone_hash=phone_hash,
                    code=code,
                    code_expires_at=expires_at,
                    last_code_sent_at=now,
                )
                logger.info("Created provisional identity for %s", mask_phone(phone))
            except IdentityConflictError:
                # Lost an insert race; the winner's row decides from here
                existing = await self._store.find_by_hash(phone_hash)
                if existing is None:
                    raise
        if existing is not None:
            await self._refresh_code(existing, now=now, code=code, expires_at=expires_at)

        await self._deliver(phone, code)

    async def _refresh_code(
        self,
        identity: IdentityRecord,
        *,
        now: datetime,
        code: str,
        expires_at: datetime,
    ) -> None:
        if not identity.is_active:
            raise IdentityNotFoundError()
        self._enforce_resend_interval(identity, now)
        updated = await self._store.update(
            identity.id,
            code=code,
            code_expires_at=expires_at,
            last_code_sent_at=now,
        )
        if not updated:
            raise IdentityNotFoundError()

    def _enforce_resend_interval(self, identity: IdentityRecord, now: datetime) -> None:
        if identity.last_code_sent_at is None:
            return
        interval = self._config.resend_interval.total_seconds()
        elapsed = (now - identity.last_code_sent_at).total_seconds()
        if elapsed < interval:
            remaining = min(max(math.ceil(interval - elapsed), 1), math.ceil(interval))
            raise RateLimitedError(remaining_seconds=remaining)

    async def _deliver(self, phone: str, code: str) -> None:
        phone_e164 = to_e164(phone, self._config.sms_country_prefix)
        try:
            result = await self._gateway.send(
                phone_e164, code, self._config.code_ttl_minutes
            )
        except Exception as exc:
            logger.exception("SMS gateway raised for %s", mask_phone(phone))
            raise DeliveryFailedError() from exc
        if not result.success:
            logger.warning(
                "SMS delivery failed for %s (ref=%s): %s",
                mask_phone(phone),
                result.reference_id,
                result.message,
            )
            raise DeliveryFailedError()

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    async def verify_code(self, phone: str, submitted_code: str) -> IdentitySnapshot:
        """Check a submitted code and consume it on success.

        Args:
            phone: Validated phone number.
            submitted_code: Code entered by the user.

        Returns:
            Snapshot of the identity with the decrypted phone number.

        Raises:
            IdentityNotFoundError: No active identity for the phone.
            CodeNotRequestedError: No pending code.
            CodeExpiredError: The pending code expired; it has been cleared.
            CodeMismatchError: Wrong code; the pending code stays valid.
            DecryptionFailureError: Stored ciphertext is corrupt. Nothing
                is consumed.
        """
        phone_hash = self._codec.hash(phone)
        now = self._clock.now()

        async def critical_section(
            locked: LockedIdentity,
        ) -> tuple[_VerifyOutcome, IdentitySnapshot | None]:
            identity = locked.record
            if identity is None:
                return _VerifyOutcome.NOT_FOUND, None
            if identity.code is None:
                return _VerifyOutcome.NOT_REQUESTED, None
            if identity.code_expires_at is None or identity.code_expires_at < now:
                await locked.update(code=None, code_expires_at=None)
                return _VerifyOutcome.EXPIRED, None
            if not hmac.compare_digest(identity.code, submitted_code):
                return _VerifyOutcome.MISMATCH, None
            updated = await locked.update(code=None, code_expires_at=None)
            # Decrypt before commit: a corrupt row raises and rolls back
            return _VerifyOutcome.OK, self._snapshot(updated)

        outcome, snapshot = await self._store.with_lock(phone_hash, critical_section)
        if outcome is _VerifyOutcome.OK and snapshot is not None:
            logger.info("Code verified for identity %s", snapshot.id)
            return snapshot
        logger.info(
            "Code verification for %s failed: %s", mask_phone(phone), outcome.value
        )
        raise _OUTCOME_ERRORS[outcome]()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def complete_registration(
        self, identity_id: uuid.UUID, nickname: str | None = None
    ) -> IdentitySnapshot:
        """Promote a provisional identity to a regular user.

        Idempotent: identities whose role is already set are returned
        unchanged, and the nickname argument is ignored for them.

        Args:
            identity_id: External id.
            nickname: Optional display name set together with the role.

        Returns:
            Snapshot after the call.

        Raises:
            IdentityNotFoundError: Unknown or deactivated identity.
            DecryptionFailureError: Stored phone ciphertext is unreadable. The
                role change is already committed when this is raised.
        """
        identity = await self._store.find_by_id(identity_id)
        if identity is None or not identity.is_active:
            raise IdentityNotFoundError()
        if identity.role is not Role.UNSET:
            return self._snapshot(identity)

        fields: dict[str, object] = {"role": Role.USER}
        if nickname is not None:
            fields["nickname"] = nickname
        promoted = await self._store.update(
            identity_id, only_if_role=Role.UNSET, **fields
        )
        if promoted:
            logger.info("Completed registration for identity %s", identity_id)
        else:
            logger.info("Registration for identity %s already completed", identity_id)

        current = await self._store.find_by_id(identity_id)
        if current is None:
            raise IdentityNotFoundError()
        return self._snapshot(current)

    async def get_snapshot(self, identity_id: uuid.UUID) -> IdentitySnapshot | None:
        """Return the current snapshot for an id, or None if unknown."""
        identity = await self._store.find_by_id(identity_id)
        return self._snapshot(identity) if identity is not None else None

    def _snapshot(self, identity: IdentityRecord) -> IdentitySnapshot:
        return IdentitySnapshot(
            id=identity.id,
            phone=self._codec.decrypt(identity.phone_ciphertext),
            role=identity.role,
            nickname=identity.nickname,
            is_active=identity.is_active,
            created_at=identity.created_at,
        )
