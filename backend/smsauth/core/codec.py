"""Phone number protection: reversible encryption plus keyed lookup hash.

The two outputs are independent:
- ``hash`` is an HMAC-SHA256 digest under PHONE_HASH_KEY. Deterministic, so
  it backs the unique index and every lookup. Without the key, enumerating
  the phone-number space offline does not reveal which digest is which.
- ``encrypt`` produces a Fernet token (AES-128-CBC + HMAC-SHA256) with a
  fresh random IV per call. Used only when the plaintext must be shown or
  sent; never compared.
"""

import hashlib
import hmac

from cryptography.fernet import Fernet, InvalidToken

from smsauth.core.errors import DecryptionFailureError


def mask_phone(phone: str) -> str:
    """Mask all but the last four digits for logging."""
    if len(phone) <= 4:
        return "*" * len(phone)
    return f"{'*' * (len(phone) - 4)}{phone[-4:]}"


class PhoneCodec:
    """Encrypts, decrypts, and hashes phone numbers.

    Args:
        encryption_key: urlsafe base64 Fernet key.
        hash_key: Secret for the lookup HMAC.

    Raises:
        ValueError: If either key is empty or the Fernet key is malformed.
    """

    def __init__(self, *, encryption_key: str, hash_key: str) -> None:
        if not encryption_key:
            raise ValueError("Phone encryption key is not configured")
        if not hash_key:
            raise ValueError("Phone hash key is not configured")
        self._fernet = Fernet(encryption_key.encode())
        self._hash_key = hash_key.encode()

    def hash(self, phone: str) -> str:
        """Return the 64-char hex lookup digest for a phone number."""
        return hmac.new(self._hash_key, phone.encode(), hashlib.sha256).hexdigest()

    def encrypt(self, phone: str) -> str:
        """Encrypt a phone number. Two calls never return the same token."""
        return self._fernet.encrypt(phone.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a stored phone ciphertext.

        Raises:
            DecryptionFailureError: On tampered data, wrong key, or a value
                that is not a Fernet token at all.
        """
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except (InvalidToken, UnicodeDecodeError) as exc:
            raise DecryptionFailureError() from exc
