"""Tests for phone number encryption and lookup hashing."""

import pytest
from cryptography.fernet import Fernet
from hypothesis import given, settings
from hypothesis import strategies as st

from smsauth.core.codec import PhoneCodec, mask_phone
from smsauth.core.errors import DecryptionFailureError
from tests.conftest import TEST_ENCRYPTION_KEY, TEST_HASH_KEY, TEST_PHONE

_CODEC = PhoneCodec(encryption_key=TEST_ENCRYPTION_KEY, hash_key=TEST_HASH_KEY)

phones = st.from_regex(r"\A(1[3-9][0-9]{9}|\+[1-9][0-9]{6,14})\Z")


class TestHash:
    """Tests for the keyed lookup digest."""

    def test_is_64_hex_chars(self) -> None:
        digest = _CODEC.hash(TEST_PHONE)
        assert len(digest) == 64
        int(digest, 16)

    def test_depends_on_key(self) -> None:
        other = PhoneCodec(encryption_key=TEST_ENCRYPTION_KEY, hash_key="another-key")
        assert other.hash(TEST_PHONE) != _CODEC.hash(TEST_PHONE)

    @given(phone=phones)
    @settings(max_examples=50)
    def test_deterministic(self, phone: str) -> None:
        assert _CODEC.hash(phone) == _CODEC.hash(phone)

    @given(a=phones, b=phones)
    @settings(max_examples=50)
    def test_distinct_phones_distinct_digests(self, a: str, b: str) -> None:
        if a != b:
            assert _CODEC.hash(a) != _CODEC.hash(b)


class TestEncryption:
    """Tests for reversible phone encryption."""

    @given(phone=phones)
    @settings(max_examples=50)
    def test_decrypt_recovers_plaintext(self, phone: str) -> None:
        assert _CODEC.decrypt(_CODEC.encrypt(phone)) == phone

    def test_same_phone_encrypts_differently(self) -> None:
        assert _CODEC.encrypt(TEST_PHONE) != _CODEC.encrypt(TEST_PHONE)

    def test_ciphertext_does_not_contain_plaintext(self) -> None:
        assert TEST_PHONE not in _CODEC.encrypt(TEST_PHONE)

    def test_wrong_key_raises_decryption_failure(self) -> None:
        other = PhoneCodec(
            encryption_key=Fernet.generate_key().decode(), hash_key=TEST_HASH_KEY
        )
        with pytest.raises(DecryptionFailureError):
            other.decrypt(_CODEC.encrypt(TEST_PHONE))

    def test_tampered_token_raises_decryption_failure(self) -> None:
        token = _CODEC.encrypt(TEST_PHONE)
        tampered = token[:-4] + ("AAAA" if not token.endswith("AAAA") else "BBBB")
        with pytest.raises(DecryptionFailureError):
            _CODEC.decrypt(tampered)

    def test_garbage_raises_decryption_failure(self) -> None:
        with pytest.raises(DecryptionFailureError):
            _CODEC.decrypt("not-a-token")

    def test_decryption_failure_is_internal_error(self) -> None:
        with pytest.raises(DecryptionFailureError) as exc_info:
            _CODEC.decrypt("not-a-token")
        assert exc_info.value.status_code == 500
        assert exc_info.value.code == "INTERNAL_ERROR"


class TestConstruction:
    """Tests for key validation."""

    def test_empty_encryption_key_rejected(self) -> None:
        with pytest.raises(ValueError, match="encryption key"):
            PhoneCodec(encryption_key="", hash_key=TEST_HASH_KEY)

    def test_empty_hash_key_rejected(self) -> None:
        with pytest.raises(ValueError, match="hash key"):
            PhoneCodec(encryption_key=TEST_ENCRYPTION_KEY, hash_key="")

    def test_malformed_fernet_key_rejected(self) -> None:
        with pytest.raises(ValueError):
            PhoneCodec(encryption_key="too-short", hash_key=TEST_HASH_KEY)


class TestMaskPhone:
    """Tests for log masking."""

    def test_keeps_last_four_digits(self) -> None:
        assert mask_phone("13800138000") == "*******8000"

    def test_short_values_fully_masked(self) -> None:
        assert mask_phone("123") == "***"
