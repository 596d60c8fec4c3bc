"""Concurrent verification: a code is consumed at most once.

Verification runs under the identity store's per-row lock. Of N concurrent
verifications with the correct code exactly one succeeds; the others find
the code already cleared.
"""

import asyncio

import pytest

from smsauth.core.errors import CodeMismatchError, CodeNotRequestedError
from tests.conftest import OTHER_PHONE, TEST_PHONE

_CONCURRENCY = 10


class TestConcurrentVerification:
    """Tests for verify_code under contention."""

    @pytest.mark.parametrize("attempts", [2, _CONCURRENCY])
    async def test_exactly_one_success(
        self, verification_service, gateway, attempts: int
    ) -> None:
        await verification_service.send_code(TEST_PHONE)
        code = gateway.last_code

        results = await asyncio.gather(
            *(verification_service.verify_code(TEST_PHONE, code) for _ in range(attempts)),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, BaseException)]
        failures = [r for r in results if isinstance(r, BaseException)]
        assert len(successes) == 1
        assert successes[0].phone == TEST_PHONE
        assert len(failures) == attempts - 1
        assert all(isinstance(f, CodeNotRequestedError) for f in failures)

    async def test_wrong_guesses_do_not_block_correct_code(
        self, verification_service
    ) -> None:
        verification_service._generate_code = lambda _length: "123456"
        await verification_service.send_code(TEST_PHONE)

        results = await asyncio.gather(
            verification_service.verify_code(TEST_PHONE, "111111"),
            verification_service.verify_code(TEST_PHONE, "123456"),
            verification_service.verify_code(TEST_PHONE, "222222"),
            return_exceptions=True,
        )

        assert isinstance(results[0], CodeMismatchError)
        assert results[1].phone == TEST_PHONE
        assert isinstance(results[2], CodeNotRequestedError)

    async def test_different_phones_do_not_interfere(
        self, verification_service, gateway
    ) -> None:
        await verification_service.send_code(TEST_PHONE)
        first = gateway.last_code
        await verification_service.send_code(OTHER_PHONE)
        second = gateway.last_code

        a, b = await asyncio.gather(
            verification_service.verify_code(TEST_PHONE, first),
            verification_service.verify_code(OTHER_PHONE, second),
        )

        assert a.phone == TEST_PHONE
        assert b.phone == OTHER_PHONE
