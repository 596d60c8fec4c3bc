"""Tests for verification code generation."""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from smsauth.core.code_generator import generate_code


class TestGenerateCode:
    """Tests for generate_code."""

    @given(length=st.integers(min_value=1, max_value=12))
    @settings(max_examples=60)
    def test_exact_length_decimal_no_leading_zero(self, length: int) -> None:
        code = generate_code(length)
        assert len(code) == length
        assert code.isdigit()
        assert 10 ** (length - 1) <= int(code) <= 10**length - 1

    def test_six_digit_range(self) -> None:
        for _ in range(200):
            assert 100000 <= int(generate_code(6)) <= 999999

    def test_codes_vary(self) -> None:
        assert len({generate_code(6) for _ in range(50)}) > 1

    @pytest.mark.parametrize("length", [0, -1])
    def test_rejects_non_positive_length(self, length: int) -> None:
        with pytest.raises(ValueError, match="at least 1"):
            generate_code(length)
