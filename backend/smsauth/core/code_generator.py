"""Numeric verification code generation."""

import secrets


def generate_code(length: int) -> str:
    """Generate a uniformly random decimal code of exactly ``length`` digits.

    Sampled from [10^(length-1), 10^length - 1], so codes never start with
    a zero. Uses the ``secrets`` CSPRNG.

    Args:
        length: Number of digits.

    Returns:
        The code as a string.

    Raises:
        ValueError: If length is less than 1.
    """
    if length < 1:
        msg = f"Code length must be at least 1, got {length}"
        raise ValueError(msg)
    low = 10 ** (length - 1)
    high = 10**length - 1
    return str(low + secrets.randbelow(high - low + 1))
