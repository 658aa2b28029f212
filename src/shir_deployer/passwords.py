"""Cryptographically strong password generation for the VM admin secret."""

from __future__ import annotations

import secrets
import string

SPECIAL_CHARACTERS = "!@#$%^&*()-_=+[]{}<>?"
PASSWORD_ALPHABET = string.ascii_letters + string.digits + SPECIAL_CHARACTERS

DEFAULT_PASSWORD_LENGTH = 16
DEFAULT_MIN_SPECIAL = 5

# Acceptance rate per candidate is well above 10% for the defaults
MAX_GENERATION_ATTEMPTS = 1000


def _is_acceptable(candidate: str, min_special: int) -> bool:
    special = sum(1 for c in candidate if not c.isalnum())
    return (
        special >= min_special
        and any(c.islower() for c in candidate)
        and any(c.isupper() for c in candidate)
        and any(c.isdigit() for c in candidate)
    )


def generate_password(
    length: int = DEFAULT_PASSWORD_LENGTH,
    min_special: int = DEFAULT_MIN_SPECIAL,
) -> str:
    """Generate a random password using the ``secrets`` CSPRNG.

    Candidates with fewer than ``min_special`` non-alphanumeric characters, or
    lacking a lowercase, uppercase or digit character, are rejected and
    regenerated.

    Raises:
        ValueError: If ``length`` cannot hold ``min_special`` specials plus one
            character of each remaining class.
        RuntimeError: If no acceptable candidate is produced within
            MAX_GENERATION_ATTEMPTS.
    """
    if min_special < 0:
        raise ValueError(f"min_special cannot be negative: {min_special}")
    if length < min_special + 3:
        raise ValueError(
            f"length {length} too short for {min_special} special characters "
            "plus lowercase, uppercase and digit"
        )

    for _ in range(MAX_GENERATION_ATTEMPTS):
        candidate = "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))
        if _is_acceptable(candidate, min_special):
            return candidate

    raise RuntimeError(
        f"Failed to generate an acceptable password in {MAX_GENERATION_ATTEMPTS} attempts"
    )
