"""Tests for password generation."""

from unittest.mock import patch

import pytest

from shir_deployer import passwords
from shir_deployer.passwords import PASSWORD_ALPHABET, generate_password


def special_count(password: str) -> int:
    return sum(1 for c in password if not c.isalnum())


class TestGeneratePassword:
    """Tests for generate_password()."""

    def test_defaults(self) -> None:
        password = generate_password()

        assert len(password) == 16
        assert special_count(password) >= 5

    def test_many_passwords_meet_policy(self) -> None:
        """Test the policy over a large sample."""
        for _ in range(10_000):
            password = generate_password()
            assert len(password) == 16
            assert special_count(password) >= 5
            assert any(c.islower() for c in password)
            assert any(c.isupper() for c in password)
            assert any(c.isdigit() for c in password)
            assert set(password) <= set(PASSWORD_ALPHABET)

    def test_custom_length(self) -> None:
        password = generate_password(length=32, min_special=8)

        assert len(password) == 32
        assert special_count(password) >= 8

    def test_passwords_differ(self) -> None:
        assert len({generate_password() for _ in range(100)}) == 100

    def test_length_too_short(self) -> None:
        with pytest.raises(ValueError, match="too short"):
            generate_password(length=7, min_special=5)

    def test_negative_min_special(self) -> None:
        with pytest.raises(ValueError, match="negative"):
            generate_password(min_special=-1)

    def test_gives_up_after_max_attempts(self) -> None:
        """Test that an unsatisfiable source fails instead of looping forever."""
        with patch.object(passwords.secrets, "choice", return_value="a"):
            with pytest.raises(RuntimeError, match="Failed to generate"):
                generate_password()
