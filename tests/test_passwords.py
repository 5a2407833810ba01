"""Unit tests for auth/passwords.py -- bcrypt hashing and the strength policy.

Covers:
- hash() output verifies against the same plaintext and nothing else
- two hashes of one password differ (per-hash salt)
- verify() returns False for malformed digests instead of raising
- password_policy_errors() reports every violated rule at once
"""

from auth.passwords import PasswordHasher, password_policy_errors


class TestPasswordHasher:
    """Salted one-way hashing with constant-time verify."""

    def test_hash_verifies_correct_password(self, hasher: PasswordHasher) -> None:
        digest = hasher.hash("Passw0rd!")
        assert hasher.verify("Passw0rd!", digest)

    def test_hash_rejects_wrong_password(self, hasher: PasswordHasher) -> None:
        digest = hasher.hash("Passw0rd!")
        assert not hasher.verify("Passw0rd?", digest)
        assert not hasher.verify("", digest)

    def test_hashes_are_salted(self, hasher: PasswordHasher) -> None:
        assert hasher.hash("Passw0rd!") != hasher.hash("Passw0rd!")

    def test_digest_never_contains_plaintext(self, hasher: PasswordHasher) -> None:
        assert "Passw0rd!" not in hasher.hash("Passw0rd!")

    def test_malformed_digest_verifies_false(self, hasher: PasswordHasher) -> None:
        assert hasher.verify("Passw0rd!", "not-a-bcrypt-hash") is False

    def test_cost_factor_is_embedded(self) -> None:
        digest = PasswordHasher(rounds=5).hash("Passw0rd!")
        assert digest.startswith("$2b$05$")

    def test_burn_does_not_raise(self, hasher: PasswordHasher) -> None:
        hasher.burn("anything")


class TestPasswordPolicy:
    """password_policy_errors() returns an empty list only for strong passwords."""

    def test_strong_password_passes(self) -> None:
        assert password_policy_errors("Passw0rd!") == []

    def test_blank_password(self) -> None:
        assert password_policy_errors("   ") == ["Password is required"]

    def test_reports_every_violation(self) -> None:
        errors = password_policy_errors("abc")
        assert any("at least 8" in e for e in errors)
        assert any("uppercase" in e for e in errors)
        assert any("digit" in e for e in errors)
        assert any("special" in e for e in errors)
        assert not any("lowercase" in e for e in errors)

    def test_common_password_rejected_case_insensitively(self) -> None:
        errors = password_policy_errors("PASSWORD123")
        assert any("too common" in e for e in errors)

    def test_over_72_bytes_rejected(self) -> None:
        errors = password_policy_errors("Aa1!" + "x" * 70)
        assert any("72 bytes" in e for e in errors)
