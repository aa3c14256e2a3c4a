"""Tests for argon2id password hashing."""

import pytest

from chirpy.service.passwords import PASSWORD_ALGO, PasswordHasher


@pytest.fixture
def hasher():
    return PasswordHasher()


class TestPasswordHasher:
    def test_hash_then_verify_succeeds(self, hasher):
        password_hash = hasher.hash("correct horse battery staple")

        assert hasher.verify("correct horse battery staple", password_hash) is True

    def test_verify_rejects_other_password(self, hasher):
        password_hash = hasher.hash("correct horse battery staple")

        assert hasher.verify("correct horse battery stapler", password_hash) is False

    def test_hash_is_not_plaintext(self, hasher):
        password_hash = hasher.hash("TestPassword123!")

        assert "TestPassword123!" not in password_hash
        assert password_hash.startswith("$argon2id$")

    def test_same_password_produces_different_hashes(self, hasher):
        """Salting makes every hash of the same password unique."""
        assert hasher.hash("TestPassword123!") != hasher.hash("TestPassword123!")

    def test_empty_password_round_trips(self, hasher):
        password_hash = hasher.hash("")

        assert hasher.verify("", password_hash) is True
        assert hasher.verify(" ", password_hash) is False

    @pytest.mark.parametrize(
        "stored",
        [
            "",
            "not-a-hash",
            "$2a$10$N9qo8uLOickgx2ZMRZoMyeIjZAgcfl7p92ldGxad68LJZdL17lhWy",
        ],
    )
    def test_malformed_or_foreign_hash_is_a_mismatch(self, hasher, stored):
        assert hasher.verify("password", stored) is False

    def test_algorithm_tag(self, hasher):
        assert hasher.algorithm == PASSWORD_ALGO == "argon2id"
