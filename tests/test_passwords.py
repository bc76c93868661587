"""Unit tests for auth/passwords.py -- bcrypt hashing."""

from auth.passwords import PasswordHasher


def test_hash_and_verify(hasher: PasswordHasher) -> None:
    digest = hasher.hash("Str0ng!Pass")
    assert digest.startswith("$2b$04$")
    assert hasher.verify("Str0ng!Pass", digest)
    assert not hasher.verify("Str0ng!pass", digest)


def test_hashes_are_salted(hasher: PasswordHasher) -> None:
    assert hasher.hash("Str0ng!Pass") != hasher.hash("Str0ng!Pass")


def test_malformed_hash_does_not_verify(hasher: PasswordHasher) -> None:
    assert not hasher.verify("Str0ng!Pass", "not-a-bcrypt-hash")
    assert not hasher.verify("Str0ng!Pass", "")


def test_long_input_is_truncated_not_rejected(hasher: PasswordHasher) -> None:
    long_password = "Aa1!" * 30  # 120 bytes
    digest = hasher.hash(long_password)
    assert hasher.verify(long_password, digest)
    # Only the first 72 bytes take part in the comparison.
    assert hasher.verify(long_password[:72] + "different tail", digest)


def test_verify_dummy_returns_nothing(hasher: PasswordHasher) -> None:
    assert hasher.verify_dummy("anything") is None
