"""
tests/test_passwords.py -- Password policy and bcrypt hashing.

Coverage:
  - Policy: length, lowercase, uppercase, digit, symbol, 72-byte cap
  - Weak passwords are rejected before any hashing work
  - verify(P, hash(P)) is True; verify(P, hash(P')) is False
  - Salt is unique per call and embedded with the cost factor
  - Malformed digests raise CorruptDigestError; mismatches never raise
"""

from __future__ import annotations

import bcrypt
import pytest

from auth.errors import CorruptDigestError, WeakPasswordError
from auth.passwords import PasswordHasher, check_strength

VALID = ["Passw0rd!", "H3ll0W0rld?", "aB3-aaaa", "Zz9^Zz9^Zz9^", "Correct-Horse-Battery-1"]


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


class TestPolicy:
    """check_strength() enforces the creation policy."""

    @pytest.mark.parametrize("password", VALID)
    def test_valid_passwords_pass(self, password: str) -> None:
        """Passwords meeting every rule must not raise."""
        check_strength(password)

    @pytest.mark.parametrize(
        "password",
        [
            "Pa0!",  # too short
            "passw0rd!",  # no uppercase
            "PASSW0RD!",  # no lowercase
            "Password!",  # no digit
            "Passw0rdd",  # no symbol
            "Passw0rd_",  # underscore is not in the symbol set
            "",
            "Aa1!" + "x" * 69,  # 73 bytes: past bcrypt's limit
        ],
    )
    def test_weak_passwords_rejected(self, password: str) -> None:
        """Any single missing rule must raise WeakPasswordError."""
        with pytest.raises(WeakPasswordError):
            check_strength(password)

    def test_rejected_before_hashing(self, hasher: PasswordHasher, monkeypatch) -> None:
        """hash() must reject a weak password without calling bcrypt."""

        def _fail(*args, **kwargs):
            raise AssertionError("bcrypt must not run for a weak password")

        monkeypatch.setattr(bcrypt, "hashpw", _fail)
        with pytest.raises(WeakPasswordError):
            hasher.hash("weak")


class TestHashing:
    """hash() and verify() behaviour."""

    @pytest.mark.parametrize("password", VALID)
    def test_verify_accepts_own_hash(self, hasher: PasswordHasher, password: str) -> None:
        """verify(P, hash(P)) must be True."""
        assert hasher.verify(password, hasher.hash(password)) is True

    def test_verify_rejects_other_password(self, hasher: PasswordHasher) -> None:
        """verify(P', hash(P)) must be False for every other password."""
        digest = hasher.hash("Passw0rd!")
        for other in VALID[1:] + ["passw0rd!", "Passw0rd", "Passw0rd!!"]:
            assert hasher.verify(other, digest) is False

    def test_salt_unique_per_call(self, hasher: PasswordHasher) -> None:
        """Hashing the same password twice must give different digests."""
        assert hasher.hash("Passw0rd!") != hasher.hash("Passw0rd!")

    def test_digest_embeds_cost_factor(self) -> None:
        """The digest must be a 60-char bcrypt string carrying its cost factor."""
        digest = PasswordHasher(rounds=5).hash("Passw0rd!")
        assert digest.startswith("$2b$05$")
        assert len(digest) == 60

    def test_default_cost_factor_is_12(self) -> None:
        """A hasher built without arguments must use cost 12."""
        assert PasswordHasher().rounds == 12

    def test_overlong_password_never_matches(self, hasher: PasswordHasher) -> None:
        """A password past 72 bytes must not match a digest of its prefix."""
        digest = hasher.hash("Passw0rd!")
        assert hasher.verify("Passw0rd!" + "x" * 100, digest) is False

    @pytest.mark.parametrize("digest", ["", "plaintext", "$2b$04$short"])
    def test_corrupt_digest_raises(self, hasher: PasswordHasher, digest: str) -> None:
        """A stored value that is not a bcrypt digest must raise CorruptDigestError."""
        with pytest.raises(CorruptDigestError):
            hasher.verify("Passw0rd!", digest)

    def test_dummy_digest_matches_nothing_real(self, hasher: PasswordHasher) -> None:
        """The timing dummy must never verify against a real password."""
        dummy = hasher.dummy_digest()
        for password in VALID:
            assert hasher.verify(password, dummy) is False
