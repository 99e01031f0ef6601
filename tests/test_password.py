"""
Tests for bcrypt password hashing.
"""

import pytest

from auth.password import hash_password, verify_password


class TestPasswordHashing:
    def test_hash_uses_twelve_rounds(self):
        hashed = hash_password("s3cret-pass")
        assert hashed.startswith("$2b$12$")

    def test_same_password_gets_fresh_salt(self, fast_hashing):
        assert hash_password("s3cret-pass") != hash_password("s3cret-pass")

    def test_verify_roundtrip(self, fast_hashing):
        hashed = hash_password("s3cret-pass")
        assert verify_password("s3cret-pass", hashed) is True
        assert verify_password("wrong-pass", hashed) is False

    @pytest.mark.parametrize("bad_hash", ["", None, "not-a-bcrypt-hash", "$2b$12$short"])
    def test_malformed_hash_is_a_mismatch(self, bad_hash):
        assert verify_password("anything", bad_hash) is False

    def test_overlong_password_rejected(self):
        with pytest.raises(ValueError):
            hash_password("x" * 73)
