import pytest

import auth
import db
from errors import ValidationError


def test_default_admin_seeded_once():
    auth.ensure_default_admin()
    auth.ensure_default_admin()
    assert db.fetch_one("SELECT COUNT(*) AS c FROM admin_users")["c"] == 1
    assert db.is_force_password_change() is True
    assert auth.authenticate("admin", auth.DEFAULT_ADMIN_PASSWORD) is True
    assert auth.authenticate("admin", "nope") is False
    assert auth.authenticate("ghost", auth.DEFAULT_ADMIN_PASSWORD) is False


def test_change_password_clears_forced_change():
    auth.ensure_default_admin()
    auth.change_password("admin", "club-dues-2026", "club-dues-2026")
    assert db.is_force_password_change() is False
    assert auth.authenticate("admin", "club-dues-2026") is True
    assert auth.authenticate("admin", auth.DEFAULT_ADMIN_PASSWORD) is False


@pytest.mark.parametrize(
    "new, confirm",
    [("short", "short"), ("long-enough-1", "long-enough-2"), (auth.DEFAULT_ADMIN_PASSWORD, auth.DEFAULT_ADMIN_PASSWORD)],
)
def test_change_password_rejects_weak_or_mismatched(new, confirm):
    auth.ensure_default_admin()
    with pytest.raises(ValidationError):
        auth.change_password("admin", new, confirm)
    assert db.is_force_password_change() is True


def test_long_passwords_are_truncated_consistently():
    hashed = auth.hash_password("x" * 100, rounds=4)
    assert auth.verify_password("x" * 72 + "different tail", hashed) is True
    assert auth.verify_password("y" * 100, hashed) is False


def test_malformed_hash_never_verifies():
    assert auth.verify_password("anything", "not-a-bcrypt-hash") is False
