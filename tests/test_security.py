from datetime import datetime, timedelta

from kidpoints.security import AuthManager, hash_password, verify_password


def test_password_hash_round_trip() -> None:
    stored = hash_password("Secret123")

    assert stored.startswith("$2")
    assert "Secret123" not in stored
    assert verify_password("Secret123", stored)
    assert not verify_password("Secret124", stored)


def test_hashes_are_salted() -> None:
    assert hash_password("Secret123") != hash_password("Secret123")


def test_malformed_stored_hash_never_verifies() -> None:
    assert not verify_password("Secret123", "not-a-bcrypt-hash")


def test_lockout_after_repeated_failures_and_expiry() -> None:
    manager = AuthManager(max_attempts=3, lockout_minutes=15)
    start = datetime(2024, 5, 1, 8, 0)

    for minute in range(3):
        manager.record_login_attempt("pat@example.com", success=False, at=start + timedelta(minutes=minute))

    assert manager.is_locked("pat@example.com", at=start + timedelta(minutes=3))
    assert not manager.is_locked("sam@example.com", at=start)
    assert not manager.is_locked("pat@example.com", at=start + timedelta(minutes=30))


def test_successful_login_clears_failures() -> None:
    manager = AuthManager(max_attempts=2)
    start = datetime(2024, 5, 1, 8, 0)

    manager.record_login_attempt("pat@example.com", success=False, at=start)
    manager.record_login_attempt("pat@example.com", success=True, at=start)
    manager.record_login_attempt("pat@example.com", success=False, at=start)

    assert not manager.is_locked("pat@example.com", at=start)
