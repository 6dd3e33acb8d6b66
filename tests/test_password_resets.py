"""
Tests for password reset tokens.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
import sqlalchemy as sa

from errors import AuthDataError, ErrorCode


def _later(**delta):
    return datetime.now(timezone.utc) + timedelta(**delta)


def _reset_rows(db_manager):
    from auth_schema import password_resets
    with db_manager.get_connection() as conn:
        return conn.execute(sa.select(password_resets)).all()


class TestCreatePasswordReset:
    def test_returns_plaintext_and_stores_hash(self, local_user, db_manager):
        from auth import hash_token
        from password_resets import create_password_reset

        token = create_password_reset("alice@example.com")
        rows = _reset_rows(db_manager)
        assert len(rows) == 1
        assert rows[0].email == "alice@example.com"
        assert rows[0].token == hash_token(token)
        assert rows[0].token != token
        assert rows[0].created_at is not None

    def test_new_request_replaces_previous(self, local_user, db_manager):
        from password_resets import create_password_reset, verify_password_reset

        first = create_password_reset("alice@example.com")
        second = create_password_reset("alice@example.com")
        assert len(_reset_rows(db_manager)) == 1
        assert verify_password_reset("alice@example.com", first) is False
        assert verify_password_reset("alice@example.com", second) is True

    def test_unknown_email(self, db_manager):
        from password_resets import create_password_reset
        with pytest.raises(AuthDataError) as exc_info:
            create_password_reset("ghost@example.com")
        assert exc_info.value.error_code is ErrorCode.USER_NOT_FOUND

    def test_federated_account_rejected(self, db_manager):
        from password_resets import create_password_reset
        from users import create_user

        create_user(email="fed@example.com", auth_provider="oidc", auth_provider_id="sub-f")
        with pytest.raises(AuthDataError) as exc_info:
            create_password_reset("fed@example.com")
        assert exc_info.value.error_code is ErrorCode.PASSWORD_NOT_ALLOWED


class TestVerifyPasswordReset:
    def test_valid(self, local_user):
        from password_resets import create_password_reset, verify_password_reset
        token = create_password_reset("alice@example.com")
        assert verify_password_reset("alice@example.com", token) is True

    def test_wrong_token(self, local_user):
        from password_resets import create_password_reset, verify_password_reset
        create_password_reset("alice@example.com")
        assert verify_password_reset("alice@example.com", "nope") is False

    def test_no_outstanding_reset(self, local_user):
        from password_resets import verify_password_reset
        assert verify_password_reset("alice@example.com", "anything") is False

    def test_expired(self, local_user):
        from password_resets import create_password_reset, verify_password_reset
        token = create_password_reset("alice@example.com")
        assert verify_password_reset("alice@example.com", token, now=_later(hours=2)) is False

    def test_expiry_window_from_config(self, local_user, monkeypatch):
        from config import reload_config
        from password_resets import create_password_reset, get_password_reset, is_expired

        monkeypatch.setenv("AUTH_PASSWORD_RESET_EXPIRE_MINUTES", "5")
        reload_config()
        create_password_reset("alice@example.com")
        record = get_password_reset("alice@example.com")
        assert is_expired(record, now=_later(minutes=1)) is False
        assert is_expired(record, now=_later(minutes=10)) is True

    def test_naive_now_treated_as_utc(self, local_user):
        from password_resets import create_password_reset, get_password_reset, is_expired

        create_password_reset("alice@example.com")
        record = get_password_reset("alice@example.com")
        assert is_expired(record, now=_later(minutes=1).replace(tzinfo=None)) is False
        assert is_expired(record, now=_later(hours=2).replace(tzinfo=None)) is True


class TestResetPassword:
    def test_success(self, local_user, db_manager):
        from password_resets import create_password_reset, reset_password
        from users import verify_credentials

        token = create_password_reset("alice@example.com")
        user = reset_password("alice@example.com", token, "new password")
        assert user["id"] == local_user["id"]
        assert verify_credentials("alice@example.com", "new password") is not None
        assert verify_credentials("alice@example.com", "correct horse") is None
        assert _reset_rows(db_manager) == []

    def test_single_use(self, local_user):
        from password_resets import create_password_reset, reset_password

        token = create_password_reset("alice@example.com")
        reset_password("alice@example.com", token, "new password")
        with pytest.raises(AuthDataError) as exc_info:
            reset_password("alice@example.com", token, "again")
        assert exc_info.value.error_code is ErrorCode.RESET_TOKEN_INVALID

    def test_wrong_token(self, local_user, db_manager):
        from password_resets import create_password_reset, reset_password

        create_password_reset("alice@example.com")
        with pytest.raises(AuthDataError) as exc_info:
            reset_password("alice@example.com", "forged", "new password")
        assert exc_info.value.error_code is ErrorCode.RESET_TOKEN_INVALID
        assert len(_reset_rows(db_manager)) == 1

    def test_token_consumed_concurrently(self, local_user, db_manager):
        """A reset whose row disappears mid-flight must not change the password."""
        import password_resets
        from auth_schema import password_resets as resets_table
        from password_resets import create_password_reset, reset_password
        from users import verify_credentials

        token = create_password_reset("alice@example.com")
        real_verify = password_resets.verify_token

        def verify_then_consume(plain, stored_hash):
            result = real_verify(plain, stored_hash)
            with db_manager.engine.begin() as other:
                other.execute(sa.delete(resets_table).where(resets_table.c.email == "alice@example.com"))
            return result

        with patch("password_resets.verify_token", side_effect=verify_then_consume):
            with pytest.raises(AuthDataError) as exc_info:
                reset_password("alice@example.com", token, "new password")
        assert exc_info.value.error_code is ErrorCode.RESET_TOKEN_INVALID
        assert verify_credentials("alice@example.com", "correct horse") is not None
        assert verify_credentials("alice@example.com", "new password") is None

    def test_password_too_long_keeps_token(self, local_user, db_manager):
        from password_resets import create_password_reset, reset_password, verify_password_reset

        token = create_password_reset("alice@example.com")
        with pytest.raises(AuthDataError) as exc_info:
            reset_password("alice@example.com", token, "p" * 100)
        assert exc_info.value.error_code is ErrorCode.PASSWORD_TOO_LONG
        assert verify_password_reset("alice@example.com", token) is True

    def test_expired_token_is_consumed(self, local_user, db_manager):
        from password_resets import create_password_reset, reset_password

        token = create_password_reset("alice@example.com")
        with pytest.raises(AuthDataError) as exc_info:
            reset_password("alice@example.com", token, "new password", now=_later(hours=2))
        assert exc_info.value.error_code is ErrorCode.RESET_TOKEN_EXPIRED
        assert _reset_rows(db_manager) == []


class TestCleanup:
    def test_delete(self, local_user):
        from password_resets import create_password_reset, delete_password_reset, get_password_reset

        create_password_reset("alice@example.com")
        assert delete_password_reset("alice@example.com") is True
        assert get_password_reset("alice@example.com") is None
        assert delete_password_reset("alice@example.com") is False

    def test_purge_keeps_fresh_rows(self, local_user, db_manager):
        from password_resets import create_password_reset, purge_expired_resets

        create_password_reset("alice@example.com")
        assert purge_expired_resets() == 0
        assert len(_reset_rows(db_manager)) == 1

    def test_purge_removes_expired_rows(self, local_user, db_manager):
        from password_resets import create_password_reset, purge_expired_resets

        create_password_reset("alice@example.com")
        assert purge_expired_resets(now=_later(hours=2)) == 1
        assert _reset_rows(db_manager) == []
