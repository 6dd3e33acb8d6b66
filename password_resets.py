"""
Password reset tokens.

One outstanding reset per email (``email`` is the primary key): a new
request replaces the previous row. The plaintext token is returned once and
only its SHA-256 hash is stored. ``created_at`` is set by the database and
drives the expiry window (``AUTH_PASSWORD_RESET_EXPIRE_MINUTES``).
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import sqlalchemy as sa

from auth import generate_token, hash_password, verify_token
from auth_schema import AUTH_PROVIDER_LOCAL, password_resets, users
from config import get_config
from errors import ErrorCode, raise_auth_error

logger = logging.getLogger(__name__)


def _get_db_connection():
    from database import get_db_manager
    return get_db_manager().get_connection()


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; CURRENT_TIMESTAMP is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _expire_window() -> timedelta:
    return timedelta(minutes=get_config().auth.password_reset_expire_minutes)


def create_password_reset(email: str) -> str:
    """Start a password reset for a local account.

    Replaces any outstanding reset for ``email``.

    Returns:
        The plaintext token (hand to the user once, e.g. in an email link).
    """
    from users import get_user_by_email

    user = get_user_by_email(email)
    if user is None:
        raise_auth_error(ErrorCode.USER_NOT_FOUND, details={"email": email})
    if user["auth_provider"] != AUTH_PROVIDER_LOCAL:
        raise_auth_error(
            ErrorCode.PASSWORD_NOT_ALLOWED,
            message="Password resets are only available for local accounts.",
            details={"auth_provider": user["auth_provider"]},
        )

    token, token_hash = generate_token()
    with _get_db_connection() as conn:
        conn.execute(sa.delete(password_resets).where(password_resets.c.email == email))
        conn.execute(sa.insert(password_resets).values(email=email, token=token_hash))

    logger.info("Password reset requested for %s", email)
    return token


def get_password_reset(email: str) -> Optional[Dict[str, Any]]:
    """Get the outstanding reset row for an email (token is the stored hash)."""
    with _get_db_connection() as conn:
        row = conn.execute(
            sa.select(password_resets).where(password_resets.c.email == email)
        ).first()
    if row is None:
        return None
    record = dict(row._mapping)
    record["created_at"] = _as_utc(record["created_at"])
    return record


def is_expired(record: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    """Check whether a reset row is past the expiry window."""
    now = _as_utc(now) or datetime.now(timezone.utc)
    created_at = _as_utc(record.get("created_at"))
    if created_at is None:
        return True
    return created_at + _expire_window() < now


def verify_password_reset(email: str, token: str, now: Optional[datetime] = None) -> bool:
    """Check a token against the outstanding, unexpired reset for email."""
    record = get_password_reset(email)
    if record is None or is_expired(record, now):
        return False
    return verify_token(token, record["token"])


def reset_password(email: str, token: str, new_password: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Complete a reset: verify the token, set the password, consume the row.

    Runs as one transaction. The row is deleted by (email, token hash) before
    the password is written, so of two concurrent calls with the same token
    only one sees the delete succeed.

    Raises:
        AuthDataError: RESET_TOKEN_INVALID, RESET_TOKEN_EXPIRED,
            USER_NOT_FOUND, or a provider rule from
            ``users.validate_provider_fields``.
    """
    from users import get_user, validate_provider_fields

    failure = None
    with _get_db_connection() as conn:
        row = conn.execute(
            sa.select(password_resets).where(password_resets.c.email == email)
        ).first()
        if row is None or not verify_token(token, row.token):
            raise_auth_error(ErrorCode.RESET_TOKEN_INVALID, details={"email": email})

        user = conn.execute(sa.select(users).where(users.c.email == email)).first()
        if is_expired(dict(row._mapping), now):
            failure = ErrorCode.RESET_TOKEN_EXPIRED
        elif user is None:
            failure = ErrorCode.USER_NOT_FOUND
        else:
            validate_provider_fields(user.auth_provider, user.auth_provider_id, new_password)

        consumed = conn.execute(
            sa.delete(password_resets).where(
                password_resets.c.email == email,
                password_resets.c.token == row.token,
            )
        )
        if consumed.rowcount != 1:
            raise_auth_error(ErrorCode.RESET_TOKEN_INVALID, details={"email": email})

        if failure is None:
            conn.execute(
                sa.update(users)
                .where(users.c.id == user.id)
                .values(password=hash_password(new_password), updated_at=sa.func.now())
            )

    # Commit the consumed row before reporting the failure
    if failure is not None:
        raise_auth_error(failure, details={"email": email})

    logger.info("Password reset completed for %s", email)
    return get_user(user.id)


def delete_password_reset(email: str) -> bool:
    """Remove the outstanding reset for an email."""
    with _get_db_connection() as conn:
        result = conn.execute(sa.delete(password_resets).where(password_resets.c.email == email))
    return result.rowcount > 0


def purge_expired_resets(now: Optional[datetime] = None) -> int:
    """Delete every reset older than the expiry window.

    Returns:
        Number of rows deleted.
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now.astimezone(timezone.utc) - _expire_window()
    with _get_db_connection() as conn:
        result = conn.execute(
            sa.delete(password_resets).where(password_resets.c.created_at < cutoff)
        )
    if result.rowcount:
        logger.info("Purged %d expired password reset(s)", result.rowcount)
    return result.rowcount
