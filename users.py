"""
Users module for multi-provider authentication.

Each user signs in through exactly one provider:

- ``local``: email + password, stored as a bcrypt hash.
- ``oidc`` / ``ldap``: identified by ``auth_provider_id`` (OIDC ``sub``
  claim, LDAP DN/UID); never carries a password.

The table cannot express that conditional nullability, so every write goes
through ``validate_provider_fields()`` first. Uniqueness violations
(duplicate email, duplicate provider identity) are raised by the database
as ``sqlalchemy.exc.IntegrityError`` and propagate to the caller.
"""

import hmac
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import sqlalchemy as sa

from auth import (
    MAX_PASSWORD_BYTES,
    dummy_password_check,
    generate_remember_token,
    hash_password,
    password_too_long,
    verify_password,
)
from auth_schema import (
    AUTH_PROVIDER_LDAP,
    AUTH_PROVIDER_LOCAL,
    AUTH_PROVIDER_OIDC,
    DEFAULT_AUTH_PROVIDER,
    FEDERATED_AUTH_PROVIDERS,
    VALID_AUTH_PROVIDERS,
    users,
)
from errors import ErrorCode, raise_auth_error

logger = logging.getLogger(__name__)

# Never returned to callers
_HIDDEN_COLUMNS = ("password", "remember_token")
_TIMESTAMP_COLUMNS = ("email_verified_at", "created_at", "updated_at")


def _get_db_connection():
    """Get a transactional database connection as a context manager."""
    from database import get_db_manager
    return get_db_manager().get_connection()


def _row_to_dict(row) -> Dict[str, Any]:
    """Convert a users row to a dict with ISO timestamps and no secrets."""
    d = {k: v for k, v in row._mapping.items() if k not in _HIDDEN_COLUMNS}
    for ts_key in _TIMESTAMP_COLUMNS:
        val = d.get(ts_key)
        if isinstance(val, datetime):
            d[ts_key] = val.isoformat()
    return d


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_provider_fields(
    auth_provider: str,
    auth_provider_id: Optional[str],
    password: Optional[str],
) -> None:
    """Check the provider-conditional invariants before a write.

    Raises:
        AuthDataError: provider unknown, local account without password,
            with a password over bcrypt's 72-byte limit or with an external
            id, federated account without an external id or with a password.
    """
    if auth_provider not in VALID_AUTH_PROVIDERS:
        raise_auth_error(
            ErrorCode.AUTH_PROVIDER_INVALID,
            details={"auth_provider": auth_provider, "valid": sorted(VALID_AUTH_PROVIDERS)},
        )

    if auth_provider == AUTH_PROVIDER_LOCAL:
        if not password:
            raise_auth_error(ErrorCode.PASSWORD_REQUIRED)
        if password_too_long(password):
            raise_auth_error(ErrorCode.PASSWORD_TOO_LONG, details={"max_bytes": MAX_PASSWORD_BYTES})
        if auth_provider_id is not None:
            raise_auth_error(ErrorCode.PROVIDER_ID_NOT_ALLOWED)
    elif auth_provider in FEDERATED_AUTH_PROVIDERS:
        if not auth_provider_id:
            raise_auth_error(ErrorCode.PROVIDER_ID_REQUIRED, details={"auth_provider": auth_provider})
        if password is not None:
            raise_auth_error(ErrorCode.PASSWORD_NOT_ALLOWED, details={"auth_provider": auth_provider})


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------


def create_user(
    *,
    email: str,
    name: Optional[str] = None,
    auth_provider: str = DEFAULT_AUTH_PROVIDER,
    auth_provider_id: Optional[str] = None,
    password: Optional[str] = None,
) -> Dict[str, Any]:
    """Create a new user.

    ``password`` is the plaintext; only its bcrypt hash is stored.
    Returns the created user dict.
    """
    validate_provider_fields(auth_provider, auth_provider_id, password)

    values = {
        "email": email,
        "name": name,
        "auth_provider": auth_provider,
        "auth_provider_id": auth_provider_id,
        "password": hash_password(password) if password else None,
    }
    with _get_db_connection() as conn:
        result = conn.execute(sa.insert(users).values(**values))
        user_id = result.inserted_primary_key[0]
        row = conn.execute(sa.select(users).where(users.c.id == user_id)).one()

    logger.info("Created %s user %s (%s)", auth_provider, user_id, email)
    return _row_to_dict(row)


def _fetch_one(where) -> Optional[Dict[str, Any]]:
    with _get_db_connection() as conn:
        row = conn.execute(sa.select(users).where(where)).first()
    return _row_to_dict(row) if row else None


def get_user(user_id: int) -> Optional[Dict[str, Any]]:
    """Get a user by ID."""
    return _fetch_one(users.c.id == user_id)


def get_user_by_email(email: str) -> Optional[Dict[str, Any]]:
    """Get a user by email address."""
    return _fetch_one(users.c.email == email)


def get_user_by_provider(auth_provider: str, auth_provider_id: str) -> Optional[Dict[str, Any]]:
    """Get the user linked to an external identity."""
    return _fetch_one(
        sa.and_(
            users.c.auth_provider == auth_provider,
            users.c.auth_provider_id == auth_provider_id,
        )
    )


def list_users(*, auth_provider: Optional[str] = None) -> List[Dict[str, Any]]:
    """List users, optionally filtered by provider."""
    stmt = sa.select(users).order_by(users.c.id)
    if auth_provider:
        stmt = stmt.where(users.c.auth_provider == auth_provider)
    with _get_db_connection() as conn:
        rows = conn.execute(stmt).all()
    return [_row_to_dict(row) for row in rows]


def get_or_create_federated_user(
    auth_provider: str,
    auth_provider_id: str,
    *,
    email: str,
    name: Optional[str] = None,
) -> Dict[str, Any]:
    """Return the user for an external identity, creating it on first login."""
    if auth_provider not in FEDERATED_AUTH_PROVIDERS:
        raise_auth_error(
            ErrorCode.AUTH_PROVIDER_INVALID,
            message="Only federated providers can be linked on first login.",
            details={"auth_provider": auth_provider},
        )

    user = get_user_by_provider(auth_provider, auth_provider_id)
    if user:
        return user
    return create_user(
        email=email,
        name=name,
        auth_provider=auth_provider,
        auth_provider_id=auth_provider_id,
    )


def _update(user_id: int, **values) -> Dict[str, Any]:
    """Update columns and bump updated_at. Raises if the user is missing."""
    with _get_db_connection() as conn:
        result = conn.execute(
            sa.update(users)
            .where(users.c.id == user_id)
            .values(updated_at=sa.func.now(), **values)
        )
        if result.rowcount == 0:
            raise_auth_error(ErrorCode.USER_NOT_FOUND, details={"user_id": user_id})
        row = conn.execute(sa.select(users).where(users.c.id == user_id)).one()
    return _row_to_dict(row)


def update_user(user_id: int, *, name: Optional[str] = None, email: Optional[str] = None) -> Dict[str, Any]:
    """Update profile fields. Only non-None values are updated."""
    values = {}
    if name is not None:
        values["name"] = name
    if email is not None:
        values["email"] = email
    if not values:
        user = get_user(user_id)
        if user is None:
            raise_auth_error(ErrorCode.USER_NOT_FOUND, details={"user_id": user_id})
        return user
    return _update(user_id, **values)


def mark_email_verified(user_id: int) -> Dict[str, Any]:
    """Record that the user's email address has been verified."""
    user = _update(user_id, email_verified_at=sa.func.now())
    logger.info("Email verified for user %s", user_id)
    return user


def set_password(user_id: int, password: str) -> Dict[str, Any]:
    """Replace a local user's password (plaintext in, hash stored)."""
    user = get_user(user_id)
    if user is None:
        raise_auth_error(ErrorCode.USER_NOT_FOUND, details={"user_id": user_id})
    validate_provider_fields(user["auth_provider"], user["auth_provider_id"], password)

    updated = _update(user_id, password=hash_password(password))
    logger.info("Password changed for user %s", user_id)
    return updated


def delete_user(user_id: int) -> bool:
    """Delete a user (hard delete)."""
    with _get_db_connection() as conn:
        result = conn.execute(sa.delete(users).where(users.c.id == user_id))
    if result.rowcount:
        logger.info("Deleted user %s", user_id)
    return result.rowcount > 0


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


def verify_credentials(email: str, password: str) -> Optional[Dict[str, Any]]:
    """Return the local user matching email + password, else None.

    Unknown emails and federated accounts still pay for one bcrypt check so
    response time does not reveal which accounts exist.
    """
    with _get_db_connection() as conn:
        row = conn.execute(
            sa.select(users).where(
                users.c.email == email,
                users.c.auth_provider == AUTH_PROVIDER_LOCAL,
            )
        ).first()

    if row is None or not row.password:
        dummy_password_check(password)
        return None
    if not verify_password(password, row.password):
        return None
    return _row_to_dict(row)


def refresh_remember_token(user_id: int) -> str:
    """Issue a new remember token for persistent login and return it."""
    token = generate_remember_token()
    _update(user_id, remember_token=token)
    return token


def get_user_by_remember_token(user_id: int, token: str) -> Optional[Dict[str, Any]]:
    """Resolve a persistent-login cookie (user id + remember token)."""
    with _get_db_connection() as conn:
        row = conn.execute(sa.select(users).where(users.c.id == user_id)).first()
    if row is None or not row.remember_token:
        return None
    if not hmac.compare_digest(row.remember_token.encode("utf-8"), token.encode("utf-8")):
        return None
    return _row_to_dict(row)


def clear_remember_token(user_id: int) -> None:
    """Forget the remember token (logout everywhere)."""
    _update(user_id, remember_token=None)
