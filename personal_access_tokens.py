"""
Personal access tokens.

Tokens belong to any "tokenable" entity through a tagged relation
(``tokenable_type`` + ``tokenable_id``) rather than a foreign key. The type
discriminator is resolved through a registry mapping type names to tables;
``"user"`` -> ``users`` is registered out of the box.

Token format handed to clients: ``"<id>|<secret>"``. Only the SHA-256 hash
of the secret is stored (in ``payload``). ``ttl`` holds the absolute expiry
in Unix epoch seconds, or NULL for tokens that never expire.
"""

import json
import logging
import time
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import sqlalchemy as sa

from auth import generate_token, verify_token
from auth_schema import STRING_LENGTH, personal_access_tokens, users
from config import get_config
from errors import ErrorCode, raise_auth_error

logger = logging.getLogger(__name__)

TOKEN_SEPARATOR = "|"
ABILITY_WILDCARD = "*"
TOKENABLE_TYPE_USER = "user"

# Largest id a signed 64-bit column can hold
MAX_TOKEN_ID = 2**63 - 1

# Columns never copied out of a resolved tokenable row
_SENSITIVE_COLUMNS = {"password", "remember_token"}

_tokenable_tables: Dict[str, sa.Table] = {TOKENABLE_TYPE_USER: users}


def _get_db_connection():
    from database import get_db_manager
    return get_db_manager().get_connection()


# ---------------------------------------------------------------------------
# Tokenable registry
# ---------------------------------------------------------------------------


def register_tokenable_type(type_name: str, table: sa.Table) -> None:
    """Map a tokenable_type discriminator to the table holding its rows.

    The table must have an ``id`` column.
    """
    if "id" not in table.c:
        raise ValueError(f"Tokenable table {table.name} has no id column")
    _tokenable_tables[type_name] = table
    logger.debug("Registered tokenable type %s -> %s", type_name, table.name)


def unregister_tokenable_type(type_name: str) -> None:
    _tokenable_tables.pop(type_name, None)


def get_tokenable_table(type_name: str) -> sa.Table:
    """Look up the table for a tokenable type."""
    table = _tokenable_tables.get(type_name)
    if table is None:
        raise_auth_error(
            ErrorCode.TOKENABLE_TYPE_UNKNOWN,
            details={"tokenable_type": type_name, "registered": sorted(_tokenable_tables)},
        )
    return table


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_ts(now: Optional[float]) -> int:
    return int(time.time() if now is None else now)


def _encode_abilities(abilities: Optional[Iterable[str]]) -> str:
    encoded = json.dumps(list(abilities) if abilities is not None else [ABILITY_WILDCARD])
    if len(encoded) > STRING_LENGTH:
        raise_auth_error(
            ErrorCode.ABILITIES_TOO_LONG,
            details={"length": len(encoded), "max_length": STRING_LENGTH},
        )
    return encoded


def _decode_abilities(value: Optional[str]) -> List[str]:
    if not value:
        return []
    try:
        decoded = json.loads(value)
    except json.JSONDecodeError:
        logger.warning("Ignoring malformed abilities value: %r", value)
        return []
    return [str(a) for a in decoded] if isinstance(decoded, list) else []


def _row_to_dict(row) -> Dict[str, Any]:
    """Convert a token row to a dict; the hashed secret is dropped."""
    d = {k: v for k, v in row._mapping.items() if k != "payload"}
    d["abilities"] = _decode_abilities(d.get("abilities"))
    for ts_key in ("last_used_at", "created_at", "updated_at"):
        val = d.get(ts_key)
        if isinstance(val, datetime):
            d[ts_key] = val.isoformat()
    return d


def is_expired(record: Dict[str, Any], now: Optional[float] = None) -> bool:
    """Check a token's ttl against the current (or given) epoch time."""
    ttl = record.get("ttl")
    return ttl is not None and ttl <= _now_ts(now)


def token_can(record: Dict[str, Any], ability: str) -> bool:
    """Check whether a token grants an ability ("*" grants all)."""
    abilities = record.get("abilities") or []
    return ABILITY_WILDCARD in abilities or ability in abilities


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


def create_token(
    tokenable_type: str,
    tokenable_id: int,
    name: str,
    abilities: Optional[Iterable[str]] = None,
    ttl_seconds: Optional[int] = None,
    now: Optional[float] = None,
) -> Dict[str, Any]:
    """Create a personal access token for a tokenable entity.

    Args:
        tokenable_type: Registered type discriminator, e.g. "user".
        tokenable_id: Id of the owning row.
        name: Human-readable label.
        abilities: Granted abilities; defaults to ["*"].
        ttl_seconds: Lifetime; falls back to AUTH_DEFAULT_TOKEN_TTL_SECONDS,
            None means the token never expires.
        now: Epoch seconds to compute expiry from (defaults to time.time()).

    Returns:
        Dict with 'token' (plaintext, show once), 'id', 'name', 'abilities',
        'ttl'.
    """
    get_tokenable_table(tokenable_type)
    if tokenable_id < 0:
        raise ValueError("tokenable_id must be non-negative")

    encoded_abilities = _encode_abilities(abilities)
    if ttl_seconds is None:
        ttl_seconds = get_config().auth.default_token_ttl_seconds
    ttl = _now_ts(now) + ttl_seconds if ttl_seconds is not None else None

    secret, secret_hash = generate_token()
    with _get_db_connection() as conn:
        result = conn.execute(
            sa.insert(personal_access_tokens).values(
                tokenable_type=tokenable_type,
                tokenable_id=tokenable_id,
                name=name,
                abilities=encoded_abilities,
                payload=secret_hash,
                ttl=ttl,
                created_at=sa.func.now(),
                updated_at=sa.func.now(),
            )
        )
        token_id = result.inserted_primary_key[0]

    logger.info("Created personal access token %s for %s:%s", token_id, tokenable_type, tokenable_id)
    return {
        "token": f"{token_id}{TOKEN_SEPARATOR}{secret}",  # Show ONCE
        "id": token_id,
        "name": name,
        "abilities": _decode_abilities(encoded_abilities),
        "ttl": ttl,
    }


def _parse_token(plain: str) -> Optional[tuple[int, str]]:
    token_id, sep, secret = plain.partition(TOKEN_SEPARATOR)
    if not sep or not secret or not (token_id.isascii() and token_id.isdigit()):
        return None
    parsed_id = int(token_id)
    if parsed_id > MAX_TOKEN_ID:
        return None
    return parsed_id, secret


def find_token(plain: str, now: Optional[float] = None) -> Optional[Dict[str, Any]]:
    """Look up a token by its plaintext form.

    Returns the token record if the secret matches and the token has not
    expired, None otherwise.
    """
    parsed = _parse_token(plain)
    if parsed is None:
        return None
    token_id, secret = parsed

    with _get_db_connection() as conn:
        row = conn.execute(
            sa.select(personal_access_tokens).where(personal_access_tokens.c.id == token_id)
        ).first()

    if row is None or not verify_token(secret, row.payload):
        return None
    record = _row_to_dict(row)
    if is_expired(record, now):
        return None
    return record


def touch_token(token_id: int) -> None:
    """Update last_used_at for a token."""
    with _get_db_connection() as conn:
        conn.execute(
            sa.update(personal_access_tokens)
            .where(personal_access_tokens.c.id == token_id)
            .values(last_used_at=sa.func.now(), updated_at=sa.func.now())
        )


def list_tokens(tokenable_type: str, tokenable_id: int) -> List[Dict[str, Any]]:
    """List the tokens owned by one tokenable entity (never the secrets)."""
    with _get_db_connection() as conn:
        rows = conn.execute(
            sa.select(personal_access_tokens)
            .where(
                personal_access_tokens.c.tokenable_type == tokenable_type,
                personal_access_tokens.c.tokenable_id == tokenable_id,
            )
            .order_by(personal_access_tokens.c.id)
        ).all()
    return [_row_to_dict(row) for row in rows]


def revoke_token(token_id: int) -> bool:
    """Revoke (delete) a token. Returns True if a token was removed."""
    with _get_db_connection() as conn:
        result = conn.execute(
            sa.delete(personal_access_tokens).where(personal_access_tokens.c.id == token_id)
        )
    if result.rowcount:
        logger.info("Revoked personal access token %s", token_id)
    return result.rowcount > 0


def revoke_all_tokens(tokenable_type: str, tokenable_id: int) -> int:
    """Revoke every token of one tokenable entity. Returns the count."""
    with _get_db_connection() as conn:
        result = conn.execute(
            sa.delete(personal_access_tokens).where(
                personal_access_tokens.c.tokenable_type == tokenable_type,
                personal_access_tokens.c.tokenable_id == tokenable_id,
            )
        )
    return result.rowcount


def purge_expired_tokens(now: Optional[float] = None) -> int:
    """Delete tokens whose ttl has passed. Returns the count."""
    with _get_db_connection() as conn:
        result = conn.execute(
            sa.delete(personal_access_tokens).where(
                personal_access_tokens.c.ttl.is_not(None),
                personal_access_tokens.c.ttl <= _now_ts(now),
            )
        )
    if result.rowcount:
        logger.info("Purged %d expired personal access token(s)", result.rowcount)
    return result.rowcount


def resolve_tokenable(record: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Load the entity owning a token via the type -> table registry."""
    table = get_tokenable_table(record["tokenable_type"])
    with _get_db_connection() as conn:
        row = conn.execute(
            sa.select(table).where(table.c.id == record["tokenable_id"])
        ).first()
    if row is None:
        return None
    return {k: v for k, v in row._mapping.items() if k not in _SENSITIVE_COLUMNS}
