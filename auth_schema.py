"""
Authentication schema definition.

Declares the three tables behind the authentication subsystem:

- ``users``: principals that sign in through exactly one provider
  (``local``, ``oidc`` or ``ldap``).
- ``password_resets``: at most one outstanding reset credential per email.
- ``personal_access_tokens``: revocable tokens owned by any "tokenable"
  entity (type discriminator + id, no foreign key).

``up()`` and ``down()`` only describe the mutation. They are handed a
table builder and a SQL function accessor (see ``SchemaTools``) and never
touch a connection themselves; the migration engine owns I/O and the
transaction.
"""

from dataclasses import dataclass
from typing import Any, List

import sqlalchemy as sa
from sqlalchemy.dialects import mysql

# Table names
USERS_TABLE = "users"
PASSWORD_RESETS_TABLE = "password_resets"
PERSONAL_ACCESS_TOKENS_TABLE = "personal_access_tokens"

# Creation order; there are no inter-table foreign keys so any order works
TABLE_NAMES = (USERS_TABLE, PASSWORD_RESETS_TABLE, PERSONAL_ACCESS_TOKENS_TABLE)

# Default bounded string length for string columns
STRING_LENGTH = 255
REMEMBER_TOKEN_LENGTH = 100

# Auth providers
AUTH_PROVIDER_LOCAL = "local"
AUTH_PROVIDER_OIDC = "oidc"
AUTH_PROVIDER_LDAP = "ldap"
VALID_AUTH_PROVIDERS = {AUTH_PROVIDER_LOCAL, AUTH_PROVIDER_OIDC, AUTH_PROVIDER_LDAP}
FEDERATED_AUTH_PROVIDERS = {AUTH_PROVIDER_OIDC, AUTH_PROVIDER_LDAP}
DEFAULT_AUTH_PROVIDER = AUTH_PROVIDER_LOCAL


@dataclass(frozen=True)
class SchemaTools:
    """Capabilities handed to ``up()`` / ``down()``.

    Attributes:
        schema: Table builder exposing ``create_table(name, *elements)``
            and ``drop_table(name)`` (an Alembic ``Operations`` in practice).
        fn: SQL function accessor exposing ``now()`` for server-side
            timestamp defaults (``sqlalchemy.func`` in practice).
    """

    schema: Any
    fn: Any


# ---------------------------------------------------------------------------
# Column helpers
# ---------------------------------------------------------------------------


def _unsigned_big_integer() -> sa.types.TypeEngine:
    """BIGINT UNSIGNED on MySQL, plain BIGINT elsewhere (paired with a CHECK)."""
    return sa.BigInteger().with_variant(mysql.BIGINT(unsigned=True), "mysql")


def _unsigned_check(table: str, column: str) -> sa.CheckConstraint:
    return sa.CheckConstraint(f"{column} >= 0", name=f"{table}_{column}_unsigned")


def _timestamps(fn, default_to_now: bool) -> List[sa.Column]:
    """``created_at`` / ``updated_at`` pair.

    With ``default_to_now`` both columns are NOT NULL and default to
    ``fn.now()``; otherwise both are nullable with no default.
    """
    if default_to_now:
        return [
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=fn.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=fn.now()),
        ]
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


# ---------------------------------------------------------------------------
# Table definitions
# ---------------------------------------------------------------------------


def users_elements(fn) -> list:
    """Columns and constraints of the ``users`` table."""
    return [
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(STRING_LENGTH), nullable=True),
        sa.Column("email", sa.String(STRING_LENGTH), nullable=True),
        sa.Column("email_verified_at", sa.DateTime(timezone=True), nullable=True),
        # One of VALID_AUTH_PROVIDERS; membership is checked before write
        sa.Column(
            "auth_provider",
            sa.String(STRING_LENGTH),
            nullable=False,
            server_default=DEFAULT_AUTH_PROVIDER,
        ),
        # OIDC sub claim, LDAP DN/UID; null for local accounts
        sa.Column("auth_provider_id", sa.String(STRING_LENGTH), nullable=True),
        # Salted hash, only set for local accounts
        sa.Column("password", sa.String(STRING_LENGTH), nullable=True),
        sa.Column("remember_token", sa.String(REMEMBER_TOKEN_LENGTH), nullable=True),
        *_timestamps(fn, default_to_now=True),
        sa.UniqueConstraint("email", name="users_email_unique"),
        sa.UniqueConstraint(
            "auth_provider",
            "auth_provider_id",
            name="users_auth_provider_auth_provider_id_unique",
        ),
    ]


def password_resets_elements(fn) -> list:
    """Columns of the ``password_resets`` table."""
    return [
        sa.Column("email", sa.String(STRING_LENGTH), primary_key=True),
        sa.Column("token", sa.String(STRING_LENGTH), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=fn.now()),
    ]


def personal_access_tokens_elements(fn) -> list:
    """Columns, indexes and constraints of the ``personal_access_tokens`` table."""
    table = PERSONAL_ACCESS_TOKENS_TABLE
    return [
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tokenable_type", sa.String(STRING_LENGTH), nullable=True),
        sa.Column("tokenable_id", _unsigned_big_integer(), nullable=True),
        sa.Column("name", sa.String(STRING_LENGTH), nullable=True),
        sa.Column("abilities", sa.String(STRING_LENGTH), nullable=True),
        sa.Column("payload", sa.Text(), nullable=True),
        # Absolute expiry in Unix epoch seconds
        sa.Column("ttl", _unsigned_big_integer(), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(fn, default_to_now=False),
        sa.Index(f"{table}_tokenable_id_index", "tokenable_id"),
        sa.Index(f"{table}_ttl_index", "ttl"),
        _unsigned_check(table, "tokenable_id"),
        _unsigned_check(table, "ttl"),
    ]


_TABLE_ELEMENTS = {
    USERS_TABLE: users_elements,
    PASSWORD_RESETS_TABLE: password_resets_elements,
    PERSONAL_ACCESS_TOKENS_TABLE: personal_access_tokens_elements,
}


# ---------------------------------------------------------------------------
# Migration entry points
# ---------------------------------------------------------------------------


def up(tools: SchemaTools) -> List[sa.Table]:
    """Create the authentication tables.

    Returns the created table descriptions in creation order.
    """
    return [
        tools.schema.create_table(name, *_TABLE_ELEMENTS[name](tools.fn))
        for name in TABLE_NAMES
    ]


def down(tools: SchemaTools) -> List[str]:
    """Drop the authentication tables.

    A missing table is reported by the engine; nothing is caught here.
    Returns the dropped table names.
    """
    for name in TABLE_NAMES:
        tools.schema.drop_table(name)
    return list(TABLE_NAMES)


# ---------------------------------------------------------------------------
# Typed tables for the data-access layer
# ---------------------------------------------------------------------------

metadata = sa.MetaData()

users = sa.Table(USERS_TABLE, metadata, *users_elements(sa.func))
password_resets = sa.Table(PASSWORD_RESETS_TABLE, metadata, *password_resets_elements(sa.func))
personal_access_tokens = sa.Table(
    PERSONAL_ACCESS_TOKENS_TABLE, metadata, *personal_access_tokens_elements(sa.func)
)
