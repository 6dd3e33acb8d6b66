"""001 – Authentication tables: users, password_resets, personal_access_tokens.

Revision ID: 001
Revises:
Create Date: 2025-03-14

Users sign in through one provider (local, oidc or ldap). Password resets
keep one outstanding token per email. Personal access tokens belong to any
tokenable entity (type + id, no foreign key).
"""

import sqlalchemy as sa
from alembic import op

from auth_schema import SchemaTools, down, up

# revision identifiers
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    up(SchemaTools(schema=op, fn=sa.func))


def downgrade() -> None:
    down(SchemaTools(schema=op, fn=sa.func))
