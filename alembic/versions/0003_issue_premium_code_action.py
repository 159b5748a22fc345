"""add issue_premium_code to the audit_action enum

Revision ID: 0003_issue_premium_code_action
Revises: 0002_append_only_triggers
Create Date: 2026-10-19
"""

from alembic import op

revision = "0003_issue_premium_code_action"
down_revision = "0002_append_only_triggers"
branch_labels = None
depends_on = None


def upgrade() -> None:
    # SQLite stores the enum as plain text with no CHECK constraint.
    if op.get_bind().dialect.name == "postgresql":
        op.execute("ALTER TYPE audit_action ADD VALUE IF NOT EXISTS 'issue_premium_code'")


def downgrade() -> None:
    # PostgreSQL cannot drop a single enum value; audit rows using it are append-only anyway.
    pass
