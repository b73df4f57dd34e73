"""Initial schema: users with unique business code and contact.

Revision ID: 001
Revises: None
Create Date: 2026-10-17
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tax_code", sa.String(14), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("contact", sa.String(255), nullable=False),
        sa.Column("total_tickets", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_ticket_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("total_tickets >= 0", name="check_total_tickets_non_negative"),
    )
    # Both unique indexes back the registration conflict checks; they are what
    # rejects the second of two registrations racing past the service checks.
    op.create_index("ix_users_tax_code", "users", ["tax_code"], unique=True)
    op.create_index("ix_users_contact", "users", ["contact"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_users_contact", table_name="users")
    op.drop_index("ix_users_tax_code", table_name="users")
    op.drop_table("users")
