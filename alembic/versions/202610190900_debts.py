"""borrowed and lent debts

Revision ID: 202610190900
Revises: 202601100900
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = "202601100900"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "debts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "direction",
            sa.Enum("borrowed", "lent", name="debtdirection"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("counterparty", sa.String(length=100)),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("accumulated_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=8)),
        sa.Column(
            "status",
            sa.Enum("UNPAID", "PAID", name="debtstatus"),
            nullable=False,
            server_default="UNPAID",
        ),
        sa.Column("icon", sa.String(length=100)),
        sa.Column("color", sa.String(length=9)),
        sa.Column("debt_date", sa.Date()),
        sa.Column("payoff_date", sa.Date()),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents > 0", name="ck_debt_amount_positive"),
        sa.CheckConstraint(
            "accumulated_cents >= 0 AND accumulated_cents <= amount_cents",
            name="ck_debt_accumulated_range",
        ),
    )
    op.create_index(
        "ix_debts_user_direction_status",
        "debts",
        ["user_id", "direction", "status"],
    )


def downgrade():
    op.drop_index("ix_debts_user_direction_status", table_name="debts")
    op.drop_table("debts")
