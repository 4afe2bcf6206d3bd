"""initial ledger schema

Revision ID: 202601100900
Revises:
Create Date: 2026-01-10 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202601100900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("full_name", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("timezone", sa.String(length=64), nullable=False, server_default="UTC"),
        sa.Column("month_start_date", sa.Integer()),
        sa.Column("fcm_token", sa.String(length=255)),
        sa.Column(
            "status",
            sa.Enum("ACTIVE", "INACTIVE", "BLOCKED", name="userstatus"),
            nullable=False,
            server_default="ACTIVE",
        ),
        *_timestamps(),
        sa.CheckConstraint(
            "month_start_date IS NULL OR month_start_date BETWEEN 1 AND 28",
            name="ck_users_month_start_date_range",
        ),
    )
    op.create_index("ix_users_status_timezone", "users", ["status", "timezone"])

    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=8), nullable=False),
        sa.Column("credit_limit_cents", sa.Integer()),
        sa.Column("icon", sa.String(length=100)),
        sa.Column("account_type", sa.String(length=50)),
        sa.Column("color", sa.String(length=9)),
        sa.Column("notes", sa.Text()),
        sa.Column("last_updated", sa.DateTime()),
        *_timestamps(),
    )
    op.create_index("ix_accounts_user_created", "accounts", ["user_id", "created_at"])

    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column(
            "kind", sa.Enum("income", "spending", name="entrykind"), nullable=False
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column(
            "repeat_for_all_year", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_entries_amount_positive"),
    )
    op.create_index(
        "ix_entries_user_kind_occurred",
        "ledger_entries",
        ["user_id", "kind", "occurred_at"],
    )
    op.create_index("ix_entries_user_date", "ledger_entries", ["user_id", "date"])
    op.create_index(
        "ix_entries_account_occurred", "ledger_entries", ["account_id", "occurred_at"]
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("category_key", sa.String(length=100), nullable=False),
        sa.Column("budget_value_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False, server_default="USD"),
        sa.Column(
            "period",
            sa.Enum("WEEKLY", "MONTHLY", name="budgetperiod"),
            nullable=False,
        ),
        sa.Column("notified_thresholds_json", sa.Text()),
        sa.Column("threshold_period_start", sa.DateTime()),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id", "category_key", "period", name="uq_budget_user_category_period"
        ),
        sa.CheckConstraint("budget_value_cents >= 0", name="ck_budget_value_positive"),
    )
    op.create_index("ix_budgets_user_period", "budgets", ["user_id", "period"])

    op.create_table(
        "goals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("target_cents", sa.Integer(), nullable=False),
        sa.Column("accumulated_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=8)),
        sa.Column(
            "status",
            sa.Enum("IN_PROGRESS", "COMPLETED", name="goalstatus"),
            nullable=False,
            server_default="IN_PROGRESS",
        ),
        sa.Column("icon", sa.String(length=100)),
        sa.Column("color", sa.String(length=9)),
        sa.Column("target_date", sa.Date()),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
        sa.CheckConstraint("target_cents > 0", name="ck_goal_target_positive"),
        sa.CheckConstraint(
            "accumulated_cents >= 0", name="ck_goal_accumulated_positive"
        ),
    )
    op.create_index("ix_goals_user_status", "goals", ["user_id", "status"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column(
            "type",
            sa.Enum(
                "NORMAL", "URGENT", "PROMOTIONAL", "SYSTEM", name="notificationtype"
            ),
            nullable=False,
            server_default="NORMAL",
        ),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("kind", sa.String(length=40)),
        sa.Column("period_key", sa.String(length=40)),
        sa.Column("data_json", sa.Text()),
        *_timestamps(),
    )
    op.create_index(
        "ix_notifications_user_created", "notifications", ["user_id", "created_at"]
    )
    op.create_index(
        "ix_notifications_user_read", "notifications", ["user_id", "is_read"]
    )
    op.create_index(
        "ix_notifications_kind_period",
        "notifications",
        ["kind", "period_key", "user_id"],
    )


def downgrade():
    op.drop_table("notifications")
    op.drop_table("goals")
    op.drop_table("budgets")
    op.drop_table("ledger_entries")
    op.drop_table("accounts")
    op.drop_table("users")
