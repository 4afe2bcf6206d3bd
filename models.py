import json
from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class EntryKind(str, Enum):
    income = "income"
    spending = "spending"


class BudgetPeriod(str, Enum):
    weekly = "WEEKLY"
    monthly = "MONTHLY"


class UserStatus(str, Enum):
    active = "ACTIVE"
    inactive = "INACTIVE"
    blocked = "BLOCKED"


class GoalStatus(str, Enum):
    in_progress = "IN_PROGRESS"
    completed = "COMPLETED"


class DebtDirection(str, Enum):
    borrowed = "borrowed"
    lent = "lent"


class DebtStatus(str, Enum):
    unpaid = "UNPAID"
    paid = "PAID"


class NotificationType(str, Enum):
    normal = "NORMAL"
    urgent = "URGENT"
    promotional = "PROMOTIONAL"
    system = "SYSTEM"


def _values(enum_cls):
    return [member.value for member in enum_cls]


BUDGET_PERIOD_ENUM = SAEnum(
    BudgetPeriod, name="budgetperiod", values_callable=_values
)
USER_STATUS_ENUM = SAEnum(UserStatus, name="userstatus", values_callable=_values)
GOAL_STATUS_ENUM = SAEnum(GoalStatus, name="goalstatus", values_callable=_values)
DEBT_DIRECTION_ENUM = SAEnum(
    DebtDirection, name="debtdirection", values_callable=_values
)
DEBT_STATUS_ENUM = SAEnum(DebtStatus, name="debtstatus", values_callable=_values)
NOTIFICATION_TYPE_ENUM = SAEnum(
    NotificationType, name="notificationtype", values_callable=_values
)

BUDGET_THRESHOLDS = (50, 80, 100)


def dump_thresholds(values) -> str:
    return json.dumps(sorted(set(int(v) for v in values)))


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    full_name: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    # NULL means the user never picked a cycle start day.
    month_start_date: Mapped[Optional[int]] = mapped_column(Integer)
    fcm_token: Mapped[Optional[str]] = mapped_column(String(255))
    status: Mapped[UserStatus] = mapped_column(
        USER_STATUS_ENUM, nullable=False, default=UserStatus.active
    )

    __table_args__ = (
        CheckConstraint(
            "month_start_date IS NULL OR month_start_date BETWEEN 1 AND 28",
            name="ck_users_month_start_date_range",
        ),
        Index("ix_users_status_timezone", "status", "timezone"),
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    credit_limit_cents: Mapped[Optional[int]] = mapped_column(Integer)
    icon: Mapped[Optional[str]] = mapped_column(String(100))
    account_type: Mapped[Optional[str]] = mapped_column(String(50))
    color: Mapped[Optional[str]] = mapped_column(String(9))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    last_updated: Mapped[Optional[datetime]] = mapped_column(DateTime)

    entries: Mapped[list["LedgerEntry"]] = relationship(
        "LedgerEntry", back_populates="account"
    )

    __table_args__ = (Index("ix_accounts_user_created", "user_id", "created_at"),)


class LedgerEntry(Base, TimestampMixin):
    __tablename__ = "ledger_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    kind: Mapped[EntryKind] = mapped_column(SAEnum(EntryKind), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    repeat_for_all_year: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    account: Mapped["Account"] = relationship("Account", back_populates="entries")

    __table_args__ = (
        Index("ix_entries_user_kind_occurred", "user_id", "kind", "occurred_at"),
        Index("ix_entries_user_date", "user_id", "date"),
        Index("ix_entries_account_occurred", "account_id", "occurred_at"),
        CheckConstraint("amount_cents >= 0", name="ck_entries_amount_positive"),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    category_key: Mapped[str] = mapped_column(String(100), nullable=False)
    budget_value_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="USD")
    period: Mapped[BudgetPeriod] = mapped_column(BUDGET_PERIOD_ENUM, nullable=False)
    notified_thresholds_json: Mapped[Optional[str]] = mapped_column(Text)
    threshold_period_start: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        UniqueConstraint(
            "user_id", "category_key", "period", name="uq_budget_user_category_period"
        ),
        Index("ix_budgets_user_period", "user_id", "period"),
        CheckConstraint("budget_value_cents >= 0", name="ck_budget_value_positive"),
    )

    @property
    def notified_thresholds(self) -> list[int]:
        if not self.notified_thresholds_json:
            return []
        return sorted(int(v) for v in json.loads(self.notified_thresholds_json))

    @notified_thresholds.setter
    def notified_thresholds(self, values) -> None:
        self.notified_thresholds_json = dump_thresholds(values)


class Goal(Base, TimestampMixin):
    __tablename__ = "goals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    target_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    accumulated_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[Optional[str]] = mapped_column(String(8))
    status: Mapped[GoalStatus] = mapped_column(
        GOAL_STATUS_ENUM, nullable=False, default=GoalStatus.in_progress
    )
    icon: Mapped[Optional[str]] = mapped_column(String(100))
    color: Mapped[Optional[str]] = mapped_column(String(9))
    target_date: Mapped[Optional[date]] = mapped_column(Date)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("ix_goals_user_status", "user_id", "status"),
        CheckConstraint("target_cents > 0", name="ck_goal_target_positive"),
        CheckConstraint("accumulated_cents >= 0", name="ck_goal_accumulated_positive"),
    )


class Debt(Base, TimestampMixin):
    """Money borrowed from or lent to someone, repaid in installments."""

    __tablename__ = "debts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    direction: Mapped[DebtDirection] = mapped_column(
        DEBT_DIRECTION_ENUM, nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    # Lender for borrowed money, borrower for lent money.
    counterparty: Mapped[Optional[str]] = mapped_column(String(100))
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    accumulated_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[Optional[str]] = mapped_column(String(8))
    status: Mapped[DebtStatus] = mapped_column(
        DEBT_STATUS_ENUM, nullable=False, default=DebtStatus.unpaid
    )
    icon: Mapped[Optional[str]] = mapped_column(String(100))
    color: Mapped[Optional[str]] = mapped_column(String(9))
    debt_date: Mapped[Optional[date]] = mapped_column(Date)
    payoff_date: Mapped[Optional[date]] = mapped_column(Date)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("ix_debts_user_direction_status", "user_id", "direction", "status"),
        CheckConstraint("amount_cents > 0", name="ck_debt_amount_positive"),
        CheckConstraint(
            "accumulated_cents >= 0 AND accumulated_cents <= amount_cents",
            name="ck_debt_accumulated_range",
        ),
    )


class Notification(Base, TimestampMixin):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[NotificationType] = mapped_column(
        NOTIFICATION_TYPE_ENUM, nullable=False, default=NotificationType.normal
    )
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    kind: Mapped[Optional[str]] = mapped_column(String(40))
    period_key: Mapped[Optional[str]] = mapped_column(String(40))
    data_json: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("ix_notifications_user_created", "user_id", "created_at"),
        Index("ix_notifications_user_read", "user_id", "is_read"),
        Index("ix_notifications_kind_period", "kind", "period_key", "user_id"),
    )

    @property
    def data(self) -> dict[str, object]:
        if not self.data_json:
            return {}
        return json.loads(self.data_json)
