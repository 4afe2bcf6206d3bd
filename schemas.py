import datetime as dt
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import BudgetPeriod


class UserIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(..., min_length=3, max_length=255)
    full_name: str = Field(default="", max_length=120)
    timezone: str = Field(default="UTC", max_length=64)
    month_start_date: Optional[int] = Field(default=None, ge=1, le=28)
    fcm_token: Optional[str] = Field(default=None, max_length=255)


class MonthStartDateIn(BaseModel):
    month_start_date: int = Field(..., ge=1, le=28)


class FcmTokenIn(BaseModel):
    fcm_token: Optional[str] = Field(default=None, max_length=255)


class AccountIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    amount_cents: int = Field(..., ge=0)
    currency: str = Field(..., min_length=1, max_length=8)
    credit_limit_cents: Optional[int] = None
    icon: Optional[str] = None
    account_type: Optional[str] = None
    color: Optional[str] = Field(default=None, max_length=9)
    notes: Optional[str] = Field(default=None, max_length=500)


class AccountUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    amount_cents: Optional[int] = Field(default=None, ge=0)
    currency: Optional[str] = Field(default=None, min_length=1, max_length=8)
    credit_limit_cents: Optional[int] = None
    icon: Optional[str] = None
    account_type: Optional[str] = None
    color: Optional[str] = Field(default=None, max_length=9)
    notes: Optional[str] = Field(default=None, max_length=500)


class EntryIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    category: str = Field(..., min_length=1, max_length=100)
    amount_cents: int = Field(..., gt=0)
    currency: str = Field(..., min_length=1, max_length=8)
    date: dt.date
    time: dt.time = dt.time(0, 0)

    @property
    def occurred_at(self) -> dt.datetime:
        return dt.datetime.combine(self.date, self.time)


class IncomeIn(EntryIn):
    repeat_for_all_year: bool = False


class SpendingIn(EntryIn):
    pass


class BudgetIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    category: str = Field(..., min_length=1, max_length=100)
    budget_value_cents: int = Field(..., gt=0)
    currency: str = Field(default="USD", min_length=1, max_length=8)
    period: BudgetPeriod


class BudgetUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    budget_value_cents: Optional[int] = Field(default=None, gt=0)
    currency: Optional[str] = Field(default=None, min_length=1, max_length=8)
    period: Optional[BudgetPeriod] = None


class GoalIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=120)
    category: str = Field(..., min_length=1, max_length=100)
    target_cents: int = Field(..., gt=0)
    accumulated_cents: int = Field(default=0, ge=0)
    currency: Optional[str] = Field(default=None, max_length=8)
    icon: Optional[str] = None
    color: Optional[str] = Field(default=None, max_length=9)
    target_date: Optional[dt.date] = None
    notes: Optional[str] = Field(default=None, max_length=500)


class GoalUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    target_cents: Optional[int] = Field(default=None, gt=0)
    accumulated_cents: Optional[int] = Field(default=None, ge=0)
    currency: Optional[str] = Field(default=None, max_length=8)
    icon: Optional[str] = None
    color: Optional[str] = Field(default=None, max_length=9)
    target_date: Optional[dt.date] = None
    notes: Optional[str] = Field(default=None, max_length=500)


class DebtIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    counterparty: Optional[str] = Field(default=None, max_length=100)
    amount_cents: int = Field(..., gt=0)
    accumulated_cents: int = Field(default=0, ge=0)
    currency: Optional[str] = Field(default=None, max_length=8)
    icon: Optional[str] = None
    color: Optional[str] = Field(default=None, max_length=9)
    debt_date: Optional[dt.date] = None
    payoff_date: Optional[dt.date] = None
    notes: Optional[str] = Field(default=None, max_length=500)


class DebtUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    counterparty: Optional[str] = Field(default=None, max_length=100)
    amount_cents: Optional[int] = Field(default=None, gt=0)
    accumulated_cents: Optional[int] = Field(default=None, ge=0)
    currency: Optional[str] = Field(default=None, max_length=8)
    icon: Optional[str] = None
    color: Optional[str] = Field(default=None, max_length=9)
    debt_date: Optional[dt.date] = None
    payoff_date: Optional[dt.date] = None
    notes: Optional[str] = Field(default=None, max_length=500)


class DebtPaymentIn(BaseModel):
    amount_cents: int = Field(..., gt=0)
