from datetime import date, time
from typing import Optional

from models import Account, User, UserStatus
from schemas import IncomeIn, SpendingIn


def make_user(
    session,
    email: str = "owner@example.com",
    month_start_date: Optional[int] = None,
    timezone: str = "UTC",
    fcm_token: Optional[str] = None,
    status: UserStatus = UserStatus.active,
) -> User:
    user = User(
        email=email,
        full_name="Test Owner",
        timezone=timezone,
        month_start_date=month_start_date,
        fcm_token=fcm_token,
        status=status,
    )
    session.add(user)
    session.commit()
    return user


def make_account(session, user: User, amount_cents: int = 0) -> Account:
    account = Account(
        user_id=user.id, name="Wallet", amount_cents=amount_cents, currency="USD"
    )
    session.add(account)
    session.commit()
    return account


def income(amount_cents: int, on: date, category: str = "Salary", at: time = time(12, 0)):
    return IncomeIn(
        name="Income",
        category=category,
        amount_cents=amount_cents,
        currency="USD",
        date=on,
        time=at,
    )


def spending(
    amount_cents: int, on: date, category: str = "Food", at: time = time(12, 0)
):
    return SpendingIn(
        name="Spending",
        category=category,
        amount_cents=amount_cents,
        currency="USD",
        date=on,
        time=at,
    )


class RecordingPushClient:
    def __init__(self, fail: bool = False) -> None:
        self.sent: list[tuple[str, str, str, dict]] = []
        self.fail = fail

    def send(self, token, title, body, data) -> bool:
        if self.fail:
            raise RuntimeError("push gateway down")
        self.sent.append((token, title, body, data))
        return True
