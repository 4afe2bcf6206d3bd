from datetime import date, datetime, time

import pytest
from sqlalchemy import func, select

from errors import InsufficientFundsError, InvalidInputError, NotFoundError
from models import EntryKind, LedgerEntry
from periods import month_range
from services import AccountService, LedgerService

from helpers import income, make_account, make_user, spending


def _entry_count(session) -> int:
    return session.scalar(select(func.count(LedgerEntry.id)))


def test_spending_over_balance_is_rejected_without_writes(session) -> None:
    user = make_user(session)
    account = make_account(session, user, 50)

    with pytest.raises(InsufficientFundsError):
        LedgerService(session, user.id).add_spending(
            account.id, spending(75, date(2026, 1, 5))
        )

    session.refresh(account)
    assert account.amount_cents == 50
    assert _entry_count(session) == 0


def test_income_and_spending_adjust_account(session) -> None:
    user = make_user(session)
    account = make_account(session, user, 1_000)
    ledger = LedgerService(session, user.id)

    ledger.add_income(account.id, income(2_500, date(2026, 1, 5)))
    entry = ledger.add_spending(account.id, spending(3_500, date(2026, 1, 6)))

    session.refresh(account)
    assert account.amount_cents == 0
    assert account.last_updated is not None
    assert entry.kind == EntryKind.spending
    assert entry.occurred_at == datetime(2026, 1, 6, 12, 0)


def test_posting_to_another_users_account_is_not_found(session) -> None:
    owner = make_user(session)
    intruder = make_user(session, email="intruder@example.com")
    account = make_account(session, owner, 1_000)

    with pytest.raises(NotFoundError):
        LedgerService(session, intruder.id).add_income(
            account.id, income(100, date(2026, 1, 5))
        )
    assert _entry_count(session) == 0


def test_follow_up_runs_after_commit(session) -> None:
    user = make_user(session)
    account = make_account(session, user, 1_000)
    seen = []

    def on_posted(event) -> None:
        # The entry must already be durable when the callback fires.
        seen.append((event, _entry_count(session)))

    entry = LedgerService(session, user.id, on_posted).add_spending(
        account.id, spending(400, date(2026, 1, 5), "Coffee")
    )

    assert len(seen) == 1
    event, count = seen[0]
    assert count == 1
    assert event.entry_id == entry.id
    assert event.category == "Coffee"
    assert event.amount_cents == 400


def test_follow_up_failure_does_not_undo_posting(session) -> None:
    user = make_user(session)
    account = make_account(session, user, 1_000)

    def on_posted(event) -> None:
        raise RuntimeError("notification service down")

    LedgerService(session, user.id, on_posted).add_income(
        account.id, income(500, date(2026, 1, 5))
    )

    session.refresh(account)
    assert account.amount_cents == 1_500
    assert _entry_count(session) == 1


def test_rejected_posting_emits_nothing(session) -> None:
    user = make_user(session)
    account = make_account(session, user, 10)
    seen = []

    with pytest.raises(InsufficientFundsError):
        LedgerService(session, user.id, seen.append).add_spending(
            account.id, spending(11, date(2026, 1, 5))
        )
    assert seen == []


def test_update_entry_reposts_difference(session) -> None:
    user = make_user(session)
    account = make_account(session, user, 1_000)
    ledger = LedgerService(session, user.id)
    entry = ledger.add_spending(account.id, spending(400, date(2026, 1, 5)))

    ledger.update_entry(entry.id, spending(900, date(2026, 1, 7), "Groceries"))
    session.refresh(account)
    assert account.amount_cents == 100

    with pytest.raises(InsufficientFundsError):
        ledger.update_entry(entry.id, spending(1_200, date(2026, 1, 7)))
    session.refresh(account)
    assert account.amount_cents == 100
    assert ledger.get_entry(entry.id).amount_cents == 900


def test_update_income_keeps_repeat_flag_unless_given(session) -> None:
    user = make_user(session)
    account = make_account(session, user)
    ledger = LedgerService(session, user.id)
    data = income(1_000, date(2026, 1, 5)).model_copy(
        update={"repeat_for_all_year": True}
    )
    entry = ledger.add_income(account.id, data)
    assert entry.repeat_for_all_year is True

    updated = ledger.update_entry(entry.id, income(1_200, date(2026, 1, 5)))
    assert updated.repeat_for_all_year is True


def test_delete_entry_reverses_posting(session) -> None:
    user = make_user(session)
    account = make_account(session, user, 1_000)
    ledger = LedgerService(session, user.id)
    spent = ledger.add_spending(account.id, spending(300, date(2026, 1, 5)))
    earned = ledger.add_income(account.id, income(200, date(2026, 1, 6)))

    ledger.delete_entry(spent.id)
    session.refresh(account)
    assert account.amount_cents == 1_200

    ledger.add_spending(account.id, spending(1_100, date(2026, 1, 7)))
    with pytest.raises(InsufficientFundsError):
        ledger.delete_entry(earned.id)

    with pytest.raises(NotFoundError):
        ledger.delete_entry(spent.id)


def test_day_and_cycle_totals(session) -> None:
    user = make_user(session, month_start_date=18)
    account = make_account(session, user, 10_000)
    ledger = LedgerService(session, user.id)
    ledger.add_income(account.id, income(5_000, date(2026, 1, 20), at=time(8, 0)))
    ledger.add_spending(account.id, spending(1_200, date(2026, 1, 20), at=time(23, 30)))
    ledger.add_spending(account.id, spending(800, date(2026, 2, 17)))
    ledger.add_spending(account.id, spending(999, date(2026, 2, 18)))

    day = ledger.day_totals("2026-01-20")
    assert day == {
        "date": "2026-01-20",
        "total_income_cents": 5_000,
        "total_spending_cents": 1_200,
    }

    totals = ledger.cycle_totals("2026-01")
    assert totals["period_start"] == "2026-01-18"
    assert totals["period_end"] == "2026-02-17"
    assert totals["total_spending_cents"] == 2_000

    current = ledger.cycle_totals(now=datetime(2026, 2, 10))
    assert current == totals

    with pytest.raises(InvalidInputError):
        ledger.day_totals("20-01-2026")
    with pytest.raises(InvalidInputError):
        ledger.cycle_totals("2026-13")


def test_list_entries_newest_first(session) -> None:
    user = make_user(session)
    account = make_account(session, user, 10_000)
    ledger = LedgerService(session, user.id)
    ledger.add_spending(account.id, spending(100, date(2026, 1, 2)))
    ledger.add_income(account.id, income(200, date(2026, 1, 9)))
    ledger.add_spending(account.id, spending(300, date(2026, 1, 5)))

    period = month_range(datetime(2026, 1, 15), None)
    entries = ledger.list_entries(period)
    assert [e.amount_cents for e in entries] == [200, 300, 100]

    only_spending = ledger.list_entries(period, EntryKind.spending, limit=1)
    assert [e.amount_cents for e in only_spending] == [300]


def test_account_listing_and_delete(session) -> None:
    user = make_user(session)
    accounts = AccountService(session, user.id)
    first = make_account(session, user, 1_500)
    make_account(session, user, 2_500)
    LedgerService(session, user.id).add_spending(
        first.id, spending(500, date(2026, 1, 2))
    )

    listing = accounts.list_with_total()
    assert listing["total_balance_cents"] == 3_500
    assert listing["total_accounts"] == 2

    accounts.delete(first.id)
    assert accounts.current_balance() == 2_500
    assert _entry_count(session) == 0
    with pytest.raises(NotFoundError):
        accounts.get(first.id)
