from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from models import Transaction, Direction, IncomeSource, TransactionStatus
from ledger import profit_distribution
from ledger.errors import ValidationError
from ledger.store import LedgerStore


def _entries(user, source):
    return Transaction.query.filter_by(user_id=user.id, income_source=source).all()


class TestDailyProfit:

    def test_daily_profit_is_a_thirtieth_of_ten_percent(self, make_user, credit, balance):
        user = make_user()
        credit(user, 3000, "BTC_deposit")

        result = profit_distribution.distribute_daily_profit(user.id)

        assert result["amount"] == Decimal("10.00")
        assert balance(user.id) == Decimal("3010.00")
        entry = _entries(user, IncomeSource.DAILY_PROFIT)[0]
        assert entry.unlock_date is not None
        assert entry.direction == Direction.CREDIT

    def test_rounds_to_cents(self, make_user, credit):
        user = make_user()
        credit(user, 1000, "ETH_deposit")
        # 1000 * 0.10 / 30 = 3.3333
        assert profit_distribution.distribute_daily_profit(user.id)["amount"] == Decimal("3.33")

    def test_runs_once_per_day(self, make_user, credit):
        user = make_user()
        credit(user, 3000, "BTC_deposit")

        first = profit_distribution.run_daily()
        second = profit_distribution.run_daily()

        assert first["processed"] == 1
        assert second["processed"] == 0
        assert second["already_distributed"] == 1
        assert len(_entries(user, IncomeSource.DAILY_PROFIT)) == 1

    def test_next_day_distributes_again(self, make_user, credit, frozen_clock):
        user = make_user()
        credit(user, 3000, "BTC_deposit")

        profit_distribution.run_daily()
        frozen_clock.advance(days=1)
        summary = profit_distribution.run_daily()

        assert summary["processed"] == 1
        assert len(_entries(user, IncomeSource.DAILY_PROFIT)) == 2

    def test_daily_profit_pays_no_referral_income(self, make_chain, credit):
        chain = make_chain(3)
        credit(chain[0], 3000, "BTC_deposit")

        profit_distribution.run_daily()

        for sponsor in chain[1:]:
            assert Transaction.query.filter_by(user_id=sponsor.id).count() == 0

    def test_pending_deposits_are_ignored(self, make_user, credit):
        user = make_user()
        credit(user, 3000, "BTC_deposit", status=TransactionStatus.PENDING)

        summary = profit_distribution.run_daily()

        assert summary["total_users"] == 0
        assert _entries(user, IncomeSource.DAILY_PROFIT) == []

    def test_tiny_base_is_a_no_op(self, make_user, credit):
        user = make_user()
        credit(user, "0.10", "BTC_deposit")

        result = profit_distribution.distribute_daily_profit(user.id)

        assert result["success"]
        assert result["amount"] == Decimal("0.00")
        assert _entries(user, IncomeSource.DAILY_PROFIT) == []


class TestMonthlyProfit:

    def test_cascade_over_six_levels(self, make_chain, credit, frozen_clock, balance):
        chain = make_chain(6)
        member = chain[0]
        credit(member, 10000, IncomeSource.INVESTMENT_DEPOSIT,
               unlock_date=frozen_clock.now + timedelta(days=180))

        result = profit_distribution.distribute_monthly_profit(member.id)

        assert result["amount"] == Decimal("1000.00")
        paid = [(r["level"], r["amount"]) for r in result["referral_distributions"]]
        assert paid == [
            (1, Decimal("100.00")),
            (2, Decimal("50.00")),
            (3, Decimal("30.00")),
            (4, Decimal("20.00")),
            (5, Decimal("10.00")),
            (6, Decimal("5.00")),
        ]
        assert result["total_referral_distributed"] == Decimal("215.00")

        level_six = _entries(chain[6], IncomeSource.REFERRAL_INCOME)[0]
        assert level_six.referral_level == 6
        assert level_six.source_user_id == member.id
        assert level_six.description == (
            "Level 6 referral income (0.5%) from Member's monthly profit of $1000.00"
        )
        assert balance(chain[1].id) == Decimal("100.00")
        assert balance(member.id) == Decimal("11000.00")

    def test_runs_once_per_month(self, make_chain, credit, frozen_clock):
        chain = make_chain(1)
        credit(chain[0], 1000, IncomeSource.INVESTMENT_DEPOSIT, unlock_date=frozen_clock.now)

        profit_distribution.run_monthly()
        frozen_clock.advance(days=10)
        summary = profit_distribution.run_monthly()

        assert summary["already_distributed"] == 1
        assert len(_entries(chain[0], IncomeSource.MONTHLY_PROFIT)) == 1
        assert len(_entries(chain[1], IncomeSource.REFERRAL_INCOME)) == 1

        frozen_clock.advance(days=30)
        assert profit_distribution.run_monthly()["processed"] == 1

    def test_plain_chain_deposits_are_not_a_monthly_base(self, make_user, credit, frozen_clock):
        user = make_user()
        credit(user, 5000, "BTC_deposit", unlock_date=frozen_clock.now)

        summary = profit_distribution.run_monthly()

        assert summary["total_users"] == 0
        assert _entries(user, IncomeSource.MONTHLY_PROFIT) == []

    def test_ledger_stays_reconciled(self, make_chain, credit, frozen_clock):
        chain = make_chain(4)
        credit(chain[0], 2500, IncomeSource.INVESTMENT_DEPOSIT, unlock_date=frozen_clock.now)

        profit_distribution.run_monthly()
        profit_distribution.run_daily()

        assert LedgerStore.reconcile_all() == []

    def test_commissions_share_the_run_time(self, make_chain, credit, frozen_clock):
        chain = make_chain(2)
        credit(chain[0], 1000, IncomeSource.INVESTMENT_DEPOSIT, unlock_date=frozen_clock.now)
        run_at = datetime(2025, 3, 1, 0, 5)

        profit_distribution.distribute_monthly_profit(chain[0].id, now=run_at)

        profit = _entries(chain[0], IncomeSource.MONTHLY_PROFIT)[0]
        commissions = [_entries(sponsor, IncomeSource.REFERRAL_INCOME)[0] for sponsor in chain[1:]]
        assert profit.timestamp == run_at
        assert [(c.timestamp, c.unlock_date) for c in commissions] == [(run_at, run_at), (run_at, run_at)]


class TestBatchDriver:

    def test_unknown_period_type(self, app):
        with pytest.raises(ValidationError):
            profit_distribution.process_distribution("weekly")

    def test_one_failure_does_not_abort_the_batch(self, make_user, credit, monkeypatch):
        good, bad = make_user(), make_user()
        credit(good, 3000, "BTC_deposit")
        credit(bad, 3000, "BTC_deposit")

        original = profit_distribution.distribute_daily_profit

        def flaky(user_id, now=None):
            if user_id == bad.id:
                raise RuntimeError("database hiccup")
            return original(user_id, now=now)

        monkeypatch.setattr(profit_distribution, "distribute_daily_profit", flaky)
        summary = profit_distribution.run_daily()

        assert summary["processed"] == 1
        assert summary["failed"] == 1
        assert summary["failures"][0]["user_id"] == bad.id
        assert summary["total_distributed"] == Decimal("10.00")
        assert len(_entries(good, IncomeSource.DAILY_PROFIT)) == 1
        assert _entries(bad, IncomeSource.DAILY_PROFIT) == []


class TestBackfill:

    def test_fills_missing_days_once(self, make_user, credit, frozen_clock):
        user = make_user()
        frozen_clock.advance(days=-5)
        credit(user, 3000, "BTC_deposit")
        frozen_clock.advance(days=5)

        summary = profit_distribution.backfill_daily(days=3)
        again = profit_distribution.backfill_daily(days=3)

        assert summary["transactions_created"] == 3
        assert summary["total_distributed"] == Decimal("30.00")
        assert again["transactions_created"] == 0
        assert len(_entries(user, IncomeSource.DAILY_PROFIT)) == 3

    def test_never_before_first_deposit(self, make_user, credit, frozen_clock):
        user = make_user()
        frozen_clock.advance(days=-2)
        credit(user, 3000, "BTC_deposit")
        frozen_clock.advance(days=2)

        summary = profit_distribution.backfill_daily(days=30)

        assert summary["transactions_created"] == 2

    def test_days_must_be_positive(self, app):
        with pytest.raises(ValidationError):
            profit_distribution.backfill_daily(days=0)
