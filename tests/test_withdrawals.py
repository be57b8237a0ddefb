from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from extensions import db
from models import Investment, InvestmentStatus, Transaction, TransactionStatus, Direction, IncomeSource
from ledger import deposits, withdrawals
from ledger.errors import (ConflictError, InsufficientFundsError, LockPeriodError,
                           NotFoundError, ValidationError)
from ledger.store import LedgerStore

ADDRESS = "TQn9Y2khEsLJW1ChVWFMSMeRDow5KcbLSE"


def _request_income(user, amount, chain="TRC20", address=ADDRESS):
    issued = withdrawals.request_withdrawal_otp(user, "income", chain, address, amount=amount)
    return withdrawals.confirm_withdrawal(user, "income", issued["otp"], chain, address, amount=amount)


def _request_investment(user, investment_id, chain="BTC", address=ADDRESS):
    issued = withdrawals.request_withdrawal_otp(user, "investment", chain, address, investment_id=investment_id)
    return withdrawals.confirm_withdrawal(user, "investment", issued["otp"], chain, address,
                                          investment_id=investment_id)


@pytest.fixture
def earner(make_user, credit):
    """User holding $100 of unlocked direct income."""
    user = make_user()
    credit(user, 100, IncomeSource.DIRECT_INCOME)
    return user


@pytest.fixture
def investor(make_user):
    """User with an approved $1000 investment started at the frozen clock."""
    user = make_user()
    issued = deposits.request_deposit_otp(user, 1000, "BTC")
    entry = deposits.confirm_deposit(user, 1000, "BTC", issued["otp"])
    deposits.approve_deposit(entry.id)
    return user


def _investment_of(user):
    return Investment.query.filter_by(user_id=user.id).one()


class TestIncomeWithdrawal:

    def test_request_reserves_funds_immediately(self, earner, balance):
        entry = _request_income(earner, 50)

        assert entry.status == TransactionStatus.PENDING
        assert entry.income_source == IncomeSource.INCOME_WITHDRAWAL
        assert entry.description == (
            f"Income withdrawal of $50.00 to TRC20 address {ADDRESS} [FULL_ADDRESS:{ADDRESS}]"
        )
        assert balance(earner.id) == Decimal("50.00")
        assert LedgerStore.reconcile(earner.id)["consistent"]

    def test_rejection_restores_exactly_the_reserved_amount(self, earner, balance):
        entry = _request_income(earner, 50)

        withdrawals.reject_withdrawal(entry.id, "Address blacklisted")

        rejected = db.session.get(Transaction, entry.id)
        assert rejected.status == TransactionStatus.REJECTED
        assert rejected.description.endswith("(Rejected: Address blacklisted)")
        assert balance(earner.id) == Decimal("100.00")
        assert LedgerStore.available_withdrawable(earner.id) == Decimal("100.00")
        assert LedgerStore.reconcile(earner.id)["consistent"]

    def test_approval_leaves_reserved_balance(self, earner, balance):
        entry = _request_income(earner, 50)

        withdrawals.approve_withdrawal(entry.id)

        approved = db.session.get(Transaction, entry.id)
        assert approved.status == TransactionStatus.COMPLETED
        assert approved.description.endswith(" - Approved by admin")
        assert balance(earner.id) == Decimal("50.00")
        assert LedgerStore.reconcile(earner.id)["consistent"]

    def test_more_than_available_is_refused(self, earner, balance):
        with pytest.raises(InsufficientFundsError):
            withdrawals.request_withdrawal_otp(earner, "income", "TRC20", ADDRESS, amount=110)
        assert balance(earner.id) == Decimal("100.00")

    def test_pending_requests_count_against_available(self, earner):
        _request_income(earner, 60)
        with pytest.raises(InsufficientFundsError):
            _request_income(earner, 60)

    def test_locked_income_is_not_withdrawable(self, make_user, credit, frozen_clock):
        user = make_user()
        credit(user, 100, IncomeSource.DIRECT_INCOME, unlock_date=frozen_clock.now + timedelta(days=1))
        with pytest.raises(InsufficientFundsError):
            withdrawals.request_withdrawal_otp(user, "income", "TRC20", ADDRESS, amount=50)

    def test_deposit_principal_is_not_income(self, investor):
        with pytest.raises(InsufficientFundsError):
            withdrawals.request_withdrawal_otp(investor, "income", "BTC", ADDRESS, amount=100)

    @pytest.mark.parametrize("amount", [5, 15, "12.5"])
    def test_amount_rules(self, earner, amount):
        with pytest.raises(ValidationError):
            withdrawals.request_withdrawal_otp(earner, "income", "TRC20", ADDRESS, amount=amount)

    def test_address_required(self, earner):
        with pytest.raises(ValidationError):
            withdrawals.request_withdrawal_otp(earner, "income", "TRC20", "", amount=50)

    def test_unknown_kind(self, earner):
        with pytest.raises(ValidationError):
            withdrawals.request_withdrawal_otp(earner, "salary", "TRC20", ADDRESS, amount=50)

    def test_balance_rechecked_at_confirmation(self, earner, credit):
        issued = withdrawals.request_withdrawal_otp(earner, "income", "TRC20", ADDRESS, amount=100)
        # Funds reserved elsewhere between OTP issue and confirmation
        credit(earner, 60, IncomeSource.INCOME_WITHDRAWAL, direction=Direction.DEBIT,
               status=TransactionStatus.PENDING, reserve=True)

        with pytest.raises(InsufficientFundsError):
            withdrawals.confirm_withdrawal(earner, "income", issued["otp"], "TRC20", ADDRESS, amount=100)

    def test_code_survives_a_failed_confirmation(self, earner, credit, balance):
        issued = withdrawals.request_withdrawal_otp(earner, "income", "TRC20", ADDRESS, amount=100)
        competing = credit(earner, 60, IncomeSource.INCOME_WITHDRAWAL, direction=Direction.DEBIT,
                           status=TransactionStatus.PENDING, reserve=True)
        with pytest.raises(InsufficientFundsError):
            withdrawals.confirm_withdrawal(earner, "income", issued["otp"], "TRC20", ADDRESS, amount=100)

        withdrawals.reject_withdrawal(competing.id, "Duplicate request")
        entry = withdrawals.confirm_withdrawal(earner, "income", issued["otp"], "TRC20", ADDRESS, amount=100)

        assert entry.status == TransactionStatus.PENDING
        assert balance(earner.id) == Decimal("0.00")


class TestInvestmentWithdrawal:

    def test_locked_at_five_months(self, investor, frozen_clock):
        frozen_clock.set_time(datetime(2025, 6, 30, 23, 0, 0))
        with pytest.raises(LockPeriodError):
            withdrawals.request_withdrawal_otp(
                investor, "investment", "BTC", ADDRESS, investment_id=_investment_of(investor).id
            )

    def test_unlocked_at_six_calendar_months(self, investor, frozen_clock, balance):
        # Day of month is ignored: Jan 15 -> Jul 1 is six calendar months
        frozen_clock.set_time(datetime(2025, 7, 1, 0, 0, 0))
        investment = _investment_of(investor)

        entry = _request_investment(investor, investment.id)

        assert entry.status == TransactionStatus.PENDING
        assert entry.amount == Decimal("1000.00")
        assert entry.investment_id == investment.id
        assert _investment_of(investor).status == InvestmentStatus.WITHDRAWING
        # No reservation for principal
        assert balance(investor.id) == Decimal("1000.00")
        assert LedgerStore.reconcile(investor.id)["consistent"]

    def test_second_request_conflicts(self, investor, frozen_clock):
        frozen_clock.set_time(datetime(2025, 8, 1))
        investment = _investment_of(investor)
        _request_investment(investor, investment.id)

        with pytest.raises(ConflictError):
            withdrawals.request_withdrawal_otp(investor, "investment", "BTC", ADDRESS,
                                               investment_id=investment.id)

    def test_approval_releases_principal(self, investor, frozen_clock, balance):
        frozen_clock.set_time(datetime(2025, 8, 1))
        entry = _request_investment(investor, _investment_of(investor).id)

        withdrawals.approve_withdrawal(entry.id)

        assert _investment_of(investor).status == InvestmentStatus.WITHDRAWN
        assert balance(investor.id) == Decimal("0.00")
        assert LedgerStore.reconcile(investor.id)["consistent"]

    def test_rejection_reactivates_investment(self, investor, frozen_clock, balance):
        frozen_clock.set_time(datetime(2025, 8, 1))
        entry = _request_investment(investor, _investment_of(investor).id)

        withdrawals.reject_withdrawal(entry.id, "KYC pending")

        assert _investment_of(investor).status == InvestmentStatus.ACTIVE
        assert balance(investor.id) == Decimal("1000.00")
        assert LedgerStore.reconcile(investor.id)["consistent"]

    def test_foreign_investment_not_found(self, investor, make_user, frozen_clock):
        frozen_clock.set_time(datetime(2025, 8, 1))
        stranger = make_user()
        with pytest.raises(NotFoundError):
            withdrawals.request_withdrawal_otp(stranger, "investment", "BTC", ADDRESS,
                                               investment_id=_investment_of(investor).id)


class TestAdminDecisions:

    def test_cannot_decide_twice(self, earner):
        entry = _request_income(earner, 20)
        withdrawals.approve_withdrawal(entry.id)
        with pytest.raises(ConflictError):
            withdrawals.reject_withdrawal(entry.id, "too late")

    def test_only_withdrawals(self, investor):
        deposit = Transaction.query.filter_by(user_id=investor.id).first()
        with pytest.raises(NotFoundError):
            withdrawals.approve_withdrawal(deposit.id)

    def test_pending_list(self, earner):
        entry = _request_income(earner, 30)
        pending = withdrawals.list_pending_withdrawals()
        assert [w["id"] for w in pending] == [entry.id]
        assert pending[0]["blockchain"] == "TRC20"
        assert pending[0]["address"] == ADDRESS


class TestReporting:

    def test_stats(self, investor, credit, frozen_clock):
        credit(investor, 200, IncomeSource.DIRECT_INCOME)
        first = _request_income(investor, 50)
        _request_income_again = _request_income(investor, 30)
        withdrawals.approve_withdrawal(first.id)

        stats = withdrawals.get_withdrawal_stats(investor)

        assert stats["available_balance"] == 120.0
        assert stats["total_withdrawn"] == 50.0
        assert stats["total_withdrawal_count"] == 1
        assert stats["pending_amount"] == 30.0
        assert stats["pending_count"] == 1
        assert stats["total_investments_count"] == 1
        assert stats["eligible_investments_count"] == 0
        assert _request_income_again.status == TransactionStatus.PENDING

    def test_investments_report_eligibility(self, investor, frozen_clock):
        report = withdrawals.get_investments(investor)
        assert len(report) == 1
        item = report[0]
        assert item["withdrawal_eligible"] is False
        assert item["lock_period_months"] == 6
        assert item["eligible_date"] == "2025-07-01T00:00:00"
        assert item["days_until_eligible"] == 166

        frozen_clock.set_time(datetime(2025, 7, 2))
        assert withdrawals.get_investments(investor)[0]["withdrawal_eligible"] is True

    def test_history_filters(self, investor, credit, frozen_clock):
        credit(investor, 100, IncomeSource.DIRECT_INCOME)
        income = _request_income(investor, 40)
        frozen_clock.set_time(datetime(2025, 8, 1))
        investment = _request_investment(investor, _investment_of(investor).id)

        everything = withdrawals.get_withdrawal_history(investor)
        assert [w["id"] for w in everything["withdrawals"]] == [investment.id, income.id]
        assert everything["pagination"]["total"] == 2

        only_income = withdrawals.get_withdrawal_history(investor, kind="income")
        assert [w["type"] for w in only_income["withdrawals"]] == ["income"]

        paged = withdrawals.get_withdrawal_history(investor, limit=1)
        assert paged["pagination"]["hasMore"] is True

        with pytest.raises(ValidationError):
            withdrawals.get_withdrawal_history(investor, status="LOST")
