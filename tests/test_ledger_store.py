from datetime import timedelta
from decimal import Decimal

import pytest

from extensions import db
from models import Transaction, Wallet, Direction, TransactionStatus, IncomeSource
from ledger.errors import PersistenceError, ValidationError
from ledger.store import LedgerStore, atomic


def test_ensure_wallet_is_idempotent(make_user):
    user = make_user()
    first = LedgerStore.ensure_wallet(user.id)
    second = LedgerStore.ensure_wallet(user.id)
    assert first.id == second.id
    assert Wallet.query.filter_by(user_id=user.id).count() == 1


def test_ensure_wallet_creates_zero_balance(app, make_user):
    user = make_user()
    Wallet.query.filter_by(user_id=user.id).delete()
    db.session.commit()

    with atomic():
        wallet = LedgerStore.ensure_wallet(user.id)
    assert wallet.balance == Decimal("0")


def test_completed_credit_moves_balance(make_user, credit, balance):
    user = make_user()
    credit(user, "125.50", IncomeSource.DIRECT_INCOME)
    assert balance(user.id) == Decimal("125.50")


def test_pending_credit_does_not_move_balance(make_user, credit, balance):
    user = make_user()
    entry = credit(user, 500, "BTC_deposit", status=TransactionStatus.PENDING)
    assert balance(user.id) == Decimal("0")
    assert entry.balance_applied is False


def test_complete_and_reject_entries(make_user, credit, balance):
    user = make_user()
    credit(user, 100, IncomeSource.DIRECT_INCOME)
    reserved = credit(user, 40, IncomeSource.INCOME_WITHDRAWAL, direction=Direction.DEBIT,
                      status=TransactionStatus.PENDING, reserve=True)
    assert balance(user.id) == Decimal("60.00")

    with atomic():
        LedgerStore.reject_entry(LedgerStore.get_transaction(reserved.id, lock=True), "wrong address")
    assert balance(user.id) == Decimal("100.00")

    entry = db.session.get(Transaction, reserved.id)
    assert entry.status == TransactionStatus.REJECTED
    assert entry.description.endswith("(Rejected: wrong address)")
    assert LedgerStore.reconcile(user.id)["consistent"]


def test_atomic_rolls_back_everything(make_user, balance):
    user = make_user()
    with pytest.raises(RuntimeError):
        with atomic():
            LedgerStore.apply_ledger_entry(user.id, 50, Direction.CREDIT, IncomeSource.DIRECT_INCOME)
            raise RuntimeError("boom")

    assert Transaction.query.filter_by(user_id=user.id).count() == 0
    assert balance(user.id) == Decimal("0")


def test_constraint_violation_becomes_persistence_error(make_user):
    user = make_user()
    with pytest.raises(PersistenceError):
        with atomic():
            db.session.add(Wallet(user_id=user.id, balance=Decimal("0")))
            db.session.flush()
    assert Wallet.query.filter_by(user_id=user.id).count() == 1


@pytest.mark.parametrize("amount", [0, -10, "abc"])
def test_rejects_non_positive_or_invalid_amounts(make_user, amount):
    user = make_user()
    with pytest.raises(ValidationError):
        with atomic():
            LedgerStore.apply_ledger_entry(user.id, amount, Direction.CREDIT, IncomeSource.DIRECT_INCOME)


class TestWithdrawableIncome:

    def test_only_unlocked_income_counts(self, make_user, credit, frozen_clock):
        user = make_user()
        now = frozen_clock.now
        credit(user, 1000, "BTC_deposit", unlock_date=now + timedelta(days=180))
        credit(user, 100, IncomeSource.DIRECT_INCOME, unlock_date=now)
        credit(user, 30, IncomeSource.REFERRAL_INCOME, unlock_date=now + timedelta(days=1))
        credit(user, 20, IncomeSource.MONTHLY_PROFIT, unlock_date=now - timedelta(days=1))

        assert LedgerStore.available_withdrawable(user.id) == Decimal("120.00")

    def test_pending_and_completed_withdrawals_are_subtracted(self, make_user, credit):
        user = make_user()
        credit(user, 100, IncomeSource.DIRECT_INCOME)
        credit(user, 30, IncomeSource.INCOME_WITHDRAWAL, direction=Direction.DEBIT,
               status=TransactionStatus.PENDING, reserve=True)
        credit(user, 20, IncomeSource.LEGACY_WITHDRAWAL, direction=Direction.DEBIT)

        assert LedgerStore.available_withdrawable(user.id) == Decimal("50.00")

    def test_never_negative(self, make_user, credit):
        user = make_user()
        credit(user, 500, "ETH_deposit")
        credit(user, 100, IncomeSource.INCOME_WITHDRAWAL, direction=Direction.DEBIT)
        assert LedgerStore.available_withdrawable(user.id) == Decimal("0.00")


class TestBases:

    def test_deposit_base_counts_every_completed_deposit(self, make_user, credit, frozen_clock):
        user = make_user()
        credit(user, 1000, "BTC_deposit")
        credit(user, 500, IncomeSource.INVESTMENT_DEPOSIT, unlock_date=frozen_clock.now)
        credit(user, 700, "ETH_deposit", status=TransactionStatus.PENDING)
        credit(user, 90, IncomeSource.DIRECT_INCOME)

        assert LedgerStore.deposit_base(user.id) == Decimal("1500.00")

    def test_investment_base_requires_tag_and_unlock_date(self, make_user, credit, frozen_clock):
        user = make_user()
        credit(user, 1000, "BTC_deposit", unlock_date=frozen_clock.now)
        credit(user, 500, IncomeSource.INVESTMENT_DEPOSIT, unlock_date=frozen_clock.now)
        credit(user, 300, IncomeSource.INVESTMENT_DEPOSIT)

        assert LedgerStore.investment_deposit_base(user.id) == Decimal("500.00")

    def test_users_with_deposits(self, make_user, credit, frozen_clock):
        a, b, c = make_user(), make_user(), make_user()
        credit(a, 100, "BTC_deposit")
        credit(b, 100, IncomeSource.INVESTMENT_DEPOSIT, unlock_date=frozen_clock.now)
        credit(c, 100, IncomeSource.DIRECT_INCOME)

        assert LedgerStore.users_with_deposits() == [a.id, b.id]
        assert LedgerStore.users_with_deposits(investment_only=True) == [b.id]

    def test_deposit_suffix_is_matched_literally(self, make_user, credit):
        user = make_user()
        credit(user, 400, "BTCXdeposit")
        credit(user, 200, "ETH_deposit")

        assert LedgerStore.deposit_base(user.id) == Decimal("200.00")

    def test_lookalike_tag_does_not_qualify_user(self, make_user, credit):
        user = make_user()
        credit(user, 400, "BTCXdeposit")

        assert LedgerStore.users_with_deposits() == []


class TestReconciliation:

    def test_ledger_sum_matches_wallet(self, make_user, credit):
        user = make_user()
        credit(user, 300, IncomeSource.DIRECT_INCOME)
        credit(user, 50, IncomeSource.INCOME_WITHDRAWAL, direction=Direction.DEBIT,
               status=TransactionStatus.PENDING, reserve=True)
        credit(user, 999, "BTC_deposit", status=TransactionStatus.PENDING)

        report = LedgerStore.reconcile(user.id)
        assert report["consistent"]
        assert report["ledger_balance"] == Decimal("250.00")

    def test_direct_wallet_write_is_reported(self, make_user, credit):
        user = make_user()
        other = make_user()
        credit(user, 100, IncomeSource.DIRECT_INCOME)
        credit(other, 100, IncomeSource.DIRECT_INCOME)

        wallet = Wallet.query.filter_by(user_id=user.id).first()
        wallet.balance = Decimal("150.00")
        db.session.commit()

        drifted = LedgerStore.reconcile_all()
        assert [r["user_id"] for r in drifted] == [user.id]
        assert drifted[0]["difference"] == Decimal("50.00")
