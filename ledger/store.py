"""
Ledger Store: the append-only transaction log plus the cached wallet balance.

Every balance mutation goes through LedgerStore so that the ledger insert and
the wallet update happen inside the same atomic unit.
"""
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Dict, List, Optional
import logging

from sqlalchemy import func, case, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from extensions import db
from logger import ledger_logger
from models import Wallet, Transaction, Direction, TransactionStatus, IncomeSource
from ledger.clock import clock
from ledger.errors import LedgerError, NotFoundError, PersistenceError, ValidationError

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Decimal rounded to cents (half-up)."""
    if value is None:
        return Decimal("0.00")
    try:
        return Decimal(str(value)).quantize(CENT, ROUND_HALF_UP)
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"Invalid amount: {value!r}")


@contextmanager
def atomic():
    """
    One atomic unit against the database. Commits on success; rolls back
    and re-raises on any error, wrapping SQLAlchemy failures in PersistenceError.
    """
    try:
        yield db.session
        db.session.commit()
    except LedgerError:
        db.session.rollback()
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Atomic unit rolled back: {e}")
        raise PersistenceError("Ledger update failed and was rolled back") from e
    except Exception:
        db.session.rollback()
        raise


class LedgerStore:

    # ===========================================================
    # WALLETS
    # ===========================================================

    @staticmethod
    def ensure_wallet(user_id: int, lock: bool = False) -> Wallet:
        """
        Return the user's wallet, creating it with a zero balance if absent.
        A concurrent creator loses on the unique user_id constraint and its
        atomic unit rolls back.
        """
        query = Wallet.query.filter_by(user_id=user_id)
        if lock:
            query = query.with_for_update()
        wallet = query.first()
        if wallet:
            return wallet

        wallet = Wallet(user_id=user_id, balance=Decimal("0.00"))
        db.session.add(wallet)
        try:
            db.session.flush()
        except IntegrityError as e:
            raise PersistenceError(f"Concurrent wallet creation for user {user_id}") from e
        return wallet

    @staticmethod
    def _apply_to_wallet(wallet: Wallet, direction: Direction, amount: Decimal):
        current = to_money(wallet.balance)
        if direction == Direction.CREDIT:
            wallet.balance = current + amount
        else:
            wallet.balance = current - amount

    # ===========================================================
    # LEDGER ENTRIES
    # ===========================================================

    @staticmethod
    def apply_ledger_entry(user_id: int, amount, direction: Direction, income_source: str,
                           status: TransactionStatus = TransactionStatus.COMPLETED,
                           unlock_date: Optional[datetime] = None,
                           description: str = None,
                           referral_level: int = None,
                           source_user_id: int = None,
                           investment_id: int = None,
                           reference: str = None,
                           reserve: bool = False,
                           timestamp: Optional[datetime] = None) -> Transaction:
        """
        Append a ledger entry. COMPLETED entries move the wallet balance by
        their signed amount; a PENDING debit with reserve=True does too
        (withdrawal reservation). Must run inside atomic().
        """
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationError("Ledger amounts must be positive")

        applies = status == TransactionStatus.COMPLETED or (
            reserve and status == TransactionStatus.PENDING and direction == Direction.DEBIT
        )

        wallet = LedgerStore.ensure_wallet(user_id, lock=applies)

        entry = Transaction(
            user_id=user_id,
            amount=amount,
            direction=direction,
            income_source=income_source,
            status=status,
            unlock_date=unlock_date,
            description=description,
            referral_level=referral_level,
            source_user_id=source_user_id,
            investment_id=investment_id,
            reference=reference,
            balance_applied=applies,
            timestamp=timestamp or clock.now,
        )
        db.session.add(entry)

        if applies:
            LedgerStore._apply_to_wallet(wallet, direction, amount)

        db.session.flush()
        ledger_logger.info(
            f"LEDGER_ENTRY id={entry.id} user={user_id} {direction.value} {amount} "
            f"source={income_source} status={status.value} applied={applies}"
        )
        return entry

    @staticmethod
    def get_transaction(transaction_id: int, lock: bool = False) -> Transaction:
        query = Transaction.query.filter_by(id=transaction_id)
        if lock:
            query = query.with_for_update()
        entry = query.first()
        if not entry:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        return entry

    @staticmethod
    def complete_entry(entry: Transaction, note: str = None) -> Transaction:
        """PENDING -> COMPLETED. Moves the balance only if it was not already reserved."""
        if not entry.balance_applied:
            wallet = LedgerStore.ensure_wallet(entry.user_id, lock=True)
            LedgerStore._apply_to_wallet(wallet, entry.direction, to_money(entry.amount))
            entry.balance_applied = True
        entry.status = TransactionStatus.COMPLETED
        if note:
            entry.description = f"{entry.description or ''} - {note}".strip(" -")
        db.session.flush()
        ledger_logger.info(f"LEDGER_COMPLETE id={entry.id} user={entry.user_id} amount={entry.amount}")
        return entry

    @staticmethod
    def reject_entry(entry: Transaction, reason: str = None) -> Transaction:
        """PENDING -> REJECTED. Releases a reservation by restoring the wallet."""
        if entry.balance_applied:
            wallet = LedgerStore.ensure_wallet(entry.user_id, lock=True)
            opposite = Direction.CREDIT if entry.direction == Direction.DEBIT else Direction.DEBIT
            LedgerStore._apply_to_wallet(wallet, opposite, to_money(entry.amount))
            entry.balance_applied = False
        entry.status = TransactionStatus.REJECTED
        entry.description = f"{entry.description or ''} (Rejected: {reason or 'No reason provided'})".strip()
        db.session.flush()
        ledger_logger.info(f"LEDGER_REJECT id={entry.id} user={entry.user_id} amount={entry.amount}")
        return entry

    # ===========================================================
    # AGGREGATES
    # ===========================================================

    @staticmethod
    def sum_amount(*criteria) -> Decimal:
        total = db.session.query(
            func.coalesce(func.sum(Transaction.amount), 0)
        ).filter(*criteria).scalar()
        return to_money(total)

    @staticmethod
    def deposit_source_clause():
        """`income_source` ends with the literal `_deposit` suffix."""
        return Transaction.income_source.endswith(IncomeSource.DEPOSIT_SUFFIX, autoescape=True)

    @staticmethod
    def deposit_base(user_id: int) -> Decimal:
        """All completed deposit credits (`*_deposit`)."""
        return LedgerStore.sum_amount(
            Transaction.user_id == user_id,
            Transaction.direction == Direction.CREDIT,
            Transaction.status == TransactionStatus.COMPLETED,
            LedgerStore.deposit_source_clause(),
        )

    @staticmethod
    def investment_deposit_base(user_id: int) -> Decimal:
        """Completed `investment_deposit` credits that carry an unlock date."""
        return LedgerStore.sum_amount(
            Transaction.user_id == user_id,
            Transaction.direction == Direction.CREDIT,
            Transaction.status == TransactionStatus.COMPLETED,
            Transaction.income_source == IncomeSource.INVESTMENT_DEPOSIT,
            Transaction.unlock_date.isnot(None),
        )

    @staticmethod
    def withdrawable_income(user_id: int, now: datetime = None) -> Decimal:
        now = now or clock.now
        return LedgerStore.sum_amount(
            Transaction.user_id == user_id,
            Transaction.direction == Direction.CREDIT,
            Transaction.status == TransactionStatus.COMPLETED,
            or_(Transaction.unlock_date.is_(None), Transaction.unlock_date <= now),
            or_(Transaction.income_source.in_(IncomeSource.INCOME_TYPES),
                Transaction.income_source.like("%income%")),
        )

    @staticmethod
    def income_withdrawn(user_id: int) -> Decimal:
        return LedgerStore.sum_amount(
            Transaction.user_id == user_id,
            Transaction.direction == Direction.DEBIT,
            Transaction.income_source.in_(IncomeSource.INCOME_WITHDRAWAL_TYPES),
            Transaction.status.in_([TransactionStatus.COMPLETED, TransactionStatus.PENDING]),
        )

    @staticmethod
    def available_withdrawable(user_id: int, now: datetime = None) -> Decimal:
        available = LedgerStore.withdrawable_income(user_id, now) - LedgerStore.income_withdrawn(user_id)
        return max(Decimal("0.00"), available)

    @staticmethod
    def has_entry_between(user_id: int, income_source: str, start: datetime, end: datetime) -> bool:
        return db.session.query(Transaction.id).filter(
            Transaction.user_id == user_id,
            Transaction.income_source == income_source,
            Transaction.status == TransactionStatus.COMPLETED,
            Transaction.timestamp >= start,
            Transaction.timestamp < end,
        ).first() is not None

    @staticmethod
    def users_with_deposits(investment_only: bool = False) -> List[int]:
        """Distinct user ids holding at least one qualifying completed deposit."""
        criteria = [
            Transaction.direction == Direction.CREDIT,
            Transaction.status == TransactionStatus.COMPLETED,
        ]
        if investment_only:
            criteria += [
                Transaction.income_source == IncomeSource.INVESTMENT_DEPOSIT,
                Transaction.unlock_date.isnot(None),
            ]
        else:
            criteria.append(LedgerStore.deposit_source_clause())

        rows = db.session.query(Transaction.user_id).filter(*criteria) \
            .group_by(Transaction.user_id).order_by(Transaction.user_id).all()
        return [row.user_id for row in rows]

    # ===========================================================
    # RECONCILIATION
    # ===========================================================

    @staticmethod
    def ledger_balance(user_id: int) -> Decimal:
        """
        Ledger-derived balance: completed credits minus completed debits minus
        reserved pending debits.
        """
        signed = case(
            (Transaction.direction == Direction.CREDIT, Transaction.amount),
            else_=-Transaction.amount,
        )
        total = db.session.query(func.coalesce(func.sum(signed), 0)).filter(
            Transaction.user_id == user_id,
            Transaction.balance_applied.is_(True),
        ).scalar()
        return to_money(total)

    @staticmethod
    def reconcile(user_id: int) -> Dict:
        wallet = Wallet.query.filter_by(user_id=user_id).first()
        cached = to_money(wallet.balance) if wallet else Decimal("0.00")
        derived = LedgerStore.ledger_balance(user_id)
        return {
            "user_id": user_id,
            "wallet_balance": cached,
            "ledger_balance": derived,
            "difference": cached - derived,
            "consistent": cached == derived,
        }

    @staticmethod
    def reconcile_all() -> List[Dict]:
        """Reports for every wallet whose cached balance drifted from the ledger."""
        drifted = []
        for (user_id,) in db.session.query(Wallet.user_id).order_by(Wallet.user_id).all():
            report = LedgerStore.reconcile(user_id)
            if not report["consistent"]:
                logger.warning(
                    f"Wallet drift for user {user_id}: cached={report['wallet_balance']} "
                    f"ledger={report['ledger_balance']}"
                )
                drifted.append(report)
        return drifted
