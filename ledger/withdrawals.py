"""
Withdrawal Authorizer.

Income withdrawals reserve funds at request time: the PENDING debit moves the
wallet immediately, approval only flips the status and rejection restores
the amount.

Investment withdrawals do not touch the wallet at request time; the
investment moves to `withdrawing` and the principal leaves the wallet when
an admin approves. Rejection returns the investment to `active`.
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
import logging
import re

from flask import current_app
from sqlalchemy import func

from extensions import db
from models import (User, Investment, InvestmentStatus, Transaction, Direction,
                    TransactionStatus, IncomeSource)
from ledger.clock import clock, add_months, month_bounds, whole_months_between
from ledger.errors import (ConflictError, InsufficientFundsError, LockPeriodError,
                           NotFoundError, ValidationError)
from ledger.otp import (PURPOSE_INCOME_WITHDRAWAL, PURPOSE_INVESTMENT_WITHDRAWAL,
                        get_otp_service, issue_and_send)
from ledger.store import LedgerStore, atomic, to_money
from ledger.validation import LedgerValidationHelper

logger = logging.getLogger(__name__)

INCOME = "income"
INVESTMENT = "investment"
KINDS = (INCOME, INVESTMENT)


def _lock_months() -> int:
    return current_app.config.get("PRINCIPAL_LOCK_MONTHS", 6)


def _validate_kind(kind) -> str:
    kind = (kind or "").strip().lower()
    if kind not in KINDS:
        raise ValidationError("Withdrawal type must be 'income' or 'investment'")
    return kind


# ===========================================================
# ELIGIBILITY
# ===========================================================

def is_lock_elapsed(investment: Investment, now: Optional[datetime] = None) -> bool:
    """Whole calendar months since start, day of month ignored."""
    now = now or clock.now
    return whole_months_between(investment.start_date, now) >= _lock_months()


def eligible_from(investment: Investment) -> datetime:
    """First moment the whole-month count reaches the lock period."""
    return month_bounds(add_months(investment.start_date, _lock_months()))[0]


def has_pending_investment_withdrawal(investment_id: int) -> bool:
    return db.session.query(Transaction.id).filter(
        Transaction.investment_id == investment_id,
        Transaction.income_source == IncomeSource.INVESTMENT_WITHDRAWAL,
        Transaction.status == TransactionStatus.PENDING,
    ).first() is not None


def _owned_investment(user: User, investment_id: int, lock: bool = False) -> Investment:
    query = Investment.query.filter_by(id=investment_id, user_id=user.id)
    if lock:
        query = query.with_for_update()
    investment = query.first()
    if not investment:
        raise NotFoundError("Investment not found or access denied")
    return investment


def check_investment_eligibility(user: User, investment_id: int, lock: bool = False) -> Investment:
    investment = _owned_investment(user, investment_id, lock=lock)

    if has_pending_investment_withdrawal(investment.id):
        raise ConflictError("There is already a pending withdrawal request for this investment")

    if investment.status != InvestmentStatus.ACTIVE:
        raise ValidationError(f"Cannot withdraw from {investment.status.value} investment")

    if not is_lock_elapsed(investment):
        eligible = eligible_from(investment)
        raise LockPeriodError(
            f"Investment locked until {eligible.date().isoformat()}. "
            f"Lock period: {_lock_months()} months from investment date.",
            eligible_date=eligible.isoformat(),
        )

    return investment


def check_income_eligibility(user: User, amount: Decimal):
    available = LedgerStore.available_withdrawable(user.id)
    if amount > available:
        raise InsufficientFundsError(
            f"Insufficient withdrawable balance. Available: ${available:.2f}",
            available=float(available),
        )
    return available


# ===========================================================
# OTP ISSUANCE
# ===========================================================

def _income_params(amount: Decimal, chain: str, address: str) -> Dict:
    return {"amount": amount, "chain": chain, "address": address}


def _investment_params(investment_id: int, chain: str, address: str) -> Dict:
    return {"investment_id": investment_id, "chain": chain, "address": address}


def request_withdrawal_otp(user: User, kind: str, chain: str, address: str,
                           amount=None, investment_id=None) -> Dict:
    """Pre-check eligibility, then issue an OTP bound to the exact request."""
    kind = _validate_kind(kind)
    chain = LedgerValidationHelper.validate_chain(chain)
    address = LedgerValidationHelper.validate_address(address)

    if kind == INCOME:
        amount = LedgerValidationHelper.validate_withdrawal_amount(amount)
        check_income_eligibility(user, amount)
        return issue_and_send(user, PURPOSE_INCOME_WITHDRAWAL, _income_params(amount, chain, address))

    investment_id = LedgerValidationHelper.validate_investment_id(investment_id)
    check_investment_eligibility(user, investment_id)
    return issue_and_send(user, PURPOSE_INVESTMENT_WITHDRAWAL,
                          _investment_params(investment_id, chain, address))


# ===========================================================
# CONFIRMATION
# ===========================================================

def confirm_income_withdrawal(user: User, amount, chain: str, address: str, otp: str) -> Transaction:
    amount = LedgerValidationHelper.validate_withdrawal_amount(amount)
    chain = LedgerValidationHelper.validate_chain(chain)
    address = LedgerValidationHelper.validate_address(address)
    code = LedgerValidationHelper.validate_otp_format(otp)

    with get_otp_service().consuming(user.id, PURPOSE_INCOME_WITHDRAWAL, code,
                                     _income_params(amount, chain, address)):
        with atomic():
            LedgerStore.ensure_wallet(user.id, lock=True)
            check_income_eligibility(user, amount)
            entry = LedgerStore.apply_ledger_entry(
                user_id=user.id,
                amount=amount,
                direction=Direction.DEBIT,
                income_source=IncomeSource.INCOME_WITHDRAWAL,
                status=TransactionStatus.PENDING,
                description=(f"Income withdrawal of ${amount} to {chain} address {address} "
                             f"[FULL_ADDRESS:{address}]"),
                reference=address,
                reserve=True,
            )

    logger.info(f"Income withdrawal {entry.id} requested by user {user.id}: ${amount} to {chain}")
    return entry


def confirm_investment_withdrawal(user: User, investment_id, chain: str, address: str,
                                  otp: str) -> Transaction:
    investment_id = LedgerValidationHelper.validate_investment_id(investment_id)
    chain = LedgerValidationHelper.validate_chain(chain)
    address = LedgerValidationHelper.validate_address(address)
    code = LedgerValidationHelper.validate_otp_format(otp)

    with get_otp_service().consuming(user.id, PURPOSE_INVESTMENT_WITHDRAWAL, code,
                                     _investment_params(investment_id, chain, address)):
        with atomic():
            LedgerStore.ensure_wallet(user.id, lock=True)
            investment = check_investment_eligibility(user, investment_id, lock=True)
            principal = to_money(investment.amount)

            entry = LedgerStore.apply_ledger_entry(
                user_id=user.id,
                amount=principal,
                direction=Direction.DEBIT,
                income_source=IncomeSource.INVESTMENT_WITHDRAWAL,
                status=TransactionStatus.PENDING,
                description=(f"Investment withdrawal of ${principal} from {investment.package_name} "
                             f"(ID: {investment.id}) to {chain} address {address} [FULL_ADDRESS:{address}]"),
                investment_id=investment.id,
                reference=address,
            )
            investment.status = InvestmentStatus.WITHDRAWING

    logger.info(f"Investment withdrawal {entry.id} requested by user {user.id} for investment {investment_id}")
    return entry


def confirm_withdrawal(user: User, kind: str, otp: str, chain: str, address: str,
                       amount=None, investment_id=None) -> Transaction:
    kind = _validate_kind(kind)
    if kind == INCOME:
        return confirm_income_withdrawal(user, amount, chain, address, otp)
    return confirm_investment_withdrawal(user, investment_id, chain, address, otp)


# ===========================================================
# ADMIN DECISIONS
# ===========================================================

def _pending_withdrawal(transaction_id: int) -> Transaction:
    entry = LedgerStore.get_transaction(transaction_id, lock=True)
    if entry.direction != Direction.DEBIT or entry.income_source not in IncomeSource.WITHDRAWAL_TYPES:
        raise NotFoundError(f"Withdrawal {transaction_id} not found")
    if entry.status != TransactionStatus.PENDING:
        raise ConflictError(f"Withdrawal {transaction_id} is already {entry.status.value}")
    return entry


def _linked_investment(entry: Transaction) -> Optional[Investment]:
    if entry.income_source != IncomeSource.INVESTMENT_WITHDRAWAL or not entry.investment_id:
        return None
    return Investment.query.filter_by(id=entry.investment_id).with_for_update().first()


def approve_withdrawal(transaction_id: int) -> Dict:
    with atomic():
        entry = _pending_withdrawal(transaction_id)
        investment = _linked_investment(entry)
        LedgerStore.complete_entry(entry, note="Approved by admin")
        if investment:
            investment.status = InvestmentStatus.WITHDRAWN

    logger.info(f"Withdrawal {transaction_id} approved for user {entry.user_id}: ${entry.amount}")
    return {"success": True, "message": "Withdrawal approved successfully", "transaction": entry.to_dict()}


def reject_withdrawal(transaction_id: int, reason: str = None) -> Dict:
    with atomic():
        entry = _pending_withdrawal(transaction_id)
        investment = _linked_investment(entry)
        LedgerStore.reject_entry(entry, reason)
        if investment and investment.status == InvestmentStatus.WITHDRAWING:
            investment.status = InvestmentStatus.ACTIVE

    logger.info(f"Withdrawal {transaction_id} rejected: {reason or 'No reason provided'}")
    return {"success": True, "message": "Withdrawal rejected successfully", "transaction": entry.to_dict()}


# ===========================================================
# REPORTING
# ===========================================================

CHAIN_IN_DESCRIPTION = re.compile(r"to (\w+) address")
FULL_ADDRESS_TAG = re.compile(r"\[FULL_ADDRESS:([^\]]+)\]")


def withdrawal_details(entry: Transaction) -> Dict:
    """Chain and destination recovered from the entry's description."""
    description = entry.description or ""
    chain = CHAIN_IN_DESCRIPTION.search(description)
    address = FULL_ADDRESS_TAG.search(description)
    return {
        "blockchain": chain.group(1) if chain else "N/A",
        "address": address.group(1) if address else (entry.reference or "N/A"),
        "full_description": description,
    }


def _withdrawal_view(entry: Transaction) -> Dict:
    item = entry.to_dict()
    item["type"] = INVESTMENT if entry.income_source == IncomeSource.INVESTMENT_WITHDRAWAL else INCOME
    details = withdrawal_details(entry)
    item["blockchain"] = details["blockchain"]
    item["address"] = details["address"]
    return item


def get_withdrawal_history(user: User, kind: str = None, status: str = None,
                           limit: int = 50, offset: int = 0) -> Dict:
    query = Transaction.query.filter(
        Transaction.user_id == user.id,
        Transaction.direction == Direction.DEBIT,
    )
    if kind and kind.upper() != "ALL":
        kind = _validate_kind(kind)
        if kind == INCOME:
            query = query.filter(Transaction.income_source.in_(IncomeSource.INCOME_WITHDRAWAL_TYPES))
        else:
            query = query.filter(Transaction.income_source == IncomeSource.INVESTMENT_WITHDRAWAL)
    else:
        query = query.filter(Transaction.income_source.in_(IncomeSource.WITHDRAWAL_TYPES))

    if status and status.upper() != "ALL":
        try:
            query = query.filter(Transaction.status == TransactionStatus(status.upper()))
        except ValueError:
            raise ValidationError(f"Unknown status: {status}")

    limit = max(1, min(int(limit), 200))
    offset = max(0, int(offset))
    total = query.count()
    rows = query.order_by(Transaction.timestamp.desc(), Transaction.id.desc()) \
        .offset(offset).limit(limit).all()

    return {
        "withdrawals": [_withdrawal_view(row) for row in rows],
        "pagination": {
            "total": total,
            "limit": limit,
            "offset": offset,
            "hasMore": offset + len(rows) < total,
        },
    }


def get_investments(user: User) -> List[Dict]:
    now = clock.now
    lock_months = _lock_months()
    investments = user.investments.filter(
        Investment.status.in_([InvestmentStatus.ACTIVE, InvestmentStatus.WITHDRAWING])
    ).order_by(Investment.start_date.desc()).all()

    result = []
    for investment in investments:
        eligible_date = eligible_from(investment)
        eligible = investment.status == InvestmentStatus.ACTIVE and is_lock_elapsed(investment, now)
        item = investment.to_dict()
        item.update({
            "withdrawal_eligible": eligible,
            "eligible_date": eligible_date.isoformat(),
            "days_until_eligible": 0 if eligible else max(0, (eligible_date - now).days),
            "lock_period_months": lock_months,
        })
        result.append(item)
    return result


def _sum_and_count(user_id: int, status: TransactionStatus):
    total, count = db.session.query(
        func.coalesce(func.sum(Transaction.amount), 0),
        func.count(Transaction.id),
    ).filter(
        Transaction.user_id == user_id,
        Transaction.direction == Direction.DEBIT,
        Transaction.income_source.in_(IncomeSource.WITHDRAWAL_TYPES),
        Transaction.status == status,
    ).one()
    return to_money(total), count


def get_withdrawal_stats(user: User) -> Dict:
    now = clock.now
    withdrawn_total, withdrawn_count = _sum_and_count(user.id, TransactionStatus.COMPLETED)
    pending_total, pending_count = _sum_and_count(user.id, TransactionStatus.PENDING)
    active = user.investments.filter(Investment.status == InvestmentStatus.ACTIVE).all()
    eligible = [inv for inv in active if is_lock_elapsed(inv, now)]

    return {
        "available_balance": float(LedgerStore.available_withdrawable(user.id, now)),
        "total_withdrawn": float(withdrawn_total),
        "total_withdrawal_count": withdrawn_count,
        "pending_amount": float(pending_total),
        "pending_count": pending_count,
        "eligible_investments_count": len(eligible),
        "total_investments_count": len(active),
    }


def list_pending_withdrawals() -> List[Dict]:
    rows = Transaction.query.filter(
        Transaction.direction == Direction.DEBIT,
        Transaction.status == TransactionStatus.PENDING,
        Transaction.income_source.in_(IncomeSource.WITHDRAWAL_TYPES),
    ).order_by(Transaction.timestamp.desc()).all()

    pending = []
    for row in rows:
        item = _withdrawal_view(row)
        item["user"] = {"id": row.user.id, "name": row.user.display_name, "email": row.user.email}
        pending.append(item)
    return pending
