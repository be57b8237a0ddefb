"""
Deposit Approval Workflow.

OTP request -> PENDING credit (no balance change) -> admin approval
(COMPLETED, principal locked for 6 months, Investment opened, deposit
commissions paid three levels up) or rejection (REJECTED, reason appended).
"""
from decimal import Decimal
from typing import Dict, List, Optional
import logging

from flask import current_app

from extensions import db
from models import (User, Investment, InvestmentStatus, Transaction, Direction,
                    TransactionStatus, IncomeSource)
from ledger.clock import clock, add_months
from ledger.commission_config import CommissionConfigHelper
from ledger.errors import ConflictError, NotFoundError, ValidationError
from ledger.otp import PURPOSE_DEPOSIT, get_otp_service, issue_and_send
from ledger.referral_income import ReferralIncomeHelper
from ledger.store import LedgerStore, atomic
from ledger.validation import LedgerValidationHelper

logger = logging.getLogger(__name__)


def investment_rate_for(amount) -> Decimal:
    """Monthly profit rate (%) by principal tier."""
    amount = Decimal(str(amount))
    if amount >= Decimal("1000"):
        return Decimal("15")
    if amount >= Decimal("100"):
        return Decimal("12")
    raise ValidationError("Minimum investment amount is $100")


def _deposit_params(amount: Decimal, chain: str, package_name: Optional[str]) -> Dict:
    return {"amount": amount, "chain": chain, "package_name": package_name or ""}


# ===========================================================
# USER SIDE
# ===========================================================

def request_deposit_otp(user: User, amount, chain, package_name: str = None) -> Dict:
    amount = LedgerValidationHelper.validate_deposit_amount(amount)
    chain = LedgerValidationHelper.validate_chain(chain)
    package_name = LedgerValidationHelper.optional_text(package_name, 100)
    if not user.email:
        raise ValidationError("User email not found")

    return issue_and_send(user, PURPOSE_DEPOSIT, _deposit_params(amount, chain, package_name))


def confirm_deposit(user: User, amount, chain, otp: str, proof: str = None,
                    package_name: str = None, screenshot_provided: bool = False) -> Transaction:
    """
    Verify the OTP against the exact deposit parameters and record a PENDING
    credit. `proof` is the payment-rail transaction hash, kept for audit.
    """
    amount = LedgerValidationHelper.validate_deposit_amount(amount)
    chain = LedgerValidationHelper.validate_chain(chain)
    package_name = LedgerValidationHelper.optional_text(package_name, 100)
    proof = LedgerValidationHelper.optional_text(proof)
    code = LedgerValidationHelper.validate_otp_format(otp)

    description = f"Crypto deposit of ${amount} via {chain}"
    if proof:
        description += f" (Tx: {proof})"
    description += " - OTP verified"
    if screenshot_provided:
        description += " - Screenshot provided"
    if package_name:
        description += f" [PACKAGE:{package_name}]"

    income_source = IncomeSource.INVESTMENT_DEPOSIT if package_name else IncomeSource.deposit_for_chain(chain)

    with get_otp_service().consuming(user.id, PURPOSE_DEPOSIT, code,
                                     _deposit_params(amount, chain, package_name)):
        with atomic():
            entry = LedgerStore.apply_ledger_entry(
                user_id=user.id,
                amount=amount,
                direction=Direction.CREDIT,
                income_source=income_source,
                status=TransactionStatus.PENDING,
                description=description,
                reference=proof,
            )

    logger.info(f"Deposit {entry.id} created for user {user.id}: ${amount} via {chain} (PENDING)")
    return entry


# ===========================================================
# ADMIN SIDE
# ===========================================================

def _package_from_description(entry: Transaction) -> Optional[str]:
    description = entry.description or ""
    marker = "[PACKAGE:"
    start = description.find(marker)
    if start == -1:
        return None
    end = description.find("]", start)
    return description[start + len(marker):end] if end != -1 else None


def _chain_from_source(income_source: str) -> str:
    if income_source == IncomeSource.INVESTMENT_DEPOSIT:
        return "investment"
    return income_source[:-len(IncomeSource.DEPOSIT_SUFFIX)]


def _pending_deposit(transaction_id: int) -> Transaction:
    entry = LedgerStore.get_transaction(transaction_id, lock=True)
    if entry.direction != Direction.CREDIT or not IncomeSource.is_deposit(entry.income_source):
        raise NotFoundError(f"Deposit {transaction_id} not found")
    if entry.status != TransactionStatus.PENDING:
        raise ConflictError(f"Deposit {transaction_id} is already {entry.status.value}")
    return entry


def approve_deposit(transaction_id: int) -> Dict:
    """
    PENDING -> COMPLETED in one unit: lock the principal for
    PRINCIPAL_LOCK_MONTHS, credit the wallet, open the Investment and pay
    deposit commissions to the sponsor chain.
    """
    lock_months = current_app.config.get("PRINCIPAL_LOCK_MONTHS", 6)

    with atomic():
        entry = _pending_deposit(transaction_id)
        depositor = db.session.get(User, entry.user_id)
        now = clock.now
        unlock_date = add_months(now, lock_months)
        amount = Decimal(str(entry.amount))

        investment = Investment(
            user_id=entry.user_id,
            package_name=_package_from_description(entry) or _chain_from_source(entry.income_source),
            amount=amount,
            monthly_profit_rate=investment_rate_for(amount),
            start_date=now,
            unlock_date=unlock_date,
            status=InvestmentStatus.ACTIVE,
        )
        db.session.add(investment)
        db.session.flush()

        entry.unlock_date = unlock_date
        entry.investment_id = investment.id
        LedgerStore.complete_entry(entry)

        commissions = ReferralIncomeHelper.cascade(
            depositor,
            amount,
            CommissionConfigHelper.DEPOSIT_COMMISSION_SCHEDULE,
            trigger="deposit",
            now=now,
        )

    logger.info(
        f"Deposit {transaction_id} approved: user={entry.user_id} amount={amount} "
        f"investment={investment.id} commissions={len(commissions)}"
    )
    return {
        "success": True,
        "message": "Deposit approved successfully",
        "transaction": entry.to_dict(),
        "investment": investment.to_dict(),
        "referral_commissions": [
            {**c, "amount": float(c["amount"]), "percentage": float(c["percentage"])}
            for c in commissions
        ],
    }


def reject_deposit(transaction_id: int, reason: str = None) -> Dict:
    with atomic():
        entry = _pending_deposit(transaction_id)
        LedgerStore.reject_entry(entry, reason)

    logger.info(f"Deposit {transaction_id} rejected: {reason or 'No reason provided'}")
    return {
        "success": True,
        "message": "Deposit rejected",
        "transaction": entry.to_dict(),
    }


def list_pending_deposits() -> List[Dict]:
    rows = Transaction.query.filter(
        Transaction.direction == Direction.CREDIT,
        Transaction.status == TransactionStatus.PENDING,
        LedgerStore.deposit_source_clause(),
    ).order_by(Transaction.timestamp.desc()).all()

    deposits = []
    for row in rows:
        item = row.to_dict()
        item["user"] = {"id": row.user.id, "name": row.user.display_name, "email": row.user.email}
        item["blockchain"] = _chain_from_source(row.income_source)
        deposits.append(item)
    return deposits
