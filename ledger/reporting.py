"""
Read-only history views: the admin's settled deposit/withdrawal feed and a
user's full investment history.
"""
from typing import Dict, List

from sqlalchemy import and_, or_

from models import User, Investment, Transaction, Direction, TransactionStatus, IncomeSource
from ledger.errors import ValidationError
from ledger.store import LedgerStore
from ledger.withdrawals import withdrawal_details

DEPOSITS = "deposits"
WITHDRAWALS = "withdrawals"
SETTLED = (TransactionStatus.COMPLETED, TransactionStatus.REJECTED)


def _kind_filter(kind: str):
    deposits = and_(
        Transaction.direction == Direction.CREDIT,
        LedgerStore.deposit_source_clause(),
    )
    withdrawals = and_(
        Transaction.direction == Direction.DEBIT,
        Transaction.income_source.in_(IncomeSource.WITHDRAWAL_TYPES),
    )
    if kind == DEPOSITS:
        return deposits
    if kind == WITHDRAWALS:
        return withdrawals
    return or_(deposits, withdrawals)


def get_transaction_history(kind: str = None, limit: int = 50, offset: int = 0) -> Dict:
    """
    Settled (COMPLETED or REJECTED) deposits and withdrawals across all users,
    newest first. Withdrawals carry the chain and destination parsed from
    their description.
    """
    kind = (kind or "").strip().lower()
    if kind in ("", "all"):
        kind = None
    elif kind not in (DEPOSITS, WITHDRAWALS):
        raise ValidationError("History type must be 'deposits' or 'withdrawals'")

    limit = max(1, min(int(limit), 200))
    offset = max(0, int(offset))

    query = Transaction.query.filter(
        Transaction.status.in_(SETTLED),
        _kind_filter(kind),
    )
    total = query.count()
    rows = query.order_by(Transaction.timestamp.desc(), Transaction.id.desc()) \
        .offset(offset).limit(limit).all()

    transactions = []
    for row in rows:
        item = row.to_dict()
        item["user"] = {"id": row.user.id, "name": row.user.display_name, "email": row.user.email}
        if row.direction == Direction.DEBIT:
            item["withdrawal_details"] = withdrawal_details(row)
        transactions.append(item)

    return {
        "transactions": transactions,
        "pagination": {
            "total": total,
            "limit": limit,
            "offset": offset,
            "hasMore": offset + len(rows) < total,
        },
    }


def get_investment_history(user: User) -> List[Dict]:
    """Every investment the user opened, whatever its status, newest first."""
    investments = user.investments.order_by(Investment.start_date.desc(), Investment.id.desc()).all()
    return [investment.to_dict() for investment in investments]
