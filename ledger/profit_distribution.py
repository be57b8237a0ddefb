"""
Profit Distribution Engine.

Daily profit:   round(deposit base * 10% / 30, 2), credited as `daily_profit`,
                no referral cascade.
Monthly profit: investment_deposit base * 10%, credited as `monthly_profit`,
                then cascaded up the sponsor chain on the profit schedule.

Each (user, period) is distributed at most once. The idempotency check and
the writes share one atomic unit, serialized on the user's wallet row.
"""
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Any, Optional
import logging
import time

from extensions import db
from logger import distribution_logger
from models import User, Transaction, Direction, TransactionStatus, IncomeSource
from ledger.clock import clock, day_bounds, month_bounds
from ledger.commission_config import CommissionConfigHelper
from ledger.errors import NotFoundError, ValidationError
from ledger.referral_income import ReferralIncomeHelper
from ledger.store import LedgerStore, atomic

logger = logging.getLogger(__name__)

MONTHLY_PROFIT_RATE = Decimal("0.10")
DAYS_IN_MONTH = Decimal("30")
DAILY_PROFIT_RATE = MONTHLY_PROFIT_RATE / DAYS_IN_MONTH

DAILY = "daily"
MONTHLY = "monthly"
PERIOD_TYPES = (DAILY, MONTHLY)


def _money(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _load_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError(f"User {user_id} not found")
    return user


# ===========================================================
# PER-USER DISTRIBUTION
# ===========================================================

def calculate_daily_profit(user_id: int) -> Decimal:
    return _money(LedgerStore.deposit_base(user_id) * DAILY_PROFIT_RATE)


def calculate_monthly_profit(user_id: int) -> Decimal:
    return _money(LedgerStore.investment_deposit_base(user_id) * MONTHLY_PROFIT_RATE)


def distribute_daily_profit(user_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Credit today's profit to one user. Safe to call repeatedly for the same day."""
    now = now or clock.now
    period_start, period_end = day_bounds(now)

    with atomic():
        user = _load_user(user_id)
        LedgerStore.ensure_wallet(user_id, lock=True)

        if LedgerStore.has_entry_between(user_id, IncomeSource.DAILY_PROFIT, period_start, period_end):
            return {
                "success": True,
                "user_id": user_id,
                "already_distributed": True,
                "amount": Decimal("0.00"),
                "message": "Daily profit already distributed today",
            }

        daily_profit = calculate_daily_profit(user_id)
        if daily_profit <= 0:
            return {
                "success": True,
                "user_id": user_id,
                "already_distributed": False,
                "amount": Decimal("0.00"),
                "message": "No profit to distribute",
            }

        entry = LedgerStore.apply_ledger_entry(
            user_id=user_id,
            amount=daily_profit,
            direction=Direction.CREDIT,
            income_source=IncomeSource.DAILY_PROFIT,
            status=TransactionStatus.COMPLETED,
            unlock_date=now,
            description=f"Daily investment profit ({DAILY_PROFIT_RATE * 100:.3f}% per day) - ${daily_profit:.2f}",
            timestamp=now,
        )

    distribution_logger.info(f"DAILY_PROFIT user={user.id} amount={daily_profit} tx={entry.id}")
    return {
        "success": True,
        "user_id": user_id,
        "already_distributed": False,
        "amount": daily_profit,
        "transaction_id": entry.id,
        "message": "Daily profit distributed",
    }


def distribute_monthly_profit(user_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Credit this month's profit to one user and pay the sponsor chain out of it."""
    now = now or clock.now
    period_start, period_end = month_bounds(now)

    with atomic():
        user = _load_user(user_id)
        LedgerStore.ensure_wallet(user_id, lock=True)

        if LedgerStore.has_entry_between(user_id, IncomeSource.MONTHLY_PROFIT, period_start, period_end):
            return {
                "success": True,
                "user_id": user_id,
                "already_distributed": True,
                "amount": Decimal("0.00"),
                "referral_distributions": [],
                "total_referral_distributed": Decimal("0.00"),
                "message": "Monthly profit already distributed this month",
            }

        monthly_profit = calculate_monthly_profit(user_id)
        if monthly_profit <= 0:
            return {
                "success": True,
                "user_id": user_id,
                "already_distributed": False,
                "amount": Decimal("0.00"),
                "referral_distributions": [],
                "total_referral_distributed": Decimal("0.00"),
                "message": "No profit to distribute",
            }

        entry = LedgerStore.apply_ledger_entry(
            user_id=user_id,
            amount=monthly_profit,
            direction=Direction.CREDIT,
            income_source=IncomeSource.MONTHLY_PROFIT,
            status=TransactionStatus.COMPLETED,
            unlock_date=now,
            description=f"Monthly investment profit (10%) - ${monthly_profit:.2f}",
            timestamp=now,
        )

        referrals = ReferralIncomeHelper.cascade(
            user,
            monthly_profit,
            CommissionConfigHelper.PROFIT_COMMISSION_SCHEDULE,
            trigger="monthly profit",
            now=now,
        )

    total_referral = sum((r["amount"] for r in referrals), Decimal("0.00"))
    distribution_logger.info(
        f"MONTHLY_PROFIT user={user.id} amount={monthly_profit} tx={entry.id} "
        f"referrals={len(referrals)} referral_total={total_referral}"
    )
    return {
        "success": True,
        "user_id": user_id,
        "already_distributed": False,
        "amount": monthly_profit,
        "transaction_id": entry.id,
        "referral_distributions": referrals,
        "total_referral_distributed": total_referral,
        "message": "Monthly profit distributed",
    }


# ===========================================================
# BATCH DRIVER
# ===========================================================

def process_distribution(period_type: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Run one period's distribution for every user holding a qualifying deposit.
    Each user is an independent atomic unit; one failure never aborts the batch.
    """
    if period_type not in PERIOD_TYPES:
        raise ValidationError(f"Unknown period type: {period_type}")

    now = now or clock.now
    started = time.monotonic()
    if period_type == DAILY:
        user_ids = LedgerStore.users_with_deposits()
        distribute = distribute_daily_profit
    else:
        user_ids = LedgerStore.users_with_deposits(investment_only=True)
        distribute = distribute_monthly_profit

    summary = {
        "success": True,
        "period_type": period_type,
        "total_users": len(user_ids),
        "processed": 0,
        "already_distributed": 0,
        "failed": 0,
        "total_distributed": Decimal("0.00"),
        "total_referral_distributed": Decimal("0.00"),
        "failures": [],
    }
    distribution_logger.info(f"{period_type.upper()}_RUN_START users={len(user_ids)} at={now.isoformat()}")

    for user_id in user_ids:
        try:
            result = distribute(user_id, now=now)
        except Exception as e:
            logger.exception(f"{period_type} distribution failed for user {user_id}")
            summary["failed"] += 1
            summary["failures"].append({"user_id": user_id, "error": str(e)})
            continue

        if result["already_distributed"]:
            summary["already_distributed"] += 1
            continue

        summary["processed"] += 1
        summary["total_distributed"] += result["amount"]
        summary["total_referral_distributed"] += result.get("total_referral_distributed", Decimal("0.00"))

    elapsed = time.monotonic() - started
    distribution_logger.info(
        f"{period_type.upper()}_RUN_END processed={summary['processed']} "
        f"already={summary['already_distributed']} failed={summary['failed']} "
        f"total={summary['total_distributed']} referral={summary['total_referral_distributed']} "
        f"elapsed={elapsed:.2f}s"
    )
    return summary


def run_daily(now: Optional[datetime] = None) -> Dict[str, Any]:
    """Entry point for the external daily scheduler."""
    return process_distribution(DAILY, now=now)


def run_monthly(now: Optional[datetime] = None) -> Dict[str, Any]:
    """Entry point for the external monthly scheduler."""
    return process_distribution(MONTHLY, now=now)


# ===========================================================
# BACKFILL
# ===========================================================

def _earliest_deposit(user_id: int) -> Optional[datetime]:
    return db.session.query(db.func.min(Transaction.timestamp)).filter(
        Transaction.user_id == user_id,
        Transaction.direction == Direction.CREDIT,
        Transaction.status == TransactionStatus.COMPLETED,
        LedgerStore.deposit_source_clause(),
    ).scalar()


def backfill_daily(days: int = 30, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Replay daily distribution for each of the last `days` days (today excluded),
    never before a user's first deposit. Days already distributed are skipped.
    """
    if days < 1:
        raise ValidationError("days must be at least 1")

    now = now or clock.now
    today_start, _ = day_bounds(now)
    summary = {"users": 0, "transactions_created": 0, "total_distributed": Decimal("0.00"), "failed": 0}

    for user_id in LedgerStore.users_with_deposits():
        summary["users"] += 1
        earliest = _earliest_deposit(user_id)
        if earliest is None:
            continue

        days_since_first = (today_start - day_bounds(earliest)[0]).days
        for days_ago in range(min(days, days_since_first), 0, -1):
            day = today_start - timedelta(days=days_ago)
            try:
                result = distribute_daily_profit(user_id, now=day)
            except Exception:
                logger.exception(f"Backfill failed for user {user_id} on {day.date()}")
                summary["failed"] += 1
                continue
            if not result["already_distributed"] and result["amount"] > 0:
                summary["transactions_created"] += 1
                summary["total_distributed"] += result["amount"]

    distribution_logger.info(
        f"DAILY_BACKFILL days={days} users={summary['users']} "
        f"created={summary['transactions_created']} total={summary['total_distributed']}"
    )
    return summary


# ===========================================================
# PROFIT TOTALS
# ===========================================================

PROFIT_SOURCES = (IncomeSource.DAILY_PROFIT, IncomeSource.MONTHLY_PROFIT)


def total_investment_profit(user_id: int) -> Decimal:
    """Every completed daily and monthly profit credit the user has received."""
    return LedgerStore.sum_amount(
        Transaction.user_id == user_id,
        Transaction.direction == Direction.CREDIT,
        Transaction.status == TransactionStatus.COMPLETED,
        Transaction.income_source.in_(PROFIT_SOURCES),
    )


def investment_profit_for_period(user_id: int, start: datetime, end: datetime) -> Decimal:
    """Profit credited in [start, end)."""
    if end <= start:
        raise ValidationError("Period end must be after its start")
    return LedgerStore.sum_amount(
        Transaction.user_id == user_id,
        Transaction.direction == Direction.CREDIT,
        Transaction.status == TransactionStatus.COMPLETED,
        Transaction.income_source.in_(PROFIT_SOURCES),
        Transaction.timestamp >= start,
        Transaction.timestamp < end,
    )
