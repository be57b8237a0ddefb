from datetime import datetime
from decimal import Decimal
from typing import Dict, List
import logging

from models import Direction, TransactionStatus, IncomeSource
from ledger.clock import clock
from ledger.commission_config import CommissionConfigHelper
from ledger.sponsor_chain import SponsorChainHelper, MAX_SPONSOR_DEPTH
from ledger.store import LedgerStore

logger = logging.getLogger(__name__)


class ReferralIncomeHelper:
    """Credits sponsor commissions up the chain. Runs inside the caller's atomic unit."""

    @staticmethod
    def _format_pct(percentage: Decimal) -> str:
        return format(percentage.normalize(), "f")

    @staticmethod
    def cascade(source_user, base, schedule: Dict[int, Decimal], trigger: str,
                max_depth: int = MAX_SPONSOR_DEPTH, now: datetime = None) -> List[Dict]:
        """
        Credit each sponsor of `source_user` its commission on `base`.

        trigger is "deposit" (level 1 tagged direct_income) or
        "monthly profit" (every level tagged referral_income).
        Zero-amount commissions are skipped. Returns the credits written.
        Entries are stamped and unlocked at `now` (the triggering event's time).
        """
        base = Decimal(str(base))
        credited = []
        if base <= 0:
            return credited

        depth = min(max_depth, CommissionConfigHelper.max_level(schedule))
        chain = SponsorChainHelper.resolve_sponsor_chain(source_user.id, max_depth=depth)
        now = now or clock.now

        for link in chain:
            level = link["level"]
            percentage = CommissionConfigHelper.commission_for_level(level, schedule)
            amount = CommissionConfigHelper.commission_amount(base, level, schedule)
            if amount <= 0:
                continue

            pct = ReferralIncomeHelper._format_pct(percentage)
            if trigger == "deposit":
                if level == 1:
                    income_source = IncomeSource.DIRECT_INCOME
                    description = f"Direct income ({pct}%) from {source_user.display_name}'s deposit"
                else:
                    income_source = IncomeSource.REFERRAL_INCOME
                    description = (f"Level {level} referral income ({pct}%) from "
                                   f"{source_user.display_name}'s deposit")
            else:
                income_source = IncomeSource.REFERRAL_INCOME
                description = (f"Level {level} referral income ({pct}%) from "
                               f"{source_user.display_name}'s {trigger} of ${base:.2f}")

            entry = LedgerStore.apply_ledger_entry(
                user_id=link["sponsor_id"],
                amount=amount,
                direction=Direction.CREDIT,
                income_source=income_source,
                status=TransactionStatus.COMPLETED,
                unlock_date=now,
                timestamp=now,
                description=description,
                referral_level=level,
                source_user_id=source_user.id,
            )
            credited.append({
                "transaction_id": entry.id,
                "sponsor_id": link["sponsor_id"],
                "level": level,
                "percentage": percentage,
                "amount": amount,
            })

        if credited:
            logger.info(
                f"{trigger} commissions from user {source_user.id}: "
                f"{len(credited)} sponsors, ${sum(c['amount'] for c in credited):.2f}"
            )
        return credited
