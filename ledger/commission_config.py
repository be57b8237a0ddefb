# commission_config.py
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Tuple


class CommissionConfigHelper:
    """
    Level -> percentage tables for referral commissions.

    Two schedules, one per trigger event, kept apart on purpose:
    deposits pay three levels, periodic profit pays twenty.
    """

    # Paid when a downline member's deposit is approved
    DEPOSIT_COMMISSION_SCHEDULE: Dict[int, Decimal] = {
        1: Decimal("10"),
        2: Decimal("5"),
        3: Decimal("3"),
    }

    # Paid out of a downline member's monthly profit
    PROFIT_COMMISSION_SCHEDULE: Dict[int, Decimal] = {
        1: Decimal("10"),
        2: Decimal("5"),
        3: Decimal("3"),
        4: Decimal("2"),
        5: Decimal("1"),
        **{level: Decimal("0.5") for level in range(6, 21)},
    }

    SCHEDULES = {
        "deposit": DEPOSIT_COMMISSION_SCHEDULE,
        "profit": PROFIT_COMMISSION_SCHEDULE,
    }

    @staticmethod
    def get_schedule(name: str) -> Dict[int, Decimal]:
        try:
            return CommissionConfigHelper.SCHEDULES[name]
        except KeyError:
            raise ValueError(f"Unknown commission schedule: {name}")

    @staticmethod
    def commission_for_level(level: int, schedule: Dict[int, Decimal]) -> Decimal:
        """Percentage for a level; 0 outside the table."""
        return schedule.get(level, Decimal("0"))

    @staticmethod
    def commission_amount(base, level: int, schedule: Dict[int, Decimal]) -> Decimal:
        """round(base * percentage / 100, 2), half-up"""
        percentage = CommissionConfigHelper.commission_for_level(level, schedule)
        amount = Decimal(str(base)) * percentage / Decimal("100")
        return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    @staticmethod
    def max_level(schedule: Dict[int, Decimal]) -> int:
        return max(schedule) if schedule else 0

    @staticmethod
    def get_distribution_summary(schedule: Dict[int, Decimal]) -> Dict:
        total = sum(schedule.values(), Decimal("0"))
        return {
            "max_level": CommissionConfigHelper.max_level(schedule),
            "total_percentage": total,
            "levels": {level: float(pct) for level, pct in sorted(schedule.items())},
        }

    @staticmethod
    def validate_schedule(schedule: Dict[int, Decimal]) -> Tuple[bool, str]:
        """Levels must be contiguous from 1 and percentages non-negative, totalling under 100."""
        if not schedule:
            return False, "Schedule is empty"

        expected = list(range(1, CommissionConfigHelper.max_level(schedule) + 1))
        if sorted(schedule) != expected:
            return False, "Levels must be contiguous starting at 1"

        if any(pct < 0 for pct in schedule.values()):
            return False, "Percentages must be non-negative"

        total = sum(schedule.values(), Decimal("0"))
        if total >= 100:
            return False, f"Total percentage {total}% would exceed the base"

        return True, f"{len(schedule)} levels, {total}% total"
