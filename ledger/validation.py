import re
from decimal import Decimal, InvalidOperation
from typing import Optional

from flask import current_app

from ledger.errors import ValidationError

CHAIN_PATTERN = re.compile(r'^[A-Z0-9]{2,10}$')
ADDRESS_PATTERN = re.compile(r'^[A-Za-z0-9:_\-]{10,128}$')
EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')


class LedgerValidationHelper:
    """Request-shape checks shared by deposits, withdrawals and registration."""

    @staticmethod
    def parse_amount(raw, field: str = "amount") -> Decimal:
        if raw is None or raw == "":
            raise ValidationError(f"{field} is required")
        if isinstance(raw, bool):
            raise ValidationError(f"Invalid {field}")
        try:
            amount = Decimal(str(raw))
        except (InvalidOperation, ValueError):
            raise ValidationError(f"Invalid {field}")
        if not amount.is_finite():
            raise ValidationError(f"Invalid {field}")
        if amount != amount.quantize(Decimal("0.01")):
            raise ValidationError(f"{field} cannot have more than 2 decimal places")
        return amount.quantize(Decimal("0.01"))

    @staticmethod
    def _check_step(amount: Decimal, minimum: Decimal, label: str):
        step = Decimal(str(current_app.config.get("AMOUNT_STEP", 10)))
        if amount < minimum:
            raise ValidationError(f"Minimum {label} amount is ${minimum}")
        if amount % step != 0:
            raise ValidationError(f"{label.capitalize()} amount must be a multiple of ${step}")

    @staticmethod
    def validate_deposit_amount(raw) -> Decimal:
        amount = LedgerValidationHelper.parse_amount(raw)
        minimum = Decimal(str(current_app.config.get("MIN_DEPOSIT", 100)))
        LedgerValidationHelper._check_step(amount, minimum, "deposit")
        return amount

    @staticmethod
    def validate_withdrawal_amount(raw) -> Decimal:
        amount = LedgerValidationHelper.parse_amount(raw)
        minimum = Decimal(str(current_app.config.get("MIN_WITHDRAWAL", 10)))
        LedgerValidationHelper._check_step(amount, minimum, "withdrawal")
        return amount

    @staticmethod
    def validate_chain(raw) -> str:
        chain = (raw or "").strip().upper()
        if not chain:
            raise ValidationError("Blockchain is required")
        if not CHAIN_PATTERN.match(chain):
            raise ValidationError(f"Unsupported blockchain: {raw}")
        return chain

    @staticmethod
    def validate_address(raw) -> str:
        address = (raw or "").strip()
        if not address:
            raise ValidationError("Withdrawal address is required")
        if not ADDRESS_PATTERN.match(address):
            raise ValidationError("Invalid withdrawal address")
        return address

    @staticmethod
    def validate_investment_id(raw) -> int:
        try:
            investment_id = int(raw)
        except (TypeError, ValueError):
            raise ValidationError("Investment ID is required")
        if investment_id <= 0:
            raise ValidationError("Invalid investment ID")
        return investment_id

    @staticmethod
    def validate_email(raw) -> str:
        email = (raw or "").strip().lower()
        if not EMAIL_PATTERN.match(email):
            raise ValidationError("Invalid email address")
        return email

    @staticmethod
    def validate_otp_format(raw) -> str:
        code = str(raw or "").strip()
        if not re.fullmatch(r'\d{6}', code):
            raise ValidationError("OTP must be 6 digits")
        return code

    @staticmethod
    def optional_text(raw, max_length: int = 255) -> Optional[str]:
        text = (raw or "").strip()
        if not text:
            return None
        return text[:max_length]
