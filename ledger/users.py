import secrets
import string
import logging
from typing import Dict, Optional

from extensions import db
from models import User, Position
from ledger.errors import ConflictError, NotFoundError, ValidationError
from ledger.store import LedgerStore, atomic
from ledger.validation import LedgerValidationHelper

logger = logging.getLogger(__name__)

REFERRAL_CODE_LENGTH = 8


def generate_referral_code(length: int = REFERRAL_CODE_LENGTH) -> str:
    chars = string.ascii_uppercase + string.digits
    for _ in range(10):
        code = ''.join(secrets.choice(chars) for _ in range(length))
        if not User.query.filter_by(referral_code=code).first():
            return code
    raise ConflictError("Could not allocate a unique referral code, please retry")


def lookup_sponsor(referral_code: str) -> Dict:
    code = (referral_code or "").strip().upper()
    if not code:
        raise ValidationError("Referral code is required")
    sponsor = User.query.filter_by(referral_code=code, is_active=True).first()
    if not sponsor:
        raise NotFoundError("Invalid referral code")
    return {"id": sponsor.id, "name": sponsor.display_name, "referralCode": sponsor.referral_code}


def _parse_position(raw) -> Optional[Position]:
    if raw in (None, ""):
        return None
    try:
        return Position(str(raw).strip().upper())
    except ValueError:
        raise ValidationError("Position must be LEFT or RIGHT")


def register_user(full_name: str, email: str, password: str,
                  sponsor_referral_code: str = None, position=None) -> User:
    """
    Create a user, their wallet and their (immutable) sponsor link in one unit.
    Only the first user on the platform may register without a sponsor.
    """
    full_name = (full_name or "").strip()
    if not full_name:
        raise ValidationError("Full name is required")
    email = LedgerValidationHelper.validate_email(email)
    if not password or len(password) < 6:
        raise ValidationError("Password must be at least 6 characters")
    placement = _parse_position(position)

    with atomic():
        if User.query.filter_by(email=email).first():
            raise ConflictError("Email already registered")

        sponsor = None
        code = (sponsor_referral_code or "").strip().upper()
        if code:
            sponsor = User.query.filter_by(referral_code=code).first()
            if not sponsor:
                raise NotFoundError("Invalid referral code")
        elif db.session.query(User.id).first() is not None:
            raise ValidationError("A sponsor referral code is required")

        user = User(
            full_name=full_name,
            email=email,
            referral_code=generate_referral_code(),
            sponsor_id=sponsor.id if sponsor else None,
            position=placement if sponsor else None,
        )
        user.set_password(password)
        db.session.add(user)
        db.session.flush()

        LedgerStore.ensure_wallet(user.id)

    logger.info(f"User {user.id} registered (sponsor={user.sponsor_id}, position={placement})")
    return user


def authenticate(email: str, password: str) -> User:
    email = (email or "").strip().lower()
    user = User.query.filter_by(email=email).first()
    if not user or not user.check_password(password or ""):
        raise ValidationError("Invalid email or password")
    if not user.is_active:
        raise ValidationError("Account is disabled")
    return user


def make_admin(email: str) -> User:
    with atomic():
        user = User.query.filter_by(email=(email or "").strip().lower()).first()
        if not user:
            raise NotFoundError(f"No user with email {email}")
        user.role = "admin"
    logger.info(f"User {user.id} promoted to admin")
    return user
