# models.py - Canonical Flask-SQLAlchemy models for the investment ledger
from decimal import Decimal
import enum
from flask_login import UserMixin
from sqlalchemy import Index, text
from sqlalchemy.orm import validates
from werkzeug.security import check_password_hash, generate_password_hash
from extensions import db

# ===========================================================
# ENUM DEFINITIONS
# ===========================================================

class TransactionStatus(enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"


class Direction(enum.Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class InvestmentStatus(enum.Enum):
    ACTIVE = "active"
    WITHDRAWING = "withdrawing"
    WITHDRAWN = "withdrawn"


class Position(enum.Enum):
    LEFT = "LEFT"
    RIGHT = "RIGHT"


class IncomeSource:
    """Income source tags written on ledger entries."""
    DEPOSIT_SUFFIX = "_deposit"
    INVESTMENT_DEPOSIT = "investment_deposit"
    DIRECT_INCOME = "direct_income"
    REFERRAL_INCOME = "referral_income"
    TEAM_INCOME = "team_income"
    SALARY_INCOME = "salary_income"
    DAILY_PROFIT = "daily_profit"
    MONTHLY_PROFIT = "monthly_profit"
    INCOME_WITHDRAWAL = "income_withdrawal"
    INVESTMENT_WITHDRAWAL = "investment_withdrawal"
    LEGACY_WITHDRAWAL = "withdrawal"

    # Credits a user may take out once unlocked
    INCOME_TYPES = (DIRECT_INCOME, REFERRAL_INCOME, TEAM_INCOME, SALARY_INCOME,
                    DAILY_PROFIT, MONTHLY_PROFIT)
    INCOME_WITHDRAWAL_TYPES = (LEGACY_WITHDRAWAL, INCOME_WITHDRAWAL)
    WITHDRAWAL_TYPES = (LEGACY_WITHDRAWAL, INCOME_WITHDRAWAL, INVESTMENT_WITHDRAWAL)

    @staticmethod
    def deposit_for_chain(chain: str) -> str:
        return f"{chain}{IncomeSource.DEPOSIT_SUFFIX}"

    @staticmethod
    def is_deposit(source: str) -> bool:
        return bool(source) and source.endswith(IncomeSource.DEPOSIT_SUFFIX)


# ===========================================================
# BASE MIXIN FOR COMMON FIELDS
# ===========================================================

class BaseMixin:
    """Provides created_at and updated_at timestamps to inheriting models."""
    created_at = db.Column(db.DateTime, default=db.func.now())
    updated_at = db.Column(db.DateTime,
                           default=db.func.now(),
                           onupdate=db.func.now())

# ===========================================================
# USER MODELS
# ===========================================================

class User(UserMixin, db.Model, BaseMixin):
    """Platform member. The sponsor link is a back-reference, set once at registration."""
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(150), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False, default="user", index=True)

    sponsor_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    position = db.Column(db.Enum(Position), nullable=True)
    referral_code = db.Column(db.String(20), unique=True, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    sponsor = db.relationship('User', remote_side=[id], backref='direct_referrals')
    wallet = db.relationship('Wallet', uselist=False, back_populates='user', cascade="all,delete-orphan")
    investments = db.relationship('Investment', back_populates='user', lazy='dynamic')

    __table_args__ = (
        Index('idx_user_referral_code', 'referral_code'),
    )

    @validates('sponsor_id')
    def validate_sponsor_id(self, key, value):
        if self.sponsor_id is not None and value != self.sponsor_id:
            raise ValueError("Sponsor link is immutable once set")
        if value is not None and self.id is not None and value == self.id:
            raise ValueError("User cannot sponsor themselves")
        return value

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    @property
    def display_name(self) -> str:
        return self.full_name or self.email

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def to_dict(self):
        return {
            "id": self.id,
            "fullName": self.full_name,
            "email": self.email,
            "role": self.role,
            "referralCode": self.referral_code,
            "sponsorId": self.sponsor_id,
            "position": self.position.value if self.position else None,
            "balance": float(self.wallet.balance) if self.wallet else 0.0,
            "memberSince": self.created_at.isoformat() if self.created_at else None,
        }

# ===========================================================
# WALLET & TRANSACTIONS
# ===========================================================

class Wallet(db.Model, BaseMixin):
    """Cached balance. Written only by ledger.store alongside a ledger entry."""
    __tablename__ = 'wallets'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, unique=True, index=True)
    balance = db.Column(db.Numeric(precision=18, scale=2), nullable=False, default=Decimal("0.00"),
                        server_default=text("0.00"))

    user = db.relationship('User', back_populates='wallet')


class Transaction(db.Model):
    """Append-only ledger entry. Only status and description change after insert."""
    __tablename__ = 'transactions'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    amount = db.Column(db.Numeric(precision=18, scale=2), nullable=False)
    direction = db.Column(db.Enum(Direction), nullable=False)
    income_source = db.Column(db.String(50), nullable=False, index=True)
    status = db.Column(db.Enum(TransactionStatus), nullable=False, default=TransactionStatus.PENDING)
    description = db.Column(db.Text, nullable=True)
    unlock_date = db.Column(db.DateTime, nullable=True)
    referral_level = db.Column(db.Integer, nullable=True)
    source_user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    investment_id = db.Column(db.Integer, db.ForeignKey('investments.id', ondelete='SET NULL'), nullable=True, index=True)
    reference = db.Column(db.String(255), nullable=True, index=True)
    # True while this entry is reflected in the cached wallet balance
    balance_applied = db.Column(db.Boolean, nullable=False, default=False)
    timestamp = db.Column(db.DateTime, nullable=False, default=db.func.now(), index=True)

    user = db.relationship('User', foreign_keys=[user_id], backref=db.backref('transactions', lazy='dynamic'))
    source_user = db.relationship('User', foreign_keys=[source_user_id])
    investment = db.relationship('Investment', foreign_keys=[investment_id], backref=db.backref('ledger_entries', lazy='dynamic'))

    __table_args__ = (
        Index('idx_tx_user_source_status', 'user_id', 'income_source', 'status'),
        Index('idx_tx_user_timestamp', 'user_id', 'timestamp'),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "amount": float(self.amount),
            "direction": self.direction.value,
            "incomeSource": self.income_source,
            "status": self.status.value,
            "description": self.description,
            "unlockDate": self.unlock_date.isoformat() if self.unlock_date else None,
            "referralLevel": self.referral_level,
            "investmentId": self.investment_id,
            "reference": self.reference,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f'<Transaction {self.id} {self.direction.value} {self.amount} {self.income_source} {self.status.value}>'

# ===========================================================
# INVESTMENTS
# ===========================================================

class Investment(db.Model, BaseMixin):
    """Time-locked principal created when a deposit is approved."""
    __tablename__ = 'investments'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    package_name = db.Column(db.String(100), nullable=False)
    amount = db.Column(db.Numeric(precision=18, scale=2), nullable=False)
    monthly_profit_rate = db.Column(db.Numeric(5, 2), nullable=False)
    start_date = db.Column(db.DateTime, nullable=False)
    unlock_date = db.Column(db.DateTime, nullable=False)
    status = db.Column(db.Enum(InvestmentStatus), nullable=False, default=InvestmentStatus.ACTIVE, index=True)

    user = db.relationship('User', back_populates='investments')

    def to_dict(self):
        return {
            "id": self.id,
            "amount": float(self.amount),
            "package_name": self.package_name,
            "start_date": self.start_date.isoformat(),
            "unlock_date": self.unlock_date.isoformat(),
            "status": self.status.value,
            "monthly_profit_rate": float(self.monthly_profit_rate),
        }
