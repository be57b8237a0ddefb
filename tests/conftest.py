"""
Shared fixtures.

- app / client: application on in-memory SQLite with an app context pushed
- make_user / make_chain: users wired into a sponsor chain
- credit: write a ledger entry through LedgerStore
- frozen clock at 2025-01-15 10:00 UTC, reset after every test
"""
import os
import sys
import tempfile
from datetime import datetime
from decimal import Decimal

# Config refuses to load without a secret, and loggers open files on import
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="ledger-logs-"))
os.environ.setdefault("FLASK_ENV", "testing")

# Add project root to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import pytest  # noqa: E402

from app import create_app  # noqa: E402
from config import TestConfig  # noqa: E402
from extensions import db  # noqa: E402
from models import User, Wallet, Direction, TransactionStatus  # noqa: E402
from ledger.clock import clock  # noqa: E402
from ledger.store import LedgerStore, atomic  # noqa: E402
from ledger.users import generate_referral_code  # noqa: E402

FROZEN_NOW = datetime(2025, 1, 15, 10, 0, 0)
PASSWORD = "secret123"


@pytest.fixture(autouse=True)
def frozen_clock():
    clock.set_time(FROZEN_NOW)
    yield clock
    clock.reset()


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def otp_service(app):
    return app.extensions["otp"]


@pytest.fixture
def make_user(app):
    """Create a user (with wallet) directly, optionally under a sponsor."""
    counter = {"n": 0}

    def _make_user(name=None, sponsor=None, role="user", email=None):
        counter["n"] += 1
        name = name or f"User {counter['n']}"
        user = User(
            full_name=name,
            email=email or f"user{counter['n']}@example.com",
            referral_code=generate_referral_code(),
            sponsor_id=sponsor.id if sponsor else None,
            role=role,
        )
        user.set_password(PASSWORD)
        db.session.add(user)
        db.session.flush()
        LedgerStore.ensure_wallet(user.id)
        db.session.commit()
        return user

    return _make_user


@pytest.fixture
def make_chain(make_user):
    """
    make_chain(levels) -> [member, level-1 sponsor, level-2 sponsor, ...]
    chain[i] is the member's level-i sponsor.
    """
    def _make_chain(levels, prefix="Sponsor"):
        top = make_user(name=f"{prefix} {levels}")
        users = [top]
        for level in range(levels - 1, 0, -1):
            users.append(make_user(name=f"{prefix} {level}", sponsor=users[-1]))
        member = make_user(name="Member", sponsor=users[-1])
        users.append(member)
        return list(reversed(users))

    return _make_chain


@pytest.fixture
def credit(app):
    """Write a ledger entry in its own atomic unit."""
    def _credit(user, amount, income_source, status=TransactionStatus.COMPLETED,
                direction=Direction.CREDIT, unlock_date=None, **metadata):
        with atomic():
            entry = LedgerStore.apply_ledger_entry(
                user_id=user.id,
                amount=Decimal(str(amount)),
                direction=direction,
                income_source=income_source,
                status=status,
                unlock_date=unlock_date,
                **metadata,
            )
        return entry

    return _credit


@pytest.fixture
def admin(make_user):
    return make_user(name="Admin", role="admin", email="admin@example.com")


def balance_of(user_id):
    db.session.expire_all()
    return Wallet.query.filter_by(user_id=user_id).first().balance


@pytest.fixture
def balance():
    return balance_of
