"""
Short-lived one-time codes binding a user's confirmation to the exact request
parameters they asked for.

Records live in an OtpStore keyed by (user, purpose). The in-process store
serves a single instance; RedisOtpStore is used when OTP_REDIS_URL is set so
every worker sees the same records.
"""
from contextlib import contextmanager
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Optional, Any
import hmac
import json
import logging
import secrets
import threading

from flask import current_app
from redis import Redis

from ledger.clock import clock
from ledger.errors import ExpiredOtpError, OtpMismatchError, ValidationError
from ledger.notifications import send_otp_email

logger = logging.getLogger(__name__)

PURPOSE_DEPOSIT = "deposit"
PURPOSE_INCOME_WITHDRAWAL = "income_withdrawal"
PURPOSE_INVESTMENT_WITHDRAWAL = "investment_withdrawal"
PURPOSES = (PURPOSE_DEPOSIT, PURPOSE_INCOME_WITHDRAWAL, PURPOSE_INVESTMENT_WITHDRAWAL)


def normalize_params(params: Dict[str, Any]) -> Dict[str, str]:
    """Stringify bound parameters so stored and presented values compare exactly."""
    normalized = {}
    for key, value in params.items():
        if isinstance(value, Decimal):
            value = str(value.quantize(Decimal("0.01")))
        elif isinstance(value, float):
            value = str(Decimal(str(value)).quantize(Decimal("0.01")))
        normalized[key] = "" if value is None else str(value)
    return normalized


# ===========================================================
# STORES
# ===========================================================

class InMemoryOtpStore:
    """Process-local store. Expiry is checked on read."""

    def __init__(self):
        self._records: Dict[str, Dict] = {}
        self._lock = threading.Lock()

    def put(self, key: str, record: Dict, ttl_seconds: int):
        with self._lock:
            self._records[key] = dict(record)

    def get(self, key: str) -> Optional[Dict]:
        with self._lock:
            record = self._records.get(key)
            return dict(record) if record else None

    def pop(self, key: str) -> Optional[Dict]:
        with self._lock:
            return self._records.pop(key, None)


class RedisOtpStore:
    """Shared store for multi-worker deployments. Redis TTL mirrors expires_at."""

    def __init__(self, redis_client: Redis, prefix: str = "otp:"):
        self.redis = redis_client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str):
        return cls(Redis.from_url(url))

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def put(self, key: str, record: Dict, ttl_seconds: int):
        self.redis.setex(self._key(key), ttl_seconds, json.dumps(record))

    def get(self, key: str) -> Optional[Dict]:
        raw = self.redis.get(self._key(key))
        return json.loads(raw) if raw else None

    def pop(self, key: str) -> Optional[Dict]:
        pipe = self.redis.pipeline()
        pipe.get(self._key(key))
        pipe.delete(self._key(key))
        raw, _ = pipe.execute()
        return json.loads(raw) if raw else None


# ===========================================================
# SERVICE
# ===========================================================

class OtpService:

    def __init__(self, store=None, ttl_seconds: int = 600):
        self.store = store or InMemoryOtpStore()
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def generate_code() -> str:
        """6-digit numeric code"""
        return f"{secrets.randbelow(1_000_000):06d}"

    @staticmethod
    def _key(user_id: int, purpose: str) -> str:
        return f"{user_id}:{purpose}"

    def issue(self, user_id: int, purpose: str, params: Dict[str, Any]) -> Dict:
        """Store a fresh code for (user, purpose), replacing any earlier one."""
        if purpose not in PURPOSES:
            raise ValidationError(f"Unknown OTP purpose: {purpose}")

        code = self.generate_code()
        expires_at = clock.now + timedelta(seconds=self.ttl_seconds)
        record = {
            "otp": code,
            "purpose": purpose,
            "payload": normalize_params(params),
            "expires_at": expires_at.isoformat(),
        }
        self.store.put(self._key(user_id, purpose), record, self.ttl_seconds)
        logger.info(f"OTP issued for user {user_id} purpose={purpose} expires={expires_at.isoformat()}")
        return {"otp": code, "expires_at": expires_at}

    def _restore(self, key: str, record: Dict) -> bool:
        """Put a claimed record back for whatever is left of its lifetime."""
        expires_at = datetime.fromisoformat(record["expires_at"])
        if clock.now > expires_at:
            return False
        self.store.put(key, record, max(1, int((expires_at - clock.now).total_seconds())))
        return True

    def _claim(self, user_id: int, purpose: str, code: str, params: Dict[str, Any]):
        key = self._key(user_id, purpose)
        record = self.store.pop(key)
        if not record:
            raise ExpiredOtpError("OTP not found or expired. Please request a new one.")

        if clock.now > datetime.fromisoformat(record["expires_at"]):
            logger.info(f"Expired OTP discarded for user {user_id} purpose={purpose}")
            raise ExpiredOtpError("OTP has expired. Please request a new one.")

        if not hmac.compare_digest(str(record["otp"]), str(code or "").strip()):
            self._restore(key, record)
            raise OtpMismatchError("Invalid OTP")

        presented = normalize_params(params)
        mismatched = sorted(
            field for field in set(record["payload"]) | set(presented)
            if record["payload"].get(field) != presented.get(field)
        )
        if mismatched:
            self._restore(key, record)
            logger.warning(f"OTP parameter mismatch for user {user_id} purpose={purpose}: {mismatched}")
            raise OtpMismatchError(
                "Request details do not match the OTP request. Please request a new OTP.",
                fields=mismatched,
            )

        logger.info(f"OTP verified for user {user_id} purpose={purpose}")
        return key, record

    @contextmanager
    def consuming(self, user_id: int, purpose: str, code: str, params: Dict[str, Any]):
        """
        Check the code and that every bound parameter matches `params`, then
        yield the bound payload. The code is spent only if the block
        completes; if it raises, the record goes back to the store so the
        same code can be retried before it expires. A wrong code or
        mismatched parameters leave the record in place; expiry removes it.
        """
        key, record = self._claim(user_id, purpose, code, params)
        try:
            yield record["payload"]
        except Exception:
            if self._restore(key, record):
                logger.info(f"OTP restored for user {user_id} purpose={purpose} after failed confirmation")
            raise


def init_otp_service(app) -> OtpService:
    """Attach the configured OtpService to app.extensions['otp']."""
    url = app.config.get("OTP_REDIS_URL")
    store = RedisOtpStore.from_url(url) if url else InMemoryOtpStore()
    service = OtpService(store=store, ttl_seconds=app.config.get("OTP_TTL_SECONDS", 600))
    app.extensions["otp"] = service
    app.logger.info(f"OTP store: {type(store).__name__}")
    return service


def get_otp_service() -> OtpService:
    return current_app.extensions["otp"]


def issue_and_send(user, purpose: str, params: Dict[str, Any]) -> Dict:
    """
    Issue an OTP for `user` and try to mail it. Delivery failure degrades to
    "generated but undelivered"; the code is exposed in the response only when
    EXPOSE_OTP_IN_RESPONSE is on.
    """
    issued = get_otp_service().issue(user.id, purpose, params)
    delivered = send_otp_email(user.email, issued["otp"], purpose, user.display_name)

    response = {
        "success": True,
        "message": ("OTP sent to your registered email address" if delivered
                    else "OTP generated (email service temporarily unavailable)"),
        "email_sent": delivered,
        "expires_at": issued["expires_at"].isoformat(),
    }
    if current_app.config.get("EXPOSE_OTP_IN_RESPONSE"):
        response["otp"] = issued["otp"]
    return response
