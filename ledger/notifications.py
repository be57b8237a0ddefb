import logging

import gevent
from flask import current_app
from flask_mail import Message

from extensions import mail
from ledger.errors import ExternalServiceError

logger = logging.getLogger(__name__)

PURPOSE_LABELS = {
    "deposit": "Deposit confirmation",
    "income_withdrawal": "Income withdrawal confirmation",
    "investment_withdrawal": "Investment withdrawal confirmation",
}


def _build_message(address: str, code: str, purpose: str, display_name: str) -> Message:
    label = PURPOSE_LABELS.get(purpose, "Verification")
    ttl_minutes = current_app.config.get("OTP_TTL_SECONDS", 600) // 60
    return Message(
        subject=f"{label} code",
        sender=current_app.config.get("MAIL_DEFAULT_SENDER"),
        recipients=[address],
        body=(
            f"Hello {display_name},\n\n"
            f"Your {label.lower()} code is: {code}\n\n"
            f"This code will expire in {ttl_minutes} minutes. "
            f"If you did not request it, you can ignore this email."
        ),
    )


def _deliver(app, message: Message):
    with app.app_context():
        try:
            mail.send(message)
        except Exception as e:
            raise ExternalServiceError(f"Mail dispatch failed: {e}") from e


def send_otp_email(address: str, code: str, purpose: str, display_name: str) -> bool:
    """
    Send an OTP email, waiting at most MAIL_SEND_TIMEOUT seconds.
    Returns False when delivery failed or timed out; the OTP stays valid.

    The SMTP exchange runs on the hub's native threadpool so the wait stays
    bounded whether or not sockets have been monkey patched.
    """
    app = current_app._get_current_object()
    timeout = app.config.get("MAIL_SEND_TIMEOUT", 10)
    message = _build_message(address, code, purpose, display_name)

    pending = gevent.get_hub().threadpool.spawn(_deliver, app, message)
    try:
        pending.get(timeout=timeout)
    except gevent.Timeout:
        logger.warning(f"OTP email to {address} ({purpose}) timed out after {timeout}s")
        return False
    except ExternalServiceError as e:
        logger.warning(f"OTP email to {address} ({purpose}) not delivered: {e}")
        return False

    logger.info(f"OTP email sent to {address} ({purpose})")
    return True
