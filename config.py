# ==========================================================================================================
# -------------- Configuration file for the investment ledger Flask application ----------------------------
# ==========================================================================================================
import os
from decimal import Decimal
from dotenv import load_dotenv


if os.environ.get("FLASK_ENV") != "production":
    load_dotenv()

basedir = os.path.abspath(os.path.dirname(__file__))


class Config:

    SECRET_KEY = os.getenv("SECRET_KEY")
    if not SECRET_KEY:
        raise ValueError("SECRET_KEY must be set in production")

    FLASK_ENV = os.getenv("FLASK_ENV", "production")
    DEBUG = os.getenv("DEBUG", "False").lower() in ("true", "1", "t")
    LOG_DIR = os.getenv("LOG_DIR", "logs")

    _database_url = os.getenv("DATABASE_URL")
    if not _database_url:
        _database_url = f"sqlite:///{os.path.join(basedir, 'instance', 'ledger.db')}"

    if _database_url.startswith("postgres://"):
        _database_url = _database_url.replace("postgres://", "postgresql+pg8000://", 1)

    SQLALCHEMY_DATABASE_URI = _database_url
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_size": 10,
        "max_overflow": 20,
        "pool_pre_ping": True,
        "pool_recycle": 300,
    } if not _database_url.startswith("sqlite") else {}

    # Mail (OTP delivery)
    MAIL_SERVER = os.getenv("MAIL_SERVER", "smtp.gmail.com")
    MAIL_PORT = int(os.getenv("MAIL_PORT", 587))
    MAIL_USE_TLS = os.getenv("MAIL_USE_TLS", "True").lower() in ("true", "1", "t")
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", MAIL_USERNAME)
    MAIL_SEND_TIMEOUT = float(os.getenv("MAIL_SEND_TIMEOUT", 10))

    # OTP
    OTP_TTL_SECONDS = int(os.getenv("OTP_TTL_SECONDS", 600))
    OTP_REDIS_URL = os.getenv("OTP_REDIS_URL", "")
    EXPOSE_OTP_IN_RESPONSE = FLASK_ENV != "production" and DEBUG

    # Ledger rules
    PRINCIPAL_LOCK_MONTHS = 6
    MIN_DEPOSIT = Decimal("100")
    MIN_WITHDRAWAL = Decimal("10")
    AMOUNT_STEP = Decimal("10")


class TestConfig(Config):
    TESTING = True
    DEBUG = False
    FLASK_ENV = "testing"
    SECRET_KEY = "test-secret-key"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    MAIL_SUPPRESS_SEND = True
    MAIL_DEFAULT_SENDER = "no-reply@ledger.test"
    MAIL_SEND_TIMEOUT = 1.0
    OTP_REDIS_URL = ""
    EXPOSE_OTP_IN_RESPONSE = True
    WTF_CSRF_ENABLED = False
