"""
Ledger exception hierarchy.

Every error a caller can see derives from LedgerError and carries the HTTP
status the blueprints answer with.
"""


class LedgerError(Exception):
    """Base ledger exception"""
    status_code = 500

    def __init__(self, message: str = None, **details):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.details = details

    def to_dict(self):
        payload = {"success": False, "error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(LedgerError):
    """Malformed or out-of-range request"""
    status_code = 400


class LockPeriodError(ValidationError):
    """Principal is still inside its lock period"""
    pass


class NotFoundError(LedgerError):
    status_code = 404


class ConflictError(LedgerError):
    """Recoverable no-op: duplicate pending request, already registered, already distributed"""
    status_code = 409


class InsufficientFundsError(LedgerError):
    status_code = 400


class ExpiredOtpError(LedgerError):
    status_code = 400


class OtpMismatchError(LedgerError):
    status_code = 400


class ExternalServiceError(LedgerError):
    """Collaborator failure (mail dispatch). Logged and degraded, never fatal to a request."""
    status_code = 502


class PersistenceError(LedgerError):
    """Atomic unit failed and was rolled back"""
    status_code = 500
