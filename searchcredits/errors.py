"""
errors.py - Typed failures for the search transaction engine.

Each component raises one of these; routers translate them into HTTP
responses using ``status_code`` and ``to_detail()``.
"""

from typing import Any, Dict, Optional


class SearchEngineError(Exception):
    """Base class. ``context`` carries account/request ids for logging."""

    code = "search_engine_error"
    status_code = 500
    retryable = False

    def __init__(self, message: str = "", **context: Any):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}

    def to_detail(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }


class Unauthenticated(SearchEngineError):
    code = "unauthenticated"
    status_code = 401


class AccountNotFound(SearchEngineError):
    code = "account_not_found"
    status_code = 404


class InsufficientCredits(SearchEngineError):
    code = "insufficient_credits"
    status_code = 402

    def __init__(self, message: str = "", required: int = 1, available: Optional[int] = None, **context: Any):
        if not message:
            message = f"Insufficient credits. Need {required}"
            if available is not None:
                message += f", have {available}"
        super().__init__(message, **context)
        self.required = required
        self.available = available


class ProviderUnavailable(SearchEngineError):
    code = "provider_unavailable"
    status_code = 503
    retryable = True


class SearchFailed(SearchEngineError):
    code = "search_failed"
    status_code = 422

    def __init__(self, reason: str, **context: Any):
        super().__init__(f"Search failed: {reason}", **context)
        self.reason = reason


class HistoryWriteFailed(SearchEngineError):
    code = "history_write_failed"
    status_code = 503
    retryable = True


class LedgerWriteFailed(SearchEngineError):
    code = "ledger_write_failed"
    status_code = 503
    retryable = True


class ReconciliationNeeded(SearchEngineError):
    code = "reconciliation_needed"
    status_code = 500


class HistoryNotFound(SearchEngineError):
    code = "history_not_found"
    status_code = 404


class AlreadyUpgraded(SearchEngineError):
    code = "already_upgraded"
    status_code = 409


class DuplicateTransaction(SearchEngineError):
    code = "duplicate_transaction"
    status_code = 409


class InvalidTransaction(SearchEngineError):
    code = "invalid_transaction"
    status_code = 400
