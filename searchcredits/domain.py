"""
domain.py - Core value types shared by the ledger, recorder, executor and orchestrator.

Records mirror their table rows one to one. Timestamps are epoch seconds;
``to_dict()`` renders them as ISO-8601 UTC for API responses.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def iso(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


class SearchType(str, Enum):
    BASIC = "basic"
    SMART = "smart"


class ActionType(str, Enum):
    SMART_SEARCH = "smart_search"
    PURCHASE = "purchase"
    SUBSCRIPTION_RENEWAL = "subscription_renewal"
    REFUND = "refund"
    BONUS = "bonus"


# Action types accepted by Ledger.credit(); refunds go through Ledger.refund()
CREDIT_ACTIONS = frozenset({ActionType.PURCHASE, ActionType.SUBSCRIPTION_RENEWAL, ActionType.BONUS})


class ExecutorOutcome(str, Enum):
    SUCCESS = "provider_success"
    REPORTED_FAILURE = "provider_reported_failure"
    UNAVAILABLE = "provider_unavailable"


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class SearchRequest:
    address: str
    search_type: SearchType
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def coordinates(self) -> Optional[Coordinates]:
        if self.latitude is None or self.longitude is None:
            return None
        return Coordinates(self.latitude, self.longitude)


@dataclass(frozen=True)
class ExecutorResult:
    outcome: ExecutorOutcome
    payload: Dict[str, Any] = field(default_factory=dict)
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome is ExecutorOutcome.SUCCESS


@dataclass
class CreditBalance:
    account_id: str
    available_credits: int
    total_earned: int
    total_spent: int
    last_updated: float

    def to_dict(self) -> dict:
        return {
            "account_id": self.account_id,
            "available_credits": self.available_credits,
            "total_earned": self.total_earned,
            "total_spent": self.total_spent,
            "last_updated": iso(self.last_updated),
        }


@dataclass
class CreditTransaction:
    id: str
    account_id: str
    action_type: ActionType
    credits_consumed: int
    credits_added: int
    balance_after: int
    description: str
    reference_id: Optional[str]
    reference_table: Optional[str]
    transaction_hash: str
    created_at: float

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "action_type": self.action_type.value,
            "credits_consumed": self.credits_consumed,
            "credits_added": self.credits_added,
            "balance_after": self.balance_after,
            "description": self.description,
            "reference_id": self.reference_id,
            "reference_table": self.reference_table,
            "transaction_hash": self.transaction_hash,
            "created_at": iso(self.created_at),
        }


@dataclass
class SearchHistoryRecord:
    id: str
    account_id: str
    address: str
    normalized_address: str
    latitude: Optional[float]
    longitude: Optional[float]
    search_type: SearchType
    credits_used: int
    result_payload: Dict[str, Any]
    transaction_hash: str
    created_at: float
    updated_at: float

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "address": self.address,
            "normalized_address": self.normalized_address,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "search_type": self.search_type.value,
            "credits_used": self.credits_used,
            "result": self.result_payload,
            "transaction_hash": self.transaction_hash,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }


@dataclass
class SearchResult:
    """Outcome of one search call.

    ``duplicate`` results mirror the stored record as it is now, so replaying
    a basic submission whose record was upgraded in place returns the smart
    record (``credits_used=1``) without charging again.
    """

    success: bool
    address: str
    search_type: SearchType
    credits_used: int
    history_id: str
    data: Dict[str, Any]
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    duplicate: bool = False

    @classmethod
    def from_record(cls, record: SearchHistoryRecord, duplicate: bool = False) -> "SearchResult":
        return cls(
            success=True,
            address=record.address,
            search_type=record.search_type,
            credits_used=record.credits_used,
            history_id=record.id,
            data=record.result_payload,
            latitude=record.latitude,
            longitude=record.longitude,
            duplicate=duplicate,
        )

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "address": self.address,
            "search_type": self.search_type.value,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "credits_used": self.credits_used,
            "history_id": self.history_id,
            "duplicate": self.duplicate,
            "data": self.data,
        }
