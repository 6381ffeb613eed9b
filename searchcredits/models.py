"""Pydantic request models for the REST API."""

from typing import Optional

from pydantic import BaseModel

from searchcredits.domain import ActionType, SearchType


class SearchBody(BaseModel):
    address: str
    search_type: SearchType = SearchType.BASIC
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class RegisterRequest(BaseModel):
    account_id: str


class LoginRequest(BaseModel):
    account_id: str
    api_key: str


class GrantRequest(BaseModel):
    amount: int
    action_type: ActionType = ActionType.PURCHASE
    description: str = ""
    reference_id: Optional[str] = None


class RefundRequest(BaseModel):
    amount: int
    reference_id: str
    description: str = ""
