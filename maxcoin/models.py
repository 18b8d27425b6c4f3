"""Pydantic request models for the REST API."""

from typing import Optional
from pydantic import BaseModel


class RegisterRequest(BaseModel):
    username: str
    password: str
    referral_code: Optional[str] = None


class LoginRequest(BaseModel):
    username: str
    password: str


class PurchaseRequest(BaseModel):
    amount: float
    usd_value: Optional[float] = None
    idempotency_key: Optional[str] = None


class AccrueRequest(BaseModel):
    minutes: float


class MiningAccessRequest(BaseModel):
    renew: bool = False


class TransferRequest(BaseModel):
    recipient_code: str
    amount: float
    usd_value: Optional[float] = None
    description: str = ""
    idempotency_key: Optional[str] = None


class WithdrawRequest(BaseModel):
    amount: float
    usd_value: Optional[float] = None
    idempotency_key: Optional[str] = None


class TicketRequest(BaseModel):
    quantity: int = 1


class ConfigUpdateRequest(BaseModel):
    changes: dict


class ReverseRequest(BaseModel):
    description: str = ""
