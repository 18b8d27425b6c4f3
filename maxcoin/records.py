"""
records.py - Typed records passed between the repositories and the engines.

Rows come out of SQLite as tuples; each record knows its own column list so
repositories can SELECT exactly what `from_row` expects.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import List, Optional

POOL_PURCHASED = "purchased"
POOL_MINING = "mining"
POOL_COMMISSION = "commission"
POOLS = (POOL_PURCHASED, POOL_MINING, POOL_COMMISSION)

# Multi-pool debits (transfers, withdrawals, tickets) spend in this order.
# Mining comes last so gated funds are the ones left behind.
SPEND_ORDER = (POOL_PURCHASED, POOL_COMMISSION, POOL_MINING)

# Amounts are stored rounded to this many decimal places
AMOUNT_PRECISION = 8
EPSILON = 1e-9


def round_amount(value: float) -> float:
    return round(value, AMOUNT_PRECISION)


class TxType(str, Enum):
    PURCHASE = "purchase"
    TRANSFER = "transfer"
    MINING = "mining"
    COMMISSION = "commission"
    WITHDRAWAL = "withdrawal"
    LOTTERY = "lottery"
    REVERSAL = "reversal"


class TxStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class DrawStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class Account:
    account_id: str
    username: str
    role: str
    referral_code: str
    referred_by: Optional[str]
    mining_power: float
    lifetime_purchases: float
    has_first_purchase: bool
    unlock_paid: bool
    unlock_paid_at: Optional[float]
    mining_access_expires_at: Optional[float]
    mining_access_renewals: int
    is_blocked: bool
    api_key: str
    created_at: float
    updated_at: float
    last_mined_at: Optional[float] = None

    COLUMNS = (
        "account_id, username, role, referral_code, referred_by, mining_power, "
        "lifetime_purchases, has_first_purchase, unlock_paid, unlock_paid_at, "
        "mining_access_expires_at, mining_access_renewals, is_blocked, api_key, "
        "created_at, updated_at, last_mined_at"
    )

    @classmethod
    def from_row(cls, row) -> "Account":
        return cls(
            account_id=row[0],
            username=row[1],
            role=row[2],
            referral_code=row[3],
            referred_by=row[4],
            mining_power=row[5],
            lifetime_purchases=row[6],
            has_first_purchase=bool(row[7]),
            unlock_paid=bool(row[8]),
            unlock_paid_at=row[9],
            mining_access_expires_at=row[10],
            mining_access_renewals=row[11],
            is_blocked=bool(row[12]),
            api_key=row[13],
            created_at=row[14],
            updated_at=row[15],
            last_mined_at=row[16],
        )

    def has_mining_access(self, now: float) -> bool:
        return self.mining_access_expires_at is not None and self.mining_access_expires_at > now

    def to_dict(self, include_secrets: bool = False) -> dict:
        data = asdict(self)
        if not include_secrets:
            data.pop("api_key", None)
        return data


@dataclass
class SegmentedBalance:
    account_id: str
    purchased: float = 0.0
    mining: float = 0.0
    commission: float = 0.0
    withdrawal_count: int = 0
    gate_open: bool = False

    COLUMNS = "account_id, purchased, mining, commission, withdrawal_count, gate_open"

    @classmethod
    def from_row(cls, row) -> "SegmentedBalance":
        return cls(
            account_id=row[0],
            purchased=row[1],
            mining=row[2],
            commission=row[3],
            withdrawal_count=row[4],
            gate_open=bool(row[5]),
        )

    @property
    def total(self) -> float:
        return round_amount(self.purchased + self.mining + self.commission)

    def pool(self, name: str) -> float:
        if name not in POOLS:
            raise ValueError(f"Unknown pool: {name}")
        return getattr(self, name)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["total"] = self.total
        return data


@dataclass
class Transaction:
    tx_id: str
    account_id: str
    type: str
    amount: float
    purchased_delta: float
    mining_delta: float
    commission_delta: float
    usd_value: Optional[float]
    from_account: Optional[str]
    to_account: Optional[str]
    commission_amount: Optional[float]
    commission_rate: Optional[float]
    correlation_id: str
    idempotency_key: Optional[str]
    description: str
    status: str
    created_at: float

    COLUMNS = (
        "tx_id, account_id, type, amount, purchased_delta, mining_delta, commission_delta, "
        "usd_value, from_account, to_account, commission_amount, commission_rate, "
        "correlation_id, idempotency_key, description, status, created_at"
    )

    @classmethod
    def from_row(cls, row) -> "Transaction":
        return cls(*row)

    def deltas(self) -> dict:
        return {
            POOL_PURCHASED: self.purchased_delta,
            POOL_MINING: self.mining_delta,
            POOL_COMMISSION: self.commission_delta,
        }

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class TxMeta:
    """Descriptive fields attached to a credit or debit."""

    type: TxType
    description: str = ""
    usd_value: Optional[float] = None
    from_account: Optional[str] = None
    to_account: Optional[str] = None
    commission_amount: Optional[float] = None
    commission_rate: Optional[float] = None
    correlation_id: str = ""
    idempotency_key: Optional[str] = None
    status: TxStatus = TxStatus.COMPLETED


@dataclass
class LotteryTicket:
    ticket_id: str
    account_id: str
    draw_id: str
    ticket_number: int
    purchased_at: float

    COLUMNS = "ticket_id, account_id, draw_id, ticket_number, purchased_at"

    @classmethod
    def from_row(cls, row) -> "LotteryTicket":
        return cls(*row)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class LotteryWinner:
    rank: int
    account_id: str
    ticket_id: str
    prize_amount: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class LotteryDraw:
    draw_id: str
    scheduled_at: float
    total_tickets: int
    prize_pool: float
    carried_over: float
    status: str
    resolved_at: Optional[float]
    winners: List[LotteryWinner] = field(default_factory=list)

    COLUMNS = "draw_id, scheduled_at, total_tickets, prize_pool, carried_over, status, resolved_at"

    @classmethod
    def from_row(cls, row) -> "LotteryDraw":
        return cls(*row)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["winners"] = [w.to_dict() for w in self.winners]
        return data
