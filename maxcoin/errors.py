"""
errors.py - Error taxonomy for the ledger core.

Exceptions are raised inside a unit of work so the storage transaction rolls
back. Public engine operations convert the user-facing ones into structured
results; StorageUnavailable is always propagated so the caller can retry with
the same idempotency key.
"""

from typing import Optional


class LedgerError(Exception):
    """Base class. `code` is stable and safe to show to API clients."""

    code = "ledger_error"

    def __init__(self, message: str = "", **details):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details

    def to_dict(self) -> dict:
        result = {"error": self.code, "message": self.message}
        result.update(self.details)
        return result


class InsufficientFunds(LedgerError):
    code = "insufficient_funds"


class InvalidAmount(LedgerError):
    code = "invalid_amount"


class RecipientNotFound(LedgerError):
    code = "recipient_not_found"


class AccountNotFound(LedgerError):
    code = "account_not_found"


class AccountBlocked(LedgerError):
    code = "account_blocked"


class LotteryLocked(LedgerError):
    code = "lottery_locked"


class MiningLocked(LedgerError):
    """No mining access, unlock payment or global bypass."""

    code = "mining_locked"


class WithdrawalRestricted(LedgerError):
    code = "withdrawal_restricted"


class DuplicateCommission(LedgerError):
    """Commission already distributed for this source transaction."""

    code = "duplicate_commission"


class ConfigurationInvalid(LedgerError):
    code = "configuration_invalid"


class DrawNotFound(LedgerError):
    code = "draw_not_found"


class DrawNotDue(LedgerError):
    code = "draw_not_due"


class DrawClosed(LedgerError):
    """Draw has already been resolved and no longer sells tickets."""

    code = "draw_closed"


class AlreadyUnlocked(LedgerError):
    code = "already_unlocked"


class IdempotencyConflict(LedgerError):
    """Idempotency key already used by a different kind of operation."""

    code = "idempotency_conflict"


class StorageUnavailable(LedgerError):
    """Transient storage failure. Safe to retry with the same idempotency key."""

    code = "storage_unavailable"
    retryable = True


def validate_amount(amount, field: str = "amount", minimum: Optional[float] = None) -> float:
    """Reject zero, negative, NaN and infinite amounts."""
    try:
        value = float(amount)
    except (TypeError, ValueError):
        raise InvalidAmount(f"{field} must be a number", amount=amount)
    if value != value or value in (float("inf"), float("-inf")):
        raise InvalidAmount(f"{field} must be a finite number", amount=amount)
    if value <= 0:
        raise InvalidAmount(f"{field} must be positive", amount=value)
    if minimum is not None and value < minimum:
        raise InvalidAmount(f"{field} must be at least {minimum}", amount=value, minimum=minimum)
    return value
