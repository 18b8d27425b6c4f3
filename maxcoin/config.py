"""
config.py - Administrator-tunable platform configuration.

PlatformConfig holds every knob the ledger engines read: mining rate,
purchase limits, power boost, commission rates, lottery parameters and the
withdrawal gate thresholds. ConfigService persists overrides in the `config`
table and merges them over the defaults at startup. Engines read
`ConfigService.current` on every operation, so an update takes effect on the
next request without a restart.
"""

import logging
from typing import TYPE_CHECKING, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from maxcoin.errors import ConfigurationInvalid

if TYPE_CHECKING:
    from maxcoin.storage import ConfigRepo, StorageManager

logger = logging.getLogger("config")


class PlatformConfig(BaseModel):
    """Snapshot of the configuration. Immutable; updates produce a new instance."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Mining
    mining_rate_per_minute: float = Field(default=0.0002, ge=0)
    min_purchase: float = Field(default=0.02, gt=0)
    max_purchase: float = Field(default=10000.0, gt=0)
    power_increase_percent: float = Field(default=1.0, ge=0)
    power_increase_threshold: float = Field(default=10.0, gt=0)
    mining_access_days: int = Field(default=30, ge=1)
    unlock_cost_usdt: float = Field(default=100.0, gt=0)
    unlock_bypass: bool = False

    # Referral commissions (percent per level)
    level1_commission: float = Field(default=5.0, ge=0)
    level2_commission: float = Field(default=2.0, ge=0)
    level3_commission: float = Field(default=1.0, ge=0)
    transfer_commission_rate: float = Field(default=5.0, ge=0, le=100)

    # Withdrawal gate
    active_referrals_required: int = Field(default=10, ge=0)
    withdrawal_grace_count: int = Field(default=5, ge=0)
    min_withdrawal: float = Field(default=0.1, ge=0)

    # Lottery
    ticket_price: float = Field(default=1.0, gt=0)
    min_tickets_for_draw: int = Field(default=1000, ge=1)
    number_of_winners: int = Field(default=4, ge=1)
    prize_pool_percentage: float = Field(default=90.0, ge=0, le=100)
    draw_day: int = Field(default=5, ge=0, le=6)  # 0 = Sunday ... 6 = Saturday
    draw_hour: int = Field(default=20, ge=0, le=23)  # UTC

    @model_validator(mode="after")
    def _check_cross_field(self):
        if self.max_purchase < self.min_purchase:
            raise ValueError("max_purchase must be >= min_purchase")
        if sum(self.commission_rates) > 100:
            raise ValueError("level commission rates must not sum above 100")
        return self

    @property
    def commission_rates(self) -> List[float]:
        return [self.level1_commission, self.level2_commission, self.level3_commission]

    @property
    def admin_percentage(self) -> float:
        return 100.0 - self.prize_pool_percentage


def build_config(base: Optional[PlatformConfig] = None, **changes) -> PlatformConfig:
    """Validate `changes` applied over `base`. Raises ConfigurationInvalid."""
    data = (base or PlatformConfig()).model_dump()
    unknown = sorted(set(changes) - set(data))
    if unknown:
        raise ConfigurationInvalid(f"Unknown config keys: {', '.join(unknown)}", keys=unknown)
    data.update(changes)
    try:
        return PlatformConfig(**data)
    except ValidationError as e:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]) or "config", "message": err["msg"]}
            for err in e.errors()
        ]
        raise ConfigurationInvalid("Invalid configuration", errors=errors)


class ConfigService:
    """Loads, validates, persists and serves the live configuration."""

    def __init__(self, storage: "StorageManager", overrides: Optional[dict] = None):
        self._storage = storage
        self._current = build_config(**(overrides or {}))

    @property
    def current(self) -> PlatformConfig:
        return self._current

    @property
    def _repo(self) -> "ConfigRepo":
        return self._storage.config

    async def load(self) -> PlatformConfig:
        """Merge persisted overrides over the defaults."""
        saved = await self._repo.get_all()
        known = set(PlatformConfig.model_fields)
        ignored = sorted(set(saved) - known)
        if ignored:
            logger.warning("Ignoring unknown persisted config keys: %s", ignored)
        saved = {k: v for k, v in saved.items() if k in known}
        try:
            self._current = build_config(self._current, **saved)
        except ConfigurationInvalid as e:
            logger.error("Persisted config is invalid, keeping defaults: %s", e.details)
            return self._current
        if saved:
            logger.info("Config loaded with %d override(s)", len(saved))
        return self._current

    async def update(self, **changes) -> PlatformConfig:
        new_config = build_config(self._current, **changes)
        async with self._storage.transaction():
            await self._repo.set_many({k: getattr(new_config, k) for k in changes})
        self._current = new_config
        logger.info("Config updated: %s", changes)
        return new_config

    async def reset(self) -> PlatformConfig:
        async with self._storage.transaction():
            await self._repo.clear()
        self._current = PlatformConfig()
        logger.info("Config reset to defaults")
        return self._current
