"""
test_config.py - Platform configuration

Tests:
 - defaults match the published platform parameters
 - unknown keys and out-of-range values raise ConfigurationInvalid
 - updates persist and are merged back over defaults on load
 - reset clears persisted overrides
"""

import pytest

from maxcoin.config import ConfigService, PlatformConfig, build_config
from maxcoin.errors import ConfigurationInvalid

pytestmark = pytest.mark.asyncio


class TestDefaults:

    async def test_default_values(self):
        cfg = PlatformConfig()
        assert cfg.commission_rates == [5.0, 2.0, 1.0]
        assert cfg.transfer_commission_rate == 5.0
        assert cfg.active_referrals_required == 10
        assert cfg.withdrawal_grace_count == 5
        assert cfg.ticket_price == 1.0
        assert cfg.prize_pool_percentage == 90.0
        assert cfg.admin_percentage == 10.0
        assert (cfg.draw_day, cfg.draw_hour) == (5, 20)
        assert cfg.number_of_winners == 4

    async def test_frozen(self):
        cfg = PlatformConfig()
        with pytest.raises(Exception):
            cfg.ticket_price = 2.0


class TestValidation:

    async def test_unknown_key(self):
        with pytest.raises(ConfigurationInvalid) as exc:
            build_config(bogus_setting=1)
        assert exc.value.details["keys"] == ["bogus_setting"]
        assert exc.value.code == "configuration_invalid"

    @pytest.mark.parametrize("changes", [
        {"ticket_price": 0},
        {"prize_pool_percentage": 120},
        {"draw_day": 7},
        {"draw_hour": 24},
        {"number_of_winners": 0},
        {"min_purchase": 50, "max_purchase": 10},
        {"level1_commission": 60, "level2_commission": 30, "level3_commission": 20},
    ])
    async def test_invalid_values(self, changes):
        with pytest.raises(ConfigurationInvalid) as exc:
            build_config(**changes)
        assert exc.value.details["errors"]

    async def test_changes_apply_over_base(self):
        base = build_config(ticket_price=2.0)
        cfg = build_config(base, number_of_winners=3)
        assert cfg.ticket_price == 2.0
        assert cfg.number_of_winners == 3


class TestConfigService:

    async def test_update_persists_and_reloads(self, storage, config):
        await config.update(ticket_price=2.5, min_tickets_for_draw=10)
        assert config.current.ticket_price == 2.5

        fresh = ConfigService(storage)
        loaded = await fresh.load()
        assert loaded.ticket_price == 2.5
        assert loaded.min_tickets_for_draw == 10
        assert loaded.number_of_winners == 4

    async def test_invalid_update_keeps_current(self, storage, config):
        with pytest.raises(ConfigurationInvalid):
            await config.update(ticket_price=-1)
        assert config.current.ticket_price == 1.0
        assert await storage.config.get_all() == {}

    async def test_reset(self, storage, config):
        await config.update(unlock_bypass=True)
        cfg = await config.reset()
        assert cfg.unlock_bypass is False
        assert await storage.config.get_all() == {}

    async def test_load_ignores_unknown_persisted_keys(self, storage):
        async with storage.transaction():
            await storage.config.set_many({"retired_knob": 3, "draw_hour": 18})
        svc = ConfigService(storage)
        cfg = await svc.load()
        assert cfg.draw_hour == 18

    async def test_overrides_seed_the_service(self, storage):
        svc = ConfigService(storage, {"ticket_price": 3.0})
        assert svc.current.ticket_price == 3.0
