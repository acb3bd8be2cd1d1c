# tests/test_validator_registry.py
from decimal import Decimal

import pytest
from eth_account import Account

from optirollup.consensus.validator_registry import ValidatorRegistry
from optirollup.exceptions import NotFoundError, StateError, ValidationError


class TestValidatorRegistry:
    @pytest.fixture
    def address(self):
        return Account.create().address

    def test_register_validator(self, registry, address, public_key, clock):
        start = int(clock())
        validator = registry.register(address, public_key, "5")
        assert validator.active
        assert validator.stake == Decimal("5")
        assert validator.registered_at == start
        assert registry.is_validator(address)
        assert registry.get_stake(address) == Decimal("5")

    def test_register_accepts_lowercase_address(self, registry, address, public_key):
        registry.register(address.lower(), public_key, 2)
        assert registry.is_validator(address)

    def test_duplicate_registration_is_rejected(self, registry, address, public_key, new_key):
        registry.register(address, public_key, 5)
        with pytest.raises(StateError) as exc:
            registry.register(address, new_key, 5)
        assert exc.value.reason == "already_registered"

    def test_insufficient_stake_is_rejected(self, registry, address, public_key):
        with pytest.raises(ValidationError) as exc:
            registry.register(address, public_key, "0.5")
        assert exc.value.reason == "insufficient_stake"
        assert not registry.is_validator(address)

    @pytest.mark.parametrize("public_key", [
        "0x1234",
        "0x" + "00" * 64,
        "04" + "ab" * 64,
    ])
    def test_malformed_public_key_is_rejected(self, registry, address, public_key):
        with pytest.raises(ValidationError) as exc:
            registry.register(address, public_key, 5)
        assert exc.value.reason == "public_key"

    def test_invalid_address_is_rejected(self, registry, public_key):
        with pytest.raises(ValidationError) as exc:
            registry.register("not-an-address", public_key, 5)
        assert exc.value.reason == "address"

    def test_unregister_deactivates_but_keeps_record(self, registry, address, public_key):
        registry.register(address, public_key, 5)
        assert registry.unregister(address) is True

        assert not registry.is_validator(address)
        assert registry.get_stake(address) == Decimal("0")
        record = registry.get_validator(address)
        assert record is not None and record.active is False
        assert len(registry.get_all_validators()) == 1
        assert registry.get_active_validators() == []

    def test_unregister_unknown_validator(self, registry, address):
        with pytest.raises(NotFoundError):
            registry.unregister(address)

    def test_unregister_with_open_challenge_is_rejected(self, registry, address, public_key):
        registry.register(address, public_key, 5)
        registry.open_challenge(address, 0)
        with pytest.raises(StateError) as exc:
            registry.unregister(address)
        assert exc.value.reason == "open_challenge"

        registry.resolve_challenge(address, 0)
        assert registry.unregister(address)

    def test_reregister_reactivates(self, registry, address, public_key, clock):
        start = int(clock())
        registry.register(address, public_key, 5)
        registry.unregister(address)
        clock.advance(100)
        validator = registry.register(address, public_key, 3)
        assert validator.active
        assert validator.stake == Decimal("3")
        assert validator.registered_at == start + 100

    def test_update_stake(self, registry, address, public_key):
        registry.register(address, public_key, 5)
        updated = registry.update_stake(address, "10.5")
        assert updated.stake == Decimal("10.5")

        with pytest.raises(ValidationError):
            registry.update_stake(address, "0.1")
        assert registry.get_stake(address) == Decimal("10.5")

    def test_update_performance_tracks_uptime(self, registry, address, public_key):
        registry.register(address, public_key, 5)
        registry.update_performance(address, True)
        registry.update_performance(address, True)
        perf = registry.update_performance(address, False)
        assert perf.total == 3
        assert perf.success == 2
        assert perf.fail == 1
        assert perf.uptime == pytest.approx(200 / 3)

    def test_update_performance_unknown_validator(self, registry, address):
        with pytest.raises(NotFoundError):
            registry.update_performance(address, True)

    def test_returned_records_are_copies(self, registry, address, public_key):
        registry.register(address, public_key, 5)
        copy = registry.get_validator(address)
        copy.stake = Decimal("1000")
        assert registry.get_stake(address) == Decimal("5")

    def test_active_validator_gauge(self, registry, metrics, public_key, new_key):
        first, second = Account.create().address, Account.create().address
        registry.register(first, public_key, 5)
        registry.register(second, new_key, 5)
        assert metrics.sample("rollup_active_validators") == 2
        registry.unregister(first)
        assert metrics.sample("rollup_active_validators") == 1

    def test_stats(self, registry, public_key, new_key):
        registry.register(Account.create().address, public_key, 4)
        registry.register(Account.create().address, new_key, 6)
        stats = registry.get_stats()
        assert stats["active_validators"] == 2
        assert Decimal(stats["total_stake"]) == Decimal("10")
        assert Decimal(stats["average_stake"]) == Decimal("5")

    def test_restore_from_store(self, tmp_path, clock, address, public_key):
        from optirollup.storage.rollup_state import RollupStateStore

        store = RollupStateStore(str(tmp_path / "state.db"))
        registry = ValidatorRegistry(minimum_stake=1, store=store, clock=clock)
        registry.register(address, public_key, 7)
        registry.update_performance(address, True)

        restored = ValidatorRegistry(minimum_stake=1, store=store, clock=clock)
        assert restored.restore() == 1
        assert restored.get_stake(address) == Decimal("7")
        assert restored.get_performance(address).success == 1
        store.close()
