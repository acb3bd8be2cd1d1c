# tests/test_bridge.py
from decimal import Decimal

import pytest
from eth_account import Account

from optirollup.bridge.bridge_coordinator import BridgeCoordinator
from optirollup.bridge.models import DepositStatus, WithdrawalStatus, transfer_proof
from optirollup.exceptions import (
    ExternalError, NotFoundError, ProofError, SettlementTimeoutError, StateError, ValidationError
)
from optirollup.storage.rollup_state import RollupStateStore
from optirollup.utils.config import Config

DELAY = 7 * 24 * 60 * 60
TOKEN = "0x" + "11" * 20


class TestBridgeCoordinator:
    @pytest.fixture
    def bridge(self, settlement, fast_retry, metrics, clock):
        return BridgeCoordinator(
            settlement=settlement,
            retry_policy=fast_retry,
            min_deposit="0.001",
            max_deposit="1000",
            withdrawal_delay=DELAY,
            metrics=metrics,
            clock=clock,
            root_provider=lambda: Config.ZERO_ROOT
        )

    @pytest.fixture
    def user(self):
        return Account.create().address

    # ── Deposits ────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_deposit_completes(self, bridge, user):
        receipt = await bridge.deposit(user, TOKEN, "1.0")
        assert receipt.deposit_id == "deposit_1"
        assert receipt.status is DepositStatus.COMPLETED

        deposit = bridge.get_deposit(receipt.deposit_id)
        assert deposit.amount == Decimal("1.0")
        assert deposit.amount_wei == 10 ** 18
        assert deposit.proof == receipt.proof
        assert deposit.mint_ref is not None
        assert deposit.canonical_root == Config.ZERO_ROOT

    @pytest.mark.asyncio
    async def test_deposit_proof_commits_to_record(self, bridge, user, clock):
        receipt = await bridge.deposit(user, TOKEN, 2)
        assert receipt.proof == transfer_proof("deposit_1", user, TOKEN, 2 * 10 ** 18, int(clock()))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0.0001", "1000.5", "0", "-1", "abc"])
    async def test_deposit_amount_out_of_range(self, bridge, user, amount):
        with pytest.raises(ValidationError):
            await bridge.deposit(user, TOKEN, amount)
        assert bridge.get_stats()["total_deposits"] == 0

    @pytest.mark.asyncio
    async def test_deposit_bounds_are_inclusive(self, bridge, user):
        assert (await bridge.deposit(user, TOKEN, "0.001")).status is DepositStatus.COMPLETED
        assert (await bridge.deposit(user, TOKEN, "1000")).status is DepositStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_deposit_rejects_bad_user(self, bridge):
        with pytest.raises(ValidationError) as exc:
            await bridge.deposit("0xnope", TOKEN, 1)
        assert exc.value.reason == "user"

    @pytest.mark.asyncio
    async def test_deposit_defaults_to_native_token(self, bridge, user):
        receipt = await bridge.deposit(user, None, 1)
        assert bridge.get_deposit(receipt.deposit_id).token == Config.ZERO_ADDRESS

    @pytest.mark.asyncio
    async def test_rejected_proof_fails_deposit(self, bridge, settlement, user, clock):
        proof = transfer_proof("deposit_1", user, TOKEN, 10 ** 18, int(clock()))
        settlement.reject_proof(proof)

        with pytest.raises(ProofError) as exc:
            await bridge.deposit(user, TOKEN, 1)
        assert exc.value.reason == "invalid_proof"
        assert exc.value.entity_id == "deposit_1"
        deposit = bridge.get_deposit("deposit_1")
        assert deposit.status is DepositStatus.FAILED
        assert deposit.failure_reason == "invalid_proof"

        # failure is terminal
        with pytest.raises(StateError):
            await bridge.process_deposit("deposit_1")

    @pytest.mark.asyncio
    async def test_exhausted_retries_fail_deposit(self, bridge, settlement, user):
        settlement.fail_next("verify_proof", 3)
        with pytest.raises(ExternalError) as exc:
            await bridge.deposit(user, TOKEN, 1)
        assert exc.value.entity_id == "deposit_1"
        assert bridge.get_deposit("deposit_1").status is DepositStatus.FAILED

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, bridge, settlement, user):
        settlement.fail_next("verify_proof", 2)
        receipt = await bridge.deposit(user, TOKEN, 1)
        assert receipt.status is DepositStatus.COMPLETED
        assert settlement.calls["verify_proof"] == 3

    @pytest.mark.asyncio
    async def test_timeout_leaves_deposit_confirmed_for_reconcile(self, bridge, settlement, user):
        settlement.hang_next("verify_proof", 2.0)
        receipt = await bridge.deposit(user, TOKEN, 1)
        assert receipt.status is DepositStatus.CONFIRMED

        outcome = await bridge.reconcile()
        assert outcome["deposits"] == {"deposit_1": "completed"}
        assert bridge.get_deposit("deposit_1").status is DepositStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_process_unknown_deposit(self, bridge):
        with pytest.raises(NotFoundError):
            await bridge.process_deposit("deposit_42")

    # ── Withdrawals ─────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_withdraw_burns_with_unlock_time(self, bridge, user, clock):
        t0 = int(clock())
        receipt = await bridge.withdraw(user, TOKEN, 5)
        assert receipt.withdrawal_id == "withdrawal_1"
        assert receipt.status is WithdrawalStatus.BURNED
        assert receipt.unlock_time == t0 + DELAY

        withdrawal = bridge.get_withdrawal(receipt.withdrawal_id)
        assert withdrawal.proof == transfer_proof("withdrawal_1", user, TOKEN, 5 * 10 ** 18, t0)
        assert withdrawal.burn_ref is not None

    @pytest.mark.asyncio
    async def test_withdraw_below_minimum_rejected(self, bridge, user):
        with pytest.raises(ValidationError):
            await bridge.withdraw(user, TOKEN, "0.0001")

    @pytest.mark.asyncio
    async def test_completion_before_unlock_is_still_locked(self, bridge, user, clock):
        receipt = await bridge.withdraw(user, TOKEN, 5)
        clock.advance(DELAY - 1)
        with pytest.raises(StateError) as exc:
            await bridge.complete_withdrawal(receipt.withdrawal_id)
        assert exc.value.reason == "still_locked"
        assert "not ready" in str(exc.value)
        assert bridge.get_withdrawal(receipt.withdrawal_id).status is WithdrawalStatus.BURNED

    @pytest.mark.asyncio
    async def test_fractional_start_never_unlocks_early(self, bridge, user, clock):
        start = int(clock())
        clock.now = start + 0.9
        receipt = await bridge.withdraw(user, TOKEN, 5)
        assert receipt.unlock_time == start + 1 + DELAY
        assert bridge.get_withdrawal(receipt.withdrawal_id).created_at == start

        clock.now = start + 0.9 + DELAY - 0.5
        with pytest.raises(StateError) as exc:
            await bridge.complete_withdrawal(receipt.withdrawal_id)
        assert exc.value.reason == "still_locked"

        clock.now = start + 1 + DELAY
        completion = await bridge.complete_withdrawal(receipt.withdrawal_id)
        assert completion.status is WithdrawalStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_completion_after_unlock_succeeds_once(self, bridge, user, clock):
        receipt = await bridge.withdraw(user, TOKEN, 5)
        clock.advance(DELAY)

        completion = await bridge.complete_withdrawal(receipt.withdrawal_id)
        assert completion.status is WithdrawalStatus.COMPLETED
        assert completion.settlement_ref.startswith("0x")

        with pytest.raises(StateError) as exc:
            await bridge.complete_withdrawal(receipt.withdrawal_id)
        assert exc.value.reason == "not_ready"

    @pytest.mark.asyncio
    async def test_complete_unknown_withdrawal(self, bridge):
        with pytest.raises(NotFoundError) as exc:
            await bridge.complete_withdrawal("withdrawal_9")
        assert exc.value.reason == "not_found"

    @pytest.mark.asyncio
    async def test_rejected_withdrawal_proof_is_terminal(self, bridge, settlement, user, clock):
        receipt = await bridge.withdraw(user, TOKEN, 5)
        settlement.reject_proof(bridge.get_withdrawal(receipt.withdrawal_id).proof)
        clock.advance(DELAY)

        with pytest.raises(ProofError) as exc:
            await bridge.complete_withdrawal(receipt.withdrawal_id)
        assert exc.value.reason == "invalid_proof"
        assert bridge.get_withdrawal(receipt.withdrawal_id).status is WithdrawalStatus.FAILED

    @pytest.mark.asyncio
    async def test_release_timeout_reconciles_without_double_release(self, bridge, settlement, user, clock):
        receipt = await bridge.withdraw(user, TOKEN, 5)
        clock.advance(DELAY)
        settlement.hang_next("release_withdrawal", 2.0, apply_first=True)

        with pytest.raises(SettlementTimeoutError):
            await bridge.complete_withdrawal(receipt.withdrawal_id)
        assert bridge.get_withdrawal(receipt.withdrawal_id).status is WithdrawalStatus.BURNED

        outcome = await bridge.reconcile()
        assert outcome["withdrawals"] == {receipt.withdrawal_id: "completed"}
        assert settlement.calls["release_withdrawal"] == 1
        assert settlement.calls["get_withdrawal_release"] == 1

    # ── Events, stats, persistence ──────────────────────────────────

    @pytest.mark.asyncio
    async def test_events_follow_transitions(self, bridge, user, clock):
        await bridge.deposit(user, TOKEN, 1)
        receipt = await bridge.withdraw(user, TOKEN, 1)
        clock.advance(DELAY)
        await bridge.complete_withdrawal(receipt.withdrawal_id)

        types = [e.type for e in bridge.get_bridge_events()]
        assert types == [
            "deposit_initiated", "deposit_confirmed", "deposit_completed",
            "withdrawal_initiated", "withdrawal_burned", "withdrawal_completed"
        ]
        assert bridge.get_bridge_events(limit=2)[-1].type == "withdrawal_completed"

    @pytest.mark.asyncio
    async def test_event_ring_is_capped(self, settlement, fast_retry, clock, user):
        bridge = BridgeCoordinator(settlement, fast_retry, event_capacity=4, clock=clock)
        for _ in range(3):
            await bridge.deposit(user, TOKEN, 1)

        events = bridge.get_bridge_events(limit=100)
        assert len(events) == 4
        assert events[-1].entity_id == "deposit_3"
        assert bridge.get_stats()["events_recorded"] == 9

    @pytest.mark.asyncio
    async def test_stats_and_metrics(self, bridge, user, metrics, clock):
        await bridge.deposit(user, TOKEN, "2.5")
        await bridge.withdraw(user, TOKEN, 1)
        stats = bridge.get_stats()
        assert stats["deposits_by_status"]["completed"] == 1
        assert stats["withdrawals_by_status"]["burned"] == 1
        assert Decimal(stats["total_deposited"]) == Decimal("2.5")
        assert metrics.sample("bridge_deposits_total", {"status": "completed"}) == 1

    @pytest.mark.asyncio
    async def test_restore_from_store(self, tmp_path, settlement, fast_retry, clock, user):
        store = RollupStateStore(str(tmp_path / "bridge.db"))
        bridge = BridgeCoordinator(settlement, fast_retry, withdrawal_delay=DELAY, store=store, clock=clock)
        await bridge.deposit(user, TOKEN, 1)
        receipt = await bridge.withdraw(user, TOKEN, 1)

        restored = BridgeCoordinator(settlement, fast_retry, withdrawal_delay=DELAY, store=store, clock=clock)
        assert restored.restore() == 2
        assert restored.get_withdrawal(receipt.withdrawal_id).status is WithdrawalStatus.BURNED

        clock.advance(DELAY)
        completion = await restored.complete_withdrawal(receipt.withdrawal_id)
        assert completion.status is WithdrawalStatus.COMPLETED
        assert (await restored.withdraw(user, TOKEN, 1)).withdrawal_id == "withdrawal_2"
        store.close()
