"""Tests for the intent ledger."""

import json
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from swaprelay.errors import IntentNotFoundError, InvalidTransitionError
from swaprelay.ledger.models import (
    ALLOWED_TRANSITIONS,
    IntentStatus,
    SwapIntent,
    TERMINAL_STATUSES,
    can_transition,
)
from swaprelay.ledger.repository import IntentRepository, utcnow

from conftest import intent_fields

TRANSIENT = [s for s in IntentStatus if s not in TERMINAL_STATUSES]


class TestLifecycleGraph:
    """Tests for the allowed transition graph."""

    def test_terminal_statuses_have_no_exits(self):
        for status in TERMINAL_STATUSES:
            assert status not in ALLOWED_TRANSITIONS
            for target in IntentStatus:
                assert not can_transition(status, target)

    def test_every_transient_status_can_progress(self):
        for status in TRANSIENT:
            assert ALLOWED_TRANSITIONS[status]

    def test_refund_requires_custody(self):
        assert not can_transition(IntentStatus.CREATED, IntentStatus.REFUNDED)
        assert not can_transition(IntentStatus.VALIDATING, IntentStatus.REFUNDED)
        assert can_transition(IntentStatus.FUNDS_PULLED, IntentStatus.REFUNDED)
        assert can_transition(IntentStatus.SWAP_EXECUTING, IntentStatus.REFUNDED)

    def test_failed_only_before_custody(self):
        assert can_transition(IntentStatus.VALIDATING, IntentStatus.FAILED)
        assert not can_transition(IntentStatus.FUNDS_PULLED, IntentStatus.FAILED)
        assert not can_transition(IntentStatus.SWAP_EXECUTING, IntentStatus.FAILED)


class TestIntentOperations:
    """Tests for intent persistence."""

    @pytest.mark.asyncio
    async def test_create_intent(self, intent_repo: IntentRepository, db_session):
        intent = await intent_repo.create_intent("a" * 32, **intent_fields())
        await db_session.commit()

        assert intent.status == IntentStatus.CREATED
        assert intent.input_amount == 100_000_000
        events = await intent_repo.get_events(intent.id)
        assert [(e.from_status, e.to_status) for e in events] == [(None, "created")]

    @pytest.mark.asyncio
    async def test_large_amounts_round_trip(self, intent_repo: IntentRepository, db_session):
        amount = 10**30 + 7
        await intent_repo.create_intent("a" * 32, **intent_fields(input_amount=amount))
        await db_session.commit()
        db_session.expunge_all()

        intent = await intent_repo.get_intent("a" * 32)

        assert intent.input_amount == amount
        assert isinstance(intent.input_amount, int)

    @pytest.mark.asyncio
    async def test_nonce_is_unique(self, intent_repo: IntentRepository, db_session):
        await intent_repo.create_intent("a" * 32, **intent_fields())
        await db_session.commit()

        with pytest.raises(IntegrityError):
            await intent_repo.create_intent("b" * 32, **intent_fields())

    @pytest.mark.asyncio
    async def test_get_by_nonce_is_case_insensitive(self, intent_repo: IntentRepository):
        await intent_repo.create_intent("a" * 32, **intent_fields("ab"))

        found = await intent_repo.get_by_nonce("0x" + "AB" * 32)

        assert found is not None
        assert found.id == "a" * 32

    @pytest.mark.asyncio
    async def test_require_missing_intent(self, intent_repo: IntentRepository):
        with pytest.raises(IntentNotFoundError):
            await intent_repo.require_intent("missing")


class TestTransitions:
    """Tests for lifecycle transitions."""

    @pytest.mark.asyncio
    async def test_happy_path_records_events(self, intent_repo: IntentRepository):
        intent = await intent_repo.create_intent("a" * 32, **intent_fields())
        for status in (
            IntentStatus.VALIDATING,
            IntentStatus.FUNDS_PULLED,
            IntentStatus.SWAP_EXECUTING,
            IntentStatus.COMPLETED,
        ):
            await intent_repo.transition(intent.id, status, detail=f"to {status.value}")

        events = await intent_repo.get_events(intent.id)
        assert [e.to_status for e in events] == [
            "created",
            "validating",
            "funds_pulled",
            "swap_executing",
            "completed",
        ]
        assert events[2].from_status == "validating"
        assert intent.funds_pulled_at is not None
        assert intent.swap_started_at is not None
        assert intent.completed_at is not None

    @pytest.mark.asyncio
    async def test_transition_writes_fields(self, intent_repo: IntentRepository):
        intent = await intent_repo.create_intent("a" * 32, **intent_fields())
        await intent_repo.transition(intent.id, IntentStatus.VALIDATING)

        await intent_repo.transition(
            intent.id, IntentStatus.FUNDS_PULLED, pull_tx_hash="0x" + "cd" * 32, gas_cost_wei=10**15
        )

        assert intent.pull_tx_hash == "0x" + "cd" * 32
        assert intent.gas_cost_wei == 10**15

    @pytest.mark.asyncio
    async def test_illegal_transition(self, intent_repo: IntentRepository):
        intent = await intent_repo.create_intent("a" * 32, **intent_fields())

        with pytest.raises(InvalidTransitionError):
            await intent_repo.transition(intent.id, IntentStatus.COMPLETED)
        assert intent.status == IntentStatus.CREATED

    @pytest.mark.asyncio
    async def test_terminal_write_is_idempotent(self, intent_repo: IntentRepository):
        intent = await intent_repo.create_intent("a" * 32, **intent_fields())
        await intent_repo.transition(intent.id, IntentStatus.VALIDATING)
        await intent_repo.transition(intent.id, IntentStatus.FAILED)

        again = await intent_repo.transition(intent.id, IntentStatus.FAILED)

        assert again.status == IntentStatus.FAILED
        events = await intent_repo.get_events(intent.id)
        assert [e.to_status for e in events].count("failed") == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("terminal", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
    async def test_no_exit_from_terminal(self, intent_repo: IntentRepository, db_session, terminal):
        intent = await intent_repo.create_intent("a" * 32, **intent_fields())
        await db_session.execute(
            update(SwapIntent).where(SwapIntent.id == intent.id).values(status=terminal.value)
        )
        db_session.expire_all()

        for target in IntentStatus:
            if target == terminal:
                continue
            with pytest.raises(InvalidTransitionError):
                await intent_repo.transition(intent.id, target)


class TestQueries:
    @pytest.mark.asyncio
    async def test_list_by_status(self, intent_repo: IntentRepository):
        await intent_repo.create_intent("a" * 32, **intent_fields("01"))
        await intent_repo.create_intent("b" * 32, **intent_fields("02"))
        await intent_repo.transition("b" * 32, IntentStatus.VALIDATING)

        validating = await intent_repo.list_by_status(IntentStatus.VALIDATING)
        everything = await intent_repo.list_by_status()

        assert [i.id for i in validating] == ["b" * 32]
        assert len(everything) == 2

    @pytest.mark.asyncio
    async def test_list_stuck(self, intent_repo: IntentRepository, db_session):
        await intent_repo.create_intent("a" * 32, **intent_fields("01"))
        await intent_repo.create_intent("b" * 32, **intent_fields("02"))
        await intent_repo.create_intent("c" * 32, **intent_fields("03"))
        await intent_repo.transition("c" * 32, IntentStatus.VALIDATING)
        await intent_repo.transition("c" * 32, IntentStatus.FAILED)

        old = utcnow() - timedelta(hours=2)
        await db_session.execute(
            update(SwapIntent).where(SwapIntent.id.in_(["a" * 32, "c" * 32])).values(updated_at=old)
        )

        stuck = await intent_repo.list_stuck(timedelta(minutes=30))

        assert [i.id for i in stuck] == ["a" * 32]


class TestReconciliationRecords:
    """Tests for reconciliation records."""

    @pytest.mark.asyncio
    async def test_records_oldest_first(self, intent_repo: IntentRepository):
        first = await intent_repo.create_reconciliation_record("a" * 32, {"n": 1}, "first")
        second = await intent_repo.create_reconciliation_record("b" * 32, {"n": 2}, "second")

        records = await intent_repo.get_unreconciled_records()

        assert [r.id for r in records] == [first.id, second.id]
        assert json.loads(records[0].snapshot) == {"n": 1}

    @pytest.mark.asyncio
    async def test_snapshot_serializes_decimals(self, intent_repo: IntentRepository):
        record = await intent_repo.create_reconciliation_record(
            "a" * 32, {"estimated_fee_usd": Decimal("1.25"), "amount": 10**30}
        )

        assert json.loads(record.snapshot) == {"estimated_fee_usd": "1.25", "amount": 10**30}

    @pytest.mark.asyncio
    async def test_mark_reconciled_once(self, intent_repo: IntentRepository):
        record = await intent_repo.create_reconciliation_record("a" * 32, {}, "lost")

        await intent_repo.mark_record_reconciled(record.id)
        stamped = record.reconciled_at
        again = await intent_repo.mark_record_reconciled(record.id)

        assert again.reconciled is True
        assert again.reconciled_at == stamped
        assert await intent_repo.get_unreconciled_records() == []
        assert not await intent_repo.has_unreconciled_records("a" * 32)

    @pytest.mark.asyncio
    async def test_mark_missing_record(self, intent_repo: IntentRepository):
        with pytest.raises(ValueError):
            await intent_repo.mark_record_reconciled(999)

    @pytest.mark.asyncio
    async def test_apply_reconciliation_terminal_target(self, intent_repo: IntentRepository):
        intent = await intent_repo.create_intent("a" * 32, **intent_fields())
        await intent_repo.transition(intent.id, IntentStatus.VALIDATING)
        await intent_repo.transition(intent.id, IntentStatus.FUNDS_PULLED)

        await intent_repo.apply_reconciliation(
            intent, IntentStatus.REFUNDED, refund_tx_hash="0x" + "ef" * 32, refund_amount=5
        )

        assert intent.status == IntentStatus.REFUNDED
        assert intent.refunded_at is not None
        assert intent.reconciled_at is not None
        assert intent.refund_amount == 5
        events = await intent_repo.get_events(intent.id)
        assert events[-1].detail == "reconciled"

    @pytest.mark.asyncio
    async def test_apply_reconciliation_keeps_terminal_status(self, intent_repo: IntentRepository):
        intent = await intent_repo.create_intent("a" * 32, **intent_fields())
        await intent_repo.transition(intent.id, IntentStatus.VALIDATING)
        await intent_repo.transition(intent.id, IntentStatus.FAILED)

        await intent_repo.apply_reconciliation(intent, IntentStatus.COMPLETED, net_output_amount=9)

        assert intent.status == IntentStatus.FAILED
        assert intent.net_output_amount == 9


class TestIntentStore:
    """Tests for the session-per-call store."""

    @pytest.mark.asyncio
    async def test_writes_are_durable(self, store):
        await store.create("a" * 32, **intent_fields())
        await store.transition("a" * 32, IntentStatus.VALIDATING)
        await store.checkpoint("a" * 32, pull_tx_hash="0x" + "12" * 32)

        intent = await store.get("a" * 32)

        assert intent.status == IntentStatus.VALIDATING
        assert intent.pull_tx_hash == "0x" + "12" * 32
        assert await store.nonce_used("0x" + "01" * 32)

    @pytest.mark.asyncio
    async def test_failed_write_rolls_back(self, store):
        await store.create("a" * 32, **intent_fields())

        with pytest.raises(InvalidTransitionError):
            await store.transition("a" * 32, IntentStatus.COMPLETED, net_output_amount=1)

        intent = await store.get("a" * 32)
        assert intent.status == IntentStatus.CREATED
        assert intent.net_output_amount is None

    @pytest.mark.asyncio
    async def test_record_flags_executing_intent(self, store):
        await store.create("a" * 32, **intent_fields())
        for status in (IntentStatus.VALIDATING, IntentStatus.FUNDS_PULLED, IntentStatus.SWAP_EXECUTING):
            await store.transition("a" * 32, status)

        await store.record_for_reconciliation("a" * 32, {"target_status": "completed"}, "lost")

        intent = await store.get("a" * 32)
        assert intent.status == IntentStatus.REQUIRES_RECONCILIATION
        assert await store.has_pending_reconciliation("a" * 32)

    @pytest.mark.asyncio
    async def test_record_leaves_other_statuses(self, store):
        await store.create("a" * 32, **intent_fields())
        await store.transition("a" * 32, IntentStatus.VALIDATING)

        await store.record_for_reconciliation("a" * 32, {"target_status": "refunded"}, "lost")

        intent = await store.get("a" * 32)
        assert intent.status == IntentStatus.VALIDATING
        assert await store.has_pending_reconciliation("a" * 32)

    @pytest.mark.asyncio
    async def test_record_without_intent_row(self, store):
        record = await store.record_for_reconciliation("f" * 32, {"target_status": "failed"})

        assert record.id is not None
        assert await store.has_pending_reconciliation("f" * 32)
