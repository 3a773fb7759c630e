"""
Optimistic coordinator tests with an in-memory gateway.

Coroutines are driven with asyncio.run; an asyncio.Event on the fake gateway
holds a mutation "in flight" so intermediate state can be inspected.
"""

import asyncio
from dataclasses import replace
from decimal import Decimal

import pytest

from stitchdesk.client import (
    AddService,
    BalanceCheck,
    EditService,
    GarmentView,
    MarkPickedUp,
    MutationResult,
    MutationValidationError,
    OptimisticCoordinator,
    OrderView,
    PaymentView,
    PreconditionError,
    RecordPayment,
    RecordRefund,
    RemoveService,
    RestoreService,
    ServiceView,
    ToggleServiceCompletion,
    predict,
)


class FakeGateway:
    def __init__(self, results=None):
        self.calls = []
        self.deferred_logs = []
        self.results = list(results or [])
        self.gate = None

    async def execute(self, mutation):
        self.calls.append(mutation)
        if self.gate is not None:
            await self.gate.wait()
        result = self.results.pop(0) if self.results else MutationResult.ok()
        if isinstance(result, Exception):
            raise result
        return result

    async def log_deferred_pickup(self, garment_id, notes=None):
        self.deferred_logs.append(garment_id)
        return MutationResult.ok()


class RecordingNotifier:
    def __init__(self):
        self.successes = []
        self.errors = []
        self.warnings = []

    def success(self, message):
        self.successes.append(message)

    def error(self, message):
        self.errors.append(message)

    def warning(self, message):
        self.warnings.append(message)


def make_state(stage="In Progress", hem_done=True, bustle_done=False):
    return OrderView(
        id=1,
        order_number="ORD-000001",
        invoice_id=10,
        garments=(
            GarmentView(id=100, name="Dress", stage=stage, services=(
                ServiceView(id=1000, name="Hem", quantity=Decimal("1"), unit_price_cents=4000,
                            line_total_cents=4000, is_done=hem_done),
                ServiceView(id=1001, name="Bustle", quantity=Decimal("1"), unit_price_cents=6000,
                            line_total_cents=6000, is_done=bustle_done),
            )),
        ),
        payments=(PaymentView(id=500, amount_cents=5000, refunded_amount_cents=0, status="completed"),),
    )


def make_coordinator(state=None, results=None, balance_check=None):
    gateway = FakeGateway(results)
    notifier = RecordingNotifier()
    coordinator = OptimisticCoordinator(
        state or make_state(), gateway, notifier=notifier, balance_check=balance_check
    )
    return coordinator, gateway, notifier


async def settle():
    for _ in range(5):
        await asyncio.sleep(0)


class TestRollback:
    def test_failure_result_restores_snapshot(self):
        coordinator, gateway, notifier = make_coordinator(results=[MutationResult.failed("X")])
        snapshot = coordinator.state

        outcome = asyncio.run(coordinator.dispatch(ToggleServiceCompletion(garment_id=100, service_id=1001)))

        assert outcome.status == "rolled_back"
        assert outcome.error == "X"
        assert coordinator.state == snapshot
        assert notifier.errors == ["X"]
        assert len(gateway.calls) == 1

    def test_raised_exception_is_handled_like_failure(self):
        coordinator, _, notifier = make_coordinator(results=[RuntimeError("boom")])
        snapshot = coordinator.state

        outcome = asyncio.run(coordinator.dispatch(RemoveService(garment_id=100, service_id=1001)))

        assert outcome.status == "rolled_back"
        assert coordinator.state == snapshot
        assert notifier.errors == ["boom"]

    def test_rollback_keeps_other_in_flight_changes(self):
        coordinator, gateway, _ = make_coordinator(
            results=[MutationResult.failed("nope"), MutationResult.ok()]
        )

        async def scenario():
            gateway.gate = asyncio.Event()
            failing = asyncio.create_task(coordinator.dispatch(RemoveService(garment_id=100, service_id=1001)))
            await settle()
            succeeding = asyncio.create_task(coordinator.dispatch(RecordPayment(invoice_id=10, amount_cents=2000)))
            await settle()
            assert coordinator.in_flight == 2
            gateway.gate.set()
            return await failing, await succeeding

        first, second = asyncio.run(scenario())

        assert first.status == "rolled_back"
        assert second.status == "committed"
        bustle = coordinator.state.garment(100).service(1001)
        assert bustle.is_removed is False
        assert coordinator.state.summary.net_paid_cents == 7000

    def test_cancelled_dispatch_drops_prediction(self):
        coordinator, gateway, notifier = make_coordinator()
        snapshot = coordinator.state

        async def scenario():
            gateway.gate = asyncio.Event()
            task = asyncio.create_task(
                coordinator.dispatch(ToggleServiceCompletion(garment_id=100, service_id=1001, is_done=True))
            )
            await settle()
            assert coordinator.state.garment(100).stage == "Ready For Pickup"
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            after_cancel = coordinator.state

            # The entity is free again for the next change
            gateway.gate.set()
            retry = await coordinator.dispatch(ToggleServiceCompletion(garment_id=100, service_id=1001, is_done=True))
            return after_cancel, retry

        after_cancel, retry = asyncio.run(scenario())

        assert after_cancel == snapshot
        assert retry.committed
        assert coordinator.in_flight == 0
        assert coordinator.state.garment(100).stage == "Ready For Pickup"
        assert notifier.errors == []


class TestPreconditions:
    def test_pickup_outside_ready_makes_no_call(self):
        coordinator, gateway, notifier = make_coordinator()
        snapshot = coordinator.state

        outcome = asyncio.run(coordinator.dispatch(MarkPickedUp(garment_id=100)))

        assert outcome.status == "rejected"
        assert gateway.calls == []
        assert coordinator.state == snapshot
        assert "Ready For Pickup" in notifier.errors[0]

    def test_editing_done_service_is_rejected(self):
        coordinator, gateway, _ = make_coordinator()
        outcome = asyncio.run(coordinator.dispatch(EditService(garment_id=100, service_id=1000, unit_price_cents=1)))
        assert outcome.status == "rejected"
        assert gateway.calls == []

    def test_refund_above_refundable_is_rejected(self):
        coordinator, gateway, notifier = make_coordinator()
        outcome = asyncio.run(coordinator.dispatch(RecordRefund(payment_id=500, amount_cents=5001)))
        assert outcome.status == "rejected"
        assert gateway.calls == []
        assert "$50.00" in notifier.errors[0]

    def test_unknown_service_is_rejected(self):
        coordinator, gateway, _ = make_coordinator()
        outcome = asyncio.run(coordinator.dispatch(ToggleServiceCompletion(garment_id=100, service_id=42)))
        assert outcome.status == "rejected"
        assert gateway.calls == []

    def test_cancelled_order_rejects_service_changes(self):
        coordinator, gateway, notifier = make_coordinator(state=replace(make_state(), status="cancelled"))

        for mutation in (
            AddService(garment_id=100, name="Steam", unit_price_cents=1500),
            RemoveService(garment_id=100, service_id=1001),
            ToggleServiceCompletion(garment_id=100, service_id=1001),
        ):
            outcome = asyncio.run(coordinator.dispatch(mutation))
            assert outcome.status == "rejected"

        assert gateway.calls == []
        assert "cancelled" in notifier.errors[0]

        paid = asyncio.run(coordinator.dispatch(RecordPayment(invoice_id=10, amount_cents=1000)))
        assert paid.committed

    def test_order_status_read_from_detail(self):
        state = OrderView.from_dict({"id": 1, "status": "cancelled", "garments": [], "payments": []})
        assert state.status == "cancelled"
        assert OrderView.from_dict({"id": 2}).status == "new"

    def test_malformed_payload_surfaces_as_notification(self):
        coordinator, gateway, notifier = make_coordinator()

        outcome = asyncio.run(coordinator.submit("record_refund", payment_id=500))
        assert outcome.status == "rejected"

        outcome = asyncio.run(coordinator.submit("add_service", garment_id=100, name="X", unit_price_cents=-1))
        assert outcome.status == "rejected"
        assert len(notifier.errors) == 2
        assert gateway.calls == []

    def test_mutations_validate_on_construction(self):
        with pytest.raises(MutationValidationError):
            AddService(garment_id=100, name="Hem", unit_price_cents=100, quantity="1.5")
        with pytest.raises(MutationValidationError):
            RecordPayment(invoice_id=10, amount_cents=0)
        with pytest.raises(MutationValidationError):
            ToggleServiceCompletion(garment_id=100, service_id="tmp-abc")


class TestOptimisticApply:
    def test_state_visible_before_server_answers(self):
        coordinator, gateway, notifier = make_coordinator()
        seen = []
        coordinator.add_listener(seen.append)

        async def scenario():
            gateway.gate = asyncio.Event()
            task = asyncio.create_task(
                coordinator.dispatch(ToggleServiceCompletion(garment_id=100, service_id=1001, is_done=True))
            )
            await settle()
            during = coordinator.state
            confirmed = coordinator.confirmed_state
            gateway.gate.set()
            return during, confirmed, await task

        during, confirmed, outcome = asyncio.run(scenario())

        assert during.garment(100).stage == "Ready For Pickup"
        assert confirmed.garment(100).stage == "In Progress"
        assert outcome.committed
        assert coordinator.state.garment(100).stage == "Ready For Pickup"
        assert coordinator.in_flight == 0
        assert seen[0].garment(100).stage == "Ready For Pickup"
        assert notifier.successes == ["Service completion updated"]

    def test_add_service_swaps_temp_id_for_server_id(self):
        server = {
            "service": {"id": 2000, "name": "Steam", "quantity": "1.00", "unit_price_cents": 1500,
                        "line_total_cents": 1500, "is_done": False, "is_removed": False},
            "garment": {"id": 100, "stage": "In Progress"},
        }
        coordinator, _, _ = make_coordinator(results=[MutationResult.ok(server)])
        mutation = AddService(garment_id=100, name="Steam", unit_price_cents=1500)

        outcome = asyncio.run(coordinator.dispatch(mutation))

        assert outcome.committed
        ids = [s.id for s in coordinator.state.garment(100).services]
        assert ids == [1000, 1001, 2000]
        assert mutation.temp_id not in ids
        assert coordinator.state.summary.active_total_cents == 11500

    def test_payment_prediction_uses_engine(self):
        coordinator, gateway, _ = make_coordinator()

        async def scenario():
            gateway.gate = asyncio.Event()
            task = asyncio.create_task(coordinator.dispatch(RecordPayment(invoice_id=10, amount_cents=5000)))
            await settle()
            during = coordinator.state.summary
            gateway.gate.set()
            await task
            return during

        during = asyncio.run(scenario())
        assert during.payment_status == "paid"
        assert during.amount_due_cents == 0

    def test_card_payment_predicted_pending(self):
        coordinator, _, _ = make_coordinator()
        predicted = predict(coordinator.state, RecordPayment(invoice_id=10, amount_cents=5000, payment_method="card"))
        assert predicted.summary.payment_status == "partial"


class TestSerialization:
    def test_same_entity_mutations_queue(self):
        coordinator, gateway, _ = make_coordinator()

        async def scenario():
            gateway.gate = asyncio.Event()
            first = asyncio.create_task(
                coordinator.dispatch(ToggleServiceCompletion(garment_id=100, service_id=1001, is_done=True))
            )
            await settle()
            second = asyncio.create_task(
                coordinator.dispatch(ToggleServiceCompletion(garment_id=100, service_id=1001))
            )
            await settle()
            calls_while_first_in_flight = len(gateway.calls)
            gateway.gate.set()
            return calls_while_first_in_flight, await first, await second

        calls, first, second = asyncio.run(scenario())

        assert calls == 1
        assert first.committed and second.committed
        # The flip was predicted from the committed "done" state
        assert coordinator.state.garment(100).service(1001).is_done is False
        assert coordinator.state.garment(100).stage == "In Progress"

    def test_independent_entities_run_concurrently(self):
        coordinator, gateway, _ = make_coordinator()

        async def scenario():
            gateway.gate = asyncio.Event()
            tasks = [
                asyncio.create_task(coordinator.dispatch(RemoveService(garment_id=100, service_id=1001))),
                asyncio.create_task(coordinator.dispatch(RecordRefund(payment_id=500, amount_cents=1000))),
            ]
            await settle()
            in_flight = len(gateway.calls)
            gateway.gate.set()
            return in_flight, await asyncio.gather(*tasks)

        in_flight, outcomes = asyncio.run(scenario())
        assert in_flight == 2
        assert all(o.committed for o in outcomes)
        assert coordinator.state.summary.amount_due_cents == 0

    def test_entity_locks_are_released_when_idle(self):
        coordinator, gateway, _ = make_coordinator()

        async def scenario():
            gateway.gate = asyncio.Event()
            first = asyncio.create_task(coordinator.dispatch(RemoveService(garment_id=100, service_id=1001)))
            await settle()
            second = asyncio.create_task(coordinator.dispatch(RestoreService(garment_id=100, service_id=1001)))
            await settle()
            held = dict(coordinator._locks)
            gateway.gate.set()
            await asyncio.gather(first, second)
            return held

        held = asyncio.run(scenario())

        assert list(held) == [("service", 1001)]
        assert coordinator._locks == {}
        assert coordinator.state.garment(100).service(1001).is_removed is False


class TestClose:
    def test_late_result_after_close_is_ignored(self):
        coordinator, gateway, notifier = make_coordinator(results=[MutationResult.failed("late")])

        async def scenario():
            gateway.gate = asyncio.Event()
            task = asyncio.create_task(coordinator.dispatch(RemoveService(garment_id=100, service_id=1001)))
            await settle()
            coordinator.close()
            gateway.gate.set()
            return await task

        outcome = asyncio.run(scenario())

        assert outcome.status == "ignored"
        assert notifier.errors == []
        assert notifier.successes == []
        assert coordinator.in_flight == 0

    def test_dispatch_after_close_is_noop(self):
        coordinator, gateway, _ = make_coordinator()
        coordinator.close()
        outcome = asyncio.run(coordinator.dispatch(RemoveService(garment_id=100, service_id=1001)))
        assert outcome.status == "ignored"
        assert gateway.calls == []


class TestPickupBalanceCheck:
    def _ready_state(self):
        return make_state(stage="Ready For Pickup", hem_done=True, bustle_done=True)

    def test_outstanding_balance_defers_pickup(self):
        checks = []

        async def balance_check(garment_id):
            checks.append(garment_id)
            return BalanceCheck(True, True, order_total_cents=10000, paid_amount_cents=5000, balance_due_cents=5000)

        coordinator, gateway, _ = make_coordinator(self._ready_state(), balance_check=balance_check)

        outcome = asyncio.run(coordinator.dispatch(MarkPickedUp(garment_id=100)))
        assert outcome.status == "deferred"
        assert outcome.balance.balance_due_cents == 5000
        assert gateway.calls == []
        assert coordinator.state.garment(100).stage == "Ready For Pickup"

        outcome = asyncio.run(coordinator.dispatch(MarkPickedUp(garment_id=100), proceed_without_payment=True))
        assert outcome.committed
        assert coordinator.state.garment(100).stage == "Done"
        assert gateway.deferred_logs == [100]
        assert checks == [100]

    def test_no_prompt_when_paid_up(self):
        async def balance_check(garment_id):
            return BalanceCheck(True, False)

        coordinator, gateway, _ = make_coordinator(self._ready_state(), balance_check=balance_check)
        outcome = asyncio.run(coordinator.dispatch(MarkPickedUp(garment_id=100)))
        assert outcome.committed
        assert gateway.deferred_logs == []

    def test_failed_balance_check_blocks_pickup(self):
        async def balance_check(garment_id):
            raise ConnectionError("offline")

        coordinator, gateway, notifier = make_coordinator(self._ready_state(), balance_check=balance_check)
        outcome = asyncio.run(coordinator.dispatch(MarkPickedUp(garment_id=100)))

        assert outcome.status == "rejected"
        assert gateway.calls == []
        assert coordinator.state.garment(100).stage == "Ready For Pickup"
        assert notifier.errors


class TestReducer:
    def test_predict_does_not_mutate_input(self):
        state = make_state()
        predict(state, RemoveService(garment_id=100, service_id=1001))
        assert state == make_state()

    def test_done_garment_stays_done_when_service_added(self):
        state = make_state(stage="Done", hem_done=True, bustle_done=True)
        after = predict(state, AddService(garment_id=100, name="Late fix", unit_price_cents=500))
        assert after.garment(100).stage == "Done"

    def test_cannot_remove_completed_service(self):
        with pytest.raises(PreconditionError):
            predict(make_state(), RemoveService(garment_id=100, service_id=1000))

    def test_remove_then_restore_returns_to_prior_stage(self):
        state = make_state()
        removed = predict(state, RemoveService(garment_id=100, service_id=1001))
        assert removed.garment(100).stage == "Ready For Pickup"
        restored = predict(removed, RestoreService(garment_id=100, service_id=1001))
        assert restored.garment(100).stage == state.garment(100).stage
