"""
HTTP gateway tests against the real API.

An httpx.MockTransport hands each request to the Flask test client, so the
coordinator, gateway, routes and services run together without a server.
"""

import asyncio

import httpx
import pytest

from stitchdesk.client import (
    AddService,
    HttpMutationGateway,
    MarkPickedUp,
    OptimisticCoordinator,
    OrderView,
    RecordPayment,
    RecordRefund,
    RemoveService,
    ToggleServiceCompletion,
)

from test_client_coordinator import RecordingNotifier


def flask_transport(client):
    def handler(request: httpx.Request) -> httpx.Response:
        response = client.open(
            request.url.raw_path.decode("ascii"),
            method=request.method,
            data=request.content,
            headers={"Content-Type": request.headers.get("content-type", "application/json")},
        )
        return httpx.Response(
            response.status_code,
            content=response.data,
            headers={"Content-Type": response.content_type},
        )

    return httpx.MockTransport(handler)


def make_gateway(transport):
    return HttpMutationGateway(client=httpx.AsyncClient(transport=transport, base_url="http://stitchdesk.test"))


@pytest.fixture
def single_garment_order(client, db_session):
    response = client.post("/api/orders/", json={
        "client_name": "Ada Lovelace",
        "garments": [{"name": "Coat", "services": [
            {"name": "Shorten sleeves", "unit_price_cents": 3000},
            {"name": "Replace lining", "unit_price_cents": 7000},
        ]}],
    })
    assert response.status_code == 201
    return response.json


async def load(gateway, order_id, notifier=None):
    state = OrderView.from_dict(await gateway.fetch_order(order_id))
    return OptimisticCoordinator(
        state, gateway, notifier=notifier or RecordingNotifier(), balance_check=gateway.check_balance
    )


class TestEndToEnd:
    def test_work_payment_and_pickup(self, client, single_garment_order):
        order_id = single_garment_order["id"]
        notifier = RecordingNotifier()

        async def scenario():
            async with make_gateway(flask_transport(client)) as gateway:
                coordinator = await load(gateway, order_id, notifier)
                garment = coordinator.state.garments[0]
                sleeves, lining = (s.id for s in garment.services)

                added = await coordinator.dispatch(
                    AddService(garment_id=garment.id, name="Press", unit_price_cents=1500)
                )
                assert added.committed
                press_id = added.data["service"]["id"]

                for service_id in (sleeves, lining, press_id):
                    outcome = await coordinator.dispatch(
                        ToggleServiceCompletion(garment_id=garment.id, service_id=service_id, is_done=True)
                    )
                    assert outcome.committed

                deferred = await coordinator.dispatch(MarkPickedUp(garment_id=garment.id))
                paid = await coordinator.dispatch(
                    RecordPayment(invoice_id=coordinator.state.invoice_id, amount_cents=11500)
                )
                picked_up = await coordinator.dispatch(MarkPickedUp(garment_id=garment.id))
                return coordinator, press_id, deferred, paid, picked_up

        coordinator, press_id, deferred, paid, picked_up = asyncio.run(scenario())

        assert isinstance(press_id, int)
        assert deferred.status == "deferred"
        assert deferred.balance.balance_due_cents == 11500
        assert paid.committed
        assert picked_up.committed

        state = coordinator.state
        assert state.garments[0].stage == "Done"
        assert press_id in [s.id for s in state.garments[0].services]
        assert state.summary.payment_status == "paid"
        assert isinstance(state.payments[0].id, int)

        server = client.get(f"/api/orders/{order_id}").json
        assert server["garments"][0]["stage"] == "Done"
        assert server["summary"]["amount_due_cents"] == 0
        assert notifier.errors == []

    def test_pickup_without_payment_is_logged(self, client, single_garment_order):
        garment = single_garment_order["garments"][0]
        for service in garment["services"]:
            client.post(f"/api/garments/{garment['id']}/services/{service['id']}/completion", json={"is_done": True})

        async def scenario():
            async with make_gateway(flask_transport(client)) as gateway:
                coordinator = await load(gateway, single_garment_order["id"])
                return await coordinator.dispatch(MarkPickedUp(garment_id=garment["id"]), proceed_without_payment=True)

        outcome = asyncio.run(scenario())

        assert outcome.committed
        history = client.get(f"/api/garments/{garment['id']}/history").json["history"]
        assert history[0]["change_type"] == "special_action"
        assert history[0]["new_value"] == "deferred"

    def test_refund_through_gateway(self, client, single_garment_order):
        invoice_id = single_garment_order["invoice"]["id"]
        payment = client.post("/api/payments/", json={
            "invoice_id": invoice_id, "payment_method": "cash", "amount_cents": 4000,
        }).json["payment"]

        async def scenario():
            async with make_gateway(flask_transport(client)) as gateway:
                coordinator = await load(gateway, single_garment_order["id"])
                outcome = await coordinator.dispatch(RecordRefund(payment_id=payment["id"], amount_cents=1000))
                return coordinator, outcome

        coordinator, outcome = asyncio.run(scenario())

        assert outcome.committed
        assert coordinator.state.payment(payment["id"]).status == "partially_refunded"
        assert coordinator.state.summary.net_paid_cents == 3000


class TestServerRejection:
    def test_stale_view_rolls_back_with_server_message(self, client, single_garment_order):
        garment = single_garment_order["garments"][0]
        service_id = garment["services"][0]["id"]
        notifier = RecordingNotifier()

        async def scenario():
            async with make_gateway(flask_transport(client)) as gateway:
                coordinator = await load(gateway, single_garment_order["id"], notifier)
                # Another terminal finishes the service after this view was loaded
                client.post(f"/api/garments/{garment['id']}/services/{service_id}/completion", json={"is_done": True})
                snapshot = coordinator.state
                outcome = await coordinator.dispatch(RemoveService(garment_id=garment["id"], service_id=service_id))
                return coordinator, snapshot, outcome

        coordinator, snapshot, outcome = asyncio.run(scenario())

        assert outcome.status == "rolled_back"
        assert outcome.error == "Cannot remove a completed service"
        assert coordinator.state == snapshot
        assert notifier.errors == ["Cannot remove a completed service"]

    def test_network_error_rolls_back(self, client, single_garment_order):
        garment = single_garment_order["garments"][0]
        detail = client.get(f"/api/orders/{single_garment_order['id']}").json

        def offline(request):
            raise httpx.ConnectError("connection refused", request=request)

        async def scenario():
            async with make_gateway(httpx.MockTransport(offline)) as gateway:
                coordinator = OptimisticCoordinator(OrderView.from_dict(detail), gateway, notifier=RecordingNotifier())
                snapshot = coordinator.state
                outcome = await coordinator.dispatch(
                    ToggleServiceCompletion(garment_id=garment["id"], service_id=garment["services"][0]["id"])
                )
                return coordinator, snapshot, outcome

        coordinator, snapshot, outcome = asyncio.run(scenario())

        assert outcome.status == "rolled_back"
        assert outcome.error == "Network error: ConnectError"
        assert coordinator.state == snapshot

    def test_balance_check_for_missing_garment_raises(self, client, db_session):
        async def scenario():
            async with make_gateway(flask_transport(client)) as gateway:
                await gateway.check_balance(999999)

        with pytest.raises(httpx.HTTPStatusError):
            asyncio.run(scenario())
