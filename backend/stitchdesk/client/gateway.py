# Overview: HTTP gateway that sends coordinator mutations and the pickup balance check to the Stitchdesk API.

"""
HTTP Mutation Gateway

Maps each mutation to one API call over httpx.AsyncClient and turns the
response into a MutationResult. Non-2xx responses and transport errors
become failure results carrying the server's error message; the
coordinator treats both the same way.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import httpx

from .mutations import (
    AddService,
    EditService,
    MarkPickedUp,
    Mutation,
    RecordPayment,
    RecordRefund,
    RemoveService,
    RestoreService,
    ToggleServiceCompletion,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MutationResult:
    success: bool
    error: Optional[str] = None
    data: dict = field(default_factory=dict)

    @classmethod
    def ok(cls, data: dict | None = None) -> "MutationResult":
        return cls(success=True, data=data or {})

    @classmethod
    def failed(cls, error: str) -> "MutationResult":
        return cls(success=False, error=error)


@dataclass(frozen=True)
class BalanceCheck:
    """Pickup pre-check: prompt when this is the last open garment and money is owed."""
    is_last_unfinished: bool
    has_outstanding_balance: bool
    order_total_cents: int = 0
    paid_amount_cents: int = 0
    balance_due_cents: int = 0
    is_ready_for_pickup: bool = True

    @property
    def should_prompt(self) -> bool:
        return self.is_ready_for_pickup and self.is_last_unfinished and self.has_outstanding_balance

    @classmethod
    def from_dict(cls, data: dict) -> "BalanceCheck":
        return cls(
            is_last_unfinished=bool(data.get("is_last_unfinished")),
            has_outstanding_balance=bool(data.get("has_outstanding_balance")),
            order_total_cents=int(data.get("order_total_cents") or 0),
            paid_amount_cents=int(data.get("paid_amount_cents") or 0),
            balance_due_cents=int(data.get("balance_due_cents") or 0),
            is_ready_for_pickup=bool(data.get("is_ready_for_pickup", True)),
        )


class MutationGateway(Protocol):
    async def execute(self, mutation: Mutation) -> MutationResult: ...

    async def log_deferred_pickup(self, garment_id: int, notes: str | None = None) -> MutationResult: ...


class HttpMutationGateway:
    """
    Gateway backed by the HTTP API.

    Pass `client` to reuse an existing httpx.AsyncClient (its base_url must
    point at the API); otherwise one is created from `base_url` and closed by
    `aclose()` / `async with`.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:5000",
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def __aenter__(self) -> "HttpMutationGateway":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def execute(self, mutation: Mutation) -> MutationResult:
        method, path, body = _request_for(mutation)
        return await self._send(method, path, body)

    async def log_deferred_pickup(self, garment_id: int, notes: str | None = None) -> MutationResult:
        body = {"notes": notes} if notes else {}
        return await self._send("POST", f"/api/garments/{garment_id}/deferred-pickup", body)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def check_balance(self, garment_id: int) -> BalanceCheck:
        """Raises httpx.HTTPError when the check cannot be completed."""
        response = await self._client.get(f"/api/garments/{garment_id}/balance-check")
        response.raise_for_status()
        return BalanceCheck.from_dict(response.json())

    async def fetch_order(self, order_id: int) -> dict:
        response = await self._client.get(f"/api/orders/{order_id}")
        response.raise_for_status()
        return response.json()

    # -------------------------------------------------------------------------

    async def _send(self, method: str, path: str, body: dict | None) -> MutationResult:
        try:
            response = await self._client.request(method, path, json=body)
        except httpx.HTTPError as e:
            logger.warning("%s %s failed: %s", method, path, e)
            return MutationResult.failed(f"Network error: {e.__class__.__name__}")

        payload = _json_or_empty(response)
        if response.is_success:
            return MutationResult.ok(payload)

        error = payload.get("error") or f"Request failed with status {response.status_code}"
        logger.info("%s %s rejected (%s): %s", method, path, response.status_code, error)
        return MutationResult.failed(error)


def _json_or_empty(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _request_for(mutation: Mutation) -> tuple[str, str, dict[str, Any] | None]:
    if isinstance(mutation, AddService):
        body = {
            "name": mutation.name,
            "unit_price_cents": mutation.unit_price_cents,
            "quantity": str(mutation.quantity),
            "unit": mutation.unit,
        }
        if mutation.description is not None:
            body["description"] = mutation.description
        return "POST", f"/api/garments/{mutation.garment_id}/services", body

    if isinstance(mutation, EditService):
        body = {
            k: (str(v) if k == "quantity" else v) for k, v in mutation.changes().items()
        }
        return "PATCH", f"/api/garments/{mutation.garment_id}/services/{mutation.service_id}", body

    if isinstance(mutation, RemoveService):
        body = {"reason": mutation.reason} if mutation.reason else {}
        return "POST", f"/api/garments/{mutation.garment_id}/services/{mutation.service_id}/remove", body

    if isinstance(mutation, RestoreService):
        return "POST", f"/api/garments/{mutation.garment_id}/services/{mutation.service_id}/restore", {}

    if isinstance(mutation, ToggleServiceCompletion):
        body = {} if mutation.is_done is None else {"is_done": mutation.is_done}
        return "POST", f"/api/garments/{mutation.garment_id}/services/{mutation.service_id}/completion", body

    if isinstance(mutation, RecordPayment):
        body = {
            "invoice_id": mutation.invoice_id,
            "amount_cents": mutation.amount_cents,
            "payment_method": mutation.payment_method,
            "payment_type": mutation.payment_type,
        }
        if mutation.external_reference:
            body["external_reference"] = mutation.external_reference
        if mutation.notes:
            body["notes"] = mutation.notes
        return "POST", "/api/payments/", body

    if isinstance(mutation, RecordRefund):
        body = {"amount_cents": mutation.amount_cents, "refund_method": mutation.refund_method}
        if mutation.reason:
            body["reason"] = mutation.reason
        return "POST", f"/api/payments/{mutation.payment_id}/refunds", body

    if isinstance(mutation, MarkPickedUp):
        return "POST", f"/api/garments/{mutation.garment_id}/pickup", {}

    raise ValueError(f"No API call for {type(mutation).__name__}")
