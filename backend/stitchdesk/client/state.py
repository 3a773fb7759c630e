# Overview: Immutable order view model and the pure reducer that predicts and reconciles mutations.

"""
Client View State

WHY: The coordinator needs a view model it can snapshot, replay and throw
away without side effects. Every view is a frozen dataclass; every change
produces a new value through `predict` (optimistic) or `reconcile`
(server-confirmed).

Balances are never stored on the view; `OrderView.summary` runs the same
payment engine the server uses.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any

from ..services import payment_calculations as calc
from ..services.garment_stage import can_confirm_pickup, resolve_stage, ORDER_STATUS_CANCELLED, STAGE_DONE
from .mutations import (
    AddService,
    EditService,
    MarkPickedUp,
    Mutation,
    PreconditionError,
    RecordPayment,
    RecordRefund,
    RemoveService,
    RestoreService,
    ToggleServiceCompletion,
)


REFUNDABLE_STATUSES = frozenset({calc.RECORD_COMPLETED, calc.RECORD_PARTIALLY_REFUNDED})

# Card payments wait for the processor; everything else is money in hand
PROCESSOR_METHODS = frozenset({"card"})


# =============================================================================
# VIEWS
# =============================================================================

@dataclass(frozen=True)
class ServiceView:
    id: int | str
    name: str
    quantity: Decimal
    unit_price_cents: int
    line_total_cents: int | None = None
    unit: str = "flat_rate"
    description: str | None = None
    is_done: bool = False
    is_removed: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "ServiceView":
        line_total = data.get("line_total_cents")
        return cls(
            id=data["id"],
            name=data.get("name") or "",
            quantity=Decimal(str(data.get("quantity") or "1")),
            unit_price_cents=int(data.get("unit_price_cents") or 0),
            line_total_cents=None if line_total is None else int(line_total),
            unit=data.get("unit") or "flat_rate",
            description=data.get("description"),
            is_done=bool(data.get("is_done")),
            is_removed=bool(data.get("is_removed")),
        )


@dataclass(frozen=True)
class GarmentView:
    id: int
    name: str
    stage: str
    services: tuple[ServiceView, ...] = ()

    @classmethod
    def from_dict(cls, data: dict) -> "GarmentView":
        return cls(
            id=data["id"],
            name=data.get("name") or "",
            stage=data.get("stage") or "New",
            services=tuple(ServiceView.from_dict(s) for s in data.get("services") or ()),
        )

    def service(self, service_id) -> ServiceView | None:
        for s in self.services:
            if s.id == service_id:
                return s
        return None

    @property
    def active_services(self) -> tuple[ServiceView, ...]:
        return tuple(s for s in self.services if not s.is_removed)


@dataclass(frozen=True)
class PaymentView:
    id: int | str
    amount_cents: int
    refunded_amount_cents: int
    status: str
    payment_method: str = "cash"
    type: str = "payment"

    @classmethod
    def from_dict(cls, data: dict) -> "PaymentView":
        return cls(
            id=data["id"],
            amount_cents=int(data.get("amount_cents") or 0),
            refunded_amount_cents=int(data.get("refunded_amount_cents") or 0),
            status=(data.get("status") or "").lower(),
            payment_method=data.get("payment_method") or "cash",
            type=data.get("type") or "payment",
        )

    @property
    def refundable_cents(self) -> int:
        if self.status not in REFUNDABLE_STATUSES:
            return 0
        return max(self.amount_cents - self.refunded_amount_cents, 0)


@dataclass(frozen=True)
class OrderView:
    id: int
    order_number: str = ""
    discount_cents: int = 0
    tax_cents: int = 0
    invoice_id: int | None = None
    garments: tuple[GarmentView, ...] = ()
    payments: tuple[PaymentView, ...] = ()
    status: str = "new"

    @classmethod
    def from_dict(cls, data: dict) -> "OrderView":
        """Build from the order detail returned by GET /api/orders/<id>."""
        invoice = data.get("invoice") or {}
        return cls(
            id=data["id"],
            order_number=data.get("order_number") or "",
            discount_cents=int(data.get("discount_cents") or 0),
            tax_cents=int(data.get("tax_cents") or 0),
            invoice_id=invoice.get("id"),
            garments=tuple(GarmentView.from_dict(g) for g in data.get("garments") or ()),
            # Refund rows are history only; their effect is on the payment
            payments=tuple(
                PaymentView.from_dict(p) for p in data.get("payments") or ()
                if p.get("type") != calc.RECORD_TYPE_REFUND
            ),
            status=data.get("status") or "new",
        )

    def garment(self, garment_id: int) -> GarmentView | None:
        for g in self.garments:
            if g.id == garment_id:
                return g
        return None

    def payment(self, payment_id) -> PaymentView | None:
        for p in self.payments:
            if p.id == payment_id:
                return p
        return None

    @property
    def service_lines(self) -> list[ServiceView]:
        return [s for g in self.garments for s in g.services]

    @property
    def summary(self) -> calc.PaymentSummary:
        return calc.summarize_order(self.service_lines, self.payments, self.discount_cents, self.tax_cents)


# Mutations that edit service lines; blocked while the order is cancelled
SERVICE_MUTATIONS = (AddService, RemoveService, RestoreService, EditService, ToggleServiceCompletion)


# =============================================================================
# PREDICT
# =============================================================================

def predict(state: OrderView, mutation: Mutation) -> OrderView:
    """
    Optimistic next state for a mutation.

    Uses the same line-total, stage and payment rules as the server.

    Raises:
        PreconditionError: If the mutation cannot apply to this state
    """
    if isinstance(mutation, SERVICE_MUTATIONS) and state.status == ORDER_STATUS_CANCELLED:
        raise PreconditionError(f"Order {state.order_number or state.id} is cancelled; restore it before changing garments")

    if isinstance(mutation, AddService):
        garment = _require_garment(state, mutation.garment_id)
        service = ServiceView(
            id=mutation.temp_id,
            name=mutation.name.strip(),
            quantity=mutation.quantity,
            unit_price_cents=mutation.unit_price_cents,
            line_total_cents=calc.calculate_line_total(mutation.quantity, mutation.unit_price_cents),
            unit=mutation.unit,
            description=mutation.description,
        )
        return _with_garment(state, _restage(replace(garment, services=garment.services + (service,))))

    if isinstance(mutation, RemoveService):
        garment, service = _require_service(state, mutation.garment_id, mutation.service_id)
        if service.is_done:
            raise PreconditionError("Cannot remove a completed service")
        if service.is_removed:
            raise PreconditionError("Service is already removed")
        return _with_service(state, garment, replace(service, is_removed=True))

    if isinstance(mutation, RestoreService):
        garment, service = _require_service(state, mutation.garment_id, mutation.service_id)
        if not service.is_removed:
            raise PreconditionError("Service is not removed")
        return _with_service(state, garment, replace(service, is_removed=False))

    if isinstance(mutation, EditService):
        garment, service = _require_service(state, mutation.garment_id, mutation.service_id)
        if service.is_done:
            raise PreconditionError("Cannot edit a completed service")
        if service.is_removed:
            raise PreconditionError("Cannot edit a removed service")
        edited = replace(service, **mutation.changes())
        if edited.unit == "flat_rate" and edited.quantity != edited.quantity.to_integral_value():
            raise PreconditionError("flat_rate services need a whole-number quantity")
        edited = replace(edited, line_total_cents=calc.calculate_line_total(edited.quantity, edited.unit_price_cents))
        return _with_service(state, garment, edited)

    if isinstance(mutation, ToggleServiceCompletion):
        garment, service = _require_service(state, mutation.garment_id, mutation.service_id)
        if service.is_removed:
            raise PreconditionError("Cannot complete a removed service")
        target = (not service.is_done) if mutation.is_done is None else mutation.is_done
        return _with_service(state, garment, replace(service, is_done=target))

    if isinstance(mutation, RecordPayment):
        if state.invoice_id != mutation.invoice_id:
            raise PreconditionError(f"Invoice {mutation.invoice_id} does not belong to this order")
        payment = PaymentView(
            id=mutation.temp_id,
            amount_cents=mutation.amount_cents,
            refunded_amount_cents=0,
            status=(
                calc.RECORD_PENDING if mutation.payment_method in PROCESSOR_METHODS else calc.RECORD_COMPLETED
            ),
            payment_method=mutation.payment_method,
        )
        return replace(state, payments=state.payments + (payment,))

    if isinstance(mutation, RecordRefund):
        payment = state.payment(mutation.payment_id)
        if payment is None:
            raise PreconditionError(f"Payment {mutation.payment_id} not found")
        if payment.status not in REFUNDABLE_STATUSES:
            raise PreconditionError("Can only refund completed or partially refunded payments")
        if mutation.amount_cents > payment.refundable_cents:
            raise PreconditionError(
                "Refund amount exceeds remaining refundable amount. "
                f"Maximum refundable: {calc.format_cents(payment.refundable_cents)}"
            )
        refunded = payment.refunded_amount_cents + mutation.amount_cents
        status = calc.RECORD_REFUNDED if refunded == payment.amount_cents else calc.RECORD_PARTIALLY_REFUNDED
        return _with_payment(state, replace(payment, refunded_amount_cents=refunded, status=status))

    if isinstance(mutation, MarkPickedUp):
        garment = _require_garment(state, mutation.garment_id)
        if not can_confirm_pickup(garment.stage):
            raise PreconditionError(
                f"Garment must be Ready For Pickup to confirm pickup (currently {garment.stage})"
            )
        return _with_garment(state, replace(garment, stage=STAGE_DONE))

    raise PreconditionError(f"Unsupported mutation: {type(mutation).__name__}")


# =============================================================================
# RECONCILE
# =============================================================================

def reconcile(state: OrderView, mutation: Mutation, data: dict | None) -> OrderView:
    """
    Fold server-assigned fields into a state that already has the prediction.

    Real ids replace temporary ones and server-computed values (line totals,
    stage, payment status) win. Missing fields leave the prediction as is.
    """
    if not data:
        return state

    if isinstance(mutation, SERVICE_MUTATIONS):
        garment = state.garment(mutation.garment_id)
        if garment is None:
            return state
        if data.get("service"):
            local_id = mutation.temp_id if isinstance(mutation, AddService) else mutation.service_id
            server_service = ServiceView.from_dict(data["service"])
            garment = replace(garment, services=tuple(
                server_service if s.id == local_id else s for s in garment.services
            ))
        if data.get("garment") and data["garment"].get("stage"):
            garment = replace(garment, stage=data["garment"]["stage"])
        return _with_garment(state, garment)

    if isinstance(mutation, (RecordPayment, RecordRefund)):
        if not data.get("payment"):
            return state
        local_id = mutation.temp_id if isinstance(mutation, RecordPayment) else mutation.payment_id
        server_payment = PaymentView.from_dict(data["payment"])
        return replace(state, payments=tuple(
            server_payment if p.id == local_id else p for p in state.payments
        ))

    if isinstance(mutation, MarkPickedUp):
        garment = state.garment(mutation.garment_id)
        if garment is None or not data.get("garment"):
            return state
        return _with_garment(state, replace(garment, stage=data["garment"].get("stage") or garment.stage))

    return state


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _require_garment(state: OrderView, garment_id: int) -> GarmentView:
    garment = state.garment(garment_id)
    if garment is None:
        raise PreconditionError(f"Garment {garment_id} not found")
    return garment


def _require_service(state: OrderView, garment_id: int, service_id: Any) -> tuple[GarmentView, ServiceView]:
    garment = _require_garment(state, garment_id)
    service = garment.service(service_id)
    if service is None:
        raise PreconditionError(f"Service {service_id} not found on garment {garment_id}")
    return garment, service


def _restage(garment: GarmentView) -> GarmentView:
    return replace(garment, stage=resolve_stage(garment.stage, garment.services))


def _with_service(state: OrderView, garment: GarmentView, service: ServiceView) -> OrderView:
    services = tuple(service if s.id == service.id else s for s in garment.services)
    return _with_garment(state, _restage(replace(garment, services=services)))


def _with_garment(state: OrderView, garment: GarmentView) -> OrderView:
    return replace(state, garments=tuple(garment if g.id == garment.id else g for g in state.garments))


def _with_payment(state: OrderView, payment: PaymentView) -> OrderView:
    return replace(state, payments=tuple(payment if p.id == payment.id else p for p in state.payments))
