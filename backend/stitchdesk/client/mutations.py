# Overview: Typed mutation payloads the optimistic coordinator accepts; each validates itself and names its entity.

"""
Client Mutations

One frozen dataclass per mutation kind. Payloads are checked on
construction so a malformed mutation never reaches the reducer or the
network.

ENTITY KEYS:
- Service-line edits lock the service they touch
- AddService and MarkPickedUp lock the garment
- RecordPayment locks the invoice, RecordRefund the payment
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import ClassVar

from ..validation import MAX_PRICE_CENTS, MAX_QUANTITY, VALID_SERVICE_UNITS


class MutationValidationError(ValueError):
    """Mutation payload is malformed."""


class PreconditionError(Exception):
    """Mutation is not allowed in the current state; nothing was applied."""


def new_temp_id(prefix: str = "tmp") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def is_temp_id(value) -> bool:
    return isinstance(value, str)


def _require_id(value, name: str) -> None:
    if is_temp_id(value):
        raise MutationValidationError(f"{name} refers to a record that is still being saved")
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise MutationValidationError(f"{name} must be a positive integer")


def _require_cents(value, name: str, *, allow_zero: bool = False) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise MutationValidationError(f"{name} must be an integer number of cents")
    if value < 0 or (value == 0 and not allow_zero):
        raise MutationValidationError(f"{name} must be {'>= 0' if allow_zero else '> 0'}")
    if value > MAX_PRICE_CENTS * 100:
        raise MutationValidationError(f"{name} is too large")


def _coerce_quantity(value) -> Decimal:
    if isinstance(value, bool):
        raise MutationValidationError("quantity must be a number")
    try:
        quantity = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        raise MutationValidationError("quantity must be a number")
    if not quantity.is_finite() or quantity <= 0:
        raise MutationValidationError("quantity must be > 0")
    if quantity > MAX_QUANTITY:
        raise MutationValidationError(f"quantity cannot exceed {MAX_QUANTITY}")
    return quantity


def _check_unit(unit: str, quantity: Decimal | None) -> None:
    if unit not in VALID_SERVICE_UNITS:
        raise MutationValidationError(f"unit must be one of {VALID_SERVICE_UNITS}")
    if unit == "flat_rate" and quantity is not None and quantity != quantity.to_integral_value():
        raise MutationValidationError("flat_rate services need a whole-number quantity")


@dataclass(frozen=True)
class Mutation:
    """Base class; subclasses set `label` and implement `entity_key`."""
    label: ClassVar[str] = "Change"

    @property
    def entity_key(self) -> tuple:
        raise NotImplementedError


# =============================================================================
# SERVICE LINES
# =============================================================================

@dataclass(frozen=True)
class AddService(Mutation):
    label: ClassVar[str] = "Service added"

    garment_id: int
    name: str
    unit_price_cents: int
    quantity: Decimal = Decimal("1")
    unit: str = "flat_rate"
    description: str | None = None
    temp_id: str = field(default_factory=new_temp_id)

    def __post_init__(self):
        _require_id(self.garment_id, "garment_id")
        if not isinstance(self.name, str) or not self.name.strip():
            raise MutationValidationError("name is required")
        _require_cents(self.unit_price_cents, "unit_price_cents", allow_zero=True)
        if self.unit_price_cents > MAX_PRICE_CENTS:
            raise MutationValidationError(f"unit_price_cents cannot exceed {MAX_PRICE_CENTS}")
        object.__setattr__(self, "quantity", _coerce_quantity(self.quantity))
        _check_unit(self.unit, self.quantity)

    @property
    def entity_key(self) -> tuple:
        return ("garment", self.garment_id)


@dataclass(frozen=True)
class RemoveService(Mutation):
    label: ClassVar[str] = "Service removed"

    garment_id: int
    service_id: int
    reason: str | None = None

    def __post_init__(self):
        _require_id(self.garment_id, "garment_id")
        _require_id(self.service_id, "service_id")

    @property
    def entity_key(self) -> tuple:
        return ("service", self.service_id)


@dataclass(frozen=True)
class RestoreService(Mutation):
    label: ClassVar[str] = "Service restored"

    garment_id: int
    service_id: int

    def __post_init__(self):
        _require_id(self.garment_id, "garment_id")
        _require_id(self.service_id, "service_id")

    @property
    def entity_key(self) -> tuple:
        return ("service", self.service_id)


@dataclass(frozen=True)
class EditService(Mutation):
    """Only the fields that are not None change."""
    label: ClassVar[str] = "Service updated"

    garment_id: int
    service_id: int
    quantity: Decimal | None = None
    unit_price_cents: int | None = None
    unit: str | None = None
    description: str | None = None

    def __post_init__(self):
        _require_id(self.garment_id, "garment_id")
        _require_id(self.service_id, "service_id")
        if all(v is None for v in (self.quantity, self.unit_price_cents, self.unit, self.description)):
            raise MutationValidationError("Nothing to change")
        if self.quantity is not None:
            object.__setattr__(self, "quantity", _coerce_quantity(self.quantity))
        if self.unit_price_cents is not None:
            _require_cents(self.unit_price_cents, "unit_price_cents", allow_zero=True)
            if self.unit_price_cents > MAX_PRICE_CENTS:
                raise MutationValidationError(f"unit_price_cents cannot exceed {MAX_PRICE_CENTS}")
        if self.unit is not None:
            _check_unit(self.unit, self.quantity)

    def changes(self) -> dict:
        return {
            k: v for k, v in (
                ("quantity", self.quantity),
                ("unit_price_cents", self.unit_price_cents),
                ("unit", self.unit),
                ("description", self.description),
            ) if v is not None
        }

    @property
    def entity_key(self) -> tuple:
        return ("service", self.service_id)


@dataclass(frozen=True)
class ToggleServiceCompletion(Mutation):
    """is_done=None flips the current value."""
    label: ClassVar[str] = "Service completion updated"

    garment_id: int
    service_id: int
    is_done: bool | None = None

    def __post_init__(self):
        _require_id(self.garment_id, "garment_id")
        _require_id(self.service_id, "service_id")
        if self.is_done is not None and not isinstance(self.is_done, bool):
            raise MutationValidationError("is_done must be a boolean")

    @property
    def entity_key(self) -> tuple:
        return ("service", self.service_id)


# =============================================================================
# PAYMENTS
# =============================================================================

@dataclass(frozen=True)
class RecordPayment(Mutation):
    label: ClassVar[str] = "Payment recorded"

    invoice_id: int
    amount_cents: int
    payment_method: str = "cash"
    payment_type: str = "payment"
    external_reference: str | None = None
    notes: str | None = None
    temp_id: str = field(default_factory=lambda: new_temp_id("tmp-pay"))

    def __post_init__(self):
        _require_id(self.invoice_id, "invoice_id")
        _require_cents(self.amount_cents, "amount_cents")
        if self.payment_method not in ("cash", "card", "check", "external_pos", "other"):
            raise MutationValidationError(f"Invalid payment method: {self.payment_method}")
        if self.payment_type not in ("payment", "deposit"):
            raise MutationValidationError(f"Invalid payment type: {self.payment_type}")

    @property
    def entity_key(self) -> tuple:
        return ("invoice", self.invoice_id)


@dataclass(frozen=True)
class RecordRefund(Mutation):
    label: ClassVar[str] = "Refund recorded"

    payment_id: int
    amount_cents: int
    reason: str | None = None
    refund_method: str = "cash"

    def __post_init__(self):
        _require_id(self.payment_id, "payment_id")
        _require_cents(self.amount_cents, "amount_cents")
        if self.refund_method not in ("cash", "external_pos", "other"):
            raise MutationValidationError(f"Invalid refund method: {self.refund_method}")

    @property
    def entity_key(self) -> tuple:
        return ("payment", self.payment_id)


# =============================================================================
# PICKUP
# =============================================================================

@dataclass(frozen=True)
class MarkPickedUp(Mutation):
    label: ClassVar[str] = "Garment picked up"

    garment_id: int

    def __post_init__(self):
        _require_id(self.garment_id, "garment_id")

    @property
    def entity_key(self) -> tuple:
        return ("garment", self.garment_id)


MUTATION_TYPES: dict[str, type[Mutation]] = {
    "add_service": AddService,
    "remove_service": RemoveService,
    "restore_service": RestoreService,
    "edit_service": EditService,
    "toggle_service_completion": ToggleServiceCompletion,
    "record_payment": RecordPayment,
    "record_refund": RecordRefund,
    "mark_picked_up": MarkPickedUp,
}


def build_mutation(kind: str, payload: dict) -> Mutation:
    """Build a mutation from a kind name and a loosely-typed payload."""
    cls = MUTATION_TYPES.get(kind)
    if cls is None:
        raise MutationValidationError(f"Unknown mutation kind: {kind}")
    try:
        return cls(**(payload or {}))
    except TypeError as e:
        raise MutationValidationError(f"Invalid {kind} payload: {e}") from e
