from __future__ import annotations
from datetime import date
from decimal import Decimal, InvalidOperation
from stitchdesk.time_utils import parse_iso_date

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Date, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeMeta


# Maximum price: $99,999.99 (9,999,999 cents)
# A single alteration line above this is a typo, not a price
MAX_PRICE_CENTS = 9_999_999

# Quantities are hours, days or item counts
MAX_QUANTITY = Decimal("999")

VALID_SERVICE_UNITS = ["flat_rate", "hour", "day"]


class ValidationError(ValueError):
    """400-level input problem."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


SERVICE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "unit", "quantity", "unit_price_cents"},
    required_on_create={"name", "unit_price_cents"},
)

SERVICE_EDIT_POLICY = ModelValidationPolicy(
    writable_fields={"description", "unit", "quantity", "unit_price_cents"},
)

GARMENT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "notes", "due_date", "event_date"},
    required_on_create={"name"},
)

ORDER_POLICY = ModelValidationPolicy(
    writable_fields={"client_name", "client_email", "client_phone", "discount_cents", "tax_cents", "notes"},
    required_on_create={"client_name"},
)

PAYMENT_POLICY = ModelValidationPolicy(
    writable_fields={"invoice_id", "payment_type", "payment_method", "amount_cents", "external_reference", "notes"},
    required_on_create={"invoice_id", "payment_method", "amount_cents"},
)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped or 'e' in stripped.lower() or '.' in stripped:
                raise ValidationError(f"{col.key} must be a plain integer")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        raise ValidationError(f"{col.key} must be an integer")

    # Decimals (quantities); floats go through str() so 1.1 stays 1.1
    if isinstance(coltype, Numeric):
        if isinstance(value, bool):
            raise ValidationError(f"{col.key} must be a number")
        try:
            number = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValidationError(f"{col.key} must be a number")
        if not number.is_finite():
            raise ValidationError(f"{col.key} must be a number")
        scale = coltype.scale if coltype.scale is not None else 2
        if number != number.quantize(Decimal(1).scaleb(-scale)):
            raise ValidationError(f"{col.key} allows at most {scale} decimal places")
        return number

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    if isinstance(coltype, Date):
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            try:
                return parse_iso_date(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 date")
        raise ValidationError(f"{col.key} must be a date")

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_service(patch: dict) -> None:
    """Service line rules not captured by column metadata."""
    if "unit_price_cents" in patch and patch["unit_price_cents"] is not None:
        price = patch["unit_price_cents"]
        if price < 0:
            raise ValidationError("unit_price_cents must be >= 0")
        if price > MAX_PRICE_CENTS:
            raise ValidationError(f"unit_price_cents cannot exceed {MAX_PRICE_CENTS}")

    if "quantity" in patch and patch["quantity"] is not None:
        quantity = patch["quantity"]
        if quantity <= 0:
            raise ValidationError("quantity must be > 0")
        if quantity > MAX_QUANTITY:
            raise ValidationError(f"quantity cannot exceed {MAX_QUANTITY}")

    if "unit" in patch and patch["unit"] is not None:
        if patch["unit"] not in VALID_SERVICE_UNITS:
            raise ValidationError(f"unit must be one of {VALID_SERVICE_UNITS}")
        # Only hourly and daily work can be fractional
        quantity = patch.get("quantity")
        if patch["unit"] == "flat_rate" and quantity is not None and quantity != quantity.to_integral_value():
            raise ValidationError("flat_rate services need a whole-number quantity")


def enforce_rules_order(patch: dict) -> None:
    for key in ("discount_cents", "tax_cents"):
        if key in patch and patch[key] is not None and patch[key] < 0:
            raise ValidationError(f"{key} must be >= 0")


def enforce_rules_payment(patch: dict) -> None:
    amount = patch.get("amount_cents")
    if amount is None or amount <= 0:
        raise ValidationError("amount_cents must be > 0")
    if amount > MAX_PRICE_CENTS * 100:
        raise ValidationError("amount_cents is too large")


def require_positive_cents(value: Any, field: str) -> int:
    """Validate a bare cents value from a request body (refund amounts etc.)."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer")
    if value <= 0:
        raise ValidationError(f"{field} must be > 0")
    return value
