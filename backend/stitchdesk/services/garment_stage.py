# Overview: Pure garment stage rules; derives the workflow stage from service completion and the order status from garment stages.

"""
Garment Stage Rules

STAGES:
- New: no active services, or none of them done
- In Progress: some but not all active services done
- Ready For Pickup: every active service done
- Done: customer picked the garment up (explicit pickup action only)

Removed services never count. Done is terminal for service edits: only the
pickup action moves a garment into Done, and nothing derived from services
moves it back out.
"""

from __future__ import annotations

from typing import Any, Iterable

from .payment_calculations import ServiceLine


STAGE_NEW = "New"
STAGE_IN_PROGRESS = "In Progress"
STAGE_READY_FOR_PICKUP = "Ready For Pickup"
STAGE_DONE = "Done"

VALID_STAGES = [
    STAGE_NEW,
    STAGE_IN_PROGRESS,
    STAGE_READY_FOR_PICKUP,
    STAGE_DONE,
]

# Stages a garment is still being worked on or waiting in the shop
OPEN_STAGES = frozenset({STAGE_NEW, STAGE_IN_PROGRESS, STAGE_READY_FOR_PICKUP})


def completion_progress(services: Iterable[Any]) -> tuple[int, int]:
    """(done, total) over active services."""
    done = 0
    total = 0
    for raw in services or ():
        service = ServiceLine.from_record(raw)
        if service.is_removed:
            continue
        total += 1
        if service.is_done:
            done += 1
    return done, total


def calculate_stage(services: Iterable[Any]) -> str:
    """
    Stage implied by the completion flags of the active services.

    Never returns Done.
    """
    done, total = completion_progress(services)
    if total == 0 or done == 0:
        return STAGE_NEW
    if done == total:
        return STAGE_READY_FOR_PICKUP
    return STAGE_IN_PROGRESS


def should_apply_optimistically(current_stage: str | None, predicted_stage: str) -> bool:
    """
    Whether a predicted stage may replace the current one before the server confirms.

    Moves among New / In Progress / Ready For Pickup always apply. A Done
    garment is never moved back by a service edit, and a service edit never
    predicts Done.
    """
    if current_stage == STAGE_DONE:
        return predicted_stage == STAGE_DONE
    return predicted_stage in OPEN_STAGES


def resolve_stage(current_stage: str | None, services: Iterable[Any]) -> str:
    """Stage after a service change, honoring the Done guard."""
    predicted = calculate_stage(services)
    if should_apply_optimistically(current_stage, predicted):
        return predicted
    return current_stage


def can_confirm_pickup(stage: str | None) -> bool:
    return stage == STAGE_READY_FOR_PICKUP


# =============================================================================
# ORDER STATUS
# =============================================================================

ORDER_STATUS_NEW = "new"
ORDER_STATUS_IN_PROGRESS = "in_progress"
ORDER_STATUS_READY_FOR_PICKUP = "ready_for_pickup"
ORDER_STATUS_COMPLETED = "completed"
ORDER_STATUS_CANCELLED = "cancelled"

VALID_ORDER_STATUSES = [
    ORDER_STATUS_NEW,
    ORDER_STATUS_IN_PROGRESS,
    ORDER_STATUS_READY_FOR_PICKUP,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_CANCELLED,
]


def calculate_order_status(stages: Iterable[str]) -> str:
    """
    Order status implied by its garment stages (never cancelled).

    - every garment Done -> completed
    - every garment Ready For Pickup or Done -> ready_for_pickup
    - any garment past New -> in_progress
    - otherwise (no garments, or nothing started) -> new
    """
    stages = list(stages or ())
    if not stages:
        return ORDER_STATUS_NEW
    if all(s == STAGE_DONE for s in stages):
        return ORDER_STATUS_COMPLETED
    if all(s in (STAGE_READY_FOR_PICKUP, STAGE_DONE) for s in stages):
        return ORDER_STATUS_READY_FOR_PICKUP
    if any(s != STAGE_NEW for s in stages):
        return ORDER_STATUS_IN_PROGRESS
    return ORDER_STATUS_NEW
