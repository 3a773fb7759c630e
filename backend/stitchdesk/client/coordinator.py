# Overview: Optimistic update coordinator; applies predicted state, calls the gateway, commits or rolls back.

"""
Optimistic Update Coordinator

WHY: Staff see a service ticked off or a payment recorded the moment they
act, before the server answers. If the server disagrees the view must
return to exactly what it was, with an error message.

DESIGN PRINCIPLES:
- Confirmed base state plus a list of in-flight mutations; the visible
  state is the base with every pending prediction replayed on top
- Commit folds the mutation (and server-assigned fields) into the base;
  rollback just drops it from the pending list
- One asyncio.Lock per entity: a second mutation on the same service,
  garment, invoice or payment is predicted only after the first resolves;
  a lock is dropped once no dispatch holds or waits on it
- Failure results and raised exceptions are handled the same way;
  a cancelled dispatch drops its prediction and re-raises
- After close(), late results are ignored

OUTCOMES (per dispatched mutation):
    Idle -> Optimistic -> committed | rolled_back
    rejected: precondition or payload failure, nothing applied, no network call
    deferred: pickup needs the balance confirmed first, nothing applied
    ignored: the coordinator was closed before the result arrived
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from .gateway import BalanceCheck, MutationGateway, MutationResult
from .mutations import (
    MarkPickedUp,
    Mutation,
    MutationValidationError,
    PreconditionError,
    build_mutation,
)
from .notifications import LoggingNotifier, Notifier
from .state import OrderView, predict, reconcile

logger = logging.getLogger(__name__)


OUTCOME_COMMITTED = "committed"
OUTCOME_ROLLED_BACK = "rolled_back"
OUTCOME_REJECTED = "rejected"
OUTCOME_DEFERRED = "deferred"
OUTCOME_IGNORED = "ignored"


@dataclass(frozen=True)
class MutationOutcome:
    status: str
    mutation: Optional[Mutation] = None
    error: Optional[str] = None
    data: Optional[dict] = None
    balance: Optional[BalanceCheck] = None

    @property
    def committed(self) -> bool:
        return self.status == OUTCOME_COMMITTED


@dataclass(eq=False)
class _Pending:
    mutation: Mutation


BalanceChecker = Callable[[int], Awaitable[BalanceCheck]]
StateListener = Callable[[OrderView], None]


class OptimisticCoordinator:
    """
    Owns one order view and every mutation applied to it.

    Args:
        state: Confirmed order view to start from
        gateway: Sends mutations to the server (see gateway.MutationGateway)
        notifier: Receives success / error messages (default: LoggingNotifier)
        balance_check: Optional pickup pre-check, called with the garment id
    """

    def __init__(
        self,
        state: OrderView,
        gateway: MutationGateway,
        notifier: Notifier | None = None,
        balance_check: BalanceChecker | None = None,
    ):
        self._base = state
        self._gateway = gateway
        self._notifier = notifier or LoggingNotifier()
        self._balance_check = balance_check
        self._pending: list[_Pending] = []
        self._locks: dict[tuple, asyncio.Lock] = {}
        self._lock_users: dict[tuple, int] = {}
        self._listeners: list[StateListener] = []
        self._closed = False

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> OrderView:
        """Visible state: confirmed base plus every in-flight prediction."""
        visible = self._base
        for pending in self._pending:
            try:
                visible = predict(visible, pending.mutation)
            except PreconditionError:
                # An earlier commit made this prediction moot; the server decides
                continue
        return visible

    @property
    def confirmed_state(self) -> OrderView:
        return self._base

    @property
    def in_flight(self) -> int:
        return len(self._pending)

    @property
    def closed(self) -> bool:
        return self._closed

    def add_listener(self, listener: StateListener) -> None:
        """Called with the visible state after every change."""
        self._listeners.append(listener)

    def close(self) -> None:
        """Stop applying results; in-flight calls finish as no-ops."""
        self._closed = True
        self._pending.clear()
        self._listeners.clear()

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    async def submit(self, kind: str, **payload) -> MutationOutcome:
        """Build a mutation from a kind name and payload, then dispatch it."""
        try:
            mutation = build_mutation(kind, payload)
        except MutationValidationError as e:
            self._notifier.error(str(e))
            return MutationOutcome(OUTCOME_REJECTED, error=str(e))
        return await self.dispatch(mutation)

    async def dispatch(self, mutation: Mutation, *, proceed_without_payment: bool = False) -> MutationOutcome:
        """
        Apply a mutation optimistically and reconcile with the server.

        Args:
            mutation: The mutation to apply
            proceed_without_payment: Pickup only; skip the balance prompt and
                log the deferred payment after the pickup commits

        Returns:
            MutationOutcome (never raises for mutation or network failures)
        """
        if self._closed:
            return MutationOutcome(OUTCOME_IGNORED, mutation)

        key = mutation.entity_key
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                return await self._dispatch_locked(mutation, proceed_without_payment)
        finally:
            self._release_lock(key)

    async def _dispatch_locked(self, mutation: Mutation, proceed_without_payment: bool) -> MutationOutcome:
        if self._closed:
            return MutationOutcome(OUTCOME_IGNORED, mutation)

        try:
            predict(self.state, mutation)
        except PreconditionError as e:
            self._notifier.error(str(e))
            return MutationOutcome(OUTCOME_REJECTED, mutation, error=str(e))

        balance = None
        if isinstance(mutation, MarkPickedUp) and self._balance_check and not proceed_without_payment:
            try:
                balance = await self._balance_check(mutation.garment_id)
            except Exception as e:
                logger.warning("Balance check for garment %s failed: %s", mutation.garment_id, e)
                message = "Could not check the order balance; pickup not confirmed"
                self._notifier.error(message)
                return MutationOutcome(OUTCOME_REJECTED, mutation, error=message)

            if self._closed:
                return MutationOutcome(OUTCOME_IGNORED, mutation)
            if balance.should_prompt:
                return MutationOutcome(OUTCOME_DEFERRED, mutation, balance=balance)

        return await self._apply(mutation, balance, proceed_without_payment)

    async def _apply(
        self,
        mutation: Mutation,
        balance: BalanceCheck | None,
        proceed_without_payment: bool,
    ) -> MutationOutcome:
        pending = _Pending(mutation)
        self._pending.append(pending)
        self._emit()

        try:
            result = await self._gateway.execute(mutation)
        except asyncio.CancelledError:
            # Cancelled while waiting on the server: drop the prediction, then propagate
            if not self._closed:
                self._pending.remove(pending)
                self._emit()
            raise
        except Exception as e:
            logger.warning("%s failed with %s", type(mutation).__name__, e.__class__.__name__, exc_info=True)
            result = MutationResult.failed(str(e) or e.__class__.__name__)

        if self._closed:
            logger.debug("Ignoring late result for %s", type(mutation).__name__)
            return MutationOutcome(OUTCOME_IGNORED, mutation)

        self._pending.remove(pending)

        if not result.success:
            error = result.error or "Something went wrong"
            self._emit()
            self._notifier.error(error)
            return MutationOutcome(OUTCOME_ROLLED_BACK, mutation, error=error)

        self._base = _fold(self._base, mutation, result.data)
        self._emit()
        self._notifier.success(mutation.label)

        if isinstance(mutation, MarkPickedUp) and proceed_without_payment:
            await self._log_deferred(mutation.garment_id)

        return MutationOutcome(OUTCOME_COMMITTED, mutation, data=result.data, balance=balance)

    async def _log_deferred(self, garment_id: int) -> None:
        try:
            logged = await self._gateway.log_deferred_pickup(garment_id)
        except Exception as e:
            logged = MutationResult.failed(str(e) or e.__class__.__name__)
        if not logged.success and not self._closed:
            self._notifier.warning(f"Pickup saved but the deferred payment was not logged: {logged.error}")

    def _release_lock(self, key: tuple) -> None:
        remaining = self._lock_users[key] - 1
        if remaining:
            self._lock_users[key] = remaining
        else:
            del self._lock_users[key]
            del self._locks[key]

    def _emit(self) -> None:
        if not self._listeners:
            return
        visible = self.state
        for listener in list(self._listeners):
            listener(visible)


def _fold(base: OrderView, mutation: Mutation, data: dict | None) -> OrderView:
    """Confirmed mutation applied to the base state, then reconciled with the server."""
    try:
        predicted = predict(base, mutation)
    except PreconditionError:
        # Base is missing a change still in flight elsewhere; take the server's fields only
        predicted = base
    return reconcile(predicted, mutation, data)
