# Overview: Client-side optimistic state for an order; mutations, reducer, coordinator and HTTP gateway.

from .coordinator import MutationOutcome, OptimisticCoordinator
from .gateway import BalanceCheck, HttpMutationGateway, MutationResult
from .mutations import (
    AddService,
    EditService,
    MarkPickedUp,
    MutationValidationError,
    PreconditionError,
    RecordPayment,
    RecordRefund,
    RemoveService,
    RestoreService,
    ToggleServiceCompletion,
)
from .notifications import LoggingNotifier, Notifier
from .state import GarmentView, OrderView, PaymentView, ServiceView, predict, reconcile

__all__ = [
    "AddService",
    "BalanceCheck",
    "EditService",
    "GarmentView",
    "HttpMutationGateway",
    "LoggingNotifier",
    "MarkPickedUp",
    "MutationOutcome",
    "MutationResult",
    "MutationValidationError",
    "Notifier",
    "OptimisticCoordinator",
    "OrderView",
    "PaymentView",
    "PreconditionError",
    "RecordPayment",
    "RecordRefund",
    "RemoveService",
    "RestoreService",
    "ServiceView",
    "ToggleServiceCompletion",
    "predict",
    "reconcile",
]
