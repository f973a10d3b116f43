from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable

from loan_console.schemas.loan import QueryState
from loan_console.schemas.payout import BatchResult, LoanId, PayoutOutcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class QueueEvent:
    pass


@dataclass(frozen=True, slots=True)
class QueryChanged(QueueEvent):
    state: QueryState
    previous: QueryState


@dataclass(frozen=True, slots=True)
class SelectionChanged(QueueEvent):
    selected_ids: tuple[LoanId, ...]
    added: tuple[LoanId, ...] = ()
    removed: tuple[LoanId, ...] = ()


@dataclass(frozen=True, slots=True)
class SelectionWarning(QueueEvent):
    loan_id: LoanId
    message: str


@dataclass(frozen=True, slots=True)
class PayoutItemStarted(QueueEvent):
    loan_id: LoanId
    position: int
    total: int


@dataclass(frozen=True, slots=True)
class PayoutItemSucceeded(QueueEvent):
    outcome: PayoutOutcome


@dataclass(frozen=True, slots=True)
class PayoutItemFailed(QueueEvent):
    outcome: PayoutOutcome


@dataclass(frozen=True, slots=True)
class BatchCompleted(QueueEvent):
    result: BatchResult


Subscriber = Callable[[QueueEvent], None]


class QueueEventHub:
    """In-process fan-out of queue events to whoever renders them."""

    def __init__(self) -> None:
        self._subscribers: dict[type[QueueEvent], list[Subscriber]] = defaultdict(list)

    def subscribe(self, callback: Subscriber, event_type: type[QueueEvent] = QueueEvent) -> Callable[[], None]:
        self._subscribers[event_type].append(callback)

        def unsubscribe() -> None:
            try:
                self._subscribers[event_type].remove(callback)
            except ValueError:
                pass

        return unsubscribe

    def publish(self, event: QueueEvent) -> None:
        for event_type, callbacks in list(self._subscribers.items()):
            if not isinstance(event, event_type):
                continue
            for callback in list(callbacks):
                try:
                    callback(event)
                except Exception:
                    logger.exception("Queue event subscriber failed for %s", type(event).__name__)
