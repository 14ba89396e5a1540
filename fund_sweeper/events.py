"""
Sweep Events

Observer interface between the controller and whatever displays its progress.
The controller emits; subscribers (console, tests, UIs) listen independently.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional

from loguru import logger

from .addresses import Layer


@dataclass(frozen=True)
class BalancesUpdated:
    """Emitted after every successful balance read"""
    identity: str  # role of the account: 'controlled', 'intermediate', 'destination'
    address: str
    layer: Layer
    amount: int


@dataclass(frozen=True)
class TransactionSubmitted:
    action: str
    amount: int
    recipient: str
    tx_hash: str


@dataclass(frozen=True)
class CycleFailed:
    error: str
    terminal: bool
    retry_in_seconds: Optional[float] = None


Subscriber = Callable[[object], None]


class EventBus:
    """Synchronous fan-out to subscribers; a failing subscriber never stops the loop"""

    def __init__(self):
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def emit(self, event: object):
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Event subscriber {callback!r} failed on {type(event).__name__}: {e}")
