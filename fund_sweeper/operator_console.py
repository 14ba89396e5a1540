"""
Operator Console

Everything the operator sees or types:
- One blocking prompt for the destination address at startup
- One-time display of a generated mnemonic, on the terminal only
- Live balance / transaction / failure display driven by controller events
- Interrupt guard that warns before stopping with a transaction in flight
"""

import asyncio
import signal
import sys
from decimal import Decimal
from typing import Callable, Dict, Optional, TextIO

from loguru import logger

from .addresses import Layer, validate_destination
from .events import BalancesUpdated, CycleFailed, TransactionSubmitted


def prompt_destination(layer: Layer, ask: Callable[[str], str] = input) -> str:
    """
    Ask the operator for the sweep destination

    Args:
        layer: Layer the destination must belong to
        ask: Input function (replaceable in tests)

    Returns:
        Validated address

    Raises:
        InvalidDestinationError: input fails the layer's syntax check
    """
    if layer is Layer.RUNTIME:
        question = "Runtime (0x...) address you want to sweep funds to: "
    else:
        question = "Consensus (oasis1...) address you want to sweep funds to: "
    return validate_destination(ask(question), layer)


def show_mnemonic(mnemonic: str, stream: Optional[TextIO] = None):
    """
    Show a freshly generated mnemonic once

    Written straight to the terminal, never through the logger, so file sinks
    cannot keep a copy of the key.
    """
    stream = stream or sys.stderr
    logger.warning("Write down the mnemonic printed below, it is not stored anywhere")
    stream.write(f"\n    {mnemonic}\n\n")
    stream.flush()


def format_amount(amount: int, decimals: int) -> str:
    value = Decimal(amount).scaleb(-decimals)
    return f"{value.normalize():f}"


class ConsoleDisplay:
    """Event subscriber that keeps the operator informed"""

    def __init__(self, decimals: Dict[Layer, int], symbol: str = "ROSE"):
        self.decimals = decimals
        self.symbol = symbol
        self.balances: Dict[tuple, int] = {}

    def __call__(self, event: object):
        if isinstance(event, BalancesUpdated):
            key = (event.identity, event.layer)
            changed = self.balances.get(key) != event.amount
            self.balances[key] = event.amount
            line = (f"{event.identity:<12} {event.layer.value:<9} {event.address} balance: "
                    f"{format_amount(event.amount, self.decimals[event.layer])} {self.symbol}")
            if changed:
                logger.info(line)
            else:
                logger.debug(line)

        elif isinstance(event, TransactionSubmitted):
            logger.success(f"✓ {event.action} of {event.amount} to {event.recipient} (tx {event.tx_hash[:16]}...)")

        elif isinstance(event, CycleFailed):
            if event.terminal:
                logger.critical(f"❌ Sweeper stopped: {event.error}")
            else:
                logger.error(f"⚠ Sweep failed, retry in {event.retry_in_seconds}s: {event.error}")


class InterruptGuard:
    """
    SIGINT / SIGTERM handling for the sweep loop

    First signal: stop after the current cycle (with a loud warning if a
    transaction is in flight). Second signal: cancel the loop task.
    """

    def __init__(self, controller, task: Optional[asyncio.Task] = None):
        self.controller = controller
        self.task = task
        self.interrupts = 0

    def install(self, loop: asyncio.AbstractEventLoop):
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.handle)
            except (NotImplementedError, RuntimeError):
                # Windows event loops have no signal handlers
                logger.debug(f"Signal handler for {sig.name} not supported on this platform")

    def handle(self):
        self.interrupts += 1

        if self.interrupts == 1:
            if self.controller.in_flight:
                logger.warning("⚠ A transaction is in flight. Stopping after it is acknowledged; "
                               "interrupt again to abort (its outcome will be unknown)")
            self.controller.request_stop()
            return

        logger.warning("Second interrupt, aborting sweep loop")
        if self.task is not None and not self.task.done():
            self.task.cancel()
