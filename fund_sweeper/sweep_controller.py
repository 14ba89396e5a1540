"""
Sweep Controller

The control loop that moves funds toward the destination:
1. Poll balances on both layers
2. Decide the next action (withdraw > transfer > deposit > wait)
3. Build, sign and submit the transaction(s)
4. Reschedule: short delay after an action, idle interval when nothing to do,
   backoff interval after a transient failure

One transaction is in flight at a time and nonces are re-read right before
each build, so transactions from one identity never collide.
"""

import asyncio
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, FrozenSet, List, Optional

from loguru import logger

from .addresses import Layer, address_from_evm, native_address, to_bech32, validate_destination
from .errors import ConfigError, ErrorClass, classify_error
from .events import BalancesUpdated, CycleFailed, EventBus, TransactionSubmitted
from .fee_policy import EstimatedFee, FeePolicy, FixedFee, consensus_to_runtime, whole_consensus_units
from .identity import Identity
from .ledger_client import LedgerClient
from .signer import SignedEnvelope
from .submitter import SubmitResult, Submitter
from .sweep_config import SweepIntervals
from .sweep_policy import ACTION_PRIORITY, ActionKind, SweepPolicy
from .transaction_builder import build_allowance, build_deposit, build_transfer, build_withdraw


class SweepState(Enum):
    IDLE = "idle"
    POLLING = "polling"
    DECIDING = "deciding"
    ACTING = "acting"
    AWAITING_ACK = "awaiting_ack"
    BACKOFF = "backoff"
    STOPPED = "stopped"


class CycleOutcome(Enum):
    IDLE = "idle"
    ACTED = "acted"
    FAILED = "failed"


@dataclass(frozen=True)
class BalanceSnapshot:
    """Balances read at one polling instant; None means not read this cycle"""
    runtime_balance: Optional[int] = None
    consensus_balance: Optional[int] = None
    intermediate_balance: Optional[int] = None
    destination_balance: Optional[int] = None


@dataclass(frozen=True)
class Decision:
    action: ActionKind
    amount: int = 0
    fee: int = 0
    source_balance: int = 0


NO_ACTION = Decision(ActionKind.NONE)


def decide(snapshot: BalanceSnapshot, rules: FrozenSet[ActionKind], withdraw_fee: int, scale: int = 1) -> Decision:
    """
    Pick the next action; first satisfied rule in priority order wins

    Args:
        snapshot: Balances read this cycle
        rules: Actions the policy allows
        withdraw_fee: Runtime fee deducted from a withdrawal
        scale: Consensus -> runtime unit multiplier; withdrawals are whole
            consensus units, the rest stays on the runtime

    Returns:
        Decision (NO_ACTION when nothing is sweepable)
    """
    for kind in ACTION_PRIORITY:
        if kind not in rules:
            continue

        if kind is ActionKind.WITHDRAW:
            balance = snapshot.runtime_balance or 0
            if balance > 0:
                amount = whole_consensus_units(balance - withdraw_fee, scale)
                if amount > 0:
                    return Decision(ActionKind.WITHDRAW, amount=amount, fee=withdraw_fee, source_balance=balance)
                logger.debug(f"Runtime balance {balance} minus fee {withdraw_fee} is below one consensus unit, waiting")

        elif kind is ActionKind.TRANSFER:
            balance = snapshot.intermediate_balance or 0
            if balance > 0:
                return Decision(ActionKind.TRANSFER, amount=balance, source_balance=balance)

        elif kind is ActionKind.DEPOSIT:
            balance = snapshot.consensus_balance or 0
            if balance > 0:
                return Decision(ActionKind.DEPOSIT, amount=balance, source_balance=balance)

    return NO_ACTION


def next_delay(outcome: CycleOutcome, intervals: SweepIntervals) -> float:
    """Seconds to wait before the next poll"""
    if outcome is CycleOutcome.ACTED:
        return intervals.action_delay_seconds
    if outcome is CycleOutcome.FAILED:
        return intervals.backoff_seconds
    return intervals.idle_seconds


@dataclass
class SweepResult:
    """One executed (or failed) sweep action"""
    action: str
    amount: int
    fee: int
    recipient: str
    success: bool
    tx_hashes: List[str] = field(default_factory=list)
    nonces: List[int] = field(default_factory=list)
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        for key in ('started_at', 'completed_at'):
            if data[key]:
                data[key] = data[key].isoformat()
        return data


class SweepController:
    """
    Sweep state machine for one identity

    States: IDLE -> POLLING -> DECIDING -> ACTING -> AWAITING_ACK -> POLLING,
    any state -> BACKOFF on transient failure. Terminal failures end the run.
    """

    def __init__(
        self,
        client: LedgerClient,
        identity: Identity,
        destination: str,
        policy: SweepPolicy,
        bridge_address: bytes,
        runtime_fee: FixedFee,
        scale: int,
        intervals: SweepIntervals = SweepIntervals(),
        consensus_fee: Optional[FeePolicy] = None,
        intermediate: Optional[Identity] = None,
        events: Optional[EventBus] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None
    ):
        """
        Initialize controller

        Args:
            client: Ledger client for reads and submissions
            identity: Controlled identity (index 0)
            destination: Operator supplied destination address
            policy: Which actions this run performs
            bridge_address: Runtime bridge account that receives the allowance
            runtime_fee: Fixed runtime fee policy
            scale: Consensus -> runtime unit multiplier
            intervals: Idle / action / backoff delays
            consensus_fee: Consensus fee policy (defaults to gas estimation)
            intermediate: Quarantine account for WITHDRAW_THEN_TRANSFER
            events: Event bus for balance and progress notifications
            sleep: Replacement for the inter-cycle wait (tests)
        """
        self.destination = validate_destination(destination, policy.destination_layer)

        if policy.uses_intermediate:
            if intermediate is None:
                raise ConfigError(f"Policy {policy.value} requires an intermediate account")
            if to_bech32(intermediate.address) == self.destination:
                raise ConfigError("Destination must differ from the intermediate account")

        self.client = client
        self.identity = identity
        self.intermediate = intermediate if policy.uses_intermediate else None
        self.policy = policy
        self.bridge_address = bridge_address
        self.runtime_fee = runtime_fee
        self.consensus_fee = consensus_fee or EstimatedFee(client)
        self.scale = scale
        self.intervals = intervals
        self.events = events or EventBus()
        self.submitter = Submitter(client)

        if policy.destination_layer is Layer.RUNTIME:
            self.destination_address = address_from_evm(self.destination)
        else:
            self.destination_address = native_address(self.destination)

        self.state = SweepState.IDLE
        self.chain_context: Optional[str] = None
        self.history: List[SweepResult] = []
        self.cycles = 0
        self.last_delay: Optional[float] = None

        self._pending: Optional[SignedEnvelope] = None
        self._stop_event = asyncio.Event()
        self._sleep = sleep or self._wait_or_stop

        logger.info("Sweep controller initialized")
        logger.info(f"  Policy: {policy.value}")
        logger.info(f"  Controlled account: {identity.bech32}")
        if self.intermediate:
            logger.info(f"  Intermediate account: {self.intermediate.bech32}")
        logger.info(f"  Destination ({policy.destination_layer.value}): {self.destination}")
        logger.info(f"  Withdraw fee: {self.withdraw_fee} ({runtime_fee!r})")

    @property
    def withdraw_fee(self) -> int:
        return self.runtime_fee.params.amount

    @property
    def in_flight(self) -> bool:
        """A signed transaction is waiting for the node's answer"""
        return self._pending is not None

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def request_stop(self):
        """Stop after the current cycle; never interrupts a submission"""
        if not self._stop_event.is_set():
            logger.info("Stop requested, finishing current cycle")
        self._stop_event.set()

    async def _wait_or_stop(self, delay: float):
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def start(self):
        """Fetch the chain context once; it binds every signature of this run"""
        if self.chain_context is None:
            self.chain_context = await self.client.chain_context()
            logger.info(f"✓ Chain context: {self.chain_context}")

    def _emit_balance(self, role: str, address: str, layer: Layer, amount: int):
        self.events.emit(BalancesUpdated(identity=role, address=address, layer=layer, amount=amount))

    async def poll(self) -> BalanceSnapshot:
        """Read every balance the policy needs, fresh from the ledger"""
        rules = self.policy.rules
        runtime_balance = consensus_balance = intermediate_balance = None

        if ActionKind.WITHDRAW in rules:
            runtime_balance = await self.client.runtime_balance(self.identity.address)
            self._emit_balance('controlled', self.identity.bech32, Layer.RUNTIME, runtime_balance)

        if ActionKind.DEPOSIT in rules:
            consensus_balance = await self.client.consensus_balance(self.identity.address)
            self._emit_balance('controlled', self.identity.bech32, Layer.CONSENSUS, consensus_balance)

        if self.intermediate is not None:
            intermediate_balance = await self.client.consensus_balance(self.intermediate.address)
            self._emit_balance('intermediate', self.intermediate.bech32, Layer.CONSENSUS, intermediate_balance)

        if self.policy.destination_layer is Layer.RUNTIME:
            destination_balance = await self.client.runtime_balance(self.destination_address)
        else:
            destination_balance = await self.client.consensus_balance(self.destination_address)
        self._emit_balance('destination', self.destination, self.policy.destination_layer, destination_balance)

        return BalanceSnapshot(
            runtime_balance=runtime_balance,
            consensus_balance=consensus_balance,
            intermediate_balance=intermediate_balance,
            destination_balance=destination_balance,
        )

    async def _sign_and_submit(self, identity: Identity, transaction) -> SubmitResult:
        envelope = identity.signer.sign(transaction, self.chain_context)
        self._pending = envelope
        self.state = SweepState.AWAITING_ACK
        try:
            return await self.submitter.submit(envelope)
        finally:
            self._pending = None

    async def _withdraw(self, decision: Decision, result: SweepResult):
        recipient = self.intermediate.address if self.intermediate else self.destination_address
        fee = await self.runtime_fee.fee_for(None, self.identity.public_key)
        nonce = await self.client.runtime_nonce(self.identity.address)

        tx = build_withdraw(recipient, decision.amount, self.identity.public_key, nonce, fee)
        ack = await self._sign_and_submit(self.identity, tx)
        result.tx_hashes.append(ack.tx_hash)
        result.nonces.append(ack.nonce)

    async def _transfer(self, decision: Decision, result: SweepResult):
        nonce = await self.client.consensus_nonce(self.intermediate.address)
        tx = build_transfer(self.destination_address, decision.amount, nonce)
        fee = await self.consensus_fee.fee_for(tx, self.intermediate.public_key)
        tx = tx.with_gas(fee.gas_limit)

        ack = await self._sign_and_submit(self.intermediate, tx)
        result.tx_hashes.append(ack.tx_hash)
        result.nonces.append(ack.nonce)

    async def _deposit(self, decision: Decision, result: SweepResult):
        amount = decision.amount
        pk = self.identity.public_key

        # Step 1: allowance for the bridge account equal to the amount
        current = await self.client.allowance(self.identity.address, self.bridge_address)
        change = amount - current
        if change:
            nonce = await self.client.consensus_nonce(self.identity.address)
            tx = build_allowance(self.bridge_address, change, nonce)
            fee = await self.consensus_fee.fee_for(tx, pk)
            tx = tx.with_gas(fee.gas_limit)

            ack = await self._sign_and_submit(self.identity, tx)
            result.tx_hashes.append(ack.tx_hash)
            result.nonces.append(ack.nonce)
            logger.info(f"✓ Allowance set to {amount} (change {change:+d})")
        else:
            logger.info(f"Allowance already {current}, skipping allowance change")

        # Step 2: runtime-side deposit of the scaled amount
        self.state = SweepState.ACTING
        nonce = await self.client.runtime_nonce(self.identity.address)
        fee = await self.runtime_fee.fee_for(None, pk)
        tx = build_deposit(self.destination_address, consensus_to_runtime(amount, self.scale), pk, nonce, fee)

        ack = await self._sign_and_submit(self.identity, tx)
        result.tx_hashes.append(ack.tx_hash)
        result.nonces.append(ack.nonce)

    def _recipient_for(self, action: ActionKind) -> str:
        if action is ActionKind.WITHDRAW and self.intermediate:
            return self.intermediate.bech32
        return self.destination

    async def act(self, decision: Decision) -> SweepResult:
        """Execute one decision; failures propagate after being recorded"""
        result = SweepResult(
            action=decision.action.value,
            amount=decision.amount,
            fee=decision.fee,
            recipient=self._recipient_for(decision.action),
            success=False,
            started_at=datetime.now(timezone.utc),
        )
        self.history.append(result)

        logger.info(f"Executing {decision.action.value}: {decision.amount} to {result.recipient}"
                    + (f" (fee {decision.fee})" if decision.fee else ""))

        try:
            if decision.action is ActionKind.WITHDRAW:
                await self._withdraw(decision, result)
            elif decision.action is ActionKind.TRANSFER:
                await self._transfer(decision, result)
            elif decision.action is ActionKind.DEPOSIT:
                await self._deposit(decision, result)
            else:
                raise ValueError(f"Nothing to execute for {decision.action}")
        except Exception as e:
            result.error_message = str(e)
            result.completed_at = datetime.now(timezone.utc)
            raise

        result.success = True
        result.completed_at = datetime.now(timezone.utc)

        self.events.emit(TransactionSubmitted(
            action=decision.action.value,
            amount=decision.amount,
            recipient=result.recipient,
            tx_hash=result.tx_hashes[-1],
        ))
        logger.info(f"✅ {decision.action.value.capitalize()} of {decision.amount} completed")
        return result

    async def run_cycle(self) -> CycleOutcome:
        """
        One poll-decide-act pass

        Returns:
            CycleOutcome for the scheduler

        Raises:
            Terminal errors (after logging and emitting CycleFailed)
        """
        try:
            if self.chain_context is None:
                await self.start()

            self.state = SweepState.POLLING
            snapshot = await self.poll()

            self.state = SweepState.DECIDING
            decision = decide(snapshot, self.policy.rules, self.withdraw_fee, self.scale)

            if decision.action is ActionKind.NONE:
                self.state = SweepState.IDLE
                return CycleOutcome.IDLE

            self.state = SweepState.ACTING
            await self.act(decision)
            self.state = SweepState.IDLE
            return CycleOutcome.ACTED

        except asyncio.CancelledError:
            raise
        except Exception as e:
            if classify_error(e) is ErrorClass.TERMINAL:
                logger.error(f"✗ Terminal sweep error, stopping: {e}")
                self.events.emit(CycleFailed(error=str(e), terminal=True))
                self.state = SweepState.STOPPED
                raise

            logger.error(f"✗ Sweep cycle failed: {e}")
            logger.info(f"Retrying in {self.intervals.backoff_seconds}s")
            self.events.emit(CycleFailed(error=str(e), terminal=False, retry_in_seconds=self.intervals.backoff_seconds))
            self.state = SweepState.BACKOFF
            return CycleOutcome.FAILED

    async def run(self, max_cycles: Optional[int] = None):
        """
        Loop until a stop is requested (or max_cycles passes)

        Args:
            max_cycles: Stop after this many cycles (None = forever)
        """
        logger.info("Starting sweep loop")

        try:
            while not self.stop_requested:
                outcome = await self.run_cycle()
                self.cycles += 1

                delay = next_delay(outcome, self.intervals)
                self.last_delay = delay

                if max_cycles is not None and self.cycles >= max_cycles:
                    break
                if self.stop_requested:
                    break

                await self._sleep(delay)
        finally:
            self.state = SweepState.STOPPED
            logger.info(f"Sweep loop stopped after {self.cycles} cycle(s), {len(self.history)} action(s)")
            for result in self.history:
                logger.info(f"  {result.to_dict()}")


async def graceful_shutdown(controller: SweepController, timeout: float = 10.0):
    """
    Stop the controller and close its ledger client

    Args:
        controller: Controller to shut down
        timeout: Maximum time to wait for the client to close (seconds)
    """
    controller.request_stop()

    if controller.in_flight:
        logger.warning("Shutting down with a transaction in flight; its outcome is unknown until the next run polls")

    try:
        await asyncio.wait_for(controller.client.close(), timeout=timeout)
        logger.info("✓ Graceful shutdown complete")
    except asyncio.TimeoutError:
        logger.warning(f"Ledger client did not close within {timeout}s")
