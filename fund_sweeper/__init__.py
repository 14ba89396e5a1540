"""
Fund Sweeper

Unattended agent that keeps moving funds between a consensus layer and its
runtime layer toward one destination address.

Components:
- sweep_controller: Poll / decide / act loop with backoff
- transaction_builder: Deposit, withdraw and transfer bodies
- fee_policy: Fixed (runtime) and estimated (consensus) fees, unit scaling
- signer: Chain-bound ed25519 signing
- submitter: One-shot submission and acknowledgment
- ledger_client: gRPC client for the ledger node
- identity / addresses: Keys and per-layer addresses
- sweep_config: YAML + environment configuration
- operator_console: Destination prompt, live display, interrupt guard

Decision priority (first match wins):
1. Withdraw runtime balance minus fee
2. Transfer intermediate account balance to the destination
3. Deposit consensus balance into the runtime
4. Wait
"""

from .sweep_controller import (
    SweepController,
    SweepState,
    SweepResult,
    BalanceSnapshot,
    Decision,
    CycleOutcome,
    decide,
    next_delay,
    graceful_shutdown,
)
from .sweep_policy import (
    ActionKind,
    SweepPolicy,
)
from .fee_policy import (
    FeePolicy,
    FixedFee,
    EstimatedFee,
    FeeParams,
)
from .ledger_client import (
    LedgerClient,
    OasisNodeClient,
)
from .identity import (
    Identity,
    IdentitySource,
    load_identities,
)
from .events import (
    EventBus,
    BalancesUpdated,
)
from .sweep_config import (
    SweepConfig,
    load_config,
)

__all__ = [
    # Controller
    'SweepController',
    'SweepState',
    'SweepResult',
    'BalanceSnapshot',
    'Decision',
    'CycleOutcome',
    'decide',
    'next_delay',
    'graceful_shutdown',

    # Policy
    'ActionKind',
    'SweepPolicy',

    # Fees
    'FeePolicy',
    'FixedFee',
    'EstimatedFee',
    'FeeParams',

    # Ledger access
    'LedgerClient',
    'OasisNodeClient',

    # Identity
    'Identity',
    'IdentitySource',
    'load_identities',

    # Events
    'EventBus',
    'BalancesUpdated',

    # Configuration
    'SweepConfig',
    'load_config',
]

__version__ = '1.0.0'
__description__ = 'Unattended consensus/runtime fund sweeper'
