"""
Sweep Errors

Error taxonomy for the sweeper:
- Startup errors (bad config, bad destination) abort before the loop starts
- Transient errors (network, query, submission) are retried after backoff
- Terminal errors (signature / chain context problems) end the run
"""

from enum import Enum
from typing import Optional


class SweepError(Exception):
    """Base class for all sweeper errors"""


class ConfigError(SweepError):
    """Invalid or incomplete configuration"""


class InvalidDestinationError(SweepError):
    """Destination address failed the layer's syntax check"""


class LedgerError(SweepError):
    """Query, estimation or submission failed on the way to the node"""


class TransactionRejectedError(LedgerError):
    """Node answered, but refused the transaction"""

    def __init__(self, message: str, module: Optional[str] = None, code: Optional[int] = None):
        super().__init__(message)
        self.module = module
        self.code = code

    def __str__(self):
        if self.module:
            return f"{self.module} (code {self.code}): {self.args[0]}"
        return self.args[0]


class TerminalSweepError(SweepError):
    """Failure that will not go away by retrying"""


class InvalidTransactionError(TerminalSweepError, ValueError):
    """A transaction could not be built or signed from the given inputs"""


class ErrorClass(Enum):
    TRANSIENT = "transient"
    TERMINAL = "terminal"


# Substrings in node rejections that mean every future attempt fails the same way
TERMINAL_MARKERS = (
    "signature verification failed",
    "invalid signature",
    "chain context",
    "chain domain",
)


def classify_error(exc: BaseException) -> ErrorClass:
    """
    Decide whether the controller should back off and retry, or stop

    Args:
        exc: Exception raised inside a sweep cycle

    Returns:
        ErrorClass.TERMINAL or ErrorClass.TRANSIENT
    """
    if isinstance(exc, (TerminalSweepError, ConfigError, InvalidDestinationError)):
        return ErrorClass.TERMINAL

    if isinstance(exc, TransactionRejectedError):
        message = str(exc).lower()
        if any(marker in message for marker in TERMINAL_MARKERS):
            return ErrorClass.TERMINAL

    return ErrorClass.TRANSIENT
