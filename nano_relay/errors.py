"""
Error types raised by the relay components.
"""

from typing import Optional


class NanoRelayError(Exception):
    """Base class for relay errors."""


class InvalidSecretFormat(NanoRelayError, ValueError):
    """Secret is not 64 hex characters."""

    def __init__(self, message: str = "secret must be 64 hex characters"):
        super().__init__(message)


class InvalidAddress(NanoRelayError, ValueError):
    """Account address failed to decode."""

    def __init__(self, address: str, message: str):
        self.address = address
        super().__init__(f"Invalid address {address!r}: {message}")


class MalformedToken(NanoRelayError, ValueError):
    """Transport token does not have exactly three fields."""


class DecryptionFailed(NanoRelayError):
    """Ciphertext could not be opened with the given key material."""


class InsufficientBalance(NanoRelayError):
    """Account has nothing to relay."""

    def __init__(self, account: str, balance: int):
        self.account = account
        self.balance = balance
        super().__init__(f"Account {account} has insufficient balance ({balance} raw)")


class LedgerError(NanoRelayError):
    """Error string reported by the node RPC."""

    def __init__(self, action: str, message: str):
        self.action = action
        self.message = message
        super().__init__(f"RPC {action} failed: {message}")


class NoReceivable(NanoRelayError):
    """Nothing receivable yet. Retryable: settlement may still be propagating."""

    def __init__(
        self,
        address: str,
        min_amount: int = 1,
        expected_hash: Optional[str] = None,
        attempts: int = 1,
    ):
        self.address = address
        self.min_amount = min_amount
        self.expected_hash = expected_hash
        self.attempts = attempts
        if expected_hash:
            detail = f"expected block {expected_hash}"
        else:
            detail = f"min amount {min_amount} raw"
        super().__init__(
            f"No receivable block for {address} ({detail}) after {attempts} poll(s)"
        )


class SubmissionRejected(NanoRelayError):
    """Node refused a block (bad signature, stale frontier, low work, ...)."""

    def __init__(self, reason: str, block_hash: Optional[str] = None):
        self.reason = reason
        self.block_hash = block_hash
        super().__init__(f"Block {block_hash or '?'} rejected: {reason}")


class NoMatchingTransaction(NanoRelayError):
    """No confirmed send between two accounts within the history window."""

    def __init__(self, from_address: str, to_address: str, limit: int):
        self.from_address = from_address
        self.to_address = to_address
        self.limit = limit
        super().__init__(
            f"No send from {from_address} to {to_address} in last {limit} blocks"
        )


class WorkGenerationFailed(NanoRelayError):
    """Work server failed or returned work below the threshold."""

    def __init__(self, root: str, reason: str):
        self.root = root
        self.reason = reason
        super().__init__(f"Work generation for {root} failed: {reason}")


class RelayAborted(NanoRelayError):
    """
    A relay stopped before returning the funds.

    Carries the last state the relay reached and every block already
    submitted, so a stuck relay can be finished with ``resume``.
    """

    def __init__(
        self,
        step: str,
        account: str,
        reason: str,
        completed: Optional[dict[str, str]] = None,
        expected_hash: Optional[str] = None,
    ):
        self.step = step
        self.account = account
        self.reason = reason
        self.completed = dict(completed or {})
        self.expected_hash = expected_hash
        super().__init__(f"Relay aborted after {step} ({account}): {reason}")
