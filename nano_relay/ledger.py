"""
Node RPC client: account state, receivable blocks, submission and history.
"""

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Optional

import httpx
import structlog

from .amounts import parse_raw
from .errors import (
    InvalidAddress,
    LedgerError,
    NoMatchingTransaction,
    NoReceivable,
    SubmissionRejected,
)
from .keys import ZERO_HASH, decode_address

if TYPE_CHECKING:
    from .blocks import StateBlock

logger = structlog.get_logger()

# Fallback delegate for accounts without a representative (genesis account)
DEFAULT_REPRESENTATIVE = "nano_3t6k35gi95xu6tergt6p69ck76ogmitsa8mnijtpxm9fkcm736xtoncuohr3"

ACCOUNT_NOT_FOUND = "Account not found"
BLOCK_NOT_FOUND = "Block not found"

# Default page size for receivable listings
RECEIVABLE_PAGE = 10

# Reply shapes that do not match what a parser expects
MALFORMED_REPLY = (KeyError, TypeError, ValueError, AttributeError)


@dataclass(frozen=True)
class AccountState:
    """Request-scoped snapshot of an account's chain head."""

    account: str
    frontier: str
    balance: int
    representative: str = DEFAULT_REPRESENTATIVE

    @classmethod
    def unopened(cls, account: str, representative: str = DEFAULT_REPRESENTATIVE) -> "AccountState":
        """Sentinel state for an account with no blocks yet."""
        return cls(account=account, frontier=ZERO_HASH, balance=0, representative=representative)

    @property
    def is_opened(self) -> bool:
        return self.frontier != ZERO_HASH

    def advance(self, block: "StateBlock") -> "AccountState":
        """Return the state after ``block`` is appended; self is unchanged."""
        if block.account != self.account:
            raise ValueError(f"block belongs to {block.account}, not {self.account}")
        return replace(
            self,
            frontier=block.hash,
            balance=block.balance,
            representative=block.representative,
        )


@dataclass(frozen=True)
class Receivable:
    """A send waiting to be claimed by its destination."""

    hash: str
    amount: int
    source: Optional[str] = None


@dataclass(frozen=True)
class HistoryEntry:
    """One entry of account_history (newest first)."""

    hash: str
    type: str
    account: str
    amount: int
    timestamp: Optional[int]
    height: Optional[int] = None
    confirmed: bool = True


class LedgerClient:
    """Client for the node JSON RPC."""

    def __init__(
        self,
        url: str = "http://127.0.0.1:7076",
        timeout: float = 30.0,
        default_representative: str = DEFAULT_REPRESENTATIVE,
    ):
        self.url = url
        self.default_representative = default_representative
        self.client = httpx.Client(timeout=timeout)

    def _call(self, action: str, **params: Any) -> dict[str, Any]:
        """
        Make RPC call.

        Raises:
            LedgerError: error string in the reply, or a reply that is not
                a JSON object
        """
        payload = {"action": action, **params}
        response = self.client.post(self.url, json=payload)
        response.raise_for_status()

        try:
            result = response.json()
        except ValueError as e:
            raise LedgerError(action, f"invalid JSON reply: {e}") from e

        if not isinstance(result, dict):
            raise LedgerError(action, f"unexpected reply {result!r}")

        if result.get("error"):
            raise LedgerError(action, str(result["error"]))

        return result

    def get_account_state(self, address: str) -> AccountState:
        """
        Get frontier, balance and representative of an account.

        An account that was never opened yields the unopened sentinel, not
        an error.
        """
        try:
            info = self._call("account_info", account=address, representative="true")
        except LedgerError as e:
            if e.message == ACCOUNT_NOT_FOUND:
                logger.debug("account_unopened", account=address)
                return AccountState.unopened(address, self.default_representative)
            raise

        try:
            return AccountState(
                account=address,
                frontier=info["frontier"].upper(),
                balance=parse_raw(info["balance"]),
                representative=info.get("representative") or self.default_representative,
            )
        except MALFORMED_REPLY as e:
            raise LedgerError("account_info", f"malformed reply: {e!r}") from e

    def get_receivables(
        self, address: str, min_amount: int = 1, count: int = RECEIVABLE_PAGE
    ) -> list[Receivable]:
        """List receivable blocks at or above ``min_amount``, largest first."""
        result = self._call(
            "receivable",
            account=address,
            count=str(count),
            threshold=str(min_amount),
            source="true",
            sorting="true",
        )

        # The node returns "" instead of {} when nothing is pending
        blocks = result.get("blocks") or {}

        receivables = []
        try:
            for block_hash, entry in blocks.items():
                if isinstance(entry, dict):
                    amount = parse_raw(entry["amount"])
                    source = entry.get("source")
                else:
                    amount = parse_raw(entry)
                    source = None

                if amount < min_amount:
                    continue
                receivables.append(Receivable(hash=block_hash.upper(), amount=amount, source=source))
        except MALFORMED_REPLY as e:
            raise LedgerError("receivable", f"malformed reply: {e!r}") from e

        return receivables

    def get_first_receivable(self, address: str, min_amount: int = 1) -> Receivable:
        """
        Get the first receivable block.

        Raises:
            NoReceivable: nothing pending yet (retryable)
        """
        receivables = self.get_receivables(address, min_amount, count=1)
        if not receivables:
            raise NoReceivable(address, min_amount)
        return receivables[0]

    def get_receivable_block(self, block_hash: str, address: str) -> Optional[Receivable]:
        """
        Look up one send by hash.

        Returns the send as a Receivable while it is unclaimed and addressed
        to ``address``; None when the node does not know the block yet, when
        it was already received, or when it is not a send to ``address``.
        """
        target = decode_address(address)
        try:
            result = self._call(
                "blocks_info",
                hashes=[block_hash],
                json_block="true",
                receivable="true",
            )
        except LedgerError as e:
            if e.message == BLOCK_NOT_FOUND:
                return None
            raise

        try:
            blocks = {h.upper(): info for h, info in (result.get("blocks") or {}).items()}
            info = blocks.get(block_hash.upper())
            if info is None:
                return None

            # Older nodes name the flag "pending"
            flag = info.get("receivable", info.get("pending", "0"))
            if info.get("subtype") != "send" or str(flag) != "1":
                return None

            destination = decode_address(info["contents"]["link_as_account"])
            if destination != target:
                return None

            return Receivable(
                hash=block_hash.upper(),
                amount=parse_raw(info["amount"]),
                source=info.get("block_account"),
            )
        except (InvalidAddress, *MALFORMED_REPLY) as e:
            raise LedgerError("blocks_info", f"malformed reply: {e!r}") from e

    def submit(self, block: "StateBlock") -> str:
        """
        Publish a signed block and return its hash.

        Raises:
            SubmissionRejected: node refused the block; never retried
            LedgerError: node reply did not carry the block hash
        """
        try:
            result = self._call(
                "process",
                json_block="true",
                subtype=block.subtype,
                block=block.to_json(),
            )
        except LedgerError as e:
            logger.error(
                "block_rejected",
                hash=block.hash,
                account=block.account,
                subtype=block.subtype,
                reason=e.message,
            )
            raise SubmissionRejected(e.message, block.hash) from e

        try:
            block_hash = result["hash"].upper()
        except MALFORMED_REPLY as e:
            # The node may still have accepted the block
            logger.error("block_submit_unconfirmed", hash=block.hash, account=block.account, reply=result)
            raise LedgerError("process", f"malformed reply for block {block.hash}: {e!r}") from e

        if block_hash != block.hash:
            logger.warning("block_hash_mismatch", local=block.hash, remote=block_hash)

        logger.info(
            "block_submitted",
            hash=block_hash,
            account=block.account,
            subtype=block.subtype,
            balance=str(block.balance),
        )
        return block_hash

    def get_history(self, address: str, limit: int = 50) -> list[HistoryEntry]:
        """Get account history, newest first."""
        result = self._call("account_history", account=address, count=str(limit))

        history = []
        try:
            for item in result.get("history") or []:
                timestamp = item.get("local_timestamp")
                height = item.get("height")
                history.append(
                    HistoryEntry(
                        hash=item["hash"].upper(),
                        type=item.get("type", ""),
                        account=item.get("account", ""),
                        amount=parse_raw(item.get("amount", "0")),
                        timestamp=int(timestamp) if timestamp is not None else None,
                        height=int(height) if height is not None else None,
                        confirmed=str(item.get("confirmed", "true")).lower() == "true",
                    )
                )
        except MALFORMED_REPLY as e:
            raise LedgerError("account_history", f"malformed reply: {e!r}") from e
        return history

    def find_last_send(self, from_address: str, to_address: str, limit: int = 50) -> HistoryEntry:
        """
        Find the most recent confirmed send from one account to another.

        Addresses match by public key, so nano_ and xrb_ forms are equal.

        Raises:
            NoMatchingTransaction: not found within ``limit`` entries
        """
        target = decode_address(to_address)
        for entry in self.get_history(from_address, limit):
            if entry.type != "send" or not entry.confirmed:
                continue
            try:
                if decode_address(entry.account) == target:
                    return entry
            except InvalidAddress:
                logger.warning("history_entry_bad_account", hash=entry.hash, account=entry.account)
        raise NoMatchingTransaction(from_address, to_address, limit)

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()
