"""
State block construction and signing.
"""

import hashlib
from dataclasses import dataclass, field
from typing import Any

import structlog

from .errors import InsufficientBalance
from .keys import ZERO_HASH, decode_address, derive_public_key, sign, validate_secret
from .ledger import AccountState, Receivable
from .work import WorkProvider

logger = structlog.get_logger()

# State blocks hash a 32-byte preamble whose last byte is the block type (6)
STATE_BLOCK_PREAMBLE = bytes(31) + b"\x06"

BALANCE_BYTES = 16


def block_hash(account: str, previous: str, representative: str, balance: int, link: str) -> str:
    """
    Compute a state block hash.

    Balance is encoded as an exact 16-byte big-endian integer.
    """
    if isinstance(balance, bool) or not isinstance(balance, int):
        raise TypeError("balance must be an int")
    if balance < 0 or balance >= 1 << (8 * BALANCE_BYTES):
        raise ValueError(f"balance {balance} out of range")

    h = hashlib.blake2b(digest_size=32)
    h.update(STATE_BLOCK_PREAMBLE)
    h.update(bytes.fromhex(decode_address(account)))
    h.update(bytes.fromhex(previous))
    h.update(bytes.fromhex(decode_address(representative)))
    h.update(balance.to_bytes(BALANCE_BYTES, "big"))
    h.update(bytes.fromhex(link))
    return h.hexdigest().upper()


@dataclass(frozen=True)
class StateBlock:
    """Signed state block. ``amount`` and ``subtype`` are not hashed."""

    subtype: str  # "send" or "receive"
    account: str
    previous: str
    representative: str
    balance: int
    link: str
    amount: int
    signature: str
    work: str
    hash: str = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "hash",
            block_hash(self.account, self.previous, self.representative, self.balance, self.link),
        )

    def to_json(self) -> dict[str, Any]:
        """Block in the node's json_block format. Balance stays a decimal string."""
        return {
            "type": "state",
            "account": self.account,
            "previous": self.previous,
            "representative": self.representative,
            "balance": str(self.balance),
            "link": self.link,
            "signature": self.signature,
            "work": self.work,
        }


class BlockBuilder:
    """
    Builds signed send and receive blocks from an AccountState.

    Construction only; submitting is the caller's job.
    """

    def __init__(self, work_provider: WorkProvider):
        self.work_provider = work_provider

    def _check_owner(self, state: AccountState, secret: str) -> str:
        validate_secret(secret)
        public_key = derive_public_key(secret)
        if decode_address(state.account) != public_key:
            raise ValueError(f"secret does not control {state.account}")
        return public_key

    def build_send(self, state: AccountState, from_secret: str, to_address: str) -> StateBlock:
        """
        Send the entire balance of ``state`` to ``to_address``.

        Raises:
            InsufficientBalance: balance is zero
        """
        self._check_owner(state, from_secret)
        if state.balance <= 0:
            raise InsufficientBalance(state.account, state.balance)

        amount = state.balance
        new_balance = state.balance - amount
        link = decode_address(to_address)

        unsigned_hash = block_hash(
            state.account, state.frontier, state.representative, new_balance, link
        )
        work = self.work_provider.generate_work(state.frontier)

        block = StateBlock(
            subtype="send",
            account=state.account,
            previous=state.frontier,
            representative=state.representative,
            balance=new_balance,
            link=link,
            amount=amount,
            signature=sign(from_secret, unsigned_hash),
            work=work,
        )

        logger.info(
            "send_block_built",
            account=state.account,
            destination=to_address,
            amount=str(amount),
            hash=block.hash,
        )
        return block

    def build_receive(self, state: AccountState, to_secret: str, pending: Receivable) -> StateBlock:
        """
        Claim ``pending`` into ``state``.

        For an unopened account the work root is the account public key,
        since there is no previous block.
        """
        public_key = self._check_owner(state, to_secret)

        new_balance = state.balance + pending.amount
        previous = state.frontier if state.is_opened else ZERO_HASH
        work_root = state.frontier if state.is_opened else public_key

        unsigned_hash = block_hash(
            state.account, previous, state.representative, new_balance, pending.hash
        )
        work = self.work_provider.generate_work(work_root)

        block = StateBlock(
            subtype="receive",
            account=state.account,
            previous=previous,
            representative=state.representative,
            balance=new_balance,
            link=pending.hash,
            amount=pending.amount,
            signature=sign(to_secret, unsigned_hash),
            work=work,
        )

        logger.info(
            "receive_block_built",
            account=state.account,
            source_hash=pending.hash,
            amount=str(pending.amount),
            opened=state.is_opened,
            hash=block.hash,
        )
        return block
