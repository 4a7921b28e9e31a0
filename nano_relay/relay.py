"""
Relay orchestration.

A relay moves the whole balance of an account through a secondary account
derived from a message and back again:

    idle -> sent_out -> received_by_secondary -> sent_back -> received_by_original

Each receive waits for the preceding send to become visible at the
destination, polling with exponential backoff inside a bounded budget.
Any failure stops the relay with RelayAborted, which lists what was
already submitted. Funds left at the secondary account can be returned
with ``resume``, which only needs the same message and private key.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterator, Optional

import httpx
import structlog

from .blocks import BlockBuilder, StateBlock
from .codec import MessageCodec
from .errors import NanoRelayError, NoReceivable, RelayAborted
from .journal import STATUS_COMPLETED, RelayJournal
from .keys import DEFAULT_PREFIX, address_from_secret, derive_secret_from_message, seed_hash
from .ledger import RECEIVABLE_PAGE, AccountState, LedgerClient, Receivable

logger = structlog.get_logger()


class RelayStep(str, Enum):
    """States of a relay."""

    IDLE = "idle"
    SENT_OUT = "sent_out"
    RECEIVED_BY_SECONDARY = "received_by_secondary"
    SENT_BACK = "sent_back"
    RECEIVED_BY_ORIGINAL = "received_by_original"
    ABORTED = "aborted"


@dataclass(frozen=True)
class SettlementPolicy:
    """
    How long to wait for a send to show up as receivable.

    The first poll happens after ``initial_delay``; later delays grow by
    ``backoff_factor`` up to ``max_delay``. Polling stops after
    ``max_attempts`` polls or once the total wait would exceed ``max_wait``.
    """

    initial_delay: float = 5.0
    max_attempts: int = 6
    backoff_factor: float = 2.0
    max_delay: float = 30.0
    max_wait: float = 120.0

    def delays(self) -> Iterator[float]:
        delay = self.initial_delay
        waited = 0.0
        for attempt in range(self.max_attempts):
            # The first poll always happens
            if attempt and waited + delay > self.max_wait:
                return
            yield delay
            waited += delay
            delay = min(delay * self.backoff_factor, self.max_delay)


def wait_for_receivable(
    ledger: LedgerClient,
    address: str,
    policy: SettlementPolicy,
    sleep: Callable[[float], None] = time.sleep,
    expected_hash: Optional[str] = None,
    min_amount: int = 1,
) -> Receivable:
    """
    Poll until a receivable block is visible at ``address``.

    With ``expected_hash`` that block is looked up directly, however many
    other blocks are pending; otherwise the largest receivable at or above
    ``min_amount`` is returned.

    Raises:
        NoReceivable: budget exhausted
    """
    attempts = 0
    for delay in policy.delays():
        sleep(delay)
        attempts += 1

        if expected_hash is None:
            try:
                return ledger.get_first_receivable(address, min_amount)
            except NoReceivable:
                pass
        else:
            pending = ledger.get_receivable_block(expected_hash, address)
            if pending is not None and pending.amount >= min_amount:
                return pending

        logger.info(
            "receivable_not_visible",
            address=address,
            expected_hash=expected_hash,
            attempt=attempts,
        )

    raise NoReceivable(address, min_amount, expected_hash, attempts)


@dataclass
class RelayResult:
    """Outcome of a relay (or of a resume)."""

    original_address: str
    secondary_address: str
    secondary_seed_hash: str
    amount: int
    blocks: dict[RelayStep, StateBlock]
    original_state: AccountState
    secondary_state: AccountState
    token: str
    step: RelayStep = RelayStep.RECEIVED_BY_ORIGINAL


@dataclass
class _Progress:
    original_address: str
    secondary_address: str
    seed_hash: str
    step: RelayStep = RelayStep.IDLE
    account: str = ""
    expected_hash: Optional[str] = None
    blocks: dict[RelayStep, StateBlock] = field(default_factory=dict)
    relay_id: Optional[int] = None


class RelayOrchestrator:
    """Runs relays step by step against a ledger."""

    def __init__(
        self,
        ledger: LedgerClient,
        builder: BlockBuilder,
        codec: Optional[MessageCodec] = None,
        policy: Optional[SettlementPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
        derive_secret: Callable[[str], str] = derive_secret_from_message,
        journal: Optional[RelayJournal] = None,
        address_prefix: str = DEFAULT_PREFIX,
        history_limit: int = 50,
        receivable_page: int = RECEIVABLE_PAGE,
    ):
        self.ledger = ledger
        self.builder = builder
        self.codec = codec or MessageCodec(ledger, history_limit)
        self.policy = policy or SettlementPolicy()
        self.sleep = sleep
        self.derive_secret = derive_secret
        self.journal = journal
        self.address_prefix = address_prefix
        self.history_limit = history_limit
        self.receivable_page = receivable_page

    def _begin(self, message: str, private_key: str) -> tuple[_Progress, str]:
        # Input errors surface here, before any network I/O
        original_address = address_from_secret(private_key, self.address_prefix)
        secondary_secret = self.derive_secret(message)
        secondary_address = address_from_secret(secondary_secret, self.address_prefix)

        progress = _Progress(
            original_address=original_address,
            secondary_address=secondary_address,
            seed_hash=seed_hash(secondary_secret),
            account=original_address,
        )
        if self.journal is not None:
            progress.relay_id = self.journal.start(
                original_address, secondary_address, progress.seed_hash
            )
        return progress, secondary_secret

    def relay(self, message: str, private_key: str) -> RelayResult:
        """
        Run a full relay for ``message`` from the account of ``private_key``.

        Raises:
            InvalidSecretFormat: malformed private key (no I/O attempted)
            RelayAborted: any later failure, with the steps already done
        """
        progress, secondary_secret = self._begin(message, private_key)

        logger.info(
            "relay_started",
            original=progress.original_address,
            secondary=progress.secondary_address,
        )

        try:
            original = self.ledger.get_account_state(progress.original_address)

            original, sent_out = self._send(
                progress, RelayStep.SENT_OUT, original, private_key, progress.secondary_address
            )

            secondary = self._receive(
                progress,
                RelayStep.RECEIVED_BY_SECONDARY,
                progress.secondary_address,
                secondary_secret,
                sent_out.hash,
                sent_out.amount,
            )

            self.sleep(self.policy.initial_delay)
            secondary, sent_back = self._send(
                progress, RelayStep.SENT_BACK, secondary, secondary_secret, progress.original_address
            )

            original = self._receive(
                progress,
                RelayStep.RECEIVED_BY_ORIGINAL,
                progress.original_address,
                private_key,
                sent_back.hash,
                sent_back.amount,
                state=original,
            )
        except (NanoRelayError, httpx.HTTPError) as e:
            raise self._abort(progress, e) from e

        return self._finish(progress, message, sent_out.amount, original, secondary)

    def resume(self, message: str, private_key: str) -> RelayResult:
        """
        Finish a relay that stopped midway.

        Claims everything waiting at the secondary account, sends its full
        balance back to the original account and claims that send there.
        Steps that already happened on the ledger are skipped.
        """
        progress, secondary_secret = self._begin(message, private_key)

        logger.info(
            "relay_resuming",
            original=progress.original_address,
            secondary=progress.secondary_address,
        )

        try:
            secondary = self.ledger.get_account_state(progress.secondary_address)
            progress.account = progress.secondary_address

            # Claim page by page until the account has nothing left
            claimed: set[str] = set()
            while True:
                page = [
                    p for p in self.ledger.get_receivables(progress.secondary_address, count=self.receivable_page)
                    if p.hash not in claimed
                ]
                if not page:
                    break
                for pending in page:
                    block = self.builder.build_receive(secondary, secondary_secret, pending)
                    self.ledger.submit(block)
                    secondary = self._advance(progress, RelayStep.RECEIVED_BY_SECONDARY, secondary, block)
                    claimed.add(pending.hash)

            original = self.ledger.get_account_state(progress.original_address)

            if secondary.balance > 0:
                if progress.blocks:
                    self.sleep(self.policy.initial_delay)
                secondary, sent_back = self._send(
                    progress,
                    RelayStep.SENT_BACK,
                    secondary,
                    secondary_secret,
                    progress.original_address,
                )
                amount = sent_back.amount
                original = self._receive(
                    progress,
                    RelayStep.RECEIVED_BY_ORIGINAL,
                    progress.original_address,
                    private_key,
                    sent_back.hash,
                    amount,
                    state=original,
                )
            else:
                entry = self.ledger.find_last_send(
                    progress.secondary_address, progress.original_address, self.history_limit
                )
                amount = entry.amount
                progress.account = progress.original_address
                progress.expected_hash = entry.hash

                pending = self.ledger.get_receivable_block(entry.hash, progress.original_address)
                if pending is not None:
                    block = self.builder.build_receive(original, private_key, pending)
                    self.ledger.submit(block)
                    original = self._advance(progress, RelayStep.RECEIVED_BY_ORIGINAL, original, block)
                else:
                    logger.info("relay_already_settled", send_hash=entry.hash)
                progress.expected_hash = None
        except (NanoRelayError, httpx.HTTPError) as e:
            raise self._abort(progress, e) from e

        result = self._finish(progress, message, amount, original, secondary)
        self._settle_earlier_entries(progress)
        return result

    def close(self) -> None:
        """Close the HTTP clients and the journal."""
        self.ledger.close()
        work_close = getattr(self.builder.work_provider, "close", None)
        if work_close is not None:
            work_close()
        if self.journal is not None:
            self.journal.close()

    def _send(
        self,
        progress: _Progress,
        step: RelayStep,
        state: AccountState,
        secret: str,
        destination: str,
    ) -> tuple[AccountState, StateBlock]:
        progress.account = state.account
        block = self.builder.build_send(state, secret, destination)
        self.ledger.submit(block)
        return self._advance(progress, step, state, block), block

    def _receive(
        self,
        progress: _Progress,
        step: RelayStep,
        address: str,
        secret: str,
        expected_hash: str,
        amount: int,
        state: Optional[AccountState] = None,
    ) -> AccountState:
        progress.account = address
        progress.expected_hash = expected_hash

        pending = wait_for_receivable(
            self.ledger,
            address,
            self.policy,
            self.sleep,
            expected_hash=expected_hash,
            min_amount=amount,
        )

        if state is None:
            state = self.ledger.get_account_state(address)

        block = self.builder.build_receive(state, secret, pending)
        self.ledger.submit(block)
        progress.expected_hash = None
        return self._advance(progress, step, state, block)

    def _advance(
        self, progress: _Progress, step: RelayStep, state: AccountState, block: StateBlock
    ) -> AccountState:
        progress.step = step
        progress.blocks[step] = block

        if self.journal is not None and progress.relay_id is not None:
            self.journal.record_step(progress.relay_id, step.value, block.hash, block.amount)

        logger.info(
            "relay_step_completed",
            step=step.value,
            account=block.account,
            hash=block.hash,
            balance=str(block.balance),
        )
        return state.advance(block)

    def _abort(self, progress: _Progress, error: Exception) -> RelayAborted:
        completed = {step.value: block.hash for step, block in progress.blocks.items()}
        aborted = RelayAborted(
            step=progress.step.value,
            account=progress.account,
            reason=str(error),
            completed=completed,
            expected_hash=progress.expected_hash,
        )

        logger.error(
            "relay_aborted",
            step=progress.step.value,
            account=progress.account,
            expected_hash=progress.expected_hash,
            completed=completed,
            error=str(error),
        )
        if progress.step not in (RelayStep.IDLE, RelayStep.RECEIVED_BY_ORIGINAL):
            logger.warning(
                "relay_funds_in_flight",
                secondary=progress.secondary_address,
                hint="run resume with the same message and key",
            )

        if self.journal is not None and progress.relay_id is not None:
            self.journal.mark_aborted(progress.relay_id, str(aborted))

        return aborted

    def _finish(
        self,
        progress: _Progress,
        message: str,
        amount: int,
        original: AccountState,
        secondary: AccountState,
    ) -> RelayResult:
        token = self.codec.seal(
            message, progress.original_address, progress.secondary_address, progress.seed_hash
        )

        if self.journal is not None and progress.relay_id is not None:
            self.journal.mark_completed(progress.relay_id)

        logger.info(
            "relay_completed",
            original=progress.original_address,
            secondary=progress.secondary_address,
            amount=str(amount),
            steps=[step.value for step in progress.blocks],
        )

        return RelayResult(
            original_address=progress.original_address,
            secondary_address=progress.secondary_address,
            secondary_seed_hash=progress.seed_hash,
            amount=amount,
            blocks=dict(progress.blocks),
            original_state=original,
            secondary_state=secondary,
            token=token,
            step=progress.step,
        )

    def _settle_earlier_entries(self, progress: _Progress) -> None:
        """Mark older unfinished journal entries of this relay pair completed."""
        if self.journal is None:
            return

        for record in self.journal.find_by_secondary(progress.secondary_address):
            if record.id == progress.relay_id or record.status == STATUS_COMPLETED:
                continue
            if record.original_address != progress.original_address:
                continue
            self.journal.mark_completed(record.id)
            logger.info("journal_relay_resumed", relay_id=record.id, resumed_by=progress.relay_id)
