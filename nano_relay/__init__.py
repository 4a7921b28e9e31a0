"""
Nano Relay

Hides a message inside a two-account relay on the Nano ledger. The message
is hashed into a secondary account; the sender's whole balance moves to
that account and back, and the secondary account's key material seals the
message into a short token whose provenance is the relay itself.

Usage:
    # Relay a message (private key from RELAY_PRIVATE_KEY or a prompt)
    nano-relay relay "meet at noon"

    # Open a token
    nano-relay reveal <token> nano_1...

    # Finish a relay that aborted midway
    nano-relay resume "meet at noon"
"""

__version__ = "0.1.0"

from .blocks import BlockBuilder, StateBlock
from .codec import MessageCodec, RelayToken, RevealedMessage, decode_token, encode_token
from .config import RelayConfig, Settings
from .journal import RelayJournal
from .ledger import AccountState, LedgerClient, Receivable
from .relay import RelayOrchestrator, RelayResult, RelayStep, SettlementPolicy
from .work import RemoteWorkProvider

__all__ = [
    "__version__",
    "AccountState",
    "BlockBuilder",
    "LedgerClient",
    "MessageCodec",
    "Receivable",
    "RelayConfig",
    "RelayJournal",
    "RelayOrchestrator",
    "RelayResult",
    "RelayStep",
    "RelayToken",
    "RemoteWorkProvider",
    "RevealedMessage",
    "Settings",
    "SettlementPolicy",
    "StateBlock",
    "decode_token",
    "encode_token",
]
