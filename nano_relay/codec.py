"""
Message encryption and the relay transport token.

The message is sealed with AES-256-GCM under a key derived (HKDF-SHA256)
from the secondary account's seed hash and bound to the recipient address.
Whoever holds the token and knows the recipient address can open it, and
the ledger history of the secondary account proves when the relay
happened.

Token format: ``<secondary address>,<seed hash hex>,<ciphertext>`` with each
field percent-escaped, so a comma inside a field cannot shift the split.
"""

import base64
import secrets
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote, unquote

import structlog
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .errors import DecryptionFailed, MalformedToken
from .keys import normalize_address
from .ledger import LedgerClient

logger = structlog.get_logger()

KDF_INFO_PREFIX = b"nano-relay/v1|"
NONCE_SIZE = 12
TOKEN_SEPARATOR = ","
TOKEN_FIELDS = 3


@dataclass(frozen=True)
class RelayToken:
    """Transport artifact handed back after a relay."""

    secondary_address: str
    secondary_seed_hash: str
    ciphertext: str


@dataclass(frozen=True)
class RevealedMessage:
    """Decrypted message plus on-chain provenance."""

    message: str
    secondary_address: str
    send_hash: str
    timestamp: Optional[int]


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(data: str) -> bytes:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def _bound_address(recipient_address: str) -> bytes:
    # nano_ and xrb_ forms of one account bind the same key
    return normalize_address(recipient_address).encode("utf-8")


def derive_message_key(recipient_address: str, seed_hash: str) -> bytes:
    """Derive the 32-byte AES key for a (recipient, seed hash) pair."""
    try:
        ikm = bytes.fromhex(seed_hash)
    except ValueError as e:
        raise DecryptionFailed(f"seed hash is not hex: {e}") from e

    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=None,
        info=KDF_INFO_PREFIX + _bound_address(recipient_address),
    )
    return hkdf.derive(ikm)


def encrypt(message: str, recipient_address: str, seed_hash: str) -> str:
    """Seal a message; returns unpadded base64url of nonce || ciphertext."""
    key = derive_message_key(recipient_address, seed_hash)
    nonce = secrets.token_bytes(NONCE_SIZE)
    sealed = AESGCM(key).encrypt(nonce, message.encode("utf-8"), _bound_address(recipient_address))
    return _b64encode(nonce + sealed)


def decrypt(ciphertext: str, recipient_address: str, seed_hash: str) -> str:
    """
    Open a ciphertext produced by ``encrypt``.

    Raises:
        DecryptionFailed: wrong address/seed hash or tampered ciphertext
        InvalidAddress: recipient is not an account address
    """
    try:
        data = _b64decode(ciphertext)
    except ValueError as e:
        raise DecryptionFailed(f"ciphertext is not base64url: {e}") from e

    if len(data) <= NONCE_SIZE:
        raise DecryptionFailed("ciphertext too short")

    key = derive_message_key(recipient_address, seed_hash)
    try:
        plain = AESGCM(key).decrypt(
            data[:NONCE_SIZE], data[NONCE_SIZE:], _bound_address(recipient_address)
        )
    except InvalidTag as e:
        raise DecryptionFailed("authentication failed") from e

    return plain.decode("utf-8")


def encode_token(secondary_address: str, seed_hash: str, ciphertext: str) -> str:
    """Serialize the three token fields."""
    fields = (secondary_address, seed_hash, ciphertext)
    return TOKEN_SEPARATOR.join(quote(f, safe="") for f in fields)


def decode_token(token: str) -> RelayToken:
    """
    Parse a token.

    Raises:
        MalformedToken: not exactly three comma-separated fields
    """
    parts = token.split(TOKEN_SEPARATOR)
    if len(parts) != TOKEN_FIELDS:
        raise MalformedToken(f"expected {TOKEN_FIELDS} fields, got {len(parts)}")

    secondary_address, seed_hash, ciphertext = (unquote(p) for p in parts)
    return RelayToken(
        secondary_address=secondary_address,
        secondary_seed_hash=seed_hash,
        ciphertext=ciphertext,
    )


class MessageCodec:
    """Seals messages into tokens and opens them again with provenance."""

    def __init__(self, ledger: Optional[LedgerClient] = None, history_limit: int = 50):
        self.ledger = ledger
        self.history_limit = history_limit

    def seal(self, message: str, recipient_address: str, secondary_address: str, seed_hash: str) -> str:
        """Encrypt ``message`` and wrap it in a token string."""
        ciphertext = encrypt(message, recipient_address, seed_hash)
        return encode_token(secondary_address, seed_hash, ciphertext)

    def open(self, token: str, recipient_address: str) -> str:
        """Decrypt a token without touching the ledger."""
        parsed = decode_token(token)
        return decrypt(parsed.ciphertext, recipient_address, parsed.secondary_seed_hash)

    def reveal(self, token: str, recipient_address: str) -> RevealedMessage:
        """
        Decrypt a token and look up the relay's return send on the ledger.

        Raises:
            NoMatchingTransaction: the secondary account never sent to
                ``recipient_address`` within the history window
        """
        if self.ledger is None:
            raise RuntimeError("reveal needs a LedgerClient")

        parsed = decode_token(token)
        message = decrypt(parsed.ciphertext, recipient_address, parsed.secondary_seed_hash)

        entry = self.ledger.find_last_send(
            parsed.secondary_address, recipient_address, self.history_limit
        )

        logger.info(
            "message_revealed",
            secondary=parsed.secondary_address,
            recipient=recipient_address,
            send_hash=entry.hash,
            timestamp=entry.timestamp,
        )

        return RevealedMessage(
            message=message,
            secondary_address=parsed.secondary_address,
            send_hash=entry.hash,
            timestamp=entry.timestamp,
        )

    def close(self) -> None:
        """Close the ledger client, if any."""
        if self.ledger is not None:
            self.ledger.close()
