"""
Account key and address utilities.

Nano accounts use ed25519 with blake2b-512 as the internal hash. Addresses
are the public key in Nano's base32 alphabet followed by a blake2b-40
checksum:

    nano_ + 52 chars (4 zero pad bits + 256-bit key) + 8 chars (checksum)
"""

import hashlib
import string

import ed25519_blake2b

from .errors import InvalidAddress, InvalidSecretFormat

# Nano base32 alphabet (no 0, 2, l, v)
ADDRESS_ALPHABET = "13456789abcdefghijkmnopqrstuwxyz"
ADDRESS_PREFIXES = ("nano_", "xrb_")
DEFAULT_PREFIX = "nano_"

ZERO_HASH = "0" * 64

_HEX_DIGITS = set(string.hexdigits)


def _check_hex32(value: str) -> bool:
    return isinstance(value, str) and len(value) == 64 and set(value) <= _HEX_DIGITS


def validate_secret(secret: str) -> bytes:
    """Return the 32 secret bytes or raise InvalidSecretFormat."""
    if not _check_hex32(secret):
        raise InvalidSecretFormat()
    return bytes.fromhex(secret)


def _signing_key(secret: str) -> ed25519_blake2b.SigningKey:
    return ed25519_blake2b.SigningKey(validate_secret(secret))


def derive_public_key(secret: str) -> str:
    """Derive the upper-case hex public key for a 64-hex-char secret."""
    verifying_key = _signing_key(secret).get_verifying_key()
    return verifying_key.to_bytes().hex().upper()


def _b32encode(value: int, length: int) -> str:
    chars = []
    for i in range(length):
        chars.append(ADDRESS_ALPHABET[(value >> (5 * (length - 1 - i))) & 0x1F])
    return "".join(chars)


def _b32decode(chars: str) -> int:
    value = 0
    for c in chars:
        idx = ADDRESS_ALPHABET.find(c)
        if idx < 0:
            raise ValueError(f"invalid character {c!r}")
        value = (value << 5) | idx
    return value


def _checksum(public_key: bytes) -> int:
    digest = hashlib.blake2b(public_key, digest_size=5).digest()
    return int.from_bytes(digest[::-1], "big")


def derive_address(public_key: str, prefix: str = DEFAULT_PREFIX) -> str:
    """Encode a hex public key as an account address."""
    if not _check_hex32(public_key):
        raise ValueError("public key must be 64 hex characters")
    key_bytes = bytes.fromhex(public_key)
    body = _b32encode(int.from_bytes(key_bytes, "big"), 52)
    return prefix + body + _b32encode(_checksum(key_bytes), 8)


def decode_address(address: str) -> str:
    """
    Decode an address back to its upper-case hex public key.

    Raises:
        InvalidAddress: unknown prefix, bad length, bad characters or
            checksum mismatch
    """
    if not isinstance(address, str):
        raise InvalidAddress(str(address), "not a string")

    for prefix in ADDRESS_PREFIXES:
        if address.startswith(prefix):
            encoded = address[len(prefix):]
            break
    else:
        raise InvalidAddress(address, "unknown prefix")

    if len(encoded) != 60:
        raise InvalidAddress(address, "wrong length")

    try:
        key_value = _b32decode(encoded[:52])
        checksum = _b32decode(encoded[52:])
    except ValueError as e:
        raise InvalidAddress(address, str(e)) from e

    # 52 chars carry 260 bits; the top 4 must be padding
    if key_value >> 256:
        raise InvalidAddress(address, "non-zero padding bits")

    key_bytes = key_value.to_bytes(32, "big")
    if _checksum(key_bytes) != checksum:
        raise InvalidAddress(address, "checksum mismatch")

    return key_bytes.hex().upper()


def normalize_address(address: str, prefix: str = DEFAULT_PREFIX) -> str:
    """Re-encode an address under one prefix, e.g. xrb_... -> nano_..."""
    return derive_address(decode_address(address), prefix)


def address_from_secret(secret: str, prefix: str = DEFAULT_PREFIX) -> str:
    """Shortcut for derive_address(derive_public_key(secret))."""
    return derive_address(derive_public_key(secret), prefix)


def sign(secret: str, block_hash: str) -> str:
    """Sign a 32-byte block hash, returning the 64-byte signature as hex."""
    signature = _signing_key(secret).sign(bytes.fromhex(block_hash))
    return signature.hex().upper()


def verify_signature(public_key: str, block_hash: str, signature: str) -> bool:
    """Check an ed25519-blake2b signature over a block hash."""
    verifying_key = ed25519_blake2b.VerifyingKey(bytes.fromhex(public_key))
    try:
        verifying_key.verify(bytes.fromhex(signature), bytes.fromhex(block_hash))
    except ed25519_blake2b.BadSignatureError:
        return False
    return True


def derive_secret_from_message(message: str) -> str:
    """
    Derive the secondary account secret from a message.

    Deterministic: the same message always maps to the same secondary
    account, which is what makes a stuck relay resumable.
    """
    digest = hashlib.blake2b(message.encode("utf-8"), digest_size=32)
    return digest.hexdigest().upper()


def seed_hash(secret: str) -> str:
    """
    Hash of a secret, safe to hand out.

    The transport token carries this value instead of the secret itself.
    """
    return hashlib.blake2b(validate_secret(secret), digest_size=32).hexdigest()
