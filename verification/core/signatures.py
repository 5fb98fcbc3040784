"""
Wallet signature verification for validator votes.

Wallets sign with Ed25519. A submitted signature is the hex encoding of the
32-byte verification key followed by the 64-byte signature; the wallet address
is the network prefix plus the hex BLAKE2b-224 digest of that key. The engine
only verifies, it never signs.

Usage:
    message = build_vote_message(request_id, validator_id, "approve", issued_at)
    check = verify(message, signature_hex, address, issued_at, now, tolerance)
    if not check.valid:
        print(check.reason)
"""

import binascii
import hashlib
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from cryptography.exceptions import InvalidSignature as CryptoInvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from .config import get_address_prefix

MALFORMED_SIGNATURE = "MALFORMED_SIGNATURE"
ADDRESS_MISMATCH = "ADDRESS_MISMATCH"
STALE_TIMESTAMP = "STALE_TIMESTAMP"
CRYPTOGRAPHIC_FAILURE = "CRYPTOGRAPHIC_FAILURE"

PUBLIC_KEY_BYTES = 32
SIGNATURE_BYTES = 64
KEY_HASH_BYTES = 28


@dataclass(frozen=True)
class SignatureCheck:
    valid: bool
    reason: Optional[str] = None


VALID = SignatureCheck(True)


def normalize_timestamp(value: datetime) -> datetime:
    """Naive datetimes are treated as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def build_vote_message(request_id: str, validator_id: str, decision: str, issued_at: datetime) -> str:
    """Canonical challenge a validator signs.

    Binds the request, the voter, the declared decision and the issuance time
    so a signature cannot be replayed for another vote or request.
    """
    issued = normalize_timestamp(issued_at).isoformat(timespec="seconds")
    return "\n".join([
        "verification-vote:v1",
        f"request:{request_id}",
        f"validator:{validator_id}",
        f"decision:{decision}",
        f"issued_at:{issued}",
    ])


def derive_address(public_key: bytes, prefix: Optional[str] = None) -> str:
    """Wallet address for an Ed25519 verification key."""
    digest = hashlib.blake2b(public_key, digest_size=KEY_HASH_BYTES).hexdigest()
    return f"{prefix or get_address_prefix()}{digest}"


def split_signature(signature_hex: str):
    """Decode ``key || signature`` hex into its two parts, or None if malformed."""
    if not isinstance(signature_hex, str):
        return None
    try:
        raw = binascii.unhexlify(signature_hex.strip())
    except (binascii.Error, ValueError):
        return None
    if len(raw) != PUBLIC_KEY_BYTES + SIGNATURE_BYTES:
        return None
    return raw[:PUBLIC_KEY_BYTES], raw[PUBLIC_KEY_BYTES:]


def verify(message: str, signature_hex: str, claimed_address: str, issued_at: datetime,
           now: datetime, tolerance: timedelta) -> SignatureCheck:
    """Check that ``claimed_address`` signed ``message`` recently enough."""
    parts = split_signature(signature_hex)
    if parts is None:
        return SignatureCheck(False, MALFORMED_SIGNATURE)
    public_key, signature = parts

    skew = abs(normalize_timestamp(now) - normalize_timestamp(issued_at))
    if skew > tolerance:
        return SignatureCheck(False, STALE_TIMESTAMP)

    # Only wallets on the configured network match
    if derive_address(public_key) != claimed_address:
        return SignatureCheck(False, ADDRESS_MISMATCH)

    try:
        Ed25519PublicKey.from_public_bytes(public_key).verify(signature, message.encode("utf-8"))
    except (CryptoInvalidSignature, ValueError):
        return SignatureCheck(False, CRYPTOGRAPHIC_FAILURE)

    return VALID
