"""
Hash and Commitment Primitives
Deterministic derivation of voter commitments, vote commitments and
nullifiers from SHA-256, plus the leaf/node hashing rule shared by every
Merkle tree variant.

All public derivations take fixed 32-byte inputs and are pure functions:
identical inputs always yield identical outputs. For nullifiers this
determinism is the anti-double-vote mechanism.
"""

import hashlib
import logging
import secrets
from typing import Union

from cryptography.hazmat.primitives import constant_time

from election_errors import InvalidInputLength

logger = logging.getLogger(__name__)

# ============================================================================
# CONSTANTS
# ============================================================================

DIGEST_SIZE = 32
INPUT_SIZE = 32

# Domain tags keep outputs of different roles independent even for
# identical byte inputs
VOTE_COMMITMENT_DOMAIN = b"election-core/v1/vote-commitment"
VOTER_COMMITMENT_DOMAIN = b"election-core/v1/voter-commitment"
NULLIFIER_DOMAIN = b"election-core/v1/nullifier"

# Merkle prefixes (RFC 6962 style second-preimage separation)
LEAF_PREFIX = b"\x00"
NODE_PREFIX = b"\x01"

EMPTY_LEAF = bytes(DIGEST_SIZE)


# ============================================================================
# INPUT VALIDATION AND WIRE CODEC
# ============================================================================


def require_length(data: bytes, field_name: str, expected: int = INPUT_SIZE) -> bytes:
    """Return data unchanged if it is exactly `expected` bytes long"""
    if not isinstance(data, (bytes, bytearray)):
        raise TypeError(f"{field_name} must be bytes, got {type(data).__name__}")
    if len(data) != expected:
        raise InvalidInputLength(field_name, expected, len(data))
    return bytes(data)


def to_hex(value: bytes) -> str:
    """Hex-encode a 32-byte value for transport"""
    return require_length(value, "value").hex()


def from_hex(value: str, field_name: str = "value") -> bytes:
    """Decode a hex transport value, enforcing the 32-byte width"""
    try:
        raw = bytes.fromhex(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{field_name} is not valid hex: {e}") from e
    return require_length(raw, field_name)


def constant_time_equal(a: bytes, b: bytes) -> bool:
    return constant_time.bytes_eq(bytes(a), bytes(b))


# ============================================================================
# RANDOMNESS
# ============================================================================


def generate_secret() -> bytes:
    """Fresh 32-byte voter secret"""
    return secrets.token_bytes(INPUT_SIZE)


def generate_randomness() -> bytes:
    """Fresh 32-byte commitment randomness"""
    return secrets.token_bytes(INPUT_SIZE)


def encode_choice(choice: Union[int, bytes]) -> bytes:
    """Encode a ballot choice as a 32-byte big-endian value"""
    if isinstance(choice, (bytes, bytearray)):
        return require_length(choice, "choice")
    if choice < 0 or choice >= 1 << (8 * INPUT_SIZE):
        raise ValueError(f"Choice {choice} cannot be encoded in {INPUT_SIZE} bytes")
    return choice.to_bytes(INPUT_SIZE, "big")


# ============================================================================
# COMMITMENTS AND NULLIFIERS
# ============================================================================


def _tagged_hash(domain: bytes, *parts: bytes) -> bytes:
    h = hashlib.sha256()
    h.update(len(domain).to_bytes(1, "big"))
    h.update(domain)
    for part in parts:
        h.update(part)
    return h.digest()


def commit(value: bytes, randomness: bytes) -> bytes:
    """
    Vote commitment  C = H(choice || randomness).

    Hiding as long as the randomness stays private; binding under
    collision resistance of SHA-256.
    """
    require_length(value, "value")
    require_length(randomness, "randomness")
    return _tagged_hash(VOTE_COMMITMENT_DOMAIN, value, randomness)


def nullifier(secret: bytes, election_id: bytes) -> bytes:
    """Nullifier  N = H(voter_secret || election_id)"""
    require_length(secret, "secret")
    require_length(election_id, "election_id")
    return _tagged_hash(NULLIFIER_DOMAIN, secret, election_id)


def voter_commitment(secret: bytes) -> bytes:
    """Registry leaf  C = H(voter_secret)"""
    require_length(secret, "secret")
    return _tagged_hash(VOTER_COMMITMENT_DOMAIN, secret)


def verify_commitment(commitment: bytes, value: bytes, randomness: bytes) -> bool:
    """Check that a vote commitment opens to (value, randomness)"""
    require_length(commitment, "commitment", DIGEST_SIZE)
    return constant_time_equal(commit(value, randomness), commitment)


# ============================================================================
# MERKLE NODE RULE
# ============================================================================


def leaf_hash(leaf: bytes) -> bytes:
    """Level-0 node for a leaf commitment"""
    require_length(leaf, "leaf", DIGEST_SIZE)
    return hashlib.sha256(LEAF_PREFIX + leaf).digest()


def node_hash(left: bytes, right: bytes) -> bytes:
    """Interior node from its ordered children"""
    return hashlib.sha256(NODE_PREFIX + left + right).digest()
