"""Hash and commitment primitives for the election core."""

from .hashing import (
    # Derivations
    commit,
    nullifier,
    voter_commitment,
    verify_commitment,

    # Merkle node rule
    leaf_hash,
    node_hash,

    # Helpers
    encode_choice,
    generate_secret,
    generate_randomness,
    require_length,
    to_hex,
    from_hex,
    constant_time_equal,

    # Constants
    DIGEST_SIZE,
    EMPTY_LEAF,
)

__all__ = [
    'commit',
    'nullifier',
    'voter_commitment',
    'verify_commitment',
    'leaf_hash',
    'node_hash',
    'encode_choice',
    'generate_secret',
    'generate_randomness',
    'require_length',
    'to_hex',
    'from_hex',
    'constant_time_equal',
    'DIGEST_SIZE',
    'EMPTY_LEAF',
]
