"""Merkle trees over voter and vote commitments."""

from .proof import (
    MerkleProof,
    compute_root,
    verify_membership,
    tree_height,
    EMPTY_TREE_ROOT,
)
from .registry import (
    LeafOrdering,
    VoterRegistry,
    build_registry,
    canonicalize_leaves,
)
from .sparse import SparseMerkleRegistry
from .stream import (
    Checkpoint,
    MerkleUpdate,
    IncrementalMerkleStream,
    StreamManager,
)

__all__ = [
    # Proofs
    'MerkleProof',
    'compute_root',
    'verify_membership',
    'tree_height',
    'EMPTY_TREE_ROOT',

    # Static registry
    'LeafOrdering',
    'VoterRegistry',
    'build_registry',
    'canonicalize_leaves',

    # Sparse registry
    'SparseMerkleRegistry',

    # Incremental stream
    'Checkpoint',
    'MerkleUpdate',
    'IncrementalMerkleStream',
    'StreamManager',
]
