"""
Merkle proofs and the per-level node arena shared by every tree variant.

Node rule:
    level 0:   leaf_hash(commitment)
    level k:   node_hash(left, right), an odd trailing node paired with itself

Because of the self-pairing a root does not fix the leaf count: [a, b, c]
and [a, b, c, c] share a root. Consumers that need the count must carry it
alongside the root (registry snapshots and checkpoints do).

Proof bit-path: bit i of ``path_bits`` is set when the sibling at level i
sits on the RIGHT of the running hash.
"""

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from commitments.hashing import (
    DIGEST_SIZE,
    constant_time_equal,
    from_hex,
    leaf_hash,
    node_hash,
)
from election_errors import IndexOutOfRange, InvalidInputLength

logger = logging.getLogger(__name__)

EMPTY_TREE_ROOT = hashlib.sha256(b"").digest()


@dataclass(frozen=True)
class MerkleProof:
    """Inclusion proof: (leaf, siblings, path bits, claimed root)"""
    leaf: bytes
    siblings: Tuple[bytes, ...]
    path_bits: int
    root: bytes
    leaf_index: Optional[int] = field(default=None, compare=False)

    @property
    def depth(self) -> int:
        return len(self.siblings)

    def to_dict(self) -> Dict[str, Any]:
        """Wire form: hex siblings, path bit-mask as unsigned int, hex root"""
        data = {
            'leaf': self.leaf.hex(),
            'siblings': [s.hex() for s in self.siblings],
            'path_bits': self.path_bits,
            'root': self.root.hex(),
        }
        if self.leaf_index is not None:
            data['leaf_index'] = self.leaf_index
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MerkleProof':
        path_bits = int(data['path_bits'])
        if path_bits < 0:
            raise ValueError("path_bits must be unsigned")
        return cls(
            leaf=from_hex(data['leaf'], 'leaf'),
            siblings=tuple(from_hex(s, 'sibling') for s in data['siblings']),
            path_bits=path_bits,
            root=from_hex(data['root'], 'root'),
            leaf_index=data.get('leaf_index'),
        )


def compute_root(leaf: bytes, siblings: Sequence[bytes], path_bits: int) -> bytes:
    """Fold a leaf up through its siblings using the bit-path for ordering"""
    current = leaf_hash(leaf)
    for level, sibling in enumerate(siblings):
        if (path_bits >> level) & 1:
            current = node_hash(current, sibling)
        else:
            current = node_hash(sibling, current)
    return current


def verify_membership(proof: MerkleProof) -> bool:
    """
    Recompute the root from leaf and siblings and compare it with the
    claimed root. Malformed proofs verify as False rather than raising.
    """
    if len(proof.leaf) != DIGEST_SIZE or len(proof.root) != DIGEST_SIZE:
        return False
    if any(len(s) != DIGEST_SIZE for s in proof.siblings):
        return False
    if proof.path_bits < 0 or proof.path_bits >> len(proof.siblings):
        return False

    try:
        computed = compute_root(proof.leaf, proof.siblings, proof.path_bits)
    except InvalidInputLength:
        return False
    return constant_time_equal(computed, proof.root)


# ============================================================================
# NODE ARENA
# ============================================================================


def tree_height(leaf_count: int) -> int:
    """Number of hashing levels above the leaves: ceil(log2(n))"""
    if leaf_count <= 1:
        return 0
    return (leaf_count - 1).bit_length()


def build_levels(leaves: Sequence[bytes]) -> List[List[bytes]]:
    """
    Build the full node arena bottom-up in O(n).

    levels[0] holds leaf hashes, levels[-1] holds the single root.
    """
    level = [leaf_hash(leaf) for leaf in leaves]
    levels = [level]
    while len(level) > 1:
        parents = []
        for i in range(0, len(level), 2):
            left = level[i]
            right = level[i + 1] if i + 1 < len(level) else left
            parents.append(node_hash(left, right))
        levels.append(parents)
        level = parents
    return levels


def root_of_levels(levels: Sequence[Sequence[bytes]]) -> bytes:
    if not levels or not levels[0]:
        return EMPTY_TREE_ROOT
    return levels[-1][0]


def path_from_levels(levels: Sequence[Sequence[bytes]], index: int) -> Tuple[List[bytes], int]:
    """Collect (siblings, path_bits) for leaf `index` from an arena"""
    leaf_count = len(levels[0]) if levels else 0
    if index < 0 or index >= leaf_count:
        raise IndexOutOfRange(index, leaf_count)

    siblings: List[bytes] = []
    path_bits = 0
    position = index
    for level, row in enumerate(levels[:-1]):
        if position % 2 == 0:
            sibling = row[position + 1] if position + 1 < len(row) else row[position]
            path_bits |= 1 << level
        else:
            sibling = row[position - 1]
        siblings.append(sibling)
        position //= 2
    return siblings, path_bits
