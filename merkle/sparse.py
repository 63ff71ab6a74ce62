"""
Sparse Merkle registry indexed by voter slot.

Sized for universes far larger than the actual voter count: only
non-default nodes are materialized, absent leaves read as a fixed
sentinel, and every operation touches O(depth) nodes.
"""

import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

from commitments.hashing import (
    EMPTY_LEAF,
    constant_time_equal,
    from_hex,
    leaf_hash,
    node_hash,
    require_length,
)
from election_errors import CorruptStateError, IndexOutOfRange, InvalidInputLength

from .proof import MerkleProof, verify_membership

logger = logging.getLogger(__name__)

MAX_DEPTH = 256


class SparseMerkleRegistry:
    """Sparse Merkle tree with bounds checking"""

    def __init__(self, depth: int = 32):
        if depth < 1 or depth > MAX_DEPTH:
            raise ValueError(f"Depth must be in [1, {MAX_DEPTH}], got {depth}")

        self.depth = depth
        self.capacity = 1 << depth

        # defaults[level] is the hash of an all-empty subtree at that level
        self._defaults: List[bytes] = [EMPTY_LEAF]
        for _ in range(depth):
            self._defaults.append(node_hash(self._defaults[-1], self._defaults[-1]))

        # (level, position) -> hash, only for non-default nodes
        self._nodes: Dict[Tuple[int, int], bytes] = {}
        self._leaves: Dict[int, bytes] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Node arena
    # ------------------------------------------------------------------

    def _node(self, level: int, position: int) -> bytes:
        return self._nodes.get((level, position), self._defaults[level])

    def _store(self, level: int, position: int, value: bytes):
        if value == self._defaults[level]:
            self._nodes.pop((level, position), None)
        else:
            self._nodes[(level, position)] = value

    def _check_index(self, index: int):
        if index < 0 or index >= self.capacity:
            raise IndexOutOfRange(index, self.capacity)

    def _update_path(self, index: int, level_zero: bytes):
        position = index
        self._store(0, position, level_zero)
        current = level_zero
        for level in range(self.depth):
            sibling = self._node(level, position ^ 1)
            if position % 2 == 0:
                current = node_hash(current, sibling)
            else:
                current = node_hash(sibling, current)
            position //= 2
            self._store(level + 1, position, current)

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def insert(self, index: int, commitment: bytes):
        """Place a commitment in slot `index`, replacing any previous one"""
        self._check_index(index)
        commitment = require_length(commitment, "commitment")
        with self._lock:
            self._leaves[index] = commitment
            self._update_path(index, leaf_hash(commitment))
        logger.debug(f"Sparse registry slot {index} set")

    def batch_insert(self, updates: Dict[int, bytes]):
        """Validate every update first, then apply them"""
        checked = {}
        for index, commitment in updates.items():
            self._check_index(index)
            checked[index] = require_length(commitment, "commitment")
        with self._lock:
            for index, commitment in checked.items():
                self._leaves[index] = commitment
                self._update_path(index, leaf_hash(commitment))

    def remove(self, index: int):
        """Reset slot `index` to the empty sentinel"""
        self._check_index(index)
        with self._lock:
            if self._leaves.pop(index, None) is not None:
                self._update_path(index, EMPTY_LEAF)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def root(self) -> bytes:
        with self._lock:
            return self._node(self.depth, 0)

    @property
    def leaf_count(self) -> int:
        return len(self._leaves)

    @property
    def stored_node_count(self) -> int:
        return len(self._nodes)

    def get(self, index: int) -> Optional[bytes]:
        self._check_index(index)
        return self._leaves.get(index)

    def prove_membership(self, index: int) -> MerkleProof:
        """Proof for an occupied slot; empty slots cannot be proven"""
        self._check_index(index)
        with self._lock:
            leaf = self._leaves.get(index)
            if leaf is None:
                raise IndexOutOfRange(index, self.capacity, "slot is empty")

            siblings = []
            path_bits = 0
            for level in range(self.depth):
                position = index >> level
                siblings.append(self._node(level, position ^ 1))
                if position % 2 == 0:
                    path_bits |= 1 << level

            return MerkleProof(
                leaf=leaf,
                siblings=tuple(siblings),
                path_bits=path_bits,
                root=self._node(self.depth, 0),
                leaf_index=index,
            )

    def verify_membership(self, proof: MerkleProof) -> bool:
        if len(proof.siblings) != self.depth:
            return False
        if not constant_time_equal(proof.root, self.root):
            return False
        return verify_membership(proof)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def export_state(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'depth': self.depth,
                'leaves': [[index, leaf.hex()] for index, leaf in sorted(self._leaves.items())],
                'root': self._node(self.depth, 0).hex(),
            }

    @classmethod
    def import_state(cls, data: Dict[str, Any]) -> 'SparseMerkleRegistry':
        """Rebuild from `export_state` output; root mismatch fails closed"""
        try:
            tree = cls(int(data['depth']))
            updates = {int(index): from_hex(leaf, 'leaf') for index, leaf in data['leaves']}
            declared_root = from_hex(data['root'], 'root')
        except (KeyError, TypeError, ValueError, InvalidInputLength) as e:
            raise CorruptStateError(f"Malformed sparse registry snapshot: {e}") from e

        try:
            tree.batch_insert(updates)
        except IndexOutOfRange as e:
            raise CorruptStateError(f"Sparse registry snapshot out of range: {e}") from e

        if not constant_time_equal(tree.root, declared_root):
            raise CorruptStateError("Sparse registry snapshot root mismatch")
        return tree
