"""
Static voter registry.

Built once per election from the finalized voter-commitment list. The
leaf list goes through an explicit canonicalization step before the tree
is built, so two registries over the same multiset of commitments publish
the same root no matter what order the registrar supplied them in.

Once built the registry is immutable: membership proofs are served from a
frozen arena without locking.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from commitments.hashing import constant_time_equal, from_hex, require_length
from election_errors import CorruptStateError, InvalidInputLength, InvalidMembershipProof

from .proof import (
    MerkleProof,
    build_levels,
    path_from_levels,
    root_of_levels,
    verify_membership,
)

logger = logging.getLogger(__name__)


class LeafOrdering(Enum):
    """How leaves are positioned before the tree is built"""
    SORTED = "sorted"          # canonical: byte-wise ascending
    INSERTION = "insertion"    # caller order, as an append-only stream sees it


def canonicalize_leaves(leaves: Sequence[bytes], ordering: LeafOrdering) -> List[bytes]:
    """Apply the leaf ordering discipline"""
    if ordering is LeafOrdering.SORTED:
        return sorted(leaves)
    return list(leaves)


class VoterRegistry:
    """Immutable Merkle registry over voter commitments"""

    def __init__(self, leaves: Sequence[bytes], ordering: LeafOrdering = LeafOrdering.SORTED):
        validated = [require_length(leaf, "leaf") for leaf in leaves]

        self.ordering = ordering
        self._leaves: Tuple[bytes, ...] = tuple(canonicalize_leaves(validated, ordering))
        self._levels = tuple(tuple(row) for row in build_levels(self._leaves))
        self._root = root_of_levels(self._levels)

        # Duplicates are allowed; lookups resolve to the first position
        self._index: Dict[bytes, int] = {}
        for position, leaf in enumerate(self._leaves):
            self._index.setdefault(leaf, position)

        logger.info(
            f"Built voter registry: {len(self._leaves)} leaves, height {self.height}, "
            f"root {self._root.hex()[:16]}...")

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def root(self) -> bytes:
        return self._root

    @property
    def leaf_count(self) -> int:
        return len(self._leaves)

    @property
    def height(self) -> int:
        return len(self._levels) - 1

    @property
    def leaves(self) -> Tuple[bytes, ...]:
        return self._leaves

    def index_of(self, commitment: bytes) -> Optional[int]:
        return self._index.get(commitment)

    def contains(self, commitment: bytes) -> bool:
        return commitment in self._index

    def index_lookup(self) -> Dict[bytes, int]:
        return dict(self._index)

    # ------------------------------------------------------------------
    # Proofs
    # ------------------------------------------------------------------

    def prove_membership(self, index: int) -> MerkleProof:
        """O(log n) proof for the leaf at `index`"""
        siblings, path_bits = path_from_levels(self._levels, index)
        return MerkleProof(
            leaf=self._leaves[index],
            siblings=tuple(siblings),
            path_bits=path_bits,
            root=self._root,
            leaf_index=index,
        )

    def prove_commitment(self, commitment: bytes) -> MerkleProof:
        """Proof for a commitment, looked up by value"""
        index = self.index_of(commitment)
        if index is None:
            raise InvalidMembershipProof(
                f"Commitment {commitment.hex()[:16]}... is not registered")
        return self.prove_membership(index)

    def verify_membership(self, proof: MerkleProof) -> bool:
        """Verify a proof and pin it to this registry's published root"""
        if not constant_time_equal(proof.root, self._root):
            return False
        return verify_membership(proof)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def export_state(self) -> Dict[str, Any]:
        return {
            'leaves': [leaf.hex() for leaf in self._leaves],
            'leaf_count': len(self._leaves),
            'root': self._root.hex(),
            'ordering': self.ordering.value,
        }

    @classmethod
    def import_state(cls, data: Dict[str, Any]) -> 'VoterRegistry':
        """
        Restore a registry from `export_state` output.

        Fails closed: any inconsistency between the leaf list, the declared
        count and the declared root raises CorruptStateError and no registry
        is returned.
        """
        try:
            leaves = [from_hex(leaf, 'leaf') for leaf in data['leaves']]
            declared_count = int(data['leaf_count'])
            declared_root = from_hex(data['root'], 'root')
            ordering = LeafOrdering(data.get('ordering', LeafOrdering.SORTED.value))
        except (KeyError, TypeError, ValueError, InvalidInputLength) as e:
            raise CorruptStateError(f"Malformed registry snapshot: {e}") from e

        if len(leaves) != declared_count:
            raise CorruptStateError(
                f"Registry snapshot truncated: {len(leaves)} of {declared_count} leaves")

        registry = cls(leaves, ordering=ordering)
        if not constant_time_equal(registry.root, declared_root):
            raise CorruptStateError("Registry snapshot root mismatch")
        return registry

    def __repr__(self) -> str:
        return (
            f"VoterRegistry(leaves={self.leaf_count}, height={self.height}, "
            f"root={self._root.hex()[:16]}...)")


def build_registry(
    leaves: Sequence[bytes],
    ordering: LeafOrdering = LeafOrdering.SORTED,
) -> Tuple[bytes, Dict[bytes, int]]:
    """Build a registry and return (root, commitment -> index lookup)"""
    registry = VoterRegistry(leaves, ordering=ordering)
    return registry.root, registry.index_lookup()
