"""
Cast/Verify Orchestration
=========================
Decides whether a ballot is accepted and records its nullifier exactly once.

A cast moves REGISTERED -> PROOF_PENDING -> ACCEPTED, or to REJECTED with
a reason at the first failing step:

    1. the membership proof verifies against the published registry root
    2. the external eligibility proof verifies for the public inputs
    3. the nullifier is atomically checked and inserted

Rejections never touch the nullifier set. Accepted vote commitments are
appended to the election's incremental stream and the caller receives a
receipt (stream position and root) that auditors can re-verify later.
"""

import logging
import secrets
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from commitments.hashing import constant_time_equal, from_hex, require_length
from election_errors import DoubleVote, ElectionClosed, IndexOutOfRange, InvalidInputLength
from merkle.proof import MerkleProof, verify_membership
from merkle.registry import VoterRegistry
from merkle.stream import IncrementalMerkleStream
from utils.utils import PerformanceMonitor
from zk.nullifiers import NullifierSet
from zk.verifier import EligibilityVerifier, PublicInputs

logger = logging.getLogger(__name__)

# ============================================================================
# STATES AND RESULTS
# ============================================================================


class CastState(Enum):
    REGISTERED = "registered"
    PROOF_PENDING = "proof_pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class RejectionReason(Enum):
    INVALID_INPUT_LENGTH = "invalid_input_length"
    INVALID_MEMBERSHIP_PROOF = "invalid_membership_proof"
    INVALID_ELIGIBILITY_PROOF = "invalid_eligibility_proof"
    DOUBLE_VOTE = "double_vote"
    ELECTION_CLOSED = "election_closed"


@dataclass
class ElectionContext:
    """Everything fixed at election setup, plus the election's nullifier set"""
    election_id: bytes
    threshold: int
    total_authorities: int
    registry_root: bytes
    nullifier_set: NullifierSet
    created_at: float = field(default_factory=time.time)

    @classmethod
    def create(cls, registry_root: bytes, threshold: int, total_authorities: int,
               election_id: Optional[bytes] = None) -> 'ElectionContext':
        if not 1 <= threshold <= total_authorities:
            raise ValueError(f"Threshold {threshold} must be in [1, {total_authorities}]")
        election_id = require_length(election_id, "election_id") if election_id is not None \
            else secrets.token_bytes(32)
        registry_root = require_length(registry_root, "registry_root")
        logger.info(
            f"Election {election_id.hex()[:16]}... created: {threshold}-of-{total_authorities}, "
            f"registry root {registry_root.hex()[:16]}...")
        return cls(
            election_id=election_id,
            threshold=threshold,
            total_authorities=total_authorities,
            registry_root=registry_root,
            nullifier_set=NullifierSet(election_id),
        )

    @classmethod
    def for_registry(cls, registry: VoterRegistry, threshold: int, total_authorities: int,
                     election_id: Optional[bytes] = None) -> 'ElectionContext':
        return cls.create(registry.root, threshold, total_authorities, election_id)

    @property
    def is_closed(self) -> bool:
        return self.nullifier_set.is_closed

    def close(self):
        self.nullifier_set.close()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'election_id': self.election_id.hex(),
            'threshold': self.threshold,
            'total_authorities': self.total_authorities,
            'registry_root': self.registry_root.hex(),
            'votes_recorded': len(self.nullifier_set),
            'closed': self.is_closed,
        }


@dataclass(frozen=True)
class CastRequest:
    membership_proof: MerkleProof
    nullifier: bytes
    vote_commitment: bytes
    eligibility_proof: bytes


@dataclass(frozen=True)
class VoteReceipt:
    """Where an accepted vote landed in the election stream"""
    election_id: bytes
    nullifier: bytes
    vote_commitment: bytes
    stream_index: int
    stream_root: bytes
    timestamp: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'election_id': self.election_id.hex(),
            'nullifier': self.nullifier.hex(),
            'vote_commitment': self.vote_commitment.hex(),
            'stream_index': self.stream_index,
            'stream_root': self.stream_root.hex(),
            'timestamp': self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VoteReceipt':
        return cls(
            election_id=from_hex(data['election_id'], 'election_id'),
            nullifier=from_hex(data['nullifier'], 'nullifier'),
            vote_commitment=from_hex(data['vote_commitment'], 'vote_commitment'),
            stream_index=int(data['stream_index']),
            stream_root=from_hex(data['stream_root'], 'stream_root'),
            timestamp=float(data['timestamp']),
        )


@dataclass(frozen=True)
class CastOutcome:
    state: CastState
    history: Tuple[CastState, ...]
    reason: Optional[RejectionReason] = None
    receipt: Optional[VoteReceipt] = None
    detail: str = ""

    @property
    def accepted(self) -> bool:
        return self.state is CastState.ACCEPTED


# ============================================================================
# ORCHESTRATOR
# ============================================================================


class CastVerifyOrchestrator:
    """Accept/reject state machine for one election"""

    def __init__(self, context: ElectionContext, verifier: EligibilityVerifier,
                 stream: Optional[IncrementalMerkleStream] = None,
                 monitor: Optional[PerformanceMonitor] = None):
        self.context = context
        self.verifier = verifier
        self._owns_stream = stream is None
        self.stream = stream if stream is not None else IncrementalMerkleStream()
        self.monitor = monitor

        self._counts: Counter = Counter()
        self._counts_lock = threading.Lock()

    def cast(self, request: CastRequest) -> CastOutcome:
        if self.monitor is None:
            return self._cast(request)
        with self.monitor.start_operation("cast"):
            return self._cast(request)

    def _cast(self, request: CastRequest) -> CastOutcome:
        history = [CastState.REGISTERED]

        try:
            voter_nullifier = require_length(request.nullifier, "nullifier")
            vote_commitment = require_length(request.vote_commitment, "vote_commitment")
            public_inputs = PublicInputs(
                registry_root=self.context.registry_root,
                nullifier=voter_nullifier,
                vote_commitment=vote_commitment,
                election_id=self.context.election_id,
            )
        except (InvalidInputLength, TypeError) as e:
            return self._reject(history, RejectionReason.INVALID_INPUT_LENGTH, str(e))

        if self.context.is_closed:
            return self._reject(history, RejectionReason.ELECTION_CLOSED, "election is closed")

        # (1) voter commitment is in the published registry
        proof = request.membership_proof
        if not constant_time_equal(proof.root, self.context.registry_root) or \
                not verify_membership(proof):
            return self._reject(history, RejectionReason.INVALID_MEMBERSHIP_PROOF,
                                "membership proof does not match the registry root")

        # (2) external eligibility proof
        history.append(CastState.PROOF_PENDING)
        if not self.verifier.verify(request.eligibility_proof, public_inputs):
            return self._reject(history, RejectionReason.INVALID_ELIGIBILITY_PROOF,
                                "eligibility proof rejected")

        # (3) atomic nullifier check-and-insert
        try:
            self.context.nullifier_set.check_and_insert(voter_nullifier)
        except DoubleVote as e:
            return self._reject(history, RejectionReason.DOUBLE_VOTE, str(e))
        except ElectionClosed as e:
            return self._reject(history, RejectionReason.ELECTION_CLOSED, str(e))

        update = self.stream.append(vote_commitment)
        receipt = VoteReceipt(
            election_id=self.context.election_id,
            nullifier=voter_nullifier,
            vote_commitment=vote_commitment,
            stream_index=update.leaf_index,
            stream_root=update.new_root,
            timestamp=update.timestamp,
        )

        history.append(CastState.ACCEPTED)
        self._count(CastState.ACCEPTED.value)
        logger.info(
            f"Vote accepted at stream position {receipt.stream_index}, "
            f"root {receipt.stream_root.hex()[:16]}...")
        return CastOutcome(state=CastState.ACCEPTED, history=tuple(history), receipt=receipt)

    def _reject(self, history, reason: RejectionReason, detail: str) -> CastOutcome:
        history.append(CastState.REJECTED)
        self._count(reason.value)
        logger.warning(f"Vote rejected: {reason.value} ({detail})")
        return CastOutcome(state=CastState.REJECTED, history=tuple(history),
                           reason=reason, detail=detail)

    def _count(self, key: str):
        with self._counts_lock:
            self._counts[key] += 1

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def verify_receipt(self, receipt: VoteReceipt) -> bool:
        """
        Re-verify an accepted vote: its commitment sits at the receipt's
        stream position under the current stream root, the receipt's root is
        the one the stream had right after that append, and its nullifier is
        recorded for this election.
        """
        if not constant_time_equal(receipt.election_id, self.context.election_id):
            return False
        if not self.context.nullifier_set.contains(receipt.nullifier):
            return False
        try:
            proof = self.stream.prove_membership(receipt.stream_index)
            root_after_append = self.stream.root_at(receipt.stream_index + 1)
        except IndexOutOfRange:
            return False
        if not constant_time_equal(root_after_append, receipt.stream_root):
            return False
        if not constant_time_equal(proof.leaf, receipt.vote_commitment):
            return False
        return verify_membership(proof)

    def close(self):
        """Close the election; later casts are rejected"""
        self.context.close()
        if self._owns_stream:
            self.stream.close()
        logger.info(
            f"Election {self.context.election_id.hex()[:16]}... closed after "
            f"{self.stream.leaf_count} accepted votes")

    def get_metrics(self) -> Dict[str, Any]:
        with self._counts_lock:
            counts = dict(self._counts)
        metrics = {
            'election': self.context.to_dict(),
            'outcomes': counts,
            'stream': self.stream.get_stats(),
        }
        if self.monitor is not None:
            metrics['performance'] = self.monitor.get_summary()
        return metrics
