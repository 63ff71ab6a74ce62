"""
Credential Recovery
Lets a voter recover a lost 32-byte voting key from k of n guardians
(trusted people or the voter's own devices). Each recovery request is a
separate item on the voter's threshold share service, is time-locked, and
needs a quorum of guardian approvals before it can be executed.
"""

import hashlib
import logging
import secrets
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from commitments.hashing import constant_time_equal, require_length
from election_errors import CorruptStateError, RecoveryLockedError

from .field import PrimeField
from .secret_sharing import Share
from .threshold import Authority, ThresholdShareService

logger = logging.getLogger(__name__)


class RecoveryStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    CANCELLED = "cancelled"
    EXECUTED = "executed"


@dataclass
class Guardian:
    """Someone (or some device) holding one recovery share"""
    guardian_id: str
    name: str = ""
    contact: str = ""
    public_key: Optional[Ed25519PublicKey] = None
    active: bool = True


@dataclass
class RecoveryPlan:
    voter_id: str
    threshold: int
    guardians: List[Guardian]
    time_lock_hours: float
    key_digest: bytes
    service: ThresholdShareService
    created_at: float = field(default_factory=time.time)


@dataclass
class RecoveryRequest:
    request_id: str
    voter_id: str
    requested_at: float
    unlock_time: float
    approvals: Set[str] = field(default_factory=set)
    status: RecoveryStatus = RecoveryStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            'request_id': self.request_id,
            'voter_id': self.voter_id,
            'requested_at': self.requested_at,
            'unlock_time': self.unlock_time,
            'approvals': sorted(self.approvals),
            'status': self.status.value,
        }


class CredentialRecovery:
    """Time-locked k-of-n recovery of voter voting keys"""

    def __init__(self, time_lock_hours: float = 24, min_guardians: int = 2,
                 field: Optional[PrimeField] = None,
                 clock: Callable[[], float] = time.time):
        self.time_lock_hours = time_lock_hours
        self.min_guardians = min_guardians
        self.field = field or PrimeField()
        self.clock = clock

        self._plans: Dict[str, RecoveryPlan] = {}
        self._requests: Dict[str, RecoveryRequest] = {}

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def setup_recovery(self, voter_id: str, voting_key: bytes, guardians: Sequence[Guardian],
                       threshold: int, time_lock_hours: Optional[float] = None) -> Dict[str, Share]:
        """
        Split `voting_key` among `guardians`; returns the share for each guardian.

        Replaces any existing plan for the voter and cancels its open requests.
        """
        require_length(voting_key, "voting_key")
        if len(guardians) < self.min_guardians:
            raise ValueError(f"Need at least {self.min_guardians} guardians, got {len(guardians)}")
        if threshold > len(guardians):
            raise ValueError("Threshold cannot exceed number of guardians")

        authorities = [
            Authority(authority_id=g.guardian_id, index=i + 1, active=g.active, public_key=g.public_key)
            for i, g in enumerate(guardians)
        ]
        service = ThresholdShareService(threshold, authorities, self.field)
        shares = service.distribute_shares(service.sharing.secret_from_bytes(voting_key))

        self._cancel_open_requests(voter_id)
        self._plans[voter_id] = RecoveryPlan(
            voter_id=voter_id,
            threshold=threshold,
            guardians=list(guardians),
            time_lock_hours=self.time_lock_hours if time_lock_hours is None else time_lock_hours,
            key_digest=hashlib.sha256(voting_key).digest(),
            service=service,
            created_at=self.clock(),
        )
        logger.info(
            f"Recovery configured for voter {voter_id}: {threshold} of {len(guardians)} guardians")
        return shares

    def update_guardians(self, voter_id: str, voting_key: bytes,
                         new_guardians: Sequence[Guardian]) -> Dict[str, Share]:
        """Rotate guardians with a full re-share; the key must match the plan"""
        plan = self._require_plan(voter_id)
        require_length(voting_key, "voting_key")
        if not constant_time_equal(hashlib.sha256(voting_key).digest(), plan.key_digest):
            raise ValueError("Voting key does not match the configured recovery plan")
        return self.setup_recovery(
            voter_id, voting_key, new_guardians, plan.threshold, plan.time_lock_hours)

    def set_guardian_active(self, voter_id: str, guardian_id: str, active: bool) -> bool:
        plan = self._require_plan(voter_id)
        for guardian in plan.guardians:
            if guardian.guardian_id == guardian_id:
                guardian.active = active
                return plan.service.set_authority_active(guardian_id, active)
        return False

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def initiate_recovery(self, voter_id: str) -> RecoveryRequest:
        plan = self._require_plan(voter_id)
        now = self.clock()
        request = RecoveryRequest(
            request_id=secrets.token_hex(16),
            voter_id=voter_id,
            requested_at=now,
            unlock_time=now + plan.time_lock_hours * 3600,
        )
        self._requests[request.request_id] = request
        logger.info(
            f"Recovery request {request.request_id[:8]} opened for voter {voter_id}, "
            f"unlocks in {plan.time_lock_hours}h")
        return request

    def approve_recovery(self, request_id: str, guardian_id: str, share: Share,
                         signature: Optional[bytes] = None) -> bool:
        """Guardian hands back its share for this request"""
        request = self._requests.get(request_id)
        if request is None or request.status not in (RecoveryStatus.PENDING, RecoveryStatus.APPROVED):
            return False
        plan = self._plans.get(request.voter_id)
        if plan is None:
            return False

        if not plan.service.submit_partial(guardian_id, request_id, share, signature):
            return False

        request.approvals.add(guardian_id)
        if len(request.approvals) >= plan.threshold:
            request.status = RecoveryStatus.APPROVED
        logger.debug(
            f"Guardian {guardian_id} approved request {request_id[:8]} "
            f"({len(request.approvals)}/{plan.threshold})")
        return True

    def execute_recovery(self, request_id: str) -> bytes:
        """
        Reconstruct the voting key.

        Raises RecoveryLockedError before the time lock expires and
        InsufficientQuorum without enough approvals.
        """
        request = self._requests.get(request_id)
        if request is None:
            raise KeyError(f"Unknown recovery request {request_id}")
        if request.status in (RecoveryStatus.CANCELLED, RecoveryStatus.EXECUTED):
            raise ValueError(f"Recovery request is {request.status.value}")
        if self.clock() < request.unlock_time:
            raise RecoveryLockedError(request.unlock_time)

        plan = self._require_plan(request.voter_id)
        secret = plan.service.tally(request_id)
        voting_key = plan.service.sharing.secret_to_bytes(secret)
        if not constant_time_equal(hashlib.sha256(voting_key).digest(), plan.key_digest):
            raise CorruptStateError("Recovered key does not match the configured plan")

        request.status = RecoveryStatus.EXECUTED
        plan.service.clear_item(request_id)
        logger.info(f"Recovery request {request_id[:8]} executed for voter {request.voter_id}")
        return voting_key

    def cancel_recovery(self, request_id: str, voter_id: str) -> bool:
        request = self._requests.get(request_id)
        if request is None or request.voter_id != voter_id:
            return False
        if request.status == RecoveryStatus.EXECUTED:
            return False
        request.status = RecoveryStatus.CANCELLED
        plan = self._plans.get(voter_id)
        if plan is not None:
            plan.service.clear_item(request_id)
        logger.info(f"Recovery request {request_id[:8]} cancelled")
        return True

    def _cancel_open_requests(self, voter_id: str):
        for request in self._requests.values():
            if request.voter_id == voter_id and request.status in (
                    RecoveryStatus.PENDING, RecoveryStatus.APPROVED):
                request.status = RecoveryStatus.CANCELLED

    def _require_plan(self, voter_id: str) -> RecoveryPlan:
        plan = self._plans.get(voter_id)
        if plan is None:
            raise KeyError(f"No recovery configuration for voter {voter_id}")
        return plan

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_request(self, request_id: str) -> Optional[RecoveryRequest]:
        return self._requests.get(request_id)

    def check_readiness(self, voter_id: str) -> Dict[str, Any]:
        """Dry run: could this voter recover right now, and how long would it take"""
        plan = self._plans.get(voter_id)
        if plan is None:
            return {
                'can_recover': False,
                'active_guardians': 0,
                'required_guardians': 0,
                'time_lock_seconds': 0,
            }
        active = sum(1 for g in plan.guardians if g.active)
        return {
            'can_recover': active >= plan.threshold,
            'active_guardians': active,
            'required_guardians': plan.threshold,
            'time_lock_seconds': plan.time_lock_hours * 3600,
        }

    def get_stats(self) -> Dict[str, Any]:
        counts = {status: 0 for status in RecoveryStatus}
        for request in self._requests.values():
            counts[request.status] += 1
        guardian_total = sum(len(p.guardians) for p in self._plans.values())
        return {
            'total_plans': len(self._plans),
            'total_requests': len(self._requests),
            'pending_requests': counts[RecoveryStatus.PENDING],
            'approved_requests': counts[RecoveryStatus.APPROVED],
            'executed_requests': counts[RecoveryStatus.EXECUTED],
            'cancelled_requests': counts[RecoveryStatus.CANCELLED],
            'average_guardians': guardian_total / len(self._plans) if self._plans else 0,
        }


def generate_voting_key(field: Optional[PrimeField] = None) -> bytes:
    """Random 32-byte voting key that is representable in the recovery field"""
    field = field or PrimeField()
    return field.element_to_bytes(field.random_element())
