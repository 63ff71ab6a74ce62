"""
Threshold Share Service
One k-of-n share service for every caller that needs a quorum to
reconstruct a secret: election authorities opening a tally, guardians
recovering a voter credential. Callers address work by an opaque item
identifier; the service only knows authorities, shares and submissions.

Only a digest of each distributed share is retained. An authority
contributes by handing its share back for a given item, signed with its
Ed25519 key when one is registered.
"""

import hashlib
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from commitments.hashing import constant_time_equal
from election_errors import CorruptStateError, InsufficientQuorum, InvalidInputLength

from .field import PrimeField
from .secret_sharing import ShamirSecretSharing, Share

logger = logging.getLogger(__name__)

CONTRIBUTION_DOMAIN = b"election-core/v1/threshold-contribution"

# ============================================================================
# DATA STRUCTURES
# ============================================================================


@dataclass
class Authority:
    """A share holder: election authority, guardian or device"""
    authority_id: str
    index: int
    active: bool = True
    public_key: Optional[Ed25519PublicKey] = None

    def __post_init__(self):
        if self.index <= 0:
            raise ValueError(f"Authority {self.authority_id} needs a positive index")

    def public_key_bytes(self) -> Optional[bytes]:
        if self.public_key is None:
            return None
        return self.public_key.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    def to_dict(self) -> Dict[str, Any]:
        key = self.public_key_bytes()
        return {
            'authority_id': self.authority_id,
            'index': self.index,
            'active': self.active,
            'public_key': key.hex() if key else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Authority':
        key_hex = data.get('public_key')
        public_key = Ed25519PublicKey.from_public_bytes(bytes.fromhex(key_hex)) if key_hex else None
        return cls(
            authority_id=data['authority_id'],
            index=int(data['index']),
            active=bool(data.get('active', True)),
            public_key=public_key,
        )


@dataclass
class Submission:
    authority_id: str
    share: Share
    timestamp: float = field(default_factory=time.time)


def contribution_message(item_id: str, share: Share) -> bytes:
    """Bytes an authority signs when contributing its share to an item"""
    item = item_id.encode("utf-8")
    return CONTRIBUTION_DOMAIN + len(item).to_bytes(4, "big") + item + share.to_bytes()


def sign_contribution(private_key: Ed25519PrivateKey, item_id: str, share: Share) -> bytes:
    return private_key.sign(contribution_message(item_id, share))


def share_digest(share: Share) -> bytes:
    return hashlib.sha256(share.to_bytes() + share.degree.to_bytes(4, "big")).digest()


# ============================================================================
# SERVICE
# ============================================================================


class ThresholdShareService:
    """k-of-n share bookkeeping for an opaque set of items"""

    def __init__(self, threshold: int, authorities: Sequence[Authority],
                 field: Optional[PrimeField] = None):
        if not authorities:
            raise ValueError("At least one authority is required")
        if threshold < 1 or threshold > len(authorities):
            raise ValueError(
                f"Threshold {threshold} must be in [1, {len(authorities)}]")

        ids = [a.authority_id for a in authorities]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Duplicate authority ids: {ids}")
        indices = [a.index for a in authorities]
        if len(set(indices)) != len(indices):
            raise ValueError(f"Duplicate authority indices: {indices}")

        self.threshold = threshold
        self.sharing = ShamirSecretSharing(field)
        self._authorities: Dict[str, Authority] = {a.authority_id: a for a in authorities}
        self._share_digests: Dict[str, bytes] = {}
        self._submissions: Dict[str, Dict[str, Submission]] = {}
        self._lock = threading.Lock()

        logger.info(
            f"Initialized ({threshold},{len(authorities)}) threshold share service")

    @classmethod
    def with_authority_ids(cls, threshold: int, authority_ids: Sequence[str],
                           field: Optional[PrimeField] = None) -> 'ThresholdShareService':
        """Build a service whose authorities are indexed 1..n in the given order"""
        authorities = [Authority(authority_id=aid, index=i + 1) for i, aid in enumerate(authority_ids)]
        return cls(threshold, authorities, field)

    @property
    def field(self) -> PrimeField:
        return self.sharing.field

    @property
    def authorities(self) -> List[Authority]:
        return list(self._authorities.values())

    def get_authority(self, authority_id: str) -> Optional[Authority]:
        return self._authorities.get(authority_id)

    # ------------------------------------------------------------------
    # Distribution
    # ------------------------------------------------------------------

    def distribute_shares(self, secret: int) -> Dict[str, Share]:
        """
        Split `secret` and bind one share to each authority's index.

        Calling this again is a full re-share: digests are replaced and all
        earlier submissions are discarded.
        """
        authorities = list(self._authorities.values())
        shares = self.sharing.split_at(secret, self.threshold, [a.index for a in authorities])

        distributed = {a.authority_id: share for a, share in zip(authorities, shares)}
        with self._lock:
            self._share_digests = {aid: share_digest(share) for aid, share in distributed.items()}
            self._submissions.clear()

        logger.info(
            f"Distributed {len(distributed)} shares, threshold {self.threshold}")
        return distributed

    # ------------------------------------------------------------------
    # Submissions
    # ------------------------------------------------------------------

    def submit_partial(self, authority_id: str, item_id: str, contribution: Share,
                       proof: Optional[bytes] = None) -> bool:
        """
        Record an authority's contribution for `item_id`.

        Accepted only from a known, active authority that was issued a
        share, when the contribution matches that share and, if the
        authority registered a key, `proof` is its signature over the
        contribution. A resubmission replaces the earlier one.
        """
        authority = self._authorities.get(authority_id)
        if authority is None:
            logger.warning(f"Rejected submission from unknown authority {authority_id}")
            return False
        if not authority.active:
            logger.warning(f"Rejected submission from inactive authority {authority_id}")
            return False

        with self._lock:
            expected_digest = self._share_digests.get(authority_id)
        if expected_digest is None:
            logger.warning(f"Rejected submission from {authority_id}: no share was issued")
            return False
        if contribution.index != authority.index:
            logger.warning(
                f"Rejected submission from {authority_id}: share index {contribution.index} "
                f"is not bound to this authority")
            return False
        if not constant_time_equal(share_digest(contribution), expected_digest):
            logger.warning(f"Rejected submission from {authority_id}: share does not match")
            return False

        if authority.public_key is not None:
            if proof is None:
                logger.warning(f"Rejected submission from {authority_id}: missing signature")
                return False
            try:
                authority.public_key.verify(proof, contribution_message(item_id, contribution))
            except InvalidSignature:
                logger.warning(f"Rejected submission from {authority_id}: bad signature")
                return False

        with self._lock:
            # a re-share may have landed since the digest was read
            current_digest = self._share_digests.get(authority_id)
            if current_digest is None or not constant_time_equal(current_digest, expected_digest):
                logger.warning(f"Rejected submission from {authority_id}: shares were reissued")
                return False
            item = self._submissions.setdefault(item_id, {})
            replaced = authority_id in item
            item[authority_id] = Submission(authority_id=authority_id, share=contribution)
            count = len(item)

        logger.debug(
            f"{'Replaced' if replaced else 'Recorded'} submission from {authority_id} "
            f"for item {item_id} ({count}/{self.threshold})")
        return True

    def submission_count(self, item_id: str) -> int:
        with self._lock:
            return len(self._submissions.get(item_id, {}))

    def can_tally(self, item_id: str) -> bool:
        return self.submission_count(item_id) >= self.threshold

    def tally(self, item_id: str) -> int:
        """Reconstruct the shared secret once a quorum has submitted for `item_id`"""
        with self._lock:
            submissions = list(self._submissions.get(item_id, {}).values())

        if len(submissions) < self.threshold:
            raise InsufficientQuorum(len(submissions), self.threshold, item_id)

        shares = sorted((s.share for s in submissions), key=lambda share: share.index)
        secret = self.sharing.combine(shares)
        logger.info(
            f"Reconstructed secret for item {item_id} from {len(shares)} authorities")
        return secret

    def clear_item(self, item_id: str):
        with self._lock:
            self._submissions.pop(item_id, None)

    # ------------------------------------------------------------------
    # Authority management
    # ------------------------------------------------------------------

    def set_authority_active(self, authority_id: str, active: bool) -> bool:
        """
        Mark an authority active or inactive.

        Deactivation blocks new submissions only; contributions already
        recorded stay valid for reconstruction.
        """
        authority = self._authorities.get(authority_id)
        if authority is None:
            return False
        authority.active = active
        logger.info(f"Authority {authority_id} {'activated' if active else 'deactivated'}")
        return True

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def tally_status(self) -> List[Dict[str, Any]]:
        with self._lock:
            items = {item_id: sorted(subs) for item_id, subs in self._submissions.items()}
        return [
            {
                'item_id': item_id,
                'submitted': len(authority_ids),
                'required': self.threshold,
                'ready': len(authority_ids) >= self.threshold,
                'authorities': authority_ids,
            }
            for item_id, authority_ids in items.items()
        ]

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            item_count = len(self._submissions)
            ready = sum(1 for subs in self._submissions.values() if len(subs) >= self.threshold)
            distributed = len(self._share_digests)
        return {
            'threshold': self.threshold,
            'total_authorities': len(self._authorities),
            'active_authorities': sum(1 for a in self._authorities.values() if a.active),
            'shares_distributed': distributed,
            'items': item_count,
            'items_ready': ready,
        }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def export_state(self) -> Dict[str, Any]:
        """Authority table, share digests and submissions"""
        with self._lock:
            return {
                'threshold': self.threshold,
                'modulus': hex(self.field.modulus),
                'authorities': [a.to_dict() for a in self._authorities.values()],
                'share_digests': {aid: d.hex() for aid, d in self._share_digests.items()},
                'submissions': {
                    item_id: {
                        aid: {'share': sub.share.to_dict(), 'timestamp': sub.timestamp}
                        for aid, sub in subs.items()
                    }
                    for item_id, subs in self._submissions.items()
                },
            }

    @classmethod
    def import_state(cls, data: Dict[str, Any],
                     field: Optional[PrimeField] = None) -> 'ThresholdShareService':
        """
        Restore a service from `export_state` output.

        Every stored submission must match its authority's share digest;
        any inconsistency raises CorruptStateError.
        """
        try:
            modulus = int(data['modulus'], 16)
            if field is None:
                field = PrimeField(modulus)
            elif field.modulus != modulus:
                raise CorruptStateError("Snapshot was taken over a different field")

            authorities = [Authority.from_dict(a) for a in data['authorities']]
            service = cls(int(data['threshold']), authorities, field)
            digests = {aid: bytes.fromhex(d) for aid, d in data['share_digests'].items()}
            submissions = {
                item_id: {
                    aid: Submission(
                        authority_id=aid,
                        share=Share.from_dict(entry['share']),
                        timestamp=float(entry['timestamp']),
                    )
                    for aid, entry in subs.items()
                }
                for item_id, subs in data['submissions'].items()
            }
        except (KeyError, TypeError, ValueError, InvalidInputLength) as e:
            raise CorruptStateError(f"Malformed threshold snapshot: {e}") from e

        unknown = set(digests) - set(service._authorities)
        if unknown:
            raise CorruptStateError(f"Share digests for unknown authorities: {sorted(unknown)}")

        for item_id, subs in submissions.items():
            for aid, sub in subs.items():
                digest = digests.get(aid)
                if digest is None or not constant_time_equal(share_digest(sub.share), digest):
                    raise CorruptStateError(
                        f"Submission from {aid} for item {item_id} does not match its share")

        service._share_digests = digests
        service._submissions = submissions
        return service
