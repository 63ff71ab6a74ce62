"""
Eligibility Proof Verification
The core never inspects eligibility proofs. It hands the proof blob and
the public inputs to whatever EligibilityVerifier the election was set up
with; a SNARK backend plugs in here.

HmacAttestationVerifier is a designated-verifier stand-in for deployments
and tests without a proving system: an attestation service holding the
shared key vouches for (root, nullifier, vote commitment, election id).
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac

from commitments.hashing import from_hex, require_length

logger = logging.getLogger(__name__)

ATTESTATION_DOMAIN = b"election-core/v1/eligibility-attestation"
MIN_KEY_SIZE = 32


@dataclass(frozen=True)
class PublicInputs:
    """Public side of an eligibility statement"""
    registry_root: bytes
    nullifier: bytes
    vote_commitment: bytes
    election_id: bytes

    def __post_init__(self):
        for name in ('registry_root', 'nullifier', 'vote_commitment', 'election_id'):
            object.__setattr__(self, name, require_length(getattr(self, name), name))

    def to_bytes(self) -> bytes:
        return self.registry_root + self.nullifier + self.vote_commitment + self.election_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            'registry_root': self.registry_root.hex(),
            'nullifier': self.nullifier.hex(),
            'vote_commitment': self.vote_commitment.hex(),
            'election_id': self.election_id.hex(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PublicInputs':
        return cls(
            registry_root=from_hex(data['registry_root'], 'registry_root'),
            nullifier=from_hex(data['nullifier'], 'nullifier'),
            vote_commitment=from_hex(data['vote_commitment'], 'vote_commitment'),
            election_id=from_hex(data['election_id'], 'election_id'),
        )


class EligibilityVerifier(ABC):
    """Pluggable verifier for externally generated eligibility proofs"""

    @abstractmethod
    def verify(self, proof: bytes, public_inputs: PublicInputs) -> bool:
        """Return True iff `proof` is valid for `public_inputs`"""


def _attestation_mac(key: bytes) -> hmac.HMAC:
    mac = hmac.HMAC(key, hashes.SHA256())
    mac.update(ATTESTATION_DOMAIN)
    return mac


def issue_attestation(key: bytes, public_inputs: PublicInputs) -> bytes:
    """Attestation tag accepted by HmacAttestationVerifier(key)"""
    mac = _attestation_mac(key)
    mac.update(public_inputs.to_bytes())
    return mac.finalize()


class HmacAttestationVerifier(EligibilityVerifier):
    """Designated-verifier attestations keyed with a shared secret"""

    def __init__(self, key: bytes):
        if len(key) < MIN_KEY_SIZE:
            raise ValueError(f"Attestation key must be at least {MIN_KEY_SIZE} bytes")
        self._key = bytes(key)

    def verify(self, proof: bytes, public_inputs: PublicInputs) -> bool:
        mac = _attestation_mac(self._key)
        mac.update(public_inputs.to_bytes())
        try:
            mac.verify(proof)
        except InvalidSignature:
            logger.debug("Eligibility attestation rejected")
            return False
        return True
