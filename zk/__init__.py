"""Eligibility verification boundary and double-vote detection."""

from .verifier import (
    EligibilityVerifier,
    HmacAttestationVerifier,
    PublicInputs,
    issue_attestation,
)
from .nullifiers import NullifierSet

__all__ = [
    # Verifiers
    'EligibilityVerifier',
    'HmacAttestationVerifier',
    'PublicInputs',
    'issue_attestation',

    # Nullifiers
    'NullifierSet',
]
