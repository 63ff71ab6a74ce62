"""Threshold secret sharing and its two callers: tally decryption and credential recovery."""

from .field import (
    PrimeField,
    mod_inverse,
    DEFAULT_MODULUS,
    ELEMENT_SIZE,
)
from .secret_sharing import (
    Share,
    ShamirSecretSharing,
)
from .threshold import (
    # Core service
    ThresholdShareService,
    Authority,
    Submission,

    # Signing helpers
    contribution_message,
    sign_contribution,
    share_digest,
)
from .tally_decryption import (
    TallyDecryptionCoordinator,
    SealedItem,
)
from .recovery import (
    CredentialRecovery,
    Guardian,
    RecoveryRequest,
    RecoveryStatus,
    generate_voting_key,
)

__all__ = [
    # Field
    'PrimeField',
    'mod_inverse',
    'DEFAULT_MODULUS',
    'ELEMENT_SIZE',

    # Shamir
    'Share',
    'ShamirSecretSharing',

    # Threshold service
    'ThresholdShareService',
    'Authority',
    'Submission',
    'contribution_message',
    'sign_contribution',
    'share_digest',

    # Callers
    'TallyDecryptionCoordinator',
    'SealedItem',
    'CredentialRecovery',
    'Guardian',
    'RecoveryRequest',
    'RecoveryStatus',
    'generate_voting_key',
]
