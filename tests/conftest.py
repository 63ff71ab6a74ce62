import os
import secrets
import sys

import pytest

# Ensure repository root is on sys.path for tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey  # noqa: E402

from cast_verify import CastVerifyOrchestrator, ElectionContext  # noqa: E402
from commitments.hashing import generate_secret, voter_commitment  # noqa: E402
from main import prepare_cast  # noqa: E402
from merkle.registry import VoterRegistry  # noqa: E402
from mpc.field import PrimeField  # noqa: E402
from mpc.secret_sharing import ShamirSecretSharing  # noqa: E402
from mpc.threshold import Authority  # noqa: E402
from zk.verifier import HmacAttestationVerifier  # noqa: E402


@pytest.fixture(scope="session")
def field():
    return PrimeField()


@pytest.fixture
def sharing(field):
    return ShamirSecretSharing(field)


@pytest.fixture
def leaves():
    return [secrets.token_bytes(32) for _ in range(8)]


@pytest.fixture
def signing_keys():
    return {f"authority_{i}": Ed25519PrivateKey.generate() for i in range(1, 6)}


@pytest.fixture
def signed_authorities(signing_keys):
    return [
        Authority(authority_id=aid, index=i + 1, public_key=key.public_key())
        for i, (aid, key) in enumerate(signing_keys.items())
    ]


class Election:
    """Registry, context and orchestrator for a small test election"""

    def __init__(self, num_voters=4):
        self.voter_secrets = [generate_secret() for _ in range(num_voters)]
        self.registry = VoterRegistry([voter_commitment(s) for s in self.voter_secrets])
        self.context = ElectionContext.for_registry(self.registry, threshold=3, total_authorities=5)
        self.attestation_key = secrets.token_bytes(32)
        self.orchestrator = CastVerifyOrchestrator(
            self.context, HmacAttestationVerifier(self.attestation_key))

    def request(self, secret, choice=1, attestation_key=None):
        return prepare_cast(self.registry, self.context,
                            attestation_key or self.attestation_key, secret, choice)

    def close(self):
        self.orchestrator.stream.close()


@pytest.fixture
def election():
    e = Election()
    yield e
    e.close()
