import secrets

import pytest

from election_errors import InvalidInputLength
from zk.verifier import HmacAttestationVerifier, PublicInputs, issue_attestation


@pytest.fixture
def public_inputs():
    return PublicInputs(
        registry_root=secrets.token_bytes(32),
        nullifier=secrets.token_bytes(32),
        vote_commitment=secrets.token_bytes(32),
        election_id=secrets.token_bytes(32),
    )


def test_attestation_binds_all_public_inputs(public_inputs):
    key = secrets.token_bytes(32)
    verifier = HmacAttestationVerifier(key)
    proof = issue_attestation(key, public_inputs)
    assert verifier.verify(proof, public_inputs)

    for name in ('registry_root', 'nullifier', 'vote_commitment', 'election_id'):
        data = public_inputs.to_dict()
        data[name] = secrets.token_bytes(32).hex()
        assert not verifier.verify(proof, PublicInputs.from_dict(data))


def test_wrong_key_or_garbage_proof(public_inputs):
    verifier = HmacAttestationVerifier(secrets.token_bytes(32))
    assert not verifier.verify(issue_attestation(secrets.token_bytes(32), public_inputs), public_inputs)
    assert not verifier.verify(b"", public_inputs)


def test_validation():
    with pytest.raises(ValueError):
        HmacAttestationVerifier(b"too short")
    with pytest.raises(InvalidInputLength):
        PublicInputs(b"\x00" * 32, b"\x00" * 32, b"\x00" * 31, b"\x00" * 32)
