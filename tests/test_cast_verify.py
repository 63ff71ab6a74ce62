import secrets
import threading
from dataclasses import replace

import pytest

from cast_verify import CastState, CastVerifyOrchestrator, ElectionContext, RejectionReason, VoteReceipt
from commitments.hashing import generate_secret, voter_commitment
from merkle.registry import VoterRegistry
from merkle.stream import IncrementalMerkleStream


def test_valid_cast_is_accepted(election):
    outcome = election.orchestrator.cast(election.request(election.voter_secrets[0]))
    assert outcome.accepted
    assert outcome.history == (CastState.REGISTERED, CastState.PROOF_PENDING, CastState.ACCEPTED)
    assert outcome.receipt.stream_index == 0
    assert len(election.context.nullifier_set) == 1
    assert election.orchestrator.verify_receipt(outcome.receipt)


def test_replay_is_a_double_vote(election):
    secret = election.voter_secrets[1]
    assert election.orchestrator.cast(election.request(secret, choice=0)).accepted
    outcome = election.orchestrator.cast(election.request(secret, choice=2))
    assert outcome.state is CastState.REJECTED
    assert outcome.reason is RejectionReason.DOUBLE_VOTE
    assert len(election.context.nullifier_set) == 1
    assert election.orchestrator.stream.leaf_count == 1


def test_concurrent_double_cast_accepts_exactly_one(election):
    secret = election.voter_secrets[0]
    requests = [election.request(secret, choice=c) for c in (0, 1)]
    barrier = threading.Barrier(len(requests))
    outcomes = []
    lock = threading.Lock()

    def cast(request):
        barrier.wait()
        outcome = election.orchestrator.cast(request)
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=cast, args=(r,)) for r in requests]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    states = sorted(o.state.value for o in outcomes)
    assert states == [CastState.ACCEPTED.value, CastState.REJECTED.value]
    assert [o.reason for o in outcomes if not o.accepted] == [RejectionReason.DOUBLE_VOTE]
    assert len(election.context.nullifier_set) == 1


def test_unregistered_voter_is_rejected_without_touching_nullifiers(election):
    outsider = generate_secret()
    rogue_registry = VoterRegistry([voter_commitment(outsider), secrets.token_bytes(32)])
    request = election.request(election.voter_secrets[0])
    rogue_proof = rogue_registry.prove_commitment(voter_commitment(outsider))

    outcome = election.orchestrator.cast(replace(request, membership_proof=rogue_proof))
    assert outcome.reason is RejectionReason.INVALID_MEMBERSHIP_PROOF
    assert outcome.history == (CastState.REGISTERED, CastState.REJECTED)
    assert len(election.context.nullifier_set) == 0


def test_proof_with_forged_root_is_rejected(election):
    request = election.request(election.voter_secrets[2])
    tampered = replace(request.membership_proof, leaf=secrets.token_bytes(32))
    outcome = election.orchestrator.cast(replace(request, membership_proof=tampered))
    assert outcome.reason is RejectionReason.INVALID_MEMBERSHIP_PROOF


def test_bad_eligibility_proof_is_rejected(election):
    request = election.request(election.voter_secrets[0], attestation_key=secrets.token_bytes(32))
    outcome = election.orchestrator.cast(request)
    assert outcome.reason is RejectionReason.INVALID_ELIGIBILITY_PROOF
    assert outcome.history == (CastState.REGISTERED, CastState.PROOF_PENDING, CastState.REJECTED)
    assert len(election.context.nullifier_set) == 0

    # the same voter can still cast correctly afterwards
    assert election.orchestrator.cast(election.request(election.voter_secrets[0])).accepted


def test_wrong_length_inputs_are_rejected(election):
    request = election.request(election.voter_secrets[0])
    outcome = election.orchestrator.cast(replace(request, nullifier=b"\x00" * 16))
    assert outcome.reason is RejectionReason.INVALID_INPUT_LENGTH
    outcome = election.orchestrator.cast(replace(request, vote_commitment=b"\x00" * 33))
    assert outcome.reason is RejectionReason.INVALID_INPUT_LENGTH
    assert len(election.context.nullifier_set) == 0


def test_closed_election_rejects_casts(election):
    election.orchestrator.close()
    outcome = election.orchestrator.cast(election.request(election.voter_secrets[0]))
    assert outcome.reason is RejectionReason.ELECTION_CLOSED
    assert election.context.to_dict()['closed']


def test_receipts_remain_verifiable_as_the_stream_grows(election):
    receipts = [election.orchestrator.cast(election.request(s)).receipt for s in election.voter_secrets]
    assert [r.stream_index for r in receipts] == [0, 1, 2, 3]
    for receipt in receipts:
        assert election.orchestrator.verify_receipt(VoteReceipt.from_dict(receipt.to_dict()))

    forged = replace(receipts[0], vote_commitment=secrets.token_bytes(32))
    assert not election.orchestrator.verify_receipt(forged)
    assert not election.orchestrator.verify_receipt(replace(receipts[0], stream_index=99))
    assert not election.orchestrator.verify_receipt(replace(receipts[0], nullifier=secrets.token_bytes(32)))
    assert not election.orchestrator.verify_receipt(replace(receipts[0], stream_root=receipts[3].stream_root))
    assert not election.orchestrator.verify_receipt(replace(receipts[2], stream_root=secrets.token_bytes(32)))


def test_bytearray_inputs_are_accepted(election):
    request = election.request(election.voter_secrets[0])
    outcome = election.orchestrator.cast(replace(
        request,
        nullifier=bytearray(request.nullifier),
        vote_commitment=bytearray(request.vote_commitment),
    ))
    assert outcome.accepted
    assert type(outcome.receipt.nullifier) is bytes
    assert election.orchestrator.verify_receipt(outcome.receipt)

    replay = election.orchestrator.cast(replace(request, nullifier=bytearray(request.nullifier)))
    assert replay.reason is RejectionReason.DOUBLE_VOTE


def test_close_shuts_down_the_default_stream(election):
    election.orchestrator.close()
    assert election.orchestrator.stream.is_closed


def test_close_leaves_a_caller_stream_open(election):
    stream = IncrementalMerkleStream()
    orchestrator = CastVerifyOrchestrator(election.context, election.orchestrator.verifier, stream=stream)
    orchestrator.close()
    assert not stream.is_closed
    stream.close()


def test_metrics_count_outcomes(election):
    secret = election.voter_secrets[0]
    election.orchestrator.cast(election.request(secret))
    election.orchestrator.cast(election.request(secret))
    metrics = election.orchestrator.get_metrics()
    assert metrics['outcomes'] == {'accepted': 1, 'double_vote': 1}
    assert metrics['stream']['leaf_count'] == 1


def test_context_validation():
    root = secrets.token_bytes(32)
    with pytest.raises(ValueError):
        ElectionContext.create(root, threshold=4, total_authorities=3)
    context = ElectionContext.create(root, 2, 3, election_id=b"\x01" * 32)
    assert context.election_id == b"\x01" * 32
    assert context.nullifier_set.election_id == context.election_id
