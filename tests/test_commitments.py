import hashlib

import pytest

from commitments.hashing import (
    EMPTY_LEAF,
    commit,
    constant_time_equal,
    encode_choice,
    from_hex,
    generate_randomness,
    generate_secret,
    leaf_hash,
    node_hash,
    nullifier,
    to_hex,
    verify_commitment,
    voter_commitment,
)
from election_errors import InvalidInputLength


def test_commitments_differ_for_distinct_randomness():
    value = encode_choice(2)
    seen = {commit(value, generate_randomness()) for _ in range(200)}
    assert len(seen) == 200


def test_commitment_opens_only_to_its_inputs():
    value, r = encode_choice(1), generate_randomness()
    c = commit(value, r)
    assert verify_commitment(c, value, r)
    assert not verify_commitment(c, encode_choice(0), r)
    assert not verify_commitment(c, value, generate_randomness())


def test_nullifier_is_deterministic():
    secret, election_id = generate_secret(), generate_secret()
    assert nullifier(secret, election_id) == nullifier(secret, election_id)
    assert nullifier(secret, election_id) != nullifier(secret, generate_secret())


def test_roles_are_domain_separated():
    data = bytes(range(32))
    outputs = {
        voter_commitment(data),
        nullifier(data, data),
        commit(data, data),
        leaf_hash(data),
    }
    assert len(outputs) == 4
    assert hashlib.sha256(data).digest() not in outputs


@pytest.mark.parametrize("length", [0, 16, 31, 33, 64])
def test_wrong_length_inputs_are_rejected(length):
    bad = b"\x01" * length
    good = generate_secret()
    with pytest.raises(InvalidInputLength) as excinfo:
        commit(bad, good)
    assert excinfo.value.field_name == "value"
    assert excinfo.value.expected == 32
    assert excinfo.value.actual == length

    with pytest.raises(InvalidInputLength):
        nullifier(good, bad)
    with pytest.raises(InvalidInputLength):
        voter_commitment(bad)


def test_non_bytes_input_is_a_type_error():
    with pytest.raises(TypeError):
        voter_commitment("00" * 32)


def test_hex_transport():
    value = generate_secret()
    assert from_hex(to_hex(value)) == value
    with pytest.raises(InvalidInputLength):
        from_hex("abcd")
    with pytest.raises(ValueError):
        from_hex("zz" * 32)


def test_encode_choice():
    assert encode_choice(0) == EMPTY_LEAF
    assert encode_choice(258)[-2:] == b"\x01\x02"
    with pytest.raises(ValueError):
        encode_choice(-1)


def test_node_rule_is_order_sensitive():
    a, b = leaf_hash(generate_secret()), leaf_hash(generate_secret())
    assert node_hash(a, b) != node_hash(b, a)
    assert constant_time_equal(node_hash(a, b), node_hash(a, b))
