import secrets

import pytest

from election_errors import CorruptStateError, IndexOutOfRange, InvalidInputLength
from merkle.proof import verify_membership
from merkle.sparse import SparseMerkleRegistry


def test_empty_tree_root_is_fixed():
    assert SparseMerkleRegistry(16).root == SparseMerkleRegistry(16).root
    assert SparseMerkleRegistry(16).root != SparseMerkleRegistry(17).root


def test_insert_and_prove():
    tree = SparseMerkleRegistry(32)
    commitment = secrets.token_bytes(32)
    tree.insert(123456, commitment)

    proof = tree.prove_membership(123456)
    assert proof.leaf == commitment
    assert proof.depth == 32
    assert verify_membership(proof)
    assert tree.verify_membership(proof)


def test_only_touched_paths_are_stored():
    tree = SparseMerkleRegistry(32)
    for index in (0, 7, 1 << 20, (1 << 32) - 1):
        tree.insert(index, secrets.token_bytes(32))
    assert tree.leaf_count == 4
    assert tree.stored_node_count <= 4 * 33


def test_root_is_independent_of_insert_order():
    updates = {i * 97: secrets.token_bytes(32) for i in range(10)}
    a, b = SparseMerkleRegistry(20), SparseMerkleRegistry(20)
    for index in sorted(updates):
        a.insert(index, updates[index])
    for index in sorted(updates, reverse=True):
        b.insert(index, updates[index])
    assert a.root == b.root


def test_remove_restores_previous_root():
    tree = SparseMerkleRegistry(16)
    tree.insert(1, secrets.token_bytes(32))
    before = tree.root
    tree.insert(2, secrets.token_bytes(32))
    assert tree.root != before
    tree.remove(2)
    assert tree.root == before
    assert tree.get(2) is None


def test_proof_goes_stale_after_update():
    tree = SparseMerkleRegistry(16)
    tree.insert(3, secrets.token_bytes(32))
    proof = tree.prove_membership(3)
    tree.insert(4, secrets.token_bytes(32))
    assert verify_membership(proof)
    assert not tree.verify_membership(proof)


def test_bounds_are_checked():
    tree = SparseMerkleRegistry(8)
    with pytest.raises(IndexOutOfRange):
        tree.insert(256, secrets.token_bytes(32))
    with pytest.raises(IndexOutOfRange):
        tree.insert(-1, secrets.token_bytes(32))
    with pytest.raises(IndexOutOfRange):
        tree.prove_membership(5)
    with pytest.raises(InvalidInputLength):
        tree.insert(0, b"\x00" * 16)
    with pytest.raises(ValueError):
        SparseMerkleRegistry(0)


def test_batch_insert_is_all_or_nothing():
    tree = SparseMerkleRegistry(8)
    before = tree.root
    with pytest.raises(IndexOutOfRange):
        tree.batch_insert({1: secrets.token_bytes(32), 999: secrets.token_bytes(32)})
    assert tree.root == before
    assert tree.leaf_count == 0


def test_snapshot_roundtrip_and_fail_closed():
    tree = SparseMerkleRegistry(12)
    for index in (5, 600, 4000):
        tree.insert(index, secrets.token_bytes(32))
    restored = SparseMerkleRegistry.import_state(tree.export_state())
    assert restored.root == tree.root

    tampered = tree.export_state()
    tampered['leaves'][0][1] = secrets.token_bytes(32).hex()
    with pytest.raises(CorruptStateError):
        SparseMerkleRegistry.import_state(tampered)

    out_of_range = tree.export_state()
    out_of_range['leaves'].append([1 << 12, secrets.token_bytes(32).hex()])
    with pytest.raises(CorruptStateError):
        SparseMerkleRegistry.import_state(out_of_range)

    short_leaf = tree.export_state()
    short_leaf['leaves'][0][1] = 'abcd'
    with pytest.raises(CorruptStateError):
        SparseMerkleRegistry.import_state(short_leaf)


def test_inserted_buffers_are_copied():
    tree = SparseMerkleRegistry(16)
    single = bytearray(secrets.token_bytes(32))
    tree.insert(3, single)
    batch = {9: bytearray(secrets.token_bytes(32))}
    tree.batch_insert(batch)

    single[0] ^= 0xFF
    batch[9][0] ^= 0xFF
    for index in (3, 9):
        proof = tree.prove_membership(index)
        assert type(proof.leaf) is bytes
        assert verify_membership(proof)
