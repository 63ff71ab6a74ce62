import pytest

from election_errors import CorruptStateError, InsufficientQuorum
from mpc.secret_sharing import Share
import mpc.threshold as threshold
from mpc.threshold import ThresholdShareService, sign_contribution


@pytest.fixture
def service(signed_authorities):
    return ThresholdShareService(3, signed_authorities)


def submit(service, signing_keys, shares, authority_id, item_id):
    share = shares[authority_id]
    proof = sign_contribution(signing_keys[authority_id], item_id, share)
    return service.submit_partial(authority_id, item_id, share, proof)


def test_quorum_reconstructs(service, signing_keys):
    secret = service.field.random_element()
    shares = service.distribute_shares(secret)

    for aid in ("authority_1", "authority_3"):
        assert submit(service, signing_keys, shares, aid, "item")
    assert not service.can_tally("item")
    with pytest.raises(InsufficientQuorum) as excinfo:
        service.tally("item")
    assert excinfo.value.current == 2
    assert excinfo.value.required == 3
    assert excinfo.value.item_id == "item"

    assert submit(service, signing_keys, shares, "authority_5", "item")
    assert service.can_tally("item")
    assert service.tally("item") == secret


def test_items_are_independent(service, signing_keys):
    shares = service.distribute_shares(42)
    for aid in ("authority_1", "authority_2", "authority_3"):
        submit(service, signing_keys, shares, aid, "a")
    submit(service, signing_keys, shares, "authority_4", "b")
    assert service.tally("a") == 42
    with pytest.raises(InsufficientQuorum):
        service.tally("b")


def test_resubmission_replaces(service, signing_keys):
    shares = service.distribute_shares(7)
    assert submit(service, signing_keys, shares, "authority_2", "item")
    assert submit(service, signing_keys, shares, "authority_2", "item")
    assert service.submission_count("item") == 1


def test_rejected_submissions(service, signing_keys):
    shares = service.distribute_shares(11)
    share = shares["authority_1"]

    assert not service.submit_partial("stranger", "item", share)
    # unsigned, signed for another item, signed by another authority
    assert not service.submit_partial("authority_1", "item", share)
    assert not service.submit_partial(
        "authority_1", "item", share, sign_contribution(signing_keys["authority_1"], "other", share))
    assert not service.submit_partial(
        "authority_1", "item", share, sign_contribution(signing_keys["authority_2"], "item", share))
    # someone else's share, or an altered share
    other = shares["authority_2"]
    assert not service.submit_partial(
        "authority_1", "item", other, sign_contribution(signing_keys["authority_1"], "item", other))
    forged = Share(index=share.index, value=(share.value + 1) % service.field.modulus, degree=share.degree)
    assert not service.submit_partial(
        "authority_1", "item", forged, sign_contribution(signing_keys["authority_1"], "item", forged))

    assert service.submission_count("item") == 0


def test_submission_before_distribution_is_rejected(service, signing_keys):
    share = Share(index=1, value=5, degree=2)
    proof = sign_contribution(signing_keys["authority_1"], "item", share)
    assert not service.submit_partial("authority_1", "item", share, proof)


def test_inactive_authority_cannot_submit(service, signing_keys):
    shares = service.distribute_shares(3)
    assert service.set_authority_active("authority_4", False)
    assert not submit(service, signing_keys, shares, "authority_4", "item")
    assert not service.set_authority_active("nobody", False)
    assert service.get_stats()['active_authorities'] == 4


def test_deactivation_keeps_recorded_contributions(service, signing_keys):
    shares = service.distribute_shares(2024)
    for aid in ("authority_1", "authority_2", "authority_3"):
        assert submit(service, signing_keys, shares, aid, "item")

    service.set_authority_active("authority_2", False)
    assert service.submission_count("item") == 3
    assert service.tally("item") == 2024
    assert not submit(service, signing_keys, shares, "authority_2", "other")

    service.set_authority_active("authority_2", True)
    assert submit(service, signing_keys, shares, "authority_2", "other")
    assert service.submission_count("other") == 1


def test_share_reissued_mid_submission_is_rejected(monkeypatch):
    service = ThresholdShareService.with_authority_ids(2, ["a", "b", "c"])
    old_shares = service.distribute_shares(111)
    new_shares = {}
    original_digest = threshold.share_digest
    reissued = []

    def digest_then_reshare(share):
        if not reissued:
            reissued.append(True)
            new_shares.update(service.distribute_shares(222))
        return original_digest(share)

    monkeypatch.setattr(threshold, "share_digest", digest_then_reshare)
    assert not service.submit_partial("a", "item", old_shares["a"])
    monkeypatch.undo()

    assert service.submission_count("item") == 0
    assert service.submit_partial("b", "item", new_shares["b"])
    assert service.submit_partial("c", "item", new_shares["c"])
    assert service.tally("item") == 222


def test_reshare_discards_submissions(service, signing_keys):
    shares = service.distribute_shares(1)
    submit(service, signing_keys, shares, "authority_1", "item")
    new_shares = service.distribute_shares(2)
    assert service.submission_count("item") == 0
    assert not submit(service, signing_keys, shares, "authority_2", "item")
    assert submit(service, signing_keys, new_shares, "authority_2", "item")


def test_unsigned_authorities():
    service = ThresholdShareService.with_authority_ids(2, ["g1", "g2", "g3"])
    shares = service.distribute_shares(99)
    assert service.submit_partial("g1", "x", shares["g1"])
    assert service.submit_partial("g3", "x", shares["g3"])
    assert service.tally("x") == 99


def test_invalid_configuration(signed_authorities):
    with pytest.raises(ValueError):
        ThresholdShareService(6, signed_authorities)
    with pytest.raises(ValueError):
        ThresholdShareService(0, signed_authorities)
    with pytest.raises(ValueError):
        ThresholdShareService.with_authority_ids(1, ["a", "a"])


def test_status_and_clear(service, signing_keys):
    shares = service.distribute_shares(8)
    for aid in ("authority_1", "authority_2", "authority_3"):
        submit(service, signing_keys, shares, aid, "ready")
    submit(service, signing_keys, shares, "authority_1", "waiting")

    status = {entry['item_id']: entry for entry in service.tally_status()}
    assert status['ready']['ready']
    assert status['waiting']['submitted'] == 1
    assert service.get_stats()['items_ready'] == 1

    service.clear_item("ready")
    assert service.submission_count("ready") == 0


def test_snapshot_restore(service, signing_keys):
    shares = service.distribute_shares(31337)
    for aid in ("authority_1", "authority_4"):
        submit(service, signing_keys, shares, aid, "item")

    restored = ThresholdShareService.import_state(service.export_state())
    assert restored.submission_count("item") == 2
    assert restored.get_authority("authority_5").public_key_bytes() == \
        service.get_authority("authority_5").public_key_bytes()
    assert submit(restored, signing_keys, shares, "authority_5", "item")
    assert restored.tally("item") == 31337


def test_snapshot_with_foreign_submission_fails_closed(service, signing_keys):
    shares = service.distribute_shares(5)
    submit(service, signing_keys, shares, "authority_1", "item")
    state = service.export_state()
    entry = state['submissions']['item']['authority_1']['share']
    entry['value'] = (int(entry['value'], 16) ^ 1).to_bytes(32, "big").hex()
    with pytest.raises(CorruptStateError):
        ThresholdShareService.import_state(state)


def test_malformed_snapshot_fails_closed(service):
    service.distribute_shares(5)
    state = service.export_state()
    del state['share_digests']
    with pytest.raises(CorruptStateError):
        ThresholdShareService.import_state(state)
