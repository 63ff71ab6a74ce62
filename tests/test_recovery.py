import pytest

from election_errors import InsufficientQuorum, InvalidInputLength, RecoveryLockedError
from mpc.recovery import CredentialRecovery, Guardian, RecoveryStatus, generate_voting_key


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance_hours(self, hours):
        self.now += hours * 3600


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def recovery(clock, field):
    return CredentialRecovery(time_lock_hours=24, field=field, clock=clock)


def guardians(n):
    return [Guardian(guardian_id=f"g{i}", name=f"Guardian {i}") for i in range(1, n + 1)]


def test_recovery_after_time_lock(recovery, clock, field):
    key = generate_voting_key(field)
    shares = recovery.setup_recovery("voter", key, guardians(5), threshold=3)
    request = recovery.initiate_recovery("voter")

    for gid in ("g1", "g4", "g5"):
        assert recovery.approve_recovery(request.request_id, gid, shares[gid])
    assert recovery.get_request(request.request_id).status is RecoveryStatus.APPROVED

    with pytest.raises(RecoveryLockedError) as excinfo:
        recovery.execute_recovery(request.request_id)
    assert excinfo.value.unlock_time == request.unlock_time

    clock.advance_hours(23)
    with pytest.raises(RecoveryLockedError):
        recovery.execute_recovery(request.request_id)

    clock.advance_hours(1)
    assert recovery.execute_recovery(request.request_id) == key
    assert recovery.get_request(request.request_id).status is RecoveryStatus.EXECUTED
    with pytest.raises(ValueError):
        recovery.execute_recovery(request.request_id)


def test_recovery_needs_quorum(recovery, clock, field):
    key = generate_voting_key(field)
    shares = recovery.setup_recovery("voter", key, guardians(4), threshold=3)
    request = recovery.initiate_recovery("voter")
    recovery.approve_recovery(request.request_id, "g2", shares["g2"])
    recovery.approve_recovery(request.request_id, "g3", shares["g3"])

    clock.advance_hours(48)
    with pytest.raises(InsufficientQuorum):
        recovery.execute_recovery(request.request_id)


def test_wrong_share_is_not_an_approval(recovery, field):
    shares = recovery.setup_recovery("voter", generate_voting_key(field), guardians(3), threshold=2)
    request = recovery.initiate_recovery("voter")
    assert not recovery.approve_recovery(request.request_id, "g1", shares["g2"])
    assert not recovery.approve_recovery(request.request_id, "stranger", shares["g1"])
    assert not recovery.approve_recovery("no-such-request", "g1", shares["g1"])
    assert recovery.get_request(request.request_id).approvals == set()


def test_cancelled_request_cannot_execute(recovery, clock, field):
    shares = recovery.setup_recovery("voter", generate_voting_key(field), guardians(3), threshold=2)
    request = recovery.initiate_recovery("voter")
    recovery.approve_recovery(request.request_id, "g1", shares["g1"])
    assert not recovery.cancel_recovery(request.request_id, "someone-else")
    assert recovery.cancel_recovery(request.request_id, "voter")
    assert not recovery.approve_recovery(request.request_id, "g2", shares["g2"])

    clock.advance_hours(48)
    with pytest.raises(ValueError):
        recovery.execute_recovery(request.request_id)
    with pytest.raises(KeyError):
        recovery.execute_recovery("unknown")


def test_guardian_rotation(recovery, clock, field):
    key = generate_voting_key(field)
    old_shares = recovery.setup_recovery("voter", key, guardians(3), threshold=2)
    stale = recovery.initiate_recovery("voter")

    with pytest.raises(ValueError):
        recovery.update_guardians("voter", generate_voting_key(field), guardians(4))
    new_shares = recovery.update_guardians("voter", key, guardians(4))
    assert recovery.get_request(stale.request_id).status is RecoveryStatus.CANCELLED

    request = recovery.initiate_recovery("voter")
    assert not recovery.approve_recovery(request.request_id, "g1", old_shares["g1"])
    assert recovery.approve_recovery(request.request_id, "g1", new_shares["g1"])
    assert recovery.approve_recovery(request.request_id, "g4", new_shares["g4"])
    clock.advance_hours(24)
    assert recovery.execute_recovery(request.request_id) == key


def test_readiness_tracks_active_guardians(recovery, field):
    recovery.setup_recovery("voter", generate_voting_key(field), guardians(3), threshold=2)
    assert recovery.check_readiness("voter")['can_recover']
    assert recovery.set_guardian_active("voter", "g1", False)
    assert recovery.set_guardian_active("voter", "g2", False)
    readiness = recovery.check_readiness("voter")
    assert not readiness['can_recover']
    assert readiness['active_guardians'] == 1
    assert not recovery.set_guardian_active("voter", "g9", False)
    assert not recovery.check_readiness("nobody")['can_recover']


def test_setup_validation(recovery, field):
    with pytest.raises(ValueError):
        recovery.setup_recovery("voter", generate_voting_key(field), guardians(1), threshold=1)
    with pytest.raises(ValueError):
        recovery.setup_recovery("voter", generate_voting_key(field), guardians(3), threshold=4)
    with pytest.raises(InvalidInputLength):
        recovery.setup_recovery("voter", b"short", guardians(3), threshold=2)
    with pytest.raises(KeyError):
        recovery.initiate_recovery("nobody")


def test_stats(recovery, field):
    recovery.setup_recovery("a", generate_voting_key(field), guardians(3), threshold=2)
    recovery.setup_recovery("b", generate_voting_key(field), guardians(5), threshold=3)
    recovery.initiate_recovery("a")
    stats = recovery.get_stats()
    assert stats['total_plans'] == 2
    assert stats['pending_requests'] == 1
    assert stats['average_guardians'] == 4
