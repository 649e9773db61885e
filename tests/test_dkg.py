import dataclasses
from itertools import combinations

import pytest

from conftest import run_dkg
from curve.babyjubjub import IDENTITY, base_mul
from mpc.dkg import (
    Complaint,
    DKGParticipant,
    DKGStateError,
    DKGStatus,
    Round2Message,
    agree_on_qualified_dealers,
    check_round1_message,
)
from mpc.secret_sharing import InsufficientSharesError, RoundReplayError, ThresholdSecretSharing


def _sum_contributions(round1, dealers):
    joint = IDENTITY
    for dealer in dealers:
        joint = joint + round1[dealer].commitment.public_contribution
    return joint


def test_honest_run_agrees_on_joint_key():
    members, states, round1 = run_dkg()
    assert all(m.status == DKGStatus.READY for m in members.values())
    keys = {s.joint_public_key for s in states.values()}
    assert len(keys) == 1
    assert states[1].qualified_dealers == frozenset({1, 2, 3})
    assert states[1].joint_public_key == _sum_contributions(round1, [1, 2, 3])


def test_key_shares_interpolate_to_joint_secret(committee):
    sss = ThresholdSecretSharing(2, 3)
    joint = committee[1].joint_public_key
    for subset in combinations(committee, 2):
        secret = sss.combine({i: committee[i].key_share.share for i in subset})
        assert base_mul(secret) == joint


def test_public_key_shares_match_key_shares(committee):
    for index, state in committee.items():
        for other in committee.values():
            assert other.public_key_share(index) == base_mul(state.key_share.share)


def test_answered_complaint_keeps_dealer():
    _, states, _ = run_dkg(corrupt={1: {2}})
    assert states[2].qualified_dealers == frozenset({1, 2, 3})
    assert len({s.joint_public_key for s in states.values()}) == 1
    sss = ThresholdSecretSharing(2, 3)
    secret = sss.combine({2: states[2].key_share.share, 3: states[3].key_share.share})
    assert base_mul(secret) == states[1].joint_public_key


def test_unanswered_complaint_excludes_dealer():
    _, states, round1 = run_dkg(corrupt={1: {2}}, unresponsive={1})
    for state in states.values():
        assert state.qualified_dealers == frozenset({2, 3})
        assert state.joint_public_key == _sum_contributions(round1, [2, 3])
    sss = ThresholdSecretSharing(2, 3)
    secret = sss.combine({1: states[1].key_share.share, 2: states[2].key_share.share})
    assert base_mul(secret) == states[3].joint_public_key


def test_too_few_qualified_dealers():
    with pytest.raises(InsufficientSharesError):
        run_dkg(threshold=3, num_members=3, corrupt={1: {2}}, unresponsive={1})


def test_bad_signature_excludes_dealer_without_complaints():
    members = {i: DKGParticipant(i, 2, 3, "dkg-sig") for i in (1, 2, 3)}
    directory = {i: m.public_keys for i, m in members.items()}
    round1 = {i: m.run_round1(directory) for i, m in members.items()}
    round1[3] = dataclasses.replace(round1[3], signature=b"\x00" * 64)

    assert check_round1_message(round1[3], directory[3], 2, "dkg-sig") == "bad commitment signature"

    round2 = {i: m.run_round2(round1, directory) for i, m in members.items()}
    assert all(not message.complaints for message in round2.values())

    qualified = agree_on_qualified_dealers(round1, round2, [], directory, 2, 3, "dkg-sig")
    assert qualified == frozenset({1, 2})
    states = {i: m.finalize(qualified) for i, m in members.items()}
    assert states[1].joint_public_key == _sum_contributions(round1, [1, 2])


def test_check_round1_message_reasons():
    members = {i: DKGParticipant(i, 2, 3, "dkg-x") for i in (1, 2, 3)}
    directory = {i: m.public_keys for i, m in members.items()}
    message = members[1].run_round1(directory)
    assert check_round1_message(message, directory[1], 2, "dkg-x") is None
    assert check_round1_message(message, None, 2, "dkg-x") == "unknown dealer"
    assert check_round1_message(message, directory[1], 2, "dkg-y").startswith("round mismatch")
    assert check_round1_message(message, directory[1], 3, "dkg-x").startswith("commitment width")


def test_complaint_filed_for_another_member_is_ignored():
    members = {i: DKGParticipant(i, 2, 3, "dkg-forge") for i in (1, 2, 3)}
    directory = {i: m.public_keys for i, m in members.items()}
    round1 = {i: m.run_round1(directory) for i, m in members.items()}
    round2 = {i: m.run_round2(round1, directory) for i, m in members.items()}
    # Member 3 tries to complain in member 2's name
    round2[3] = Round2Message(3, "dkg-forge", (Complaint(2, 1, "forged"),))

    assert members[1].answer_complaints(round2.values()) == []
    qualified = agree_on_qualified_dealers(round1, round2, [], directory, 2, 3, "dkg-forge")
    assert qualified == frozenset({1, 2, 3})


def test_steps_out_of_order_are_rejected():
    member = DKGParticipant(1, 2, 3, "dkg-order")
    with pytest.raises(DKGStateError):
        member.run_round2({}, {})
    with pytest.raises(DKGStateError):
        member.finalize({1, 2})
    with pytest.raises(DKGStateError):
        member.answer_complaints([])
    with pytest.raises(DKGStateError):
        member.run_round1({1: member.public_keys})
    assert member.status == DKGStatus.INIT


def test_round_replay_is_rejected():
    members = {i: DKGParticipant(i, 2, 3, "dkg-replay") for i in (1, 2, 3)}
    directory = {i: m.public_keys for i, m in members.items()}
    round1 = {i: m.run_round1(directory) for i, m in members.items()}
    with pytest.raises(RoundReplayError):
        members[1].run_round1(directory)

    members[1].run_round2(round1, directory)
    with pytest.raises(RoundReplayError):
        members[1].run_round2(round1, directory)


def test_finalize_below_threshold_fails():
    members = {i: DKGParticipant(i, 2, 3, "dkg-low") for i in (1, 2, 3)}
    directory = {i: m.public_keys for i, m in members.items()}
    round1 = {i: m.run_round1(directory) for i, m in members.items()}
    members[1].run_round2(round1, directory)
    with pytest.raises(InsufficientSharesError):
        members[1].finalize({1})
    assert members[1].status == DKGStatus.FAILED


def test_fixed_secret_contribution():
    members = {i: DKGParticipant(i, 2, 3, "dkg-fixed", secret=i) for i in (1, 2, 3)}
    directory = {i: m.public_keys for i, m in members.items()}
    round1 = {i: m.run_round1(directory) for i, m in members.items()}
    for m in members.values():
        m.run_round2(round1, directory)
    states = {i: m.finalize({1, 2, 3}) for i, m in members.items()}
    assert states[1].joint_public_key == base_mul(6)


def test_state_repr_hides_key_share(committee):
    text = repr(committee[1])
    assert str(committee[1].key_share.share) not in text
    assert "key_share" not in text
