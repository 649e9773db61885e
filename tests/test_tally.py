import dataclasses

import pytest

from curve.babyjubjub import BASE_POINT, SUBGROUP_ORDER, base_mul
from mpc.secret_sharing import (
    InsufficientSharesError,
    MPCError,
    RoundReplayError,
    TallyOutOfRangeError,
    lagrange_coefficients,
)
from mpc.tally import (
    PartialDecryptor,
    TallyAggregator,
    discrete_log,
    discrete_log_bsgs,
    discrete_log_linear,
    verify_partial,
)
from voting.encoder import Choice, VoteEncoder


def _aggregate(committee, votes, max_total_weight=None, round_id="tally-test"):
    joint = committee[1].joint_public_key
    encoder = VoteEncoder(joint)
    bound = sum(w for _, w in votes) if max_total_weight is None else max_total_weight
    aggregator = TallyAggregator(2, round_id, bound)
    for choice, weight in votes:
        aggregator.accept(encoder.encode(choice, weight))
    return aggregator


def _partials(committee, aggregator, members=(1, 2, 3)):
    return [PartialDecryptor(committee[i]).contribute(aggregator.aggregate, aggregator.round_id)
            for i in members]


def test_weighted_yay_votes(committee):
    aggregator = _aggregate(committee, [(Choice.YAY, 1), (Choice.YAY, 2), (Choice.YAY, 3)])
    result = aggregator.finalize(_partials(committee, aggregator), committee[1].public_key_shares)
    assert result.totals == (0, 0, 6)
    assert result.as_dict() == {'abstain': 0, 'nay': 0, 'yay': 6}
    assert result.members == (1, 2)


def test_mixed_votes(committee):
    votes = [(Choice.ABSTAIN, 4), (Choice.NAY, 2), (Choice.YAY, 3), (Choice.NAY, 1)]
    aggregator = _aggregate(committee, votes)
    result = aggregator.finalize(_partials(committee, aggregator, (2, 3)),
                                 committee[1].public_key_shares)
    assert result.totals == (4, 3, 3)
    assert result.members == (2, 3)


def test_no_ballots_tallies_to_zero(committee):
    aggregator = _aggregate(committee, [], max_total_weight=10)
    result = aggregator.finalize(_partials(committee, aggregator, (1, 3)),
                                 committee[1].public_key_shares)
    assert result.totals == (0, 0, 0)


def test_any_threshold_subset_gives_same_totals(committee):
    votes = [(Choice.NAY, 2), (Choice.YAY, 5)]
    joint = committee[1].joint_public_key
    ballots = [VoteEncoder(joint).encode(c, w) for c, w in votes]
    results = []
    for members in [(1, 2), (1, 3), (2, 3)]:
        aggregator = TallyAggregator(2, "tally-subset", 7)
        for ballot in ballots:
            aggregator.accept(ballot)
        partials = _partials(committee, aggregator, members)
        results.append(aggregator.finalize(partials, committee[1].public_key_shares).totals)
    assert results == [(0, 2, 5)] * 3


def test_below_threshold_then_recovers(committee):
    aggregator = _aggregate(committee, [(Choice.NAY, 2)])
    partials = _partials(committee, aggregator)
    with pytest.raises(InsufficientSharesError):
        aggregator.finalize(partials[:1], committee[1].public_key_shares)
    assert aggregator.result is None
    assert aggregator.finalize(partials, committee[1].public_key_shares).totals == (0, 2, 0)


def test_invalid_partial_is_dropped(committee):
    aggregator = _aggregate(committee, [(Choice.ABSTAIN, 3)])
    partials = _partials(committee, aggregator)
    forged = dataclasses.replace(
        partials[0], shares=(partials[0].shares[0] + BASE_POINT,) + partials[0].shares[1:])
    shares = committee[1].public_key_shares

    assert verify_partial(partials[0], shares[1], aggregator.aggregate)
    assert not aggregator.verify_partial(forged, shares[1])
    assert not verify_partial(partials[1], shares[1], aggregator.aggregate)

    with pytest.raises(InsufficientSharesError):
        aggregator.finalize([forged, partials[1]], shares)
    result = aggregator.finalize([forged, partials[1], partials[2]], shares)
    assert result.totals == (3, 0, 0)
    assert result.members == (2, 3)


def test_in_range_forgery_is_dropped(committee):
    aggregator = _aggregate(committee, [(Choice.YAY, 1)], max_total_weight=10)
    partials = _partials(committee, aggregator)
    # shift member 1's Yay share so the combined total would read 2 instead of 1
    inverse = pow(lagrange_coefficients([1, 2])[1], -1, SUBGROUP_ORDER)
    shifted = partials[0].shares[:2] + (partials[0].shares[2] - base_mul(inverse),)
    forged = dataclasses.replace(partials[0], shares=shifted)
    shares = committee[1].public_key_shares

    with pytest.raises(TypeError):
        aggregator.finalize([forged, partials[1]])
    with pytest.raises(InsufficientSharesError):
        aggregator.finalize([forged, partials[1]], shares)
    assert aggregator.result is None

    result = aggregator.finalize([forged, partials[1], partials[2]], shares)
    assert result.totals == (0, 0, 1)
    assert result.members == (2, 3)


def test_partial_without_verification_share_is_dropped(committee):
    aggregator = _aggregate(committee, [(Choice.NAY, 2)])
    partials = _partials(committee, aggregator)
    shares = {i: y for i, y in committee[1].public_key_shares.items() if i != 1}
    with pytest.raises(InsufficientSharesError):
        aggregator.finalize(partials[:2], shares)
    assert aggregator.finalize(partials, shares).members == (2, 3)


def test_wrong_round_and_duplicate_partials_are_dropped(committee):
    aggregator = _aggregate(committee, [(Choice.YAY, 1)])
    partials = _partials(committee, aggregator)
    stale = dataclasses.replace(partials[1], round_id="tally-old")
    with pytest.raises(InsufficientSharesError):
        aggregator.finalize([partials[0], partials[0], stale], committee[1].public_key_shares)


def test_total_outside_range(committee):
    aggregator = _aggregate(committee, [(Choice.YAY, 3), (Choice.YAY, 3)], max_total_weight=5)
    with pytest.raises(TallyOutOfRangeError):
        aggregator.finalize(_partials(committee, aggregator), committee[1].public_key_shares)
    assert aggregator.result is None


def test_contribution_replay(committee):
    aggregator = _aggregate(committee, [(Choice.NAY, 1)])
    decryptor = PartialDecryptor(committee[1])
    decryptor.contribute(aggregator.aggregate, aggregator.round_id)
    with pytest.raises(RoundReplayError):
        decryptor.contribute(aggregator.aggregate, aggregator.round_id)
    decryptor.contribute(aggregator.aggregate, "tally-next")


def test_finalized_tally_is_frozen(committee):
    aggregator = _aggregate(committee, [(Choice.NAY, 1)])
    result = aggregator.finalize(_partials(committee, aggregator), committee[1].public_key_shares)
    assert aggregator.finalize([], {}) is result
    joint = committee[1].joint_public_key
    with pytest.raises(MPCError):
        aggregator.accept(VoteEncoder(joint).encode(Choice.YAY, 1))


def test_aggregator_parameter_validation():
    with pytest.raises(ValueError):
        TallyAggregator(0, "t", 1)
    with pytest.raises(ValueError):
        TallyAggregator(1, "t", -1)


@pytest.mark.parametrize("k", [0, 1, 17, 63, 64, 65, 999, 1000])
def test_discrete_log(k):
    target = base_mul(k)
    assert discrete_log(target, 1000) == k
    assert discrete_log_bsgs(target, 1000) == k


def test_discrete_log_out_of_range():
    assert discrete_log_linear(base_mul(40), 30) is None
    assert discrete_log_bsgs(base_mul(1001), 1000) is None
    assert discrete_log(base_mul(20), 10) is None


def test_linear_and_bsgs_agree():
    for k in (0, 5, 30):
        assert discrete_log_linear(base_mul(k), 30) == discrete_log_bsgs(base_mul(k), 30) == k
