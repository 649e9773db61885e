import pytest

from curve.babyjubjub import IDENTITY, SUBGROUP_ORDER, base_mul, random_scalar, scalar_mul
from voting.encoder import NUM_SLOTS, Ballot, Choice, VoteEncoder
from voting.errors import RandomnessReuseError


@pytest.fixture
def keypair():
    secret = random_scalar()
    return secret, base_mul(secret)


def decrypt(secret, ballot):
    return [M - scalar_mul(secret, R) for R, M in zip(ballot.R, ballot.M)]


@pytest.mark.parametrize("choice", list(Choice))
def test_ballot_is_one_hot(keypair, choice):
    secret, public = keypair
    ballot = VoteEncoder(public).encode(choice, 5)
    plaintexts = decrypt(secret, ballot)
    for slot in Choice:
        expected = base_mul(5) if slot == choice else IDENTITY
        assert plaintexts[slot] == expected


def test_zero_weight_ballot_is_all_identity(keypair):
    secret, public = keypair
    ballot = VoteEncoder(public).encode(Choice.NAY, 0)
    assert decrypt(secret, ballot) == [IDENTITY] * NUM_SLOTS


def test_slots_use_independent_masks(keypair):
    _, public = keypair
    ballot = VoteEncoder(public).encode(Choice.YAY, 3)
    assert len(set(ballot.R)) == NUM_SLOTS
    assert ballot.M[0] != ballot.M[1]


def test_explicit_randomness(keypair):
    _, public = keypair
    ballot, scalars = VoteEncoder(public).encode_with_randomness(Choice.ABSTAIN, 2, [11, 12, 13])
    assert scalars == (11, 12, 13)
    assert ballot.R == (base_mul(11), base_mul(12), base_mul(13))
    assert ballot.M[1] == scalar_mul(12, public)
    assert ballot.M[0] == scalar_mul(11, public) + base_mul(2)


def test_randomness_reuse_is_rejected(keypair):
    _, public = keypair
    encoder = VoteEncoder(public)
    encoder.encode(Choice.YAY, 1, [21, 22, 23])
    with pytest.raises(RandomnessReuseError):
        encoder.encode(Choice.NAY, 1, [24, 25, 21])
    with pytest.raises(RandomnessReuseError):
        encoder.encode(Choice.NAY, 1, [31, 31, 32])


def test_invalid_inputs(keypair):
    _, public = keypair
    encoder = VoteEncoder(public)
    with pytest.raises(ValueError):
        encoder.encode(Choice.YAY, -1)
    with pytest.raises(ValueError):
        encoder.encode(Choice.YAY, True)
    with pytest.raises(ValueError):
        encoder.encode(Choice.YAY, 1, [1, 2])
    with pytest.raises(ValueError):
        encoder.encode(Choice.YAY, 1, [0, 1, 2])
    with pytest.raises(ValueError):
        encoder.encode(Choice.YAY, 1, [1, 2, SUBGROUP_ORDER])
    with pytest.raises(ValueError):
        VoteEncoder(IDENTITY)


def test_ballots_add_slot_wise(keypair):
    secret, public = keypair
    encoder = VoteEncoder(public)
    total = Ballot.zero()
    for choice, weight in [(Choice.YAY, 1), (Choice.NAY, 2), (Choice.YAY, 3)]:
        total = total + encoder.encode(choice, weight)
    plaintexts = decrypt(secret, total)
    assert plaintexts == [IDENTITY, base_mul(2), base_mul(4)]


def test_flatten_layout(keypair):
    _, public = keypair
    ballot = VoteEncoder(public).encode(Choice.YAY, 1)
    values = ballot.flatten()
    assert len(values) == 4 * NUM_SLOTS
    assert values[:2] == [ballot.R[0].x, ballot.R[0].y]
    assert values[6:8] == [ballot.M[0].x, ballot.M[0].y]
    assert len(ballot.to_bytes()) == 32 * 2 * NUM_SLOTS


def test_ballot_requires_three_slots():
    with pytest.raises(ValueError):
        Ballot((IDENTITY,) * 2, (IDENTITY,) * 3)


def test_choice_parsing():
    assert Choice.parse("yay") is Choice.YAY
    assert Choice.parse(" Nay ") is Choice.NAY
    assert Choice.parse(0) is Choice.ABSTAIN
    assert Choice.YAY.bitmask == 4
    with pytest.raises(ValueError):
        Choice.parse("maybe")
    with pytest.raises(ValueError):
        Choice.parse(7)
