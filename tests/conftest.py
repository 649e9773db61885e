import dataclasses
import os
import sys

import pytest
import requests

# Ensure the repository root is importable for tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from config.config import SystemConfig, ZKConfig  # noqa: E402
from curve.babyjubjub import random_scalar  # noqa: E402
from mpc.dkg import DKGParticipant, agree_on_qualified_dealers  # noqa: E402
from mpc.share_transport import seal_share  # noqa: E402


def corrupt_share(message, recipient_keys):
    """Replace the share sealed for one recipient with a random scalar"""
    shares = tuple(
        seal_share(message.dealer_index, recipient_keys, random_scalar(), message.round_id)
        if s.recipient_index == recipient_keys.index else s
        for s in message.encrypted_shares
    )
    return dataclasses.replace(message, encrypted_shares=shares)


def run_dkg(threshold=2, num_members=3, round_id="dkg-test", corrupt=None, unresponsive=()):
    """Drive every member through both rounds; corrupt maps dealer -> recipients"""
    corrupt = corrupt or {}
    members = {i: DKGParticipant(i, threshold, num_members, round_id)
               for i in range(1, num_members + 1)}
    directory = {i: m.public_keys for i, m in members.items()}

    round1 = {}
    for i, member in members.items():
        message = member.run_round1(directory)
        for victim in corrupt.get(i, ()):
            message = corrupt_share(message, directory[victim])
        round1[i] = message

    round2 = {i: m.run_round2(round1, directory) for i, m in members.items()}

    responses = []
    for i, member in members.items():
        if i not in unresponsive:
            responses.extend(member.answer_complaints(round2.values()))

    qualified = agree_on_qualified_dealers(
        round1, round2, responses, directory, threshold, num_members, round_id)
    states = {i: m.finalize(qualified, responses) for i, m in members.items()}
    return members, states, round1


@pytest.fixture(scope="session")
def committee():
    """Honest 2-of-3 committee shared by read-only tests"""
    _, states, _ = run_dkg()
    return states


@pytest.fixture
def system_config(tmp_path):
    config = SystemConfig(
        zk=ZKConfig(max_concurrent_proofs=4),
        log_dir=tmp_path / "logs",
        results_dir=tmp_path / "results",
    )
    config.polling.interval = 0.01
    config.polling.max_interval = 0.05
    config.polling.timeout = 2.0
    return config


class FakeResponse:
    def __init__(self, body, status=200):
        self.body = body
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def json(self):
        if isinstance(self.body, Exception):
            raise self.body
        return self.body


class FakeSession:
    """Replays canned responses in order; the last one repeats"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def post(self, url, json=None, timeout=None):
        self.requests.append((url, json, timeout))
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response
