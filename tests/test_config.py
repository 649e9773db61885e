import logging
from pathlib import Path

import pytest

from config.config import (
    DKGConfig,
    PollingConfig,
    SystemConfig,
    TallyConfig,
    ZKConfig,
    config_from_dict,
    load_config,
    save_config,
)


def test_defaults():
    config = SystemConfig()
    assert config.dkg.threshold == 2
    assert config.dkg.num_members == 3
    assert config.voter_weights == [1, 2, 3]
    assert config.zk.backend == "sigma"
    assert config.tally.linear_search_limit == 64


def test_yaml_round_trip(tmp_path):
    config = SystemConfig(
        dkg=DKGConfig(num_members=5, threshold=3, round_id="dkg-7"),
        zk=ZKConfig(backend="snarkjs", build_dir=tmp_path / "build"),
        tally=TallyConfig(max_total_weight=100),
        voter_weights=[4, 5],
    )
    path = tmp_path / "config.yaml"
    save_config(config, path)
    loaded = load_config(path)
    assert loaded == config
    assert isinstance(loaded.zk.build_dir, Path)


def test_missing_file_gives_defaults(tmp_path):
    assert load_config(tmp_path / "absent.yaml") == SystemConfig()


def test_invalid_yaml_falls_back(tmp_path, caplog):
    path = tmp_path / "config.yaml"
    path.write_text("dkg: [unclosed")
    with caplog.at_level(logging.WARNING):
        assert load_config(path) == SystemConfig()
    assert "using default configuration" in caplog.text


def test_invalid_values_fall_back(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("dkg:\n  num_members: 3\n  threshold: 4\n")
    assert load_config(path) == SystemConfig()


def test_unknown_keys_are_ignored(caplog):
    with caplog.at_level(logging.WARNING):
        config = config_from_dict({"dkg": {"threshold": 3, "num_members": 4, "colour": "red"},
                                   "flavour": 1})
    assert config.dkg.threshold == 3
    assert "colour" in caplog.text
    assert "flavour" in caplog.text


def test_partial_sections_keep_defaults():
    config = config_from_dict({"polling": {"timeout": 5.0}})
    assert config.polling.timeout == 5.0
    assert config.polling.interval == PollingConfig().interval
    assert config.dkg == DKGConfig()


@pytest.mark.parametrize("factory", [
    lambda: DKGConfig(threshold=0),
    lambda: DKGConfig(num_members=2, threshold=3),
    lambda: ZKConfig(backend="plonk"),
    lambda: ZKConfig(max_concurrent_proofs=0),
    lambda: TallyConfig(max_total_weight=-1),
    lambda: PollingConfig(interval=0),
    lambda: PollingConfig(backoff=0.5),
    lambda: PollingConfig(max_attempts=0),
    lambda: SystemConfig(voter_weights=[1, -2]),
])
def test_validation(factory):
    with pytest.raises(ValueError):
        factory()
