import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config.yaml")


@dataclass
class DKGConfig:
    num_members: int = 3
    threshold: int = 2
    round_id: str = "dkg-0"

    def __post_init__(self):
        if self.threshold < 1:
            raise ValueError(f"threshold must be >= 1, got {self.threshold}")
        if self.threshold > self.num_members:
            raise ValueError(
                f"threshold {self.threshold} exceeds num_members {self.num_members}")


@dataclass
class ZKConfig:
    backend: str = "sigma"
    circuit_name: str = "nvote"
    build_dir: Path = field(default_factory=lambda: Path("circuits/build"))
    snarkjs_bin: str = "snarkjs"
    proof_timeout: int = 60
    proof_ttl: int = 3600
    max_concurrent_proofs: int = 10

    def __post_init__(self):
        self.build_dir = Path(self.build_dir)
        if self.backend not in ("sigma", "snarkjs"):
            raise ValueError(f"Unknown proof backend: {self.backend}")
        if self.max_concurrent_proofs < 1:
            raise ValueError("max_concurrent_proofs must be >= 1")


@dataclass
class TallyConfig:
    round_id: str = "tally-0"
    # None derives the bound from the registered voter weights
    max_total_weight: Optional[int] = None
    linear_search_limit: int = 64

    def __post_init__(self):
        if self.max_total_weight is not None and self.max_total_weight < 0:
            raise ValueError("max_total_weight must be non-negative")


@dataclass
class PollingConfig:
    interval: float = 0.1
    backoff: float = 1.5
    max_interval: float = 2.0
    max_attempts: int = 50
    timeout: float = 30.0

    def __post_init__(self):
        if self.interval <= 0 or self.max_interval < self.interval:
            raise ValueError("Polling intervals must satisfy 0 < interval <= max_interval")
        if self.backoff < 1.0:
            raise ValueError("backoff must be >= 1.0")
        if self.max_attempts < 1 or self.timeout <= 0:
            raise ValueError("Polling needs at least one attempt and a positive timeout")


@dataclass
class SystemConfig:
    dkg: DKGConfig = field(default_factory=DKGConfig)
    zk: ZKConfig = field(default_factory=ZKConfig)
    tally: TallyConfig = field(default_factory=TallyConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)

    voter_weights: List[int] = field(default_factory=lambda: [1, 2, 3])
    ledger_endpoint: str = "http://127.0.0.1:8545/"
    descriptor_path: Path = field(
        default_factory=lambda: Path("./zkv.config.json"))

    log_dir: Path = field(default_factory=lambda: Path("logs"))
    results_dir: Path = field(default_factory=lambda: Path("results"))
    enable_benchmarking: bool = True
    enable_debug_mode: bool = False

    def __post_init__(self):
        self.descriptor_path = Path(self.descriptor_path)
        self.log_dir = Path(self.log_dir)
        self.results_dir = Path(self.results_dir)
        if any(w < 0 for w in self.voter_weights):
            raise ValueError("Voter weights must be non-negative")


_SECTIONS = {
    'dkg': DKGConfig,
    'zk': ZKConfig,
    'tally': TallyConfig,
    'polling': PollingConfig,
}


def _build(cls, data: Dict[str, Any]):
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        logger.warning(
            f"Ignoring unknown {cls.__name__} keys: {sorted(unknown)}")
    return cls(**{k: v for k, v in data.items() if k in known})


def config_from_dict(config_data: Dict[str, Any]) -> SystemConfig:
    config_data = dict(config_data or {})
    sections = {name: _build(cls, config_data.pop(name, None) or {})
                for name, cls in _SECTIONS.items()}
    base = _build(SystemConfig, config_data)
    for name, section in sections.items():
        setattr(base, name, section)
    return base


def config_to_dict(config: SystemConfig) -> Dict[str, Any]:
    def plain(value):
        if isinstance(value, Path):
            return str(value)
        if isinstance(value, dict):
            return {k: plain(v) for k, v in value.items()}
        if isinstance(value, list):
            return [plain(v) for v in value]
        return value

    return plain(asdict(config))


def load_config(config_path: Optional[Path] = None) -> SystemConfig:
    """Load configuration from file or return default"""
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH
    config_path = Path(config_path)

    if config_path.exists():
        try:
            with open(config_path, 'r') as f:
                config_data = yaml.safe_load(f)
            return config_from_dict(config_data)
        except (OSError, yaml.YAMLError, TypeError, ValueError) as e:
            logger.warning(
                f"Could not load config file {config_path}: {e}; using default configuration")

    return SystemConfig()


def save_config(config: SystemConfig, config_path: Optional[Path] = None):
    """Save configuration to YAML file"""
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH
    config_path = Path(config_path)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, 'w') as f:
        yaml.dump(config_to_dict(config), f, default_flow_style=False)
    logger.info(f"Saved configuration to {config_path}")
