"""Configuration management for the voting system."""

from .config import (
    DKGConfig,
    PollingConfig,
    SystemConfig,
    TallyConfig,
    ZKConfig,
    load_config,
    save_config,
)

__all__ = ['SystemConfig', 'DKGConfig', 'ZKConfig', 'TallyConfig',
           'PollingConfig', 'load_config', 'save_config']
