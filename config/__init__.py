"""Configuration management for the election trust core."""

from .config import (
    SystemConfig,
    MerkleConfig,
    StreamConfig,
    ThresholdConfig,
    RecoveryConfig,
    load_config,
    save_config,
)

__all__ = [
    'SystemConfig',
    'MerkleConfig',
    'StreamConfig',
    'ThresholdConfig',
    'RecoveryConfig',
    'load_config',
    'save_config',
]
