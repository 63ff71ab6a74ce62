import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)


@dataclass
class MerkleConfig:
    sparse_depth: int = 32

    def __post_init__(self):
        if not 1 <= self.sparse_depth <= 256:
            raise ValueError(f"sparse_depth must be in [1, 256], got {self.sparse_depth}")


@dataclass
class StreamConfig:
    checkpoint_interval: int = 100
    max_checkpoints: int = 100
    listener_workers: int = 2

    def __post_init__(self):
        if self.checkpoint_interval < 1:
            raise ValueError("checkpoint_interval must be positive")
        if self.max_checkpoints < 1:
            raise ValueError("max_checkpoints must be positive")
        if self.listener_workers < 1:
            raise ValueError("listener_workers must be positive")


@dataclass
class ThresholdConfig:
    threshold: int = 3
    num_authorities: int = 5

    def __post_init__(self):
        if not 1 <= self.threshold <= self.num_authorities:
            raise ValueError(
                f"threshold {self.threshold} must be in [1, {self.num_authorities}]")


@dataclass
class RecoveryConfig:
    time_lock_hours: float = 24
    min_guardians: int = 2

    def __post_init__(self):
        if self.time_lock_hours < 0:
            raise ValueError("time_lock_hours cannot be negative")
        if self.min_guardians < 1:
            raise ValueError("min_guardians must be positive")


@dataclass
class SystemConfig:
    merkle: MerkleConfig = field(default_factory=MerkleConfig)
    stream: StreamConfig = field(default_factory=StreamConfig)
    threshold: ThresholdConfig = field(default_factory=ThresholdConfig)
    recovery: RecoveryConfig = field(default_factory=RecoveryConfig)

    log_dir: Path = field(default_factory=lambda: Path("logs"))
    results_dir: Path = field(default_factory=lambda: Path("results"))
    log_level: str = "INFO"
    enable_metrics: bool = True

    def __post_init__(self):
        self.log_dir = Path(self.log_dir)
        self.results_dir = Path(self.results_dir)
        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level {self.log_level}")


def _from_dict(config_data: Dict[str, Any]) -> SystemConfig:
    merkle_data = config_data.get('merkle', {}) or {}
    stream_data = config_data.get('stream', {}) or {}
    threshold_data = config_data.get('threshold', {}) or {}
    recovery_data = config_data.get('recovery', {}) or {}

    return SystemConfig(
        merkle=MerkleConfig(
            sparse_depth=merkle_data.get('sparse_depth', 32)
        ),
        stream=StreamConfig(
            checkpoint_interval=stream_data.get('checkpoint_interval', 100),
            max_checkpoints=stream_data.get('max_checkpoints', 100),
            listener_workers=stream_data.get('listener_workers', 2)
        ),
        threshold=ThresholdConfig(
            threshold=threshold_data.get('threshold', 3),
            num_authorities=threshold_data.get('num_authorities', 5)
        ),
        recovery=RecoveryConfig(
            time_lock_hours=recovery_data.get('time_lock_hours', 24),
            min_guardians=recovery_data.get('min_guardians', 2)
        ),
        log_dir=Path(config_data.get('log_dir', 'logs')),
        results_dir=Path(config_data.get('results_dir', 'results')),
        log_level=config_data.get('log_level', 'INFO'),
        enable_metrics=config_data.get('enable_metrics', True)
    )


def load_config(config_path: Optional[Path] = None) -> SystemConfig:
    """Load configuration from file or return default"""
    if config_path is None:
        config_path = Path("config.yaml")
    config_path = Path(config_path)

    if config_path.exists():
        try:
            with open(config_path, 'r') as f:
                config_data = yaml.safe_load(f) or {}
            if not isinstance(config_data, dict):
                raise ValueError("top level must be a mapping")
            return _from_dict(config_data)
        except (OSError, yaml.YAMLError, ValueError, TypeError) as e:
            logger.warning(f"Could not load config file {config_path}: {e}")
            logger.warning("Using default configuration")

    return SystemConfig()


def save_config(config: SystemConfig, config_path: Optional[Path] = None):
    """Save configuration to YAML file"""
    if config_path is None:
        config_path = Path("config.yaml")
    config_path = Path(config_path)

    config_data = {
        'merkle': {
            'sparse_depth': config.merkle.sparse_depth
        },
        'stream': {
            'checkpoint_interval': config.stream.checkpoint_interval,
            'max_checkpoints': config.stream.max_checkpoints,
            'listener_workers': config.stream.listener_workers
        },
        'threshold': {
            'threshold': config.threshold.threshold,
            'num_authorities': config.threshold.num_authorities
        },
        'recovery': {
            'time_lock_hours': config.recovery.time_lock_hours,
            'min_guardians': config.recovery.min_guardians
        },
        'log_dir': str(config.log_dir),
        'results_dir': str(config.results_dir),
        'log_level': config.log_level,
        'enable_metrics': config.enable_metrics
    }

    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, 'w') as f:
            yaml.dump(config_data, f, default_flow_style=False)
    except OSError as e:
        logger.warning(f"Could not save config file {config_path}: {e}")
