"""Trainer configuration, loaded from YAML."""

from __future__ import annotations

import logging
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger("gesture_trainer.config")


@dataclass
class TrainerConfig:
    # Display window and conditioning
    history_limit: int = 30
    filter_alpha: float = 0.5

    # Persistence
    flush_delay: float = 2.0  # seconds of quiet before catalog is written

    # Host channel
    channel: str = "pxtpkgext"
    ext_id: str = ""
    request_timeout: float = 10.0
    max_retries: int = 2

    # Websocket bridge
    host: str = "127.0.0.1"
    port: int = 8766
    log_level: str = "info"

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> TrainerConfig:
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning("Ignoring unknown config keys: %s", ", ".join(unknown))
        return cls(**{k: v for k, v in data.items() if k in known})


def load_config(path: Optional[str | Path] = None) -> TrainerConfig:
    """Load config from a YAML file. Missing file or None gives defaults."""
    if path is None:
        return TrainerConfig()

    path = Path(path)
    if not path.exists():
        logger.info("Config file %s not found, using defaults", path)
        return TrainerConfig()

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")

    return TrainerConfig.from_dict(data)


def save_config(config: TrainerConfig, path: str | Path):
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)
