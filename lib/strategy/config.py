# Engine configuration for the strategy engine
import os
import logging
from dataclasses import dataclass, field, fields
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

CONFIG_DIR = Path(__file__).parent
DEFAULT_CONFIG_PATH = CONFIG_DIR / "engine_config.yaml"
CONFIG_ENV_VAR = "STRATEGY_ENGINE_CONFIG"


@dataclass(frozen=True)
class NumericConfig:
    """Bracket-and-solve settings for the numeric break-even finder."""
    margin: float = 0.5
    xtol: float = 1e-12
    dedup_rel: float = 1e-8
    max_iter: int = 200


@dataclass(frozen=True)
class MonteCarloConfig:
    """Terminal-price simulation defaults."""
    paths: int = 200_000
    batch_size: int = 20_000
    bins: int = 140
    domain_sigmas: float = 4.0
    fallback_band: Tuple[float, float] = (0.6, 1.4)


@dataclass(frozen=True)
class PricingConfig:
    days_per_year: float = 365.0
    contract_multiplier: float = 100.0
    iv_lower: float = 1e-6
    iv_upper: float = 5.0


@dataclass(frozen=True)
class EngineConfig:
    numeric: NumericConfig = field(default_factory=NumericConfig)
    montecarlo: MonteCarloConfig = field(default_factory=MonteCarloConfig)
    pricing: PricingConfig = field(default_factory=PricingConfig)


def _build_section(cls, raw: Optional[Dict[str, Any]]):
    """Build a config section, ignoring unknown keys."""
    if not raw:
        return cls()
    known = {f.name for f in fields(cls)}
    values = {}
    for key, value in raw.items():
        if key not in known:
            logger.debug(f"Ignoring unknown config key {cls.__name__}.{key}")
            continue
        if isinstance(value, list):
            value = tuple(value)
        values[key] = value
    return cls(**values)


def load_engine_config(path: Optional[os.PathLike] = None) -> EngineConfig:
    """
    Load engine configuration from YAML.

    Args:
        path: Explicit config file. Defaults to $STRATEGY_ENGINE_CONFIG,
              then engine_config.yaml next to this module.

    Returns:
        EngineConfig with dataclass defaults for any missing keys
    """
    config_path = Path(path or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH)
    with open(config_path, "r") as f:
        raw = yaml.safe_load(f) or {}

    logger.debug(f"Loaded engine config from {config_path}")
    return EngineConfig(
        numeric=_build_section(NumericConfig, raw.get("numeric")),
        montecarlo=_build_section(MonteCarloConfig, raw.get("montecarlo")),
        pricing=_build_section(PricingConfig, raw.get("pricing")),
    )


@lru_cache(maxsize=1)
def get_engine_config() -> EngineConfig:
    """Process-wide config, loaded once."""
    return load_engine_config()


__all__ = [
    "NumericConfig",
    "MonteCarloConfig",
    "PricingConfig",
    "EngineConfig",
    "load_engine_config",
    "get_engine_config",
    "CONFIG_ENV_VAR",
]
