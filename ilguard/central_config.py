"""
Project Configuration — Price feed endpoints, version, risk tunables
=====================================================================

Contains the Pyth Hermes API configuration, project metadata and the
tunable constants of the IL prediction / risk scoring engine.

Every tunable can be overridden from the environment (ILGUARD_* variables),
so a deployment never has to edit code to change a threshold.
Source: https://docs.pyth.network/price-feeds/api-instances-and-providers/hermes
"""

import os
import re
from dataclasses import dataclass, field
from importlib.metadata import version, PackageNotFoundError
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Tuple

PROJECT_NAME = "ILGuard"
_PYPROJECT = Path(__file__).resolve().parent.parent / "pyproject.toml"


def _resolve_version() -> str:
    """Installed distribution version, else the [project] version in pyproject.toml."""
    try:
        return version("ilguard")
    except PackageNotFoundError:
        pass
    if _PYPROJECT.exists():
        match = re.search(r'^version\s*=\s*"([^"]+)"', _PYPROJECT.read_text(), re.MULTILINE)
        if match:
            return match.group(1)
    return "0.0.0-dev"


PROJECT_VERSION = _resolve_version()


@dataclass(frozen=True)
class PythHermesAPI:
    """Pyth Network Hermes (off-chain price service) configuration."""

    # Public Hermes instance
    BASE_URL: str = "https://hermes.pyth.network"

    # Latest parsed price updates for one or more feed ids
    LATEST_PRICE_ENDPOINT: str = "/v2/updates/price/latest"

    TIMEOUT_SECONDS: int = 10

    # Pyth price feed ids — immutable mapping
    # Ref: https://pyth.network/developers/price-feed-ids
    PRICE_FEED_IDS = MappingProxyType(
        {
            "SOL/USD": "0xef0d8b6fda2ceba41da15d4095d1da392a0d2f8ed0c6c7bc0f4cfac8c280b56d",
            "USDC/USD": "0xeaa020c61cc479712813461ce153894a96a6c00b21ed0cfc2798d1f9a9e9c94a",
            "BONK/USD": "0x72b021217ca3fe68922a19aaf990109cb9d84e9ad004b4d2025ad6f529314419",
            "JUP/USD": "0x0a0408d619e9380abad35060f9192039ed5042fa6f82301d0e48bb52be830996",
        }
    )

    def latest_price_url(self, base_url: str = None) -> str:
        """URL of the latest-price endpoint (optionally on another Hermes host)."""
        return f"{(base_url or self.BASE_URL).rstrip('/')}{self.LATEST_PRICE_ENDPOINT}"

    def feed_id(self, symbol: str):
        """Feed id for a ``BASE/QUOTE`` symbol, or None if unknown."""
        return self.PRICE_FEED_IDS.get(symbol.upper())


# ── Risk Engine Tunables ─────────────────────────────────────────────────


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_floats(name: str, default: Tuple[float, ...]) -> Tuple[float, ...]:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    values = tuple(float(x) for x in raw.split(",") if x.strip())
    if len(values) != len(default):
        raise ValueError(f"{name} expects {len(default)} comma-separated values")
    return values


@dataclass(frozen=True)
class RiskSettings:
    """
    Tunable constants of the prediction and risk-scoring engine.

    Defaults:
      history_capacity        100 samples per symbol (FIFO)
      volatility_window_min   15 min trailing window for risk volatility
      prediction_horizon_min  30 min look-ahead
      weights                 currentIL 0.30, predictedIL 0.40,
                              outOfRange 0.20, volatility 0.10
      il_thresholds           2 / 4 / 6 % → medium / high / critical
      gas_cost_usd            0.01 USD (typical Solana transaction)
      min_savings_multiplier  savings must exceed 10× gas
      mitigation_efficacy     a rebalance prevents 70% of predicted IL
    """

    history_capacity: int = 100
    lookback_tolerance_seconds: float = 30.0
    volatility_window_minutes: float = 15.0
    prediction_horizon_minutes: float = 30.0
    weights: Dict[str, float] = field(
        default_factory=lambda: MappingProxyType(
            {
                "current_il": 0.30,
                "predicted_il": 0.40,
                "out_of_range": 0.20,
                "volatility": 0.10,
            }
        )
    )
    il_thresholds: Tuple[float, float, float] = (2.0, 4.0, 6.0)
    score_thresholds: Tuple[float, float, float] = (25.0, 50.0, 75.0)
    high_volatility_pct: float = 3.0
    gas_cost_usd: float = 0.01
    min_savings_multiplier: float = 10.0
    mitigation_efficacy: float = 0.7
    monitor_interval_seconds: float = 30.0

    def __post_init__(self):
        if self.history_capacity < 1:
            raise ValueError("history_capacity must be >= 1")
        if sorted(self.il_thresholds) != list(self.il_thresholds):
            raise ValueError("il_thresholds must be ascending")
        if sorted(self.score_thresholds) != list(self.score_thresholds):
            raise ValueError("score_thresholds must be ascending")
        if set(self.weights) != {"current_il", "predicted_il", "out_of_range", "volatility"}:
            raise ValueError("weights must define current_il, predicted_il, out_of_range, volatility")
        if not 0 <= self.mitigation_efficacy <= 1:
            raise ValueError("mitigation_efficacy must be within [0, 1]")
        if not self.monitor_interval_seconds > 0:
            raise ValueError("monitor_interval_seconds must be positive")

    @classmethod
    def from_env(cls) -> "RiskSettings":
        """Build settings from ILGUARD_* environment variables (defaults otherwise)."""
        base = cls()
        w = base.weights
        weights = _env_floats(
            "ILGUARD_RISK_WEIGHTS",
            (w["current_il"], w["predicted_il"], w["out_of_range"], w["volatility"]),
        )
        return cls(
            history_capacity=_env_int("ILGUARD_HISTORY_CAPACITY", base.history_capacity),
            lookback_tolerance_seconds=_env_float(
                "ILGUARD_LOOKBACK_TOLERANCE_SECONDS", base.lookback_tolerance_seconds
            ),
            volatility_window_minutes=_env_float(
                "ILGUARD_VOLATILITY_WINDOW_MINUTES", base.volatility_window_minutes
            ),
            prediction_horizon_minutes=_env_float(
                "ILGUARD_PREDICTION_HORIZON_MINUTES", base.prediction_horizon_minutes
            ),
            weights=MappingProxyType(
                dict(zip(("current_il", "predicted_il", "out_of_range", "volatility"), weights))
            ),
            il_thresholds=_env_floats("ILGUARD_IL_THRESHOLDS", base.il_thresholds),
            gas_cost_usd=_env_float("ILGUARD_GAS_COST_USD", base.gas_cost_usd),
            min_savings_multiplier=_env_float(
                "ILGUARD_MIN_SAVINGS_MULTIPLIER", base.min_savings_multiplier
            ),
            mitigation_efficacy=_env_float(
                "ILGUARD_MITIGATION_EFFICACY", base.mitigation_efficacy
            ),
            monitor_interval_seconds=_env_float(
                "ILGUARD_MONITOR_INTERVAL_SECONDS", base.monitor_interval_seconds
            ),
        )


# Unified configuration
class ILGuardConfig:
    """Unified configuration: price feed API + engine defaults."""

    api = PythHermesAPI()

    @staticmethod
    def hermes_url() -> str:
        """Hermes host, overridable with HERMES_URL (read at call time, after .env load)."""
        return os.environ.get("HERMES_URL") or PythHermesAPI.BASE_URL


# Global instance
config = ILGuardConfig()
