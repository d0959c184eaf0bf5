#!/usr/bin/env python3
"""
IL Prediction Engine
====================

Forecasts impermanent loss N minutes ahead from price velocity and
volatility, with a confidence score.

Model (linear extrapolation + directional volatility overshoot):
    expected_change % = velocity_per_hour / 60 × timeframe
    velocity_price    = P × (1 + expected_change / 100)
    vol_adjustment    = P × (volatility / 100) × sign(expected_change)
    predicted_price   = max(0, 0.6 × velocity_price
                               + 0.4 × (velocity_price + vol_adjustment))

    confidence = round(max(0, 100 − 5 × volatility) × min(history / 50, 1))

Risk level on |predicted IL %|:  < 2 low · < 4 medium · < 6 high · else critical
"""

import asyncio
import inspect
import logging
import math
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Sequence, Tuple

from il_math import predict_il
from price_history import PriceHistory, PriceSample, PriceVelocity

logger = logging.getLogger(__name__)

# ── Model Parameters ─────────────────────────────────────────────────────
VELOCITY_WEIGHT = 0.6
VOLATILITY_WEIGHT = 0.4
VOLATILITY_CONFIDENCE_PENALTY = 5  # confidence points lost per 1% volatility
HISTORY_SATURATION = 50  # samples needed for full confidence
DEFAULT_RISK_THRESHOLDS = (2.0, 4.0, 6.0)
DEFAULT_MONITOR_INTERVAL_SECONDS = 30.0

RISK_LEVELS = ("low", "medium", "high", "critical")
ALERT_LEVELS = frozenset({"high", "critical"})


class PriceSource(Protocol):
    """Anything that can produce the current price of a symbol."""

    async def get_price(self, symbol: str) -> Optional[PriceSample]: ...


@dataclass(frozen=True)
class PredictionConfig:
    """What to predict: horizon, position size and the reference (entry) price."""

    timeframe_minutes: float
    position_value_usd: float
    entry_price: float


@dataclass(frozen=True)
class ILPrediction:
    symbol: str
    current_price: float
    predicted_price: float
    timeframe_minutes: float
    predicted_il_percentage: float
    predicted_il_value: float
    confidence: int  # 0-100
    risk_level: str
    recommendation: str


def risk_level_for_il(
    il_percentage: float, thresholds: Tuple[float, float, float] = DEFAULT_RISK_THRESHOLDS
) -> str:
    """Bucket |IL %|; each threshold is the inclusive lower bound of the next level."""
    abs_il = abs(il_percentage)
    low, medium, high = thresholds
    if abs_il < low:
        return "low"
    if abs_il < medium:
        return "medium"
    if abs_il < high:
        return "high"
    return "critical"


def predict_future_price(
    current_price: float,
    velocity_per_hour: float,
    volatility: float,
    timeframe_minutes: float,
) -> float:
    """Blend of the velocity extrapolation and its volatility-amplified twin."""
    expected_change = (velocity_per_hour / 60) * timeframe_minutes
    velocity_prediction = current_price * (1 + expected_change / 100)

    # Volatility amplifies the move in the direction velocity already points
    direction = 1 if expected_change >= 0 else -1
    volatility_adjustment = current_price * (volatility / 100) * direction

    predicted = (
        velocity_prediction * VELOCITY_WEIGHT
        + (velocity_prediction + volatility_adjustment) * VOLATILITY_WEIGHT
    )
    return max(predicted, 0.0)


def prediction_confidence(volatility: float, history_size: int) -> int:
    """Confidence drops with volatility and grows with accumulated history."""
    history_factor = min(history_size / HISTORY_SATURATION, 1)
    volatility_confidence = max(0.0, 100 - volatility * VOLATILITY_CONFIDENCE_PENALTY)
    # Halves round up
    return int(math.floor(volatility_confidence * history_factor + 0.5))


def recommendation_text(risk_level: str, il_percentage: float, velocity_per_hour: float) -> str:
    abs_il = abs(il_percentage)
    direction = "upward" if velocity_per_hour > 0 else "downward"

    if risk_level == "low":
        return f"Low risk ({abs_il:.2f}% IL). Position is safe. Continue monitoring."
    if risk_level == "medium":
        return (
            f"Medium risk ({abs_il:.2f}% IL). Consider widening range "
            f"if {direction} trend continues."
        )
    if risk_level == "high":
        return (
            f"High risk ({abs_il:.2f}% IL)! Recommend widening range now "
            f"to reduce IL exposure."
        )
    if risk_level == "critical":
        return (
            f"CRITICAL RISK ({abs_il:.2f}% IL)! Strong {direction} movement detected. "
            f"Consider exiting position or immediately widening range."
        )
    return "Unable to determine recommendation."


class ILPredictor:
    """Short-horizon IL forecaster over a PriceHistory and a live price source."""

    def __init__(
        self,
        history: PriceHistory,
        price_source: PriceSource,
        risk_thresholds: Tuple[float, float, float] = DEFAULT_RISK_THRESHOLDS,
        scheduler=None,
        monitor_interval_seconds: float = DEFAULT_MONITOR_INTERVAL_SECONDS,
    ):
        self.history = history
        self.price_source = price_source
        self.risk_thresholds = risk_thresholds
        self.scheduler = scheduler
        self.monitor_interval_seconds = monitor_interval_seconds

    async def predict(self, symbol: str, config: PredictionConfig) -> Optional[ILPrediction]:
        """
        Forecast IL for a position tracking ``symbol``.

        Returns None (logged, not raised) when the current price is
        unavailable, either price is non-positive, or there is not enough
        history for a velocity.
        """
        sample = await self.price_source.get_price(symbol)
        if sample is None:
            logger.warning("Failed to fetch price for %s", symbol)
            return None
        if sample.price <= 0 or not config.entry_price > 0:
            logger.warning(
                "Cannot forecast %s from price %s against entry %s",
                symbol, sample.price, config.entry_price,
            )
            return None

        velocity: Optional[PriceVelocity] = self.history.velocity(symbol)
        if velocity is None:
            logger.info("Not enough price history for %s", symbol)
            return None

        volatility = self.history.volatility(symbol, config.timeframe_minutes)

        predicted_price = predict_future_price(
            sample.price, velocity.velocity_per_hour, volatility, config.timeframe_minutes
        )
        confidence = prediction_confidence(volatility, self.history.history_size(symbol))

        il = predict_il(config.entry_price, predicted_price, config.position_value_usd)
        risk_level = risk_level_for_il(il.il_percentage, self.risk_thresholds)

        return ILPrediction(
            symbol=symbol,
            current_price=sample.price,
            predicted_price=predicted_price,
            timeframe_minutes=config.timeframe_minutes,
            predicted_il_percentage=il.il_percentage,
            predicted_il_value=il.il_value,
            confidence=confidence,
            risk_level=risk_level,
            recommendation=recommendation_text(
                risk_level, il.il_percentage, velocity.velocity_per_hour
            ),
        )

    async def predict_multiple(
        self, requests: Sequence[Tuple[str, PredictionConfig]]
    ) -> List[Optional[ILPrediction]]:
        """Run predictions concurrently; results keep the input order."""
        return list(
            await asyncio.gather(*(self.predict(symbol, cfg) for symbol, cfg in requests))
        )

    async def monitor(
        self,
        symbol: str,
        config: PredictionConfig,
        on_risk_detected: Callable[[ILPrediction], object],
        interval_seconds: Optional[float] = None,
    ):
        """
        Predict now, then every ``interval_seconds`` (default: the predictor's
        monitor_interval_seconds); alert on high/critical.

        Returns the scheduler's TaskHandle. Cancelling it stops future ticks;
        a tick already running still delivers its alert.
        """
        if self.scheduler is None:
            raise RuntimeError("ILPredictor.monitor requires a scheduler")

        async def tick():
            prediction = await self.predict(symbol, config)
            if prediction is not None and prediction.risk_level in ALERT_LEVELS:
                result = on_risk_detected(prediction)
                if inspect.isawaitable(result):
                    await result

        await tick()
        if interval_seconds is None:
            interval_seconds = self.monitor_interval_seconds
        return self.scheduler.every(interval_seconds, tick, name=f"predict:{symbol}")
