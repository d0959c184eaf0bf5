#!/usr/bin/env python3
"""
ILGuard — engine wiring
=======================

Builds the object graph once per host application (no module-level
singletons) and exposes the engine's operations by name:

    record_price · get_velocity · get_volatility · compute_il
    predict_il · score_risk · decide_rebalance

    history ─┬─► predictor ─┬─► risk engine
             │              │
    price source ───────────┴─► position monitor
"""

import logging
from typing import Callable, Optional

from il_math import ILResult, impermanent_loss
from il_predictor import ILPrediction, ILPredictor, PredictionConfig
from position_monitor import LPPosition, PositionMonitor
from price_history import PriceHistory, PriceSample, PriceVelocity
from risk_scoring import RebalanceDecision, RiskScore, RiskScoringEngine
from ilguard.central_config import RiskSettings
from ilguard.pyth_client import HistoryPriceFeed

logger = logging.getLogger(__name__)


class ILGuard:
    """Facade over PriceHistory, ILPredictor, PositionMonitor and RiskScoringEngine."""

    def __init__(
        self,
        settings: Optional[RiskSettings] = None,
        price_source=None,
        scheduler=None,
        clock: Callable[[], float] = None,
        history: Optional[PriceHistory] = None,
    ):
        self.settings = settings or RiskSettings()
        self.history = history or PriceHistory(
            capacity=self.settings.history_capacity,
            clock=clock,
            lookback_tolerance_seconds=self.settings.lookback_tolerance_seconds,
        )
        self.price_source = price_source or HistoryPriceFeed(self.history)
        self.scheduler = scheduler
        self.predictor = ILPredictor(
            self.history,
            self.price_source,
            risk_thresholds=self.settings.il_thresholds,
            scheduler=scheduler,
            monitor_interval_seconds=self.settings.monitor_interval_seconds,
        )
        self.monitor = PositionMonitor(
            self.price_source,
            scheduler=scheduler,
            il_thresholds=self.settings.il_thresholds,
            clock=self.history.clock,
            monitor_interval_seconds=self.settings.monitor_interval_seconds,
        )
        self.engine = RiskScoringEngine(
            self.history,
            self.predictor,
            monitor=self.monitor,
            settings=self.settings,
            clock=self.history.clock,
        )

    @classmethod
    def with_price_service(cls, price_service_factory, **kwargs) -> "ILGuard":
        """Build with a live price service that records into this guard's history."""
        guard = cls(**kwargs)
        service = price_service_factory(guard.history)
        guard.price_source = service
        guard.predictor.price_source = service
        guard.monitor.price_source = service
        return guard

    # ── Ingestion ────────────────────────────────────────────────────────

    def record_price(
        self,
        symbol: str,
        price: float,
        timestamp: Optional[float] = None,
        confidence: float = 0.0,
    ) -> PriceSample:
        return self.history.record(symbol, price, timestamp=timestamp, confidence=confidence)

    # ── Reads ────────────────────────────────────────────────────────────

    def get_velocity(self, symbol: str) -> Optional[PriceVelocity]:
        return self.history.velocity(symbol)

    def get_volatility(self, symbol: str, window_minutes: float = None) -> float:
        window = window_minutes if window_minutes is not None else self.settings.volatility_window_minutes
        return self.history.volatility(symbol, window)

    @staticmethod
    def compute_il(initial_price: float, current_price: float, initial_value: float) -> ILResult:
        return impermanent_loss(initial_price, current_price, initial_value)

    # ── Forecast & Decision ──────────────────────────────────────────────

    async def predict_il(
        self,
        symbol: str,
        timeframe_minutes: float = None,
        position_value_usd: float = 10_000,
        entry_price: float = None,
    ) -> Optional[ILPrediction]:
        """Forecast IL; entry_price defaults to the latest recorded price."""
        if entry_price is None:
            latest = self.history.latest(symbol)
            if latest is None:
                logger.info("No price recorded for %s; cannot default entry price", symbol)
                return None
            entry_price = latest.price
        if timeframe_minutes is None:
            timeframe_minutes = self.settings.prediction_horizon_minutes
        return await self.predictor.predict(
            symbol,
            PredictionConfig(
                timeframe_minutes=timeframe_minutes,
                position_value_usd=position_value_usd,
                entry_price=entry_price,
            ),
        )

    async def score_risk(self, position: LPPosition) -> RiskScore:
        return await self.engine.score(position)

    async def decide_rebalance(self, position: LPPosition) -> RebalanceDecision:
        return await self.engine.decide(position)
