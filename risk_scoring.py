#!/usr/bin/env python3
"""
Risk Scoring Engine
===================

Combines current IL, predicted IL, range status and volatility into a
0–100 risk score, weighs the cost of a rebalance against the loss it
would prevent, and recommends an action.

Scoring:
    norm_il(x)  = min(x / 10 × 100, 100)      (10% IL saturates)
    norm_vol(v) = min(v / 5 × 100, 100)       (5% volatility saturates)
    out_of_range = 0 | 100

    score = 0.30·norm_il(|current IL|) + 0.40·norm_il(|predicted IL|)
          + 0.20·out_of_range          + 0.10·norm_vol(volatility)

    ≥ 75 critical · ≥ 50 high · ≥ 25 medium · else low

Rebalance economics:
    il_prevented = |predicted IL value| × 0.7
    net_savings  = il_prevented − gas
    worthwhile   = il_prevented > gas × 10

Action tree (first match wins):
    out of range            → rebalance   / critical
    |pIL| > 6               → rebalance | exit        / critical
    |pIL| > 4 and vol > 3   → widen_range | monitor   / high
    |pIL| > 2               → monitor     / medium
    otherwise               → monitor     / low

A missing prediction never aborts scoring: predicted IL counts as 0 and
the reasoning says the forecast was unavailable.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from il_predictor import ILPrediction, ILPredictor, PredictionConfig
from position_monitor import LPPosition, PositionMonitor
from price_history import PriceHistory
from ilguard.central_config import RiskSettings

logger = logging.getLogger(__name__)

RISK_EMOJI = {
    "low": "✅",
    "medium": "⚠️",
    "high": "🔶",
    "critical": "🚨",
}


@dataclass(frozen=True)
class RiskComponents:
    current_il: float  # current IL %
    predicted_il: float  # predicted IL % over the horizon (0 when unavailable)
    out_of_range: bool
    volatility: float


@dataclass(frozen=True)
class Recommendation:
    action: str  # monitor | widen_range | rebalance | exit
    urgency: str  # low | medium | high | critical
    reasoning: str
    expected_savings: float  # USD
    gas_cost: float  # USD
    worth_rebalancing: bool


@dataclass(frozen=True)
class RebalanceDecision:
    should_rebalance: bool
    reason: str
    expected_il_prevented: float  # USD
    estimated_gas_cost: float  # USD
    net_savings: float  # USD
    confidence: int  # 0-100


@dataclass(frozen=True)
class RiskScore:
    position_id: str
    risk_score: float  # 0-100, 100 = most risky
    overall_risk: str
    components: RiskComponents
    recommendation: Recommendation
    prediction: Optional[ILPrediction]
    position: LPPosition
    timestamp: float


def normalize_il(il_percentage: float) -> float:
    return min((abs(il_percentage) / 10) * 100, 100.0)


def normalize_volatility(volatility: float) -> float:
    return min((volatility / 5) * 100, 100.0)


def risk_level_for_score(score: float, thresholds=(25.0, 50.0, 75.0)) -> str:
    """Inclusive lower bounds: 25 → medium, 50 → high, 75 → critical."""
    medium, high, critical = thresholds
    if score >= critical:
        return "critical"
    if score >= high:
        return "high"
    if score >= medium:
        return "medium"
    return "low"


class RiskScoringEngine:
    """Request-scoped risk evaluation; holds configuration only."""

    def __init__(
        self,
        history: PriceHistory,
        predictor: ILPredictor,
        monitor: Optional[PositionMonitor] = None,
        settings: Optional[RiskSettings] = None,
        clock: Callable[[], float] = None,
    ):
        self.history = history
        self.predictor = predictor
        self.monitor = monitor
        self.settings = settings or RiskSettings()
        self.clock = clock or time.time

    async def _predict(self, position: LPPosition) -> Optional[ILPrediction]:
        return await self.predictor.predict(
            position.price_symbol,
            PredictionConfig(
                timeframe_minutes=self.settings.prediction_horizon_minutes,
                position_value_usd=position.total_value_usd,
                entry_price=position.current_price,
            ),
        )

    # ── Scoring ──────────────────────────────────────────────────────────

    def weighted_score(
        self, current_il: float, predicted_il: float, out_of_range: bool, volatility: float
    ) -> float:
        w = self.settings.weights
        return (
            normalize_il(current_il) * w["current_il"]
            + normalize_il(predicted_il) * w["predicted_il"]
            + (100.0 if out_of_range else 0.0) * w["out_of_range"]
            + normalize_volatility(volatility) * w["volatility"]
        )

    async def score(self, position: LPPosition) -> RiskScore:
        """Full risk evaluation of one position. Never raises for missing data."""
        prediction = await self._predict(position)
        volatility = self.history.volatility(
            position.price_symbol, self.settings.volatility_window_minutes
        )

        predicted_il = prediction.predicted_il_percentage if prediction else 0.0
        raw_score = self.weighted_score(
            position.current_il, predicted_il, not position.in_range, volatility
        )
        overall = risk_level_for_score(raw_score, self.settings.score_thresholds)

        decision = self._decision_from(prediction)
        recommendation = self._recommend(position, prediction, volatility, decision)

        logger.debug(
            "%s scored %.2f (%s) → %s/%s",
            position.position_id, raw_score, overall,
            recommendation.action, recommendation.urgency,
        )

        return RiskScore(
            position_id=position.position_id,
            risk_score=round(raw_score, 2),
            overall_risk=overall,
            components=RiskComponents(
                current_il=position.current_il,
                predicted_il=predicted_il,
                out_of_range=not position.in_range,
                volatility=volatility,
            ),
            recommendation=recommendation,
            prediction=prediction,
            position=position,
            timestamp=self.clock(),
        )

    async def score_all(self) -> List[RiskScore]:
        """Score every monitored position, riskiest first."""
        if self.monitor is None:
            return []
        scores = [await self.score(p) for p in self.monitor.all_positions()]
        return sorted(scores, key=lambda s: s.risk_score, reverse=True)

    # ── Rebalance Economics ──────────────────────────────────────────────

    async def decide(self, position: LPPosition) -> RebalanceDecision:
        """Is a rebalance worth its gas right now?"""
        return self._decision_from(await self._predict(position))

    def _decision_from(self, prediction: Optional[ILPrediction]) -> RebalanceDecision:
        gas = self.settings.gas_cost_usd

        if prediction is None:
            return RebalanceDecision(
                should_rebalance=False,
                reason="Unable to predict IL - insufficient data",
                expected_il_prevented=0.0,
                estimated_gas_cost=gas,
                net_savings=-gas,
                confidence=0,
            )

        expected_il_value = abs(prediction.predicted_il_value)
        il_prevented = expected_il_value * self.settings.mitigation_efficacy
        net_savings = il_prevented - gas
        should_rebalance = il_prevented > gas * self.settings.min_savings_multiplier

        if should_rebalance:
            multiple = il_prevented / gas if gas > 0 else float("inf")
            reason = (
                f"Rebalancing will prevent ${il_prevented:.2f} IL at ${gas} cost "
                f"({multiple:.0f}x return)"
            )
        elif expected_il_value < 1:
            reason = "Predicted IL is negligible - not worth rebalancing"
        else:
            reason = (
                f"Predicted IL (${expected_il_value:.2f}) too small compared to "
                f"gas cost (${gas})"
            )

        return RebalanceDecision(
            should_rebalance=should_rebalance,
            reason=reason,
            expected_il_prevented=il_prevented,
            estimated_gas_cost=gas,
            net_savings=net_savings,
            confidence=prediction.confidence,
        )

    # ── Recommendation ───────────────────────────────────────────────────

    def _recommend(
        self,
        position: LPPosition,
        prediction: Optional[ILPrediction],
        volatility: float,
        decision: RebalanceDecision,
    ) -> Recommendation:
        low, medium, high = self.settings.il_thresholds
        predicted = abs(prediction.predicted_il_percentage) if prediction else 0.0

        if not position.in_range:
            action, urgency = "rebalance", "critical"
            reasoning = f"Position OUT OF RANGE. Not earning fees. {decision.reason}"
        elif predicted > high:
            action = "rebalance" if decision.should_rebalance else "exit"
            urgency = "critical"
            reasoning = f"Severe IL predicted ({predicted:.2f}%). {decision.reason}"
        elif predicted > medium and volatility > self.settings.high_volatility_pct:
            action = "widen_range" if decision.should_rebalance else "monitor"
            urgency = "high"
            reasoning = (
                f"High IL risk ({predicted:.2f}%) + high volatility. {decision.reason}"
            )
        elif predicted > low:
            action, urgency = "monitor", "medium"
            reasoning = f"Moderate IL predicted ({predicted:.2f}%). Monitor closely."
        else:
            action, urgency = "monitor", "low"
            reasoning = (
                f"Position healthy. IL: {position.current_il:.2f}%, "
                f"Net P&L: ${position.net_pnl:.2f}"
            )

        if prediction is None:
            reasoning += " (IL prediction unavailable; predicted IL treated as 0)"

        return Recommendation(
            action=action,
            urgency=urgency,
            reasoning=reasoning,
            expected_savings=decision.expected_il_prevented,
            gas_cost=decision.estimated_gas_cost,
            worth_rebalancing=decision.should_rebalance,
        )


def format_risk_score(score: RiskScore) -> str:
    """Human-readable risk report."""
    pos = score.position
    rec = score.recommendation
    comp = score.components
    return (
        f"\n{RISK_EMOJI[score.overall_risk]} {pos.token_a}-{pos.token_b} Risk Assessment\n"
        f"{'━' * 33}\n"
        f"Risk Level: {score.overall_risk.upper()} (Score: {score.risk_score:.0f}/100)\n"
        f"\n"
        f"Components:\n"
        f"  • Current IL: {comp.current_il:.2f}%\n"
        f"  • Predicted IL: {comp.predicted_il:.2f}%\n"
        f"  • Out of Range: {'YES ❌' if comp.out_of_range else 'NO ✅'}\n"
        f"  • Volatility: {comp.volatility:.2f}%\n"
        f"\n"
        f"Recommendation:\n"
        f"  Action: {rec.action.upper()}\n"
        f"  Urgency: {rec.urgency.upper()}\n"
        f"  Expected Savings: ${rec.expected_savings:.2f}\n"
        f"  Gas Cost: ${rec.gas_cost:.2f}\n"
        f"  Worth Rebalancing: {'YES ✅' if rec.worth_rebalancing else 'NO ❌'}\n"
        f"\n"
        f"Reasoning: {rec.reasoning}\n"
    )
