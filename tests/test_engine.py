"""
Engine Tests — prediction, position monitoring, risk scoring
=============================================================

Exercises the engine end to end on simulated time (ManualClock +
ManualScheduler) with prices pushed straight into PriceHistory.

  - il_predictor.py      (price model, confidence, risk levels, monitor)
  - position_monitor.py  (registry, live metrics, update callbacks)
  - risk_scoring.py      (weighted score, buckets, action tree, economics)
  - il_guard.py          (wiring facade)
  - commands.py          (offline commands: il, simulate)

All tests are offline — no network calls.
"""

import asyncio
import logging

import pytest

from il_guard import ILGuard
from il_predictor import (
    ILPrediction,
    ILPredictor,
    PredictionConfig,
    predict_future_price,
    prediction_confidence,
    recommendation_text,
    risk_level_for_il,
)
from position_monitor import LPPosition, PositionMonitor, classify_il_urgency
from price_history import PriceHistory
from risk_scoring import (
    RiskScoringEngine,
    format_risk_score,
    normalize_il,
    normalize_volatility,
    risk_level_for_score,
)
from ilguard.central_config import RiskSettings
from ilguard.pyth_client import HistoryPriceFeed
from ilguard.scheduler import ManualClock, ManualScheduler


# ── Helpers ──────────────────────────────────────────────────────────────

def _guard(settings: RiskSettings = None) -> ILGuard:
    clock = ManualClock(0.0)
    return ILGuard(settings=settings, scheduler=ManualScheduler(clock), clock=clock)


def _feed(guard: ILGuard, sol_prices, step_seconds: float = 60) -> None:
    """Record a SOL/USD path (USDC pinned at $1), one sample per step."""
    for i, price in enumerate(sol_prices):
        if i:
            guard.history.clock.advance(step_seconds)
        guard.record_price("SOL/USD", price)
        guard.record_price("USDC/USD", 1.0)


def _prediction(il_pct: float, il_value: float, confidence: int = 80) -> ILPrediction:
    return ILPrediction(
        symbol="SOL/USD",
        current_price=100.0,
        predicted_price=100.0,
        timeframe_minutes=30,
        predicted_il_percentage=il_pct,
        predicted_il_value=il_value,
        confidence=confidence,
        risk_level=risk_level_for_il(il_pct),
        recommendation="",
    )


# ═══════════════════════════════════════════════════════════════════════════
# 1. il_predictor.py — pure model
# ═══════════════════════════════════════════════════════════════════════════

class TestPredictFuturePrice:
    def test_no_movement(self):
        assert predict_future_price(100, 0, 0, 30) == pytest.approx(100.0)

    def test_linear_extrapolation(self):
        # 12%/h over 30 min → +6%
        assert predict_future_price(100, 12, 0, 30) == pytest.approx(106.0)

    def test_volatility_amplifies_direction(self):
        # velocity price 94, volatility twin 92 → 0.6·94 + 0.4·92
        assert predict_future_price(100, -12, 2, 30) == pytest.approx(93.2)

    def test_zero_velocity_treated_as_upward(self):
        assert predict_future_price(100, 0, 5, 30) == pytest.approx(102.0)

    def test_never_negative(self):
        assert predict_future_price(100, -1000, 10, 60) == 0.0


class TestPredictionConfidence:
    @pytest.mark.parametrize("volatility,history,expected", [
        (0, 50, 100),
        (0, 500, 100),
        (0, 25, 50),
        (4, 100, 80),
        (30, 100, 0),
        (0, 2, 4),
        (0.3, 50, 99),
        (0.6, 25, 49),
    ])
    def test_known_values(self, volatility, history, expected):
        assert prediction_confidence(volatility, history) == expected

    def test_returns_int(self):
        assert isinstance(prediction_confidence(1.3, 17), int)


class TestRiskLevelForIL:
    @pytest.mark.parametrize("il,level", [
        (0.0, "low"),
        (-1.99, "low"),
        (-2.0, "medium"),
        (3.99, "medium"),
        (-4.0, "high"),
        (-5.99, "high"),
        (-6.0, "critical"),
        (-61.5, "critical"),
    ])
    def test_buckets(self, il, level):
        assert risk_level_for_il(il) == level

    def test_custom_thresholds(self):
        assert risk_level_for_il(-1.5, (1.0, 2.0, 3.0)) == "medium"


class TestRecommendationText:
    def test_levels(self):
        assert recommendation_text("low", -0.5, 1).startswith("Low risk (0.50% IL)")
        assert "downward" in recommendation_text("medium", -2.5, -3)
        assert "widening range now" in recommendation_text("high", -4.5, 3)
        assert recommendation_text("critical", -9, 10).startswith("CRITICAL RISK")

    def test_unknown_level(self):
        assert recommendation_text("bogus", 0, 0) == "Unable to determine recommendation."


# ═══════════════════════════════════════════════════════════════════════════
# 2. il_predictor.py — ILPredictor
# ═══════════════════════════════════════════════════════════════════════════

class TestILPredictor:
    def _predictor(self):
        clock = ManualClock(0.0)
        history = PriceHistory(clock=clock)
        scheduler = ManualScheduler(clock)
        return ILPredictor(history, HistoryPriceFeed(history), scheduler=scheduler), history, clock

    def test_predict_from_history(self):
        predictor, history, clock = self._predictor()
        history.record("SOL/USD", 100.0)
        clock.advance(60)
        history.record("SOL/USD", 101.0)

        pred = asyncio.run(predictor.predict(
            "SOL/USD", PredictionConfig(timeframe_minutes=30, position_value_usd=10_000, entry_price=100)
        ))
        assert pred.symbol == "SOL/USD"
        assert pred.current_price == 101.0
        # v/h = 12 → +6% over 30 min
        assert pred.predicted_price == pytest.approx(107.06)
        assert pred.predicted_il_percentage < 0
        assert pred.risk_level == "low"
        assert pred.confidence == 4  # 2 samples of 50
        assert pred.timeframe_minutes == 30

    def test_predict_none_without_price(self, caplog):
        predictor, _, _ = self._predictor()
        with caplog.at_level(logging.WARNING):
            pred = asyncio.run(predictor.predict(
                "SOL/USD", PredictionConfig(30, 10_000, 100)
            ))
        assert pred is None
        assert "Failed to fetch price for SOL/USD" in caplog.text

    def test_predict_none_with_single_sample(self):
        predictor, history, _ = self._predictor()
        history.record("SOL/USD", 100.0)
        assert asyncio.run(predictor.predict("SOL/USD", PredictionConfig(30, 10_000, 100))) is None

    def test_predict_multiple_keeps_order(self):
        predictor, history, clock = self._predictor()
        for sym in ["A/USD", "B/USD"]:
            history.record(sym, 10.0, timestamp=0)
            history.record(sym, 10.0, timestamp=60)
        clock.set(60)

        cfg = PredictionConfig(30, 1_000, 10)
        results = asyncio.run(predictor.predict_multiple(
            [("B/USD", cfg), ("A/USD", cfg), ("MISSING/USD", cfg)]
        ))
        assert [r.symbol if r else None for r in results] == ["B/USD", "A/USD", None]

    def test_monitor_alerts_and_cancels(self):
        predictor, history, clock = self._predictor()
        history.record("SOL/USD", 100.0)
        clock.advance(60)
        history.record("SOL/USD", 110.0)

        alerts = []
        cfg = PredictionConfig(timeframe_minutes=60, position_value_usd=10_000, entry_price=100)

        async def scenario():
            handle = await predictor.monitor("SOL/USD", cfg, alerts.append, interval_seconds=30)
            fired_immediately = len(alerts)
            await predictor.scheduler.advance(30)
            ticks = handle.ticks
            handle.cancel()
            await predictor.scheduler.advance(300)
            return handle, fired_immediately, ticks

        handle, fired_immediately, ticks = asyncio.run(scenario())
        # +120%/h over 60 min → ~2.4× entry → critical
        assert fired_immediately == 1
        assert alerts[0].risk_level == "critical"
        assert ticks == 1
        assert handle.ticks == 1
        assert predictor.scheduler.pending == 0

    def test_monitor_awaits_async_callback(self):
        predictor, history, clock = self._predictor()
        history.record("SOL/USD", 100.0)
        clock.advance(60)
        history.record("SOL/USD", 110.0)
        seen = []

        async def on_risk(pred):
            seen.append(pred.risk_level)

        async def scenario():
            handle = await predictor.monitor(
                "SOL/USD", PredictionConfig(60, 10_000, 100), on_risk, interval_seconds=30
            )
            handle.cancel()

        asyncio.run(scenario())
        assert seen == ["critical"]

    def test_monitor_requires_scheduler(self):
        history = PriceHistory()
        predictor = ILPredictor(history, HistoryPriceFeed(history))
        with pytest.raises(RuntimeError):
            asyncio.run(predictor.monitor(
                "SOL/USD", PredictionConfig(30, 10_000, 100), lambda p: None
            ))


# ═══════════════════════════════════════════════════════════════════════════
# 3. position_monitor.py
# ═══════════════════════════════════════════════════════════════════════════

class TestLPPosition:
    @pytest.mark.parametrize("lower,entry,upper", [
        (110, 100, 120),
        (90, 100, 95),
        (0, 100, 110),
        (100, 100, 110),
    ])
    def test_bounds_validated(self, lower, entry, upper):
        with pytest.raises(ValueError):
            LPPosition("p", "SOL", "USDC", entry, lower, upper, 10_000)

    def test_non_positive_value(self):
        with pytest.raises(ValueError):
            LPPosition("p", "SOL", "USDC", 100, 90, 110, 0)

    def test_defaults_from_entry(self):
        pos = LPPosition("p", "SOL", "USDC", 100, 90, 110, 10_000)
        assert pos.current_price == 100
        assert pos.total_value_usd == 10_000
        assert pos.in_range is True
        assert pos.pair == "SOL-USDC"
        assert pos.price_symbol == "SOL/USD"


class TestPositionMonitor:
    def test_create_assigns_sequential_ids(self):
        guard = _guard()
        a = guard.monitor.create_position("sol", "usdc", 100, 90, 110)
        b = guard.monitor.create_position("SOL", "USDC", 100, 80, 120)
        assert (a.position_id, b.position_id) == ("pos-1", "pos-2")
        assert a.token_a == "SOL"
        assert a.token_a_amount == pytest.approx(50.0)
        assert a.token_b_amount == pytest.approx(5_000.0)
        assert len(guard.monitor.all_positions()) == 2

    def test_update_measures_il_against_entry(self):
        guard = _guard()
        pos = guard.monitor.create_position("SOL", "USDC", 100, 90, 110, 10_000)
        _feed(guard, [120.0])

        updated = asyncio.run(guard.monitor.update_position(pos.position_id))
        assert updated is pos
        assert pos.current_price == pytest.approx(120.0)
        assert pos.current_il == pytest.approx(-0.4141, abs=1e-3)
        assert pos.total_value_usd == pytest.approx(11_000.0)
        assert pos.net_pnl == pytest.approx(-abs(pos.current_il_value))
        assert pos.in_range is False

    def test_repeated_updates_do_not_drift(self):
        guard = _guard()
        pos = guard.monitor.create_position("SOL", "USDC", 100, 80, 120, 10_000)
        _feed(guard, [90.0])
        asyncio.run(guard.monitor.update_position(pos.position_id))
        first = pos.current_il
        asyncio.run(guard.monitor.update_position(pos.position_id))
        assert pos.current_il == pytest.approx(first)

    def test_add_external_position(self):
        guard = _guard()
        external = LPPosition("whirlpool-7", "SOL", "USDC", 100, 90, 110, 2_000, token_a_amount=10, token_b_amount=1_000)
        assert guard.monitor.add_position(external) is external
        _feed(guard, [105.0])

        asyncio.run(guard.monitor.update_position("whirlpool-7"))
        assert guard.monitor.get_position("whirlpool-7") is external
        assert external.current_price == pytest.approx(105.0)
        assert external.total_value_usd == pytest.approx(2_050.0)
        assert external in guard.monitor.all_positions()

    def test_update_unknown_or_unpriced(self):
        guard = _guard()
        assert asyncio.run(guard.monitor.update_position("pos-404")) is None
        pos = guard.monitor.create_position("SOL", "USDC", 100, 90, 110)
        assert asyncio.run(guard.monitor.update_position(pos.position_id)) is None

    def test_monitor_position_callback(self):
        guard = _guard()
        pos = guard.monitor.create_position("SOL", "USDC", 100, 90, 110)
        _feed(guard, [84.0])
        updates = []

        async def scenario():
            handle = guard.monitor.monitor_position(pos.position_id, updates.append, 30)
            await guard.scheduler.advance(60)
            handle.cancel()
            await guard.scheduler.advance(60)
            return handle

        handle = asyncio.run(scenario())
        assert handle.ticks == 2
        assert len(updates) == 2
        first = updates[0]
        assert first.urgency == "critical"
        assert first.il_change == pytest.approx(first.position.current_il)
        assert "OUT OF RANGE" in first.recommendation
        assert updates[1].il_change == pytest.approx(0.0)

    def test_monitor_position_requires_scheduler(self):
        history = PriceHistory()
        monitor = PositionMonitor(HistoryPriceFeed(history))
        pos = monitor.create_position("SOL", "USDC", 100, 90, 110)
        with pytest.raises(RuntimeError):
            monitor.monitor_position(pos.position_id, lambda u: None)

    def test_positions_by_risk_and_remove(self):
        guard = _guard()
        inside = guard.monitor.create_position("SOL", "USDC", 100, 80, 120)
        outside = guard.monitor.create_position("SOL", "USDC", 100, 90, 110)
        _feed(guard, [84.0])
        asyncio.run(guard.monitor.update_all_positions())

        grouped = guard.monitor.positions_by_risk()
        assert grouped["low"] == [inside]
        assert grouped["critical"] == [outside]

        assert guard.monitor.remove_position(outside.position_id) is True
        assert guard.monitor.remove_position(outside.position_id) is False
        assert guard.monitor.get_position(outside.position_id) is None

    def test_classify_urgency(self):
        pos = LPPosition("p", "SOL", "USDC", 100, 50, 200, 10_000)
        for il, level in [(-1, "low"), (-3, "medium"), (-5, "high"), (-7, "critical")]:
            pos.current_il = il
            assert classify_il_urgency(pos) == level
        pos.current_il = 0
        pos.in_range = False
        assert classify_il_urgency(pos) == "critical"

    def test_position_summary(self):
        guard = _guard()
        pos = guard.monitor.create_position("SOL", "USDC", 100, 90, 110)
        _feed(guard, [84.0])
        asyncio.run(guard.monitor.update_position(pos.position_id))
        text = guard.monitor.position_summary(pos.position_id)
        assert "SOL-USDC" in text
        assert "OUT OF RANGE" in text
        assert guard.monitor.position_summary("nope") == "Position not found"


# ═══════════════════════════════════════════════════════════════════════════
# 4. risk_scoring.py
# ═══════════════════════════════════════════════════════════════════════════

class TestNormalization:
    @pytest.mark.parametrize("il,expected", [(0, 0), (-5, 50), (5, 50), (-10, 100), (-40, 100)])
    def test_normalize_il(self, il, expected):
        assert normalize_il(il) == pytest.approx(expected)

    @pytest.mark.parametrize("vol,expected", [(0, 0), (2.5, 50), (5, 100), (12, 100)])
    def test_normalize_volatility(self, vol, expected):
        assert normalize_volatility(vol) == pytest.approx(expected)


class TestRiskBuckets:
    @pytest.mark.parametrize("score,level", [
        (0, "low"),
        (24.999, "low"),
        (25, "medium"),
        (49.99, "medium"),
        (50, "high"),
        (74.99, "high"),
        (75, "critical"),
        (100, "critical"),
    ])
    def test_inclusive_lower_bounds(self, score, level):
        assert risk_level_for_score(score) == level

    def test_weighted_score_extremes(self):
        engine = _guard().engine
        assert engine.weighted_score(0, 0, False, 0) == 0
        assert engine.weighted_score(-10, -10, True, 5) == pytest.approx(100)
        assert engine.weighted_score(0, 0, True, 0) == pytest.approx(20)


class TestRebalanceEconomics:
    def test_worthwhile(self):
        decision = _guard().engine._decision_from(_prediction(-3.0, -1.0))
        assert decision.should_rebalance is True
        assert decision.expected_il_prevented == pytest.approx(0.7)
        assert decision.net_savings == pytest.approx(0.69)
        assert decision.confidence == 80
        assert decision.reason.startswith("Rebalancing will prevent $0.70 IL")

    def test_negligible(self):
        decision = _guard().engine._decision_from(_prediction(-0.01, -0.1))
        assert decision.should_rebalance is False
        assert decision.reason == "Predicted IL is negligible - not worth rebalancing"

    def test_too_small_for_gas(self):
        engine = _guard(RiskSettings(gas_cost_usd=2.0)).engine
        decision = engine._decision_from(_prediction(-0.2, -20.0))
        # 20 × 0.7 = 14 < 2 × 10
        assert decision.should_rebalance is False
        assert "too small compared to gas cost" in decision.reason

    def test_no_prediction(self):
        decision = _guard().engine._decision_from(None)
        assert decision.should_rebalance is False
        assert decision.reason == "Unable to predict IL - insufficient data"
        assert decision.net_savings == pytest.approx(-0.01)
        assert decision.confidence == 0


class TestActionTree:
    def _recommend(self, il_pct, il_value, volatility=0.0, in_range=True):
        engine = _guard().engine
        pos = LPPosition("p", "SOL", "USDC", 100, 90, 110, 10_000)
        pos.in_range = in_range
        pred = _prediction(il_pct, il_value)
        return engine._recommend(pos, pred, volatility, engine._decision_from(pred))

    def test_out_of_range_wins(self):
        rec = self._recommend(0.0, 0.0, in_range=False)
        assert (rec.action, rec.urgency) == ("rebalance", "critical")
        assert rec.reasoning.startswith("Position OUT OF RANGE")

    def test_severe_il_rebalance(self):
        rec = self._recommend(-7.0, -700.0)
        assert (rec.action, rec.urgency) == ("rebalance", "critical")
        assert rec.worth_rebalancing is True

    def test_severe_il_exit_when_not_worth_it(self):
        rec = self._recommend(-7.0, -0.01)
        assert (rec.action, rec.urgency) == ("exit", "critical")

    def test_high_il_high_volatility(self):
        assert (self._recommend(-5.0, -500.0, 4.0).action) == "widen_range"
        rec = self._recommend(-5.0, -0.01, 4.0)
        assert (rec.action, rec.urgency) == ("monitor", "high")

    def test_high_il_calm_market_is_medium(self):
        rec = self._recommend(-5.0, -500.0, 2.0)
        assert (rec.action, rec.urgency) == ("monitor", "medium")

    def test_threshold_is_strict(self):
        rec = self._recommend(-2.0, -200.0)
        assert (rec.action, rec.urgency) == ("monitor", "low")

    def test_healthy(self):
        rec = self._recommend(-0.5, -50.0)
        assert (rec.action, rec.urgency) == ("monitor", "low")
        assert rec.reasoning.startswith("Position healthy")


class TestRiskScoringScenarios:
    def test_out_of_range_always_rebalance_critical(self):
        guard = _guard()
        pos = guard.monitor.create_position("SOL", "USDC", 100, 90, 110, 10_000)
        _feed(guard, [84.0, 84.0])
        asyncio.run(guard.monitor.update_position(pos.position_id))

        score = asyncio.run(guard.score_risk(pos))
        assert pos.in_range is False
        assert score.components.out_of_range is True
        assert score.components.predicted_il == pytest.approx(0.0)
        assert score.recommendation.action == "rebalance"
        assert score.recommendation.urgency == "critical"
        # 0.3·3.79 + 0.2·100
        assert score.risk_score == pytest.approx(21.14, abs=0.01)
        assert score.overall_risk == "low"

    def test_out_of_range_with_crash_forecast(self):
        guard = _guard()
        pos = guard.monitor.create_position("SOL", "USDC", 100, 90, 110, 10_000)
        _feed(guard, [100.0, 84.0])
        asyncio.run(guard.monitor.update_position(pos.position_id))

        score = asyncio.run(guard.score_risk(pos))
        assert score.prediction.risk_level == "critical"
        assert score.recommendation.action == "rebalance"
        assert score.recommendation.urgency == "critical"
        assert score.recommendation.worth_rebalancing is True
        # 0.3·3.79 + 0.4·100 + 0.2·100
        assert score.risk_score == pytest.approx(61.14, abs=0.01)
        assert score.overall_risk == "high"

    def test_in_range_low_predicted_il_monitor_low(self):
        guard = _guard()
        pos = guard.monitor.create_position("SOL", "USDC", 100, 80, 120, 10_000)
        _feed(guard, [84.0, 84.0, 84.0])
        asyncio.run(guard.monitor.update_position(pos.position_id))

        score = asyncio.run(guard.score_risk(pos))
        assert pos.in_range is True
        assert score.prediction is not None
        assert score.recommendation.action == "monitor"
        assert score.recommendation.urgency == "low"
        assert score.overall_risk == "low"
        assert score.position_id == pos.position_id

    def test_zero_priced_lookback_does_not_break_scoring(self):
        guard = _guard()
        pos = guard.monitor.create_position("SOL", "USDC", 100, 90, 110, 10_000)
        _feed(guard, [0.0, 100.0])

        score = asyncio.run(guard.score_risk(pos))
        assert score.prediction is not None
        assert score.prediction.predicted_il_percentage == pytest.approx(0.0)
        assert score.recommendation.action == "monitor"

    def test_zero_current_price_scores_without_forecast(self):
        guard = _guard()
        pos = guard.monitor.create_position("SOL", "USDC", 100, 90, 110, 10_000)
        _feed(guard, [0.0, 0.0])
        asyncio.run(guard.monitor.update_position(pos.position_id))

        score = asyncio.run(guard.score_risk(pos))
        assert pos.current_il == pytest.approx(-100.0)
        assert score.prediction is None
        assert (score.recommendation.action, score.recommendation.urgency) == ("rebalance", "critical")

    def test_missing_prediction_scores_anyway(self):
        guard = _guard()
        pos = guard.monitor.create_position("SOL", "USDC", 100, 90, 110, 10_000)

        score = asyncio.run(guard.score_risk(pos))
        assert score.prediction is None
        assert score.components.predicted_il == 0.0
        assert score.risk_score == 0
        assert (score.recommendation.action, score.recommendation.urgency) == ("monitor", "low")
        assert score.recommendation.reasoning.endswith(
            "(IL prediction unavailable; predicted IL treated as 0)"
        )

        decision = asyncio.run(guard.decide_rebalance(pos))
        assert decision.should_rebalance is False
        assert decision.confidence == 0

    def test_score_all_riskiest_first(self):
        guard = _guard()
        inside = guard.monitor.create_position("SOL", "USDC", 100, 80, 120)
        outside = guard.monitor.create_position("SOL", "USDC", 100, 90, 110)
        _feed(guard, [84.0, 84.0])
        asyncio.run(guard.monitor.update_all_positions())

        scores = asyncio.run(guard.engine.score_all())
        assert [s.position_id for s in scores] == [outside.position_id, inside.position_id]

    def test_score_all_without_monitor(self):
        history = PriceHistory()
        engine = RiskScoringEngine(history, ILPredictor(history, HistoryPriceFeed(history)))
        assert asyncio.run(engine.score_all()) == []

    def test_format_risk_score(self):
        guard = _guard()
        pos = guard.monitor.create_position("SOL", "USDC", 100, 90, 110)
        _feed(guard, [84.0, 84.0])
        asyncio.run(guard.monitor.update_position(pos.position_id))
        text = format_risk_score(asyncio.run(guard.score_risk(pos)))
        assert "SOL-USDC Risk Assessment" in text
        assert "Action: REBALANCE" in text
        assert "Out of Range: YES" in text


# ═══════════════════════════════════════════════════════════════════════════
# 5. il_guard.py
# ═══════════════════════════════════════════════════════════════════════════

class TestILGuard:
    def test_compute_il(self):
        assert ILGuard.compute_il(100, 200, 10_000).il_percentage == pytest.approx(-5.72, abs=0.01)

    def test_velocity_and_volatility(self):
        guard = _guard()
        assert guard.get_velocity("SOL/USD") is None
        _feed(guard, [100.0, 101.0])
        assert guard.get_velocity("SOL/USD").velocity_per_hour == pytest.approx(12.0)
        assert guard.get_volatility("SOL/USD") == 0.0

    def test_predict_il_defaults_entry_to_latest(self):
        guard = _guard()
        assert asyncio.run(guard.predict_il("SOL/USD")) is None
        _feed(guard, [100.0, 100.0])
        pred = asyncio.run(guard.predict_il("SOL/USD"))
        assert pred.timeframe_minutes == 30
        assert pred.predicted_il_percentage == pytest.approx(0.0)
        assert pred.risk_level == "low"

    def test_explicit_zero_timeframe_kept(self):
        guard = _guard()
        _feed(guard, [100.0, 101.0])
        pred = asyncio.run(guard.predict_il("SOL/USD", timeframe_minutes=0, entry_price=100))
        assert pred.timeframe_minutes == 0
        assert pred.predicted_price == pytest.approx(101.0)

    def test_monitor_interval_from_env(self, monkeypatch):
        monkeypatch.setenv("ILGUARD_MONITOR_INTERVAL_SECONDS", "10")
        guard = _guard(RiskSettings.from_env())
        pos = guard.monitor.create_position("SOL", "USDC", 100, 90, 110)
        _feed(guard, [100.0, 100.0])
        updates = []

        async def scenario():
            position_handle = guard.monitor.monitor_position(pos.position_id, updates.append)
            predictor_handle = await guard.predictor.monitor(
                "SOL/USD", PredictionConfig(30, 10_000, 100), lambda p: None
            )
            await guard.scheduler.advance(30)
            return position_handle, predictor_handle

        position_handle, predictor_handle = asyncio.run(scenario())
        assert position_handle.interval_seconds == 10
        assert predictor_handle.interval_seconds == 10
        assert position_handle.ticks == 3
        assert len(updates) == 3

    def test_settings_flow_through(self):
        settings = RiskSettings(history_capacity=5, il_thresholds=(1.0, 2.0, 3.0))
        guard = _guard(settings)
        assert guard.history.capacity == 5
        assert guard.predictor.risk_thresholds == (1.0, 2.0, 3.0)
        assert guard.monitor.il_thresholds == (1.0, 2.0, 3.0)

    def test_with_price_service(self):
        class StubService:
            def __init__(self, history):
                self.history = history

            async def get_price(self, symbol):
                return self.history.record(symbol, 42.0)

        guard = ILGuard.with_price_service(StubService)
        assert guard.predictor.price_source is guard.price_source
        assert guard.monitor.price_source is guard.price_source
        sample = asyncio.run(guard.price_source.get_price("SOL/USD"))
        assert guard.history.latest("SOL/USD") == sample


# ═══════════════════════════════════════════════════════════════════════════
# 6. commands.py (offline commands)
# ═══════════════════════════════════════════════════════════════════════════

from ilguard.commands import _split_pair, cmd_il, cmd_simulate, simulated_price_path


class TestCommands:
    def test_split_pair(self):
        assert _split_pair("sol-usdc") == ("SOL", "USDC")
        assert _split_pair("SOL/USDC") == ("SOL", "USDC")
        with pytest.raises(ValueError):
            _split_pair("SOL")

    def test_cmd_il(self, capsys):
        assert cmd_il(100, 200, 10_000) is True
        out = capsys.readouterr().out
        assert "-5.72%" in out

    def test_cmd_il_invalid(self, capsys):
        assert cmd_il(0, 100, 10_000) is False
        assert "❌" in capsys.readouterr().out

    def test_price_path_deterministic(self):
        a = simulated_price_path(100, -0.5, 0.2, 30, 10, seed=1)
        b = simulated_price_path(100, -0.5, 0.2, 30, 10, seed=1)
        assert a == b
        assert len(a) == 31
        assert a[0] == 100

    def test_price_path_flat(self):
        assert simulated_price_path(100, 0, 0, 5, 10, seed=3) == [100.0] * 6

    def test_cmd_simulate(self, capsys):
        score = asyncio.run(cmd_simulate(minutes=3, drift_pct_per_min=-0.5, noise_pct=0.1, seed=1))
        assert score is not None
        assert score.position.in_range is True
        assert score.prediction is not None
        assert "Risk Assessment" in capsys.readouterr().out

    def test_cmd_simulate_invalid_range(self, capsys):
        assert asyncio.run(cmd_simulate(entry_price=100, lower=120, upper=130, minutes=1)) is None
