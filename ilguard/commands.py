"""
ILGuard — Command Implementations
=================================

All CLI command handlers live here, keeping run.py as a thin
argparse dispatcher.  Each public function corresponds to a
subcommand (info, il, price, assess, watch, simulate).

Live commands (price, assess, watch) read Pyth Hermes; il and simulate
are fully offline.
"""

from __future__ import annotations

import asyncio
import logging
import math
import random

from il_guard import ILGuard
from il_math import impermanent_loss, range_proximity
from il_predictor import ILPrediction, PredictionConfig
from position_monitor import PositionUpdate
from risk_scoring import RiskScore, format_risk_score
from ilguard.central_config import PROJECT_NAME, PROJECT_VERSION, RiskSettings, config
from ilguard.pyth_client import PythPriceService
from ilguard.scheduler import AsyncioScheduler, ManualClock, ManualScheduler

logger = logging.getLogger(__name__)

QUOTE_SYMBOL = "USDC/USD"


def _split_pair(pair: str) -> tuple[str, str]:
    """'SOL-USDC' or 'SOL/USDC' → ('SOL', 'USDC')."""
    parts = [p for p in pair.replace("/", "-").upper().split("-") if p]
    if len(parts) != 2:
        raise ValueError(f"Invalid pair {pair!r}; expected e.g. SOL-USDC")
    return parts[0], parts[1]


def _print_decision(decision) -> None:
    print("Rebalancing Decision:")
    print(f"  Should Rebalance: {'YES ✅' if decision.should_rebalance else 'NO ❌'}")
    print(f"  Reason: {decision.reason}")
    print(f"  Expected IL Prevented: ${decision.expected_il_prevented:.2f}")
    print(f"  Gas Cost: ${decision.estimated_gas_cost:.2f}")
    print(f"  Net Savings: ${decision.net_savings:.2f}")
    print(f"  Confidence: {decision.confidence}%")


# ── Commands ─────────────────────────────────────────────────────────────


def cmd_info() -> None:
    """Display system and architecture information."""
    settings = RiskSettings.from_env()
    w = settings.weights
    print(f"\n🛡️  {PROJECT_NAME} v{PROJECT_VERSION}")
    print("=" * 55)
    print("📉 Purpose     : Impermanent loss forecasting & rebalance decisions")
    print(f"📡 Price feed  : Pyth Hermes ({config.hermes_url()})")
    print(f"🪙 Feeds       : {', '.join(config.api.PRICE_FEED_IDS)}")
    print()
    print("⚙️  Tunables (ILGUARD_* env vars):")
    print(f"   History capacity      : {settings.history_capacity} samples")
    print(f"   Volatility window     : {settings.volatility_window_minutes:g} min")
    print(f"   Prediction horizon    : {settings.prediction_horizon_minutes:g} min")
    print(
        f"   Risk weights          : IL {w['current_il']:.2f} · predicted {w['predicted_il']:.2f}"
        f" · range {w['out_of_range']:.2f} · vol {w['volatility']:.2f}"
    )
    print(f"   IL thresholds         : {' / '.join(f'{t:g}%' for t in settings.il_thresholds)}")
    print(f"   Gas cost              : ${settings.gas_cost_usd}")
    print(f"   Min savings multiple  : {settings.min_savings_multiplier:g}×")
    print(f"   Mitigation efficacy   : {settings.mitigation_efficacy:.0%}")
    print(f"   Monitor interval      : {settings.monitor_interval_seconds:g} s")
    print()
    print("📁 Files:")
    print("   run.py               — CLI entry point")
    print("   il_math.py           — closed-form IL + rebalance threshold")
    print("   price_history.py     — bounded price series, velocity, volatility")
    print("   il_predictor.py      — short-horizon IL forecast")
    print("   risk_scoring.py      — weighted risk score + action")
    print("   position_monitor.py  — position registry & live metrics")
    print("   ilguard/             — config, Hermes client, scheduler, commands")
    print()
    print("📚 References:")
    print("   Pintail (2019) IL : https://pintail.medium.com/uniswap-a-good-deal-for-liquidity-providers-104c0b6816f2")
    print("   Pyth Hermes       : https://docs.pyth.network/price-feeds/api-instances-and-providers/hermes")


def cmd_il(initial_price: float, current_price: float, value_usd: float) -> bool:
    """Offline IL calculator."""
    try:
        res = impermanent_loss(initial_price, current_price, value_usd)
    except ValueError as exc:
        print(f"❌ {exc}")
        return False

    change = (current_price - initial_price) / initial_price * 100
    print(f"\n📉 Impermanent Loss — ${initial_price:,.4f} → ${current_price:,.4f} ({change:+.2f}%)")
    print("=" * 55)
    print(f"  IL          : {res.il_percentage:.2f}%")
    print(f"  IL value    : ${res.il_value:,.2f}")
    print(f"  LP value    : ${res.current_value:,.2f}")
    print(f"  HODL value  : ${res.hold_value:,.2f}")
    return True


async def cmd_price(symbols: list[str]) -> bool:
    """Fetch live quotes from Pyth Hermes."""
    guard = ILGuard.with_price_service(PythPriceService, settings=RiskSettings.from_env())
    quotes = await guard.price_source.get_prices([s.upper() for s in symbols])
    ok = True
    for sym in symbols:
        q = quotes.get(sym.upper())
        if q:
            print(f"✅ {sym.upper()}: ${q.price:,.6f} (±${q.confidence:,.6f})")
        else:
            print(f"❌ {sym.upper()}: price unavailable")
            ok = False
    return ok


async def _collect_history(guard: ILGuard, symbols: list[str], samples: int, interval: float) -> None:
    for i in range(samples):
        await guard.price_source.get_prices(symbols)
        print(f"   Progress: [{'█' * (i + 1)}{' ' * (samples - i - 1)}] {(i + 1) / samples:.0%}", end="\r")
        if i < samples - 1:
            await asyncio.sleep(interval)
    print()


async def cmd_assess(
    pair: str,
    entry_price: float,
    lower: float,
    upper: float,
    value_usd: float,
    samples: int = 5,
    sample_interval: float = 2.0,
) -> RiskScore | None:
    """Assess a position against live prices: current IL, forecast, risk, decision."""
    token_a, token_b = _split_pair(pair)
    guard = ILGuard.with_price_service(PythPriceService, settings=RiskSettings.from_env())

    try:
        position = guard.monitor.create_position(token_a, token_b, entry_price, lower, upper, value_usd)
    except ValueError as exc:
        print(f"❌ {exc}")
        return None

    print(f"\n📊 Collecting market data for {token_a}/USD ({samples} samples)...")
    await _collect_history(guard, [f"{token_a}/USD", f"{token_b}/USD"], samples, sample_interval)

    if await guard.monitor.update_position(position.position_id) is None:
        print("❌ Failed to fetch current prices. Try again later.")
        return None

    print(guard.monitor.position_summary(position.position_id))
    prox = range_proximity(position.current_price, lower, upper)
    print(
        f"Range buffers: ↓ {prox['downside_buffer_pct']:.2f}%  ↑ {prox['upside_buffer_pct']:.2f}%"
    )

    score = await guard.score_risk(position)
    print(format_risk_score(score))
    _print_decision(await guard.decide_rebalance(position))
    return score


async def cmd_watch(
    pair: str,
    entry_price: float,
    lower: float,
    upper: float,
    value_usd: float,
    interval: float = None,
    duration: float = 300.0,
) -> bool:
    """Stand a live monitor over a position; alerts on high / critical forecasts."""
    token_a, token_b = _split_pair(pair)
    guard = ILGuard.with_price_service(
        PythPriceService, settings=RiskSettings.from_env(), scheduler=AsyncioScheduler()
    )
    try:
        position = guard.monitor.create_position(token_a, token_b, entry_price, lower, upper, value_usd)
    except ValueError as exc:
        print(f"❌ {exc}")
        return False

    if interval is None:
        interval = guard.settings.monitor_interval_seconds
    symbol = position.price_symbol

    def on_risk(pred: ILPrediction) -> None:
        print(f"   🚨 ALERT: {pred.risk_level.upper()} risk detected!")
        print(f"      {pred.recommendation}")

    def on_update(update: PositionUpdate) -> None:
        pos = update.position
        print(
            f"   📊 ${pos.current_price:,.4f} · IL {pos.current_il:.2f}% "
            f"({update.il_change:+.3f}) · {update.urgency.upper()}"
        )

    print(f"\n👀 Watching {position.pair} every {interval:g}s for {duration:g}s (Ctrl+C to stop)")
    handles = [
        guard.monitor.monitor_position(position.position_id, on_update, interval),
        await guard.predictor.monitor(
            symbol,
            PredictionConfig(
                timeframe_minutes=guard.settings.prediction_horizon_minutes,
                position_value_usd=value_usd,
                entry_price=entry_price,
            ),
            on_risk,
            interval,
        ),
    ]
    try:
        await asyncio.sleep(duration)
    finally:
        for handle in handles:
            handle.cancel()
        await asyncio.gather(*(h.wait() for h in handles))

    score = await guard.score_risk(position)
    print(format_risk_score(score))
    return True


def simulated_price_path(
    start: float, drift_pct_per_min: float, noise_pct: float, steps: int, step_seconds: float, seed: int
) -> list[float]:
    """Geometric drift plus seeded Gaussian noise, one price per step."""
    rng = random.Random(seed)
    drift = drift_pct_per_min / 100 * step_seconds / 60
    prices = [start]
    for _ in range(steps):
        shock = rng.gauss(0.0, noise_pct / 100)
        prices.append(max(prices[-1] * math.exp(drift + shock), 1e-12))
    return prices


async def cmd_simulate(
    entry_price: float = 100.0,
    lower: float = 90.0,
    upper: float = 110.0,
    value_usd: float = 10_000.0,
    drift_pct_per_min: float = -0.5,
    noise_pct: float = 0.2,
    minutes: float = 30.0,
    step_seconds: float = 10.0,
    seed: int = 7,
) -> RiskScore | None:
    """Replay a synthetic price path on simulated time and score the position each minute."""
    clock = ManualClock(0.0)
    scheduler = ManualScheduler(clock)
    guard = ILGuard(settings=RiskSettings.from_env(), scheduler=scheduler, clock=clock)

    try:
        position = guard.monitor.create_position("SOL", "USDC", entry_price, lower, upper, value_usd)
    except ValueError as exc:
        print(f"❌ {exc}")
        return None

    steps = int(minutes * 60 / step_seconds)
    path = iter(simulated_price_path(entry_price, drift_pct_per_min, noise_pct, steps, step_seconds, seed))
    symbol = position.price_symbol

    def feed_tick() -> None:
        price = next(path, None)
        if price is not None:
            guard.record_price(symbol, price)
            guard.record_price(QUOTE_SYMBOL, 1.0)

    feed_tick()
    feed = scheduler.every(step_seconds, feed_tick, name="feed")

    print(f"\n🧪 Simulating {position.pair} {minutes:g} min · drift {drift_pct_per_min:+g}%/min")
    print(f"{'min':>5} {'price':>10} {'IL%':>7} {'pIL%':>7} {'vol':>6} {'score':>6}  action")

    score = None
    for minute in range(1, int(minutes) + 1):
        await scheduler.advance(60)
        await guard.monitor.update_position(position.position_id)
        score = await guard.score_risk(position)
        print(
            f"{minute:>5} {position.current_price:>10.4f} {position.current_il:>7.2f} "
            f"{score.components.predicted_il:>7.2f} {score.components.volatility:>6.3f} "
            f"{score.risk_score:>6.1f}  {score.recommendation.action}/{score.recommendation.urgency}"
        )

    feed.cancel()
    if score is not None:
        print(format_risk_score(score))
    return score
