"""Builders for market state snapshots and trade-derived candles."""

import logging
from typing import Dict, List, Sequence

import pandas as pd

from market_maker.exceptions import InsufficientDataError
from market_maker.indicators.technical_indicators import (
    detect_ema_cross,
    ema,
    fibonacci,
    find_high_low,
    get_indicator_summary,
    rsi,
)
from market_maker.models import Candle, MarketState
from market_maker.phase_classifier import classify_phase

logger = logging.getLogger(__name__)

MIN_CANDLES_FOR_STATE = 5
MIN_CANDLES_FOR_SIGNAL = 21

# Candles back to the reference close for each change window
LOOKBACK_1M = 2
LOOKBACK_5M = 10
LOOKBACK_15M = 30
LOOKBACK_1H = 120

LAMPORTS_PER_SOL = 1e9
TOKEN_DECIMALS = 6


def _percent_change(candles: Sequence[Candle], current_price: float, lookback: int) -> float:
    """Percent change from the close ``lookback`` candles back; 0 when the window is too short."""
    if len(candles) <= lookback:
        return 0.0
    reference = candles[-(lookback + 1)].close
    if reference == 0:
        return 0.0
    return (current_price - reference) / reference * 100


def build_market_state(
    candles: Sequence[Candle],
    asset_age_minutes: float,
    market_cap_usd: float = 0.0,
    bonding_complete: bool = False,
) -> MarketState:
    """
    Build the per-cycle market state from a candle window.

    Args:
        candles: Candles ordered oldest first
        asset_age_minutes: Minutes since the asset was created
        market_cap_usd: Market cap in USD from the token info source
        bonding_complete: Whether the bonding curve has completed

    Returns:
        MarketState with indicators and the classified phase

    Raises:
        InsufficientDataError: If fewer than 5 candles are available
    """
    if len(candles) < MIN_CANDLES_FOR_STATE:
        raise InsufficientDataError(len(candles), MIN_CANDLES_FOR_STATE)

    prices = [c.close for c in candles]
    current_price = prices[-1]

    ema9 = ema(prices, 9)
    ema21 = ema(prices, 21)
    ema50 = ema(prices, 50)
    rsi14 = rsi(prices, 14)

    high, low = find_high_low(candles)
    fib_levels = fibonacci(high, low)
    ema_cross = detect_ema_cross(candles)

    price_change_1m = _percent_change(candles, current_price, LOOKBACK_1M)
    price_change_5m = _percent_change(candles, current_price, LOOKBACK_5M)
    price_change_15m = _percent_change(candles, current_price, LOOKBACK_15M)
    price_change_1h = _percent_change(candles, current_price, LOOKBACK_1H)

    recent_1m = candles[-LOOKBACK_1M:]
    recent_5m = candles[-LOOKBACK_5M:]

    volume_1m = sum(c.volume for c in recent_1m)
    volume_5m = sum(c.volume for c in recent_5m)
    net_volume_1m = sum(c.buy_volume - c.sell_volume for c in recent_1m)
    net_volume_5m = sum(c.buy_volume - c.sell_volume for c in recent_5m)

    buy_count_1m = sum(1 for c in recent_1m if c.buy_volume > 0)
    sell_count_1m = sum(1 for c in recent_1m if c.sell_volume > 0)

    phase = classify_phase(
        price_change_5m=price_change_5m,
        price_change_15m=price_change_15m,
        net_volume_5m=net_volume_5m,
        rsi14=rsi14,
        current_price=current_price,
        ema9=ema9,
        ema21=ema21,
    )

    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(get_indicator_summary(prices, fib_levels, ema_cross))

    return MarketState(
        current_price=current_price,
        price_change_1m=price_change_1m,
        price_change_5m=price_change_5m,
        price_change_15m=price_change_15m,
        price_change_1h=price_change_1h,
        volume_1m=volume_1m,
        volume_5m=volume_5m,
        net_volume_1m=net_volume_1m,
        net_volume_5m=net_volume_5m,
        buy_count_1m=buy_count_1m,
        sell_count_1m=sell_count_1m,
        ema9=ema9,
        ema21=ema21,
        ema50=ema50,
        rsi14=rsi14,
        fib_levels=fib_levels,
        ema_cross=ema_cross,
        phase=phase,
        asset_age_minutes=asset_age_minutes,
        market_cap_usd=market_cap_usd,
        bonding_complete=bonding_complete,
        candle_count=len(candles),
    )


def build_candles_from_trades(trades: List[Dict], resolution_seconds: int) -> List[Candle]:
    """
    Aggregate raw curve trades into candles.

    Each trade dict carries ``timestamp`` (Unix seconds or milliseconds),
    ``sol_amount`` (lamports), ``token_amount`` (base units) and ``is_buy``.
    Trades are bucketed by ``floor(ts / resolution) * resolution``. Prices are
    SOL per whole token, the unit of curve reserves and wallet balances, and
    volume is counted in SOL.

    Args:
        trades: Raw trades in any order
        resolution_seconds: Candle width in seconds

    Returns:
        Candles ordered oldest first (empty when there are no usable trades)
    """
    if not trades:
        return []
    if resolution_seconds <= 0:
        raise ValueError("resolution_seconds must be greater than 0")

    df = pd.DataFrame(trades, columns=["timestamp", "sol_amount", "token_amount", "is_buy"])
    df = df.dropna()
    df = df[df["token_amount"] > 0]
    if df.empty:
        return []

    # Seconds are promoted to milliseconds
    ts = df["timestamp"].astype("int64")
    df["timestamp"] = ts.where(ts >= 10**12, ts * 1000)
    df = df.sort_values("timestamp", kind="stable")

    candle_ms = resolution_seconds * 1000
    df["bucket"] = (df["timestamp"] // candle_ms) * candle_ms
    df["volume"] = df["sol_amount"] / LAMPORTS_PER_SOL
    df["price"] = df["volume"] / (df["token_amount"] / 10 ** TOKEN_DECIMALS)
    df["is_buy"] = df["is_buy"].astype(bool)
    df["buy_volume"] = df["volume"].where(df["is_buy"], 0.0)
    df["sell_volume"] = df["volume"].where(~df["is_buy"], 0.0)

    grouped = df.groupby("bucket", sort=True).agg(
        open=("price", "first"),
        high=("price", "max"),
        low=("price", "min"),
        close=("price", "last"),
        volume=("volume", "sum"),
        buy_volume=("buy_volume", "sum"),
        sell_volume=("sell_volume", "sum"),
    )

    candles = [
        Candle(
            timestamp=int(bucket),
            open=float(row["open"]),
            high=float(row["high"]),
            low=float(row["low"]),
            close=float(row["close"]),
            volume=float(row["volume"]),
            buy_volume=float(row["buy_volume"]),
            sell_volume=float(row["sell_volume"]),
        )
        for bucket, row in grouped.iterrows()
    ]
    logger.debug(f"Built {len(candles)} candles ({resolution_seconds}s) from {len(df)} trades")
    return candles
