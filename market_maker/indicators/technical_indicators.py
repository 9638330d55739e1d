"""Technical indicator calculations over close prices and candles."""

import logging
import math
from typing import Dict, Sequence, Tuple

from market_maker.models import Candle, EmaCross, FibonacciLevels

logger = logging.getLogger(__name__)

FIB_RATIOS = (0.236, 0.382, 0.5, 0.618, 0.786)


def ema(prices: Sequence[float], period: int) -> float:
    """
    Exponential moving average of ``prices``.

    With fewer than ``period`` samples the arithmetic mean of all samples is
    returned instead. Otherwise the average is seeded with the SMA of the first
    ``period`` values and the standard recurrence is applied to the rest.

    Args:
        prices: Prices ordered oldest first
        period: EMA period

    Returns:
        EMA value (0.0 for an empty series)
    """
    if not prices:
        return 0.0
    if len(prices) < period:
        return sum(prices) / len(prices)

    multiplier = 2 / (period + 1)
    value = sum(prices[:period]) / period
    for price in prices[period:]:
        value = (price - value) * multiplier + value
    return value


def sma(prices: Sequence[float], period: int) -> float:
    """Simple moving average of the last ``period`` prices (mean of all when shorter)."""
    if not prices:
        return 0.0
    window = prices[-period:] if len(prices) >= period else prices
    return sum(window) / len(window)


def rsi(prices: Sequence[float], period: int = 14) -> float:
    """
    Relative Strength Index with Wilder smoothing.

    Args:
        prices: Prices ordered oldest first
        period: Look-back period

    Returns:
        RSI in [0, 100]; 50 when there are fewer than ``period + 1`` samples,
        100 when the average loss is exactly zero
    """
    if len(prices) < period + 1:
        return 50.0

    gains = 0.0
    losses = 0.0
    for i in range(1, period + 1):
        change = prices[i] - prices[i - 1]
        if change > 0:
            gains += change
        else:
            losses -= change

    avg_gain = gains / period
    avg_loss = losses / period

    for i in range(period + 1, len(prices)):
        change = prices[i] - prices[i - 1]
        if change > 0:
            avg_gain = (avg_gain * (period - 1) + change) / period
            avg_loss = (avg_loss * (period - 1)) / period
        else:
            avg_gain = (avg_gain * (period - 1)) / period
            avg_loss = (avg_loss * (period - 1) - change) / period

    if avg_loss == 0:
        # Flat series: no gains and no losses
        if avg_gain == 0:
            return 50.0
        return 100.0
    rs = avg_gain / avg_loss
    return 100 - (100 / (1 + rs))


def fibonacci(high: float, low: float) -> FibonacciLevels:
    """
    Fibonacci retracement levels between a swing high and low.

    Args:
        high: Swing high (0% retracement)
        low: Swing low (100% retracement)

    Returns:
        FibonacciLevels, all equal when high == low
    """
    price_range = high - low
    fib236, fib382, fib500, fib618, fib786 = (high - price_range * ratio for ratio in FIB_RATIOS)
    return FibonacciLevels(
        high=high,
        low=low,
        fib236=fib236,
        fib382=fib382,
        fib500=fib500,
        fib618=fib618,
        fib786=fib786,
    )


def in_golden_pocket(price: float, fib: FibonacciLevels) -> bool:
    """True when ``price`` sits in the 61.8%-78.6% retracement band."""
    return fib.fib786 <= price <= fib.fib618


def find_high_low(candles: Sequence[Candle], lookback: int = 50) -> Tuple[float, float]:
    """
    Swing high and low over the most recent ``lookback`` candles.

    Returns:
        Tuple of (high, low); (0.0, 0.0) for an empty window
    """
    recent = candles[-lookback:] if lookback > 0 else []
    if not recent:
        return 0.0, 0.0
    return max(c.high for c in recent), min(c.low for c in recent)


def detect_ema_cross(candles: Sequence[Candle], short_period: int = 9, long_period: int = 21) -> EmaCross:
    """
    Detect a short/long EMA crossover on the latest candle.

    Compares the EMAs over the full window with the same EMAs over the window
    without its last candle. Needs at least ``long_period + 2`` candles.
    """
    if len(candles) < long_period + 2:
        return EmaCross()

    prices = [c.close for c in candles]
    prev_prices = prices[:-1]

    short_now = ema(prices, short_period)
    long_now = ema(prices, long_period)
    short_prev = ema(prev_prices, short_period)
    long_prev = ema(prev_prices, long_period)

    return EmaCross(
        cross_up=short_prev <= long_prev and short_now > long_now,
        cross_down=short_prev >= long_prev and short_now < long_now,
    )


def bollinger_bands(prices: Sequence[float], period: int = 20, std_dev: float = 2.0) -> Dict[str, float]:
    """
    Bollinger Bands around the SMA of the last ``period`` prices.

    Returns:
        Dictionary with ``upper``, ``middle`` and ``lower``
    """
    middle = sma(prices, period)
    window = prices[-period:] if prices else []
    if not window:
        return {"upper": 0.0, "middle": 0.0, "lower": 0.0}
    variance = sum((p - middle) ** 2 for p in window) / len(window)
    deviation = math.sqrt(variance)
    return {
        "upper": middle + deviation * std_dev,
        "middle": middle,
        "lower": middle - deviation * std_dev,
    }


def percent_distance(price: float, reference: float) -> float:
    """Distance of ``price`` from ``reference`` in percent (0 when reference is 0)."""
    if reference == 0:
        return 0.0
    return (price - reference) / reference * 100


def get_indicator_summary(prices: Sequence[float], fib: FibonacciLevels, cross: EmaCross) -> str:
    """
    Human-readable multi-line summary of the indicator set.

    Args:
        prices: Close prices ordered oldest first
        fib: Fibonacci levels for the window
        cross: EMA crossover flags

    Returns:
        Summary text for debug logging
    """
    if not prices:
        return "No price data"

    price = prices[-1]
    ema9 = ema(prices, 9)
    ema21 = ema(prices, 21)
    ema50 = ema(prices, 50)
    rsi14 = rsi(prices, 14)
    bands = bollinger_bands(prices)
    in_pocket = in_golden_pocket(price, fib)

    if cross.cross_up:
        cross_line = "EMA9 crossed above EMA21 (bullish)"
    elif cross.cross_down:
        cross_line = "EMA9 crossed below EMA21 (bearish)"
    else:
        cross_line = "No crossover detected"

    momentum = ""
    if rsi14 > 70:
        momentum = " (OVERBOUGHT)"
    elif rsi14 < 30:
        momentum = " (OVERSOLD)"

    lines = [
        f"Price: {price:.10f}",
        f"EMA9: {ema9:.10f} ({percent_distance(price, ema9):+.2f}%)",
        f"EMA21: {ema21:.10f} ({percent_distance(price, ema21):+.2f}%)",
        f"EMA50: {ema50:.10f}",
        f"Fib 61.8%: {fib.fib618:.10f} | Fib 78.6%: {fib.fib786:.10f} | golden pocket: {'yes' if in_pocket else 'no'}",
        f"Bollinger: {bands['lower']:.10f} / {bands['middle']:.10f} / {bands['upper']:.10f}",
        f"RSI(14): {rsi14:.1f}{momentum}",
        cross_line,
    ]
    return "\n".join(lines)
