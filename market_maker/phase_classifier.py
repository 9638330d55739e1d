"""Market phase classifier for bonding-curve tokens."""

import logging

from market_maker.models import (
    ACCUMULATION,
    CAPITULATION,
    DECLINE,
    DISTRIBUTION,
    EUPHORIA,
    MARKUP,
    MarketState,
)

logger = logging.getLogger(__name__)


def classify_phase(
    price_change_5m: float,
    price_change_15m: float,
    net_volume_5m: float,
    rsi14: float,
    current_price: float,
    ema9: float,
    ema21: float,
) -> str:
    """
    Classify the market phase from one indicator snapshot.

    Rules are checked in order and the first match wins:
    - euphoria: 5m change > 20%, net 5m volume > 1 SOL, RSI > 70
    - capitulation: 5m change < -20%, RSI < 30
    - markup: 15m change > 10%, price > EMA9 > EMA21
    - decline: 15m change < -10%, price < EMA9 < EMA21
    - distribution: 5m change < 5%, 15m change > 15%, net 5m volume < 0
    - accumulation otherwise

    Nothing is carried between calls.

    Args:
        price_change_5m: Percent change over ~5 minutes
        price_change_15m: Percent change over ~15 minutes
        net_volume_5m: Buy minus sell volume over ~5 minutes (SOL)
        rsi14: RSI(14)
        current_price: Latest close
        ema9: EMA(9)
        ema21: EMA(21)

    Returns:
        One of the six phase names
    """
    if price_change_5m > 20 and net_volume_5m > 1 and rsi14 > 70:
        return EUPHORIA

    if price_change_5m < -20 and rsi14 < 30:
        return CAPITULATION

    if price_change_15m > 10 and current_price > ema9 > ema21:
        return MARKUP

    if price_change_15m < -10 and current_price < ema9 < ema21:
        return DECLINE

    if price_change_5m < 5 and price_change_15m > 15 and net_volume_5m < 0:
        return DISTRIBUTION

    return ACCUMULATION


def classify_state(state: MarketState) -> str:
    """Classify the phase of an already-built market state."""
    return classify_phase(
        price_change_5m=state.price_change_5m,
        price_change_15m=state.price_change_15m,
        net_volume_5m=state.net_volume_5m,
        rsi14=state.rsi14,
        current_price=state.current_price,
        ema9=state.ema9,
        ema21=state.ema21,
    )
