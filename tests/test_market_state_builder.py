import pytest

from conftest import make_candles
from market_maker.exceptions import InsufficientDataError
from market_maker.models import ACCUMULATION
from market_maker.settlement.bonding_curve import spot_price, tokens_out
from market_maker.snapshot_builders.market_state_builder import (
    LAMPORTS_PER_SOL,
    MIN_CANDLES_FOR_STATE,
    TOKEN_DECIMALS,
    build_candles_from_trades,
    build_market_state,
)


def test_rejects_short_window():
    with pytest.raises(InsufficientDataError) as exc_info:
        build_market_state(make_candles([1.0] * 4), asset_age_minutes=1)
    assert exc_info.value.available == 4
    assert exc_info.value.required == MIN_CANDLES_FOR_STATE


def test_flat_window_is_neutral():
    state = build_market_state(make_candles([0.5] * 30), asset_age_minutes=60)
    assert state.current_price == 0.5
    assert state.ema9 == pytest.approx(0.5)
    assert state.ema21 == pytest.approx(0.5)
    assert state.ema50 == pytest.approx(0.5)
    assert state.rsi14 == 50.0
    assert state.price_change_5m == 0.0
    assert state.phase == ACCUMULATION
    assert state.candle_count == 30


def test_price_changes_use_fixed_lookbacks():
    closes = [float(i) for i in range(1, 131)]
    state = build_market_state(make_candles(closes), asset_age_minutes=600)
    assert state.price_change_1m == pytest.approx((130 - 128) / 128 * 100)
    assert state.price_change_5m == pytest.approx((130 - 120) / 120 * 100)
    assert state.price_change_15m == pytest.approx(30.0)
    assert state.price_change_1h == pytest.approx(1200.0)


def test_changes_are_zero_when_window_is_too_short():
    state = build_market_state(make_candles([1.0, 1.1, 1.2, 1.3, 1.4, 1.5]), asset_age_minutes=5)
    assert state.price_change_1m != 0.0
    assert state.price_change_5m == 0.0
    assert state.price_change_15m == 0.0
    assert state.price_change_1h == 0.0


def test_volume_aggregates():
    state = build_market_state(make_candles([1.0] * 20, buy_volume=2.0, sell_volume=0.5), asset_age_minutes=30)
    assert state.volume_1m == pytest.approx(5.0)
    assert state.volume_5m == pytest.approx(25.0)
    assert state.net_volume_1m == pytest.approx(3.0)
    assert state.net_volume_5m == pytest.approx(15.0)
    assert state.buy_count_1m == 2
    assert state.sell_count_1m == 2


def test_passes_through_token_info():
    state = build_market_state(make_candles([1.0] * 10), asset_age_minutes=3,
                               market_cap_usd=420_000, bonding_complete=True)
    assert state.market_cap_usd == 420_000
    assert state.bonding_complete is True
    assert state.asset_age_minutes == 3


def test_fib_levels_span_the_window():
    closes = [1.0, 2.0, 1.5, 1.2, 1.4, 1.3]
    state = build_market_state(make_candles(closes), asset_age_minutes=10)
    assert state.fib_levels.high == 2.0
    assert state.fib_levels.low == 1.0


# Trade aggregation
def _trade(ts, sol, tokens, is_buy):
    return {"timestamp": ts, "sol_amount": sol, "token_amount": tokens, "is_buy": is_buy}


def test_build_candles_buckets_trades():
    trades = [
        _trade(1_700_000_065, 1.5e9, 1e6, True),
        _trade(1_700_000_030, 2e9, 1e6, False),
        _trade(1_700_000_000, 1e9, 1e6, True),
    ]
    candles = build_candles_from_trades(trades, resolution_seconds=60)

    assert len(candles) == 2
    first, second = candles
    assert first.timestamp == 1_699_999_980_000
    assert second.timestamp == 1_700_000_040_000
    assert (first.open, first.high, first.low, first.close) == (1.0, 2.0, 1.0, 2.0)
    assert first.volume == pytest.approx(3.0)
    assert first.buy_volume == pytest.approx(1.0)
    assert first.sell_volume == pytest.approx(2.0)
    assert second.close == 1.5


def test_candle_price_is_sol_per_whole_token():
    # 30 SOL against 1.073B tokens, as reported in lamports and base units
    v_sol = 30e9 / LAMPORTS_PER_SOL
    v_token = 1.073e15 / 10 ** TOKEN_DECIMALS
    price = spot_price(v_sol, v_token)
    tokens_base_units = 1.0 / price * 10 ** TOKEN_DECIMALS

    candles = build_candles_from_trades([_trade(1_700_000_000, 1e9, tokens_base_units, True)], 60)

    assert candles[0].close == pytest.approx(price)
    assert candles[0].volume == pytest.approx(1.0)

    entry_price = 1.0 / tokens_out(1.0, v_sol, v_token)
    assert abs(candles[0].close - entry_price) / entry_price < 0.1


def test_build_candles_keeps_millisecond_timestamps():
    candles = build_candles_from_trades([_trade(1_700_000_000_500, 1e9, 1e6, True)], resolution_seconds=30)
    assert candles[0].timestamp == 1_699_999_980_000


def test_build_candles_skips_zero_token_trades():
    assert build_candles_from_trades([_trade(1_700_000_000, 1e9, 0, True)], 60) == []
    assert build_candles_from_trades([], 60) == []


def test_build_candles_rejects_bad_resolution():
    with pytest.raises(ValueError):
        build_candles_from_trades([_trade(1_700_000_000, 1e9, 1e6, True)], 0)
