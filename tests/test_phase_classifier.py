import pytest

from conftest import make_state
from market_maker.models import (
    ACCUMULATION,
    CAPITULATION,
    DECLINE,
    DISTRIBUTION,
    EUPHORIA,
    MARKUP,
    PHASES,
)
from market_maker.phase_classifier import classify_phase, classify_state


def _classify(**overrides):
    inputs = dict(
        price_change_5m=0.0,
        price_change_15m=0.0,
        net_volume_5m=0.0,
        rsi14=50.0,
        current_price=1.0,
        ema9=1.0,
        ema21=1.0,
    )
    inputs.update(overrides)
    return classify_phase(**inputs)


def test_euphoria():
    assert _classify(price_change_5m=25, net_volume_5m=2, rsi14=80) == EUPHORIA


def test_euphoria_needs_net_buying():
    assert _classify(price_change_5m=25, net_volume_5m=0.5, rsi14=80) != EUPHORIA


def test_capitulation():
    assert _classify(price_change_5m=-25, rsi14=20) == CAPITULATION


def test_markup_needs_stacked_emas():
    assert _classify(price_change_15m=12, current_price=1.2, ema9=1.1, ema21=1.0) == MARKUP
    assert _classify(price_change_15m=12, current_price=1.2, ema9=1.0, ema21=1.1) != MARKUP


def test_decline():
    assert _classify(price_change_15m=-12, current_price=0.8, ema9=0.9, ema21=1.0) == DECLINE


def test_distribution():
    assert _classify(price_change_5m=2, price_change_15m=18, net_volume_5m=-1) == DISTRIBUTION


def test_accumulation_is_the_fallback():
    assert _classify() == ACCUMULATION


def test_euphoria_wins_over_markup():
    phase = _classify(price_change_5m=25, price_change_15m=30, net_volume_5m=3, rsi14=85,
                      current_price=1.3, ema9=1.2, ema21=1.1)
    assert phase == EUPHORIA


@pytest.mark.parametrize("change", [-50.0, -5.0, 0.0, 5.0, 50.0])
def test_always_returns_a_known_phase(change):
    assert _classify(price_change_5m=change, price_change_15m=change) in PHASES


def test_classify_state_reads_snapshot_fields():
    state = make_state(price_change_5m=-30, rsi14=10)
    assert classify_state(state) == CAPITULATION
