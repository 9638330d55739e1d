import pytest

from conftest import make_candles, make_state
from market_maker.config import MarketCapRules, StrategyConfig
from market_maker.indicators.technical_indicators import fibonacci
from market_maker.models import (
    BUY,
    CAPITULATION,
    DECLINE,
    EUPHORIA,
    HOLD,
    IMMEDIATE,
    LIMIT,
    SELL,
    WAIT,
    Position,
    TradeSignal,
)
from market_maker.snapshot_builders.market_state_builder import build_market_state
from market_maker.strategies.signal_generator import SignalGenerator, format_signal, generate_signal
from market_maker.strategies.signal_rules import (
    NO_SELL_TIER,
    TIER_HEAVY,
    TIER_LIGHT,
    TIER_MEDIUM,
    resolve_sell_tier,
    sell_gate_open,
)

SELLABLE = dict(bonding_complete=True, market_cap_usd=300_000)


# Sell gate and tiers
def test_sell_gate_needs_bonding_and_market_cap():
    rules = MarketCapRules()
    assert sell_gate_open(make_state(bonding_complete=True, market_cap_usd=250_000), rules)
    assert not sell_gate_open(make_state(bonding_complete=False, market_cap_usd=5_000_000), rules)
    assert not sell_gate_open(make_state(bonding_complete=True, market_cap_usd=249_999), rules)


@pytest.mark.parametrize(
    "market_cap,tier,percent",
    [
        (100_000, NO_SELL_TIER.name, 0.0),
        (250_000, TIER_LIGHT, 6.0),
        (600_000, TIER_MEDIUM, 10.0),
        (1_500_000, TIER_HEAVY, 14.0),
    ],
)
def test_resolve_sell_tier(market_cap, tier, percent):
    resolved = resolve_sell_tier(market_cap, MarketCapRules())
    assert resolved.name == tier
    assert resolved.percent == percent


def test_closed_gate_has_no_tier():
    assert resolve_sell_tier(5_000_000, MarketCapRules(), can_sell=False) == NO_SELL_TIER


# Sell rules
def test_crash_before_bonding_completes_holds():
    closes = [1.0] * 40 + [0.9, 0.7, 0.5, 0.3, 0.2, 0.15, 0.12, 0.1, 0.1, 0.1]
    state = build_market_state(make_candles(closes), asset_age_minutes=90,
                               market_cap_usd=8_000, bonding_complete=False)
    position = Position(held_tokens=1000, average_entry_price=1.0, quote_balance=0.0)

    signal = generate_signal(state, position=position)

    assert signal.action == HOLD
    assert signal.amount == 0.0


def test_stop_loss_sells_half_the_position():
    state = make_state(current_price=0.4, **SELLABLE)
    position = Position(held_tokens=1000, average_entry_price=1.0, quote_balance=0.0)

    signal = generate_signal(state, position=position)

    assert signal.action == SELL
    assert signal.rule == "stop_loss"
    assert signal.amount == pytest.approx(500)
    assert signal.urgency == IMMEDIATE
    assert signal.confidence == 90


def test_stop_loss_waits_for_sell_gate():
    state = make_state(current_price=0.4, bonding_complete=True, market_cap_usd=100_000)
    position = Position(held_tokens=1000, average_entry_price=1.0, quote_balance=0.0)
    assert generate_signal(state, position=position).action == HOLD


def test_take_profit_sells_thirty_percent():
    state = make_state(current_price=0.4, **SELLABLE)
    position = Position(held_tokens=1000, average_entry_price=0.1, quote_balance=0.0)

    signal = generate_signal(state, position=position)

    assert signal.rule == "take_profit"
    assert signal.amount == pytest.approx(300)
    assert signal.amount_percent == pytest.approx(30)


def test_euphoria_sell_uses_market_cap_tier():
    state = make_state(phase=EUPHORIA, net_volume_5m=2.0, bonding_complete=True, market_cap_usd=600_000)
    position = Position(held_tokens=10, average_entry_price=1.0)

    signal = generate_signal(state, position=position)

    assert signal.action == SELL
    assert signal.rule == "euphoria_sell"
    assert signal.amount_percent == 10.0
    assert signal.amount == pytest.approx(1.0)
    assert signal.confidence == 80


def test_euphoria_sell_capped_by_max_sell():
    state = make_state(phase=EUPHORIA, net_volume_5m=2.0, bonding_complete=True, market_cap_usd=600_000)
    position = Position(held_tokens=1000, average_entry_price=1.0)

    signal = generate_signal(state, position=position)

    # 10% of 1000 tokens is 100, but max_sell_per_trade is 2 SOL at price 1.0
    assert signal.amount == pytest.approx(2.0)


def test_euphoria_sell_needs_net_buying():
    state = make_state(phase=EUPHORIA, net_volume_5m=0.4, bonding_complete=True, market_cap_usd=600_000)
    signal = generate_signal(state, position=Position(held_tokens=10, average_entry_price=1.0))
    assert signal.rule != "euphoria_sell"


def test_volume_farming_sells_into_net_buys():
    state = make_state(net_volume_5m=1.0, **SELLABLE)
    position = Position(held_tokens=1000, average_entry_price=1.0)

    signal = generate_signal(state, position=position)

    assert signal.rule == "volume_farming"
    assert signal.urgency == LIMIT
    assert signal.amount_percent == 6.0
    assert signal.amount == pytest.approx(0.15)
    assert signal.target_price == pytest.approx(1.001)
    assert signal.confidence == 70


def test_volume_farming_skipped_in_decline():
    state = make_state(net_volume_5m=1.0, phase=DECLINE, **SELLABLE)
    signal = generate_signal(state, position=Position(held_tokens=1000, average_entry_price=1.0))
    assert signal.rule != "volume_farming"


def test_volume_farming_skips_dust():
    state = make_state(net_volume_5m=0.31, **SELLABLE)
    signal = generate_signal(state, position=Position(held_tokens=1000, average_entry_price=1.0))
    assert signal.action == HOLD


def test_volume_farming_can_be_disabled():
    state = make_state(net_volume_5m=1.0, **SELLABLE)
    strategy = StrategyConfig(volume_farming_enabled=False)
    signal = generate_signal(state, strategy=strategy, position=Position(held_tokens=1000, average_entry_price=1.0))
    assert signal.action == HOLD


# Buy rules
def test_golden_pocket_buy():
    state = make_state(current_price=1.3, fib_levels=fibonacci(2.0, 1.0))
    signal = generate_signal(state, position=Position(quote_balance=2.0))

    assert signal.action == BUY
    assert signal.rule == "golden_pocket_buy"
    assert signal.amount == pytest.approx(0.5)
    assert signal.stop_loss == pytest.approx(0.95)
    assert signal.confidence == 85


def test_buy_amount_capped_by_max_buy():
    state = make_state(current_price=1.3, fib_levels=fibonacci(2.0, 1.0))
    signal = generate_signal(state, position=Position(quote_balance=10.0))
    assert signal.amount == pytest.approx(1.0)


def test_fib_382_buy():
    fib = fibonacci(2.0, 1.0)
    state = make_state(current_price=1.6, fib_levels=fib)
    signal = generate_signal(state, position=Position(quote_balance=2.0))

    assert signal.rule == "fib_382_buy"
    assert signal.amount == pytest.approx(0.3)
    assert signal.urgency == LIMIT
    assert signal.target_price == pytest.approx(fib.fib382)


def test_fib_382_band_excludes_the_50_percent_level():
    fib = fibonacci(2.0, 1.0)
    state = make_state(current_price=fib.fib500, fib_levels=fib)
    signal = generate_signal(state, position=Position(quote_balance=2.0))
    assert signal.action == HOLD


def test_ema21_support_buy():
    state = make_state(current_price=1.0, ema21=1.01, ema50=0.9, price_change_5m=-1.0)
    signal = generate_signal(state, position=Position(quote_balance=2.0))

    assert signal.rule == "ema21_support_buy"
    assert signal.amount == pytest.approx(0.4)
    assert signal.target_price == pytest.approx(1.01)
    assert signal.stop_loss == pytest.approx(0.9 * 0.95)


def test_ema50_support_buy():
    state = make_state(current_price=1.0, ema50=1.01, price_change_15m=-12.0)
    signal = generate_signal(state, position=Position(quote_balance=2.0))

    assert signal.rule == "ema50_support_buy"
    assert signal.amount == pytest.approx(0.6)
    assert signal.stop_loss == pytest.approx(0.85)


def test_capitulation_buy_ignores_support_toggle():
    state = make_state(phase=CAPITULATION, rsi14=20.0)
    strategy = StrategyConfig(buy_at_support=False)
    signal = generate_signal(state, strategy=strategy, position=Position(quote_balance=5.0))

    assert signal.rule == "capitulation_buy"
    assert signal.amount == pytest.approx(2.0)
    assert signal.urgency == IMMEDIATE


def test_support_toggle_disables_fib_buys():
    state = make_state(current_price=1.3, fib_levels=fibonacci(2.0, 1.0))
    strategy = StrategyConfig(buy_at_support=False)
    assert generate_signal(state, strategy=strategy, position=Position(quote_balance=2.0)).action == HOLD


def test_no_buys_without_quote_balance():
    state = make_state(current_price=1.3, fib_levels=fibonacci(2.0, 1.0))
    assert generate_signal(state, position=Position(quote_balance=0.1)).action == HOLD


# Cascade
def test_hold_when_nothing_applies():
    signal = generate_signal(make_state(), position=Position(quote_balance=2.0))
    assert signal.action == HOLD
    assert signal.urgency == WAIT
    assert signal.confidence == 50
    assert "accumulation" in signal.reason


def test_non_positive_price_holds():
    signal = generate_signal(make_state(current_price=0.0), position=Position(quote_balance=2.0))
    assert signal.action == HOLD
    assert signal.rule == "no_price"


def test_first_matching_rule_wins():
    calls = []

    def never(ctx):
        calls.append("never")
        return None

    def always_buy(ctx):
        calls.append("always_buy")
        return TradeSignal(BUY, 0.1, 5.0, IMMEDIATE, "test", 99, rule="always_buy")

    def unreachable(ctx):
        calls.append("unreachable")
        return None

    generator = SignalGenerator(rules=[("never", never), ("always_buy", always_buy), ("unreachable", unreachable)])
    signal = generator.generate(make_state(), StrategyConfig(), MarketCapRules(), Position())

    assert signal.rule == "always_buy"
    assert calls == ["never", "always_buy"]


def test_empty_rule_set_still_holds():
    signal = SignalGenerator(rules=[]).generate(make_state(), StrategyConfig(), MarketCapRules(), Position())
    assert signal.action == HOLD


def test_failing_rule_holds():
    def broken(ctx):
        return ctx.position.held_tokens / 0

    def always_buy(ctx):
        return TradeSignal(BUY, 0.5, 10.0, IMMEDIATE, "test buy", 80, rule="always_buy")

    generator = SignalGenerator(rules=[("broken", broken), ("always_buy", always_buy)])
    signal = generator.generate(make_state(), StrategyConfig(), MarketCapRules(), Position())

    assert signal.action == HOLD
    assert signal.rule == "broken"
    assert "broken failed" in signal.reason


def test_generation_does_not_mutate_position():
    position = Position(held_tokens=1000, average_entry_price=1.0, quote_balance=0.0)
    generate_signal(make_state(current_price=0.4, **SELLABLE), position=position)
    assert position == Position(held_tokens=1000, average_entry_price=1.0, quote_balance=0.0)


def test_format_signal():
    signal = TradeSignal(SELL, 1234.5, 10.0, IMMEDIATE, "euphoria", 80)
    assert format_signal(signal) == "SELL | 1,234.50 tokens | 10% | euphoria | confidence: 80"
