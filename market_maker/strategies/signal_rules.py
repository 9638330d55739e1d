"""
Signal rules for the bonding-curve market maker.

Each rule takes a RuleContext and returns a TradeSignal when it applies or
None to pass to the next rule. SIGNAL_RULES holds them in evaluation order;
the first rule that returns a signal wins.

Sell rules (stop-loss, take-profit, euphoria, volume farming) only fire when
the sell gate is open: the bonding curve has completed and the market cap is
at or above ``MarketCapRules.min_to_sell``.
"""

from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from market_maker.config import MarketCapRules, StrategyConfig
from market_maker.indicators.technical_indicators import in_golden_pocket
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
    MarketState,
    Position,
    TradeSignal,
)

# Sell intensity tiers
TIER_NONE = "none"
TIER_LIGHT = "light"
TIER_MEDIUM = "medium"
TIER_HEAVY = "heavy"

MIN_QUOTE_BALANCE_TO_BUY = 0.1  # SOL
MIN_FARM_NOTIONAL = 0.05  # SOL
FARM_NET_VOLUME_SHARE = 0.15
FARM_TARGET_PREMIUM = 1.001

STOP_LOSS_SELL_FRACTION = 0.5
TAKE_PROFIT_SELL_FRACTION = 0.3


@dataclass(frozen=True)
class SellTier:
    """Sell intensity resolved from market cap."""

    name: str
    percent: float


NO_SELL_TIER = SellTier(TIER_NONE, 0.0)


@dataclass(frozen=True)
class RuleContext:
    """Inputs shared by every rule in one evaluation."""

    state: MarketState
    strategy: StrategyConfig
    market_cap_rules: MarketCapRules
    position: Position
    can_sell: bool
    tier: SellTier
    pnl_percent: float

    @property
    def price(self) -> float:
        return self.state.current_price

    @property
    def tokens(self) -> float:
        return self.position.held_tokens

    @property
    def balance(self) -> float:
        return self.position.quote_balance

    @property
    def max_sell_tokens(self) -> float:
        """``max_sell_per_trade`` converted to tokens at the current price."""
        return self.strategy.max_sell_per_trade / self.price


Rule = Callable[[RuleContext], Optional[TradeSignal]]


def sell_gate_open(state: MarketState, rules: MarketCapRules) -> bool:
    """Selling is allowed only after bonding completes and above the minimum market cap."""
    return state.bonding_complete and state.market_cap_usd >= rules.min_to_sell


def resolve_sell_tier(market_cap_usd: float, rules: MarketCapRules, can_sell: bool = True) -> SellTier:
    """
    Map market cap to a sell tier.

    Args:
        market_cap_usd: Market cap in USD
        rules: Market-cap thresholds and their sell percents
        can_sell: Result of the sell gate; a closed gate always yields ``none``

    Returns:
        SellTier for the highest threshold reached
    """
    if not can_sell:
        return NO_SELL_TIER
    if market_cap_usd >= rules.heavy_threshold:
        return SellTier(TIER_HEAVY, rules.heavy_percent)
    if market_cap_usd >= rules.medium_threshold:
        return SellTier(TIER_MEDIUM, rules.medium_percent)
    if market_cap_usd >= rules.light_threshold:
        return SellTier(TIER_LIGHT, rules.light_percent)
    return NO_SELL_TIER


def _sell(ctx: RuleContext, amount: float, percent: float, urgency: str, reason: str,
          confidence: float, rule: str, target_price: Optional[float] = None) -> TradeSignal:
    amount = max(0.0, min(amount, ctx.tokens))
    return TradeSignal(
        action=SELL,
        amount=amount,
        amount_percent=percent,
        urgency=urgency,
        reason=reason,
        confidence=confidence,
        target_price=target_price,
        rule=rule,
    )


def _buy(ctx: RuleContext, fraction: float, cap: float, urgency: str, reason: str, confidence: float,
         rule: str, target_price: Optional[float] = None, stop_loss: Optional[float] = None) -> TradeSignal:
    amount = max(0.0, min(ctx.balance * fraction, cap, ctx.balance))
    return TradeSignal(
        action=BUY,
        amount=amount,
        amount_percent=fraction * 100,
        urgency=urgency,
        reason=reason,
        confidence=confidence,
        target_price=target_price,
        stop_loss=stop_loss,
        rule=rule,
    )


def stop_loss_rule(ctx: RuleContext) -> Optional[TradeSignal]:
    """Sell half of the position when P&L falls below -stop_loss_percent."""
    if not ctx.can_sell or ctx.tokens <= 0:
        return None
    if ctx.pnl_percent >= -ctx.strategy.stop_loss_percent:
        return None
    return _sell(
        ctx,
        amount=ctx.tokens * STOP_LOSS_SELL_FRACTION,
        percent=STOP_LOSS_SELL_FRACTION * 100,
        urgency=IMMEDIATE,
        reason=f"stop loss triggered at {ctx.pnl_percent:.1f}%",
        confidence=90,
        rule="stop_loss",
    )


def take_profit_rule(ctx: RuleContext) -> Optional[TradeSignal]:
    """Sell 30% of the position when P&L rises above take_profit_percent."""
    if not ctx.can_sell or ctx.tokens <= 0:
        return None
    if ctx.pnl_percent <= ctx.strategy.take_profit_percent:
        return None
    return _sell(
        ctx,
        amount=ctx.tokens * TAKE_PROFIT_SELL_FRACTION,
        percent=TAKE_PROFIT_SELL_FRACTION * 100,
        urgency=IMMEDIATE,
        reason=f"take profit at {ctx.pnl_percent:.1f}%",
        confidence=85,
        rule="take_profit",
    )


def euphoria_sell_rule(ctx: RuleContext) -> Optional[TradeSignal]:
    """Sell the tier percent into euphoric net buying."""
    strategy = ctx.strategy
    state = ctx.state
    if not (ctx.can_sell and strategy.sell_during_euphoria and state.phase == EUPHORIA):
        return None
    if ctx.tokens <= 0 or ctx.tier.name == TIER_NONE:
        return None
    if state.net_volume_5m <= strategy.min_net_volume_to_sell:
        return None

    percent = ctx.tier.percent
    amount = min(ctx.tokens * percent / 100, ctx.max_sell_tokens)
    return _sell(
        ctx,
        amount=amount,
        percent=percent,
        urgency=IMMEDIATE,
        reason=(
            f"euphoria @ ${state.market_cap_usd / 1000:.0f}k MC. {ctx.tier.name} sell {percent:g}%. "
            f"net vol +{state.net_volume_5m:.2f} SOL"
        ),
        confidence=80,
        rule="euphoria_sell",
    )


def volume_farming_rule(ctx: RuleContext) -> Optional[TradeSignal]:
    """Sell small slices into net buying, sized by recent net volume."""
    strategy = ctx.strategy
    state = ctx.state
    if not (ctx.can_sell and strategy.volume_farming_enabled):
        return None
    if state.net_volume_5m <= strategy.min_net_volume_to_farm or ctx.tokens <= 0:
        return None
    if state.phase == DECLINE or ctx.tier.name == TIER_NONE:
        return None

    percent = min(ctx.tier.percent, strategy.volume_farm_sell_percent)
    amount = min(
        ctx.tokens * percent / 100,
        state.net_volume_5m * FARM_NET_VOLUME_SHARE / ctx.price,
        ctx.max_sell_tokens,
    )
    if amount * ctx.price <= MIN_FARM_NOTIONAL:
        return None

    return _sell(
        ctx,
        amount=amount,
        percent=percent,
        urgency=LIMIT,
        reason=(
            f"vol farming @ ${state.market_cap_usd / 1000:.0f}k MC. selling {percent:g}% "
            f"into +{state.net_volume_5m:.2f} SOL buys"
        ),
        confidence=70,
        rule="volume_farming",
        target_price=ctx.price * FARM_TARGET_PREMIUM,
    )


def _fib_buys_enabled(ctx: RuleContext) -> bool:
    strategy = ctx.strategy
    return strategy.buy_at_support and strategy.buy_at_fib_levels and ctx.balance > MIN_QUOTE_BALANCE_TO_BUY


def _ema_buys_enabled(ctx: RuleContext) -> bool:
    strategy = ctx.strategy
    return strategy.buy_at_support and strategy.buy_at_ema and ctx.balance > MIN_QUOTE_BALANCE_TO_BUY


def golden_pocket_buy_rule(ctx: RuleContext) -> Optional[TradeSignal]:
    """Buy at the 61.8%-78.6% retracement band."""
    if not _fib_buys_enabled(ctx):
        return None
    fib = ctx.state.fib_levels
    if not in_golden_pocket(ctx.price, fib):
        return None
    return _buy(
        ctx,
        fraction=0.25,
        cap=ctx.strategy.max_buy_per_trade,
        urgency=IMMEDIATE,
        reason="price at golden pocket (0.618 fib). strong support.",
        confidence=85,
        rule="golden_pocket_buy",
        stop_loss=fib.low * 0.95,
    )


def fib_382_buy_rule(ctx: RuleContext) -> Optional[TradeSignal]:
    """Buy at first support between the 50% and 38.2% retracements."""
    if not _fib_buys_enabled(ctx):
        return None
    fib = ctx.state.fib_levels
    if not fib.fib500 < ctx.price <= fib.fib382:
        return None
    return _buy(
        ctx,
        fraction=0.15,
        cap=ctx.strategy.max_buy_per_trade,
        urgency=LIMIT,
        reason="price at 0.382 fib support",
        confidence=70,
        rule="fib_382_buy",
        target_price=fib.fib382,
        stop_loss=fib.fib618 * 0.95,
    )


def ema21_support_rule(ctx: RuleContext) -> Optional[TradeSignal]:
    """Buy a pullback that tests EMA21 from within 2%."""
    if not _ema_buys_enabled(ctx):
        return None
    state = ctx.state
    if state.ema21 <= 0:
        return None
    distance = (ctx.price - state.ema21) / state.ema21 * 100
    if not (-2 < distance < 2 and state.price_change_5m < 0):
        return None
    return _buy(
        ctx,
        fraction=0.2,
        cap=ctx.strategy.max_buy_per_trade,
        urgency=LIMIT,
        reason="price testing EMA21 support",
        confidence=75,
        rule="ema21_support_buy",
        target_price=state.ema21,
        stop_loss=state.ema50 * 0.95,
    )


def ema50_support_rule(ctx: RuleContext) -> Optional[TradeSignal]:
    """Buy a sharp 15m drop that reaches EMA50."""
    if not _ema_buys_enabled(ctx):
        return None
    state = ctx.state
    if state.ema50 <= 0:
        return None
    distance = (ctx.price - state.ema50) / state.ema50 * 100
    if not (-3 < distance < 3 and state.price_change_15m < -10):
        return None
    return _buy(
        ctx,
        fraction=0.3,
        cap=ctx.strategy.max_buy_per_trade,
        urgency=IMMEDIATE,
        reason="price at EMA50 strong support",
        confidence=80,
        rule="ema50_support_buy",
        stop_loss=ctx.price * 0.85,
    )


def capitulation_buy_rule(ctx: RuleContext) -> Optional[TradeSignal]:
    """Buy extreme fear: capitulation phase with RSI under 25."""
    state = ctx.state
    if state.phase != CAPITULATION or ctx.balance <= MIN_QUOTE_BALANCE_TO_BUY or state.rsi14 >= 25:
        return None
    return _buy(
        ctx,
        fraction=0.4,
        cap=ctx.strategy.max_buy_per_trade * 2,
        urgency=IMMEDIATE,
        reason=f"capitulation detected. RSI {state.rsi14:.0f}. extreme fear = opportunity",
        confidence=75,
        rule="capitulation_buy",
        stop_loss=ctx.price * 0.7,
    )


def hold_signal(reason: str, rule: str = "hold") -> TradeSignal:
    """Build a hold signal."""
    return TradeSignal(
        action=HOLD,
        amount=0.0,
        amount_percent=0.0,
        urgency=WAIT,
        reason=reason,
        confidence=50,
        rule=rule,
    )


def default_hold_rule(ctx: RuleContext) -> TradeSignal:
    return hold_signal(f"no clear signal. phase: {ctx.state.phase}. waiting for setup.")


SIGNAL_RULES: Tuple[Tuple[str, Rule], ...] = (
    ("stop_loss", stop_loss_rule),
    ("take_profit", take_profit_rule),
    ("euphoria_sell", euphoria_sell_rule),
    ("volume_farming", volume_farming_rule),
    ("golden_pocket_buy", golden_pocket_buy_rule),
    ("fib_382_buy", fib_382_buy_rule),
    ("ema21_support_buy", ema21_support_rule),
    ("ema50_support_buy", ema50_support_rule),
    ("capitulation_buy", capitulation_buy_rule),
    ("hold", default_hold_rule),
)
