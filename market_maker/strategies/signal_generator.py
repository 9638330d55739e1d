"""Rule-cascade signal generator."""

import logging
from typing import Optional, Sequence, Tuple

from market_maker.config import MarketCapRules, StrategyConfig
from market_maker.models import BUY, SELL, MarketState, Position, TradeSignal
from market_maker.strategies.signal_rules import (
    SIGNAL_RULES,
    Rule,
    RuleContext,
    hold_signal,
    resolve_sell_tier,
    sell_gate_open,
)

logger = logging.getLogger(__name__)


class SignalGenerator:
    """
    Produces exactly one TradeSignal per market state.

    Rules are evaluated in order and the first one that returns a signal wins.
    The last rule always holds, and a rule that raises ends the cascade with a
    hold, so a signal is always produced.
    """

    def __init__(self, rules: Sequence[Tuple[str, Rule]] = SIGNAL_RULES):
        """
        Initialize signal generator.

        Args:
            rules: Ordered (name, rule) pairs
        """
        self.rules = tuple(rules)

    def generate(
        self,
        state: MarketState,
        strategy: StrategyConfig,
        market_cap_rules: MarketCapRules,
        position: Position,
    ) -> TradeSignal:
        """
        Generate the signal for one cycle.

        Args:
            state: Current market state
            strategy: Strategy thresholds
            market_cap_rules: Market-cap sell gating
            position: Current holdings

        Returns:
            TradeSignal (hold when no rule applies or the price is not positive)
        """
        if state.current_price <= 0:
            return hold_signal("insufficient data: no valid price", rule="no_price")

        can_sell = sell_gate_open(state, market_cap_rules)
        if position.held_tokens > 0 and not can_sell:
            if not state.bonding_complete:
                logger.debug("Bonding not complete, selling disabled")
            else:
                logger.debug(
                    f"Market cap ${state.market_cap_usd / 1000:.0f}k below "
                    f"${market_cap_rules.min_to_sell / 1000:.0f}k threshold, selling disabled"
                )

        ctx = RuleContext(
            state=state,
            strategy=strategy,
            market_cap_rules=market_cap_rules,
            position=position,
            can_sell=can_sell,
            tier=resolve_sell_tier(state.market_cap_usd, market_cap_rules, can_sell),
            pnl_percent=position.pnl_percent(state.current_price),
        )

        for name, rule in self.rules:
            try:
                signal = rule(ctx)
            except Exception as e:
                logger.error(f"Rule {name} failed: {e}", exc_info=True)
                return hold_signal(f"rule {name} failed: {e}", rule=name)
            if signal is not None:
                logger.debug(f"Rule {name} fired: {format_signal(signal)}")
                return signal

        return hold_signal(f"no clear signal. phase: {state.phase}. waiting for setup.")


def generate_signal(
    state: MarketState,
    strategy: Optional[StrategyConfig] = None,
    position: Optional[Position] = None,
    market_cap_rules: Optional[MarketCapRules] = None,
) -> TradeSignal:
    """Generate a signal with the default rule set; defaults apply to omitted settings."""
    return SignalGenerator().generate(
        state,
        strategy or StrategyConfig(),
        market_cap_rules or MarketCapRules(),
        position or Position(),
    )


def format_signal(signal: TradeSignal) -> str:
    """One-line summary of a signal for logs."""
    if signal.action == BUY:
        amount = f"{signal.amount:.4f} SOL"
    elif signal.action == SELL:
        amount = f"{signal.amount:,.2f} tokens"
    else:
        amount = "-"
    return (
        f"{signal.action.upper()} | {amount} | {signal.amount_percent:g}% | {signal.reason} | "
        f"confidence: {signal.confidence:g}"
    )
