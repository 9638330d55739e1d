"""Data models for the bonding-curve market maker."""

from dataclasses import dataclass, field
from typing import List, Optional


# Trade actions and urgencies
BUY = "buy"
SELL = "sell"
HOLD = "hold"
ACTIONS = (BUY, SELL, HOLD)

IMMEDIATE = "immediate"
LIMIT = "limit"
WAIT = "wait"
URGENCIES = (IMMEDIATE, LIMIT, WAIT)

# Market phases
ACCUMULATION = "accumulation"
MARKUP = "markup"
EUPHORIA = "euphoria"
DISTRIBUTION = "distribution"
DECLINE = "decline"
CAPITULATION = "capitulation"
PHASES = (ACCUMULATION, MARKUP, EUPHORIA, DISTRIBUTION, DECLINE, CAPITULATION)


@dataclass(frozen=True)
class Candle:
    """One OHLCV bar with the buy/sell split of its volume."""

    timestamp: int  # Unix milliseconds, bar open
    open: float
    high: float
    low: float
    close: float
    volume: float  # Quote units (SOL)
    buy_volume: float = 0.0
    sell_volume: float = 0.0


@dataclass(frozen=True)
class FibonacciLevels:
    """Retracement levels measured down from the swing high."""

    high: float
    low: float
    fib236: float
    fib382: float
    fib500: float
    fib618: float
    fib786: float


@dataclass(frozen=True)
class EmaCross:
    """Short/long EMA crossover on the latest candle."""

    cross_up: bool = False
    cross_down: bool = False


@dataclass(frozen=True)
class MarketState:
    """Indicator snapshot rebuilt from the candle window every cycle."""

    current_price: float
    price_change_1m: float
    price_change_5m: float
    price_change_15m: float
    price_change_1h: float
    volume_1m: float
    volume_5m: float
    net_volume_1m: float  # positive = more buys
    net_volume_5m: float
    buy_count_1m: int
    sell_count_1m: int
    ema9: float
    ema21: float
    ema50: float
    rsi14: float
    fib_levels: FibonacciLevels
    ema_cross: EmaCross
    phase: str
    asset_age_minutes: float
    market_cap_usd: float = 0.0
    bonding_complete: bool = False
    candle_count: int = 0


@dataclass
class Position:
    """Holdings of the trading account for one asset."""

    held_tokens: float = 0.0
    average_entry_price: float = 0.0
    quote_balance: float = 0.0

    def pnl_percent(self, price: float) -> float:
        """Unrealized P&L in percent at ``price`` (0 when no entry price is known)."""
        if self.average_entry_price <= 0:
            return 0.0
        return (price - self.average_entry_price) / self.average_entry_price * 100


@dataclass(frozen=True)
class TradeSignal:
    """The engine's single output per cycle."""

    action: str  # "buy" | "sell" | "hold"
    amount: float  # SOL for buys, tokens for sells
    amount_percent: float
    urgency: str  # "immediate" | "limit" | "wait"
    reason: str
    confidence: float  # 0-100, priority weight rather than a probability
    target_price: Optional[float] = None
    stop_loss: Optional[float] = None
    rule: str = ""  # Name of the rule that produced the signal


@dataclass(frozen=True)
class TokenInfo:
    """Off-chain token metadata used to gate selling."""

    asset: str
    market_cap_usd: float
    bonding_complete: bool
    virtual_sol_reserves: float = 0.0
    virtual_token_reserves: float = 0.0
    created_timestamp: Optional[int] = None  # Unix milliseconds


@dataclass
class SettlementResult:
    """Outcome of forwarding a signal to the settlement layer."""

    success: bool
    action: str
    amount: float
    counter_amount: float = 0.0  # Estimated tokens out (buy) or SOL out (sell)
    price: float = 0.0
    signature: Optional[str] = None
    error: Optional[str] = None
    timestamp: int = 0  # Unix milliseconds


@dataclass
class WalletCheck:
    """Result of checking one account against the wallet limits."""

    within_limits: bool
    supply_percent: float
    quote_value: float
    warnings: List[str] = field(default_factory=list)


@dataclass
class DistributionPlan:
    """How a token quantity should be spread across accounts."""

    wallets_needed: int
    tokens_per_wallet: float
    supply_percent_per_wallet: float


@dataclass
class RebalanceReport:
    """Accounts that break the per-wallet cap or fall far below the mean."""

    should_rebalance: bool
    overweight_wallets: List[str] = field(default_factory=list)
    underweight_wallets: List[str] = field(default_factory=list)


@dataclass
class CycleLog:
    """Complete log record for one engine cycle."""

    timestamp: int
    asset: str
    timeframe: str
    candle_count: int
    market_price: float
    phase: Optional[str]
    market_cap_usd: float
    bonding_complete: bool
    position_tokens: float
    position_quote: float
    signal_action: Optional[str]
    signal_amount: float
    signal_confidence: float
    signal_reason: str
    forwarded: bool
    skip_reason: str
    executed: bool
    signature: Optional[str]
    error: Optional[str]
    mode: str  # "dry_run" | "live"
