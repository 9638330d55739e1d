from dataclasses import replace
from typing import List, Optional, Sequence

import pytest

from market_maker.config import Config, EngineSettings
from market_maker.data_fetchers.account_source import AccountSource
from market_maker.data_fetchers.candle_source import CandleSource, TokenInfoSource
from market_maker.exceptions import DataSourceError, SettlementError
from market_maker.exchange_adapters.settlement_submitter import SettlementSubmitter, SubmitReceipt
from market_maker.indicators.technical_indicators import fibonacci
from market_maker.models import Candle, EmaCross, MarketState, TokenInfo

ASSET = "MintAddress1111111111111111111111111111pump"


def make_candles(closes: Sequence[float], buy_volume: float = 0.0, sell_volume: float = 0.0,
                 start_ms: int = 1_700_000_000_000, step_ms: int = 60_000) -> List[Candle]:
    """Candles with the given closes; open is the previous close."""
    candles = []
    prev = closes[0] if closes else 0.0
    for i, close in enumerate(closes):
        candles.append(
            Candle(
                timestamp=start_ms + i * step_ms,
                open=prev,
                high=max(prev, close),
                low=min(prev, close),
                close=close,
                volume=buy_volume + sell_volume,
                buy_volume=buy_volume,
                sell_volume=sell_volume,
            )
        )
        prev = close
    return candles


def make_state(**overrides) -> MarketState:
    """A neutral accumulation-phase state at price 1.0; override any field."""
    fib = overrides.pop("fib_levels", None) or fibonacci(1.05, 0.5)
    defaults = dict(
        current_price=1.0,
        price_change_1m=0.0,
        price_change_5m=0.0,
        price_change_15m=0.0,
        price_change_1h=0.0,
        volume_1m=0.0,
        volume_5m=0.0,
        net_volume_1m=0.0,
        net_volume_5m=0.0,
        buy_count_1m=0,
        sell_count_1m=0,
        ema9=1.0,
        ema21=1.2,
        ema50=1.5,
        rsi14=50.0,
        fib_levels=fib,
        ema_cross=EmaCross(),
        phase="accumulation",
        asset_age_minutes=120.0,
        market_cap_usd=0.0,
        bonding_complete=False,
        candle_count=50,
    )
    defaults.update(overrides)
    return MarketState(**defaults)


class FakeCandleSource(CandleSource):
    def __init__(self, candles: Optional[List[Candle]] = None, error: Optional[Exception] = None):
        self.candles = candles or []
        self.error = error
        self.calls = []

    def fetch_candles(self, asset, resolution_seconds, limit):
        self.calls.append((asset, resolution_seconds, limit))
        if self.error:
            raise self.error
        return self.candles[-limit:]


class FakeTokenInfoSource(TokenInfoSource):
    def __init__(self, info: Optional[TokenInfo] = None, error: Optional[Exception] = None):
        self.info = info or TokenInfo(asset=ASSET, market_cap_usd=50_000, bonding_complete=False)
        self.error = error

    def fetch_token_info(self, asset):
        if self.error:
            raise self.error
        return replace(self.info, asset=asset)


class FakeAccountSource(AccountSource):
    def __init__(self, sol: float = 5.0, tokens: float = 0.0, error: Optional[Exception] = None):
        self.sol = sol
        self.tokens = tokens
        self.error = error
        self.calls = 0

    def fetch_balances(self, address, asset):
        self.calls += 1
        if self.error:
            raise self.error
        return self.sol, self.tokens


class RecordingSubmitter(SettlementSubmitter):
    """Records submitted orders; optionally fails every submission."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.orders = []
        self.keys = []

    def submit(self, order, signing_key):
        self.orders.append(order)
        self.keys.append(signing_key)
        if self.fail:
            raise SettlementError("transaction rejected")
        return SubmitReceipt(signature=f"SIG_{len(self.orders)}")


@pytest.fixture
def config(tmp_path) -> Config:
    return Config(
        assets=[ASSET],
        wallet_address="WalletAddress111111111111111111111111111111",
        wallet_id="main",
        run_mode="dry_run",
        candle_api_url="http://candles.test",
        token_api_url="http://tokens.test",
        rpc_url="http://rpc.test",
        trade_api_url="http://trade.test",
        cooldown_seconds=None,
        min_confidence=60.0,
        tick_divisor=2,
        slippage_bps=1000,
        min_trade_size=0.05,
        max_trade_size=2.0,
        candle_window=200,
        total_supply=1_000_000_000,
        strategy_preset="default",
        strategy_file=None,
        log_file=str(tmp_path / "cycles.jsonl"),
        api_port=8000,
    )


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings()


@pytest.fixture
def recording_submitter() -> RecordingSubmitter:
    return RecordingSubmitter()


@pytest.fixture
def data_source_error() -> DataSourceError:
    return DataSourceError("connection reset")
