"""Cycle controller for one traded asset."""

import logging
import threading
import time
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from market_maker.config import Config, EngineSettings
from market_maker.data_fetchers.account_source import AccountSource
from market_maker.data_fetchers.candle_source import CandleSource, TokenInfoSource
from market_maker.decision_filters.execution_gate import ExecutionGate
from market_maker.exceptions import DataSourceError, InsufficientDataError
from market_maker.executors.settlement_executor import SettlementExecutor
from market_maker.logger import CycleJournal
from market_maker.managers.position_manager import PositionManager
from market_maker.models import HOLD, CycleLog, MarketState, SettlementResult, TokenInfo, TradeSignal
from market_maker.snapshot_builders.market_state_builder import MIN_CANDLES_FOR_SIGNAL, build_market_state
from market_maker.strategies.signal_generator import SignalGenerator, format_signal

logger = logging.getLogger(__name__)

IDLE = "idle"
CYCLE_RUNNING = "cycle_running"
STOPPED = "stopped"

# (max asset age in minutes, label, candle seconds)
TIMEFRAME_STEPS = (
    (15, "30s", 30),
    (60, "1m", 60),
    (240, "5m", 300),
    (1440, "15m", 900),
)
OLDEST_TIMEFRAME = ("1h", 3600)
MIN_TICK_SECONDS = 10.0


def select_timeframe(asset_age_minutes: float) -> Tuple[str, int]:
    """
    Candle timeframe for an asset of the given age.

    Returns:
        Tuple of (label, seconds): 30s under 15 min, 1m under 1 h, 5m under 4 h,
        15m under 24 h, else 1h
    """
    for max_age, label, seconds in TIMEFRAME_STEPS:
        if asset_age_minutes < max_age:
            return label, seconds
    return OLDEST_TIMEFRAME


def tick_interval_seconds(timeframe_seconds: float, divisor: int = 2) -> float:
    """Seconds between cycles: a fraction of the candle width, never under 10 s."""
    return max(MIN_TICK_SECONDS, timeframe_seconds / divisor)


class CycleController:
    """
    Runs the fetch, build, signal, gate and settle cycle for one asset.

    Cycles never overlap. The stop event is checked before every fetch and
    doubles as the inter-tick wait, so stopping takes effect at the next
    suspension point; a settlement already submitted runs to completion.
    """

    def __init__(self, asset: str, config: Config, settings: EngineSettings,
                 candle_source: CandleSource, token_info_source: TokenInfoSource,
                 account_source: AccountSource, executor: SettlementExecutor, journal: CycleJournal,
                 signal_generator: Optional[SignalGenerator] = None,
                 position_manager: Optional[PositionManager] = None,
                 gate: Optional[ExecutionGate] = None,
                 stop_event: Optional[threading.Event] = None):
        """
        Initialize cycle controller.

        Args:
            asset: Token mint traded by this controller
            config: Configuration object
            settings: Strategy, market-cap rules, wallet limits and cooldown
            candle_source: Candle source
            token_info_source: Token metadata source
            account_source: Balance source
            executor: Settlement executor
            journal: Cycle journal
            signal_generator: Signal generator (default rule set when omitted)
            position_manager: Position manager (created when omitted)
            gate: Execution gate (built from settings when omitted)
            stop_event: Cancellation token (created when omitted)
        """
        self.asset = asset
        self.config = config
        self.candle_source = candle_source
        self.token_info_source = token_info_source
        self.account_source = account_source
        self.executor = executor
        self.journal = journal
        self.signal_generator = signal_generator or SignalGenerator()
        self.position_manager = position_manager or PositionManager(asset, track_internally=config.dry_run)
        self.gate = gate or ExecutionGate(settings.cooldown_seconds, config.min_confidence)
        self.stop_event = stop_event or threading.Event()

        self._settings = settings
        self._settings_lock = threading.Lock()
        self._cycle_lock = threading.Lock()
        self._settle_lock = threading.Lock()

        self.started_at = time.time()
        self.cycle_count = 0
        self.timeframe: Tuple[str, int] = select_timeframe(0.0)
        self.last_signal: Optional[TradeSignal] = None
        self.last_state: Optional[MarketState] = None
        self.last_result: Optional[SettlementResult] = None
        self.last_error: Optional[str] = None
        self.last_cycle_at: Optional[float] = None

    @property
    def settings(self) -> EngineSettings:
        with self._settings_lock:
            return self._settings

    @property
    def state(self) -> str:
        if self._cycle_lock.locked():
            return CYCLE_RUNNING
        if self.stop_event.is_set():
            return STOPPED
        return IDLE

    @property
    def tick_interval(self) -> float:
        return tick_interval_seconds(self.timeframe[1], self.config.tick_divisor)

    def update_strategy(self, settings: EngineSettings) -> None:
        """
        Swap in new settings; the running cycle keeps the ones it started with.

        Raises:
            ValueError: If the settings are invalid
        """
        settings.validate()
        with self._settings_lock:
            self._settings = settings
        self.gate.set_cooldown(settings.cooldown_seconds)
        logger.info(f"{self.asset}: strategy settings updated")

    def stop(self) -> None:
        """Request the loop to stop at its next suspension point."""
        self.stop_event.set()

    def run(self) -> None:
        """
        Execute cycles until stopped.

        Errors inside a cycle are logged and the loop continues.
        """
        logger.info(f"{self.asset}: loop started ({self.config.run_mode})")
        while not self.stop_event.is_set():
            cycle_start_time = time.time()
            try:
                self.run_cycle()
            except Exception as e:
                logger.error(f"{self.asset}: cycle {self.cycle_count} failed: {e}", exc_info=True)
                self.last_error = str(e)
            self._sleep_until_next_cycle(cycle_start_time)
        logger.info(f"{self.asset}: loop stopped after {self.cycle_count} cycles")

    def _sleep_until_next_cycle(self, cycle_start_time: float) -> None:
        """Wait out the tick interval, waking early when stopped."""
        cycle_duration = time.time() - cycle_start_time
        sleep_time = max(0.0, self.tick_interval - cycle_duration)
        if sleep_time > 0:
            logger.debug(f"{self.asset}: sleeping {sleep_time:.1f}s until next cycle")
            self.stop_event.wait(sleep_time)
        else:
            logger.warning(
                f"{self.asset}: cycle took {cycle_duration:.1f}s, longer than interval {self.tick_interval:.0f}s"
            )

    def run_cycle(self) -> Optional[CycleLog]:
        """
        Run one cycle.

        Returns:
            The journaled CycleLog, or None when the cycle was skipped because
            another one is in flight or the loop is stopping
        """
        if not self._cycle_lock.acquire(blocking=False):
            logger.warning(f"{self.asset}: previous cycle still running, skipping tick")
            return None
        try:
            return self._run_cycle()
        finally:
            self._cycle_lock.release()

    def _run_cycle(self) -> Optional[CycleLog]:
        self.cycle_count += 1
        settings = self.settings
        now = time.time()
        self.last_cycle_at = now

        if self.cycle_count == 1 or self.cycle_count % 10 == 0:
            logger.info(f"{self.asset}: CYCLE {self.cycle_count} - {datetime.now(timezone.utc).strftime('%H:%M:%S')}")

        # Step 1: token info (market cap, bonding state, age)
        if self.stop_event.is_set():
            return None
        try:
            token_info = self.token_info_source.fetch_token_info(self.asset)
        except DataSourceError as e:
            return self._abandon(f"token info unavailable: {e}")

        age_minutes = self._asset_age_minutes(token_info, now)
        self.timeframe = select_timeframe(age_minutes)
        label, resolution = self.timeframe

        # Step 2: candles
        if self.stop_event.is_set():
            return None
        try:
            candles = self.candle_source.fetch_candles(self.asset, resolution, self.config.candle_window)
        except DataSourceError as e:
            return self._abandon(f"candles unavailable: {e}", token_info)

        # Step 3: balances
        if self.stop_event.is_set():
            return None
        try:
            quote_balance, held_tokens = self.account_source.fetch_balances(self.config.wallet_address, self.asset)
        except DataSourceError as e:
            return self._abandon(f"balances unavailable: {e}", token_info, len(candles))
        position = self.position_manager.refresh(quote_balance, held_tokens)

        # Step 4: market state
        try:
            state = build_market_state(
                candles,
                asset_age_minutes=age_minutes,
                market_cap_usd=token_info.market_cap_usd,
                bonding_complete=token_info.bonding_complete,
            )
        except InsufficientDataError as e:
            logger.info(f"{self.asset}: {e}; skipping phase and signal")
            return self._journal(token_info, len(candles), skip_reason=f"insufficient data: {e}")
        self.last_state = state

        if state.candle_count < MIN_CANDLES_FOR_SIGNAL:
            logger.info(
                f"{self.asset}: {state.candle_count} candles ({label}), phase {state.phase}; "
                f"need {MIN_CANDLES_FOR_SIGNAL} for a signal"
            )
            return self._journal(
                token_info, state.candle_count, state=state,
                skip_reason=f"insufficient data: {state.candle_count} < {MIN_CANDLES_FOR_SIGNAL} candles",
            )

        # Step 5: signal
        signal = self.signal_generator.generate(state, settings.strategy, settings.market_cap_rules, position)
        self.last_signal = signal
        logger.info(f"{self.asset}: [{state.phase}] {format_signal(signal)}")

        # Step 6: gate and settle
        decision = self.gate.evaluate(signal)
        if not decision.forward:
            if signal.action != HOLD:
                logger.info(f"{self.asset}: skipping execution, {decision.reason}")
            return self._journal(token_info, state.candle_count, state=state, signal=signal,
                                 skip_reason=decision.reason)

        with self._settle_lock:
            result = self.executor.execute(signal, self.asset, position, state.current_price, token_info)
            self.gate.record_attempt()
            self.position_manager.apply_settlement(result)
            self.last_result = result

        if result.success:
            logger.info(f"{self.asset}: {result.action.upper()} settled ({result.signature})")
        else:
            logger.warning(f"{self.asset}: {result.action.upper()} failed: {result.error}")

        return self._journal(token_info, state.candle_count, state=state, signal=signal,
                             forwarded=True, result=result)

    def _asset_age_minutes(self, token_info: TokenInfo, now: float) -> float:
        """Minutes since creation, falling back to the controller's start time."""
        if token_info.created_timestamp:
            created = token_info.created_timestamp
            created_seconds = created / 1000 if created > 10**12 else created
            return max(0.0, (now - created_seconds) / 60)
        return max(0.0, (now - self.started_at) / 60)

    def _abandon(self, reason: str, token_info: Optional[TokenInfo] = None, candle_count: int = 0) -> CycleLog:
        logger.warning(f"{self.asset}: {reason}; abandoning cycle")
        self.last_error = reason
        return self._journal(token_info, candle_count, skip_reason=reason)

    def _journal(self, token_info: Optional[TokenInfo], candle_count: int,
                 state: Optional[MarketState] = None, signal: Optional[TradeSignal] = None,
                 forwarded: bool = False, result: Optional[SettlementResult] = None,
                 skip_reason: str = "") -> CycleLog:
        position = self.position_manager.snapshot()
        cycle_log = CycleLog(
            timestamp=int(time.time() * 1000),
            asset=self.asset,
            timeframe=self.timeframe[0],
            candle_count=candle_count,
            market_price=state.current_price if state else 0.0,
            phase=state.phase if state else None,
            market_cap_usd=token_info.market_cap_usd if token_info else 0.0,
            bonding_complete=token_info.bonding_complete if token_info else False,
            position_tokens=position.held_tokens,
            position_quote=position.quote_balance,
            signal_action=signal.action if signal else None,
            signal_amount=signal.amount if signal else 0.0,
            signal_confidence=signal.confidence if signal else 0.0,
            signal_reason=signal.reason if signal else "",
            forwarded=forwarded,
            skip_reason=skip_reason,
            executed=bool(result and result.success),
            signature=result.signature if result else None,
            error=result.error if result else None,
            mode=self.config.run_mode,
        )
        try:
            self.journal.log_cycle(cycle_log)
        except OSError as e:
            logger.error(f"{self.asset}: failed to write cycle journal: {e}")
        return cycle_log

    def status(self) -> Dict[str, Any]:
        """Snapshot of the controller for the control API."""
        label, seconds = self.timeframe
        return {
            "asset": self.asset,
            "state": self.state,
            "mode": self.config.run_mode,
            "timeframe": label,
            "timeframe_seconds": seconds,
            "tick_interval_seconds": self.tick_interval,
            "cycle_count": self.cycle_count,
            "phase": self.last_state.phase if self.last_state else None,
            "last_signal": asdict(self.last_signal) if self.last_signal else None,
            "last_result": asdict(self.last_result) if self.last_result else None,
            "position": asdict(self.position_manager.snapshot()),
            "cooldown_remaining_seconds": self.gate.cooldown_remaining(),
            "last_error": self.last_error,
            "last_cycle_at": self.last_cycle_at,
        }
