"""Position tracking for one traded asset."""

import logging
import threading
from dataclasses import replace
from typing import Optional

from market_maker.models import BUY, SELL, Position, SettlementResult

logger = logging.getLogger(__name__)


class PositionManager:
    """
    Tracks held tokens, average entry price and quote balance for one asset.

    Balances come from the account source; the average entry price is only
    known locally and is updated from confirmed settlements. In tracked mode
    (dry run) the account source seeds the balances once and simulated fills
    move them afterwards.
    """

    def __init__(self, asset: str, track_internally: bool = False,
                 initial: Optional[Position] = None):
        """
        Initialize position manager.

        Args:
            asset: Token mint being tracked
            track_internally: Keep balances from fills instead of the account source
            initial: Starting position (flat when omitted)
        """
        self.asset = asset
        self.track_internally = track_internally
        self._position = initial or Position()
        self._seeded = initial is not None
        self._lock = threading.Lock()

    def snapshot(self) -> Position:
        """Copy of the current position, safe to hand to the signal generator."""
        with self._lock:
            return replace(self._position)

    def refresh(self, quote_balance: float, held_tokens: float) -> Position:
        """
        Apply balances read from the account source.

        Args:
            quote_balance: SOL balance
            held_tokens: Token balance

        Returns:
            Updated position copy
        """
        with self._lock:
            if self.track_internally and self._seeded:
                return replace(self._position)

            position = self._position
            position.quote_balance = quote_balance
            position.held_tokens = held_tokens
            if held_tokens <= 0:
                position.average_entry_price = 0.0
            self._seeded = True
            return replace(position)

    def apply_settlement(self, result: SettlementResult) -> Position:
        """
        Update the position from a settlement result.

        Failed results leave the position untouched. A buy moves the average
        entry to the SOL-weighted cost per token; a sell reduces holdings and
        resets the entry price once flat.

        Args:
            result: Settlement outcome

        Returns:
            Updated position copy
        """
        with self._lock:
            position = self._position
            if not result.success:
                return replace(position)

            if result.action == BUY:
                tokens_bought = result.counter_amount
                if tokens_bought <= 0 and result.price > 0:
                    tokens_bought = result.amount / result.price
                if tokens_bought > 0:
                    cost_before = position.held_tokens * position.average_entry_price
                    position.held_tokens += tokens_bought
                    position.average_entry_price = (cost_before + result.amount) / position.held_tokens
                position.quote_balance = max(0.0, position.quote_balance - result.amount)
                logger.info(
                    f"{self.asset}: bought {tokens_bought:,.2f} tokens for {result.amount:.4f} SOL, "
                    f"avg entry {position.average_entry_price:.10f}"
                )

            elif result.action == SELL:
                sol_received = result.counter_amount
                if sol_received <= 0 and result.price > 0:
                    sol_received = result.amount * result.price
                position.held_tokens = max(0.0, position.held_tokens - result.amount)
                position.quote_balance += sol_received
                if position.held_tokens <= 0:
                    position.average_entry_price = 0.0
                logger.info(
                    f"{self.asset}: sold {result.amount:,.2f} tokens for {sol_received:.4f} SOL, "
                    f"{position.held_tokens:,.2f} left"
                )

            return replace(position)
