"""Settlement execution: sizing, curve quoting and submission of trade signals."""

import logging
import time
from typing import Optional

from market_maker.exceptions import SettlementError
from market_maker.exchange_adapters.settlement_submitter import (
    POOL_AUTO,
    POOL_BONDING_CURVE,
    SettlementSubmitter,
    SubmitOrder,
)
from market_maker.keys.key_store import SigningKeyStore
from market_maker.models import BUY, SELL, Position, SettlementResult, TokenInfo, TradeSignal
from market_maker.settlement.bonding_curve import DEFAULT_FEE, min_out_with_slippage, sol_out, tokens_out

logger = logging.getLogger(__name__)


class SettlementExecutor:
    """Turns a forwarded signal into a submitted trade and reports the outcome."""

    def __init__(self, submitter: SettlementSubmitter, key_store: SigningKeyStore, account_id: str,
                 min_trade_size: float = 0.05, max_trade_size: float = 2.0, slippage_bps: int = 1000,
                 fee: float = DEFAULT_FEE):
        """
        Initialize settlement executor.

        Args:
            submitter: Trade submitter (dry-run or live)
            key_store: Shared signing-key store
            account_id: Key identifier of the trading account
            min_trade_size: Minimum trade notional in SOL
            max_trade_size: Maximum trade notional in SOL
            slippage_bps: Slippage bound in basis points
            fee: Curve fee fraction
        """
        self.submitter = submitter
        self.key_store = key_store
        self.account_id = account_id
        self.min_trade_size = min_trade_size
        self.max_trade_size = max_trade_size
        self.slippage_bps = slippage_bps
        self.fee = fee

    def size_trade(self, signal: TradeSignal, position: Position, price: float) -> float:
        """
        Clamp the signal amount to the trade-size limits and available balance.

        Buy amounts are SOL and are clamped to [min_trade_size, max_trade_size].
        Sell amounts are tokens; their SOL notional at ``price`` is clamped to the
        same range. Neither may exceed what the account holds.

        Args:
            signal: Forwarded signal
            position: Current holdings
            price: Current price in SOL per token

        Returns:
            Trade amount in SOL (buy) or tokens (sell)
        """
        if signal.action == BUY:
            amount = min(max(signal.amount, self.min_trade_size), self.max_trade_size)
            return max(0.0, min(amount, position.quote_balance))

        amount = signal.amount
        if price > 0:
            notional = min(max(amount * price, self.min_trade_size), self.max_trade_size)
            amount = notional / price
        return max(0.0, min(amount, position.held_tokens))

    def quote(self, action: str, amount: float, price: float,
              token_info: Optional[TokenInfo] = None) -> float:
        """
        Expected counter-amount for a trade.

        Uses the curve reserves while the token still trades on its bonding
        curve, otherwise the current price less the fee.

        Returns:
            Tokens out for a buy, SOL out for a sell
        """
        if (token_info and not token_info.bonding_complete
                and token_info.virtual_sol_reserves > 0 and token_info.virtual_token_reserves > 0):
            v_sol = token_info.virtual_sol_reserves
            v_token = token_info.virtual_token_reserves
            if action == BUY:
                return tokens_out(amount, v_sol, v_token, self.fee)
            return sol_out(amount, v_sol, v_token, self.fee)

        if price <= 0:
            return 0.0
        if action == BUY:
            return amount / price * (1 - self.fee)
        return amount * price * (1 - self.fee)

    @staticmethod
    def select_pool(token_info: Optional[TokenInfo]) -> str:
        """Bonding-curve pool until the curve completes, then let the trade API route."""
        if token_info is not None and not token_info.bonding_complete:
            return POOL_BONDING_CURVE
        return POOL_AUTO

    def execute(self, signal: TradeSignal, asset: str, position: Position, price: float,
                token_info: Optional[TokenInfo] = None) -> SettlementResult:
        """
        Size, quote and submit a signal.

        Args:
            signal: Forwarded buy or sell signal
            asset: Token mint
            position: Current holdings
            price: Current price in SOL per token
            token_info: Latest token info, for curve reserves

        Returns:
            SettlementResult; failures carry the error instead of raising
        """
        timestamp = int(time.time() * 1000)

        if signal.action not in (BUY, SELL):
            return self._failed(signal.action, 0.0, timestamp, f"Nothing to execute for {signal.action}")

        amount = self.size_trade(signal, position, price)
        notional = amount if signal.action == BUY else amount * price
        if amount <= 0 or (price > 0 and notional < self.min_trade_size):
            return self._failed(
                signal.action, amount, timestamp,
                f"Trade below minimum size {self.min_trade_size} SOL after balance limits",
            )

        counter_amount = self.quote(signal.action, amount, price, token_info)
        order = SubmitOrder(
            action=signal.action,
            asset=asset,
            amount=amount,
            min_out=min_out_with_slippage(counter_amount, self.slippage_bps),
            slippage_bps=self.slippage_bps,
            pool=self.select_pool(token_info),
        )

        try:
            signing_key = self.key_store.get(self.account_id)
        except KeyError as e:
            return self._failed(signal.action, amount, timestamp, str(e))

        logger.info(
            f"Submitting {signal.action.upper()} {amount:.6f} on {asset} "
            f"(pool {order.pool}, expected out {counter_amount:.6f}, min out {order.min_out:.6f})"
        )
        try:
            receipt = self.submitter.submit(order, signing_key)
        except SettlementError as e:
            logger.error(f"{signal.action.upper()} on {asset} failed: {e}")
            return self._failed(signal.action, amount, timestamp, str(e))

        fill_price = self._fill_price(signal.action, amount, counter_amount)
        return SettlementResult(
            success=True,
            action=signal.action,
            amount=amount,
            counter_amount=counter_amount,
            price=fill_price,
            signature=receipt.signature,
            timestamp=timestamp,
        )

    @staticmethod
    def _fill_price(action: str, amount: float, counter_amount: float) -> float:
        """Effective SOL-per-token price of a fill."""
        if action == BUY:
            return amount / counter_amount if counter_amount > 0 else 0.0
        return counter_amount / amount if amount > 0 else 0.0

    @staticmethod
    def _failed(action: str, amount: float, timestamp: int, error: str) -> SettlementResult:
        return SettlementResult(
            success=False,
            action=action,
            amount=amount,
            error=error,
            timestamp=timestamp,
        )
