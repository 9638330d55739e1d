"""Submitters that carry a sized trade to the bonding-curve exchange."""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import requests

from market_maker.exceptions import SettlementError
from market_maker.models import BUY, SELL

logger = logging.getLogger(__name__)

# Trade API pool names
POOL_BONDING_CURVE = "pump"
POOL_AUTO = "auto"


@dataclass(frozen=True)
class SubmitOrder:
    """A trade ready for submission."""

    action: str  # "buy" | "sell"
    asset: str
    amount: float  # SOL for buys, tokens for sells
    min_out: float  # Slippage floor in tokens (buy) or SOL (sell)
    slippage_bps: int
    pool: str = POOL_BONDING_CURVE  # "auto" once the curve has completed


@dataclass(frozen=True)
class SubmitReceipt:
    """Confirmation returned by a submitter."""

    signature: str


class SettlementSubmitter(ABC):
    """Abstract base class for trade submitters."""

    @abstractmethod
    def submit(self, order: SubmitOrder, signing_key: str) -> SubmitReceipt:
        """
        Submit a trade and wait for confirmation.

        Args:
            order: Sized trade with its slippage floor
            signing_key: Key for the trading account; never logged

        Returns:
            SubmitReceipt with the confirmation signature

        Raises:
            SettlementError: If the trade could not be submitted or confirmed
        """
        pass


class DryRunSubmitter(SettlementSubmitter):
    """Simulates a successful fill without touching the network."""

    def submit(self, order: SubmitOrder, signing_key: str) -> SubmitReceipt:
        logger.info(f"[DRY RUN] Simulating {order.action} of {order.amount:.6f} on {order.asset}")
        return SubmitReceipt(signature=f"DRY_RUN_{int(time.time() * 1000)}")


class TradeApiSubmitter(SettlementSubmitter):
    """Submits trades through an HTTP trade API that signs and sends the transaction."""

    def __init__(self, base_url: str, timeout: float = 30.0, priority_fee: float = 0.00005,
                 session: Optional[requests.Session] = None):
        """
        Initialize trade API submitter.

        Args:
            base_url: Trade API base URL
            timeout: Request timeout in seconds
            priority_fee: Priority fee in SOL attached to each transaction
            session: Optional requests session (created when omitted)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.priority_fee = priority_fee
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})

    def submit(self, order: SubmitOrder, signing_key: str) -> SubmitReceipt:
        if order.action not in (BUY, SELL):
            raise SettlementError(f"Unsupported action: {order.action}")

        payload = {
            "action": order.action,
            "mint": order.asset,
            "amount": order.amount,
            "denominatedInSol": "true" if order.action == BUY else "false",
            "slippage": order.slippage_bps / 100,
            "priorityFee": self.priority_fee,
            "minOut": order.min_out,
            "pool": order.pool,
        }

        try:
            response = self.session.post(
                f"{self.base_url}/trade",
                params={"api-key": signing_key},
                json=payload,
                timeout=self.timeout,
            )
            response.raise_for_status()
            body = response.json()
        except requests.exceptions.RequestException as e:
            # Request errors may echo the URL, which carries the key
            raise SettlementError(f"Trade API request failed: {type(e).__name__}") from None
        except ValueError:
            raise SettlementError("Trade API returned a non-JSON response")

        errors = body.get("errors") if isinstance(body, dict) else None
        if errors:
            raise SettlementError(f"Trade API rejected {order.action}: {errors}")

        signature = body.get("signature") if isinstance(body, dict) else None
        if not signature:
            raise SettlementError("Trade API response did not include a signature")

        logger.info(f"{order.action.upper()} confirmed on {order.asset}: {signature}")
        return SubmitReceipt(signature=signature)
