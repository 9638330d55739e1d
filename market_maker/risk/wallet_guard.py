"""Anti-concentration checks for token holding accounts."""

import logging
import math
from typing import Dict, Optional

from market_maker.config import WalletLimits
from market_maker.models import DistributionPlan, RebalanceReport, WalletCheck

logger = logging.getLogger(__name__)

# A wallet below this share of the mean non-zero balance is underweight
UNDERWEIGHT_RATIO = 0.3


def _per_wallet_cap(total_supply: float, limits: WalletLimits) -> float:
    if total_supply <= 0:
        raise ValueError("total_supply must be greater than 0")
    return total_supply * limits.max_supply_percent_per_wallet / 100


def check_wallet(
    held_tokens: float,
    total_supply: float,
    price_in_quote: float,
    limits: Optional[WalletLimits] = None,
) -> WalletCheck:
    """
    Check one account against the supply and value limits.

    Args:
        held_tokens: Tokens held by the account
        total_supply: Total token supply
        price_in_quote: Token price in SOL
        limits: Wallet limits (defaults when omitted)

    Returns:
        WalletCheck with one warning per breached limit

    Raises:
        ValueError: If total_supply is not positive
    """
    limits = limits or WalletLimits()
    if total_supply <= 0:
        raise ValueError("total_supply must be greater than 0")

    supply_percent = held_tokens / total_supply * 100
    quote_value = held_tokens * price_in_quote
    warnings = []

    if supply_percent > limits.max_supply_percent_per_wallet:
        warnings.append(
            f"Wallet holds {supply_percent:.2f}% > max {limits.max_supply_percent_per_wallet}%"
        )
    if quote_value > limits.max_quote_value_per_wallet:
        warnings.append(
            f"Wallet value {quote_value:.2f} SOL > max {limits.max_quote_value_per_wallet} SOL"
        )

    return WalletCheck(
        within_limits=not warnings,
        supply_percent=supply_percent,
        quote_value=quote_value,
        warnings=warnings,
    )


def plan_distribution(
    total_to_distribute: float,
    total_supply: float,
    limits: Optional[WalletLimits] = None,
) -> DistributionPlan:
    """
    Work out how many accounts are needed to hold a token quantity.

    ``wallets_needed`` is the larger of ``min_wallets`` and the number of
    per-wallet caps the quantity fills, clamped to ``max_wallets``. When the
    clamp bites, each wallet ends up above the cap.

    Args:
        total_to_distribute: Tokens to spread across accounts
        total_supply: Total token supply
        limits: Wallet limits (defaults when omitted)

    Returns:
        DistributionPlan

    Raises:
        ValueError: If total_supply is not positive or the quantity is negative
    """
    limits = limits or WalletLimits()
    cap = _per_wallet_cap(total_supply, limits)
    if total_to_distribute < 0:
        raise ValueError("total_to_distribute must be non-negative")

    wallets_needed = max(limits.min_wallets, math.ceil(total_to_distribute / cap))
    wallets_needed = min(wallets_needed, limits.max_wallets)
    tokens_per_wallet = total_to_distribute / wallets_needed

    if tokens_per_wallet > cap:
        logger.warning(
            f"Distribution clamped to {limits.max_wallets} wallets; "
            f"{tokens_per_wallet:,.0f} tokens per wallet exceeds cap {cap:,.0f}"
        )

    return DistributionPlan(
        wallets_needed=wallets_needed,
        tokens_per_wallet=tokens_per_wallet,
        supply_percent_per_wallet=tokens_per_wallet / total_supply * 100,
    )


def needs_rebalance(
    balances: Dict[str, float],
    total_supply: float,
    limits: Optional[WalletLimits] = None,
) -> RebalanceReport:
    """
    Detect wallets that break the per-wallet cap or sit far below the mean.

    Detection only; nothing is moved.

    Args:
        balances: Token balance per account address
        total_supply: Total token supply
        limits: Wallet limits (defaults when omitted)

    Returns:
        RebalanceReport; ``should_rebalance`` is set when any wallet is overweight
    """
    limits = limits or WalletLimits()
    cap = _per_wallet_cap(total_supply, limits)

    overweight = [address for address, tokens in balances.items() if tokens > cap]

    non_zero = [tokens for tokens in balances.values() if tokens > 0]
    underweight = []
    if non_zero:
        floor = sum(non_zero) / len(non_zero) * UNDERWEIGHT_RATIO
        underweight = [address for address, tokens in balances.items() if 0 < tokens < floor]

    return RebalanceReport(
        should_rebalance=bool(overweight),
        overweight_wallets=overweight,
        underweight_wallets=underweight,
    )
