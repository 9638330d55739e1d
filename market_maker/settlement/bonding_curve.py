"""
Constant-product bonding-curve math.

Reserves are virtual: ``v_sol * v_token`` stays constant across a trade. The
fee (1% by default) is taken from the SOL side, on the way in for buys and on
the way out for sells.
"""

from typing import Tuple

DEFAULT_FEE = 0.01
BPS_DENOMINATOR = 10_000


def _check_reserves(v_sol: float, v_token: float) -> None:
    if v_sol <= 0 or v_token <= 0:
        raise ValueError("Virtual reserves must be greater than 0")


def tokens_out(sol_in: float, v_sol: float, v_token: float, fee: float = DEFAULT_FEE) -> float:
    """
    Tokens received for ``sol_in`` SOL.

    ``v_token - (v_sol * v_token) / (v_sol + sol_in * (1 - fee))``

    Raises:
        ValueError: If reserves are not positive or sol_in is negative
    """
    _check_reserves(v_sol, v_token)
    if sol_in < 0:
        raise ValueError("sol_in must be non-negative")
    sol_after_fee = sol_in * (1 - fee)
    return v_token - (v_sol * v_token) / (v_sol + sol_after_fee)


def sol_out(tokens_in: float, v_sol: float, v_token: float, fee: float = DEFAULT_FEE) -> float:
    """
    SOL received for selling ``tokens_in`` tokens.

    ``(v_sol - (v_sol * v_token) / (v_token + tokens_in)) * (1 - fee)``

    Raises:
        ValueError: If reserves are not positive or tokens_in is negative
    """
    _check_reserves(v_sol, v_token)
    if tokens_in < 0:
        raise ValueError("tokens_in must be non-negative")
    gross = v_sol - (v_sol * v_token) / (v_token + tokens_in)
    return gross * (1 - fee)


def spot_price(v_sol: float, v_token: float) -> float:
    """Marginal price in SOL per token (0 when the token reserve is empty)."""
    if v_token <= 0:
        return 0.0
    return v_sol / v_token


def apply_reserves_after_buy(sol_in: float, v_sol: float, v_token: float,
                             fee: float = DEFAULT_FEE) -> Tuple[float, float]:
    """Virtual reserves after a buy; the fee leaves the curve."""
    bought = tokens_out(sol_in, v_sol, v_token, fee)
    return v_sol + sol_in * (1 - fee), v_token - bought


def apply_reserves_after_sell(tokens_in: float, v_sol: float, v_token: float,
                              fee: float = DEFAULT_FEE) -> Tuple[float, float]:
    """Virtual reserves after a sell; the curve pays out the gross amount."""
    _check_reserves(v_sol, v_token)
    if tokens_in < 0:
        raise ValueError("tokens_in must be non-negative")
    new_v_token = v_token + tokens_in
    return (v_sol * v_token) / new_v_token, new_v_token


def min_out_with_slippage(expected_out: float, slippage_bps: int) -> float:
    """
    Lowest acceptable output for a slippage bound in basis points.

    Raises:
        ValueError: If slippage_bps is outside [0, 10000]
    """
    if not 0 <= slippage_bps <= BPS_DENOMINATOR:
        raise ValueError("slippage_bps must be between 0 and 10000")
    return expected_out * (BPS_DENOMINATOR - slippage_bps) / BPS_DENOMINATOR
