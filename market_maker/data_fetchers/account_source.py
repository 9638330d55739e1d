"""Account balance source backed by Solana JSON-RPC."""

import logging
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Tuple

import requests

from market_maker.exceptions import DataSourceError

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1e9


class AccountSource(ABC):
    """Abstract base class for account balance sources."""

    @abstractmethod
    def fetch_balances(self, address: str, asset: str) -> Tuple[float, float]:
        """
        Fetch balances for a trading account.

        Args:
            address: Account address
            asset: Token mint

        Returns:
            Tuple of (SOL balance, token balance)

        Raises:
            DataSourceError: On transport or RPC errors
        """
        pass


class SolanaRpcAccountSource(AccountSource):
    """Reads SOL and SPL token balances over JSON-RPC."""

    def __init__(self, rpc_url: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        """
        Initialize RPC account source.

        Args:
            rpc_url: Solana RPC endpoint
            timeout: Request timeout in seconds
            session: Optional requests session
        """
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        self._request_id = 0

    def _call(self, method: str, params: List[Any]) -> Any:
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        try:
            response = self.session.post(self.rpc_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except requests.exceptions.RequestException as e:
            raise DataSourceError(f"RPC {method} failed: {e}") from e
        except ValueError as e:
            raise DataSourceError(f"RPC {method} returned invalid JSON: {e}") from e

        if "error" in body:
            raise DataSourceError(f"RPC {method} error: {body['error']}")
        return body.get("result")

    def fetch_sol_balance(self, address: str) -> float:
        result = self._call("getBalance", [address, {"commitment": "confirmed"}])
        try:
            return result["value"] / LAMPORTS_PER_SOL
        except (KeyError, TypeError) as e:
            raise DataSourceError(f"Malformed getBalance result: {e}") from e

    def fetch_token_balance(self, address: str, asset: str) -> float:
        """Sum of the UI amounts of every token account the address holds for ``asset``."""
        result = self._call(
            "getTokenAccountsByOwner",
            [address, {"mint": asset}, {"encoding": "jsonParsed", "commitment": "confirmed"}],
        )
        try:
            accounts = result["value"]
            total = 0.0
            for account in accounts:
                amount = account["account"]["data"]["parsed"]["info"]["tokenAmount"]
                total += float(amount.get("uiAmount") or 0.0)
            return total
        except (KeyError, TypeError) as e:
            raise DataSourceError(f"Malformed getTokenAccountsByOwner result: {e}") from e

    def fetch_balances(self, address: str, asset: str) -> Tuple[float, float]:
        sol = self.fetch_sol_balance(address)
        tokens = self.fetch_token_balance(address, asset)
        logger.debug(f"Balances for {address[:6]}...: {sol:.4f} SOL, {tokens:,.2f} tokens")
        return sol, tokens
