"""Candle and token-info sources backed by the bonding-curve exchange HTTP API."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import requests

from market_maker.exceptions import DataSourceError
from market_maker.models import Candle, TokenInfo
from market_maker.snapshot_builders.market_state_builder import (
    LAMPORTS_PER_SOL,
    TOKEN_DECIMALS,
    build_candles_from_trades,
)

logger = logging.getLogger(__name__)


class CandleSource(ABC):
    """Abstract base class for OHLCV candle sources."""

    @abstractmethod
    def fetch_candles(self, asset: str, resolution_seconds: int, limit: int) -> List[Candle]:
        """
        Fetch candles for an asset.

        Args:
            asset: Token mint
            resolution_seconds: Candle width in seconds
            limit: Maximum number of candles

        Returns:
            Candles ordered oldest first; may be fewer than ``limit``

        Raises:
            DataSourceError: On transport or payload errors
        """
        pass


class TokenInfoSource(ABC):
    """Abstract base class for token metadata sources."""

    @abstractmethod
    def fetch_token_info(self, asset: str) -> TokenInfo:
        """
        Fetch market cap, bonding state and curve reserves.

        Raises:
            DataSourceError: On transport or payload errors
        """
        pass


class _HttpSource:
    """Shared GET handling for the exchange HTTP API."""

    def __init__(self, base_url: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            raise DataSourceError(f"GET {path} failed: {e}") from e
        except ValueError as e:
            raise DataSourceError(f"GET {path} returned invalid JSON: {e}") from e


class HttpCandleSource(_HttpSource, CandleSource):
    """Builds candles from the exchange's recent-trades endpoint."""

    def __init__(self, base_url: str, timeout: float = 10.0, page_size: int = 200, max_pages: int = 5,
                 session: Optional[requests.Session] = None):
        """
        Initialize HTTP candle source.

        Args:
            base_url: Exchange API base URL
            timeout: Request timeout in seconds
            page_size: Trades per request
            max_pages: Maximum requests per fetch
            session: Optional requests session
        """
        super().__init__(base_url, timeout, session)
        self.page_size = page_size
        self.max_pages = max_pages

    def fetch_trades(self, asset: str) -> List[Dict]:
        """Fetch up to ``page_size * max_pages`` recent trades, newest pages first."""
        trades: List[Dict] = []
        for page in range(self.max_pages):
            batch = self._get(
                f"trades/all/{asset}",
                params={"limit": self.page_size, "offset": page * self.page_size, "minimumSize": 0},
            )
            if not isinstance(batch, list):
                raise DataSourceError(f"Unexpected trades payload for {asset}: {type(batch).__name__}")
            trades.extend(batch)
            if len(batch) < self.page_size:
                break
        return trades

    def fetch_candles(self, asset: str, resolution_seconds: int, limit: int) -> List[Candle]:
        trades = self.fetch_trades(asset)
        try:
            candles = build_candles_from_trades(trades, resolution_seconds)
        except (KeyError, TypeError, ValueError) as e:
            raise DataSourceError(f"Malformed trades for {asset}: {e}") from e
        if len(candles) < limit:
            logger.debug(f"{asset}: {len(candles)} candles available, {limit} requested")
        return candles[-limit:]


class HttpTokenInfoSource(_HttpSource, TokenInfoSource):
    """Reads token metadata from the exchange's coin endpoint."""

    def fetch_token_info(self, asset: str) -> TokenInfo:
        data = self._get(f"coins/{asset}")
        if not isinstance(data, dict):
            raise DataSourceError(f"Unexpected token payload for {asset}")

        try:
            return TokenInfo(
                asset=asset,
                market_cap_usd=float(data.get("usd_market_cap") or 0.0),
                bonding_complete=bool(data.get("complete", False)),
                virtual_sol_reserves=float(data.get("virtual_sol_reserves") or 0) / LAMPORTS_PER_SOL,
                virtual_token_reserves=float(data.get("virtual_token_reserves") or 0) / 10 ** TOKEN_DECIMALS,
                created_timestamp=int(data["created_timestamp"]) if data.get("created_timestamp") else None,
            )
        except (TypeError, ValueError) as e:
            raise DataSourceError(f"Malformed token payload for {asset}: {e}") from e
