"""Exception types raised inside the market maker."""


class MarketMakerError(Exception):
    """Base class for market maker errors."""


class InsufficientDataError(MarketMakerError):
    """Raised when the candle window is too short to build a market state."""

    def __init__(self, available: int, required: int):
        self.available = available
        self.required = required
        super().__init__(f"Need at least {required} candles, have {available}")


class DataSourceError(MarketMakerError):
    """Transient failure fetching candles, token info or balances."""


class SettlementError(MarketMakerError):
    """Raised by a submitter when a trade could not be submitted or confirmed."""
