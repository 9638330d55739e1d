"""Configuration module for the bonding-curve market maker."""

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

RUN_MODES = ("dry_run", "live")

DEFAULT_CANDLE_API_URL = "https://frontend-api-v3.pump.fun"
DEFAULT_TOKEN_API_URL = "https://frontend-api-v3.pump.fun"
DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"
DEFAULT_TRADE_API_URL = "https://pumpportal.fun/api"


def _check_percent(name: str, value: float) -> None:
    if not 0.0 <= value <= 100.0:
        raise ValueError(f"{name} must be between 0 and 100")


def _check_non_negative(name: str, value: float) -> None:
    if value < 0:
        raise ValueError(f"{name} must be non-negative")


def _from_dict(cls, data: Dict[str, Any], base=None):
    """Build a dataclass from a dict, rejecting unknown keys and validating the result."""
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} fields: {', '.join(unknown)}")
    instance = replace(base, **data) if base is not None else cls(**data)
    instance.validate()
    return instance


@dataclass
class StrategyConfig:
    """Operator-tunable thresholds for the signal rules."""

    # Sell settings
    sell_during_euphoria: bool = True
    euphoria_sell_percent: float = 12.0
    max_sell_per_trade: float = 2.0  # SOL
    min_net_volume_to_sell: float = 0.5  # SOL
    min_net_volume_to_farm: float = 0.3  # SOL

    # Buy settings
    buy_at_support: bool = True
    buy_at_fib_levels: bool = True
    buy_at_ema: bool = True
    max_buy_per_trade: float = 1.0  # SOL
    dip_threshold: float = 15.0

    # Risk
    max_position_percent: float = 30.0
    stop_loss_percent: float = 50.0
    take_profit_percent: float = 200.0

    # Volume farming
    volume_farming_enabled: bool = True
    volume_farm_sell_percent: float = 10.0

    def validate(self) -> None:
        """
        Check field ranges.

        Raises:
            ValueError: If a percentage is outside [0, 100] or a limit is negative
        """
        _check_percent("euphoria_sell_percent", self.euphoria_sell_percent)
        _check_percent("dip_threshold", self.dip_threshold)
        _check_percent("max_position_percent", self.max_position_percent)
        _check_percent("stop_loss_percent", self.stop_loss_percent)
        _check_percent("volume_farm_sell_percent", self.volume_farm_sell_percent)
        _check_non_negative("take_profit_percent", self.take_profit_percent)
        _check_non_negative("max_sell_per_trade", self.max_sell_per_trade)
        _check_non_negative("max_buy_per_trade", self.max_buy_per_trade)
        _check_non_negative("min_net_volume_to_sell", self.min_net_volume_to_sell)
        _check_non_negative("min_net_volume_to_farm", self.min_net_volume_to_farm)

    def warnings(self) -> List[str]:
        """Advisory messages for settings that are valid but risky."""
        messages = []
        if self.max_sell_per_trade > 5:
            messages.append("Max sell > 5 SOL per trade may cause slippage")
        return messages

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base: Optional["StrategyConfig"] = None) -> "StrategyConfig":
        """Build from a dict of field overrides on top of ``base`` (defaults when omitted)."""
        return _from_dict(cls, data, base)


@dataclass
class MarketCapRules:
    """Market-cap thresholds (USD) that open selling and pick its intensity."""

    min_to_sell: float = 250_000
    light_threshold: float = 250_000
    light_percent: float = 6.0
    medium_threshold: float = 500_000
    medium_percent: float = 10.0
    heavy_threshold: float = 1_000_000
    heavy_percent: float = 14.0

    def validate(self) -> None:
        """
        Check that thresholds are non-decreasing and percentages are in range.

        Raises:
            ValueError: If thresholds are out of order, negative, or a percent is outside [0, 100]
        """
        _check_non_negative("min_to_sell", self.min_to_sell)
        if self.min_to_sell > self.light_threshold:
            raise ValueError("min_to_sell must be <= light threshold")
        if self.light_threshold > self.medium_threshold:
            raise ValueError("Light sell threshold must be <= medium threshold")
        if self.medium_threshold > self.heavy_threshold:
            raise ValueError("Medium sell threshold must be <= heavy threshold")
        _check_percent("light_percent", self.light_percent)
        _check_percent("medium_percent", self.medium_percent)
        _check_percent("heavy_percent", self.heavy_percent)

    def warnings(self) -> List[str]:
        """Advisory messages for thresholds that are valid but risky."""
        messages = []
        if self.min_to_sell < 50_000:
            messages.append("Min market cap to sell is very low ($50k). Consider higher.")
        if self.light_percent > 15:
            messages.append("Light sell % > 15% may cause price impact")
        if self.heavy_percent > 20:
            messages.append("Heavy sell % > 20% may cause significant dumps")
        return messages

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base: Optional["MarketCapRules"] = None) -> "MarketCapRules":
        """Build from a dict of field overrides on top of ``base`` (defaults when omitted)."""
        return _from_dict(cls, data, base)


@dataclass
class WalletLimits:
    """Anti-concentration limits for holding accounts."""

    max_supply_percent_per_wallet: float = 2.0
    max_quote_value_per_wallet: float = 10.0  # SOL
    min_wallets: int = 10
    max_wallets: int = 25

    def validate(self) -> None:
        """
        Check wallet limits.

        Raises:
            ValueError: If the supply cap is not in (0, 5] or the wallet counts are inconsistent
        """
        if self.max_supply_percent_per_wallet <= 0 or self.max_supply_percent_per_wallet > 100:
            raise ValueError("max_supply_percent_per_wallet must be between 0 and 100")
        if self.max_supply_percent_per_wallet > 5:
            raise ValueError("Max supply % per wallet should not exceed 5%")
        _check_non_negative("max_quote_value_per_wallet", self.max_quote_value_per_wallet)
        if self.min_wallets < 1:
            raise ValueError("min_wallets must be at least 1")
        if self.min_wallets > self.max_wallets:
            raise ValueError("min_wallets must be <= max_wallets")

    def warnings(self) -> List[str]:
        """Advisory messages for limits that are valid but risky."""
        messages = []
        if self.min_wallets < 5:
            messages.append("Using < 5 wallets looks suspicious")
        return messages

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base: Optional["WalletLimits"] = None) -> "WalletLimits":
        """Build from a dict of field overrides on top of ``base`` (defaults when omitted)."""
        return _from_dict(cls, data, base)


@dataclass
class EngineSettings:
    """Strategy, market-cap rules, wallet limits and cooldown that travel together."""

    strategy: StrategyConfig = field(default_factory=StrategyConfig)
    market_cap_rules: MarketCapRules = field(default_factory=MarketCapRules)
    wallet_limits: WalletLimits = field(default_factory=WalletLimits)
    cooldown_seconds: int = 60

    def validate(self) -> None:
        """Validate every section; raises ValueError on the first violation."""
        self.strategy.validate()
        self.market_cap_rules.validate()
        self.wallet_limits.validate()
        if self.cooldown_seconds < 0:
            raise ValueError("cooldown_seconds must be non-negative")

    def warnings(self) -> List[str]:
        messages = self.strategy.warnings() + self.market_cap_rules.warnings() + self.wallet_limits.warnings()
        if self.cooldown_seconds < 30:
            messages.append("Cooldown < 30s may look like bot activity")
        return messages

    def with_overrides(self, data: Dict[str, Any]) -> "EngineSettings":
        """
        Return a copy with section overrides applied.

        Args:
            data: Mapping with optional ``strategy``, ``market_cap_rules``,
                ``wallet_limits`` dicts and ``cooldown_seconds``

        Returns:
            New validated EngineSettings

        Raises:
            ValueError: On unknown sections or fields, or invalid values
        """
        allowed = {"strategy", "market_cap_rules", "wallet_limits", "cooldown_seconds"}
        unknown = sorted(set(data) - allowed)
        if unknown:
            raise ValueError(f"Unknown settings sections: {', '.join(unknown)}")

        settings = EngineSettings(
            strategy=StrategyConfig.from_dict(data.get("strategy") or {}, self.strategy),
            market_cap_rules=MarketCapRules.from_dict(data.get("market_cap_rules") or {}, self.market_cap_rules),
            wallet_limits=WalletLimits.from_dict(data.get("wallet_limits") or {}, self.wallet_limits),
            cooldown_seconds=int(data.get("cooldown_seconds", self.cooldown_seconds)),
        )
        settings.validate()
        return settings

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _preset(rules: MarketCapRules, farm_percent: float, cooldown_seconds: int) -> EngineSettings:
    return EngineSettings(
        strategy=StrategyConfig(volume_farm_sell_percent=farm_percent),
        market_cap_rules=rules,
        wallet_limits=WalletLimits(),
        cooldown_seconds=cooldown_seconds,
    )


PRESETS = {
    "default": EngineSettings(),
    # Slow and steady, for new tokens
    "conservative": _preset(
        MarketCapRules(
            min_to_sell=500_000,
            light_threshold=500_000,
            light_percent=4.0,
            medium_threshold=1_000_000,
            medium_percent=7.0,
            heavy_threshold=2_000_000,
            heavy_percent=10.0,
        ),
        farm_percent=5.0,
        cooldown_seconds=120,
    ),
    # Faster action, for pumping tokens
    "aggressive": _preset(
        MarketCapRules(
            min_to_sell=150_000,
            light_threshold=150_000,
            light_percent=8.0,
            medium_threshold=300_000,
            medium_percent=12.0,
            heavy_threshold=500_000,
            heavy_percent=16.0,
        ),
        farm_percent=10.0,
        cooldown_seconds=30,
    ),
}


def get_preset(name: str) -> EngineSettings:
    """
    Look up a named preset.

    Raises:
        ValueError: If the preset does not exist
    """
    try:
        preset = PRESETS[name]
    except KeyError:
        raise ValueError(f"Unknown strategy preset: {name}. Use one of: {', '.join(PRESETS)}")
    return replace(
        preset,
        strategy=replace(preset.strategy),
        market_cap_rules=replace(preset.market_cap_rules),
        wallet_limits=replace(preset.wallet_limits),
    )


@dataclass
class Config:
    """Configuration for the market maker loaded from environment variables."""

    # Assets and account
    assets: List[str]
    wallet_address: str
    wallet_id: str

    # Mode
    run_mode: str

    # External endpoints
    candle_api_url: str
    token_api_url: str
    rpc_url: str
    trade_api_url: str

    # Execution gate
    cooldown_seconds: Optional[int]  # None means the preset's cooldown applies
    min_confidence: float
    tick_divisor: int

    # Settlement
    slippage_bps: int
    min_trade_size: float
    max_trade_size: float

    # Data
    candle_window: int
    total_supply: float

    # Strategy
    strategy_preset: str
    strategy_file: Optional[str]

    # Output
    log_file: str
    api_port: int

    @property
    def dry_run(self) -> bool:
        return self.run_mode == "dry_run"

    @classmethod
    def from_env(cls) -> "Config":
        """
        Load configuration from environment variables with validation.

        Returns:
            Config: Validated configuration object

        Raises:
            ValueError: If required fields are missing or invalid
        """
        # Load .env file if it exists
        load_dotenv()

        assets_str = os.getenv("ASSETS", "")
        wallet_address = os.getenv("WALLET_ADDRESS")
        wallet_id = os.getenv("WALLET_ID", "default")
        run_mode = os.getenv("RUN_MODE", "dry_run").strip().lower()

        assets = [a.strip() for a in assets_str.split(",") if a.strip()]
        if not assets:
            raise ValueError("ASSETS must contain at least one token mint")

        required_fields = {
            "WALLET_ADDRESS": wallet_address,
        }
        missing_fields = [name for name, value in required_fields.items() if not value]
        if missing_fields:
            raise ValueError(f"Missing required environment variables: {', '.join(missing_fields)}")

        if run_mode not in RUN_MODES:
            raise ValueError("RUN_MODE must be either 'dry_run' or 'live'")

        cooldown_seconds = None
        cooldown_str = os.getenv("COOLDOWN_SECONDS")
        if cooldown_str:
            try:
                cooldown_seconds = int(cooldown_str)
            except ValueError:
                raise ValueError("COOLDOWN_SECONDS must be a valid integer")
            if cooldown_seconds < 0:
                raise ValueError("COOLDOWN_SECONDS must be non-negative")

        try:
            min_confidence = float(os.getenv("MIN_CONFIDENCE", "60"))
        except ValueError:
            raise ValueError("MIN_CONFIDENCE must be a valid float")
        if not 0.0 <= min_confidence <= 100.0:
            raise ValueError("MIN_CONFIDENCE must be between 0 and 100")

        try:
            tick_divisor = int(os.getenv("TICK_DIVISOR", "2"))
        except ValueError:
            raise ValueError("TICK_DIVISOR must be a valid integer")
        if tick_divisor not in (2, 3):
            raise ValueError("TICK_DIVISOR must be 2 or 3")

        try:
            slippage_bps = int(os.getenv("SLIPPAGE_BPS", "1000"))
        except ValueError:
            raise ValueError("SLIPPAGE_BPS must be a valid integer")
        if not 0 <= slippage_bps <= 10_000:
            raise ValueError("SLIPPAGE_BPS must be between 0 and 10000")

        try:
            min_trade_size = float(os.getenv("MIN_TRADE_SIZE", "0.05"))
        except ValueError:
            raise ValueError("MIN_TRADE_SIZE must be a valid float")
        try:
            max_trade_size = float(os.getenv("MAX_TRADE_SIZE", "2"))
        except ValueError:
            raise ValueError("MAX_TRADE_SIZE must be a valid float")
        if min_trade_size < 0:
            raise ValueError("MIN_TRADE_SIZE must be non-negative")
        if max_trade_size < min_trade_size:
            raise ValueError("MAX_TRADE_SIZE must be >= MIN_TRADE_SIZE")

        try:
            candle_window = int(os.getenv("CANDLE_WINDOW", "200"))
        except ValueError:
            raise ValueError("CANDLE_WINDOW must be a valid integer")
        if not 1 <= candle_window <= 200:
            raise ValueError("CANDLE_WINDOW must be between 1 and 200")

        try:
            total_supply = float(os.getenv("TOTAL_SUPPLY", "1000000000"))
        except ValueError:
            raise ValueError("TOTAL_SUPPLY must be a valid float")
        if total_supply <= 0:
            raise ValueError("TOTAL_SUPPLY must be greater than 0")

        try:
            api_port = int(os.getenv("API_PORT", "8000"))
        except ValueError:
            raise ValueError("API_PORT must be a valid integer")

        strategy_preset = os.getenv("STRATEGY_PRESET", "default").strip().lower()
        if strategy_preset not in PRESETS:
            raise ValueError(f"STRATEGY_PRESET must be one of: {', '.join(PRESETS)}")

        return cls(
            assets=assets,
            wallet_address=wallet_address,
            wallet_id=wallet_id,
            run_mode=run_mode,
            candle_api_url=os.getenv("CANDLE_API_URL", DEFAULT_CANDLE_API_URL),
            token_api_url=os.getenv("TOKEN_API_URL", DEFAULT_TOKEN_API_URL),
            rpc_url=os.getenv("RPC_URL", DEFAULT_RPC_URL),
            trade_api_url=os.getenv("TRADE_API_URL", DEFAULT_TRADE_API_URL),
            cooldown_seconds=cooldown_seconds,
            min_confidence=min_confidence,
            tick_divisor=tick_divisor,
            slippage_bps=slippage_bps,
            min_trade_size=min_trade_size,
            max_trade_size=max_trade_size,
            candle_window=candle_window,
            total_supply=total_supply,
            strategy_preset=strategy_preset,
            strategy_file=os.getenv("STRATEGY_FILE") or None,
            log_file=os.getenv("LOG_FILE", "logs/cycles.jsonl"),
            api_port=api_port,
        )

    def load_engine_settings(self) -> EngineSettings:
        """
        Build the engine settings from the preset, the strategy file and env overrides.

        Returns:
            Validated EngineSettings

        Raises:
            ValueError: If the strategy file is unreadable or any value is invalid
        """
        settings = get_preset(self.strategy_preset)

        if self.strategy_file:
            try:
                with open(self.strategy_file, "r") as f:
                    overrides = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise ValueError(f"STRATEGY_FILE could not be loaded: {e}")
            if not isinstance(overrides, dict):
                raise ValueError("STRATEGY_FILE must contain a JSON object")
            settings = settings.with_overrides(overrides)
            logger.info(f"Strategy overrides loaded from {self.strategy_file}")

        if self.cooldown_seconds is not None:
            settings = replace(settings, cooldown_seconds=self.cooldown_seconds)

        settings.validate()
        for message in settings.warnings():
            logger.warning(f"Config warning: {message}")
        return settings
