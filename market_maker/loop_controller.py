"""Loop controller for the bonding-curve market maker."""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Dict, List, Optional

from market_maker.config import Config, EngineSettings
from market_maker.controllers.cycle_controller import CycleController
from market_maker.data_fetchers.account_source import AccountSource, SolanaRpcAccountSource
from market_maker.data_fetchers.candle_source import (
    CandleSource,
    HttpCandleSource,
    HttpTokenInfoSource,
    TokenInfoSource,
)
from market_maker.exceptions import DataSourceError
from market_maker.exchange_adapters.settlement_submitter import (
    DryRunSubmitter,
    SettlementSubmitter,
    TradeApiSubmitter,
)
from market_maker.executors.settlement_executor import SettlementExecutor
from market_maker.keys.key_store import SigningKeyStore
from market_maker.logger import CycleJournal
from market_maker.services.shutdown_service import ShutdownService

logger = logging.getLogger(__name__)


class LoopController:
    """Owns one CycleController per asset and runs them concurrently."""

    def __init__(self, config: Config, settings: Optional[EngineSettings] = None,
                 key_store: Optional[SigningKeyStore] = None,
                 candle_source: Optional[CandleSource] = None,
                 token_info_source: Optional[TokenInfoSource] = None,
                 account_source: Optional[AccountSource] = None,
                 submitter: Optional[SettlementSubmitter] = None,
                 journal: Optional[CycleJournal] = None):
        """
        Initialize loop controller with all components.

        Collaborators left as None are built from the configuration.

        Args:
            config: Configuration object
            settings: Engine settings (loaded from config when omitted)
            key_store: Shared signing-key store
            candle_source: Candle source shared by all assets
            token_info_source: Token metadata source
            account_source: Balance source
            submitter: Trade submitter (dry-run in dry_run mode)
            journal: Cycle journal
        """
        self.config = config
        self.running = False

        logger.info("Initializing loop controller components...")

        self.settings = settings or config.load_engine_settings()
        self.key_store = key_store or SigningKeyStore.from_env(config.wallet_id)
        self.candle_source = candle_source or HttpCandleSource(config.candle_api_url)
        self.token_info_source = token_info_source or HttpTokenInfoSource(config.token_api_url)
        self.account_source = account_source or SolanaRpcAccountSource(config.rpc_url)
        self.submitter = submitter or self._init_submitter(config)
        self.journal = journal or CycleJournal(config.log_file)

        self.executor = SettlementExecutor(
            self.submitter,
            self.key_store,
            config.wallet_id,
            min_trade_size=config.min_trade_size,
            max_trade_size=config.max_trade_size,
            slippage_bps=config.slippage_bps,
        )

        self.controllers: Dict[str, CycleController] = {
            asset: CycleController(
                asset,
                config,
                self.settings,
                self.candle_source,
                self.token_info_source,
                self.account_source,
                self.executor,
                self.journal,
            )
            for asset in config.assets
        }

        self.shutdown_service = ShutdownService(self)

        logger.info(f"Loop controller initialized for {len(self.controllers)} asset(s)")

    def _init_submitter(self, config: Config) -> SettlementSubmitter:
        """
        Pick the submitter for the run mode.

        Raises:
            ValueError: If live mode has no signing key
        """
        if config.dry_run:
            logger.info("DRY RUN mode: trades are simulated")
            return DryRunSubmitter()
        if not self.key_store.has(config.wallet_id):
            raise ValueError(f"Live mode requires a signing key for wallet {config.wallet_id}")
        logger.info("LIVE mode: trades are submitted to the trade API")
        return TradeApiSubmitter(config.trade_api_url)

    def startup(self) -> bool:
        """
        Check data-source connectivity before starting the loops.

        Returns:
            bool: True if token info could be read for every asset
        """
        logger.info("=" * 60)
        logger.info("STARTING MARKET MAKER")
        logger.info("=" * 60)

        for asset in self.controllers:
            try:
                info = self.token_info_source.fetch_token_info(asset)
            except DataSourceError as e:
                logger.error(f"Token info for {asset} FAILED: {e}")
                return False
            logger.info(
                f"{asset}: market cap ${info.market_cap_usd:,.0f}, "
                f"bonding {'complete' if info.bonding_complete else 'active'}"
            )

        logger.info("All connectivity checks passed")
        return True

    def run(self) -> None:
        """Run every asset loop on its own worker thread until all stop."""
        self.running = True
        with ThreadPoolExecutor(max_workers=len(self.controllers), thread_name_prefix="asset") as pool:
            futures = {pool.submit(controller.run): asset for asset, controller in self.controllers.items()}
            for future in as_completed(futures):
                asset = futures[future]
                try:
                    future.result()
                except Exception as e:
                    logger.error(f"{asset}: loop crashed: {e}", exc_info=True)
                logger.debug(f"{asset}: loop finished")
        self.running = False

    def stop(self) -> None:
        """Ask every asset loop to stop."""
        for controller in self.controllers.values():
            controller.stop()

    def stop_asset(self, asset: str) -> None:
        """
        Ask one asset loop to stop.

        Raises:
            KeyError: If the asset is not managed here
        """
        self.get_controller(asset).stop()

    def get_controller(self, asset: str) -> CycleController:
        try:
            return self.controllers[asset]
        except KeyError:
            raise KeyError(f"Unknown asset: {asset}") from None

    def assets(self) -> List[str]:
        return list(self.controllers)

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "mode": self.config.run_mode,
            "assets": {asset: controller.status() for asset, controller in self.controllers.items()},
        }

    def shutdown(self) -> None:
        """Delegate shutdown to the shutdown service."""
        self.shutdown_service.shutdown()

    def register_signal_handlers(self) -> None:
        """Delegate signal handler registration to the shutdown service."""
        self.shutdown_service.register_signal_handlers()
