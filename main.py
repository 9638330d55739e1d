#!/usr/bin/env python3
"""
Main entry point for the bonding-curve market maker.

Loads the environment, checks the token info endpoint for every asset,
optionally serves the control API, then runs one cycle loop per asset
until a signal or the API stops them.
"""

import argparse
import json
import logging
import sys
import threading
import time
from datetime import datetime
from pathlib import Path

from dotenv import load_dotenv

from market_maker.config import Config
from market_maker.loop_controller import LoopController

__version__ = "1.0.0"


class JSONFormatter(logging.Formatter):
    """Formats log records as single-line JSON objects."""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "thread": record.threadName,
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def setup_logging(verbose: bool = False, json_logs: bool = False, log_dir: str = "logs") -> None:
    """
    Configure logging for the application.

    Args:
        verbose: If True, set log level to DEBUG, otherwise INFO
        json_logs: If True, enable JSON structured logging
        log_dir: Directory for the log files
    """
    log_level = logging.DEBUG if verbose else logging.INFO

    Path(log_dir).mkdir(exist_ok=True)

    if json_logs:
        formatter = JSONFormatter()
    else:
        log_format = "%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(message)s"
        date_format = "%Y-%m-%d %H:%M:%S"
        formatter = logging.Formatter(log_format, date_format)

    handlers = [
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(f"{log_dir}/engine.log", mode="a")
    ]
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=log_level, handlers=handlers)

    if json_logs:
        json_handler = logging.FileHandler(f"{log_dir}/engine.json", mode="a")
        json_handler.setFormatter(formatter)
        logging.root.addHandler(json_handler)

    # Reduce noisy third-party loggers
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def parse_arguments(argv=None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        description="Bonding-curve market maker - rule-driven trading engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  market-maker                          # reads .env
  market-maker --env .env.devnet        # alternate wallet and endpoints
  market-maker --verbose --api          # indicator summaries plus the control API

Environment:
  .env.example lists every variable with its default.

Safety:
  RUN_MODE defaults to dry_run. Only set RUN_MODE=live once dry runs
  behave as expected.
        """
    )

    parser.add_argument("--env", default=".env", help="Environment file to load (default: .env)")
    parser.add_argument("--verbose", action="store_true", help="Log at DEBUG, including indicator summaries")
    parser.add_argument("--json-logs", action="store_true", help="Also write JSON records to logs/engine.json")
    parser.add_argument("--api", action="store_true", help="Serve the control API on API_PORT")
    parser.add_argument("--version", action="version", version=f"Market Maker v{__version__}")

    return parser.parse_args(argv)


def start_api_server(controller: LoopController, port: int) -> threading.Thread:
    """Run the control API on a daemon thread."""
    import uvicorn

    from api_server import create_app

    logger = logging.getLogger(__name__)
    app = create_app(controller)

    def run_api_server():
        try:
            logger.info(f"Starting API server on http://0.0.0.0:{port}")
            uvicorn.run(app, host="0.0.0.0", port=port, log_level="warning")
        except Exception as e:
            logger.error(f"API server thread crashed: {e}", exc_info=True)

    api_thread = threading.Thread(target=run_api_server, name="api-server", daemon=True)
    api_thread.start()
    return api_thread


def _banner(logger: logging.Logger, title: str, fill: str = "=", level: int = logging.INFO) -> None:
    logger.log(level, fill * 80)
    logger.log(level, title)
    logger.log(level, fill * 80)


def load_config(env_path: str) -> Config:
    """
    Load the engine configuration, reading ``env_path`` first when it is not the default file.

    Raises:
        FileNotFoundError: If a non-default env file does not exist
        ValueError: If the configuration is invalid
    """
    if env_path != ".env":
        if not Path(env_path).exists():
            raise FileNotFoundError(f"Environment file not found: {env_path}")
        load_dotenv(env_path, override=True)
    return Config.from_env()


def confirm_live_mode(logger: logging.Logger, delay_seconds: float = 5) -> bool:
    """Warn about live trading and give the operator ``delay_seconds`` to abort with Ctrl+C."""
    _banner(logger, "LIVE MODE: settlements spend real SOL from the configured wallet", "!", logging.WARNING)
    logger.warning(f"Ctrl+C within {delay_seconds:g}s aborts before any asset loop starts")
    try:
        time.sleep(delay_seconds)
    except KeyboardInterrupt:
        return False
    return True


def main(argv=None) -> int:
    """
    Run the market maker until every asset loop stops.

    Returns:
        Process exit code
    """
    args = parse_arguments(argv)
    setup_logging(verbose=args.verbose, json_logs=args.json_logs)
    logger = logging.getLogger(__name__)

    _banner(logger, "BONDING-CURVE MARKET MAKER")

    logger.info(f"Reading environment from {args.env}")
    try:
        config = load_config(args.env)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Configuration rejected: {e}")
        logger.error("Compare your environment file against .env.example")
        return 1
    logger.info(f"{len(config.assets)} asset(s), preset '{config.strategy_preset}', mode {config.run_mode}")

    if config.dry_run:
        _banner(logger, "DRY RUN: settlements are simulated against the curve")
    elif not confirm_live_mode(logger):
        logger.info("Live start aborted by operator")
        return 0

    try:
        controller = LoopController(config)
    except ValueError as e:
        logger.error(f"Cannot build asset loops: {e}")
        return 1

    controller.register_signal_handlers()

    if not controller.startup():
        logger.error("Token info endpoint unreachable for at least one asset; not starting")
        return 1

    if args.api:
        start_api_server(controller, config.api_port)

    try:
        controller.run()
    except KeyboardInterrupt:
        controller.shutdown()
    except Exception as e:
        logger.error(f"Engine crashed: {e}", exc_info=True)
        return 1

    _banner(logger, f"Engine stopped ({sum(c.cycle_count for c in controller.controllers.values())} cycles run)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
