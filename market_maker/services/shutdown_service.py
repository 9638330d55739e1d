"""Stops every asset loop on SIGINT/SIGTERM or an explicit request."""

import logging
import signal

from market_maker.controllers.cycle_controller import STOPPED

logger = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownService:
    """Turns termination signals into a single stop of the loop controller."""

    def __init__(self, loop_controller):
        self.loop_controller = loop_controller
        self.shutdown_requested = False
        self.reason = None

    def shutdown(self, reason: str = "requested") -> None:
        """
        Stop all asset loops once.

        Cycles already settling finish first; loops waiting for their next
        tick wake and exit straight away. Later calls only log.

        Args:
            reason: What triggered the shutdown, for the log
        """
        if self.shutdown_requested:
            logger.info(f"Shutdown ({self.reason}) already in progress, ignoring {reason}")
            return
        self.shutdown_requested = True
        self.reason = reason

        running = [asset for asset, status in self.loop_controller.status()["assets"].items()
                   if status["state"] != STOPPED]
        logger.info("=" * 60)
        logger.info(f"SHUTDOWN ({reason}): stopping {len(running)} asset loop(s)")
        logger.info("=" * 60)
        self.loop_controller.stop()

    def register_signal_handlers(self) -> None:
        """Install handlers for SIGINT and SIGTERM. Call from the main thread."""
        def signal_handler(signum, frame):
            self.shutdown(reason=signal.Signals(signum).name)

        for sig in HANDLED_SIGNALS:
            signal.signal(sig, signal_handler)

        logger.info(f"Shutdown on {', '.join(s.name for s in HANDLED_SIGNALS)}")
