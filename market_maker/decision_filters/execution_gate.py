"""Cooldown and confidence gate between the signal generator and settlement."""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from market_maker.models import HOLD, TradeSignal

logger = logging.getLogger(__name__)

DEFAULT_MIN_CONFIDENCE = 60.0


@dataclass(frozen=True)
class GateDecision:
    """Whether a signal may be forwarded, and why not when it may not."""

    forward: bool
    reason: str = ""


class ExecutionGate:
    """
    Forwards a signal only when it is actionable, confident enough and the cooldown has elapsed.

    The cooldown restarts on every forwarded attempt, whether the settlement
    succeeded or failed.
    """

    def __init__(self, cooldown_seconds: float, min_confidence: float = DEFAULT_MIN_CONFIDENCE,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize execution gate.

        Args:
            cooldown_seconds: Minimum seconds between forwarded trades
            min_confidence: Minimum signal confidence to forward
            clock: Monotonic time source in seconds
        """
        self.cooldown_seconds = cooldown_seconds
        self.min_confidence = min_confidence
        self._clock = clock
        self._last_attempt: Optional[float] = None
        self._lock = threading.Lock()

    def evaluate(self, signal: TradeSignal) -> GateDecision:
        """
        Decide whether ``signal`` should be forwarded to settlement.

        Args:
            signal: Signal from the generator

        Returns:
            GateDecision with the skip reason when not forwarded
        """
        if signal.action == HOLD:
            return GateDecision(False, "hold signal")

        if signal.confidence < self.min_confidence:
            return GateDecision(
                False, f"confidence {signal.confidence:g} below threshold {self.min_confidence:g}"
            )

        remaining = self.cooldown_remaining()
        if remaining > 0:
            return GateDecision(False, f"cooldown active, {remaining:.0f}s remaining")

        return GateDecision(True)

    def record_attempt(self) -> None:
        """Restart the cooldown after a forwarded attempt."""
        with self._lock:
            self._last_attempt = self._clock()

    def cooldown_remaining(self) -> float:
        """Seconds until the next trade may be forwarded (0 when none is pending)."""
        with self._lock:
            if self._last_attempt is None:
                return 0.0
            elapsed = self._clock() - self._last_attempt
        return max(0.0, self.cooldown_seconds - elapsed)

    def set_cooldown(self, cooldown_seconds: float) -> None:
        """Change the cooldown length; the running timer is kept."""
        with self._lock:
            self.cooldown_seconds = cooldown_seconds
