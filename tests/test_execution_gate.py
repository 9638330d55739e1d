import threading

import pytest

from market_maker.decision_filters.execution_gate import ExecutionGate
from market_maker.models import BUY, HOLD, IMMEDIATE, SELL, WAIT, TradeSignal


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def _signal(action=BUY, confidence=80.0):
    urgency = WAIT if action == HOLD else IMMEDIATE
    return TradeSignal(action, 0.5, 10.0, urgency, "test", confidence)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gate(clock):
    return ExecutionGate(cooldown_seconds=60, min_confidence=60, clock=clock)


def test_hold_is_never_forwarded(gate):
    decision = gate.evaluate(_signal(HOLD, 99))
    assert decision.forward is False
    assert decision.reason == "hold signal"


def test_low_confidence_is_rejected(gate):
    decision = gate.evaluate(_signal(BUY, 59))
    assert decision.forward is False
    assert "confidence" in decision.reason


def test_confidence_threshold_is_inclusive(gate):
    assert gate.evaluate(_signal(SELL, 60)).forward is True


def test_cooldown_blocks_until_elapsed(gate, clock):
    assert gate.evaluate(_signal()).forward is True
    gate.record_attempt()

    clock.now += 30
    decision = gate.evaluate(_signal())
    assert decision.forward is False
    assert "cooldown" in decision.reason
    assert gate.cooldown_remaining() == pytest.approx(30)

    clock.now += 30
    assert gate.evaluate(_signal()).forward is True


def test_at_most_one_forward_per_cooldown_window(gate, clock):
    forwarded = 0
    for _ in range(20):
        if gate.evaluate(_signal()).forward:
            gate.record_attempt()
            forwarded += 1
        clock.now += 2.5
    # 20 evaluations over 50 seconds of a 60 second cooldown
    assert forwarded == 1


def test_set_cooldown_keeps_running_timer(gate, clock):
    gate.record_attempt()
    clock.now += 20
    gate.set_cooldown(30)
    assert gate.cooldown_remaining() == pytest.approx(10)


def test_zero_cooldown_never_blocks(clock):
    gate = ExecutionGate(cooldown_seconds=0, clock=clock)
    gate.record_attempt()
    assert gate.evaluate(_signal()).forward is True


def test_concurrent_record_attempt_is_safe(gate):
    threads = [threading.Thread(target=gate.record_attempt) for _ in range(10)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert gate.cooldown_remaining() == pytest.approx(60)
