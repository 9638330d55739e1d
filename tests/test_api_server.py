from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from api_server import create_app
from conftest import ASSET, FakeAccountSource, FakeCandleSource, FakeTokenInfoSource, make_candles
from market_maker.controllers.cycle_controller import STOPPED
from market_maker.keys.key_store import SigningKeyStore
from market_maker.logger import CycleJournal
from market_maker.loop_controller import LoopController


@pytest.fixture
def loop_controller(config, settings):
    return LoopController(
        config,
        settings=settings,
        key_store=SigningKeyStore({"main": "secret-key"}),
        candle_source=FakeCandleSource(make_candles([0.001] * 30)),
        token_info_source=FakeTokenInfoSource(),
        account_source=FakeAccountSource(sol=0.0),
        journal=CycleJournal(config.log_file),
    )


@pytest.fixture
def client(loop_controller):
    return TestClient(create_app(loop_controller))


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "running"


def test_engine_status(client):
    body = client.get("/api/engine/status").json()
    assert body["mode"] == "dry_run"
    assert body["assets"][ASSET]["state"] == "idle"
    assert "timestamp" in body


def test_signal_before_and_after_a_cycle(client, loop_controller):
    body = client.get(f"/api/engine/{ASSET}/signal").json()
    assert body["signal"] is None

    loop_controller.get_controller(ASSET).run_cycle()

    body = client.get(f"/api/engine/{ASSET}/signal").json()
    assert body["phase"] == "accumulation"
    assert body["signal"]["action"] == "hold"
    assert body["market_state"]["candle_count"] == 30


def test_unknown_asset_is_404(client):
    assert client.get("/api/engine/nope/signal").status_code == 404
    assert client.post("/api/engine/nope/stop").status_code == 404


def test_presets(client):
    body = client.get("/api/engine/presets").json()
    assert set(body) == {"default", "conservative", "aggressive"}


def test_update_strategy_with_preset(client, loop_controller):
    response = client.put(f"/api/engine/{ASSET}/strategy", json={"preset": "aggressive"})

    assert response.status_code == 200
    controller = loop_controller.get_controller(ASSET)
    assert controller.settings.cooldown_seconds == 30
    assert controller.gate.cooldown_seconds == 30


def test_update_strategy_with_overrides(client, loop_controller):
    response = client.put(
        f"/api/engine/{ASSET}/strategy",
        json={"strategy": {"max_buy_per_trade": 0.3}, "cooldown_seconds": 20},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["settings"]["strategy"]["max_buy_per_trade"] == 0.3
    assert any("Cooldown" in warning for warning in body["warnings"])
    assert loop_controller.get_controller(ASSET).settings.strategy.max_buy_per_trade == 0.3


@pytest.mark.parametrize(
    "payload",
    [
        {"strategy": {"euphoria_sell_percent": 500}},
        {"strategy": {"leverage": 5}},
        {"market_cap_rules": {"light_threshold": 2_000_000}},
        {"preset": "yolo"},
    ],
)
def test_invalid_strategy_is_422(client, loop_controller, payload):
    before = loop_controller.get_controller(ASSET).settings
    response = client.put(f"/api/engine/{ASSET}/strategy", json=payload)
    assert response.status_code == 422
    assert loop_controller.get_controller(ASSET).settings is before


def test_stop_asset(client, loop_controller):
    response = client.post(f"/api/engine/{ASSET}/stop")
    assert response.status_code == 200
    assert response.json()["state"] == STOPPED
    assert loop_controller.get_controller(ASSET).stop_event.is_set()


def test_wallet_check(client):
    response = client.post("/api/wallets/check", json={"held_tokens": 30_000_000, "price_in_quote": 1e-6})
    body = response.json()
    assert response.status_code == 200
    assert body["within_limits"] is False
    assert body["supply_percent"] == pytest.approx(3.0)


def test_wallet_plan(client):
    body = client.post("/api/wallets/plan", json={"total_to_distribute": 100_000_000}).json()
    assert body["wallets_needed"] == 10


def test_wallet_plan_with_bad_supply_is_422(client):
    response = client.post("/api/wallets/plan", json={"total_to_distribute": 100, "total_supply": 0})
    assert response.status_code == 422


def test_wallet_plan_with_bad_limits_is_422(client):
    response = client.post(
        "/api/wallets/plan",
        json={"total_to_distribute": 100, "limits": {"max_supply_percent_per_wallet": 9}},
    )
    assert response.status_code == 422


def test_wallet_rebalance(client):
    body = client.post(
        "/api/wallets/rebalance",
        json={"balances": {"a": 25_000_000, "b": 5_000_000, "c": 1_000_000}},
    ).json()
    assert body["should_rebalance"] is True
    assert body["overweight_wallets"] == ["a"]


def test_unhandled_errors_become_500():
    controller = MagicMock()
    controller.status.side_effect = RuntimeError("boom")
    client = TestClient(create_app(controller), raise_server_exceptions=False)

    response = client.get("/api/engine/status")

    assert response.status_code == 500
    assert response.json()["detail"] == "boom"
