#!/usr/bin/env python3
"""
FastAPI server exposing engine status and controls.
"""

import logging
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from market_maker.config import PRESETS, WalletLimits, get_preset
from market_maker.risk.wallet_guard import check_wallet, needs_rebalance, plan_distribution

logger = logging.getLogger(__name__)


# Pydantic models
class StrategyUpdateRequest(BaseModel):
    preset: Optional[str] = None
    strategy: Optional[Dict[str, Any]] = None
    market_cap_rules: Optional[Dict[str, Any]] = None
    wallet_limits: Optional[Dict[str, Any]] = None
    cooldown_seconds: Optional[int] = None


class WalletCheckRequest(BaseModel):
    held_tokens: float = Field(ge=0)
    price_in_quote: float = Field(ge=0)
    total_supply: Optional[float] = None
    limits: Optional[Dict[str, Any]] = None


class DistributionRequest(BaseModel):
    total_to_distribute: float = Field(ge=0)
    total_supply: Optional[float] = None
    limits: Optional[Dict[str, Any]] = None


class RebalanceRequest(BaseModel):
    balances: Dict[str, float]
    total_supply: Optional[float] = None
    limits: Optional[Dict[str, Any]] = None


def create_app(loop_controller) -> FastAPI:
    """
    Build the control API around a loop controller.

    Args:
        loop_controller: LoopController whose asset loops are exposed

    Returns:
        FastAPI application with the controller on ``app.state``
    """
    app = FastAPI(title="Market Maker API")
    app.state.loop_controller = loop_controller

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Catch all unhandled exceptions and return 500 with error details"""
        logger.error(f"Unhandled exception in {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "status": "error",
                "detail": str(exc),
                "path": str(request.url.path)
            }
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:3001"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def _controller(asset: str):
        try:
            return app.state.loop_controller.get_controller(asset)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Unknown asset: {asset}")

    def _total_supply(requested: Optional[float]) -> float:
        return requested if requested is not None else app.state.loop_controller.config.total_supply

    def _limits(overrides: Optional[Dict[str, Any]]) -> WalletLimits:
        base = app.state.loop_controller.settings.wallet_limits
        try:
            limits = WalletLimits.from_dict(overrides or {}, base)
            limits.validate()
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return limits

    @app.get("/")
    async def root():
        return {"message": "Market Maker API", "status": "running"}

    @app.get("/api/engine/status")
    async def get_status():
        """Status of every asset loop"""
        status = app.state.loop_controller.status()
        status["timestamp"] = datetime.now().isoformat()
        return status

    @app.get("/api/engine/{asset}/signal")
    async def get_signal(asset: str):
        """Last market state and signal for one asset"""
        controller = _controller(asset)
        state = controller.last_state
        signal = controller.last_signal
        return {
            "asset": asset,
            "phase": state.phase if state else None,
            "market_state": asdict(state) if state else None,
            "signal": asdict(signal) if signal else None,
        }

    @app.get("/api/engine/presets")
    async def get_presets():
        return {name: preset.to_dict() for name, preset in PRESETS.items()}

    @app.put("/api/engine/{asset}/strategy")
    async def update_strategy(asset: str, request: StrategyUpdateRequest):
        """Replace one asset's settings with a preset and/or section overrides"""
        controller = _controller(asset)
        overrides = request.model_dump(exclude_none=True)
        preset_name = overrides.pop("preset", None)
        try:
            base = get_preset(preset_name) if preset_name else controller.settings
            settings = base.with_overrides(overrides)
            controller.update_strategy(settings)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return {
            "status": "updated",
            "asset": asset,
            "settings": settings.to_dict(),
            "warnings": settings.warnings(),
        }

    @app.post("/api/engine/{asset}/stop")
    async def stop_asset(asset: str):
        controller = _controller(asset)
        controller.stop()
        logger.info(f"{asset}: stop requested via API")
        return {"status": "stopping", "asset": asset, "state": controller.state}

    @app.post("/api/wallets/check")
    async def wallet_check(request: WalletCheckRequest):
        limits = _limits(request.limits)
        try:
            result = check_wallet(request.held_tokens, _total_supply(request.total_supply),
                                  request.price_in_quote, limits)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return asdict(result)

    @app.post("/api/wallets/plan")
    async def wallet_plan(request: DistributionRequest):
        limits = _limits(request.limits)
        try:
            plan = plan_distribution(request.total_to_distribute, _total_supply(request.total_supply), limits)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return asdict(plan)

    @app.post("/api/wallets/rebalance")
    async def wallet_rebalance(request: RebalanceRequest):
        limits = _limits(request.limits)
        try:
            report = needs_rebalance(request.balances, _total_supply(request.total_supply), limits)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return asdict(report)

    return app
