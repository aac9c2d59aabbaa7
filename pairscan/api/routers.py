"""Internal API routers — /status, /scanner-status, /strategies, /strategy, /scan, /cycles.

No business logic, no DB access. Delegates to the scan engine, config
source, snapshot store and audit repo.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from pairscan.strategy.base import describe_plugin

logger = logging.getLogger("pairscan.api")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_engine = None          # ScanEngine, set via configure_routers()
_config_source = None   # FileConfigSource, set via configure_routers()
_snapshot_store = None  # SnapshotStore, set via configure_routers()
_cycle_repo = None      # CycleRepo, set via configure_routers()


def configure_routers(
    engine,
    config_source,
    snapshot_store=None,
    cycle_repo=None,
) -> None:
    """Inject dependencies from the application startup.

    Args:
        engine: A ``ScanEngine`` instance (or duck-type for tests).
        config_source: A ``FileConfigSource`` for reading / writing config.
        snapshot_store: Optional ``SnapshotStore`` backing /scanner-status.
        cycle_repo: Optional ``CycleRepo`` backing /cycles.
    """
    global _engine, _config_source, _snapshot_store, _cycle_repo  # noqa: PLW0603
    _engine = engine
    _config_source = config_source
    _snapshot_store = snapshot_store
    _cycle_repo = cycle_repo


def _require_engine():
    if _engine is None:
        raise HTTPException(status_code=503, detail="Scan engine not configured")
    return _engine


def _require_config_source():
    if _config_source is None:
        raise HTTPException(status_code=503, detail="Config source not configured")
    return _config_source


# ── Status ───────────────────────────────────────────────────────────────


@router.get("/status")
async def get_status():
    """Return the engine's last-cycle status."""
    engine = _require_engine()
    status = engine.status_store.get().to_dict()
    status["running"] = engine.running
    status["cycle_count"] = engine.cycle_count
    return status


@router.get("/scanner-status")
async def get_scanner_status():
    """Return the last saved scanner snapshot (``null`` before the first cycle)."""
    if _snapshot_store is None:
        return None
    return _snapshot_store.load()


# ── Strategies ───────────────────────────────────────────────────────────


@router.get("/strategies")
async def list_strategies():
    """Return every registered strategy with its parameter schema."""
    engine = _require_engine()
    return {"strategies": [describe_plugin(p) for p in engine.registry.list()]}


@router.get("/strategy/config")
async def get_strategy_config():
    return _require_config_source().load_strategy().to_dict()


@router.post("/strategy/profile")
async def post_strategy_profile(body: dict):
    """Switch the active parameter profile (``strict`` / ``soft``)."""
    try:
        updated = _require_config_source().set_active_profile(str(body.get("profile", "")))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return updated.to_dict()


@router.post("/strategy/active")
async def post_active_strategy(body: dict):
    """Switch the active strategy; the id must be registered."""
    engine = _require_engine()
    config_source = _require_config_source()
    strategy_id = str(body.get("strategy_id") or "").strip()
    if strategy_id and engine.registry.get(strategy_id) is None:
        raise HTTPException(status_code=400, detail=f"Unknown strategy '{strategy_id}'")
    try:
        updated = config_source.set_active_strategy_id(strategy_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return updated.to_dict()


# ── Scan ─────────────────────────────────────────────────────────────────


@router.post("/scan")
async def post_scan(body: Optional[dict] = None):
    """Run one scan cycle now and return its result."""
    engine = _require_engine()
    body = body or {}
    pair = body.get("pair") or None
    execute = bool(body.get("execute", False))
    logger.info("Manual scan requested (pair=%s, execute=%s)", pair, execute)
    result = await engine.run_cycle(pair=pair, execute=execute)
    return result.to_dict()


@router.get("/cycles")
async def get_cycles(limit: int = Query(default=20, ge=1, le=500)):
    """Return recent engine-cycle audit records, newest first."""
    if _cycle_repo is None:
        return {"cycles": []}
    return {"cycles": _cycle_repo.get_recent_cycles(limit)}
