"""PairScan — application entry point.

Boots the FastAPI internal server and provides the CLI entry point for
one-shot scans, the scheduled scan loop, and API + loop serving.
"""

import logging

from fastapi import FastAPI

from pairscan.api.routers import router

app = FastAPI(title="PairScan Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("pairscan")


@app.get("/health")
async def health():
    """Liveness check."""
    return {"status": "ok"}


def warn_if_live(environment: str, execute: bool) -> bool:
    """Log a prominent warning when orders will hit a live account.

    Returns ``True`` if *environment* is ``"live"`` and *execute* is set.
    """
    if environment == "live" and execute:
        logger.warning(
            "LIVE TRADING MODE: real money at risk! Starting in 5 seconds..."
        )
        return True
    return False


def build_engine(config):
    """Wire the broker, stores and audit repo into a ``ScanEngine``."""
    from pairscan.broker.executor import TradeExecutor
    from pairscan.broker.oanda_client import OandaClient
    from pairscan.config import FileConfigSource
    from pairscan.engine import ScanEngine
    from pairscan.repos.cycle_repo import CycleRepo
    from pairscan.repos.db import init_db
    from pairscan.repos.snapshot_store import SnapshotStore

    init_db(config.db_path)
    client = OandaClient(config)
    config_source = FileConfigSource(config.strategy_config_path, config.trading_config_path)
    snapshot_store = SnapshotStore(config.snapshot_path)
    cycle_repo = CycleRepo(config.db_path)

    engine = ScanEngine(
        market_data=client,
        config_source=config_source,
        executor=TradeExecutor(client, fixed_units=config.fixed_units),
        limits=config.risk_limits,
        snapshot_store=snapshot_store,
        cycle_repo=cycle_repo,
    )
    return engine, config_source, snapshot_store, cycle_repo


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments and dispatch to the appropriate mode."""
    import argparse
    import asyncio
    import json
    import signal
    import time

    from pairscan.api.routers import configure_routers
    from pairscan.config import load_config

    parser = argparse.ArgumentParser(description="PairScan watchlist scanner")
    parser.add_argument(
        "--mode",
        choices=["scan", "loop", "serve"],
        default="scan",
        help="scan: one cycle; loop: scheduled cycles; serve: API + loop (default: scan)",
    )
    parser.add_argument("--pair", help="Scan a single pair instead of the watchlist")
    parser.add_argument(
        "--execute",
        action="store_true",
        help="Submit the selected trade (default: dry run)",
    )
    parser.add_argument(
        "--max-cycles",
        type=int,
        default=0,
        help="Stop the loop after N cycles (0 = unlimited)",
    )
    args = parser.parse_args()

    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if warn_if_live(config.oanda_environment, args.execute):
        time.sleep(5)

    engine, config_source, snapshot_store, cycle_repo = build_engine(config)
    configure_routers(
        engine=engine,
        config_source=config_source,
        snapshot_store=snapshot_store,
        cycle_repo=cycle_repo,
    )

    def handle_shutdown(signum, frame):
        logger.info("Shutdown signal received, stopping gracefully.")
        engine.stop()

    signal.signal(signal.SIGINT, handle_shutdown)

    if args.mode == "scan":
        result = asyncio.run(engine.run_cycle(pair=args.pair, execute=args.execute))
        print(json.dumps(result.to_dict(), indent=2, default=str))
    elif args.mode == "loop":
        asyncio.run(
            engine.run(
                poll_interval=config.poll_interval_seconds,
                max_cycles=args.max_cycles,
                execute=args.execute,
            )
        )
    else:
        asyncio.run(_serve(engine, config, args.execute, args.max_cycles))


async def _serve(engine, config, execute: bool, max_cycles: int) -> None:
    """Start the API server and the scan loop concurrently."""
    import asyncio
    import uvicorn

    uvi_config = uvicorn.Config(
        app,
        host="0.0.0.0",
        port=config.health_port,
        log_level=config.log_level.lower(),
    )
    server = uvicorn.Server(uvi_config)

    logger.info("API available at http://localhost:%d", config.health_port)
    results = await asyncio.gather(
        server.serve(),
        engine.run(
            poll_interval=config.poll_interval_seconds,
            max_cycles=max_cycles,
            execute=execute,
        ),
        return_exceptions=True,
    )
    logger.info("PairScan stopped. Results: %d cycle(s)", len(results[1]) if isinstance(results[1], list) else 0)


if __name__ == "__main__":
    _run_cli()
