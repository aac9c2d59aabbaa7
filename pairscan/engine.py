"""PairScan — scan engine (orchestration loop).

Connects market data, strategy plugins, risk checks and scoring into a
single scan cycle over the watchlist.  Each cycle ends in exactly one of
NO_TRADE / READY / EXECUTED; the best-scoring candidate is selected and
optionally sent to the executor.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from pairscan.broker.executor import TradeExecutor
from pairscan.config import FileConfigSource, StrategyRuntimeConfig, TradingRuntimeConfig
from pairscan.repos.cycle_repo import CycleRepo, summarize_market
from pairscan.repos.snapshot_store import SnapshotStore
from pairscan.repos.status_store import EngineStatusStore
from pairscan.risk.risk_checks import RiskCheckResult, RiskLimits, run_risk_checks
from pairscan.scoring import calculate_score
from pairscan.strategy.base import StrategyPlugin
from pairscan.strategy.indicators import build_market_context
from pairscan.strategy.models import MarketContext, TradeIntent, pip_size
from pairscan.strategy.registry import StrategyRegistry, get_strategy_registry

logger = logging.getLogger("pairscan.engine")

TREND_STRATEGY_ID = "h1_trend_m15_pullback"
RANGE_STRATEGY_ID = "flat_range_v1"
AUTO_SELECT_MAX_SPREAD_PIPS = 2.2
AUTO_SELECT_MAX_ATR_PIPS = 12.0


# ── Result types ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class StrategyRecommendation:
    recommended_strategy_id: str
    applied_strategy_id: str
    confidence: float
    reason: str


@dataclass
class ScannerPairStatus:
    """Per-pair outcome of one scan cycle."""

    pair: str
    decision: str
    applied_strategy_id: str
    score: Optional[float] = None
    rr: float = 0.0
    spread: float = 0.0
    rejected: bool = True
    rejection_reason_code: Optional[str] = None
    metrics: dict = field(default_factory=dict)
    rejection_reasons: list[str] = field(default_factory=list)
    recommended_strategy_id: Optional[str] = None
    recommendation_confidence: Optional[float] = None
    recommendation_reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "pair": self.pair,
            "decision": self.decision,
            "applied_strategy_id": self.applied_strategy_id,
            "recommended_strategy_id": self.recommended_strategy_id,
            "recommendation_confidence": self.recommendation_confidence,
            "recommendation_reason": self.recommendation_reason,
            "score": self.score,
            "rr": self.rr,
            "spread": self.spread,
            "rejected": self.rejected,
            "rejection_reason_code": self.rejection_reason_code,
            "metrics": dict(self.metrics),
            "rejection_reasons": list(self.rejection_reasons),
        }


@dataclass(frozen=True)
class ScoredTradeCandidate:
    """A pair that survived strategy, risk and scoring this cycle."""

    pair: str
    strategy_id: str
    intent: TradeIntent
    score: float
    rr: float
    spread: float
    context: MarketContext
    risk: RiskCheckResult

    def to_dict(self) -> dict:
        return {
            "instrument": self.pair,
            "strategy_id": self.strategy_id,
            "side": self.intent.decision,
            "type": self.intent.entry_type,
            "entry": self.intent.entry_price,
            "sl": self.intent.stop_loss,
            "tp": self.intent.take_profit,
            "units": self.intent.units,
            "score": self.score,
            "rationale": [self.intent.rationale],
            "tags": list(self.intent.tags),
        }


@dataclass
class CycleResult:
    """Externally visible outcome of one scan cycle."""

    status: str  # NO_TRADE | READY | EXECUTED
    reason_code: str
    reason: str
    active_strategy_id: str
    risk_check: RiskCheckResult
    executed: bool = False
    candidates: list[ScoredTradeCandidate] = field(default_factory=list)
    scanned_pairs: list[ScannerPairStatus] = field(default_factory=list)
    selected_trade: Optional[str] = None
    ai_decision: Optional[dict] = None
    intent: Optional[TradeIntent] = None
    market_context: Optional[MarketContext] = None
    execution_result: Optional[dict] = None
    score: Optional[float] = None

    @property
    def rejected_candidates(self) -> list[dict]:
        return [
            {
                "instrument": p.pair,
                "rejected_reason_code": p.rejection_reason_code or "UNKNOWN",
                "rejected_reason_text": (
                    p.rejection_reasons[0] if p.rejection_reasons
                    else "Rejected by scanner filters."
                ),
                "metrics": dict(p.metrics),
            }
            for p in self.scanned_pairs
            if p.rejected
        ]

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "reason_code": self.reason_code,
            "reason": self.reason,
            "executed": self.executed,
            "candidates": [c.to_dict() for c in self.candidates],
            "rejected_candidates": self.rejected_candidates,
            "scanned_pairs": [p.to_dict() for p in self.scanned_pairs],
            "selected_trade": self.selected_trade,
            "active_strategy_id": self.active_strategy_id,
            "risk_check": self.risk_check.to_dict(),
            "ai_decision": self.ai_decision,
            "intent": self.intent.to_dict() if self.intent else None,
            "market_context": (
                summarize_market(self.market_context) if self.market_context else None
            ),
            "execution_result": self.execution_result,
            "score": self.score,
        }


# ── Strategy auto-selection ──────────────────────────────────────────────


def recommend_strategy(
    context: MarketContext,
    active_strategy_id: str,
    available_ids: set[str],
) -> StrategyRecommendation:
    """Pick a strategy for one pair from its market regime.

    Flat, tight-spread markets go to the range-fade strategy, trending
    markets to the trend-pullback strategy, anything else to the active
    strategy.
    """
    trend = context.indicators.trend_h1
    momentum = context.indicators.momentum_m15
    spread = context.spread_pips
    atr_pips = context.indicators.atr_m15 / pip_size(context.pair)

    if (
        RANGE_STRATEGY_ID in available_ids
        and trend == "RANGE"
        and spread <= AUTO_SELECT_MAX_SPREAD_PIPS
        and atr_pips <= AUTO_SELECT_MAX_ATR_PIPS
    ):
        return StrategyRecommendation(
            RANGE_STRATEGY_ID, RANGE_STRATEGY_ID, 0.82,
            f"Range regime detected (trend={trend}, atr_pips={atr_pips:.2f}, spread={spread:.2f}).",
        )

    if TREND_STRATEGY_ID in available_ids and trend in ("BULL", "BEAR"):
        return StrategyRecommendation(
            TREND_STRATEGY_ID, TREND_STRATEGY_ID,
            0.70 if momentum == "NEUTRAL" else 0.78,
            f"Trend regime detected (trend={trend}, momentum={momentum}).",
        )

    if active_strategy_id in available_ids:
        fallback = active_strategy_id
    elif TREND_STRATEGY_ID in available_ids:
        fallback = TREND_STRATEGY_ID
    elif RANGE_STRATEGY_ID in available_ids:
        fallback = RANGE_STRATEGY_ID
    else:
        fallback = active_strategy_id
    return StrategyRecommendation(
        fallback, fallback, 0.55,
        f"Fallback strategy for mixed/unclear regime (trend={trend}, "
        f"atr_pips={atr_pips:.2f}, spread={spread:.2f}).",
    )


# ── Engine ───────────────────────────────────────────────────────────────


class ScanEngine:
    """Runs scan cycles over the watchlist and selects at most one trade.

    Args:
        market_data: Provider with ``async fetch_market_data(pair, timeframes)``
            returning ``RawMarketData`` or ``None`` (an ``OandaClient`` or a
            compatible duck-type / mock).
        config_source: Provider of ``load_strategy()`` / ``load_trading()``,
            re-read at the start of every cycle.
        registry: Strategy registry; defaults to the built-in strategies.
        executor: ``TradeExecutor`` used when a cycle runs with ``execute``.
        limits: Risk limits for the risk checks.
        status_store: Last-cycle status holder for this engine.
        snapshot_store: Optional scanner snapshot file.
        cycle_repo: Optional SQLite audit log.
    """

    def __init__(
        self,
        market_data,
        config_source: Optional[FileConfigSource] = None,
        registry: Optional[StrategyRegistry] = None,
        executor: Optional[TradeExecutor] = None,
        limits: Optional[RiskLimits] = None,
        status_store: Optional[EngineStatusStore] = None,
        snapshot_store: Optional[SnapshotStore] = None,
        cycle_repo: Optional[CycleRepo] = None,
    ) -> None:
        self._market_data = market_data
        self._config_source = config_source or FileConfigSource()
        self._registry = registry or get_strategy_registry()
        self._executor = executor
        self._limits = limits or RiskLimits()
        self._status_store = status_store or EngineStatusStore()
        self._snapshot_store = snapshot_store
        self._cycle_repo = cycle_repo
        self._lock = asyncio.Lock()
        self._running: bool = False
        self._cycle_count: int = 0
        self._last_result: Optional[CycleResult] = None

    @property
    def status_store(self) -> EngineStatusStore:
        return self._status_store

    @property
    def registry(self) -> StrategyRegistry:
        return self._registry

    @property
    def cycle_count(self) -> int:
        return self._cycle_count

    @property
    def last_result(self) -> Optional[CycleResult]:
        return self._last_result

    @property
    def running(self) -> bool:
        return self._running

    # ── Polling loop ─────────────────────────────────────────────────────

    def stop(self) -> None:
        """Signal the engine to stop after the current cycle."""
        self._running = False

    async def run(
        self,
        poll_interval: int = 900,
        max_cycles: int = 0,
        execute: bool = False,
    ) -> list[dict]:
        """Run scan cycles until stopped.

        Args:
            poll_interval: Seconds between cycles.
            max_cycles: Stop after this many cycles (0 = unlimited).
            execute: Submit the selected trade each cycle.

        Returns:
            List of per-cycle result dicts.
        """
        self._running = True
        results: list[dict] = []
        cycle = 0

        while self._running:
            cycle += 1
            try:
                result = await self.run_cycle(execute=execute)
                results.append(result.to_dict())
            except Exception as exc:
                logger.error("Cycle %d error: %s", cycle, exc)
                results.append({"status": "ERROR", "reason": str(exc)})

            if max_cycles > 0 and cycle >= max_cycles:
                break

            # Interruptible sleep: checks _running every second
            for _ in range(poll_interval):
                if not self._running:
                    break
                await asyncio.sleep(1)

        self._running = False
        return results

    # ── Single cycle ─────────────────────────────────────────────────────

    async def run_cycle(self, pair: Optional[str] = None, execute: bool = False) -> CycleResult:
        """Run one scan cycle.

        Cycles are serialized per engine; a second caller waits for the
        running cycle to finish.

        Args:
            pair: Scan only this pair instead of the watchlist.
            execute: Submit the selected trade instead of a dry run.
        """
        async with self._lock:
            self._cycle_count += 1
            result = await self._scan(pair, execute)
            self._last_result = result
            logger.info(
                "Cycle %d: %s (%s) selected=%s",
                self._cycle_count, result.status, result.reason_code, result.selected_trade,
            )
            return result

    async def _scan(self, pair: Optional[str], execute: bool) -> CycleResult:
        strategy_cfg = self._config_source.load_strategy()
        trading_cfg = self._config_source.load_trading()
        active_id = strategy_cfg.active_strategy_id
        active = self._registry.get(active_id)

        if active is None:
            reason = f"Active strategy not found: {active_id}"
            result = CycleResult(
                status="NO_TRADE",
                reason_code="ACTIVE_STRATEGY_NOT_FOUND",
                reason=reason,
                active_strategy_id=active_id,
                risk_check=RiskCheckResult(reasons=(reason,)),
            )
            self._record(result, instruments_count=0, top_reason=reason)
            return result

        watchlist = [pair.upper()] if pair else list(trading_cfg.watchlist)
        scanned: list[ScannerPairStatus] = []
        candidates: list[ScoredTradeCandidate] = []

        for symbol in watchlist:
            status, candidate = await self._evaluate_pair(
                symbol, active, strategy_cfg, trading_cfg,
            )
            scanned.append(status)
            if candidate is not None:
                candidates.append(candidate)
            logger.debug(
                "%s: %s score=%s code=%s",
                symbol, status.decision, status.score, status.rejection_reason_code,
            )

        if not candidates:
            reason = "NO_TRADE: no valid trades after scan/risk/scoring filters."
            first = next((p for p in scanned if p.rejected), None)
            top_reason = (
                first.rejection_reasons[0] if first and first.rejection_reasons
                else "All scanned pairs rejected."
            )
            result = CycleResult(
                status="NO_TRADE",
                reason_code=(first.rejection_reason_code if first else None) or "ALL_REJECTED",
                reason=reason,
                active_strategy_id=active_id,
                risk_check=RiskCheckResult(reasons=(top_reason,)),
                scanned_pairs=scanned,
            )
            self._record(result, instruments_count=len(watchlist), top_reason=top_reason)
            return result

        # Ties on score resolve by pair name so selection never depends on scan order
        candidates.sort(key=lambda c: (-c.score, c.pair))
        selected = candidates[0]
        ai_decision = {
            "decision": selected.intent.decision,
            "entry": selected.intent.entry_price or 0,
            "stop_loss": selected.intent.stop_loss or 0,
            "take_profit": selected.intent.take_profit or 0,
            "reasoning": selected.intent.rationale,
            "strategy_id": selected.strategy_id,
        }
        common = dict(
            active_strategy_id=active_id,
            risk_check=selected.risk,
            candidates=candidates,
            scanned_pairs=scanned,
            selected_trade=selected.pair,
            ai_decision=ai_decision,
            intent=selected.intent,
            market_context=selected.context,
        )

        open_positions = len(selected.context.account.open_positions)
        max_trades = trading_cfg.max_concurrent_trades
        if open_positions >= max_trades:
            reason = (
                f"Execution blocked: open positions {open_positions} >= "
                f"maxConcurrentTrades {max_trades}."
            )
            result = CycleResult(
                status="NO_TRADE", reason_code="MAX_CONCURRENT_TRADES", reason=reason, **common,
            )
            self._record(result, instruments_count=len(watchlist), top_reason=reason, selected=selected)
            return result

        if not execute:
            reason = "Top-scored trade selected. Execution disabled (dry run)."
            result = CycleResult(
                status="READY", reason_code="TRADE_READY", reason=reason,
                score=selected.score, **common,
            )
            self._record(result, instruments_count=len(watchlist), top_reason=reason, selected=selected)
            return result

        if self._executor is None:
            raise RuntimeError("Execution requested but no trade executor is configured")

        execution_result = await self._executor.execute(selected.pair, selected.intent)
        reason = "Top-scored trade executed after scan and all validations."
        result = CycleResult(
            status="EXECUTED", reason_code="TRADE_EXECUTED", reason=reason,
            executed=True, execution_result=execution_result, score=selected.score, **common,
        )
        repo = self._cycle_repo
        if repo is not None:
            self._best_effort(
                "execution log",
                lambda: repo.log_execution(
                    selected.pair, selected.strategy_id, selected.intent,
                    selected.score, execution_result,
                ),
            )
        self._record(result, instruments_count=len(watchlist), top_reason=reason, selected=selected)
        return result

    async def _evaluate_pair(
        self,
        pair: str,
        active: StrategyPlugin,
        strategy_cfg: StrategyRuntimeConfig,
        trading_cfg: TradingRuntimeConfig,
    ) -> tuple[ScannerPairStatus, Optional[ScoredTradeCandidate]]:
        """Run fetch → strategy → risk → scoring for one pair."""
        try:
            raw = await self._market_data.fetch_market_data(
                pair, self._registry.required_timeframes(),
            )
            unavailable_reason = "Market data is incomplete."
        except Exception as exc:
            logger.warning("Market data fetch failed for %s: %s", pair, exc)
            raw = None
            unavailable_reason = f"Market data fetch failed: {exc}"

        if raw is None:
            return ScannerPairStatus(
                pair=pair,
                decision="NO_TRADE",
                applied_strategy_id=active.ID,
                rejection_reason_code="DATA_UNAVAILABLE",
                metrics={"source": "fetch_market_data"},
                rejection_reasons=[unavailable_reason],
            ), None

        context = build_market_context(raw)
        strategy = active
        recommendation: Optional[StrategyRecommendation] = None
        if trading_cfg.auto_select_strategy:
            recommendation = recommend_strategy(context, active.ID, set(self._registry.ids()))
            strategy = self._registry.get(recommendation.applied_strategy_id) or active

        status = ScannerPairStatus(
            pair=pair,
            decision="NO_TRADE",
            applied_strategy_id=strategy.ID,
            spread=context.spread_pips,
        )
        if recommendation is not None:
            status.recommended_strategy_id = recommendation.recommended_strategy_id
            status.recommendation_confidence = recommendation.confidence
            status.recommendation_reason = recommendation.reason

        intent = strategy.evaluate(context, strategy_cfg.params)
        status.decision = intent.decision
        status.metrics = dict(intent.metrics)

        if not intent.is_trade:
            status.rejection_reason_code = intent.reason_code or "STRATEGY_NO_TRADE"
            status.rejection_reasons = [intent.rationale or "Strategy decision is NO_TRADE."]
            return status, None

        risk = run_risk_checks(
            context, intent,
            max_concurrent_trades=trading_cfg.max_concurrent_trades,
            limits=self._limits,
        )
        if not risk.passed:
            status.rr = risk.rr
            status.rejection_reason_code = "RISK_CHECK_FAILED"
            status.metrics = {"sl_pips": risk.sl_pips, "rr": risk.rr, "risk_usd": risk.risk_usd}
            status.rejection_reasons = list(risk.reasons)
            return status, None

        score = calculate_score(
            intent, context, trading_cfg.scoring,
            max_spread_ratio=self._limits.max_spread_to_sl_ratio,
        )
        status.rr = score.rr
        if not score.passed:
            status.rejection_reason_code = "SCORING_FILTER_FAILED"
            status.rejection_reasons = list(score.rejection_reasons)
            return status, None

        status.score = score.score
        status.rejected = False
        return status, ScoredTradeCandidate(
            pair=pair,
            strategy_id=strategy.ID,
            intent=intent,
            score=score.score,
            rr=score.rr,
            spread=context.spread_pips,
            context=context,
            risk=risk,
        )

    # ── Status / audit ───────────────────────────────────────────────────

    def _best_effort(self, what: str, action: Callable[[], object]) -> None:
        try:
            action()
        except Exception as exc:
            logger.warning("Failed to write %s: %s", what, exc)

    def _record(
        self,
        result: CycleResult,
        instruments_count: int,
        top_reason: str,
        selected: Optional[ScoredTradeCandidate] = None,
    ) -> None:
        """Publish a terminal cycle outcome to the status store and audit sinks."""
        scanned = [p.to_dict() for p in result.scanned_pairs]
        rejection_reasons = [] if result.status in ("READY", "EXECUTED") else [top_reason]

        self._status_store.update(
            active_strategy_id=result.active_strategy_id,
            last_intent=result.intent.to_dict() if result.intent else None,
            last_rejection_reasons=rejection_reasons,
            last_rationale=result.intent.rationale if result.intent else result.reason,
            scanned_pairs=scanned,
            selected_trade=result.selected_trade,
        )

        if self._snapshot_store is not None:
            self._best_effort(
                "scanner snapshot",
                lambda: self._snapshot_store.save(
                    result.active_strategy_id, scanned, result.selected_trade,
                ),
            )

        repo = self._cycle_repo
        if repo is None:
            return
        self._best_effort(
            "scanner pairs",
            lambda: repo.log_scanner_pairs(result.active_strategy_id, scanned, result.selected_trade),
        )
        self._best_effort(
            "scanner summary",
            lambda: repo.log_scanner_summary(
                engine=result.active_strategy_id,
                instruments_count=instruments_count,
                candidates_count=len(result.candidates),
                rejected_count=len(result.rejected_candidates),
                decision="TRADE" if result.status in ("READY", "EXECUTED") else "NO_TRADE",
                top_reason=top_reason,
            ),
        )
        self._best_effort(
            "engine cycle",
            lambda: repo.log_engine_cycle(
                strategy_id=selected.strategy_id if selected else result.active_strategy_id,
                result=result.status,
                reason=result.reason,
                market_summary=summarize_market(selected.context) if selected else None,
                intent=selected.intent.to_dict() if selected else None,
                risk=selected.risk.to_dict() if selected else None,
            ),
        )
