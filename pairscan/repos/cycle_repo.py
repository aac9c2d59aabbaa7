"""Cycle repository — SQLite audit log of scan cycles and executions."""

import json
from datetime import datetime, timezone
from typing import Optional

from pairscan.repos.db import get_connection
from pairscan.strategy.models import MarketContext, TradeIntent


def summarize_market(context: MarketContext) -> dict:
    """Compact market summary stored with each engine-cycle record."""
    return {
        "pair": context.pair,
        "now": context.now,
        "mid": context.price.mid,
        "spread_pips": context.spread_pips,
        "trend_h1": context.indicators.trend_h1,
        "momentum_m15": context.indicators.momentum_m15,
        "atr_m15": context.indicators.atr_m15,
        "atr_h1": context.indicators.atr_h1,
        "open_positions": len(context.account.open_positions),
        "open_trades": len(context.account.open_trades),
    }


def _dumps(value) -> Optional[str]:
    return json.dumps(value) if value is not None else None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class CycleRepo:
    """Data access layer for the scan audit tables.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    # ── Write ────────────────────────────────────────────────────────────

    def log_engine_cycle(
        self,
        strategy_id: str,
        result: str,
        reason: str,
        market_summary: Optional[dict] = None,
        intent: Optional[dict] = None,
        risk: Optional[dict] = None,
    ) -> int:
        """Record the terminal outcome of one cycle and return its ``id``."""
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                INSERT INTO engine_cycles
                    (ts, strategy_id, result, reason, market_summary, intent, risk)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    _now(), strategy_id, result, reason,
                    _dumps(market_summary), _dumps(intent), _dumps(risk),
                ),
            )
            conn.commit()
            return cur.lastrowid
        finally:
            conn.close()

    def log_scanner_pairs(
        self,
        strategy_id: str,
        scanned_pairs: list[dict],
        selected_trade: Optional[str],
    ) -> None:
        """Record one row per scanned pair, all sharing the same timestamp."""
        if not scanned_pairs:
            return
        ts = _now()
        conn = get_connection(self._db_path)
        try:
            conn.executemany(
                """
                INSERT INTO scanner_pairs
                    (ts, strategy_id, pair, decision, rr, spread, score,
                     rejection_reasons, selected_trade)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        ts, strategy_id, p["pair"], p["decision"], p.get("rr"),
                        p.get("spread"), p.get("score"),
                        json.dumps(p.get("rejection_reasons", [])), selected_trade,
                    )
                    for p in scanned_pairs
                ],
            )
            conn.commit()
        finally:
            conn.close()

    def log_scanner_summary(
        self,
        engine: str,
        instruments_count: int,
        candidates_count: int,
        rejected_count: int,
        decision: str,
        top_reason: str,
    ) -> None:
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                """
                INSERT INTO scanner_summaries
                    (ts, engine, instruments_count, candidates_count,
                     rejected_count, decision, top_reason)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    _now(), engine, instruments_count, candidates_count,
                    rejected_count, decision, top_reason,
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def log_execution(
        self,
        pair: str,
        strategy_id: str,
        intent: TradeIntent,
        score: Optional[float],
        result,
    ) -> int:
        """Record a submitted order and the broker's response."""
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                INSERT INTO executions
                    (ts, pair, side, units, entry_type, entry_price, stop_loss,
                     take_profit, score, strategy_id, rationale, result)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    _now(), pair,
                    "SELL" if intent.decision == "SELL" else "BUY",
                    abs(intent.units or 0),
                    "LIMIT" if intent.entry_type == "LIMIT" else "MARKET",
                    intent.entry_price, intent.stop_loss, intent.take_profit,
                    score, strategy_id, intent.rationale,
                    json.dumps(result, default=str),
                ),
            )
            conn.commit()
            return cur.lastrowid
        finally:
            conn.close()

    # ── Read ─────────────────────────────────────────────────────────────

    def _recent(self, table: str, limit: int, json_columns: tuple[str, ...]) -> list[dict]:
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                f"SELECT * FROM {table} ORDER BY id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        finally:
            conn.close()

        records = []
        for row in rows:
            record = dict(row)
            for col in json_columns:
                if record.get(col) is not None:
                    record[col] = json.loads(record[col])
            records.append(record)
        return records

    def get_recent_cycles(self, limit: int = 20) -> list[dict]:
        """Most recent engine-cycle records, newest first."""
        return self._recent("engine_cycles", limit, ("market_summary", "intent", "risk"))

    def get_recent_scanner_pairs(self, limit: int = 50) -> list[dict]:
        return self._recent("scanner_pairs", limit, ("rejection_reasons",))

    def get_recent_summaries(self, limit: int = 20) -> list[dict]:
        return self._recent("scanner_summaries", limit, ())

    def get_recent_executions(self, limit: int = 20) -> list[dict]:
        """Most recent execution records, newest first."""
        return self._recent("executions", limit, ("result",))
