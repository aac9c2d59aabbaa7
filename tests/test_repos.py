"""Tests for pairscan.repos — SQLite audit log, scanner snapshot and status store."""

import json

import pytest

from pairscan.repos.cycle_repo import CycleRepo
from pairscan.repos.db import get_connection, init_db
from pairscan.repos.snapshot_store import SnapshotStore
from pairscan.repos.status_store import EngineStatusStore
from pairscan.strategy.models import TradeIntent


@pytest.fixture
def repo(tmp_path):
    db_path = str(tmp_path / "nested" / "test.db")
    init_db(db_path)
    return CycleRepo(db_path)


class TestInitDb:
    def test_creates_tables(self, tmp_path):
        db_path = str(tmp_path / "data" / "pairscan.db")
        init_db(db_path)
        conn = get_connection(db_path)
        try:
            names = {
                row["name"]
                for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
            }
        finally:
            conn.close()
        assert {"engine_cycles", "scanner_pairs", "scanner_summaries", "executions"} <= names

    def test_idempotent(self, tmp_path):
        db_path = str(tmp_path / "pairscan.db")
        init_db(db_path)
        init_db(db_path)


class TestCycleRepo:
    def test_engine_cycle_round_trip(self, repo):
        row_id = repo.log_engine_cycle(
            strategy_id="h1_trend_m15_pullback",
            result="READY",
            reason="Top-scored trade selected.",
            market_summary={"pair": "EUR_USD", "mid": 1.1},
            intent={"decision": "BUY"},
            risk={"passed": True, "reasons": []},
        )
        assert row_id == 1
        cycles = repo.get_recent_cycles()
        assert len(cycles) == 1
        assert cycles[0]["result"] == "READY"
        assert cycles[0]["market_summary"] == {"pair": "EUR_USD", "mid": 1.1}
        assert cycles[0]["risk"]["passed"] is True

    def test_null_json_columns(self, repo):
        repo.log_engine_cycle("x", "NO_TRADE", "nothing")
        cycle = repo.get_recent_cycles()[0]
        assert cycle["intent"] is None
        assert cycle["market_summary"] is None

    def test_recent_newest_first_and_limited(self, repo):
        for i in range(5):
            repo.log_engine_cycle("x", "NO_TRADE", f"cycle {i}")
        cycles = repo.get_recent_cycles(limit=2)
        assert [c["reason"] for c in cycles] == ["cycle 4", "cycle 3"]

    def test_scanner_pairs(self, repo):
        repo.log_scanner_pairs(
            "flat_range_v1",
            [
                {"pair": "EUR_USD", "decision": "BUY", "rr": 1.4, "spread": 0.8, "score": 77.5,
                 "rejection_reasons": []},
                {"pair": "USD_JPY", "decision": "NO_TRADE", "rr": 0.0, "spread": 1.1, "score": None,
                 "rejection_reasons": ["Price not near range boundaries."]},
            ],
            "EUR_USD",
        )
        rows = repo.get_recent_scanner_pairs()
        assert len(rows) == 2
        assert rows[0]["pair"] == "USD_JPY"
        assert rows[0]["rejection_reasons"] == ["Price not near range boundaries."]
        assert rows[1]["selected_trade"] == "EUR_USD"
        assert rows[0]["ts"] == rows[1]["ts"]

    def test_scanner_pairs_empty_is_noop(self, repo):
        repo.log_scanner_pairs("x", [], None)
        assert repo.get_recent_scanner_pairs() == []

    def test_scanner_summary(self, repo):
        repo.log_scanner_summary(
            engine="h1_trend_m15_pullback",
            instruments_count=6,
            candidates_count=1,
            rejected_count=5,
            decision="TRADE",
            top_reason="Top-scored trade selected.",
        )
        summary = repo.get_recent_summaries()[0]
        assert summary["instruments_count"] == 6
        assert summary["decision"] == "TRADE"

    def test_execution(self, repo):
        intent = TradeIntent(
            decision="SELL",
            entry_price=1.1,
            stop_loss=1.1006,
            take_profit=1.099,
            units=-1000,
            rationale="fade",
        )
        repo.log_execution("EUR_USD", "flat_range_v1", intent, 81.25, {"orderFillTransaction": {"id": "9"}})
        execution = repo.get_recent_executions()[0]
        assert execution["side"] == "SELL"
        assert execution["units"] == 1000
        assert execution["entry_type"] == "MARKET"
        assert execution["score"] == 81.25
        assert execution["result"] == {"orderFillTransaction": {"id": "9"}}


class TestSnapshotStore:
    def test_missing_file(self, tmp_path):
        assert SnapshotStore(str(tmp_path / "snap.json")).load() is None

    def test_save_and_load(self, tmp_path):
        store = SnapshotStore(str(tmp_path / "data" / "snap.json"))
        written = store.save("flat_range_v1", [{"pair": "EUR_USD"}], "EUR_USD")
        loaded = store.load()
        assert loaded == written
        assert loaded["activeStrategy"] == "flat_range_v1"
        assert loaded["selectedTrade"] == "EUR_USD"
        assert loaded["updatedAt"]

    def test_malformed_file(self, tmp_path):
        path = tmp_path / "snap.json"
        path.write_text("{broken", encoding="utf-8")
        assert SnapshotStore(str(path)).load() is None

    def test_missing_scanned_pairs(self, tmp_path):
        path = tmp_path / "snap.json"
        path.write_text(json.dumps({"activeStrategy": "x"}), encoding="utf-8")
        assert SnapshotStore(str(path)).load() is None

    def test_blank_selection_normalised(self, tmp_path):
        path = tmp_path / "snap.json"
        path.write_text(json.dumps({"scannedPairs": [], "selectedTrade": ""}), encoding="utf-8")
        loaded = SnapshotStore(str(path)).load()
        assert loaded["selectedTrade"] is None
        assert loaded["activeStrategy"] == ""


class TestEngineStatusStore:
    def test_initial_status(self):
        status = EngineStatusStore().get()
        assert status.active_strategy_id == ""
        assert status.last_intent is None
        assert status.last_updated_at is None

    def test_update_replaces_whole_record(self):
        store = EngineStatusStore()
        store.update("a", {"decision": "BUY"}, [], "go", [{"pair": "EUR_USD"}], "EUR_USD")
        store.update("b", None, ["no data"], "stop")
        status = store.get()
        assert status.active_strategy_id == "b"
        assert status.last_intent is None
        assert status.scanned_pairs == []
        assert status.selected_trade is None
        assert status.last_rejection_reasons == ["no data"]
        assert status.last_updated_at

    def test_get_returns_copy(self):
        store = EngineStatusStore()
        store.update("a", None, ["r"], "x")
        store.get().last_rejection_reasons.append("mutated")
        assert store.get().last_rejection_reasons == ["r"]

    def test_to_dict(self):
        store = EngineStatusStore()
        store.update("a", None, [], "x")
        d = store.get().to_dict()
        assert d["active_strategy_id"] == "a"
        assert "last_updated_at" in d
