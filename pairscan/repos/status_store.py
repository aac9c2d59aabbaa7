"""In-memory engine status — the last cycle's outcome, one store per engine."""

import copy
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Optional


@dataclass
class EngineStatus:
    active_strategy_id: str = ""
    last_intent: Optional[dict] = None
    last_rejection_reasons: list[str] = field(default_factory=list)
    last_rationale: str = ""
    scanned_pairs: list[dict] = field(default_factory=list)
    selected_trade: Optional[str] = None
    last_updated_at: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


class EngineStatusStore:
    """Holds the most recent ``EngineStatus``; every update replaces it whole."""

    def __init__(self) -> None:
        self._status = EngineStatus()

    def update(
        self,
        active_strategy_id: str,
        last_intent: Optional[dict],
        last_rejection_reasons: list[str],
        last_rationale: str,
        scanned_pairs: Optional[list[dict]] = None,
        selected_trade: Optional[str] = None,
    ) -> None:
        self._status = EngineStatus(
            active_strategy_id=active_strategy_id,
            last_intent=last_intent,
            last_rejection_reasons=list(last_rejection_reasons),
            last_rationale=last_rationale,
            scanned_pairs=list(scanned_pairs or []),
            selected_trade=selected_trade,
            last_updated_at=datetime.now(timezone.utc).isoformat(),
        )

    def get(self) -> EngineStatus:
        """Return a copy callers may mutate freely."""
        return copy.deepcopy(self._status)
