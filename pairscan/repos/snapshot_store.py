"""Scanner snapshot — the latest scan outcome as a JSON file for polling."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

logger = logging.getLogger("pairscan.repos")


class SnapshotStore:
    """Reads and writes ``{activeStrategy, scannedPairs, selectedTrade, updatedAt}``.

    Args:
        path: Location of the snapshot file; its directory is created on save.
    """

    def __init__(self, path: str) -> None:
        self._path = Path(path)

    def save(
        self,
        active_strategy: str,
        scanned_pairs: list[dict],
        selected_trade: Optional[str],
    ) -> dict:
        """Overwrite the snapshot and return what was written."""
        payload = {
            "activeStrategy": active_strategy,
            "scannedPairs": scanned_pairs,
            "selectedTrade": selected_trade,
            "updatedAt": datetime.now(timezone.utc).isoformat(),
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")
        return payload

    def load(self) -> Optional[dict]:
        """Return the last snapshot, or ``None`` if missing or malformed."""
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Unreadable scanner snapshot %s: %s", self._path, exc)
            return None

        if not isinstance(data, dict) or not isinstance(data.get("scannedPairs"), list):
            return None

        selected = data.get("selectedTrade")
        return {
            "activeStrategy": str(data.get("activeStrategy") or ""),
            "scannedPairs": data["scannedPairs"],
            "selectedTrade": str(selected) if selected else None,
            "updatedAt": str(data.get("updatedAt") or ""),
        }
