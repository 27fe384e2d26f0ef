"""JSON run log written alongside each deploy or cleanup run."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..models import PhaseResult
from ..utils.logging import get_logger

logger = get_logger(__name__)

LOG_VERSION = "1.0"


class RunLog:
    """
    One JSON file per run, rewritten after every phase transition so an
    interrupted run still leaves an accurate record behind.
    """

    def __init__(self, kind: str, runs_dir: Path) -> None:
        self.kind = kind
        self.runs_dir = Path(runs_dir)
        self.current_log_file: Optional[Path] = None
        self.data: Dict[str, Any] = {}

    def start(self, **details: Any) -> Path:
        self.runs_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        self.current_log_file = self.runs_dir / f"{self.kind}_{timestamp}.json"
        self.data = {
            "version": LOG_VERSION,
            "kind": self.kind,
            "start_time": datetime.now().isoformat(),
            "end_time": None,
            "status": "running",
            "details": details,
            "phases": [],
        }
        self.save()
        logger.info("📝 Logging to: %s", self.current_log_file)
        return self.current_log_file

    def record(self, result: PhaseResult) -> None:
        self.data.setdefault("phases", []).append(result.to_dict())
        self.save()

    def finalize(self, status: str, error: Optional[str] = None, **extra: Any) -> None:
        self.data["end_time"] = datetime.now().isoformat()
        self.data["status"] = status
        self.data["error"] = error
        self.data.update(extra)
        self.data["duration_seconds"] = self._calculate_duration()
        self.save()
        logger.info("📄 Log saved to: %s", self.current_log_file)

    def save(self) -> None:
        if self.current_log_file:
            with open(self.current_log_file, "w", encoding="utf-8") as f:
                json.dump(self.data, f, indent=2, ensure_ascii=False)

    def _calculate_duration(self) -> float:
        try:
            start = datetime.fromisoformat(self.data["start_time"])
            end = datetime.fromisoformat(self.data["end_time"])
        except (KeyError, TypeError, ValueError):
            return 0.0
        return (end - start).total_seconds()


def latest_run(runs_dir: Path, kind: str) -> Optional[Dict[str, Any]]:
    """Most recent run log of `kind`, or None if there is none."""
    candidates = sorted(Path(runs_dir).glob(f"{kind}_*.json"))
    for path in reversed(candidates):
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError:
            logger.warning("Skipping unreadable run log %s", path)
    return None


def phase_results(data: Optional[Dict[str, Any]]) -> List[PhaseResult]:
    if not data:
        return []
    return [PhaseResult.from_dict(entry) for entry in data.get("phases", [])]
