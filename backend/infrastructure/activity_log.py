"""
Agent Activity Log
Append-only record of what the agent did, saved as JSON for dashboard replay.
"""

import json
import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger("Activity")


class AgentPhase(str, Enum):
    SCAN = "SCAN"
    IDENTIFY = "IDENTIFY"
    HUNT = "HUNT"
    REASON = "REASON"
    PACKAGE = "PACKAGE"
    PUBLISH = "PUBLISH"


PHASE_ICONS = {
    AgentPhase.SCAN: "🔍",
    AgentPhase.IDENTIFY: "🧠",
    AgentPhase.HUNT: "🔎",
    AgentPhase.REASON: "💭",
    AgentPhase.PACKAGE: "📦",
    AgentPhase.PUBLISH: "🏪",
}


@dataclass
class ActivityEntry:
    timestamp: str
    phase: AgentPhase
    message: str
    data: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        entry = asdict(self)
        entry["phase"] = self.phase.value
        if self.data is None:
            entry.pop("data")
        return entry


class ActivityLog:
    """Ordered activity entries; observational only, never read back by the agent"""

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path) if path else None
        self.entries: List[ActivityEntry] = []
        self.listeners: List[Callable[[str, str, Any], None]] = []

    def log(self, phase: AgentPhase, message: str, data: Any = None) -> ActivityEntry:
        entry = ActivityEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            phase=phase,
            message=message,
            data=data,
        )
        self.entries.append(entry)
        logger.info(f"{PHASE_ICONS[phase]} [{phase.value}] {message}")
        for listener in self.listeners:
            listener(phase.value, message, data)
        return entry

    def to_list(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self.entries]

    def save(self, path: Optional[str] = None) -> Optional[Path]:
        out_path = Path(path) if path else self.path
        if out_path is None:
            return None
        out_path.parent.mkdir(parents=True, exist_ok=True)
        with open(out_path, "w", encoding="utf-8") as f:
            json.dump(self.to_list(), f, indent=2, ensure_ascii=False)
        logger.info(f"Activity log saved: {out_path}")
        return out_path
