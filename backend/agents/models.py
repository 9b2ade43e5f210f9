"""
Pipeline data model
Signal → HuntedSource → IntelligenceArtifact (the plaintext that gets encrypted and sold)
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class VisualTheme(str, Enum):
    BLUE_DATA = "blue-data"
    RED_ALERT = "red-alert"
    GREEN_MONEY = "green-money"
    PURPLE_DEEP = "purple-deep"
    ORANGE_HOT = "orange-hot"


class SourceKind(str, Enum):
    API = "api"
    RSS = "rss"
    WEB = "web"


ACTION_TYPES = ("defi", "research", "trade", "track", "external")
ARTIFACT_VERSION = "1.0"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class Signal:
    title: str
    description: str
    theme: VisualTheme
    confidence: int
    category: str
    price_sui: float
    hunt_queries: Tuple[str, ...] = ()


@dataclass(frozen=True)
class HuntedSource:
    title: str
    url: str
    content: str
    kind: SourceKind


@dataclass
class ReasoningStep:
    label: str
    text: str
    confidence: int
    source: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        step = {"label": self.label, "text": self.text, "confidence": self.confidence}
        if self.source is not None:
            step["source"] = self.source
        return step


@dataclass
class Conclusion:
    summary: str
    play: str
    timeframe: str


@dataclass
class Action:
    label: str
    url: str
    type: str = "external"


@dataclass
class SourceRef:
    title: str
    url: str
    type: str


@dataclass
class SignalSummary:
    title: str
    theme: str
    confidence: int
    category: str
    timestamp: str


@dataclass
class ArtifactMetadata:
    agent: str
    model: str
    generated_at: str
    data_sources_scanned: int
    signals_found: int = 1


@dataclass
class IntelligenceArtifact:
    signal: SignalSummary
    steps: List[ReasoningStep]
    conclusion: Conclusion
    actions: List[Action]
    sources: List[SourceRef]
    metadata: ArtifactMetadata
    version: str = ARTIFACT_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "signal": vars(self.signal).copy(),
            "reasoning": {"steps": [s.to_dict() for s in self.steps]},
            "conclusion": vars(self.conclusion).copy(),
            "actions": [vars(a).copy() for a in self.actions],
            "sources": [vars(s).copy() for s in self.sources],
            "metadata": vars(self.metadata).copy(),
        }

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IntelligenceArtifact":
        return cls(
            version=data["version"],
            signal=SignalSummary(**data["signal"]),
            steps=[ReasoningStep(**s) for s in data["reasoning"]["steps"]],
            conclusion=Conclusion(**data["conclusion"]),
            actions=[Action(**a) for a in data["actions"]],
            sources=[SourceRef(**s) for s in data["sources"]],
            metadata=ArtifactMetadata(**data["metadata"]),
        )

    @classmethod
    def from_bytes(cls, raw: bytes) -> "IntelligenceArtifact":
        return cls.from_dict(json.loads(raw.decode("utf-8")))

    @property
    def confidence(self) -> int:
        return self.signal.confidence


def source_refs(sources: List[HuntedSource]) -> List[SourceRef]:
    return [SourceRef(title=s.title, url=s.url, type=s.kind.value) for s in sources]


@dataclass
class ScanSnapshot:
    """Scanner output handed to the later phases"""
    text: str
    stats: Dict[str, Any] = field(default_factory=dict)
    sources_ok: int = 0
    sources_total: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()
