"""
SealForge Agents

Producer pipeline:
- Scanner: DefiLlama, CoinGecko and RSS in one concurrent scan
- SignalSelector: LLM picks the opportunities worth selling
- Hunter: follows each signal's queries for supporting sources
- Reasoner: builds the structured intelligence artifact
- Publisher: listing → Seal encryption → Walrus upload → attach

SealForgeAgent wires the phases together and also drives the consumer side
(purchase, decrypt).
"""

from .models import Signal, HuntedSource, IntelligenceArtifact, ScanSnapshot, VisualTheme
from .scanner import Scanner, ScanResult
from .signal_selector import SignalSelector, fallback_signals
from .hunter import Hunter
from .reasoner import Reasoner
from .publisher import Publisher, PublishResult, PublishStatus
from .sealforge_agent import SealForgeAgent

__all__ = [
    "Signal",
    "HuntedSource",
    "IntelligenceArtifact",
    "ScanSnapshot",
    "VisualTheme",
    "Scanner",
    "ScanResult",
    "SignalSelector",
    "fallback_signals",
    "Hunter",
    "Reasoner",
    "Publisher",
    "PublishResult",
    "PublishStatus",
    "SealForgeAgent",
]
