"""
Reasoner - REASON phase
Turns a signal and its hunted sources into the structured IntelligenceArtifact.

On LLM success the artifact confidence is the last reasoning step's
confidence. On any failure a deterministic 4-step artifact is built instead.
"""

import logging
from typing import Any, List, Optional

from pydantic import BaseModel, field_validator

from infrastructure.activity_log import ActivityLog, AgentPhase
from infrastructure.config import PipelineConfig

from .models import (
    ACTION_TYPES,
    Action,
    ArtifactMetadata,
    Conclusion,
    HuntedSource,
    IntelligenceArtifact,
    ReasoningStep,
    Signal,
    SignalSummary,
    source_refs,
    utc_now_iso,
)
from .signal_selector import LLM, extract_json_object

logger = logging.getLogger("Reasoner")

FALLBACK_MODEL = "fallback-template"

USER_PROMPT = """SIGNAL: "{title}"
Category: {category}
Confidence so far: {confidence}%

SCAN DATA:
{scan}

HUNTED SOURCES:
{sources}

Build a reasoning chain that shows HOW you reached your conclusion. Each step should reference data.

IMPORTANT: Return ONLY valid JSON, no markdown code blocks. Format:
{{
  "reasoning_steps": [
    {{ "label": "Step 1: Initial observation", "text": "Looking at the data...", "confidence": 40, "source": "Source name" }},
    {{ "label": "Step 2: Cross-reference", "text": "Comparing with...", "confidence": 60, "source": "Source name" }},
    {{ "label": "Step 3: Pattern match", "text": "This pattern suggests...", "confidence": 75, "source": "Source name" }},
    {{ "label": "Step 4: Conclusion", "text": "Based on all evidence...", "confidence": 85, "source": null }}
  ],
  "conclusion": {{
    "summary": "One sentence: what is happening",
    "play": "One sentence: what to DO about it",
    "timeframe": "e.g. 24-48h, this week, next month"
  }},
  "actions": [
    {{ "label": "Action button text", "url": "https://...", "type": "defi" }}
  ]
}}"""


def clamp_confidence(value: Any, default: int = 50) -> int:
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number or number == 0:
        return default
    return int(round(max(0.0, min(100.0, number))))


def _text_or_none(value):
    return value if isinstance(value, str) and value.strip() else None


class StepModel(BaseModel):
    label: Optional[str] = None
    text: Optional[str] = None
    confidence: int = 50
    source: Optional[str] = None

    @field_validator("label", "text", "source", mode="before")
    @classmethod
    def _strings(cls, value):
        return _text_or_none(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, value):
        return clamp_confidence(value)


class ConclusionModel(BaseModel):
    summary: Optional[str] = None
    play: Optional[str] = None
    timeframe: Optional[str] = None

    @field_validator("summary", "play", "timeframe", mode="before")
    @classmethod
    def _strings(cls, value):
        return _text_or_none(value)


class ActionModel(BaseModel):
    label: Optional[str] = None
    url: Optional[str] = None
    type: str = "external"

    @field_validator("label", "url", mode="before")
    @classmethod
    def _strings(cls, value):
        return _text_or_none(value)

    @field_validator("type", mode="before")
    @classmethod
    def _type(cls, value):
        return value if value in ACTION_TYPES else "external"


class ReasoningResponse(BaseModel):
    reasoning_steps: List[StepModel] = []
    conclusion: Optional[ConclusionModel] = None
    actions: List[ActionModel] = []

    @field_validator("conclusion", mode="before")
    @classmethod
    def _conclusion(cls, value):
        return value if isinstance(value, dict) else None


class Reasoner:
    def __init__(self, llm: Optional[LLM], config: PipelineConfig):
        self.llm = llm
        self.config = config

    def build_prompt(self, signal: Signal, sources: List[HuntedSource], scan_text: str) -> str:
        rendered = "\n\n".join(
            f"Source {i + 1} [{s.title}]: {s.content[:500]}" for i, s in enumerate(sources)
        )
        return USER_PROMPT.format(
            title=signal.title,
            category=signal.category,
            confidence=signal.confidence,
            scan=scan_text[:self.config.scan_context_chars],
            sources=rendered,
        )

    def assemble(self, signal: Signal, sources: List[HuntedSource], parsed: ReasoningResponse,
                 model: str) -> IntelligenceArtifact:
        steps = [
            ReasoningStep(
                label=s.label or "Analysis",
                text=s.text or "",
                confidence=s.confidence,
                source=s.source,
            )
            for s in parsed.reasoning_steps
        ]
        conclusion = parsed.conclusion or ConclusionModel()
        now = utc_now_iso()
        return IntelligenceArtifact(
            signal=SignalSummary(
                title=signal.title,
                theme=signal.theme.value,
                confidence=steps[-1].confidence if steps else signal.confidence,
                category=signal.category,
                timestamp=now,
            ),
            steps=steps,
            conclusion=Conclusion(
                summary=conclusion.summary or signal.description,
                play=conclusion.play or "Monitor the situation closely.",
                timeframe=conclusion.timeframe or "this week",
            ),
            actions=[Action(label=a.label or "Learn More", url=a.url or "#", type=a.type) for a in parsed.actions],
            sources=source_refs(sources),
            metadata=ArtifactMetadata(
                agent=self.config.agent_name,
                model=model,
                generated_at=now,
                data_sources_scanned=len(sources),
                signals_found=1,
            ),
        )

    async def reason(self, signal: Signal, sources: List[HuntedSource], scan_text: str,
                     activity: Optional[ActivityLog] = None) -> IntelligenceArtifact:
        activity = activity or ActivityLog()
        activity.log(AgentPhase.REASON, f'Reasoning through {len(sources)} sources for "{signal.title}"...')

        if self.llm is None:
            return self.fallback(signal, sources)

        system_prompt = (
            f"You are SealForge, writing a premium crypto intelligence report. You have hunted "
            f"{len(sources)} sources. Now build a structured reasoning chain and reach a conclusion."
        )
        try:
            response = await self.llm.complete(system_prompt, self.build_prompt(signal, sources, scan_text))
            parsed = ReasoningResponse.model_validate(extract_json_object(response.text))
            artifact = self.assemble(signal, sources, parsed, response.model)
        except Exception as e:
            logger.warning(f"[REASON] LLM failed: {e}. Using structured fallback.")
            return self.fallback(signal, sources)

        for step in artifact.steps:
            activity.log(AgentPhase.REASON, f"{step.label} — Confidence: {step.confidence}%")
        activity.log(AgentPhase.REASON, f"Conclusion: {artifact.conclusion.summary}")
        activity.log(AgentPhase.REASON, f"Play: {artifact.conclusion.play}")
        return artifact

    def fallback(self, signal: Signal, sources: List[HuntedSource]) -> IntelligenceArtifact:
        count = len(sources)
        now = utc_now_iso()
        return IntelligenceArtifact(
            signal=SignalSummary(
                title=signal.title,
                theme=signal.theme.value,
                confidence=signal.confidence,
                category=signal.category,
                timestamp=now,
            ),
            steps=[
                ReasoningStep(
                    "Step 1: Data Collection",
                    f"Scanned {count} data sources including DefiLlama, CoinGecko, and crypto news feeds.",
                    40,
                ),
                ReasoningStep(
                    "Step 2: Signal Detection",
                    f'Identified "{signal.title}" as a key signal based on current market data.',
                    55,
                ),
                ReasoningStep(
                    "Step 3: Cross-Validation",
                    f"Cross-referenced across {count} sources. Data patterns consistent.",
                    70,
                ),
                ReasoningStep("Step 4: Assessment", signal.description, signal.confidence),
            ],
            conclusion=Conclusion(
                summary=signal.description,
                play="Review the sources below and position accordingly. Monitor for 48-hour follow-up.",
                timeframe="48 hours",
            ),
            actions=[
                Action("View Sui on DefiLlama", "https://defillama.com/chain/Sui", "research"),
                Action("SUI on CoinGecko", "https://www.coingecko.com/en/coins/sui", "research"),
            ],
            sources=source_refs(sources),
            metadata=ArtifactMetadata(
                agent=self.config.agent_name,
                model=FALLBACK_MODEL,
                generated_at=now,
                data_sources_scanned=count,
                signals_found=1,
            ),
        )
