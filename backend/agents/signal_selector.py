"""
Signal Selector - IDENTIFY phase
Asks the LLM for the two most valuable intelligence opportunities in the scan.

Model output is untrusted: the first JSON object is extracted, validated with a
pydantic schema and every field clamped. Any failure falls back to
deterministic template signals; select() never raises.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, List, Optional, Protocol

from pydantic import BaseModel, field_validator

from infrastructure.activity_log import ActivityLog, AgentPhase
from infrastructure.config import PipelineConfig

from .models import Signal, VisualTheme

logger = logging.getLogger("SignalSelector")


class LLM(Protocol):
    async def complete(self, system_prompt: str, user_prompt: str):
        ...


SYSTEM_PROMPT = (
    "You are SealForge, an autonomous crypto intelligence agent operating on Sui blockchain. "
    "You analyze raw market data to identify actionable trading/DeFi signals worth paying for."
)

USER_PROMPT = """Here is your environment scan from {timestamp}:

{scan}

{hint}

Your task: Identify the TWO most valuable intelligence opportunities from this data.
- One should be Sui/DeFi ecosystem focused.
- One should be about a broader crypto/market trending topic.

For EACH opportunity, provide:
1. title: A specific, compelling title (not generic like "Sui DeFi Report")
2. description: One sentence value proposition — WHY someone would pay for this
3. theme: One of "blue-data", "red-alert", "green-money", "purple-deep", "orange-hot"
4. confidence: 50-95 (how confident you are this will attract buyers)
5. category: "DeFi" | "Market Structure" | "Protocol Update" | "Risk Alert" | "Alpha" | "Technical"
6. price_sui: {min_price} to {max_price} SUI (based on urgency and uniqueness)
7. hunt_queries: 3-5 specific DefiLlama URLs or search terms to go deeper

IMPORTANT: Return ONLY valid JSON, no markdown code blocks. Format:
{{
  "opportunities": [
    {{
      "title": "...",
      "description": "...",
      "theme": "green-money",
      "confidence": 82,
      "category": "DeFi",
      "price_sui": 0.5,
      "hunt_queries": ["https://api.llama.fi/protocol/cetus", "sui defi tvl rotation 2026"]
    }},
    {{ ... }}
  ]
}}"""


def extract_json_object(text: str) -> Any:
    """First top-level JSON object in `text`, tolerating prose and code fences"""
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            obj, _ = decoder.raw_decode(text, start)
            return obj
        except ValueError:
            start = text.find("{", start + 1)
    raise ValueError("No JSON object found in LLM response")


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number == number else None  # NaN


class Opportunity(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    theme: Optional[str] = None
    confidence: Optional[float] = None
    category: Optional[str] = None
    price_sui: Optional[float] = None
    hunt_queries: List[str] = []

    @field_validator("title", "description", "theme", "category", mode="before")
    @classmethod
    def _text(cls, value):
        return value if isinstance(value, str) and value.strip() else None

    @field_validator("confidence", "price_sui", mode="before")
    @classmethod
    def _numeric(cls, value):
        return _number(value)

    @field_validator("hunt_queries", mode="before")
    @classmethod
    def _queries(cls, value):
        if not isinstance(value, list):
            return []
        return [q for q in value if isinstance(q, str) and q.strip()]


class SelectionResponse(BaseModel):
    opportunities: List[Opportunity]


class SignalSelector:
    def __init__(self, llm: Optional[LLM], config: PipelineConfig):
        self.llm = llm
        self.config = config

    def to_signal(self, o: Opportunity) -> Signal:
        c = self.config
        theme = o.theme if o.theme in {t.value for t in VisualTheme} else VisualTheme.BLUE_DATA.value
        confidence = o.confidence if o.confidence else c.default_confidence
        price = o.price_sui if o.price_sui else c.default_price_sui
        return Signal(
            title=o.title or "Untitled Signal",
            description=o.description or "AI-generated intelligence report.",
            theme=VisualTheme(theme),
            confidence=int(round(max(c.min_confidence, min(c.max_confidence, confidence)))),
            category=o.category or "DeFi",
            price_sui=round(max(c.min_price_sui, min(c.max_price_sui, price)), 4),
            hunt_queries=tuple(o.hunt_queries[:c.max_hunt_queries]),
        )

    def parse(self, text: str) -> List[Signal]:
        """Raises ValueError / ValidationError on anything structurally wrong"""
        response = SelectionResponse.model_validate(extract_json_object(text))
        signals = [self.to_signal(o) for o in response.opportunities[:self.config.max_signals]]
        if not signals:
            raise ValueError("LLM returned no opportunities")
        return signals

    async def select(self, scan_text: str, topic_hint: Optional[str] = None,
                     activity: Optional[ActivityLog] = None) -> List[Signal]:
        activity = activity or ActivityLog()
        activity.log(AgentPhase.IDENTIFY, "Analyzing signals with LLM...")

        if self.llm is None:
            logger.warning("No LLM configured. Using fallback signals.")
            return self._fallback(scan_text, activity)

        user_prompt = USER_PROMPT.format(
            timestamp=datetime.now(timezone.utc).isoformat(),
            scan=scan_text,
            hint=f'FOCUS HINT: The operator wants you to focus on "{topic_hint}".' if topic_hint else "",
            min_price=self.config.min_price_sui,
            max_price=self.config.max_price_sui,
        )

        try:
            response = await self.llm.complete(SYSTEM_PROMPT, user_prompt)
            signals = self.parse(response.text)
        except Exception as e:
            logger.warning(f"[IDENTIFY] LLM failed: {e}. Using fallback signals.")
            return self._fallback(scan_text, activity)

        for s in signals:
            activity.log(
                AgentPhase.IDENTIFY,
                f'Signal: "{s.title}" | {s.theme.value} | Confidence: {s.confidence}% | Price: {s.price_sui} SUI',
            )
        return signals

    def _fallback(self, scan_text: str, activity: ActivityLog) -> List[Signal]:
        signals = fallback_signals(scan_text)[:self.config.max_signals]
        for s in signals:
            activity.log(AgentPhase.IDENTIFY, f'Fallback signal: "{s.title}" | {s.theme.value}')
        return signals


def fallback_signals(scan_text: str) -> List[Signal]:
    """Deterministic templates; a TVL line with a negative move selects the alert variant"""
    tvl_drop = "-" in scan_text and "TVL" in scan_text
    return [
        Signal(
            title="Sui DeFi Capital Rotation Alert" if tvl_drop else "Sui DeFi Ecosystem — State of Play Q1 2026",
            description=(
                "Capital movement detected across Sui protocols. Where the money is flowing and what to do."
                if tvl_drop else
                "Comprehensive analysis of the top Sui DeFi protocols, yield opportunities, and market position."
            ),
            theme=VisualTheme.RED_ALERT if tvl_drop else VisualTheme.BLUE_DATA,
            confidence=75,
            category="DeFi",
            price_sui=0.25,
            hunt_queries=(
                "https://api.llama.fi/protocol/cetus",
                "https://api.llama.fi/protocol/navi-protocol",
            ),
        ),
        Signal(
            title="Trending Crypto Momentum Scanner — What the Market Is Watching",
            description="The coins gaining attention right now, why they matter, and how to position.",
            theme=VisualTheme.ORANGE_HOT,
            confidence=70,
            category="Market Structure",
            price_sui=0.15,
            hunt_queries=("crypto trending coins analysis 2026", "bitcoin market sentiment"),
        ),
    ]
