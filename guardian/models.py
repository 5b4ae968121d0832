"""
models.py — Data Models
========================

Internal records are plain dataclasses (immutable where they cross threads);
anything that crosses a network boundary is a pydantic model.

Triage flow:
    raw text → TriageOrchestrator → TriageResult (frozen dataclass)

Stage 3 flow:
    TriageOrchestrator → ExplainRequest → cloud endpoint → Explanation

HTTP flow:
    Collector → NotificationEvent / ScanEvent / TriageRequest → EventResponse / TriageResponse

Design decisions:
    - Wire models use ConfigDict(extra="ignore") so new server-side fields
      never break decoding.
    - Explanation never raises on bad field values: each invalid field is
      replaced by a safe generic default at decode time.
"""

import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @property
    def is_alertable(self) -> bool:
        return self is not RiskLevel.LOW


class AlertOrigin(str, Enum):
    """Which collector produced the text."""
    NOTIFICATION = "notification"
    IMAGE_SCAN = "image_scan"
    MANUAL = "manual"


# ═══════════════════════════════════════════════════════════════════════
# STAGE 3 WIRE MODELS: request sent to and response from the cloud endpoint
# ═══════════════════════════════════════════════════════════════════════

SNIPPET_MAX_CHARS: int = 500

DEFAULT_WHY_FLAGGED = ("Message matched known scam manipulation patterns.",)
DEFAULT_WHAT_TO_DO_NOW = (
    "Do not respond yet.",
    "Check any links with a trusted scanner before opening them.",
    "Ask a trusted person if unsure.",
)
DEFAULT_WHAT_NOT_TO_DO = (
    "Do not share OTP or banking details.",
    "Do not send money.",
)

_LIST_DEFAULTS = {
    "whyFlagged": DEFAULT_WHY_FLAGGED,
    "whatToDoNow": DEFAULT_WHAT_TO_DO_NOW,
    "whatNotToDo": DEFAULT_WHAT_NOT_TO_DO,
}
_TEXT_DEFAULTS = {
    "category": "Unknown",
    "headline": "Suspicious message detected",
    "notes": "",
}


class ExplainRequest(BaseModel):
    """Payload for the cloud explanation/confirmation call.

    Only the redacted snippet leaves the device, never the full message.
    """
    model_config = ConfigDict(extra="ignore")

    alertType: str = Field(...)
    language: str = Field(default="en")
    category: str = Field(default="unknown")
    tactics: List[str] = Field(default_factory=list)
    snippet: str = Field(default="")
    extractedUrl: Optional[str] = Field(default=None)
    heuristicScore: Optional[float] = Field(default=None)
    classifierScore: Optional[float] = Field(default=None)

    @field_validator("snippet", mode="before")
    @classmethod
    def _bound_snippet(cls, value):
        if value is None:
            return ""
        return str(value)[:SNIPPET_MAX_CHARS]

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)


class Explanation(BaseModel):
    """Structured verdict returned by the cloud endpoint.

    riskLevel stays None when the service gave no usable verdict, in which
    case the locally derived label is kept.
    """
    model_config = ConfigDict(extra="ignore", frozen=True)

    category: str = Field(default=_TEXT_DEFAULTS["category"])
    riskLevel: Optional[RiskLevel] = Field(default=None)
    headline: str = Field(default=_TEXT_DEFAULTS["headline"])
    whyFlagged: List[str] = Field(default_factory=lambda: list(DEFAULT_WHY_FLAGGED))
    whatToDoNow: List[str] = Field(default_factory=lambda: list(DEFAULT_WHAT_TO_DO_NOW))
    whatNotToDo: List[str] = Field(default_factory=lambda: list(DEFAULT_WHAT_NOT_TO_DO))
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    notes: str = Field(default=_TEXT_DEFAULTS["notes"])

    @property
    def has_category(self) -> bool:
        """False when the service gave no usable category."""
        return self.category != _TEXT_DEFAULTS["category"]

    @property
    def has_headline(self) -> bool:
        return self.headline != _TEXT_DEFAULTS["headline"]

    @field_validator("category", "headline", "notes", mode="before")
    @classmethod
    def _coerce_text(cls, value, info):
        if isinstance(value, str) and value.strip():
            return value.strip()
        return _TEXT_DEFAULTS[info.field_name]

    @field_validator("riskLevel", mode="before")
    @classmethod
    def _coerce_risk_level(cls, value):
        if isinstance(value, str):
            try:
                return RiskLevel(value.strip().upper())
            except ValueError:
                return None
        return None

    @field_validator("whyFlagged", "whatToDoNow", "whatNotToDo", mode="before")
    @classmethod
    def _coerce_list(cls, value, info):
        if isinstance(value, (list, tuple)):
            items = [str(item).strip() for item in value if item is not None]
            items = [item for item in items if item]
            if items:
                return items
        return list(_LIST_DEFAULTS[info.field_name])

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, value):
        # bool is an int subclass; a JSON true is not a confidence
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return 0.5
        if math.isnan(value):
            return 0.5
        return min(max(float(value), 0.0), 1.0)


# ═══════════════════════════════════════════════════════════════════════
# TRIAGE RESULT / ALERT RECORD (internal)
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TriageResult:
    """Outcome of one pass through the triage pipeline.

    classifier_score is None when Stage 2 was unavailable for this call.
    """
    risk_level: RiskLevel
    risk_probability: float
    heuristic_score: float
    classifier_score: Optional[float]
    tactics: Tuple[str, ...]
    category: str
    headline: str
    contains_url: bool
    explanation: Optional[Explanation] = None
    explanation_language: Optional[str] = None


@dataclass
class Alert:
    """A persisted warning, created only for MEDIUM/HIGH final results."""
    id: str
    created_at: datetime
    origin: AlertOrigin
    risk_level: RiskLevel
    category: str
    tactics_json: str                       # JSON array string, e.g. ["urgency","threats"]
    snippet: str                            # redacted, bounded preview
    extracted_url: Optional[str] = None
    headline: Optional[str] = None
    sender: Optional[str] = None
    full_message: Optional[str] = None
    explanation_json: Optional[str] = None  # cached Stage 3 explanation
    analysis_language: Optional[str] = None
    heuristic_score: Optional[float] = None
    classifier_score: Optional[float] = None


@dataclass(frozen=True)
class CollectedEvent:
    """Raw text delivered by a collector, plus what we know about its source."""
    raw_text: str
    origin: AlertOrigin = AlertOrigin.MANUAL
    sender: Optional[str] = None
    full_message: Optional[str] = None


@dataclass
class EventOutcome:
    """What the pipeline did with one collected event."""
    ignored: bool = False
    duplicate: bool = False
    result: Optional[TriageResult] = None
    alert_id: Optional[str] = None
    error: Optional[str] = None


# ═══════════════════════════════════════════════════════════════════════
# HTTP MODELS: collector ingress and responses
# ═══════════════════════════════════════════════════════════════════════

class TriageRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: str = Field(default="")


class NotificationEvent(BaseModel):
    """Fields of a posted notification, as the listener sees them."""
    model_config = ConfigDict(extra="ignore")

    packageName: Optional[str] = Field(default=None)
    title: Optional[str] = Field(default=None)
    text: Optional[str] = Field(default=None)
    bigText: Optional[str] = Field(default=None)
    subText: Optional[str] = Field(default=None)
    lines: List[str] = Field(default_factory=list)


class ScanEvent(BaseModel):
    """Text recovered from one image: OCR output plus decoded barcodes/QR codes."""
    model_config = ConfigDict(extra="ignore")

    ocrText: Optional[str] = Field(default=None)
    barcodeValues: List[str] = Field(default_factory=list)


class TriageResponse(BaseModel):
    riskLevel: RiskLevel
    riskProbability: float
    heuristicScore: float
    classifierScore: Optional[float] = None
    tactics: List[str] = Field(default_factory=list)
    category: str
    headline: str
    containsUrl: bool
    explanation: Optional[Explanation] = None
    explanationLanguage: Optional[str] = None

    @classmethod
    def from_result(cls, result: TriageResult) -> "TriageResponse":
        return cls(
            riskLevel=result.risk_level,
            riskProbability=round(result.risk_probability, 4),
            heuristicScore=round(result.heuristic_score, 4),
            classifierScore=(
                None if result.classifier_score is None
                else round(result.classifier_score, 4)
            ),
            tactics=list(result.tactics),
            category=result.category,
            headline=result.headline,
            containsUrl=result.contains_url,
            explanation=result.explanation,
            explanationLanguage=result.explanation_language,
        )


class EventResponse(BaseModel):
    status: str = Field(...)                     # "alerted" | "clear" | "duplicate" | "ignored" | "error"
    alertId: Optional[str] = Field(default=None)
    result: Optional[TriageResponse] = Field(default=None)


class AlertResponse(BaseModel):
    id: str
    createdAt: datetime
    origin: AlertOrigin
    riskLevel: RiskLevel
    category: str
    tactics: List[str] = Field(default_factory=list)
    snippet: str
    extractedUrl: Optional[str] = None
    headline: Optional[str] = None
    sender: Optional[str] = None
    explanation: Optional[Explanation] = None
    analysisLanguage: Optional[str] = None
    heuristicScore: Optional[float] = None
    classifierScore: Optional[float] = None


class CountEntry(BaseModel):
    name: str
    count: int


class WeeklyStatsResponse(BaseModel):
    since: datetime
    total: int
    categories: List[CountEntry] = Field(default_factory=list)
    tactics: List[CountEntry] = Field(default_factory=list)
