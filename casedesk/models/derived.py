"""
Derived value objects returned by the engines.

All plain dataclasses with to_dict() for the JSON boundary. Dates are
date values here and ISO-8601 strings once serialized.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional, Dict, Any, List, Tuple

from casedesk.core.utc import iso_date, iso_datetime
from casedesk.models.severity import Severity


# =============================================================================
# DEADLINES
# =============================================================================

class DeadlineMethod(str, Enum):
    """How a deadline's day count is applied."""
    BUSINESS_DAYS = "business_days"
    CALENDAR_DAYS = "calendar_days"


class DeadlineStatus(str, Enum):
    """Read-time status against the evaluation instant."""
    COMPUTED = "computed"
    AT_RISK = "at_risk"
    MISSED = "missed"


@dataclass(frozen=True)
class Deadline:
    """A named obligation derived from an anchor date by one rule."""
    rule_id: str
    name: str
    start_date: date
    due_date: date
    method: DeadlineMethod
    days: int
    calendar_days: int          # display only, business days stay authoritative
    citation: str
    status: DeadlineStatus = DeadlineStatus.COMPUTED
    working_days_remaining: Optional[int] = None
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "name": self.name,
            "description": self.description,
            "start_date": iso_date(self.start_date),
            "due_date": iso_date(self.due_date),
            "method": self.method.value,
            "days": self.days,
            "calendar_days": self.calendar_days,
            "citation": self.citation,
            "status": self.status.value,
            "working_days_remaining": self.working_days_remaining,
        }


# =============================================================================
# GUIDANCE
# =============================================================================

class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class GuidanceStep:
    """A recommended next action."""
    category: str
    action: str
    description: str
    priority: Severity
    deadline: Optional[Deadline] = None
    templates: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "action": self.action,
            "description": self.description,
            "priority": self.priority.value,
            "deadline": self.deadline.to_dict() if self.deadline else None,
            "templates": list(self.templates),
        }


@dataclass(frozen=True)
class StageAssessment:
    """Where the case sits on its practice area's stage ladder."""
    stage: str
    confidence: Confidence
    indicators: Tuple[str, ...] = ()
    reached: Tuple[str, ...] = ()   # every stage whose preconditions hold

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "confidence": self.confidence.value,
            "indicators": list(self.indicators),
            "reached": list(self.reached),
        }


GUIDANCE_DISCLAIMER = (
    "This guidance is based on extracted data and does not constitute legal advice. "
    "Always verify with qualified legal counsel. Dates and deadlines should be "
    "confirmed independently."
)


@dataclass(frozen=True)
class Guidance:
    practice_area: str
    stage: str
    confidence: Confidence
    indicators: Tuple[str, ...]
    next_steps: Tuple[GuidanceStep, ...]
    disclaimer: str = GUIDANCE_DISCLAIMER

    @property
    def recommended_templates(self) -> List[str]:
        return list(dict.fromkeys(t for step in self.next_steps for t in step.templates))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "practice_area": self.practice_area,
            "stage": self.stage,
            "confidence": self.confidence.value,
            "indicators": list(self.indicators),
            "next_steps": [s.to_dict() for s in self.next_steps],
            "recommended_templates": self.recommended_templates,
            "disclaimer": self.disclaimer,
        }


# =============================================================================
# RISK FLAGS
# =============================================================================

@dataclass(frozen=True)
class RiskFlag:
    """A discrete observation raised when a risk condition holds."""
    flag_id: str
    case_id: str
    flag_type: str
    severity: Severity
    description: str
    detected_at: datetime
    trigger: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "flag_id": self.flag_id,
            "case_id": self.case_id,
            "flag_type": self.flag_type,
            "severity": self.severity.value,
            "description": self.description,
            "detected_at": iso_datetime(self.detected_at),
            "trigger": self.trigger,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class RiskAssessment:
    """Rolled-up risk level for a set of flags."""
    level: str  # low / medium / high
    reasons: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {"level": self.level, "reasons": list(self.reasons)}


# =============================================================================
# PRIORITY SCORE
# =============================================================================

@dataclass(frozen=True)
class ScoreFactor:
    """One itemised contribution: contribution == weight * signal."""
    name: str
    contribution: int
    weight: int
    signal: int = 1
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "contribution": self.contribution,
            "weight": self.weight,
            "signal": self.signal,
            "detail": self.detail,
        }


@dataclass(frozen=True)
class PriorityScore:
    """
    Case priority.

    total is exactly the sum of factor contributions. There is no cap and
    no hidden adjustment.
    """
    case_id: str
    case_title: str
    total: int
    band: Severity
    factors: Tuple[ScoreFactor, ...]
    hazard_severity: str = "none"
    cross_risk: bool = False
    reasoning: str = ""

    @property
    def vulnerability_factors(self) -> List[ScoreFactor]:
        return [f for f in self.factors if f.name.startswith("vulnerability:")]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "case_id": self.case_id,
            "case_title": self.case_title,
            "total": self.total,
            "band": self.band.value,
            "factors": [f.to_dict() for f in self.factors],
            "hazard_severity": self.hazard_severity,
            "cross_risk": self.cross_risk,
            "reasoning": self.reasoning,
        }
