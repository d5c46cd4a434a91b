"""
Casedesk value objects.

Inputs (CaseFacts and its parts) and derived outputs (Deadline,
GuidanceStep, RiskFlag, PriorityScore) shared by every engine.
"""

from .severity import Severity, SEVERITY_RANK, severity_rank, most_severe
from .case_facts import (
    CaseEvent,
    CaseFacts,
    EventProvenance,
    EventType,
    HousingFacts,
    PersonalInjuryFacts,
    PracticeArea,
)
from .derived import (
    Confidence,
    Deadline,
    DeadlineMethod,
    DeadlineStatus,
    Guidance,
    GuidanceStep,
    PriorityScore,
    RiskAssessment,
    RiskFlag,
    ScoreFactor,
    StageAssessment,
)

__all__ = [
    "Severity",
    "SEVERITY_RANK",
    "severity_rank",
    "most_severe",
    "CaseEvent",
    "CaseFacts",
    "EventProvenance",
    "EventType",
    "HousingFacts",
    "PersonalInjuryFacts",
    "PracticeArea",
    "Confidence",
    "Deadline",
    "DeadlineMethod",
    "DeadlineStatus",
    "Guidance",
    "GuidanceStep",
    "PriorityScore",
    "RiskAssessment",
    "RiskFlag",
    "ScoreFactor",
    "StageAssessment",
]
