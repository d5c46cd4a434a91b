"""
Case Analysis Router - JSON boundary for the derived-fact engines
==================================================================

Accepts a serialized CaseFacts snapshot and returns deadlines, guidance,
priority score and risk flags. Pure computation: nothing is stored.

Body for every POST:
    {"case": {...}, "as_of": "2025-06-01T09:00:00Z", "case_title": "...", "trigger": "..."}

as_of defaults to the current UTC time.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from casedesk.core.config import Settings, get_settings
from casedesk.core.rule_tables import get_business_calendar, get_deadline_rules, get_scoring_weights
from casedesk.core.utc import iso_datetime, to_utc, utc_now
from casedesk.models.case_facts import CaseFacts
from casedesk.models.derived import Deadline
from casedesk.services.business_calendar import BusinessCalendar
from casedesk.services.deadline_rules import DeadlineRuleSet, calculate_case_deadlines
from casedesk.services.priority_scorer import ScoringWeights, calculate_priority_score
from casedesk.services.risk_engine import RiskThresholds, assess_risk_level, evaluate_risks
from casedesk.services.stage_classifier import generate_guidance

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cases", tags=["Case Analysis"])


# Request Models
class CaseAnalysisRequest(BaseModel):
    """A case snapshot plus the instant to evaluate it at"""
    case: Dict[str, Any]
    as_of: Optional[datetime] = None
    case_title: Optional[str] = None
    trigger: Optional[str] = Field(default=None, description="What prompted this evaluation, e.g. 'document_upload'")


# =============================================================================
# Helpers
# =============================================================================

@dataclass
class RuleTables:
    """The loaded tables one request evaluates against."""
    settings: Settings
    calendar: BusinessCalendar
    rule_set: DeadlineRuleSet
    weights: ScoringWeights


def get_rule_tables(
    settings: Settings = Depends(get_settings),
    calendar: BusinessCalendar = Depends(get_business_calendar),
    rule_set: DeadlineRuleSet = Depends(get_deadline_rules),
    weights: ScoringWeights = Depends(get_scoring_weights),
) -> RuleTables:
    return RuleTables(settings, calendar, rule_set, weights)


@dataclass
class _Evaluation:
    facts: CaseFacts
    now: datetime
    tables: RuleTables
    deadlines: List[Deadline]


def _evaluate(request: CaseAnalysisRequest, tables: RuleTables) -> _Evaluation:
    facts = CaseFacts.from_dict(request.case)
    now = to_utc(request.as_of) if request.as_of else utc_now()
    deadlines = calculate_case_deadlines(
        facts, tables.calendar, now, tables.rule_set, tables.settings.at_risk_window_days
    )
    if facts.dropped_events:
        logger.warning("Case %s: dropped %d unparseable event(s)", facts.case_id, facts.dropped_events)
    return _Evaluation(facts, now, tables, deadlines)


def _thresholds(settings: Settings) -> RiskThresholds:
    return RiskThresholds(
        correspondence_gap_days=settings.correspondence_gap_days,
        stalled_intake_days=settings.stalled_intake_days,
        hearing_warning_days=settings.hearing_warning_days,
    )


def _envelope(ev: _Evaluation) -> Dict[str, Any]:
    return {
        "case_id": ev.facts.case_id,
        "as_of": iso_datetime(ev.now),
        "dropped_events": ev.facts.dropped_events,
    }


def _guidance(ev: _Evaluation) -> Dict[str, Any]:
    guidance = generate_guidance(
        ev.facts,
        now=ev.now,
        deadlines=ev.deadlines,
        limitation_warning_days=ev.tables.settings.limitation_warning_days,
    )
    return guidance.to_dict()


def _priority(ev: _Evaluation, request: CaseAnalysisRequest) -> Dict[str, Any]:
    score = calculate_priority_score(
        ev.facts,
        case_title=request.case_title or ev.facts.case_id,
        deadlines=ev.deadlines,
        now=ev.now,
        weights=ev.tables.weights,
        calendar=ev.tables.calendar,
    )
    return score.to_dict()


def _risks(ev: _Evaluation, request: CaseAnalysisRequest) -> Dict[str, Any]:
    flags = evaluate_risks(
        ev.facts,
        trigger=request.trigger,
        now=ev.now,
        deadlines=ev.deadlines,
        thresholds=_thresholds(ev.tables.settings),
        calendar=ev.tables.calendar,
    )
    return {
        "flags": [f.to_dict() for f in flags],
        "assessment": assess_risk_level(flags).to_dict(),
    }


# =============================================================================
# Endpoints
# =============================================================================

@router.get("/health")
async def case_analysis_health(calendar: BusinessCalendar = Depends(get_business_calendar)):
    """Health check for the case analysis engines"""
    return {
        "status": "healthy",
        "service": "case_analysis",
        "jurisdiction": calendar.jurisdiction,
        "holiday_years": sorted(calendar.holidays),
    }


@router.post("/deadlines")
async def case_deadlines(request: CaseAnalysisRequest, tables: RuleTables = Depends(get_rule_tables)):
    """
    Statutory and procedural deadlines for the case.

    Deadlines whose anchor event is missing, or whose obligation has been
    discharged, are omitted.
    """
    ev = _evaluate(request, tables)
    return {**_envelope(ev), "deadlines": [d.to_dict() for d in ev.deadlines]}


@router.post("/guidance")
async def case_guidance(request: CaseAnalysisRequest, tables: RuleTables = Depends(get_rule_tables)):
    """Litigation stage and ordered next steps."""
    ev = _evaluate(request, tables)
    return {**_envelope(ev), **_guidance(ev)}


@router.post("/priority")
async def case_priority(request: CaseAnalysisRequest, tables: RuleTables = Depends(get_rule_tables)):
    """Priority score with its itemised factor breakdown."""
    ev = _evaluate(request, tables)
    return {**_envelope(ev), **_priority(ev, request)}


@router.post("/risks")
async def case_risks(request: CaseAnalysisRequest, tables: RuleTables = Depends(get_rule_tables)):
    """Risk flags that hold at as_of, plus the rolled-up risk level."""
    ev = _evaluate(request, tables)
    return {**_envelope(ev), **_risks(ev, request)}


@router.post("/analysis")
async def case_analysis(request: CaseAnalysisRequest, tables: RuleTables = Depends(get_rule_tables)):
    """
    Everything at once:
    - deadlines
    - guidance
    - priority
    - risks
    """
    ev = _evaluate(request, tables)
    result = {
        **_envelope(ev),
        "deadlines": [d.to_dict() for d in ev.deadlines],
        "guidance": _guidance(ev),
        "priority": _priority(ev, request),
        "risks": _risks(ev, request),
    }
    logger.info(
        "Case %s analysed: stage=%s priority=%s flags=%d",
        ev.facts.case_id,
        result["guidance"]["stage"],
        result["priority"]["band"],
        len(result["risks"]["flags"]),
    )
    return result
