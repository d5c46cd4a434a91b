"""
Stage / Guidance Classifier

Places a case on its practice area's procedural ladder and recommends the
next actions for that stage.

Stage model:
- Each practice area has a tree of StageDefinition rows. The root stage
  (intake) is always reached.
- A stage is reached when its predecessor is reached AND one of its
  required events falls on or after the predecessor's milestone date.
- The current stage is the reached stage with the highest order.
- Later-stage evidence without its predecessor never advances the stage.

Guidance:
- Every (practice area, stage) has a table of step templates.
- A template that names a deadline rule takes the deadline from the
  Deadline Rule Set output; it is never recomputed here.
- A missed deadline escalates its step to critical, at risk to high.
- Steps are ordered by severity, then due date (undated last), then a
  fixed category precedence.

NOT legal advice - every Guidance carries the disclaimer.
"""

from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Any, Optional, Dict, List, Tuple, Union, Callable, Iterable

from casedesk.core.errors import InvalidInput
from casedesk.core.utc import as_of_date, iso_date
from casedesk.models.case_facts import CaseEvent, CaseFacts, EventType, PracticeArea
from casedesk.models.derived import (
    Confidence,
    Deadline,
    DeadlineStatus,
    Guidance,
    GuidanceStep,
    StageAssessment,
)
from casedesk.models.severity import Severity, most_severe, severity_rank
from casedesk.services.business_calendar import BusinessCalendar
from casedesk.services.deadline_rules import (
    DEFAULT_AT_RISK_WINDOW,
    DeadlineRuleSet,
    calculate_case_deadlines,
)

DEFAULT_LIMITATION_WARNING_DAYS = 90
LIMITATION_CRITICAL_DAYS = 30

NO_ACCESS_PATTERN_DAYS = 30
REPEATED_REPAIR_ATTEMPTS = 2


# =============================================================================
# STAGE LADDERS
# =============================================================================

@dataclass(frozen=True)
class StageDefinition:
    stage: str
    order: int
    requires_any: Tuple[str, ...] = ()
    after: Optional[str] = None  # predecessor stage; None only for the root


def _stage(stage: str, order: int, requires_any=(), after: Optional[str] = None) -> StageDefinition:
    return StageDefinition(
        stage=stage,
        order=order,
        requires_any=tuple(e.value for e in requires_any),
        after=after,
    )


_SETTLED = (EventType.SETTLEMENT_AGREED,)
_CLOSED = (EventType.CASE_CLOSED,)
_ISSUED = (EventType.PROCEEDINGS_ISSUED, EventType.CLAIM_SERVED)

_LITIGATION_LADDER = (
    _stage("intake", 0),
    _stage("pre_action", 1, (EventType.LETTER_OF_CLAIM_SENT,), after="intake"),
    _stage("response", 2, (EventType.DEFENDANT_RESPONSE_RECEIVED,), after="pre_action"),
    _stage("litigation", 3, _ISSUED, after="response"),
    _stage("trial", 4, (EventType.TRIAL_LISTED,), after="litigation"),
    _stage("settlement", 10, _SETTLED, after="intake"),
    _stage("closed", 11, _CLOSED, after="intake"),
)

STAGE_LADDERS: Dict[PracticeArea, Tuple[StageDefinition, ...]] = {
    PracticeArea.HOUSING_DISREPAIR: (
        _stage("intake", 0),
        _stage(
            "investigation", 1,
            (
                EventType.INSPECTION_COMPLETED,
                EventType.LANDLORD_RESPONSE_RECEIVED,
                EventType.REPAIR_WORK_STARTED,
                EventType.REPAIR_WORK_COMPLETED,
            ),
            after="intake",
        ),
        _stage("pre_action", 2, (EventType.LETTER_OF_CLAIM_SENT,), after="investigation"),
        _stage("litigation", 3, _ISSUED, after="pre_action"),
        _stage("settlement", 10, _SETTLED, after="intake"),
        _stage("closed", 11, _CLOSED, after="intake"),
    ),
    PracticeArea.PERSONAL_INJURY: _LITIGATION_LADDER,
    PracticeArea.OTHER_LITIGATION: _LITIGATION_LADDER,
    PracticeArea.CLINICAL_NEGLIGENCE: (
        _stage("intake", 0),
        _stage("records_requested", 1, (EventType.MEDICAL_RECORDS_REQUESTED,), after="intake"),
        _stage(
            "expert_review", 2,
            (EventType.MEDICAL_REPORT_REQUESTED, EventType.MEDICAL_REPORT_RECEIVED),
            after="records_requested",
        ),
        _stage("pre_action", 3, (EventType.LETTER_OF_CLAIM_SENT,), after="expert_review"),
        _stage("response", 4, (EventType.DEFENDANT_RESPONSE_RECEIVED,), after="pre_action"),
        _stage("litigation", 5, _ISSUED, after="response"),
        _stage("settlement", 10, _SETTLED, after="intake"),
        _stage("closed", 11, _CLOSED, after="intake"),
    ),
    PracticeArea.FAMILY: (
        _stage("intake", 0),
        _stage("mediation", 1, (EventType.MEDIATION_ASSESSMENT_ATTENDED,), after="intake"),
        _stage("proceedings", 2, (EventType.APPLICATION_ISSUED,), after="mediation"),
        _stage("hearing", 3, (EventType.HEARING_LISTED,), after="proceedings"),
        _stage("closed", 11, _CLOSED, after="intake"),
    ),
}

TERMINAL_STAGES = frozenset({"settlement", "closed"})


# =============================================================================
# STEP TEMPLATES
# =============================================================================

CATEGORY_PRECEDENCE: Tuple[str, ...] = (
    "limitation",
    "compliance",
    "court",
    "protocol",
    "evidence",
    "expert",
    "investigation",
    "settlement",
    "case_management",
)


@dataclass(frozen=True)
class StepTemplate:
    category: str
    action: str
    description: str
    priority: Severity
    deadline_rule: Optional[str] = None
    templates: Tuple[str, ...] = ()
    when: Optional[str] = None  # key into STEP_CONDITIONS


def _step(category, action, description, priority, **kwargs) -> StepTemplate:
    return StepTemplate(category, action, description, priority, **kwargs)


C, H, M, L = Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW

_LITIGATION_STEPS: Dict[str, List[StepTemplate]] = {
    "intake": [
        _step("evidence", "Gather initial evidence",
              "Collect all relevant documents and correspondence", H),
        _step("evidence", "Identify the defendant",
              "Defendant/opponent not clearly identified - clarify before sending a letter of claim",
              M, when="defendant_unknown"),
        _step("protocol", "Draft letter of claim",
              "Prepare the pre-action protocol letter of claim", M,
              templates=("LETTER_OF_CLAIM",)),
    ],
    "pre_action": [
        _step("protocol", "Await response to letter of claim",
              "Diarise the protocol response period and chase on expiry", H,
              deadline_rule="pi-protocol-response"),
        _step("expert", "Instruct medical expert",
              "Obtain a medical report to support the claim", M,
              templates=("EXPERT_INSTRUCTION",)),
    ],
    "response": [
        _step("settlement", "Review defendant's response",
              "Consider admissions, denials and any offer made", H),
        _step("settlement", "Consider ADR",
              "Parties are expected to consider settlement before issuing", M,
              templates=("ADR_PROPOSAL",)),
        _step("court", "Prepare to issue proceedings",
              "Draft claim form and particulars of claim if the claim is not resolved", M,
              templates=("CLAIM_FORM", "PARTICULARS_OF_CLAIM")),
    ],
    "litigation": [
        _step("court", "Serve the claim form",
              "Claim form must be served within 4 months of issue", H,
              deadline_rule="cpr-service"),
        _step("court", "Monitor acknowledgment of service",
              "Request default judgment if no acknowledgment is filed", H,
              deadline_rule="cpr-acknowledgment"),
        _step("court", "Monitor defence deadline",
              "Consider default judgment if no defence is filed", H,
              deadline_rule="cpr-defence"),
        _step("evidence", "Prepare disclosure list",
              "CPR disclosure requirements", M),
    ],
    "trial": [
        _step("court", "Prepare trial bundle",
              "Agree and lodge the trial bundle", H,
              deadline_rule="trial-bundle", templates=("TRIAL_BUNDLE_INDEX",)),
        _step("evidence", "Confirm witness attendance",
              "Check witness availability for the trial window", M),
    ],
    "settlement": [
        _step("settlement", "Record settlement terms",
              "Confirm terms in writing and arrange payment or consent order", M,
              templates=("SETTLEMENT_AGREEMENT",)),
    ],
    "closed": [
        _step("case_management", "Archive file",
              "Confirm final costs and close the file", L),
    ],
}

STEP_TEMPLATES: Dict[PracticeArea, Dict[str, List[StepTemplate]]] = {
    PracticeArea.HOUSING_DISREPAIR: {
        "intake": [
            _step("protocol", "Send initial repair request letter",
                  "Formal request required to trigger landlord's duty under Section 11 LTA 1985", H,
                  templates=("REPAIR_REQUEST",)),
            _step("compliance", "Monitor Awaab's Law compliance (14-day investigation deadline)",
                  "Social landlords must investigate within 14 days under Awaab's Law", C,
                  deadline_rule="awaabs-investigation", when="social_landlord"),
            _step("compliance", "Flag Category 1 HHSRS hazards - immediate action required",
                  "Category 1 hazards require immediate action by landlord", C,
                  when="category_1_hazard"),
            _step("evidence", "Gather photographs and tenancy documents",
                  "Collect evidence of the defects and the tenancy terms", M),
        ],
        "investigation": [
            _step("investigation", "Monitor repair progress and landlord responses",
                  "Track compliance with Section 11 LTA duty and Awaab's Law (if applicable)", H,
                  deadline_rule="section11-reasonable-time"),
            _step("investigation", "Monitor repair progress and landlord responses",
                  "Vulnerable tenant - reasonable time for repair is shortened", H,
                  deadline_rule="section11-reasonable-time-vulnerable", when="vulnerable_tenant"),
            _step("compliance", "Monitor Awaab's Law work start",
                  "Work must start within 7 days of the investigation", C,
                  deadline_rule="awaabs-work-start", when="social_landlord"),
            _step("compliance", "Flag Category 1 HHSRS hazards - immediate action required",
                  "Category 1 hazards require immediate action by landlord", C,
                  when="category_1_hazard"),
            _step("investigation", "Investigate no-access pattern - may indicate bad faith",
                  "Repeated no-access claims by the landlord", H,
                  when="no_access_pattern"),
            _step("investigation", "Consider escalation - multiple failed repair attempts",
                  "Multiple failed repairs may indicate breach of duty", M,
                  when="repeated_failed_repairs"),
            _step("protocol", "Prepare pre-action protocol letter",
                  "Required before commencing proceedings", M,
                  templates=("LETTER_OF_CLAIM", "DISCLOSURE_REQUEST")),
        ],
        "pre_action": [
            _step("protocol", "Await landlord's response to letter of claim",
                  "Landlord must respond within 20 working days", H,
                  deadline_rule="housing-protocol-response"),
            _step("expert", "Arrange joint expert inspection",
                  "Expert inspection follows the landlord's response", M,
                  deadline_rule="housing-expert-inspection", templates=("EXPERT_INSTRUCTION",)),
            _step("protocol", "Chase schedule of works",
                  "Works identified at inspection must be carried out", M,
                  deadline_rule="housing-repair-after-inspection"),
            _step("settlement", "Consider ADR/mediation",
                  "Pre-action protocol encourages ADR before litigation", M,
                  templates=("ADR_PROPOSAL",)),
        ],
        "litigation": [
            _step("court", "Serve the claim form",
                  "Claim form must be served within 4 months of issue", H,
                  deadline_rule="cpr-service"),
            _step("court", "Monitor defence deadline",
                  "Consider default judgment if no defence is filed", H,
                  deadline_rule="cpr-defence"),
            _step("evidence", "Prepare disclosure list", "CPR disclosure requirements", H),
            _step("expert", "Consider expert evidence (surveyor, medical if applicable)",
                  "Expert evidence may be required for quantum and causation", M),
        ],
        "settlement": _LITIGATION_STEPS["settlement"],
        "closed": _LITIGATION_STEPS["closed"],
    },
    PracticeArea.PERSONAL_INJURY: _LITIGATION_STEPS,
    PracticeArea.OTHER_LITIGATION: {
        **_LITIGATION_STEPS,
        "pre_action": [
            _step("protocol", "Await response to letter before claim",
                  "Diarise the reasonable response period and chase on expiry", H,
                  deadline_rule="general-protocol-response"),
        ],
    },
    PracticeArea.CLINICAL_NEGLIGENCE: {
        "intake": [
            _step("evidence", "Request medical records",
                  "Request copy records from every treating provider", H,
                  templates=("RECORDS_REQUEST",)),
            _step("evidence", "Identify the defendant",
                  "Defendant/opponent not clearly identified - clarify before sending a letter of claim",
                  M, when="defendant_unknown"),
        ],
        "records_requested": [
            _step("evidence", "Chase medical records",
                  "Provider should supply records within 40 days", H,
                  deadline_rule="clin-neg-records"),
        ],
        "expert_review": [
            _step("expert", "Obtain breach and causation report",
                  "Expert review of records before a letter of claim", H,
                  deadline_rule="medical-report-chase", templates=("EXPERT_INSTRUCTION",)),
            _step("protocol", "Draft letter of claim",
                  "Prepare the letter of claim once expert support is confirmed", M,
                  templates=("LETTER_OF_CLAIM",)),
        ],
        "pre_action": [
            _step("protocol", "Await letter of response",
                  "Defendant has 4 months to provide a reasoned response", H,
                  deadline_rule="clin-neg-protocol-response"),
        ],
        "response": _LITIGATION_STEPS["response"],
        "litigation": _LITIGATION_STEPS["litigation"],
        "settlement": _LITIGATION_STEPS["settlement"],
        "closed": _LITIGATION_STEPS["closed"],
    },
    PracticeArea.FAMILY: {
        "intake": [
            _step("settlement", "Arrange MIAM",
                  "Attend a mediation information and assessment meeting before applying", H),
            _step("evidence", "Gather financial and welfare documents",
                  "Collect documents relevant to the application", M),
        ],
        "mediation": [
            _step("court", "Prepare application",
                  "Complete the application if mediation does not resolve matters", H,
                  templates=("C100",)),
        ],
        "proceedings": [
            _step("court", "Prepare for first hearing",
                  "First hearing ordinarily listed within 4 weeks of issue", H,
                  deadline_rule="family-first-hearing"),
        ],
        "hearing": [
            _step("court", "Prepare hearing bundle",
                  "Agree the bundle and position statement for the hearing", H),
        ],
        "closed": _LITIGATION_STEPS["closed"],
    },
}


def _social_landlord(facts: CaseFacts) -> bool:
    return bool(facts.housing and facts.housing.is_social_landlord)


def _category_1_hazard(facts: CaseFacts) -> bool:
    return bool(facts.housing and facts.housing.has_category_1_hazard)


def _no_access_pattern(facts: CaseFacts) -> bool:
    days = facts.housing.no_access_days if facts.housing else None
    return days is not None and days > NO_ACCESS_PATTERN_DAYS


def _repeated_failed_repairs(facts: CaseFacts) -> bool:
    attempts = facts.housing.repair_attempts if facts.housing else None
    return (
        attempts is not None
        and attempts > REPEATED_REPAIR_ATTEMPTS
        and not facts.has_event(EventType.REPAIR_WORK_COMPLETED)
    )


STEP_CONDITIONS: Dict[str, Callable[[CaseFacts], bool]] = {
    "social_landlord": _social_landlord,
    "category_1_hazard": _category_1_hazard,
    "no_access_pattern": _no_access_pattern,
    "repeated_failed_repairs": _repeated_failed_repairs,
    "vulnerable_tenant": lambda facts: bool(facts.vulnerability_markers),
    "defendant_unknown": lambda facts: not facts.has_known_defendant,
}


# =============================================================================
# STAGE ASSESSMENT
# =============================================================================

def _reached_stages(facts: CaseFacts) -> Dict[str, Tuple[StageDefinition, Optional[CaseEvent]]]:
    """stage -> (definition, milestone event) for every reached stage."""
    ladder = STAGE_LADDERS[facts.practice_area]
    by_name = {s.stage: s for s in ladder}
    reached: Dict[str, Tuple[StageDefinition, Optional[CaseEvent]]] = {}

    # A predecessor always has a lower order, so one ordered pass suffices.
    for definition in sorted(ladder, key=lambda s: s.order):
        if definition.after is None:
            reached[definition.stage] = (definition, None)
            continue
        if definition.after not in by_name or definition.after not in reached:
            continue
        _, predecessor_event = reached[definition.after]
        floor = predecessor_event.event_date if predecessor_event else None
        event = facts.first_event(*definition.requires_any, on_or_after=floor)
        if event is not None:
            reached[definition.stage] = (definition, event)
    return reached


def assess_stage(facts: CaseFacts) -> StageAssessment:
    """Current stage, the milestones found, and how confident the call is."""
    reached = _reached_stages(facts)
    current, milestone = max(reached.values(), key=lambda pair: pair[0].order)

    indicators = [
        f"{definition.stage}: {event.event_type} on {iso_date(event.event_date)}"
        for definition, event in sorted(reached.values(), key=lambda pair: pair[0].order)
        if event is not None
    ]
    if facts.dropped_events:
        indicators.append(f"{facts.dropped_events} timeline event(s) dropped as unparseable")

    if not facts.events:
        confidence = Confidence.LOW
        indicators.append("No dated timeline events")
    elif milestone is not None and facts.parties:
        confidence = Confidence.HIGH
    else:
        confidence = Confidence.MEDIUM

    return StageAssessment(
        stage=current.stage,
        confidence=confidence,
        indicators=tuple(indicators),
        reached=tuple(d.stage for d, _ in sorted(reached.values(), key=lambda pair: pair[0].order)),
    )


# =============================================================================
# GUIDANCE
# =============================================================================

def _escalate(priority: Severity, deadline: Optional[Deadline]) -> Severity:
    if deadline is None:
        return priority
    if deadline.status is DeadlineStatus.MISSED:
        return Severity.CRITICAL
    if deadline.status is DeadlineStatus.AT_RISK:
        return most_severe([priority, Severity.HIGH])
    return priority


def _category_rank(category: str) -> int:
    try:
        return CATEGORY_PRECEDENCE.index(category)
    except ValueError:
        return len(CATEGORY_PRECEDENCE)


def step_sort_key(step: GuidanceStep):
    due = step.deadline.due_date if step.deadline else None
    return (
        severity_rank(step.priority),
        due is None,
        due or date.max,
        _category_rank(step.category),
        step.action,
    )


def _limitation_step(
    facts: CaseFacts,
    today: date,
    deadlines_by_rule: Dict[str, Deadline],
    warning_days: int,
) -> Optional[GuidanceStep]:
    if facts.limitation_date is None:
        return None
    if facts.has_event(EventType.PROCEEDINGS_ISSUED, EventType.APPLICATION_ISSUED):
        return None
    days_remaining = (facts.limitation_date - today).days
    if days_remaining > warning_days:
        return None

    if days_remaining < 0:
        action = "Limitation period has expired - consider s.33 discretion or other remedies"
    else:
        action = "URGENT: Limitation period expiring - issue proceedings or seek extension"
    priority = Severity.CRITICAL if days_remaining < LIMITATION_CRITICAL_DAYS else Severity.HIGH
    deadline = deadlines_by_rule.get("limitation-period")
    return GuidanceStep(
        category="limitation",
        action=action,
        description=f"Limitation date: {iso_date(facts.limitation_date)}",
        priority=_escalate(priority, deadline),
        deadline=deadline,
        templates=("STANDSTILL_AGREEMENT",) if days_remaining >= 0 else (),
    )


def build_next_steps(
    facts: CaseFacts,
    stage: str,
    deadlines: Iterable[Deadline],
    now: Union[date, datetime],
    limitation_warning_days: int = DEFAULT_LIMITATION_WARNING_DAYS,
) -> List[GuidanceStep]:
    """Ordered next actions for a case already placed at `stage`."""
    today = as_of_date(now)
    deadlines_by_rule = {d.rule_id: d for d in deadlines}
    steps: List[GuidanceStep] = []
    seen = set()

    for template in STEP_TEMPLATES[facts.practice_area].get(stage, []):
        if template.when is not None and not STEP_CONDITIONS[template.when](facts):
            continue
        deadline = deadlines_by_rule.get(template.deadline_rule) if template.deadline_rule else None
        step = GuidanceStep(
            category=template.category,
            action=template.action,
            description=template.description,
            priority=_escalate(template.priority, deadline),
            deadline=deadline,
            templates=template.templates,
        )
        # Variants of one action (e.g. the vulnerable-tenant repair window)
        # keep whichever carries a live deadline.
        if template.action in seen:
            existing = next(s for s in steps if s.action == template.action)
            if existing.deadline is None:
                steps[steps.index(existing)] = step
            continue
        seen.add(template.action)
        steps.append(step)

    if stage not in TERMINAL_STAGES:
        limitation = _limitation_step(facts, today, deadlines_by_rule, limitation_warning_days)
        if limitation is not None:
            steps.append(limitation)

    return sorted(steps, key=step_sort_key)


def generate_guidance(
    facts: CaseFacts,
    timeline_events: Optional[Iterable[Any]] = (),
    practice_area: Optional[Union[PracticeArea, str]] = None,
    now: Union[date, datetime, None] = None,
    *,
    calendar: Optional[BusinessCalendar] = None,
    deadlines: Optional[List[Deadline]] = None,
    rule_set: Optional[DeadlineRuleSet] = None,
    at_risk_window: int = DEFAULT_AT_RISK_WINDOW,
    limitation_warning_days: int = DEFAULT_LIMITATION_WARNING_DAYS,
) -> Guidance:
    """
    Stage assessment plus ordered next steps.

    timeline_events are merged into the snapshot (CaseEvent values or raw
    event dicts; unusable items are dropped); practice_area overrides
    the snapshot's own. Deadlines are taken as given when supplied,
    otherwise derived with `calendar`.
    """
    if now is None:
        raise InvalidInput("An evaluation instant is required")
    if practice_area is not None and practice_area != facts.practice_area.value:
        facts = replace(facts, practice_area=practice_area)
    if timeline_events:
        facts = facts.with_events(timeline_events)

    if deadlines is None:
        if calendar is None:
            raise InvalidInput("A business calendar is required to derive deadlines")
        deadlines = calculate_case_deadlines(facts, calendar, now, rule_set, at_risk_window)

    assessment = assess_stage(facts)
    steps = build_next_steps(facts, assessment.stage, deadlines, now, limitation_warning_days)
    return Guidance(
        practice_area=facts.practice_area.value,
        stage=assessment.stage,
        confidence=assessment.confidence,
        indicators=assessment.indicators,
        next_steps=tuple(steps),
    )
