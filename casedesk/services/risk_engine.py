"""
Risk Engine

Raises discrete, severity-tagged risk flags from a case snapshot and rolls
them up into a low / medium / high risk level.

Detected conditions:
- Limitation: missing, expired, imminent (30 days), within six months
- Medical report overdue
- No response to outgoing correspondence for N working days
- High or critical hazard with no repair attempt logged
- Missed deadlines (critical) and at-risk deadlines (high)
- Case stalled at intake beyond the threshold
- Hearing or trial listed within the warning window

flag_id is `case_id:flag_type[:ref]`, stable for the same condition, so a
persistence layer can de-duplicate. The engine reports only what holds
at `now`; it never remembers earlier flags.
"""

from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Optional, Dict, Any, List, Union, Iterable

from casedesk.core.errors import InvalidInput
from casedesk.core.utc import as_of_date, iso_date, to_utc
from casedesk.models.case_facts import CaseFacts, EventType, PracticeArea
from casedesk.models.derived import Deadline, DeadlineStatus, RiskAssessment, RiskFlag
from casedesk.models.severity import Severity, severity_rank
from casedesk.services.business_calendar import BusinessCalendar
from casedesk.services.priority_scorer import effective_hazard_severity, medical_report_overdue
from casedesk.services.stage_classifier import assess_stage


@dataclass(frozen=True)
class RiskThresholds:
    limitation_critical_days: int = 30
    limitation_high_days: int = 180
    correspondence_gap_days: int = 20  # working days
    stalled_intake_days: int = 90
    hearing_warning_days: int = 14


# Practice areas where a missing limitation date is itself a risk.
LIMITATION_AREAS = frozenset({
    PracticeArea.HOUSING_DISREPAIR,
    PracticeArea.PERSONAL_INJURY,
    PracticeArea.CLINICAL_NEGLIGENCE,
    PracticeArea.OTHER_LITIGATION,
})

SERIOUS_HAZARD_LEVELS = frozenset({"high", "critical"})


def _detected_at(now: Union[date, datetime]) -> datetime:
    if isinstance(now, datetime):
        return to_utc(now)
    return to_utc(datetime.combine(now, time.min))


class _FlagBuilder:
    """Collects flags for one case with a shared timestamp and trigger."""

    def __init__(self, facts: CaseFacts, detected_at: datetime, trigger: Optional[str]):
        self.facts = facts
        self.detected_at = detected_at
        self.trigger = trigger
        self.flags: Dict[str, RiskFlag] = {}

    def add(
        self,
        flag_type: str,
        severity: Severity,
        description: str,
        ref: Optional[str] = None,
        **metadata: Any,
    ) -> None:
        parts = [self.facts.case_id, flag_type]
        if ref:
            parts.append(ref)
        flag_id = ":".join(parts)
        self.flags[flag_id] = RiskFlag(
            flag_id=flag_id,
            case_id=self.facts.case_id,
            flag_type=flag_type,
            severity=severity,
            description=description,
            detected_at=self.detected_at,
            trigger=self.trigger,
            metadata=metadata,
        )

    def sorted(self) -> List[RiskFlag]:
        return sorted(self.flags.values(), key=lambda f: (severity_rank(f.severity), f.flag_id))


# =============================================================================
# CHECKS
# =============================================================================

def _check_limitation(b: _FlagBuilder, today: date, t: RiskThresholds) -> None:
    facts = b.facts
    if facts.has_event(EventType.PROCEEDINGS_ISSUED, EventType.APPLICATION_ISSUED):
        return
    if facts.limitation_date is None:
        if facts.practice_area in LIMITATION_AREAS:
            b.add(
                "limitation_missing",
                Severity.MEDIUM,
                "Limitation date not recorded - limitation period assessment required",
            )
        return

    days = (facts.limitation_date - today).days
    limitation = iso_date(facts.limitation_date)
    if days < 0:
        b.add("limitation_expired", Severity.CRITICAL,
              f"Limitation period expired on {limitation}",
              limitation_date=limitation, days_remaining=days)
    elif days <= t.limitation_critical_days:
        b.add("limitation_imminent", Severity.CRITICAL,
              f"Limitation period expires in {days} days - issue proceedings immediately or seek extension",
              limitation_date=limitation, days_remaining=days)
    elif days <= t.limitation_high_days:
        b.add("limitation_approaching", Severity.HIGH,
              f"Limitation period expires in {days} days",
              limitation_date=limitation, days_remaining=days)


def _check_medical_report(b: _FlagBuilder, today: date) -> None:
    if medical_report_overdue(b.facts, today):
        due = b.facts.personal_injury.medical_report_due
        b.add("medical_report_overdue", Severity.HIGH,
              "Medical report is overdue - chase the expert",
              due_date=iso_date(due))


def _check_correspondence(
    b: _FlagBuilder,
    today: date,
    t: RiskThresholds,
    calendar: BusinessCalendar,
) -> None:
    outgoing = b.facts.last_unanswered_outgoing()
    if outgoing is None:
        return
    gap = calendar.working_days_between(outgoing.event_date, today)
    if gap > t.correspondence_gap_days:
        b.add("no_response", Severity.HIGH,
              f"No response for {gap} working days to {outgoing.event_type.replace('_', ' ')}",
              ref=iso_date(outgoing.event_date),
              sent=iso_date(outgoing.event_date), working_days=gap)


def _check_hazard(b: _FlagBuilder) -> None:
    housing = b.facts.housing
    if housing is None:
        return
    level = effective_hazard_severity(b.facts)
    if level not in SERIOUS_HAZARD_LEVELS:
        return
    repairs_logged = (housing.repair_attempts or 0) > 0 or b.facts.has_event(
        EventType.REPAIR_WORK_STARTED, EventType.REPAIR_WORK_COMPLETED
    )
    if repairs_logged:
        return
    severity = Severity.CRITICAL if level == "critical" else Severity.HIGH
    b.add("hazard_unrepaired", severity,
          f"{level.capitalize()} hazard with no repair attempt logged",
          hazard_severity=level)


def _check_deadlines(b: _FlagBuilder, deadlines: Iterable[Deadline]) -> None:
    for d in deadlines:
        if d.status is DeadlineStatus.MISSED:
            b.add("deadline_missed", Severity.CRITICAL,
                  f"{d.name} was due on {iso_date(d.due_date)}",
                  ref=d.rule_id, rule_id=d.rule_id, due_date=iso_date(d.due_date),
                  citation=d.citation)
        elif d.status is DeadlineStatus.AT_RISK:
            b.add("deadline_at_risk", Severity.HIGH,
                  f"{d.name} is due on {iso_date(d.due_date)} "
                  f"({d.working_days_remaining} working days remaining)",
                  ref=d.rule_id, rule_id=d.rule_id, due_date=iso_date(d.due_date),
                  citation=d.citation)


def _check_stalled(b: _FlagBuilder, today: date, t: RiskThresholds) -> None:
    if not b.facts.events:
        return
    if assess_stage(b.facts).stage != "intake":
        return
    opened = b.facts.events[0].event_date
    age = (today - opened).days
    if age > t.stalled_intake_days:
        b.add("stalled_at_intake", Severity.MEDIUM,
              f"Case has not progressed beyond intake in {age} days",
              first_event=iso_date(opened), days=age)


def _check_hearings(b: _FlagBuilder, today: date, t: RiskThresholds) -> None:
    for event in b.facts.events_of(EventType.HEARING_LISTED, EventType.TRIAL_LISTED):
        days = (event.event_date - today).days
        if 0 <= days <= t.hearing_warning_days:
            kind = "Trial" if event.event_type == EventType.TRIAL_LISTED.value else "Hearing"
            b.add("hearing_imminent", Severity.MEDIUM,
                  f"{kind} on {iso_date(event.event_date)} in {days} days",
                  ref=iso_date(event.event_date),
                  event_type=event.event_type, days=days)


# =============================================================================
# PUBLIC API
# =============================================================================

def evaluate_risks(
    facts: CaseFacts,
    trigger: Optional[str] = None,
    now: Union[date, datetime, None] = None,
    deadlines: Iterable[Deadline] = (),
    thresholds: Optional[RiskThresholds] = None,
    calendar: Optional[BusinessCalendar] = None,
) -> List[RiskFlag]:
    """
    Every risk condition that holds at `now`, most severe first.

    `deadlines` should already carry their status for the same instant.
    Without a calendar, correspondence gaps count weekdays only.
    """
    if now is None:
        raise InvalidInput("An evaluation instant is required")
    t = thresholds or RiskThresholds()
    calendar = calendar or BusinessCalendar()
    today = as_of_date(now)
    builder = _FlagBuilder(facts, _detected_at(now), trigger)

    _check_limitation(builder, today, t)
    _check_medical_report(builder, today)
    _check_correspondence(builder, today, t, calendar)
    _check_hazard(builder)
    _check_deadlines(builder, deadlines)
    _check_stalled(builder, today, t)
    _check_hearings(builder, today, t)
    return builder.sorted()


def assess_risk_level(flags: Iterable[RiskFlag]) -> RiskAssessment:
    """
    Roll flags up to low / medium / high.

    A critical flag makes the case high risk; a high or medium flag makes
    it medium.
    """
    flags = list(flags)
    severities = {f.severity for f in flags}

    if Severity.CRITICAL in severities:
        level = "high"
    elif severities & {Severity.HIGH, Severity.MEDIUM}:
        level = "medium"
    else:
        level = "low"

    ranked = sorted(flags, key=lambda f: (severity_rank(f.severity), f.flag_id))
    reasons = tuple(dict.fromkeys(f.description for f in ranked))
    return RiskAssessment(level=level, reasons=reasons)
