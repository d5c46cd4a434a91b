"""
Deadline Rule Set

Derives statutory and procedural deadlines from a case's anchor events.

Every (trigger -> offset, citation) mapping lives in DEFAULT_DEADLINE_RULES
and CITATIONS below. The traversal in calculate_case_deadlines() only
applies the table; no offset appears in control flow. A JSON file can
replace, add or disable rules by rule_id without touching code.

Rules:
- A missing anchor omits the deadline. Nothing is anchored at "now".
- A rule whose satisfied_by event exists on or after the anchor has
  been discharged and is omitted.
- Status (computed / at_risk / missed) is derived from an explicit
  evaluation instant every time; it is never stored.
- calendar_days is display only. Business days stay authoritative.
"""

import json
import logging
from dataclasses import dataclass, replace
from datetime import date, datetime
from pathlib import Path
from typing import Optional, Dict, Any, List, Tuple, Union, Callable

from casedesk.core.errors import ComputationError, InvalidInput
from casedesk.core.utc import as_of_date
from casedesk.models.case_facts import CaseFacts, EventType, PracticeArea
from casedesk.models.derived import Deadline, DeadlineMethod, DeadlineStatus
from casedesk.services.business_calendar import BusinessCalendar

logger = logging.getLogger(__name__)

DEFAULT_AT_RISK_WINDOW = 3  # working days

ALL_AREAS = tuple(p.value for p in PracticeArea)
LITIGATION_AREAS = (
    PracticeArea.HOUSING_DISREPAIR.value,
    PracticeArea.PERSONAL_INJURY.value,
    PracticeArea.CLINICAL_NEGLIGENCE.value,
    PracticeArea.OTHER_LITIGATION.value,
)

# Anchors prefixed with "fact:" read a CaseFacts attribute instead of an event.
FACT_ANCHOR_PREFIX = "fact:"


# =============================================================================
# CITATIONS
# =============================================================================

CITATIONS: Dict[str, str] = {
    "awaabs_law_investigation": "Awaab's Law (Landlord and Tenant Act 1985, s.10A) - investigation period",
    "awaabs_law_works": "Awaab's Law (Landlord and Tenant Act 1985, s.10A) - safety works period",
    "lta_1985_s11": "Landlord and Tenant Act 1985, s.11 - repair within a reasonable time",
    "pap_housing_response": "Pre-Action Protocol for Housing Conditions Claims (England), para 6.3",
    "pap_housing_expert": "Pre-Action Protocol for Housing Conditions Claims (England), para 7.3 - expert inspection",
    "pap_housing_works": "Pre-Action Protocol for Housing Conditions Claims (England), para 6.3(c) - schedule of works",
    "pap_pi_response": "Pre-Action Protocol for Personal Injury Claims, para 5.1",
    "pap_pi_experts": "Pre-Action Protocol for Personal Injury Claims, section 7",
    "pap_clin_neg_records": "Pre-Action Protocol for the Resolution of Clinical Disputes, para 3.12",
    "pap_clin_neg_response": "Pre-Action Protocol for the Resolution of Clinical Disputes, para 3.25",
    "pd_pre_action_conduct": "Practice Direction - Pre-Action Conduct and Protocols, para 6(b)",
    "cpr_7_5": "CPR 7.5 - service of the claim form",
    "cpr_10_3": "CPR 10.3 - acknowledgment of service",
    "cpr_15_4": "CPR 15.4 - period for filing a defence",
    "pd_32_27": "PD 32, para 27 - trial bundle",
    "fpr_pd_12b": "FPR 2010, PD 12B - first hearing dispute resolution appointment",
    "limitation_act_1980": "Limitation Act 1980",
}


# =============================================================================
# RULE TABLE
# =============================================================================

@dataclass(frozen=True)
class DeadlineRule:
    """One trigger -> offset mapping."""
    rule_id: str
    name: str
    anchor: Tuple[str, ...]           # event types, or a single "fact:<attr>"
    days: int
    method: DeadlineMethod
    citation_key: str
    practice_areas: Tuple[str, ...] = ALL_AREAS
    satisfied_by: Tuple[str, ...] = ()
    applies_when: Optional[str] = None  # key into RULE_CONDITIONS
    direction: str = "after"            # "after" the anchor, or "before" it
    description: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeadlineRule":
        try:
            anchor = data["anchor"]
            return cls(
                rule_id=str(data["rule_id"]),
                name=str(data.get("name") or data["rule_id"]),
                anchor=tuple(anchor) if isinstance(anchor, (list, tuple)) else (str(anchor),),
                days=int(data["days"]),
                method=DeadlineMethod(data.get("method", DeadlineMethod.BUSINESS_DAYS)),
                citation_key=str(data["citation_key"]),
                practice_areas=tuple(data.get("practice_areas") or ALL_AREAS),
                satisfied_by=tuple(data.get("satisfied_by") or ()),
                applies_when=data.get("applies_when"),
                direction=str(data.get("direction", "after")),
                description=str(data.get("description", "")),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ComputationError("Malformed deadline rule", rule=data, error=str(e))


def _rule(rule_id, name, anchor, days, method, citation_key, **kwargs) -> DeadlineRule:
    anchor = anchor if isinstance(anchor, tuple) else (anchor,)
    return DeadlineRule(
        rule_id=rule_id,
        name=name,
        anchor=tuple(a.value if isinstance(a, EventType) else a for a in anchor),
        days=days,
        method=method,
        citation_key=citation_key,
        satisfied_by=tuple(
            s.value if isinstance(s, EventType) else s for s in kwargs.pop("satisfied_by", ())
        ),
        **kwargs,
    )


BUSINESS = DeadlineMethod.BUSINESS_DAYS
CALENDAR = DeadlineMethod.CALENDAR_DAYS
HOUSING = (PracticeArea.HOUSING_DISREPAIR.value,)

DEFAULT_DEADLINE_RULES: Tuple[DeadlineRule, ...] = (
    # Housing disrepair
    _rule(
        "awaabs-investigation", "Awaab's Law - Investigation Deadline",
        EventType.DEFECT_REPORTED, 14, CALENDAR, "awaabs_law_investigation",
        practice_areas=HOUSING,
        satisfied_by=(EventType.INSPECTION_COMPLETED,),
        applies_when="social_landlord",
        description="Social landlord must investigate within 14 days of first report",
    ),
    _rule(
        "awaabs-work-start", "Awaab's Law - Work Start Deadline",
        EventType.INSPECTION_COMPLETED, 7, CALENDAR, "awaabs_law_works",
        practice_areas=HOUSING,
        satisfied_by=(EventType.REPAIR_WORK_STARTED, EventType.REPAIR_WORK_COMPLETED),
        applies_when="social_landlord",
        description="Work must start within 7 days of investigation",
    ),
    _rule(
        "section11-reasonable-time", "Section 11 LTA - Reasonable Time",
        EventType.DEFECT_REPORTED, 28, CALENDAR, "lta_1985_s11",
        practice_areas=HOUSING,
        satisfied_by=(EventType.REPAIR_WORK_COMPLETED,),
        applies_when="tenant_not_vulnerable",
        description="Landlord must complete repairs within 28 days",
    ),
    _rule(
        "section11-reasonable-time-vulnerable", "Section 11 LTA - Reasonable Time (vulnerable tenant)",
        EventType.DEFECT_REPORTED, 14, CALENDAR, "lta_1985_s11",
        practice_areas=HOUSING,
        satisfied_by=(EventType.REPAIR_WORK_COMPLETED,),
        applies_when="tenant_vulnerable",
        description="Landlord must complete repairs within 14 days (vulnerable tenant)",
    ),
    _rule(
        "housing-protocol-response", "Landlord Response to Letter of Claim",
        EventType.LETTER_OF_CLAIM_SENT, 20, BUSINESS, "pap_housing_response",
        practice_areas=HOUSING,
        satisfied_by=(EventType.LANDLORD_RESPONSE_RECEIVED, EventType.DEFENDANT_RESPONSE_RECEIVED),
        description="Landlord must respond to the letter of claim within 20 working days",
    ),
    _rule(
        "housing-expert-inspection", "Joint Expert Inspection",
        EventType.LANDLORD_RESPONSE_RECEIVED, 20, BUSINESS, "pap_housing_expert",
        practice_areas=HOUSING,
        satisfied_by=(EventType.INSPECTION_COMPLETED,),
        description="Expert inspection to take place within 20 working days of the landlord's response",
    ),
    _rule(
        "housing-repair-after-inspection", "Schedule of Works After Inspection",
        EventType.INSPECTION_COMPLETED, 20, BUSINESS, "pap_housing_works",
        practice_areas=HOUSING,
        satisfied_by=(EventType.REPAIR_WORK_COMPLETED,),
        description="Works identified at inspection to be carried out within 20 working days",
    ),
    # Personal injury / clinical negligence / general
    _rule(
        "pi-protocol-response", "Defendant Response to Letter of Claim",
        EventType.LETTER_OF_CLAIM_SENT, 21, CALENDAR, "pap_pi_response",
        practice_areas=(PracticeArea.PERSONAL_INJURY.value,),
        satisfied_by=(EventType.DEFENDANT_RESPONSE_RECEIVED,),
        description="Defendant must acknowledge the letter of claim within 21 days",
    ),
    _rule(
        "medical-report-chase", "Medical Report Due",
        EventType.MEDICAL_REPORT_REQUESTED, 42, CALENDAR, "pap_pi_experts",
        practice_areas=(PracticeArea.PERSONAL_INJURY.value, PracticeArea.CLINICAL_NEGLIGENCE.value),
        satisfied_by=(EventType.MEDICAL_REPORT_RECEIVED,),
        description="Chase the medical expert if the report is not received within 6 weeks",
    ),
    _rule(
        "clin-neg-records", "Medical Records Disclosure",
        EventType.MEDICAL_RECORDS_REQUESTED, 40, CALENDAR, "pap_clin_neg_records",
        practice_areas=(PracticeArea.CLINICAL_NEGLIGENCE.value,),
        satisfied_by=(EventType.MEDICAL_RECORDS_RECEIVED,),
        description="Healthcare provider should supply copy records within 40 days",
    ),
    _rule(
        "clin-neg-protocol-response", "Letter of Response Due",
        EventType.LETTER_OF_CLAIM_SENT, 120, CALENDAR, "pap_clin_neg_response",
        practice_areas=(PracticeArea.CLINICAL_NEGLIGENCE.value,),
        satisfied_by=(EventType.DEFENDANT_RESPONSE_RECEIVED,),
        description="Defendant should provide a reasoned letter of response within 4 months",
    ),
    _rule(
        "general-protocol-response", "Response to Letter Before Claim",
        EventType.LETTER_OF_CLAIM_SENT, 14, CALENDAR, "pd_pre_action_conduct",
        practice_areas=(PracticeArea.OTHER_LITIGATION.value,),
        satisfied_by=(EventType.DEFENDANT_RESPONSE_RECEIVED,),
        description="Reasonable period for a response in a straightforward case",
    ),
    # Court
    _rule(
        "cpr-service", "Serve Claim Form",
        EventType.PROCEEDINGS_ISSUED, 120, CALENDAR, "cpr_7_5",
        practice_areas=LITIGATION_AREAS,
        satisfied_by=(EventType.CLAIM_SERVED,),
        description="Claim form must be served within 4 months of issue",
    ),
    _rule(
        "cpr-acknowledgment", "Acknowledgment of Service Due",
        EventType.CLAIM_SERVED, 14, CALENDAR, "cpr_10_3",
        practice_areas=LITIGATION_AREAS,
        satisfied_by=(EventType.ACKNOWLEDGMENT_OF_SERVICE, EventType.DEFENCE_FILED),
        description="Defendant must acknowledge service within 14 days",
    ),
    _rule(
        "cpr-defence", "Defence Due",
        EventType.CLAIM_SERVED, 28, CALENDAR, "cpr_15_4",
        practice_areas=LITIGATION_AREAS,
        satisfied_by=(EventType.DEFENCE_FILED,),
        description="Defence must be filed within 28 days of service",
    ),
    _rule(
        "trial-bundle", "Trial Bundle",
        EventType.TRIAL_LISTED, 21, CALENDAR, "pd_32_27",
        practice_areas=LITIGATION_AREAS,
        direction="before",
        description="Trial bundle must be prepared and agreed 3 weeks before trial",
    ),
    # Family
    _rule(
        "family-first-hearing", "First Hearing (FHDRA)",
        EventType.APPLICATION_ISSUED, 28, CALENDAR, "fpr_pd_12b",
        practice_areas=(PracticeArea.FAMILY.value,),
        satisfied_by=(EventType.HEARING_LISTED,),
        description="First hearing ordinarily listed within 4 weeks of issue",
    ),
    # Any practice area
    _rule(
        "limitation-period", "Limitation Period",
        FACT_ANCHOR_PREFIX + "limitation_date", 0, CALENDAR, "limitation_act_1980",
        satisfied_by=(EventType.PROCEEDINGS_ISSUED, EventType.APPLICATION_ISSUED),
        description="Last day to issue proceedings",
    ),
)


# =============================================================================
# RULE CONDITIONS
# =============================================================================

def _is_social_landlord(facts: CaseFacts) -> bool:
    return bool(facts.housing and facts.housing.is_social_landlord)


def _is_vulnerable(facts: CaseFacts) -> bool:
    return bool(facts.vulnerability_markers)


RULE_CONDITIONS: Dict[str, Callable[[CaseFacts], bool]] = {
    "social_landlord": _is_social_landlord,
    "tenant_vulnerable": _is_vulnerable,
    "tenant_not_vulnerable": lambda facts: not _is_vulnerable(facts),
}


# =============================================================================
# RULE SET
# =============================================================================

class DeadlineRuleSet:
    """
    A validated, immutable collection of rules and citations.

    Validation runs at construction: a rule naming an unknown citation
    key or an unknown condition is a configuration defect.
    """

    def __init__(
        self,
        rules: Tuple[DeadlineRule, ...] = DEFAULT_DEADLINE_RULES,
        citations: Optional[Dict[str, str]] = None,
    ):
        self._citations = dict(CITATIONS if citations is None else citations)
        self._rules: Dict[str, DeadlineRule] = {}
        for rule in rules:
            self._validate(rule)
            self._rules[rule.rule_id] = rule

    def _validate(self, rule: DeadlineRule) -> None:
        if rule.citation_key not in self._citations:
            raise ComputationError(
                f"Rule {rule.rule_id} references unknown citation key {rule.citation_key}",
                rule_id=rule.rule_id,
            )
        if rule.applies_when is not None and rule.applies_when not in RULE_CONDITIONS:
            raise ComputationError(
                f"Rule {rule.rule_id} references unknown condition {rule.applies_when}",
                rule_id=rule.rule_id,
            )
        if rule.days < 0:
            raise ComputationError(f"Rule {rule.rule_id} has a negative day count", rule_id=rule.rule_id)
        if rule.direction not in ("after", "before"):
            raise ComputationError(f"Rule {rule.rule_id} has unknown direction", rule_id=rule.rule_id)
        if not rule.anchor:
            raise ComputationError(f"Rule {rule.rule_id} has no anchor", rule_id=rule.rule_id)

    def __contains__(self, rule_id: str) -> bool:
        return rule_id in self._rules

    def __iter__(self):
        return iter(self._rules.values())

    def __len__(self) -> int:
        return len(self._rules)

    def get(self, rule_id: str) -> DeadlineRule:
        try:
            return self._rules[rule_id]
        except KeyError:
            raise ComputationError(f"Unknown deadline rule: {rule_id}", rule_id=rule_id)

    def citation(self, rule: DeadlineRule) -> str:
        return self._citations[rule.citation_key]

    def for_practice_area(self, practice_area: Union[PracticeArea, str]) -> List[DeadlineRule]:
        area = PracticeArea(practice_area).value
        return [r for r in self._rules.values() if area in r.practice_areas]

    def with_overrides(self, overrides: Dict[str, Any]) -> "DeadlineRuleSet":
        """
        New rule set with JSON overrides applied.

        Format: {"citations": {key: text}, "rules": [rule, ...]}.
        A rule with "disabled": true removes that rule_id.
        """
        citations = dict(self._citations)
        citations.update(overrides.get("citations") or {})
        rules = dict(self._rules)
        for raw in overrides.get("rules") or []:
            if raw.get("disabled"):
                rules.pop(str(raw.get("rule_id")), None)
                continue
            rule = DeadlineRule.from_dict(raw)
            rules[rule.rule_id] = rule
        return DeadlineRuleSet(tuple(rules.values()), citations)


def load_deadline_rules(path: Optional[Union[str, Path]] = None) -> DeadlineRuleSet:
    """Default rule set, with the JSON overrides at `path` applied if given."""
    rule_set = DeadlineRuleSet()
    if not path:
        return rule_set
    source = Path(path)
    try:
        with source.open("r", encoding="utf-8") as fh:
            overrides = json.load(fh)
    except (OSError, json.JSONDecodeError) as e:
        raise ComputationError(f"Cannot read deadline rule overrides: {source}", error=str(e))
    rule_set = rule_set.with_overrides(overrides)
    logger.info("Loaded deadline rule overrides from %s (%d rules active)", source, len(rule_set))
    return rule_set


# =============================================================================
# CALCULATION
# =============================================================================

def evaluate_status(
    deadline: Deadline,
    now: Union[date, datetime],
    calendar: BusinessCalendar,
    at_risk_window: int = DEFAULT_AT_RISK_WINDOW,
) -> Deadline:
    """Return a copy of the deadline with status computed for `now`."""
    today = as_of_date(now)
    remaining = calendar.working_days_between(today, deadline.due_date)
    if deadline.due_date < today:
        status = DeadlineStatus.MISSED
    elif remaining <= at_risk_window:
        status = DeadlineStatus.AT_RISK
    else:
        status = DeadlineStatus.COMPUTED
    return replace(deadline, status=status, working_days_remaining=remaining)


def calculate_deadline(
    start_date: date,
    days: int,
    rule_id: str,
    calendar: BusinessCalendar,
    *,
    method: DeadlineMethod = DeadlineMethod.BUSINESS_DAYS,
    name: Optional[str] = None,
    citation: str = "",
    description: str = "",
    direction: str = "after",
    now: Optional[Union[date, datetime]] = None,
    at_risk_window: int = DEFAULT_AT_RISK_WINDOW,
) -> Deadline:
    """
    Compute one deadline from a start date and a day count.

    Business-day deadlines walk the calendar; calendar-day deadlines add
    days directly. When `now` is given the status is evaluated against
    it, otherwise the deadline is returned as COMPUTED.
    """
    if start_date is None:
        raise InvalidInput("A deadline needs a start date", rule_id=rule_id)
    if isinstance(days, bool) or not isinstance(days, int) or days < 0:
        raise InvalidInput("Deadline day count must be a non-negative integer", rule_id=rule_id, days=days)

    method = DeadlineMethod(method)
    if method is DeadlineMethod.BUSINESS_DAYS:
        if direction == "before":
            due = calendar.retreat(start_date, days)
        else:
            due = calendar.advance(start_date, days)
    else:
        offset = date.resolution * days
        due = start_date - offset if direction == "before" else start_date + offset

    deadline = Deadline(
        rule_id=rule_id,
        name=name or rule_id,
        description=description,
        start_date=start_date,
        due_date=due,
        method=method,
        days=days,
        calendar_days=abs((due - start_date).days),
        citation=citation,
    )
    if now is not None:
        deadline = evaluate_status(deadline, now, calendar, at_risk_window)
    return deadline


def calculate_rule_deadline(
    rule: DeadlineRule,
    start_date: date,
    calendar: BusinessCalendar,
    rule_set: DeadlineRuleSet,
    now: Optional[Union[date, datetime]] = None,
    at_risk_window: int = DEFAULT_AT_RISK_WINDOW,
) -> Deadline:
    """Apply one table rule to an explicit start date."""
    return calculate_deadline(
        start_date,
        rule.days,
        rule.rule_id,
        calendar,
        method=rule.method,
        name=rule.name,
        citation=rule_set.citation(rule),
        description=rule.description,
        direction=rule.direction,
        now=now,
        at_risk_window=at_risk_window,
    )


def resolve_anchor(facts: CaseFacts, rule: DeadlineRule) -> Optional[date]:
    """The anchor date for a rule, or None when the case does not record it."""
    if len(rule.anchor) == 1 and rule.anchor[0].startswith(FACT_ANCHOR_PREFIX):
        value = getattr(facts, rule.anchor[0][len(FACT_ANCHOR_PREFIX):], None)
        return value if isinstance(value, date) else None
    event = facts.first_event(*rule.anchor)
    return event.event_date if event else None


def is_satisfied(facts: CaseFacts, rule: DeadlineRule, anchor: date) -> bool:
    """True when an event discharging the obligation exists on or after the anchor."""
    if not rule.satisfied_by:
        return False
    if rule.anchor[0].startswith(FACT_ANCHOR_PREFIX):
        # A limitation-style date is discharged by the act whenever it happened.
        return facts.has_event(*rule.satisfied_by)
    return facts.first_event(*rule.satisfied_by, on_or_after=anchor) is not None


def rule_applies(facts: CaseFacts, rule: DeadlineRule) -> bool:
    if facts.practice_area.value not in rule.practice_areas:
        return False
    if rule.applies_when is None:
        return True
    return RULE_CONDITIONS[rule.applies_when](facts)


def calculate_case_deadlines(
    facts: CaseFacts,
    calendar: BusinessCalendar,
    now: Union[date, datetime],
    rule_set: Optional[DeadlineRuleSet] = None,
    at_risk_window: int = DEFAULT_AT_RISK_WINDOW,
) -> List[Deadline]:
    """
    Every open deadline for the case under its practice area's rules.

    Sorted by due date, then rule id.
    """
    rule_set = rule_set or DeadlineRuleSet()
    deadlines = []
    for rule in rule_set.for_practice_area(facts.practice_area):
        if not rule_applies(facts, rule):
            continue
        anchor = resolve_anchor(facts, rule)
        if anchor is None:
            continue
        if is_satisfied(facts, rule, anchor):
            continue
        deadlines.append(
            calculate_rule_deadline(rule, anchor, calendar, rule_set, now, at_risk_window)
        )
    return sorted(deadlines, key=lambda d: (d.due_date, d.rule_id))


# Court rules are the ones running off issue, service or listing for trial.
COURT_ANCHOR_EVENTS = frozenset({
    EventType.PROCEEDINGS_ISSUED.value,
    EventType.CLAIM_SERVED.value,
    EventType.TRIAL_LISTED.value,
})


def is_housing_rule(rule: DeadlineRule) -> bool:
    """Housing-only rules, plus fact-anchored ones such as limitation."""
    return tuple(rule.practice_areas) == HOUSING or rule.anchor[0].startswith(FACT_ANCHOR_PREFIX)


def is_court_rule(rule: DeadlineRule) -> bool:
    return bool(COURT_ANCHOR_EVENTS.intersection(rule.anchor))


def _select(
    facts: CaseFacts,
    calendar: BusinessCalendar,
    now: Union[date, datetime],
    rule_set: Optional[DeadlineRuleSet],
    at_risk_window: int,
    predicate: Callable[[DeadlineRule], bool],
) -> List[Deadline]:
    rule_set = rule_set or DeadlineRuleSet()
    wanted = {r.rule_id for r in rule_set if predicate(r)}
    return [
        d for d in calculate_case_deadlines(facts, calendar, now, rule_set, at_risk_window)
        if d.rule_id in wanted
    ]


def calculate_housing_deadlines(
    facts: CaseFacts,
    calendar: BusinessCalendar,
    now: Union[date, datetime],
    rule_set: Optional[DeadlineRuleSet] = None,
    at_risk_window: int = DEFAULT_AT_RISK_WINDOW,
) -> List[Deadline]:
    """Awaab's Law, Section 11 and housing protocol deadlines, plus limitation."""
    if facts.practice_area is not PracticeArea.HOUSING_DISREPAIR:
        return []
    return _select(facts, calendar, now, rule_set, at_risk_window, is_housing_rule)


def calculate_court_deadlines(
    facts: CaseFacts,
    calendar: BusinessCalendar,
    now: Union[date, datetime],
    rule_set: Optional[DeadlineRuleSet] = None,
    at_risk_window: int = DEFAULT_AT_RISK_WINDOW,
) -> List[Deadline]:
    """CPR post-issue deadlines (service, acknowledgment, defence, trial bundle)."""
    return _select(facts, calendar, now, rule_set, at_risk_window, is_court_rule)
