"""
Tenant Vulnerability & Priority Scorer

Ranks cases by urgency from their facts:
- Hazard severity (unfit for habitation overrides to critical)
- Vulnerability markers: children, elderly, pregnancy, asthma, COPD,
  respiratory, disability, mobility, mental health, other medical
- Cross risk: respiratory vulnerability + damp/mould hazard
- Time in disrepair, missed and at-risk deadlines
- Medical report status, unanswered correspondence, limitation proximity

The total is exactly the sum of the itemised factor contributions. There
is no cap. Every weight and threshold lives in ScoringWeights.
"""

import json
import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from pathlib import Path
from typing import Optional, Dict, Any, List, Tuple, Union, Iterable, Callable

from casedesk.core.errors import ComputationError, InvalidInput
from casedesk.core.utc import as_of_date
from casedesk.models.case_facts import CaseFacts, EventType
from casedesk.models.derived import Deadline, DeadlineStatus, PriorityScore, ScoreFactor
from casedesk.models.severity import Severity
from casedesk.services.business_calendar import BusinessCalendar

logger = logging.getLogger(__name__)


# =============================================================================
# WEIGHTS
# =============================================================================

@dataclass(frozen=True)
class VulnerabilityWeight:
    """
    Weight for one vulnerability type.

    elevated applies when `elevated_on` holds; damp (if set) applies when
    the property has a damp or mould hazard and outranks elevated.
    """
    keywords: Tuple[str, ...]
    standard: int
    elevated: int
    elevated_on: str = "serious_hazard"  # serious_hazard / category_1 / hazard_or_damp
    damp: Optional[int] = None
    respiratory: bool = False


DEFAULT_VULNERABILITY_WEIGHTS: Dict[str, VulnerabilityWeight] = {
    "child": VulnerabilityWeight(("child", "minor"), 15, 30),
    "elderly": VulnerabilityWeight(("elderly", "senior"), 12, 25),
    "pregnancy": VulnerabilityWeight(("pregnan",), 18, 35, elevated_on="hazard_or_damp"),
    "asthma": VulnerabilityWeight(("asthma",), 10, 20, elevated_on="category_1", damp=40, respiratory=True),
    "copd": VulnerabilityWeight(("copd",), 10, 20, elevated_on="category_1", damp=40, respiratory=True),
    "respiratory": VulnerabilityWeight(("respiratory",), 8, 18, elevated_on="category_1", damp=35, respiratory=True),
    "disability": VulnerabilityWeight(("disab",), 10, 20),
    "mobility_impairment": VulnerabilityWeight(("mobility",), 8, 18),
    "mental_health": VulnerabilityWeight(("mental",), 7, 15),
}

OTHER_MEDICAL = "other_medical"
DEFAULT_OTHER_MEDICAL_WEIGHT = VulnerabilityWeight((), 5, 12, elevated_on="category_1")


@dataclass(frozen=True)
class ScoringWeights:
    """Every score weight, threshold and band cut in one table."""
    # Hazard
    unfit_for_habitation: int = 50
    category_1_hazard: int = 40
    category_2_hazard: int = 20
    hazard_severity_bands: Dict[str, int] = field(
        default_factory=lambda: {"critical": 40, "high": 20, "medium": 10, "low": 5, "none": 0}
    )
    # Vulnerability
    vulnerability: Dict[str, VulnerabilityWeight] = field(
        default_factory=lambda: dict(DEFAULT_VULNERABILITY_WEIGHTS)
    )
    other_medical: VulnerabilityWeight = DEFAULT_OTHER_MEDICAL_WEIGHT
    cross_risk: int = 25
    # Time in disrepair
    disrepair_per_period: int = 2
    disrepair_period_days: int = 30
    disrepair_max_periods: int = 12
    # Deadlines
    missed_deadline: int = 15
    at_risk_deadline: int = 8
    # Medical report
    medical_report_overdue: int = 15
    # Correspondence gap (working days)
    correspondence_gap_threshold: int = 20
    correspondence_gap_per_period: int = 2
    correspondence_gap_period_days: int = 5
    correspondence_gap_max_periods: int = 10
    # Limitation
    limitation_expired: int = 30
    limitation_critical: int = 25
    limitation_warning: int = 15
    limitation_critical_days: int = 30
    limitation_warning_days: int = 90
    # Bands
    band_critical: int = 70
    band_high: int = 45
    band_medium: int = 20

    def band_for(self, total: int) -> Severity:
        if total >= self.band_critical:
            return Severity.CRITICAL
        if total >= self.band_high:
            return Severity.HIGH
        if total >= self.band_medium:
            return Severity.MEDIUM
        return Severity.LOW

    def with_overrides(self, overrides: Dict[str, Any]) -> "ScoringWeights":
        """
        New weights with JSON overrides applied.

        Scalar keys replace the default; "vulnerability" entries merge by
        type name; "hazard_severity_bands" merges by band.
        """
        known = set(self.__dataclass_fields__)
        unknown = set(overrides) - known
        if unknown:
            raise ComputationError("Unknown scoring weight keys", keys=sorted(unknown))

        changes: Dict[str, Any] = {}
        try:
            for key, value in overrides.items():
                if key == "vulnerability":
                    merged = dict(self.vulnerability)
                    for name, raw in value.items():
                        merged[name] = _vulnerability_weight(raw, merged.get(name))
                    changes[key] = merged
                elif key == "other_medical":
                    changes[key] = _vulnerability_weight(value, self.other_medical)
                elif key == "hazard_severity_bands":
                    changes[key] = {**self.hazard_severity_bands, **{k: int(v) for k, v in value.items()}}
                else:
                    changes[key] = int(value)
        except (AttributeError, TypeError, ValueError) as e:
            raise ComputationError("Malformed scoring weight override", error=str(e))
        return replace(self, **changes)


def _vulnerability_weight(raw: Dict[str, Any], base: Optional[VulnerabilityWeight]) -> VulnerabilityWeight:
    base = base or VulnerabilityWeight((), 0, 0)
    keywords = raw.get("keywords", base.keywords)
    return VulnerabilityWeight(
        keywords=tuple(str(k).lower() for k in keywords),
        standard=int(raw.get("standard", base.standard)),
        elevated=int(raw.get("elevated", base.elevated)),
        elevated_on=str(raw.get("elevated_on", base.elevated_on)),
        damp=None if raw.get("damp", base.damp) is None else int(raw.get("damp", base.damp)),
        respiratory=bool(raw.get("respiratory", base.respiratory)),
    )


def load_scoring_weights(path: Optional[Union[str, Path]] = None) -> ScoringWeights:
    """Default weights, with the JSON overrides at `path` applied if given."""
    weights = ScoringWeights()
    if not path:
        return weights
    source = Path(path)
    try:
        with source.open("r", encoding="utf-8") as fh:
            overrides = json.load(fh)
    except (OSError, json.JSONDecodeError) as e:
        raise ComputationError(f"Cannot read scoring weights: {source}", error=str(e))
    weights = weights.with_overrides(overrides)
    logger.info("Loaded scoring weight overrides from %s", source)
    return weights


# =============================================================================
# FACTORS
# =============================================================================

@dataclass(frozen=True)
class _Context:
    facts: CaseFacts
    today: date
    deadlines: Tuple[Deadline, ...]
    weights: ScoringWeights
    calendar: BusinessCalendar


def _factor(name: str, weight: int, signal: int = 1, detail: str = "") -> ScoreFactor:
    return ScoreFactor(name=name, contribution=weight * signal, weight=weight, signal=signal, detail=detail)


def _serious_hazard(facts: CaseFacts) -> bool:
    housing = facts.housing
    return bool(housing and (housing.has_category_1_hazard or housing.unfit_for_habitation))


def _damp_mould(facts: CaseFacts) -> bool:
    return bool(facts.housing and facts.housing.has_damp_mould)


def effective_hazard_severity(facts: CaseFacts) -> str:
    housing = facts.housing
    if housing is None:
        return "none"
    if housing.unfit_for_habitation or housing.has_category_1_hazard:
        return "critical"
    if housing.hazard_category == "category_2":
        return "high"
    return housing.hazard_severity or "none"


def _hazard_factor(ctx: _Context) -> List[ScoreFactor]:
    housing = ctx.facts.housing
    if housing is None:
        return []
    w = ctx.weights
    if housing.unfit_for_habitation:
        return [_factor("hazard", w.unfit_for_habitation, detail="Property declared unfit for habitation")]
    if housing.has_category_1_hazard:
        return [_factor("hazard", w.category_1_hazard, detail="Category 1 HHSRS hazard")]
    if housing.hazard_category == "category_2":
        return [_factor("hazard", w.category_2_hazard, detail="Category 2 HHSRS hazard")]
    weight = w.hazard_severity_bands.get(housing.hazard_severity, 0)
    if weight:
        return [_factor("hazard", weight, detail=f"Hazard severity {housing.hazard_severity}")]
    return []


def classify_vulnerabilities(
    markers: Iterable[str],
    weights: ScoringWeights,
) -> Dict[str, List[str]]:
    """Map free-text markers to vulnerability types; each type appears once."""
    found: Dict[str, List[str]] = {}
    for marker in markers:
        lowered = marker.lower()
        matched = [
            name for name, vw in weights.vulnerability.items()
            if any(keyword in lowered for keyword in vw.keywords)
        ]
        for name in matched or [OTHER_MEDICAL]:
            found.setdefault(name, []).append(marker)
    return found


def _vulnerability_weight_for(vw: VulnerabilityWeight, facts: CaseFacts) -> Tuple[int, str]:
    damp = _damp_mould(facts)
    if vw.damp is not None and damp:
        return int(vw.damp), "damp/mould present"
    if vw.elevated_on == "category_1":
        elevated = bool(facts.housing and facts.housing.has_category_1_hazard)
    elif vw.elevated_on == "hazard_or_damp":
        elevated = bool(facts.housing and facts.housing.has_category_1_hazard) or damp
    else:
        elevated = _serious_hazard(facts)
    if elevated:
        return vw.elevated, "elevated by serious hazard"
    return vw.standard, "standard"


def _vulnerability_factors(ctx: _Context) -> List[ScoreFactor]:
    factors = []
    for name, markers in classify_vulnerabilities(ctx.facts.vulnerability_markers, ctx.weights).items():
        vw = ctx.weights.other_medical if name == OTHER_MEDICAL else ctx.weights.vulnerability[name]
        weight, basis = _vulnerability_weight_for(vw, ctx.facts)
        factors.append(
            _factor(f"vulnerability:{name}", weight, detail=f"{', '.join(markers)} ({basis})")
        )
    return factors


def has_cross_risk(facts: CaseFacts, weights: ScoringWeights) -> bool:
    if not _damp_mould(facts):
        return False
    found = classify_vulnerabilities(facts.vulnerability_markers, weights)
    return any(
        name in found for name, vw in weights.vulnerability.items() if vw.respiratory
    )


def _cross_risk_factor(ctx: _Context) -> List[ScoreFactor]:
    if has_cross_risk(ctx.facts, ctx.weights):
        return [_factor("cross_risk", ctx.weights.cross_risk,
                        detail="Health vulnerability combined with damp/mould hazard")]
    return []


def _disrepair_factor(ctx: _Context) -> List[ScoreFactor]:
    if ctx.facts.housing is None:
        return []
    report = ctx.facts.first_event(EventType.DEFECT_REPORTED)
    if report is None or ctx.facts.has_event(EventType.REPAIR_WORK_COMPLETED):
        return []
    w = ctx.weights
    days = (ctx.today - report.event_date).days
    periods = min(days // w.disrepair_period_days, w.disrepair_max_periods)
    if periods <= 0:
        return []
    return [_factor("time_in_disrepair", w.disrepair_per_period, periods,
                    detail=f"{days} days since first report")]


def _deadline_factors(ctx: _Context) -> List[ScoreFactor]:
    factors = []
    missed = [d.rule_id for d in ctx.deadlines if d.status is DeadlineStatus.MISSED]
    at_risk = [d.rule_id for d in ctx.deadlines if d.status is DeadlineStatus.AT_RISK]
    if missed:
        factors.append(_factor("missed_deadlines", ctx.weights.missed_deadline, len(missed),
                               detail=", ".join(missed)))
    if at_risk:
        factors.append(_factor("at_risk_deadlines", ctx.weights.at_risk_deadline, len(at_risk),
                               detail=", ".join(at_risk)))
    return factors


def medical_report_overdue(facts: CaseFacts, today: date) -> bool:
    injury = facts.personal_injury
    if injury is None or facts.has_event(EventType.MEDICAL_REPORT_RECEIVED):
        return False
    if injury.medical_report_status == "overdue":
        return True
    return (
        injury.medical_report_status == "requested"
        and injury.medical_report_due is not None
        and injury.medical_report_due < today
    )


def _medical_report_factor(ctx: _Context) -> List[ScoreFactor]:
    if medical_report_overdue(ctx.facts, ctx.today):
        return [_factor("medical_report", ctx.weights.medical_report_overdue,
                        detail="Medical report overdue")]
    return []


def _correspondence_factor(ctx: _Context) -> List[ScoreFactor]:
    outgoing = ctx.facts.last_unanswered_outgoing()
    if outgoing is None:
        return []
    w = ctx.weights
    gap = ctx.calendar.working_days_between(outgoing.event_date, ctx.today)
    if gap <= w.correspondence_gap_threshold:
        return []
    periods = min(
        (gap - w.correspondence_gap_threshold) // w.correspondence_gap_period_days + 1,
        w.correspondence_gap_max_periods,
    )
    return [_factor("correspondence_gap", w.correspondence_gap_per_period, periods,
                    detail=f"{gap} working days without a reply to {outgoing.event_type}")]


def _limitation_factor(ctx: _Context) -> List[ScoreFactor]:
    facts = ctx.facts
    if facts.limitation_date is None:
        return []
    if facts.has_event(EventType.PROCEEDINGS_ISSUED, EventType.APPLICATION_ISSUED):
        return []
    w = ctx.weights
    days = (facts.limitation_date - ctx.today).days
    if days < 0:
        return [_factor("limitation", w.limitation_expired, detail="Limitation period expired")]
    if days <= w.limitation_critical_days:
        return [_factor("limitation", w.limitation_critical, detail=f"{days} days to limitation")]
    if days <= w.limitation_warning_days:
        return [_factor("limitation", w.limitation_warning, detail=f"{days} days to limitation")]
    return []


FACTOR_FUNCTIONS: Tuple[Tuple[str, Callable[[_Context], List[ScoreFactor]]], ...] = (
    ("hazard", _hazard_factor),
    ("vulnerability", _vulnerability_factors),
    ("cross_risk", _cross_risk_factor),
    ("time_in_disrepair", _disrepair_factor),
    ("deadlines", _deadline_factors),
    ("medical_report", _medical_report_factor),
    ("correspondence_gap", _correspondence_factor),
    ("limitation", _limitation_factor),
)


# =============================================================================
# SCORE
# =============================================================================

def _reasoning(facts: CaseFacts, factors: List[ScoreFactor], cross_risk: bool) -> str:
    parts = []
    if cross_risk:
        parts.append("CRITICAL CROSS-RISK: Health vulnerability combined with damp/mould hazard.")
    if facts.housing and facts.housing.unfit_for_habitation:
        parts.append("Property declared unfit for habitation.")
    if facts.housing and facts.housing.has_category_1_hazard:
        parts.append("Category 1 HHSRS hazards present.")
    vulnerable = [f.name.split(":", 1)[1] for f in factors if f.name.startswith("vulnerability:")]
    if vulnerable:
        parts.append(f"Vulnerability factors detected: {', '.join(vulnerable)}.")
    if any(f.name == "missed_deadlines" for f in factors):
        parts.append("One or more deadlines missed.")
    if not parts:
        parts.append("Standard priority case - no exceptional risk factors detected.")
    return " ".join(parts)


def calculate_priority_score(
    facts: CaseFacts,
    case_title: str = "",
    deadlines: Iterable[Deadline] = (),
    now: Union[date, datetime, None] = None,
    weights: Optional[ScoringWeights] = None,
    calendar: Optional[BusinessCalendar] = None,
) -> PriorityScore:
    """
    Score a case.

    A factor that cannot be computed from partial sub-facts contributes
    zero with a note; the rest of the score is still produced. Without a
    calendar, correspondence gaps are counted over weekdays only.
    """
    if now is None:
        raise InvalidInput("An evaluation instant is required")
    weights = weights or ScoringWeights()
    ctx = _Context(
        facts=facts,
        today=as_of_date(now),
        deadlines=tuple(deadlines),
        weights=weights,
        calendar=calendar or BusinessCalendar(),
    )

    factors: List[ScoreFactor] = []
    for name, compute in FACTOR_FUNCTIONS:
        try:
            factors.extend(compute(ctx))
        except (AttributeError, TypeError, ValueError) as e:
            factors.append(ScoreFactor(name=name, contribution=0, weight=0, signal=0,
                                       detail=f"not computed: {e}"))

    total = sum(f.contribution for f in factors)
    cross_risk = any(f.name == "cross_risk" for f in factors)
    return PriorityScore(
        case_id=facts.case_id,
        case_title=case_title,
        total=total,
        band=weights.band_for(total),
        factors=tuple(factors),
        hazard_severity=effective_hazard_severity(facts),
        cross_risk=cross_risk,
        reasoning=_reasoning(facts, factors, cross_risk),
    )
