"""
Case Facts - the input snapshot for every derived-fact engine.

A CaseFacts value is an immutable snapshot of one case's extracted and
user-entered attributes. Engines read it and return new values; nothing
mutates it.

from_dict() is the boundary parser. It is strict about the things a
caller controls (practice area, case id) and lenient about extracted
data: an event without a usable date is dropped rather than failing the
whole snapshot, a malformed sub-fact becomes None and a scalar where a
list belongs becomes empty, so the engines can degrade around it.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Optional, Dict, Any, Tuple, Iterable

from casedesk.core.errors import InvalidInput, IncompleteFacts
from casedesk.core.utc import parse_date, iso_date


# =============================================================================
# ENUMS
# =============================================================================

class PracticeArea(str, Enum):
    """Practice areas the engines have rule tables for."""
    HOUSING_DISREPAIR = "housing_disrepair"
    PERSONAL_INJURY = "personal_injury"
    CLINICAL_NEGLIGENCE = "clinical_negligence"
    FAMILY = "family"
    OTHER_LITIGATION = "other_litigation"


class EventProvenance(str, Enum):
    """Where a dated event came from."""
    EXTRACTED = "extracted"  # pulled from a document by the extraction pipeline
    USER = "user"            # entered by a fee earner


class EventType(str, Enum):
    """
    Known timeline event types.

    Events carry their type as a plain string so that types the
    extraction pipeline invents later still round-trip; they simply
    match no rule.
    """
    # Housing
    DEFECT_REPORTED = "defect_reported"
    INSPECTION_COMPLETED = "inspection_completed"
    REPAIR_WORK_STARTED = "repair_work_started"
    REPAIR_WORK_COMPLETED = "repair_work_completed"
    LANDLORD_RESPONSE_RECEIVED = "landlord_response_received"
    # Injury / clinical
    ACCIDENT = "accident"
    MEDICAL_RECORDS_REQUESTED = "medical_records_requested"
    MEDICAL_RECORDS_RECEIVED = "medical_records_received"
    MEDICAL_REPORT_REQUESTED = "medical_report_requested"
    MEDICAL_REPORT_RECEIVED = "medical_report_received"
    # Pre-action and court
    LETTER_OF_CLAIM_SENT = "letter_of_claim_sent"
    DEFENDANT_RESPONSE_RECEIVED = "defendant_response_received"
    PROCEEDINGS_ISSUED = "proceedings_issued"
    CLAIM_SERVED = "claim_served"
    ACKNOWLEDGMENT_OF_SERVICE = "acknowledgment_of_service"
    DEFENCE_FILED = "defence_filed"
    TRIAL_LISTED = "trial_listed"
    # Family
    MEDIATION_ASSESSMENT_ATTENDED = "mediation_assessment_attended"
    APPLICATION_ISSUED = "application_issued"
    HEARING_LISTED = "hearing_listed"
    # General
    CORRESPONDENCE_SENT = "correspondence_sent"
    CORRESPONDENCE_RECEIVED = "correspondence_received"
    SETTLEMENT_AGREED = "settlement_agreed"
    CASE_CLOSED = "case_closed"


OUTGOING_EVENT_TYPES = (
    EventType.CORRESPONDENCE_SENT.value,
    EventType.LETTER_OF_CLAIM_SENT.value,
)
INCOMING_EVENT_TYPES = (
    EventType.CORRESPONDENCE_RECEIVED.value,
    EventType.LANDLORD_RESPONSE_RECEIVED.value,
    EventType.DEFENDANT_RESPONSE_RECEIVED.value,
)

SOCIAL_LANDLORD_TYPES = frozenset({"social", "council", "housing_association"})
DAMP_MOULD_TERMS = ("damp", "mould", "mold")


def _event_type_value(event_type) -> str:
    return event_type.value if isinstance(event_type, Enum) else str(event_type)


def _optional_int(value) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _optional_date(value) -> Optional[date]:
    try:
        return parse_date(value)
    except (TypeError, ValueError):
        return None


def _flag(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return isinstance(value, int) and value == 1


def _str_tuple(values) -> Tuple[str, ...]:
    if isinstance(values, str):
        values = [values]
    elif not isinstance(values, (list, tuple)):
        return ()
    return tuple(str(v).strip() for v in values if v is not None and str(v).strip())


# =============================================================================
# EVENTS
# =============================================================================

@dataclass(frozen=True)
class CaseEvent:
    """A dated fact on the case timeline."""
    event_date: date
    event_type: str
    label: str = ""
    provenance: EventProvenance = EventProvenance.EXTRACTED

    def __post_init__(self):
        object.__setattr__(self, "event_type", _event_type_value(self.event_type))
        object.__setattr__(self, "provenance", EventProvenance(self.provenance))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CaseEvent":
        """Parse one event. Raises ValueError when the date or type is unusable."""
        event_date = parse_date(data.get("event_date") or data.get("date"))
        event_type = data.get("event_type") or data.get("type")
        if event_date is None or not event_type:
            raise ValueError("event needs a date and a type")
        return cls(
            event_date=event_date,
            event_type=str(event_type).strip().lower(),
            label=str(data.get("label") or ""),
            provenance=EventProvenance(data.get("provenance") or EventProvenance.EXTRACTED),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_date": iso_date(self.event_date),
            "event_type": self.event_type,
            "label": self.label,
            "provenance": self.provenance.value,
        }


# =============================================================================
# PRACTICE-AREA SUB-FACTS
# =============================================================================

@dataclass(frozen=True)
class HousingFacts:
    """Housing disrepair sub-facts."""
    landlord_type: str = "private"
    hazard_category: str = "none"      # none / category_2 / category_1
    hazard_severity: str = "none"      # none / low / medium / high / critical
    hazards: Tuple[str, ...] = ()
    unfit_for_habitation: bool = False
    vulnerability: Tuple[str, ...] = ()
    repair_attempts: Optional[int] = 0
    no_access_days: Optional[int] = 0

    @property
    def is_social_landlord(self) -> bool:
        return (self.landlord_type or "").lower() in SOCIAL_LANDLORD_TYPES

    @property
    def has_category_1_hazard(self) -> bool:
        return self.hazard_category == "category_1"

    @property
    def has_damp_mould(self) -> bool:
        return any(term in h.lower() for h in self.hazards for term in DAMP_MOULD_TERMS)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HousingFacts":
        return cls(
            landlord_type=str(data.get("landlord_type") or "private").lower(),
            hazard_category=str(data.get("hazard_category") or "none").lower(),
            hazard_severity=str(data.get("hazard_severity") or "none").lower(),
            hazards=_str_tuple(data.get("hazards")),
            unfit_for_habitation=_flag(data.get("unfit_for_habitation")),
            vulnerability=_str_tuple(data.get("vulnerability") or data.get("tenant_vulnerability")),
            repair_attempts=_optional_int(data.get("repair_attempts", 0)),
            no_access_days=_optional_int(data.get("no_access_days", 0)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "landlord_type": self.landlord_type,
            "hazard_category": self.hazard_category,
            "hazard_severity": self.hazard_severity,
            "hazards": list(self.hazards),
            "unfit_for_habitation": self.unfit_for_habitation,
            "vulnerability": list(self.vulnerability),
            "repair_attempts": self.repair_attempts,
            "no_access_days": self.no_access_days,
        }


@dataclass(frozen=True)
class PersonalInjuryFacts:
    """Personal injury / clinical negligence sub-facts."""
    medical_report_status: str = "not_requested"  # not_requested / requested / received / overdue
    medical_report_due: Optional[date] = None
    injury_severity: str = "minor"
    vulnerability: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PersonalInjuryFacts":
        return cls(
            medical_report_status=str(data.get("medical_report_status") or "not_requested").lower(),
            medical_report_due=_optional_date(data.get("medical_report_due")),
            injury_severity=str(data.get("injury_severity") or "minor").lower(),
            vulnerability=_str_tuple(data.get("vulnerability")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "medical_report_status": self.medical_report_status,
            "medical_report_due": iso_date(self.medical_report_due),
            "injury_severity": self.injury_severity,
            "vulnerability": list(self.vulnerability),
        }


# =============================================================================
# CASE FACTS SNAPSHOT
# =============================================================================

@dataclass(frozen=True)
class CaseFacts:
    """
    Immutable snapshot of one case.

    Events are stored sorted by date, then type, so every query below is
    deterministic regardless of input order.
    """
    case_id: str
    practice_area: PracticeArea
    events: Tuple[CaseEvent, ...] = ()
    housing: Optional[HousingFacts] = None
    personal_injury: Optional[PersonalInjuryFacts] = None
    limitation_date: Optional[date] = None
    parties: Tuple[str, ...] = ()
    dropped_events: int = field(default=0, compare=False)

    def __post_init__(self):
        try:
            area = PracticeArea(self.practice_area)
        except ValueError:
            raise InvalidInput(
                f"Unknown practice area: {self.practice_area!r}",
                allowed=[p.value for p in PracticeArea],
            )
        object.__setattr__(self, "practice_area", area)
        object.__setattr__(
            self,
            "events",
            tuple(sorted(self.events, key=lambda e: (e.event_date, e.event_type, e.label))),
        )
        object.__setattr__(self, "parties", _str_tuple(self.parties))

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def events_of(self, *event_types) -> Tuple[CaseEvent, ...]:
        wanted = {_event_type_value(t) for t in event_types}
        return tuple(e for e in self.events if e.event_type in wanted)

    def has_event(self, *event_types) -> bool:
        return bool(self.events_of(*event_types))

    def first_event(self, *event_types, on_or_after: Optional[date] = None) -> Optional[CaseEvent]:
        """Earliest event of any of the types, optionally not before a date."""
        for event in self.events_of(*event_types):
            if on_or_after is None or event.event_date >= on_or_after:
                return event
        return None

    def last_event(self, *event_types) -> Optional[CaseEvent]:
        matches = self.events_of(*event_types)
        return matches[-1] if matches else None

    def require_event(self, *event_types) -> CaseEvent:
        """Earliest event of the types, or IncompleteFacts."""
        event = self.first_event(*event_types)
        if event is None:
            raise IncompleteFacts(
                "Required anchor event is missing",
                case_id=self.case_id,
                event_types=sorted(_event_type_value(t) for t in event_types),
            )
        return event

    def last_unanswered_outgoing(self) -> Optional[CaseEvent]:
        """Latest outgoing letter with no incoming reply on or after its date."""
        outgoing = self.last_event(*OUTGOING_EVENT_TYPES)
        if outgoing is None:
            return None
        if self.first_event(*INCOMING_EVENT_TYPES, on_or_after=outgoing.event_date):
            return None
        return outgoing

    @property
    def vulnerability_markers(self) -> Tuple[str, ...]:
        markers: list = []
        if self.housing:
            markers.extend(self.housing.vulnerability)
        if self.personal_injury:
            markers.extend(self.personal_injury.vulnerability)
        return tuple(dict.fromkeys(markers))

    @property
    def has_known_defendant(self) -> bool:
        return any(p.lower() in ("defendant", "opponent", "landlord") for p in self.parties)

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CaseFacts":
        """
        Build a snapshot from boundary data.

        Events that cannot be parsed are counted in dropped_events and
        left out.
        """
        case_id = data.get("case_id") or data.get("id")
        if not case_id:
            raise InvalidInput("case_id is required")

        events, dropped = _parse_events(data.get("events") or data.get("timeline") or [])

        housing = data.get("housing")
        injury = data.get("personal_injury")
        return cls(
            case_id=str(case_id),
            practice_area=data.get("practice_area") or PracticeArea.OTHER_LITIGATION,
            events=events,
            housing=HousingFacts.from_dict(housing) if isinstance(housing, dict) else None,
            personal_injury=PersonalInjuryFacts.from_dict(injury) if isinstance(injury, dict) else None,
            limitation_date=_optional_date(data.get("limitation_date")),
            parties=_str_tuple(data.get("parties")),
            dropped_events=dropped,
        )

    def with_events(self, extra: Iterable[Any]) -> "CaseFacts":
        """
        New snapshot with additional events appended.

        Items may be CaseEvent values or raw event dicts; anything unusable
        is dropped and added to dropped_events.
        """
        events, dropped = _parse_events(extra)
        return CaseFacts(
            case_id=self.case_id,
            practice_area=self.practice_area,
            events=self.events + events,
            housing=self.housing,
            personal_injury=self.personal_injury,
            limitation_date=self.limitation_date,
            parties=self.parties,
            dropped_events=self.dropped_events + dropped,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "case_id": self.case_id,
            "practice_area": self.practice_area.value,
            "events": [e.to_dict() for e in self.events],
            "housing": self.housing.to_dict() if self.housing else None,
            "personal_injury": self.personal_injury.to_dict() if self.personal_injury else None,
            "limitation_date": iso_date(self.limitation_date),
            "parties": list(self.parties),
            "dropped_events": self.dropped_events,
        }


def _parse_events(raw_events) -> Tuple[Tuple[CaseEvent, ...], int]:
    events = []
    dropped = 0
    if not isinstance(raw_events, Iterable) or isinstance(raw_events, (str, bytes, dict)):
        return (), 0
    for raw in raw_events:
        if isinstance(raw, CaseEvent):
            events.append(raw)
            continue
        if not isinstance(raw, dict):
            dropped += 1
            continue
        try:
            events.append(CaseEvent.from_dict(raw))
        except ValueError:
            dropped += 1
    return tuple(events), dropped
