"""
Tests for the Risk Engine - flag conditions, identity and roll-up.
"""
from datetime import date, datetime, timedelta, timezone

import pytest

from casedesk.core.errors import InvalidInput
from casedesk.models import (
    CaseEvent,
    CaseFacts,
    HousingFacts,
    PersonalInjuryFacts,
    RiskFlag,
    Severity,
)
from casedesk.services.deadline_rules import calculate_case_deadlines, calculate_court_deadlines
from casedesk.services.risk_engine import RiskThresholds, assess_risk_level, evaluate_risks


def flag_types(flags):
    return [f.flag_type for f in flags]


def make_flag(flag_id: str, severity: Severity, description: str = "") -> RiskFlag:
    return RiskFlag(
        flag_id=flag_id,
        case_id="C-1",
        flag_type=flag_id.split(":")[1],
        severity=severity,
        description=description or flag_id,
        detected_at=datetime(2025, 6, 2, tzinfo=timezone.utc),
    )


# ============================================================================
# FLAG CONDITIONS
# ============================================================================

class TestFlags:
    """Each detected condition."""

    def test_housing_case_unanswered_letter(self, housing_case, as_of):
        """Test an unanswered letter raises no_response."""
        flags = evaluate_risks(housing_case, now=as_of)
        assert flag_types(flags) == ["no_response"]
        flag = flags[0]
        assert flag.severity is Severity.HIGH
        assert flag.flag_id == "HD-001:no_response:2025-03-03"
        assert flag.metadata["working_days"] == 65

    def test_missed_deadlines_are_critical(self, housing_case, ew_calendar, as_of):
        """Test missed deadlines raise critical flags."""
        deadlines = calculate_case_deadlines(housing_case, ew_calendar, as_of)
        flags = evaluate_risks(housing_case, now=as_of, deadlines=deadlines, calendar=ew_calendar)
        assert [f.flag_id for f in flags] == [
            "HD-001:deadline_missed:awaabs-work-start",
            "HD-001:deadline_missed:housing-protocol-response",
            "HD-001:deadline_missed:housing-repair-after-inspection",
            "HD-001:deadline_missed:section11-reasonable-time-vulnerable",
            "HD-001:no_response:2025-03-03",
        ]
        assert all(f.severity is Severity.CRITICAL for f in flags[:4])

    def test_at_risk_deadline_is_high(self, ew_calendar, as_of):
        """Test at-risk deadlines raise high flags."""
        facts = CaseFacts(
            case_id="PI-2",
            practice_area="personal_injury",
            events=(
                CaseEvent(date(2025, 5, 1), "proceedings_issued"),
                CaseEvent(date(2025, 5, 6), "claim_served"),
            ),
        )
        deadlines = calculate_court_deadlines(facts, ew_calendar, as_of)
        by_id = {f.flag_id: f for f in evaluate_risks(facts, now=as_of, deadlines=deadlines)}
        assert by_id["PI-2:deadline_at_risk:cpr-defence"].severity is Severity.HIGH
        assert by_id["PI-2:deadline_missed:cpr-acknowledgment"].severity is Severity.CRITICAL

    def test_reply_clears_no_response(self, housing_case, as_of):
        """Test a reply clears no_response."""
        answered = housing_case.with_events([CaseEvent(date(2025, 3, 20), "landlord_response_received")])
        assert "no_response" not in flag_types(evaluate_risks(answered, now=as_of))

    def test_correspondence_threshold_is_configurable(self, housing_case, as_of):
        """Test the correspondence threshold is configurable."""
        flags = evaluate_risks(
            housing_case, now=as_of, thresholds=RiskThresholds(correspondence_gap_days=100)
        )
        assert flags == []

    @pytest.mark.parametrize("offset,expected,severity", [
        (-3, "limitation_expired", Severity.CRITICAL),
        (20, "limitation_imminent", Severity.CRITICAL),
        (100, "limitation_approaching", Severity.HIGH),
    ])
    def test_limitation(self, as_of, offset, expected, severity):
        """Test limitation flags by distance."""
        facts = CaseFacts(
            case_id="PI-3",
            practice_area="personal_injury",
            limitation_date=as_of.date() + timedelta(days=offset),
        )
        flags = evaluate_risks(facts, now=as_of)
        assert flag_types(flags) == [expected]
        assert flags[0].severity is severity
        assert flags[0].metadata["days_remaining"] == offset

    def test_limitation_far_away(self, as_of):
        """Test a distant limitation date raises nothing."""
        facts = CaseFacts(
            case_id="PI-3",
            practice_area="personal_injury",
            limitation_date=as_of.date() + timedelta(days=400),
        )
        assert evaluate_risks(facts, now=as_of) == []

    def test_limitation_missing(self, as_of):
        """Test a missing limitation date is flagged where it applies."""
        facts = CaseFacts(case_id="PI-4", practice_area="personal_injury")
        flags = evaluate_risks(facts, now=as_of)
        assert flag_types(flags) == ["limitation_missing"]
        assert flags[0].severity is Severity.MEDIUM
        family = CaseFacts(case_id="F-4", practice_area="family")
        assert evaluate_risks(family, now=as_of) == []

    def test_issued_claim_has_no_limitation_flags(self, as_of):
        """Test issued claims raise no limitation flags."""
        facts = CaseFacts(
            case_id="PI-5",
            practice_area="personal_injury",
            events=(CaseEvent(date(2025, 5, 30), "proceedings_issued"),),
            limitation_date=as_of.date() - timedelta(days=1),
        )
        assert not any(t.startswith("limitation") for t in flag_types(evaluate_risks(facts, now=as_of)))

    def test_medical_report_overdue(self, as_of):
        """Test an overdue medical report is flagged."""
        facts = CaseFacts(
            case_id="PI-6",
            practice_area="personal_injury",
            personal_injury=PersonalInjuryFacts(medical_report_status="overdue"),
            limitation_date=date(2028, 1, 1),
        )
        flags = evaluate_risks(facts, now=as_of)
        assert flag_types(flags) == ["medical_report_overdue"]
        assert flags[0].severity is Severity.HIGH

    @pytest.mark.parametrize("housing,expected", [
        (HousingFacts(hazard_category="category_1", repair_attempts=0), Severity.CRITICAL),
        (HousingFacts(unfit_for_habitation=True), Severity.CRITICAL),
        (HousingFacts(hazard_category="category_2"), Severity.HIGH),
        (HousingFacts(hazard_severity="high"), Severity.HIGH),
        (HousingFacts(hazard_severity="low"), None),
        (HousingFacts(hazard_category="category_1", repair_attempts=2), None),
    ])
    def test_hazard_unrepaired(self, as_of, housing, expected):
        """Test unrepaired hazard severity."""
        facts = CaseFacts(
            case_id="HD-7",
            practice_area="housing_disrepair",
            housing=housing,
            limitation_date=date(2030, 1, 1),
        )
        flags = [f for f in evaluate_risks(facts, now=as_of) if f.flag_type == "hazard_unrepaired"]
        assert [f.severity for f in flags] == ([expected] if expected else [])

    def test_repair_event_counts_as_attempt(self, as_of):
        """Test a repair event counts as an attempt."""
        facts = CaseFacts(
            case_id="HD-8",
            practice_area="housing_disrepair",
            events=(CaseEvent(date(2025, 5, 28), "repair_work_started"),),
            housing=HousingFacts(hazard_category="category_1"),
            limitation_date=date(2030, 1, 1),
        )
        assert "hazard_unrepaired" not in flag_types(evaluate_risks(facts, now=as_of))

    def test_stalled_at_intake(self, pi_case_without_letter, as_of):
        """Test a stalled intake is flagged."""
        flags = evaluate_risks(pi_case_without_letter, now=as_of)
        assert flag_types(flags) == ["stalled_at_intake"]
        assert flags[0].metadata["days"] == 112

        fresh = CaseFacts(
            case_id="PI-9",
            practice_area="personal_injury",
            events=(CaseEvent(date(2025, 5, 1), "accident"),),
            limitation_date=date(2028, 5, 1),
        )
        assert evaluate_risks(fresh, now=as_of) == []

    def test_hearing_imminent(self, as_of):
        """Test an imminent hearing is flagged."""
        facts = CaseFacts(
            case_id="F-2",
            practice_area="family",
            events=(
                CaseEvent(date(2025, 1, 6), "mediation_assessment_attended"),
                CaseEvent(date(2025, 3, 3), "application_issued"),
                CaseEvent(date(2025, 6, 10), "hearing_listed"),
                CaseEvent(date(2025, 7, 30), "hearing_listed"),
            ),
        )
        flags = evaluate_risks(facts, now=as_of)
        assert [f.flag_id for f in flags] == ["F-2:hearing_imminent:2025-06-10"]
        assert flags[0].metadata["days"] == 8


# ============================================================================
# IDENTITY AND METADATA
# ============================================================================

class TestFlagIdentity:
    """Stable identity and shared metadata."""

    def test_same_inputs_same_flags(self, housing_case, ew_calendar, as_of):
        """Test identical inputs give identical flags."""
        deadlines = calculate_case_deadlines(housing_case, ew_calendar, as_of)
        first = evaluate_risks(housing_case, now=as_of, deadlines=deadlines)
        second = evaluate_risks(housing_case, now=as_of, deadlines=deadlines)
        assert first == second

    def test_trigger_and_detected_at(self, housing_case):
        """Test trigger and detected_at metadata."""
        flags = evaluate_risks(housing_case, trigger="document_upload", now=date(2025, 6, 2))
        flag = flags[0]
        assert flag.trigger == "document_upload"
        assert flag.detected_at == datetime(2025, 6, 2, tzinfo=timezone.utc)
        assert flag.to_dict()["detected_at"] == "2025-06-02T00:00:00Z"

    def test_requires_evaluation_instant(self, housing_case):
        """Test evaluation needs an instant."""
        with pytest.raises(InvalidInput):
            evaluate_risks(housing_case)


# ============================================================================
# ROLL-UP
# ============================================================================

class TestRiskLevel:
    """assess_risk_level."""

    def test_no_flags_is_low(self):
        """Test no flags rolls up to low."""
        assessment = assess_risk_level([])
        assert assessment.level == "low"
        assert assessment.reasons == ()

    def test_critical_is_high(self):
        """Test a critical flag rolls up to high."""
        flags = [
            make_flag("C-1:no_response:2025-03-03", Severity.HIGH),
            make_flag("C-1:limitation_expired", Severity.CRITICAL),
        ]
        assessment = assess_risk_level(flags)
        assert assessment.level == "high"
        assert assessment.reasons[0] == "C-1:limitation_expired"

    @pytest.mark.parametrize("severity", [Severity.HIGH, Severity.MEDIUM])
    def test_high_or_medium_is_medium(self, severity):
        """Test high or medium flags roll up to medium."""
        assert assess_risk_level([make_flag("C-1:x", severity)]).level == "medium"

    def test_low_flags_are_low(self):
        """Test low flags roll up to low."""
        assert assess_risk_level([make_flag("C-1:x", Severity.LOW)]).level == "low"

    def test_reasons_are_unique(self):
        """Test roll-up reasons are de-duplicated."""
        flags = [
            make_flag("C-1:a", Severity.MEDIUM, "Same reason"),
            make_flag("C-1:b", Severity.MEDIUM, "Same reason"),
        ]
        assert assess_risk_level(flags).reasons == ("Same reason",)
