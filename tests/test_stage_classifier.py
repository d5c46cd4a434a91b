"""
Tests for the Stage / Guidance Classifier - stage ladders and next steps.
"""
from datetime import date, timedelta

import pytest

from casedesk.core.errors import InvalidInput
from casedesk.models import (
    CaseEvent,
    CaseFacts,
    Confidence,
    HousingFacts,
    Severity,
    severity_rank,
)
from casedesk.models.derived import GUIDANCE_DISCLAIMER
from casedesk.services.stage_classifier import (
    STAGE_LADDERS,
    assess_stage,
    generate_guidance,
)


def ev(day: str, event_type: str) -> CaseEvent:
    return CaseEvent(event_date=date.fromisoformat(day), event_type=event_type)


def stage_order(facts: CaseFacts) -> int:
    stage = assess_stage(facts).stage
    return next(s.order for s in STAGE_LADDERS[facts.practice_area] if s.stage == stage)


# ============================================================================
# STAGE ASSESSMENT
# ============================================================================

class TestStageAssessment:
    """Stage ladders and the no-skipping rule."""

    def test_pi_without_letter_is_intake(self, pi_case_without_letter):
        """Test a case without a letter is at intake."""
        assessment = assess_stage(pi_case_without_letter)
        assert assessment.stage == "intake"
        assert assessment.reached == ("intake",)

    def test_housing_case_reaches_pre_action(self, housing_case):
        """Test the reference housing case reaches pre-action."""
        assessment = assess_stage(housing_case)
        assert assessment.stage == "pre_action"
        assert assessment.reached == ("intake", "investigation", "pre_action")
        assert any("letter_of_claim_sent" in i for i in assessment.indicators)

    def test_later_evidence_without_predecessor_never_advances(self):
        """Test a stage cannot be skipped."""
        facts = CaseFacts(
            case_id="HD-9",
            practice_area="housing_disrepair",
            events=(ev("2025-01-06", "defect_reported"), ev("2025-02-01", "letter_of_claim_sent")),
        )
        assert assess_stage(facts).stage == "intake"

    def test_event_before_predecessor_milestone_does_not_count(self):
        """Test evidence before the predecessor milestone is ignored."""
        facts = CaseFacts(
            case_id="PI-9",
            practice_area="personal_injury",
            events=(
                ev("2025-01-10", "defendant_response_received"),
                ev("2025-02-01", "letter_of_claim_sent"),
            ),
        )
        assert assess_stage(facts).stage == "pre_action"

    def test_monotonic_with_evidence(self):
        """Test adding evidence never moves the stage back."""
        timeline = [
            ev("2025-01-02", "accident"),
            ev("2025-02-03", "letter_of_claim_sent"),
            ev("2025-01-15", "defendant_response_received"),
            ev("2025-03-01", "defendant_response_received"),
            ev("2025-04-01", "proceedings_issued"),
            ev("2025-09-01", "trial_listed"),
        ]
        orders = []
        for i in range(len(timeline) + 1):
            facts = CaseFacts(case_id="PI-M", practice_area="personal_injury", events=tuple(timeline[:i]))
            orders.append(stage_order(facts))
        assert orders == sorted(orders)
        assert assess_stage(
            CaseFacts(case_id="PI-M", practice_area="personal_injury", events=tuple(timeline))
        ).stage == "trial"

    def test_settlement_and_closed_branches(self):
        """Test the settlement and closed branches."""
        settled = CaseFacts(
            case_id="PI-S",
            practice_area="personal_injury",
            events=(ev("2025-01-02", "accident"), ev("2025-03-02", "settlement_agreed")),
        )
        assert assess_stage(settled).stage == "settlement"
        closed = settled.with_events([ev("2025-04-01", "case_closed")])
        assert assess_stage(closed).stage == "closed"

    def test_clinical_negligence_ladder(self):
        """Test the clinical negligence ladder."""
        facts = CaseFacts(
            case_id="CN-1",
            practice_area="clinical_negligence",
            events=(
                ev("2025-01-02", "medical_records_requested"),
                ev("2025-02-20", "medical_report_requested"),
            ),
        )
        assert assess_stage(facts).stage == "expert_review"

    def test_family_ladder(self):
        """Test the family ladder."""
        facts = CaseFacts(
            case_id="F-1",
            practice_area="family",
            events=(
                ev("2025-01-02", "mediation_assessment_attended"),
                ev("2025-02-02", "application_issued"),
            ),
        )
        assert assess_stage(facts).stage == "proceedings"

    def test_unknown_event_types_are_ignored(self):
        """Test unknown event types do not advance the stage."""
        facts = CaseFacts(
            case_id="PI-U",
            practice_area="personal_injury",
            events=(ev("2025-01-02", "carrier_pigeon_received"),),
        )
        assert assess_stage(facts).stage == "intake"


class TestConfidence:
    """Confidence reflects dated evidence and known parties."""

    def test_empty_timeline_is_low(self):
        """Test an empty timeline is low confidence."""
        facts = CaseFacts(case_id="E", practice_area="personal_injury")
        assessment = assess_stage(facts)
        assert assessment.stage == "intake"
        assert assessment.confidence is Confidence.LOW

    def test_milestone_with_parties_is_high(self, housing_case):
        """Test a dated milestone with parties is high confidence."""
        assert assess_stage(housing_case).confidence is Confidence.HIGH

    def test_unknown_parties_is_medium(self, housing_case):
        """Test unknown parties lower confidence to medium."""
        facts = CaseFacts(
            case_id=housing_case.case_id,
            practice_area=housing_case.practice_area,
            events=housing_case.events,
            housing=housing_case.housing,
        )
        assert assess_stage(facts).confidence is Confidence.MEDIUM

    def test_dropped_events_are_reported(self):
        """Test dropped events appear in the indicators."""
        facts = CaseFacts.from_dict({
            "case_id": "D-1",
            "practice_area": "personal_injury",
            "events": [
                {"event_date": "not a date", "event_type": "accident"},
                {"event_date": "2025-01-02", "event_type": "accident"},
                "garbage",
            ],
        })
        assessment = assess_stage(facts)
        assert facts.dropped_events == 2
        assert any("dropped" in i for i in assessment.indicators)


# ============================================================================
# GUIDANCE
# ============================================================================

class TestGuidance:
    """Next-step generation and ordering."""

    def test_pi_without_letter_only_pre_claim_actions(self, pi_case_without_letter, ew_calendar, as_of):
        """Test intake guidance only suggests pre-claim steps."""
        guidance = generate_guidance(pi_case_without_letter, now=as_of, calendar=ew_calendar)
        assert guidance.stage == "intake"
        actions = [s.action for s in guidance.next_steps]
        assert "Gather initial evidence" in actions
        assert "Draft letter of claim" in actions
        assert all(s.category in ("evidence", "protocol") for s in guidance.next_steps)
        assert all(s.deadline is None for s in guidance.next_steps)

    def test_missed_deadlines_escalate_to_critical(self, housing_case, ew_calendar, as_of):
        """Test missed deadlines escalate steps to critical."""
        guidance = generate_guidance(housing_case, now=as_of, calendar=ew_calendar)
        assert guidance.stage == "pre_action"
        first, second = guidance.next_steps[:2]
        assert first.action == "Chase schedule of works"
        assert first.priority is Severity.CRITICAL
        assert first.deadline.rule_id == "housing-repair-after-inspection"
        assert second.deadline.rule_id == "housing-protocol-response"
        assert second.priority is Severity.CRITICAL

    def test_steps_sorted_by_severity_then_due_date(self, housing_case, ew_calendar, as_of):
        """Test steps sort by severity then due date."""
        steps = generate_guidance(housing_case, now=as_of, calendar=ew_calendar).next_steps
        ranks = [severity_rank(s.priority) for s in steps]
        assert ranks == sorted(ranks)
        # Undated steps come after dated ones of the same severity
        for a, b in zip(steps, steps[1:]):
            if a.priority == b.priority and a.deadline is None:
                assert b.deadline is None

    def test_housing_intake_conditions(self, ew_calendar, as_of):
        """Test conditional housing intake steps."""
        facts = CaseFacts(
            case_id="HD-I",
            practice_area="housing_disrepair",
            events=(ev("2025-05-28", "defect_reported"),),
            housing=HousingFacts(landlord_type="council", hazard_category="category_1"),
            parties=("landlord",),
        )
        guidance = generate_guidance(facts, now=as_of, calendar=ew_calendar)
        by_action = {s.action: s for s in guidance.next_steps}
        awaabs = by_action["Monitor Awaab's Law compliance (14-day investigation deadline)"]
        assert awaabs.deadline.due_date == date(2025, 6, 11)
        assert "Flag Category 1 HHSRS hazards - immediate action required" in by_action

    def test_private_landlord_gets_no_awaabs_step(self, ew_calendar, as_of):
        """Test private landlords get no Awaab's Law step."""
        facts = CaseFacts(
            case_id="HD-P",
            practice_area="housing_disrepair",
            events=(ev("2025-05-28", "defect_reported"),),
            housing=HousingFacts(landlord_type="private"),
        )
        guidance = generate_guidance(facts, now=as_of, calendar=ew_calendar)
        assert all("Awaab" not in s.action for s in guidance.next_steps)

    def test_no_access_and_failed_repairs(self, ew_calendar, as_of):
        """Test no-access and failed-repair steps."""
        facts = CaseFacts(
            case_id="HD-N",
            practice_area="housing_disrepair",
            events=(ev("2025-03-01", "defect_reported"), ev("2025-03-10", "landlord_response_received")),
            housing=HousingFacts(repair_attempts=3, no_access_days=45),
        )
        guidance = generate_guidance(facts, now=as_of, calendar=ew_calendar)
        assert guidance.stage == "investigation"
        actions = [s.action for s in guidance.next_steps]
        assert "Investigate no-access pattern - may indicate bad faith" in actions
        assert "Consider escalation - multiple failed repair attempts" in actions

    def test_limitation_step_within_window(self, pi_case_without_letter, ew_calendar, as_of):
        """Test a near limitation date adds a critical step."""
        facts = CaseFacts(
            case_id="PI-L",
            practice_area="personal_injury",
            events=pi_case_without_letter.events,
            limitation_date=as_of.date() + timedelta(days=20),
            parties=("defendant",),
        )
        guidance = generate_guidance(facts, now=as_of, calendar=ew_calendar)
        first = guidance.next_steps[0]
        assert first.category == "limitation"
        assert first.priority is Severity.CRITICAL
        assert first.deadline.rule_id == "limitation-period"

    def test_no_limitation_step_once_issued(self, ew_calendar, as_of):
        """Test issued claims get no limitation step."""
        facts = CaseFacts(
            case_id="PI-I",
            practice_area="personal_injury",
            events=(ev("2025-01-02", "letter_of_claim_sent"), ev("2025-05-01", "proceedings_issued")),
            limitation_date=as_of.date() + timedelta(days=10),
        )
        guidance = generate_guidance(facts, now=as_of, calendar=ew_calendar)
        assert all(s.category != "limitation" for s in guidance.next_steps)

    def test_timeline_events_and_area_override(self, ew_calendar, as_of):
        """Test extra timeline events and a practice area override."""
        facts = CaseFacts(case_id="X-1", practice_area="personal_injury")
        guidance = generate_guidance(
            facts,
            timeline_events=[ev("2025-01-02", "mediation_assessment_attended")],
            practice_area="family",
            now=as_of,
            calendar=ew_calendar,
        )
        assert guidance.practice_area == "family"
        assert guidance.stage == "mediation"

    def test_missing_timeline_events(self, pi_case_without_letter, as_of):
        """Test None timeline events are treated as empty."""
        guidance = generate_guidance(pi_case_without_letter, None, None, now=as_of, deadlines=[])
        assert guidance.stage == "intake"

    def test_raw_and_malformed_timeline_events(self, pi_case_without_letter, as_of):
        """Test raw timeline dicts are parsed and bad ones dropped."""
        guidance = generate_guidance(
            pi_case_without_letter,
            [
                {"event_date": "garbage"},
                {"event_date": "2025-03-03", "event_type": "letter_of_claim_sent"},
                "noise",
            ],
            now=as_of,
            deadlines=[],
        )
        assert guidance.stage == "pre_action"
        assert "2 timeline event(s) dropped as unparseable" in guidance.indicators

    def test_invalid_area_override(self, pi_case_without_letter, ew_calendar, as_of):
        """Test an unknown practice area override is rejected."""
        with pytest.raises(InvalidInput):
            generate_guidance(pi_case_without_letter, practice_area="maritime", now=as_of, calendar=ew_calendar)

    def test_requires_calendar_or_deadlines(self, pi_case_without_letter, as_of):
        """Test guidance needs a calendar or deadlines."""
        with pytest.raises(InvalidInput):
            generate_guidance(pi_case_without_letter, now=as_of)
        guidance = generate_guidance(pi_case_without_letter, now=as_of, deadlines=[])
        assert guidance.stage == "intake"

    def test_requires_evaluation_instant(self, pi_case_without_letter, ew_calendar):
        """Test guidance needs an evaluation instant."""
        with pytest.raises(InvalidInput):
            generate_guidance(pi_case_without_letter, calendar=ew_calendar)

    def test_disclaimer_and_templates(self, housing_case, ew_calendar, as_of):
        """Test the disclaimer and template list."""
        data = generate_guidance(housing_case, now=as_of, calendar=ew_calendar).to_dict()
        assert data["disclaimer"] == GUIDANCE_DISCLAIMER
        assert len(data["recommended_templates"]) == len(set(data["recommended_templates"]))
        assert "EXPERT_INSTRUCTION" in data["recommended_templates"]
