"""
Casedesk - Shared Test Fixtures
Provides calendars, evaluation instants and case snapshots.
"""

import os
from datetime import date, datetime, timezone
from typing import AsyncGenerator

import pytest
from httpx import AsyncClient, ASGITransport

# Configure test environment BEFORE importing app
os.environ["JURISDICTION"] = "england-and-wales"
os.environ["HOLIDAYS_PATH"] = ""
os.environ["DEADLINE_RULES_PATH"] = ""
os.environ["SCORING_WEIGHTS_PATH"] = ""
os.environ["LOG_LEVEL"] = "WARNING"

from casedesk.main import app
from casedesk.core.config import get_settings
from casedesk.models import CaseEvent, CaseFacts, HousingFacts, PersonalInjuryFacts
from casedesk.services.business_calendar import BusinessCalendar, load_business_calendar


# =============================================================================
# Core Fixtures
# =============================================================================

@pytest.fixture
def anyio_backend():
    """Use asyncio for async tests."""
    return "asyncio"


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Create async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def settings():
    """Get test settings."""
    return get_settings()


# =============================================================================
# Calendar Fixtures
# =============================================================================

@pytest.fixture(scope="session")
def ew_calendar() -> BusinessCalendar:
    """England & Wales calendar from the packaged holiday table."""
    return load_business_calendar("england-and-wales")


@pytest.fixture
def weekends_only() -> BusinessCalendar:
    return BusinessCalendar()


@pytest.fixture
def as_of() -> datetime:
    """Fixed evaluation instant used across engine tests."""
    return datetime(2025, 6, 2, 9, 0, tzinfo=timezone.utc)


# =============================================================================
# Case Fixtures
# =============================================================================

def _event(day: str, event_type: str, label: str = "") -> CaseEvent:
    return CaseEvent(event_date=date.fromisoformat(day), event_type=event_type, label=label)


@pytest.fixture
def housing_case() -> CaseFacts:
    """Social landlord, damp and mould, asthmatic child, letter of claim sent."""
    return CaseFacts(
        case_id="HD-001",
        practice_area="housing_disrepair",
        events=(
            _event("2025-01-06", "defect_reported", "Tenant reports black mould in bedroom"),
            _event("2025-01-20", "inspection_completed", "Surveyor visit"),
            _event("2025-03-03", "letter_of_claim_sent", "Letter of claim"),
        ),
        housing=HousingFacts(
            landlord_type="housing_association",
            hazard_category="category_1",
            hazard_severity="high",
            hazards=("damp and mould",),
            vulnerability=("child with asthma",),
            repair_attempts=1,
        ),
        limitation_date=date(2030, 1, 6),
        parties=("claimant", "landlord"),
    )


@pytest.fixture
def pi_case_without_letter() -> CaseFacts:
    """Road traffic accident, nothing sent yet."""
    return CaseFacts(
        case_id="PI-001",
        practice_area="personal_injury",
        events=(_event("2025-02-10", "accident", "RTA on A40"),),
        personal_injury=PersonalInjuryFacts(injury_severity="moderate"),
        limitation_date=date(2028, 2, 10),
        parties=("claimant", "defendant"),
    )


@pytest.fixture
def housing_payload() -> dict:
    """Boundary JSON for a housing case."""
    return {
        "case_id": "HD-API-1",
        "practice_area": "housing_disrepair",
        "events": [
            {"event_date": "2025-01-06", "event_type": "defect_reported", "label": "Damp reported"},
            {"event_date": "2025-01-20", "event_type": "inspection_completed"},
            {"event_date": "2025-03-03", "event_type": "letter_of_claim_sent"},
        ],
        "housing": {
            "landlord_type": "council",
            "hazard_category": "category_1",
            "hazards": ["damp and mould"],
            "vulnerability": ["asthma"],
            "repair_attempts": 0,
        },
        "limitation_date": "2030-01-06",
        "parties": ["claimant", "landlord"],
    }
