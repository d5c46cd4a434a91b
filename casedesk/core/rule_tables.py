"""
Rule table dependencies.

The holiday table, deadline rules and scoring weights are read from disk
once per distinct configuration and shared across requests. Cache keys
are the settings values that select the files, so a changed path loads
a fresh table.

Usage:
    @router.post("/deadlines")
    async def case_deadlines(calendar: BusinessCalendar = Depends(get_business_calendar)):
        ...
"""

from functools import lru_cache
from typing import Optional

from fastapi import Depends

from casedesk.core.config import Settings, get_settings
from casedesk.services.business_calendar import BusinessCalendar, load_business_calendar
from casedesk.services.deadline_rules import DeadlineRuleSet, load_deadline_rules
from casedesk.services.priority_scorer import ScoringWeights, load_scoring_weights


@lru_cache
def cached_business_calendar(jurisdiction: str, holidays_path: Optional[str]) -> BusinessCalendar:
    return load_business_calendar(jurisdiction, holidays_path)


@lru_cache
def cached_deadline_rules(path: Optional[str]) -> DeadlineRuleSet:
    return load_deadline_rules(path)


@lru_cache
def cached_scoring_weights(path: Optional[str]) -> ScoringWeights:
    return load_scoring_weights(path)


def clear_rule_table_caches() -> None:
    """Forget loaded tables so the next request re-reads them."""
    cached_business_calendar.cache_clear()
    cached_deadline_rules.cache_clear()
    cached_scoring_weights.cache_clear()


# =============================================================================
# FastAPI dependencies
# =============================================================================

def get_business_calendar(settings: Settings = Depends(get_settings)) -> BusinessCalendar:
    return cached_business_calendar(settings.jurisdiction, settings.holidays_path)


def get_deadline_rules(settings: Settings = Depends(get_settings)) -> DeadlineRuleSet:
    return cached_deadline_rules(settings.deadline_rules_path)


def get_scoring_weights(settings: Settings = Depends(get_settings)) -> ScoringWeights:
    """Scoring weights for the configured override file (defaults when unset)."""
    return cached_scoring_weights(settings.scoring_weights_path)
