"""
Casedesk engines.

Leaves first: business_calendar -> deadline_rules -> stage_classifier
-> priority_scorer / risk_engine. Every engine is a pure function of
its arguments.
"""

from .business_calendar import BusinessCalendar, load_business_calendar
from .deadline_rules import (
    DeadlineRule,
    DeadlineRuleSet,
    calculate_case_deadlines,
    calculate_court_deadlines,
    calculate_deadline,
    calculate_housing_deadlines,
    evaluate_status,
    load_deadline_rules,
)
from .stage_classifier import assess_stage, generate_guidance
from .priority_scorer import ScoringWeights, calculate_priority_score, load_scoring_weights
from .risk_engine import RiskThresholds, assess_risk_level, evaluate_risks

__all__ = [
    "BusinessCalendar",
    "load_business_calendar",
    "DeadlineRule",
    "DeadlineRuleSet",
    "calculate_case_deadlines",
    "calculate_court_deadlines",
    "calculate_deadline",
    "calculate_housing_deadlines",
    "evaluate_status",
    "load_deadline_rules",
    "assess_stage",
    "generate_guidance",
    "ScoringWeights",
    "calculate_priority_score",
    "load_scoring_weights",
    "RiskThresholds",
    "assess_risk_level",
    "evaluate_risks",
]
