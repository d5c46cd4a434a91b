"""
Shared severity ordering.

Guidance ranking, risk-flag sorting and priority bands all rank by this
one table. Lower rank = more urgent.
"""

from enum import Enum
from typing import Iterable


class Severity(str, Enum):
    """Severity / urgency levels."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


SEVERITY_RANK = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
}


def severity_rank(severity: Severity) -> int:
    return SEVERITY_RANK[Severity(severity)]


def most_severe(severities: Iterable[Severity], default: Severity = Severity.LOW) -> Severity:
    """Return the most urgent severity in the iterable, or default if empty."""
    ranked = sorted((Severity(s) for s in severities), key=severity_rank)
    return ranked[0] if ranked else default
