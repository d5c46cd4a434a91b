"""
Casedesk - derived-fact engines for legal case management.

Deadlines, litigation guidance, priority scoring and risk flags computed
from an immutable snapshot of a case's extracted facts.
"""

__version__ = "1.0.0"
