"""Sales lead capture from inbound customer messages."""

from .detector import INTENT_KEYWORDS, detect_intent
from .repository import (
    InMemoryLeadRepository,
    Lead,
    LeadRepository,
    LeadStatus,
    PostgresLeadRepository,
)

__all__ = [
    "INTENT_KEYWORDS",
    "InMemoryLeadRepository",
    "Lead",
    "LeadRepository",
    "LeadStatus",
    "PostgresLeadRepository",
    "detect_intent",
]
