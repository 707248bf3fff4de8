"""
Relevance Filter and Urgency Classifier
=======================================

Keyword rules applied to a draft's title and description.

Version: 0.1.0
"""

from services.alert_ingestion.models import Draft, Urgency


HIGH_URGENCY_KEYWORDS: tuple[str, ...] = (
    "recall",
    "contamination",
    "outbreak",
    "fatality",
    "citation",
    "violation",
)

MEDIUM_URGENCY_KEYWORDS: tuple[str, ...] = (
    "advisory",
    "enforcement",
    "inspection",
    "guidance update",
)

# Ordered; first match wins
URGENCY_RULES: tuple[tuple[Urgency, tuple[str, ...]], ...] = (
    (Urgency.HIGH, HIGH_URGENCY_KEYWORDS),
    (Urgency.MEDIUM, MEDIUM_URGENCY_KEYWORDS),
)


def is_relevant(draft: Draft, keywords: list[str]) -> bool:
    """
    Case-insensitive substring match of any keyword.

    An empty keyword list accepts everything.
    """
    if not keywords:
        return True
    text = draft.text.lower()
    return any(keyword.lower() in text for keyword in keywords if keyword)


def classify_urgency(draft: Draft, default: Urgency) -> Urgency:
    """Urgency of the first matching rule, else the source default."""
    text = draft.text.lower()
    for urgency, keywords in URGENCY_RULES:
        if any(keyword in text for keyword in keywords):
            return urgency
    return default
