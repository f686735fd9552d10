"""Keyword-based buying-intent detection."""

from __future__ import annotations

import re

#: Intents in precedence order; the first intent with a matching keyword wins.
INTENT_KEYWORDS: dict[str, tuple[str, ...]] = {
    "purchase": ("buy", "purchase", "order", "get", "need", "want", "interested in"),
    "pricing": ("price", "cost", "how much", "expensive", "cheap", "rate"),
    "availability": ("available", "stock", "in stock", "have", "do you sell"),
    "information": ("tell me", "information", "details", "about", "what is"),
}

_PATTERNS = {
    intent: re.compile(
        r"\b(" + "|".join(re.escape(k) for k in keywords) + r")\b", re.IGNORECASE
    )
    for intent, keywords in INTENT_KEYWORDS.items()
}


def detect_intent(text: str) -> str | None:
    """Return the buying intent expressed by ``text``, or ``None``."""

    for intent, pattern in _PATTERNS.items():
        if pattern.search(text or ""):
            return intent
    return None
