"""Heuristic gate deciding whether a message is worth extracting."""

from __future__ import annotations

import re

FINANCE_KEYWORDS = (
    "debit",
    "debited",
    "credit",
    "credited",
    "transferred",
    "transaction",
    "payment",
    "paid",
    "upi",
    "imps",
    "neft",
    "rtgs",
    "withdrawn",
    "purchased",
    "bought",
    "sold",
    "redeemed",
    "redemption",
    "invested",
    "sip",
    "units",
    "nav",
    "shares",
    "stock",
    "allotted",
)

PROMOTIONAL_KEYWORDS = (
    "unsubscribe",
    "promotion",
    "promotional",
    "offer",
    "offers",
    "newsletter",
    "cashback offer",
    "limited time",
    "webinar",
)


def _word_pattern(words: tuple[str, ...]) -> re.Pattern[str]:
    alternatives = "|".join(re.escape(w) for w in words)
    return re.compile(rf"\b(?:{alternatives})\b", re.IGNORECASE)


_FINANCE_RE = _word_pattern(FINANCE_KEYWORDS)
_PROMOTIONAL_RE = _word_pattern(PROMOTIONAL_KEYWORDS)
_DIGIT_RE = re.compile(r"\d")


def is_admissible(body: str | None) -> bool:
    """Return True if ``body`` looks like a financial event worth parsing.

    Requires a finance keyword and a digit, and no promotional keyword.
    """
    if not body or not body.strip():
        return False
    if _PROMOTIONAL_RE.search(body):
        return False
    return bool(_FINANCE_RE.search(body)) and bool(_DIGIT_RE.search(body))
