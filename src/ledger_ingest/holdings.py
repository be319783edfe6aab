"""Pattern-based extraction of stock and mutual fund holdings."""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING

from ledger_ingest.models import (
    INSTRUMENT_MUTUAL_FUND,
    INSTRUMENT_STOCK,
    HoldingAggregate,
    InstrumentType,
    LedgerEntry,
)

if TYPE_CHECKING:
    from ledger_ingest.models import RawMessage
    from ledger_ingest.store import HoldingStore, LedgerStore, RawMessageStore

logger = logging.getLogger(__name__)

NAME_MAX_LENGTH = 100
SYMBOL_MAX_LENGTH = 50

# Tried in order; every match of every pattern becomes a ledger entry.
PATTERNS = (
    # "purchased 100 units of XYZ Fund", "bought 50 shares of ABC at ..."
    re.compile(
        r"(?:purchased|bought|SIP|redeemed|sold)\s+([\d.,]+)\s+(?:units?|shares?)\s+"
        r"(?:of\s+)?([A-Za-z0-9\s]+?)(?:\s+at|\s+for|\s+@|$)",
        re.IGNORECASE,
    ),
    # "SIP of Rs.1000 processed for ABC Fund", "Invested Rs.5000 in XYZ"
    re.compile(
        r"(?:SIP|invested|investment|purchase|purchased)\s+(?:of\s+)?"
        r"(?:Rs\.?|INR|₹)?\s*([\d.,]+)\s+(?:in|for|into)\s+"
        r"([A-Za-z0-9\s]+?)(?:\s+fund|\s+mutual\s+fund|\s+scheme|$)",
        re.IGNORECASE,
    ),
    # "Units credited: 45.1234 in XYZ", "Shares allotted: 10"
    re.compile(
        r"(?:units?|shares?)\s+(?:credited|allotted|purchased|bought):\s*([\d.,]+)"
        r"\s*(?:(?:of|in|for)\s+)?([A-Za-z0-9\s]*)",
        re.IGNORECASE,
    ),
    # "10 shares RELIANCE has been ...", "100 units XYZ Fund"
    re.compile(
        r"([\d.,]+)\s+(?:units?|shares?)\s+(?!of\b)([A-Za-z0-9\s]+?)"
        r"(?:\s+has|\s+been|\s+at|\s+for|$)",
        re.IGNORECASE,
    ),
)

_SELL_WORDS = ("sold", "redeemed")
_MUTUAL_FUND_CUES = re.compile(r"mutual fund|\bmf\b|\bsip\b|\bnav\b", re.IGNORECASE)
_STOCK_CUES = re.compile(r"share|stock|equity|\bnse\b|\bbse\b", re.IGNORECASE)


def infer_instrument_type(body: str) -> InstrumentType:
    """Classify the message; mutual fund cues win over stock cues."""
    if _MUTUAL_FUND_CUES.search(body):
        return INSTRUMENT_MUTUAL_FUND
    if _STOCK_CUES.search(body):
        return INSTRUMENT_STOCK
    return INSTRUMENT_MUTUAL_FUND


def parse_quantity(raw: str) -> Decimal | None:
    """Parse a matched quantity; None unless it is a positive number."""
    try:
        qty = Decimal(raw.replace(",", "").rstrip("."))
    except InvalidOperation:
        return None
    if not qty.is_finite() or qty <= 0:
        return None
    return qty


class HoldingsExtractor:
    """Record ledger entries and running holdings found in a raw message."""

    def __init__(
        self,
        messages: RawMessageStore,
        ledger: LedgerStore,
        holdings: HoldingStore,
        *,
        default_currency: str = "INR",
    ) -> None:
        self._messages = messages
        self._ledger = ledger
        self._holdings = holdings
        self._default_currency = default_currency

    def extract_by_id(self, message_id: int) -> list[LedgerEntry]:
        message = self._messages.get(message_id)
        if message is None:
            logger.warning("Raw message id=%s not found for holdings", message_id)
            return []
        return self.extract_all(message)

    def extract_all(self, message: RawMessage) -> list[LedgerEntry]:
        """Persist one ledger entry per pattern match and upsert buy-side holdings.

        A failure on one match is logged and the remaining matches still run.
        """
        body = message.body
        if not body or not body.strip():
            logger.debug("Holdings parsing skipped: empty body for id=%s", message.id)
            return []

        entries: list[LedgerEntry] = []
        for pattern in PATTERNS:
            for match in pattern.finditer(body):
                try:
                    entry = self._record_match(message, match)
                except Exception:
                    logger.warning(
                        "Error processing holdings match for raw message id=%s",
                        message.id,
                        exc_info=True,
                    )
                    continue
                if entry is not None:
                    entries.append(entry)

        if entries:
            logger.info(
                "Recorded %d ledger entr%s for raw message id=%s",
                len(entries),
                "y" if len(entries) == 1 else "ies",
                message.id,
            )
        else:
            logger.debug("No holdings found in raw message id=%s", message.id)
        return entries

    def _record_match(
        self, message: RawMessage, match: re.Match[str]
    ) -> LedgerEntry | None:
        qty = parse_quantity(match.group(1))
        if qty is None:
            logger.debug("Skip non-numeric quantity: %s", match.group(1))
            return None

        name = (match.group(2) or "").strip()[:NAME_MAX_LENGTH]
        if not name:
            logger.debug("Skip match without instrument name: %s", match.group(0))
            return None
        symbol = name if len(name) <= SYMBOL_MAX_LENGTH else None

        # Up to the quantity, so the match's own verb ("sold 10 ...") counts.
        preceding = message.body[: match.start(1)].lower()
        is_sell = any(word in preceding for word in _SELL_WORDS)
        instrument_type = infer_instrument_type(message.body)
        ledger_date = message.received_at or datetime.now(tz=UTC)

        entry = self._ledger.insert(
            LedgerEntry(
                raw_message_id=message.id,
                entry_type="REDEMPTION" if is_sell else "SIP",
                instrument_type=instrument_type,
                symbol=symbol,
                name=name,
                quantity=qty,
                amount=Decimal(0),
                currency=self._default_currency,
                ledger_date=ledger_date,
                description=f"Parsed from {message.source}",
            )
        )

        if not is_sell:
            self._holdings.upsert(
                HoldingAggregate(
                    raw_message_id=message.id,
                    instrument_type=instrument_type,
                    symbol=symbol,
                    name=name,
                    quantity=qty,
                    currency=self._default_currency,
                    last_updated=ledger_date,
                )
            )
        return entry
