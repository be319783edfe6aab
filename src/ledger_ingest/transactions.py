"""Transaction extraction and cross-channel deduplication."""

from __future__ import annotations

import hashlib
import logging
import threading
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Literal

from ledger_ingest.models import Transaction

if TYPE_CHECKING:
    from decimal import Decimal

    from ledger_ingest.extraction import TransactionParser
    from ledger_ingest.models import RawMessage
    from ledger_ingest.notify import Notifier
    from ledger_ingest.store import RawMessageStore, TransactionStore

logger = logging.getLogger(__name__)

ExtractOutcome = Literal["created", "deduped", "no-match", "skipped"]

DEDUPE_WINDOW_BEFORE = timedelta(days=7)
DEDUPE_WINDOW_AFTER = timedelta(days=1)


def compute_dedupe_key(
    amount: Decimal | None,
    currency: str | None,
    transaction_type: str | None,
    transaction_date: datetime | None,
    merchant_name: str | None,
) -> str:
    """Fingerprint a transaction so the SMS and email for one payment collide.

    Amount drops trailing zeros, type is upper-cased, the date is reduced to
    the day and the merchant is trimmed, upper-cased and whitespace-collapsed.
    """
    amount_str = format(amount.normalize(), "f") if amount is not None else ""
    type_str = transaction_type.upper() if transaction_type else ""
    date_str = transaction_date.date().isoformat() if transaction_date else ""
    merchant = " ".join(merchant_name.split()).upper() if merchant_name else ""
    payload = f"{amount_str}|{currency or ''}|{type_str}|{date_str}|{merchant}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class TransactionExtractor:
    """Parse one raw message into at most one stored transaction."""

    def __init__(
        self,
        parser: TransactionParser,
        messages: RawMessageStore,
        transactions: TransactionStore,
        notifier: Notifier,
        *,
        default_currency: str = "INR",
    ) -> None:
        self._parser = parser
        self._messages = messages
        self._transactions = transactions
        self._notifier = notifier
        self._default_currency = default_currency
        self._insert_lock = threading.Lock()

    def extract_by_id(self, message_id: int) -> ExtractOutcome | None:
        """Reload a message and extract from it; the async trigger entry point."""
        message = self._messages.get(message_id)
        if message is None:
            logger.warning("Raw message id=%s not found for extraction", message_id)
            return None
        return self.extract_one(message)

    def extract_one(self, message: RawMessage) -> ExtractOutcome:
        """Run one parse attempt; the message is processed afterwards either way."""
        if message.processed:
            return "skipped"

        parsed = self._parser.parse(message.body)
        if parsed is None:
            logger.debug("No transaction parsed from raw message id=%s", message.id)
            self._mark_processed(message)
            return "no-match"

        txn_date = parsed.transaction_date or message.received_at
        if txn_date.tzinfo is None:
            txn_date = txn_date.replace(tzinfo=UTC)
        currency = (parsed.currency or "").strip() or self._default_currency
        dedupe_key = compute_dedupe_key(
            parsed.amount,
            currency,
            parsed.transaction_type,
            txn_date,
            parsed.merchant_name,
        )

        with self._insert_lock:
            if self._transactions.exists_in_window(
                dedupe_key,
                txn_date - DEDUPE_WINDOW_BEFORE,
                txn_date + DEDUPE_WINDOW_AFTER,
            ):
                self._mark_processed(message)
                logger.info(
                    "Skipped duplicate transaction for raw message id=%s, dedupe_key=%s",
                    message.id,
                    dedupe_key,
                )
                return "deduped"

            txn = self._transactions.insert(
                Transaction(
                    raw_message_id=message.id,
                    amount=parsed.amount,
                    currency=currency,
                    merchant_name=parsed.merchant_name,
                    category=parsed.category,
                    transaction_type=parsed.transaction_type,  # type: ignore[arg-type]
                    transaction_date=txn_date,
                    description=parsed.description,
                    dedupe_key=dedupe_key,
                )
            )
        self._mark_processed(message)

        self._notifier.notify_new_transaction(txn)
        logger.info(
            "Saved transaction id=%s from raw message id=%s", txn.id, message.id
        )
        return "created"

    def _mark_processed(self, message: RawMessage) -> None:
        self._messages.mark_processed(message.id, datetime.now(tz=UTC))
