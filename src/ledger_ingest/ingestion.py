"""Single entry point for SMS and email ingestion."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Literal

from pydantic import ValidationError

from ledger_ingest.admission import is_admissible
from ledger_ingest.errors import DuplicateMessageError, PayloadValidationError
from ledger_ingest.models import RawMessage, SmsPayload, Source

if TYPE_CHECKING:
    from ledger_ingest.dispatch import TaskDispatcher
    from ledger_ingest.holdings import HoldingsExtractor
    from ledger_ingest.notify import Notifier
    from ledger_ingest.store import RawMessageStore
    from ledger_ingest.transactions import TransactionExtractor

logger = logging.getLogger(__name__)

IngestStatus = Literal["accepted", "filtered", "duplicate"]


@dataclass
class IngestResult:
    """Outcome of one ingestion; ``message`` is None for duplicates."""

    status: IngestStatus
    message: RawMessage | None = None

    def acknowledgment(self) -> dict[str, Any]:
        """Body returned to the submitting client."""
        text = {
            "accepted": "Message queued for processing",
            "filtered": "Message stored; not a financial transaction",
            "duplicate": "Message already ingested",
        }[self.status]
        return {
            "status": "accepted" if self.status != "duplicate" else "duplicate",
            "ingestionId": self.message.id if self.message else None,
            "message": text,
        }


def parse_sms_payload(data: dict[str, Any]) -> SmsPayload:
    """Validate an inbound SMS payload.

    Raises PayloadValidationError with one message per invalid field.
    """
    try:
        return SmsPayload.model_validate(data)
    except ValidationError as exc:
        field_errors = []
        for error in exc.errors():
            field = str(error["loc"][0]) if error["loc"] else "payload"
            if field in ("sender", "body"):
                message = f"{field.capitalize()} must not be blank"
            else:
                message = error["msg"]
            field_errors.append({"field": field, "message": message})
        raise PayloadValidationError(field_errors) from None


def parse_received_at(value: str | None) -> datetime:
    """Parse an ISO-8601 timestamp, falling back to now."""
    if value is None or not value.strip():
        return datetime.now(tz=UTC)
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Could not parse receivedAt=%r, using current time", value)
        return datetime.now(tz=UTC)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class IngestionCoordinator:
    """Admit, persist and fan out inbound messages.

    Admitted messages are written twice (insert with ``admitted=False``,
    then the flag flip) and only then handed to both extractors on the
    dispatcher.
    """

    def __init__(
        self,
        messages: RawMessageStore,
        transaction_extractor: TransactionExtractor,
        holdings_extractor: HoldingsExtractor,
        dispatcher: TaskDispatcher,
        notifier: Notifier,
    ) -> None:
        self._messages = messages
        self._transactions = transaction_extractor
        self._holdings = holdings_extractor
        self._dispatcher = dispatcher
        self._notifier = notifier

    def ingest_sms(self, payload: SmsPayload) -> IngestResult:
        logger.info(
            "Ingesting SMS from sender=%s device=%s", payload.sender, payload.device_id
        )
        return self.ingest(
            "SMS",
            None,
            payload.sender,
            payload.body,
            parse_received_at(payload.received_at),
        )

    def ingest(
        self,
        source: Source,
        external_id: str | None,
        sender: str,
        body: str,
        received_at: datetime | None = None,
    ) -> IngestResult:
        """Store one inbound message and trigger extraction if it qualifies."""
        received_at = received_at or datetime.now(tz=UTC)

        if external_id:
            existing = self._messages.find_by_external_id(external_id)
            if existing is not None:
                if existing.admitted:
                    logger.debug("Skipping already-ingested message %s", external_id)
                    return IngestResult("duplicate")
                logger.info(
                    "Completing pending admission of raw message id=%s",
                    existing.id,
                )
                return self._admit(existing)

        if not is_admissible(body):
            stored = self._store_filtered(source, external_id, sender, body, received_at)
            if stored is None:
                return IngestResult("duplicate")
            logger.info(
                "Stored non-qualifying %s message id=%s without extraction",
                source,
                stored.id,
            )
            return IngestResult("filtered", stored)

        try:
            stored = self._messages.insert(
                source=source,
                external_id=external_id,
                sender=sender,
                body=body,
                received_at=received_at,
            )
        except DuplicateMessageError:
            logger.info("Concurrent admission of %s; treating as ingested", external_id)
            return IngestResult("duplicate")

        logger.info("Saved raw message id=%s source=%s", stored.id, source)
        return self._admit(stored)

    def record_skipped(
        self,
        external_id: str,
        sender: str,
        body: str,
        received_at: datetime | None = None,
    ) -> IngestResult:
        """Store a non-qualifying mailbox message so it is never re-fetched."""
        stored = self._store_filtered(
            "EMAIL", external_id, sender, body, received_at or datetime.now(tz=UTC)
        )
        if stored is None:
            return IngestResult("duplicate")
        return IngestResult("filtered", stored)

    def is_already_ingested(self, external_id: str) -> bool:
        existing = self._messages.find_by_external_id(external_id)
        return existing is not None and existing.admitted

    def _admit(self, message: RawMessage) -> IngestResult:
        # Only the caller that flips the flag runs extraction.
        if not self._messages.mark_admitted(message.id):
            logger.info(
                "Raw message id=%s admitted by a concurrent caller", message.id
            )
            return IngestResult("duplicate")
        admitted = message.model_copy(update={"admitted": True})

        self._dispatcher.submit(
            f"extract-transaction-{admitted.id}",
            self._transactions.extract_by_id,
            admitted.id,
        )
        self._dispatcher.submit(
            f"extract-holdings-{admitted.id}",
            self._holdings.extract_by_id,
            admitted.id,
        )
        self._notifier.notify_new_ingestion(admitted)
        return IngestResult("accepted", admitted)

    def _store_filtered(
        self,
        source: Source,
        external_id: str | None,
        sender: str,
        body: str,
        received_at: datetime,
    ) -> RawMessage | None:
        try:
            return self._messages.insert(
                source=source,
                external_id=external_id,
                sender=sender,
                body=body,
                received_at=received_at,
                processed=True,
                processed_at=datetime.now(tz=UTC),
                admitted=True,
            )
        except DuplicateMessageError:
            logger.debug("Filtered message %s already stored", external_id)
            return None
