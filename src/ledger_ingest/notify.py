"""Publish-only notifications for new messages and transactions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Callable

    from ledger_ingest.models import RawMessage, Transaction

logger = logging.getLogger(__name__)

TOPIC_INGESTION = "ingestion"
TOPIC_TRANSACTIONS = "transactions"


class Notifier(Protocol):
    """Broadcast sink; no acknowledgment, no back-pressure."""

    def notify_new_ingestion(self, message: RawMessage) -> None: ...

    def notify_new_transaction(self, transaction: Transaction) -> None: ...


class LoggingNotifier:
    """Notifier that only records events in the log."""

    def notify_new_ingestion(self, message: RawMessage) -> None:
        logger.info(
            "New raw message id=%s source=%s sender=%s",
            message.id,
            message.source,
            message.sender,
        )

    def notify_new_transaction(self, transaction: Transaction) -> None:
        logger.info(
            "New transaction id=%s %s %s %s",
            transaction.id,
            transaction.transaction_type,
            transaction.amount,
            transaction.currency,
        )


class BroadcastNotifier(LoggingNotifier):
    """Fan events out to in-process subscribers.

    Subscribers receive ``(topic, payload)`` where payload is the model's
    JSON-ready dict. A failing subscriber is logged and skipped.
    """

    def __init__(self) -> None:
        self._subscribers: list[Callable[[str, dict[str, object]], None]] = []

    def subscribe(self, callback: Callable[[str, dict[str, object]], None]) -> None:
        self._subscribers.append(callback)

    def notify_new_ingestion(self, message: RawMessage) -> None:
        super().notify_new_ingestion(message)
        self._publish(TOPIC_INGESTION, message.model_dump(mode="json"))

    def notify_new_transaction(self, transaction: Transaction) -> None:
        super().notify_new_transaction(transaction)
        self._publish(TOPIC_TRANSACTIONS, transaction.model_dump(mode="json"))

    def _publish(self, topic: str, payload: dict[str, object]) -> None:
        for callback in list(self._subscribers):
            try:
                callback(topic, payload)
            except Exception:
                logger.warning("Subscriber failed on topic %s", topic, exc_info=True)
