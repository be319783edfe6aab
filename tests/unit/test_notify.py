"""Tests for ledger_ingest.notify."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from decimal import Decimal

import pytest

from ledger_ingest.models import RawMessage, Transaction
from ledger_ingest.notify import BroadcastNotifier, LoggingNotifier


@pytest.fixture
def message() -> RawMessage:
    return RawMessage(
        id=7,
        source="SMS",
        sender="VM-HDFCBK",
        body="Rs.250 debited",
        received_at=datetime(2025, 6, 15, 10, 31, tzinfo=UTC),
        admitted=True,
    )


@pytest.fixture
def transaction() -> Transaction:
    return Transaction(
        id=3,
        raw_message_id=7,
        amount=Decimal("250.00"),
        currency="INR",
        transaction_type="DEBIT",
        transaction_date=datetime(2025, 6, 15, 10, 30, tzinfo=UTC),
        dedupe_key="k",
    )


class TestLoggingNotifier:
    def test_logs_events(
        self,
        message: RawMessage,
        transaction: Transaction,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        notifier = LoggingNotifier()
        with caplog.at_level(logging.INFO, logger="ledger_ingest.notify"):
            notifier.notify_new_ingestion(message)
            notifier.notify_new_transaction(transaction)

        assert "New raw message id=7 source=SMS" in caplog.text
        assert "New transaction id=3 DEBIT 250.00 INR" in caplog.text


class TestBroadcastNotifier:
    """Tests for BroadcastNotifier."""

    def test_subscribers_receive_topic_and_payload(
        self, message: RawMessage, transaction: Transaction
    ) -> None:
        received: list[tuple[str, dict[str, object]]] = []
        notifier = BroadcastNotifier()
        notifier.subscribe(lambda topic, payload: received.append((topic, payload)))

        notifier.notify_new_ingestion(message)
        notifier.notify_new_transaction(transaction)

        assert [topic for topic, _ in received] == ["ingestion", "transactions"]
        assert received[0][1]["id"] == 7
        assert received[1][1]["amount"] == "250.00"
        assert received[1][1]["transaction_date"] == "2025-06-15T10:30:00Z"

    def test_failing_subscriber_does_not_block_others(
        self, message: RawMessage
    ) -> None:
        received: list[str] = []

        def broken(topic: str, payload: dict[str, object]) -> None:
            msg = "socket closed"
            raise ConnectionError(msg)

        notifier = BroadcastNotifier()
        notifier.subscribe(broken)
        notifier.subscribe(lambda topic, payload: received.append(topic))

        notifier.notify_new_ingestion(message)

        assert received == ["ingestion"]
