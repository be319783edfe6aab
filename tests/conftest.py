"""Shared test fixtures and in-memory collaborators."""

from __future__ import annotations

import itertools
import threading
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import pytest

from ledger_ingest.config import ImapConfig
from ledger_ingest.errors import DuplicateMessageError
from ledger_ingest.models import (
    HoldingAggregate,
    LedgerEntry,
    RawMessage,
    Transaction,
    TransactionParseResult,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from ledger_ingest.models import Source


class FakeRawMessageStore:
    """RawMessageStore keeping rows in a dict, unique on external_id."""

    def __init__(self) -> None:
        self.rows: dict[int, RawMessage] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self.insert_calls = 0

    def insert(
        self,
        *,
        source: Source,
        external_id: str | None,
        sender: str,
        body: str,
        received_at: datetime,
        processed: bool = False,
        processed_at: datetime | None = None,
        admitted: bool = False,
    ) -> RawMessage:
        with self._lock:
            self.insert_calls += 1
            if external_id is not None and any(
                r.external_id == external_id for r in self.rows.values()
            ):
                raise DuplicateMessageError(external_id)
            message = RawMessage(
                id=next(self._ids),
                source=source,
                external_id=external_id,
                sender=sender,
                body=body,
                received_at=received_at,
                processed=processed,
                processed_at=processed_at,
                admitted=admitted,
            )
            self.rows[message.id] = message
            return message.model_copy()

    def get(self, message_id: int) -> RawMessage | None:
        row = self.rows.get(message_id)
        return row.model_copy() if row else None

    def find_by_external_id(self, external_id: str) -> RawMessage | None:
        for row in self.rows.values():
            if row.external_id == external_id:
                return row.model_copy()
        return None

    def mark_admitted(self, message_id: int) -> bool:
        with self._lock:
            row = self.rows[message_id]
            if row.admitted:
                return False
            self.rows[message_id] = row.model_copy(update={"admitted": True})
            return True

    def mark_processed(self, message_id: int, processed_at: datetime) -> None:
        self.rows[message_id] = self.rows[message_id].model_copy(
            update={"processed": True, "processed_at": processed_at}
        )

    def find_unprocessed(self) -> list[RawMessage]:
        return [r.model_copy() for r in self.rows.values() if not r.processed]


class FakeTransactionStore:
    def __init__(self) -> None:
        self.rows: list[Transaction] = []

    def insert(self, transaction: Transaction) -> Transaction:
        saved = transaction.model_copy(
            update={"id": len(self.rows) + 1, "created_at": datetime.now(tz=UTC)}
        )
        self.rows.append(saved)
        return saved

    def exists_in_window(self, dedupe_key: str, start: datetime, end: datetime) -> bool:
        return any(
            t.dedupe_key == dedupe_key and start <= t.transaction_date <= end
            for t in self.rows
        )


class FakeLedgerStore:
    def __init__(self) -> None:
        self.rows: list[LedgerEntry] = []

    def insert(self, entry: LedgerEntry) -> LedgerEntry:
        saved = entry.model_copy(update={"id": len(self.rows) + 1})
        self.rows.append(saved)
        return saved


class FakeHoldingStore:
    """HoldingStore with the same merge rules as the SQL upsert."""

    def __init__(self) -> None:
        self.rows: dict[tuple[str, str], HoldingAggregate] = {}

    def upsert(self, holding: HoldingAggregate) -> HoldingAggregate:
        key = (holding.instrument_type, holding.symbol or "")
        existing = self.rows.get(key)
        if existing is None:
            saved = holding.model_copy(update={"id": len(self.rows) + 1})
        else:
            update: dict[str, Any] = {
                "quantity": existing.quantity + holding.quantity,
                "last_updated": datetime.now(tz=UTC),
                "raw_message_id": holding.raw_message_id,
            }
            for name in ("average_price", "current_value", "name"):
                value = getattr(holding, name)
                if value is not None:
                    update[name] = value
            saved = existing.model_copy(update=update)
        self.rows[key] = saved
        return saved


class InlineDispatcher:
    """Dispatcher that runs tasks immediately and swallows their errors."""

    def __init__(self) -> None:
        self.submitted: list[str] = []
        self.failures: list[str] = []

    def submit(self, name: str, fn: Callable[..., Any], *args: Any) -> None:
        self.submitted.append(name)
        try:
            fn(*args)
        except Exception:
            self.failures.append(name)

    def shutdown(self, *, wait: bool = True) -> None:
        pass


class RecordingNotifier:
    def __init__(self) -> None:
        self.ingestions: list[RawMessage] = []
        self.transactions: list[Transaction] = []

    def notify_new_ingestion(self, message: RawMessage) -> None:
        self.ingestions.append(message)

    def notify_new_transaction(self, transaction: Transaction) -> None:
        self.transactions.append(transaction)


class StubParser:
    """Parser returning a fixed result and recording the texts it saw."""

    def __init__(self, result: TransactionParseResult | None = None) -> None:
        self.result = result
        self.calls: list[str] = []

    def parse(self, text: str) -> TransactionParseResult | None:
        self.calls.append(text)
        return self.result


@pytest.fixture
def imap_config() -> ImapConfig:
    """Provide a test IMAP configuration."""
    return ImapConfig(
        host="imap.example.com",
        username="test@example.com",
        password="secret",  # pragma: allowlist secret
        port=993,
        folder="INBOX",
    )


@pytest.fixture
def raw_store() -> FakeRawMessageStore:
    return FakeRawMessageStore()


@pytest.fixture
def transaction_store() -> FakeTransactionStore:
    return FakeTransactionStore()


@pytest.fixture
def ledger_store() -> FakeLedgerStore:
    return FakeLedgerStore()


@pytest.fixture
def holding_store() -> FakeHoldingStore:
    return FakeHoldingStore()


@pytest.fixture
def dispatcher() -> InlineDispatcher:
    return InlineDispatcher()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def debit_result() -> TransactionParseResult:
    """A parse result for a 250 INR card payment at Amazon Pay."""
    return TransactionParseResult(
        amount=Decimal("250.00"),
        currency="INR",
        merchant_name="Amazon Pay",
        transaction_type="DEBIT",
        transaction_date=datetime(2025, 6, 15, 10, 30, tzinfo=UTC),
    )


@pytest.fixture
def make_raw_message(
    raw_store: FakeRawMessageStore,
) -> Callable[..., RawMessage]:
    """Insert an admitted, unprocessed raw message into the fake store."""

    def _make(
        body: str = "Rs.250.00 debited from A/c XX1234 at Amazon Pay on 15-06-25",
        *,
        source: Source = "SMS",
        external_id: str | None = None,
        received_at: datetime | None = None,
    ) -> RawMessage:
        return raw_store.insert(
            source=source,
            external_id=external_id,
            sender="VM-HDFCBK",
            body=body,
            received_at=received_at or datetime(2025, 6, 15, 10, 31, tzinfo=UTC),
            admitted=True,
        )

    return _make


@pytest.fixture
def stub_parser() -> StubParser:
    """A parser that finds nothing until a test sets ``result``."""
    return StubParser()
