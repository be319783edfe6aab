"""Store protocols and their PostgreSQL implementations.

Each protocol exposes only the operations the ingestion pipeline uses.
The Postgres stores open one connection per call from an injected
factory, so every call is its own transaction.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

import psycopg.errors

from ledger_ingest.errors import DuplicateMessageError
from ledger_ingest.models import (
    HoldingAggregate,
    LedgerEntry,
    RawMessage,
    Source,
    Transaction,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    import psycopg

    ConnectionFactory = Callable[[], psycopg.Connection[dict[str, Any]]]

logger = logging.getLogger(__name__)


class RawMessageStore(Protocol):
    """Ledger of inbound messages and their processing state."""

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
    ) -> RawMessage: ...

    def get(self, message_id: int) -> RawMessage | None: ...

    def find_by_external_id(self, external_id: str) -> RawMessage | None: ...

    def mark_admitted(self, message_id: int) -> bool: ...

    def mark_processed(self, message_id: int, processed_at: datetime) -> None: ...

    def find_unprocessed(self) -> list[RawMessage]: ...


class TransactionStore(Protocol):
    def insert(self, transaction: Transaction) -> Transaction: ...

    def exists_in_window(
        self, dedupe_key: str, start: datetime, end: datetime
    ) -> bool: ...


class LedgerStore(Protocol):
    def insert(self, entry: LedgerEntry) -> LedgerEntry: ...


class HoldingStore(Protocol):
    def upsert(self, holding: HoldingAggregate) -> HoldingAggregate: ...


class PgRawMessageStore:
    """PostgreSQL implementation of RawMessageStore."""

    def __init__(self, connect: ConnectionFactory) -> None:
        self._connect = connect

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
        """Insert a raw message.

        Raises DuplicateMessageError when ``external_id`` is already taken.
        """
        params = {
            "source": source,
            "external_id": external_id,
            "sender": sender,
            "body": body,
            "received_at": received_at,
            "processed": processed,
            "processed_at": processed_at,
            "admitted": admitted,
        }
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO raw_message (
                        source, external_id, sender, body, received_at,
                        processed, processed_at, admitted
                    )
                    VALUES (
                        %(source)s, %(external_id)s, %(sender)s, %(body)s,
                        %(received_at)s, %(processed)s, %(processed_at)s,
                        %(admitted)s
                    )
                    RETURNING *
                    """,
                    params,
                ).fetchone()
        except psycopg.errors.UniqueViolation:
            raise DuplicateMessageError(external_id or "") from None
        return RawMessage.model_validate(row)

    def get(self, message_id: int) -> RawMessage | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM raw_message WHERE id = %s", (message_id,)
            ).fetchone()
        return RawMessage.model_validate(row) if row else None

    def find_by_external_id(self, external_id: str) -> RawMessage | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM raw_message WHERE external_id = %s", (external_id,)
            ).fetchone()
        return RawMessage.model_validate(row) if row else None

    def mark_admitted(self, message_id: int) -> bool:
        """Flip ``admitted`` on; False if another caller already did."""
        with self._connect() as conn:
            row = conn.execute(
                "UPDATE raw_message SET admitted = TRUE "
                "WHERE id = %s AND NOT admitted RETURNING id",
                (message_id,),
            ).fetchone()
        return row is not None

    def mark_processed(self, message_id: int, processed_at: datetime) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE raw_message SET processed = TRUE, processed_at = %s "
                "WHERE id = %s",
                (processed_at, message_id),
            )

    def find_unprocessed(self) -> list[RawMessage]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM raw_message WHERE NOT processed ORDER BY id"
            ).fetchall()
        return [RawMessage.model_validate(row) for row in rows]


class PgTransactionStore:
    """PostgreSQL implementation of TransactionStore."""

    def __init__(self, connect: ConnectionFactory) -> None:
        self._connect = connect

    def insert(self, transaction: Transaction) -> Transaction:
        params = transaction.model_dump(exclude={"id", "created_at"})
        with self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO transaction (
                    raw_message_id, amount, currency, merchant_name, category,
                    transaction_type, transaction_date, description, dedupe_key
                )
                VALUES (
                    %(raw_message_id)s, %(amount)s, %(currency)s,
                    %(merchant_name)s, %(category)s, %(transaction_type)s,
                    %(transaction_date)s, %(description)s, %(dedupe_key)s
                )
                RETURNING *
                """,
                params,
            ).fetchone()
        return Transaction.model_validate(row)

    def exists_in_window(self, dedupe_key: str, start: datetime, end: datetime) -> bool:
        """Whether a transaction with this key is dated within [start, end]."""
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT EXISTS (
                    SELECT 1 FROM transaction
                    WHERE dedupe_key = %s
                      AND transaction_date BETWEEN %s AND %s
                ) AS found
                """,
                (dedupe_key, start, end),
            ).fetchone()
        return bool(row and row["found"])


class PgLedgerStore:
    """PostgreSQL implementation of LedgerStore."""

    def __init__(self, connect: ConnectionFactory) -> None:
        self._connect = connect

    def insert(self, entry: LedgerEntry) -> LedgerEntry:
        params = entry.model_dump(exclude={"id"})
        with self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO ledger_entry (
                    raw_message_id, entry_type, instrument_type, symbol, name,
                    quantity, price, amount, currency, ledger_date, description
                )
                VALUES (
                    %(raw_message_id)s, %(entry_type)s, %(instrument_type)s,
                    %(symbol)s, %(name)s, %(quantity)s, %(price)s, %(amount)s,
                    %(currency)s, %(ledger_date)s, %(description)s
                )
                RETURNING id
                """,
                params,
            ).fetchone()
        return entry.model_copy(update={"id": row["id"] if row else None})


class PgHoldingStore:
    """PostgreSQL implementation of HoldingStore.

    The upsert is a single ``INSERT ... ON CONFLICT`` so concurrent buys of
    the same instrument both land in the running quantity.
    """

    def __init__(self, connect: ConnectionFactory) -> None:
        self._connect = connect

    def upsert(self, holding: HoldingAggregate) -> HoldingAggregate:
        params = holding.model_dump(exclude={"id"})
        params["symbol"] = holding.symbol or ""
        with self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO holding_aggregate (
                    raw_message_id, instrument_type, symbol, name, quantity,
                    average_price, current_value, currency, last_updated
                )
                VALUES (
                    %(raw_message_id)s, %(instrument_type)s, %(symbol)s,
                    %(name)s, %(quantity)s, %(average_price)s,
                    %(current_value)s, %(currency)s, %(last_updated)s
                )
                ON CONFLICT (instrument_type, symbol) DO UPDATE SET
                    quantity = holding_aggregate.quantity + EXCLUDED.quantity,
                    average_price = COALESCE(
                        EXCLUDED.average_price, holding_aggregate.average_price
                    ),
                    current_value = COALESCE(
                        EXCLUDED.current_value, holding_aggregate.current_value
                    ),
                    name = COALESCE(EXCLUDED.name, holding_aggregate.name),
                    raw_message_id = EXCLUDED.raw_message_id,
                    last_updated = now()
                RETURNING id, raw_message_id, instrument_type, symbol, name,
                    quantity, average_price, current_value, currency,
                    last_updated
                """,
                params,
            ).fetchone()
        if row is None:
            return holding
        result = dict(row)
        result["symbol"] = result["symbol"] or None
        logger.debug(
            "Upserted holding %s/%s quantity=%s",
            result["instrument_type"],
            result["symbol"],
            result["quantity"],
        )
        return HoldingAggregate.model_validate(result)
