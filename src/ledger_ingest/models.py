"""Domain and extraction models for message ingestion."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

Source = Literal["SMS", "EMAIL"]
TransactionType = Literal["DEBIT", "CREDIT"]
EntryType = Literal["SIP", "REDEMPTION"]
InstrumentType = Literal["STOCK", "MUTUAL_FUND"]

INSTRUMENT_STOCK: InstrumentType = "STOCK"
INSTRUMENT_MUTUAL_FUND: InstrumentType = "MUTUAL_FUND"


@dataclass
class MailMessage:
    """A fetched email reduced to what ingestion needs."""

    external_id: str
    sender: str
    subject: str
    body: str
    received_at: datetime


class SmsPayload(BaseModel):
    """SMS pushed by a device bridge."""

    model_config = ConfigDict(populate_by_name=True)

    sender: str = Field(min_length=1)
    body: str = Field(min_length=1)
    received_at: str | None = Field(default=None, alias="receivedAt")
    device_id: str | None = Field(default=None, alias="deviceId")

    @field_validator("sender", "body")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            msg = "must not be blank"
            raise ValueError(msg)
        return value


class TransactionParseResult(BaseModel):
    """Transaction fields extracted from a message by the parser."""

    model_config = ConfigDict(populate_by_name=True)

    amount: Decimal
    currency: str | None = None
    merchant_name: str | None = Field(default=None, alias="merchantName")
    category: str | None = None
    transaction_type: str = Field(alias="transactionType")
    transaction_date: datetime | None = Field(default=None, alias="transactionDate")
    description: str | None = None

    @field_validator("amount", mode="before")
    @classmethod
    def _strip_thousands_separators(cls, value: object) -> object:
        if isinstance(value, str):
            return value.replace(",", "").strip()
        return value

    @field_validator("transaction_type")
    @classmethod
    def _upper_type(cls, value: str) -> str:
        return value.strip().upper()

    @field_validator("transaction_date", mode="before")
    @classmethod
    def _blank_date_is_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class RawMessage(BaseModel):
    """Inbound SMS or email as stored before extraction."""

    id: int
    source: Source
    external_id: str | None = None
    sender: str
    body: str
    received_at: datetime
    processed: bool = False
    processed_at: datetime | None = None
    admitted: bool = False


class Transaction(BaseModel):
    """A discrete debit or credit extracted from a raw message."""

    id: int | None = None
    raw_message_id: int | None = None
    amount: Decimal = Field(gt=0)
    currency: str
    merchant_name: str | None = None
    category: str | None = None
    transaction_type: TransactionType
    transaction_date: datetime
    description: str | None = None
    dedupe_key: str
    created_at: datetime | None = None


class LedgerEntry(BaseModel):
    """One holdings event matched in a raw message."""

    id: int | None = None
    raw_message_id: int | None = None
    entry_type: EntryType
    instrument_type: InstrumentType
    symbol: str | None = None
    name: str
    quantity: Decimal = Field(gt=0)
    price: Decimal | None = None
    amount: Decimal = Decimal(0)
    currency: str
    ledger_date: datetime
    description: str | None = None


class HoldingAggregate(BaseModel):
    """Running position per (instrument_type, symbol)."""

    id: int | None = None
    raw_message_id: int | None = None
    instrument_type: InstrumentType
    symbol: str | None = None
    name: str | None = None
    quantity: Decimal
    average_price: Decimal | None = None
    current_value: Decimal | None = None
    currency: str
    last_updated: datetime
