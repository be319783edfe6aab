"""Error types and structured error bodies."""

from __future__ import annotations

from datetime import UTC, datetime
from http import HTTPStatus
from typing import Any


class LedgerIngestError(Exception):
    """Base exception for ledger-ingest."""


class DuplicateMessageError(LedgerIngestError):
    """A raw message with the same external id is already stored."""

    def __init__(self, external_id: str) -> None:
        super().__init__(f"Raw message with external id {external_id!r} already exists")
        self.external_id = external_id


class PayloadValidationError(LedgerIngestError):
    """An inbound payload failed validation.

    ``field_errors`` holds one ``{"field": ..., "message": ...}`` dict per
    offending field.
    """

    def __init__(self, field_errors: list[dict[str, str]]) -> None:
        fields = ", ".join(e["field"] for e in field_errors)
        super().__init__(f"Validation failed for: {fields}")
        self.field_errors = field_errors


def error_body(
    status: int, message: str, details: Any | None = None
) -> dict[str, Any]:
    """Build the JSON error body returned to ingestion clients."""
    body: dict[str, Any] = {
        "timestamp": datetime.now(tz=UTC).isoformat(),
        "status": status,
        "error": HTTPStatus(status).phrase,
        "message": message,
    }
    if details is not None:
        body["details"] = details
    return body


def validation_error_body(exc: PayloadValidationError) -> dict[str, Any]:
    """Render a PayloadValidationError as a 400 body."""
    return error_body(400, "Validation failed", exc.field_errors)


def internal_error_body() -> dict[str, Any]:
    """Render a generic 500 body that leaks no internal detail."""
    return error_body(500, "An unexpected error occurred. Please try again later.")
