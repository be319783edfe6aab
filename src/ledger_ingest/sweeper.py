"""Periodic re-drive of unprocessed raw messages."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ledger_ingest.store import RawMessageStore
    from ledger_ingest.transactions import TransactionExtractor

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    examined: int = 0
    created: int = 0
    deduped: int = 0
    no_match: int = 0
    failed: int = 0


class BacklogSweeper:
    """Run the transaction extractor over every message still unprocessed."""

    def __init__(
        self, messages: RawMessageStore, extractor: TransactionExtractor
    ) -> None:
        self._messages = messages
        self._extractor = extractor

    def sweep(self) -> SweepReport:
        report = SweepReport()
        unprocessed = self._messages.find_unprocessed()
        if not unprocessed:
            logger.debug("Backlog: no unprocessed messages")
            return report

        logger.info("Backlog: processing %d unprocessed message(s)", len(unprocessed))
        for message in unprocessed:
            report.examined += 1
            try:
                outcome = self._extractor.extract_one(message)
            except Exception:
                logger.warning(
                    "Backlog: extraction failed for raw message id=%s",
                    message.id,
                    exc_info=True,
                )
                report.failed += 1
                continue

            if outcome == "created":
                report.created += 1
            elif outcome == "deduped":
                report.deduped += 1
            elif outcome == "no-match":
                report.no_match += 1
                logger.info(
                    "Backlog: no transaction in raw message id=%s (source=%s)",
                    message.id,
                    message.source,
                )

        logger.info(
            "Backlog done: %d created, %d duplicates, %d without transaction, "
            "%d failed",
            report.created,
            report.deduped,
            report.no_match,
            report.failed,
        )
        return report
