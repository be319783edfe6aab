"""Incremental-watermark polling of a mailbox."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ledger_ingest.adapters.base import MailQuery
from ledger_ingest.admission import is_admissible
from ledger_ingest.mail import to_mail_message

if TYPE_CHECKING:
    from collections.abc import Callable

    from ledger_ingest.adapters.base import Mailbox
    from ledger_ingest.config import PollerConfig
    from ledger_ingest.ingestion import IngestionCoordinator

logger = logging.getLogger(__name__)


@dataclass
class PollReport:
    """Counts for one poll tick."""

    candidates: int = 0
    already_ingested: int = 0
    ingested: int = 0
    skipped: int = 0
    failed: int = 0
    failed_ids: list[str] = field(default_factory=list)
    completed: bool = False


class MailboxPoller:
    """Feed new mailbox messages to the ingestion coordinator.

    The watermark (epoch seconds) belongs to this instance alone. After a
    completed tick it moves to the tick start minus ``overlap_seconds``;
    a tick that fails before finishing leaves it where it was.
    """

    def __init__(
        self,
        mailbox: Mailbox,
        coordinator: IngestionCoordinator,
        config: PollerConfig,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._mailbox = mailbox
        self._coordinator = coordinator
        self._config = config
        self._clock = clock
        self._watermark = int(clock()) - config.lookback_minutes * 60
        logger.info(
            "Mailbox poller initialized, looking back %d minutes",
            config.lookback_minutes,
        )

    @property
    def watermark(self) -> int:
        return self._watermark

    def poll_once(self) -> PollReport:
        tick_start = int(self._clock())
        report = PollReport()
        query = MailQuery(after=self._watermark, keywords=self._config.keywords)

        try:
            with self._mailbox as mailbox:
                logger.debug("Polling mailbox with query: %s", query)
                candidates = mailbox.search(query, self._config.max_results)
                report.candidates = len(candidates)
                if candidates:
                    logger.info("Found %d candidate emails", len(candidates))
                else:
                    logger.debug("No new transaction emails found")

                for external_id in candidates:
                    self._process_candidate(mailbox, external_id, report)
        except Exception:
            logger.exception("Error polling mailbox; watermark stays at %d", self._watermark)
            return report

        self._watermark = tick_start - self._config.overlap_seconds
        report.completed = True
        return report

    def _process_candidate(
        self, mailbox: Mailbox, external_id: str, report: PollReport
    ) -> None:
        try:
            if self._coordinator.is_already_ingested(external_id):
                logger.debug("Skipping already-ingested email %s", external_id)
                report.already_ingested += 1
                return

            mail = to_mail_message(mailbox.fetch(external_id), external_id)
            if not is_admissible(mail.body):
                self._coordinator.record_skipped(
                    mail.external_id, mail.sender, mail.body, mail.received_at
                )
                logger.debug("Skipped non-transaction email %s", external_id)
                report.skipped += 1
                return

            result = self._coordinator.ingest(
                "EMAIL", mail.external_id, mail.sender, mail.body, mail.received_at
            )
            if result.status == "duplicate":
                report.already_ingested += 1
            else:
                report.ingested += 1
                logger.info("Ingested email %s subject=%s", external_id, mail.subject)
        except Exception:
            logger.exception("Error processing email %s", external_id)
            report.failed += 1
            report.failed_ids.append(external_id)
