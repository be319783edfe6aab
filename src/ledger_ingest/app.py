"""Wire stores, extractors and scheduled jobs into a running pipeline."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ledger_ingest.db import get_connection
from ledger_ingest.dispatch import PeriodicTask, TaskDispatcher
from ledger_ingest.extraction import create_parser
from ledger_ingest.holdings import HoldingsExtractor
from ledger_ingest.ingestion import IngestionCoordinator
from ledger_ingest.notify import LoggingNotifier
from ledger_ingest.poller import MailboxPoller
from ledger_ingest.store import (
    PgHoldingStore,
    PgLedgerStore,
    PgRawMessageStore,
    PgTransactionStore,
)
from ledger_ingest.sweeper import BacklogSweeper
from ledger_ingest.transactions import TransactionExtractor

if TYPE_CHECKING:
    from ledger_ingest.adapters.base import Mailbox
    from ledger_ingest.config import PipelineConfig
    from ledger_ingest.extraction import TransactionParser
    from ledger_ingest.notify import Notifier
    from ledger_ingest.store import ConnectionFactory

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    """The assembled ingestion core."""

    config: PipelineConfig
    coordinator: IngestionCoordinator
    transaction_extractor: TransactionExtractor
    holdings_extractor: HoldingsExtractor
    sweeper: BacklogSweeper
    dispatcher: TaskDispatcher
    poller: MailboxPoller | None = None
    _tasks: list[PeriodicTask] = field(default_factory=list)

    def start(self) -> None:
        """Start one periodic task per scheduled job."""
        self._tasks.append(
            PeriodicTask(
                "backlog-sweeper",
                self.sweeper.sweep,
                self.config.backlog_interval_seconds,
            )
        )
        if self.poller is not None:
            self._tasks.append(
                PeriodicTask(
                    "mailbox-poller",
                    self.poller.poll_once,
                    self.config.poller.interval_seconds,
                )
            )
        for task in self._tasks:
            task.start()

    def stop(self) -> None:
        for task in self._tasks:
            task.stop()
        self._tasks.clear()
        self.dispatcher.shutdown(wait=True)

    def run_forever(self, stop_event: threading.Event | None = None) -> None:
        """Run scheduled jobs until interrupted or ``stop_event`` is set."""
        stop_event = stop_event or threading.Event()
        self.start()
        try:
            while not stop_event.wait(1.0):
                pass
        except KeyboardInterrupt:
            logger.info("Interrupted, shutting down")
        finally:
            self.stop()


def build_pipeline(
    config: PipelineConfig,
    *,
    connect: ConnectionFactory = get_connection,
    parser: TransactionParser | None = None,
    mailbox: Mailbox | None = None,
    notifier: Notifier | None = None,
) -> Pipeline:
    """Assemble the pipeline; the parser is chosen here, once."""
    if parser is None:
        parser = create_parser(enabled=config.ai_enabled)
    notifier = notifier or LoggingNotifier()

    messages = PgRawMessageStore(connect)
    dispatcher = TaskDispatcher(max_workers=config.worker_threads)

    transaction_extractor = TransactionExtractor(
        parser,
        messages,
        PgTransactionStore(connect),
        notifier,
        default_currency=config.default_currency,
    )
    holdings_extractor = HoldingsExtractor(
        messages,
        PgLedgerStore(connect),
        PgHoldingStore(connect),
        default_currency=config.default_currency,
    )
    coordinator = IngestionCoordinator(
        messages, transaction_extractor, holdings_extractor, dispatcher, notifier
    )

    poller = None
    if mailbox is not None:
        poller = MailboxPoller(mailbox, coordinator, config.poller)

    return Pipeline(
        config=config,
        coordinator=coordinator,
        transaction_extractor=transaction_extractor,
        holdings_extractor=holdings_extractor,
        sweeper=BacklogSweeper(messages, transaction_extractor),
        dispatcher=dispatcher,
        poller=poller,
    )
