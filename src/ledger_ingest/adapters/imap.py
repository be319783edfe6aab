"""IMAP mailbox adapter."""

from __future__ import annotations

import hashlib
import imaplib
import logging
import re
from datetime import UTC, datetime
from email import message_from_bytes
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from email.message import Message
    from types import TracebackType

    from ledger_ingest.adapters.base import MailQuery
    from ledger_ingest.config import ImapConfig

logger = logging.getLogger(__name__)

_UID_RE = re.compile(rb"\bUID (\d+)")
_MONTHS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)  # fmt: skip
_HEADER_FIELDS = "(UID BODY.PEEK[HEADER.FIELDS (MESSAGE-ID SUBJECT DATE FROM)])"
_GMAIL_CAPABILITY = "X-GM-EXT-1"


class ImapMailbox:
    """Read-only mailbox over IMAP4_SSL.

    External ids are Message-ID headers, discovered with a header-only
    fetch so full messages are downloaded only on request.
    """

    def __init__(self, config: ImapConfig) -> None:
        self.config = config
        self._conn: imaplib.IMAP4_SSL | None = None
        self._uids: dict[str, str] = {}

    def __enter__(self) -> ImapMailbox:
        conn = imaplib.IMAP4_SSL(self.config.host, self.config.port)
        try:
            conn.login(self.config.username, self.config.password)
            conn.select(self.config.folder, readonly=True)
        except Exception:
            self._logout(conn)
            raise
        self._conn = conn
        self._uids = {}
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._conn is not None:
            self._logout(self._conn)
            self._conn = None

    def search(self, query: MailQuery, limit: int) -> list[str]:
        """Return external ids of up to ``limit`` matching messages, newest first."""
        conn = self._require_connection()
        uids = self._search_uids(conn, query)
        if not uids:
            return []

        page = list(reversed(uids[-limit:])) if limit > 0 else []
        found = self._fetch_message_ids(conn, page)
        return [found[uid] for uid in page if uid in found]

    def fetch(self, external_id: str) -> Message:
        """Fetch the full message for an id returned by ``search``."""
        conn = self._require_connection()
        uid = self._uids.get(external_id)
        if uid is None:
            msg = f"Message {external_id!r} was not returned by search"
            raise KeyError(msg)

        _status, data = conn.uid("FETCH", uid, "(RFC822)")
        for part in data or []:
            if isinstance(part, tuple):
                return message_from_bytes(part[1])
        msg = f"No content returned for message {external_id!r}"
        raise LookupError(msg)

    def _search_uids(self, conn: imaplib.IMAP4_SSL, query: MailQuery) -> list[str]:
        if _GMAIL_CAPABILITY in conn.capabilities:
            status, data = conn.uid("SEARCH", "X-GM-RAW", _quote(query.to_gmail()))
        else:
            status, data = conn.uid("SEARCH", build_imap_criteria(query))
        if status != "OK":
            msg = f"IMAP search failed with status {status}"
            raise imaplib.IMAP4.error(msg)

        raw = data[0] if data else None
        if not raw:
            return []
        return [uid.decode() for uid in raw.split()]

    def _fetch_message_ids(
        self, conn: imaplib.IMAP4_SSL, uids: list[str]
    ) -> dict[str, str]:
        """Map UIDs to external ids using header-only fetches."""
        if not uids:
            return {}
        _status, data = conn.uid("FETCH", ",".join(uids), _HEADER_FIELDS)

        found: dict[str, str] = {}
        # Servers may put UID after the header literal, in the trailing bytes.
        pending: bytes | None = None
        for part in data or []:
            if isinstance(part, tuple):
                match = _UID_RE.search(part[0])
                if match is None:
                    pending = part[1]
                    continue
                headers, pending = part[1], None
            elif isinstance(part, bytes) and pending is not None:
                match = _UID_RE.search(part)
                headers, pending = pending, None
                if match is None:
                    continue
            else:
                continue
            uid = match.group(1).decode()
            external_id = self._get_message_id(message_from_bytes(headers))
            found[uid] = external_id
            self._uids[external_id] = uid
        return found

    def _require_connection(self) -> imaplib.IMAP4_SSL:
        if self._conn is None:
            msg = "Mailbox session is not open"
            raise RuntimeError(msg)
        return self._conn

    @staticmethod
    def _logout(conn: imaplib.IMAP4_SSL) -> None:
        try:
            conn.logout()
        except Exception:
            logger.debug("Error during IMAP logout", exc_info=True)

    @staticmethod
    def _get_message_id(msg: Message) -> str:
        """Extract a unique identifier for the message.

        Uses the Message-ID header if present; falls back to a hash
        of subject + date + sender.
        """
        message_id = msg.get("Message-ID")
        if message_id:
            return message_id.strip()

        subject = msg.get("Subject", "")
        date = msg.get("Date", "")
        sender = msg.get("From", "")
        key = f"{subject}|{date}|{sender}"
        return hashlib.sha256(key.encode()).hexdigest()


def build_imap_criteria(query: MailQuery) -> str:
    """Translate a MailQuery into standard IMAP SEARCH criteria.

    SINCE only has day granularity; already-ingested messages are
    filtered out later by external id.
    """
    since = datetime.fromtimestamp(query.after, tz=UTC)
    criteria = f"SINCE {since.day:02d}-{_MONTHS[since.month - 1]}-{since.year}"

    terms = [f"TEXT {_quote(k.strip())}" for k in query.keywords if k.strip()]
    if terms:
        criteria = f"{criteria} {_or_tree(terms)}"
    return criteria


def _or_tree(terms: list[str]) -> str:
    if len(terms) == 1:
        return terms[0]
    return f"OR {terms[0]} {_or_tree(terms[1:])}"


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'
