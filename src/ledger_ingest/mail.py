"""Reduce fetched email messages to ingestible text."""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from email.header import decode_header
from email.utils import parsedate_to_datetime
from html.parser import HTMLParser
from typing import TYPE_CHECKING, cast

from ledger_ingest.models import MailMessage

if TYPE_CHECKING:
    from email.message import Message

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")


def to_mail_message(msg: Message, external_id: str) -> MailMessage:
    """Convert an email Message to a MailMessage with a composite body."""
    subject = decode_header_value(msg.get("Subject", ""))
    sender = decode_header_value(msg.get("From", ""))
    body = extract_body(msg)

    return MailMessage(
        external_id=external_id,
        sender=sender,
        subject=subject,
        body=build_composite_body(subject, body),
        received_at=_parse_date(msg.get("Date")),
    )


def build_composite_body(subject: str, body: str) -> str:
    """Prefix the body with the subject so both reach the parser."""
    parts = []
    if subject and subject.strip():
        parts.append(f"[Subject: {subject.strip()}]")
    if body and body.strip():
        parts.append(body.strip())
    return " ".join(parts)


def decode_header_value(value: str | None) -> str:
    """Decode an RFC 2047 encoded header value."""
    if not value:
        return ""
    parts = decode_header(value)
    decoded_parts: list[str] = []
    for data, charset in parts:
        if isinstance(data, bytes):
            decoded_parts.append(data.decode(charset or "utf-8", errors="replace"))
        else:
            decoded_parts.append(data)
    return "".join(decoded_parts)


def extract_body(msg: Message) -> str:
    """Return the message text.

    Prefers the first text/plain part anywhere in the MIME tree, falling
    back to the first text/html part with tags stripped. Attachments are
    ignored.
    """
    text_body: str | None = None
    html_body: str | None = None

    for part in msg.walk():
        if part.get_content_maintype() == "multipart":
            continue
        disposition = str(part.get("Content-Disposition", "")).lower()
        if part.get_filename() or "attachment" in disposition:
            continue

        content_type = part.get_content_type()
        if content_type == "text/plain" and text_body is None:
            text_body = _decode_payload(part)
        elif content_type == "text/html" and html_body is None:
            html_body = _decode_payload(part)

    if text_body and text_body.strip():
        return text_body.strip()
    if html_body:
        return strip_html_tags(html_body)
    return ""


def strip_html_tags(html: str) -> str:
    """Remove HTML tags and collapse whitespace, returning only text."""
    stripper = _HTMLTagStripper()
    stripper.feed(html)
    stripper.close()
    return _WHITESPACE_RE.sub(" ", stripper.get_text()).strip()


def _decode_payload(part: Message) -> str | None:
    raw_payload = part.get_payload(decode=True)
    if raw_payload is None:
        return None
    payload = cast("bytes", raw_payload)
    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="replace")
    except LookupError:
        logger.debug("Unknown charset %s, decoding as utf-8", charset)
        return payload.decode("utf-8", errors="replace")


def _parse_date(value: str | None) -> datetime:
    if value:
        try:
            parsed = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            logger.debug("Unparsable Date header %r", value)
        else:
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=UTC)
            return parsed
    return datetime.now(tz=UTC)


class _HTMLTagStripper(HTMLParser):
    """HTMLParser subclass that keeps text and drops script/style content."""

    _SKIP_TAGS = frozenset({"script", "style", "head", "title"})
    _BREAK_TAGS = frozenset({"br", "p", "div", "tr", "td", "li", "h1", "h2", "h3"})

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self._parts: list[str] = []
        self._skip_depth = 0

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag in self._SKIP_TAGS:
            self._skip_depth += 1
        elif tag in self._BREAK_TAGS:
            self._parts.append(" ")

    def handle_endtag(self, tag: str) -> None:
        if tag in self._SKIP_TAGS and self._skip_depth:
            self._skip_depth -= 1
        elif tag in self._BREAK_TAGS:
            self._parts.append(" ")

    def handle_data(self, data: str) -> None:
        if not self._skip_depth:
            self._parts.append(data)

    def get_text(self) -> str:
        return "".join(self._parts)
