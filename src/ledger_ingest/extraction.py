"""LLM-based transaction parsing using pydantic-ai."""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

from pydantic import ValidationError
from pydantic_ai import Agent

from ledger_ingest.config import (
    get_anthropic_api_key,
    get_llm_model,
    get_llm_timeout,
)
from ledger_ingest.models import TransactionParseResult

logger = logging.getLogger(__name__)

_ALLOWED_TYPES = frozenset({"DEBIT", "CREDIT"})
_LOG_PREVIEW = 200

_SYSTEM_PROMPT = """\
You are a financial transaction parser. Your only job is to extract \
transaction details from SMS and email messages.

Rules:
1. Respond with ONLY a single JSON object. No markdown, no code blocks, \
no explanations. Start with { and end with }.
2. If the message is NOT a transaction (OTP, promotion, general \
information), respond with: {"transactionType":"NONE","amount":0}
3. Do not return nested objects or arrays. Only flat JSON with the fields \
listed below.

Fields:
- amount: positive number (required)
- currency: ISO 4217 code, default "INR" (optional)
- merchantName: string (optional)
- category: string (optional)
- transactionType: "DEBIT" or "CREDIT" (required)
- transactionDate: ISO-8601, e.g. "2026-02-14T10:30:00" (optional)
- description: string (optional)\
"""


class TransactionParser(Protocol):
    """Turns message text into transaction fields, or None."""

    def parse(self, text: str) -> TransactionParseResult | None: ...


class DisabledTransactionParser:
    """Parser used when AI extraction is switched off."""

    def parse(self, text: str) -> TransactionParseResult | None:  # noqa: ARG002
        return None


class LlmTransactionParser:
    """Parser backed by a pydantic-ai text agent.

    The agent returns free text; the JSON object is dug out and checked
    before conversion, and every failure is reported as no transaction.
    Accepts an optional agent for dependency injection in tests.
    """

    def __init__(self, agent: Agent[None, str] | None = None) -> None:
        self._agent = agent if agent is not None else create_parsing_agent()

    def parse(self, text: str) -> TransactionParseResult | None:
        if not text or not text.strip():
            return None

        try:
            logger.info(
                "Calling LLM for message length=%d: %s",
                len(text),
                _preview(text),
            )
            result: Any = self._agent.run_sync(_build_prompt(text))
            return parse_model_output(result.output)
        except Exception:
            logger.warning(
                "LLM parse failed for message (length=%d)", len(text), exc_info=True
            )
            return None


def create_parsing_agent() -> Agent[None, str]:
    """Create a pydantic-ai Agent configured for transaction parsing."""
    model_name = get_llm_model()
    if model_name.startswith("anthropic:"):
        # Ensure API key is available (fail fast)
        get_anthropic_api_key()

    return Agent(
        model_name,
        system_prompt=_SYSTEM_PROMPT,
        model_settings={"timeout": get_llm_timeout(), "temperature": 0.0},
    )


def create_parser(*, enabled: bool) -> TransactionParser:
    """Select the parser implementation once, at startup."""
    if enabled:
        logger.info("AI transaction parsing enabled (model=%s)", get_llm_model())
        return LlmTransactionParser()
    logger.info("AI transaction parsing disabled")
    return DisabledTransactionParser()


def parse_model_output(content: str | None) -> TransactionParseResult | None:
    """Validate raw model output and convert it to a parse result.

    Returns None for empty output, output without a conforming JSON object,
    non-transactions and non-positive amounts.
    """
    if not content or not content.strip():
        logger.info("LLM returned empty response")
        return None

    json_text = extract_json_object(strip_code_fences(content))
    if not json_text:
        logger.warning("LLM response contained no JSON object: %s", _preview(content))
        return None

    if not matches_transaction_schema(json_text):
        logger.warning(
            "LLM response does not match the transaction schema: %s",
            _preview(json_text),
        )
        return None

    try:
        result = TransactionParseResult.model_validate_json(json_text)
    except ValidationError as exc:
        logger.warning("LLM response failed conversion: %s", exc)
        return None

    if result.transaction_type == "NONE":
        logger.info("LLM classified message as non-transaction")
        return None
    if result.transaction_type not in _ALLOWED_TYPES:
        logger.info("LLM returned unknown transactionType=%s", result.transaction_type)
        return None
    if result.amount <= 0:
        logger.info("LLM returned non-positive amount=%s", result.amount)
        return None
    return result


def strip_code_fences(content: str) -> str:
    """Remove markdown code fences around a model response.

    Handles a response that opens with a fence as well as prose followed
    by a fenced block.
    """
    s = content.strip()
    fence = s.find("```")
    if fence == -1:
        return s

    newline = s.find("\n", fence)
    if newline == -1:
        return (s[:fence] + s[fence + 3 :]).strip()

    if fence == 0:
        s = s[newline + 1 :]
    else:
        s = s[:fence] + s[newline + 1 :]

    end = s.rfind("```")
    if end != -1:
        s = s[:end]
    return s.strip()


def extract_json_object(text: str) -> str:
    """Return the first balanced top-level ``{...}`` segment of ``text``.

    Braces inside JSON string literals do not count toward depth. An
    unbalanced object yields everything from the first brace onwards.
    """
    start = text.find("{")
    if start == -1:
        return ""

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return text[start:]


def matches_transaction_schema(json_text: str) -> bool:
    """Check that ``json_text`` is a flat object with the required fields."""
    try:
        root = json.loads(json_text)
    except ValueError:
        return False

    if not isinstance(root, dict):
        return False
    if "amount" not in root or "transactionType" not in root:
        return False

    amount = root["amount"]
    if isinstance(amount, bool) or not isinstance(amount, (int, float, str)):
        return False
    if not isinstance(root["transactionType"], str):
        return False

    return not any(isinstance(v, (dict, list)) for v in root.values())


def _build_prompt(text: str) -> str:
    """Build the user prompt from message text."""
    parts = [
        "Parse this financial message and extract the transaction details.",
        "Respond with ONLY a JSON object.",
        "",
        "--- Message ---",
        text.strip(),
        "",
        "JSON only:",
    ]
    return "\n".join(parts)


def _preview(text: str) -> str:
    if len(text) > _LOG_PREVIEW:
        return text[:_LOG_PREVIEW] + "..."
    return text
