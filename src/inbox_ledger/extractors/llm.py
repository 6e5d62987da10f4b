import json
import os
import re
from typing import Any

from openai import AsyncOpenAI
from pydantic import ValidationError

from inbox_ledger.core.settings import DEFAULT_OPENAI_MODEL
from inbox_ledger.domain.extraction import ExtractionFailed, Many, NotATransaction, One, RawExtraction
from inbox_ledger.logger import get_logger
from inbox_ledger.models import CandidateMessage, Category, TransactionGuess, TransactionType

from .base import Extractor
from .prompts import EXTRACTION_TEMPLATE, INSTRUCTIONS

logger = get_logger(__name__)

_FENCE = re.compile(r"^```(?:json|JSON)?\s*|\s*```$")


class ExtractionParseFailure(ValueError):
    """The service answered, but not with usable transaction JSON."""


def strip_fences(text: str) -> str:
    return _FENCE.sub("", text.strip()).strip()


def _outermost_span(text: str) -> str | None:
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if not starts:
        return None
    start = min(starts)
    closer = "}" if text[start] == "{" else "]"
    end = text.rfind(closer)
    if end <= start:
        return None
    return text[start:end + 1]


def parse_response_json(text: str) -> Any:
    cleaned = strip_fences(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        span = _outermost_span(cleaned)
        if span is None:
            raise ExtractionParseFailure(f"No JSON found in response: {cleaned[:80]!r}") from None
        try:
            return json.loads(span)
        except json.JSONDecodeError as exc:
            raise ExtractionParseFailure(f"Malformed JSON in response: {exc}") from exc


def _is_negative_marker(item: Any) -> bool:
    return isinstance(item, dict) and item.get("is_transaction") is False


def _to_guess(item: Any) -> TransactionGuess:
    if not isinstance(item, dict):
        raise ExtractionParseFailure(f"Expected a JSON object, got {type(item).__name__}")
    try:
        return TransactionGuess.model_validate(item)
    except ValidationError as exc:
        raise ExtractionParseFailure(f"Unusable transaction object: {exc.error_count()} field errors") from exc


def classify_response(message_id: str, parsed: Any) -> RawExtraction:
    """Map decoded service JSON onto the extraction outcome variants."""
    if isinstance(parsed, list):
        items = [item for item in parsed if not _is_negative_marker(item)]
        if not items:
            return NotATransaction(message_id=message_id)
        guesses = tuple(_to_guess(item) for item in items)
        if len(guesses) == 1:
            return One(message_id=message_id, guess=guesses[0])
        return Many(message_id=message_id, guesses=guesses)

    if isinstance(parsed, dict):
        if _is_negative_marker(parsed):
            return NotATransaction(message_id=message_id)
        nested = parsed.get("transactions")
        if isinstance(nested, list):
            return classify_response(message_id, nested)
        if parsed.get("is_transaction") is True or "amount" in parsed:
            return One(message_id=message_id, guess=_to_guess(parsed))

    raise ExtractionParseFailure(f"Unrecognized response shape: {type(parsed).__name__}")


def _extract_output_text(response: object) -> str | None:
    output_text = getattr(response, "output_text", None)
    if output_text:
        return output_text

    parts: list[str] = []
    for item in getattr(response, "output", None) or []:
        for block in getattr(item, "content", None) or []:
            if getattr(block, "type", None) in {"output_text", "text"}:
                text = getattr(block, "text", None)
                if text:
                    parts.append(text)
    return "".join(parts) or None


class LLMExtractor(Extractor):
    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_OPENAI_MODEL,
        base_url: str | None = None,
        default_currency: str = "CAD",
        client: AsyncOpenAI | None = None,
    ):
        self.client = client or AsyncOpenAI(
            api_key=api_key or os.getenv("OPENAI_API_KEY"),
            base_url=base_url or os.getenv("OPENAI_BASE_URL") or None,
        )
        self.model = model
        self.default_currency = default_currency

    def build_prompt(self, message: CandidateMessage) -> str:
        return EXTRACTION_TEMPLATE.format(
            sender=message.sender,
            subject=message.subject,
            date=message.date,
            body=message.body,
            default_currency=self.default_currency,
            categories=" | ".join(f'"{c.value}"' for c in Category),
            transaction_types=" | ".join(f'"{t.value}"' for t in TransactionType),
        )

    async def extract(self, message: CandidateMessage) -> RawExtraction:
        try:
            response = await self.client.responses.create(
                model=self.model,
                instructions=INSTRUCTIONS,
                input=self.build_prompt(message),
                temperature=0.0,
            )
            text = _extract_output_text(response)
            if text is None:
                raise ExtractionParseFailure("Empty response from extraction service")
            outcome = classify_response(message.id, parse_response_json(text))
        except ExtractionParseFailure as exc:
            logger.warning("[EXTRACT] Could not parse response for message %s: %s", message.id, exc)
            return ExtractionFailed(message_id=message.id, reason=str(exc))
        except Exception as exc:
            logger.error("[EXTRACT] Extraction call failed for message %s: %r", message.id, exc)
            return ExtractionFailed(message_id=message.id, reason=f"{type(exc).__name__}: {exc}")

        logger.debug("[EXTRACT] Message %s -> %s", message.id, outcome.kind)
        return outcome
