import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from inbox_ledger.core.settings import PipelineSettings
from inbox_ledger.domain.currency import convert, detect_currency, is_supported, quantize
from inbox_ledger.domain.reference import (
    CATEGORY_VALUES,
    INSTITUTION_KEYWORDS,
    MERCHANT_ALIASES,
    MERCHANT_PREFIXES,
    REGION_CODES,
    TRANSACTION_TYPE_VALUES,
)
from inbox_ledger.domain.timefmt import parse_message_date
from inbox_ledger.logger import get_logger
from inbox_ledger.models import (
    CandidateMessage,
    Category,
    Rejected,
    Transaction,
    TransactionGuess,
    TransactionType,
)

logger = get_logger(__name__)

UNKNOWN_INSTITUTION = "Unknown"

_AMOUNT_NOISE = re.compile(r"[^\d.,\-()]")
_STORE_NUMBER = re.compile(r"\s*(?:#\s*\d+|\bno\.?\s*\d+|\bstore\s*\d+)\s*$", re.IGNORECASE)
_TRAILING_DIGITS = re.compile(r"\s+\d{2,}$")
_WHITESPACE = re.compile(r"\s+")
_TIME = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)(?::[0-5]\d)?$")
_DIGITS = re.compile(r"\D")

_DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%d/%m/%Y", "%b %d, %Y", "%B %d, %Y", "%d %b %Y", "%d %B %Y")


def _normalize_separators(text: str) -> str | None:
    """Rewrite grouping and decimal separators to plain ``1234.56`` form.

    The right-most of ``,`` and ``.`` is the decimal mark when both occur
    ("1,234.56", "1.234,56"). A lone comma followed by three digits groups
    thousands; followed by one or two digits it is a decimal comma. Anything
    else is ambiguous and yields None.
    """
    last_comma = text.rfind(",")
    last_dot = text.rfind(".")
    if last_comma == -1:
        if text.count(".") > 1:
            return text.replace(".", "")
        return text
    if last_dot > last_comma:
        return text.replace(",", "")
    if last_dot != -1:
        return text.replace(".", "").replace(",", ".")

    head, _, tail = text.rpartition(",")
    if len(tail) == 3:
        return text.replace(",", "")
    if len(tail) in (1, 2) and "," not in head:
        return f"{head}.{tail}"
    return None


def parse_amount(value: Any) -> Decimal | None:
    """Coerce a model-supplied amount to a signed Decimal, or None if not numeric.

    Currency symbols and codes are decoration and dropped; a leading minus or
    wrapping parentheses make the amount negative so validation rejects it.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        text = str(value)
        negative = False
    elif isinstance(value, str):
        text = _AMOUNT_NOISE.sub("", value)
        negative = text.startswith("-") or (text.startswith("(") and text.endswith(")"))
        text = _normalize_separators(text.strip("()").lstrip("-"))
        if not text:
            return None
    else:
        return None

    try:
        amount = Decimal(text)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return quantize(-amount if negative else amount)


def parse_transaction_date(value: str | None) -> date | None:
    if not value:
        return None
    text = value.strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def _strip_prefixes(text: str) -> str:
    lowered = text.lower()
    for prefix in MERCHANT_PREFIXES:
        if lowered.startswith(prefix):
            return text[len(prefix):].strip()
    return text


def _strip_trailing_location(text: str) -> str:
    tokens = text.split(" ")
    # "TIM HORTONS #1234 TORONTO ON": drop the region code, then the city
    # only when a store number preceded it.
    if len(tokens) > 2 and tokens[-1].upper() in REGION_CODES and tokens[-1].isupper():
        tokens = tokens[:-1]
        if len(tokens) > 2 and re.fullmatch(r"#?\d+", tokens[-2]):
            tokens = tokens[:-1]
    return " ".join(tokens)


def clean_merchant(raw: str | None) -> str:
    if not raw:
        return ""
    text = _WHITESPACE.sub(" ", raw).strip()
    text = _strip_prefixes(text)
    alias = MERCHANT_ALIASES.get(text.lower())
    if alias:
        return alias

    text = _strip_trailing_location(text)
    previous = None
    while previous != text:
        previous = text
        text = _STORE_NUMBER.sub("", text)
        text = _TRAILING_DIGITS.sub("", text).strip()
    text = text.strip(" -*,.")

    alias = MERCHANT_ALIASES.get(text.lower())
    if alias:
        return alias
    if text.isupper() or text.islower():
        text = " ".join(word.capitalize() for word in text.split(" "))
    return text


def infer_institution(sender: str, subject: str) -> str:
    haystack = f"{sender} {subject}".lower()
    words = set(re.findall(r"[a-z0-9]+", haystack))
    for keyword, name in INSTITUTION_KEYWORDS:
        if keyword.startswith("="):
            if keyword[1:] in words:
                return name
        elif keyword in haystack:
            return name
    return UNKNOWN_INSTITUTION


def _last4(value: str | None) -> str | None:
    if not value:
        return None
    digits = _DIGITS.sub("", value)
    return digits[-4:] if len(digits) >= 4 else None


def _clean_text(value: str | None) -> str | None:
    if value is None:
        return None
    text = _WHITESPACE.sub(" ", value).strip()
    return text or None


class Normalizer:
    def __init__(self, config: PipelineSettings | None = None) -> None:
        self.config = config or PipelineSettings()

    def resolve_currency(self, guess: TransactionGuess, message: CandidateMessage) -> str:
        code = (guess.currency or "").strip().upper()
        if is_supported(code):
            return code
        detected = detect_currency(message.body)
        if detected:
            logger.debug("[NORMALIZE] Currency %r unsupported, detected %s from body.", guess.currency, detected)
            return detected
        return self.config.default_currency

    def resolve_confidence(self, value: Any) -> float:
        if isinstance(value, bool):
            return self.config.default_confidence
        try:
            confidence = float(value)
        except (TypeError, ValueError):
            return self.config.default_confidence
        if not 0.0 <= confidence <= 1.0:
            return self.config.default_confidence
        return confidence

    def resolve_category(self, value: str | None, message_id: str) -> Category:
        normalized = (value or "").strip().lower()
        if normalized in CATEGORY_VALUES:
            return Category(normalized)
        logger.info("[NORMALIZE] Message %s: category %r coerced to 'other'.", message_id, value)
        return Category.OTHER

    def resolve_transaction_type(self, value: str | None, message_id: str) -> TransactionType:
        normalized = (value or "").strip().lower()
        if normalized in TRANSACTION_TYPE_VALUES:
            return TransactionType(normalized)
        logger.info("[NORMALIZE] Message %s: transaction type %r coerced to 'debit'.", message_id, value)
        return TransactionType.DEBIT

    def normalize(
        self,
        guess: TransactionGuess,
        message: CandidateMessage,
        owner_id: int,
        *,
        source_message_id: str | None = None,
    ) -> Transaction | Rejected:
        key = source_message_id or message.id

        amount = parse_amount(guess.amount)
        if amount is None:
            return self._reject(key, f"amount is not numeric: {guess.amount!r}")
        if amount <= 0:
            return self._reject(key, f"amount is not positive: {amount}")

        merchant = clean_merchant(guess.merchant)
        if not merchant:
            return self._reject(key, "merchant is empty")

        institution = _clean_text(guess.institution) or infer_institution(message.sender, message.subject)

        currency = self.resolve_currency(guess, message)
        display_currency = self.config.display_currency
        display_amount = convert(amount, currency, display_currency)
        if display_amount > self.config.amount_ceiling:
            return self._reject(
                key,
                f"amount {display_amount} {display_currency} exceeds ceiling {self.config.amount_ceiling}",
            )

        confidence = self.resolve_confidence(guess.confidence)

        tx_date = parse_transaction_date(guess.date)
        if tx_date is None:
            return self._reject(key, f"date is not parseable: {guess.date!r}")

        time_value = (guess.time or "").strip()
        return Transaction(
            owner_id=owner_id,
            source_message_id=key,
            source_subject=message.subject,
            source_date=parse_message_date(message.date),
            amount=amount,
            currency=currency,
            original_amount=amount,
            original_currency=currency,
            display_amount=display_amount,
            display_currency=display_currency,
            merchant=merchant,
            category=self.resolve_category(guess.category, key),
            transaction_type=self.resolve_transaction_type(guess.transaction_type, key),
            date=tx_date,
            time=time_value if _TIME.match(time_value) else None,
            card_last4=_last4(guess.card_last4),
            account_last4=_last4(guess.account_last4),
            institution=institution,
            description=_clean_text(guess.description) or "",
            location=_clean_text(guess.location),
            confidence=confidence,
        )

    @staticmethod
    def _reject(message_id: str, reason: str) -> Rejected:
        logger.info("[NORMALIZE] Rejected transaction from message %s: %s", message_id, reason)
        return Rejected(message_id=message_id, reason=reason)
