from decimal import ROUND_HALF_UP, Decimal

from inbox_ledger.domain.reference import CURRENCY_SYMBOLS, EXCHANGE_RATES

CENT = Decimal("0.01")


class UnknownCurrency(ValueError):
    pass


def is_supported(code: str | None) -> bool:
    return bool(code) and code.upper() in EXCHANGE_RATES


def quantize(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def convert(amount: Decimal, from_currency: str, to_currency: str) -> Decimal:
    """Convert with the static rate table.

    Same-currency conversion returns ``amount`` untouched.
    """
    source = from_currency.upper()
    target = to_currency.upper()
    if source == target:
        return amount
    try:
        rate = EXCHANGE_RATES[source] / EXCHANGE_RATES[target]
    except KeyError as exc:
        raise UnknownCurrency(f"No exchange rate for {exc.args[0]}") from exc
    return quantize(amount * rate)


def detect_currency(text: str | None) -> str | None:
    if not text:
        return None
    for marker, code in CURRENCY_SYMBOLS:
        if marker in text:
            return code
    return None
