"""Parsing of amount strings such as `$100` or `RON500.00`.

An amount is a currency prefix of one to three letters (or a currency
symbol) followed by an integer or a decimal with up to two fraction digits.
"""

import re
from dataclasses import dataclass

from orderpay.common.errors import InvalidAmountError


AMOUNT_PATTERN = r"[A-Za-z$€£¥]{1,3}[0-9]+(\.[0-9]{1,2})?"
AMOUNT_FORMAT_HINT = "The amount format must include a currency and numeric value, e.g. $100 or RON500.00."

_AMOUNT_RE = re.compile(AMOUNT_PATTERN)
_CURRENCY_RE = re.compile(r"^[A-Za-z$€£¥]+")
_NUMBER_RE = re.compile(r"[0-9]+(\.[0-9]+)?")


@dataclass(frozen=True)
class ParsedAmount:
    currency: str
    value: float


def is_valid_amount(raw: str) -> bool:
    return isinstance(raw, str) and _AMOUNT_RE.fullmatch(raw) is not None


def extract_currency(raw: str) -> str | None:
    """Leading alphabetic/symbol run, or None when there is none."""

    match = _CURRENCY_RE.match(raw)
    return match.group(0) if match else None


def extract_amount(raw: str) -> float | None:
    """First numeric run as a float, or None when there is none."""

    match = _NUMBER_RE.search(raw)
    return float(match.group(0)) if match else None


def parse_amount(raw: str) -> ParsedAmount:
    """Validate and split an amount string into (currency, value)."""

    if not is_valid_amount(raw):
        raise InvalidAmountError(AMOUNT_FORMAT_HINT)
    return ParsedAmount(currency=extract_currency(raw), value=extract_amount(raw))
