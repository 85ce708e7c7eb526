"""
Payment string parsing

Turns a display string such as "$5.00", "5 EUR" or "CA$1,000.50" into an
ISO currency code and a numeric amount.
"""

import re
from typing import Dict, Optional, Tuple

# Display symbols and ISO codes (lowercase) -> ISO 4217 code
CURRENCY_SYMBOLS: Dict[str, str] = {
    "us$": "USD", "a$": "AUD", "c$": "CAD", "ca$": "CAD", "clp$": "CLP", "cop$": "COP",
    "hk$": "HKD", "mx$": "MXN", "nt$": "TWD", "nz$": "NZD", "r$": "BRL",
    "rd$": "DOP", "s$": "SGD", "s/": "PEN", "b/.": "PAB", "bs.": "BOB",
    "лв": "BGN", "ден": "MKD", "дин.": "RSD", "ر.س": "SAR", "د.إ": "AED",
    "br": "BYN", "kn": "HRK", "kč": "CZK", "kr": "SEK", "ft": "HUF",
    "zł": "PLN", "cfa": "XOF", "ush": "UGX", "lei": "RON",
    "€": "EUR", "£": "GBP", "¥": "JPY", "₩": "KRW", "₹": "INR", "₪": "ILS",
    "₱": "PHP", "₽": "RUB", "₺": "TRY", "₦": "NGN", "₲": "PYG", "₡": "CRC",
    "q": "GTQ", "l": "HNL", "$": "USD", "r": "ZAR",
    "aed": "AED", "ars": "ARS", "aud": "AUD", "bgn": "BGN", "bob": "BOB",
    "brl": "BRL", "byn": "BYN", "cad": "CAD", "chf": "CHF", "clp": "CLP",
    "cop": "COP", "crc": "CRC", "czk": "CZK", "dkk": "DKK", "dop": "DOP",
    "eur": "EUR", "gbp": "GBP", "gtq": "GTQ", "hkd": "HKD", "hnl": "HNL",
    "hrk": "HRK", "huf": "HUF", "ils": "ILS", "inr": "INR", "isk": "ISK",
    "jpy": "JPY", "krw": "KRW", "mkd": "MKD", "mxn": "MXN", "ngn": "NGN",
    "nio": "NIO", "nok": "NOK", "nzd": "NZD", "pab": "PAB", "pen": "PEN",
    "php": "PHP", "pln": "PLN", "pyg": "PYG", "ron": "RON", "rsd": "RSD",
    "rub": "RUB", "sar": "SAR", "sek": "SEK", "sgd": "SGD", "twd": "TWD",
    "try": "TRY", "ugx": "UGX", "usd": "USD", "xof": "XOF", "zar": "ZAR",
}

_AMOUNT = r"[\d,]+(?:\.\d{1,2})?"

# "5,00" or "2,5": a lone comma followed by one or two digits is a decimal separator
_DECIMAL_COMMA = re.compile(r"\d+,\d{1,2}")


def build_payment_pattern(symbols) -> "re.Pattern[str]":
    """
    Compile the symbol/amount pattern.

    Symbols are tried longest first so "us$" wins over "$" and "hk$" over "kr".
    """
    alternation = "|".join(re.escape(s) for s in sorted(symbols, key=len, reverse=True))
    return re.compile(
        rf"^\s*(?:({alternation})\s*({_AMOUNT})|({_AMOUNT})\s*({alternation}))\s*$",
        re.IGNORECASE,
    )


PAYMENT_PATTERN = build_payment_pattern(CURRENCY_SYMBOLS)


def parse_payment(text: Optional[str]) -> Tuple[Optional[str], Optional[float]]:
    """
    Parse a payment display string.

    Returns:
        (currency code, amount), or (None, None) when the text is not recognized
    """
    if not text:
        return None, None

    match = PAYMENT_PATTERN.match(text)
    if not match:
        return None, None

    symbol = (match.group(1) or match.group(4) or "").lower()
    amount_text = match.group(2) or match.group(3)
    try:
        if _DECIMAL_COMMA.fullmatch(amount_text):
            amount = float(amount_text.replace(",", "."))
        else:
            amount = float(amount_text.replace(",", ""))
    except ValueError:
        return None, None

    code = CURRENCY_SYMBOLS.get(symbol)
    if code is None:
        return None, None
    return code, amount
