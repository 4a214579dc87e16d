"""Normalization helpers producing the comparison keys used by deduplication."""

from __future__ import annotations

import re
from collections import Counter
from urllib.parse import urlsplit

_NON_DIGIT = re.compile(r"\D+")
_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")

BUSINESS_SUFFIXES = frozenset(
    {
        "llc",
        "inc",
        "incorporated",
        "corp",
        "corporation",
        "co",
        "company",
        "ltd",
        "limited",
        "lp",
        "llp",
        "pllc",
        "pc",
    }
)

ADDRESS_ABBREVIATIONS = {
    "street": "st",
    "avenue": "ave",
    "road": "rd",
    "boulevard": "blvd",
    "drive": "dr",
    "lane": "ln",
    "court": "ct",
    "place": "pl",
    "highway": "hwy",
    "parkway": "pkwy",
    "suite": "ste",
    "north": "n",
    "south": "s",
    "east": "e",
    "west": "w",
}


def normalize_phone(phone: str | None) -> str | None:
    """Return a ``+1XXXXXXXXXX`` style key, or ``None`` when too short to trust."""

    if not phone:
        return None
    digits = _NON_DIGIT.sub("", phone)
    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    if phone.strip().startswith("+") and len(digits) >= 8:
        return f"+{digits}"
    if len(digits) < 7:
        return None
    return f"+{digits}"


def normalize_company_name(name: str | None) -> str:
    """Lowercase, drop punctuation and trailing legal suffixes."""

    if not name:
        return ""
    text = name.lower().replace("&", " and ")
    text = text.replace("'", "").replace("’", "")
    text = _PUNCTUATION.sub(" ", text)
    tokens = text.split()
    while tokens and tokens[-1] in BUSINESS_SUFFIXES:
        tokens.pop()
    if tokens and tokens[0] == "the" and len(tokens) > 1:
        tokens = tokens[1:]
    return " ".join(tokens)


def normalize_address(address: str | None) -> str | None:
    if not address:
        return None
    text = _PUNCTUATION.sub(" ", address.lower())
    tokens = [ADDRESS_ABBREVIATIONS.get(token, token) for token in text.split()]
    return " ".join(tokens) or None


def extract_domain(url: str | None) -> str | None:
    """Return the bare host of a website (no scheme, ``www.``, port or path)."""

    if not url or not url.strip():
        return None
    text = url.strip().lower()
    if "://" not in text:
        text = f"http://{text}"
    try:
        host = urlsplit(text).hostname
    except ValueError:
        return None
    if not host:
        return None
    if host.startswith("www."):
        host = host[4:]
    return host or None


def _bigrams(text: str) -> Counter[str]:
    compact = _WHITESPACE.sub("", text)
    return Counter(compact[i : i + 2] for i in range(len(compact) - 1))


def dice_coefficient(first: str, second: str) -> float:
    """Bigram Dice similarity in ``[0, 1]`` over whitespace-free strings."""

    first = _WHITESPACE.sub("", first)
    second = _WHITESPACE.sub("", second)
    if first == second:
        return 1.0 if first else 0.0
    if len(first) < 2 or len(second) < 2:
        return 0.0
    a, b = _bigrams(first), _bigrams(second)
    overlap = sum((a & b).values())
    return 2.0 * overlap / (sum(a.values()) + sum(b.values()))


__all__ = [
    "normalize_phone",
    "normalize_company_name",
    "normalize_address",
    "extract_domain",
    "dice_coefficient",
    "BUSINESS_SUFFIXES",
]
