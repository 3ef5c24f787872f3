"""
Merchant name normalization.

Bank statements and Plaid report merchants with processor prefixes, store
numbers, reference ids and legal suffixes. Normalizing them gives a stable
grouping key for subscription detection and merchant matching.

    normalize_merchant_name("PAYPAL *NETFLIX.COM")          -> "netflix"
    normalize_merchant_name("GOOGLE *YOUTUBE PREMIUM")      -> "youtube premium"
    normalize_merchant_name("APPLE.COM/BILL APPLE MUSIC")   -> "apple music"
    normalize_merchant_name("SQ *STARBUCKS STORE 12345")    -> "starbucks store"
"""
import re
from typing import Optional

# Prefixes added by payment processors in front of the real merchant
PAYMENT_PROCESSOR_PATTERNS = [
    re.compile(r"^PAYPAL\s*\*\s*", re.IGNORECASE),
    re.compile(r"^GOOGLE\s*\*\s*", re.IGNORECASE),
    re.compile(r"^APPLE\.COM/BILL\s*", re.IGNORECASE),
    re.compile(r"^APPLE\s*\*\s*", re.IGNORECASE),
    re.compile(r"^SQ\s*\*\s*", re.IGNORECASE),  # Square
    re.compile(r"^STRIPE\s*\*\s*", re.IGNORECASE),
    re.compile(r"^AMZN\s*\.COM/BILL\s*", re.IGNORECASE),
    re.compile(r"^AMZN\s*\*\s*", re.IGNORECASE),
    re.compile(r"^MICROSOFT\s*\*\s*", re.IGNORECASE),
    re.compile(r"^MSFT\s*\*\s*", re.IGNORECASE),
    re.compile(r"^AMAZON\s*\*\s*", re.IGNORECASE),
    re.compile(r"^GOOGLE\s*PAY\s*", re.IGNORECASE),
    re.compile(r"^APPLE\s*PAY\s*", re.IGNORECASE),
    re.compile(r"^VENMO\s*", re.IGNORECASE),
    re.compile(r"^ZELLE\s*", re.IGNORECASE),
    re.compile(r"^CASH\s*APP\s*", re.IGNORECASE),
    re.compile(r"^SAMSUNG\s*PAY\s*", re.IGNORECASE),
]

CLEANUP_PATTERNS = [
    re.compile(r"\s+\*\s*$"),  # Trailing asterisks
    re.compile(r"\s+\*\s*"),  # Asterisks in the middle
    re.compile(r"\d{4,}"),  # Long number runs (transaction ids)
    re.compile(r"#\d+"),  # Hash followed by numbers
    re.compile(r"\([^)]*\)"),  # Parenthesised location codes
    re.compile(r"\[[^\]]*\]"),  # Square-bracket content
    re.compile(r"\.(com|net|org|io|co\.uk|tv)\b", re.IGNORECASE),  # Domain suffixes
]

LEGAL_SUFFIXES = ("inc", "llc", "ltd", "corp", "corporation", "company", "co")

LOCATION_PATTERNS = [
    re.compile(r"\b(store|location|branch|shop)\s+\d+", re.IGNORECASE),
    re.compile(
        r"\b\d+\s*(st|nd|rd|th)\s*(street|ave|avenue|road|rd|blvd|boulevard)",
        re.IGNORECASE,
    ),
    re.compile(r"\b[A-Z]{2}\s+\d{5}\b"),  # State + ZIP
    re.compile(r"\b\d{5}\b"),  # Standalone ZIP
]

_LEGAL_SUFFIX_RE = re.compile(
    r"\b(" + "|".join(LEGAL_SUFFIXES) + r")\b\.?",
    re.IGNORECASE,
)

DESCRIPTION_MERCHANT_PATTERNS = [
    re.compile(r"^([A-Z\s&]+?)\s+\d"),  # Merchant followed by a number
    re.compile(r"^([A-Z\s&]+?)\s+[A-Z]{2}\s+\d"),  # Merchant, state, ZIP
    re.compile(r"^([A-Z\s&]+?)\s*#"),  # Merchant followed by #
    re.compile(r"^([A-Z\s&]+?)\s+\d{2}/\d{2}"),  # Merchant followed by a date
]


def normalize_merchant_name(raw_name: Optional[str]) -> str:
    """
    Normalize a raw merchant name from a bank statement or Plaid.

    Returns an empty string for empty input. If cleaning leaves fewer than
    two characters, the lowercased raw value is returned instead.
    """
    if not raw_name or not isinstance(raw_name, str):
        return ""

    normalized = raw_name.strip()

    for pattern in PAYMENT_PROCESSOR_PATTERNS:
        normalized = pattern.sub("", normalized)

    for pattern in CLEANUP_PATTERNS:
        normalized = pattern.sub(" ", normalized)

    normalized = _LEGAL_SUFFIX_RE.sub("", normalized)
    normalized = normalized.replace("&", " and ").replace("@", " at ")

    for pattern in LOCATION_PATTERNS:
        normalized = pattern.sub("", normalized)

    normalized = re.sub(r"\s+", " ", normalized).strip().lower()
    normalized = re.sub(r"^[\W_]+|[\W_]+$", "", normalized)

    if len(normalized) < 2:
        return raw_name.strip().lower()

    return normalized


def extract_merchant_from_description(description: Optional[str]) -> str:
    """
    Pull a merchant name out of a longer transaction description.

    Falls back to normalizing the whole description.
    """
    if not description or not isinstance(description, str):
        return ""

    for pattern in DESCRIPTION_MERCHANT_PATTERNS:
        match = pattern.match(description)
        if match and match.group(1).strip():
            return normalize_merchant_name(match.group(1))

    return normalize_merchant_name(description)


def is_payment_processor(name: Optional[str]) -> bool:
    """True if the name starts with a known payment-processor prefix."""
    if not name or not isinstance(name, str):
        return False

    upper_name = name.upper()
    return any(pattern.search(upper_name) for pattern in PAYMENT_PROCESSOR_PATTERNS)


def merchant_key(merchant: Optional[str], description: Optional[str] = None) -> str:
    """Grouping key for a transaction: its normalized merchant, else one extracted from the description."""
    if merchant and merchant.strip():
        return normalize_merchant_name(merchant)
    return extract_merchant_from_description(description)
