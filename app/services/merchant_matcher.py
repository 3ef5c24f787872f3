"""
Known-merchant matching.

Matches normalized merchant names against a catalog of well-known
subscription services using keyword containment and Levenshtein similarity,
then adjusts the score by amount proximity and country.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from app.services.merchant_normalizer import normalize_merchant_name

logger = logging.getLogger(__name__)

# Amount tolerance when comparing against a merchant's typical price
AMOUNT_MATCH_TOLERANCE = 0.15
MIN_MATCH_SCORE = 0.6


@dataclass(frozen=True)
class KnownMerchant:
    """Catalog entry for a well-known subscription service."""
    name: str
    display_name: str
    category: str
    keywords: tuple
    countries: tuple = ("US", "GB")
    typical_amounts: Dict[str, float] = field(default_factory=dict)
    annual_amounts: Dict[str, float] = field(default_factory=dict)


@dataclass
class MerchantMatch:
    """Result of matching a merchant name against the catalog."""
    name: str
    display_name: str
    category: str
    confidence_score: float
    matched_keyword: str
    amount_match: bool = False
    country_match: bool = False
    merchant: Optional[KnownMerchant] = None


KNOWN_MERCHANTS: List[KnownMerchant] = [
    KnownMerchant(
        "netflix", "Netflix", "Streaming", ("netflix",),
        typical_amounts={"USD": 15.49, "GBP": 10.99},
    ),
    KnownMerchant(
        "spotify", "Spotify", "Streaming", ("spotify",),
        typical_amounts={"USD": 11.99, "GBP": 11.99},
        annual_amounts={"USD": 119.88},
    ),
    KnownMerchant(
        "disney_plus", "Disney+", "Streaming", ("disney plus", "disneyplus", "disney+"),
        typical_amounts={"USD": 13.99, "GBP": 7.99},
        annual_amounts={"USD": 139.99, "GBP": 79.90},
    ),
    KnownMerchant(
        "hulu", "Hulu", "Streaming", ("hulu",), countries=("US",),
        typical_amounts={"USD": 7.99},
    ),
    KnownMerchant(
        "youtube_premium", "YouTube Premium", "Streaming", ("youtube premium", "youtube"),
        typical_amounts={"USD": 13.99, "GBP": 12.99},
        annual_amounts={"USD": 139.99},
    ),
    KnownMerchant(
        "amazon_prime", "Amazon Prime", "Streaming", ("amazon prime", "prime video", "prime"),
        typical_amounts={"USD": 14.99, "GBP": 8.99},
        annual_amounts={"USD": 139.00, "GBP": 95.00},
    ),
    KnownMerchant(
        "apple_music", "Apple Music", "Streaming", ("apple music",),
        typical_amounts={"USD": 10.99, "GBP": 10.99},
        annual_amounts={"USD": 109.00},
    ),
    KnownMerchant(
        "apple_tv", "Apple TV+", "Streaming", ("apple tv",),
        typical_amounts={"USD": 9.99, "GBP": 8.99},
    ),
    KnownMerchant(
        "hbo_max", "Max", "Streaming", ("hbo max", "hbo", "max com"), countries=("US",),
        typical_amounts={"USD": 15.99},
        annual_amounts={"USD": 149.99},
    ),
    KnownMerchant(
        "paramount_plus", "Paramount+", "Streaming", ("paramount plus", "paramount"),
        typical_amounts={"USD": 7.99, "GBP": 6.99},
        annual_amounts={"USD": 59.99},
    ),
    KnownMerchant(
        "adobe", "Adobe Creative Cloud", "Software", ("adobe", "creative cloud"),
        typical_amounts={"USD": 59.99, "GBP": 56.98},
    ),
    KnownMerchant(
        "microsoft_365", "Microsoft 365", "Software", ("microsoft 365", "office 365", "microsoft"),
        typical_amounts={"USD": 9.99, "GBP": 7.99},
        annual_amounts={"USD": 99.99, "GBP": 79.99},
    ),
    KnownMerchant(
        "notion", "Notion", "Software", ("notion",),
        typical_amounts={"USD": 10.00},
        annual_amounts={"USD": 96.00},
    ),
    KnownMerchant(
        "dropbox", "Dropbox", "Software", ("dropbox",),
        typical_amounts={"USD": 11.99, "GBP": 9.99},
        annual_amounts={"USD": 119.88},
    ),
    KnownMerchant(
        "google_one", "Google One", "Software", ("google one", "google storage"),
        typical_amounts={"USD": 2.99, "GBP": 1.79},
        annual_amounts={"USD": 29.99},
    ),
    KnownMerchant(
        "icloud", "iCloud+", "Software", ("icloud",),
        typical_amounts={"USD": 2.99, "GBP": 2.99},
    ),
    KnownMerchant(
        "chatgpt", "ChatGPT Plus", "Software", ("openai", "chatgpt"),
        typical_amounts={"USD": 20.00, "GBP": 20.00},
    ),
    KnownMerchant(
        "peloton", "Peloton", "Fitness", ("peloton",),
        typical_amounts={"USD": 44.00, "GBP": 39.00},
    ),
    KnownMerchant(
        "planet_fitness", "Planet Fitness", "Fitness", ("planet fitness",), countries=("US",),
        typical_amounts={"USD": 15.00},
    ),
    KnownMerchant(
        "xbox_game_pass", "Xbox Game Pass", "Gaming", ("xbox", "game pass"),
        typical_amounts={"USD": 16.99, "GBP": 12.99},
    ),
    KnownMerchant(
        "playstation_plus", "PlayStation Plus", "Gaming", ("playstation", "psn"),
        typical_amounts={"USD": 9.99, "GBP": 6.99},
        annual_amounts={"USD": 79.99, "GBP": 59.99},
    ),
]

# Keyword fallback categories when no catalog entry matches
CATEGORY_KEYWORDS = {
    "Streaming": ("netflix", "spotify", "hulu", "disney", "prime", "youtube", "hbo", "paramount", "peacock"),
    "Software": ("adobe", "microsoft", "office", "creative", "cloud", "notion", "dropbox", "github"),
    "Fitness": ("gym", "fitness", "peloton", "yoga"),
    "Gaming": ("game", "xbox", "playstation", "nintendo", "steam"),
}


def levenshtein_distance(first: str, second: str) -> int:
    """Edit distance between two strings."""
    if len(first) < len(second):
        first, second = second, first

    previous = list(range(len(second) + 1))
    for i, first_char in enumerate(first, start=1):
        current = [i]
        for j, second_char in enumerate(second, start=1):
            if first_char == second_char:
                current.append(previous[j - 1])
            else:
                current.append(min(previous[j], current[j - 1], previous[j - 1]) + 1)
        previous = current

    return previous[-1]


def string_similarity(first: str, second: str) -> float:
    """
    Calculate similarity ratio between two strings from their edit distance.

    This is 1 - levenshtein / len(longer), not difflib's SequenceMatcher ratio;
    the fuzzy keyword threshold (0.7) and the duplicate name weight are tuned on it.

    Args:
        first: First string
        second: Second string

    Returns:
        Similarity in [0, 1], case-insensitive; 1.0 is an exact match
    """
    first, second = first.lower(), second.lower()
    longer = first if len(first) > len(second) else second
    if len(longer) == 0:
        return 1.0
    return (len(longer) - levenshtein_distance(first, second)) / len(longer)


def _is_amount_match(amount: float, typical_amount: float, tolerance: float = AMOUNT_MATCH_TOLERANCE) -> bool:
    if not typical_amount:
        return False
    return abs(abs(amount) - typical_amount) / typical_amount <= tolerance


def _keyword_score(normalized_merchant: str, merchant: KnownMerchant) -> tuple[float, str]:
    best_score = 0.0
    best_keyword = ""

    for keyword in merchant.keywords:
        normalized_keyword = normalize_merchant_name(keyword)

        if normalized_merchant == normalized_keyword:
            return 1.0, keyword

        if normalized_keyword in normalized_merchant or normalized_merchant in normalized_keyword:
            return 0.8, keyword

        similarity = string_similarity(normalized_merchant, normalized_keyword)
        if similarity > 0.7 and similarity > best_score:
            best_score = similarity
            best_keyword = keyword

    return best_score, best_keyword


def _score_merchant(
    normalized_merchant: str,
    merchant: KnownMerchant,
    amount: Optional[float],
    country: Optional[str],
    currency: Optional[str],
) -> Optional[MerchantMatch]:
    keyword_score, matched_keyword = _keyword_score(normalized_merchant, merchant)
    if keyword_score <= 0:
        return None

    confidence = keyword_score
    amount_match = False

    if amount and merchant.typical_amounts:
        typical = (
            merchant.typical_amounts.get(currency or "USD")
            or merchant.typical_amounts.get("USD")
            or merchant.typical_amounts.get("GBP")
        )
        if typical and _is_amount_match(amount, typical):
            amount_match = True
            confidence = min(1.0, confidence + 0.15)
        elif typical and abs(abs(amount) - typical) / typical > 0.5:
            confidence *= 0.7

    country_match = bool(country) and country in merchant.countries
    if country_match:
        confidence = min(1.0, confidence + 0.05)

    return MerchantMatch(
        name=merchant.name,
        display_name=merchant.display_name,
        category=merchant.category,
        confidence_score=round(confidence, 2),
        matched_keyword=matched_keyword,
        amount_match=amount_match,
        country_match=country_match,
        merchant=merchant,
    )


def find_known_merchants(
    normalized_merchant: str,
    amount: Optional[float] = None,
    country: Optional[str] = None,
    currency: Optional[str] = None,
    limit: int = 5,
) -> List[MerchantMatch]:
    """All catalog matches above the minimum score, best first."""
    if not normalized_merchant or len(normalized_merchant.strip()) < 2:
        return []

    country = _normalize_country(country)
    matches = []
    for merchant in KNOWN_MERCHANTS:
        if country and country not in merchant.countries:
            continue
        if currency and merchant.typical_amounts and currency not in merchant.typical_amounts:
            continue

        match = _score_merchant(normalized_merchant, merchant, amount, country, currency)
        if match and match.confidence_score > MIN_MATCH_SCORE:
            matches.append(match)

    matches.sort(key=lambda m: m.confidence_score, reverse=True)
    return matches[:limit]


def find_known_merchant(
    normalized_merchant: str,
    amount: Optional[float] = None,
    country: Optional[str] = None,
    currency: Optional[str] = None,
) -> Optional[MerchantMatch]:
    """
    Find the best catalog match for a normalized merchant name.

    Args:
        normalized_merchant: Output of normalize_merchant_name
        amount: Charge amount used for the typical-price bonus
        country: US or GB, filters the catalog by availability
        currency: Filters merchants that do not bill in this currency

    Returns:
        The best MerchantMatch, or None when nothing scores above 0.6
    """
    matches = find_known_merchants(normalized_merchant, amount, country, currency, limit=1)
    if matches:
        logger.debug(
            f"[MERCHANT_MATCHER] '{normalized_merchant}' matched {matches[0].display_name} "
            f"({matches[0].confidence_score})"
        )
        return matches[0]
    return None


def categorize_merchant(name: Optional[str]) -> str:
    """Keyword category for a merchant or subscription name."""
    if not name:
        return "Other"

    lower = name.lower()
    for category, keywords in CATEGORY_KEYWORDS.items():
        if any(keyword in lower for keyword in keywords):
            return category
    return "Other"


def _normalize_country(country: Optional[str]) -> Optional[str]:
    if not country:
        return None
    upper = country.upper()
    return "GB" if upper == "UK" else upper
