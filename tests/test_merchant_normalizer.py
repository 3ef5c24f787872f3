"""
Unit tests for merchant name normalization.
"""
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.services.merchant_normalizer import (  # noqa: E402
    extract_merchant_from_description,
    is_payment_processor,
    merchant_key,
    normalize_merchant_name,
)


def test_strips_payment_processor_prefixes() -> None:
    assert normalize_merchant_name("PAYPAL *NETFLIX.COM") == "netflix"
    assert normalize_merchant_name("GOOGLE *YOUTUBE PREMIUM") == "youtube premium"
    assert normalize_merchant_name("APPLE.COM/BILL APPLE MUSIC") == "apple music"
    print("✓ processor prefixes stripped")


def test_removes_store_numbers_and_legal_suffixes() -> None:
    assert normalize_merchant_name("SQ *STARBUCKS STORE 12345") == "starbucks store"
    assert normalize_merchant_name("Spotify USA Inc") == "spotify usa"
    assert normalize_merchant_name("DROPBOX #4417") == "dropbox"
    print("✓ noise removed")


def test_empty_and_short_inputs() -> None:
    assert normalize_merchant_name(None) == ""
    assert normalize_merchant_name("") == ""
    assert normalize_merchant_name("A") == "a"
    print("✓ empty input")


def test_extract_merchant_from_description() -> None:
    assert extract_merchant_from_description("NETFLIX 12345 LOS GATOS") == "netflix"
    assert extract_merchant_from_description("") == ""
    print("✓ description extraction")


def test_is_payment_processor() -> None:
    assert is_payment_processor("PAYPAL *SPOTIFY")
    assert is_payment_processor("sq *coffee shop")
    assert not is_payment_processor("Netflix")
    assert not is_payment_processor(None)
    print("✓ payment processor detection")


def test_merchant_key_prefers_merchant_then_description() -> None:
    assert merchant_key("Netflix", "SOMETHING ELSE 123") == "netflix"
    assert merchant_key(None, "NETFLIX 12345") == "netflix"
    assert merchant_key("   ", "HULU 555") == "hulu"
    print("✓ merchant key")


if __name__ == "__main__":
    test_strips_payment_processor_prefixes()
    test_removes_store_numbers_and_legal_suffixes()
    test_empty_and_short_inputs()
    test_extract_merchant_from_description()
    test_is_payment_processor()
    test_merchant_key_prefers_merchant_then_description()
    print("All merchant normalizer tests passed.")
