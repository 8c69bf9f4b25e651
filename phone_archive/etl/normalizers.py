"""
Normalization utilities for archive records.

This module turns the raw sender/recipient strings found in backup archives
into a stable phone key, and collapses the placeholder strings the backup
app writes for missing values.

Design Decisions:
    1. Letters win: any letter means an alphanumeric sender ID ("TPG", "Uber")
    2. Short codes (6 digits or fewer) are kept as bare digits
    3. Everything else is canonicalized to E.164 using a regional rule set
    4. Normalization never fails - unparseable input still yields a key
    5. Output is a fixed point: normalizing a normalized key returns it as-is

Phone Normalization Strategy (Australian rules by default):
    - +61 412 345 678 / 61412345678 -> +61412345678
    - 0412 345 678 (trunk prefix)    -> +61412345678
    - 412 345 678 (prefix dropped)   -> +61412345678
    - Other +-prefixed numbers are preserved
    - 7+ digits without + are assumed international and get a + prefix
"""

import re
from dataclasses import dataclass
from typing import NamedTuple, Optional

UNKNOWN_PHONE = "UNKNOWN"

# Longest digit string still treated as a carrier short code
SHORT_CODE_MAX_DIGITS = 6

# Minimum digits for the generic international fallback
MIN_INTERNATIONAL_DIGITS = 7

# Placeholders written by the backup app instead of a missing value
NULL_DATE_SENTINEL = "null"
NULL_BODY_SENTINEL = "null"
UNKNOWN_CONTACT_SENTINEL = "(Unknown)"

WHITESPACE_PATTERN = re.compile(r"\s+")
LETTER_PATTERN = re.compile(r"[A-Za-z]")
NON_DIGIT_PATTERN = re.compile(r"[^0-9]")


class NormalizedPhone(NamedTuple):
    """Result of phone normalization."""

    normalized: str
    is_alphanumeric: bool


@dataclass(frozen=True)
class CountryRules:
    """
    Regional canonicalization rules for domestic numbers.

    Attributes:
        country_code: Calling code without '+', e.g. '61'.
        trunk_prefix: Domestic dialling prefix replaced by the country code.
        national_length: Digits in a national significant number.
        mobile_prefix: Leading digit of mobile numbers written without
            the trunk prefix.
    """

    country_code: str
    trunk_prefix: str
    national_length: int
    mobile_prefix: str

    @property
    def international_length(self) -> int:
        return len(self.country_code) + self.national_length

    @property
    def trunk_length(self) -> int:
        return len(self.trunk_prefix) + self.national_length


AUSTRALIA = CountryRules(
    country_code="61",
    trunk_prefix="0",
    national_length=9,
    mobile_prefix="4",
)

DEFAULT_RULES = AUSTRALIA


def normalize_phone(raw: Optional[str], rules: CountryRules = DEFAULT_RULES) -> NormalizedPhone:
    """
    Normalize a raw address into a stable phone key.

    Args:
        raw: Address as written in the archive (may be None or blank).
        rules: Regional rules used for domestic numbers.

    Returns:
        NormalizedPhone with the key and whether it is an alphanumeric
        (non-dialable) identifier.

    Punctuation-only input such as "---" has no digits to key on and maps
    to UNKNOWN, the same key as blank input. It never yields an empty key.

    Examples:
        >>> normalize_phone("0450123456")
        NormalizedPhone(normalized='+61450123456', is_alphanumeric=False)
        >>> normalize_phone("TPG")
        NormalizedPhone(normalized='TPG', is_alphanumeric=True)
        >>> normalize_phone("321")
        NormalizedPhone(normalized='321', is_alphanumeric=True)
        >>> normalize_phone("---")
        NormalizedPhone(normalized='UNKNOWN', is_alphanumeric=True)
    """
    if not raw:
        return NormalizedPhone(UNKNOWN_PHONE, True)

    cleaned = WHITESPACE_PATTERN.sub("", raw)
    if not cleaned:
        return NormalizedPhone(UNKNOWN_PHONE, True)

    # Letter check runs before any digit handling so "1-800-FLOWERS" and
    # sender IDs never reach the numeric rules
    if LETTER_PATTERN.search(cleaned):
        return NormalizedPhone(cleaned.upper(), True)

    digits = NON_DIGIT_PATTERN.sub("", cleaned)

    if not digits:
        # Punctuation only, nothing to key on
        return NormalizedPhone(UNKNOWN_PHONE, True)

    if len(digits) <= SHORT_CODE_MAX_DIGITS:
        return NormalizedPhone(digits, True)

    return NormalizedPhone(*_canonicalize_numeric(cleaned, digits, rules))


def _canonicalize_numeric(cleaned: str, digits: str, rules: CountryRules) -> tuple[str, bool]:
    """Apply the ordered E.164 rule chain to a numeric address."""
    country_code = rules.country_code

    if cleaned.startswith(f"+{country_code}") and len(digits) == rules.international_length:
        return f"+{digits}", False

    if digits.startswith(country_code) and len(digits) == rules.international_length:
        return f"+{digits}", False

    if digits.startswith(rules.trunk_prefix) and len(digits) == rules.trunk_length:
        national = digits[len(rules.trunk_prefix):]
        return f"+{country_code}{national}", False

    if digits.startswith(rules.mobile_prefix) and len(digits) == rules.national_length:
        return f"+{country_code}{digits}", False

    if cleaned.startswith("+"):
        return cleaned, False

    if len(digits) >= MIN_INTERNATIONAL_DIGITS:
        return f"+{digits}", False

    return cleaned, True


def clean_null_sentinel(value: Optional[str], sentinel: str) -> Optional[str]:
    """
    Collapse a placeholder string to None.

    Empty strings are treated as missing too.

    Args:
        value: Raw attribute value.
        sentinel: Literal placeholder the backup app writes for "no value".

    Returns:
        The value, or None if it was missing or equal to the sentinel.
    """
    if not value or value == sentinel:
        return None
    return value


def clean_readable_date(value: Optional[str]) -> Optional[str]:
    """Readable dates of literal "null" become None."""
    return clean_null_sentinel(value, NULL_DATE_SENTINEL)


def clean_contact_name(value: Optional[str]) -> Optional[str]:
    """Contact names of "(Unknown)" become None."""
    return clean_null_sentinel(value, UNKNOWN_CONTACT_SENTINEL)


def clean_body(value: Optional[str]) -> Optional[str]:
    """
    SMS bodies of literal "null" become None.

    Unlike the other helpers an empty body is kept: an empty message is
    still a message, and its id depends on the body text.
    """
    if value is None or value == NULL_BODY_SENTINEL:
        return None
    return value


def clean_subscription_id(value: Optional[str]) -> Optional[str]:
    """
    Normalize a device subscription id.

    The backup app writes "-1" when the message was not tied to a SIM.
    """
    if value is None:
        return None
    value = value.strip()
    if not value or value in ("-1", "null"):
        return None
    return value
