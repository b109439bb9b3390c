import re
from typing import Iterable


def match_any_keyword(text: str, keywords: Iterable[str]) -> bool:
    """Check if any keyword appears in text as a whole word (not substring)."""
    lower = (text or "").lower()
    return any(re.search(rf"\b{re.escape(kw)}\b", lower) for kw in keywords)


SENTINEL_VALUES = {
    "not provided", "n/a", "na", "unknown", "none", "tbd", "null",
    "caller", "the caller", "customer", "name", "not mentioned",
}

# Caller ID values Twilio sends for withheld numbers
WITHHELD_NUMBERS = {
    "+266696687",     # ANONYMOUS
    "+7378742833",    # RESTRICTED
    "+2562533",       # BLOCKED
    "+86282452253",   # UNAVAILABLE
    "anonymous",
    "restricted",
    "unknown",
    "private",
}

_E164_RE = re.compile(r"^\+[1-9]\d{7,14}$")


def validate_name(value: str | None) -> str:
    if not value:
        return ""
    cleaned = value.strip()
    if cleaned.lower() in SENTINEL_VALUES:
        return ""
    # Reject phone numbers used as names
    if re.match(r"^[\d+\-() ]{7,}$", cleaned):
        return ""
    if not re.search(r"[a-zA-Z]", cleaned):
        return ""
    return cleaned


def clean_caller_id(value: str | None) -> str:
    """Caller ID as sent by Twilio, or "" when absent or withheld."""
    if not value:
        return ""
    cleaned = value.strip()
    if cleaned.lower() in WITHHELD_NUMBERS:
        return ""
    return cleaned


def is_addressable_number(value: str | None) -> bool:
    """True for an E.164 number we can text back."""
    cleaned = clean_caller_id(value)
    return bool(cleaned and _E164_RE.match(cleaned))


def spoken_number(value: str) -> str:
    """Space out digits so text-to-speech reads them one at a time."""
    digits = re.sub(r"\D", "", value or "")
    return " ".join(digits) if digits else "a withheld number"
