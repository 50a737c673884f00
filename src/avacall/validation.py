import re

NAME_MIN_LENGTH = 1
ADDRESS_MIN_LENGTH = 5

SENTINEL_VALUES = {
    "not provided", "n/a", "na", "unknown", "none", "tbd",
    "{{customer_name}}", "{{service_address}}",
}


def match_any_keyword(text: str, keywords) -> bool:
    """Check if any keyword appears in text as a whole word (not substring)."""
    lower = text.lower()
    return any(re.search(rf'\b{re.escape(kw)}\b', lower) for kw in keywords)


def match_any_prefix(text: str, keywords) -> bool:
    """Check if any keyword starts a word in text, so "leak" also hits "leaking".

    Keywords ending in a word of two letters or fewer ("no ac") still need a
    trailing word boundary, otherwise "no ac" would hit "no access".
    """
    lower = text.lower()
    for kw in keywords:
        tail = r"\b" if len(kw.split()[-1]) <= 2 else ""
        if re.search(rf"\b{re.escape(kw)}{tail}", lower):
            return True
    return False


def first_matching_family(text: str, families: dict[str, frozenset], match=match_any_keyword) -> str:
    """Return the first family (in dict order) with a keyword in text, or ""."""
    for label, keywords in families.items():
        if match(text, keywords):
            return label
    return ""


def validate_name(value: str | None) -> str:
    if not value:
        return ""
    cleaned = value.strip()
    if len(cleaned) <= NAME_MIN_LENGTH:
        return ""
    return cleaned


def validate_address(value: str | None) -> str:
    if not value:
        return ""
    cleaned = value.strip()
    if len(cleaned) <= ADDRESS_MIN_LENGTH:
        return ""
    return cleaned


def clean_field(value) -> str:
    """Strip a structured-payload value and drop placeholder text like "N/A"."""
    if value is None:
        return ""
    cleaned = str(value).strip()
    if cleaned.lower() in SENTINEL_VALUES:
        return ""
    return cleaned


def normalize_phone(value: str | None) -> str:
    """Normalize a phone number to E.164 where possible.

    "+1 (512) 555-1234" -> "+15125551234", "512-555-1234" -> "+15125551234".
    Anything too short to be a phone number comes back stripped but unchanged.
    """
    if not value:
        return ""
    raw = value.strip()
    digits = re.sub(r"\D", "", raw)
    if raw.startswith("+") and len(digits) >= 8:
        return f"+{digits}"
    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    return raw


def is_phone_number(value: str | None) -> bool:
    """True for an E.164 number such as normalize_phone returns for a real caller ID."""
    return bool(re.fullmatch(r"\+\d{8,15}", normalize_phone(value)))
