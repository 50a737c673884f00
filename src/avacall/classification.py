"""Keyword classification for caller utterances.

Every classifier here is total: on no keyword match it returns a default
category instead of raising. A model-based classifier can replace any of
these behind the same ``classify_*(text) -> str`` signature.
"""

import re

from avacall.validation import first_matching_family, match_any_prefix

# --- Priority ---

EMERGENCY = "Emergency"
URGENT = "Urgent"
STANDARD = "Standard"

# Order matters: Emergency is checked before Urgent.
PRIORITY_FAMILIES = {
    EMERGENCY: frozenset({
        "not working", "no heat", "no ac", "no air", "freezing",
        "too hot", "emergency",
    }),
    URGENT: frozenset({"strange noise", "smell", "leak", "loud"}),
}

# --- System type ---

HEATING = "Heating"
COOLING = "Cooling"
UNKNOWN = "Unknown"

# Symptom phrases name the failing system even when they mention the
# opposite temperature ("AC blowing warm air" is a cooling problem).
SYMPTOM_FAMILIES = {
    COOLING: frozenset({"warm air", "blowing warm", "not cooling", "won't cool"}),
    HEATING: frozenset({"cold air", "blowing cold", "not heating", "won't heat"}),
}

# Order matters: Heating is checked before Cooling.
SYSTEM_FAMILIES = {
    HEATING: frozenset({"heat", "heating", "heater", "furnace", "warm"}),
    COOLING: frozenset({
        "ac", "a/c", "air conditioning", "air conditioner", "cooling", "cold",
    }),
}

# --- Call type (explicit-turn mode) ---

WORK_ORDER = "work_order"
LEAD = "lead"

INTENT_FAMILIES = {
    WORK_ORDER: frozenset({
        "schedule", "scheduling", "service", "repair", "repairs", "fix",
        "fixed", "broken", "not working",
    }),
    LEAD: frozenset({
        "question", "questions", "price", "prices", "pricing", "cost",
        "costs", "info", "information",
    }),
}

# --- Call type (function-call mode) ---

SERVICE_CALL_TYPES = frozenset({
    "emergency", "service_request", "maintenance", WORK_ORDER,
})
LEAD_CALL_TYPES = frozenset({"quote", "callback", "general_inquiry", LEAD})
CALL_TYPES = SERVICE_CALL_TYPES | LEAD_CALL_TYPES

GOODBYE_UTTERANCES = frozenset({"goodbye", "good bye", "bye", "bye bye", "stop"})
NOTHING_TO_ADD_UTTERANCES = frozenset({
    "no", "nope", "no thanks", "no thank you", "nothing", "nothing else",
    "thats it", "thats all", "no thats it", "no thats all",
    "yes", "yeah", "yep", "correct", "sounds good",
})


def classify_priority(text: str) -> str:
    """Emergency / Urgent / Standard by keyword family, first match wins.

    Keywords match at the start of a word so inflections count ("no heating",
    "leaking", "smells").
    """
    return first_matching_family(text or "", PRIORITY_FAMILIES, match=match_any_prefix) or STANDARD


def classify_system_type(text: str) -> str:
    """Heating / Cooling / Unknown by keyword family, Heating checked first."""
    text = text or ""
    return (
        first_matching_family(text, SYMPTOM_FAMILIES)
        or first_matching_family(text, SYSTEM_FAMILIES)
        or UNKNOWN
    )


def classify_call_type(text: str) -> str:
    """Return "work_order", "lead", or "" when the caller's intent is unclear."""
    return first_matching_family(text or "", INTENT_FAMILIES)


def is_lead_call_type(call_type: str) -> bool:
    return call_type in LEAD_CALL_TYPES


def _normalize_utterance(text: str) -> str:
    return re.sub(r"[^a-z ]", "", (text or "").lower()).strip()


def is_goodbye(text: str) -> bool:
    """True when the whole utterance is a goodbye or stop command."""
    return _normalize_utterance(text) in GOODBYE_UTTERANCES


def is_nothing_to_add(text: str) -> bool:
    return _normalize_utterance(text) in NOTHING_TO_ADD_UTTERANCES
