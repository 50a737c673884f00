"""Structured extraction of the intake record.

Two strategies, picked by the AI backend in use:

* explicit-turn mode: ``enrich_issue`` runs keyword classification on the
  caller's own description of the problem;
* function-call mode: the realtime AI calls ``submit_intake`` once it has what
  it needs, and ``parse_intake_call`` validates and normalizes that payload.
"""

import json
import logging
from dataclasses import replace

from avacall.classification import (
    CALL_TYPES,
    COOLING,
    EMERGENCY,
    HEATING,
    STANDARD,
    UNKNOWN,
    URGENT,
    classify_priority,
    classify_system_type,
)
from avacall.errors import IntakeValidationError
from avacall.session import IntakeRecord
from avacall.validation import clean_field

logger = logging.getLogger(__name__)

INTAKE_FUNCTION = "submit_intake"

REQUIRED_ARGS = ("call_type", "customer_name", "service_address", "issue_description", "priority")

# Function argument name -> IntakeRecord field
ARG_FIELDS = {
    "call_type": "call_type",
    "customer_name": "name",
    "service_address": "address",
    "property_type": "property_type",
    "issue_description": "issue_description",
    "system_type": "system_type",
    "system_brand": "system_brand",
    "system_age": "system_age",
    "priority": "priority",
    "access_instructions": "access_instructions",
    "scheduling_preference": "scheduling_preference",
    "onsite_contact": "onsite_contact",
    "referral_source": "referral_source",
    "email": "email",
    "notes": "notes",
}

PRIORITY_LABELS = {label.lower(): label for label in (EMERGENCY, URGENT, STANDARD)}
SYSTEM_TYPE_LABELS = {label.lower(): label for label in (HEATING, COOLING, UNKNOWN)}

INTAKE_TOOL = {
    "type": "function",
    "name": INTAKE_FUNCTION,
    "description": (
        "Submit the completed intake once the caller's call type, name, service address, "
        "issue description and priority are known. Call exactly once per call."
    ),
    "parameters": {
        "type": "object",
        "properties": {
            "call_type": {
                "type": "string",
                "enum": sorted(CALL_TYPES - {"work_order", "lead"}),
            },
            "customer_name": {"type": "string"},
            "service_address": {"type": "string"},
            "property_type": {"type": "string", "enum": ["residential", "commercial"]},
            "issue_description": {"type": "string"},
            "system_type": {"type": "string", "enum": ["heating", "cooling", "unknown"]},
            "system_brand": {"type": "string"},
            "system_age": {"type": "string"},
            "priority": {"type": "string", "enum": ["emergency", "urgent", "standard"]},
            "access_instructions": {"type": "string"},
            "scheduling_preference": {"type": "string"},
            "onsite_contact": {"type": "string"},
            "referral_source": {"type": "string"},
            "email": {"type": "string"},
            "notes": {"type": "string"},
        },
        "required": list(REQUIRED_ARGS),
    },
}


def enrich_issue(record: IntakeRecord, text: str) -> IntakeRecord:
    """Explicit-turn mode: store the issue verbatim and classify it."""
    issue = text.strip()
    return replace(
        record,
        issue_description=record.issue_description or issue,
        priority=record.priority or classify_priority(issue),
        system_type=record.system_type or classify_system_type(issue),
    )


def _normalize_call_type(value: str) -> str:
    return value.strip().lower().replace(" ", "_").replace("-", "_")


def parse_intake_call(arguments) -> IntakeRecord:
    """Validate a ``submit_intake`` payload and turn it into an IntakeRecord.

    ``arguments`` is the raw JSON string from the AI backend (or an already
    decoded dict). Raises IntakeValidationError when the payload is not valid
    JSON, is missing a required field, or names an unknown call type.
    """
    if isinstance(arguments, str):
        try:
            payload = json.loads(arguments or "{}")
        except json.JSONDecodeError as e:
            raise IntakeValidationError(f"Arguments are not valid JSON: {e}") from e
    else:
        payload = dict(arguments or {})

    if not isinstance(payload, dict):
        raise IntakeValidationError("Arguments must be a JSON object")

    cleaned = {arg: clean_field(payload.get(arg)) for arg in ARG_FIELDS}

    missing = [arg for arg in REQUIRED_ARGS if not cleaned[arg]]
    if missing:
        raise IntakeValidationError(
            f"Missing required fields: {', '.join(missing)}. Ask the caller and submit again.",
            missing=missing,
        )

    call_type = _normalize_call_type(cleaned["call_type"])
    if call_type not in CALL_TYPES:
        raise IntakeValidationError(f"Unknown call_type '{cleaned['call_type']}'", missing=["call_type"])
    cleaned["call_type"] = call_type

    priority = PRIORITY_LABELS.get(cleaned["priority"].lower())
    if not priority:
        raise IntakeValidationError(f"Unknown priority '{cleaned['priority']}'", missing=["priority"])
    cleaned["priority"] = priority

    system_type = cleaned["system_type"]
    cleaned["system_type"] = (
        SYSTEM_TYPE_LABELS.get(system_type.lower(), system_type.title())
        if system_type
        else classify_system_type(cleaned["issue_description"])
    )
    if cleaned["property_type"]:
        cleaned["property_type"] = cleaned["property_type"].title()
    if cleaned["email"]:
        cleaned["email"] = cleaned["email"].lower()

    record = IntakeRecord(**{ARG_FIELDS[arg]: value for arg, value in cleaned.items()})
    logger.info(
        "Intake accepted: type=%s priority=%s system=%s",
        record.call_type, record.priority, record.system_type,
    )
    return record
