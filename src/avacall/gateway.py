import logging
from dataclasses import dataclass

from avacall.classification import is_lead_call_type
from avacall.session import IntakeRecord
from avacall.store import StoreClient
from avacall.validation import is_phone_number

logger = logging.getLogger(__name__)

CUSTOMER_SOURCE = "Phone - AVA"
NEW_STATUS = "New"


@dataclass(frozen=True)
class SaveResult:
    ok: bool
    kind: str = ""  # "work_order" | "lead"
    customer_id: str = ""
    record_id: str = ""
    error: str = ""


def _optional_fields(record: IntakeRecord) -> dict:
    optional = {
        "Property Type": record.property_type,
        "System Brand": record.system_brand,
        "System Age": record.system_age,
        "Access Instructions": record.access_instructions,
        "Scheduling Preference": record.scheduling_preference,
        "On-site Contact": record.onsite_contact,
        "Referral Source": record.referral_source,
        "Email": record.email,
        "Notes": record.notes,
    }
    return {k: v for k, v in optional.items() if v}


def build_customer_fields(record: IntakeRecord, caller_number: str) -> dict:
    return {
        "Name": record.name,
        "Phone": caller_number,
        "Address": record.address,
        "Type": record.property_type or "Residential",
        "Source": CUSTOMER_SOURCE,
    }


def build_work_order_fields(record: IntakeRecord, customer_id: str) -> dict:
    fields = {
        "Customer": [customer_id],
        "Call Type": record.call_type,
        "Issue Description": record.issue_description,
        "System Type": record.system_type,
        "Priority": record.priority,
        "Service Address": record.address,
        "Status": NEW_STATUS,
    }
    fields.update(_optional_fields(record))
    return fields


def build_lead_fields(record: IntakeRecord, caller_number: str) -> dict:
    fields = {
        "Name": record.name,
        "Phone": caller_number,
        "Address": record.address,
        "Call Type": record.call_type,
        "Inquiry": record.issue_description,
        "Priority": record.priority,
        "Status": NEW_STATUS,
        "Source": CUSTOMER_SOURCE,
    }
    fields.update(_optional_fields(record))
    return fields


class PersistenceGateway:
    """Saves one completed intake record.

    Leads become one ``leads`` row. Service calls reuse the customer found by
    phone number (or create one) and add a ``work_orders`` row for it.

    The gateway does not deduplicate: each session calls save() at most once,
    and a second call for the same session is the caller's bug. save() never
    raises; failures come back in SaveResult and are logged for follow-up.
    """

    def __init__(self, store: StoreClient):
        self.store = store

    async def save(self, record: IntakeRecord, caller_number: str) -> SaveResult:
        if not record.is_complete:
            missing = ", ".join(record.missing_fields)
            logger.error("Refusing to save incomplete intake for %s (missing %s)", caller_number, missing)
            return SaveResult(ok=False, error=f"Incomplete record: missing {missing}")

        record = record.with_defaults()
        try:
            if is_lead_call_type(record.call_type):
                result = await self._save_lead(record, caller_number)
            else:
                result = await self._save_work_order(record, caller_number)
        except Exception as e:
            logger.error("Intake save crashed for %s: %s", caller_number, e)
            return SaveResult(ok=False, error=str(e))

        if result.ok:
            logger.info("Saved %s %s for %s", result.kind, result.record_id, caller_number)
        else:
            logger.error("Intake save failed for %s: %s", caller_number, result.error)
        return result

    async def _save_lead(self, record: IntakeRecord, caller_number: str) -> SaveResult:
        created = await self.store.create_lead(build_lead_fields(record, caller_number))
        if not created.get("success"):
            return SaveResult(ok=False, kind="lead", error=created.get("error", "lead insert failed"))
        return SaveResult(ok=True, kind="lead", record_id=created.get("id", ""))

    async def _save_work_order(self, record: IntakeRecord, caller_number: str) -> SaveResult:
        if is_phone_number(caller_number):
            lookup = await self.store.find_customer_by_phone(caller_number)
        else:
            # Blank or withheld caller ID must not match an existing customer
            logger.warning("No usable caller number (%r), creating a new customer", caller_number)
            lookup = {"found": False}
        if lookup.get("error"):
            return SaveResult(ok=False, kind="work_order", error=lookup["error"])

        if lookup.get("found"):
            customer_id = lookup["record"].get("id", "")
            logger.info("Existing customer %s for %s", customer_id, caller_number)
        else:
            created = await self.store.create_customer(build_customer_fields(record, caller_number))
            if not created.get("success"):
                return SaveResult(
                    ok=False, kind="work_order", error=created.get("error", "customer insert failed"),
                )
            customer_id = created.get("id", "")

        order = await self.store.create_work_order(build_work_order_fields(record, customer_id))
        if not order.get("success"):
            return SaveResult(
                ok=False,
                kind="work_order",
                customer_id=customer_id,
                error=order.get("error", "work order insert failed"),
            )
        return SaveResult(ok=True, kind="work_order", customer_id=customer_id, record_id=order.get("id", ""))
