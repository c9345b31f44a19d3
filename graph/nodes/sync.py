import os
from typing import Dict, Any, List, Optional
from loguru import logger

from graph.outcome import Ok, SoftFail, Outcome
from graph.state import LeadState, LeadRecord, MappedField
from tools import ghl
from tools.errors import RemoteCallFailure, RemoteConfigurationError


def build_tags(form_type: str, quality: str) -> List[str]:
    return ["web-lead", f"lead-quality-{quality}", f"{form_type}-form"]


def build_contact_payload(record: LeadRecord, tags: List[str],
                          custom_fields: List[MappedField]) -> Dict[str, Any]:
    """Identity fields, tags and custom fields for the upsert call. Absent values are omitted."""
    name = f"{record.get('firstName', '')} {record.get('lastName', '')}".strip()
    payload = {
        "firstName": record.get("firstName"),
        "lastName": record.get("lastName"),
        "name": name,
        "email": record.get("email"),
        "phone": record.get("phone"),
        "companyName": record.get("businessName"),
        "source": os.getenv("LEAD_SOURCE_LABEL", "TrueFlow Landing Page"),
        "tags": tags,
        "customFields": custom_fields,
    }
    return {key: value for key, value in payload.items() if value not in (None, "")}


async def submit(record: LeadRecord, custom_fields: List[MappedField], tags: List[str],
                 client: Optional[ghl.GHLClient] = None) -> Outcome:
    """
    Upsert the contact in GHL.

    Args:
        record: Normalized lead record
        custom_fields: Mapped {id, field_value} pairs
        tags: Contact tags
        client: GHL client (defaults to the global one)

    Returns:
        Ok with the remote contact ID, or SoftFail when the CRM is unconfigured or rejects the call
    """
    client = client or ghl.ghl_client
    try:
        client.ensure_configured()
    except RemoteConfigurationError as e:
        logger.warning(f"Skipping CRM sync: {e}")
        return SoftFail(str(e))

    payload = build_contact_payload(record, tags, custom_fields)
    try:
        contact_id = await client.upsert_contact(payload)
    except RemoteCallFailure as e:
        logger.error(f"CRM upsert failed for {record.get('email')}: {e}")
        return SoftFail(str(e))

    return Ok(contact_id)


async def sync(state: LeadState) -> LeadState:
    """Upsert the contact in GHL, recording a soft failure instead of raising."""
    record = state.get("record", {})
    tags = build_tags(state.get("form_type", ""), state.get("lead_quality", "cold"))
    state["tags"] = tags

    outcome = await submit(record, state.get("custom_fields", []), tags)
    state["outcome"] = outcome

    if isinstance(outcome, Ok):
        state["crm_synced"] = True
        state["crm_contact_id"] = outcome.remote_contact_id
        logger.info(f"CRM sync completed for {record.get('email')}: {outcome.remote_contact_id}")
    else:
        state["crm_synced"] = False
        state.setdefault("errors", []).append(f"crm_sync_failed: {outcome.reason}")

    return state
