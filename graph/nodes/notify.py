import os
from loguru import logger

from graph.state import LeadState
from tools import resend
from tools.errors import EmailDeliveryFailure


def notify_on_success() -> bool:
    return os.getenv("NOTIFY_ON_SUCCESS", "true").lower() != "false"


async def notify(state: LeadState) -> LeadState:
    """Email the lead to the sales inbox; always when the CRM sync failed, as a backup otherwise."""
    record = state.get("record", {})
    synced = state.get("crm_synced", False)

    if synced and not notify_on_success():
        logger.info(f"CRM sync succeeded, backup email disabled for {record.get('email')}")
        return state

    if not synced:
        logger.warning(f"CRM sync unavailable, sending fallback email for {record.get('email')}")

    try:
        message_id = await resend.email_notifier.send_lead_notification(
            record,
            state.get("form_type", ""),
            state.get("lead_score", 0),
            state.get("lead_quality", "cold"),
            synced,
        )
        state.setdefault("notifications", []).append(f"email:{message_id}")
    except EmailDeliveryFailure as e:
        error_msg = f"email_failed: {e}"
        logger.error(error_msg)
        state.setdefault("errors", []).append(error_msg)

    return state
