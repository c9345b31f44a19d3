from loguru import logger

from graph import mapping
from graph.state import LeadState


def map_fields(state: LeadState) -> LeadState:
    """Project the record onto resolved custom field IDs."""
    record = state.get("record", {})
    version = mapping.resolve_version(state.get("mapping_version"))

    custom_fields, diagnostics = mapping.map_fields(
        record,
        state.get("catalog", {}),
        state.get("form_type", ""),
        version,
        lead_score=state.get("lead_score"),
        lead_quality=state.get("lead_quality"),
    )

    state["custom_fields"] = custom_fields
    state["unmapped_fields"] = diagnostics
    if diagnostics:
        logger.warning(f"Skipped {len(diagnostics)} unmapped fields: {'; '.join(diagnostics)}")
    logger.info(f"Mapped {len(custom_fields)} custom fields for {record.get('email')}")
    return state
