from loguru import logger

from graph.mapping import required_fields, resolve_version
from graph.state import LeadState
from tools import field_catalog
from tools.errors import RemoteCallFailure, RemoteConfigurationError


async def resolve(state: LeadState) -> LeadState:
    """Resolve the CRM custom field catalog for the request's mapping version."""
    version = resolve_version(state.get("mapping_version"))
    state["mapping_version"] = version

    try:
        catalog = await field_catalog.field_resolver.resolve(required_fields(version), version)
        state["catalog"] = catalog
        logger.info(f"Resolved {len(catalog)} custom fields for mapping {version}")
    except (RemoteCallFailure, RemoteConfigurationError) as e:
        error_msg = f"field_catalog_failed: {e}"
        logger.error(error_msg)
        state.setdefault("errors", []).append(error_msg)
        # Contact still syncs with identity fields and tags
        state["catalog"] = {}

    return state
