import httpx
import os
from typing import Dict, Any, List, Optional
from loguru import logger

from tools.errors import RemoteCallFailure, RemoteConfigurationError

GHL_API_BASE = "https://services.leadconnectorhq.com"
DEFAULT_API_VERSION = "2021-07-28"


def _is_placeholder(value: Optional[str]) -> bool:
    return not value or "your_" in value


class GHLClient:
    """GoHighLevel CRM integration client."""

    def __init__(self, access_token: Optional[str] = None, location_id: Optional[str] = None,
                 enabled: Optional[bool] = None, api_version: Optional[str] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None, timeout: float = 20):
        self.access_token = access_token if access_token is not None else os.getenv("GHL_ACCESS_TOKEN")
        self.location_id = location_id if location_id is not None else os.getenv("GHL_LOCATION_ID")
        if enabled is None:
            enabled = os.getenv("GHL_ENABLED", "true").lower() != "false"
        self.enabled = enabled
        self.api_version = api_version or os.getenv("GHL_API_VERSION", DEFAULT_API_VERSION)
        self.base_url = GHL_API_BASE
        self.transport = transport
        self.timeout = timeout

        if not self.is_configured():
            logger.warning("GHL credentials missing or placeholders, CRM sync disabled")

    def is_configured(self) -> bool:
        """Check that credentials are present and not placeholder values."""
        return (
            self.enabled
            and not _is_placeholder(self.access_token)
            and not _is_placeholder(self.location_id)
        )

    def ensure_configured(self) -> None:
        if not self.is_configured():
            raise RemoteConfigurationError("GHL access token or location ID not configured")

    def _get_headers(self) -> Dict[str, str]:
        """Get headers for GHL API requests."""
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Version": self.api_version,
        }

    async def _request(self, operation: str, method: str, path: str, **kwargs) -> Dict[str, Any]:
        self.ensure_configured()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(
                    method,
                    f"{self.base_url}{path}",
                    headers=self._get_headers(),
                    **kwargs
                )
        except httpx.HTTPError as e:
            logger.error(f"GHL {operation} request error: {e}")
            raise RemoteCallFailure(operation, body=str(e)) from e

        if response.status_code >= 300:
            logger.error(f"GHL {operation} failed: {response.status_code} {response.text[:300]}")
            raise RemoteCallFailure(operation, response.status_code, response.text)

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError:
            logger.error(f"GHL {operation} returned a non-JSON body: {response.text[:300]}")
            raise RemoteCallFailure(operation, response.status_code, response.text)
        if not isinstance(data, dict):
            logger.error(f"GHL {operation} returned a non-object body: {response.text[:300]}")
            raise RemoteCallFailure(operation, response.status_code, response.text)
        return data

    async def list_custom_fields(self) -> List[Dict[str, Any]]:
        """
        Fetch every contact custom field defined for the location.

        Returns:
            Raw field definitions ({id, name, fieldKey, dataType, ...})
        """
        data = await self._request(
            "list custom fields",
            "GET",
            f"/locations/{self.location_id}/customFields",
            params={"model": "contact"}
        )
        fields = data.get("customFields") or []
        if not isinstance(fields, list):
            raise RemoteCallFailure("list custom fields", 200, str(fields))
        logger.info(f"Fetched {len(fields)} custom fields for location {self.location_id}")
        return fields

    async def create_custom_field(self, definition: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create one contact custom field.

        Args:
            definition: {name, fieldKey, dataType}

        Returns:
            The created field as reported by GHL
        """
        payload = {
            "name": definition["name"],
            "fieldKey": definition["fieldKey"],
            "dataType": definition["dataType"],
            "model": "contact",
            "position": 0,
        }
        data = await self._request(
            "create custom field",
            "POST",
            f"/locations/{self.location_id}/customFields",
            json=payload
        )
        field = data.get("customField") or data.get("field") or data
        if not isinstance(field, dict):
            field = {}
        logger.info(f"Created custom field {definition['name']} ({field.get('id')})")
        return field

    async def upsert_contact(self, payload: Dict[str, Any]) -> Optional[str]:
        """
        Create or update a contact keyed by email.

        Args:
            payload: Contact body (identity, tags, customFields)

        Returns:
            Remote contact ID, if GHL reported one
        """
        body = dict(payload)
        body.setdefault("locationId", self.location_id)
        data = await self._request("upsert contact", "POST", "/contacts/upsert", json=body)
        contact = data.get("contact")
        contact_id = (contact.get("id") if isinstance(contact, dict) else None) or data.get("id")
        logger.info(f"Contact upserted: {contact_id}")
        return contact_id


# Global GHL client instance
ghl_client = GHLClient()
