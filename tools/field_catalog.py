import asyncio
import os
import unicodedata
import weakref
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from loguru import logger

from tools.errors import RemoteCallFailure
from tools.field_cache import FieldCache
from tools.ghl import GHLClient, ghl_client

# Visually identical punctuation that GHL has been seen to store in field names
_PUNCTUATION_FOLD = str.maketrans({
    "‐": "-", "‑": "-", "‒": "-", "–": "-", "—": "-",
    "―": "-", "−": "-",
    "‘": "'", "’": "'", "‚": "'", "‛": "'", "′": "'",
    "“": '"', "”": '"', "„": '"', "‟": '"', "″": '"',
    " ": " ",
})


def normalize_field_name(text: Optional[str]) -> str:
    """Fold a remote field name or key into a comparable form."""
    if not text:
        return ""
    folded = unicodedata.normalize("NFKC", text).translate(_PUNCTUATION_FOLD)
    return " ".join(folded.casefold().split())


def normalize_field_key(key: Optional[str]) -> str:
    key = normalize_field_name(key)
    if key.startswith("contact."):
        key = key[len("contact."):]
    return key


@dataclass(frozen=True)
class FieldDefinition:
    """A custom field this service needs to exist in the CRM."""
    field_key: str
    name: str
    data_type: str = "TEXT"

    def as_payload(self) -> Dict[str, str]:
        return {"fieldKey": self.field_key, "name": self.name, "dataType": self.data_type}


@dataclass(frozen=True)
class RemoteField:
    """A custom field as defined in the CRM."""
    id: str
    name: str
    field_key: Optional[str] = None
    data_type: Optional[str] = None

    @classmethod
    def from_api(cls, raw: Dict[str, Any]) -> "RemoteField":
        return cls(
            id=raw["id"],
            name=raw.get("name") or "",
            field_key=raw.get("fieldKey"),
            data_type=raw.get("dataType"),
        )

    def to_cache(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "fieldKey": self.field_key, "dataType": self.data_type}


def parse_fields(raws: Iterable[Any]) -> List[RemoteField]:
    """Build RemoteFields from API or cache entries, skipping malformed ones."""
    fields: List[RemoteField] = []
    for raw in raws or []:
        if not isinstance(raw, dict) or not raw.get("id"):
            logger.warning(f"Skipping malformed custom field entry: {str(raw)[:200]}")
            continue
        fields.append(RemoteField.from_api(raw))
    return fields


def match_fields(required: Iterable[FieldDefinition],
                 remote: Iterable[RemoteField]) -> Tuple[Dict[str, RemoteField], List[FieldDefinition]]:
    """
    Pair required definitions with remote fields.

    Matching is by normalized field key first, then by normalized display name.

    Returns:
        (resolved mapping of field_key -> RemoteField, definitions left unmatched)
    """
    by_key: Dict[str, RemoteField] = {}
    by_name: Dict[str, RemoteField] = {}
    for field in remote:
        if field.field_key:
            by_key.setdefault(normalize_field_key(field.field_key), field)
        if field.name:
            by_name.setdefault(normalize_field_name(field.name), field)

    resolved: Dict[str, RemoteField] = {}
    missing: List[FieldDefinition] = []
    for definition in required:
        field = by_key.get(normalize_field_key(definition.field_key)) or \
            by_name.get(normalize_field_name(definition.name))
        if field:
            resolved[definition.field_key] = field
        else:
            missing.append(definition)
    return resolved, missing


class SchemaResolver:
    """Resolves the CRM's custom field catalog, creating fields this service needs."""

    def __init__(self, client: Optional[GHLClient] = None, cache: Optional[FieldCache] = None,
                 ttl: Optional[int] = None):
        self.client = client or ghl_client
        self.cache = cache if cache is not None else FieldCache()
        self.ttl = ttl if ttl is not None else int(os.getenv("GHL_FIELD_CACHE_TTL", "3600"))
        self._locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, Dict[str, asyncio.Lock]]" = \
            weakref.WeakKeyDictionary()

    def cache_key(self, version: str = "") -> str:
        key = f"ghl:fields:{self.client.location_id}"
        return f"{key}:{version}" if version else key

    def _lock_for(self, key: str) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        locks = self._locks.setdefault(loop, {})
        if key not in locks:
            locks[key] = asyncio.Lock()
        return locks[key]

    async def _cached(self, key: str, required: List[FieldDefinition]) -> Optional[Dict[str, RemoteField]]:
        # The cache client is synchronous; keep its round trips off the event loop
        entry = await asyncio.to_thread(self.cache.get, key)
        if not entry:
            return None
        fields = parse_fields(entry.get("fields", []))
        resolved, missing = match_fields(required, fields)
        attempted = set(entry.get("attempted", []))
        # Fields already tried during this cache window are not retried until expiry
        if any(definition.field_key not in attempted for definition in missing):
            return None
        return resolved

    async def resolve(self, required: Iterable[FieldDefinition], version: str = "") -> Dict[str, RemoteField]:
        """
        Resolve required field definitions to remote fields.

        Args:
            required: Definitions the mapper needs
            version: Mapping version, kept apart in the cache

        Returns:
            field_key -> RemoteField for every definition that exists remotely.
            Fields that could not be created are absent from the result.

        Raises:
            RemoteCallFailure: if the catalog itself could not be listed
        """
        required = list(required)
        key = self.cache_key(version)

        cached = await self._cached(key, required)
        if cached is not None:
            logger.info(f"Using cached custom field catalog ({len(cached)} fields resolved)")
            return cached

        # Single flight: concurrent cold-cache callers wait for one refresh
        async with self._lock_for(key):
            cached = await self._cached(key, required)
            if cached is not None:
                return cached
            return await self._refresh(key, required)

    async def _refresh(self, key: str, required: List[FieldDefinition]) -> Dict[str, RemoteField]:
        logger.info("Refreshing custom field catalog from GHL")
        fields = parse_fields(await self.client.list_custom_fields())
        _, missing = match_fields(required, fields)

        raced = False
        for definition in missing:
            try:
                created = await self.client.create_custom_field(definition.as_payload())
                if created.get("id"):
                    fields.append(RemoteField.from_api({
                        "name": definition.name,
                        "fieldKey": definition.field_key,
                        "dataType": definition.data_type,
                        **created,
                    }))
            except RemoteCallFailure as e:
                if e.already_exists:
                    logger.info(f"Custom field {definition.name} was created concurrently, will re-fetch")
                    raced = True
                else:
                    logger.error(f"Could not create custom field {definition.name}: {e}")

        if raced:
            try:
                fields = parse_fields(await self.client.list_custom_fields())
            except RemoteCallFailure as e:
                logger.error(f"Re-fetch after create race failed: {e}")

        resolved, still_missing = match_fields(required, fields)
        if still_missing:
            logger.warning(
                f"{len(still_missing)} custom fields unresolved: "
                f"{', '.join(d.field_key for d in still_missing)}"
            )

        await asyncio.to_thread(self.cache.set, key, {
            "fields": [field.to_cache() for field in fields],
            "attempted": [definition.field_key for definition in missing],
        }, self.ttl)
        logger.info(f"Custom field catalog ready: {len(resolved)}/{len(required)} fields resolved")
        return resolved


# Global resolver instance
field_resolver = SchemaResolver()
