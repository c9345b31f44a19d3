import asyncio
import os
import sys
import threading

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tools.errors import RemoteCallFailure
from tools.field_cache import FieldCache
from tools.ghl import GHLClient
from tools.field_catalog import (
    FieldDefinition,
    RemoteField,
    SchemaResolver,
    match_fields,
    normalize_field_key,
    normalize_field_name,
)

GOALS = FieldDefinition("trueflow_content_goals", "What are your goals?", "LARGE_TEXT")
BUDGET = FieldDefinition(
    "trueflow_budget",
    "Current revenue range? (We don’t need exact numbers—just a ballpark.)",
)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def make_resolver(fake_ghl, clock=None, ttl=3600):
    cache = FieldCache(clock=clock or FakeClock(), use_redis=False)
    return SchemaResolver(client=fake_ghl.client(), cache=cache, ttl=ttl)


class TestFieldNameNormalization:
    """Test folding of visually identical field names."""

    def test_dashes_quotes_and_spacing(self):
        assert normalize_field_name("  Lead—Score ") == "lead-score"
        assert normalize_field_name("Lead –  Score") == "lead - score"
        assert normalize_field_name("Don’t “ask”") == "don't \"ask\""
        assert normalize_field_name("Team Size") == "team size"
        assert normalize_field_name(None) == ""

    def test_field_key_prefix(self):
        assert normalize_field_key("contact.trueflow_budget") == "trueflow_budget"
        assert normalize_field_key("trueflow_budget") == "trueflow_budget"

    def test_match_by_key_then_name(self):
        remote = [
            RemoteField(id="f1", name="Goals (legacy)", field_key="contact.trueflow_content_goals"),
            RemoteField(id="f2", name="Current revenue range? (We don't need exact numbers-just a ballpark.)",
                        field_key="contact.revenue_range"),
        ]
        resolved, missing = match_fields([GOALS, BUDGET], remote)

        assert resolved["trueflow_content_goals"].id == "f1"
        assert resolved["trueflow_budget"].id == "f2"
        assert missing == []


class TestSchemaResolver:
    """Test catalog resolution against a fake GHL location."""

    def test_creates_missing_fields(self, fake_ghl):
        fake_ghl.fields = [{"id": "existing", "name": "What are your goals?",
                            "fieldKey": "contact.goals_old", "dataType": "LARGE_TEXT"}]
        resolver = make_resolver(fake_ghl)

        resolved = asyncio.run(resolver.resolve([GOALS, BUDGET], "v2"))

        assert resolved["trueflow_content_goals"].id == "existing"
        assert resolved["trueflow_budget"].id == "fld_2"
        assert [body["fieldKey"] for body in fake_ghl.created] == ["trueflow_budget"]
        assert fake_ghl.created[0]["model"] == "contact"

    def test_cache_hit_and_expiry(self, fake_ghl):
        clock = FakeClock()
        resolver = make_resolver(fake_ghl, clock=clock, ttl=60)

        asyncio.run(resolver.resolve([GOALS], "v2"))
        asyncio.run(resolver.resolve([GOALS], "v2"))
        assert len(fake_ghl.list_calls()) == 1

        clock.now += 61
        resolved = asyncio.run(resolver.resolve([GOALS], "v2"))
        assert len(fake_ghl.list_calls()) == 2
        assert len(fake_ghl.created) == 1
        assert "trueflow_content_goals" in resolved

    def test_versions_are_cached_separately(self, fake_ghl):
        resolver = make_resolver(fake_ghl)

        asyncio.run(resolver.resolve([GOALS], "v1"))
        asyncio.run(resolver.resolve([GOALS], "v2"))

        assert resolver.cache_key("v2") == "ghl:fields:loc_1:v2"
        assert len(fake_ghl.list_calls()) == 2

    def test_failed_create_is_not_retried_within_ttl(self, fake_ghl):
        fake_ghl.create_status = 500
        resolver = make_resolver(fake_ghl)

        first = asyncio.run(resolver.resolve([GOALS], "v2"))
        second = asyncio.run(resolver.resolve([GOALS], "v2"))

        assert first == {}
        assert second == {}
        assert len(fake_ghl.requests) == 2

    def test_create_race_triggers_refetch(self, fake_ghl):
        fake_ghl.fields = [{"id": "theirs", "name": "What are your goals?",
                            "fieldKey": "contact.trueflow_content_goals", "dataType": "LARGE_TEXT"}]
        # Another instance created the field after our list call
        fake_ghl.stale_lists = 1
        resolver = make_resolver(fake_ghl)

        resolved = asyncio.run(resolver.resolve([GOALS], "v2"))

        assert resolved["trueflow_content_goals"].id == "theirs"
        assert len(fake_ghl.list_calls()) == 2
        assert fake_ghl.created == []

    def test_concurrent_resolves_share_one_refresh(self, fake_ghl):
        resolver = make_resolver(fake_ghl)

        async def run_both():
            return await asyncio.gather(
                resolver.resolve([GOALS], "v2"),
                resolver.resolve([GOALS], "v2"),
            )

        first, second = asyncio.run(run_both())

        assert list(first) == ["trueflow_content_goals"]
        assert first == second
        assert len(fake_ghl.created) == 1

    def test_concurrent_instances_tolerate_duplicates(self, fake_ghl):
        left = make_resolver(fake_ghl)
        right = make_resolver(fake_ghl)

        async def run_both():
            return await asyncio.gather(
                left.resolve([GOALS], "v2"),
                right.resolve([GOALS], "v2"),
            )

        first, second = asyncio.run(run_both())

        assert list(first) == ["trueflow_content_goals"]
        assert first == second
        matching = [f for f in fake_ghl.fields if f["fieldKey"] == "contact.trueflow_content_goals"]
        assert len(matching) == 1

    def test_malformed_catalog_entries_are_skipped(self, fake_ghl):
        fake_ghl.fields = [
            {"name": "Lead Score", "fieldKey": "contact.lead_score"},
            "not-a-field",
            {"id": "f9", "name": "What are your goals?", "fieldKey": "contact.trueflow_content_goals"},
        ]
        resolved = asyncio.run(make_resolver(fake_ghl).resolve([GOALS, BUDGET], "v2"))

        assert resolved["trueflow_content_goals"].id == "f9"
        assert "trueflow_budget" in resolved
        assert [body["fieldKey"] for body in fake_ghl.created] == ["trueflow_budget"]

    def test_cache_runs_off_the_event_loop(self, fake_ghl):
        threads = []

        class RecordingCache(FieldCache):
            def get(self, key):
                threads.append(threading.get_ident())
                return super().get(key)

            def set(self, key, value, ttl=3600):
                threads.append(threading.get_ident())
                return super().set(key, value, ttl)

        resolver = SchemaResolver(client=fake_ghl.client(), cache=RecordingCache(use_redis=False))
        asyncio.run(resolver.resolve([GOALS], "v2"))

        assert threads
        assert threading.get_ident() not in threads

    def test_list_failure_propagates(self, fake_ghl):
        resolver = make_resolver(fake_ghl)

        async def broken_list():
            raise RemoteCallFailure("list custom fields", 401, "Unauthorized")

        resolver.client.list_custom_fields = broken_list
        with pytest.raises(RemoteCallFailure):
            asyncio.run(resolver.resolve([GOALS], "v2"))
        assert fake_ghl.created == []


class TestFieldCache:
    """Test the in-memory mode of the field cache."""

    def test_expiry_uses_injected_clock(self):
        clock = FakeClock()
        cache = FieldCache(clock=clock, use_redis=False)

        assert cache.set("k", {"fields": []}, ttl=10)
        assert cache.get("k") == {"fields": []}

        clock.now += 10
        assert cache.get("k") is None

    def test_clear_and_empty_key(self):
        cache = FieldCache(use_redis=False)
        cache.set("k", [1])

        assert cache.clear("k") is True
        assert cache.get("k") is None
        assert cache.set("", [1]) is False

    def test_redis_keys_are_not_prefixed(self):
        class FakeRedis:
            def __init__(self):
                self.store = {}

            def get(self, name):
                return self.store.get(name)

            def set(self, name, value, ex=None):
                self.store[name] = value

            def delete(self, name):
                return 1 if self.store.pop(name, None) is not None else 0

        cache = FieldCache(use_redis=False)
        cache.r = FakeRedis()
        key = SchemaResolver(client=GHLClient(location_id="loc_1"), cache=cache).cache_key("v2")

        cache.set(key, {"fields": []}, ttl=10)

        assert list(cache.r.store) == ["ghl:fields:loc_1:v2"]
        assert cache.get(key) == {"fields": []}
        assert cache.clear(key) is True
