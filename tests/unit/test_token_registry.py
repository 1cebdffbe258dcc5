"""
Unit tests for the responder token registry
"""

from datetime import datetime

import pytest

from beacon.services.emergency.token_registry import (
    RESPONDERS_COLLECTION, TokenRegistry, normalize_token_key
)


class TestNormalizeTokenKey:
    """Test storage key normalization"""

    def test_expo_token(self):
        assert normalize_token_key("ExponentPushToken[abc-123_X]") == "ExponentPushToken_abc-123_X_"

    def test_path_characters_replaced(self):
        assert normalize_token_key("../../etc/passwd") == "______etc_passwd"

    def test_truncated_to_150(self):
        assert len(normalize_token_key("a" * 400)) == 150

    def test_custom_length(self):
        assert normalize_token_key("abcdef", max_length=3) == "abc"

    def test_length_never_above_150(self):
        assert len(normalize_token_key("a" * 400, max_length=500)) == 150


class TestTokenRegistry:
    """Test responder registration"""

    @pytest.mark.asyncio
    async def test_register_stores_raw_token(self, registry, memory_store):
        key = await registry.register("ExponentPushToken[abc]")

        doc = await memory_store.get(RESPONDERS_COLLECTION, key)
        assert key == "ExponentPushToken_abc_"
        assert doc.data["token"] == "ExponentPushToken[abc]"
        assert isinstance(doc.data["updatedAt"], datetime)

    @pytest.mark.asyncio
    async def test_register_twice_keeps_one_endpoint(self, registry, memory_store):
        await registry.register("t1")
        await registry.register("t1")

        assert len(await memory_store.list(RESPONDERS_COLLECTION)) == 1
        assert await registry.list_tokens() == {"t1"}

    @pytest.mark.asyncio
    async def test_register_refreshes_timestamp(self, registry, memory_store):
        key = await registry.register("t1")
        first = (await memory_store.get(RESPONDERS_COLLECTION, key)).data["updatedAt"]
        await registry.register("t1")
        second = (await memory_store.get(RESPONDERS_COLLECTION, key)).data["updatedAt"]

        assert second > first

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", ["", "   ", None])
    async def test_empty_token_is_ignored(self, registry, memory_store, token):
        assert await registry.register(token) is None
        assert await memory_store.list(RESPONDERS_COLLECTION) == []

    @pytest.mark.asyncio
    async def test_list_tokens_is_distinct(self, registry):
        for token in ["t1", "t2", "t1", "t3"]:
            await registry.register(token)

        assert await registry.list_tokens() == {"t1", "t2", "t3"}

    @pytest.mark.asyncio
    async def test_list_tokens_skips_malformed_entries(self, registry, memory_store):
        await registry.register("t1")
        await memory_store.upsert(RESPONDERS_COLLECTION, "blank", {"token": ""})
        await memory_store.upsert(RESPONDERS_COLLECTION, "number", {"token": 42})
        await memory_store.upsert(RESPONDERS_COLLECTION, "missing", {})

        assert await registry.list_tokens() == {"t1"}

    @pytest.mark.asyncio
    async def test_endpoints(self, registry):
        await registry.register("t1")

        endpoints = await registry.endpoints()
        assert [(e.key, e.token) for e in endpoints] == [("t1", "t1")]

    def test_invalid_key_length(self, memory_store):
        with pytest.raises(ValueError):
            TokenRegistry(memory_store, max_key_length=151)
        with pytest.raises(ValueError):
            TokenRegistry(memory_store, max_key_length=0)
