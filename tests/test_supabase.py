# tests/test_supabase.py
"""Tests for the hosted backend HTTP adapters, using httpx's mock transport."""

import json

import httpx
import pytest

from community_feed.services.errors import BlobStoreError, DataStoreError
from community_feed.services.supabase import (
    SupabaseBlobStore,
    SupabaseClient,
    SupabaseConfig,
    SupabaseDataStore,
    encode_filters,
    load_supabase_config,
)

CONFIG = SupabaseConfig(base_url="https://backend.test", anon_key="anon-key", timeout_seconds=5.0)


def _client(handler, **kwargs):
    return SupabaseClient(CONFIG, transport=httpx.MockTransport(handler), **kwargs)


def test_encode_filters() -> None:
    assert encode_filters({"id": "p1"}) == {"id": "eq.p1"}
    assert encode_filters({"post_id": ["p1", "p2"]}) == {"post_id": 'in.("p1","p2")'}
    assert encode_filters({"reply_to": None}) == {"reply_to": "is.null"}
    assert encode_filters({"is_anonymous": False}) == {"is_anonymous": "eq.false"}
    assert encode_filters(None) == {}


def test_load_config_requires_backend(test_settings) -> None:
    with pytest.raises(DataStoreError):
        load_supabase_config(test_settings)

    config = load_supabase_config(
        test_settings.model_copy(
            update={"backend_url": "https://backend.test/", "backend_anon_key": "anon"}
        )
    )
    assert config.base_url == "https://backend.test"


@pytest.mark.asyncio
async def test_select_sends_filters_order_and_keys() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[{"id": "p1"}])

    client = _client(handler)
    store = SupabaseDataStore(client)

    rows = await store.select(
        "community_posts", filters={"id": ["p1", "p2"]}, order_by="created_at", descending=True
    )

    assert rows == [{"id": "p1"}]
    request = seen[0]
    assert request.method == "GET"
    assert request.url.path == "/rest/v1/community_posts"
    assert request.url.params["select"] == "*"
    assert request.url.params["id"] == 'in.("p1","p2")'
    assert request.url.params["order"] == "created_at.desc"
    assert request.headers["apikey"] == "anon-key"
    assert request.headers["Authorization"] == "Bearer anon-key"
    await client.aclose()


@pytest.mark.asyncio
async def test_insert_returns_representation_with_user_token() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json=[{"id": "c1", **json.loads(request.content)}])

    client = _client(handler, token_source=lambda: "user-jwt")
    store = SupabaseDataStore(client)

    row = await store.insert("community_comments", {"post_id": "p1", "content": "hi"})

    assert row == {"id": "c1", "post_id": "p1", "content": "hi"}
    assert seen[0].headers["Prefer"] == "return=representation"
    assert seen[0].headers["Authorization"] == "Bearer user-jwt"
    await client.aclose()


@pytest.mark.asyncio
async def test_error_status_raises_data_store_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(409, json={"message": "duplicate key value"})

    client = _client(handler)

    with pytest.raises(DataStoreError, match="duplicate key value"):
        await SupabaseDataStore(client).update(
            "community_reactions", {"reaction_type": "wow"}, filters={"post_id": "p1"}
        )
    await client.aclose()


@pytest.mark.asyncio
async def test_network_failure_raises_data_store_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler)

    with pytest.raises(DataStoreError, match="Request failed"):
        await SupabaseDataStore(client).delete("community_posts", filters={"id": "p1"})
    await client.aclose()


@pytest.mark.asyncio
async def test_delete_with_empty_body_returns_no_rows() -> None:
    client = _client(lambda request: httpx.Response(204))

    assert await SupabaseDataStore(client).delete("community_posts", filters={"id": "p1"}) == []
    await client.aclose()


@pytest.mark.asyncio
async def test_blob_upload_posts_object_and_returns_public_url() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"Key": "community-uploads/posts/u1_1_0.jpg"})

    client = _client(handler)
    blobs = SupabaseBlobStore(client)

    url = await blobs.upload("community-uploads", "posts/u1_1_0.jpg", b"data", "image/jpeg", upsert=True)

    assert url == "https://backend.test/storage/v1/object/public/community-uploads/posts/u1_1_0.jpg"
    assert seen[0].url.path == "/storage/v1/object/community-uploads/posts/u1_1_0.jpg"
    assert seen[0].headers["x-upsert"] == "true"
    assert seen[0].headers["Content-Type"] == "image/jpeg"
    assert seen[0].content == b"data"
    await client.aclose()


@pytest.mark.asyncio
async def test_blob_upload_failure_raises_blob_store_error() -> None:
    client = _client(lambda request: httpx.Response(400, text="Duplicate"))

    with pytest.raises(BlobStoreError, match="Duplicate"):
        await SupabaseBlobStore(client).upload("b", "p.jpg", b"x", "image/jpeg")
    await client.aclose()


@pytest.mark.asyncio
async def test_upsert_merges_on_conflict_columns() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json=[json.loads(request.content)])

    client = _client(handler)

    row = await SupabaseDataStore(client).upsert(
        "community_reactions",
        {"post_id": "p1", "user_id": "u1", "reaction_type": "sad"},
        on_conflict=("post_id", "user_id"),
    )

    assert row["reaction_type"] == "sad"
    request = seen[0]
    assert request.method == "POST"
    assert request.url.params["on_conflict"] == "post_id,user_id"
    assert request.headers["Prefer"] == "resolution=merge-duplicates,return=representation"
    await client.aclose()
