"""HTTP clients for the hosted Postgres-as-a-service platform.

This module provides:

- ``SupabaseClient``: shared ``httpx.AsyncClient`` wrapper with key headers
  and error translation
- ``SupabaseDataStore``: the REST (PostgREST) table API as a ``DataStore``
- ``SupabaseBlobStore``: the storage object API as a ``BlobStore``

Realtime changes are not read from the network here; the data store hands
subscriptions to an injected :class:`ChangeFeed`, which the platform's
realtime transport publishes into.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from community_feed.core.settings import Settings, settings
from community_feed.services.backend import Filters, Row, is_membership
from community_feed.services.errors import BlobStoreError, DataStoreError, RemoteError
from community_feed.services.realtime import ChangeFeed, ChangeHandler, Subscription

# Configure logger for this module
logger = logging.getLogger(__name__)

HTTP_BAD_REQUEST = 400


@dataclass(frozen=True)
class SupabaseConfig:
    """Immutable configuration for platform requests."""

    base_url: str
    anon_key: str
    timeout_seconds: float


def load_supabase_config(source: Settings | None = None) -> SupabaseConfig:
    """Build configuration object from settings."""

    source = source or settings
    if not source.backend_enabled:
        raise DataStoreError("Backend URL and anon key must be configured")
    return SupabaseConfig(
        base_url=str(source.backend_url).rstrip("/"),
        anon_key=str(source.backend_anon_key),
        timeout_seconds=float(source.http_timeout_seconds),
    )


def encode_filters(filters: Filters | None) -> dict[str, str]:
    """Translate equality/membership filters into PostgREST query parameters."""

    params: dict[str, str] = {}
    for column, value in (filters or {}).items():
        if value is None:
            params[column] = "is.null"
        elif is_membership(value):
            quoted = ",".join('"{}"'.format(str(v).replace('"', '\\"')) for v in value)
            params[column] = f"in.({quoted})"
        elif isinstance(value, bool):
            params[column] = f"eq.{str(value).lower()}"
        else:
            params[column] = f"eq.{value}"
    return params


class SupabaseClient:
    """HTTP client wrapper shared by the table and storage APIs."""

    def __init__(
        self,
        config: SupabaseConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        token_source: Callable[[], str | None] | None = None,
    ) -> None:
        self.config = config or load_supabase_config()
        self._token_source = token_source
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.config.base_url,
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    transport=self._transport,
                )
        return self._client

    def _build_headers(self) -> dict[str, str]:
        token = (self._token_source() if self._token_source else None) or self.config.anon_key
        return {
            "apikey": self.config.anon_key,
            "Authorization": f"Bearer {token}",
        }

    @dataclass
    class RequestParams:
        """Parameters for HTTP requests."""

        method: str
        path: str
        json_data: Any | None = None
        content: bytes | None = None
        params: Mapping[str, str] | None = None
        headers: dict[str, str] | None = None

    async def request(
        self, params: RequestParams, *, error_cls: type[RemoteError] = DataStoreError
    ) -> httpx.Response:
        client = await self._ensure_client()
        headers = self._build_headers()
        if params.headers:
            headers.update(params.headers)

        try:
            response = await client.request(
                params.method,
                params.path,
                json=params.json_data,
                content=params.content,
                params=params.params,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", params.method, params.path, exc)
            raise error_cls(f"Request failed: {exc}") from exc

        if response.status_code >= HTTP_BAD_REQUEST:
            raise error_cls(
                f"{params.method} {params.path} responded with "
                f"{response.status_code}: {_error_detail(response)}"
            )
        return response

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)
    return str(body)


class SupabaseDataStore:
    """Table access over the platform's REST API."""

    def __init__(self, client: SupabaseClient, change_feed: ChangeFeed | None = None) -> None:
        self.client = client
        self.change_feed = change_feed or ChangeFeed()

    async def select(
        self,
        table: str,
        *,
        filters: Filters | None = None,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[Row]:
        query = {"select": "*", **encode_filters(filters)}
        if order_by:
            query["order"] = f"{order_by}.{'desc' if descending else 'asc'}"
        response = await self.client.request(
            SupabaseClient.RequestParams(method="GET", path=_table_path(table), params=query)
        )
        return list(response.json())

    async def insert(self, table: str, values: Mapping[str, Any]) -> Row:
        response = await self.client.request(
            SupabaseClient.RequestParams(
                method="POST",
                path=_table_path(table),
                json_data=dict(values),
                headers={"Prefer": "return=representation"},
            )
        )
        rows = response.json()
        if not rows:
            raise DataStoreError(f"Insert into {table} returned no row")
        return dict(rows[0])

    async def upsert(
        self, table: str, values: Mapping[str, Any], *, on_conflict: Sequence[str]
    ) -> Row:
        response = await self.client.request(
            SupabaseClient.RequestParams(
                method="POST",
                path=_table_path(table),
                json_data=dict(values),
                params={"on_conflict": ",".join(on_conflict)},
                headers={"Prefer": "resolution=merge-duplicates,return=representation"},
            )
        )
        rows = response.json()
        if not rows:
            raise DataStoreError(f"Upsert into {table} returned no row")
        return dict(rows[0])

    async def update(self, table: str, values: Mapping[str, Any], *, filters: Filters) -> list[Row]:
        response = await self.client.request(
            SupabaseClient.RequestParams(
                method="PATCH",
                path=_table_path(table),
                json_data=dict(values),
                params=encode_filters(filters),
                headers={"Prefer": "return=representation"},
            )
        )
        return list(response.json())

    async def delete(self, table: str, *, filters: Filters) -> list[Row]:
        response = await self.client.request(
            SupabaseClient.RequestParams(
                method="DELETE",
                path=_table_path(table),
                params=encode_filters(filters),
                headers={"Prefer": "return=representation"},
            )
        )
        return list(response.json()) if response.content else []

    def subscribe(
        self,
        table: str,
        handler: ChangeHandler,
        *,
        filters: Filters | None = None,
    ) -> Subscription:
        return self.change_feed.subscribe(table, handler, filters=filters)


class SupabaseBlobStore:
    """Object uploads over the platform's storage API."""

    def __init__(self, client: SupabaseClient) -> None:
        self.client = client

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str,
        *,
        upsert: bool = False,
    ) -> str:
        await self.client.request(
            SupabaseClient.RequestParams(
                method="POST",
                path=f"/storage/v1/object/{bucket}/{quote(path)}",
                content=data,
                headers={
                    "Content-Type": content_type,
                    "x-upsert": "true" if upsert else "false",
                },
            ),
            error_cls=BlobStoreError,
        )
        return self.public_url(bucket, path)

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.client.config.base_url}/storage/v1/object/public/{bucket}/{quote(path)}"


def _table_path(table: str) -> str:
    return f"/rest/v1/{table}"
