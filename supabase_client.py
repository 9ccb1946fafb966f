from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

import httpx

from uploads.errors import PhotoNotFoundError, PhotoServiceError, TransientStorageError


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Type {type(value)!r} is not JSON serializable")


def _strict_payload(payload: Any) -> Any:
    if payload is None:
        return None
    try:
        serialized = json.dumps(payload, default=_json_default, ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        raise TypeError("Supabase payload must be JSON serializable") from exc
    return json.loads(serialized)


def _error_message(response: httpx.Response, fallback: str) -> str:
    text = response.text.strip()
    try:
        parsed = response.json()
    except ValueError:
        parsed = None
    if isinstance(parsed, dict):
        for key in ("message", "error", "msg"):
            value = parsed.get(key)
            if isinstance(value, str) and value:
                text = value
                break
    return text or response.reason_phrase or fallback


def _raise_for_status(response: httpx.Response, action: str, *, ok: tuple[int, ...]) -> None:
    if response.status_code in ok:
        return
    message = _error_message(response, f"{action}_failed")
    if response.status_code == 404:
        raise PhotoNotFoundError(f"Supabase {action} failed: {message}")
    if response.status_code in (408, 429) or response.status_code >= 500:
        raise TransientStorageError(f"Supabase {action} failed: {response.status_code} {message}")
    raise PhotoServiceError(f"Supabase {action} failed: {response.status_code} {message}")


@dataclass
class SupabaseConfig:
    url: str | None
    key: str | None


class SupabaseClient:
    def __init__(
        self,
        url: str | None = None,
        key: str | None = None,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        env_key = key or os.getenv("SUPABASE_KEY") or os.getenv("SUPABASE_ANON_KEY")
        config = SupabaseConfig(url or os.getenv("SUPABASE_URL"), env_key)
        self._enabled = bool(config.url and config.key)
        self._client: httpx.AsyncClient | None = None
        self._api_base: str | None = None
        self._storage_base: str | None = None
        if self._enabled:
            api_base = config.url.rstrip("/")
            rest_base = api_base + "/rest/v1"
            headers = {
                "apikey": config.key,
                "Authorization": f"Bearer {config.key}",
            }
            self._client = httpx.AsyncClient(
                base_url=rest_base, timeout=timeout, headers=headers, transport=transport
            )
            self._api_base = api_base
            self._storage_base = api_base + "/storage/v1"

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _require(self) -> tuple[httpx.AsyncClient, str]:
        if not self._client or not self._storage_base:
            raise PhotoServiceError("Supabase client is disabled")
        return self._client, self._storage_base

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        client, _ = self._require()
        try:
            return await client.request(method, url, **kwargs)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise TransientStorageError(f"Supabase request failed: {exc}") from exc

    # Storage -----------------------------------------------------------

    async def upload_object(
        self,
        *,
        bucket: str,
        key: str,
        data: bytes,
        content_type: str,
        upsert: bool = False,
        cache_control: str = "3600",
    ) -> str:
        _, storage_base = self._require()
        normalized_key = key.lstrip("/")
        url = f"{storage_base}/object/{bucket}/{normalized_key}"
        headers = {
            "Content-Type": content_type,
            "Cache-Control": f"max-age={cache_control}",
            "x-upsert": "true" if upsert else "false",
        }
        response = await self._send("POST", url, content=data, headers=headers)
        _raise_for_status(response, "upload", ok=(200, 201))
        return normalized_key

    async def create_signed_url(self, *, bucket: str, key: str, expires_in: int = 3600) -> str:
        _, storage_base = self._require()
        normalized_key = key.lstrip("/")
        url = f"{storage_base}/object/sign/{bucket}/{normalized_key}"
        response = await self._send("POST", url, json={"expiresIn": int(expires_in)})
        _raise_for_status(response, "sign", ok=(200,))
        payload = response.json()
        signed = payload.get("signedURL") or payload.get("signedUrl") if isinstance(payload, dict) else None
        if not signed:
            raise PhotoServiceError("Supabase sign failed: response without signedURL")
        if signed.startswith("http"):
            return signed
        return f"{storage_base}{signed}"

    def public_url(self, *, bucket: str, key: str) -> str:
        if not self._api_base:
            raise PhotoServiceError("Supabase client is disabled")
        normalized_key = key.lstrip("/")
        return f"{self._api_base}/storage/v1/object/public/{bucket}/{normalized_key}"

    async def download_object(self, *, bucket: str, key: str) -> bytes:
        _, storage_base = self._require()
        normalized_key = key.lstrip("/")
        url = f"{storage_base}/object/{bucket}/{normalized_key}"
        response = await self._send("GET", url)
        _raise_for_status(response, "download", ok=(200,))
        return response.content

    async def delete_object(self, *, bucket: str, key: str) -> None:
        _, storage_base = self._require()
        normalized_key = key.lstrip("/")
        url = f"{storage_base}/object/{bucket}"
        response = await self._send("DELETE", url, json={"prefixes": [normalized_key]})
        _raise_for_status(response, "remove", ok=(200, 204))

    # PostgREST -----------------------------------------------------------

    async def select_rows(
        self,
        table: str,
        *,
        filters: Mapping[str, str] | None = None,
        select: str = "*",
        order: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"select": select}
        params.update(filters or {})
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)
        response = await self._send("GET", f"/{table}", params=params)
        _raise_for_status(response, "select", ok=(200,))
        rows = response.json()
        if not isinstance(rows, list):
            raise PhotoServiceError(f"Supabase select on {table} returned {type(rows).__name__}")
        return rows

    async def insert_row(self, table: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        response = await self._send(
            "POST",
            f"/{table}",
            json=[_strict_payload(dict(payload))],
            headers={"Prefer": "return=representation"},
        )
        _raise_for_status(response, "insert", ok=(200, 201))
        rows = response.json()
        if not rows:
            raise PhotoServiceError(f"Supabase insert into {table} returned no row")
        return rows[0]

    async def update_rows(
        self,
        table: str,
        *,
        filters: Mapping[str, str],
        values: Mapping[str, Any],
    ) -> list[dict[str, Any]]:
        response = await self._send(
            "PATCH",
            f"/{table}",
            params=dict(filters),
            json=_strict_payload(dict(values)),
            headers={"Prefer": "return=representation"},
        )
        _raise_for_status(response, "update", ok=(200, 204))
        if response.status_code == 204:
            return []
        return response.json()

    async def delete_rows(self, table: str, *, filters: Mapping[str, str]) -> None:
        if not filters:
            raise ValueError("Refusing to delete without filters")
        response = await self._send("DELETE", f"/{table}", params=dict(filters))
        _raise_for_status(response, "delete", ok=(200, 204))
        logging.debug("Supabase delete on %s filters=%s", table, dict(filters))
