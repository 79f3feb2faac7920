"""HTTP client for the Drone Hub REST API.

Thin wrapper over aiohttp.ClientSession. Every non-2xx response becomes
a HubRequestError carrying the status code and the hub's ``error``
message; transport failures become HubConnectionError. Callers never see
raw aiohttp exceptions.
"""
from __future__ import annotations

import asyncio
import json
import logging
import math
from typing import Any
from urllib.parse import quote

import aiohttp

from dronehub.engine.cache import ResponseCache
from dronehub.engine.errors import HubConnectionError, HubRequestError
from dronehub.engine.models import (
    DroneSummary,
    PendingPrompt,
    TranscriptItem,
    normalize_chat_name,
)

logger = logging.getLogger(__name__)


def _chat_path(drone_id: str, chat_name: str, *tail: str) -> str:
    parts = [
        "api", "drones", quote(drone_id, safe=""),
        "chats", quote(normalize_chat_name(chat_name), safe=""),
        *(quote(t, safe="") for t in tail),
    ]
    return "/" + "/".join(parts)


class HubClient:
    """Async client for the hub's per-chat endpoints."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 30.0,
        cache: ResponseCache | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._cache = cache
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> HubClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def request_json(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        body: dict[str, Any] | None = None,
        cacheable: bool = False,
    ) -> dict[str, Any]:
        """Issue one request and return the decoded JSON object."""
        url = f"{self.base_url}{path}"
        cache_key = f"{path}?{sorted((params or {}).items())}"
        if cacheable and self._cache is not None:
            cached = self._cache.get(cache_key)
            if cached is not None:
                logger.debug("Cache hit for %s", path)
                return cached

        session = self._get_session()
        try:
            async with session.request(method, url, params=params, json=body) as resp:
                text = await resp.text()
                status = resp.status
                reason = resp.reason or ""
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise HubConnectionError(url, str(exc) or type(exc).__name__) from exc

        data: Any = None
        if text:
            try:
                data = json.loads(text)
            except json.JSONDecodeError:
                logger.debug("Non-JSON body from %s %s: %r", method, path, text[:200])

        if not 200 <= status < 300:
            message = None
            if isinstance(data, dict):
                message = data.get("error")
            raise HubRequestError(status, str(message or f"{status} {reason}".strip()), url)

        if not isinstance(data, dict):
            data = {}
        if cacheable and self._cache is not None:
            self._cache.set(cache_key, data)
        return data

    # ── Endpoints ────────────────────────────────────────────

    async def list_drones(self) -> list[DroneSummary]:
        data = await self.request_json("GET", "/api/drones", cacheable=True)
        return [
            DroneSummary.from_dict(d) for d in data.get("drones") or []
            if isinstance(d, dict)
        ]

    async def send_prompt(
        self,
        drone_id: str,
        chat_name: str,
        prompt: str,
        attachments: list[dict[str, Any]] | None = None,
    ) -> str:
        """POST a prompt. Returns the hub-assigned prompt id (may be empty)."""
        body: dict[str, Any] = {"prompt": prompt}
        if attachments is not None:
            body["attachments"] = attachments
        data = await self.request_json(
            "POST", _chat_path(drone_id, chat_name, "prompt"), body=body,
        )
        return str(data.get("promptId") or "").strip()

    async def list_pending(self, drone_id: str, chat_name: str) -> list[PendingPrompt]:
        data = await self.request_json("GET", _chat_path(drone_id, chat_name, "pending"))
        return [
            PendingPrompt.from_dict(p) for p in data.get("pending") or []
            if isinstance(p, dict) and p.get("id")
        ]

    async def unstick_pending(self, drone_id: str, chat_name: str, prompt_id: str) -> None:
        await self.request_json(
            "POST", _chat_path(drone_id, chat_name, "pending", prompt_id, "unstick"),
        )

    async def get_transcript(self, drone_id: str, chat_name: str) -> list[TranscriptItem]:
        data = await self.request_json(
            "GET", _chat_path(drone_id, chat_name, "transcript"),
            params={"turn": "all"},
        )
        return [
            TranscriptItem.from_dict(t) for t in data.get("transcripts") or []
            if isinstance(t, dict)
        ]

    async def get_output_screen(self, drone_id: str, chat_name: str, tail: int) -> str:
        data = await self.request_json(
            "GET", _chat_path(drone_id, chat_name, "output"),
            params={"view": "screen", "tail": str(tail)},
        )
        text = data.get("text")
        return text if isinstance(text, str) else ""

    async def get_output_log(
        self,
        drone_id: str,
        chat_name: str,
        *,
        since: int | None = None,
        tail: int | None = None,
        max_bytes: int | None = None,
    ) -> tuple[int | None, str]:
        """Read the session log. Returns (offsetBytes, text)."""
        params: dict[str, str] = {}
        if since is not None:
            params["since"] = str(since)
        if tail is not None:
            params["tail"] = str(tail)
        if max_bytes is not None:
            params["maxBytes"] = str(max_bytes)
        data = await self.request_json(
            "GET", _chat_path(drone_id, chat_name, "output"), params=params,
        )
        offset = data.get("offsetBytes")
        if isinstance(offset, bool) or not isinstance(offset, (int, float)):
            offset = None
        elif not math.isfinite(offset):
            offset = None
        text = data.get("text")
        return (
            int(offset) if offset is not None else None,
            text if isinstance(text, str) else "",
        )
