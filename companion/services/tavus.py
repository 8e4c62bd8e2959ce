"""
Sage Companion — Tavus Video Avatar Client

Thin async wrapper over the Tavus conversational video REST API (v2).
Every failure is translated into the companion error taxonomy so the
avatar broker can decide between cleanup, retry and giving up:

  "maximum concurrent" in the body   → CapacityError
  401 / 402 / 403 / 404              → ConfigurationError
  400 / 422                          → ValidationError (request + response kept)
  429 / 5xx / timeout / connection   → TransientProviderError
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from ..core.config import AvatarConfig, ProviderConfig, avatar_cfg, provider_cfg
from ..core.errors import (
    CapacityError,
    ConfigurationError,
    TransientProviderError,
    ValidationError,
)
from ..core.models import ProviderSession

logger = logging.getLogger("companion.tavus")

_CAPACITY_MARKER = "maximum concurrent"
_CONFIG_STATUSES = (401, 402, 403, 404)
_VALIDATION_STATUSES = (400, 422)


def parse_timestamp(raw: Any) -> Optional[datetime]:
    """ISO-8601 (with or without trailing Z) → aware datetime, else None."""
    if not raw or not isinstance(raw, str):
        return None
    text = raw.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        ts = datetime.fromisoformat(text)
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _session_from_row(row: Dict[str, Any]) -> ProviderSession:
    return ProviderSession(
        id=row.get("conversation_id") or row.get("id") or "",
        status=(row.get("status") or "").lower(),
        created_at=parse_timestamp(row.get("created_at")),
        name=row.get("conversation_name") or "",
    )


class TavusClient:
    """AvatarProvider backed by the Tavus REST API."""

    def __init__(
        self,
        provider: ProviderConfig = provider_cfg,
        config: AvatarConfig = avatar_cfg,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._api_key = provider.tavus_api_key
        self.base_url = provider.tavus_base_url.rstrip("/")
        self._cfg = config
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def _get_client(self) -> httpx.AsyncClient:
        if not self._api_key:
            raise ConfigurationError("TAVUS_API_KEY is not set", provider="tavus")
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"x-api-key": self._api_key, "Content-Type": "application/json"},
                timeout=self._cfg.request_timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ── Transport + error mapping ───────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Any:
        client = self._get_client()
        try:
            response = await client.request(method, path, json=payload)
        except httpx.TimeoutException as e:
            raise TransientProviderError(f"Tavus {method} {path} timed out", provider="tavus") from e
        except httpx.RequestError as e:
            raise TransientProviderError(f"Tavus {method} {path} failed: {e}", provider="tavus") from e

        if response.is_success:
            if not response.content:
                return {}
            try:
                return response.json()
            except ValueError:
                return {}

        raise self._map_error(method, path, payload, response)

    def _map_error(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]],
        response: httpx.Response,
    ) -> Exception:
        status = response.status_code
        try:
            body: Any = response.json()
        except ValueError:
            body = response.text
        if isinstance(body, dict):
            message = body.get("message") or body.get("error") or str(body)
        else:
            message = str(body or f"HTTP {status}")

        where = f"Tavus {method} {path}"
        if _CAPACITY_MARKER in str(message).lower():
            logger.warning(f"{where}: concurrent session limit reached")
            return CapacityError(f"{where}: {message}", provider="tavus", status_code=status)
        if status in _CONFIG_STATUSES:
            logger.error(f"{where}: configuration rejected ({status}): {message}")
            return ConfigurationError(f"{where}: {message}", provider="tavus", status_code=status)
        if status in _VALIDATION_STATUSES:
            logger.error(f"{where}: request rejected ({status}): {message} | request={payload} | response={body}")
            return ValidationError(
                f"{where}: {message}",
                provider="tavus",
                status_code=status,
                request=payload,
                response=body,
            )
        logger.warning(f"{where}: provider error ({status}): {message}")
        return TransientProviderError(f"{where}: {message}", provider="tavus", status_code=status)

    # ── Replicas ────────────────────────────────────────────────────────

    async def list_replicas(self) -> List[Dict[str, Any]]:
        data = await self._request("GET", "/replicas")
        return list(data.get("data") or []) if isinstance(data, dict) else []

    # ── Conversations ───────────────────────────────────────────────────

    async def create_session(
        self,
        replica_ref: str,
        persona_ref: Optional[str],
        name: str,
        greeting: Optional[str] = None,
        limits: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, str]:
        payload: Dict[str, Any] = {
            "replica_id": replica_ref,
            "conversation_name": name,
        }
        if persona_ref:
            payload["persona_id"] = persona_ref
        if greeting:
            payload["custom_greeting"] = greeting
        if limits:
            payload["properties"] = dict(limits)

        data = await self._request("POST", "/conversations", payload)
        conversation_id = data.get("conversation_id") or ""
        url = data.get("conversation_url") or ""
        if not conversation_id or not url:
            raise TransientProviderError(
                f"Tavus returned an incomplete conversation: {data}",
                provider="tavus",
            )
        logger.info(f"Tavus conversation created: {conversation_id}")
        return {"id": conversation_id, "url": url}

    async def end_session(self, session_id: str) -> None:
        await self._request("POST", f"/conversations/{session_id}/end")
        logger.info(f"Tavus conversation ended: {session_id}")

    async def list_sessions(self) -> List[ProviderSession]:
        data = await self._request("GET", "/conversations")
        rows = data.get("data") if isinstance(data, dict) else data
        return [_session_from_row(row) for row in (rows or []) if isinstance(row, dict)]

    async def get_session(self, session_id: str) -> ProviderSession:
        data = await self._request("GET", f"/conversations/{session_id}")
        if not data.get("conversation_id"):
            data = dict(data, conversation_id=session_id)
        return _session_from_row(data)
