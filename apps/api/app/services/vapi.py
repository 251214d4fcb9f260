"""HTTP client for the Vapi telephony API."""
from __future__ import annotations

import logging
from typing import Any

import httpx

from ..core.config import settings
from ..core.errors import ProviderError

logger = logging.getLogger(__name__)


class VapiClient:
    """Thin async wrapper over the provider's REST endpoints."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.vapi.ai",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
            transport=transport,
        )
        self._configured = bool(api_key.strip())

    @classmethod
    def from_settings(cls) -> "VapiClient":
        return cls(settings.vapi_api_key, base_url=settings.vapi_base_url, timeout=settings.vapi_timeout_seconds)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def create_call(
        self,
        *,
        phone_number_id: str,
        assistant_id: str,
        customer_number: str,
        customer_name: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Ask the provider to dial ``customer_number``; returns the provider call."""

        customer: dict[str, Any] = {"number": customer_number}
        if customer_name:
            customer["name"] = customer_name
        body: dict[str, Any] = {
            "phoneNumberId": phone_number_id,
            "assistantId": assistant_id,
            "customer": customer,
        }
        if metadata:
            body["metadata"] = metadata
        return await self._request("POST", "/call", json=body)

    async def get_call(self, external_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/call/{external_id}")

    async def end_call(self, external_id: str) -> dict[str, Any]:
        """Hang up a live call."""

        return await self._request("PATCH", f"/call/{external_id}", json={"status": "ended"})

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        if not self._configured:
            raise ProviderError("VAPI_API_KEY is missing")
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.exception("Vapi %s %s failed", method, path)
            raise ProviderError(f"Vapi request failed: {exc}") from exc

        if response.is_error:
            logger.warning("Vapi %s %s returned %s: %s", method, path, response.status_code, response.text[:200])
            raise ProviderError(
                f"Vapi API error: {response.status_code}", status_code=response.status_code
            )
        if not response.content:
            return {}
        return response.json()
