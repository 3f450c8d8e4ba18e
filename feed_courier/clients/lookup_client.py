"""Client for the media lookup relay that resolves stable ids to remote items."""

from __future__ import annotations

from typing import Any

import httpx

from ..exceptions import LookupRelayError
from ..schemas import LookupRelayConfig
from ..utils.config import GlobalSettings, get_settings
from ..utils.logging import setup_logger

logger = setup_logger(__name__, context={"component": "lookup_client"})


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"Lookup relay returned {response.status_code}"


class LookupClient:
    """Publishes the ``{connection_id: {stable_id: remote_id}}`` map and queries it."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        *,
        settings: GlobalSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.strip().rstrip("/")
        self.api_key = api_key
        self._settings = settings or get_settings()
        self._transport = transport

    @classmethod
    def from_config(
        cls,
        config: LookupRelayConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> LookupClient:
        return cls(config.url, config.api_key, transport=transport)

    async def _send(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                timeout=self._settings.request_timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.request(method, f"{self.base_url}{path}", **kwargs)
        except httpx.HTTPError as exc:
            raise LookupRelayError(f"Lookup relay request failed: {exc}") from exc

        if not response.is_success:
            raise LookupRelayError(_error_message(response), status_code=response.status_code)
        try:
            data = response.json()
        except ValueError as exc:
            raise LookupRelayError(
                "Lookup relay returned invalid JSON", status_code=response.status_code
            ) from exc
        return data if isinstance(data, dict) else {}

    async def publish(self, media_map: dict[str, dict[str, str]]) -> str:
        """Replace the relay's map with ``media_map`` and return its confirmation message."""

        headers = {"X-API-Key": self.api_key} if self.api_key else {}
        data = await self._send("POST", "/upload", json={"map": media_map}, headers=headers)
        count = sum(len(entries) for entries in media_map.values())
        logger.info(
            "Published media map with %d ids across %d connections",
            count,
            len(media_map),
            extra={"status": "success"},
        )
        return str(data.get("message") or "Media map uploaded")

    async def lookup(self, connection_id: str, media_id: str) -> str:
        """Return the remote item id behind ``media_id`` for ``connection_id``."""

        data = await self._send(
            "GET",
            "/lookup",
            params={"connectionId": connection_id, "mediaId": media_id},
        )
        remote_id = data.get("remoteItemId")
        if remote_id is None:
            raise LookupRelayError("Lookup relay response is missing 'remoteItemId'")
        return str(remote_id)

    async def health(self) -> dict[str, Any]:
        return await self._send("GET", "/health")
