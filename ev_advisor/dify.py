from typing import Any, Dict

import httpx

from ev_advisor.config import Settings


class DifyClient:
    """Thin wrapper over the Dify chat app endpoints used by the proxy."""

    def __init__(self, api_key: str, base_url: str, http: httpx.AsyncClient):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.http = http

    @classmethod
    def from_settings(cls, settings: Settings, http: httpx.AsyncClient) -> "DifyClient":
        return cls(settings.dify_api_key, settings.dify_base_url, http)

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def open_chat_stream(self, payload: Dict[str, Any]) -> httpx.Response:
        """
        POST /v1/chat-messages and return the response with its body unread.
        The caller owns the response and must `aclose()` it.
        """
        request = self.http.build_request(
            "POST",
            f"{self.base_url}/v1/chat-messages",
            json=payload,
            headers=self._headers(),
        )
        return await self.http.send(request, stream=True)

    async def get_parameters(self) -> httpx.Response:
        return await self.http.get(f"{self.base_url}/v1/parameters", headers=self._headers())
