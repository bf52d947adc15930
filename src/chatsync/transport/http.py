"""
REST HTTP client for the Supabase project (GoTrue auth + PostgREST tables).
"""

from typing import Any, Optional

import httpx

from chatsync.errors import HttpError

USER_AGENT = "chatsync/0.1.0"


class HttpClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"User-Agent": USER_AGENT, "Accept": "application/json", "apikey": api_key},
            timeout=timeout,
            transport=transport,
        )

    def _headers(self, token: Optional[str], extra: Optional[dict[str, str]] = None) -> dict[str, str]:
        # PostgREST/GoTrue accept the anon key as bearer when no user token is available
        headers: dict[str, str] = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {token or self._api_key}",
        }
        if extra:
            headers.update(extra)
        return headers

    @staticmethod
    def _check(resp: httpx.Response) -> Any:
        if resp.status_code >= 400:
            try:
                body = resp.json()
            except ValueError:
                body = None
            raise HttpError(resp.status_code, f"HTTP {resp.status_code}: {resp.text[:200]}", body)
        if not resp.content:
            return None
        return resp.json()

    async def get(
        self,
        path: str,
        params: Optional[dict[str, str]] = None,
        token: Optional[str] = None,
    ) -> Any:
        resp = await self._client.get(path, params=params, headers=self._headers(token))
        return self._check(resp)

    async def post(
        self,
        path: str,
        body: Any = None,
        params: Optional[dict[str, str]] = None,
        token: Optional[str] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        resp = await self._client.post(path, json=body, params=params, headers=self._headers(token, headers))
        return self._check(resp)

    async def close(self) -> None:
        await self._client.aclose()
