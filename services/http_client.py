# services/http_client.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger("property-concierge")


class ServiceError(Exception):
    """Transport, status or decoding failure of a remote collaborator."""

    def __init__(self, message: str, *, service: str = "", status: Optional[int] = None):
        super().__init__(message)
        self.service = service
        self.status = status


class ServiceClient:
    """
    Thin JSON-over-HTTP client shared by the remote service wrappers.
    The httpx.AsyncClient is created lazily and reused for the session.
    """

    name = "service"

    def __init__(
        self,
        base_url: str,
        *,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    def _get_http(self) -> httpx.AsyncClient:
        if self._http is None:
            headers = {"Content-Type": "application/json"}
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
            self._http = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self._timeout,
                headers=headers,
                transport=self._transport,
            )
        return self._http

    async def post_json(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        http = self._get_http()
        try:
            resp = await http.post(path, json=body)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            detail = _error_detail(e.response)
            logger.warning("%s %s -> HTTP %s: %s", self.name, path, e.response.status_code, detail)
            raise ServiceError(detail or f"HTTP {e.response.status_code}", service=self.name,
                               status=e.response.status_code) from e
        except httpx.HTTPError as e:
            logger.warning("%s %s transport error: %r", self.name, path, e)
            raise ServiceError(f"{type(e).__name__}: {e}", service=self.name) from e
        except ValueError as e:
            logger.warning("%s %s returned a non-JSON body", self.name, path)
            raise ServiceError("Malformed response body", service=self.name) from e
        if not isinstance(data, dict):
            raise ServiceError("Unexpected response shape", service=self.name)
        return data

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None


def _error_detail(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(data, dict):
        return str(data.get("error") or data.get("message") or "")
    return ""
