"""
Thin JSON client for a Miles API.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

import httpx

from miles.core.errors import ApiError
from miles.core.logging import get_client_logger, log_with_context

logger = get_client_logger()


def encode_param(value: Any) -> str:
    """Render a filter value the way the server's query parser reads it back."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple, set)):
        return ",".join(encode_param(v) for v in value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


class MilesClient:
    """
    JSON-over-HTTP client for the generated REST API.

    Either pass a base URL, or an existing ``httpx.Client`` (such as
    FastAPI's TestClient) through ``http``.

    Example:
        client = MilesClient("http://localhost:8000")
        client.list("todos", {"done": "false"})
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        http: httpx.Client | None = None,
        api_prefix: str = "/api",
        timeout: float = 10.0,
    ):
        if http is None and base_url is None:
            raise ValueError("MilesClient needs a base_url or an http client")
        self._owns_http = http is None
        self.http = http or httpx.Client(base_url=base_url or "", timeout=timeout)
        self.api_prefix = "/" + api_prefix.strip("/") if api_prefix.strip("/") else ""

    def close(self) -> None:
        if self._owns_http:
            self.http.close()

    def __enter__(self) -> MilesClient:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def _url(self, resource: str, id: Any = None) -> str:
        url = f"{self.api_prefix}/{resource.strip('/')}"
        return f"{url}/{id}" if id is not None else url

    def request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """
        Send a request and decode the JSON body.

        Returns:
            Decoded body, or None for an empty (204) response

        Raises:
            ApiError: On a non-2xx response
        """
        response = self.http.request(method, url, params=params, json=json)
        log_with_context(
            logger,
            logging.DEBUG,
            f"{method} {url} -> {response.status_code}",
            params=params or {},
        )

        if not response.is_success:
            detail: Any = response.text
            error_type = None
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                detail = body.get("detail", body)
                error_type = body.get("type")
            raise ApiError(response.status_code, detail, error_type)

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # -------------------------------------------------------------------------
    # CRUD
    # -------------------------------------------------------------------------

    def list(self, resource: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        return self.request("GET", self._url(resource), params=params)

    def get(self, resource: str, id: Any, include: list[str] | None = None) -> dict[str, Any]:
        params = {"include": ",".join(include)} if include else None
        return self.request("GET", self._url(resource, id), params=params)

    def create(self, resource: str, data: dict[str, Any]) -> dict[str, Any]:
        return self.request("POST", self._url(resource), json=data)

    def update(self, resource: str, id: Any, data: dict[str, Any]) -> dict[str, Any]:
        """Partial update (PATCH)."""
        return self.request("PATCH", self._url(resource, id), json=data)

    def replace(self, resource: str, id: Any, data: dict[str, Any]) -> dict[str, Any]:
        """Full update (PUT)."""
        return self.request("PUT", self._url(resource, id), json=data)

    def delete(self, resource: str, id: Any) -> None:
        self.request("DELETE", self._url(resource, id))
