"""
client/api.py -- Async HTTP client for the book catalog API.

Attaches "Authorization: Bearer <token>" when a token is held and sends no
header at all otherwise. Non-2xx responses are turned into ApiError using
the server's {"error": {"code", "message"}} envelope; transport failures
surface as httpx.HTTPError.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from client.session import TokenStore

logger = logging.getLogger("bookcatalog.client")


class ApiError(Exception):
    """A request reached the server and came back with an error status."""

    def __init__(self, status_code: int, code: str, message: str) -> None:
        self.status_code = status_code
        self.code = code
        self.message = message
        super().__init__(f"{status_code} {code}: {message}")


class BookCatalogClient:
    def __init__(
        self,
        base_url: str,
        tokens: TokenStore,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.tokens = tokens
        self._http = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def __aenter__(self) -> "BookCatalogClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Account
    # ------------------------------------------------------------------

    async def add_user(self, username: str, email: str, password: str) -> dict[str, Any]:
        data = await self._request(
            "POST",
            "/api/v1/auth/users",
            json={"username": username, "email": email, "password": password},
        )
        self.tokens.login(data["token"])
        return data["user"]

    async def login(self, email: str, password: str) -> dict[str, Any]:
        data = await self._request("POST", "/api/v1/auth/login", json={"email": email, "password": password})
        self.tokens.login(data["token"])
        return data["user"]

    def logout(self) -> None:
        """Discard the token. No request is sent; tokens are not revoked server-side."""
        self.tokens.logout()

    # ------------------------------------------------------------------
    # Current user
    # ------------------------------------------------------------------

    async def me(self) -> dict[str, Any]:
        return await self._request("GET", "/api/v1/me")

    async def update_me(self, **fields: str) -> dict[str, Any]:
        return await self._request("PATCH", "/api/v1/me", json=fields)

    async def save_book(self, book: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "/api/v1/me/books", json=book)

    async def remove_book(self, book_id: str) -> dict[str, Any]:
        return await self._request("DELETE", f"/api/v1/me/books/{quote(book_id, safe='')}")

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, json: dict | None = None) -> dict[str, Any]:
        headers = {}
        token = self.tokens.get_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        resp = await self._http.request(method, path, json=json, headers=headers)
        if resp.is_error:
            raise _to_api_error(resp)
        return resp.json()


def _to_api_error(resp: httpx.Response) -> ApiError:
    try:
        error = resp.json().get("error") or {}
    except ValueError:
        error = {}
    return ApiError(
        status_code=resp.status_code,
        code=error.get("code", f"http_{resp.status_code}"),
        message=error.get("message", resp.reason_phrase),
    )
