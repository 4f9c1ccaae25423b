"""Entity Store and identity provider for the managed backend.

Talks the PostgREST dialect for rows (``/rest/v1``) and the GoTrue dialect
for authentication (``/auth/v1``) over ``httpx``.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Optional

import httpx

from taskboard.auth import AuthEvent, AuthEventSource, Principal, principal_from_user
from taskboard.errors import EntityStoreError, NotFoundError
from taskboard.filters import Embed, Eq, Gte, In, Lte, Query, Search

logger = logging.getLogger(__name__)

OBJECT_MEDIA_TYPE = "application/vnd.pgrst.object+json"

_EMBEDS = {
    Embed.none: "",
    Embed.project_ref: "project:projects(id,name)",
    Embed.task_count: "tasks:tasks(count)",
    Embed.task_list: "tasks:tasks(*)",
}


def _format_value(value: Any) -> str:
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _quote(value: str) -> str:
    """Double-quote a value for a PostgREST list or logic tree."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


_REGEX_SPECIAL = frozenset(".^$*+?()[]{}|\\")


def literal_pattern(term: str) -> str:
    """Escape ``term`` so an ``imatch`` regex matches it as plain text."""
    return "".join("\\" + char if char in _REGEX_SPECIAL else char for char in term)


def select_clause(embed: Embed = Embed.none, columns: Optional[tuple[str, ...]] = None) -> str:
    parts = [",".join(columns) if columns else "*"]
    if _EMBEDS[embed]:
        parts.append(_EMBEDS[embed])
    return ",".join(parts)


def render_params(query: Query) -> list[tuple[str, str]]:
    """Render a query as PostgREST query-string parameters."""
    params = [("select", select_clause(query.embed, query.columns))]
    for predicate in query.predicates:
        if isinstance(predicate, Search):
            pattern = _quote(literal_pattern(predicate.term))
            terms = ",".join(f"{name}.imatch.{pattern}" for name in predicate.fields)
            params.append(("or", f"({terms})"))
        elif isinstance(predicate, In):
            values = ",".join(_quote(_format_value(v)) for v in predicate.values)
            params.append((predicate.field, f"in.({values})"))
        elif isinstance(predicate, Eq):
            params.append((predicate.field, f"eq.{_format_value(predicate.value)}"))
        elif isinstance(predicate, Gte):
            params.append((predicate.field, f"gte.{_format_value(predicate.value)}"))
        elif isinstance(predicate, Lte):
            params.append((predicate.field, f"lte.{_format_value(predicate.value)}"))
        else:
            raise TypeError(f"Unsupported predicate: {predicate!r}")
    if query.order is not None:
        direction = "desc" if query.order.descending else "asc"
        params.append(("order", f"{query.order.field}.{direction}"))
    return params


def error_from_response(response: httpx.Response) -> EntityStoreError:
    """Turn an error response into a single human-readable store error."""
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    message = (
        body.get("message")
        or body.get("msg")
        or body.get("error_description")
        or response.reason_phrase
        or f"HTTP {response.status_code}"
    )
    if response.status_code == 404 or (
        response.status_code == 406 and body.get("code") == "PGRST116"
    ):
        return NotFoundError(message, response.status_code)
    return EntityStoreError(message, response.status_code)


async def _send(client: httpx.AsyncClient, method: str, url: str, **kwargs) -> httpx.Response:
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.HTTPError as exc:
        logger.warning("%s %s failed: %s", method, url, exc)
        raise EntityStoreError(f"Network error: {exc}") from exc
    if response.status_code >= 400:
        error = error_from_response(response)
        logger.debug("%s %s -> %d %s", method, url, response.status_code, error.message)
        raise error
    return response


class RestEntityStore:
    """Entity Store speaking PostgREST.

    Args:
        base_url: Backend root, e.g. ``https://xyz.example.co``.
        api_key: Public API key, sent on every request.
        token_provider: Returns the signed-in user's access token, if any.
            Row-level access policies on the backend key off this token.
        timeout: Request timeout in seconds.
        transport: Optional ``httpx`` transport (tests use ``MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        token_provider: Optional[Callable[[], Optional[str]]] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._api_key = api_key
        self._token_provider = token_provider
        self._client = httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}/rest/v1",
            timeout=timeout,
            transport=transport,
        )

    def _headers(self, *, single: bool = False, returning: bool = False) -> dict[str, str]:
        token = (self._token_provider() if self._token_provider else None) or self._api_key
        headers = {"apikey": self._api_key, "Authorization": f"Bearer {token}"}
        if single:
            headers["Accept"] = OBJECT_MEDIA_TYPE
        if returning:
            headers["Prefer"] = "return=representation"
        return headers

    async def list(self, kind: str, query: Query) -> list[dict]:
        response = await _send(
            self._client, "GET", f"/{kind}", params=render_params(query), headers=self._headers()
        )
        return response.json()

    async def get(self, kind: str, entity_id: str, *, embed: Embed = Embed.none) -> dict:
        params = [("select", select_clause(embed)), ("id", f"eq.{entity_id}")]
        response = await _send(
            self._client, "GET", f"/{kind}", params=params, headers=self._headers(single=True)
        )
        return response.json()

    async def insert(self, kind: str, fields: dict, *, embed: Embed = Embed.none) -> dict:
        response = await _send(
            self._client,
            "POST",
            f"/{kind}",
            params=[("select", select_clause(embed))],
            json=fields,
            headers=self._headers(single=True, returning=True),
        )
        return response.json()

    async def update(
        self, kind: str, entity_id: str, fields: dict, *, embed: Embed = Embed.none
    ) -> dict:
        response = await _send(
            self._client,
            "PATCH",
            f"/{kind}",
            params=[("select", select_clause(embed)), ("id", f"eq.{entity_id}")],
            json=fields,
            headers=self._headers(single=True, returning=True),
        )
        return response.json()

    async def delete(self, kind: str, entity_id: str) -> None:
        await _send(
            self._client,
            "DELETE",
            f"/{kind}",
            params=[("id", f"eq.{entity_id}")],
            headers=self._headers(),
        )

    async def aclose(self) -> None:
        await self._client.aclose()


class RestAuthProvider(AuthEventSource):
    """Identity provider speaking GoTrue.

    Keeps the current access token in memory only; ``sign_out`` drops it.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__()
        self._api_key = api_key
        self._access_token: Optional[str] = None
        self._client = httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}/auth/v1",
            timeout=timeout,
            transport=transport,
        )

    @property
    def access_token(self) -> Optional[str]:
        return self._access_token

    def _headers(self, with_token: bool = False) -> dict[str, str]:
        headers = {"apikey": self._api_key}
        if with_token and self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
        return headers

    async def sign_in(self, email: str, password: str) -> Principal:
        response = await _send(
            self._client,
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
            headers=self._headers(),
        )
        body = response.json()
        self._access_token = body["access_token"]
        principal = principal_from_user(body["user"])
        logger.info("Signed in %s", principal.email)
        self._emit(AuthEvent("signed_in", principal))
        return principal

    async def sign_up(self, email: str, password: str, full_name: str) -> Optional[Principal]:
        """Register a user. Returns None when the backend withholds the user
        until the email address is confirmed."""
        response = await _send(
            self._client,
            "POST",
            "/signup",
            json={"email": email, "password": password, "data": {"full_name": full_name}},
            headers=self._headers(),
        )
        body = response.json()
        user = body.get("user", body) if isinstance(body, dict) else None
        if not user or not user.get("id"):
            return None
        return principal_from_user(user)

    async def sign_out(self) -> None:
        if self._access_token:
            await _send(self._client, "POST", "/logout", headers=self._headers(with_token=True))
        self._access_token = None
        self._emit(AuthEvent("signed_out"))

    async def get_current_user(self) -> Optional[Principal]:
        if not self._access_token:
            return None
        try:
            response = await _send(
                self._client, "GET", "/user", headers=self._headers(with_token=True)
            )
        except EntityStoreError as exc:
            if exc.status_code == 401:
                self._access_token = None
                return None
            raise
        return principal_from_user(response.json())

    async def aclose(self) -> None:
        await self._client.aclose()
