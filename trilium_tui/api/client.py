"""Async ETAPI client - the backend collaborator used by the UI core.

The client maps transport and HTTP failures onto the error taxonomy in
`trilium_tui.errors` and never retries on its own; retrying is the
gateway's job (`trilium_tui.core.retry`).
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from ..errors import ApiError, AuthError, NetworkError, NotFoundError
from ..models import AppInfo, Branch, Note, SearchHit, validate_entity_id

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 30.0


class EtapiClient:
    """Thin async wrapper over the Trilium ETAPI endpoints the UI needs."""

    def __init__(
        self,
        server_url: str,
        api_token: str,
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = server_url.rstrip("/") + "/etapi"
        self._api_token = api_token
        self._timeout_s = timeout_s
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self.request_count = 0

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            headers = {"Accept": "application/json"}
            if self._api_token:
                headers["Authorization"] = self._api_token
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=httpx.Timeout(self._timeout_s),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> EtapiClient:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        self.request_count += 1
        logger.debug(f"{method} {path} (request #{self.request_count})")
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Timed out: {method} {path}") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Connection failed: {e}") from e
        self._raise_for_status(response)
        return response

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return

        try:
            payload = response.json()
            message = payload.get("message") or payload.get("code") or response.reason_phrase
        except (json.JSONDecodeError, ValueError, AttributeError):
            message = response.reason_phrase or f"HTTP {status}"

        if status in (401, 403):
            raise AuthError(f"Authentication failed: {message}", status=status)
        if status == 404:
            raise NotFoundError(f"Not found: {response.request.url.path}", status=status)
        if status == 429 or status >= 500:
            raise NetworkError(f"Server error {status}: {message}", status=status)
        raise ApiError(f"API error {status}: {message}", status=status, body=response.text)

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise NetworkError("Invalid response format from server") from e

    # ---- App info ----

    async def get_app_info(self) -> AppInfo:
        response = await self._request("GET", "/app-info")
        return AppInfo.from_dict(self._json(response))

    async def test_connection(self) -> AppInfo:
        """Check the server; a rejected token surfaces as AuthError."""
        return await self.get_app_info()

    # ---- Notes ----

    async def get_note(self, note_id: str) -> Note:
        validate_entity_id(note_id)
        response = await self._request("GET", f"/notes/{note_id}")
        return Note.from_dict(self._json(response))

    async def get_child_notes(self, parent_id: str) -> list[Note]:
        """Children of `parent_id` in branch order.

        Children that vanished between the two fetches are skipped; any
        other failure aborts the whole call so callers never see a partial
        child list.
        """
        parent = await self.get_note(parent_id)
        children: list[Note] = []
        for child_id in parent.child_note_ids:
            try:
                children.append(await self.get_note(child_id))
            except NotFoundError:
                logger.debug(f"Child {child_id} of {parent_id} not found, skipping")
        return children

    async def get_note_content(self, note_id: str) -> str:
        validate_entity_id(note_id)
        response = await self._request("GET", f"/notes/{note_id}/content", headers={"Accept": "text/html, text/plain, */*"})
        return response.text

    async def update_note_content(self, note_id: str, content: str) -> None:
        validate_entity_id(note_id)
        await self._request(
            "PUT",
            f"/notes/{note_id}/content",
            content=content.encode("utf-8"),
            headers={"Content-Type": "text/plain; charset=utf-8"},
        )

    async def search_notes(
        self,
        query: str,
        fast_search: bool = False,
        include_archived: bool = False,
        limit: int = 50,
    ) -> list[SearchHit]:
        params = {
            "search": query,
            "fastSearch": str(fast_search).lower(),
            "includeArchivedNotes": str(include_archived).lower(),
            "limit": str(limit),
        }
        response = await self._request("GET", "/notes", params=params)
        payload = self._json(response)
        results = payload.get("results") if isinstance(payload, dict) else None

        hits: list[SearchHit] = []
        for position, row in enumerate(results or []):
            if not isinstance(row, dict) or "noteId" not in row:
                continue
            score = row.get("score")
            hits.append(
                SearchHit(
                    note_id=row["noteId"],
                    title=row.get("title") or "",
                    score=float(score) if isinstance(score, (int, float)) else 1.0,
                    position=position,
                )
            )
        return hits

    # ---- Branches ----

    async def update_branch(self, branch_id: str, *, is_expanded: bool) -> Branch:
        validate_entity_id(branch_id, "branchId")
        response = await self._request("PATCH", f"/branches/{branch_id}", json={"isExpanded": is_expanded})
        return Branch.from_dict(self._json(response))
