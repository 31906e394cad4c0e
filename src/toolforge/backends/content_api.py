"""HTTP adapter for the content service (search, records, permissions)."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..errors import BackendError
from ..models import Candidate, ComponentRole, ContentRecord, RecordDraft, Requester
from .base import PermissionGate, RecordWriter, Retriever

logger = logging.getLogger(__name__)


class HttpContentBackend(Retriever, PermissionGate, RecordWriter):
    """One httpx client serving the retriever, permission and write contracts."""

    def __init__(
        self,
        settings: Settings,
        *,
        base_url: str | None = None,
        search_path: str = "/search",
        records_path: str = "/records",
        permissions_path: str = "/permissions",
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        if headers is None and settings.content_api_key:
            headers = {"Authorization": f"Bearer {settings.content_api_key}"}
        self.http = httpx.AsyncClient(
            base_url=base_url or settings.content_api_url,
            timeout=timeout if timeout is not None else settings.content_api_timeout_seconds,
            headers=headers,
            transport=transport,
        )
        self.search_path = search_path.rstrip("/")
        self.records_path = records_path.rstrip("/")
        self.permissions_path = permissions_path.rstrip("/")

    async def _post(self, path: str, payload: dict[str, Any]) -> Any:
        try:
            response = await self.http.post(path, json=payload)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise BackendError(f"content service call to {path} failed: {exc}") from exc

    # ---- Retriever -------------------------------------------------------
    async def search(
        self,
        query: str,
        role: ComponentRole,
        limit: int,
        requester: Requester,
    ) -> list[Candidate]:
        payload = await self._post(
            self.search_path,
            {
                "query": query,
                "role": role.value,
                "limit": limit,
                "user_id": requester.user_id,
            },
        )
        items = payload.get("items", []) if isinstance(payload, dict) else []
        candidates: list[Candidate] = []
        for item in items[:limit]:
            try:
                candidates.append(Candidate.model_validate({**item, "role": role}))
            except (ValidationError, TypeError) as exc:
                logger.warning("skipping malformed %s candidate: %s", role.value, exc)
        return candidates

    async def get(self, record_id: int, requester: Requester) -> ContentRecord | None:
        try:
            response = await self.http.get(
                f"{self.records_path}/{record_id}",
                params={"user_id": requester.user_id},
            )
            if response.status_code == httpx.codes.NOT_FOUND:
                return None
            response.raise_for_status()
            return ContentRecord.model_validate(response.json())
        except (httpx.HTTPError, ValueError, ValidationError) as exc:
            raise BackendError(f"fetching record {record_id} failed: {exc}") from exc

    # ---- PermissionGate --------------------------------------------------
    async def can_read(self, record_id: int, requester: Requester) -> bool:
        payload = await self._post(
            f"{self.permissions_path}/read",
            {"record_id": record_id, "user_id": requester.user_id},
        )
        return bool(payload.get("allowed")) if isinstance(payload, dict) else False

    async def can_write(self, space_id: int, requester: Requester) -> bool:
        payload = await self._post(
            f"{self.permissions_path}/write",
            {"space_id": space_id, "user_id": requester.user_id},
        )
        return bool(payload.get("allowed")) if isinstance(payload, dict) else False

    # ---- RecordWriter ----------------------------------------------------
    async def create_record(self, draft: RecordDraft) -> int:
        payload = await self._post(self.records_path, draft.model_dump(mode="json"))
        record_id = payload.get("id") if isinstance(payload, dict) else None
        if record_id is None:
            raise BackendError("content service did not return a record id")
        return int(record_id)

    async def close(self) -> None:
        await self.http.aclose()


__all__ = ["HttpContentBackend"]
