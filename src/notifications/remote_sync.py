"""
Remote Sync

Mirrors notifications and later changes to them into the remote
``notifications`` table so other devices can see them, and fetches the
rows other devices wrote.

This path is best-effort: ``RemoteSyncAdapter._attempt`` is the one place
where remote failures are caught, logged and turned into a failed
``SyncResult``. Nothing here retries beyond the RPC fallback used when the
direct insert is rejected by row level security.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from config.settings import RemoteStoreSettings
from middleware.correlation import propagate_correlation_headers

from .errors import RemoteSyncError
from .models import NotificationData

logger = logging.getLogger(__name__)


@dataclass
class RemoteResult:
    """Outcome of one remote call."""
    success: bool
    status_code: int = 0
    data: Any = None


@dataclass
class SyncResult:
    """Outcome of a sync attempt, as seen by callers."""
    success: bool
    user_id: str
    via: Optional[str] = None
    error_message: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "user_id": self.user_id,
            "via": self.via,
            "error_message": self.error_message,
            "timestamp": self.timestamp.isoformat(),
        }


class RemoteStore(ABC):
    """Authenticated remote table access."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Store name for logging."""

    @abstractmethod
    async def insert(self, table: str, record: Dict[str, Any]) -> RemoteResult:
        """Insert one row. Raises RemoteSyncError on failure."""

    @abstractmethod
    async def rpc(self, function: str, params: Dict[str, Any]) -> RemoteResult:
        """Call a remote procedure. Raises RemoteSyncError on failure."""

    @abstractmethod
    async def select(
        self,
        table: str,
        match: Dict[str, Any],
        order: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> RemoteResult:
        """Fetch rows whose columns equal ``match``; rows are in ``data``."""

    @abstractmethod
    async def update(self, table: str, match: Dict[str, Any], values: Dict[str, Any]) -> RemoteResult:
        """Set ``values`` on rows matching ``match``."""

    @abstractmethod
    async def delete(self, table: str, match: Dict[str, Any]) -> RemoteResult:
        """Delete rows matching ``match``."""

    async def close(self) -> None:
        return None


class NullRemoteStore(RemoteStore):
    """Logs rows instead of sending them."""

    @property
    def name(self) -> str:
        return "null"

    async def insert(self, table: str, record: Dict[str, Any]) -> RemoteResult:
        logger.debug(f"[null remote] Would insert into {table} for user {record.get('user_id')}")
        return RemoteResult(success=True)

    async def rpc(self, function: str, params: Dict[str, Any]) -> RemoteResult:
        logger.debug(f"[null remote] Would call {function}")
        return RemoteResult(success=True)

    async def select(self, table, match, order=None, limit=None) -> RemoteResult:
        return RemoteResult(success=True, data=[])

    async def update(self, table: str, match: Dict[str, Any], values: Dict[str, Any]) -> RemoteResult:
        logger.debug(f"[null remote] Would update {table} where {match}")
        return RemoteResult(success=True)

    async def delete(self, table: str, match: Dict[str, Any]) -> RemoteResult:
        logger.debug(f"[null remote] Would delete from {table} where {match}")
        return RemoteResult(success=True)


class SupabaseRemoteStore(RemoteStore):
    """
    PostgREST client for a Supabase project.

    Configuration:
        SUPABASE_URL: project URL (required)
        SUPABASE_ANON_KEY: public API key (required)
        SUPABASE_ACCESS_TOKEN: user JWT, defaults to the anon key
    """

    def __init__(
        self,
        settings: Optional[RemoteStoreSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or RemoteStoreSettings()
        self._client = client

    @property
    def name(self) -> str:
        return "supabase"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=f"{(self.settings.url or '').rstrip('/')}/rest/v1",
                timeout=httpx.Timeout(self.settings.timeout, connect=5.0),
            )
        return self._client

    def _headers(self) -> Dict[str, str]:
        token = self.settings.access_token or self.settings.anon_key or ""
        return propagate_correlation_headers({
            "apikey": self.settings.anon_key or "",
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Prefer": "return=minimal",
        })

    async def _request(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> RemoteResult:
        try:
            response = await self._get_client().request(
                method, path, json=payload, params=params, headers=self._headers()
            )
        except httpx.TimeoutException as e:
            raise RemoteSyncError(f"Timed out calling {path}: {e}") from e
        except httpx.HTTPError as e:
            raise RemoteSyncError(f"Request to {path} failed: {e}") from e

        if response.status_code >= 400:
            body = response.text[:200]
            # 401/403 and Postgres 42501 are row level security refusals
            policy_rejected = response.status_code in (401, 403) or "42501" in body
            raise RemoteSyncError(
                f"{path} returned {response.status_code}: {body}",
                status_code=response.status_code,
                policy_rejected=policy_rejected,
            )

        data = None
        if response.content:
            try:
                data = response.json()
            except ValueError:
                data = response.text
        return RemoteResult(success=True, status_code=response.status_code, data=data)

    async def insert(self, table: str, record: Dict[str, Any]) -> RemoteResult:
        return await self._request("POST", f"/{table}", payload=record)

    async def rpc(self, function: str, params: Dict[str, Any]) -> RemoteResult:
        return await self._request("POST", f"/rpc/{function}", payload=params)

    async def select(self, table, match, order=None, limit=None) -> RemoteResult:
        params = _filters(match)
        params["select"] = "*"
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)
        return await self._request("GET", f"/{table}", params=params)

    async def update(self, table: str, match: Dict[str, Any], values: Dict[str, Any]) -> RemoteResult:
        return await self._request("PATCH", f"/{table}", payload=values, params=_filters(match))

    async def delete(self, table: str, match: Dict[str, Any]) -> RemoteResult:
        return await self._request("DELETE", f"/{table}", params=_filters(match))

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class RemoteSyncAdapter:
    """Best-effort mirror of the in-app list in the remote table."""

    def __init__(
        self,
        store: RemoteStore,
        table: str = "notifications",
        rpc_function: str = "create_notification",
        enabled: bool = True,
    ):
        self.store = store
        self.table = table
        self.rpc_function = rpc_function
        self.enabled = enabled

    async def persist(self, notification: NotificationData) -> SyncResult:
        """Write ``notification`` remotely. Never raises."""
        record = notification.to_remote_record()

        async def write() -> str:
            try:
                await self.store.insert(self.table, record)
                return "insert"
            except RemoteSyncError as e:
                if not e.policy_rejected:
                    raise
                logger.info(f"Direct insert rejected by policy, using {self.rpc_function}")
                await self.store.rpc(self.rpc_function, _rpc_params(record))
                return "rpc"

        return await self._attempt(f"sync of {notification.effective_tag}", notification.user_id, write)

    async def mark_read(self, notification_id: str, user_id: str) -> SyncResult:
        async def write() -> str:
            await self.store.update(self.table, {"id": notification_id, "user_id": user_id}, {"is_read": True})
            return "update"

        return await self._attempt(f"mark read of {notification_id}", user_id, write)

    async def mark_all_read(self, user_id: str) -> SyncResult:
        async def write() -> str:
            await self.store.update(self.table, {"user_id": user_id, "is_read": False}, {"is_read": True})
            return "update"

        return await self._attempt("mark all read", user_id, write)

    async def delete(self, notification_id: str, user_id: str) -> SyncResult:
        async def write() -> str:
            await self.store.delete(self.table, {"id": notification_id, "user_id": user_id})
            return "delete"

        return await self._attempt(f"delete of {notification_id}", user_id, write)

    async def fetch_recent(self, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        """The user's newest remote rows; empty when the fetch fails."""
        rows: List[Dict[str, Any]] = []

        async def read() -> str:
            result = await self.store.select(
                self.table, {"user_id": user_id}, order="created_at.desc", limit=limit
            )
            rows.extend(row for row in (result.data or []) if isinstance(row, dict))
            return "select"

        await self._attempt("fetch", user_id, read)
        return rows

    async def _attempt(self, description: str, user_id: str, operation: Callable[[], Awaitable[str]]) -> SyncResult:
        if not self.enabled:
            return SyncResult(success=False, user_id=user_id, error_message="remote sync disabled")
        if not user_id:
            logger.debug(f"Skipping remote {description}: no user")
            return SyncResult(success=False, user_id=user_id, error_message="missing user id")

        try:
            via = await operation()
        except Exception as e:
            # Remote failures never reach local delivery or the in-app list.
            logger.warning(f"Remote {description} for user {user_id} via {self.store.name} failed: {e}")
            return SyncResult(success=False, user_id=user_id, error_message=str(e))

        logger.debug(f"Remote {description} for user {user_id} done via {via}")
        return SyncResult(success=True, user_id=user_id, via=via)


def _filters(match: Dict[str, Any]) -> Dict[str, str]:
    """PostgREST equality filters."""
    params = {}
    for column, value in match.items():
        if isinstance(value, bool):
            value = "true" if value else "false"
        params[column] = f"eq.{value}"
    return params


def _rpc_params(record: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "p_user_id": record["user_id"],
        "p_type": record["type"],
        "p_title": record["title"],
        "p_body": record["body"],
        "p_data": record["data"],
    }


def create_remote_store(settings: Optional[RemoteStoreSettings] = None) -> RemoteStore:
    """Supabase when configured, otherwise the null store."""
    settings = settings or RemoteStoreSettings()
    if settings.is_configured:
        logger.info("Remote notification store: Supabase")
        return SupabaseRemoteStore(settings)

    logger.warning(
        "No remote notification store configured. Notifications stay on this device. "
        "Set SUPABASE_URL and SUPABASE_ANON_KEY to enable sync."
    )
    return NullRemoteStore()
