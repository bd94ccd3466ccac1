"""Tracking of workspaces and the instance updates pushed by the service."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from .models import GetWorkspacesOptions, WorkspaceInfo, WorkspaceInstance

if TYPE_CHECKING:  # pragma: no cover
    from .connection import JsonRpcConnection
    from .server import GitpodServer

logger = logging.getLogger("gitpod.workspaces")

ALL_WORKSPACES = "*"
DEFAULT_LISTING_LIMIT = 20

_STARTING_PHASES = {"preparing", "building", "pending", "creating", "initializing", "stopping"}


class ConnectionState(str, Enum):
    """How a workspace looks to someone who wants to connect to it."""

    RUNNING = "running"
    STARTING = "starting"
    STOPPED = "stopped"
    FAILED = "failed"

    @property
    def can_connect(self) -> bool:
        return self in (ConnectionState.RUNNING, ConnectionState.STARTING)


def connection_state(info: WorkspaceInfo) -> Optional[ConnectionState]:
    """Classify a workspace by its latest instance; ``None`` when it never ran."""

    instance = info.latest_instance
    if instance is None:
        return None
    phase = instance.phase
    if phase == "running":
        return ConnectionState.RUNNING
    if phase == "stopped":
        failed = instance.status.conditions.failed
        if failed and failed.strip():
            return ConnectionState.FAILED
        return ConnectionState.STOPPED
    if phase in ("interrupted", "unknown"):
        return ConnectionState.FAILED
    if phase not in _STARTING_PHASES:
        logger.debug("Unrecognised instance phase %r treated as starting", phase)
    return ConnectionState.STARTING


class InstanceUpdates:
    """Async iterator over instance updates for one workspace, or all of them.

    Iteration ends when :meth:`close` is called or the connection closes.
    """

    def __init__(self, workspace_id: str = ALL_WORKSPACES) -> None:
        value = workspace_id.strip()
        if not value:
            raise ValueError("Workspace id must not be empty")
        self._workspace_id = value
        self._queue: "asyncio.Queue[Optional[WorkspaceInstance]]" = asyncio.Queue()
        self._detach: Optional[Callable[[], None]] = None
        self._closed = False

    @property
    def workspace_id(self) -> str:
        return self._workspace_id

    @property
    def closed(self) -> bool:
        return self._closed

    def attach(self, connection: "JsonRpcConnection", method: str) -> None:
        self._detach = connection.on_notification(method, self._receive)
        connection.on_close(self.close)

    def _receive(self, *args: Any, **kwargs: Any) -> None:
        # The instance arrives either as the whole params object or as the
        # single element of a params array.
        if kwargs:
            self.push(kwargs)
        elif args:
            self.push(args[0])
        else:
            logger.warning("Ignoring instance update without params")

    def push(self, payload: Any) -> None:
        """Accept one ``onInstanceUpdate`` payload."""

        if self._closed:
            return
        try:
            instance = WorkspaceInstance.model_validate(payload)
        except ValidationError as exc:
            logger.warning("Ignoring malformed instance update: %s", exc.errors()[0]["msg"])
            return
        if self._workspace_id != ALL_WORKSPACES and instance.workspace_id != self._workspace_id:
            return
        self._queue.put_nowait(instance)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._detach is not None:
            self._detach()
            self._detach = None
        self._queue.put_nowait(None)

    def __aiter__(self) -> "InstanceUpdates":
        return self

    async def __anext__(self) -> WorkspaceInstance:
        item = await self._queue.get()
        if item is None:
            self._queue.put_nowait(None)
            raise StopAsyncIteration
        return item

    async def __aenter__(self) -> "InstanceUpdates":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()


class WorkspaceTracker:
    """Keeps a list of workspaces current as instance updates arrive."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._workspaces: Dict[str, WorkspaceInfo] = {}

    async def refresh(self, server: "GitpodServer", *, limit: int = DEFAULT_LISTING_LIMIT) -> List[WorkspaceInfo]:
        """Replace the tracked workspaces with a fresh listing."""

        infos = await server.get_workspaces(GetWorkspacesOptions(limit=limit))
        async with self._lock:
            self._workspaces = {info.workspace.id: info for info in infos}
            return self._snapshot_locked()

    async def apply(self, instance: WorkspaceInstance) -> bool:
        """Record ``instance`` as the latest for its workspace.

        Returns ``True`` when the tracked view changed. Updates for untracked
        workspaces and stale updates are ignored.
        """

        async with self._lock:
            info = self._workspaces.get(instance.workspace_id)
            if info is None:
                return False
            if WorkspaceInstance.is_up_to_date(info.latest_instance, instance):
                return False
            self._workspaces[instance.workspace_id] = info.model_copy(update={"latest_instance": instance})
            return True

    async def get(self, workspace_id: str) -> Optional[WorkspaceInfo]:
        async with self._lock:
            return self._workspaces.get(workspace_id)

    async def list(self) -> List[WorkspaceInfo]:
        async with self._lock:
            return self._snapshot_locked()

    def _snapshot_locked(self) -> List[WorkspaceInfo]:
        return [info for info in self._workspaces.values() if info.latest_instance is not None]


__all__ = [
    "ALL_WORKSPACES",
    "ConnectionState",
    "DEFAULT_LISTING_LIMIT",
    "InstanceUpdates",
    "WorkspaceTracker",
    "connection_state",
]
