"""The workspace-service contract and its JSON-RPC client."""
from __future__ import annotations

import abc
import re
from typing import Any, Callable, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel, TypeAdapter, ValidationError

from .connection import JsonRpcConnection
from .models import (
    GetWorkspacesOptions,
    SendHeartBeatOptions,
    User,
    WorkspaceInfo,
)
from .protocol import InvalidParamsError, InvalidResultError
from .workspaces import InstanceUpdates

GET_LOGGED_IN_USER = "getLoggedInUser"
SEND_HEART_BEAT = "sendHeartBeat"
GET_GITPOD_TOKEN_SCOPES = "getGitpodTokenScopes"
GET_WORKSPACE = "getWorkspace"
GET_OWNER_TOKEN = "getOwnerToken"
GET_WORKSPACES = "getWorkspaces"
ON_INSTANCE_UPDATE = "onInstanceUpdate"

SERVER_METHODS = (
    GET_LOGGED_IN_USER,
    SEND_HEART_BEAT,
    GET_GITPOD_TOKEN_SCOPES,
    GET_WORKSPACE,
    GET_OWNER_TOKEN,
    GET_WORKSPACES,
)

_TOKEN_HASH = re.compile(r"^[0-9a-fA-F]{64}$")

T = TypeVar("T")


class GitpodServer(abc.ABC):
    """Operations a client may invoke against the workspace service."""

    @abc.abstractmethod
    async def get_logged_in_user(self) -> User:
        """Return the user the connection is authenticated as."""

    @abc.abstractmethod
    async def send_heart_beat(self, options: SendHeartBeatOptions) -> None:
        """Signal that a workspace instance is in active use."""

    @abc.abstractmethod
    async def get_gitpod_token_scopes(self, token_hash: str) -> List[str]:
        """Return the scopes granted to the token with the given SHA-256 hash."""

    @abc.abstractmethod
    async def get_workspace(self, workspace_id: str) -> WorkspaceInfo:
        """Return the workspace and its latest instance."""

    @abc.abstractmethod
    async def get_owner_token(self, workspace_id: str) -> str:
        """Return the owner token of a workspace."""

    @abc.abstractmethod
    async def get_workspaces(self, options: Optional[GetWorkspacesOptions] = None) -> List[WorkspaceInfo]:
        """List workspaces matching ``options``."""


def _normalise_workspace_id(workspace_id: str) -> str:
    if not isinstance(workspace_id, str):
        raise InvalidParamsError("Workspace id must be a string")
    value = workspace_id.strip()
    if not value:
        raise InvalidParamsError("Workspace id must not be empty")
    return value


def _normalise_token_hash(token_hash: str) -> str:
    if not isinstance(token_hash, str):
        raise InvalidParamsError("Token hash must be a string")
    value = token_hash.strip()
    if not _TOKEN_HASH.fullmatch(value):
        raise InvalidParamsError("Token hash must be a SHA-256 hex digest (64 hexadecimal characters)")
    return value.lower()


def _coerce_options(value: Any, model: Type[BaseModel], *, allow_none: bool) -> Optional[BaseModel]:
    if value is None:
        if allow_none:
            return model()
        raise InvalidParamsError(f"{model.__name__} must be provided")
    if isinstance(value, model):
        return value
    try:
        return model.model_validate(value)
    except ValidationError as exc:
        raise InvalidParamsError(f"Invalid {model.__name__}: {exc.errors()[0]['msg']}") from exc


def _decode(method: str, adapter: Union[TypeAdapter, Callable[[Any], T]], result: Any) -> T:
    try:
        if isinstance(adapter, TypeAdapter):
            return adapter.validate_python(result)
        return adapter(result)
    except (ValidationError, TypeError, ValueError) as exc:
        raise InvalidResultError(f"{method} returned an unexpected result", data={"result": result}) from exc


def _expect_string(result: Any) -> str:
    if not isinstance(result, str):
        raise TypeError("expected a string")
    return result


def _expect_nothing(result: Any) -> None:
    if result is not None:
        raise TypeError("expected no result")
    return None


_USER = TypeAdapter(User)
_WORKSPACE_INFO = TypeAdapter(WorkspaceInfo)
_WORKSPACE_INFO_LIST = TypeAdapter(List[WorkspaceInfo])
_STRING_LIST = TypeAdapter(List[str])


class GitpodServerClient(GitpodServer):
    """Invoke the workspace-service operations over a :class:`JsonRpcConnection`.

    Each operation is a coroutine; calls issued together run concurrently
    on the same connection. Arguments are validated before anything is
    sent, so a malformed argument fails without a round trip.
    """

    def __init__(self, connection: JsonRpcConnection, *, timeout: Optional[float] = None) -> None:
        self._connection = connection
        self._timeout = timeout

    @property
    def connection(self) -> JsonRpcConnection:
        return self._connection

    @property
    def closed(self) -> bool:
        return self._connection.closed

    async def close(self) -> None:
        await self._connection.close()

    async def _call(self, method: str, *params: Any) -> Any:
        kwargs = {} if self._timeout is None else {"timeout": self._timeout}
        return await self._connection.request(method, list(params), **kwargs)

    async def get_logged_in_user(self) -> User:
        result = await self._call(GET_LOGGED_IN_USER)
        return _decode(GET_LOGGED_IN_USER, _USER, result)

    async def send_heart_beat(self, options: SendHeartBeatOptions) -> None:
        payload = _coerce_options(options, SendHeartBeatOptions, allow_none=False)
        result = await self._call(SEND_HEART_BEAT, payload)
        return _decode(SEND_HEART_BEAT, _expect_nothing, result)

    async def get_gitpod_token_scopes(self, token_hash: str) -> List[str]:
        value = _normalise_token_hash(token_hash)
        result = await self._call(GET_GITPOD_TOKEN_SCOPES, value)
        return _decode(GET_GITPOD_TOKEN_SCOPES, _STRING_LIST, result)

    async def get_workspace(self, workspace_id: str) -> WorkspaceInfo:
        value = _normalise_workspace_id(workspace_id)
        result = await self._call(GET_WORKSPACE, value)
        return _decode(GET_WORKSPACE, _WORKSPACE_INFO, result)

    async def get_owner_token(self, workspace_id: str) -> str:
        value = _normalise_workspace_id(workspace_id)
        result = await self._call(GET_OWNER_TOKEN, value)
        return _decode(GET_OWNER_TOKEN, _expect_string, result)

    async def get_workspaces(self, options: Optional[GetWorkspacesOptions] = None) -> List[WorkspaceInfo]:
        payload = _coerce_options(options, GetWorkspacesOptions, allow_none=True)
        result = await self._call(GET_WORKSPACES, payload)
        return _decode(GET_WORKSPACES, _WORKSPACE_INFO_LIST, result)

    def listen_to_workspace(self, workspace_id: str = "*") -> InstanceUpdates:
        """Subscribe to instance updates the server pushes for ``workspace_id``.

        ``"*"`` subscribes to every workspace of the user.
        """

        updates = InstanceUpdates(workspace_id)
        updates.attach(self._connection, ON_INSTANCE_UPDATE)
        return updates


__all__ = [
    "GET_GITPOD_TOKEN_SCOPES",
    "GET_LOGGED_IN_USER",
    "GET_OWNER_TOKEN",
    "GET_WORKSPACE",
    "GET_WORKSPACES",
    "GitpodServer",
    "GitpodServerClient",
    "ON_INSTANCE_UPDATE",
    "SEND_HEART_BEAT",
    "SERVER_METHODS",
]
