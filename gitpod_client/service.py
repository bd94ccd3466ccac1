"""Connection handling for one or more workspace-service hosts."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from .config import ClientSettings, normalise_host
from .connection import JsonRpcConnection
from .server import GitpodServerClient
from .transport import WebSocketTransport

logger = logging.getLogger("gitpod.service")

Connector = Callable[[ClientSettings], Awaitable[GitpodServerClient]]


async def connect(settings: ClientSettings) -> GitpodServerClient:
    """Open a WebSocket to ``settings.host`` and return a started client."""

    url = settings.endpoint_url
    logger.info("Connecting to %s", url)
    transport = await WebSocketTransport.connect(
        url,
        token=settings.token,
        origin=settings.origin_header,
        user_agent=settings.user_agent,
    )
    connection = JsonRpcConnection(transport, default_timeout=settings.timeout)
    connection.start()
    return GitpodServerClient(connection)


class ConnectionService:
    """Caches one connected client per host and reconnects closed ones."""

    def __init__(self, settings: ClientSettings, *, connector: Optional[Connector] = None) -> None:
        self._settings = settings
        self._connector: Connector = connector or connect
        self._clients: Dict[str, GitpodServerClient] = {}
        self._lock = asyncio.Lock()
        self._host_locks: Dict[str, asyncio.Lock] = {}

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def __aenter__(self) -> "ConnectionService":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close_all()

    async def obtain_client(self, host: Optional[str] = None) -> GitpodServerClient:
        """Return the open client for ``host``, connecting when needed."""

        key = normalise_host(host) if host else self._settings.host
        # Only the lock of this host is held while connecting.
        host_lock = self._host_locks.setdefault(key, asyncio.Lock())
        async with host_lock:
            async with self._lock:
                client = self._clients.get(key)
            if client is not None and not client.closed:
                return client
            if client is not None:
                logger.info("Connection to %s was closed; reconnecting", key)
                await client.close()
            settings = self._settings if key == self._settings.host else self._settings.for_host(key)
            client = await self._connector(settings)
            async with self._lock:
                self._clients[key] = client
            return client

    async def close(self, host: Optional[str] = None) -> None:
        key = normalise_host(host) if host else self._settings.host
        async with self._lock:
            client = self._clients.pop(key, None)
        if client is not None:
            await client.close()

    async def close_all(self) -> None:
        async with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            await client.close()


__all__ = ["ConnectionService", "Connector", "connect"]
