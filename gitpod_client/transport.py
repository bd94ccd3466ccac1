"""Message transports carrying JSON-RPC text frames."""
from __future__ import annotations

import abc
import asyncio
import logging
from typing import Dict, Optional, Tuple

import websockets

from .protocol import TransportError

logger = logging.getLogger("gitpod.transport")

DEFAULT_USER_AGENT = "gitpod-client-python"


class Transport(abc.ABC):
    """Bidirectional stream of text frames."""

    @abc.abstractmethod
    async def send(self, text: str) -> None:
        """Deliver one frame to the peer."""

    @abc.abstractmethod
    async def receive(self) -> Optional[str]:
        """Return the next frame, or ``None`` once the stream has ended."""

    @abc.abstractmethod
    async def close(self) -> None:
        """Close the stream; closing twice is a no-op."""

    @property
    @abc.abstractmethod
    def closed(self) -> bool:
        """Whether the stream has ended."""


def _build_headers(token: Optional[str], user_agent: Optional[str]) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    headers["User-Agent"] = user_agent or DEFAULT_USER_AGENT
    return headers


class WebSocketTransport(Transport):
    """Transport backed by a client connection from the ``websockets`` library."""

    def __init__(self, connection) -> None:
        self._connection = connection
        self._closed = False

    @classmethod
    async def connect(
        cls,
        url: str,
        *,
        token: Optional[str] = None,
        origin: Optional[str] = None,
        user_agent: Optional[str] = None,
        open_timeout: Optional[float] = 10.0,
    ) -> "WebSocketTransport":
        """Open a WebSocket to ``url`` and wrap it."""

        headers = _build_headers(token, user_agent)
        user_agent_header = headers.pop("User-Agent")
        try:
            connection = await websockets.connect(
                url,
                origin=origin,
                additional_headers=headers,
                user_agent_header=user_agent_header,
                open_timeout=open_timeout,
                max_size=None,
            )
        except websockets.InvalidStatus as exc:
            status_code = exc.response.status_code
            if status_code == 401:
                raise TransportError(
                    f"Authentication with {url} failed (status 401). Check the configured token."
                ) from exc
            raise TransportError(f"{url} rejected the connection (status {status_code})") from exc
        except (websockets.InvalidHandshake, websockets.InvalidURI) as exc:
            raise TransportError(f"WebSocket handshake with {url} failed: {exc}") from exc
        except (OSError, asyncio.TimeoutError) as exc:
            raise TransportError(f"Failed to connect to {url}: {exc}") from exc

        logger.debug("WebSocket connection to %s established", url)
        return cls(connection)

    async def send(self, text: str) -> None:
        if self._closed:
            raise TransportError("WebSocket transport is closed")
        try:
            await self._connection.send(text)
        except websockets.ConnectionClosed as exc:
            self._closed = True
            raise TransportError(f"WebSocket connection closed: {exc}") from exc

    async def receive(self) -> Optional[str]:
        if self._closed:
            return None
        try:
            data = await self._connection.recv()
        except websockets.ConnectionClosed as exc:
            logger.debug("WebSocket connection closed: %s", exc)
            self._closed = True
            return None
        if isinstance(data, bytes):
            return data.decode("utf-8", errors="replace")
        return data

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._connection.close()

    @property
    def closed(self) -> bool:
        return self._closed


class MemoryTransport(Transport):
    """In-process transport; frames sent on one end arrive at its peer."""

    def __init__(self, inbound: "asyncio.Queue[Optional[str]]") -> None:
        self._inbound = inbound
        self._peer: Optional[MemoryTransport] = None
        self._closed = False

    @classmethod
    def pair(cls) -> Tuple["MemoryTransport", "MemoryTransport"]:
        left = cls(asyncio.Queue())
        right = cls(asyncio.Queue())
        left._peer = right
        right._peer = left
        return left, right

    async def send(self, text: str) -> None:
        peer = self._peer
        if self._closed or peer is None or peer._closed:
            raise TransportError("Memory transport is closed")
        peer._inbound.put_nowait(text)

    async def receive(self) -> Optional[str]:
        if self._closed and self._inbound.empty():
            return None
        return await self._inbound.get()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._inbound.put_nowait(None)
        peer = self._peer
        if peer is not None and not peer._closed:
            peer._inbound.put_nowait(None)

    @property
    def closed(self) -> bool:
        return self._closed


__all__ = ["DEFAULT_USER_AGENT", "MemoryTransport", "Transport", "WebSocketTransport"]
