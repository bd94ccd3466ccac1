"""Bidirectional JSON-RPC connection over a message transport."""
from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
from contextlib import suppress
from typing import Any, Callable, Dict, List, Optional, Set

from pydantic import BaseModel

from .protocol import (
    CANCEL_REQUEST_METHOD,
    ConnectionClosedError,
    InternalError,
    InvalidResponseError,
    Message,
    MethodNotFoundError,
    Notification,
    Params,
    Request,
    RequestCancelledError,
    RequestId,
    Response,
    ResponseError,
    TransportError,
    decode_message,
    encode_message,
)
from .transport import Transport

logger = logging.getLogger("gitpod.connection")

Handler = Callable[..., Any]
CloseCallback = Callable[[], None]

_UNSET: Any = object()


def to_jsonable(value: Any) -> Any:
    """Convert models (and containers of models) into JSON-compatible data."""

    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True, exclude_none=True)
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {key: to_jsonable(item) for key, item in value.items()}
    return value


def _invoke(handler: Handler, params: Params) -> Any:
    if params is None:
        return handler()
    if isinstance(params, list):
        return handler(*params)
    return handler(**params)


class JsonRpcConnection:
    """Correlates requests with responses and dispatches incoming calls.

    Every call to :meth:`request` resolves exactly once: with the matching
    response, with a timeout, with the caller's cancellation, or with
    :class:`ConnectionClosedError` when the connection ends first.
    """

    def __init__(self, transport: Transport, *, default_timeout: Optional[float] = None) -> None:
        self._transport = transport
        self._default_timeout = default_timeout
        self._ids = itertools.count(1)
        self._pending: Dict[RequestId, asyncio.Future] = {}
        self._request_handlers: Dict[str, Handler] = {}
        self._notification_handlers: Dict[str, List[Handler]] = {}
        self._running_requests: Dict[RequestId, asyncio.Future] = {}
        self._background: Set[asyncio.Future] = set()
        self._close_callbacks: List[CloseCallback] = []
        self._send_lock = asyncio.Lock()
        self._reader: Optional[asyncio.Task] = None
        self._closed = False
        self._close_started = False

    async def __aenter__(self) -> "JsonRpcConnection":
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_requests(self) -> int:
        return len(self._pending)

    def start(self) -> None:
        """Start reading from the transport. Calling it twice is a no-op."""

        if self._closed:
            raise ConnectionClosedError("Connection is closed")
        if self._reader is None:
            self._reader = asyncio.get_running_loop().create_task(self._read_loop())

    def on_request(self, method: str, handler: Handler) -> None:
        self._request_handlers[method] = handler

    def on_notification(self, method: str, handler: Handler) -> Callable[[], None]:
        """Register ``handler`` for ``method`` and return a function that removes it."""

        handlers = self._notification_handlers.setdefault(method, [])
        handlers.append(handler)

        def remove() -> None:
            with suppress(ValueError):
                handlers.remove(handler)

        return remove

    def on_close(self, callback: CloseCallback) -> None:
        if self._closed:
            callback()
            return
        self._close_callbacks.append(callback)

    async def request(self, method: str, params: Params = None, *, timeout: Optional[float] = _UNSET) -> Any:
        """Send a request and wait for its result."""

        if self._closed:
            raise ConnectionClosedError(f"Cannot call {method}: connection is closed")
        if timeout is _UNSET:
            timeout = self._default_timeout

        request_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._send(Request(id=request_id, method=method, params=to_jsonable(params)))
            if timeout is None:
                return await future
            return await asyncio.wait_for(future, timeout)
        except (asyncio.CancelledError, asyncio.TimeoutError):
            if self._pending.pop(request_id, None) is not None and not self._closed:
                logger.debug("Cancelling request %s (%s)", request_id, method)
                self._spawn(self._send_cancel(request_id))
            raise
        finally:
            self._pending.pop(request_id, None)

    async def notify(self, method: str, params: Params = None) -> None:
        if self._closed:
            raise ConnectionClosedError(f"Cannot send {method}: connection is closed")
        await self._send(Notification(method=method, params=to_jsonable(params)))

    async def close(self) -> None:
        """Stop reading, close the transport and fail outstanding requests."""

        if self._close_started:
            return
        self._close_started = True
        self._mark_closed()
        reader = self._reader
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            with suppress(asyncio.CancelledError):
                await reader
        for task in list(self._background):
            task.cancel()
        await self._transport.close()

    async def wait_closed(self) -> None:
        """Wait until the reader has stopped."""

        if self._reader is not None:
            with suppress(asyncio.CancelledError):
                await asyncio.shield(self._reader)

    async def _send(self, message: Message) -> None:
        text = encode_message(message)
        async with self._send_lock:
            await self._transport.send(text)

    async def _send_cancel(self, request_id: RequestId) -> None:
        with suppress(TransportError):
            await self._send(Notification(method=CANCEL_REQUEST_METHOD, params={"id": request_id}))

    def _spawn(self, awaitable) -> asyncio.Future:
        task = asyncio.ensure_future(awaitable)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _read_loop(self) -> None:
        try:
            while True:
                text = await self._transport.receive()
                if text is None:
                    logger.debug("Transport reached end of stream")
                    break
                await self._handle_text(text)
        except TransportError as exc:
            logger.warning("Connection lost: %s", exc)
        finally:
            self._mark_closed()

    async def _handle_text(self, text: str) -> None:
        try:
            message = decode_message(text)
        except ResponseError as exc:
            data = exc.data if isinstance(exc.data, dict) else {}
            request_id = data.get("id")
            logger.warning("Discarding malformed message: %s", exc.message)
            if isinstance(exc, InvalidResponseError):
                future = self._pending.pop(request_id, None) if request_id is not None else None
                if future is not None and not future.done():
                    future.set_exception(exc)
                return
            if request_id is not None:
                with suppress(TransportError):
                    await self._send(Response(id=request_id, error=exc))
            return

        if isinstance(message, Response):
            self._handle_response(message)
        elif isinstance(message, Request):
            task = self._spawn(self._handle_request(message))
            self._running_requests[message.id] = task
            task.add_done_callback(lambda _task, key=message.id: self._running_requests.pop(key, None))
        else:
            self._handle_notification(message)

    def _handle_response(self, response: Response) -> None:
        if response.id is None:
            if response.error is not None:
                logger.warning("Peer reported an error without a request id: %s", response.error.message)
            return
        future = self._pending.pop(response.id, None)
        if future is None or future.done():
            logger.debug("Dropping response for unknown request id %s", response.id)
            return
        if response.error is not None:
            future.set_exception(response.error)
        else:
            future.set_result(response.result)

    async def _handle_request(self, request: Request) -> None:
        handler = self._request_handlers.get(request.method)
        if handler is None:
            response = Response(id=request.id, error=MethodNotFoundError(f"Unhandled method {request.method}"))
        else:
            try:
                result = _invoke(handler, request.params)
                if inspect.isawaitable(result):
                    result = await result
                response = Response(id=request.id, result=to_jsonable(result))
            except asyncio.CancelledError:
                if self._closed:
                    raise
                response = Response(id=request.id, error=RequestCancelledError("Request cancelled"))
            except ResponseError as exc:
                response = Response(id=request.id, error=exc)
            except Exception as exc:
                logger.exception("Handler for %s failed", request.method)
                response = Response(id=request.id, error=InternalError(str(exc) or type(exc).__name__))
        if self._closed:
            return
        try:
            await self._send(response)
        except TransportError as exc:
            logger.debug("Failed to send response for %s: %s", request.method, exc)

    def _handle_notification(self, notification: Notification) -> None:
        if notification.method == CANCEL_REQUEST_METHOD:
            params = notification.params if isinstance(notification.params, dict) else {}
            task = self._running_requests.get(params.get("id"))
            if task is not None:
                task.cancel()
            return

        handlers = self._notification_handlers.get(notification.method)
        if not handlers:
            logger.debug("No handler for notification %s", notification.method)
            return
        for handler in list(handlers):
            try:
                result = _invoke(handler, notification.params)
            except Exception:
                logger.exception("Notification handler for %s failed", notification.method)
                continue
            if inspect.isawaitable(result):
                self._spawn(result)

    def _mark_closed(self) -> None:
        if self._closed:
            return
        self._closed = True
        pending = list(self._pending.values())
        self._pending.clear()
        for future in pending:
            if not future.done():
                future.set_exception(ConnectionClosedError("Connection closed before a response arrived"))
        for task in list(self._running_requests.values()):
            task.cancel()
        callbacks = list(self._close_callbacks)
        self._close_callbacks.clear()
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Close callback failed")


__all__ = ["JsonRpcConnection", "to_jsonable"]
