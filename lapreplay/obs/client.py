# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Mixer Client

Request/response RPC to OBS Studio over obs-websocket v5, plus the event
stream published on an EventBus.

Usage:
    client = ObsWebSocketClient()
    await client.connect("ws://localhost:4455", password="secret")

    status = await client.call("GetReplayBufferStatus")
    client.events.subscribe("ReplayBufferSaved", on_saved)

    await client.close()
"""

import asyncio
import base64
import hashlib
import json
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from lapreplay.core.events import CONNECTION_CLOSED, IDENTIFIED, Event, EventBus
from lapreplay.core.exceptions import RemoteConnectionError, RemoteRequestError

from . import protocol

logger = logging.getLogger("lapreplay.obs.client")


class RemoteControlClient(ABC):
    """
    What the controllers and adapters need from the mixer.

    ``events`` carries mixer events plus the Identified/ConnectionClosed
    connection signals.
    """

    events: EventBus

    @abstractmethod
    async def call(
        self, request_type: str, request_data: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Send one request and return its response data.

        Raises:
            RemoteRequestError: If the mixer reports a failure status
            RemoteConnectionError: If there is no usable connection
        """

    @abstractmethod
    async def call_batch(
        self, requests: List[Dict[str, Any]], halt_on_failure: bool = False
    ) -> List[Dict[str, Any]]:
        """
        Send requests as one serial batch.

        Returns one result per executed request with ``requestType``,
        ``requestStatus`` and ``responseData``; failures are reported in the
        results, not raised.
        """


def build_auth_string(password: str, salt: str, challenge: str) -> str:
    """obs-websocket authentication: base64(sha256(base64(sha256(password + salt)) + challenge))"""
    secret = base64.b64encode(
        hashlib.sha256((password + salt).encode("utf-8")).digest()
    ).decode("utf-8")
    return base64.b64encode(
        hashlib.sha256((secret + challenge).encode("utf-8")).digest()
    ).decode("utf-8")


def failed_results(results: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Batch results whose request did not succeed"""
    return [r for r in results if not r.get("requestStatus", {}).get("result")]


class ObsWebSocketClient(RemoteControlClient):
    """obs-websocket v5 client built on the ``websockets`` library"""

    def __init__(
        self,
        request_timeout: float = 10.0,
        events: Optional[EventBus] = None,
    ):
        """
        Initialize the client.

        Args:
            request_timeout: Seconds to wait for each response
            events: Bus to publish events on (a new one by default)
        """
        self.request_timeout = request_timeout
        self.events = events or EventBus()
        self.url: Optional[str] = None
        self.negotiated_rpc_version: Optional[int] = None

        self._ws: Any = None
        self._reader: Optional[asyncio.Task] = None
        self._pending: Dict[str, asyncio.Future] = {}
        self._identified = False

    @property
    def connected(self) -> bool:
        return self._ws is not None and self._identified

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # =========================================================================
    # Connection
    # =========================================================================

    async def connect(
        self,
        url: str,
        password: Optional[str] = None,
        event_subscriptions: int = protocol.EVENT_SUBSCRIPTION_ALL,
    ):
        """
        Open the websocket and identify.

        Raises:
            RemoteConnectionError: If the socket cannot be opened or the
                handshake fails
        """
        if self._ws is not None:
            await self.close()

        try:
            ws = await websockets.connect(
                url, subprotocols=[protocol.SUBPROTOCOL_JSON], max_size=None
            )
        except (OSError, InvalidURI, InvalidHandshake, asyncio.TimeoutError) as e:
            raise RemoteConnectionError(f"Could not connect to {url}", url=url, cause=e)

        self.url = url
        try:
            await self.attach(ws, password, event_subscriptions)
        except RemoteConnectionError:
            await ws.close()
            raise

    async def attach(
        self,
        ws: Any,
        password: Optional[str] = None,
        event_subscriptions: int = protocol.EVENT_SUBSCRIPTION_ALL,
    ):
        """Run the Hello/Identify handshake on an already-open socket"""
        self._ws = ws
        try:
            hello = await self._receive_op(protocol.OP_HELLO)

            identify: Dict[str, Any] = {
                "rpcVersion": protocol.RPC_VERSION,
                "eventSubscriptions": event_subscriptions,
            }
            authentication = hello.get("authentication")
            if authentication:
                if password is None:
                    raise RemoteConnectionError(
                        "Mixer requires a password", url=self.url
                    )
                identify["authentication"] = build_auth_string(
                    password, authentication["salt"], authentication["challenge"]
                )

            await self._send(protocol.OP_IDENTIFY, identify)
            identified = await self._receive_op(protocol.OP_IDENTIFIED)
        except RemoteConnectionError:
            self._ws = None
            raise

        self.negotiated_rpc_version = identified.get("negotiatedRpcVersion")
        self._identified = True
        self._reader = asyncio.ensure_future(self._read_loop())
        logger.info(
            f"Identified with mixer (rpc version {self.negotiated_rpc_version})"
        )
        await self.events.emit(Event(IDENTIFIED, identified))

    async def close(self):
        """Close the connection and fail outstanding requests"""
        if self._ws is None:
            return

        ws, self._ws = self._ws, None
        was_identified = self._identified
        self._identified = False

        if self._reader is not None:
            self._reader.cancel()
            self._reader = None

        self._fail_pending(RemoteConnectionError("Connection closed", url=self.url))
        try:
            await ws.close()
        except ConnectionClosed:
            pass

        if was_identified:
            await self.events.emit(Event(CONNECTION_CLOSED, {}))

    async def _receive_op(self, expected_op: int) -> Dict[str, Any]:
        try:
            raw = await asyncio.wait_for(self._ws.recv(), self.request_timeout)
        except ConnectionClosed as e:
            raise RemoteConnectionError(
                f"Connection closed during handshake: {e}", url=self.url, cause=e
            )
        except asyncio.TimeoutError as e:
            raise RemoteConnectionError(
                "Timed out waiting for handshake", url=self.url, cause=e
            )

        message = json.loads(raw)
        if message.get("op") != expected_op:
            raise RemoteConnectionError(
                f"Expected op {expected_op}, got {message.get('op')}", url=self.url
            )
        return message.get("d") or {}

    async def _send(self, op: int, data: Dict[str, Any]):
        await self._ws.send(json.dumps({"op": op, "d": data}))

    async def _read_loop(self):
        ws = self._ws
        try:
            async for raw in ws:
                try:
                    message = json.loads(raw)
                except ValueError:
                    logger.warning(f"Dropping malformed message: {raw!r}")
                    continue
                await self._dispatch(message)
        except ConnectionClosed as e:
            logger.warning(f"Connection to mixer lost: {e}")

        # Closed by the mixer rather than by close()
        if self._ws is ws:
            self._ws = None
            self._identified = False
            self._reader = None
            self._fail_pending(RemoteConnectionError("Connection lost", url=self.url))
            await self.events.emit(Event(CONNECTION_CLOSED, {}))

    async def _dispatch(self, message: Dict[str, Any]):
        op = message.get("op")
        data = message.get("d") or {}

        if op == protocol.OP_EVENT:
            await self.events.emit(
                Event(data.get("eventType", ""), data.get("eventData") or {})
            )
        elif op in (protocol.OP_REQUEST_RESPONSE, protocol.OP_REQUEST_BATCH_RESPONSE):
            future = self._pending.pop(data.get("requestId"), None)
            if future is not None and not future.done():
                future.set_result(data)
        else:
            logger.debug(f"Ignoring op {op}")

    def _fail_pending(self, error: Exception):
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(error)

    # =========================================================================
    # Requests
    # =========================================================================

    async def _request(
        self, op: int, request_id: str, payload: Dict[str, Any], label: str
    ) -> Dict[str, Any]:
        if not self.connected:
            raise RemoteConnectionError("Not connected to mixer", url=self.url)

        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._send(op, payload)
            return await asyncio.wait_for(future, self.request_timeout)
        except asyncio.TimeoutError:
            raise RemoteRequestError(label, comment="timed out waiting for response")
        except ConnectionClosed as e:
            raise RemoteConnectionError("Connection lost", url=self.url, cause=e)
        finally:
            self._pending.pop(request_id, None)

    async def call(
        self, request_type: str, request_data: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        request_id = str(uuid.uuid4())
        payload: Dict[str, Any] = {"requestType": request_type, "requestId": request_id}
        if request_data is not None:
            payload["requestData"] = request_data

        logger.debug(f"-> {request_type} {request_data or ''}")
        response = await self._request(
            protocol.OP_REQUEST, request_id, payload, request_type
        )

        status = response.get("requestStatus") or {}
        if not status.get("result"):
            raise RemoteRequestError(
                request_type, code=status.get("code"), comment=status.get("comment")
            )
        return response.get("responseData") or {}

    async def call_batch(
        self, requests: List[Dict[str, Any]], halt_on_failure: bool = False
    ) -> List[Dict[str, Any]]:
        request_id = str(uuid.uuid4())
        payload = {
            "requestId": request_id,
            "haltOnFailure": halt_on_failure,
            "executionType": protocol.BATCH_SERIAL_REALTIME,
            "requests": requests,
        }

        logger.debug(f"-> batch of {len(requests)}")
        response = await self._request(
            protocol.OP_REQUEST_BATCH, request_id, payload, "RequestBatch"
        )
        return response.get("results") or []
