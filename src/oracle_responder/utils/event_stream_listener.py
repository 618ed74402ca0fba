"""
Event Stream Listener for live-mode event ingestion.

Provides WebSocket-based subscription to the ledger event stream with a
server-side filter and automatic reconnection.
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

import websockets
from websockets.exceptions import WebSocketException

from ..event_decoder import EventDecoder
from ..models import RequestEvent


class ConnectionState(Enum):
    """Connection state for event listener."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


def build_event_filter(
    oracle_contract: str,
    event_standard: str,
    event_kind: str = "request",
    producer_id: str | None = None
) -> dict[str, Any]:
    """
    Build the server-side filter expression for oracle events.

    Args:
        oracle_contract: Contract that emits the events
        event_standard: NEP-297 standard tag
        event_kind: Event kind to subscribe to
        producer_id: If set, also require ``event_data.producer_id`` to match

    Returns:
        Filter expression to send as the first stream message
    """
    clauses = [
        {"path": "account_id", "operator": {"Equals": oracle_contract}},
        {"path": "event_standard", "operator": {"Equals": event_standard}},
        {"path": "event_event", "operator": {"Equals": event_kind}},
    ]
    if producer_id is not None:
        clauses.append({"path": "event_data.producer_id", "operator": {"Equals": producer_id}})
    return {"And": clauses}


class EventStreamListener:
    """
    Utility for listening to decoded ledger events via WebSocket.

    Features:
    - Server-side filtering, so only oracle request events are pushed
    - Automatic reconnection with exponential backoff
    - No replay: events emitted while disconnected are not recovered
    """

    EVENT_TYPE = "log_nep297"

    def __init__(
        self,
        events_url: str,
        event_filter: dict[str, Any],
        decoder: EventDecoder,
        base_delay: float = 1,
        max_delay: float = 60
    ) -> None:
        """
        Initialize the EventStreamListener.

        Args:
            events_url: Event stream base URL (ws:// or wss://)
            event_filter: Filter expression sent after connecting
            decoder: Decoder applied to each pushed record
            base_delay: First reconnection delay in seconds
            max_delay: Reconnection delay cap in seconds
        """
        self.stream_url = f"{events_url.rstrip('/')}/events/{self.EVENT_TYPE}"
        self.event_filter = event_filter
        self.decoder = decoder
        self.base_delay = base_delay
        self.max_delay = max_delay

        # Connection state
        self.connection_state = ConnectionState.DISCONNECTED
        self.is_running = False
        self.messages_received = 0

        # Event processing
        self.event_callback: Callable[[RequestEvent], Awaitable[Any]] | None = None

        # Setup logging
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    async def listen(self, callback: Callable[[RequestEvent], Awaitable[Any]]) -> None:
        """
        Main entry point for WebSocket event listening.

        Runs until stop() is called or the task is cancelled.

        Args:
            callback: Async function to call for each accepted request event
        """
        self.event_callback = callback
        self.is_running = True
        self.logger.info(f"Starting event stream listener on {self.stream_url}")

        retry_count = 0
        try:
            while self.is_running:
                try:
                    self.connection_state = ConnectionState.CONNECTING
                    self.logger.info(f"Connecting to event stream: {self.stream_url}")

                    async with websockets.connect(self.stream_url) as websocket:
                        self.connection_state = ConnectionState.CONNECTED
                        retry_count = 0
                        self.logger.info("Event stream connected successfully")

                        await websocket.send(json.dumps(self.event_filter))
                        self.logger.debug(f"Subscribed with filter: {json.dumps(self.event_filter)}")

                        async for message in websocket:
                            if not self.is_running:
                                break
                            await self.handle_message(message)

                    if self.is_running:
                        self.logger.warning("Event stream closed by server")

                except (OSError, WebSocketException) as e:
                    self.logger.warning(f"Event stream connection failed: {e}")

                if not self.is_running:
                    break

                retry_count += 1
                delay = min(self.base_delay * (2 ** (retry_count - 1)), self.max_delay)
                self.connection_state = ConnectionState.RECONNECTING
                self.logger.info(
                    f"Reconnecting in {delay} seconds (attempt {retry_count}); "
                    f"events emitted meanwhile will be missed"
                )
                await asyncio.sleep(delay)
        finally:
            self.connection_state = ConnectionState.DISCONNECTED

    async def handle_message(self, message: str | bytes) -> int:
        """
        Decode one pushed message and dispatch accepted events.

        A message holds either a single event record or a list of them.

        Args:
            message: Raw WebSocket message

        Returns:
            Number of events dispatched
        """
        self.messages_received += 1
        try:
            payload = json.loads(message)
        except (ValueError, TypeError) as e:
            self.logger.error(f"Invalid event stream message: {e}")
            return 0

        records = payload if isinstance(payload, list) else [payload]
        dispatched = 0
        for record in records:
            event = self.decoder.decode_stream_event(record)
            if not self.decoder.accepts(event):
                continue
            try:
                if self.event_callback:
                    await self.event_callback(event)
                    dispatched += 1
            except Exception as e:
                self.logger.error(f"Error dispatching stream event {event}: {e}", exc_info=True)
        return dispatched

    async def stop(self) -> None:
        """Stop the event listener."""
        self.logger.info("Stopping event stream listener...")
        self.is_running = False

    def get_status(self) -> dict[str, Any]:
        """
        Get current status of the stream listener.

        Returns:
            Dictionary with status information
        """
        return {
            "is_running": self.is_running,
            "connection_state": self.connection_state.value,
            "messages_received": self.messages_received,
            "stream_url": self.stream_url,
        }
