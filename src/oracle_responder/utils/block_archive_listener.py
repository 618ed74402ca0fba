"""
Block-archive listener for replay-mode event ingestion.

Fetches blocks one height at a time from a block archive, extracts oracle
events from successful receipt outcomes, and advances a durable checkpoint.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from ..config import UnboundedRetryPolicy
from ..event_decoder import EventDecoder
from ..models import RequestEvent
from .checkpoint_store import CheckpointStore


class BlockFetchError(Exception):
    """Raised when a block cannot be fetched from the archive."""


class BlockArchiveListener:
    """
    Utility for replaying ledger blocks via the block archive HTTP API.

    Fetch failures retry the same height forever; processing failures are
    logged and the height still advances.
    """

    SUCCESS_STATUSES = ("SuccessValue", "SuccessReceiptId")
    USER_AGENT = "Oracle responder indexer"

    def __init__(
        self,
        archive_url: str,
        oracle_contract: str,
        decoder: EventDecoder,
        checkpoint_store: CheckpointStore,
        http_client: httpx.AsyncClient,
        retry_policy: UnboundedRetryPolicy | None = None
    ):
        """
        Initialize the block archive listener.

        Args:
            archive_url: Block archive base URL
            oracle_contract: Receiver whose logs are scanned for events
            decoder: Decoder applied to each log line
            checkpoint_store: Durable cursor of the next height to fetch
            http_client: Shared HTTP client
            retry_policy: Delay between failed fetches of the same height
        """
        self.archive_url = archive_url.rstrip("/")
        self.oracle_contract = oracle_contract
        self.decoder = decoder
        self.checkpoint_store = checkpoint_store
        self.http_client = http_client
        self.retry_policy = retry_policy or UnboundedRetryPolicy()

        # State tracking
        self.current_height: int | None = None
        self.blocks_processed = 0
        self.blocks_skipped = 0
        self.is_running = False
        self._stop_requested = False

        # Setup logging
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    async def fetch_block(self, height: int) -> dict[str, Any] | None:
        """
        Fetch a single block.

        Args:
            height: Block height to fetch

        Returns:
            Block JSON, or None if the archive has no block at this height

        Raises:
            BlockFetchError: On transport errors, bad statuses or invalid JSON
        """
        url = f"{self.archive_url}/v0/block/{height}"
        try:
            response = await self.http_client.get(url, headers={"User-Agent": self.USER_AGENT})
            response.raise_for_status()
            block = response.json()
        except httpx.HTTPError as e:
            raise BlockFetchError(f"Failed to fetch block {height}: {e}") from e
        except ValueError as e:
            raise BlockFetchError(f"Invalid JSON for block {height}: {e}") from e

        if block is not None and not isinstance(block, dict):
            raise BlockFetchError(f"Unexpected block payload type for {height}: {type(block).__name__}")
        return block

    async def _fetch_with_retry(self, height: int) -> tuple[bool, dict[str, Any] | None]:
        """Fetch a height until it succeeds or the listener is stopped."""
        attempt = 0
        while not self._stop_requested:
            try:
                return True, await self.fetch_block(height)
            except BlockFetchError as e:
                self.logger.error(f"Failed to fetch block {height} attempt {attempt}: {e}")
                attempt += 1
                await asyncio.sleep(self.retry_policy.delay)
        return False, None

    def extract_events(self, block: dict[str, Any]) -> list[RequestEvent]:
        """
        Extract accepted request events from a block.

        Args:
            block: Block JSON as returned by the archive

        Returns:
            Request events addressed to this producer, in block order
        """
        height = block.get("block", {}).get("header", {}).get("height")
        events: list[RequestEvent] = []

        for shard in block.get("shards") or []:
            for outcome in shard.get("receipt_execution_outcomes") or []:
                receipt = outcome["receipt"]
                if receipt.get("receiver_id") != self.oracle_contract:
                    continue

                result = outcome["execution_outcome"]["outcome"]
                status = result.get("status")
                if not isinstance(status, dict) or not any(key in status for key in self.SUCCESS_STATUSES):
                    continue

                for line in result.get("logs") or []:
                    event = self.decoder.decode_log(
                        line, block_height=height, receipt_id=receipt.get("receipt_id")
                    )
                    if self.decoder.accepts(event):
                        events.append(event)

        return events

    async def poll_next_block(self, callback: Callable[[RequestEvent], Awaitable[Any]]) -> bool:
        """
        Fetch, process and checkpoint the block at the current height.

        Args:
            callback: Async function called for each accepted request event

        Returns:
            True if the height advanced, False if the listener was stopped

        Raises:
            CheckpointError: If the new height cannot be persisted
        """
        if self.current_height is None:
            self.current_height = self.checkpoint_store.load()

        height = self.current_height
        fetched, block = await self._fetch_with_retry(height)
        if not fetched:
            return False

        if block is None:
            self.logger.info(f"Skipping block {height}")
            self.blocks_skipped += 1
        else:
            try:
                self.logger.debug(f"Processing block {height}")
                events = self.extract_events(block)
                if events:
                    self.logger.info(f"Found {len(events)} request events in block {height}")
                for event in events:
                    await callback(event)
                self.blocks_processed += 1
            except Exception as e:
                self.logger.error(f"Failed to process block {height}: {e}", exc_info=True)

        self.current_height = height + 1
        self.checkpoint_store.save(self.current_height)
        return True

    async def start_polling(self, callback: Callable[[RequestEvent], Awaitable[Any]]) -> None:
        """
        Replay blocks from the checkpoint onward until stopped.

        Args:
            callback: Async function called for each accepted request event
        """
        if self.is_running:
            self.logger.warning("Replay already running")
            return

        self.is_running = True
        self._stop_requested = False
        self.current_height = self.checkpoint_store.load()
        self.logger.info(
            f"Starting block replay from height {self.current_height} "
            f"for {self.oracle_contract}"
        )

        try:
            while self.is_running:
                await self.poll_next_block(callback)
        except asyncio.CancelledError:
            self.logger.info("Replay cancelled")
            raise
        finally:
            self.is_running = False

    async def stop(self) -> None:
        """Stop the replay loop."""
        self.logger.info("Stopping block replay")
        self._stop_requested = True
        self.is_running = False

    def get_status(self) -> dict[str, Any]:
        """
        Get current status of the replay listener.

        Returns:
            Dictionary with status information
        """
        return {
            "is_running": self.is_running,
            "current_height": self.current_height,
            "blocks_processed": self.blocks_processed,
            "blocks_skipped": self.blocks_skipped,
            "oracle_contract": self.oracle_contract,
            "archive_url": self.archive_url,
        }
