"""
Oracle Responder implementation.

This module contains the main responder service that wires the ledger
ingestion loop to per-request fulfillment workers and manages their lifecycle.
"""

import asyncio
import logging
from typing import Any

import httpx

from .attestation_client import AttestationClient, HttpAttestationService, ProofVerifier
from .compute_client import ComputeClient
from .config import ResponderConfig
from .event_decoder import EventDecoder
from .fulfillment_worker import FulfillmentWorker
from .models import RequestEvent
from .submission_client import SubmissionClient
from .utils.block_archive_listener import BlockArchiveListener
from .utils.checkpoint_store import CheckpointStore
from .utils.event_stream_listener import EventStreamListener, build_event_filter
from .utils.ledger_utility import LedgerUtility
from .utils.transaction_encoder import TransactionSigner

logger = logging.getLogger(__name__)


class OracleResponder:
    """
    Main responder service.

    A single ingestion loop (block replay or live event stream) feeds request
    events to fire-and-forget worker tasks. Workers are bounded by a
    semaphore acquired inside each task so ingestion never waits on them.
    """

    STATUS_LOG_INTERVAL = 60  # seconds

    def __init__(self, config: ResponderConfig, http_client: httpx.AsyncClient | None = None):
        """
        Initialize the Oracle Responder.

        Args:
            config: Responder configuration
            http_client: Shared HTTP client; one is created (and owned) if omitted
        """
        self.config = config
        self.mode = config.monitoring.mode
        self.running = False

        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=config.monitoring.request_timeout
        )

        # Initialize utilities and components
        self._init_utilities()
        self._init_components()

        # Worker tracking
        self._worker_semaphore = asyncio.Semaphore(config.monitoring.max_concurrent_workers)
        self._worker_tasks: set[asyncio.Task] = set()
        self.requests_dispatched = 0

        # Async coordination
        self.shutdown_event = asyncio.Event()

    def _init_utilities(self) -> None:
        """Initialize the signer and the ledger RPC utility."""
        ledger = self.config.ledger
        timeout = self.config.monitoring.request_timeout

        self.signer = TransactionSigner(ledger.account_id, ledger.private_key)
        self.ledger_util = LedgerUtility(ledger.rpc_url, self.http_client, timeout=timeout)

        logger.info(f"Operator {ledger.account_id} using key {self.signer.public_key_str}")

    def _init_components(self) -> None:
        """Initialize decoding, fulfillment and ingestion components."""
        ledger = self.config.ledger
        attestation = self.config.attestation
        monitoring = self.config.monitoring
        timeout = monitoring.request_timeout

        self.decoder = EventDecoder(
            event_standard=ledger.event_standard,
            producer_id=ledger.producer_contract,
            oracle_contract=ledger.oracle_contract,
        )

        self.compute_client = ComputeClient(
            completions_url=self.config.compute.completions_url,
            api_key=self.config.compute.api_key,
            http_client=self.http_client,
            timeout=timeout,
        )
        self.attestation_client = AttestationClient(
            service=HttpAttestationService(
                service_url=attestation.service_url,
                app_id=attestation.app_id,
                app_secret=attestation.app_secret,
                http_client=self.http_client,
                timeout=timeout,
            ),
            verifier=ProofVerifier(attestation.witness_addresses),
        )
        self.submission_client = SubmissionClient(self.ledger_util, self.signer)

        self.worker = FulfillmentWorker(
            producer_id=ledger.producer_contract,
            compute_client=self.compute_client,
            attestation_client=self.attestation_client,
            submission_client=self.submission_client,
            retry_policy=monitoring.fulfillment_retry,
        )

        self.listener: BlockArchiveListener | EventStreamListener
        match self.mode:
            case "replay":
                self.listener = BlockArchiveListener(
                    archive_url=ledger.archive_url,
                    oracle_contract=ledger.oracle_contract,
                    decoder=self.decoder,
                    checkpoint_store=CheckpointStore(
                        monitoring.checkpoint_path, monitoring.start_block_height
                    ),
                    http_client=self.http_client,
                    retry_policy=monitoring.fetch_retry,
                )
            case "live":
                self.listener = EventStreamListener(
                    events_url=ledger.events_url,
                    event_filter=build_event_filter(
                        oracle_contract=ledger.oracle_contract,
                        event_standard=ledger.event_standard,
                        producer_id=ledger.producer_contract if monitoring.filter_by_producer else None,
                    ),
                    decoder=self.decoder,
                )
            case _:
                raise ValueError(f"Unsupported ingestion mode: {self.mode}")

    @classmethod
    def from_env(cls, mode: str | None = None) -> "OracleResponder":
        """
        Create an OracleResponder instance from environment variables.

        Args:
            mode: Ingestion mode override

        Returns:
            Configured OracleResponder instance

        Raises:
            ValueError: If required environment variables are missing
        """
        config = ResponderConfig.from_env(mode=mode)
        config.log_config()
        return cls(config)

    async def dispatch(self, event: RequestEvent) -> None:
        """
        Spawn a fulfillment task for a request event and return immediately.

        Args:
            event: Accepted request event
        """
        self.requests_dispatched += 1
        task = asyncio.create_task(
            self._run_worker(event), name=f"fulfill-{event.request_id}"
        )
        self._worker_tasks.add(task)
        task.add_done_callback(self._worker_tasks.discard)
        logger.info(f"Dispatched {event} ({len(self._worker_tasks)} in flight)")

    async def _run_worker(self, event: RequestEvent) -> None:
        async with self._worker_semaphore:
            result = await self.worker.fulfill(event)
        if result.succeeded:
            logger.info(
                f"Request {result.request_id} fulfilled in {result.attempts} attempt(s): {result.tx_hash}"
            )
        else:
            logger.warning(f"Request {result.request_id} not fulfilled: {result.last_error}")

    @property
    def in_flight(self) -> int:
        return len(self._worker_tasks)

    def _start_listener(self) -> asyncio.Task:
        match self.listener:
            case BlockArchiveListener():
                coro = self.listener.start_polling(callback=self.dispatch)
            case EventStreamListener():
                coro = self.listener.listen(callback=self.dispatch)
        return asyncio.create_task(coro, name=f"{self.mode}-ingestion")

    async def _periodic_status_logger(self) -> None:
        """Log status periodically while running."""
        while self.running:
            await asyncio.sleep(self.STATUS_LOG_INTERVAL)
            self.decoder.log_metrics()
            logger.info(f"Status: {self.get_status()}")

    async def run(self) -> None:
        """
        Main loop for the responder service.

        Raises:
            CheckpointError: If the replay cursor cannot be persisted
        """
        self.running = True
        logger.info(f"Oracle Responder starting in {self.mode.upper()} mode...")

        tasks: dict[str, asyncio.Task] = {}
        try:
            tasks = {
                "ingestion": self._start_listener(),
                "status": asyncio.create_task(self._periodic_status_logger()),
            }

            logger.info("Ingestion started, waiting for requests...")

            # Wait until shutdown or ingestion ends
            while self.running:
                try:
                    await asyncio.wait_for(self.shutdown_event.wait(), timeout=1.0)
                    break
                except asyncio.TimeoutError:
                    pass

                if tasks["ingestion"].done():
                    # Re-raises fatal ingestion errors such as CheckpointError
                    await tasks["ingestion"]
                    logger.warning("Ingestion loop ended")
                    break

        except Exception as e:
            logger.error(f"Error in main loop: {e}", exc_info=True)
            raise
        finally:
            await self.shutdown(tasks)
            logger.info("Oracle Responder stopped")

    async def shutdown(self, tasks: dict[str, asyncio.Task] | None = None) -> None:
        """
        Stop ingestion and abandon in-flight workers.

        Args:
            tasks: Service tasks started by run()
        """
        self.running = False
        await self.listener.stop()

        for name, task in (tasks or {}).items():
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        if abandoned := [task for task in self._worker_tasks if not task.done()]:
            logger.warning(f"Abandoning {len(abandoned)} in-flight fulfillment task(s)")
            for task in abandoned:
                task.cancel()
            await asyncio.gather(*abandoned, return_exceptions=True)

        if self._owns_http_client:
            await self.http_client.aclose()

    def stop(self) -> None:
        """Stop the responder service."""
        self.running = False
        self.shutdown_event.set()

    def get_status(self) -> dict[str, Any]:
        """
        Get current status of the responder.

        Returns:
            Dictionary with status information
        """
        return {
            "mode": self.mode,
            "running": self.running,
            "requests_dispatched": self.requests_dispatched,
            "in_flight": self.in_flight,
            "listener": self.listener.get_status(),
            "decoder": self.decoder.get_metrics(),
            "worker": self.worker.get_metrics(),
            "submission": self.submission_client.get_metrics(),
        }
