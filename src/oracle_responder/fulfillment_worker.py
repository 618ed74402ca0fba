#!/usr/bin/env python3
"""Request fulfillment for the Oracle Responder.

This module drives a single request from compute call to on-chain
submission, retrying the whole pipeline a bounded number of times.
"""

import asyncio
import logging

from .attestation_client import AttestationClient
from .compute_client import ComputeClient
from .config import BoundedRetryPolicy
from .models import ComputeRequest, FulfillmentResult, RequestEvent
from .submission_client import SubmissionClient

logger = logging.getLogger(__name__)


class ProofUnavailableError(Exception):
    """Raised inside an attempt when no verified proof could be produced."""


class FulfillmentWorker:
    """Fulfills oracle requests addressed to one producer."""

    def __init__(
        self,
        producer_id: str,
        compute_client: ComputeClient,
        attestation_client: AttestationClient,
        submission_client: SubmissionClient,
        retry_policy: BoundedRetryPolicy | None = None
    ) -> None:
        """Initialize the FulfillmentWorker.

        Args:
            producer_id: Producer contract that requests must target; also the
                receiver of ``submit`` calls
            compute_client: Compute provider client
            attestation_client: Proof generation and verification
            submission_client: Transaction submission
            retry_policy: Attempt budget and delay between attempts
        """
        self.producer_id = producer_id
        self.compute_client = compute_client
        self.attestation_client = attestation_client
        self.submission_client = submission_client
        self.retry_policy = retry_policy or BoundedRetryPolicy()

        # Metrics tracking
        self.requests_fulfilled = 0
        self.requests_failed = 0
        self.requests_refused = 0

    async def _attempt(self, event: RequestEvent) -> str:
        """Run one compute, attest and submit pass. Returns the transaction hash."""
        request = ComputeRequest.from_request_data(event.request_data)

        exchange = await self.compute_client.complete(request)

        proof = await self.attestation_client.generate_and_verify(exchange)
        if proof is None:
            raise ProofUnavailableError("Failed to create a proof")

        logger.info(f"Proof created for request {event.request_id}")
        return await self.submission_client.submit(self.producer_id, event.request_id, proof)

    async def fulfill(self, event: RequestEvent) -> FulfillmentResult:
        """
        Fulfill a request event.

        Never raises: every failure inside an attempt is logged and counted
        against the attempt budget.

        Args:
            event: Request to fulfill

        Returns:
            FulfillmentResult describing the outcome
        """
        if event.producer_id != self.producer_id:
            self.requests_refused += 1
            logger.warning(
                f"Refusing request {event.request_id} addressed to {event.producer_id}"
            )
            return FulfillmentResult(
                request_id=event.request_id,
                succeeded=False,
                attempts=0,
                last_error=f"Request addressed to another producer: {event.producer_id}",
            )

        last_error: str | None = None
        max_attempts = self.retry_policy.max_attempts

        for attempt in range(max_attempts):
            logger.info(f"Processing request {event.request_id}, attempt {attempt}")
            try:
                tx_hash = await self._attempt(event)
            except Exception as e:
                last_error = f"{type(e).__name__}: {e}"
                logger.error(f"Failed to process request {event.request_id} attempt {attempt}: {e}")
                if attempt + 1 < max_attempts:
                    await asyncio.sleep(self.retry_policy.delay)
                continue

            self.requests_fulfilled += 1
            return FulfillmentResult(
                request_id=event.request_id,
                succeeded=True,
                attempts=attempt + 1,
                tx_hash=tx_hash,
            )

        self.requests_failed += 1
        logger.error(
            f"Giving up on request {event.request_id} after {max_attempts} attempts: {last_error}"
        )
        return FulfillmentResult(
            request_id=event.request_id,
            succeeded=False,
            attempts=max_attempts,
            last_error=last_error,
        )

    def get_metrics(self) -> dict[str, int]:
        """Get fulfillment counters."""
        return {
            "requests_fulfilled": self.requests_fulfilled,
            "requests_failed": self.requests_failed,
            "requests_refused": self.requests_refused,
        }
