#!/usr/bin/env python3
"""Fulfillment submission for the Oracle Responder.

This module signs and sends the ``submit`` function call that delivers a
verified proof to the producer contract.
"""

import asyncio
import json
import logging
from typing import Any

from .models import ProofBundle
from .utils.ledger_utility import LedgerRpcError, LedgerUtility
from .utils.transaction_encoder import TransactionEncoder, TransactionSigner

logger = logging.getLogger(__name__)


class SubmissionError(Exception):
    """Raised when a fulfillment transaction cannot be submitted or fails."""


class SubmissionClient:
    """Handles proof submission to the producer contract."""

    METHOD_NAME: str = "submit"
    GAS: int = 300_000_000_000_000  # 300 Tgas
    DEPOSIT: int = 0

    def __init__(self, ledger_util: LedgerUtility, signer: TransactionSigner) -> None:
        """Initialize the SubmissionClient.

        Args:
            ledger_util: JSON-RPC utility used for nonces and broadcast
            signer: Operator key that signs fulfillment transactions
        """
        self.ledger_util: LedgerUtility = ledger_util
        self.signer: TransactionSigner = signer

        # Nonces are handed out locally so concurrent workers never reuse one
        self._nonce_lock = asyncio.Lock()
        self._next_nonce: int | None = None

        self.submissions_sent = 0
        self.submissions_failed = 0

        logger.info(f"SubmissionClient initialized for signer {signer.account_id}")
        logger.info(f"  Public Key: {signer.public_key_str}")

    async def _allocate_nonce(self) -> tuple[int, bytes]:
        """Reserve the next nonce and fetch a recent block hash."""
        view = await self.ledger_util.view_access_key(
            self.signer.account_id, self.signer.public_key_str
        )
        # Only the reservation is serialized; the RPC above runs concurrently
        async with self._nonce_lock:
            if self._next_nonce is None or self._next_nonce <= view.nonce:
                self._next_nonce = view.nonce + 1
            nonce = self._next_nonce
            self._next_nonce += 1
            return nonce, view.block_hash

    def _reset_nonce(self) -> None:
        self._next_nonce = None

    async def submit(self, producer_contract: str, request_id: str, proof: ProofBundle) -> str:
        """Send ``submit({request_id, proof})`` to the producer contract.

        Args:
            producer_contract: Contract receiving the call
            request_id: Request being fulfilled
            proof: Verified proof bundle

        Returns:
            Transaction hash

        Raises:
            SubmissionError: If the transaction cannot be built, is rejected,
                or executes with a failure status
        """
        args: bytes = json.dumps({
            "request_id": request_id,
            "proof": proof.to_dict(),
        }).encode("utf-8")

        try:
            nonce, block_hash = await self._allocate_nonce()
            transaction: bytes = TransactionEncoder.encode_transaction(
                signer_id=self.signer.account_id,
                public_key=self.signer.public_key,
                nonce=nonce,
                receiver_id=producer_contract,
                block_hash=block_hash,
                actions=[
                    TransactionEncoder.encode_function_call(
                        self.METHOD_NAME, args, self.GAS, self.DEPOSIT
                    )
                ],
            )
            signed = self.signer.sign_transaction(transaction)
            logger.info(
                f"Submitting request {request_id} to {producer_contract} "
                f"(nonce={nonce}, tx={signed.tx_hash})"
            )
            outcome: dict[str, Any] = await self.ledger_util.broadcast_tx_commit(signed.payload)
        except LedgerRpcError as e:
            self.submissions_failed += 1
            if e.is_invalid_nonce:
                logger.warning("Nonce rejected by the node, refreshing from access key")
                self._reset_nonce()
            raise SubmissionError(f"Failed to submit request {request_id}: {e}") from e
        except ValueError as e:
            self.submissions_failed += 1
            raise SubmissionError(f"Failed to build transaction for request {request_id}: {e}") from e

        status: Any = outcome.get("status")
        match status:
            case {"Failure": failure}:
                self.submissions_failed += 1
                raise SubmissionError(
                    f"Submission of request {request_id} failed on chain: {json.dumps(failure, default=str)}"
                )
            case {"SuccessValue": _} | {"SuccessReceiptId": _}:
                pass
            case _:
                logger.warning(f"Unknown execution status for request {request_id}: {status!r}")

        tx_hash: str = outcome.get("transaction", {}).get("hash") or signed.tx_hash
        self.submissions_sent += 1
        logger.info(f"✓ Request {request_id} submitted in transaction {tx_hash}")
        return tx_hash

    def get_metrics(self) -> dict[str, int]:
        """Get submission counters."""
        return {
            "submissions_sent": self.submissions_sent,
            "submissions_failed": self.submissions_failed,
        }
