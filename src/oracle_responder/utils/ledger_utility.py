"""
Ledger JSON-RPC access for the Oracle Responder.

Wraps the node calls used for submission: access key lookup for nonces and
block hashes, and synchronous transaction broadcast.
"""

import base64
import json
import logging
from dataclasses import dataclass
from typing import Any

import base58
import httpx

logger = logging.getLogger(__name__)


class LedgerRpcError(Exception):
    """Raised when the ledger JSON-RPC endpoint returns an error."""

    def __init__(self, message: str, error: Any = None) -> None:
        super().__init__(message)
        self.error = error

    @property
    def is_invalid_nonce(self) -> bool:
        """Whether the node rejected the transaction for its nonce."""
        return "InvalidNonce" in json.dumps(self.error, default=str)


@dataclass(frozen=True, slots=True)
class AccessKeyView:
    """Current nonce of an access key and the block it was read at."""

    nonce: int
    block_hash: bytes


class LedgerUtility:
    """Utility for the NEAR JSON-RPC endpoint.

    Provides the two calls the responder needs to submit transactions:
    reading an access key and broadcasting a signed transaction.
    """

    FINALITY: str = "final"

    def __init__(self, rpc_url: str, http_client: httpx.AsyncClient, timeout: float = 60.0) -> None:
        """Initialize ledger utility.

        Args:
            rpc_url: JSON-RPC endpoint
            http_client: Shared HTTP client
            timeout: Per-call timeout in seconds
        """
        self.rpc_url: str = rpc_url
        self.http_client: httpx.AsyncClient = http_client
        self.timeout: float = timeout
        self._request_id: int = 0

    async def _rpc_call(self, method: str, params: Any) -> Any:
        """Send a JSON-RPC request.

        Args:
            method: RPC method name
            params: Method parameters

        Returns:
            The ``result`` member of the response

        Raises:
            LedgerRpcError: On transport errors or an RPC error response
        """
        self._request_id += 1
        payload: dict[str, Any] = {
            "jsonrpc": "2.0",
            "id": f"oracle-responder-{self._request_id}",
            "method": method,
            "params": params,
        }
        logger.debug(f"RPC {method} -> {self.rpc_url}")

        try:
            response: httpx.Response = await self.http_client.post(
                self.rpc_url, json=payload, timeout=self.timeout
            )
            response.raise_for_status()
            body: Any = response.json()
        except httpx.HTTPError as e:
            raise LedgerRpcError(f"RPC {method} transport error: {e}") from e
        except ValueError as e:
            raise LedgerRpcError(f"RPC {method} returned invalid JSON: {e}") from e

        match body:
            case {"error": error}:
                raise LedgerRpcError(f"RPC {method} failed: {json.dumps(error, default=str)}", error)
            case {"result": result}:
                return result
            case _:
                raise LedgerRpcError(f"RPC {method} returned an unexpected response: {body!r}")

    async def view_access_key(self, account_id: str, public_key: str) -> AccessKeyView:
        """Read an access key at final finality.

        Args:
            account_id: Key owner
            public_key: Key in ``ed25519:<base58>`` form

        Returns:
            AccessKeyView with the current nonce and a recent block hash

        Raises:
            LedgerRpcError: If the key does not exist or the call fails
        """
        result: Any = await self._rpc_call("query", {
            "request_type": "view_access_key",
            "finality": self.FINALITY,
            "account_id": account_id,
            "public_key": public_key,
        })

        # Older nodes report a missing key inside the result
        if isinstance(result, dict) and (error := result.get("error")):
            raise LedgerRpcError(f"view_access_key failed for {account_id}: {error}", error)

        try:
            return AccessKeyView(
                nonce=int(result["nonce"]),
                block_hash=base58.b58decode(result["block_hash"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise LedgerRpcError(f"Malformed access key view for {account_id}: {e}") from e

    async def broadcast_tx_commit(self, signed_transaction: bytes) -> dict[str, Any]:
        """Broadcast a signed transaction and wait for its execution outcome.

        Args:
            signed_transaction: Borsh-encoded signed transaction

        Returns:
            Final execution outcome

        Raises:
            LedgerRpcError: If the node rejects the transaction
        """
        encoded: str = base64.b64encode(signed_transaction).decode("ascii")
        result: Any = await self._rpc_call("broadcast_tx_commit", [encoded])
        if not isinstance(result, dict):
            raise LedgerRpcError(f"Unexpected broadcast_tx_commit result: {result!r}")
        return result
