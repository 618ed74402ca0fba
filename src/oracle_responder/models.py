#!/usr/bin/env python3
"""Data models for the Oracle Responder.

This module provides immutable data classes for oracle events decoded from the
ledger, the compute requests they carry, the HTTP exchanges submitted for
attestation and the proof bundles delivered back to the ledger.
"""

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class RequestEvent:
    """Represents an oracle ``request`` event emitted by the oracle contract.

    Attributes:
        request_id: Ledger-assigned identifier (u128 as a decimal string)
        producer_id: Producer the request is addressed to
        request_data: Opaque payload, expected to be a JSON compute request
        consumer_id: Account that made the request, when present
        block_height: Block where the event was emitted, when known
        receipt_id: Receipt that emitted the event, when known
    """

    request_id: str
    producer_id: str
    request_data: str
    consumer_id: str | None = None
    block_height: int | None = None
    receipt_id: str | None = None

    def __str__(self) -> str:
        """Human-readable string representation."""
        return (
            f"RequestEvent(id={self.request_id}, "
            f"producer={self.producer_id}, "
            f"consumer={self.consumer_id}, "
            f"block={self.block_height})"
        )


@dataclass(frozen=True, slots=True)
class NoFee:
    """Producer charges nothing."""

    def to_dict(self) -> Any:
        return "None"


@dataclass(frozen=True, slots=True)
class NearFee:
    """Producer charges a prepaid amount of native NEAR (yoctoNEAR)."""

    prepaid_amount: int

    def to_dict(self) -> Any:
        return {"Near": {"prepaid_amount": str(self.prepaid_amount)}}


@dataclass(frozen=True, slots=True)
class FungibleTokenFee:
    """Producer charges a prepaid amount of a fungible token."""

    token: str
    prepaid_amount: int

    def to_dict(self) -> Any:
        return {
            "FungibleToken": {
                "token": self.token,
                "prepaid_amount": str(self.prepaid_amount),
            }
        }


ProducerFee = NoFee | NearFee | FungibleTokenFee


def parse_producer_fee(raw: Any) -> ProducerFee:
    """Parse the JSON form of a producer fee into its variant.

    Args:
        raw: ``"None"``, ``{"Near": {...}}`` or ``{"FungibleToken": {...}}``

    Returns:
        The matching fee variant

    Raises:
        ValueError: If the shape is not a known fee variant
    """
    match raw:
        case "None" | None:
            return NoFee()
        case {"Near": {"prepaid_amount": amount}}:
            return NearFee(prepaid_amount=int(amount))
        case {"FungibleToken": {"token": str() as token, "prepaid_amount": amount}}:
            return FungibleTokenFee(token=token, prepaid_amount=int(amount))
        case _:
            raise ValueError(f"Unknown producer fee format: {raw!r}")


@dataclass(frozen=True, slots=True)
class ProducerEvent:
    """Represents a ``producer_created`` or ``producer_updated`` event.

    The responder itself ignores these; they are decoded for consumers that
    mirror producer state, such as a dashboard.
    """

    kind: str
    account_id: str
    name: str
    description: str
    fee: ProducerFee
    example_input: str | None = None
    requests_succeded: int = 0
    requests_timed_out: int = 0
    send_callback: bool = False


OracleEvent = RequestEvent | ProducerEvent


@dataclass(frozen=True, slots=True)
class ComputeRequest:
    """Structured compute request carried in ``RequestEvent.request_data``."""

    model: str
    system_message: str
    user_message: str
    seed: int

    @classmethod
    def from_request_data(cls, request_data: str) -> "ComputeRequest":
        """Parse a request payload.

        Raises:
            ValueError: If the payload is not valid JSON or misses fields
        """
        try:
            data = json.loads(request_data)
        except json.JSONDecodeError as e:
            raise ValueError(f"Request data is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise ValueError("Request data must be a JSON object")

        missing = [key for key in ("model", "system_message", "user_message", "seed") if key not in data]
        if missing:
            raise ValueError(f"Request data is missing fields: {', '.join(missing)}")

        for key in ("model", "system_message", "user_message"):
            if not isinstance(data[key], str):
                raise ValueError(f"Request field '{key}' must be a string")

        # The producer contract reads the seed as a u64
        seed = data["seed"]
        if isinstance(seed, bool) or not isinstance(seed, int) or not 0 <= seed < 2**64:
            raise ValueError("Request field 'seed' must be an unsigned 64-bit integer")

        return cls(
            model=data["model"],
            system_message=data["system_message"],
            user_message=data["user_message"],
            seed=seed,
        )

    def to_body(self) -> str:
        """Serialize to the exact JSON body sent to the compute provider."""
        return json.dumps({
            "model": self.model,
            "messages": [
                {"role": "system", "content": self.system_message},
                {"role": "user", "content": self.user_message},
            ],
            "seed": self.seed,
        })


@dataclass(frozen=True, slots=True)
class HttpExchange:
    """An HTTP request/response pair to be attested.

    ``public_options`` are revealed in the proof; ``private_options`` hold the
    credentials and the response-matching constraints and stay hidden.
    """

    url: str
    public_options: dict[str, Any]
    private_options: dict[str, Any] = field(repr=False)
    response_text: str = ""


@dataclass(frozen=True, slots=True)
class ClaimInfo:
    provider: str
    parameters: str
    context: str


@dataclass(frozen=True, slots=True)
class Claim:
    identifier: str
    owner: str
    epoch: int
    timestamp_s: int


@dataclass(frozen=True, slots=True)
class ProofBundle:
    """Verified attestation in the shape expected by the producer contract.

    Attributes:
        claim_info: What was attested (provider, parameters, context)
        claim: Claim header with identifiers as bare lowercase hex
        signatures: Hex-encoded attestor signatures over the claim
    """

    claim_info: ClaimInfo
    claim: Claim
    signatures: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        """Convert to the contract's JSON argument format."""
        return {
            "claimInfo": {
                "provider": self.claim_info.provider,
                "parameters": self.claim_info.parameters,
                "context": self.claim_info.context,
            },
            "signedClaim": {
                "claim": {
                    "identifier": self.claim.identifier,
                    "owner": self.claim.owner,
                    "epoch": self.claim.epoch,
                    "timestampS": self.claim.timestamp_s,
                },
                "signatures": list(self.signatures),
            },
        }


@dataclass(frozen=True, slots=True)
class FulfillmentResult:
    """Outcome of one fulfillment worker run."""

    request_id: str
    succeeded: bool
    attempts: int
    tx_hash: str | None = None
    last_error: str | None = None
