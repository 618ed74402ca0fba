#!/usr/bin/env python3
"""Attestation handling for the Oracle Responder.

This module obtains zkFetch proofs of an HTTP exchange from the attestation
service, verifies them against the trusted attestor set and normalizes them
into the proof format the producer contract expects.
"""

import json
import logging
from typing import Any

import httpx
from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from .models import Claim, ClaimInfo, HttpExchange, ProofBundle

logger = logging.getLogger(__name__)


class AttestationError(Exception):
    """Raised when a proof cannot be generated or is malformed."""


def _strip_hex(value: str) -> str:
    return value.lower().removeprefix("0x")


def _signature_to_hex(raw: Any) -> str:
    """Hex-encode a signature given as a hex string, byte list or serialized Buffer."""
    match raw:
        case str():
            return _strip_hex(raw)
        case {"type": "Buffer", "data": list(data)} | list(data):
            return bytes(data).hex()
        case bytes():
            return raw.hex()
        case _:
            raise AttestationError(f"Unsupported signature encoding: {type(raw).__name__}")


def normalize_proof(raw: dict[str, Any]) -> ProofBundle:
    """Convert a raw zkFetch proof into a ProofBundle.

    Accepts both ``{claimData, signatures: [...]}`` and the older
    ``{claim, signatures: {claimSignature}}`` layouts.

    Args:
        raw: Proof JSON as returned by the attestation service

    Returns:
        Normalized, unverified proof bundle

    Raises:
        AttestationError: If the proof shape is not recognized
    """
    match raw:
        case {"claimData": dict(claim), "signatures": list(signatures)}:
            encoded = tuple(_signature_to_hex(sig) for sig in signatures)
        case {"claim": dict(claim), "signatures": {"claimSignature": signature}}:
            encoded = (_signature_to_hex(signature),)
        case _:
            raise AttestationError("Unrecognized proof format")

    if not encoded:
        raise AttestationError("Proof carries no signatures")

    try:
        return ProofBundle(
            claim_info=ClaimInfo(
                provider=claim["provider"],
                parameters=claim["parameters"],
                context=claim.get("context") or "",
            ),
            claim=Claim(
                identifier=_strip_hex(claim["identifier"]),
                owner=_strip_hex(claim["owner"]),
                epoch=int(claim["epoch"]),
                timestamp_s=int(claim["timestampS"]),
            ),
            signatures=encoded,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise AttestationError(f"Malformed claim data: {e}") from e


class ProofVerifier:
    """Checks claim integrity and attestor signatures of a proof."""

    def __init__(self, witness_addresses: tuple[str, ...]) -> None:
        """
        Args:
            witness_addresses: Attestors that must all have signed the claim
        """
        self.witness_addresses = tuple(address.lower() for address in witness_addresses)

    @staticmethod
    def _canonical_context(context: str) -> str:
        if not context:
            return ""
        try:
            parsed = json.loads(context)
        except ValueError:
            return context
        return json.dumps(parsed, sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def claim_identifier(cls, claim_info: ClaimInfo) -> str:
        """Compute the identifier a claim must carry for the given claim info."""
        preimage = "\n".join([
            claim_info.provider,
            claim_info.parameters,
            cls._canonical_context(claim_info.context),
        ])
        return Web3.to_hex(Web3.keccak(text=preimage)).lower()

    @staticmethod
    def signed_message(claim: Claim) -> str:
        """The personal message attestors sign for a claim."""
        return "\n".join([
            "0x" + claim.identifier,
            "0x" + claim.owner,
            str(claim.timestamp_s),
            str(claim.epoch),
        ])

    def recover_signers(self, proof: ProofBundle) -> set[str]:
        """Recover the lowercase addresses that produced the proof's signatures."""
        message = encode_defunct(text=self.signed_message(proof.claim))
        return {
            Account.recover_message(message, signature=bytes.fromhex(signature)).lower()
            for signature in proof.signatures
        }

    def verify(self, proof: ProofBundle) -> bool:
        """
        Verify a normalized proof.

        Returns:
            True if the identifier matches the claim info and every trusted
            attestor signed the claim
        """
        expected = _strip_hex(self.claim_identifier(proof.claim_info))
        if expected != proof.claim.identifier:
            logger.warning(
                f"Claim identifier mismatch: expected {expected}, got {proof.claim.identifier}"
            )
            return False

        signers = self.recover_signers(proof)
        if missing := [w for w in self.witness_addresses if w not in signers]:
            logger.warning(f"Proof is missing signatures from attestors: {', '.join(missing)}")
            return False

        return True


class HttpAttestationService:
    """Client for a zkFetch prover exposed over HTTP."""

    ZKFETCH_PATH: str = "/zkfetch"

    def __init__(
        self,
        service_url: str,
        app_id: str,
        app_secret: str,
        http_client: httpx.AsyncClient,
        timeout: float = 60.0
    ) -> None:
        self.endpoint = service_url.rstrip("/") + self.ZKFETCH_PATH
        self.app_id = app_id
        self._app_secret = app_secret
        self.http_client = http_client
        self.timeout = timeout

    async def generate(self, exchange: HttpExchange, retries: int = 1, retry_interval: int = 0) -> dict[str, Any]:
        """
        Ask the prover to replay and attest an HTTP exchange.

        Args:
            exchange: Request to attest, with its response constraints
            retries: Prover-side retry count
            retry_interval: Prover-side delay between retries in milliseconds

        Returns:
            Raw proof JSON

        Raises:
            AttestationError: If the prover call fails
        """
        payload = {
            "applicationId": self.app_id,
            "applicationSecret": self._app_secret,
            "url": exchange.url,
            "publicOptions": exchange.public_options,
            "privateOptions": exchange.private_options,
            "retries": retries,
            "retryInterval": retry_interval,
        }
        try:
            response = await self.http_client.post(self.endpoint, json=payload, timeout=self.timeout)
            response.raise_for_status()
            proof = response.json()
        except httpx.HTTPError as e:
            raise AttestationError(f"zkFetch request failed: {e}") from e
        except ValueError as e:
            raise AttestationError(f"zkFetch returned invalid JSON: {e}") from e

        if not isinstance(proof, dict):
            raise AttestationError(f"zkFetch returned {type(proof).__name__}, expected an object")
        return proof


class AttestationClient:
    """Generates and verifies proofs; only verified proofs leave this class."""

    def __init__(self, service: HttpAttestationService, verifier: ProofVerifier) -> None:
        self.service = service
        self.verifier = verifier

        # Metrics tracking
        self.proofs_generated = 0
        self.proofs_rejected = 0

    async def generate_and_verify(self, exchange: HttpExchange) -> ProofBundle | None:
        """
        Generate a proof for an exchange and verify it.

        Args:
            exchange: HTTP exchange to attest

        Returns:
            Verified ProofBundle, or None if generation or verification failed
        """
        try:
            raw = await self.service.generate(exchange)
        except AttestationError as e:
            logger.error(f"Error fetching proof for {exchange.url}: {e}")
            logger.error(f"Response: {exchange.response_text}")
            return None

        logger.debug(f"Raw proof: {json.dumps(raw, default=str)}")

        try:
            proof = normalize_proof(raw)
            if not self.verifier.verify(proof):
                self.proofs_rejected += 1
                logger.warning("Proof is invalid")
                return None
        except Exception as e:
            self.proofs_rejected += 1
            logger.error(f"Error validating proof: {e}")
            return None

        self.proofs_generated += 1
        logger.info(f"Proof verified for claim {proof.claim.identifier}")
        return proof
