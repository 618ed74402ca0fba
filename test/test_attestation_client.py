#!/usr/bin/env python3
"""Tests for proof generation, verification and normalization."""

import json

import httpx
import pytest
from eth_account import Account

from oracle_responder.attestation_client import (
    AttestationClient,
    AttestationError,
    HttpAttestationService,
    ProofVerifier,
    normalize_proof,
)
from oracle_responder.models import HttpExchange

from conftest import OTHER_WITNESS_KEY, make_raw_proof


@pytest.fixture
def other_witness():
    return Account.from_key(OTHER_WITNESS_KEY)


@pytest.fixture
def exchange():
    return HttpExchange(
        url="https://api.openai.com/v1/chat/completions",
        public_options={"method": "POST", "body": "{}", "headers": {"Content-Type": "application/json"}},
        private_options={
            "headers": {"Authorization": "Bearer sk-test"},
            "responseMatches": [{"type": "contains", "value": "42"}],
        },
        response_text="42",
    )


def make_client(handler, witnesses):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    service = HttpAttestationService("http://prover:8080/", "app-id", "app-secret", http_client)
    return AttestationClient(service, ProofVerifier(tuple(w.address for w in witnesses)))


class TestNormalizeProof:
    """Tests for proof normalization."""

    def test_claim_data_layout(self, witness):
        raw = make_raw_proof([witness])
        proof = normalize_proof(raw)

        assert proof.claim_info.provider == "http"
        assert not proof.claim.identifier.startswith("0x")
        assert proof.claim.owner == "f218b59d7794e32693f5d3236e011c233e249105"
        assert proof.claim.timestamp_s == 1717000000
        assert len(proof.signatures) == 1
        assert not proof.signatures[0].startswith("0x")

    def test_legacy_layout(self, witness):
        proof = normalize_proof(make_raw_proof([witness], legacy=True))
        assert len(proof.signatures) == 1

    def test_buffer_signature(self, witness):
        raw = make_raw_proof([witness], legacy=True)
        sig_hex = raw["signatures"]["claimSignature"].removeprefix("0x")
        raw["signatures"]["claimSignature"] = {"type": "Buffer", "data": list(bytes.fromhex(sig_hex))}

        assert normalize_proof(raw).signatures == (sig_hex.lower(),)

    def test_contract_format(self, witness):
        proof = normalize_proof(make_raw_proof([witness]))
        as_dict = proof.to_dict()

        assert set(as_dict) == {"claimInfo", "signedClaim"}
        assert set(as_dict["signedClaim"]["claim"]) == {"identifier", "owner", "epoch", "timestampS"}
        assert as_dict["signedClaim"]["signatures"] == list(proof.signatures)

    def test_unknown_layout(self):
        with pytest.raises(AttestationError, match="Unrecognized proof format"):
            normalize_proof({"proof": {}})

    def test_missing_claim_field(self, witness):
        raw = make_raw_proof([witness])
        del raw["claimData"]["owner"]
        with pytest.raises(AttestationError, match="Malformed claim data"):
            normalize_proof(raw)

    def test_no_signatures(self, witness):
        raw = make_raw_proof([witness])
        raw["signatures"] = []
        with pytest.raises(AttestationError, match="no signatures"):
            normalize_proof(raw)


class TestProofVerifier:
    """Tests for signature and identifier checks."""

    def test_valid_proof(self, witness):
        verifier = ProofVerifier((witness.address,))
        assert verifier.verify(normalize_proof(make_raw_proof([witness]))) is True

    def test_identifier_with_json_context(self, witness):
        raw = make_raw_proof([witness], context='{"extractedParameters":{},"providerHash":"0x1"}')
        assert ProofVerifier((witness.address,)).verify(normalize_proof(raw)) is True

    def test_tampered_parameters_rejected(self, witness):
        raw = make_raw_proof([witness])
        raw["claimData"]["parameters"] = '{"url":"https://evil.example"}'
        assert ProofVerifier((witness.address,)).verify(normalize_proof(raw)) is False

    def test_untrusted_signer_rejected(self, witness, other_witness):
        raw = make_raw_proof([other_witness])
        assert ProofVerifier((witness.address,)).verify(normalize_proof(raw)) is False

    def test_all_witnesses_required(self, witness, other_witness):
        verifier = ProofVerifier((witness.address, other_witness.address))
        assert verifier.verify(normalize_proof(make_raw_proof([witness]))) is False
        assert verifier.verify(normalize_proof(make_raw_proof([witness, other_witness]))) is True


class TestAttestationClient:
    """Tests for generate_and_verify."""

    @pytest.mark.asyncio
    async def test_returns_verified_bundle(self, witness, exchange):
        captured = {}

        def handler(request):
            captured["path"] = request.url.path
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json=make_raw_proof([witness]))

        client = make_client(handler, [witness])
        proof = await client.generate_and_verify(exchange)

        assert proof is not None
        assert client.proofs_generated == 1
        assert captured["path"] == "/zkfetch"
        assert captured["body"] == {
            "applicationId": "app-id",
            "applicationSecret": "app-secret",
            "url": exchange.url,
            "publicOptions": exchange.public_options,
            "privateOptions": exchange.private_options,
            "retries": 1,
            "retryInterval": 0,
        }

    @pytest.mark.asyncio
    async def test_service_error_returns_none(self, witness, exchange):
        client = make_client(lambda request: httpx.Response(500), [witness])
        assert await client.generate_and_verify(exchange) is None

    @pytest.mark.asyncio
    async def test_service_error_logs_captured_response(self, witness, exchange, caplog):
        client = make_client(lambda request: httpx.Response(500), [witness])
        with caplog.at_level("ERROR"):
            await client.generate_and_verify(exchange)
        assert "Response: 42" in caplog.text

    @pytest.mark.asyncio
    async def test_non_object_response_returns_none(self, witness, exchange):
        client = make_client(lambda request: httpx.Response(200, json=[1, 2]), [witness])
        assert await client.generate_and_verify(exchange) is None

    @pytest.mark.asyncio
    async def test_invalid_proof_returns_none(self, witness, other_witness, exchange):
        client = make_client(
            lambda request: httpx.Response(200, json=make_raw_proof([other_witness])), [witness]
        )
        assert await client.generate_and_verify(exchange) is None
        assert client.proofs_rejected == 1

    @pytest.mark.asyncio
    async def test_garbage_signature_returns_none(self, witness, exchange):
        raw = make_raw_proof([witness])
        raw["signatures"] = ["0xdeadbeef"]
        client = make_client(lambda request: httpx.Response(200, json=raw), [witness])
        assert await client.generate_and_verify(exchange) is None
        assert client.proofs_rejected == 1

    @pytest.mark.asyncio
    async def test_transport_error_returns_none(self, witness, exchange):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = make_client(handler, [witness])
        assert await client.generate_and_verify(exchange) is None
