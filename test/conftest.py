"""Shared fixtures for the Oracle Responder tests."""

import json

import base58
import nacl.signing
import pytest
from eth_account import Account

from oracle_responder.config import (
    AttestationConfig,
    BoundedRetryPolicy,
    ComputeConfig,
    LedgerConfig,
    MonitoringConfig,
    ResponderConfig,
    UnboundedRetryPolicy,
)
from oracle_responder.models import RequestEvent

OPERATOR = "operator.testnet"
PRODUCER = "producer.testnet"
ORACLE = "oracle.testnet"

WITNESS_KEY = "0x" + "11" * 32
OTHER_WITNESS_KEY = "0x" + "22" * 32


def make_private_key(seed: bytes = b"\x01" * 32) -> str:
    """Build an ``ed25519:<base58>`` keypair string from a seed."""
    signing_key = nacl.signing.SigningKey(seed)
    raw = seed + signing_key.verify_key.encode()
    return "ed25519:" + base58.b58encode(raw).decode("ascii")


def make_log_line(kind="request", standard="intear-oracle", version="1.0.0", **data) -> str:
    return "EVENT_JSON:" + json.dumps({
        "standard": standard,
        "version": version,
        "event": kind,
        "data": data,
    })


@pytest.fixture
def private_key():
    return make_private_key()


@pytest.fixture
def witness():
    return Account.from_key(WITNESS_KEY)


@pytest.fixture
def ledger_config(private_key):
    return LedgerConfig(
        rpc_url="https://rpc.testnet.near.org",
        archive_url="https://testnet.neardata.xyz",
        events_url="wss://ws-events-v3-testnet.intear.tech",
        account_id=OPERATOR,
        private_key=private_key,
        producer_contract=PRODUCER,
        oracle_contract=ORACLE,
    )


@pytest.fixture
def attestation_config(witness):
    return AttestationConfig(
        service_url="http://localhost:8080",
        app_id="0xF218B59D7794e32693f5D3236e011C233E249105",
        app_secret="secret",
        witness_addresses=(witness.address,),
    )


@pytest.fixture
def responder_config(ledger_config, attestation_config, tmp_path):
    return ResponderConfig(
        ledger=ledger_config,
        attestation=attestation_config,
        compute=ComputeConfig(api_url="https://api.openai.com", api_key="sk-test"),
        monitoring=MonitoringConfig(
            checkpoint_path=str(tmp_path / "last-processed-block.txt"),
            start_block_height=100,
            fetch_retry=UnboundedRetryPolicy(delay=0),
            fulfillment_retry=BoundedRetryPolicy(max_attempts=5, delay=0),
        ),
    )


@pytest.fixture
def compute_request_data():
    return json.dumps({
        "model": "gpt-4o",
        "system_message": "You are a helpful assistant.",
        "user_message": "What is 2+2?",
        "seed": 42,
    })


@pytest.fixture
def request_event(compute_request_data):
    return RequestEvent(
        request_id="7",
        producer_id=PRODUCER,
        request_data=compute_request_data,
        consumer_id="consumer.testnet",
        block_height=100,
    )


def make_raw_proof(
    signers,
    provider="http",
    parameters='{"method":"POST","url":"https://api.openai.com/v1/chat/completions"}',
    context="",
    owner="0xF218B59D7794e32693f5D3236e011C233E249105",
    legacy=False,
):
    """Build a zkFetch proof signed by the given eth_account accounts."""
    from eth_account.messages import encode_defunct

    from oracle_responder.attestation_client import ProofVerifier
    from oracle_responder.models import Claim, ClaimInfo

    identifier = ProofVerifier.claim_identifier(ClaimInfo(provider, parameters, context))
    claim = Claim(
        identifier=identifier.removeprefix("0x"),
        owner=owner.lower().removeprefix("0x"),
        epoch=1,
        timestamp_s=1717000000,
    )
    message = encode_defunct(text=ProofVerifier.signed_message(claim))
    signatures = ["0x" + signer.sign_message(message).signature.hex().removeprefix("0x") for signer in signers]

    claim_data = {
        "provider": provider,
        "parameters": parameters,
        "context": context,
        "identifier": identifier,
        "owner": owner,
        "epoch": 1,
        "timestampS": 1717000000,
    }
    if legacy:
        return {"claim": claim_data, "signatures": {"claimSignature": signatures[0]}}
    return {"claimData": claim_data, "signatures": signatures, "witnesses": []}
