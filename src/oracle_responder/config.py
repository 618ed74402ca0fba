#!/usr/bin/env python3
"""Configuration management for the Oracle Responder.

This module provides type-safe configuration dataclasses with validation
for the responder service. Configuration is loaded from environment variables
with sensible defaults where appropriate.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from typing import ClassVar
from urllib.parse import urlparse

import base58
from web3 import Web3

# Get logger for this module
logger = logging.getLogger(__name__)

ACCOUNT_ID_PATTERN = re.compile(r"^(([a-z\d]+[\-_])*[a-z\d]+\.)*([a-z\d]+[\-_])*[a-z\d]+$")


def validate_account_id(account_id: str, env_name: str) -> None:
    """Validate a NEAR account ID.

    Args:
        account_id: Account ID to validate
        env_name: Environment variable name used in error messages

    Raises:
        ValueError: If the account ID is missing or malformed
    """
    if not account_id:
        raise ValueError(f"Account ID is required ({env_name})")
    if not 2 <= len(account_id) <= 64 or not ACCOUNT_ID_PATTERN.match(account_id):
        raise ValueError(f"Invalid account ID for {env_name}: {account_id}")


def _validate_url(url: str, schemes: tuple[str, ...], what: str) -> None:
    if not url:
        raise ValueError(f"{what} is required")
    parsed = urlparse(url)
    if parsed.scheme not in schemes:
        raise ValueError(
            f"Invalid {what} scheme: {parsed.scheme}. "
            f"Expected {', '.join(schemes)}"
        )


@dataclass(frozen=True, slots=True)
class LedgerConfig:
    """Configuration for the NEAR ledger endpoints and identities.

    Attributes:
        rpc_url: JSON-RPC endpoint used for access keys and transaction broadcast
        archive_url: Block archive base URL used in replay mode
        events_url: Event stream base URL used in live mode
        account_id: Operator account that signs fulfillment transactions
        private_key: Operator key in ``ed25519:<base58>`` form
        producer_contract: Producer contract receiving ``submit`` calls
        oracle_contract: Oracle contract emitting request events
        event_standard: NEP-297 standard tag of oracle events
    """

    rpc_url: str
    archive_url: str
    events_url: str
    account_id: str
    private_key: str = field(repr=False)
    producer_contract: str
    oracle_contract: str
    event_standard: str = "intear-oracle"

    KEY_PREFIX: ClassVar[str] = "ed25519:"

    def __post_init__(self) -> None:
        """Validate ledger configuration."""
        _validate_url(self.rpc_url, ("http", "https"), "NEAR RPC URL (NEAR_RPC_URL)")
        _validate_url(self.archive_url, ("http", "https"), "Block archive URL (BLOCK_ARCHIVE_URL)")
        _validate_url(self.events_url, ("ws", "wss"), "Event stream URL (EVENTS_URL)")

        validate_account_id(self.account_id, "ACCOUNT_ID")
        validate_account_id(self.producer_contract, "CONTRACT_ID")
        validate_account_id(self.oracle_contract, "ORACLE_CONTRACT_ID")

        if not self.event_standard:
            raise ValueError("Event standard must not be empty (ORACLE_EVENT_STANDARD)")

        if not self.private_key:
            raise ValueError("Private key is required (PRIVATE_KEY)")
        if not self.private_key.startswith(self.KEY_PREFIX):
            raise ValueError(
                f"Invalid private key format. Expected '{self.KEY_PREFIX}<base58>'"
            )
        try:
            raw = base58.b58decode(self.private_key[len(self.KEY_PREFIX):])
        except ValueError:
            raise ValueError("Invalid private key format. Must be base58") from None
        if len(raw) not in (32, 64):
            raise ValueError(
                f"Invalid private key length. Expected 32 or 64 bytes, got {len(raw)}"
            )


@dataclass(frozen=True, slots=True)
class AttestationConfig:
    """Configuration for the zkFetch attestation service.

    Attributes:
        service_url: Base URL of the zkFetch prover
        app_id: Application ID registered with the attestation provider
        app_secret: Application secret
        witness_addresses: Attestor addresses whose signatures must be present
    """

    service_url: str
    app_id: str
    app_secret: str = field(repr=False)
    witness_addresses: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        """Validate attestation configuration."""
        _validate_url(self.service_url, ("http", "https"), "Attestation URL (ATTESTATION_URL)")

        if not self.app_id:
            raise ValueError("Attestation app ID is required (APP_ID)")
        if not self.app_secret:
            raise ValueError("Attestation app secret is required (APP_SECRET)")

        if not self.witness_addresses:
            raise ValueError("At least one attestor address is required (ATTESTOR_ADDRESSES)")
        for address in self.witness_addresses:
            if not Web3.is_address(address):
                raise ValueError(f"Invalid attestor address: {address}")

        # Recovered signers are compared in lowercase
        object.__setattr__(
            self, 'witness_addresses', tuple(a.lower() for a in self.witness_addresses)
        )


@dataclass(frozen=True, slots=True)
class ComputeConfig:
    """Configuration for the compute provider (chat completions endpoint)."""

    api_url: str
    api_key: str = field(repr=False)

    COMPLETIONS_PATH: ClassVar[str] = "/v1/chat/completions"

    def __post_init__(self) -> None:
        """Validate compute configuration."""
        _validate_url(self.api_url, ("http", "https"), "Compute API URL (COMPUTE_API_URL)")
        if not self.api_key:
            raise ValueError("Compute provider API key is required (OPENAI_API_KEY)")

    @property
    def completions_url(self) -> str:
        return self.api_url.rstrip("/") + self.COMPLETIONS_PATH


@dataclass(frozen=True, slots=True)
class UnboundedRetryPolicy:
    """Retry forever with a fixed delay. Used for block fetches."""

    delay: float = 1.0

    def __post_init__(self) -> None:
        if self.delay < 0:
            raise ValueError(f"Retry delay must be non-negative, got {self.delay}")


@dataclass(frozen=True, slots=True)
class BoundedRetryPolicy:
    """Retry a fixed number of attempts with a fixed delay. Used per request."""

    max_attempts: int = 5
    delay: float = 0.5

    def __post_init__(self) -> None:
        if self.max_attempts <= 0:
            raise ValueError(f"Max attempts must be positive, got {self.max_attempts}")
        if self.delay < 0:
            raise ValueError(f"Retry delay must be non-negative, got {self.delay}")


@dataclass(frozen=True, slots=True)
class MonitoringConfig:
    """Configuration for ingestion and fulfillment."""

    mode: str = "replay"
    start_block_height: int = 42376888
    checkpoint_path: str = "last-processed-block.txt"
    request_timeout: int = 60  # HTTP request timeout in seconds
    max_concurrent_workers: int = 64
    filter_by_producer: bool = False
    fetch_retry: UnboundedRetryPolicy = field(default_factory=UnboundedRetryPolicy)
    fulfillment_retry: BoundedRetryPolicy = field(default_factory=BoundedRetryPolicy)

    SUPPORTED_MODES: ClassVar[set[str]] = {'replay', 'live'}

    def __post_init__(self) -> None:
        """Validate monitoring configuration."""
        if self.mode not in self.SUPPORTED_MODES:
            raise ValueError(
                f"Unsupported ingestion mode: {self.mode}. "
                f"Supported modes: {', '.join(sorted(self.SUPPORTED_MODES))}"
            )

        if self.start_block_height < 0:
            raise ValueError(
                f"Start block height must be non-negative, got {self.start_block_height}"
            )

        if not self.checkpoint_path:
            raise ValueError("Checkpoint path must not be empty (CHECKPOINT_PATH)")

        if self.request_timeout <= 0:
            raise ValueError(f"Request timeout must be positive, got {self.request_timeout}")
        if self.request_timeout > 600:
            raise ValueError(f"Request timeout too long (max 600s), got {self.request_timeout}")

        if self.max_concurrent_workers <= 0:
            raise ValueError(
                f"Max concurrent workers must be positive, got {self.max_concurrent_workers}"
            )


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name, str(default))
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None


@dataclass(frozen=True, slots=True)
class ResponderConfig:
    """Main configuration for the Oracle Responder.

    Attributes:
        ledger: NEAR endpoints and account identities
        attestation: zkFetch service and trusted attestors
        compute: Compute provider endpoint and credentials
        monitoring: Ingestion mode, checkpointing and retry settings
    """

    ledger: LedgerConfig
    attestation: AttestationConfig
    compute: ComputeConfig
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    @classmethod
    def from_env(cls, mode: str | None = None) -> "ResponderConfig":
        """Load configuration from environment variables.

        Args:
            mode: Ingestion mode override ('replay' or 'live')

        Returns:
            ResponderConfig instance with loaded values

        Raises:
            ValueError: If required environment variables are missing or invalid
        """
        ledger_config = LedgerConfig(
            rpc_url=os.environ.get("NEAR_RPC_URL", "https://rpc.testnet.near.org"),
            archive_url=os.environ.get("BLOCK_ARCHIVE_URL", "https://testnet.neardata.xyz"),
            events_url=os.environ.get("EVENTS_URL", "wss://ws-events-v3-testnet.intear.tech"),
            account_id=os.environ.get("ACCOUNT_ID", ""),
            private_key=os.environ.get("PRIVATE_KEY", ""),
            producer_contract=os.environ.get("CONTRACT_ID", ""),
            oracle_contract=os.environ.get("ORACLE_CONTRACT_ID", ""),
            event_standard=os.environ.get("ORACLE_EVENT_STANDARD", "intear-oracle"),
        )

        witnesses = tuple(
            address.strip()
            for address in os.environ.get("ATTESTOR_ADDRESSES", "").split(",")
            if address.strip()
        )
        attestation_config = AttestationConfig(
            service_url=os.environ.get("ATTESTATION_URL", "http://localhost:8080"),
            app_id=os.environ.get("APP_ID", ""),
            app_secret=os.environ.get("APP_SECRET", ""),
            witness_addresses=witnesses,
        )

        compute_config = ComputeConfig(
            api_url=os.environ.get("COMPUTE_API_URL", "https://api.openai.com"),
            api_key=os.environ.get("OPENAI_API_KEY", ""),
        )

        monitoring_config = MonitoringConfig(
            mode=mode or os.environ.get("INGESTION_MODE", "replay"),
            start_block_height=_env_int("START_BLOCK_HEIGHT", 42376888),
            checkpoint_path=os.environ.get("CHECKPOINT_PATH", "last-processed-block.txt"),
            request_timeout=_env_int("REQUEST_TIMEOUT", 60),
            max_concurrent_workers=_env_int("MAX_CONCURRENT_WORKERS", 64),
            filter_by_producer=_env_bool("FILTER_BY_PRODUCER"),
        )

        return cls(
            ledger=ledger_config,
            attestation=attestation_config,
            compute=compute_config,
            monitoring=monitoring_config,
        )

    def log_config(self) -> None:
        """Log the configuration in a readable format for debugging."""
        logger.info("=" * 60)
        logger.info("Oracle Responder Configuration")
        logger.info("=" * 60)

        logger.info("Ledger:")
        logger.info(f"  RPC URL: {self.ledger.rpc_url}")
        logger.info(f"  Block Archive: {self.ledger.archive_url}")
        logger.info(f"  Event Stream: {self.ledger.events_url}")
        logger.info(f"  Operator Account: {self.ledger.account_id}")
        logger.info("  Operator Key: [CONFIGURED]")
        logger.info(f"  Producer Contract: {self.ledger.producer_contract}")
        logger.info(f"  Oracle Contract: {self.ledger.oracle_contract}")
        logger.info(f"  Event Standard: {self.ledger.event_standard}")

        logger.info("Attestation:")
        logger.info(f"  Service URL: {self.attestation.service_url}")
        logger.info(f"  App ID: {self.attestation.app_id}")
        logger.info("  App Secret: [CONFIGURED]")
        logger.info(f"  Attestors: {', '.join(self.attestation.witness_addresses)}")

        logger.info("Compute Provider:")
        logger.info(f"  Endpoint: {self.compute.completions_url}")
        logger.info("  API Key: [CONFIGURED]")

        logger.info("Monitoring Settings:")
        logger.info(f"  Mode: {self.monitoring.mode.upper()}")
        if self.monitoring.mode == "replay":
            logger.info(f"  Start Height: {self.monitoring.start_block_height}")
            logger.info(f"  Checkpoint: {self.monitoring.checkpoint_path}")
        else:
            logger.info(f"  Filter By Producer: {self.monitoring.filter_by_producer}")
        logger.info(f"  Request Timeout: {self.monitoring.request_timeout} seconds")
        logger.info(f"  Max Concurrent Workers: {self.monitoring.max_concurrent_workers}")
        logger.info(
            f"  Fulfillment Retry: {self.monitoring.fulfillment_retry.max_attempts} attempts, "
            f"{self.monitoring.fulfillment_retry.delay}s apart"
        )
        logger.info(f"  Block Fetch Retry: every {self.monitoring.fetch_retry.delay}s, unbounded")

        logger.info("=" * 60)
