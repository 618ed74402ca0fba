#!/usr/bin/env python3
"""Entry point for the Oracle Responder service.

This module provides the main entry point for the responder that watches the
NEAR oracle contract for requests addressed to the configured producer and
answers them with attested LLM completions.
"""

import argparse
import asyncio
import logging
import os
import sys

# Configure logging before any other imports create loggers
def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_level: int = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

# Get logger for this module
logger = logging.getLogger(__name__)

from oracle_responder.responder import OracleResponder
from oracle_responder.utils.checkpoint_store import CheckpointError


async def main() -> None:
    """Main entry point for the Oracle Responder service.

    Parses startup arguments, loads configuration from environment,
    and runs the responder until interrupted.

    Raises:
        SystemExit: On configuration, checkpoint or runtime errors
    """
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Oracle Responder - Answer NEAR oracle requests with attested LLM completions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  ACCOUNT_ID             - Operator account that signs submissions
  PRIVATE_KEY            - Operator key (ed25519:<base58>)
  CONTRACT_ID            - Producer contract (submit target)
  ORACLE_CONTRACT_ID     - Oracle contract emitting requests
  APP_ID / APP_SECRET    - Attestation application credentials
  ATTESTOR_ADDRESSES     - Comma-separated trusted attestor addresses
  OPENAI_API_KEY         - Compute provider API key
  INGESTION_MODE         - replay or live (can be overridden with --mode)
  START_BLOCK_HEIGHT     - Replay start without checkpoint (default: 42376888)
  LOG_LEVEL              - Logging level (can be overridden with --log-level)
        """
    )
    parser.add_argument(
        "--mode",
        default=os.environ.get("INGESTION_MODE", "replay"),
        choices=["replay", "live"],
        help="Ingestion mode: replay blocks from the archive or follow the live event stream"
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: INFO)"
    )
    args: argparse.Namespace = parser.parse_args()

    setup_logging(args.log_level)

    logger.info(f"=== Oracle Responder Starting ({args.mode.upper()} MODE) ===")
    logger.info("Loading configuration from environment...")

    try:
        responder: OracleResponder = OracleResponder.from_env(mode=args.mode)
        logger.info("Responder created, starting main loop...")
        await responder.run()

    except ValueError as e:
        logger.error(f"Configuration Error: {e}")
        logger.error("Please check your environment variables:")
        logger.error("  - ACCOUNT_ID: Operator account")
        logger.error("  - PRIVATE_KEY: Operator key in ed25519:<base58> form")
        logger.error("  - CONTRACT_ID: Producer contract")
        logger.error("  - ORACLE_CONTRACT_ID: Oracle contract")
        logger.error("  - APP_ID, APP_SECRET: Attestation credentials")
        logger.error("  - ATTESTOR_ADDRESSES: Trusted attestor addresses")
        logger.error("  - OPENAI_API_KEY: Compute provider key")
        sys.exit(1)

    except CheckpointError as e:
        logger.error(f"Checkpoint Error: {e}")
        sys.exit(1)

    except KeyboardInterrupt:
        logger.info("\nReceived interrupt signal, shutting down gracefully...")
        sys.exit(0)

    except Exception as e:
        logger.error(f"Fatal Error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
