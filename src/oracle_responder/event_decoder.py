#!/usr/bin/env python3
"""Event decoding module for the Oracle Responder.

This module turns raw NEP-297 log lines (replay mode) and event-stream records
(live mode) into typed oracle events, dropping anything that does not belong
to the configured oracle event standard.
"""

import json
import logging
from collections.abc import Mapping
from typing import Any

from .models import OracleEvent, ProducerEvent, RequestEvent, parse_producer_fee

# Get logger for this module
logger = logging.getLogger(__name__)


class EventDecoder:
    """Decodes and filters oracle events.

    This class is responsible for:
    - Parsing ``EVENT_JSON:`` log lines and event-stream records
    - Matching the event standard, kind and major version
    - Building typed RequestEvent / ProducerEvent objects
    - Deciding whether a request is addressed to this producer
    - Maintaining metrics on decoded events

    Decoding never raises and performs no I/O.
    """

    EVENT_LOG_PREFIX: str = "EVENT_JSON:"
    REQUEST_EVENT: str = "request"
    PRODUCER_EVENTS: frozenset[str] = frozenset({"producer_created", "producer_updated"})
    SUPPORTED_MAJOR_VERSION: int = 1

    def __init__(
        self,
        event_standard: str,
        producer_id: str | None = None,
        oracle_contract: str | None = None
    ) -> None:
        """Initialize the EventDecoder.

        Args:
            event_standard: NEP-297 standard tag of oracle events
            producer_id: Producer identity requests must be addressed to
            oracle_contract: Contract that must have emitted stream events
        """
        self.event_standard = event_standard
        self.producer_id = producer_id
        self.oracle_contract = oracle_contract

        # Metrics tracking
        self.events_decoded = 0
        self.events_filtered = 0
        self.events_invalid = 0

    def decode_log(
        self,
        line: str,
        block_height: int | None = None,
        receipt_id: str | None = None
    ) -> OracleEvent | None:
        """Decode a raw execution-outcome log line.

        Args:
            line: Log line as emitted by the contract
            block_height: Height of the block containing the log
            receipt_id: Receipt that produced the log

        Returns:
            Decoded event, or None if the line is not a matching oracle event
        """
        if not line.startswith(self.EVENT_LOG_PREFIX):
            return None

        try:
            envelope = json.loads(line[len(self.EVENT_LOG_PREFIX):])
            if not isinstance(envelope, dict):
                raise ValueError("Event envelope must be a JSON object")

            return self._decode(
                standard=envelope.get("standard"),
                version=envelope.get("version"),
                kind=envelope.get("event"),
                data=envelope.get("data"),
                block_height=block_height,
                receipt_id=receipt_id,
            )
        except (ValueError, TypeError, KeyError) as e:
            self.events_invalid += 1
            logger.error(f"Failed to decode event log at block {block_height}: {e}")
            return None

    def decode_stream_event(self, message: Mapping[str, Any]) -> OracleEvent | None:
        """Decode an event record pushed by the event stream.

        Args:
            message: Record with ``event_standard``, ``event_event``,
                ``event_version`` and ``event_data`` fields

        Returns:
            Decoded event, or None if the record is not a matching oracle event
        """
        try:
            if not isinstance(message, Mapping):
                raise ValueError("Stream event must be a JSON object")

            if self.oracle_contract and message.get("account_id") != self.oracle_contract:
                self.events_filtered += 1
                logger.debug(f"Filtered stream event from {message.get('account_id')}")
                return None

            return self._decode(
                standard=message.get("event_standard"),
                version=message.get("event_version"),
                kind=message.get("event_event"),
                data=message.get("event_data"),
                block_height=message.get("block_height"),
                receipt_id=message.get("receipt_id"),
            )
        except (ValueError, TypeError, KeyError) as e:
            self.events_invalid += 1
            logger.error(f"Failed to decode stream event: {e}")
            return None

    def accepts(self, event: OracleEvent | None) -> bool:
        """Check whether an event is a request addressed to this producer.

        Args:
            event: Decoded event

        Returns:
            True if the event should be fulfilled by this responder
        """
        if not isinstance(event, RequestEvent):
            return False
        if self.producer_id is not None and event.producer_id != self.producer_id:
            self.events_filtered += 1
            logger.debug(
                f"Skipping request {event.request_id} for producer {event.producer_id} "
                f"(configured for {self.producer_id})"
            )
            return False
        return True

    def _decode(
        self,
        standard: Any,
        version: Any,
        kind: Any,
        data: Any,
        block_height: int | None,
        receipt_id: str | None
    ) -> OracleEvent | None:
        if standard != self.event_standard:
            return None

        if kind != self.REQUEST_EVENT and kind not in self.PRODUCER_EVENTS:
            return None

        if not self._is_supported_version(version):
            self.events_filtered += 1
            logger.warning(f"Ignoring {kind} event with unsupported version {version!r}")
            return None

        if not isinstance(data, dict):
            raise ValueError(f"Event data for '{kind}' must be a JSON object")

        if kind == self.REQUEST_EVENT:
            event: OracleEvent = self._parse_request(data, block_height, receipt_id)
        else:
            event = self._parse_producer(kind, data)

        self.events_decoded += 1
        return event

    def _is_supported_version(self, version: Any) -> bool:
        if not isinstance(version, str):
            return False
        major, _, _ = version.partition(".")
        return major.isdigit() and int(major) == self.SUPPORTED_MAJOR_VERSION

    @staticmethod
    def _parse_request(
        data: dict[str, Any],
        block_height: int | None,
        receipt_id: str | None
    ) -> RequestEvent:
        request_id = data["request_id"]
        if isinstance(request_id, bool) or not isinstance(request_id, (str, int)):
            raise ValueError(f"Invalid request_id: {request_id!r}")

        producer_id = data["producer_id"]
        request_data = data["request_data"]
        if not isinstance(producer_id, str) or not isinstance(request_data, str):
            raise ValueError("producer_id and request_data must be strings")

        return RequestEvent(
            request_id=str(request_id),
            producer_id=producer_id,
            request_data=request_data,
            consumer_id=data.get("consumer_id"),
            block_height=block_height,
            receipt_id=receipt_id,
        )

    @staticmethod
    def _parse_producer(kind: str, data: dict[str, Any]) -> ProducerEvent:
        return ProducerEvent(
            kind=kind,
            account_id=data["account_id"],
            name=data.get("name", ""),
            description=data.get("description", ""),
            fee=parse_producer_fee(data.get("fee", "None")),
            example_input=data.get("example_input"),
            requests_succeded=int(data.get("requests_succeded", 0)),
            requests_timed_out=int(data.get("requests_timed_out", 0)),
            send_callback=bool(data.get("send_callback", False)),
        )

    def get_metrics(self) -> dict[str, int]:
        """Get current decoding metrics.

        Returns:
            Dictionary of metric names to values
        """
        return {
            "events_decoded": self.events_decoded,
            "events_filtered": self.events_filtered,
            "events_invalid": self.events_invalid,
        }

    def log_metrics(self) -> None:
        """Log current decoding metrics."""
        metrics = self.get_metrics()
        logger.info(
            f"EventDecoder Metrics: "
            f"Decoded={metrics['events_decoded']}, "
            f"Filtered={metrics['events_filtered']}, "
            f"Invalid={metrics['events_invalid']}"
        )
