#!/usr/bin/env python3
"""Compute provider access for the Oracle Responder.

This module sends chat-completion requests to the compute provider and builds
the HTTP exchange that the attestation service replays and proves.
"""

import logging
import re

import httpx

from .models import ComputeRequest, HttpExchange

logger = logging.getLogger(__name__)

# Everything up to and including the per-response "created" timestamp varies
# between our call and the attested replay, so it is not matched.
VOLATILE_PREFIX = re.compile(r'(.|\n)+"created": \d+,')


class ComputeError(Exception):
    """Raised when the compute provider call fails."""


def response_match_value(response_text: str) -> str:
    """Strip the volatile prefix from a completion response.

    Only the first occurrence is removed, matching the provider's layout where
    ``created`` precedes the model output.
    """
    return VOLATILE_PREFIX.sub("", response_text, count=1)


class ComputeClient:
    """Client for an OpenAI-compatible chat completions endpoint."""

    def __init__(
        self,
        completions_url: str,
        api_key: str,
        http_client: httpx.AsyncClient,
        timeout: float = 60.0
    ) -> None:
        """Initialize the ComputeClient.

        Args:
            completions_url: Full chat completions URL
            api_key: Bearer token for the provider
            http_client: Shared HTTP client
            timeout: Request timeout in seconds
        """
        self.completions_url = completions_url
        self._api_key = api_key
        self.http_client = http_client
        self.timeout = timeout

    def build_exchange(self, request: ComputeRequest, response_text: str | None = None) -> HttpExchange:
        """Build the exchange description for a compute request.

        Args:
            request: Parsed compute request
            response_text: Captured provider response; when given (even if
                empty), the private options constrain the attested response
                to contain it

        Returns:
            HttpExchange ready for attestation
        """
        public_options = {
            "method": "POST",
            "body": request.to_body(),
            "headers": {"Content-Type": "application/json"},
        }
        private_options: dict = {
            "headers": {"Authorization": f"Bearer {self._api_key}"},
        }
        if response_text is not None:
            private_options["responseMatches"] = [
                {"type": "contains", "value": response_match_value(response_text)}
            ]

        return HttpExchange(
            url=self.completions_url,
            public_options=public_options,
            private_options=private_options,
            response_text=response_text or "",
        )

    async def complete(self, request: ComputeRequest) -> HttpExchange:
        """Call the provider and capture its response.

        Args:
            request: Parsed compute request

        Returns:
            HttpExchange carrying the exact request body and response text

        Raises:
            ComputeError: On transport errors or a non-2xx response
        """
        exchange = self.build_exchange(request)
        headers = {
            **exchange.private_options["headers"],
            **exchange.public_options["headers"],
        }

        logger.debug(f"POST {self.completions_url} model={request.model}")
        try:
            response = await self.http_client.post(
                self.completions_url,
                content=exchange.public_options["body"],
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ComputeError(f"Compute provider request failed: {e}") from e

        logger.info(f"Compute provider answered with {len(response.text)} bytes")
        return self.build_exchange(request, response.text)
