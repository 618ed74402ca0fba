"""
Oracle Responder package.

Fulfills NEAR oracle requests with attested LLM completions.
"""

from .config import ResponderConfig
from .event_decoder import EventDecoder
from .fulfillment_worker import FulfillmentWorker
from .models import ProofBundle, RequestEvent
from .responder import OracleResponder

__all__ = [
    "ResponderConfig",
    "OracleResponder",
    "EventDecoder",
    "FulfillmentWorker",
    "RequestEvent",
    "ProofBundle",
]
__version__ = "0.1.0"
