"""Square webhook verification and dispatch."""

from .dispatcher import DispatchOutcome, WebhookDispatcher
from .verifier import compute_square_signature, extract_signature, verify_square_signature

__all__ = [
    "DispatchOutcome",
    "WebhookDispatcher",
    "compute_square_signature",
    "extract_signature",
    "verify_square_signature",
]
