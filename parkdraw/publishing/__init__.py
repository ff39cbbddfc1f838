"""Publishing of lottery results to the public results store."""

from .api import PublicResultsClient
from .utils import build_choice_live_payload, build_results_payload, public_priority

__all__ = [
    "PublicResultsClient",
    "build_results_payload",
    "build_choice_live_payload",
    "public_priority",
]
