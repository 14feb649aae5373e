"""On-chain market submission."""

from .abi import PREDICTION_MARKET_ABI, load_abi
from .submission import MarketSubmissionService, signer_lock

__all__ = [
    "PREDICTION_MARKET_ABI",
    "MarketSubmissionService",
    "load_abi",
    "signer_lock",
]
