"""
Provider gateway package for LLM Rank Watcher.

Public API:
    - ProviderGateway: httpx-based gateway over every supported provider
    - MockGateway: scripted gateway with the same call() contract
    - CallOptions: per-call model/timeout/sampling options
    - TRANSPORTS: provider id -> request builder + text extractor
"""

from llm_rank_watcher.gateway.gateway import LLMGateway, ProviderGateway
from llm_rank_watcher.gateway.mock_gateway import MockGateway
from llm_rank_watcher.gateway.transports import TRANSPORTS, CallOptions

__all__ = [
    "CallOptions",
    "LLMGateway",
    "MockGateway",
    "ProviderGateway",
    "TRANSPORTS",
]
