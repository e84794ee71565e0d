"""
Configuration package: provider catalogue, pydantic schema and YAML loader.
"""

from llm_rank_watcher.config.loader import load_config
from llm_rank_watcher.config.providers import ProviderId, normalize_provider
from llm_rank_watcher.config.schema import AnalysisSettings, RuntimeConfig

__all__ = [
    "AnalysisSettings",
    "ProviderId",
    "RuntimeConfig",
    "load_config",
    "normalize_provider",
]
