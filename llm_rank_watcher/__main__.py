"""
Entry point for running LLM Rank Watcher as a module.

Examples:
    python -m llm_rank_watcher --help
    python -m llm_rank_watcher run --config examples/rank.config.yaml --dry-run
"""

from llm_rank_watcher.cli import app

if __name__ == "__main__":
    app()
