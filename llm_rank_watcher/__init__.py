"""
LLM Rank Watcher: measure where LLM answers rank a tracked business.

Each analysis run asks every active provider every active query several
times, finds the tracked item in the numbered answers, and aggregates
competitor standings per query into SQLite.
"""

__version__ = "0.1.0"
