"""
Tests for analysis.attempt_runner module.

Tests cover:
- Prompt content
- Truncation around the tracked item
- Successful attempts (parse, match, truncate)
- Failures of any step turning into structured outcomes
- Optional standardization step
"""

import json

import pytest

from llm_rank_watcher.analysis.attempt_runner import (
    AttemptRunner,
    build_ranking_prompt,
    truncation_limit,
)
from llm_rank_watcher.config.providers import ProviderId
from llm_rank_watcher.exceptions import APIKeyMissingError, ProviderTimeoutError
from llm_rank_watcher.extractor.standardizer import NameStandardizer, StandardizationCache
from llm_rank_watcher.gateway.mock_gateway import MockGateway
from llm_rank_watcher.storage.models import Provider

OPENAI = Provider(
    id=1,
    canonical_id=ProviderId.OPENAI,
    name="OpenAI",
    default_model="gpt-5-mini",
    active=True,
)


def numbered(names):
    return "\n".join(f"{i}. {name}" for i, name in enumerate(names, start=1))


class TestBuildRankingPrompt:
    def test_contains_query_count_and_target(self):
        prompt = build_ranking_prompt("best bakeries in Cork", "Acme Bakery", 25)

        assert '"best bakeries in Cork"' in prompt
        assert "List exactly 25 businesses" in prompt
        assert 'write it exactly as "Acme Bakery"' in prompt


class TestTruncationLimit:
    @pytest.mark.parametrize(
        ("rank", "total", "expected"),
        [
            (1, 25, 5),
            (5, 25, 5),
            (6, 25, 10),
            (7, 25, 10),
            (23, 25, 25),
            (7, 8, 8),
            (None, 25, 25),
            (None, 0, 0),
        ],
    )
    def test_block_boundaries(self, rank, total, expected):
        assert truncation_limit(rank, total) == expected


class TestAttemptRunner:
    """Test suite for AttemptRunner.run()."""

    @pytest.mark.asyncio
    async def test_found_item_truncates_list(self):
        names = [f"Bakery {i}" for i in range(1, 26)]
        names[6] = "Acme Bakery"
        gateway = MockGateway(responses={"openai": numbered(names)})
        runner = AttemptRunner(gateway)

        outcome = await runner.run(OPENAI, "best bakeries in Cork", "Acme Bakery", 25)

        assert outcome.success
        assert outcome.found_rank == 7
        assert outcome.found_name == "Acme Bakery"
        assert len(outcome.ranked_names) == 10
        assert outcome.ranked_names[6] == "Acme Bakery"
        assert outcome.error is None

    @pytest.mark.asyncio
    async def test_missing_item_keeps_full_list(self):
        gateway = MockGateway(responses={"openai": numbered(["Globex", "Initech", "Umbrella"])})

        outcome = await AttemptRunner(gateway).run(OPENAI, "q", "Acme Bakery", 25)

        assert outcome.success
        assert outcome.found_rank is None
        assert outcome.found_name is None
        assert outcome.ranked_names == ["Globex", "Initech", "Umbrella"]

    @pytest.mark.asyncio
    async def test_fuzzy_match_on_variant_name(self):
        gateway = MockGateway(responses={"openai": "1. Globex\n2. The Acme Bakery Cork"})

        outcome = await AttemptRunner(gateway).run(OPENAI, "q", "Acme Bakery", 25)

        assert outcome.found_rank == 2
        assert outcome.found_name == "The Acme Bakery Cork"

    @pytest.mark.asyncio
    async def test_answer_without_list_is_a_success_with_no_names(self):
        gateway = MockGateway(responses={"openai": "Which city do you mean?"})

        outcome = await AttemptRunner(gateway).run(OPENAI, "q", "Acme", 25)

        assert outcome.success
        assert outcome.ranked_names == []
        assert outcome.found_rank is None

    @pytest.mark.asyncio
    async def test_call_uses_provider_model_and_settings(self):
        gateway = MockGateway(responses={"openai": "1. Acme"})
        runner = AttemptRunner(gateway, reasoning_effort="high", timeout=12.5)

        await runner.run(OPENAI, "best bakeries", "Acme", 10)

        call = gateway.calls[0]
        assert call.provider_id == ProviderId.OPENAI
        assert call.options.model == "gpt-5-mini"
        assert call.options.reasoning_effort == "high"
        assert call.options.timeout == 12.5
        assert "List exactly 10 businesses" in call.prompt

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            APIKeyMissingError("OpenAI API key not configured"),
            ProviderTimeoutError("LLM request timed out"),
            RuntimeError("unexpected"),
        ],
    )
    async def test_failures_become_outcomes(self, error):
        gateway = MockGateway(responses={"openai": error})

        outcome = await AttemptRunner(gateway).run(OPENAI, "q", "Acme", 25)

        assert not outcome.success
        assert outcome.error == str(error)
        assert outcome.ranked_names == []
        assert outcome.found_rank is None

    @pytest.mark.asyncio
    async def test_empty_error_message_uses_type_name(self):
        gateway = MockGateway(responses={"openai": TimeoutError()})

        outcome = await AttemptRunner(gateway).run(OPENAI, "q", "Acme", 25)

        assert outcome.error == "TimeoutError"

    @pytest.mark.asyncio
    async def test_standardizer_runs_before_matching(self):
        standardization = json.dumps(
            {
                "standardizations": [
                    {"original": "Globex", "standardized": "Globex"},
                    {"original": "ACME Bakehouse", "standardized": "Acme Bakery"},
                ]
            }
        )
        gateway = MockGateway(
            responses={
                "openai": "1. Globex\n2. ACME Bakehouse",
                "gemini": standardization,
            }
        )
        standardizer = NameStandardizer(gateway, StandardizationCache())
        runner = AttemptRunner(gateway, standardizer=standardizer)

        outcome = await runner.run(OPENAI, "q", "Acme Bakery", 25)

        assert outcome.ranked_names == ["Globex", "Acme Bakery"]
        assert outcome.found_rank == 2
        assert len(gateway.calls_for(ProviderId.GEMINI)) == 1
