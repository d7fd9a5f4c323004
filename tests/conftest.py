from __future__ import annotations

import pytest

from fakes import FakeCompletionGateway, FakeSearchGateway
from researcher.config import Settings


@pytest.fixture
def config() -> Settings:
    return Settings(
        openrouter_api_key="test",
        serper_api_key="test",
        max_research_iterations=3,
        refine_window_steps=3,
        analysis_max_results=5,
        synthesis_analysis_steps=2,
        daily_completion_limit=0,
        gateway_timeout_seconds=5,
    )


@pytest.fixture
def search_gateway() -> FakeSearchGateway:
    return FakeSearchGateway()


@pytest.fixture
def completion_gateway() -> FakeCompletionGateway:
    return FakeCompletionGateway()
