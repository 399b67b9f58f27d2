import pytest

from prwarden_core.config import DEFAULT_CONFIG


@pytest.fixture
def config():
    return {**DEFAULT_CONFIG, "exclude": [], "github_token": "t", "anthropic_api_key": "k", "openai_api_key": None}
