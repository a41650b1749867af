"""Pytest configuration and fixtures."""

import os

import pytest

from tests.fakes.fake_embedder import FakeEmbedder
from tests.fakes.fake_index import FakeTriggerIndex
from tests.fakes.fake_llm import FakeLLM
from tests.fakes.fake_sink import FakeCompletionSink
from tests.fakes.fake_store import FakeBehaviorStore


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    os.environ["SUPABASE_URL"] = "https://test.supabase.co"
    os.environ["SUPABASE_SERVICE_ROLE_KEY"] = "test-key"
    os.environ["OPENAI_API_KEY"] = "test-openai-key"
    os.environ["ANTHROPIC_API_KEY"] = "test-anthropic-key"
    os.environ["BEHAVIOR_ENGINE_ENV"] = "test"


@pytest.fixture
def store():
    return FakeBehaviorStore()


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def sink():
    return FakeCompletionSink()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def index():
    return FakeTriggerIndex()
