"""Shared fixtures: a scripted language model, an in-memory store and a fixed clock."""

import json
from datetime import datetime, timezone

import pytest

from structmem.utils.bedrock_llm import LLMClient, LLMUnavailableError
from structmem.utils.config import MemoryConfig
from structmem.utils.local_store import LocalStore

FIXED_NOW = datetime(2026, 2, 3, 10, 30, tzinfo=timezone.utc)


class ScriptedLLM(LLMClient):
    """Returns queued responses in order and records every prompt it was given."""

    def __init__(self, *responses):
        self.responses = [r if isinstance(r, str) else json.dumps(r) for r in responses]
        self.calls = []

    def queue(self, *responses):
        self.responses.extend(r if isinstance(r, str) else json.dumps(r) for r in responses)

    def complete(self, system_prompt: str, user_content: str) -> str:
        self.calls.append((system_prompt, user_content))
        if not self.responses:
            raise AssertionError(f'Unexpected model call: {user_content[:200]!r}')
        return self.responses.pop(0)


class UnavailableLLM(LLMClient):
    """A model capability without credentials."""

    def complete(self, system_prompt: str, user_content: str) -> str:
        raise LLMUnavailableError('No AWS credentials found for Amazon Bedrock.')

    def ensure_available(self) -> None:
        raise LLMUnavailableError('No AWS credentials found for Amazon Bedrock.')


@pytest.fixture()
def llm():
    return ScriptedLLM()


@pytest.fixture()
def store():
    return LocalStore()


@pytest.fixture()
def now():
    return FIXED_NOW


@pytest.fixture()
def memory_config():
    return MemoryConfig(scan_limit=1000,
                        recall_limit=20,
                        sample_key_limit=20,
                        default_intent='remember',
                        category_ttls={'scratchpad': '24h', 'sessions': '7d', 'interactions': '90d'})


@pytest.fixture()
def service(store, llm, memory_config):
    from structmem.services.memory_management import MemoryManagementService
    return MemoryManagementService(store=store, llm=llm, clock=lambda: FIXED_NOW, memory_config=memory_config)
