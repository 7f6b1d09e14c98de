"""
Shared pytest fixtures for the promptstore test suite.

Provides:
    - prompts_root: a temporary prompts directory (not created)
    - store_config: a StoreConfig with short lock retries for fast tests
    - store: an initialized EntityStore on that config
    - sample_entity_data: a valid demo/greet entity document
    - structured_entity_data: an entity with input/output schemas
"""

import sys
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Ensure promptstore/ is importable regardless of where pytest is invoked
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).resolve().parent.parent

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from promptstore.config import StoreConfig  # noqa: E402
from promptstore.entity_store import EntityStore  # noqa: E402


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def prompts_root(tmp_path):
    """Return the prompts directory inside a per-test temp dir."""
    return tmp_path / "prompts"


@pytest.fixture
def store_config(tmp_path, prompts_root):
    """Return a config whose lock retries are short but plentiful.

    Concurrent tests queue several writers on one lock, so the retry budget
    is large and the delay small.
    """
    return StoreConfig(
        prompts_dir=prompts_root,
        output_dir=tmp_path / "generated",
        lock_retries=100,
        lock_retry_delay=0.01,
    )


@pytest.fixture
async def store(store_config):
    """Return an initialized EntityStore on an empty prompts directory."""
    entity_store = EntityStore(store_config)
    await entity_store.initialize()
    return entity_store


@pytest.fixture
def sample_entity_data():
    """Return a minimal valid entity document for demo/greet."""
    return {
        "category": "demo",
        "name": "greet",
        "description": "Greets someone by name",
        "version": "1.0.0",
        "template": "Hi {{who}}",
    }


@pytest.fixture
def structured_entity_data():
    """Return a full entity document with a structured output."""
    return {
        "category": "support",
        "name": "reply_draft",
        "description": "Drafts a reply to a customer ticket",
        "version": "1.0.0",
        "template": "Customer {{customer}} wrote: {{message}}. Tone: {{tone}}.",
        "parameters": ["customer", "message", "tone"],
        "metadata": {
            "created": "2024-01-01T00:00:00+00:00",
            "lastModified": "2024-01-01T00:00:00+00:00",
            "author": "Dana",
        },
        "outputType": "structured",
        "inputSchema": {
            "type": "object",
            "properties": {
                "customer": {"type": "string", "description": "Customer name"},
                "message": {"type": "string", "minLength": 1},
                "tone": {"enum": ["friendly", "formal"]},
                "priority": {"type": "integer", "minimum": 1, "maximum": 5},
            },
            "required": ["customer", "message"],
        },
        "outputSchema": {
            "type": "object",
            "properties": {
                "subject": {"type": "string"},
                "body": {"type": "string"},
                "tags": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["body"],
        },
        "configuration": {
            "modelName": "default-model",
            "temperature": 0.3,
            "maxTokens": 400,
        },
        "tags": ["support"],
    }
