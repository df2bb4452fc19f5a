"""Shared fixtures for docpilot tests.

Model calls go through ScriptedModel, a plain callable that answers each
prompt kind from its own queue. Store tests use the in-memory store; the
PostgreSQL store is exercised only when a database is reachable.
"""

from __future__ import annotations

import json
import os
from collections import deque
from pathlib import Path
from typing import Any, Optional

import pytest
from dotenv import load_dotenv

# Load .env from project root so DATABASE_URL is available
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

from docpilot.core.config import AppConfig, DatabaseConfig, WorkflowConfig, load_config
from docpilot.core.exceptions import LLMError
from docpilot.core.models import Document
from docpilot.db.memory import MemoryDocumentStore


# ---------------------------------------------------------------------------
# Service availability checks
# ---------------------------------------------------------------------------

def _get_db_config() -> DatabaseConfig:
    """Build a DatabaseConfig from environment or defaults."""
    db_url = os.getenv("DATABASE_URL")
    if db_url and db_url.startswith("postgresql://"):
        from urllib.parse import urlparse
        parsed = urlparse(db_url)
        return DatabaseConfig(
            host=parsed.hostname or "localhost",
            port=parsed.port or 5432,
            dbname=(parsed.path[1:] if parsed.path and len(parsed.path) > 1 else "docpilot"),
            user=parsed.username or "docpilot",
            password=parsed.password or "docpilot",
        )
    return DatabaseConfig()


def _postgres_available() -> bool:
    """Check if PostgreSQL is reachable."""
    try:
        import psycopg
        conn = psycopg.connect(_get_db_config().connection_string, connect_timeout=5)
        conn.close()
        return True
    except Exception:
        return False


requires_postgres = pytest.mark.skipif(
    not _postgres_available(),
    reason="PostgreSQL not available",
)


# ---------------------------------------------------------------------------
# Scripted model
# ---------------------------------------------------------------------------

def decision(
    option: Optional[str] = None,
    args: Optional[list[Any]] = None,
    complete: bool = False,
    message: str = "ok",
) -> str:
    """Render a decision the way a model would, wrapped in prose."""
    body: dict[str, Any] = {"message": message, "needsAction": option is not None, "isComplete": complete}
    if option is not None:
        body["operation"] = {"option": option, "args": args or []}
    return f"Here is my decision:\n{json.dumps(body)}\n"


def verdict(needs_more_work: bool, reason: str = "checked") -> str:
    return json.dumps({"needsMoreWork": needs_more_work, "reason": reason})


class ScriptedModel:
    """Completion callable answering from per-kind queues.

    Prompt kinds: plan, analysis, validation, write_required, summary.
    An empty analysis queue answers "task complete"; other empty queues
    answer with an empty string. A queued exception instance is raised.
    """

    def __init__(self, **queues: list[Any]):
        self.queues: dict[str, deque] = {k: deque(v) for k, v in queues.items()}
        self.calls: list[tuple[str, str]] = []

    @staticmethod
    def kind_of(prompt: str) -> str:
        if "Break the user's document request" in prompt:
            return "plan"
        if "nothing has been written yet" in prompt:
            return "write_required"
        if '"needsMoreWork"' in prompt:
            return "validation"
        if "Summarize in 2-3 sentences" in prompt:
            return "summary"
        return "analysis"

    def count(self, kind: str) -> int:
        return sum(1 for k, _ in self.calls if k == kind)

    def __call__(self, prompt: str) -> str:
        kind = self.kind_of(prompt)
        self.calls.append((kind, prompt))
        queue = self.queues.get(kind)
        if queue:
            answer = queue.popleft()
        elif kind == "analysis":
            answer = decision(complete=True, message="task complete")
        else:
            answer = ""
        if isinstance(answer, Exception):
            raise answer
        return answer


class UnreachableModel:
    """Completion callable whose transport always fails."""

    def __init__(self) -> None:
        self.calls = 0

    def __call__(self, prompt: str) -> str:
        self.calls += 1
        raise LLMError("connection refused")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def config_dir() -> Path:
    return Path(__file__).parent.parent / "config"


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig(workflow=WorkflowConfig(max_iterations=10, max_retries=3, max_validation_rounds=3))


@pytest.fixture
def loaded_config(config_dir: Path) -> AppConfig:
    return load_config(config_dir=config_dir)


@pytest.fixture
def sample_docs() -> list[Document]:
    return [
        Document(id="doc-1", title="Notes", content="a\nb\nc"),
        Document(id="doc-2", title="Meeting", content="# Meeting\nAgenda item one\nAgenda item two"),
        Document(id="doc-3", title="Ideas", content="- idea one\n- idea two"),
    ]


@pytest.fixture
def store(sample_docs: list[Document]) -> MemoryDocumentStore:
    return MemoryDocumentStore(sample_docs)


@pytest.fixture
def db_config() -> DatabaseConfig:
    return _get_db_config()


@pytest.fixture
def db_engine(db_config):
    """Real PostgreSQL engine: creates the schema, yields, then closes."""
    from docpilot.db.engine import DatabaseEngine
    engine = DatabaseEngine(db_config)
    engine.initialize_schema()
    yield engine
    engine.close()
