"""Component factory for docpilot.

Creates and wires the infrastructure (config, document store, LLM client,
event sinks) so the orchestrator receives fully-initialized dependencies.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from docpilot.core.config import AppConfig, PromptLoader, default_config_dir, load_config
from docpilot.core.exceptions import ConfigError
from docpilot.db.engine import DatabaseEngine
from docpilot.db.memory import MemoryDocumentStore
from docpilot.db.repository import PostgresDocumentStore
from docpilot.db.store import DocumentStore
from docpilot.llm.client import ChatClient, CompletionCaller
from docpilot.llm.prompts import PromptBuilder
from docpilot.orchestrator.events import EventSink, FanoutEventSink, JsonlEventSink
from docpilot.orchestrator.loop import Orchestrator

logger = logging.getLogger("docpilot.factory")


@dataclass
class ComponentBundle:
    """Container for all initialized infrastructure components."""

    config: AppConfig
    store: DocumentStore
    llm_client: ChatClient
    completion: CompletionCaller
    prompts: PromptBuilder
    db_engine: Optional[DatabaseEngine] = None
    jsonl_sink: Optional[JsonlEventSink] = None


class ComponentFactory:
    """Factory for creating and wiring docpilot infrastructure.

    Usage:
        bundle = ComponentFactory.create(config_dir=Path("config"))
        orchestrator = ComponentFactory.build_orchestrator(bundle)
    """

    @staticmethod
    def create(
        config_dir: Optional[Path] = None,
        env: Optional[str] = None,
        api_key: Optional[str] = None,
        initialize_schema: bool = True,
        store: Optional[DocumentStore] = None,
    ) -> ComponentBundle:
        """Create and wire all infrastructure components.

        Args:
            config_dir: Path to config/ directory. Default: project root/config.
            env: Environment name for config overlay (e.g., "test").
            api_key: Model API key. Falls back to DOCPILOT_API_KEY / OPENAI_API_KEY.
            initialize_schema: Whether to run schema.sql when the PostgreSQL
                store is selected.
            store: Use this store instead of the configured backend.

        Returns:
            ComponentBundle with all components ready to use.
        """
        logger.info("Initializing components...")

        config = load_config(config_dir=config_dir, env=env)

        # --- Store ---
        db_engine = None
        if store is None:
            backend = config.store.backend.lower()
            if backend == "memory":
                store = MemoryDocumentStore()
            elif backend in ("postgresql", "postgres"):
                db_engine = DatabaseEngine(config.database)
                if initialize_schema:
                    db_engine.initialize_schema()
                store = PostgresDocumentStore(db_engine)
            else:
                raise ConfigError(f"Unknown store backend: {config.store.backend}")
        logger.info("Document store ready (%s)", type(store).__name__)

        # --- LLM ---
        llm_client = ChatClient(config=config.llm, api_key=api_key)
        completion = CompletionCaller(llm_client)
        logger.info("LLM client configured (base_url=%s model=%s)", config.llm.base_url, config.llm.model)

        prompts = PromptBuilder(PromptLoader((config_dir or default_config_dir()) / "prompts"))

        # --- Events ---
        jsonl_sink = None
        if config.events.jsonl_path:
            jsonl_sink = JsonlEventSink(
                jsonl_path=Path(config.events.jsonl_path),
                metrics_path=Path(config.events.metrics_path) if config.events.metrics_path else None,
            )

        logger.info("All components initialized")
        return ComponentBundle(
            config=config,
            store=store,
            llm_client=llm_client,
            completion=completion,
            prompts=prompts,
            db_engine=db_engine,
            jsonl_sink=jsonl_sink,
        )

    @staticmethod
    def build_orchestrator(
        bundle: ComponentBundle,
        events: Optional[EventSink] = None,
    ) -> Orchestrator:
        sinks = [s for s in (events, bundle.jsonl_sink) if s is not None]
        return Orchestrator(
            store=bundle.store,
            complete=bundle.completion,
            config=bundle.config,
            events=FanoutEventSink(sinks) if sinks else None,
            prompts=bundle.prompts,
        )

    @staticmethod
    def close(bundle: ComponentBundle) -> None:
        """Cleanly shut down all components."""
        bundle.llm_client.close()
        if bundle.db_engine is not None:
            bundle.db_engine.close()
        logger.info("All components shut down")
