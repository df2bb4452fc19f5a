"""CLI entrypoint for docpilot."""

from __future__ import annotations

import difflib
import logging
import sys
from pathlib import Path
from typing import Optional

import click

from docpilot.core.exceptions import DocPilotError
from docpilot.core.factory import ComponentBundle, ComponentFactory
from docpilot.core.models import (
    DecisionRecord,
    ExecutionResult,
    TaskPlan,
    TaskSummary,
    WorkflowState,
)
from docpilot.db.memory import MemoryDocumentStore
from docpilot.db.store import DocumentStore
from docpilot.orchestrator.events import EventSink, JsonlEventSink
from docpilot.orchestrator.loop import Orchestrator


def _setup_logging(verbose: bool = False, env: Optional[str] = None) -> None:
    """Apply logging configuration from config/default.yaml."""
    from docpilot.core.config import load_config

    try:
        config = load_config(env=env)
        level_name = config.logging.level
        fmt = config.logging.format
    except DocPilotError:
        level_name = "INFO"
        fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format=fmt, stream=sys.stderr)


def render_diff(original: str, modified: str, name: str = "document") -> str:
    lines = difflib.unified_diff(
        original.splitlines(keepends=True),
        modified.splitlines(keepends=True),
        fromfile=f"{name} (original)",
        tofile=f"{name} (modified)",
    )
    return "".join(line if line.endswith("\n") else line + "\n" for line in lines)


class ConsoleEventSink(EventSink):
    """Prints workflow progress to the terminal."""

    def state_changed(self, state: WorkflowState) -> None:
        click.echo(click.style(f"[{state.value}]", fg="cyan"))

    def decision_recorded(self, decision: DecisionRecord) -> None:
        detail = decision.payload.get("message") or decision.payload.get("reason") or ""
        operation = decision.payload.get("operation")
        if operation:
            detail = f"{detail} -> {operation.get('option')}"
        color = "red" if decision.kind.value == "operation_failed" else "white"
        click.echo(click.style(f"  decision #{decision.iteration} {decision.kind.value}: {detail}", fg=color))

    def operation_completed(self, result: ExecutionResult) -> None:
        if result.success:
            note = " (cached)" if result.skipped else ""
            click.echo(click.style(f"  ok   {result.operation}{note}", fg="green"))
        else:
            click.echo(click.style(f"  fail {result.operation}: {result.error}", fg="yellow"))

    def task_plan_ready(self, plan: TaskPlan) -> None:
        click.echo(click.style(f"Plan: {plan.task_message}", bold=True))
        for step in plan.steps:
            click.echo(f"  {step.id}. ({step.category.value}) {step.description}")

    def summary_ready(self, summary: TaskSummary) -> None:
        status = "succeeded" if summary.success else "failed"
        click.echo(
            f"Run {status}: {summary.iterations} iteration(s), "
            f"{len(summary.operations)} operation(s), {summary.duration_seconds:.1f}s"
        )

    def ai_summary_ready(self, text: str) -> None:
        click.echo(click.style("\nSummary:", bold=True))
        click.echo(text)


def _bundle(ctx: click.Context, store: Optional[DocumentStore] = None) -> ComponentBundle:
    """Build components, honoring store/completion overrides placed in ctx.obj."""
    obj = ctx.obj
    try:
        bundle = ComponentFactory.create(env=obj.get("env"), store=store if store is not None else obj.get("store"))
    except DocPilotError as exc:
        raise click.ClickException(str(exc)) from exc
    if obj.get("completion") is not None:
        bundle.completion = obj["completion"]
    return bundle


def _run_agent(
    bundle: ComponentBundle,
    doc_id: str,
    request: str,
    yes: bool,
) -> tuple[Orchestrator, bool]:
    """Run one task and settle the confirmation. Returns (orchestrator, committed)."""
    doc = bundle.store.get_by_id(doc_id)
    if doc is None:
        raise click.ClickException(f"Document not found: {doc_id}")

    orchestrator = ComponentFactory.build_orchestrator(bundle, events=ConsoleEventSink())
    try:
        orchestrator.start_task(request, doc_id, doc.content)
    except DocPilotError as exc:
        raise click.ClickException(f"Run failed: {exc}") from exc

    if orchestrator.state is WorkflowState.ERROR:
        raise click.ClickException("Run ended in error; all changes were rolled back.")
    if orchestrator.state is not WorkflowState.PENDING_CONFIRMATION:
        click.echo("No content changes.")
        return orchestrator, False

    preview = orchestrator.pending_preview
    assert preview is not None
    click.echo(click.style("\nProposed changes:", bold=True))
    click.echo(render_diff(preview.original_content, preview.modified_content, preview.document_id))

    if yes or click.confirm("Apply these changes?", default=False):
        orchestrator.confirm_changes()
        click.echo(click.style("Changes committed.", fg="green", bold=True))
        return orchestrator, True
    orchestrator.reject_changes()
    click.echo(click.style("Changes rejected and rolled back.", fg="yellow"))
    return orchestrator, False


@click.group()
@click.option("--verbose", is_flag=True, default=False, help="Enable verbose (DEBUG) logging.")
@click.option("--env", required=False, default=None, help="Optional config overlay environment.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, env: Optional[str]) -> None:
    """docpilot: LLM-driven Markdown document editing."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["env"] = env
    _setup_logging(verbose=verbose, env=env)


@cli.command("functions")
@click.pass_context
def functions(ctx: click.Context) -> None:
    """Print the operation documentation given to the model."""
    bundle = _bundle(ctx)
    try:
        click.echo(ComponentFactory.build_orchestrator(bundle).initialize())
    finally:
        ComponentFactory.close(bundle)


@cli.command("documents")
@click.pass_context
def documents(ctx: click.Context) -> None:
    """List documents in the configured store."""
    bundle = _bundle(ctx)
    try:
        docs = bundle.store.list_all()
    except DocPilotError as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        ComponentFactory.close(bundle)
    if not docs:
        click.echo("No documents.")
        return
    for doc in docs:
        click.echo(f"{doc.id}  {doc.title}  (updated {doc.updated_at:%Y-%m-%d %H:%M})")


@cli.command("show")
@click.argument("doc_id")
@click.pass_context
def show(ctx: click.Context, doc_id: str) -> None:
    """Print a document."""
    bundle = _bundle(ctx)
    try:
        doc = bundle.store.get_by_id(doc_id)
    except DocPilotError as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        ComponentFactory.close(bundle)
    if doc is None:
        raise click.ClickException(f"Document not found: {doc_id}")
    click.echo(click.style(f"# {doc.title}  [{doc.id}]", bold=True))
    click.echo(doc.content)


@cli.command("import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--title", default=None, help="Document title (default: file name).")
@click.pass_context
def import_document(ctx: click.Context, path: Path, title: Optional[str]) -> None:
    """Create a document from a Markdown file."""
    bundle = _bundle(ctx)
    try:
        doc = bundle.store.create(title or path.stem, path.read_text(encoding="utf-8"))
    except DocPilotError as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        ComponentFactory.close(bundle)
    click.echo(f"Imported {path} as {doc.id}")


@cli.command("run")
@click.argument("doc_id")
@click.argument("request")
@click.option("--yes", is_flag=True, default=False, help="Apply changes without asking.")
@click.option(
    "--events",
    "events_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Append workflow events as JSONL to this file.",
)
@click.pass_context
def run(ctx: click.Context, doc_id: str, request: str, yes: bool, events_path: Optional[Path]) -> None:
    """Run the agent on a stored document."""
    bundle = _bundle(ctx)
    if events_path is not None:
        bundle.jsonl_sink = JsonlEventSink(jsonl_path=events_path)
    try:
        _run_agent(bundle, doc_id, request, yes)
    finally:
        ComponentFactory.close(bundle)


@cli.command("edit-file")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("request")
@click.option("--yes", is_flag=True, default=False, help="Apply changes without asking.")
@click.pass_context
def edit_file(ctx: click.Context, path: Path, request: str, yes: bool) -> None:
    """Run the agent on a Markdown file; the file is written only when confirmed."""
    store = MemoryDocumentStore()
    doc = store.create(path.stem, path.read_text(encoding="utf-8"), doc_id=path.stem)
    bundle = _bundle(ctx, store=store)
    try:
        _, committed = _run_agent(bundle, doc.id, request, yes)
    finally:
        ComponentFactory.close(bundle)
    if committed:
        updated = store.get_by_id(doc.id)
        assert updated is not None
        path.write_text(updated.content, encoding="utf-8")
        click.echo(f"Wrote {path}")


def main() -> None:
    """Entry point used by `docpilot` console script."""
    from dotenv import load_dotenv
    load_dotenv(Path.cwd() / ".env")
    cli()


if __name__ == "__main__":
    main()
