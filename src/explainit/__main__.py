"""
Command line entry point.

Usage:
    python -m explainit run "React hooks" --depth 2 --persona Novice
    python -m explainit resume <session-id>
    python -m explainit sessions --all
    python -m explainit show <session-id>
    python -m explainit delete <session-id>
"""

import argparse
import asyncio
import sys
from typing import List, Optional

from loguru import logger
from rich.console import Console
from rich.table import Table

from explainit.config import list_personas, load_config
from explainit.core.session_registry import Session, SessionRegistry
from explainit.exceptions import ExplainItError
from explainit.providers.litellm_provider import LiteLLMContentProvider
from explainit.workflow.events import Event
from explainit.workflow.models import SynthesisResult
from explainit.workflow.orchestrator import Orchestrator
from explainit.workflow.types import EventTopic, SessionStatus

console = Console()

STATUS_STYLES = {
    SessionStatus.RUNNING: "cyan",
    SessionStatus.COMPLETED: "green",
    SessionStatus.FAILED: "red",
    SessionStatus.INTERRUPTED: "yellow",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="explainit", description="Turn a topic into hierarchical documentation")
    parser.add_argument("--config", type=str, help="Path to a YAML configuration file")
    parser.add_argument("--log-level", type=str, help="Override the configured log level")
    commands = parser.add_subparsers(dest="command", required=True)

    run = commands.add_parser("run", help="Generate documentation for a topic")
    run.add_argument("topic", help="Topic, or a free-form question with --clarify")
    run.add_argument("--depth", type=int, help="Decomposition depth (1-5)")
    run.add_argument("--persona", type=str, help=f"Audience: {', '.join(list_personas())}")
    run.add_argument("--clarify", action="store_true", help="Let the model turn the query into a topic first")

    resume = commands.add_parser("resume", help="Continue an interrupted or failed session")
    resume.add_argument("session_id")

    sessions = commands.add_parser("sessions", help="List sessions")
    sessions.add_argument("--all", action="store_true", help="Include completed and failed sessions")

    show = commands.add_parser("show", help="Show what a session left on disk")
    show.add_argument("session_id")

    delete = commands.add_parser("delete", help="Remove a session from the registry (files are kept)")
    delete.add_argument("session_id")

    return parser


def _print_event(event: Event):
    if event.topic == EventTopic.NODE and event.type == "node_status" and event.data.get("status") == "done":
        suffix = " (cached)" if event.data.get("cached") else ""
        console.print(f"[green]done[/green] {event.data['node_id']}{suffix}", highlight=False)
    elif event.topic == EventTopic.ERROR and event.type == "warning":
        console.print(f"[yellow]warning[/yellow] {event.data.get('message')}", highlight=False)
    elif event.topic == EventTopic.INPUT:
        console.print(f"[bold yellow]?[/bold yellow] {event.data.get('prompt')}", highlight=False)


def _print_result(result: SynthesisResult, session: Optional[Session]):
    stats = result.stats
    console.rule("[bold]Done")
    if session is not None:
        console.print(f"Session: [bold]{session.id}[/bold]")
        console.print(f"Output:  {session.folder / 'docs'}")
    console.print(
        f"{stats.page_count} page(s), {stats.failed_count} failed, "
        f"{stats.word_count} words, ~{stats.reading_time} min read"
    )


def _sessions_table(sessions: List[Session]) -> Table:
    table = Table(title="Sessions")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Topic")
    table.add_column("Status")
    table.add_column("Persona")
    table.add_column("Depth", justify="right")
    table.add_column("Created")
    for session in sessions:
        style = STATUS_STYLES.get(session.status, "")
        table.add_row(
            session.id,
            session.topic,
            f"[{style}]{session.status}[/{style}]" if style else str(session.status),
            session.persona,
            str(session.depth),
            session.created_at.strftime("%Y-%m-%d %H:%M"),
        )
    return table


def _run_workflow(orchestrator: Orchestrator, coro) -> int:
    started: List[str] = []
    orchestrator.events.subscribe_all(_print_event)
    orchestrator.events.subscribe(
        EventTopic.WORKFLOW,
        lambda event: started.append(event.session_id) if event.type == "session_started" else None,
    )
    try:
        result = asyncio.run(coro)
    except KeyboardInterrupt:
        orchestrator.interrupt_all()
        console.print("[yellow]Interrupted. Resume later with 'explainit resume <session-id>'.[/yellow]")
        return 130
    except ExplainItError as e:
        console.print(f"[red]Failed:[/red] {e}")
        return 1

    session = orchestrator.registry.get_session(started[-1]) if started else None
    _print_result(result, session)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config, configure_logging=False)
        if args.log_level:
            config = config.merge_with({"logging": {"level": args.log_level}})
        config.setup_logging()
    except ExplainItError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        return 1

    registry = SessionRegistry.from_config(config)

    if args.command == "sessions":
        sessions = registry.list_sessions() if args.all else registry.get_active_sessions()
        if not sessions:
            console.print("No sessions." if args.all else "No active sessions. Use --all to list every session.")
        else:
            console.print(_sessions_table(sessions))
        return 0

    if args.command == "show":
        try:
            data = registry.load_resume_data(args.session_id)
        except ExplainItError as e:
            console.print(f"[red]{e}[/red]")
            return 1
        console.print(_sessions_table([data.session]))
        console.print(f"Folder: {data.session.folder_path}")
        if data.session.error:
            console.print(f"[red]Error:[/red] {data.session.error}")
        if data.state is not None:
            console.print(
                f"Phase: {data.state.current_phase}, "
                f"{len(data.state.explanations)} explanation(s), "
                f"{len(data.state.failed_concepts)} failed"
            )
            for warning in data.state.warnings:
                console.print(f"[yellow]warning[/yellow] {warning}", highlight=False)
        if data.logs:
            console.rule("Last log lines")
            for line in data.logs[-10:]:
                console.print(line, highlight=False, markup=False)
        return 0

    if args.command == "delete":
        if registry.get_session(args.session_id) is None:
            console.print(f"[red]Unknown session {args.session_id}[/red]")
            return 1
        registry.delete_session(args.session_id)
        console.print(f"Removed {args.session_id} from the registry.")
        return 0

    orchestrator = Orchestrator(LiteLLMContentProvider(config.llm), registry, config)

    if args.command == "run":
        if args.clarify:
            coro = orchestrator.start(args.topic, persona=args.persona, depth=args.depth)
        else:
            coro = orchestrator.run(args.topic, depth=args.depth, persona=args.persona)
        return _run_workflow(orchestrator, coro)

    if args.command == "resume":
        return _run_workflow(orchestrator, orchestrator.resume(args.session_id))

    logger.error(f"Unknown command {args.command}")
    return 2


if __name__ == "__main__":
    sys.exit(main())
