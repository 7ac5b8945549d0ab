"""
certeval CLI

Command-line interface for certificate evaluation.

Usage:
    # Interactive conversation (attach documents with /upload <path>)
    python -m certeval chat

    # Store and inspect criteria versions
    python -m certeval criteria store --session demo --file criteria.yaml
    python -m certeval criteria list --session demo
    python -m certeval criteria show <criteria-id>

    # Evaluation history and diffs
    python -m certeval evaluations history --session demo
    python -m certeval evaluations compare <old-id> <new-id>

    # Score a checks file offline
    python -m certeval score checks.yaml

    # Propose criteria for a document
    python -m certeval generate-criteria --file certificate.pdf
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table

from utils.exceptions import NotFoundError

console = Console()


def _load_config(args: argparse.Namespace):
    from .config import EvaluatorConfig

    if getattr(args, "config", None):
        config = EvaluatorConfig.from_yaml(Path(args.config))
    else:
        config = EvaluatorConfig.from_env()
    if getattr(args, "model", None):
        config.model = args.model
    if getattr(args, "provider", None):
        config.provider = args.provider
    if getattr(args, "storage", None):
        config.storage_backend = args.storage
    config.validate()
    return config


def _read_data_file(path: Path) -> Any:
    """Load a YAML or JSON file."""
    with open(path) as f:
        if path.suffix.lower() == ".json":
            return json.load(f)
        return yaml.safe_load(f)


def _criteria_table(criteria: Dict[str, Any], title: str) -> Table:
    table = Table(title=title)
    table.add_column("Criterion", style="cyan")
    table.add_column("Value", style="green")
    table.add_column("Weight", style="yellow")
    table.add_column("Required", style="blue")
    for name, entry in criteria.items():
        entry = entry if isinstance(entry, dict) else {"value": entry}
        table.add_row(
            name,
            "" if entry.get("value") is None else str(entry.get("value")),
            "" if entry.get("weight") is None else str(entry.get("weight")),
            "no" if entry.get("required") is False else "yes",
        )
    return table


async def cmd_chat(args: argparse.Namespace) -> int:
    """Run an interactive conversation."""
    from .conversation import UploadedFile
    from .runtime import build_runtime

    runtime = build_runtime(_load_config(args))
    if not await runtime.provider.health_check():
        console.print(f"[red]Error: Could not connect to {runtime.config.provider}[/red]")
        return 1

    session_id = args.session
    console.print("[cyan]Certificate evaluation chat[/cyan]")
    console.print("[dim]Attach a document with /upload <path>; leave with /quit[/dim]\n")

    while True:
        try:
            line = console.input("[bold]you>[/bold] ").strip()
        except (EOFError, KeyboardInterrupt):
            console.print()
            break
        if not line:
            continue
        if line in ("/quit", "/exit"):
            break

        upload = None
        text = line
        if line.startswith("/upload"):
            path = Path(line[len("/upload"):].strip()).expanduser()
            upload = UploadedFile(path)
            text = ""

        result = await runtime.orchestrator.handle_turn(session_id, text, upload)
        session_id = result.session_id
        console.print(Markdown(result.reply))
        console.print(f"[dim]({result.status.value}, session {session_id})[/dim]\n")

    stats = runtime.provider.get_stats()
    console.print(f"[dim]{stats['request_count']} model calls, {stats['total_tokens']} tokens ({stats['model']})[/dim]")
    if session_id:
        console.print(f"[dim]Session: {session_id}[/dim]")
    return 0


async def cmd_criteria(args: argparse.Namespace) -> int:
    """Store, list or show criteria versions."""
    from .runtime import build_runtime

    runtime = build_runtime(_load_config(args))
    store = runtime.criteria_store

    if args.action == "store":
        if not args.session or not args.file:
            console.print("[red]criteria store needs --session and --file[/red]")
            return 1
        data = _read_data_file(Path(args.file))
        criteria = data.get("criteria", data) if isinstance(data, dict) else data
        description = args.description or (data.get("description", "") if isinstance(data, dict) else "")
        threshold = args.threshold if args.threshold is not None else (
            data.get("threshold") if isinstance(data, dict) else None
        )
        stored = store.store(args.session, criteria, description, threshold)
        console.print(f"[green]Stored criteria {stored.id}[/green] (threshold {stored.threshold:g})")
        return 0

    if args.action == "list":
        if not args.session:
            console.print("[red]criteria list needs --session[/red]")
            return 1
        history = store.list_history(args.session)
        if not history:
            console.print("[yellow]No criteria stored for this session[/yellow]")
            return 0
        table = Table(title=f"Criteria for {args.session}")
        table.add_column("ID", style="cyan")
        table.add_column("Created", style="green")
        table.add_column("Criteria", style="yellow")
        table.add_column("Threshold", style="blue")
        for cs in history:
            table.add_row(cs.id, cs.created_at.strftime("%Y-%m-%d %H:%M:%S"), ", ".join(cs.criteria), f"{cs.threshold:g}")
        console.print(table)
        return 0

    if not args.id:
        console.print("[red]criteria show needs a criteria id[/red]")
        return 1
    cs = store.require(args.id)
    console.print(_criteria_table(cs.criteria, f"Criteria {cs.id}"))
    if cs.description:
        console.print(f"[bold]Description:[/bold] {cs.description}")
    console.print(f"[bold]Threshold:[/bold] {cs.threshold:g}")
    return 0


def _resolve_document(runtime, session_id: str, document: Optional[str]) -> Optional[str]:
    """Accept a document id or its per-session number ("2" or "#2")."""
    if not document or not document.lstrip("#").isdigit():
        return document
    found = runtime.sessions.get_document_by_index(session_id, int(document.lstrip("#")))
    if found is None:
        raise NotFoundError(f"Session {session_id} has no document #{document.lstrip('#')}")
    return found.id


async def cmd_evaluations(args: argparse.Namespace) -> int:
    """Show evaluation history or compare two evaluations."""
    from .runtime import build_runtime

    runtime = build_runtime(_load_config(args))
    store = runtime.evaluation_store

    if args.action == "history":
        if not args.session:
            console.print("[red]evaluations history needs --session[/red]")
            return 1
        history = store.get_history(args.session, _resolve_document(runtime, args.session, args.document))
        if not history:
            console.print("[yellow]No evaluations for this session[/yellow]")
            return 0
        table = Table(title=f"Evaluations for {args.session}")
        table.add_column("ID", style="cyan")
        table.add_column("Created", style="green")
        table.add_column("Score", style="yellow")
        table.add_column("Result", style="blue")
        table.add_column("Criteria", style="magenta")
        for ev in history:
            result = "[green]PASS[/green]" if ev.passed else "[red]FAIL[/red]"
            table.add_row(ev.id, ev.created_at.strftime("%Y-%m-%d %H:%M:%S"), f"{ev.score:.2f}", result, ev.criteria_id)
        console.print(table)
        return 0

    if len(args.ids) != 2:
        console.print("[red]evaluations compare needs two evaluation ids[/red]")
        return 1
    comparison = store.compare(args.ids[0], args.ids[1])
    console.print(f"[bold]Score delta:[/bold] {comparison.score_delta:+.2f}")
    console.print(f"[bold]Status changed:[/bold] {'yes' if comparison.status_changed else 'no'}")
    console.print(f"[bold]Criteria modified:[/bold] {', '.join(comparison.criteria_modified) or 'none'}")
    for change in comparison.check_changes:
        if change.passed_changed:
            icon = "[green]✓[/green]" if change.new_passed else "[red]✗[/red]"
            console.print(f"  {icon} {change.criterion}")
    return 0


async def cmd_score(args: argparse.Namespace) -> int:
    """Score a checks file without any collaborator."""
    from .scoring import score

    data = _read_data_file(Path(args.file))
    if not isinstance(data, dict) or "checks" not in data:
        console.print("[red]Checks file must contain a 'checks' list[/red]")
        return 1
    threshold = args.threshold if args.threshold is not None else data.get("threshold")
    result = score(data["checks"], data.get("criteria") or {}, threshold)

    table = Table(title="Score Breakdown")
    table.add_column("Criterion", style="cyan")
    table.add_column("Weight", style="yellow")
    table.add_column("Required", style="blue")
    table.add_column("Passed", style="green")
    table.add_column("Contribution", style="magenta")
    for row in result.breakdown:
        table.add_row(
            row.criterion,
            f"{row.weight:g}",
            "yes" if row.required else "no",
            "[green]✓[/green]" if row.passed else "[red]✗[/red]",
            f"{row.sub_score:.2f}",
        )
    console.print(table)
    status = "[green]PASS[/green]" if result.passed else "[red]FAIL[/red]"
    console.print(f"\n{status} {result.message}")

    if args.json:
        console.print_json(json.dumps(result.to_dict()))
    return 0 if result.passed else 2


async def cmd_generate_criteria(args: argparse.Namespace) -> int:
    """Propose criteria from a document."""
    from .collaborators import TextExtractor
    from .runtime import build_runtime

    runtime = build_runtime(_load_config(args))
    if not await runtime.provider.health_check():
        console.print(f"[red]Error: Could not connect to {runtime.config.provider}[/red]")
        return 1

    session = runtime.sessions.get_or_create(args.session)
    document_id = None
    if args.file:
        path = Path(args.file)
        text = await TextExtractor().extract_text(path)
        document = runtime.sessions.add_document(session.id, path.name)
        await runtime.retriever.index_document(session.id, document.id, text, {"document_name": path.name})
        document_id = document.id

    criteria_set = await runtime.generator.generate(session.id, document_id)
    console.print(_criteria_table(criteria_set.criteria, f"Generated criteria {criteria_set.id}"))
    if criteria_set.description:
        console.print(f"[bold]Description:[/bold] {criteria_set.description}")
    console.print(f"[bold]Threshold:[/bold] {criteria_set.threshold:g}")
    console.print(f"[dim]Session: {session.id}[/dim]")
    return 0


def _add_runtime_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", "-c", help="Path to evaluator config YAML")
    parser.add_argument("--storage", choices=["memory", "json"], help="Storage backend")


def main() -> int:
    """Main CLI entry point."""
    from config import LOG_DIR, LOG_LEVEL, validate_config
    from utils.exceptions import CertEvalError
    from utils.logging_config import setup_logging
    from .providers import ProviderFactory

    parser = argparse.ArgumentParser(
        prog="certeval",
        description="Conversational certificate evaluation",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Log to the console")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")
    providers = ProviderFactory.available_providers()

    # chat
    chat_parser = subparsers.add_parser("chat", help="Interactive evaluation conversation")
    _add_runtime_options(chat_parser)
    chat_parser.add_argument("--session", "-s", help="Resume an existing session")
    chat_parser.add_argument("--model", "-m", help="Model name")
    chat_parser.add_argument("--provider", "-p", choices=providers, help="Language-model provider")

    # criteria
    criteria_parser = subparsers.add_parser("criteria", help="Manage criteria versions")
    _add_runtime_options(criteria_parser)
    criteria_parser.add_argument("action", choices=["store", "list", "show"], help="Action to perform")
    criteria_parser.add_argument("id", nargs="?", help="Criteria id (show)")
    criteria_parser.add_argument("--session", "-s", help="Session id")
    criteria_parser.add_argument("--file", "-f", help="YAML/JSON criteria file (store)")
    criteria_parser.add_argument("--description", "-d", default="", help="Criteria description")
    criteria_parser.add_argument("--threshold", "-t", type=float, help="Pass threshold (0-100)")

    # evaluations
    eval_parser = subparsers.add_parser("evaluations", help="Inspect evaluation history")
    _add_runtime_options(eval_parser)
    eval_parser.add_argument("action", choices=["history", "compare"], help="Action to perform")
    eval_parser.add_argument("ids", nargs="*", help="Evaluation ids (compare: old new)")
    eval_parser.add_argument("--session", "-s", help="Session id")
    eval_parser.add_argument("--document", help="Restrict history to one document (id or #number)")

    # score
    score_parser = subparsers.add_parser("score", help="Score a YAML/JSON checks file")
    score_parser.add_argument("file", help="File with 'checks', optional 'criteria' and 'threshold'")
    score_parser.add_argument("--threshold", "-t", type=float, help="Override the pass threshold")
    score_parser.add_argument("--json", action="store_true", help="Also print the result as JSON")

    # generate-criteria
    gen_parser = subparsers.add_parser("generate-criteria", help="Propose criteria from a document")
    _add_runtime_options(gen_parser)
    gen_parser.add_argument("--file", "-f", help="Document to index first")
    gen_parser.add_argument("--session", "-s", help="Session id")
    gen_parser.add_argument("--model", "-m", help="Model name")
    gen_parser.add_argument("--provider", "-p", choices=providers, help="Language-model provider")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return 0

    validate_config()
    setup_logging(level="DEBUG" if args.verbose else LOG_LEVEL, log_dir=LOG_DIR, console=args.verbose)

    commands = {
        "chat": cmd_chat,
        "criteria": cmd_criteria,
        "evaluations": cmd_evaluations,
        "score": cmd_score,
        "generate-criteria": cmd_generate_criteria,
    }
    try:
        return asyncio.run(commands[args.command](args))
    except CertEvalError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
