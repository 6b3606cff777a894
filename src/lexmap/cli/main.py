"""LexMap CLI: index a codebase, query its structure and check it against policy."""

from __future__ import annotations

import functools
import json
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any, Optional, TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from lexmap import __version__
from lexmap.config.settings import (
    DEFAULT_LEXBRAIN_URL,
    LEXBRAIN_ENV,
    STORE_KINDS,
    IndexSettings,
    default_store_path,
    parse_command_option,
)
from lexmap.core.graph.model import CodeGraph
from lexmap.core.policy.model import DEFAULT_POLICY_FILE, Policy, load_policy
from lexmap.core.storage.base import FrameStore
from lexmap.errors import LexMapError

logger = logging.getLogger(__name__)

console = Console()
err_console = Console(stderr=True)

EXIT_VIOLATIONS = 1
EXIT_ERROR = 2

app = typer.Typer(
    name="lexmap",
    help="LexMap: policy-aware structural code map.",
    no_args_is_help=True,
)

_PATH_ARG = typer.Argument(Path("."), help="Path to the repository.")
_STORE_OPT = typer.Option("kuzu", "--store", help=f"Frame store: {'|'.join(STORE_KINDS)}.")
_LEXBRAIN_OPT = typer.Option(
    DEFAULT_LEXBRAIN_URL, "--lexbrain", envvar=LEXBRAIN_ENV, help="Fact store URL for --store http."
)
_POLICY_OPT = typer.Option(
    Path(DEFAULT_POLICY_FILE), "--policy", help="Policy JSON file, relative to the repository."
)
_JSON_OPT = typer.Option(False, "--json", help="Print machine-readable JSON.")


def _fail(message: str) -> typer.Exit:
    err_console.print(f"[red]Error:[/red] {message}")
    return typer.Exit(code=EXIT_ERROR)


F = TypeVar("F", bound=Callable[..., Any])


def _exit_on_error(func: F) -> F:
    """Map errors escaping a command to EXIT_ERROR.

    Exit code 1 is reserved for policy violations, so an unexpected crash
    must not leave the command with Python's default status.
    """

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except (typer.Exit, typer.Abort):
            raise
        except LexMapError as exc:
            raise _fail(str(exc)) from exc
        except Exception as exc:
            logger.exception("Unhandled error in %s", func.__name__)
            raise _fail(f"internal error: {type(exc).__name__}: {exc}") from exc

    return wrapper  # type: ignore[return-value]


def _repo(path: Path) -> Path:
    repo_path = path.resolve()
    if not repo_path.is_dir():
        raise _fail(f"{repo_path} is not a directory.")
    return repo_path


def _policy(repo_path: Path, policy_path: Path) -> Policy:
    target = policy_path if policy_path.is_absolute() else repo_path / policy_path
    try:
        policy = load_policy(target)
    except LexMapError as exc:
        raise _fail(str(exc)) from exc
    for warning in policy.warnings:
        err_console.print(f"[yellow]Warning:[/yellow] {warning}")
    return policy


def _open_store(kind: str, repo_path: Path, url: str, *, read_only: bool) -> FrameStore:
    from lexmap.core.storage.factory import open_store

    if kind not in STORE_KINDS:
        raise _fail(f"unknown store {kind!r}; expected one of {', '.join(STORE_KINDS)}")
    if kind == "kuzu" and read_only and not default_store_path(repo_path).exists():
        raise _fail(f"No index found at {repo_path}. Run 'lexmap index' first.")
    try:
        return open_store(kind, repo_path, url, read_only=read_only)
    except LexMapError as exc:
        raise _fail(str(exc)) from exc


def _load_graph(store_kind: str, repo_path: Path, url: str, policy: Policy) -> CodeGraph:
    """Return the latest indexed graph for *repo_path*.

    The in-memory store starts empty, so it is filled by an index run first.
    """
    from lexmap.core.ingestion.git import repo_name
    from lexmap.core.ingestion.persist import load_graph
    from lexmap.core.ingestion.pipeline import run_index

    store = _open_store(store_kind, repo_path, url, read_only=store_kind == "kuzu")
    try:
        if store_kind == "memory":
            return run_index(repo_path, store, policy, IndexSettings(cold=True), store_key=None).graph
        return load_graph(store, {"repo": repo_name(repo_path)})
    except LexMapError as exc:
        raise _fail(str(exc)) from exc
    finally:
        store.close()


def _print_json(data: Any) -> None:
    console.print_json(data=data, sort_keys=True)


def _version_callback(value: bool) -> None:
    """Print the version and exit."""
    if value:
        console.print(f"LexMap v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(  # noqa: N803
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Log progress details to stderr."),
) -> None:
    """LexMap: policy-aware structural code map."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
    )


@app.command()
@_exit_on_error
def index(
    path: Path = _PATH_ARG,
    cold: bool = typer.Option(False, "--cold", help="Reindex even if nothing changed since the last run."),
    determinism_target: Optional[float] = typer.Option(
        None, "--determinism-target", min=0.0, max=1.0, help="Minimum static edge ratio (default: from policy)."
    ),
    heuristics: str = typer.Option("auto", "--heuristics", help="Heuristics mode: off|hard|auto."),
    workers: int = typer.Option(4, "--workers", min=1, help="Extractor concurrency."),
    max_payload_kb: int = typer.Option(200, "--max-payload-kb", min=1, help="Upper bound per frame payload."),
    extractor: list[str] = typer.Option(
        [], "--extractor", help="External extractor as LANG=COMMAND; repeatable."
    ),
    store_kind: str = _STORE_OPT,
    lexbrain: str = _LEXBRAIN_OPT,
    policy_path: Path = _POLICY_OPT,
    as_json: bool = _JSON_OPT,
) -> None:
    """Index a repository and store its facts as frames."""
    from lexmap.core.ingestion.pipeline import IndexResult, run_index
    from lexmap.core.storage.factory import store_key

    repo_path = _repo(path)
    try:
        commands = dict(parse_command_option(value) for value in extractor)
        settings = IndexSettings(
            max_payload_kb=max_payload_kb,
            determinism_target=determinism_target,
            heuristics=heuristics,
            workers=workers,
            cold=cold,
            policy_file=str(policy_path),
            commands=commands,
        )
    except ValueError as exc:
        raise _fail(str(exc)) from exc

    policy = _policy(repo_path, policy_path)
    store = _open_store(store_kind, repo_path, lexbrain, read_only=False)

    if not as_json:
        console.print(f"[bold]Indexing[/bold] {repo_path}")

    result: IndexResult | None = None
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=err_console,
            transient=True,
        ) as progress:
            task = progress.add_task("Starting...", total=None)

            def on_progress(phase: str, pct: float) -> None:
                progress.update(task, description=f"{phase} ({pct:.0%})")

            result = run_index(
                repo_path,
                store,
                policy,
                settings,
                store_key=store_key(store_kind, lexbrain),
                progress_callback=on_progress,
            )
    except LexMapError as exc:
        raise _fail(str(exc)) from exc
    finally:
        store.close()

    if as_json:
        _print_json(result.to_dict())
        return

    for warning in result.warnings:
        err_console.print(f"[yellow]Warning:[/yellow] {warning}")

    if result.up_to_date:
        console.print("[green]Index is up to date.[/green] Use --cold to force a rebuild.")
        return

    report = result.report
    console.print()
    console.print("[bold green]Indexing complete.[/bold green]")
    console.print(f"  Repo:           {result.repo} @ {result.commit[:12]}")
    console.print(f"  Files:          {result.files} ({result.changed_files} changed)")
    console.print(f"  Symbols:        {result.symbols}")
    console.print(f"  Calls:          {result.calls}")
    console.print(f"  Module edges:   {result.modules}")
    if result.patterns > 0:
        console.print(f"  Pattern hits:   {result.patterns}")
    if report is not None:
        console.print(
            f"  Determinism:    {report.ratio:.1%} ({report.static_edges}/{report.total_edges} static, "
            f"rung {report.rung.value})"
        )
        if report.below_target:
            console.print(f"  [yellow]Below determinism target {report.target:.2f}[/yellow]")
    console.print(f"  Frames:         {result.frames_written} new of {result.frames_total}")
    console.print(f"  Duration:       {result.duration_seconds:.2f}s")


@app.command()
@_exit_on_error
def check(
    path: Path = _PATH_ARG,
    store_kind: str = _STORE_OPT,
    lexbrain: str = _LEXBRAIN_OPT,
    policy_path: Path = _POLICY_OPT,
    as_json: bool = _JSON_OPT,
) -> None:
    """Check the indexed graph against the policy; exits 1 on violations."""
    from lexmap.core.policy.checker import check_policy

    repo_path = _repo(path)
    policy = _policy(repo_path, policy_path)
    graph = _load_graph(store_kind, repo_path, lexbrain, policy)
    violations = check_policy(graph, policy)

    if as_json:
        _print_json({"ok": not violations, "count": len(violations), "violations": [v.to_dict() for v in violations]})
    elif not violations:
        console.print("[green]Success:[/green] No policy violations found.")
    else:
        table = Table(title=f"{len(violations)} policy violation(s)")
        table.add_column("Kind", style="red")
        table.add_column("From")
        table.add_column("To / Label")
        table.add_column("Where")
        for violation in violations:
            target = violation.to_module or violation.label
            where = f"{violation.file}:{violation.line}" if violation.file else str(violation.weight or "")
            table.add_row(violation.kind.value, violation.from_module, target, where)
        console.print(table)

    if violations:
        raise typer.Exit(code=EXIT_VIOLATIONS)


@app.command(name="slice")
@_exit_on_error
def slice_(
    symbol: str = typer.Option(..., "--symbol", help="Symbol id or fully-qualified name."),
    radius: int = typer.Option(2, "--radius", min=0, help="Hop distance."),
    path: Path = _PATH_ARG,
    store_kind: str = _STORE_OPT,
    lexbrain: str = _LEXBRAIN_OPT,
    policy_path: Path = _POLICY_OPT,
) -> None:
    """Print the call-graph slice around a symbol."""
    from lexmap.core.query.slice import build_slice

    repo_path = _repo(path)
    graph = _load_graph(store_kind, repo_path, lexbrain, _policy(repo_path, policy_path))
    try:
        result = build_slice(symbol, graph, radius)
    except LexMapError as exc:
        raise _fail(str(exc)) from exc
    _print_json(result.to_dict())


@app.command()
@_exit_on_error
def query(
    query_type: str = typer.Option(
        ..., "--type", help="Query type: callers|callees|module_deps|recent_patterns|violations."
    ),
    args: str = typer.Option("{}", "--args", help="Query arguments as a JSON object."),
    path: Path = _PATH_ARG,
    store_kind: str = _STORE_OPT,
    lexbrain: str = _LEXBRAIN_OPT,
    policy_path: Path = _POLICY_OPT,
) -> None:
    """Run a fact query against the indexed graph."""
    from lexmap.core.query.facts import query_facts

    try:
        parsed = json.loads(args)
    except json.JSONDecodeError as exc:
        raise _fail(f"--args is not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise _fail("--args must be a JSON object")

    repo_path = _repo(path)
    policy = _policy(repo_path, policy_path)
    graph = _load_graph(store_kind, repo_path, lexbrain, policy)
    try:
        result = query_facts(graph, query_type, parsed, policy)
    except (LexMapError, ValueError) as exc:
        raise _fail(str(exc)) from exc
    _print_json(result)


@app.command(name="atlas-frame")
@_exit_on_error
def atlas_frame(
    module_scope: str = typer.Option(..., "--module-scope", help="Comma-separated seed module ids."),
    fold_radius: int = typer.Option(1, "--fold-radius", min=0, help="How many hops to expand."),
    path: Path = _PATH_ARG,
    store_kind: str = _STORE_OPT,
    lexbrain: str = _LEXBRAIN_OPT,
    policy_path: Path = _POLICY_OPT,
) -> None:
    """Print the policy-annotated module neighbourhood of the seed modules."""
    from lexmap.core.query.adjacency import build_adjacency
    from lexmap.core.query.neighborhood import build_atlas_frame

    seeds = [m.strip() for m in module_scope.split(",") if m.strip()]
    if not seeds:
        raise _fail("--module-scope needs at least one module id")

    repo_path = _repo(path)
    policy = _policy(repo_path, policy_path)
    graph = _load_graph(store_kind, repo_path, lexbrain, policy)
    _print_json(build_atlas_frame(seeds, build_adjacency(graph.modules), policy, fold_radius))


@app.command()
@_exit_on_error
def adjacency(
    path: Path = _PATH_ARG,
    policy_only: bool = typer.Option(False, "--policy-only", help="Only print the policy's adjacency."),
    store_kind: str = _STORE_OPT,
    lexbrain: str = _LEXBRAIN_OPT,
    policy_path: Path = _POLICY_OPT,
) -> None:
    """Print module adjacency: observed from the index and allowed by the policy."""
    from lexmap.core.policy.adjacency import generate_policy_adjacency
    from lexmap.core.query.adjacency import build_adjacency

    repo_path = _repo(path)
    policy = _policy(repo_path, policy_path)
    allowed = generate_policy_adjacency(policy).to_dict()
    if policy_only:
        _print_json(allowed)
        return

    graph = _load_graph(store_kind, repo_path, lexbrain, policy)
    _print_json({"observed": build_adjacency(graph.modules).to_dict(), "policy": allowed})


@app.command()
@_exit_on_error
def status(
    path: Path = _PATH_ARG,
    store_kind: str = _STORE_OPT,
    lexbrain: str = _LEXBRAIN_OPT,
) -> None:
    """Show metrics of the latest indexing run."""
    from lexmap.core.ingestion.git import repo_name
    from lexmap.core.ingestion.persist import load_metrics

    repo_path = _repo(path)
    store = _open_store(store_kind, repo_path, lexbrain, read_only=True)
    try:
        metrics = load_metrics(store, {"repo": repo_name(repo_path)})
    except LexMapError as exc:
        raise _fail(str(exc)) from exc
    finally:
        store.close()

    if metrics is None:
        raise _fail(f"No index found at {repo_path}. Run 'lexmap index' first.")

    console.print(f"[bold]Index status for[/bold] {repo_path}")
    console.print(f"  Files:          {metrics.get('files', '?')}")
    console.print(f"  Determinism:    {metrics.get('det_ratio', 0):.1%} (rung {metrics.get('rung', '?')})")
    console.print(f"  Static edges:   {metrics.get('edges_static', '?')} of {metrics.get('edges_total', '?')}")
    console.print(f"  Frames written: {metrics.get('frames_written', '?')}")
    console.print(f"  Wall time:      {metrics.get('wall_ms', '?')} ms (put p95 {metrics.get('put_p95_ms', '?')} ms)")


@app.command()
@_exit_on_error
def serve(
    path: Path = _PATH_ARG,
    store_kind: str = _STORE_OPT,
    lexbrain: str = _LEXBRAIN_OPT,
    policy_path: Path = _POLICY_OPT,
) -> None:
    """Start the MCP server (stdio transport)."""
    import asyncio

    from lexmap.core.storage.factory import store_key
    from lexmap.mcp.server import configure
    from lexmap.mcp.server import main as mcp_main

    repo_path = _repo(path)
    policy = _policy(repo_path, policy_path)
    store = _open_store(store_kind, repo_path, lexbrain, read_only=False)
    configure(store, policy, repo_path, store_key(store_kind, lexbrain))
    try:
        asyncio.run(mcp_main())
    except KeyboardInterrupt:
        pass
    finally:
        store.close()
