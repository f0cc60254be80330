"""
Main CLI application for the Site Explorer.

Provides the command-line interface for:
- Running an exploration session against a start URL
- Listing and inspecting stored sessions
- Managing configuration
"""

import asyncio
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from site_explorer import __version__
from site_explorer.config import Settings, get_default_config_path, load_config
from site_explorer.core.exceptions import ConfigurationError, PersistenceError, SiteExplorerError
from site_explorer.transport.events import EventType, ProgressEvent
from site_explorer.utils.logging import get_logger, setup_logging
from site_explorer.utils.metrics import Metrics

app = typer.Typer(
    name="site-explorer",
    help="Site Explorer - autonomous, decision-driven exploration of web applications",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()
logger = get_logger(__name__)

STRATEGIES = ("auto", "sequential", "background")


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"[bold blue]Site Explorer[/bold blue] v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        help="Enable verbose logging",
    ),
) -> None:
    """
    Site Explorer - let a decision service drive a browser toward an objective.

    Use 'site-explorer --help' for command list.
    """
    ctx.obj = {"verbose": verbose}
    setup_logging(level="DEBUG" if verbose else "INFO")


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/red] {message}")
    raise typer.Exit(1)


def _is_valid_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


@app.command()
def explore(
    ctx: typer.Context,
    url: Optional[str] = typer.Option(
        None,
        "--url",
        "-u",
        help="Start URL (http or https)",
    ),
    objective: Optional[str] = typer.Option(
        None,
        "--objective",
        "-o",
        help="What the exploration should achieve or investigate",
    ),
    max_pages: Optional[int] = typer.Option(
        None,
        "--max-pages",
        "-m",
        help="Maximum pages processed by the primary loop",
    ),
    exploratory: bool = typer.Option(
        False,
        "--exploratory",
        "-e",
        help="Treat the objective as open-ended exploration rather than a task",
    ),
    strategy: Optional[str] = typer.Option(
        None,
        "--strategy",
        "-s",
        help="Scheduling strategy: auto, sequential, or background",
    ),
    replay: Optional[Path] = typer.Option(
        None,
        "--replay",
        "-r",
        help="YAML file of scripted decisions to replay instead of calling the decision service",
    ),
    headless: Optional[bool] = typer.Option(
        None,
        "--headless/--no-headless",
        help="Run browser in headless mode",
    ),
    output_dir: Optional[Path] = typer.Option(
        None,
        "--output-dir",
        "-d",
        help="Directory sessions are written to",
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file",
    ),
) -> None:
    """
    Explore a website toward an objective.

    Example:
        site-explorer explore --url https://example.com --objective "find the contact page"
    """
    if not url:
        _fail("--url is required")
    if not _is_valid_url(url):
        _fail(f"Invalid URL: {url}")
    if not objective or not objective.strip():
        _fail("--objective is required")
    if strategy is not None and strategy not in STRATEGIES:
        _fail(f"Invalid strategy '{strategy}'. Choose one of: {', '.join(STRATEGIES)}")
    if max_pages is not None and max_pages < 1:
        _fail("--max-pages must be at least 1")
    if replay is not None and not replay.is_file():
        _fail(f"Replay file not found: {replay}")

    try:
        settings = load_config(config_file or get_default_config_path())
    except (ConfigurationError, FileNotFoundError) as e:
        _fail(f"Configuration error: {e}")

    if max_pages is not None:
        settings.explorer.max_pages = max_pages
    if strategy is not None:
        settings.explorer.strategy = strategy
    if headless is not None:
        settings.browser.headless = headless
    if output_dir is not None:
        settings.storage.base_dir = output_dir

    verbose = bool(ctx.obj and ctx.obj.get("verbose"))
    setup_logging(settings.logging, level="DEBUG" if verbose else None, force=True)

    try:
        result = asyncio.run(_explore_async(
            url=url,
            objective=objective.strip(),
            exploratory=exploratory,
            replay=replay,
            settings=settings,
        ))
    except KeyboardInterrupt:
        console.print("\n[yellow]Exploration cancelled by user[/yellow]")
        raise typer.Exit(1)
    except ConfigurationError as e:
        _fail(f"Configuration error: {e}")
    except SiteExplorerError as e:
        console.print(f"[red]Error:[/red] {e}")
        logger.exception("Exploration failed to start")
        raise typer.Exit(1)

    _print_result(result)


async def _explore_async(
    url: str,
    objective: str,
    exploratory: bool,
    replay: Optional[Path],
    settings: Settings,
):
    """Async exploration implementation."""
    from site_explorer.browser import BrowserManager, PlaywrightDriver
    from site_explorer.decision import (
        AnthropicDecisionClient,
        DecisionServiceFormatter,
        MarkdownExtractionFormatter,
        ScriptedDecisionClient,
    )
    from site_explorer.explorer import Explorer
    from site_explorer.storage import SessionStorage
    from site_explorer.transport import ConsoleInputTransport, ProgressReporter

    # Credentials are checked before anything else is created
    if replay is not None:
        client = ScriptedDecisionClient.from_yaml(replay)
    elif settings.decision.provider == "scripted":
        raise ConfigurationError("The scripted decision provider needs --replay FILE")
    else:
        client = AnthropicDecisionClient.from_settings(settings.decision)

    formatter = (
        DecisionServiceFormatter(client)
        if settings.decision.use_llm_formatter else MarkdownExtractionFormatter()
    )
    storage = SessionStorage(settings.storage.base_dir, settings.storage.save_screenshots)
    reporter = ProgressReporter()
    reporter.subscribe(_print_event)

    console.print(Panel(
        f"[bold]Exploring:[/bold] {url}\n"
        f"[bold]Objective:[/bold] {objective}\n"
        f"[dim]Mode: {'exploratory' if exploratory else 'task'} | "
        f"Strategy: {settings.explorer.strategy} | "
        f"Max pages: {settings.explorer.max_pages} | "
        f"Decisions: {client.name}[/dim]",
        title="Site Explorer",
        border_style="blue",
    ))

    try:
        async with BrowserManager(settings.browser) as manager:
            driver = PlaywrightDriver(manager.page, settings.browser)
            explorer = Explorer(
                objective=objective,
                start_url=url,
                driver=driver,
                decision_client=client,
                settings=settings,
                is_exploratory=exploratory,
                transport=ConsoleInputTransport(console),
                reporter=reporter,
                storage=storage,
                formatter=formatter,
            )
            return await explorer.explore()
    finally:
        await client.close()


def _print_event(event: ProgressEvent) -> None:
    """Render the interesting progress events as one line each."""
    data = event.data
    if event.type is EventType.PAGE_STARTED:
        console.print(f"[cyan]→[/cyan] Page: {data.get('url')}")
    elif event.type is EventType.STEP_COMPLETED:
        mark = "[green]✓[/green]" if data.get("success") else "[red]✗[/red]"
        console.print(f"  {mark} step {data.get('step')} [dim]{data.get('tool')}[/dim]")
    elif event.type is EventType.URL_DISCOVERED:
        console.print(f"  [blue]+[/blue] discovered {data.get('url')}")
    elif event.type is EventType.PAGE_COMPLETED:
        where = " (background)" if data.get("background") else ""
        reason = data.get("reason")
        console.print(
            f"[green]✓[/green] Completed{where}: {data.get('url')}"
            + (f" [dim]({reason})[/dim]" if reason else "")
        )
    elif event.type is EventType.BACKGROUND_FAILED:
        console.print(f"[red]✗[/red] Background failure on {data.get('url')}: {data.get('error')}")


def _print_result(result) -> None:
    session = result.session
    status = "[green]achieved[/green]" if result.objective_achieved else "[yellow]not achieved[/yellow]"

    table = Table(show_header=False, box=None)
    table.add_column("Metric", style="dim")
    table.add_column("Value", style="bold")
    table.add_row("Session", result.session_id)
    table.add_row("Objective", status)
    table.add_row("Stopped", result.stop_reason.value)
    table.add_row("Strategy", result.strategy.value)
    table.add_row("Pages discovered", str(len(session.pages)))
    table.add_row("Pages completed", str(result.pages_completed))
    table.add_row("Steps", str(session.global_step_counter))
    table.add_row("Background failures", str(len(result.background_failures)))
    table.add_row("Duration", f"{result.duration_seconds:.1f}s")
    if result.session_dir:
        table.add_row("Saved to", str(result.session_dir))

    console.print(Panel(table, title="Exploration Complete", border_style="green"))

    snapshot = Metrics.get().snapshot()
    latency = snapshot["timings"].get("decision_latency_ms")
    if latency:
        console.print(
            f"[dim]Decisions: {snapshot['counters'].get('decisions_requested', 0)} "
            f"(avg {latency['avg_ms']:.0f} ms) | "
            f"Tool failures: {snapshot['counters'].get('tool_failures', 0)}[/dim]"
        )


@app.command()
def sessions(
    session_id: Optional[str] = typer.Argument(
        None,
        help="Show the pages of one session",
    ),
    base_dir: Optional[Path] = typer.Option(
        None,
        "--dir",
        "-d",
        help="Session directory (defaults to the configured storage directory)",
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file",
    ),
) -> None:
    """
    List stored sessions, or the pages of one session.

    Examples:
        site-explorer sessions
        site-explorer sessions example-com_2024-01-02T03-04-05-000000+00-00
    """
    from site_explorer.storage import SessionStorage

    try:
        settings = load_config(config_file or get_default_config_path())
    except (ConfigurationError, FileNotFoundError) as e:
        _fail(f"Configuration error: {e}")

    storage = SessionStorage(base_dir or settings.storage.base_dir)

    if session_id:
        try:
            session = storage.load_session(session_id)
        except PersistenceError as e:
            _fail(str(e))
        _print_session_pages(session)
        return

    stored = storage.list_sessions()
    if not stored:
        console.print(f"[yellow]No sessions found in {storage.base_dir}[/yellow]")
        return

    table = Table(title=f"Sessions ({len(stored)})", show_header=True)
    table.add_column("Session", style="cyan")
    table.add_column("Objective")
    table.add_column("Pages", justify="right")
    table.add_column("Achieved")
    table.add_column("Phase", style="dim")

    for meta in stored:
        objective = meta.get("objective", "")
        table.add_row(
            meta.get("session_id", ""),
            objective[:50] + "..." if len(objective) > 50 else objective,
            str(meta.get("page_count", 0)),
            "[green]yes[/green]" if meta.get("objective_achieved") else "no",
            meta.get("phase", ""),
        )
    console.print(table)


def _print_session_pages(session) -> None:
    meta = session.metadata
    console.print(Panel(
        f"[bold]{meta.objective}[/bold]\n"
        f"[dim]{meta.start_url} | started {meta.start_time} | {meta.phase.value}[/dim]",
        title=meta.session_id,
        border_style="blue",
    ))

    table = Table(show_header=True)
    table.add_column("Page", style="cyan")
    table.add_column("Status")
    table.add_column("Priority", justify="right")
    table.add_column("Steps", justify="right")
    table.add_column("Extractions", justify="right")
    table.add_column("Note", style="dim")

    pages = sorted(session.pages.values(), key=lambda p: p.discovery_order)
    for page in pages:
        style = "green" if page.status.value == "completed" else "yellow"
        table.add_row(
            page.url,
            f"[{style}]{page.status.value}[/{style}]",
            str(page.priority),
            str(len(page.executed_steps)),
            str(page.current_extraction_version),
            page.failure_note or "",
        )
    console.print(table)


@app.command()
def config(
    show: bool = typer.Option(
        False,
        "--show",
        "-s",
        help="Show current configuration",
    ),
    init: bool = typer.Option(
        False,
        "--init",
        help="Create default configuration file",
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output path for config file",
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Configuration file to show",
    ),
) -> None:
    """
    Configuration management.

    View or initialize configuration files.

    Examples:
        site-explorer config --show
        site-explorer config --init --output ./my-config.yaml
    """
    if init:
        _init_config(output)
    elif show:
        _show_config(config_file)
    else:
        console.print("Use --show to view config or --init to create default config")


def _show_config(config_file: Optional[Path]) -> None:
    """Show current configuration."""
    try:
        settings = load_config(config_file or get_default_config_path())
    except (ConfigurationError, FileNotFoundError) as e:
        _fail(f"Configuration error: {e}")

    console.print(Panel("[bold]Current Configuration[/bold]", border_style="blue"))

    for section, values in settings.model_dump(mode="json").items():
        console.print(f"\n[bold cyan]{section}:[/bold cyan]")
        if isinstance(values, dict):
            for key, value in values.items():
                console.print(f"  {key}: [dim]{value}[/dim]")
        else:
            console.print(f"  {values}")


def _init_config(output: Optional[Path]) -> None:
    """Create default configuration file."""
    import yaml

    config_dict = Settings().model_dump(mode="json")
    output_path = output or Path("config.yaml")

    if output_path.exists():
        if not typer.confirm(f"File {output_path} exists. Overwrite?"):
            raise typer.Exit(0)

    with open(output_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(config_dict, f, default_flow_style=False, sort_keys=False)

    console.print(f"[green]✓[/green] Configuration saved to: {output_path}")


if __name__ == "__main__":
    app()
