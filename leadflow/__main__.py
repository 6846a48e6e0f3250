# leadflow/__main__.py
import asyncio
import logging
import signal
from datetime import datetime
from pathlib import Path
from typing import List, Optional
import typer
from rich.logging import RichHandler
from rich.prompt import Confirm
from rich.table import Table
from rich.panel import Panel
from rich import box
from InquirerPy import inquirer

from leadflow.config import settings
from leadflow.content import MessageComposer
from leadflow.errors import ConfigurationError, RunCancelled, TransportNotReady
from leadflow.models import EntityRecord
from leadflow.pipeline import PipelineOrchestrator, PipelineState, console as pipeline_console
from leadflow.snapshot_store import JsonSnapshotStore

app = typer.Typer(help="Lead Outreach - Find local businesses and send them personalized messages")
console = pipeline_console

SAMPLE_RECORD = EntityRecord(
    name="Restaurante Casa Pepe",
    address="Calle Mayor 12, Madrid",
    phone="612 345 678",
    rating=4.7,
    review_count=230,
    category_hint="restaurant",
    personalized_content="especialmente por su cocido madrileño y el trato cercano que destacan los clientes",
)


def show_banner():
    """Display the application banner."""
    banner = """
╔═══════════════════════════════════════════════════════════════╗
║                      📨 LEAD OUTREACH                         ║
║     Discover local businesses, personalize, and reach out     ║
╚═══════════════════════════════════════════════════════════════╝
    """
    console.print(banner, style="bold blue")


def setup_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def format_timestamp(ts: str) -> str:
    """Format ISO timestamp to human-readable."""
    try:
        dt = datetime.fromisoformat(ts)
        return dt.strftime("%Y-%m-%d %H:%M")
    except (ValueError, TypeError):
        return ts or "Unknown"


def show_snapshot_table(runs: list[dict]):
    """Display a table of stored runs."""
    table = Table(title="Stored Runs", box=box.ROUNDED)
    table.add_column("#", style="dim", width=3, justify="right")
    table.add_column("Run", style="cyan")
    table.add_column("Last Stage", style="green")
    table.add_column("Records", style="magenta", justify="right")
    table.add_column("Queries", style="blue")
    table.add_column("Saved At", style="yellow")

    for i, run in enumerate(runs, 1):
        queries = run["metadata"].get("queries", [])
        table.add_row(
            str(i),
            run["run_id"],
            run["last_stage"] or "-",
            str(run["record_count"]),
            ", ".join(queries) if queries else "-",
            format_timestamp(run["updated_at"]),
        )

    console.print()
    console.print(table)
    console.print()


def select_run_to_resume() -> Optional[str]:
    """Offer unfinished runs for resumption. Returns a run id or None for a fresh run."""
    runs = [
        r for r in JsonSnapshotStore.list_runs(settings.snapshot_dir)
        if r["last_stage"] != PipelineState.COMPLETED.value
    ]
    if not runs:
        return None

    console.print("\n[bold yellow]Unfinished runs found![/bold yellow]")
    show_snapshot_table(runs)

    choices = [{"name": "Start fresh (new run)", "value": "fresh"}]
    for i, run in enumerate(runs):
        choices.append({
            "name": f"Resume #{i+1}: {run['run_id']} (after {run['last_stage']}, {run['record_count']} records)",
            "value": run["run_id"],
        })
    choices.append({"name": "Exit", "value": "exit"})

    selection = inquirer.select(
        message="What would you like to do?",
        choices=choices,
        instruction="(↑↓ navigate, Enter select)",
    ).execute()

    if selection == "exit":
        console.print("[yellow]Exiting...[/yellow]")
        raise typer.Exit(0)
    if selection == "fresh":
        return None
    return selection


def build_orchestrator(store: JsonSnapshotStore, deliver: bool) -> PipelineOrchestrator:
    """Wire the real adapters from settings."""
    from leadflow.places_search import PlacesSearcher
    from leadflow.places_details import PlacesEnricher
    from leadflow.content_generator import LLMContentGenerator
    from leadflow.whatsapp import WhatsAppTransport

    transport = None
    if deliver:
        transport = WhatsAppTransport(
            access_token=settings.whatsapp_access_token,
            phone_number_id=settings.whatsapp_phone_number_id,
            default_country_code=settings.delivery.default_country_code,
        )
    return PipelineOrchestrator(
        discovery=PlacesSearcher(settings.google_places_api_key, max_results=settings.search.max_results),
        enrichment=PlacesEnricher(settings.google_places_api_key),
        generator=LLMContentGenerator(),
        store=store,
        transport=transport,
        config=settings,
    )


def save_delivery_log(transport, run_id: str, output_dir: Path) -> Optional[Path]:
    """Persist the transport's message log next to the run's results."""
    if transport is None or not getattr(transport, "message_log", None):
        return None
    path = output_dir / f"whatsapp_log_{run_id}.json"
    transport.save_log(path)
    console.print(f"  [dim]📝 Message log saved to {path}[/dim]")
    return path


async def run_with_cancel(orchestrator: PipelineOrchestrator, **kwargs):
    """Run the pipeline; Ctrl+C stops it between batches instead of mid-flight."""
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
    except NotImplementedError:
        pass  # Windows
    try:
        return await orchestrator.run(cancel_event=cancel_event, **kwargs)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except NotImplementedError:
            pass


@app.command()
def run(
    query: Optional[List[str]] = typer.Option(
        None, "--query", "-q",
        help="Search term (repeatable). Defaults to every configured query group."
    ),
    category: Optional[str] = typer.Option(
        None, "--category", "-c",
        help="Use the configured queries of one group (restaurants, beauty, fitness, ...)"
    ),
    location: Optional[str] = typer.Option(None, "--location", "-l", help="City or area to search"),
    deliver: bool = typer.Option(False, "--deliver", help="Send messages over WhatsApp"),
    resume: Optional[str] = typer.Option(None, "--resume", help="Resume a stored run by id"),
    interactive: bool = typer.Option(
        True,
        "--interactive/--no-interactive", "-i/-I",
        help="Offer unfinished runs for resumption"
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging"),
):
    """Run the full outreach pipeline."""
    setup_logging(verbose)
    show_banner()

    if resume is None and interactive:
        resume = select_run_to_resume()

    if query:
        queries = list(query)
    elif category:
        queries = settings.queries_for(category)
        if not queries:
            console.print(f"[red]No queries configured for '{category}'.[/red]")
            raise typer.Exit(1)
    else:
        queries = [q for group in settings.search_queries.values() for q in group]

    store = JsonSnapshotStore(settings.snapshot_dir, run_id=resume)
    if resume and store.latest_stage() is None:
        console.print(f"[red]No stored run '{resume}' to resume.[/red]")
        raise typer.Exit(1)

    deliver = deliver or settings.delivery.enabled
    if deliver and interactive:
        if not Confirm.ask("[bold yellow]Messages will really be sent. Continue?[/bold yellow]", default=False):
            console.print("[yellow]Cancelled.[/yellow]")
            raise typer.Exit(0)

    if not resume:
        store.set_metadata({
            "queries": queries,
            "location": location or settings.search.location,
            "deliver": deliver,
            "created_at": datetime.now().isoformat(),
        })

    orchestrator = build_orchestrator(store, deliver)
    console.print("[dim]Press Ctrl+C to stop after the current batch[/dim]\n")

    try:
        asyncio.run(run_with_cancel(
            orchestrator,
            queries=queries,
            location=location,
            deliver=deliver,
            resume=bool(resume),
        ))
    except ConfigurationError as e:
        console.print(Panel(
            "\n".join(f"• {p}" for p in e.problems),
            title="[bold red]Configuration Error[/bold red]",
            border_style="red",
        ))
        raise typer.Exit(2)
    except TransportNotReady as e:
        console.print(f"\n[red]✗ {e}[/red]")
        raise typer.Exit(1)
    except RunCancelled:
        console.print(f"\n[yellow]Run cancelled. Resume with: --resume {store.run_id}[/yellow]")
        raise typer.Exit(1)
    finally:
        save_delivery_log(orchestrator.transport, store.run_id, settings.output_dir)

    json_file, csv_file = orchestrator.export_results(settings.output_dir, run_id=store.run_id)
    console.print()
    console.print(Panel(
        f"[bold green]✓ Pipeline Complete![/bold green]\n\n"
        f"Run: [cyan]{store.run_id}[/cyan]\n"
        f"Output saved to:\n[cyan]{json_file}[/cyan]\n[cyan]{csv_file}[/cyan]",
        title="Success",
        border_style="green",
    ))


@app.command()
def snapshots(
    delete: Optional[str] = typer.Option(None, "--delete", help="Delete a stored run by id"),
    interactive: bool = typer.Option(
        True,
        "--interactive/--no-interactive", "-i/-I",
        help="Offer to delete runs after listing them"
    ),
):
    """List and manage stored runs."""
    if delete:
        store = JsonSnapshotStore(settings.snapshot_dir, run_id=delete)
        if not store.run_dir.exists():
            console.print(f"[red]No stored run '{delete}'.[/red]")
            raise typer.Exit(1)
        store.delete()
        console.print(f"[green]✓ Run {delete} deleted[/green]")
        return

    runs = JsonSnapshotStore.list_runs(settings.snapshot_dir)
    if not runs:
        console.print("[yellow]No stored runs found.[/yellow]")
        console.print("[dim]Run the pipeline to create snapshots automatically.[/dim]")
        return

    show_snapshot_table(runs)
    if not interactive:
        return

    action = inquirer.select(
        message="What would you like to do?",
        choices=[
            {"name": "Delete a run", "value": "delete"},
            {"name": "Delete all runs", "value": "delete_all"},
            {"name": "Exit", "value": "exit"},
        ],
    ).execute()

    if action == "delete":
        delete_choices = [
            {"name": f"#{i+1}: {r['run_id']} ({r['last_stage']}) - {format_timestamp(r['updated_at'])}", "value": r["run_id"]}
            for i, r in enumerate(runs)
        ]
        delete_choices.append({"name": "Cancel", "value": "cancel"})
        to_delete = inquirer.select(message="Select run to delete:", choices=delete_choices).execute()
        if to_delete != "cancel":
            JsonSnapshotStore(settings.snapshot_dir, run_id=to_delete).delete()
            console.print("[green]✓ Run deleted[/green]")

    elif action == "delete_all":
        if Confirm.ask("[bold red]Delete all stored runs?[/bold red]", default=False):
            for r in runs:
                JsonSnapshotStore(settings.snapshot_dir, run_id=r["run_id"]).delete()
            console.print("[green]✓ All runs deleted[/green]")


@app.command()
def templates(
    sender: Optional[str] = typer.Option(None, "--sender", help="Sender name to use in the preview"),
):
    """Preview every message template against a sample business."""
    composer = MessageComposer(
        sender_name=sender or settings.templates.sender_name,
        max_length=settings.validation.max_message_length,
    )
    for name in composer.templates:
        message, _ = composer.compose(SAMPLE_RECORD, template_name=name)
        check = composer.validate(message)
        subtitle = f"{check.length} chars · {check.word_count} words"
        if check.warnings:
            subtitle += " · [yellow]" + "; ".join(check.warnings) + "[/yellow]"
        console.print(Panel(message, title=f"[bold cyan]{name}[/bold cyan]", subtitle=subtitle, border_style="cyan"))


if __name__ == "__main__":
    app()
