# leadflow/pipeline.py
import asyncio
import json
import logging
import pandas as pd
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TaskProgressColumn, TimeElapsedColumn
from rich.panel import Panel
from rich.table import Table
from rich import box

from leadflow import quality_filter
from leadflow.batch_runner import BatchRunner, Failed, Skipped, Succeeded
from leadflow.classifier import classify
from leadflow.collaborators import (
    ContentGenerator,
    DiscoverySource,
    EnrichmentSource,
    MessagingTransport,
    SnapshotStore,
)
from leadflow.config import Settings, settings
from leadflow.content import MessageComposer, fallback_content
from leadflow.deduplicator import Deduplicator
from leadflow.errors import ConfigurationError, RunCancelled, TransportNotReady
from leadflow.models import (
    DeliveryResult,
    EnrichmentStatus,
    EntityRecord,
    GenerationStatus,
    RunStatistics,
)
from leadflow.rate_governor import RateGovernor

console = Console()
logger = logging.getLogger(__name__)

QUOTA_EXHAUSTED = "hourly quota exhausted"


class PipelineState(str, Enum):
    IDLE = "idle"
    DISCOVERING = "discovering"
    ENRICHING = "enriching"
    FILTERING = "filtering"
    GENERATING = "generating"
    DELIVERING = "delivering"
    COMPLETED = "completed"
    FAILED = "failed"


STAGES = [
    PipelineState.DISCOVERING,
    PipelineState.ENRICHING,
    PipelineState.FILTERING,
    PipelineState.GENERATING,
    PipelineState.DELIVERING,
]

STAGE_TITLES = {
    PipelineState.DISCOVERING: ("Discovery", "Searching the business directory"),
    PipelineState.ENRICHING: ("Enrichment", "Fetching place details and reviews"),
    PipelineState.FILTERING: ("Quality Filter", "Selecting businesses eligible for outreach"),
    PipelineState.GENERATING: ("Content Generation", "Writing personalized messages"),
    PipelineState.DELIVERING: ("Delivery", "Sending messages"),
}


@dataclass
class Governors:
    """One RateGovernor per external collaborator."""
    discovery: RateGovernor
    enrichment: RateGovernor
    generation: RateGovernor
    delivery: RateGovernor

    @classmethod
    def from_settings(cls, config: Settings) -> "Governors":
        return cls(
            discovery=RateGovernor(min_interval=config.search.min_interval, name="discovery"),
            enrichment=RateGovernor(
                min_interval=config.enrichment.min_interval,
                quota=config.enrichment.requests_per_minute,
                window=60.0,
                name="enrichment",
            ),
            generation=RateGovernor(min_interval=config.generation.min_interval, name="generation"),
            delivery=RateGovernor(
                min_interval=config.delivery.message_delay,
                quota=config.delivery.max_messages_per_hour,
                window=3600.0,
                name="delivery",
            ),
        )


class PipelineOrchestrator:
    """Runs Discover → Enrich → Filter → Generate → Deliver over one record sequence.

    The orchestrator owns the records and the RunStatistics for the whole run.
    Each stage is a full barrier, and a snapshot is saved after every stage so
    a later run can resume from the last completed one.
    """

    def __init__(
        self,
        discovery: DiscoverySource,
        enrichment: EnrichmentSource,
        generator: ContentGenerator,
        store: SnapshotStore,
        transport: Optional[MessagingTransport] = None,
        *,
        config: Settings = settings,
        governors: Optional[Governors] = None,
        composer: Optional[MessageComposer] = None,
        runner: Optional[BatchRunner] = None,
        show_progress: bool = True,
    ):
        self.discovery = discovery
        self.enrichment = enrichment
        self.generator = generator
        self.store = store
        self.transport = transport
        self.config = config
        self._governors = governors
        self.composer = composer or MessageComposer(
            sender_name=config.templates.sender_name,
            default_template=config.templates.default_template,
            max_length=config.validation.max_message_length,
        )
        self.runner = runner or BatchRunner()
        self.show_progress = show_progress

        self._state = PipelineState.IDLE
        self._records: list[EntityRecord] = []
        self._stats = RunStatistics()
        self.error: Optional[BaseException] = None

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def records(self) -> list[EntityRecord]:
        return self._records

    @property
    def stats(self) -> RunStatistics:
        return self._stats

    @property
    def governors(self) -> Governors:
        """Built from config on first use, after run() has validated it."""
        if self._governors is None:
            self._governors = Governors.from_settings(self.config)
        return self._governors

    def _transition(self, state: PipelineState):
        logger.info("Pipeline state %s -> %s", self._state.value, state.value)
        self._state = state

    def _show_stage_header(self, state: PipelineState):
        """Display a formatted stage header."""
        stage_num = STAGES.index(state) + 1
        title, description = STAGE_TITLES[state]
        console.print()
        console.print(Panel(
            f"[bold]{description}[/bold]",
            title=f"[bold cyan]Stage {stage_num}: {title}[/bold cyan]",
            border_style="cyan",
            padding=(0, 2),
        ))

    @contextmanager
    def _progress(self, description: str, total: int):
        """Yield an on_result callback that advances a progress bar."""
        if not self.show_progress or total == 0:
            yield None
            return
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            console=console,
        ) as progress:
            task = progress.add_task(f"[cyan]{description}", total=total)
            yield lambda item, outcome: progress.advance(task)

    def _print_summary(self, rows: list[tuple[str, object]]):
        table = Table(box=box.SIMPLE)
        table.add_column("Metric", style="cyan")
        table.add_column("Count", style="green", justify="right")
        for label, value in rows:
            table.add_row(label, str(value))
        console.print(table)

    # ───────────────────────────── stages ─────────────────────────────

    async def discover(self, queries: list[str], location: str) -> list[EntityRecord]:
        """Run each query in turn and keep the first record seen per identity."""
        deduplicator = Deduplicator()
        console.print(f"  [dim]• {len(queries)} queries in {location}[/dim]")

        for query in queries:
            await self.governors.discovery.acquire()
            self._stats.places_requests += 1
            try:
                candidates = await self.discovery.search(query, location)
            except Exception as e:
                logger.warning("Discovery failed for %r in %s: %s", query, location, e)
                console.print(f"  [red]✗ Error searching \"{query}\": {e}[/red]")
                continue
            added = deduplicator.extend(candidates)
            console.print(f"  [green]✓[/green] \"{query}\": {len(candidates)} found, {added} new")

        records = deduplicator.records
        self._stats.discovered += len(records)
        console.print(f"\n  [green]✓ {len(records)} unique businesses[/green]")
        return records

    async def enrich(
        self,
        records: list[EntityRecord],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> list[EntityRecord]:
        """Attach enrichment to every pending record. Failures stay in the sequence."""
        pending = [r for r in records if r.enrichment_status == EnrichmentStatus.PENDING]
        cfg = self.config.enrichment
        console.print(f"  [dim]• Enriching {len(pending)} businesses (batches of {cfg.batch_size})[/dim]")

        async def lookup(record: EntityRecord):
            self._stats.places_requests += 1
            return await self.enrichment.enrich(record)

        with self._progress(f"Enriching {len(pending)} businesses...", len(pending)) as on_result:
            outcomes = await self.runner.run(
                pending,
                lookup,
                batch_size=cfg.batch_size,
                inter_batch_delay=cfg.inter_batch_delay,
                governor=self.governors.enrichment,
                cancel_event=cancel_event,
                on_result=on_result,
            )

        not_found = 0
        errors = 0
        for record, outcome in zip(pending, outcomes):
            if isinstance(outcome, Succeeded) and outcome.value is not None:
                record.apply_enrichment(outcome.value)
                self._stats.enriched_ok += 1
                continue
            record.mark_enrichment_failed()
            self._stats.enrichment_failed += 1
            if isinstance(outcome, Failed):
                errors += 1
            else:
                not_found += 1

        self._print_summary([
            ("Enriched", f"[bold green]{len(pending) - not_found - errors}[/bold green]"),
            ("Not found", not_found),
            ("Errors", f"[red]{errors}[/red]"),
        ])
        return records

    def filter(self, records: list[EntityRecord]) -> list[EntityRecord]:
        """Drop records that fail the quality criteria."""
        criteria = self.config.quality_criteria()
        kept, rejected = quality_filter.apply(records, criteria)
        self._stats.filtered_in += len(kept)
        self._stats.filtered_out += len(rejected)

        reasons: dict[str, int] = {}
        for record, reason in rejected:
            if reason.startswith("rating"):
                key = "low rating"
            elif "reviews <" in reason:
                key = "few reviews"
            else:
                key = reason
            reasons[key] = reasons.get(key, 0) + 1
            logger.debug("Filtered out %s: %s", record.name, reason)

        rows = [("Passed", f"[bold green]{len(kept)}[/bold green]"), ("Rejected", len(rejected))]
        rows.extend((f"  └ {reason}", count) for reason, count in sorted(reasons.items(), key=lambda x: -x[1]))
        self._print_summary(rows)
        return kept

    async def generate(
        self,
        records: list[EntityRecord],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> list[EntityRecord]:
        """Write personalized content, falling back to a rating-based sentence on failure."""
        pending = [r for r in records if r.generation_status == GenerationStatus.PENDING]
        cfg = self.config.generation

        for record in pending:
            record.category = classify(record)

        async def write(record: EntityRecord) -> str:
            self._stats.llm_requests += 1
            return await self.generator.generate(record)

        with self._progress(f"Generating {len(pending)} messages...", len(pending)) as on_result:
            outcomes = await self.runner.run(
                pending,
                write,
                batch_size=cfg.batch_size,
                inter_batch_delay=cfg.inter_batch_delay,
                governor=self.governors.generation,
                cancel_event=cancel_event,
                on_result=on_result,
            )

        for record, outcome in zip(pending, outcomes):
            if isinstance(outcome, Succeeded):
                record.personalized_content = outcome.value
                record.generation_status = GenerationStatus.GENERATED
                self._stats.generated_ok += 1
            else:
                record.personalized_content = fallback_content(record)
                record.generation_status = GenerationStatus.FALLBACK
                self._stats.generated_fallback += 1

            record.message, record.template_used = self.composer.compose(record)
            check = self.composer.validate(record.message)
            for warning in check.warnings:
                logger.warning("Message for %s: %s", record.name, warning)

        self._print_summary([
            ("Generated", f"[bold green]{sum(1 for r in pending if r.generation_status == GenerationStatus.GENERATED)}[/bold green]"),
            ("Fallback", f"[yellow]{sum(1 for r in pending if r.generation_status == GenerationStatus.FALLBACK)}[/yellow]"),
        ])
        return records

    async def deliver(
        self,
        records: list[EntityRecord],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> list[EntityRecord]:
        """Send each eligible record's message, stopping cleanly at the hourly quota."""
        if self.transport is None or not self.transport.ready:
            raise TransportNotReady("Messaging transport is not ready")

        # Anything already attempted is never retried; quota-skipped records stay eligible
        eligible = [
            r for r in records
            if (r.phone or "").strip() and (r.delivery_result is None or not r.delivery_result.attempted)
        ]
        cfg = self.config.delivery
        governor = self.governors.delivery
        console.print(f"  [dim]• {len(eligible)} businesses with a phone number[/dim]")
        if governor.quota is not None:
            console.print(f"  [dim]• Quota: {governor.remaining()} of {governor.quota} left this window[/dim]")

        async def send(record: EntityRecord) -> DeliveryResult:
            if not await governor.acquire_within_quota():
                return DeliveryResult(attempted=False, error_reason=QUOTA_EXHAUSTED)
            return await self.transport.send(record.phone, record.message or record.personalized_content or "")

        def apply(pairs):
            for record, outcome in pairs:
                if isinstance(outcome, Succeeded):
                    result = outcome.value
                elif isinstance(outcome, Skipped):
                    result = DeliveryResult(attempted=False, error_reason=QUOTA_EXHAUSTED)
                else:
                    result = DeliveryResult(attempted=True, succeeded=False, error_reason=str(outcome.error))
                if record.delivery_result is not None:
                    # skipped in an earlier run; counted again below
                    self._stats.delivery_skipped -= 1
                record.delivery_result = result

                if not result.attempted:
                    self._stats.delivery_skipped += 1
                elif result.succeeded:
                    self._stats.delivered += 1
                else:
                    self._stats.delivery_failed += 1

        with self._progress(f"Sending {len(eligible)} messages...", len(eligible)) as on_result:
            try:
                outcomes = await self.runner.run(
                    eligible,
                    send,
                    batch_size=cfg.batch_size,
                    inter_batch_delay=cfg.inter_batch_delay,
                    cancel_event=cancel_event,
                    on_result=on_result,
                    stop_when=governor.quota_exhausted,
                )
            except RunCancelled as e:
                # finished groups are persisted so a resumed run never resends them
                apply(zip(eligible, e.completed))
                self.store.save(PipelineState.DELIVERING.value, records, self._stats)
                raise

        apply(zip(eligible, outcomes))

        skipped = sum(1 for r in eligible if not r.delivery_result.attempted)
        if skipped:
            console.print(f"  [yellow]⚠ Hourly quota reached, {skipped} messages left for a later run[/yellow]")
        self._print_summary([
            ("Sent", f"[bold green]{sum(1 for r in eligible if r.delivery_result.succeeded)}[/bold green]"),
            ("Failed", f"[red]{sum(1 for r in eligible if r.delivery_result.attempted and not r.delivery_result.succeeded)}[/red]"),
            ("Not attempted", skipped),
        ])
        return records

    # ───────────────────────────── run ─────────────────────────────

    def _resume_index(self) -> int:
        """Load the latest snapshot and return the index of the first stage still to run."""
        latest = self.store.latest_stage()
        if latest is None:
            return 0
        self._records, self._stats = self.store.load(latest)
        console.print(f"  [dim]⏭ Resuming after '{latest}' with {len(self._records)} records[/dim]")
        if latest in (PipelineState.DELIVERING.value, PipelineState.COMPLETED.value):
            return STAGES.index(PipelineState.DELIVERING)
        return STAGES.index(PipelineState(latest)) + 1

    async def _run_stage(
        self,
        state: PipelineState,
        queries: list[str],
        location: str,
        cancel_event: Optional[asyncio.Event],
    ) -> list[EntityRecord]:
        if state == PipelineState.DISCOVERING:
            return await self.discover(queries, location)
        if state == PipelineState.ENRICHING:
            return await self.enrich(self._records, cancel_event)
        if state == PipelineState.FILTERING:
            return self.filter(self._records)
        if state == PipelineState.GENERATING:
            return await self.generate(self._records, cancel_event)
        return await self.deliver(self._records, cancel_event)

    async def run(
        self,
        queries: Optional[list[str]] = None,
        location: Optional[str] = None,
        *,
        deliver: Optional[bool] = None,
        resume: bool = False,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RunStatistics:
        """Run every stage, or resume after the last stage in the snapshot store."""
        if self._state != PipelineState.IDLE:
            raise RuntimeError(f"Pipeline already used (state={self._state.value})")

        deliver = self.config.delivery.enabled if deliver is None else deliver
        location = location or self.config.search.location
        queries = list(queries or [])

        start = self._resume_index() if resume else 0
        problems = self.config.validate(deliver=deliver)
        if start == 0 and not queries:
            problems.append("At least one search query is required")
        if deliver and self.transport is None:
            problems.append("Delivery enabled but no messaging transport configured")
        if problems:
            self._transition(PipelineState.FAILED)
            self.error = ConfigurationError(problems)
            for problem in problems:
                console.print(f"  [red]✗ {problem}[/red]")
            raise self.error

        if not self._stats.started_at:
            self._stats.started_at = datetime.now().isoformat()

        console.print()
        console.print(Panel(
            "[bold]Pipeline Starting[/bold]\n\n"
            f"Queries:  {', '.join(queries) or '(from snapshot)'}\n"
            f"Location: {location}\n"
            f"Delivery: {'[green]Enabled[/green]' if deliver else '[dim]Disabled[/dim]'}",
            title="[bold blue]🚀 Lead Outreach[/bold blue]",
            border_style="blue",
        ))

        session_open = False
        try:
            if deliver:
                await self.transport.connect()
                session_open = True

            for state in STAGES[start:]:
                if state == PipelineState.DELIVERING:
                    if not deliver:
                        console.print("\n  [dim]⏭ Skipping delivery (not enabled)[/dim]")
                        continue
                    if not self.transport.ready:
                        raise TransportNotReady("Messaging session is not ready")

                self._transition(state)
                self._show_stage_header(state)
                self._records = await self._run_stage(state, queries, location, cancel_event)
                self.store.save(state.value, self._records, self._stats)
                console.print(f"  [dim]💾 Snapshot saved ({state.value})[/dim]")

            self._stats.ended_at = datetime.now().isoformat()
            self._transition(PipelineState.COMPLETED)
            self.store.save(PipelineState.COMPLETED.value, self._records, self._stats)
        except BaseException as e:
            self._transition(PipelineState.FAILED)
            self.error = e
            raise
        finally:
            if session_open:
                await self.transport.close()

        self.print_statistics()
        return self._stats

    def print_statistics(self):
        stats = self._stats
        table = Table(title="Run Statistics", box=box.ROUNDED)
        table.add_column("Stage", style="cyan")
        table.add_column("OK", style="green", justify="right")
        table.add_column("Not OK", style="red", justify="right")
        table.add_row("Discovered", str(stats.discovered), "")
        table.add_row("Enriched", str(stats.enriched_ok), str(stats.enrichment_failed))
        table.add_row("Quality filter", str(stats.filtered_in), str(stats.filtered_out))
        table.add_row("Generated (fallback)", f"{stats.generated_ok} ({stats.generated_fallback})", "")
        table.add_row("Delivered (not attempted)", f"{stats.delivered} ({stats.delivery_skipped})", str(stats.delivery_failed))
        console.print()
        console.print(table)
        if stats.duration_seconds is not None:
            console.print(f"  [dim]Duration: {stats.duration_seconds / 60:.1f} min · "
                          f"{stats.places_requests} places requests · {stats.llm_requests} LLM requests[/dim]")

    # ───────────────────────────── export ─────────────────────────────

    def export_results(self, output_dir: Path, run_id: str = "") -> tuple[Path, Path]:
        """Write the final records as JSON (with stats) and CSV."""
        output_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        json_file = output_dir / f"results_{timestamp}.json"
        csv_file = output_dir / f"results_{timestamp}.csv"

        with open(json_file, "w") as f:
            json.dump({
                "metadata": {
                    "generated_at": datetime.now().isoformat(),
                    "run_id": run_id,
                    "state": self._state.value,
                    "total_records": len(self._records),
                },
                "stats": self._stats.to_dict(),
                "records": [r.to_dict() for r in self._records],
            }, f, indent=2, ensure_ascii=False)

        rows = []
        for r in self._records:
            delivery = r.delivery_result
            rows.append({
                "name": r.name,
                "phone": r.phone,
                "address": r.address,
                "website": r.website,
                "rating": r.effective_rating,
                "review_count": r.effective_review_count,
                "category": r.category,
                "enrichment_status": r.enrichment_status.value,
                "generation_status": r.generation_status.value,
                "template_used": r.template_used,
                "personalized_content": r.personalized_content,
                "message": r.message,
                "delivery_attempted": delivery.attempted if delivery else None,
                "delivery_succeeded": delivery.succeeded if delivery else None,
                "delivery_error": delivery.error_reason if delivery else None,
                "ready_to_send": bool(r.message and r.phone),
            })
        df = pd.DataFrame(rows)
        if not df.empty:
            df = df.sort_values(by=["ready_to_send", "rating"], ascending=[False, False], na_position="last")
        df.to_csv(csv_file, index=False)

        console.print(f"  [green]✓ Exported {len(rows)} records[/green]")
        console.print(f"  [dim]  {json_file}\n  {csv_file}[/dim]")
        return json_file, csv_file
