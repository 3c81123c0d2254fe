"""CLI interface for shrink."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click

from shrink.config import load_config
from shrink.core.engine import ShrinkEngine
from shrink.core.stats import AggregateStats
from shrink.core.tracker import Tracker
from shrink.errors import ConfigError, ShrinkError
from shrink.models.candidate import CandidateFile, StateKind, candidate_id
from shrink.models.compression_result import ProgressEvent
from shrink.utils import bytes_to_human, format_elapsed


def _setup_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def _build_engine(ctx: click.Context, **overrides) -> ShrinkEngine:
    try:
        config = load_config(ctx.obj.get("config_path"), **overrides)
    except ConfigError as e:
        click.echo(f"Invalid configuration: {e}", err=True)
        sys.exit(2)
    return ShrinkEngine(config)


def _resolve_root(engine: ShrinkEngine, root: str | None) -> Path:
    if root:
        return Path(root).expanduser()
    if engine.config.scan_root:
        return Path(engine.config.scan_root).expanduser()
    return Path.home() / "Developer"


def _candidate_json(c: CandidateFile) -> dict:
    return {
        "id": c.id,
        "path": str(c.path),
        "size_bytes": c.size_bytes,
        "category": c.category.value,
        "state": str(c.state),
        "eligible": c.eligible,
        "is_dir": c.is_dir,
    }


def _stats_json(stats: AggregateStats) -> dict:
    return {
        "original_bytes": stats.original_bytes,
        "compressed_bytes": stats.compressed_bytes,
        "saved_bytes": stats.saved_bytes,
        "removed_bytes": stats.removed_bytes,
        "ratio": stats.ratio,
        "score": stats.score,
        "elapsed_seconds": stats.elapsed_seconds,
        "counts": {k.value: v for k, v in stats.counts.items()},
        "failure_reasons": stats.failure_reasons,
    }


@click.group()
@click.option("-v", "--verbose", count=True, help="Increase verbosity (-v info, -vv debug)")
@click.option(
    "--config", "config_path", type=click.Path(dir_okay=False, path_type=Path),
    default=None, help="Config file (default: $XDG_CONFIG_HOME/shrink/config.json)",
)
@click.pass_context
def main(ctx: click.Context, verbose: int, config_path: Path | None) -> None:
    """shrink — losslessly compress stale logs and build artifacts."""
    _setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


# ── scan ─────────────────────────────────────────────────────────────────

@main.command()
@click.argument("root", required=False)
@click.option("--all", "show_all", is_flag=True, help="Also list candidates that are not eligible")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def scan(ctx: click.Context, root: str | None, show_all: bool, as_json: bool) -> None:
    """Scan for compressible files (preview only, never modifies anything)."""
    engine = _build_engine(ctx)
    scan_root = _resolve_root(engine, root)

    if not as_json:
        click.echo(f"\n{click.style('🔍', bold=True)} Scanning {scan_root}...\n")

    found = list(engine.scan(scan_root))
    shown = found if show_all else [c for c in found if c.eligible]
    shown.sort(key=lambda c: c.size_bytes, reverse=True)

    if as_json:
        click.echo(json.dumps([_candidate_json(c) for c in shown], indent=2))
        return

    if not shown:
        click.echo("Nothing to compress.")
        return

    for c in shown:
        mark = click.style("✓", fg="green") if c.eligible else click.style("·", fg="bright_black")
        click.echo(
            f"  {mark} {bytes_to_human(c.size_bytes):>10s}  "
            f"{click.style(c.category.value, fg='cyan'):24s} {c.path}"
        )

    total = sum(c.size_bytes for c in shown if c.eligible)
    click.echo(f"\nEligible: {click.style(bytes_to_human(total), fg='green', bold=True)}\n")


# ── compress ─────────────────────────────────────────────────────────────

@main.command()
@click.argument("root", required=False)
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.option("--dry-run", is_flag=True, help="Show what would be compressed without doing it")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.option("--workers", "-w", type=int, default=None, help="Number of parallel workers")
@click.option("--level", "-l", type=int, default=None, help="Compression level")
@click.pass_context
def compress(
    ctx: click.Context,
    root: str | None,
    yes: bool,
    dry_run: bool,
    as_json: bool,
    workers: int | None,
    level: int | None,
) -> None:
    """Scan and compress eligible files in place."""
    engine = _build_engine(ctx, worker_count=workers, compression_quality=level)
    tracker = Tracker()
    scan_root = _resolve_root(engine, root)

    if not as_json:
        click.echo(f"\n{click.style('🔍', bold=True)} Scanning {scan_root}...\n")

    actionable = [c for c in engine.scan(scan_root) if c.eligible and c.state.kind is StateKind.PENDING]

    if not actionable:
        if as_json:
            click.echo(json.dumps({"status": "nothing_to_compress", "results": []}))
        else:
            click.echo("Nothing to compress.")
        return

    total = sum(c.size_bytes for c in actionable)
    if dry_run:
        if as_json:
            click.echo(json.dumps({"status": "dry_run", "candidates": [_candidate_json(c) for c in actionable]}, indent=2))
        else:
            click.echo(f"{len(actionable):,} candidates, {bytes_to_human(total)} (dry run — nothing was changed)")
        return

    if not yes and not as_json:
        click.echo(f"{len(actionable):,} candidates totaling {click.style(bytes_to_human(total), bold=True)}")
        if not click.confirm("Compress them now?", default=False):
            click.echo("Aborted.")
            return

    def on_event(event: ProgressEvent) -> None:
        if as_json or not event.state.is_terminal:
            return
        candidate = engine.get(event.candidate_id)
        name = str(candidate.path) if candidate else event.candidate_id
        match event.state.kind:
            case StateKind.COMPRESSED:
                saved = event.original_size - (event.compressed_size or 0)
                click.echo(f"  {click.style('✓', fg='green')} {name} — saved {bytes_to_human(saved)}")
            case StateKind.SKIPPED:
                click.echo(f"  {click.style('·', fg='bright_black')} {name} — {event.state.reason}")
            case _:
                click.echo(f"  {click.style('✗', fg='red')} {name} — {event.error}")

    handle = engine.start_compression([c.id for c in actionable], on_event=on_event)
    try:
        handle.wait()
    except KeyboardInterrupt:
        click.echo("\nCancelling — waiting for running jobs to finish...", err=True)
        engine.cancel()
        handle.wait()

    results = handle.results
    tracker.record(results)
    tracker.save_session()
    stats = engine.stats()

    if as_json:
        payload = {
            "status": "cancelled" if handle.cancelled else "compressed",
            "queued": handle.total,
            "processed": len(results),
            "stats": _stats_json(stats),
        }
        click.echo(json.dumps(payload, indent=2))
        return
    if len(results) < handle.total:
        click.echo(f"\n  Processed {len(results):,} of {handle.total:,} candidates before cancelling")
    _print_summary(stats)


def _print_summary(stats: AggregateStats) -> None:
    click.echo()
    click.echo(f"  Compressed:  {stats.count(StateKind.COMPRESSED):,}")
    click.echo(f"  Skipped:     {stats.count(StateKind.SKIPPED):,}")
    click.echo(f"  Failed:      {stats.count(StateKind.FAILED):,}")
    for reason, count in sorted(stats.failure_reasons.items(), key=lambda x: x[1], reverse=True):
        click.echo(f"    {count:>4d} × {reason}")
    click.echo(f"  Saved:       {click.style(bytes_to_human(stats.saved_bytes), fg='green', bold=True)}")
    click.echo(f"  Ratio:       {stats.ratio:.2f}×  in {format_elapsed(stats.elapsed_seconds)}")
    click.echo(f"  Score:       {stats.score:.2f}\n")


# ── delete ───────────────────────────────────────────────────────────────

@main.command()
@click.argument("paths", nargs=-1, required=True, type=click.Path(path_type=Path))
@click.option("--root", default=None, help="Directory to scan for the given paths")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_context
def delete(ctx: click.Context, paths: tuple[Path, ...], root: str | None, yes: bool) -> None:
    """Permanently delete scanned candidates (files or artifact directories)."""
    engine = _build_engine(ctx)
    wanted = {candidate_id(p): p for p in paths}
    found = {c.id: c for c in engine.scan(_resolve_root(engine, root)) if c.id in wanted}

    for cid, path in wanted.items():
        if cid not in found:
            click.echo(f"  {click.style('✗', fg='red')} {path} — not found by scan", err=True)

    if not found:
        sys.exit(1)

    tracker = Tracker()
    for c in found.values():
        prompt = f"Delete {c.path} ({bytes_to_human(c.size_bytes)}) forever?"
        if not yes and not click.confirm(prompt, default=False):
            click.echo(f"  {click.style('·', fg='bright_black')} {c.path} — kept")
            continue
        try:
            freed = engine.delete(c.id, confirm=True)
        except ShrinkError as e:
            click.echo(f"  {click.style('✗', fg='red')} {c.path} — {e}", err=True)
            continue
        tracker.record_removal(freed)
        click.echo(f"  {click.style('✓', fg='green')} {c.path} — freed {bytes_to_human(freed)}")

    if tracker.session_bytes_saved:
        click.echo(f"\nFreed {click.style(bytes_to_human(tracker.session_bytes_saved), fg='green', bold=True)}")
    tracker.save_session()


# ── stats ────────────────────────────────────────────────────────────────

@main.command()
@click.option("--period", "-p", default="all", type=click.Choice(["today", "week", "month", "all"]))
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def stats(period: str, as_json: bool) -> None:
    """Show space saved across sessions."""
    tracker = Tracker()
    data = tracker.get_stats(period)
    last = tracker.get_last_session_time()

    if as_json:
        click.echo(json.dumps({**data, "last_session": last}, indent=2))
        return

    click.echo(f"\n{click.style('📊', bold=True)} Statistics ({period})\n")
    click.echo(f"  Bytes saved:      {click.style(bytes_to_human(data['bytes_saved']), fg='green', bold=True)}")
    click.echo(f"  Files compressed: {data['files_compressed']:,}")
    click.echo(f"  Sessions:         {data['session_count']}")
    click.echo(f"  Lifetime total:   {click.style(bytes_to_human(data['lifetime_bytes_saved']), fg='cyan', bold=True)}")
    if last:
        click.echo(f"  Last session:     {last}")

    if data["per_state"]:
        click.echo("\n  Outcomes:")
        for state, count in sorted(data["per_state"].items(), key=lambda x: x[1], reverse=True):
            click.echo(f"    {state:20s} {count:,}")
    click.echo()
