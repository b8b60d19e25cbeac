"""
Main CLI application for the candle engine.

This module implements the command-line interface using Typer for command
management. It loads a tracker backup, builds candle series for a direction or
for the aggregate of all directions, and prints, exports or watches them.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

import typer
import yaml
from pydantic import ValidationError

from core.chart import AGGREGATE_ID, ChartEngine, CommentBook, candle_key
from core.clock import SimClock, set_clock
from core.entities import ViewWindow
from core.periods import IntervalInfo, PeriodCatalogue
from core.utils import format_countdown, format_score

from ..data_loader import (
    ImportValidationError,
    TrackerSnapshot,
    apply_snapshot,
    load_snapshot,
    parse_datetime,
    save_snapshot,
    series_to_frame,
    snapshot_from,
)
from ..logging_setup import setup_logging
from ..models import EngineConfig
from ..repository import InMemoryEntityStore

logger = logging.getLogger(__name__)

# Initialize Typer app
app = typer.Typer(
    name="candles",
    help="Candle charts for scored directions",
    add_completion=False,
)


@dataclass
class Session:
    """Everything a command needs after loading a backup."""

    engine: ChartEngine
    store: InMemoryEntityStore
    comments: CommentBook
    snapshot: TrackerSnapshot
    data_path: Path


def load_config(config_path: str | None) -> EngineConfig:
    """Load engine configuration, or defaults when no path is given."""
    if config_path is None:
        return EngineConfig()
    try:
        return EngineConfig.from_yaml(config_path)
    except FileNotFoundError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e
    except (ValidationError, ValueError) as e:
        typer.echo(f"Error loading configuration: {e}", err=True)
        raise typer.Exit(1) from e


def open_session(
    data: str, config: EngineConfig, at: str | None = None, autosave: bool = False
) -> Session:
    """Load a backup into a fresh store and engine.

    Args:
        data: Path to the JSON backup
        config: Engine configuration
        at: Optional ISO instant to use as "now" instead of the wall clock
        autosave: Write the backup back to ``data`` after every mutation
    """
    if at is not None:
        try:
            set_clock(SimClock(parse_datetime(at)))
        except ValueError as e:
            typer.echo(f"Error: invalid --at value: {e}", err=True)
            raise typer.Exit(1) from e

    data_path = Path(data)
    try:
        snapshot = load_snapshot(data_path)
    except FileNotFoundError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e
    except ImportValidationError as e:
        typer.echo(f"❌ Invalid data file: {e}", err=True)
        raise typer.Exit(1) from e

    store = InMemoryEntityStore()
    comments = CommentBook()
    session: Session | None = None

    def persist() -> None:
        if session is not None:
            save_snapshot(
                snapshot_from(
                    store, comments, session.engine, extras=session.snapshot.extras
                ),
                data_path,
            )

    engine = ChartEngine(
        store,
        zoom_config=config.to_zoom_config(),
        aggregate_zoom_config=config.to_aggregate_zoom_config(),
        comments=comments,
        on_mutated=persist if autosave else None,
        cache_max_entries=config.cache.max_entries,
        tick_interval_ms=config.to_scheduler_interval(),
    )
    apply_snapshot(snapshot, store, engine, comments)
    session = Session(engine, store, comments, snapshot, data_path)
    return session


def _resolve_period(period: str) -> str:
    if PeriodCatalogue.resolve(period) is None:
        typer.echo(
            f"Error: unknown period {period!r}. Valid: {', '.join(PeriodCatalogue.codes())}",
            err=True,
        )
        raise typer.Exit(1)
    return period


def render_window(window: ViewWindow, period: str) -> list[str]:
    """Text rows for a window, newest last."""
    resolved = PeriodCatalogue.resolve(period)
    fmt = "%Y-%m-%d %H:%M:%S" if resolved and resolved.is_fixed_interval else "%Y-%m-%d"
    lines = []
    for index, candle in enumerate(window.candles):
        flags = ""
        if candle.is_active:
            flags += " *"
        if window.annotated and window.annotated[index]:
            flags += " ✎"
        lines.append(
            f"{candle.display_at.strftime(fmt)}  "
            f"O {format_score(candle.open):>9}  H {format_score(candle.high):>9}  "
            f"L {format_score(candle.low):>9}  C {format_score(candle.close):>9}  "
            f"n={candle.event_count}{flags}"
        )
    return lines


@app.command()
def show(
    data: str = typer.Argument(..., help="Path to tracker JSON backup"),
    direction: str = typer.Option(
        AGGREGATE_ID, "--direction", "-d", help="Direction id (ALL for the sum)"
    ),
    period: str = typer.Option("1m", "--period", "-p", help="Candle period"),
    count: int | None = typer.Option(
        None, "--count", "-n", help="Visible candles (zoom level)"
    ),
    at: str | None = typer.Option(None, "--at", help="ISO instant to treat as now"),
    config: str | None = typer.Option(
        None, "--config", "-c", help="Engine configuration file"
    ),
    breakdown: bool = typer.Option(
        False, "--breakdown", help="Per-direction contributions to the last candle"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """Print the visible candles for a direction or the aggregate."""
    engine_config = load_config(config)
    setup_logging(engine_config.logging, verbose)
    period = _resolve_period(period)
    session = open_session(data, engine_config, at)
    engine = session.engine

    chart = "aggregate" if direction == AGGREGATE_ID else "primary"
    engine.select(None if direction == AGGREGATE_ID else direction, period)
    if count is not None:
        engine.reset_zoom(count, chart=chart)

    window = engine.get_view_window(direction, period)
    if window is None:
        typer.echo(f"No data for direction {direction!r}")
        raise typer.Exit(0)

    series = engine.get_series(direction, period)
    name = series.entity_name if series is not None else direction
    typer.echo(f"{name} [{period}]")
    if window.is_partial:
        typer.echo(window.position_label())
    for line in render_window(window, period):
        typer.echo(line)

    last = window.candles[-1]
    key = candle_key(direction, period, last)
    comment = session.comments.get_comment(key)
    if comment:
        typer.echo(f"Comment: {comment}")

    if breakdown and direction == AGGREGATE_ID:
        result = engine.breakdown(last)
        if result is not None:
            for item in result.contributions:
                typer.echo(
                    f"  {item.source_name}: {format_score(item.total)} ({item.count} scores)"
                )


@app.command()
def export(
    data: str = typer.Argument(..., help="Path to tracker JSON backup"),
    output: str = typer.Argument(..., help="CSV file to write"),
    direction: str = typer.Option(AGGREGATE_ID, "--direction", "-d"),
    period: str = typer.Option("1d", "--period", "-p", help="Candle period"),
    at: str | None = typer.Option(None, "--at", help="ISO instant to treat as now"),
    config: str | None = typer.Option(None, "--config", "-c"),
) -> None:
    """Write the full candle series to CSV."""
    engine_config = load_config(config)
    setup_logging(engine_config.logging)
    period = _resolve_period(period)
    session = open_session(data, engine_config, at)

    series = session.engine.get_series(direction, period)
    if series is None:
        typer.echo(f"No data for direction {direction!r}", err=True)
        raise typer.Exit(1)

    output_path = Path(output)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    series_to_frame(series).to_csv(output_path, index=False)
    typer.echo(f"✅ Exported {len(series)} candles to {output_path}")


@app.command()
def record(
    data: str = typer.Argument(..., help="Path to tracker JSON backup"),
    direction: str = typer.Argument(..., help="Direction id"),
    value: float = typer.Argument(..., help="Score to add (non-zero)"),
    config: str | None = typer.Option(None, "--config", "-c"),
) -> None:
    """Add a score to a direction and save the backup."""
    engine_config = load_config(config)
    setup_logging(engine_config.logging)
    session = open_session(data, engine_config, autosave=True)

    if not session.engine.record_score(direction, value):
        typer.echo(f"❌ Score not recorded for direction {direction!r}", err=True)
        raise typer.Exit(1)
    entity = session.store.get_entity(direction)
    total = entity.total if entity is not None else value
    typer.echo(f"✅ {direction}: {format_score(value)} (total {format_score(total)})")


@app.command()
def periods() -> None:
    """List the supported candle periods."""
    for period in PeriodCatalogue.periods():
        typer.echo(f"{period.code:>4}  {period.label:<12} axis: {period.axis_label}")


@app.command()
def watch(
    data: str = typer.Argument(..., help="Path to tracker JSON backup"),
    direction: str = typer.Option(AGGREGATE_ID, "--direction", "-d"),
    period: str = typer.Option("10s", "--period", "-p", help="Candle period"),
    duration: float = typer.Option(
        30.0, "--duration", help="Seconds to watch before exiting"
    ),
    config: str | None = typer.Option(None, "--config", "-c"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """Follow the charts live and print each new candle as it opens."""
    engine_config = load_config(config)
    setup_logging(engine_config.logging, verbose)
    period = _resolve_period(period)
    session = open_session(data, engine_config)
    engine = session.engine

    def on_window(chart, window: ViewWindow | None) -> None:
        if window is None or not window.candles:
            return
        last = window.candles[-1]
        typer.echo(
            f"[{chart.value}] {last.period_start:%H:%M:%S} "
            f"close {format_score(last.close)} ({window.position_label()})"
        )

    def on_tick(info: IntervalInfo) -> None:
        logger.debug(f"{info.period.label} closes in {format_countdown(info.time_left_ms)}")

    engine.on_window = on_window
    engine.on_tick = on_tick
    engine.select(None if direction == AGGREGATE_ID else direction, period)
    if engine.scheduler.period is not None and not engine.scheduler.period.is_fixed_interval:
        typer.echo("Calendar-day mode has no intraday rollovers; showing countdown only")

    async def _watch() -> None:
        engine.scheduler.start()
        try:
            await asyncio.sleep(duration)
        finally:
            await engine.scheduler.shutdown()

    asyncio.run(_watch())
    typer.echo(
        f"Stopped after {engine.scheduler.ticks} ticks, "
        f"{engine.scheduler.rollovers} rollovers"
    )


@app.command("config")
def show_config(
    config: str | None = typer.Option(None, "--config", "-c"),
) -> None:
    """Print the effective engine configuration as YAML."""
    engine_config = load_config(config)
    typer.echo(yaml.safe_dump(engine_config.model_dump(), sort_keys=False))


if __name__ == "__main__":
    app()
