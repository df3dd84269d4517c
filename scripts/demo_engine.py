# ABOUTME: Provides a CLI that replays a catalog fixture through the recommendation and planning engine.
# ABOUTME: Prints recommendations, learning paths, weak areas and offline model metrics.

import sys
from pathlib import Path
from typing import List, Optional

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from src.common.catalog import load_fixture
from src.common.config import load_engine_config
from src.common.errors import EngineError
from src.common.evaluation import evaluate_predictions, feedback_predictions
from src.common.stores import InMemoryCatalogStore, InMemoryLearnerStore, InMemoryProgressStore
from src.engine.facade import LearningEngine
from src.planner.cancellation import CancellationToken

console = Console()
app = typer.Typer(help="Recommend courses and plan learning paths from a YAML catalog fixture.")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Show engine debug logs.")) -> None:
    """Configure logging before any command runs."""
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "WARNING", format="<level>{message}</level>")


def _default_fixture() -> Path:
    return Path("configs/sample_catalog.yaml")


def _build_engine(fixture_path: Path, config_path: Optional[Path]):
    fixture = load_fixture(fixture_path)
    engine = LearningEngine(
        learner_store=InMemoryLearnerStore(fixture.learners),
        progress_store=InMemoryProgressStore(),
        catalog_store=InMemoryCatalogStore(fixture.courses),
        config=load_engine_config(config_path),
    )
    stats = engine.ingestor.ingest_all(fixture.events, flush_timeout=30.0)
    console.print(
        f"[dim]Replayed {stats.accepted} events ({stats.duplicates} duplicates, {stats.failed} failed); "
        f"model v{engine.model.version}[/dim]"
    )
    return engine, fixture


@app.command()
def recommend(
    learner_id: str = typer.Option(..., "--learner-id", help="Learner identifier in the fixture."),
    k: int = typer.Option(5, "--k", help="Maximum number of courses to recommend."),
    fixture: Path = typer.Option(_default_fixture(), "--fixture", help="Catalog/learner/event YAML fixture."),
    config: Optional[Path] = typer.Option(None, "--config", help="Engine config YAML (defaults if omitted)."),
) -> None:
    """Rank catalog courses for a learner."""
    engine, _ = _build_engine(fixture, config)
    try:
        result = engine.recommend(learner_id, k)
    except EngineError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)
    finally:
        engine.close()

    if result.status != "ok":
        console.print(f"[yellow]No candidate courses for {learner_id} ({result.status})[/yellow]")
        return
    if result.cold_start:
        console.print(f"[yellow]{learner_id} is in cold start; scores come from the population prior.[/yellow]")
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Course")
    table.add_column("Confidence")
    table.add_column("Rationale")
    for item in result.items:
        table.add_row(item.course_id, f"{item.confidence:.3f}", item.rationale.value)
    console.print(table)


@app.command()
def plan(
    learner_id: str = typer.Option(..., "--learner-id", help="Learner identifier in the fixture."),
    goal: List[str] = typer.Option(None, "--goal", help="Goal skill tag; repeat for several. Defaults to the learner's goals."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Abort planning after this many seconds."),
    fixture: Path = typer.Option(_default_fixture(), "--fixture", help="Catalog/learner/event YAML fixture."),
    config: Optional[Path] = typer.Option(None, "--config", help="Engine config YAML (defaults if omitted)."),
) -> None:
    """Plan the cheapest prerequisite-respecting course sequence toward the goals."""
    engine, _ = _build_engine(fixture, config)
    try:
        path = engine.plan_path(learner_id, goal or None, cancel_token=CancellationToken(timeout=timeout))
    except EngineError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)
    finally:
        engine.close()

    if not path.course_ids:
        console.print(f"[green]{learner_id} already meets every goal ({', '.join(sorted(path.goals))}).[/green]")
        return
    console.rule(f"[bold blue]Learning path for {learner_id}[/bold blue]")
    for step, course_id in enumerate(path.course_ids, start=1):
        console.print(f"  {step}. {course_id}")
    console.print(f"[bold]Duration:[/] {path.total_duration:g}  [bold]Cost:[/] {path.total_cost:.2f}")
    if path.remediated_skills:
        console.print(f"[bold]Remediates:[/] {', '.join(path.remediated_skills)}")


@app.command("weak-areas")
def weak_areas(
    learner_id: str = typer.Option(..., "--learner-id", help="Learner identifier in the fixture."),
    fixture: Path = typer.Option(_default_fixture(), "--fixture", help="Catalog/learner/event YAML fixture."),
    config: Optional[Path] = typer.Option(None, "--config", help="Engine config YAML (defaults if omitted)."),
) -> None:
    """Show recency-weighted deficiency per skill."""
    engine, _ = _build_engine(fixture, config)
    try:
        profile = engine.weakness(learner_id)
    finally:
        engine.close()

    if profile is None or not profile.deficiencies:
        console.print(f"[green]No quiz history for {learner_id}[/green]")
        return
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Skill")
    table.add_column("Deficiency")
    table.add_column("Attempts")
    table.add_column("Weak")
    for skill in sorted(profile.deficiencies, key=lambda s: (-profile.deficiencies[s], s)):
        flag = "[red]yes[/red]" if profile.is_weak(skill) else "no"
        table.add_row(skill, f"{profile.deficiencies[skill]:.3f}", str(profile.attempt_counts[skill]), flag)
    console.print(table)


@app.command()
def evaluate(
    fixture: Path = typer.Option(_default_fixture(), "--fixture", help="Catalog/learner/event YAML fixture."),
    config: Optional[Path] = typer.Option(None, "--config", help="Engine config YAML (defaults if omitted)."),
    model_out: Optional[Path] = typer.Option(None, "--model-out", help="Optional .npz path for the trained snapshot."),
) -> None:
    """Replay feedback, then score the logged outcomes with the trained model."""
    engine, loaded = _build_engine(fixture, config)
    try:
        predictions = feedback_predictions(
            engine.model, engine.extractor, engine.learner_store.snapshot(), engine.catalog_store.get_graph(), loaded.events
        )
        if model_out is not None:
            model_out.parent.mkdir(parents=True, exist_ok=True)
            engine.model.save(model_out)
            console.print(f"[dim]Saved model v{engine.model.version} to {model_out}[/dim]")
    finally:
        engine.close()

    metrics = evaluate_predictions(predictions, ["auc", "average_precision", "calibration_ece", "brier"])
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Metric")
    table.add_column("Value")
    for name, value in metrics.items():
        table.add_row(name, f"{value:.4f}")
    console.print(table)


if __name__ == "__main__":
    app()
