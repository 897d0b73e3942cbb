"""CLI application using Typer for the evidence synthesis engines."""

import json
from pathlib import Path
from typing import Any, Dict, List, NoReturn, Optional

import pandas as pd
import typer
from pydantic import BaseModel
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..core.errors import EvidenceSynthesisError
from ..core.models import StudyEffect
from ..meta.analyzer import MetaAnalyzer
from ..meta.normalizer import EffectSizeNormalizer
from ..quality.models import Downgrading, RecommendationInputs, StudyDesign, Upgrading
from ..utils.logging import get_logger

app = typer.Typer(
    name="evsyn",
    help="Evidence synthesis statistics - heterogeneity, publication bias and GRADE",
    add_completion=False,
)

console = Console()
logger = get_logger(__name__)

STUDY_COLUMNS = [
    "study_id", "effect_size", "standard_error", "ci_lower", "ci_upper", "sample_size", "measure",
    "events_intervention", "total_intervention", "events_control", "total_control",
    "mean_intervention", "sd_intervention", "n_intervention",
    "mean_control", "sd_control", "n_control",
]


def load_study_records(path: Path) -> List[Dict[str, Any]]:
    """Read study records from a JSON list/object or a CSV file."""
    if path.suffix.lower() == ".csv":
        df = pd.read_csv(path)
        if "study_id" not in df.columns:
            raise ValueError("CSV is missing the study_id column")
        df = df[[c for c in STUDY_COLUMNS if c in df.columns]].copy()
        df["study_id"] = df["study_id"].astype(str)
        records = df.astype(object).where(df.notna(), None).to_dict(orient="records")
        return [{k: v for k, v in record.items() if v is not None} for record in records]
    data = json.loads(path.read_text())
    if isinstance(data, dict):
        data = data.get("studies", [])
    if not isinstance(data, list):
        raise ValueError("JSON input must be a list of studies or an object with 'studies'")
    return data


def load_studies(path: Path) -> List[StudyEffect]:
    return EffectSizeNormalizer().from_records(load_study_records(path))


def _emit_json(result: BaseModel) -> None:
    typer.echo(result.model_dump_json(indent=2))


def _print_warnings(warnings: List[str]) -> None:
    for warning in warnings:
        console.print(f"[yellow]⚠ {warning}[/yellow]")


def _fail(exc: Exception) -> NoReturn:
    logger.error(f"Command failed: {exc}")
    console.print(f"[red]Error: {escape(str(exc))}[/red]")
    raise typer.Exit(1)


@app.command()
def heterogeneity(
    studies_file: Path = typer.Argument(..., help="JSON or CSV file with study effects", exists=True),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
) -> None:
    """Assess between-study heterogeneity (Q, I², τ², H², prediction interval)."""
    try:
        studies = load_studies(studies_file)
        result = MetaAnalyzer().assess_heterogeneity(studies)
    except (EvidenceSynthesisError, ValueError) as exc:
        _fail(exc)
    if as_json:
        _emit_json(result)
        return
    table = Table(title=f"Heterogeneity ({result.n_studies} studies)")
    table.add_column("Statistic", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Q", f"{result.q_statistic:.4f}")
    table.add_row("df", str(result.df))
    table.add_row("p (Q)", f"{result.q_p_value:.4f}")
    table.add_row("I²", f"{result.i_squared:.1f}% ({result.i_squared_interpretation})")
    table.add_row("τ²", f"{result.tau_squared:.4f}")
    table.add_row("H²", f"{result.h_squared:.3f}")
    if result.prediction_interval is not None:
        interval = result.prediction_interval
        table.add_row("Prediction interval", f"[{interval.lower:.4f}, {interval.upper:.4f}]")
    table.add_row("Recommended model", result.recommended_model)
    table.add_row("Confidence", f"{result.confidence:.2f}")
    console.print(table)
    console.print(result.interpretation)
    _print_warnings(result.warnings)


@app.command()
def bias(
    studies_file: Path = typer.Argument(..., help="JSON or CSV file with study effects", exists=True),
    pooled_effect: Optional[float] = typer.Option(None, "--pooled-effect", help="Pooled effect (default: fixed-effect estimate)"),
    trim_fill: bool = typer.Option(True, "--trim-fill/--no-trim-fill", help="Run trim-and-fill"),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
) -> None:
    """Test for publication bias (Egger, Begg, trim-and-fill)."""
    analyzer = MetaAnalyzer()
    analyzer.bias_engine.include_trim_and_fill = trim_fill
    try:
        studies = load_studies(studies_file)
        result = analyzer.publication_bias_test(studies, pooled_effect)
    except (EvidenceSynthesisError, ValueError) as exc:
        _fail(exc)
    if as_json:
        _emit_json(result)
        return
    table = Table(title=f"Publication bias ({result.n_studies} studies)")
    table.add_column("Test", style="cyan")
    table.add_column("Statistic", justify="right")
    table.add_column("p", justify="right")
    table.add_column("Interpretation")
    eggers = result.eggers_test
    beggs = result.beggs_test
    table.add_row("Egger", f"intercept={eggers.intercept:.4f}", f"{eggers.p_value:.4f}", eggers.interpretation)
    table.add_row("Begg", f"tau={beggs.tau:.4f}", f"{beggs.p_value:.4f}", beggs.interpretation)
    console.print(table)
    if result.trim_and_fill is not None:
        tf = result.trim_and_fill
        console.print(
            f"Trim-and-fill: {tf.n_trimmed} imputed, adjusted effect {tf.adjusted_effect:.4f} "
            f"[{tf.adjusted_ci_lower:.4f}, {tf.adjusted_ci_upper:.4f}]"
        )
    verdict = result.overall_assessment
    colour = "red" if verdict.bias_detected else "green"
    console.print(f"[{colour}]{verdict.interpretation}[/{colour}] (confidence: {verdict.confidence})")
    _print_warnings(result.warnings)


@app.command()
def pool(
    studies_file: Path = typer.Argument(..., help="JSON or CSV file with study effects", exists=True),
    method: str = typer.Option("auto", "--method", help="Pooling method: 'fixed', 'random' or 'auto'"),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
) -> None:
    """Pool study effects under a fixed or random effects model.

    ``auto`` chooses random effects when I² exceeds 50%.
    """
    if method not in ("fixed", "random", "auto"):
        console.print("[red]Error: --method must be 'fixed', 'random' or 'auto'[/red]")
        raise typer.Exit(1)
    try:
        studies = load_studies(studies_file)
        result = MetaAnalyzer().compute_pooled_effect(studies, method=method)  # type: ignore[arg-type]
    except (EvidenceSynthesisError, ValueError) as exc:
        _fail(exc)
    if as_json:
        _emit_json(result)
        return
    table = Table(title=f"Pooled effect ({result.model} effects)")
    table.add_column("Study", style="cyan")
    table.add_column("Weight %", justify="right")
    for weight in result.weights:
        table.add_row(weight.study_id, f"{weight.weight_percent:.1f}")
    console.print(table)
    console.print(
        f"Pooled effect: {result.pooled_effect:.4f} ± {result.standard_error:.4f} "
        f"[{result.ci_lower:.4f}, {result.ci_upper:.4f}], p = {result.p_value:.4f}"
    )
    _print_warnings(result.warnings)


@app.command()
def grade(
    assessment_file: Path = typer.Argument(..., help="JSON file with a GRADE assessment", exists=True),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
) -> None:
    """
    Rate evidence quality with GRADE.

    The input JSON holds ``outcome``, ``study_design``, ``downgrading``
    and optionally ``upgrading`` and ``recommendation_inputs``.
    """
    try:
        data = json.loads(assessment_file.read_text())
        if not isinstance(data, dict):
            raise ValueError("GRADE assessment JSON must be an object")
        upgrading = data.get("upgrading")
        inputs = data.get("recommendation_inputs")
        result = MetaAnalyzer().assess_grade(
            outcome=data.get("outcome", "unspecified outcome"),
            study_design=StudyDesign(data["study_design"]),
            downgrading=Downgrading.model_validate(data.get("downgrading", {})),
            upgrading=Upgrading.model_validate(upgrading) if upgrading is not None else None,
            recommendation_inputs=RecommendationInputs.model_validate(inputs) if inputs is not None else None,
        )
    except (KeyError, ValueError) as exc:
        _fail(exc)
    if as_json:
        _emit_json(result)
        return
    console.print(f"[bold]{result.outcome}[/bold] ({result.study_design.value})")
    console.print(result.quality_explanation)
    console.print(f"Final quality: [bold]{result.final_quality.value}[/bold] (confidence {result.confidence:.2f})")
    if result.recommendation is not None:
        console.print(f"Recommendation: {result.recommendation.strength.value} - {result.recommendation.rationale}")
    _print_warnings(result.warnings)


@app.command()
def version() -> None:
    """Show version information."""
    from .. import __version__
    console.print(f"Evidence Synthesis Core v{__version__}")
