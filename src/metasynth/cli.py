"""CLI interface for the meta-analysis engine.

Every command reads study data from a JSON file (a single object or a list of
objects) and prints a summary, or the full result as JSON with --json.
"""

import json
import logging
import math
from dataclasses import asdict
from pathlib import Path
from typing import Annotated, Any, NoReturn, TypeVar

import typer
from pydantic import BaseModel, ValidationError
from rich.console import Console
from rich.table import Table

from metasynth.analysis import (
    EffectSizeCalculator,
    HeterogeneityAnalyzer,
    NetworkConsistencyChecker,
    Pooler,
    PublicationBiasDetector,
)
from metasynth.config import get_config
from metasynth.exceptions import InvalidDataError, MetaAnalysisError
from metasynth.models import (
    BinaryOutcome,
    ContinuousOutcome,
    EffectMeasure,
    PoolingModel,
    StudyEffect,
    TreatmentComparison,
)

app = typer.Typer(
    name="metasynth",
    help="Meta-analysis engine: effect sizes, pooling, heterogeneity, publication bias and network consistency",
    no_args_is_help=True,
)
effect_app = typer.Typer(help="Calculate per-study effect sizes", no_args_is_help=True)
app.add_typer(effect_app, name="effect-size")

console = Console()
logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

JsonOption = Annotated[bool, typer.Option("--json", help="Print the full result as JSON")]


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging")] = False,
) -> None:
    """Meta-analysis engine for systematic reviews."""
    level = "DEBUG" if verbose else get_config().log_level
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(levelname)s: %(message)s",
    )


def _read_records(path: Path) -> list[dict[str, Any]]:
    if not path.exists():
        console.print(f"[red]Error:[/red] File not found: {path}")
        raise typer.Exit(1)
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        console.print(f"[red]Error:[/red] Invalid JSON in {path}: {e}")
        raise typer.Exit(1) from None

    records = data if isinstance(data, list) else [data]
    if not all(isinstance(r, dict) for r in records):
        console.print("[red]Error:[/red] Expected a JSON object or a list of objects")
        raise typer.Exit(1)
    return records


def _parse(records: list[dict[str, Any]], model: type[ModelT]) -> list[ModelT]:
    """Validate every record as the given model."""
    try:
        return [model.model_validate(record) for record in records]
    except ValidationError as e:
        console.print(f"[red]Error:[/red] Invalid {model.__name__} record: {e}")
        raise typer.Exit(1) from None


def _fail(error: MetaAnalysisError) -> NoReturn:
    console.print(f"[red]Error:[/red] {error}")
    if isinstance(error, InvalidDataError) and len(error.errors) > 1:
        for message in error.errors:
            console.print(f"  - {message}")
    raise typer.Exit(1) from None


def _json_safe(value: Any) -> Any:
    """Replace non-finite floats with None so the output is strict JSON."""
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, dict):
        return {key: _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    return value


def _print_json(result: Any) -> None:
    if isinstance(result, list):
        payload = [asdict(item) for item in result]
    else:
        payload = asdict(result)
    typer.echo(json.dumps(_json_safe(payload), indent=2, default=str, allow_nan=False))


def _print_warnings(warnings: list[str]) -> None:
    for warning in warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")


def _parse_measure(value: str | None, default: EffectMeasure, allowed: tuple[EffectMeasure, ...]) -> EffectMeasure:
    if value is None:
        return default
    measure: EffectMeasure | None
    try:
        measure = EffectMeasure(value.upper())
    except ValueError:
        measure = None
    if measure is None or measure not in allowed:
        names = ", ".join(m.value for m in allowed)
        console.print(f"[red]Error:[/red] Invalid effect measure: {value}. Use {names}.")
        raise typer.Exit(1)
    return measure


def _print_effects(records: list[dict[str, Any]], estimates: list[Any], measure: EffectMeasure) -> None:
    table = Table(title=f"Effect sizes ({measure.value})")
    table.add_column("Study")
    table.add_column("Effect", justify="right")
    table.add_column("95% CI", justify="right")
    table.add_column("SE", justify="right")
    table.add_column("Weight", justify="right")
    table.add_column("Confidence", justify="right")

    for i, (record, est) in enumerate(zip(records, estimates, strict=True), start=1):
        study = str(record.get("study_id", i))
        table.add_row(
            study,
            f"{est.point:.4f}",
            f"{est.ci_lower:.4f} to {est.ci_upper:.4f}",
            f"{est.standard_error:.4f}",
            f"{est.weight:.2f}",
            f"{est.confidence:.2f}",
        )
    console.print(table)
    for record, est in zip(records, estimates, strict=True):
        if est.warnings:
            console.print(f"[bold]{record.get('study_id', '')}[/bold]")
            _print_warnings(est.warnings)


@effect_app.command("binary")
def effect_binary(
    file: Annotated[Path, typer.Argument(help="JSON file with 2x2 table(s)")],
    measure: Annotated[str | None, typer.Option("--measure", "-m", help="Effect measure: OR, RR or RD")] = None,
    as_json: JsonOption = False,
) -> None:
    """Calculate OR, RR or RD from events and totals."""
    effect_measure = _parse_measure(
        measure,
        get_config().default_binary_measure,
        (EffectMeasure.OR, EffectMeasure.RR, EffectMeasure.RD),
    )
    records = _read_records(file)
    outcomes = _parse(records, BinaryOutcome)

    try:
        estimates = [EffectSizeCalculator.binary(outcome, effect_measure) for outcome in outcomes]
    except MetaAnalysisError as e:
        _fail(e)

    if as_json:
        _print_json(estimates)
        return
    _print_effects(records, estimates, effect_measure)


@effect_app.command("continuous")
def effect_continuous(
    file: Annotated[Path, typer.Argument(help="JSON file with group summary statistics")],
    measure: Annotated[str | None, typer.Option("--measure", "-m", help="Effect measure: MD or SMD")] = None,
    as_json: JsonOption = False,
) -> None:
    """Calculate MD or SMD (Hedges' g) from group means and SDs."""
    effect_measure = _parse_measure(
        measure,
        get_config().default_continuous_measure,
        (EffectMeasure.MD, EffectMeasure.SMD),
    )
    records = _read_records(file)
    outcomes = _parse(records, ContinuousOutcome)

    try:
        estimates = [EffectSizeCalculator.continuous(outcome, effect_measure) for outcome in outcomes]
    except MetaAnalysisError as e:
        _fail(e)

    if as_json:
        _print_json(estimates)
        return
    _print_effects(records, estimates, effect_measure)


@app.command("pool")
def pool(
    file: Annotated[Path, typer.Argument(help="JSON list of study effects")],
    model: Annotated[str | None, typer.Option("--model", "-m", help="Pooling model: fixed, random or auto")] = None,
    log_scale: Annotated[bool, typer.Option("--log-scale", help="Effects are log ratios (OR, RR)")] = False,
    as_json: JsonOption = False,
) -> None:
    """Pool study effects into a summary estimate."""
    if model is None:
        pooling_model = get_config().default_pooling_model
    else:
        try:
            pooling_model = PoolingModel(model.lower())
        except ValueError:
            console.print(f"[red]Error:[/red] Invalid pooling model: {model}. Use 'fixed', 'random' or 'auto'.")
            raise typer.Exit(1) from None

    studies = _parse(_read_records(file), StudyEffect)
    try:
        result = Pooler.pool(studies, model=pooling_model, log_scale=log_scale)
    except MetaAnalysisError as e:
        _fail(e)

    if as_json:
        _print_json(result)
        return

    het = result.heterogeneity
    console.print(f"\n[bold]Meta-Analysis Results ({result.model.value} effect)[/bold]")
    console.print(
        f"  Pooled effect: {result.pooled_effect:.3f} (95% CI: {result.ci_lower:.3f} to {result.ci_upper:.3f})"
    )
    if result.log_scale:
        effect, lower, upper = result.natural_scale()
        console.print(f"  Natural scale: {effect:.3f} (95% CI: {lower:.3f} to {upper:.3f})")
    console.print(f"  Z-score: {result.z_score:.3f}, p-value: {result.p_value:.4f}")
    console.print(f"  Heterogeneity: I² = {het.i_squared:.1f}%, Q = {het.q:.2f} (df = {het.df})")
    console.print(f"  Between-study variance: τ² = {het.tau_squared:.4f}")
    console.print(f"  {result.model_rationale}")
    console.print(f"  Confidence (heuristic): {result.confidence:.2f}")

    table = Table(title="Study weights")
    table.add_column("Study")
    table.add_column("Weight", justify="right")
    table.add_column("%", justify="right")
    for weight in result.weights:
        table.add_row(weight.study_id, f"{weight.weight:.2f}", f"{weight.weight_percent:.1f}")
    console.print(table)
    _print_warnings(result.warnings)


@app.command("heterogeneity")
def heterogeneity(
    file: Annotated[Path, typer.Argument(help="JSON list of study effects")],
    as_json: JsonOption = False,
) -> None:
    """Assess between-study heterogeneity."""
    studies = _parse(_read_records(file), StudyEffect)
    try:
        result = HeterogeneityAnalyzer.assess(studies)
    except MetaAnalysisError as e:
        _fail(e)

    if as_json:
        _print_json(result)
        return

    console.print(f"\n[bold]Heterogeneity ({result.n_studies} studies)[/bold]")
    console.print(f"  Q = {result.q_statistic:.3f} (df = {result.df}, p = {result.q_p_value:.4f})")
    console.print(f"  I² = {result.i_squared:.1f}% ({result.i_squared_interpretation})")
    console.print(f"  τ² = {result.tau_squared:.4f}, τ = {result.tau:.4f}, H² = {result.h_squared:.3f}")
    if result.prediction_interval:
        pi = result.prediction_interval
        console.print(f"  95% prediction interval: {pi.lower:.3f} to {pi.upper:.3f}")
    console.print(f"  Recommended model: {result.recommended_model.value}")
    console.print(f"\n{result.interpretation}")
    _print_warnings(result.warnings)


@app.command("bias")
def bias(
    file: Annotated[Path, typer.Argument(help="JSON list of study effects")],
    pooled_effect: Annotated[
        float | None, typer.Option("--pooled-effect", "-p", help="Pooled effect (default: fixed-effect estimate)")
    ] = None,
    as_json: JsonOption = False,
) -> None:
    """Check for funnel asymmetry and publication bias."""
    studies = _parse(_read_records(file), StudyEffect)
    try:
        if pooled_effect is None:
            pooled_effect = Pooler.pool_fixed(studies).pooled_effect
        result = PublicationBiasDetector.assess(studies, pooled_effect)
    except MetaAnalysisError as e:
        _fail(e)

    if as_json:
        _print_json(result)
        return

    console.print(f"\n[bold]Publication bias ({result.n_studies} studies)[/bold]")
    if result.egger.estimable:
        console.print(
            f"  Egger: intercept = {result.egger.intercept:.3f}, t = {result.egger.t_statistic:.3f}, "
            f"p = {result.egger.p_value:.4f}"
        )
    else:
        console.print(f"  Egger: {result.egger.interpretation}")
    if result.begg.estimable:
        console.print(f"  Begg: tau = {result.begg.tau:.3f}, p = {result.begg.p_value:.4f}")
    else:
        console.print(f"  Begg: {result.begg.interpretation}")
    console.print(f"  Funnel asymmetry: {'yes' if result.asymmetry.asymmetry_detected else 'no'}")
    console.print(f"\n{result.interpretation}")
    console.print(result.asymmetry.interpretation)
    _print_warnings(result.warnings)


@app.command("network")
def network(
    file: Annotated[Path, typer.Argument(help="JSON list of treatment comparisons")],
    as_json: JsonOption = False,
) -> None:
    """Assess consistency of a treatment comparison network."""
    comparisons = _parse(_read_records(file), TreatmentComparison)
    try:
        report = NetworkConsistencyChecker.assess(comparisons)
    except MetaAnalysisError as e:
        _fail(e)

    if as_json:
        _print_json(report)
        return

    console.print(
        f"\n[bold]Network consistency ({report.n_treatments} treatments, {report.n_comparisons} comparisons)[/bold]"
    )
    if report.loops:
        table = Table(title="Loops")
        table.add_column("Loop")
        table.add_column("IF", justify="right")
        table.add_column("SE", justify="right")
        table.add_column("p", justify="right")
        table.add_column("Inconsistent")
        for loop in report.loops:
            table.add_row(
                " - ".join(loop.treatments),
                f"{loop.inconsistency_factor:.3f}",
                f"{loop.se_inconsistency:.3f}",
                f"{loop.p_value:.4f}",
                "yes" if loop.is_inconsistent else "no",
            )
        console.print(table)

    splits = Table(title="Node-splitting")
    splits.add_column("Comparison")
    splits.add_column("Direct", justify="right")
    splits.add_column("Indirect", justify="right")
    splits.add_column("p", justify="right")
    for split in report.node_splits:
        if split.estimable:
            splits.add_row(
                f"{split.treatment_a} vs {split.treatment_b}",
                f"{split.direct_estimate:.3f}",
                f"{split.indirect_estimate:.3f}",
                f"{split.p_value:.4f}",
            )
        else:
            splits.add_row(f"{split.treatment_a} vs {split.treatment_b}", f"{split.direct_estimate:.3f}", "n/a", "n/a")
    console.print(splits)

    g = report.global_inconsistency
    console.print(f"  Global test: χ² = {g.chi_square:.3f} (df = {g.df}, p = {g.p_value:.4f})")
    console.print(f"  Severity: {report.severity}")
    console.print(f"\n{report.interpretation}")
    for recommendation in report.recommendations:
        console.print(f"  - {recommendation}")
    _print_warnings(report.warnings)


if __name__ == "__main__":
    app()
