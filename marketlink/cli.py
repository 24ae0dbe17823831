"""CLI for marketlink.

Commands for running the relationship engine on an entities file:
- Full relationship analysis with insights
- Single-pair correlation and mutual information
- Network visualization payload export
- Co-movement cluster detection
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click
import structlog
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

if TYPE_CHECKING:
    from marketlink.analysis import AnalysisOptions, AnalysisResult, Entity
    from marketlink.config import AnalysisSettings

console = Console()


# ============================================================================
# Rich Formatting Helpers
# ============================================================================


def format_importance_badge(importance: str) -> Text:
    """Format insight importance as colored badge."""
    colors = {
        "low": "blue",
        "medium": "yellow",
        "high": "red bold",
    }
    color = colors.get(importance.lower(), "white")
    return Text(f"[{importance.upper()}]", style=color)


def format_coefficient(value: float) -> str:
    """Format a signed coefficient with a color for its direction."""
    if value > 0:
        return f"[green]{value:+.3f}[/green]"
    if value < 0:
        return f"[red]{value:+.3f}[/red]"
    return f"{value:.3f}"


def _stderr_logger_factory(*args: object) -> structlog.PrintLogger:
    # sys.stderr is looked up per logger, not at configure time
    return structlog.PrintLogger(file=sys.stderr)


def configure_logging(verbose: bool = False) -> None:
    """Send log events to stderr so stdout stays clean for JSON output."""
    structlog.configure(
        logger_factory=_stderr_logger_factory,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.INFO if verbose else logging.WARNING
        ),
    )


def _load_entities(path: Path) -> list[Entity]:
    import yaml
    from pydantic import ValidationError as PydanticValidationError

    from marketlink.config import load_entities_config

    try:
        return load_entities_config(path)
    except (PydanticValidationError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid entities file {path}: {escape(str(e))}[/red]")
        raise SystemExit(1) from e


def _run_analysis(
    settings: AnalysisSettings, entities: list[Entity], options: AnalysisOptions
) -> AnalysisResult:
    from marketlink.analysis import AnalysisError, RelationshipAnalysisManager

    try:
        return RelationshipAnalysisManager(settings).analyze_relationships(entities, options)
    except AnalysisError as e:
        console.print(f"[red]Analysis failed: {escape(str(e))}[/red]")
        raise SystemExit(1) from e


def _print_result(result: AnalysisResult) -> None:
    console.print(
        Panel(
            f"Entities: {result.entity_count}  "
            f"Correlations: {len(result.correlations)}  "
            f"Significant: {len(result.significant_correlations)}  "
            f"Insights: {len(result.insights)}",
            title="Relationship Analysis",
        )
    )

    if result.correlations:
        table = Table(title="Correlations")
        table.add_column("Pair")
        table.add_column("r", justify="right")
        table.add_column("p", justify="right")
        table.add_column("n", justify="right")
        table.add_column("Strength")
        table.add_column("Significant")

        ordered = sorted(
            result.correlations.items(),
            key=lambda item: abs(item[1].coefficient),
            reverse=True,
        )
        for key, corr in ordered:
            table.add_row(
                key,
                format_coefficient(corr.coefficient),
                f"{corr.p_value:.3f}",
                str(corr.sample_size),
                corr.interpretation.value,
                "yes" if corr.significant else "no",
            )
        console.print(table)

    metrics = result.network_metrics
    if metrics is not None and metrics.communities:
        table = Table(title="Communities")
        table.add_column("ID", justify="right")
        table.add_column("Size", justify="right")
        table.add_column("Members")
        for community in metrics.communities:
            table.add_row(
                str(community.id), str(community.size), ", ".join(community.members)
            )
        console.print(table)

    if result.insights:
        table = Table(title="Insights")
        table.add_column("Importance")
        table.add_column("Type", style="cyan")
        table.add_column("Message")
        for insight in result.insights:
            table.add_row(
                format_importance_badge(insight.importance.value),
                insight.insight_type.value,
                insight.message,
            )
        console.print(table)
    else:
        console.print("[dim]No insights for this entity set.[/dim]")


# ============================================================================
# Commands
# ============================================================================


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to analysis settings YAML file",
)
@click.option("--verbose", "-v", is_flag=True, help="Log progress to stderr")
@click.pass_context
def main(ctx: click.Context, config: Path | None, verbose: bool) -> None:
    """marketlink - correlation and network analysis for market entities."""
    from marketlink.config import load_analysis_settings

    configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = load_analysis_settings(config)


@main.command()
@click.argument("entities_file", type=click.Path(exists=True, path_type=Path))
@click.option(
    "--window",
    "-w",
    type=click.IntRange(min=1),
    default=None,
    help="Compare only the last N points",
)
@click.option(
    "--method",
    "-m",
    type=click.Choice(["pearson", "spearman"]),
    default="pearson",
    help="Correlation coefficient",
)
@click.option("--threshold", "-t", type=float, default=None, help="Community edge threshold")
@click.option("--no-network", is_flag=True, help="Skip graph construction")
@click.option("--format", "-f", type=click.Choice(["text", "json"]), default="text")
@click.pass_context
def analyze(
    ctx: click.Context,
    entities_file: Path,
    window: int | None,
    method: str,
    threshold: float | None,
    no_network: bool,
    format: str,
) -> None:
    """Run correlation and network analysis over an entities file.

    Examples:

        marketlink analyze entities.yaml

        marketlink analyze entities.yaml -w 60 -m spearman -f json
    """
    from marketlink.analysis import AnalysisOptions, CorrelationMethod

    settings = ctx.obj["settings"]
    entities = _load_entities(entities_file)

    overrides = {
        "method": CorrelationMethod(method),
        "include_network": not no_network,
    }
    if window is not None:
        overrides["time_window"] = window
    if threshold is not None:
        overrides["community_threshold"] = threshold

    result = _run_analysis(
        settings, entities, AnalysisOptions.from_settings(settings, **overrides)
    )

    if format == "json":
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        _print_result(result)


@main.command()
@click.argument("entities_file", type=click.Path(exists=True, path_type=Path))
@click.argument("first")
@click.argument("second")
@click.option(
    "--method",
    "-m",
    type=click.Choice(["pearson", "spearman"]),
    default="pearson",
    help="Correlation coefficient",
)
@click.option("--bins", "-b", type=int, default=None, help="Bins for mutual information")
@click.pass_context
def correlate(
    ctx: click.Context,
    entities_file: Path,
    first: str,
    second: str,
    method: str,
    bins: int | None,
) -> None:
    """Compare two entities from an entities file."""
    from marketlink.analysis import (
        AnalysisError,
        CorrelationAnalyzer,
        CorrelationMethod,
    )
    from marketlink.analysis.manager import aligned_values

    settings = ctx.obj["settings"]
    by_id = {entity.id: entity for entity in _load_entities(entities_file)}

    missing = [entity_id for entity_id in (first, second) if entity_id not in by_id]
    if missing:
        console.print(f"[red]Unknown entity: {', '.join(missing)}[/red]")
        raise SystemExit(1)

    analyzer = CorrelationAnalyzer(
        significance_level=settings.significance_level,
        bins=settings.mutual_information_bins,
    )
    x, y = aligned_values(by_id[first], by_id[second], settings.time_window)

    try:
        corr = analyzer.correlate(x, y, CorrelationMethod(method))
        mi = analyzer.mutual_information(x, y, bins)
    except AnalysisError as e:
        console.print(f"[red]Cannot compare {first} and {second}: {escape(str(e))}[/red]")
        raise SystemExit(1) from e

    table = Table(title=f"{first} vs {second}")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Method", corr.method.value)
    table.add_row("Coefficient", format_coefficient(corr.coefficient))
    table.add_row("p-value", f"{corr.p_value:.3f}")
    table.add_row("Significant", "yes" if corr.significant else "no")
    table.add_row("Sample size", str(corr.sample_size))
    table.add_row("Strength", corr.interpretation.value)
    table.add_row("Mutual information", f"{mi.mutual_information:.4f} bits")
    table.add_row("Normalized MI", f"{mi.normalized_mi:.3f}")
    console.print(table)


@main.command()
@click.argument("entities_file", type=click.Path(exists=True, path_type=Path))
@click.pass_context
def network(ctx: click.Context, entities_file: Path) -> None:
    """Print the correlation network as render-ready JSON."""
    from marketlink.analysis import AnalysisOptions

    settings = ctx.obj["settings"]
    result = _run_analysis(
        settings,
        _load_entities(entities_file),
        AnalysisOptions.from_settings(settings, include_causality=False),
    )
    click.echo(json.dumps(result.network_metrics.visualization, indent=2))


@main.command()
@click.argument("entities_file", type=click.Path(exists=True, path_type=Path))
@click.option(
    "--window", "-w", type=click.IntRange(min=2), default=30, help="Prices compared per pair"
)
@click.option("--threshold", "-t", type=float, default=0.7, help="Minimum return correlation")
def comovement(entities_file: Path, window: int, threshold: float) -> None:
    """Find clusters of entities whose values move together as prices."""
    from marketlink.analysis import find_co_movement_patterns

    price_data = {
        entity.id: entity.values()
        for entity in _load_entities(entities_file)
        if entity.has_time_series
    }
    clusters = find_co_movement_patterns(price_data, time_window=window, threshold=threshold)

    if not clusters:
        console.print("[yellow]No co-moving entities found.[/yellow]")
        return

    table = Table(title="Co-movement Clusters")
    table.add_column("Symbols")
    table.add_column("Avg r", justify="right")
    table.add_column("Pattern")
    table.add_column("Pairs", justify="right")
    for cluster in clusters:
        table.add_row(
            ", ".join(cluster.symbols),
            f"{cluster.average_coefficient:.3f}",
            cluster.pattern.value,
            str(len(cluster.pairs)),
        )
    console.print(table)


@main.command()
@click.option("--format", "-f", type=click.Choice(["text", "json"]), default="text")
def version(format: str) -> None:
    """Show marketlink version and system information."""
    import platform
    import sys
    from importlib.metadata import PackageNotFoundError
    from importlib.metadata import version as pkg_version

    try:
        package_version = pkg_version("marketlink")
    except PackageNotFoundError:
        package_version = "development"

    info = {
        "version": package_version,
        "python": sys.version.split()[0],
        "platform": platform.system(),
    }

    if format == "json":
        click.echo(json.dumps(info, indent=2))
    else:
        console.print(f"[bold]marketlink[/bold] v{info['version']}")
        console.print(f"  Python: {info['python']}")
        console.print(f"  Platform: {info['platform']}")


if __name__ == "__main__":
    main()
