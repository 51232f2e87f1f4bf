"""QueryTorque Plan CLI.

Command-line interface for execution plan analysis.

Commands:
    qt-plan analyze <plan>              Bottlenecks, index suggestions, expensive operators
    qt-plan compare <before> <after>    Before/after verdict
    qt-plan layout <plan> [-o out]      Flow graph JSON for renderers
"""

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from qt_plan.analyzers.plan_comparator import ComparisonVerdict, PlanComparisonResult
from qt_plan.config import get_settings
from qt_plan.errors import PlanError
from qt_plan.models import ExecutionPlan, Severity
from qt_plan.pipeline import PlanPipeline

console = Console()
logger = logging.getLogger(__name__)

PLAN_SUFFIXES = (".xml", ".sqlplan", ".json", ".txt")

SEVERITY_COLORS = {
    Severity.CRITICAL: "red",
    Severity.HIGH: "orange3",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "blue",
}

VERDICT_COLORS = {
    ComparisonVerdict.SIGNIFICANT_IMPROVEMENT: "green",
    ComparisonVerdict.IMPROVED: "green",
    ComparisonVerdict.SLIGHTLY_IMPROVED: "cyan",
    ComparisonVerdict.NO_CHANGE: "dim",
    ComparisonVerdict.REGRESSED: "red",
}


def read_plan_file(file_path: str) -> str:
    """Read raw plan text from file."""
    path = Path(file_path)
    if not path.exists():
        raise click.ClickException(f"File not found: {file_path}")
    if path.suffix.lower() not in PLAN_SUFFIXES:
        raise click.ClickException(
            f"Expected a showplan (.xml/.sqlplan) or EXPLAIN JSON (.json) file, got: {path.suffix}"
        )
    # Showplans saved from SSMS are UTF-16 with a BOM
    data = path.read_bytes()
    if data.startswith((b"\xff\xfe", b"\xfe\xff")):
        return data.decode("utf-16")
    return data.decode("utf-8-sig")


def configure_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format='%(message)s')
    else:
        logging.basicConfig(level=get_settings().log_level_number)


def display_plan_analysis(plan: ExecutionPlan, pipeline: PlanPipeline,
                          threshold: Optional[float], verbose: bool = False) -> None:
    """Display analysis result with rich formatting."""
    metrics = plan.metrics
    severe = [b for b in plan.bottlenecks if b.severity >= Severity.HIGH]
    border = "red" if severe else "yellow" if plan.bottlenecks else "green"

    summary = [
        f"Engine: [bold]{plan.database_engine}[/bold]",
        f"Operators: {metrics.total_operators} | Total cost: {metrics.total_cost:.4f}",
    ]
    if metrics.elapsed_time_ms:
        summary.append(f"Elapsed: {metrics.elapsed_time_ms:,.1f}ms")
    summary.append(
        f"Bottlenecks: {len(plan.bottlenecks)} ({len(severe)} high/critical) | "
        f"Index suggestions: {len(plan.index_suggestions)}"
    )
    console.print(Panel("\n".join(summary), title=f"Plan {plan.id}", border_style=border))

    if plan.bottlenecks:
        table = Table(title="Bottlenecks", show_header=True, header_style="bold")
        table.add_column("Severity", style="bold", width=10)
        table.add_column("Issue", width=40)
        table.add_column("Node", justify="right", width=6)
        table.add_column("Impact", justify="right", width=8)
        for b in plan.bottlenecks:
            color = SEVERITY_COLORS[b.severity]
            node_id = b.related_node_id
            table.add_row(
                f"[{color}]{b.severity.name}[/{color}]",
                b.title,
                "" if node_id is None else str(node_id),
                f"{b.impact_percentage:.1f}%",
            )
        console.print(table)
        if verbose:
            for i, b in enumerate(plan.bottlenecks, 1):
                console.print(f"[bold]{i}. {b.title}[/bold]")
                console.print(f"   [dim]Description:[/dim] {b.description}")
                console.print(f"   [dim]Recommendation:[/dim] {b.recommendation}")
            console.print()
    else:
        console.print("[green]No bottlenecks detected.[/green]")

    expensive = pipeline.analyzer.cost_analyzer.find_expensive_operations(plan, threshold)
    if expensive:
        table = Table(title="Expensive Operations", show_header=True, header_style="bold")
        table.add_column("Node", justify="right", width=6)
        table.add_column("Operator", width=25)
        table.add_column("Table", width=25)
        table.add_column("Cost", justify="right", width=8)
        for node in expensive:
            table.add_row(
                str(node.id),
                node.label,
                str(node.table) if node.table else "",
                f"{node.cost.cost_percentage:.1f}%",
            )
        console.print(table)

    for suggestion in plan.index_suggestions:
        console.print(
            f"\n[bold]{suggestion.index_name}[/bold] "
            f"[dim]({suggestion.impact.name}, ~{suggestion.estimated_improvement:.0f}% improvement)[/dim]"
        )
        console.print(f"[dim]{suggestion.reason}[/dim]")
        console.print(Syntax(suggestion.create_index_statement, "sql", theme="monokai"))


def display_comparison(result: PlanComparisonResult) -> None:
    color = VERDICT_COLORS[result.verdict]
    verdict = result.verdict.value.replace("_", " ").upper()
    console.print(Panel(
        f"[bold {color}]{verdict}[/bold {color}]\n"
        f"Cost reduction: {result.cost_reduction:.1f}% | "
        f"Row reduction: {result.row_reduction:.1f}%\n"
        f"Operators: {result.operator_count_change:+d} | "
        f"Bottlenecks removed: {result.bottleneck_reduction}",
        title="Plan Comparison",
        border_style=color,
    ))
    for line in result.improvements:
        console.print(f"[green]+[/green] {line}")
    for line in result.regressions:
        console.print(f"[red]-[/red] {line}")


@click.group()
@click.version_option(version="0.1.0", prog_name="qt-plan")
def cli():
    """QueryTorque Plan - Execution Plan Analysis CLI."""
    pass


@cli.command()
@click.argument("file", type=click.Path(exists=True))
@click.option("--threshold", type=float, default=None,
              help="Cost percentage for the expensive-operations table (default: 20)")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.option("--verbose", "-v", is_flag=True, help="Show bottleneck details and debug logs")
def analyze(file: str, threshold: Optional[float], output_json: bool, verbose: bool):
    """Analyze an execution plan for bottlenecks and missing indexes.

    Accepts SQL Server showplan XML or PostgreSQL EXPLAIN (FORMAT JSON)
    output. Exits non-zero when high or critical bottlenecks are found.

    Examples:
        qt-plan analyze plan.sqlplan
        qt-plan analyze explain.json --json
    """
    configure_logging(verbose)
    pipeline = PlanPipeline()

    try:
        plan = pipeline.analyze(read_plan_file(file))
    except click.ClickException as e:
        console.print(f"[red]Error: {e.message}[/red]")
        sys.exit(1)
    except PlanError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    if output_json:
        output = plan.to_dict()
        output["file"] = file
        console.print_json(json.dumps(output))
        return

    console.print(f"\n[bold]Analyzing:[/bold] {file}\n")
    display_plan_analysis(plan, pipeline, threshold, verbose=verbose)

    if any(b.severity >= Severity.HIGH for b in plan.bottlenecks):
        sys.exit(1)


@cli.command()
@click.argument("before", type=click.Path(exists=True))
@click.argument("after", type=click.Path(exists=True))
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.option("--verbose", "-v", is_flag=True, help="Debug logs")
def compare(before: str, after: str, output_json: bool, verbose: bool):
    """Compare two execution plans of the same query.

    Examples:
        qt-plan compare before.sqlplan after.sqlplan
    """
    configure_logging(verbose)
    pipeline = PlanPipeline()

    try:
        result = pipeline.compare(read_plan_file(before), read_plan_file(after))
    except click.ClickException as e:
        console.print(f"[red]Error: {e.message}[/red]")
        sys.exit(1)
    except PlanError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    if output_json:
        console.print_json(json.dumps(result.to_dict()))
        return

    display_comparison(result)
    if result.verdict == ComparisonVerdict.REGRESSED:
        sys.exit(1)


@cli.command()
@click.argument("file", type=click.Path(exists=True))
@click.option("--output", "-o", type=click.Path(), help="Write flow JSON to this file")
def layout(file: str, output: Optional[str]):
    """Compute the flow graph layout for an execution plan.

    Examples:
        qt-plan layout plan.sqlplan -o flow.json
    """
    configure_logging(False)
    pipeline = PlanPipeline()

    try:
        result = pipeline.run(read_plan_file(file))
    except click.ClickException as e:
        console.print(f"[red]Error: {e.message}[/red]")
        sys.exit(1)
    except PlanError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    data = result.flow.to_dict()
    data["plan_id"] = result.plan.id
    if output:
        Path(output).write_text(json.dumps(data, indent=2), encoding="utf-8")
        console.print(
            f"[green]Wrote {len(data['nodes'])} nodes, {len(data['edges'])} edges to {output}[/green]"
        )
    else:
        console.print_json(json.dumps(data))


if __name__ == "__main__":
    cli()
