"""CLI application using Typer for the bivalve meta-analysis."""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from .. import __version__
from ..config.settings import settings
from ..core.exceptions import BivalveMetaError
from ..pipeline import run_analysis
from ..utils.logging import configure_logging, get_logger

app = typer.Typer(
    name="bivalve-meta",
    help="Multilevel meta-analysis of stressor effects on bivalves",
    add_completion=False,
)

console = Console()
logger = get_logger(__name__)


@app.command()
def run(
    data: Optional[Path] = typer.Option(None, "--data", help="Experiment table (CSV or TSV)"),
    tree: Optional[Path] = typer.Option(None, "--tree", help="Newick family tree"),
    reference_counts: Optional[Path] = typer.Option(
        None, "--reference-counts", help="Stale Family,n table to audit against"
    ),
    figures_dir: Optional[Path] = typer.Option(None, "--figures-dir", help="Directory for PDF figures"),
    results_dir: Optional[Path] = typer.Option(None, "--results-dir", help="Directory for result tables"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level"),
    log_format: Optional[str] = typer.Option(None, "--log-format", help="json or text"),
) -> None:
    """Fit all models and render the figures."""
    overrides = {
        "data_path": data,
        "tree_path": tree,
        "reference_counts_path": reference_counts,
        "figures_dir": figures_dir,
        "results_dir": results_dir,
        "log_level": log_level,
        "log_format": log_format,
    }
    run_settings = settings.model_copy(update={k: v for k, v in overrides.items() if v is not None})
    configure_logging(run_settings.log_level, run_settings.log_format)

    console.print("[bold blue]Starting bivalve meta-analysis[/bold blue]")
    console.print(f"Data: {run_settings.data_path}")
    console.print(f"Tree: {run_settings.tree_path}")
    try:
        outputs = run_analysis(run_settings)
    except BivalveMetaError as e:
        logger.error(f"Analysis failed: {e}")
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    summary_table = Table(title="Fitted models")
    summary_table.add_column("Model", style="cyan")
    summary_table.add_column("k", justify="right")
    summary_table.add_column("Studies", justify="right")
    summary_table.add_column("QM p", style="green", justify="right")
    for name, result in outputs.fits.items():
        summary_table.add_row(name, str(result.k), str(result.n_studies), f"{result.qm_pval:.3g}")
    console.print(summary_table)

    if not outputs.skipped.empty:
        console.print(f"[yellow]{len(outputs.skipped)} groups skipped[/yellow]")
        for _, row in outputs.skipped.iterrows():
            console.print(f"  [{row['analysis']}] {row['group']}: {row['reason']}")
    if outputs.count_mismatches is not None and not outputs.count_mismatches.empty:
        console.print(
            f"[yellow]Reference counts differ for {len(outputs.count_mismatches)} families[/yellow]"
        )

    for path in outputs.figures.values():
        console.print(f"Saved: {path}")
    console.print(f"Saved: {outputs.results_path}")
    console.print(f"Saved: {outputs.skipped_path}")
    console.print("\n[bold green]✓ Analysis complete![/bold green]")


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"bivalve-meta version {__version__}")


if __name__ == "__main__":
    app()
