"""Main CLI application for nucml."""

import typer
from pathlib import Path
from typing import Optional
from enum import Enum

app = typer.Typer(
    name="nucml",
    help="Maximum-likelihood estimation of nucleotide substitution model parameters",
    no_args_is_help=True,
)


class OutputFormat(str, Enum):
    """Output format."""
    TEXT = "text"
    JSON = "json"


@app.command()
def fit(
    tree: Path = typer.Argument(
        ...,
        help="Unrooted or rooted binary tree (Newick format)",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    alignment: Path = typer.Argument(
        ...,
        help="Nucleotide alignment file (FASTA or PHYLIP)",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    model: str = typer.Argument(
        ...,
        help="Rate symmetries, e.g. 012345 (GTR), 010010 (HKY85), or a model name",
    ),
    no_freqs: bool = typer.Option(
        False,
        "--no-freqs",
        help="Keep base frequencies fixed",
    ),
    no_branches: bool = typer.Option(
        False,
        "--no-branches",
        help="Keep branch lengths fixed",
    ),
    no_rates: bool = typer.Option(
        False,
        "--no-rates",
        help="Keep substitution rates fixed",
    ),
    no_alpha: bool = typer.Option(
        False,
        "--no-alpha",
        help="Keep the gamma shape parameter fixed",
    ),
    pinv: bool = typer.Option(
        False,
        "--pinv",
        help="Also estimate the proportion of invariant sites",
    ),
    alpha: float = typer.Option(
        0.1,
        "--alpha",
        help="Starting (or fixed) gamma shape parameter",
        min=0.02,
        max=100.0,
    ),
    epsilon: float = typer.Option(
        1e-2,
        "--epsilon",
        help="Convergence threshold on the log-likelihood change per round",
    ),
    max_rounds: Optional[int] = typer.Option(
        None,
        "--max-rounds",
        help="Maximum number of optimization rounds (default: until convergence)",
        min=1,
    ),
    categories: int = typer.Option(
        4,
        "--categories", "-k",
        help="Number of discrete gamma rate categories",
        min=1,
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output", "-o",
        help="Output file (default: stdout)",
    ),
    format: OutputFormat = typer.Option(
        OutputFormat.TEXT,
        "--format",
        help="Output format",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet", "-q",
        help="Do not print optimization progress",
    ),
):
    """
    Estimate model parameters and branch lengths on a fixed tree.

    Example:
        nucml fit tree.nwk alignment.fasta 012345
        nucml fit tree.nwk alignment.fasta HKY85 --pinv --format json -o fit.json
    """
    from .commands.fit import run_fit

    run_fit(
        tree=tree,
        alignment=alignment,
        model=model,
        optimize_freqs=not no_freqs,
        optimize_branches=not no_branches,
        optimize_rates=not no_rates,
        optimize_alpha=not no_alpha,
        optimize_pinv=pinv,
        alpha=alpha,
        epsilon=epsilon,
        max_rounds=max_rounds,
        categories=categories,
        output=output,
        format=format.value,
        quiet=quiet,
    )


@app.command()
def loglik(
    tree: Path = typer.Argument(
        ...,
        help="Tree with branch lengths (Newick format)",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    alignment: Path = typer.Argument(
        ...,
        help="Nucleotide alignment file (FASTA or PHYLIP)",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    freqs: Optional[str] = typer.Option(
        None,
        "--freqs",
        help="Comma-separated base frequencies A,C,G,T (default: equal)",
    ),
    rates: Optional[str] = typer.Option(
        None,
        "--rates",
        help="Comma-separated rates AC,AG,AT,CG,CT,GT (default: all 1)",
    ),
    alpha: float = typer.Option(
        0.1,
        "--alpha",
        help="Gamma shape parameter",
    ),
    pinv: float = typer.Option(
        0.0,
        "--pinv",
        help="Proportion of invariant sites",
        min=0.0,
        max=0.99,
    ),
    categories: int = typer.Option(
        4,
        "--categories", "-k",
        help="Number of discrete gamma rate categories",
        min=1,
    ),
):
    """
    Compute the log-likelihood for fixed parameters.

    Example:
        nucml loglik tree.nwk alignment.fasta --alpha 0.5 --rates 1,4,1,1,4,1
    """
    from .commands.loglik import run_loglik

    run_loglik(
        tree=tree,
        alignment=alignment,
        freqs=freqs,
        rates=rates,
        alpha=alpha,
        pinv=pinv,
        categories=categories,
    )


if __name__ == "__main__":
    app()
