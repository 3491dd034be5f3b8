"""Fit command implementation."""

import sys
from pathlib import Path
from typing import Optional

from nucml import optimize_model
from nucml.errors import InvalidModelSpec, OptimizerFailure, ParseError
from nucml.io.sequences import Alignment
from nucml.io.trees import Tree
from nucml.models.gtr import resolve_model
from nucml.optimize.optimizer import OptimizationConfig


def run_fit(
    tree: Path,
    alignment: Path,
    model: str,
    optimize_freqs: bool,
    optimize_branches: bool,
    optimize_rates: bool,
    optimize_alpha: bool,
    optimize_pinv: bool,
    alpha: float,
    epsilon: float,
    max_rounds: Optional[int],
    categories: int,
    output: Optional[Path],
    format: str,
    quiet: bool,
):
    """Fit one model on a fixed tree."""
    try:
        resolve_model(model)
    except InvalidModelSpec as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    # Load data
    try:
        aln = Alignment.from_file(alignment)
    except (ParseError, OSError) as e:
        print(f"Error: Could not load alignment from {alignment}", file=sys.stderr)
        print(f"Details: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        tree_obj = Tree.from_file(tree)
    except (ParseError, OSError) as e:
        print(f"Error: Could not load tree from {tree}", file=sys.stderr)
        print(f"Details: {e}", file=sys.stderr)
        sys.exit(1)

    config = OptimizationConfig(
        frequencies=optimize_freqs,
        branch_lengths=optimize_branches,
        subst_rates=optimize_rates,
        alpha=optimize_alpha,
        pinv=optimize_pinv,
        epsilon=epsilon,
        max_rounds=max_rounds,
    )

    # Progress goes to stdout, so keep it out of JSON printed there
    verbose = not quiet and (format == "text" or output is not None)

    try:
        result = optimize_model(
            tree_obj,
            aln,
            model,
            config,
            alpha=alpha,
            n_rate_cats=categories,
            verbose=verbose,
        )
    except (ParseError, OptimizerFailure) as e:
        print("Error: Model fitting failed", file=sys.stderr)
        print(f"Details: {e}", file=sys.stderr)
        sys.exit(1)

    # Format output
    if format == "json":
        output_text = result.to_json()
    else:  # text
        output_text = result.summary()

    # Write output
    if output:
        if format == "json":
            result.to_json(str(output))
        else:
            with open(output, 'w') as f:
                f.write(output_text)
        if not quiet:
            print(f"\nResults written to {output}", file=sys.stderr)
    else:
        print(output_text)
