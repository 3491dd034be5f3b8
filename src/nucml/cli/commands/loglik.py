"""Log-likelihood command implementation."""

import sys
from pathlib import Path
from typing import Optional

from nucml import compute_log_likelihood
from nucml.errors import ParseError


def _parse_values(text: Optional[str], name: str, expected: int) -> Optional[list[float]]:
    if text is None:
        return None
    try:
        values = [float(item) for item in text.split(',')]
    except ValueError:
        raise ValueError(f"{name} must be comma-separated numbers, got {text!r}")
    if len(values) != expected:
        raise ValueError(f"{name} needs {expected} values, got {len(values)}")
    return values


def run_loglik(
    tree: Path,
    alignment: Path,
    freqs: Optional[str],
    rates: Optional[str],
    alpha: float,
    pinv: float,
    categories: int,
):
    """Print the log-likelihood for fixed parameters."""
    try:
        frequencies = _parse_values(freqs, "--freqs", 4)
        subst_rates = _parse_values(rates, "--rates", 6)
        lnL = compute_log_likelihood(
            tree,
            alignment,
            frequencies=frequencies,
            subst_rates=subst_rates,
            alpha=alpha,
            p_inv=pinv,
            n_rate_cats=categories,
        )
    except (ParseError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Log-L: {lnL:f}")
