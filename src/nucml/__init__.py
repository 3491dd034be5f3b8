"""
nucml: maximum-likelihood fitting of nucleotide substitution models.

Estimates base frequencies, substitution rates (GTR family with arbitrary
rate symmetries), the gamma shape parameter, the proportion of invariant
sites and all branch lengths on a fixed unrooted tree, by block-coordinate
ascent.

Quick Start
-----------
Fit a GTR+G model:

>>> from nucml import optimize_model
>>> result = optimize_model("tree.nwk", "alignment.fasta", "GTR")
>>> print(result.summary())
>>> print(f"alpha = {result.alpha:.4f}")

Fit HKY85 with invariant sites and a fixed alpha:

>>> from nucml import OptimizationConfig
>>> config = OptimizationConfig(alpha=False, pinv=True)
>>> result = optimize_model("tree.nwk", "alignment.fasta", "010010", config, alpha=0.5)

Evaluate the likelihood without optimizing:

>>> from nucml import compute_log_likelihood
>>> lnL = compute_log_likelihood("tree.nwk", "alignment.fasta", alpha=0.5)
"""

__version__ = "0.1.0"

# High-level API (simple interface)
from .api import optimize_model, compute_log_likelihood, FitResult

# Errors
from .errors import NucmlError, InvalidModelSpec, ParseError, OptimizerFailure, AllocationFailure

# I/O classes (for advanced users)
from .io.sequences import Alignment
from .io.trees import Tree

# Model parameters
from .models.gtr import ModelState, build_model_symmetries, resolve_model

# Optimization (expert use)
from .optimize.optimizer import (
    CoordinateAscentOptimizer,
    OptimizationConfig,
    OptimizationStatus,
)
from .optimize.blocks import ParameterBlock

__all__ = [
    # Simple API - Start here!
    "optimize_model",
    "compute_log_likelihood",
    "FitResult",

    # Errors
    "NucmlError",
    "InvalidModelSpec",
    "ParseError",
    "OptimizerFailure",
    "AllocationFailure",

    # I/O
    "Alignment",
    "Tree",

    # Model
    "ModelState",
    "build_model_symmetries",
    "resolve_model",

    # Optimization
    "CoordinateAscentOptimizer",
    "OptimizationConfig",
    "OptimizationStatus",
    "ParameterBlock",
]
