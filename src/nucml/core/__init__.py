"""
Core algorithms for phylogenetic likelihood calculation.

This module provides low-level computational routines:

- **Likelihood calculation**: Felsenstein's pruning algorithm on unrooted trees
- **Traversal planning**: post-order operations towards a central edge
- **Matrix operations**: Eigendecomposition and matrix exponential

These are expert-level functions typically not needed by end users.
The high-level API (:mod:`nucml.api`) provides easier access.
"""

from nucml.core.likelihood import (
    CentralEdge,
    EvaluationContext,
    LikelihoodOracle,
    Operation,
    PartialLikelihoodEngine,
    plan_traversal,
)
from nucml.core.matrix import eigen_decompose_rev, matrix_exponential

__all__ = [
    "CentralEdge",
    "EvaluationContext",
    "LikelihoodOracle",
    "Operation",
    "PartialLikelihoodEngine",
    "plan_traversal",
    "matrix_exponential",
    "eigen_decompose_rev",
]
