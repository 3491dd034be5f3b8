"""
Branch-length optimization, one branch at a time.
"""

import numpy as np
from scipy.optimize import minimize_scalar

from ..core.likelihood import EvaluationContext, LikelihoodOracle, plan_traversal
from ..errors import OptimizerFailure
from ..io.trees import Tree
from ..models.gtr import ModelState

MIN_BRANCH_LENGTH = 1e-6
MAX_BRANCH_LENGTH = 100.0


class BranchLengthRefiner:
    """
    Optimize all branch lengths for fixed substitution parameters.

    Branches are visited in turn. For each one the traversal is re-planned
    with that branch as the central edge, so the partial likelihoods on
    both of its sides are exact, and its length is optimized by a bounded
    Brent search on ``log(length)``. Only the branch's own transition
    matrices change during that search.

    Parameters
    ----------
    oracle : LikelihoodOracle
        Negative log-likelihood evaluator
    tree : Tree
        Tree whose branches are optimized (topology is not changed)
    min_length, max_length : float
        Bounds on branch lengths
    smoothings : int
        Maximum number of passes over all branches
    tolerance : float
        Stop when a whole pass improves the log-likelihood by less than this
    xatol : float
        Absolute tolerance of the Brent search, in log(length) units

    Examples
    --------
    >>> refiner = BranchLengthRefiner(oracle, tree)
    >>> neg_lnL = refiner.refine(state, plan_traversal(tree))
    """

    def __init__(
        self,
        oracle: LikelihoodOracle,
        tree: Tree,
        min_length: float = MIN_BRANCH_LENGTH,
        max_length: float = MAX_BRANCH_LENGTH,
        smoothings: int = 8,
        tolerance: float = 1e-3,
        xatol: float = 1e-4,
    ):
        if smoothings < 1:
            raise ValueError(f"smoothings must be at least 1, got {smoothings}")
        self.oracle = oracle
        self.tree = tree
        self.min_length = min_length
        self.max_length = max_length
        self.smoothings = smoothings
        self.tolerance = tolerance
        self.xatol = xatol

        # Log-likelihood gain of every pass of the last refine() call
        self.pass_gains: list[float] = []

    def optimize_branch(self, state: ModelState, edge_id: int) -> tuple[float, float]:
        """
        Optimize the length of one branch in place.

        Returns
        -------
        tuple
            (negative log-likelihood before, negative log-likelihood after)
        """
        context = plan_traversal(self.tree, edge_id)
        self.oracle.prepare(state, context)

        def score(length: float) -> float:
            value = self.oracle.edge_objective(context, length)
            if not np.isfinite(value):
                raise OptimizerFailure(
                    f"Non-finite likelihood while optimizing branch {edge_id} "
                    f"at length {length:g}"
                )
            return value

        # Scored as given, even outside the search bounds
        original = float(state.branch_lengths[edge_id])
        before = score(original)

        result = minimize_scalar(
            lambda log_length: score(float(np.exp(log_length))),
            bounds=(np.log(self.min_length), np.log(self.max_length)),
            method='bounded',
            options={'xatol': self.xatol},
        )

        if result.fun < before:
            state.branch_lengths[edge_id] = float(np.exp(result.x))
            return before, float(result.fun)

        state.branch_lengths[edge_id] = original
        return before, before

    def refine(self, state: ModelState, context: EvaluationContext) -> float:
        """
        Optimize every branch length of ``state``.

        Parameters
        ----------
        state : ModelState
            Model state, branch lengths are updated in place
        context : EvaluationContext
            Context used for the final evaluation. Refinement re-plans the
            traversal for every branch, so callers keep their own context.

        Returns
        -------
        float
            Negative log-likelihood after refinement
        """
        self.pass_gains = []
        for _ in range(self.smoothings):
            gain = 0.0
            for edge_id in range(self.tree.n_edges):
                before, after = self.optimize_branch(state, edge_id)
                gain += before - after
            self.pass_gains.append(gain)
            if gain < self.tolerance:
                break

        value = self.oracle.evaluate(state, context)
        if not np.isfinite(value):
            raise OptimizerFailure("Non-finite likelihood after branch-length refinement")
        return value
