"""
Likelihood calculation on unrooted trees.

This module implements Felsenstein's pruning algorithm in three layers:

- :func:`plan_traversal` turns a tree and a central edge into an
  :class:`EvaluationContext` (post-order operations plus the edge at which
  the likelihood is evaluated);
- :class:`PartialLikelihoodEngine` owns the per-node partial likelihood
  buffers (CLVs), log scalers and per-edge transition matrices and executes
  those operations;
- :class:`LikelihoodOracle` maps a :class:`~nucml.models.gtr.ModelState`
  to a negative log-likelihood, which is what the optimizers minimize.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from ..io.sequences import Alignment
from ..io.trees import Tree
from ..models.gtr import N_RATE_CATS, STATES, ModelState, build_gtr_Q, discretize_gamma
from .matrix import eigen_decompose_rev, transition_matrices


@dataclass(frozen=True)
class Operation:
    """
    One partial-likelihood update: combine two child CLVs into a parent CLV.

    Scaler indices are ``None`` for tips, which carry no scaling.
    """

    parent_clv: int
    parent_scaler: Optional[int]
    child1_clv: int
    child1_scaler: Optional[int]
    child1_matrix: int
    child2_clv: int
    child2_scaler: Optional[int]
    child2_matrix: int


@dataclass(frozen=True)
class CentralEdge:
    """Edge at which the log-likelihood is evaluated."""

    parent_clv: int
    parent_scaler: Optional[int]
    child_clv: int
    child_scaler: Optional[int]
    pmatrix_index: int


@dataclass(frozen=True)
class EvaluationContext:
    """
    Everything needed to evaluate the likelihood for one choice of central edge.

    Attributes
    ----------
    operations : tuple[Operation, ...]
        Post-order CLV updates covering both sides of the central edge
    matrix_indices : tuple[int, ...]
        Edge ids whose transition matrices are needed (all edges)
    central_edge : CentralEdge
        Likelihood anchor
    """

    operations: tuple[Operation, ...]
    matrix_indices: tuple[int, ...]
    central_edge: CentralEdge

    @property
    def edge_id(self) -> int:
        return self.central_edge.pmatrix_index


def _scaler_index(tree: Tree, node: int) -> Optional[int]:
    return None if tree.is_tip(node) else node - tree.n_tips


def _postorder_operations(tree: Tree, start: int, via_edge: int) -> list[Operation]:
    """Operations for the subtree hanging from ``start``, away from ``via_edge``."""
    operations = []
    stack = [(start, via_edge, False)]
    while stack:
        node, via, expanded = stack.pop()
        if tree.is_tip(node):
            continue
        children = [(child, e) for child, e in tree.neighbors(node) if e != via]
        if expanded:
            (c1, e1), (c2, e2) = children
            operations.append(Operation(
                parent_clv=node,
                parent_scaler=_scaler_index(tree, node),
                child1_clv=c1,
                child1_scaler=_scaler_index(tree, c1),
                child1_matrix=e1,
                child2_clv=c2,
                child2_scaler=_scaler_index(tree, c2),
                child2_matrix=e2,
            ))
        else:
            stack.append((node, via, True))
            for child, e in children:
                stack.append((child, e, False))
    return operations


def plan_traversal(tree: Tree, edge_id: Optional[int] = None) -> EvaluationContext:
    """
    Plan a full traversal of ``tree`` towards one edge.

    Parameters
    ----------
    tree : Tree
        Unrooted binary tree
    edge_id : int, optional
        Central edge. Defaults to the edge attached to tip 0.

    Returns
    -------
    EvaluationContext
        Operations, matrix indices and central edge
    """
    if edge_id is None:
        edge_id = tree.tip_edge(0)
    a, b = tree.edges[edge_id].nodes
    # The inner end of the edge is the parent
    if tree.is_tip(a) and not tree.is_tip(b):
        a, b = b, a

    operations = _postorder_operations(tree, b, edge_id) + _postorder_operations(tree, a, edge_id)

    return EvaluationContext(
        operations=tuple(operations),
        matrix_indices=tuple(range(tree.n_edges)),
        central_edge=CentralEdge(
            parent_clv=a,
            parent_scaler=_scaler_index(tree, a),
            child_clv=b,
            child_scaler=_scaler_index(tree, b),
            pmatrix_index=edge_id,
        ),
    )


class PartialLikelihoodEngine:
    """
    Partial likelihood buffers and kernels for one alignment on one tree.

    Sites are compressed into unique patterns. Every node has one CLV of
    shape ``(n_rate_cats, n_patterns, 4)``; inner nodes also have a
    cumulative log scaler per pattern. CLVs are rescaled after every
    update so the largest entry per pattern is 1.

    Attributes
    ----------
    n_tips, n_nodes, n_edges : int
        Tree dimensions
    n_rate_cats : int
        Number of discrete gamma categories
    n_patterns : int
        Number of unique site patterns
    pattern_weights : ndarray, shape (n_patterns,)
        Number of sites per pattern
    """

    def __init__(self, alignment: Alignment, tree: Tree, n_rate_cats: int = N_RATE_CATS):
        self.n_tips = tree.n_tips
        self.n_nodes = tree.n_nodes
        self.n_edges = tree.n_edges
        self.n_rate_cats = n_rate_cats
        self.states = STATES

        # Rows follow the tree's tip numbering
        alignment = alignment.order_by(tree.tip_names)
        patterns, weights = alignment.site_patterns()
        self.n_patterns = patterns.shape[1]
        self.pattern_weights = weights
        self.n_sites = alignment.n_sites

        tip_vectors = np.ones((self.n_tips, self.n_patterns, self.states))
        tips, sites = np.nonzero(patterns >= 0)
        tip_vectors[tips, sites] = 0.0
        tip_vectors[tips, sites, patterns[tips, sites]] = 1.0

        self.clvs = np.ones((self.n_nodes, n_rate_cats, self.n_patterns, self.states))
        self.clvs[:self.n_tips] = tip_vectors[:, np.newaxis, :, :]
        self.scalers = np.zeros((self.n_nodes - self.n_tips, self.n_patterns))
        self._no_scaling = np.zeros(self.n_patterns)
        self.pmatrices = np.tile(
            np.eye(self.states), (self.n_edges, n_rate_cats, 1, 1)
        )

        # States every tip is compatible with, per pattern
        self.invariant_states = np.prod(tip_vectors, axis=0)

        self.frequencies = np.full(self.states, 1.0 / self.states)
        self.subst_params = np.ones(self.states * (self.states - 1) // 2)
        self.category_rates = np.ones(n_rate_cats)
        self.prop_invar = 0.0
        self._eigen = None

    def set_frequencies(self, frequencies: np.ndarray) -> None:
        frequencies = np.asarray(frequencies, dtype=float)
        if frequencies.shape != (self.states,):
            raise ValueError(f"Expected {self.states} frequencies, got shape {frequencies.shape}")
        self.frequencies = frequencies.copy()
        self._eigen = None

    def set_subst_params(self, subst_params: np.ndarray) -> None:
        subst_params = np.asarray(subst_params, dtype=float)
        if subst_params.shape != self.subst_params.shape:
            raise ValueError(
                f"Expected {len(self.subst_params)} substitution rates, "
                f"got shape {subst_params.shape}"
            )
        self.subst_params = subst_params.copy()
        self._eigen = None

    def set_category_rates(self, rates: np.ndarray) -> None:
        rates = np.asarray(rates, dtype=float)
        if rates.shape != (self.n_rate_cats,):
            raise ValueError(f"Expected {self.n_rate_cats} category rates, got shape {rates.shape}")
        self.category_rates = rates.copy()

    def set_prop_invar(self, prop_invar: float) -> None:
        if not 0.0 <= prop_invar < 1.0:
            raise ValueError(f"Proportion of invariant sites must be in [0, 1), got {prop_invar}")
        self.prop_invar = float(prop_invar)

    def _decomposition(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        if self._eigen is None:
            Q = build_gtr_Q(self.subst_params, self.frequencies)
            self._eigen = eigen_decompose_rev(Q, self.frequencies)
        return self._eigen

    def _branch_rates(self) -> np.ndarray:
        # Variable sites evolve faster so the mean rate stays 1
        return self.category_rates / (1.0 - self.prop_invar)

    def update_prob_matrices(self, matrix_indices, branch_lengths: np.ndarray) -> None:
        """
        Recompute transition matrices for the given edges.

        Parameters
        ----------
        matrix_indices : sequence of int
            Edge ids to update
        branch_lengths : ndarray
            Branch lengths indexed by edge id
        """
        eigenvalues, U, V = self._decomposition()
        rates = self._branch_rates()
        for edge_id in matrix_indices:
            self.pmatrices[edge_id] = transition_matrices(
                eigenvalues, U, V, rates, branch_lengths[edge_id]
            )

    def update_prob_matrix(self, edge_id: int, branch_length: float) -> None:
        """Recompute the transition matrices of a single edge."""
        eigenvalues, U, V = self._decomposition()
        self.pmatrices[edge_id] = transition_matrices(
            eigenvalues, U, V, self._branch_rates(), branch_length
        )

    def _scaler(self, index: Optional[int]) -> np.ndarray:
        return self._no_scaling if index is None else self.scalers[index]

    def update_partials(self, operations) -> None:
        """Execute CLV updates in the given (post-)order."""
        for op in operations:
            left = np.einsum(
                'kij,ksj->ksi', self.pmatrices[op.child1_matrix], self.clvs[op.child1_clv]
            )
            right = np.einsum(
                'kij,ksj->ksi', self.pmatrices[op.child2_matrix], self.clvs[op.child2_clv]
            )
            clv = left * right

            site_max = clv.max(axis=(0, 2))
            site_max = np.where(site_max > 0.0, site_max, 1.0)
            self.clvs[op.parent_clv] = clv / site_max[np.newaxis, :, np.newaxis]
            self.scalers[op.parent_scaler] = (
                np.log(site_max)
                + self._scaler(op.child1_scaler)
                + self._scaler(op.child2_scaler)
            )

    def site_log_likelihoods(self, central_edge: CentralEdge) -> np.ndarray:
        """Per-pattern log-likelihoods evaluated across ``central_edge``."""
        parent = self.clvs[central_edge.parent_clv]
        child = self.clvs[central_edge.child_clv]
        P = self.pmatrices[central_edge.pmatrix_index]

        child_side = np.einsum('kij,ksj->ksi', P, child)
        per_category = np.einsum('ksi,ksi,i->ks', parent, child_side, self.frequencies)
        # Equal-weight rate categories
        site_lk = np.maximum(per_category.mean(axis=0), np.finfo(float).tiny)

        log_site = (
            np.log(site_lk)
            + self._scaler(central_edge.parent_scaler)
            + self._scaler(central_edge.child_scaler)
        )

        if self.prop_invar > 0.0:
            invariant_lk = self.invariant_states @ self.frequencies
            with np.errstate(divide='ignore'):
                log_site = np.logaddexp(
                    np.log1p(-self.prop_invar) + log_site,
                    np.log(self.prop_invar) + np.log(invariant_lk),
                )

        return log_site

    def compute_edge_log_likelihood(self, central_edge: CentralEdge) -> float:
        """Log-likelihood of the whole alignment, evaluated across ``central_edge``."""
        return float(self.pattern_weights @ self.site_log_likelihoods(central_edge))


class LikelihoodOracle:
    """
    Negative log-likelihood of a model state.

    The oracle pushes the parameters of a :class:`ModelState` into its
    engine (only those that changed since the previous call), recomputes
    every transition matrix and partial along the context's operations,
    and evaluates the likelihood at the context's central edge.

    Attributes
    ----------
    engine : PartialLikelihoodEngine
        Buffers mutated by every evaluation
    n_evaluations : int
        Number of likelihood evaluations so far
    """

    def __init__(self, engine: PartialLikelihoodEngine):
        self.engine = engine
        self.n_evaluations = 0
        self._alpha = None

    def _push_parameters(self, state: ModelState) -> None:
        engine = self.engine
        if not np.array_equal(state.frequencies, engine.frequencies):
            engine.set_frequencies(state.frequencies)
        if not np.array_equal(state.subst_rates, engine.subst_params):
            engine.set_subst_params(state.subst_rates)
        if state.alpha != self._alpha:
            engine.set_category_rates(discretize_gamma(state.alpha, engine.n_rate_cats))
            self._alpha = state.alpha
        if state.p_inv != engine.prop_invar:
            engine.set_prop_invar(state.p_inv)

    def prepare(self, state: ModelState, context: EvaluationContext) -> None:
        """Bring matrices and partials up to date for ``state`` and ``context``."""
        self._push_parameters(state)
        self.engine.update_prob_matrices(context.matrix_indices, state.branch_lengths)
        self.engine.update_partials(context.operations)

    def evaluate(self, state: ModelState, context: EvaluationContext) -> float:
        """Return the negative log-likelihood of ``state``."""
        self.prepare(state, context)
        self.n_evaluations += 1
        return -self.engine.compute_edge_log_likelihood(context.central_edge)

    def log_likelihood(self, state: ModelState, context: EvaluationContext) -> float:
        return -self.evaluate(state, context)

    def edge_objective(self, context: EvaluationContext, branch_length: float) -> float:
        """
        Negative log-likelihood with only the central edge's length changed.

        Requires a preceding :meth:`prepare` with the same context: the
        partials on both sides of the central edge do not depend on its
        length, so only its transition matrices are recomputed.
        """
        self.engine.update_prob_matrix(context.edge_id, branch_length)
        self.n_evaluations += 1
        return -self.engine.compute_edge_log_likelihood(context.central_edge)
