"""
Parameter blocks optimized with bounded quasi-Newton search.

Each block exposes a subset of the model parameters as a free vector with
box constraints. The objective is the negative log-likelihood with all
other parameters held fixed; it is minimized with scipy's L-BFGS-B.
"""

import warnings
from dataclasses import fields
from enum import Enum

import numpy as np
from scipy.optimize import minimize

from ..core.likelihood import EvaluationContext, LikelihoodOracle
from ..errors import OptimizerFailure
from ..models.gtr import ModelState, frequencies_to_ratios, ratios_to_frequencies

DEFAULT_FACTR = 1e8
DEFAULT_PGTOL = 1e-4

MIN_FREQ_RATIO = 1e-3
MIN_SUBST_RATE = 1e-3
MAX_SUBST_RATE = 1e3
MIN_ALPHA = 0.02
MAX_ALPHA = 100.0
MAX_PINV = 0.99


class ParameterBlock(str, Enum):
    """Disjoint groups of model parameters, optimized one at a time."""
    FREQUENCIES = "frequencies"
    BRANCH_LENGTHS = "branch_lengths"
    SUBST_RATES = "subst_rates"
    ALPHA = "alpha"
    PINV = "pinv"


# Fixed cyclic order of a coordinate-ascent round
BLOCK_ORDER = (
    ParameterBlock.FREQUENCIES,
    ParameterBlock.BRANCH_LENGTHS,
    ParameterBlock.SUBST_RATES,
    ParameterBlock.ALPHA,
    ParameterBlock.PINV,
)


class BlockOptimizer:
    """
    Optimize one parameter block with L-BFGS-B.

    Subclasses define the mapping between the model state and the free
    vector (:meth:`initial_vector`, :meth:`apply`) and the box constraints
    (:meth:`bounds`).

    Parameters
    ----------
    oracle : LikelihoodOracle
        Negative log-likelihood evaluator
    factr : float
        Relative function tolerance in units of machine epsilon
        (L-BFGS-B ``factr``; scipy's ``ftol = factr * eps``)
    pgtol : float
        Projected gradient tolerance
    """

    block: ParameterBlock

    def __init__(
        self,
        oracle: LikelihoodOracle,
        factr: float = DEFAULT_FACTR,
        pgtol: float = DEFAULT_PGTOL,
    ):
        self.oracle = oracle
        self.factr = factr
        self.pgtol = pgtol

    def initial_vector(self, state: ModelState) -> np.ndarray:
        raise NotImplementedError

    def bounds(self, state: ModelState) -> list[tuple]:
        raise NotImplementedError

    def apply(self, state: ModelState, x: np.ndarray) -> None:
        """Write a candidate vector into ``state``."""
        raise NotImplementedError

    def describe(self, state: ModelState) -> str:
        """Current block values, for progress output."""
        return ' '.join(f"{value:f}" for value in self.initial_vector(state))

    def objective(self, x: np.ndarray, state: ModelState, context: EvaluationContext) -> float:
        """Negative log-likelihood with the block set to ``x``."""
        self.apply(state, x)
        value = self.oracle.evaluate(state, context)
        if not np.isfinite(value):
            raise OptimizerFailure(
                f"Non-finite likelihood while optimizing {self.block.value} "
                f"at {np.array2string(np.asarray(x), precision=6)}"
            )
        return value

    def optimize(self, state: ModelState, context: EvaluationContext) -> float:
        """
        Optimize the block in place.

        Parameters
        ----------
        state : ModelState
            Model state, updated with the optimized block values
        context : EvaluationContext
            Traversal used for every likelihood evaluation

        Returns
        -------
        float
            Negative log-likelihood at the new values. Never larger than at
            the starting values: a worse optimizer result is discarded.
        """
        bounds = self.bounds(state)
        lower = np.array([lo if lo is not None else -np.inf for lo, _ in bounds])
        upper = np.array([hi if hi is not None else np.inf for _, hi in bounds])

        # Baseline is the state as received; x0 may differ once projected
        # onto the bounds and the block's parameter tying
        saved = state.copy()
        start_value = self.oracle.evaluate(state, context)
        if not np.isfinite(start_value):
            raise OptimizerFailure(
                f"Non-finite likelihood at the starting values of {self.block.value}"
            )
        x0 = np.clip(self.initial_vector(state), lower, upper)

        result = minimize(
            self.objective,
            x0,
            args=(state, context),
            method='L-BFGS-B',
            bounds=bounds,
            options={
                'ftol': self.factr * np.finfo(float).eps,
                'gtol': self.pgtol,
            },
        )

        if not np.isfinite(result.fun):
            raise OptimizerFailure(
                f"L-BFGS-B returned a non-finite value for {self.block.value}: {result.message}"
            )
        if not result.success:
            warnings.warn(
                f"L-BFGS-B did not converge for {self.block.value}: {result.message}",
                UserWarning,
            )

        if result.fun <= start_value:
            self.apply(state, result.x)
            return float(result.fun)

        for item in fields(saved):
            setattr(state, item.name, getattr(saved, item.name))
        return float(start_value)


class FrequencyBlock(BlockOptimizer):
    """
    Base frequencies, searched as ratios to the last frequency.

    ``states - 1`` free ratios with a small positive lower bound and no
    upper bound; frequencies are recovered by normalizing
    ``[ratio_0, ..., ratio_{states-2}, 1]``.
    """

    block = ParameterBlock.FREQUENCIES

    def initial_vector(self, state: ModelState) -> np.ndarray:
        return frequencies_to_ratios(state.frequencies)

    def bounds(self, state: ModelState) -> list[tuple]:
        return [(MIN_FREQ_RATIO, None)] * (len(state.frequencies) - 1)

    def apply(self, state: ModelState, x: np.ndarray) -> None:
        state.frequencies = ratios_to_frequencies(x)

    def describe(self, state: ModelState) -> str:
        return ' '.join(f"{value:f}" for value in state.frequencies)


class SubstitutionRateBlock(BlockOptimizer):
    """
    Substitution rates with parameter tying.

    One free value per symmetry group; each value is broadcast to every
    rate position of its group.

    Parameters
    ----------
    symmetries : ndarray of int
        Group id of every rate position (see
        :func:`~nucml.models.gtr.build_model_symmetries`)
    """

    block = ParameterBlock.SUBST_RATES

    def __init__(self, oracle: LikelihoodOracle, symmetries: np.ndarray, **kwargs):
        super().__init__(oracle, **kwargs)
        self.symmetries = np.asarray(symmetries, dtype=int)
        self.n_groups = int(self.symmetries.max()) + 1

    def initial_vector(self, state: ModelState) -> np.ndarray:
        return np.array([
            state.subst_rates[self.symmetries == group].mean()
            for group in range(self.n_groups)
        ])

    def bounds(self, state: ModelState) -> list[tuple]:
        return [(MIN_SUBST_RATE, MAX_SUBST_RATE)] * self.n_groups

    def apply(self, state: ModelState, x: np.ndarray) -> None:
        state.subst_rates = np.asarray(x, dtype=float)[self.symmetries]

    def describe(self, state: ModelState) -> str:
        return ' '.join(f"{value:f}" for value in state.subst_rates)


class AlphaBlock(BlockOptimizer):
    """Gamma shape parameter."""

    block = ParameterBlock.ALPHA

    def initial_vector(self, state: ModelState) -> np.ndarray:
        return np.array([state.alpha])

    def bounds(self, state: ModelState) -> list[tuple]:
        return [(MIN_ALPHA, MAX_ALPHA)]

    def apply(self, state: ModelState, x: np.ndarray) -> None:
        state.alpha = float(x[0])


class PInvBlock(BlockOptimizer):
    """Proportion of invariant sites, kept inside [0, 1)."""

    block = ParameterBlock.PINV

    def initial_vector(self, state: ModelState) -> np.ndarray:
        return np.array([state.p_inv])

    def bounds(self, state: ModelState) -> list[tuple]:
        return [(0.0, MAX_PINV)]

    def apply(self, state: ModelState, x: np.ndarray) -> None:
        state.p_inv = float(x[0])
