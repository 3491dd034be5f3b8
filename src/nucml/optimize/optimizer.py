"""
Joint maximum-likelihood estimation by block-coordinate ascent.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

import numpy as np

from ..core.likelihood import LikelihoodOracle, PartialLikelihoodEngine, plan_traversal
from ..errors import OptimizerFailure
from ..io.sequences import Alignment
from ..io.trees import Tree
from ..models.gtr import N_RATE_CATS, ModelState
from .blocks import (
    BLOCK_ORDER,
    DEFAULT_FACTR,
    DEFAULT_PGTOL,
    AlphaBlock,
    FrequencyBlock,
    ParameterBlock,
    PInvBlock,
    SubstitutionRateBlock,
)
from .branch import BranchLengthRefiner

OPT_EPSILON = 1e-2

_BLOCK_LABELS = {
    ParameterBlock.FREQUENCIES: "freqs",
    ParameterBlock.BRANCH_LENGTHS: "branches",
    ParameterBlock.SUBST_RATES: "s_rates",
    ParameterBlock.ALPHA: "alpha",
    ParameterBlock.PINV: "p-inv",
}


class OptimizationStatus(str, Enum):
    """Lifecycle of a coordinate-ascent run."""
    INITIALIZING = "initializing"
    CONVERGING = "converging"
    CONVERGED = "converged"
    STOPPED = "stopped"
    ABORTED = "aborted"


@dataclass
class OptimizationConfig:
    """
    Which parameter blocks to optimize, and the tolerances to use.

    Attributes
    ----------
    frequencies, branch_lengths, subst_rates, alpha, pinv : bool
        Enabled blocks. Invariant sites are off by default.
    epsilon : float
        Convergence threshold on the log-likelihood change over a round
    factr, pgtol : float
        L-BFGS-B tolerances shared by all quasi-Newton blocks
    max_rounds : Optional[int]
        Round cap, None for no cap
    branch_smoothings : int
        Maximum passes over all branches per branch-length block
    """

    frequencies: bool = True
    branch_lengths: bool = True
    subst_rates: bool = True
    alpha: bool = True
    pinv: bool = False
    epsilon: float = OPT_EPSILON
    factr: float = DEFAULT_FACTR
    pgtol: float = DEFAULT_PGTOL
    max_rounds: Optional[int] = None
    branch_smoothings: int = 8

    def __post_init__(self):
        if self.epsilon <= 0:
            raise ValueError(f"epsilon must be positive, got {self.epsilon}")
        if self.max_rounds is not None and self.max_rounds < 1:
            raise ValueError(f"max_rounds must be at least 1, got {self.max_rounds}")

    @classmethod
    def from_blocks(cls, blocks: Iterable, **kwargs) -> "OptimizationConfig":
        """
        Build a config enabling exactly ``blocks``.

        >>> OptimizationConfig.from_blocks(["alpha", "branch_lengths"]).enabled_blocks()
        [<ParameterBlock.BRANCH_LENGTHS: 'branch_lengths'>, <ParameterBlock.ALPHA: 'alpha'>]
        """
        flags = {block.value: False for block in BLOCK_ORDER}
        for block in blocks:
            flags[ParameterBlock(block).value] = True
        return cls(**flags, **kwargs)

    def is_enabled(self, block: ParameterBlock) -> bool:
        return bool(getattr(self, block.value))

    def enabled_blocks(self) -> list[ParameterBlock]:
        """Enabled blocks in the fixed round order."""
        return [block for block in BLOCK_ORDER if self.is_enabled(block)]


@dataclass
class RoundRecord:
    """Outcome of one coordinate-ascent round."""

    round: int
    log_likelihood: float
    block_log_likelihoods: dict[str, float] = field(default_factory=dict)
    elapsed: float = 0.0


class CoordinateAscentOptimizer:
    """
    Maximize the likelihood by cycling over parameter blocks.

    Every round optimizes each enabled block in the order frequencies,
    branch lengths, substitution rates, alpha, p-inv, with all other
    parameters fixed. Rounds repeat until the log-likelihood changes by no
    more than ``config.epsilon`` over a whole round.

    Parameters
    ----------
    alignment : Alignment
        Nucleotide alignment (rows are matched to tips by name)
    tree : Tree
        Unrooted tree; its branch lengths are updated when optimization ends
    symmetries : array-like of int
        Rate group of every substitution rate position
    config : OptimizationConfig, optional
        Enabled blocks and tolerances
    state : ModelState, optional
        Starting parameters, defaults to :meth:`ModelState.default` with the
        tree's branch lengths
    n_rate_cats : int
        Number of discrete gamma categories
    verbose : bool
        Print per-block and per-round progress

    Examples
    --------
    >>> optimizer = CoordinateAscentOptimizer(alignment, tree, build_model_symmetries("012345"))
    >>> lnL = optimizer.optimize()
    >>> optimizer.status
    <OptimizationStatus.CONVERGED: 'converged'>
    """

    def __init__(
        self,
        alignment: Alignment,
        tree: Tree,
        symmetries,
        config: Optional[OptimizationConfig] = None,
        state: Optional[ModelState] = None,
        n_rate_cats: int = N_RATE_CATS,
        verbose: bool = False,
    ):
        self.tree = tree
        self.config = config if config is not None else OptimizationConfig()
        self.symmetries = np.asarray(symmetries, dtype=int)
        self.verbose = verbose

        if state is None:
            state = ModelState.default(tree.branch_lengths)
        if state.branch_lengths.shape != (tree.n_edges,):
            raise ValueError(
                f"State has {len(state.branch_lengths)} branch lengths, "
                f"tree has {tree.n_edges} edges"
            )
        for group in range(int(self.symmetries.max()) + 1):
            tied = state.subst_rates[self.symmetries == group]
            if not np.allclose(tied, tied[0]):
                raise ValueError(
                    f"Starting substitution rates {state.subst_rates.tolist()} differ "
                    f"within a symmetry group; tied rates must start equal"
                )
        self.state = state

        self.engine = PartialLikelihoodEngine(alignment, tree, n_rate_cats=n_rate_cats)
        self.oracle = LikelihoodOracle(self.engine)

        tolerances = {'factr': self.config.factr, 'pgtol': self.config.pgtol}
        self.block_optimizers = {
            ParameterBlock.FREQUENCIES: FrequencyBlock(self.oracle, **tolerances),
            ParameterBlock.SUBST_RATES: SubstitutionRateBlock(
                self.oracle, self.symmetries, **tolerances
            ),
            ParameterBlock.ALPHA: AlphaBlock(self.oracle, **tolerances),
            ParameterBlock.PINV: PInvBlock(self.oracle, **tolerances),
        }
        self.refiner = BranchLengthRefiner(
            self.oracle, tree, smoothings=self.config.branch_smoothings
        )

        self.central_edge_id = tree.tip_edge(0)
        self.context = None
        self.status = OptimizationStatus.INITIALIZING
        self.trace: list[RoundRecord] = []
        self.initial_log_likelihood: Optional[float] = None
        self.log_likelihood: Optional[float] = None
        self._best: Optional[float] = None
        self._start_time: Optional[float] = None

    def _elapsed(self) -> float:
        return time.time() - self._start_time

    def initialize(self) -> float:
        """
        Plan the traversal and evaluate the starting log-likelihood.

        Returns
        -------
        float
            Starting log-likelihood
        """
        self.context = plan_traversal(self.tree, self.central_edge_id)
        value = self.oracle.evaluate(self.state, self.context)
        if not np.isfinite(value):
            self.status = OptimizationStatus.ABORTED
            raise OptimizerFailure("Starting log-likelihood is not finite")

        self._best = value
        self.initial_log_likelihood = -value
        self.log_likelihood = -value
        self.status = OptimizationStatus.CONVERGING
        self._start_time = time.time()

        if self.verbose:
            print(f"Log-L: {-value:f}")
        return -value

    def run_round(self) -> RoundRecord:
        """
        Optimize every enabled block once.

        Returns
        -------
        RoundRecord
            Log-likelihood after the round and after each block
        """
        if self.status is OptimizationStatus.INITIALIZING:
            self.initialize()

        current = self._best
        block_values = {}
        for block in self.config.enabled_blocks():
            if block is ParameterBlock.BRANCH_LENGTHS:
                current = self.refiner.refine(self.state, self.context)
                # Branch refinement re-roots the traversal at every branch
                self.context = plan_traversal(self.tree, self.central_edge_id)
                details = None
            else:
                optimizer = self.block_optimizers[block]
                current = optimizer.optimize(self.state, self.context)
                details = optimizer.describe(self.state)

            block_values[block.value] = -current
            if self.verbose:
                print(f"  {int(self._elapsed()):5d} s [{_BLOCK_LABELS[block]}]: {current:f}")
                if details is not None:
                    print(f"             {details}")

        record = RoundRecord(
            round=len(self.trace) + 1,
            log_likelihood=-current,
            block_log_likelihoods=block_values,
            elapsed=self._elapsed(),
        )
        self.trace.append(record)
        self.log_likelihood = -current

        if self.verbose:
            print(f"Iteration: {int(record.elapsed):5d} s. : {current:f}")
        return record

    def optimize(self) -> float:
        """
        Run rounds until convergence (or until ``config.max_rounds``).

        Returns
        -------
        float
            Final log-likelihood

        Raises
        ------
        OptimizerFailure
            If a block produced a non-finite likelihood. The status becomes
            ABORTED and ``state`` keeps the values reached so far.
        """
        try:
            if self.status is OptimizationStatus.INITIALIZING:
                self.initialize()

            while True:
                record = self.run_round()
                current = -record.log_likelihood
                if abs(current - self._best) <= self.config.epsilon:
                    self.status = OptimizationStatus.CONVERGED
                    break
                self._best = current
                if self.config.max_rounds is not None and len(self.trace) >= self.config.max_rounds:
                    self.status = OptimizationStatus.STOPPED
                    break
        except OptimizerFailure:
            self.status = OptimizationStatus.ABORTED
            raise

        self.tree.set_branch_lengths(self.state.branch_lengths)

        if self.verbose:
            print(f"Final Log-L: {self.log_likelihood:f}")
            print(f"Time:  {int(self._elapsed())} s.")
            print(f"Alpha: {self.state.alpha:f}")
            print(f"P-inv: {self.state.p_inv:f}")
            print("Rates: " + ' '.join(f"{rate:f}" for rate in self.state.subst_rates))
            print("Freqs: " + ' '.join(f"{freq:f}" for freq in self.state.frequencies))

        return self.log_likelihood

    @property
    def converged(self) -> bool:
        return self.status is OptimizationStatus.CONVERGED

    @property
    def n_rounds(self) -> int:
        return len(self.trace)

    @property
    def history(self) -> list[float]:
        """Starting log-likelihood followed by the value after every round."""
        if self.initial_log_likelihood is None:
            return []
        return [self.initial_log_likelihood] + [record.log_likelihood for record in self.trace]
