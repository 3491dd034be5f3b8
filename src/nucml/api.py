"""
High-level API for nucml.

This module provides a simplified interface for fitting nucleotide
substitution models on a fixed tree, with a unified result object and
automatic file format detection.
"""

import json
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import numpy as np

from .core.likelihood import LikelihoodOracle, PartialLikelihoodEngine, plan_traversal
from .io.sequences import Alignment, NUCLEOTIDES
from .io.trees import Tree
from .models.gtr import DEFAULT_ALPHA, N_RATE_CATS, ModelState, has_equal_frequencies, resolve_model
from .optimize.optimizer import CoordinateAscentOptimizer, OptimizationConfig, RoundRecord

RATE_LABELS = ['AC', 'AG', 'AT', 'CG', 'CT', 'GT']


@dataclass
class FitResult:
    """
    Result of a maximum-likelihood fit.

    Attributes
    ----------
    model : str
        Model as given by the caller (name or symmetry string)
    symmetries : str
        Rate symmetry string actually fitted
    lnL : float
        Final log-likelihood
    initial_lnL : float
        Log-likelihood at the starting parameters
    frequencies : list[float]
        Base frequencies (A, C, G, T)
    subst_rates : list[float]
        Substitution rates (AC, AG, AT, CG, CT, GT)
    alpha : float
        Gamma shape parameter
    p_inv : float
        Proportion of invariant sites
    branch_lengths : list[float]
        Branch lengths by edge id
    tree : Tree
        Tree with optimized branch lengths
    config : OptimizationConfig
        Blocks and tolerances used
    status : str
        'converged', 'stopped' (round cap reached)
    trace : list[RoundRecord]
        Log-likelihood after every round
    elapsed : float
        Wall-clock seconds spent optimizing

    Examples
    --------
    >>> from nucml import optimize_model
    >>> result = optimize_model("tree.nwk", "alignment.fasta", "GTR")
    >>> print(result.summary())
    >>> result.to_json("results.json")
    """

    model: str
    symmetries: str
    lnL: float
    initial_lnL: float
    frequencies: List[float]
    subst_rates: List[float]
    alpha: float
    p_inv: float
    branch_lengths: List[float]
    tree: Tree
    config: OptimizationConfig
    status: str
    trace: List[RoundRecord] = field(default_factory=list)
    elapsed: float = 0.0

    @property
    def n_rounds(self) -> int:
        return len(self.trace)

    @property
    def newick(self) -> str:
        return self.tree.to_newick()

    @property
    def n_params(self) -> int:
        """
        Number of free parameters that were estimated.

        Substitution rates count one less than their number of groups,
        since the rate matrix is normalized.
        """
        n = 0
        if self.config.frequencies:
            n += len(self.frequencies) - 1
        if self.config.subst_rates:
            n += len(set(self.symmetries)) - 1
        if self.config.alpha:
            n += 1
        if self.config.pinv:
            n += 1
        if self.config.branch_lengths:
            n += len(self.branch_lengths)
        return n

    def summary(self) -> str:
        """
        Generate human-readable summary of optimization results.

        Returns
        -------
        str
            Formatted multi-line summary with model parameters
        """
        enabled = ', '.join(block.value for block in self.config.enabled_blocks()) or 'none'

        lines = []
        lines.append("=" * 70)
        lines.append(f"MODEL: {self.model} ({self.symmetries})")
        lines.append("=" * 70)
        lines.append("")
        lines.append(f"Log-likelihood:       {self.lnL:.6f}")
        lines.append(f"Initial Log-L:        {self.initial_lnL:.6f}")
        lines.append(f"Number of parameters: {self.n_params}")
        lines.append(f"Rounds:               {self.n_rounds} ({self.status})")
        lines.append(f"Optimized blocks:     {enabled}")
        lines.append("")
        lines.append("PARAMETERS:")
        lines.append("  Frequencies:")
        for base, freq in zip(NUCLEOTIDES, self.frequencies):
            lines.append(f"    {base} = {freq:.6f}")
        lines.append("  Substitution rates:")
        for label, rate in zip(RATE_LABELS, self.subst_rates):
            lines.append(f"    {label} = {rate:.6f}")
        lines.append(f"  alpha = {self.alpha:.6f}")
        lines.append(f"  p-inv = {self.p_inv:.6f}")
        lines.append("")
        lines.append("TREE:")
        lines.append(f"  {self.tree.n_tips} sequences, {self.tree.n_edges} branches")
        lines.append(f"  Tree length: {sum(self.branch_lengths):.6f}")
        lines.append(f"  {self.newick}")
        lines.append("")
        lines.append("=" * 70)

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """
        Export results as a JSON-serializable dictionary.

        The tree is exported as a Newick string.
        """
        return {
            'model': self.model,
            'symmetries': self.symmetries,
            'lnL': float(self.lnL),
            'initial_lnL': float(self.initial_lnL),
            'n_params': int(self.n_params),
            'status': self.status,
            'n_rounds': self.n_rounds,
            'frequencies': [float(x) for x in self.frequencies],
            'subst_rates': [float(x) for x in self.subst_rates],
            'alpha': float(self.alpha),
            'p_inv': float(self.p_inv),
            'branch_lengths': [float(x) for x in self.branch_lengths],
            'tree': self.newick,
            'trace': [float(record.log_likelihood) for record in self.trace],
            'optimized_blocks': [block.value for block in self.config.enabled_blocks()],
            'elapsed': float(self.elapsed),
        }

    def to_json(self, filepath: Optional[str] = None, indent: int = 2) -> str:
        """
        Export results as JSON.

        Parameters
        ----------
        filepath : str, optional
            If provided, write JSON to this file
        indent : int, default=2
            Indentation level for pretty printing

        Returns
        -------
        str
            JSON string representation
        """
        json_str = json.dumps(self.to_dict(), indent=indent)

        if filepath:
            with open(filepath, 'w') as f:
                f.write(json_str)

        return json_str

    def __str__(self) -> str:
        return self.summary()

    def __repr__(self) -> str:
        return f"FitResult(model='{self.model}', lnL={self.lnL:.2f}, alpha={self.alpha:.3f})"


def _load_tree(tree: Union[str, Path, Tree]) -> Tree:
    """
    Load tree from Newick file or string.

    Parameters
    ----------
    tree : str, Path, or Tree
        Path to tree file, Newick string, or Tree object
    """
    if isinstance(tree, Tree):
        return tree

    path_or_str = str(tree)

    # Newick strings are never valid file names
    if ';' not in path_or_str or Path(path_or_str).exists():
        path = Path(path_or_str)
        if not path.exists():
            raise FileNotFoundError(f"Tree file not found: {path}")
        return Tree.from_file(path)

    return Tree.from_newick(path_or_str)


def _load_alignment(alignment: Union[str, Path, Alignment]) -> Alignment:
    """Load alignment from file with format auto-detection."""
    if isinstance(alignment, Alignment):
        return alignment
    return Alignment.from_file(alignment)


def _starting_state(
    tree: Tree,
    frequencies,
    subst_rates,
    alpha: float,
    p_inv: float,
) -> ModelState:
    tree.fill_missing_branch_lengths()
    return ModelState.default(
        tree.branch_lengths,
        frequencies=None if frequencies is None else np.asarray(frequencies, dtype=float),
        subst_rates=None if subst_rates is None else np.asarray(subst_rates, dtype=float),
        alpha=alpha,
        p_inv=p_inv,
    )


def compute_log_likelihood(
    tree: Union[str, Path, Tree],
    alignment: Union[str, Path, Alignment],
    *,
    frequencies=None,
    subst_rates=None,
    alpha: float = DEFAULT_ALPHA,
    p_inv: float = 0.0,
    n_rate_cats: int = N_RATE_CATS,
) -> float:
    """
    Log-likelihood of an alignment on a tree for fixed parameters.

    Missing branch lengths are set to 1e-6.

    Parameters
    ----------
    tree : str, Path, or Tree
        Tree file, Newick string or Tree object
    alignment : str, Path, or Alignment
        Alignment file or Alignment object
    frequencies : array-like, optional
        Base frequencies (A, C, G, T), equal by default
    subst_rates : array-like, optional
        Substitution rates (AC, AG, AT, CG, CT, GT), all 1 by default
    alpha : float
        Gamma shape parameter
    p_inv : float
        Proportion of invariant sites
    n_rate_cats : int
        Number of discrete gamma categories

    Returns
    -------
    float
        Log-likelihood
    """
    tree_obj = _load_tree(tree)
    aln = _load_alignment(alignment)
    state = _starting_state(tree_obj, frequencies, subst_rates, alpha, p_inv)

    oracle = LikelihoodOracle(PartialLikelihoodEngine(aln, tree_obj, n_rate_cats=n_rate_cats))
    return oracle.log_likelihood(state, plan_traversal(tree_obj))


def optimize_model(
    tree: Union[str, Path, Tree],
    alignment: Union[str, Path, Alignment],
    model: str = "GTR",
    config: Optional[OptimizationConfig] = None,
    *,
    frequencies=None,
    subst_rates=None,
    alpha: float = DEFAULT_ALPHA,
    p_inv: float = 0.0,
    n_rate_cats: int = N_RATE_CATS,
    verbose: bool = False,
) -> FitResult:
    """
    Estimate model parameters and branch lengths by maximum likelihood.

    This is the main entry point. The tree topology is kept fixed.

    Parameters
    ----------
    tree : str, Path, or Tree
        Tree in Newick format. Can be:

        - Path to file
        - Newick string
        - Tree object

    alignment : str, Path, or Alignment
        Nucleotide alignment. If string/Path, FASTA vs PHYLIP is auto-detected.
    model : str, default="GTR"
        Model name (JC69, K80, F81, HKY85, TN93, GTR; case-insensitive)
        or a 6-digit rate symmetry string such as ``"010020"``. JC69 and
        K80 keep base frequencies at 0.25 whatever ``config`` says.
    config : OptimizationConfig, optional
        Blocks to optimize and tolerances. By default frequencies, branch
        lengths, substitution rates and alpha are optimized.
    frequencies, subst_rates, alpha, p_inv
        Starting parameter values (equal frequencies, unit rates,
        alpha 0.1, no invariant sites by default). Blocks that are not
        optimized keep these values.
    n_rate_cats : int, default=4
        Number of discrete gamma categories
    verbose : bool
        Print progress after every block and round

    Returns
    -------
    FitResult
        Optimized parameters and log-likelihood trace

    Raises
    ------
    InvalidModelSpec
        If the model name or symmetry string is invalid
    ParseError
        If the tree or alignment cannot be read or do not match
    ValueError
        If starting values break the model (tied rates that differ, or
        unequal frequencies for JC69 or K80)
    OptimizerFailure
        If the likelihood becomes non-finite during optimization

    Examples
    --------
    >>> result = optimize_model("tree.nwk", "alignment.fasta", "HKY85")
    >>> print(f"alpha = {result.alpha:.3f}")

    Keep alpha fixed and estimate invariant sites:

    >>> config = OptimizationConfig(alpha=False, pinv=True)
    >>> result = optimize_model("tree.nwk", "alignment.fasta", "GTR", config, alpha=0.5)

    Notes
    -----
    The tree object is modified in-place with optimized branch lengths.
    """
    model_string, symmetries = resolve_model(model)
    tree_obj = _load_tree(tree)
    aln = _load_alignment(alignment)
    config = config if config is not None else OptimizationConfig()
    if has_equal_frequencies(model):
        if frequencies is not None and not np.allclose(frequencies, 0.25):
            raise ValueError(f"{model} fixes all base frequencies at 0.25")
        config = replace(config, frequencies=False)

    state = _starting_state(tree_obj, frequencies, subst_rates, alpha, p_inv)

    if verbose:
        print("Model: " + ''.join(str(group) for group in symmetries))
        print(f"Starting tree: {tree_obj.to_newick()}")

    optimizer = CoordinateAscentOptimizer(
        aln,
        tree_obj,
        symmetries,
        config=config,
        state=state,
        n_rate_cats=n_rate_cats,
        verbose=verbose,
    )

    start = time.time()
    lnL = optimizer.optimize()
    elapsed = time.time() - start

    if verbose:
        print(f"Final tree: {tree_obj.to_newick()}")

    return FitResult(
        model=model,
        symmetries=model_string,
        lnL=lnL,
        initial_lnL=optimizer.initial_log_likelihood,
        frequencies=[float(x) for x in state.frequencies],
        subst_rates=[float(x) for x in state.subst_rates],
        alpha=state.alpha,
        p_inv=state.p_inv,
        branch_lengths=[float(x) for x in state.branch_lengths],
        tree=tree_obj,
        config=config,
        status=optimizer.status.value,
        trace=list(optimizer.trace),
        elapsed=elapsed,
    )
