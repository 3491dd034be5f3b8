"""
General time-reversible nucleotide substitution model.

Substitution rates are stored in row-major upper-triangle order of the
4x4 exchangeability matrix (AC, AG, AT, CG, CT, GT). Parameter tying is
described by a symmetry string with one digit per rate: positions sharing
a digit share one free parameter.
"""

from dataclasses import dataclass, field
from typing import Optional

import numpy as np
from scipy.special import gammainc
from scipy.stats import gamma

from ..core.matrix import create_reversible_Q, exchangeability_matrix
from ..errors import InvalidModelSpec

STATES = 4
N_SUBST_PARAMS = STATES * (STATES - 1) // 2
N_RATE_CATS = 4
DEFAULT_ALPHA = 0.1

# Named symmetry strings (AC, AG, AT, CG, CT, GT)
MODEL_SYMMETRIES = {
    'JC69': '000000',
    'K80': '010010',
    'F81': '000000',
    'HKY85': '010010',
    'TN93': '010020',
    'GTR': '012345',
}

# Presets whose base frequencies are fixed at 1/4
EQUAL_FREQUENCY_MODELS = frozenset({'JC69', 'K80'})


def build_model_symmetries(model_string: str, states: int = STATES) -> np.ndarray:
    """
    Build the rate-group mapping from a symmetry string.

    Group ids are assigned in order of first appearance, so ``"010101"``
    gives ``[0, 1, 0, 1, 0, 1]`` and ``"101010"`` gives the same.

    Parameters
    ----------
    model_string : str
        One decimal digit per substitution rate
    states : int
        Number of character states

    Returns
    -------
    ndarray of int, shape (states*(states-1)/2,)
        Dense group id of every rate position, starting at 0

    Raises
    ------
    InvalidModelSpec
        If the length is wrong or a character is not a digit
    """
    expected = states * (states - 1) // 2
    if len(model_string) != expected:
        raise InvalidModelSpec(
            f"Model symmetry string must have {expected} digits, "
            f"got {len(model_string)}: {model_string!r}"
        )

    groups = {}
    symmetries = np.empty(expected, dtype=int)
    for i, char in enumerate(model_string):
        if char not in '0123456789':
            raise InvalidModelSpec(
                f"Error in the model symmetries string {model_string!r}: "
                f"{char!r} at position {i} is not a digit"
            )
        if char not in groups:
            groups[char] = len(groups)
        symmetries[i] = groups[char]

    return symmetries


def resolve_model(model: str) -> tuple[str, np.ndarray]:
    """
    Turn a model name or symmetry string into ``(symmetry_string, groups)``.

    Names in :data:`MODEL_SYMMETRIES` are matched case-insensitively,
    anything else must be a valid symmetry string.
    """
    model_string = model.strip()
    key = model_string.upper()
    if key in MODEL_SYMMETRIES:
        model_string = MODEL_SYMMETRIES[key]
    elif model_string.isalpha():
        raise InvalidModelSpec(
            f"Unknown model {model!r}. Use one of {', '.join(MODEL_SYMMETRIES)} "
            f"or a {N_SUBST_PARAMS}-digit symmetry string"
        )
    return model_string, build_model_symmetries(model_string)


def has_equal_frequencies(model: str) -> bool:
    """True for named presets that do not estimate base frequencies."""
    return model.strip().upper() in EQUAL_FREQUENCY_MODELS


def frequencies_to_ratios(frequencies: np.ndarray) -> np.ndarray:
    """Express frequencies as ratios to the last component."""
    frequencies = np.asarray(frequencies, dtype=float)
    return frequencies[:-1] / frequencies[-1]


def ratios_to_frequencies(ratios: np.ndarray) -> np.ndarray:
    """Inverse of :func:`frequencies_to_ratios`: normalize ``[ratios..., 1]``."""
    values = np.append(np.asarray(ratios, dtype=float), 1.0)
    return values / values.sum()


def discretize_gamma(alpha: float, n_cats: int = N_RATE_CATS) -> np.ndarray:
    """
    Discrete gamma rate categories (Yang 1994, mean method).

    The Gamma(alpha, 1/alpha) distribution is cut into ``n_cats``
    equiprobable intervals and each category takes the mean rate of its
    interval.

    Parameters
    ----------
    alpha : float
        Gamma shape parameter
    n_cats : int
        Number of categories

    Returns
    -------
    ndarray, shape (n_cats,)
        Increasing category rates with mean 1
    """
    if alpha <= 0:
        raise ValueError(f"Gamma shape must be positive, got {alpha}")
    if n_cats == 1:
        return np.ones(1)

    cuts = gamma.ppf(np.arange(1, n_cats) / n_cats, alpha, scale=1.0 / alpha)
    # Partial means: E[X; X < c] = P(alpha + 1, alpha * c)
    partial = np.concatenate(([0.0], gammainc(alpha + 1.0, cuts * alpha), [1.0]))
    rates = n_cats * np.diff(partial)
    return rates / rates.mean()


def build_gtr_Q(subst_rates: np.ndarray, frequencies: np.ndarray) -> np.ndarray:
    """Normalized GTR rate matrix for the given rates and frequencies."""
    frequencies = np.asarray(frequencies, dtype=float)
    R = exchangeability_matrix(subst_rates, len(frequencies))
    return create_reversible_Q(R, frequencies, normalize=True)


@dataclass
class ModelState:
    """
    Current values of every model parameter.

    Attributes
    ----------
    frequencies : ndarray, shape (4,)
        Base frequencies (A, C, G, T), positive and summing to 1
    subst_rates : ndarray, shape (6,)
        Substitution rates (AC, AG, AT, CG, CT, GT)
    alpha : float
        Gamma shape parameter
    p_inv : float
        Proportion of invariant sites, in [0, 1)
    branch_lengths : ndarray, shape (n_edges,)
        Branch lengths indexed by edge id
    """

    frequencies: np.ndarray = field(default_factory=lambda: np.full(STATES, 1.0 / STATES))
    subst_rates: np.ndarray = field(default_factory=lambda: np.ones(N_SUBST_PARAMS))
    alpha: float = DEFAULT_ALPHA
    p_inv: float = 0.0
    branch_lengths: np.ndarray = field(default_factory=lambda: np.zeros(0))

    def __post_init__(self):
        self.frequencies = np.array(self.frequencies, dtype=float)
        self.subst_rates = np.array(self.subst_rates, dtype=float)
        self.branch_lengths = np.array(self.branch_lengths, dtype=float)
        self.alpha = float(self.alpha)
        self.p_inv = float(self.p_inv)

        if self.frequencies.shape != (STATES,):
            raise ValueError(f"frequencies must have length {STATES}")
        if np.any(self.frequencies <= 0):
            raise ValueError("frequencies must be positive")
        if not np.isclose(self.frequencies.sum(), 1.0):
            raise ValueError(f"frequencies must sum to 1, got {self.frequencies.sum()}")
        if self.subst_rates.shape != (N_SUBST_PARAMS,):
            raise ValueError(f"subst_rates must have length {N_SUBST_PARAMS}")
        if np.any(self.subst_rates <= 0):
            raise ValueError("subst_rates must be positive")
        if self.alpha <= 0:
            raise ValueError(f"alpha must be positive, got {self.alpha}")
        if not 0.0 <= self.p_inv < 1.0:
            raise ValueError(f"p_inv must be in [0, 1), got {self.p_inv}")
        if np.any(self.branch_lengths < 0):
            raise ValueError("branch lengths must be non-negative")

    @classmethod
    def default(
        cls,
        branch_lengths: np.ndarray,
        frequencies: Optional[np.ndarray] = None,
        subst_rates: Optional[np.ndarray] = None,
        alpha: float = DEFAULT_ALPHA,
        p_inv: float = 0.0,
    ) -> "ModelState":
        """Starting state: equal frequencies, unit rates, alpha 0.1, no invariant sites."""
        return cls(
            frequencies=np.full(STATES, 1.0 / STATES) if frequencies is None else frequencies,
            subst_rates=np.ones(N_SUBST_PARAMS) if subst_rates is None else subst_rates,
            alpha=alpha,
            p_inv=p_inv,
            branch_lengths=branch_lengths,
        )

    def copy(self) -> "ModelState":
        return ModelState(
            frequencies=self.frequencies.copy(),
            subst_rates=self.subst_rates.copy(),
            alpha=self.alpha,
            p_inv=self.p_inv,
            branch_lengths=self.branch_lengths.copy(),
        )

    def to_dict(self) -> dict:
        return {
            'frequencies': [float(x) for x in self.frequencies],
            'subst_rates': [float(x) for x in self.subst_rates],
            'alpha': float(self.alpha),
            'p_inv': float(self.p_inv),
            'branch_lengths': [float(x) for x in self.branch_lengths],
        }
