"""
Matrix operations for phylogenetic likelihood calculations.

This module provides the rate-matrix algebra needed to turn substitution
parameters into transition probabilities.
"""

import numpy as np
from scipy.linalg import expm


def matrix_exponential(Q: np.ndarray, t: float) -> np.ndarray:
    """
    Compute transition probability matrix P(t) = exp(Q*t).

    Uses scipy's matrix exponential (Padé approximation with scaling and
    squaring). The likelihood engine uses the eigendecomposition instead;
    this is the reference it is checked against.

    Parameters
    ----------
    Q : ndarray, shape (n, n)
        Rate matrix (instantaneous substitution rate matrix)
    t : float
        Branch length (time)

    Returns
    -------
    P : ndarray, shape (n, n)
        Transition probability matrix where P[i,j] is the probability
        of state i transitioning to state j over time t
    """
    return expm(Q * t)


def exchangeability_matrix(rates: np.ndarray, states: int = 4) -> np.ndarray:
    """
    Expand upper-triangle substitution rates into a symmetric matrix.

    Parameters
    ----------
    rates : ndarray, shape (states*(states-1)/2,)
        Rates in row-major upper-triangle order (AC, AG, AT, CG, CT, GT
        for nucleotides)
    states : int
        Number of character states

    Returns
    -------
    ndarray, shape (states, states)
        Symmetric exchangeability matrix with zero diagonal
    """
    rates = np.asarray(rates, dtype=float)
    expected = states * (states - 1) // 2
    if rates.shape != (expected,):
        raise ValueError(f"Expected {expected} substitution rates, got shape {rates.shape}")

    R = np.zeros((states, states))
    R[np.triu_indices(states, k=1)] = rates
    return R + R.T


def create_reversible_Q(
    rates: np.ndarray, pi: np.ndarray, normalize: bool = True
) -> np.ndarray:
    """
    Create a reversible rate matrix from exchangeability rates and stationary distribution.

    Parameters
    ----------
    rates : ndarray, shape (n, n)
        Symmetric exchangeability matrix (r[i,j] = r[j,i])
    pi : ndarray, shape (n,)
        Stationary distribution (equilibrium frequencies)
    normalize : bool, default=True
        If True, scale Q so that expected rate is 1 substitution per time unit

    Returns
    -------
    Q : ndarray, shape (n, n)
        Reversible rate matrix satisfying detailed balance

    Notes
    -----
    The rate matrix is constructed as Q[i,j] = r[i,j] * pi[j] for i ≠ j,
    and Q[i,i] = -sum(Q[i,j] for j ≠ i).
    """
    Q = rates * pi[np.newaxis, :]

    np.fill_diagonal(Q, 0.0)
    row_sums = np.sum(Q, axis=1)
    np.fill_diagonal(Q, -row_sums)

    if normalize:
        # Expected rate = -sum(π_i * Q[i,i])
        expected_rate = -np.dot(pi, Q.diagonal())
        Q /= expected_rate

    return Q


def eigen_decompose_rev(Q: np.ndarray, pi: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Eigendecompose reversible rate matrix Q = U @ diag(eigenvalues) @ V.

    Uses symmetrization trick for reversible (time-reversible) rate matrices:
    Transform Q to symmetric matrix Q' = √D @ Q @ √D^(-1), where D = diag(pi),
    then eigendecompose Q' and transform back.

    Parameters
    ----------
    Q : ndarray, shape (n, n)
        Reversible rate matrix satisfying detailed balance: π_i * Q[i,j] = π_j * Q[j,i]
    pi : ndarray, shape (n,)
        Stationary distribution (equilibrium frequencies)

    Returns
    -------
    eigenvalues : ndarray, shape (n,)
        Eigenvalues of Q, sorted in ascending order
    U : ndarray, shape (n, n)
        Left eigenvector matrix
    V : ndarray, shape (n, n)
        Right eigenvector matrix

    Notes
    -----
    P(t) = U @ diag(exp(eigenvalues * t)) @ V
    """
    sqrt_pi = np.sqrt(pi)

    Q_sym = Q * sqrt_pi[:, np.newaxis] / sqrt_pi[np.newaxis, :]
    # Remove rounding asymmetry before eigh
    Q_sym = 0.5 * (Q_sym + Q_sym.T)

    eigenvalues, eigenvectors = np.linalg.eigh(Q_sym)

    U = eigenvectors / sqrt_pi[:, np.newaxis]
    V = eigenvectors.T * sqrt_pi[np.newaxis, :]

    return eigenvalues, U, V


def transition_matrices(
    eigenvalues: np.ndarray,
    U: np.ndarray,
    V: np.ndarray,
    rates: np.ndarray,
    t: float,
) -> np.ndarray:
    """
    Transition matrices of one branch for several rate categories.

    Parameters
    ----------
    eigenvalues, U, V : ndarray
        Output of :func:`eigen_decompose_rev`
    rates : ndarray, shape (k,)
        Rate multipliers of the categories
    t : float
        Branch length

    Returns
    -------
    ndarray, shape (k, n, n)
        ``P[c] = U @ diag(exp(eigenvalues * rates[c] * t)) @ V``
    """
    exps = np.exp(np.outer(rates * t, eigenvalues))
    P = np.einsum('ij,cj,jl->cil', U, exps, V)
    # Rounding can leave tiny negative entries
    return np.clip(P, 0.0, None)


def check_detailed_balance(Q: np.ndarray, pi: np.ndarray, rtol: float = 1e-10) -> bool:
    """
    Test if rate matrix Q satisfies detailed balance with stationary distribution pi.

    Detailed balance: π_i * Q[i,j] = π_j * Q[j,i] for all i, j
    """
    flux = pi[:, np.newaxis] * Q
    return bool(np.allclose(flux, flux.T, rtol=rtol, atol=0.0))
