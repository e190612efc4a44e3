"""
Matrix operations for substitution models.

Rate matrix construction, eigendecomposition of reversible generators, and
transition probability matrices P(t) with their time derivatives.
"""

import numpy as np
from scipy.linalg import expm


def matrix_exponential(Q: np.ndarray, t: float) -> np.ndarray:
    """
    Compute P(t) = exp(Q*t) with scipy's Padé scaling-and-squaring.

    Used as a reference for generators without an eigendecomposition.

    Parameters
    ----------
    Q : ndarray, shape (n, n)
        Instantaneous rate matrix
    t : float
        Branch length

    Returns
    -------
    P : ndarray, shape (n, n)
        Transition probability matrix
    """
    return expm(Q * t)


def eigen_decompose_rev(Q: np.ndarray, pi: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Eigendecompose a reversible rate matrix as Q = U @ diag(eigenvalues) @ V.

    Q is symmetrized as √D Q √D⁻¹ with D = diag(pi), decomposed with
    ``numpy.linalg.eigh`` and transformed back.

    Parameters
    ----------
    Q : ndarray, shape (n, n)
        Rate matrix satisfying detailed balance with ``pi``
    pi : ndarray, shape (n,)
        Stationary distribution, strictly positive

    Returns
    -------
    eigenvalues : ndarray, shape (n,)
        Eigenvalues in ascending order (the largest is 0)
    U : ndarray, shape (n, n)
        Right eigenvectors (columns)
    V : ndarray, shape (n, n)
        Left eigenvectors (rows), V = U⁻¹
    """
    sqrt_pi = np.sqrt(pi)

    Q_sym = Q * sqrt_pi[:, np.newaxis] / sqrt_pi[np.newaxis, :]
    # Round-off can break exact symmetry
    Q_sym = 0.5 * (Q_sym + Q_sym.T)

    eigenvalues, eigenvectors = np.linalg.eigh(Q_sym)

    U = eigenvectors / sqrt_pi[:, np.newaxis]
    V = eigenvectors.T * sqrt_pi[np.newaxis, :]

    return eigenvalues, U, V


def create_reversible_Q(
    rates: np.ndarray, pi: np.ndarray, normalize: bool = True
) -> np.ndarray:
    """
    Build a reversible rate matrix from exchangeabilities and frequencies.

    Q[i, j] = rates[i, j] * pi[j] for i != j, rows sum to zero.

    Parameters
    ----------
    rates : ndarray, shape (n, n)
        Symmetric exchangeability matrix
    pi : ndarray, shape (n,)
        Equilibrium frequencies
    normalize : bool, default=True
        Scale Q so that the expected rate is one substitution per unit time

    Returns
    -------
    Q : ndarray, shape (n, n)
    """
    Q = rates * pi[np.newaxis, :]

    np.fill_diagonal(Q, 0.0)
    row_sums = np.sum(Q, axis=1)
    np.fill_diagonal(Q, -row_sums)

    if normalize:
        expected_rate = -np.dot(pi, Q.diagonal())
        if expected_rate > 0:
            Q /= expected_rate

    return Q


def check_detailed_balance(Q: np.ndarray, pi: np.ndarray, rtol: float = 1e-10) -> bool:
    """
    Test π_i Q[i, j] == π_j Q[j, i] for all pairs.

    Parameters
    ----------
    Q : ndarray, shape (n, n)
        Rate matrix
    pi : ndarray, shape (n,)
        Proposed stationary distribution
    rtol : float
        Relative tolerance

    Returns
    -------
    bool
    """
    flux = pi[:, np.newaxis] * Q
    return bool(np.allclose(flux, flux.T, rtol=rtol, atol=1e-14))


def transition_matrices(
    eigenvalues: np.ndarray, U: np.ndarray, V: np.ndarray, t: float, order: int = 0
) -> np.ndarray:
    """
    Transition matrix P(t) or its time derivative from an eigendecomposition.

    Parameters
    ----------
    eigenvalues, U, V : ndarray
        Output of :func:`eigen_decompose_rev`
    t : float
        Branch length, t >= 0
    order : int
        0 for P(t), 1 for dP/dt, 2 for d²P/dt²

    Returns
    -------
    ndarray, shape (n, n)
        For ``order=0`` tiny negative entries from round-off are clipped to 0.
    """
    factor = np.exp(eigenvalues * t) * eigenvalues ** order
    M = (U * factor[np.newaxis, :]) @ V
    if order == 0:
        np.clip(M, 0.0, None, out=M)
    return M
