"""
Reference tests for rate matrices and transition probabilities.

Checked against closed-form nucleotide solutions and the defining
properties of reversible Markov generators.
"""

import numpy as np
import pytest

from phylolik.core.matrix import (
    check_detailed_balance,
    create_reversible_Q,
    eigen_decompose_rev,
    matrix_exponential,
    transition_matrices,
)

# A, C, G, T: transitions are A<->G and C<->T
TRANSITIONS = [(0, 2), (2, 0), (1, 3), (3, 1)]


def k80_exchangeabilities(kappa):
    rates = np.ones((4, 4))
    for i, j in TRANSITIONS:
        rates[i, j] = kappa
    return rates


def random_generator(n, seed):
    rng = np.random.default_rng(seed)
    pi = rng.dirichlet(np.ones(n))
    rates = rng.uniform(0.1, 2.0, (n, n))
    return create_reversible_Q(rates + rates.T, pi), pi


class TestKimuraAnalytical:
    """K80 transition probabilities with one expected substitution per unit time."""

    @pytest.mark.parametrize("kappa, t", [(1.0, 0.1), (2.0, 0.3), (8.0, 1.5)])
    def test_closed_form(self, kappa, t):
        Q = create_reversible_Q(k80_exchangeabilities(kappa), np.full(4, 0.25))
        eigenvalues, U, V = eigen_decompose_rev(Q, np.full(4, 0.25))
        P = transition_matrices(eigenvalues, U, V, t)

        e1 = np.exp(-4.0 * t / (kappa + 2.0))
        e2 = np.exp(-2.0 * t * (kappa + 1.0) / (kappa + 2.0))
        same = 0.25 + 0.25 * e1 + 0.5 * e2
        transition = 0.25 + 0.25 * e1 - 0.5 * e2
        transversion = 0.25 - 0.25 * e1

        np.testing.assert_allclose(np.diag(P), same, rtol=1e-10)
        for i, j in TRANSITIONS:
            assert P[i, j] == pytest.approx(transition, rel=1e-10)
        assert P[0, 1] == pytest.approx(transversion, rel=1e-10)
        assert P[2, 3] == pytest.approx(transversion, rel=1e-10)

    def test_normalized_rate(self):
        pi = np.full(4, 0.25)
        Q = create_reversible_Q(k80_exchangeabilities(5.0), pi)

        assert -np.dot(pi, np.diag(Q)) == pytest.approx(1.0)
        np.testing.assert_allclose(Q.sum(axis=1), 0.0, atol=1e-14)

    def test_unnormalized(self):
        pi = np.full(4, 0.25)
        Q = create_reversible_Q(k80_exchangeabilities(5.0), pi, normalize=False)

        assert Q[0, 2] == pytest.approx(1.25)
        assert Q[0, 1] == pytest.approx(0.25)


class TestEigenDecomposition:

    @pytest.mark.parametrize("n, seed", [(4, 1), (4, 2), (20, 3)])
    def test_reconstruction(self, n, seed):
        Q, pi = random_generator(n, seed)
        eigenvalues, U, V = eigen_decompose_rev(Q, pi)

        np.testing.assert_allclose(U @ np.diag(eigenvalues) @ V, Q, atol=1e-12)
        np.testing.assert_allclose(U @ V, np.eye(n), atol=1e-12)

    def test_spectrum(self):
        Q, pi = random_generator(4, 5)
        eigenvalues, _, _ = eigen_decompose_rev(Q, pi)

        assert abs(eigenvalues[-1]) < 1e-12
        assert np.all(eigenvalues[:-1] < 0)
        assert np.all(np.diff(eigenvalues) >= 0)

    def test_detailed_balance(self):
        Q, pi = random_generator(4, 6)

        assert check_detailed_balance(Q, pi)
        assert not check_detailed_balance(Q, np.array([0.7, 0.1, 0.1, 0.1]))


class TestTransitionMatrices:

    @pytest.mark.parametrize("t", [0.0, 0.05, 0.7, 4.0])
    def test_matches_expm(self, t):
        Q, pi = random_generator(4, 7)
        eigenvalues, U, V = eigen_decompose_rev(Q, pi)

        np.testing.assert_allclose(
            transition_matrices(eigenvalues, U, V, t), matrix_exponential(Q, t), atol=1e-12
        )

    def test_stochastic(self):
        Q, pi = random_generator(20, 8)
        eigenvalues, U, V = eigen_decompose_rev(Q, pi)
        P = transition_matrices(eigenvalues, U, V, 0.3)

        assert np.all(P >= 0)
        np.testing.assert_allclose(P.sum(axis=1), 1.0, rtol=1e-10)
        np.testing.assert_allclose(pi @ P, pi, rtol=1e-10)

    def test_stationary_limit(self):
        Q, pi = random_generator(4, 9)
        eigenvalues, U, V = eigen_decompose_rev(Q, pi)
        P = transition_matrices(eigenvalues, U, V, 200.0)

        np.testing.assert_allclose(P, np.tile(pi, (4, 1)), rtol=1e-8)

    def test_derivatives_at_zero(self):
        """dP/dt(0) = Q and d²P/dt²(0) = Q²."""
        Q, pi = random_generator(4, 10)
        eigenvalues, U, V = eigen_decompose_rev(Q, pi)

        np.testing.assert_allclose(transition_matrices(eigenvalues, U, V, 0.0, 1), Q, atol=1e-12)
        np.testing.assert_allclose(transition_matrices(eigenvalues, U, V, 0.0, 2), Q @ Q, atol=1e-12)

    @pytest.mark.parametrize("t", [0.1, 1.0])
    def test_derivatives_finite_differences(self, t):
        Q, pi = random_generator(4, 11)
        eigenvalues, U, V = eigen_decompose_rev(Q, pi)
        h = 1e-5
        P_plus = transition_matrices(eigenvalues, U, V, t + h)
        P_minus = transition_matrices(eigenvalues, U, V, t - h)
        P = transition_matrices(eigenvalues, U, V, t)

        np.testing.assert_allclose(
            transition_matrices(eigenvalues, U, V, t, 1), (P_plus - P_minus) / (2 * h), atol=1e-8
        )
        np.testing.assert_allclose(
            transition_matrices(eigenvalues, U, V, t, 2), (P_plus - 2 * P + P_minus) / h ** 2, atol=1e-4
        )

    def test_derivative_rows_sum_to_zero(self):
        Q, pi = random_generator(4, 12)
        eigenvalues, U, V = eigen_decompose_rev(Q, pi)

        for order in (1, 2):
            M = transition_matrices(eigenvalues, U, V, 0.4, order)
            np.testing.assert_allclose(M.sum(axis=1), 0.0, atol=1e-12)
