"""
Closed-form and reversible nucleotide substitution models.

States are ordered A, C, G, T (U for RNA). Equilibrium frequencies of the
models with free frequencies are parametrized by

- ``theta``: G+C content
- ``theta1``: A / (A + T)
- ``theta2``: G / (C + G)

so every parameter assignment yields a valid frequency vector.
"""

import math

import numpy as np

from ..core.parameters import IntervalConstraint, Parameter
from ..exceptions import AlphabetMismatchError
from ..io.sequences import DNA, PROTEIN, Alphabet
from .base import ReversibleSubstitutionModel, SubstitutionModel, check_frequencies

A, C, G, T = 0, 1, 2, 3

RATE_CONSTRAINT = IntervalConstraint(1e-6, math.inf)
THETA_CONSTRAINT = IntervalConstraint(1e-6, 1.0 - 1e-6)


def thetas_from_frequencies(freqs: np.ndarray) -> tuple[float, float, float]:
    """(theta, theta1, theta2) of a 4-state frequency vector."""
    at = freqs[A] + freqs[T]
    gc = freqs[C] + freqs[G]
    theta1 = freqs[A] / at if at > 0 else 0.5
    theta2 = freqs[G] / gc if gc > 0 else 0.5
    return float(gc), float(theta1), float(theta2)


def frequencies_from_thetas(theta: float, theta1: float, theta2: float) -> np.ndarray:
    return np.array([
        theta1 * (1.0 - theta),
        (1.0 - theta2) * theta,
        theta2 * theta,
        (1.0 - theta1) * (1.0 - theta),
    ])


def _exchangeability_matrix(ac, ag, at, cg, ct, gt) -> np.ndarray:
    R = np.zeros((4, 4))
    for (i, j), rate in {
        (A, C): ac, (A, G): ag, (A, T): at, (C, G): cg, (C, T): ct, (G, T): gt
    }.items():
        R[i, j] = R[j, i] = rate
    return R


class JCModel(SubstitutionModel):
    """
    Jukes-Cantor model on any alphabet: equal rates, uniform frequencies.

    With n states and β = n / (n - 1)::

        P_ii(t) = 1/n + (n-1)/n exp(-βt)
        P_ij(t) = 1/n - 1/n exp(-βt)
    """

    def __init__(self, alphabet: Alphabet = DNA):
        super().__init__(alphabet)
        if alphabet.size < 2:
            raise AlphabetMismatchError("Jukes-Cantor model needs at least 2 states")
        if alphabet.size == 4:
            self.name = "JC69"
        elif alphabet == PROTEIN:
            self.name = "JCprot"
        else:
            self.name = f"JC{alphabet.size}"
        self._beta = self._n / (self._n - 1.0)
        self.update_matrices()

    def update_matrices(self) -> None:
        n = self._n
        self._generator = (np.ones((n, n)) - n * np.eye(n)) / (n - 1.0)
        self._freq = np.full(n, 1.0 / n)

    def get_eigen_values(self) -> np.ndarray:
        values = np.full(self._n, -self._beta)
        values[-1] = 0.0
        return values

    def _matrix(self, diagonal: float, off_diagonal: float) -> np.ndarray:
        M = np.full((self._n, self._n), off_diagonal)
        np.fill_diagonal(M, diagonal)
        return M

    def get_Pij_t(self, t: float) -> np.ndarray:
        n = self._n
        e = math.exp(-self._beta * t)
        return self._matrix(1.0 / n + (n - 1.0) / n * e, 1.0 / n - e / n)

    def get_dPij_dt(self, t: float) -> np.ndarray:
        e = math.exp(-self._beta * t)
        return self._matrix(-e, e / (self._n - 1.0))

    def get_d2Pij_dt2(self, t: float) -> np.ndarray:
        n = self._n
        e = math.exp(-self._beta * t)
        return self._matrix(self._beta * e, -n / (n - 1.0) ** 2 * e)


class NucleotideModel(ReversibleSubstitutionModel):
    """Reversible model on a 4-state nucleotide alphabet."""

    def __init__(self, alphabet: Alphabet = DNA):
        if alphabet.size != 4:
            raise AlphabetMismatchError(
                f"{type(self).__name__} requires a nucleotide alphabet, got {alphabet.name}"
            )
        super().__init__(alphabet)

    def _add_frequency_parameters(self, freqs) -> None:
        if freqs is None:
            freqs = np.full(4, 0.25)
        freqs = check_frequencies(freqs, 4)
        theta, theta1, theta2 = thetas_from_frequencies(freqs)
        for name, value in (("theta", theta), ("theta1", theta1), ("theta2", theta2)):
            self._add_parameter(
                Parameter(name, THETA_CONSTRAINT.get_acceptable_limit(value), THETA_CONSTRAINT)
            )

    def _thetas_frequencies(self) -> np.ndarray:
        return frequencies_from_thetas(
            self.get_parameter_value("theta"),
            self.get_parameter_value("theta1"),
            self.get_parameter_value("theta2"),
        )

    def _set_frequencies(self, freqs: np.ndarray) -> None:
        for name, value in zip(("theta", "theta1", "theta2"), thetas_from_frequencies(freqs)):
            self._set_parameter_value_silently(name, THETA_CONSTRAINT.get_acceptable_limit(value))
        self.update_matrices()


class K80(NucleotideModel):
    """Kimura 2-parameter model: transition/transversion ratio ``kappa``."""

    name = "K80"

    def __init__(self, kappa: float = 1.0, alphabet: Alphabet = DNA):
        super().__init__(alphabet)
        self._add_parameter(Parameter("kappa", kappa, RATE_CONSTRAINT))
        self.update_matrices()

    def _exchangeabilities(self) -> np.ndarray:
        k = self.get_parameter_value("kappa")
        return _exchangeability_matrix(1.0, k, 1.0, 1.0, k, 1.0)

    def _equilibrium_frequencies(self) -> np.ndarray:
        return np.full(4, 0.25)

    def _set_frequencies(self, freqs: np.ndarray) -> None:
        SubstitutionModel._set_frequencies(self, freqs)


class T92(NucleotideModel):
    """Tamura 1992: K80 with a G+C content parameter ``theta``."""

    name = "T92"

    def __init__(self, kappa: float = 1.0, theta: float = 0.5, alphabet: Alphabet = DNA):
        super().__init__(alphabet)
        self._add_parameter(Parameter("kappa", kappa, RATE_CONSTRAINT))
        self._add_parameter(Parameter("theta", theta, THETA_CONSTRAINT))
        self.update_matrices()

    def _exchangeabilities(self) -> np.ndarray:
        k = self.get_parameter_value("kappa")
        return _exchangeability_matrix(1.0, k, 1.0, 1.0, k, 1.0)

    def _equilibrium_frequencies(self) -> np.ndarray:
        theta = self.get_parameter_value("theta")
        return np.array([(1.0 - theta) / 2, theta / 2, theta / 2, (1.0 - theta) / 2])

    def _set_frequencies(self, freqs: np.ndarray) -> None:
        theta = freqs[C] + freqs[G]
        self._set_parameter_value_silently("theta", THETA_CONSTRAINT.get_acceptable_limit(theta))
        self.update_matrices()


class HKY85(NucleotideModel):
    """Hasegawa-Kishino-Yano 1985: ``kappa`` and free frequencies."""

    name = "HKY85"

    def __init__(self, kappa: float = 1.0, freqs=None, alphabet: Alphabet = DNA):
        super().__init__(alphabet)
        self._add_parameter(Parameter("kappa", kappa, RATE_CONSTRAINT))
        self._add_frequency_parameters(freqs)
        self.update_matrices()

    def _exchangeabilities(self) -> np.ndarray:
        k = self.get_parameter_value("kappa")
        return _exchangeability_matrix(1.0, k, 1.0, 1.0, k, 1.0)

    def _equilibrium_frequencies(self) -> np.ndarray:
        return self._thetas_frequencies()


class TN93(NucleotideModel):
    """
    Tamura-Nei 1993: purine (``kappa1``, A<->G) and pyrimidine
    (``kappa2``, C<->T) transition rates, free frequencies.
    """

    name = "TN93"

    def __init__(self, kappa1: float = 1.0, kappa2: float = 1.0, freqs=None, alphabet: Alphabet = DNA):
        super().__init__(alphabet)
        self._add_parameter(Parameter("kappa1", kappa1, RATE_CONSTRAINT))
        self._add_parameter(Parameter("kappa2", kappa2, RATE_CONSTRAINT))
        self._add_frequency_parameters(freqs)
        self.update_matrices()

    def _exchangeabilities(self) -> np.ndarray:
        k1 = self.get_parameter_value("kappa1")
        k2 = self.get_parameter_value("kappa2")
        return _exchangeability_matrix(1.0, k1, 1.0, 1.0, k2, 1.0)

    def _equilibrium_frequencies(self) -> np.ndarray:
        return self._thetas_frequencies()


class GTR(NucleotideModel):
    """
    General time-reversible model.

    Exchangeabilities relative to G<->T: ``a`` A<->C, ``b`` A<->G,
    ``c`` A<->T, ``d`` C<->G, ``e`` C<->T.
    """

    name = "GTR"

    def __init__(
        self,
        a: float = 1.0,
        b: float = 1.0,
        c: float = 1.0,
        d: float = 1.0,
        e: float = 1.0,
        freqs=None,
        alphabet: Alphabet = DNA,
    ):
        super().__init__(alphabet)
        for name, value in (("a", a), ("b", b), ("c", c), ("d", d), ("e", e)):
            self._add_parameter(Parameter(name, value, RATE_CONSTRAINT))
        self._add_frequency_parameters(freqs)
        self.update_matrices()

    def _exchangeabilities(self) -> np.ndarray:
        value = self.get_parameter_value
        return _exchangeability_matrix(
            value("a"), value("b"), value("c"), value("d"), value("e"), 1.0
        )

    def _equilibrium_frequencies(self) -> np.ndarray:
        return self._thetas_frequencies()
