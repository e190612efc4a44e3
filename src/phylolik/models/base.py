"""
Substitution model interface and the reversible eigen-based implementation.
"""

import copy
import warnings
from typing import Mapping

import numpy as np

from ..core.matrix import create_reversible_Q, eigen_decompose_rev, transition_matrices
from ..core.parameters import ParameterList, Parametrizable
from ..exceptions import AlphabetMismatchError, FrequenciesError
from ..io.sequences import Alignment, Alphabet

# Maximum deviation from 1 accepted for a frequency vector
FREQUENCY_SUM_TOLERANCE = 1e-14


def check_frequencies(freqs, n_states: int) -> np.ndarray:
    """
    Validate a frequency vector and return it as an array.

    Raises
    ------
    FrequenciesError
        Wrong length, negative entries, or sum further than 1e-14 from 1.
    """
    freqs = np.asarray(freqs, dtype=float)
    if freqs.shape != (n_states,):
        raise FrequenciesError(
            f"Expected {n_states} frequencies, got shape {freqs.shape}"
        )
    if np.any(freqs < 0) or not np.all(np.isfinite(freqs)):
        raise FrequenciesError(f"Frequencies must be finite and non-negative: {freqs}")
    total = freqs.sum()
    if abs(total - 1.0) > FREQUENCY_SUM_TOLERANCE:
        raise FrequenciesError(f"Frequencies sum to {total!r}, not 1")
    return freqs.copy()


def frequencies_from_data(alignment: Alignment, alphabet: Alphabet, pseudo_count: float = 0.0) -> np.ndarray:
    """Observed state frequencies of an alignment, gaps ignored."""
    if alignment.alphabet != alphabet:
        raise AlphabetMismatchError(
            f"Alignment alphabet {alignment.alphabet.name} does not match {alphabet.name}"
        )
    counts = alignment.state_counts() + pseudo_count
    total = counts.sum()
    if total <= 0:
        raise FrequenciesError("No observed state to estimate frequencies from")
    return counts / total


class SubstitutionModel(Parametrizable):
    """
    Continuous-time Markov model of state substitution.

    Subclasses maintain the generator ``_generator`` and the equilibrium
    frequencies ``_freq`` in :meth:`update_matrices`, which runs after every
    parameter change.

    Parameters
    ----------
    alphabet : Alphabet
        State alphabet (shared, read-only)
    """

    name = "SubstitutionModel"

    def __init__(self, alphabet: Alphabet):
        super().__init__()
        self.alphabet = alphabet
        self._n = alphabet.size
        self._generator = np.zeros((self._n, self._n))
        self._freq = np.full(self._n, 1.0 / self._n)

    def get_name(self) -> str:
        return self.name

    def get_alphabet(self) -> Alphabet:
        return self.alphabet

    def get_number_of_states(self) -> int:
        return self._n

    def get_generator(self) -> np.ndarray:
        return self._generator.copy()

    def get_frequencies(self) -> np.ndarray:
        return self._freq.copy()

    def Qij(self, i: int, j: int) -> float:
        return float(self._generator[i, j])

    def freq(self, i: int) -> float:
        return float(self._freq[i])

    def get_Pij_t(self, t: float) -> np.ndarray:
        raise NotImplementedError

    def get_dPij_dt(self, t: float) -> np.ndarray:
        raise NotImplementedError

    def get_d2Pij_dt2(self, t: float) -> np.ndarray:
        raise NotImplementedError

    def Pij_t(self, i: int, j: int, t: float) -> float:
        return float(self.get_Pij_t(t)[i, j])

    def dPij_dt(self, i: int, j: int, t: float) -> float:
        return float(self.get_dPij_dt(t)[i, j])

    def d2Pij_dt2(self, i: int, j: int, t: float) -> float:
        return float(self.get_d2Pij_dt2(t)[i, j])

    def get_eigen_values(self) -> np.ndarray:
        return np.sort(np.linalg.eigvals(self._generator).real)

    def update_matrices(self) -> None:
        raise NotImplementedError

    def fire_parameter_changed(self, parameters: ParameterList) -> None:
        self.update_matrices()

    def set_freq(self, freqs: Mapping[int, float]) -> None:
        """
        Set equilibrium frequencies from a state index -> frequency mapping.

        Models whose frequencies are fixed by construction warn and keep
        their frequencies.
        """
        vector = np.zeros(self._n)
        for state, value in freqs.items():
            vector[state] = value
        self._set_frequencies(check_frequencies(vector, self._n))

    def _set_frequencies(self, freqs: np.ndarray) -> None:
        warnings.warn(
            f"{self.get_name()} has fixed equilibrium frequencies; set_freq ignored",
            UserWarning,
        )

    def set_freq_from_data(self, alignment: Alignment, pseudo_count: float = 0.0) -> None:
        """Override the equilibrium frequencies with observed state frequencies."""
        freqs = frequencies_from_data(alignment, self.alphabet, pseudo_count)
        self.set_freq(dict(enumerate(freqs)))

    def copy(self) -> "SubstitutionModel":
        return copy.deepcopy(self)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.get_parameters()!r})"


class ReversibleSubstitutionModel(SubstitutionModel):
    """
    Time-reversible model Q = R diag(π), normalized to one substitution per
    unit time.

    Subclasses implement :meth:`_exchangeabilities` and
    :meth:`_equilibrium_frequencies` from their parameters. P(t) and its
    derivatives come from the eigendecomposition of Q.
    """

    def __init__(self, alphabet: Alphabet):
        super().__init__(alphabet)
        self._eigenvalues = np.zeros(self._n)
        self._right = np.eye(self._n)
        self._left = np.eye(self._n)

    def _exchangeabilities(self) -> np.ndarray:
        raise NotImplementedError

    def _equilibrium_frequencies(self) -> np.ndarray:
        raise NotImplementedError

    def update_matrices(self) -> None:
        self._freq = self._equilibrium_frequencies()
        self._generator = create_reversible_Q(self._exchangeabilities(), self._freq)
        if np.all(self._freq > 0):
            self._eigenvalues, self._right, self._left = eigen_decompose_rev(
                self._generator, self._freq
            )
        else:
            # Zero frequencies make the symmetrization singular
            eigenvalues, right = np.linalg.eig(self._generator)
            self._eigenvalues = eigenvalues.real
            self._right = right.real
            self._left = np.linalg.inv(right).real

    def get_eigen_values(self) -> np.ndarray:
        return self._eigenvalues.copy()

    def get_Pij_t(self, t: float) -> np.ndarray:
        return transition_matrices(self._eigenvalues, self._right, self._left, t, 0)

    def get_dPij_dt(self, t: float) -> np.ndarray:
        return transition_matrices(self._eigenvalues, self._right, self._left, t, 1)

    def get_d2Pij_dt2(self, t: float) -> np.ndarray:
        return transition_matrices(self._eigenvalues, self._right, self._left, t, 2)
