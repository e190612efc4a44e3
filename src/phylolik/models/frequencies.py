"""
Parametrized equilibrium frequency vectors.

Frequencies sets feed root-state priors of non-stationary model sets. Every
parameter assignment maps to a valid probability vector.
"""

import numpy as np

from ..core.parameters import PROPORTION, Parameter, ParameterList, Parametrizable
from ..exceptions import AlphabetMismatchError
from ..io.sequences import Alphabet
from .base import check_frequencies


class FrequenciesSet(Parametrizable):
    """
    Parametrized frequency vector over an alphabet.

    Parameters
    ----------
    alphabet : Alphabet
        State alphabet
    prefix : str
        Namespace prepended to parameter names (e.g. ``"RootFreq."``)
    """

    name = "FrequenciesSet"

    def __init__(self, alphabet: Alphabet, prefix: str = ""):
        super().__init__()
        self.alphabet = alphabet
        self.prefix = prefix
        self._freq = np.full(alphabet.size, 1.0 / alphabet.size)

    def get_name(self) -> str:
        return self.name

    def get_alphabet(self) -> Alphabet:
        return self.alphabet

    def get_frequencies(self) -> np.ndarray:
        return self._freq.copy()

    def get_number_of_frequencies(self) -> int:
        return len(self._freq)

    def set_frequencies(self, freqs) -> None:
        raise NotImplementedError

    def _update_frequencies(self) -> None:
        raise NotImplementedError

    def fire_parameter_changed(self, parameters: ParameterList) -> None:
        self._update_frequencies()


class FullFrequenciesSet(FrequenciesSet):
    """
    All frequencies free, through n-1 stick-breaking proportions.

    ``f_1 = theta1``, ``f_i = theta_i * prod_{j<i} (1 - theta_j)`` and the last
    frequency takes the remainder.
    """

    name = "Full"

    def __init__(self, alphabet: Alphabet, freqs=None, prefix: str = ""):
        super().__init__(alphabet, prefix)
        n = alphabet.size
        for i in range(1, n):
            self._add_parameter(Parameter(f"{prefix}theta{i}", 0.5, PROPORTION))
        if freqs is None:
            freqs = np.full(n, 1.0 / n)
        self.set_frequencies(freqs)

    @staticmethod
    def proportions_from_frequencies(freqs: np.ndarray) -> np.ndarray:
        thetas = np.empty(len(freqs) - 1)
        remainder = 1.0
        for i in range(len(freqs) - 1):
            thetas[i] = min(1.0, freqs[i] / remainder) if remainder > 0 else 0.0
            remainder -= freqs[i]
        return thetas

    def set_frequencies(self, freqs) -> None:
        freqs = check_frequencies(freqs, self.alphabet.size)
        thetas = self.proportions_from_frequencies(freqs)
        for i, theta in enumerate(thetas, start=1):
            self._set_parameter_value_silently(f"{self.prefix}theta{i}", theta)
        # Keep the exact input rather than its stick-breaking reconstruction
        self._freq = freqs

    def _update_frequencies(self) -> None:
        n = self.alphabet.size
        freqs = np.empty(n)
        remainder = 1.0
        for i in range(1, n):
            theta = self.get_parameter_value(f"{self.prefix}theta{i}")
            freqs[i - 1] = theta * remainder
            remainder *= 1.0 - theta
        freqs[-1] = remainder
        self._freq = freqs


class GCFrequenciesSet(FrequenciesSet):
    """Nucleotide frequencies from G+C content: A = T = (1-θ)/2, C = G = θ/2."""

    name = "GC"

    def __init__(self, alphabet: Alphabet, theta: float = 0.5, prefix: str = ""):
        if alphabet.size != 4:
            raise AlphabetMismatchError(
                f"GC frequencies require a nucleotide alphabet, got {alphabet.name}"
            )
        super().__init__(alphabet, prefix)
        self._add_parameter(Parameter(f"{prefix}theta", theta, PROPORTION))
        self._update_frequencies()

    def set_frequencies(self, freqs) -> None:
        freqs = check_frequencies(freqs, 4)
        self._set_parameter_value_silently(f"{self.prefix}theta", freqs[1] + freqs[2])
        self._update_frequencies()

    def _update_frequencies(self) -> None:
        theta = self.get_parameter_value(f"{self.prefix}theta")
        self._freq = np.array([(1.0 - theta) / 2, theta / 2, theta / 2, (1.0 - theta) / 2])


class FixedFrequenciesSet(FrequenciesSet):
    """Frequencies without parameters."""

    name = "Fixed"

    def __init__(self, alphabet: Alphabet, freqs=None, prefix: str = ""):
        super().__init__(alphabet, prefix)
        if freqs is not None:
            self.set_frequencies(freqs)

    def set_frequencies(self, freqs) -> None:
        self._freq = check_frequencies(freqs, self.alphabet.size)

    def _update_frequencies(self) -> None:
        pass


class MarkovModulatedFrequenciesSet(FrequenciesSet):
    """
    Frequencies of a Markov-modulated model: each base state is split into
    rate classes.

    The frequency of (class j, state i) is ``rate_freqs[j] * base[i]``, stored
    at index ``j * n_states + i``. The set owns ``freq_set`` and exposes its
    parameters.

    Parameters
    ----------
    freq_set : FrequenciesSet
        Frequencies of the base states
    rate_freqs : array-like
        Frequencies of the rate classes, summing to 1
    """

    name = "MarkovModulated"

    def __init__(self, freq_set: FrequenciesSet, rate_freqs):
        rate_freqs = check_frequencies(rate_freqs, len(rate_freqs))
        base = freq_set.get_alphabet()
        # State space of the modulated model, one letter block per rate class
        alphabet = Alphabet(f"{base.name}x{len(rate_freqs)}", base.letters * len(rate_freqs))
        super().__init__(alphabet, freq_set.prefix)
        self.freq_set = freq_set
        self.rate_freqs = rate_freqs
        self._add_parameters(freq_set.get_parameters())
        self._update_frequencies()

    def get_base_frequencies_set(self) -> FrequenciesSet:
        return self.freq_set

    def set_frequencies(self, freqs) -> None:
        freqs = check_frequencies(freqs, self.alphabet.size)
        k = len(self.rate_freqs)
        base = freqs.reshape(k, -1).sum(axis=0)
        # Marginal sums may drift by a few ulps
        base /= base.sum()
        self.freq_set.set_frequencies(base)
        self._parameters.match_parameters_values(self.freq_set.get_parameters())
        self._update_frequencies()

    def _update_frequencies(self) -> None:
        self.freq_set.match_parameters_values(self._parameters)
        self._freq = np.kron(self.rate_freqs, self.freq_set.get_frequencies())
