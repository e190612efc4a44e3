"""
Mixtures of substitution models sharing one state space.

A mixed model is not a single rate matrix: :meth:`MixedSubstitutionModel.Qij`
returns 0 and :meth:`MixedSubstitutionModel.set_freq` does nothing. Code
that needs per-class transition probabilities queries the sub-models through
:meth:`MixedSubstitutionModel.get_n_model`.
"""

import warnings
from typing import Mapping, Optional, Sequence

import numpy as np

from ..core.parameters import PROPORTION, Parameter, ParameterList
from ..exceptions import AlphabetMismatchError, IndexOutOfBoundsError
from ..io.sequences import Alignment, Alphabet
from .base import SubstitutionModel


class MixedSubstitutionModel(SubstitutionModel):
    """Probability-weighted collection of sub-models."""

    name = "Mixed"

    def __init__(self, alphabet: Alphabet):
        super().__init__(alphabet)
        self._models: list[SubstitutionModel] = []
        self._probabilities = np.ones(0)

    def get_number_of_models(self) -> int:
        return len(self._models)

    def get_n_model(self, i: int) -> SubstitutionModel:
        self._check_index(i)
        return self._models[i]

    def get_n_probability(self, i: int) -> float:
        self._check_index(i)
        return float(self._probabilities[i])

    def get_probabilities(self) -> np.ndarray:
        return self._probabilities.copy()

    def _check_index(self, i: int) -> None:
        if not 0 <= i < len(self._models):
            raise IndexOutOfBoundsError(f"{self.get_name()} sub-model", i, 0, len(self._models) - 1)

    def Qij(self, i: int, j: int) -> float:
        return 0.0

    def get_generator(self) -> np.ndarray:
        return np.zeros((self._n, self._n))

    def set_freq(self, freqs: Mapping[int, float]) -> None:
        warnings.warn(
            f"{self.get_name()} is a mixture; set frequencies on its sub-models instead",
            UserWarning,
        )

    def set_freq_from_data(self, alignment: Alignment, pseudo_count: float = 0.0) -> None:
        self.set_freq({})


class MixtureOfSubstitutionModels(MixedSubstitutionModel):
    """
    Site-class mixture: each site evolves under one sub-model, drawn with the
    mixture probabilities.

    Sub-model parameters are exposed with a ``"{k}_"`` prefix (k starting at
    1); mixture weights are the stick-breaking proportions
    ``relproba1 .. relproba(K-1)``.

    The aggregate :meth:`get_Pij_t` (and derivatives) is the weighted average
    of the sub-model matrices, the expected transition of a site whose class
    is unknown. Likelihood computations do not use it: they expand the
    sub-models into separate site classes.

    Parameters
    ----------
    alphabet : Alphabet
        Shared alphabet
    models : sequence of SubstitutionModel
        Sub-models, owned by the mixture from now on
    probabilities : sequence of float, optional
        Mixture weights summing to 1, uniform by default
    """

    name = "Mixture"

    def __init__(
        self,
        alphabet: Alphabet,
        models: Sequence[SubstitutionModel],
        probabilities: Optional[Sequence[float]] = None,
    ):
        super().__init__(alphabet)
        if not models:
            raise ValueError("A mixture needs at least one sub-model")
        for model in models:
            if model.get_alphabet() != alphabet:
                raise AlphabetMismatchError(
                    f"Sub-model {model.get_name()} alphabet {model.get_alphabet().name} "
                    f"differs from {alphabet.name}"
                )
            if model.get_number_of_states() != self._n:
                raise AlphabetMismatchError(
                    f"Sub-model {model.get_name()} has {model.get_number_of_states()} states, "
                    f"expected {self._n}"
                )
            if isinstance(model, MixedSubstitutionModel):
                raise ValueError("Nested mixtures are not supported")
        self._models = list(models)

        K = len(self._models)
        if probabilities is None:
            probabilities = np.full(K, 1.0 / K)
        probabilities = np.asarray(probabilities, dtype=float)
        if len(probabilities) != K:
            raise ValueError(f"Expected {K} probabilities, got {len(probabilities)}")
        if np.any(probabilities < 0) or abs(probabilities.sum() - 1.0) > 1e-12:
            raise ValueError("Mixture probabilities must be non-negative and sum to 1")

        for k, model in enumerate(self._models, start=1):
            for parameter in model.get_parameters():
                self._add_parameter(parameter.renamed(f"{k}_{parameter.name}"))

        remainder = 1.0
        for i in range(1, K):
            ratio = min(1.0, probabilities[i - 1] / remainder) if remainder > 0 else 0.0
            self._add_parameter(Parameter(f"relproba{i}", ratio, PROPORTION))
            remainder -= probabilities[i - 1]

        self.update_matrices()

    def get_sub_model_parameter_name(self, k: int, name: str) -> str:
        """Mixture-level name of parameter ``name`` of sub-model ``k`` (0-based)."""
        return f"{k + 1}_{name}"

    def fire_parameter_changed(self, parameters: ParameterList) -> None:
        by_model: dict[int, ParameterList] = {}
        for parameter in parameters:
            prefix, sep, name = parameter.name.partition("_")
            if sep and prefix.isdigit():
                k = int(prefix) - 1
                by_model.setdefault(k, ParameterList()).add_parameter(parameter.renamed(name))
        for k, sub_parameters in by_model.items():
            self._models[k].match_parameters_values(sub_parameters)
        self.update_matrices()

    def update_matrices(self) -> None:
        K = len(self._models)
        probabilities = np.empty(K)
        remainder = 1.0
        for i in range(1, K):
            ratio = self.get_parameter_value(f"relproba{i}")
            probabilities[i - 1] = ratio * remainder
            remainder *= 1.0 - ratio
        probabilities[-1] = remainder
        self._probabilities = probabilities
        self._freq = sum(p * m.get_frequencies() for p, m in zip(probabilities, self._models))

    def _weighted(self, matrices) -> np.ndarray:
        return sum(p * M for p, M in zip(self._probabilities, matrices))

    def get_Pij_t(self, t: float) -> np.ndarray:
        return self._weighted(m.get_Pij_t(t) for m in self._models)

    def get_dPij_dt(self, t: float) -> np.ndarray:
        return self._weighted(m.get_dPij_dt(t) for m in self._models)

    def get_d2Pij_dt2(self, t: float) -> np.ndarray:
        return self._weighted(m.get_d2Pij_dt2(t) for m in self._models)
