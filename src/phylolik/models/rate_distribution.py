"""
Discrete distributions of relative evolutionary rates across sites.
"""

import copy
import math

import numpy as np
from scipy.special import gammainc
from scipy.stats import gamma

from ..core.parameters import IntervalConstraint, Parameter, ParameterList, Parametrizable
from ..exceptions import ConfigurationError, IndexOutOfBoundsError

ALPHA_CONSTRAINT = IntervalConstraint(1e-4, math.inf)


class DiscreteDistribution(Parametrizable):
    """Finite set of rate categories with probabilities."""

    name = "DiscreteDistribution"

    def __init__(self):
        super().__init__()
        self._categories = np.ones(1)
        self._probabilities = np.ones(1)

    def get_name(self) -> str:
        return self.name

    def get_number_of_categories(self) -> int:
        return len(self._categories)

    def get_categories(self) -> np.ndarray:
        return self._categories.copy()

    def get_probabilities(self) -> np.ndarray:
        return self._probabilities.copy()

    def get_category(self, i: int) -> float:
        self._check_index(i)
        return float(self._categories[i])

    def get_probability(self, i: int) -> float:
        self._check_index(i)
        return float(self._probabilities[i])

    def get_mean(self) -> float:
        return float(np.dot(self._categories, self._probabilities))

    def _check_index(self, i: int) -> None:
        if not 0 <= i < len(self._categories):
            raise IndexOutOfBoundsError(
                f"{self.get_name()} category", i, 0, len(self._categories) - 1
            )

    def copy(self) -> "DiscreteDistribution":
        return copy.deepcopy(self)


class ConstantDistribution(DiscreteDistribution):
    """A single category: every site evolves at the same rate."""

    name = "Constant"

    def __init__(self, value: float = 1.0):
        super().__init__()
        self._categories = np.array([float(value)])
        self._probabilities = np.ones(1)


class GammaDiscreteDistribution(DiscreteDistribution):
    """
    Gamma(α, 1/α) rates discretized into equiprobable categories.

    Category rates are the conditional means of each quantile bin (Yang 1994),
    so the mean rate is exactly 1.

    Parameters
    ----------
    n_categories : int
        Number of rate categories
    alpha : float
        Shape parameter, exposed as ``Gamma.alpha``
    """

    name = "Gamma"

    def __init__(self, n_categories: int = 4, alpha: float = 1.0):
        super().__init__()
        if n_categories < 1:
            raise ConfigurationError(
                f"Number of gamma categories must be >= 1, got {n_categories}",
                key="rate_distribution.classes_number",
            )
        if not alpha > 0:
            raise ConfigurationError(
                f"Gamma shape must be positive, got {alpha}", key="rate_distribution.alpha"
            )
        self.n_categories = n_categories
        self._add_parameter(
            Parameter("Gamma.alpha", ALPHA_CONSTRAINT.get_acceptable_limit(alpha), ALPHA_CONSTRAINT)
        )
        self._discretize()

    def fire_parameter_changed(self, parameters: ParameterList) -> None:
        self._discretize()

    def _discretize(self) -> None:
        alpha = self.get_parameter_value("Gamma.alpha")
        K = self.n_categories
        self._probabilities = np.full(K, 1.0 / K)
        if K == 1:
            self._categories = np.ones(1)
            return

        cuts = gamma.ppf(np.arange(1, K) / K, alpha, scale=1.0 / alpha)
        # Fraction of the mean mass below each cut point
        mass = np.concatenate(([0.0], gammainc(alpha + 1.0, cuts * alpha), [1.0]))
        self._categories = np.diff(mass) * K
