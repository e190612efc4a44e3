"""
Wrappers around objective functions.

An objective function exposes ``get_parameters``, ``set_parameters``,
``get_value``, ``f`` and, when it can, ``get_first_order_derivative`` /
``get_second_order_derivative``. :class:`~phylolik.core.phylo_likelihood.PhyloLikelihood`
is one; every wrapper below is one too, so wrappers can be stacked.
"""

import logging
import math
from pathlib import Path
from typing import Iterable, Optional

import numpy as np

from ..core.parameters import Parameter, ParameterList
from ..exceptions import NaNLikelihoodError, ParameterArityError

logger = logging.getLogger(__name__)


class FunctionWrapper:
    """Delegates the whole function protocol to ``function``."""

    def __init__(self, function):
        self.function = function

    def get_parameters(self) -> ParameterList:
        return self.function.get_parameters()

    def get_parameter_value(self, name: str) -> float:
        return self.function.get_parameter_value(name)

    def set_parameters(self, parameters: ParameterList) -> None:
        self.function.set_parameters(parameters)

    def get_value(self) -> float:
        return self.function.get_value()

    def f(self, parameters: ParameterList) -> float:
        self.set_parameters(parameters)
        return self.get_value()

    def get_first_order_derivative(self, name: str) -> float:
        return self.function.get_first_order_derivative(name)

    def get_second_order_derivative(self, name: str) -> float:
        return self.function.get_second_order_derivative(name)


class NaNWatcher(FunctionWrapper):
    """
    Fails loudly when the wrapped function returns NaN.

    Before raising, a diagnostic file is written with the current parameter
    values and, when a likelihood is attached, its tree and sequences.

    Parameters
    ----------
    function
        Wrapped objective function
    likelihood : PhyloLikelihood, optional
        Source of the tree and sequences for the dump, defaults to
        ``function`` when it has a tree
    log_path : str or Path
        Dump file
    """

    def __init__(self, function, likelihood=None, log_path="DEBUG.LOG"):
        super().__init__(function)
        if likelihood is None and hasattr(function, "get_tree"):
            likelihood = function
        self.likelihood = likelihood
        self.log_path = Path(log_path)

    def get_value(self) -> float:
        value = self.function.get_value()
        if math.isnan(value):
            self._dump()
            raise NaNLikelihoodError(
                f"Likelihood is NaN, diagnostic written to {self.log_path}", self.log_path
            )
        return value

    def _dump(self) -> None:
        lines = ["Parameters:"]
        for parameter in self.function.get_parameters():
            lines.append(f"{parameter.name}\t{parameter.value!r}")
        if self.likelihood is not None:
            lines += ["", "Tree:", self.likelihood.get_tree().to_newick()]
            lines += ["", "Sequences:", self.likelihood.get_data().to_fasta()]
        self.log_path.write_text("\n".join(lines) + "\n")
        logger.error("NaN likelihood, state dumped to %s", self.log_path)


class NumericalDerivative(FunctionWrapper):
    """
    Finite-difference derivatives for a chosen set of parameters.

    The step for a parameter of value x is ``h * (1 + |x|)``. When a stencil
    point would violate the parameter constraint, a one-sided stencil is used
    instead. Derivatives of parameters not selected with
    :meth:`set_parameters_to_derivate` are delegated to the wrapped function.
    """

    def __init__(self, function, h: float = 1e-4):
        super().__init__(function)
        self.h = h
        self._variables: list[str] = []

    def set_interval(self, h: float) -> None:
        if h <= 0:
            raise ValueError(f"Derivative interval must be positive, got {h}")
        self.h = h

    def get_interval(self) -> float:
        return self.h

    def set_parameters_to_derivate(self, names: Iterable[str]) -> None:
        self._variables = list(names)

    def get_parameters_to_derivate(self) -> list[str]:
        return list(self._variables)

    def _values_around(self, name: str, offsets: Iterable[int]) -> tuple[float, dict[int, float]]:
        parameter = self.function.get_parameters().get_parameter(name)
        x = parameter.value
        h = self.h * (1.0 + abs(x))
        values = {}
        try:
            for k in offsets:
                if k == 0:
                    values[0] = self.function.get_value()
                    continue
                trial = parameter.renamed(name)
                trial.set_value(x + k * h)
                self.function.set_parameters(ParameterList([trial]))
                values[k] = self.function.get_value()
        finally:
            self.function.set_parameters(ParameterList([parameter]))
        return h, values

    def _direction(self, name: str, reach: int) -> int:
        """+1 for a central or forward stencil, -1 for a backward one."""
        parameter = self.function.get_parameters().get_parameter(name)
        if parameter.constraint is None:
            return 0
        x = parameter.value
        h = self.h * (1.0 + abs(x))
        if not parameter.constraint.is_correct(x - reach * h):
            return 1
        if not parameter.constraint.is_correct(x + reach * h):
            return -1
        return 0

    def _derivatives(self, name: str) -> tuple[float, Optional[float]]:
        raise NotImplementedError

    def get_first_order_derivative(self, name: str) -> float:
        if name not in self._variables:
            return self.function.get_first_order_derivative(name)
        return self._derivatives(name)[0]

    def get_second_order_derivative(self, name: str) -> float:
        if name not in self._variables:
            return self.function.get_second_order_derivative(name)
        second = self._derivatives(name)[1]
        if second is None:
            raise NotImplementedError(
                f"{type(self).__name__} does not compute second order derivatives"
            )
        return second


class TwoPointsNumericalDerivative(NumericalDerivative):
    """First order derivative from f(x) and f(x + h) (or f(x - h) at an upper bound)."""

    def _derivatives(self, name):
        sign = -1 if self._direction(name, 1) == -1 else 1
        h, f = self._values_around(name, (0, sign))
        return sign * (f[sign] - f[0]) / h, None


class ThreePointsNumericalDerivative(NumericalDerivative):
    """First and second order derivatives from a three point stencil."""

    def _derivatives(self, name):
        sign = self._direction(name, 1)
        if sign == 0:
            h, f = self._values_around(name, (-1, 0, 1))
            return (f[1] - f[-1]) / (2 * h), (f[1] - 2 * f[0] + f[-1]) / (h * h)
        h, f = self._values_around(name, (0, sign, 2 * sign))
        first = sign * (-3 * f[0] + 4 * f[sign] - f[2 * sign]) / (2 * h)
        return first, (f[0] - 2 * f[sign] + f[2 * sign]) / (h * h)


class FivePointsNumericalDerivative(NumericalDerivative):
    """
    First and second order derivatives from a five point central stencil,
    falling back to a one-sided three point stencil near bounds.
    """

    def _derivatives(self, name):
        if self._direction(name, 2) == 0:
            h, f = self._values_around(name, (-2, -1, 0, 1, 2))
            first = (f[-2] - 8 * f[-1] + 8 * f[1] - f[2]) / (12 * h)
            second = (-f[-2] + 16 * f[-1] - 30 * f[0] + 16 * f[1] - f[2]) / (12 * h * h)
            return first, second
        sign = self._direction(name, 2)
        h, f = self._values_around(name, (0, sign, 2 * sign))
        first = sign * (-3 * f[0] + 4 * f[sign] - f[2 * sign]) / (2 * h)
        return first, (f[0] - 2 * f[sign] + f[2 * sign]) / (h * h)


class ReparametrizationFunctionWrapper(FunctionWrapper):
    """
    Exposes constrained parameters on an unconstrained scale.

    ============================  =======================================
    constraint                    transform
    ============================  =======================================
    lower bound only              x = lower + exp(y)
    upper bound only              x = upper - exp(y)
    both bounds                   x = lower + (upper - lower) * sigmoid(y)
    none                          x = y
    ============================  =======================================

    Parameters
    ----------
    function
        Wrapped objective function
    parameters : ParameterList, optional
        Parameters to expose, all of the function's by default
    """

    def __init__(self, function, parameters: Optional[ParameterList] = None):
        super().__init__(function)
        if parameters is None:
            parameters = function.get_parameters()
        self._originals = parameters.copy()
        self._transformed = ParameterList(
            Parameter(p.name, self._to_unconstrained(p)) for p in self._originals
        )

    @staticmethod
    def _to_unconstrained(parameter: Parameter) -> float:
        c = parameter.constraint
        x = parameter.value
        if c is None:
            return x
        if c.has_lower_bound and c.has_upper_bound:
            p = (x - c.lower) / (c.upper - c.lower)
            p = min(max(p, 1e-12), 1.0 - 1e-12)
            return math.log(p / (1.0 - p))
        if c.has_lower_bound:
            return math.log(max(x - c.lower, 1e-300))
        if c.has_upper_bound:
            return math.log(max(c.upper - x, 1e-300))
        return x

    def _to_constrained(self, name: str, y: float) -> tuple[float, float, float]:
        """Value, first and second derivative of the back transform at y."""
        c = self._originals.get_parameter(name).constraint
        if c is None or not (c.has_lower_bound or c.has_upper_bound):
            return y, 1.0, 0.0
        if c.has_lower_bound and c.has_upper_bound:
            width = c.upper - c.lower
            s = 1.0 / (1.0 + math.exp(-y)) if y >= 0 else math.exp(y) / (1.0 + math.exp(y))
            d1 = width * s * (1.0 - s)
            return c.lower + width * s, d1, d1 * (1.0 - 2.0 * s)
        e = math.exp(min(y, 700.0))
        if c.has_lower_bound:
            return c.lower + e, e, e
        return c.upper - e, -e, -e

    def _original_value(self, name: str, y: float) -> float:
        x = self._to_constrained(name, y)[0]
        constraint = self._originals.get_parameter(name).constraint
        if constraint is not None:
            x = constraint.get_acceptable_limit(x)
        return x

    def get_parameters(self) -> ParameterList:
        return self._transformed.copy()

    def get_parameter_value(self, name: str) -> float:
        return self._transformed.get_parameter_value(name)

    def get_original_parameters(self) -> ParameterList:
        return self._originals.copy()

    def set_parameters(self, parameters: ParameterList) -> None:
        self._transformed.set_parameters_values(parameters)
        originals = ParameterList()
        for parameter in parameters:
            value = self._original_value(parameter.name, parameter.value)
            self._originals.set_parameter_value(parameter.name, value)
            originals.add_parameter(self._originals.get_parameter(parameter.name))
        self.function.set_parameters(originals)

    def get_first_order_derivative(self, name: str) -> float:
        _, dx, _ = self._to_constrained(name, self._transformed.get_parameter_value(name))
        return self.function.get_first_order_derivative(name) * dx

    def get_second_order_derivative(self, name: str) -> float:
        _, dx, d2x = self._to_constrained(name, self._transformed.get_parameter_value(name))
        first = self.function.get_first_order_derivative(name)
        second = self.function.get_second_order_derivative(name)
        return second * dx * dx + first * d2x


class ScaleFunction:
    """
    Likelihood as a function of one global scale of the branch lengths.

    The single parameter ``scale factor`` is the log of the factor applied
    to the branch lengths held when the function was created; 0 leaves the
    tree unchanged.
    """

    PARAMETER_NAME = "scale factor"

    def __init__(self, likelihood):
        self.likelihood = likelihood
        self._lengths = likelihood.get_branch_lengths_parameters()
        self._parameters = ParameterList([Parameter(self.PARAMETER_NAME, 0.0)])

    def get_parameters(self) -> ParameterList:
        return self._parameters.copy()

    def get_parameter_value(self, name: str) -> float:
        return self._parameters.get_parameter_value(name)

    def set_parameters(self, parameters: ParameterList) -> None:
        if len(parameters) != 1:
            raise ParameterArityError(1, len(parameters))
        self._parameters.set_parameters_values(parameters)
        factor = math.exp(self._parameters.get_parameter_value(self.PARAMETER_NAME))
        scaled = self._lengths.copy()
        for parameter in scaled:
            value = parameter.value * factor
            if parameter.constraint is not None:
                value = parameter.constraint.get_acceptable_limit(value)
            parameter.set_value(value)
        self.likelihood.set_parameters(scaled)

    def get_scale(self) -> float:
        return math.exp(self._parameters.get_parameter_value(self.PARAMETER_NAME))

    def get_value(self) -> float:
        return self.likelihood.get_value()

    def f(self, parameters: ParameterList) -> float:
        self.set_parameters(parameters)
        return self.get_value()


def parameter_bounds(parameters: ParameterList) -> list[tuple[Optional[float], Optional[float]]]:
    """(lower, upper) pairs usable by scipy, None for a missing bound."""
    bounds = []
    for p in parameters:
        c = p.constraint
        if c is None:
            bounds.append((None, None))
            continue
        lower = c.get_acceptable_limit(c.lower) if c.has_lower_bound else None
        upper = c.get_acceptable_limit(c.upper) if c.has_upper_bound else None
        bounds.append((lower, upper))
    return bounds


def clamp_to_constraints(parameters: ParameterList, values: np.ndarray) -> ParameterList:
    """Copy of ``parameters`` holding ``values`` moved inside each constraint."""
    clamped = parameters.copy()
    for parameter, value in zip(clamped, values):
        value = float(value)
        if parameter.constraint is not None:
            value = parameter.constraint.get_acceptable_limit(value)
        parameter.set_value(value)
    return clamped
