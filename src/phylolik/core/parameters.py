"""
Named, constrained scalar parameters.

Components never share :class:`Parameter` objects. Every getter hands out
copies and values travel between components through
:meth:`Parametrizable.set_parameters` and
:meth:`Parametrizable.match_parameters_values`, which notify the owner via
:meth:`Parametrizable.fire_parameter_changed`.
"""

import math
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional, Union

import numpy as np

from ..exceptions import (
    ConstraintError,
    ParameterExistsError,
    ParameterNotFoundError,
)

# Offset used to step inside open interval bounds
PRECISION = 1e-12


class Constraint:
    """Predicate on a parameter value with a projection onto the valid set."""

    lower: float = -math.inf
    upper: float = math.inf

    def is_correct(self, value: float) -> bool:
        raise NotImplementedError

    def get_limit(self, value: float) -> float:
        raise NotImplementedError

    def get_acceptable_limit(self, value: float) -> float:
        raise NotImplementedError


class IntervalConstraint(Constraint):
    """
    Interval constraint on a real value.

    Parameters
    ----------
    lower, upper : float
        Interval bounds, infinite bounds are allowed.
    include_lower, include_upper : bool
        Whether the bounds themselves are valid values.
    """

    def __init__(
        self,
        lower: float = -math.inf,
        upper: float = math.inf,
        include_lower: bool = True,
        include_upper: bool = True,
    ):
        if lower > upper:
            raise ValueError(f"Empty interval: lower {lower} > upper {upper}")
        self.lower = float(lower)
        self.upper = float(upper)
        self.include_lower = include_lower
        self.include_upper = include_upper

    @property
    def has_lower_bound(self) -> bool:
        return math.isfinite(self.lower)

    @property
    def has_upper_bound(self) -> bool:
        return math.isfinite(self.upper)

    def is_correct(self, value: float) -> bool:
        if math.isnan(value):
            return False
        if value < self.lower or (value == self.lower and not self.include_lower):
            return False
        if value > self.upper or (value == self.upper and not self.include_upper):
            return False
        return True

    def get_limit(self, value: float) -> float:
        """Closest bound (or the value itself when already valid)."""
        if self.is_correct(value):
            return value
        if value <= self.lower:
            return self.lower
        return self.upper

    def get_acceptable_limit(self, value: float) -> float:
        """Closest value that passes :meth:`is_correct`."""
        if self.is_correct(value):
            return value
        if value <= self.lower:
            if self.include_lower:
                return self.lower
            return self.lower + max(PRECISION, abs(self.lower) * PRECISION)
        if self.include_upper:
            return self.upper
        return self.upper - max(PRECISION, abs(self.upper) * PRECISION)

    def intersect(self, other: "IntervalConstraint") -> "IntervalConstraint":
        lower, include_lower = self.lower, self.include_lower
        if other.lower > lower or (other.lower == lower and not other.include_lower):
            lower, include_lower = other.lower, other.include_lower
        upper, include_upper = self.upper, self.include_upper
        if other.upper < upper or (other.upper == upper and not other.include_upper):
            upper, include_upper = other.upper, other.include_upper
        return IntervalConstraint(lower, upper, include_lower, include_upper)

    def __eq__(self, other) -> bool:
        if not isinstance(other, IntervalConstraint):
            return NotImplemented
        return (self.lower, self.upper, self.include_lower, self.include_upper) == (
            other.lower, other.upper, other.include_lower, other.include_upper
        )

    def __str__(self) -> str:
        left = "[" if self.include_lower and self.has_lower_bound else "]"
        right = "]" if self.include_upper and self.has_upper_bound else "["
        return f"{left}{self.lower}, {self.upper}{right}"

    __repr__ = __str__


POSITIVE = IntervalConstraint(0.0, math.inf, include_lower=False)
NON_NEGATIVE = IntervalConstraint(0.0, math.inf)
PROPORTION = IntervalConstraint(0.0, 1.0)
OPEN_PROPORTION = IntervalConstraint(0.0, 1.0, include_lower=False, include_upper=False)


@dataclass
class Parameter:
    """
    A named real value with an optional constraint.

    Attributes
    ----------
    name : str
        Parameter name, unique within its owning list
    value : float
        Current value
    constraint : IntervalConstraint, optional
        Valid interval for the value
    """

    name: str
    value: float = 0.0
    constraint: Optional[IntervalConstraint] = None

    def __post_init__(self):
        self.value = float(self.value)
        if self.constraint is not None and not self.constraint.is_correct(self.value):
            raise ConstraintError(self.name, self.value, self.constraint)

    def set_value(self, value: float) -> None:
        value = float(value)
        if self.constraint is not None and not self.constraint.is_correct(value):
            raise ConstraintError(self.name, value, self.constraint)
        self.value = value

    def has_constraint(self) -> bool:
        return self.constraint is not None

    def copy(self) -> "Parameter":
        return Parameter(self.name, self.value, self.constraint)

    def renamed(self, name: str) -> "Parameter":
        return Parameter(name, self.value, self.constraint)


class ParameterList:
    """
    Ordered collection of parameters with unique names.

    Lookup by name is O(1). Indexing accepts a position or a name.
    """

    def __init__(self, parameters: Iterable[Parameter] = ()):
        self._parameters: list[Parameter] = []
        self._index: dict[str, int] = {}
        for parameter in parameters:
            self.add_parameter(parameter)

    def __len__(self) -> int:
        return len(self._parameters)

    def __iter__(self) -> Iterator[Parameter]:
        return iter(self._parameters)

    def __contains__(self, name: str) -> bool:
        return name in self._index

    def __getitem__(self, key: Union[int, str]) -> Parameter:
        if isinstance(key, str):
            return self.get_parameter(key)
        return self._parameters[key]

    def __repr__(self) -> str:
        inner = ", ".join(f"{p.name}={p.value:.6g}" for p in self._parameters)
        return f"ParameterList({inner})"

    def add_parameter(self, parameter: Parameter) -> None:
        """Append a copy of ``parameter``."""
        if parameter.name in self._index:
            raise ParameterExistsError(parameter.name)
        self._index[parameter.name] = len(self._parameters)
        self._parameters.append(parameter.copy())

    def add_parameters(self, parameters: Iterable[Parameter]) -> None:
        parameters = list(parameters)
        names = [p.name for p in parameters]
        for name in names:
            if name in self._index or names.count(name) > 1:
                raise ParameterExistsError(name)
        for parameter in parameters:
            self.add_parameter(parameter)

    def has_parameter(self, name: str) -> bool:
        return name in self._index

    def find(self, name: str) -> Optional[Parameter]:
        """Return the parameter called ``name`` or None."""
        i = self._index.get(name)
        return None if i is None else self._parameters[i]

    def get_parameter(self, name: str) -> Parameter:
        i = self._index.get(name)
        if i is None:
            raise ParameterNotFoundError(name)
        return self._parameters[i]

    def get_parameter_value(self, name: str) -> float:
        return self.get_parameter(name).value

    def index_of(self, name: str) -> int:
        if name not in self._index:
            raise ParameterNotFoundError(name)
        return self._index[name]

    def get_parameter_names(self) -> list[str]:
        return [p.name for p in self._parameters]

    def get_values(self) -> np.ndarray:
        return np.array([p.value for p in self._parameters], dtype=float)

    def to_dict(self) -> dict[str, float]:
        return {p.name: p.value for p in self._parameters}

    def sub_list(self, names: Iterable[str]) -> "ParameterList":
        """Copy of the parameters called ``names``, in the given order."""
        return ParameterList(self.get_parameter(name) for name in names)

    def get_common_parameters_with(self, other: "ParameterList") -> "ParameterList":
        return ParameterList(p for p in self._parameters if p.name in other)

    def delete_parameter(self, name: str) -> None:
        self.delete_parameters([name])

    def delete_parameters(self, names: Iterable[str]) -> None:
        names = set(names)
        for name in names:
            if name not in self._index:
                raise ParameterNotFoundError(name)
        self._parameters = [p for p in self._parameters if p.name not in names]
        self._index = {p.name: i for i, p in enumerate(self._parameters)}

    def set_parameter_value(self, name: str, value: float) -> None:
        self.get_parameter(name).set_value(value)

    def set_parameters_values(self, other: "ParameterList") -> None:
        """Copy values from ``other``. Every name in ``other`` must exist here."""
        for parameter in other:
            if parameter.name not in self._index:
                raise ParameterNotFoundError(parameter.name)
        for parameter in other:
            self.get_parameter(parameter.name).set_value(parameter.value)

    def match_parameters_values(self, other: "ParameterList") -> "ParameterList":
        """
        Copy values of the parameters shared with ``other``.

        Returns
        -------
        ParameterList
            Copies of the parameters whose value actually changed.
        """
        changed = ParameterList()
        for parameter in other:
            mine = self.find(parameter.name)
            if mine is not None and mine.value != parameter.value:
                mine.set_value(parameter.value)
                changed.add_parameter(mine)
        return changed

    def set_all_values(self, values: Iterable[float]) -> None:
        values = list(values)
        if len(values) != len(self._parameters):
            raise ValueError(
                f"Expected {len(self._parameters)} values, got {len(values)}"
            )
        for parameter, value in zip(self._parameters, values):
            parameter.set_value(value)

    def rename(self, old: str, new: str) -> None:
        i = self.index_of(old)
        if new in self._index and new != old:
            raise ParameterExistsError(new)
        self._parameters[i] = self._parameters[i].renamed(new)
        del self._index[old]
        self._index[new] = i

    def copy(self) -> "ParameterList":
        return ParameterList(self._parameters)


class Parametrizable:
    """
    Base class of every component holding parameters.

    Subclasses register their parameters with :meth:`_add_parameter` and
    override :meth:`fire_parameter_changed` to recompute derived state.
    """

    def __init__(self):
        self._parameters = ParameterList()

    def _add_parameter(self, parameter: Parameter) -> None:
        self._parameters.add_parameter(parameter)

    def _add_parameters(self, parameters: Iterable[Parameter]) -> None:
        self._parameters.add_parameters(parameters)

    def _delete_parameters(self, names: Iterable[str]) -> None:
        self._parameters.delete_parameters(names)

    def _set_parameter_value_silently(self, name: str, value: float) -> None:
        self._parameters.set_parameter_value(name, value)

    def get_parameters(self) -> ParameterList:
        return self._parameters.copy()

    def get_parameter(self, name: str) -> Parameter:
        return self._parameters.get_parameter(name).copy()

    def get_parameter_value(self, name: str) -> float:
        return self._parameters.get_parameter_value(name)

    def get_parameter_names(self) -> list[str]:
        return self._parameters.get_parameter_names()

    def get_number_of_parameters(self) -> int:
        return len(self._parameters)

    def get_independent_parameters(self) -> ParameterList:
        return self.get_parameters()

    def has_parameter(self, name: str) -> bool:
        return self._parameters.has_parameter(name)

    def set_parameter_value(self, name: str, value: float) -> None:
        self._parameters.set_parameter_value(name, value)
        self.fire_parameter_changed(self._parameters.sub_list([name]))

    def set_parameters(self, parameters: ParameterList) -> None:
        """Set every parameter in ``parameters``; all of them must exist."""
        self._parameters.set_parameters_values(parameters)
        self.fire_parameter_changed(
            self._parameters.sub_list(parameters.get_parameter_names())
        )

    def set_all_parameters_values(self, parameters: ParameterList) -> None:
        """Set values from a list that must contain every parameter."""
        for name in self._parameters.get_parameter_names():
            if name not in parameters:
                raise ParameterNotFoundError(name)
        self.set_parameters(parameters.sub_list(self._parameters.get_parameter_names()))

    def match_parameters_values(self, parameters: ParameterList) -> bool:
        """
        Update the parameters shared with ``parameters``.

        Returns
        -------
        bool
            True when at least one value changed.
        """
        changed = self._parameters.match_parameters_values(parameters)
        if len(changed) > 0:
            self.fire_parameter_changed(changed)
        return len(changed) > 0

    def fire_parameter_changed(self, parameters: ParameterList) -> None:
        """Hook called after ``parameters`` (copies) changed value."""
