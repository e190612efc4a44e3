"""
Optimizers over the parameters of an objective function.

Every optimizer minimizes ``function.f`` starting from the parameter values
given to :meth:`Optimizer.init`. Values proposed outside a constraint are
moved to the closest acceptable value. When :meth:`Optimizer.optimize`
returns, the function holds the best parameters seen, which are never worse
than the starting point.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np
from scipy.optimize import minimize, minimize_scalar

from ..core.parameters import ParameterList
from .functions import clamp_to_constraints, parameter_bounds

logger = logging.getLogger(__name__)


@dataclass
class OptimizationEvent:
    optimizer: "Optimizer"


class OptimizationListener:
    """Receives notifications from an optimizer. Subclass and override."""

    def optimization_initialization_performed(self, event: OptimizationEvent) -> None:
        pass

    def optimization_step_performed(self, event: OptimizationEvent) -> None:
        pass


class OptimizationStopCondition:
    """
    Decides when an optimizer has converged.

    Parameters
    ----------
    optimizer : Optimizer
        Optimizer whose state is inspected
    tolerance : float
        Convergence threshold
    burnin : int
        Number of steps performed before the condition may trigger
    """

    def __init__(self, optimizer: "Optimizer", tolerance: float = 1e-6, burnin: int = 0):
        self.optimizer = optimizer
        self.tolerance = tolerance
        self.burnin = burnin
        self._steps = 0

    def init(self) -> None:
        self._steps = 0

    def get_tolerance(self) -> float:
        return self.tolerance

    def set_tolerance(self, tolerance: float) -> None:
        self.tolerance = tolerance

    def get_current_tolerance(self) -> float:
        raise NotImplementedError

    def is_tolerance_reached(self) -> bool:
        self._steps += 1
        if self._steps <= self.burnin:
            return False
        return self.get_current_tolerance() < self.tolerance


class FunctionStopCondition(OptimizationStopCondition):
    """Stops when the function value changes by less than the tolerance."""

    def get_current_tolerance(self) -> float:
        previous = self.optimizer.get_previous_function_value()
        current = self.optimizer.get_function_value()
        if previous is None:
            return math.inf
        return abs(previous - current)


class ParametersStopCondition(OptimizationStopCondition):
    """Stops when no parameter moves by more than the tolerance."""

    def get_current_tolerance(self) -> float:
        previous = self.optimizer.get_previous_parameters()
        if previous is None:
            return math.inf
        current = self.optimizer.get_parameters()
        if len(current) == 0:
            return 0.0
        return float(np.max(np.abs(current.get_values() - previous.get_values())))


class Optimizer:
    """
    Base class of the optimizers.

    Subclasses implement :meth:`_do_step`, which moves ``self._parameters``
    and returns the new function value.

    Parameters
    ----------
    function
        Objective function to minimize
    """

    def __init__(self, function):
        self.function = function
        self._parameters = ParameterList()
        self._stop_condition: OptimizationStopCondition = FunctionStopCondition(self)
        self._max_evaluations = 1_000_000
        self._n_evaluations = 0
        self._listeners: list[OptimizationListener] = []
        self._current_value: float = math.nan
        self._previous_value: Optional[float] = None
        self._previous_parameters: Optional[ParameterList] = None
        self._initial_value: float = math.nan
        self._initial_parameters = ParameterList()
        self._tolerance_reached = False

    # -- configuration --------------------------------------------------------

    def get_function(self):
        return self.function

    def set_maximum_number_of_evaluations(self, max_evaluations: int) -> None:
        self._max_evaluations = max_evaluations

    def get_maximum_number_of_evaluations(self) -> int:
        return self._max_evaluations

    def get_number_of_evaluations(self) -> int:
        return self._n_evaluations

    def set_stop_condition(self, condition: OptimizationStopCondition) -> None:
        condition.optimizer = self
        self._stop_condition = condition

    def get_stop_condition(self) -> OptimizationStopCondition:
        return self._stop_condition

    def set_tolerance(self, tolerance: float) -> None:
        self._stop_condition.set_tolerance(tolerance)

    def add_optimization_listener(self, listener: OptimizationListener) -> None:
        self._listeners.append(listener)

    # -- state ------------------------------------------------------------------

    def get_parameters(self) -> ParameterList:
        return self._parameters.copy()

    def get_function_value(self) -> float:
        return self._current_value

    def get_previous_function_value(self) -> Optional[float]:
        return self._previous_value

    def get_previous_parameters(self) -> Optional[ParameterList]:
        return self._previous_parameters

    def is_tolerance_reached(self) -> bool:
        return self._tolerance_reached

    def _budget_left(self) -> int:
        return max(0, self._max_evaluations - self._n_evaluations)

    def _evaluate(self, parameters: ParameterList) -> float:
        self._n_evaluations += 1
        return float(self.function.f(parameters))

    def _evaluate_values(self, values: np.ndarray) -> tuple[ParameterList, float]:
        parameters = clamp_to_constraints(self._parameters, values)
        return parameters, self._evaluate(parameters)

    # -- driver ---------------------------------------------------------------------

    def init(self, parameters: ParameterList) -> None:
        """Start from ``parameters`` and evaluate the function there."""
        self._parameters = clamp_to_constraints(parameters, parameters.get_values())
        self._n_evaluations = 0
        self._tolerance_reached = False
        self._previous_value = None
        self._previous_parameters = None
        self._current_value = self._evaluate(self._parameters)
        self._initial_value = self._current_value
        self._initial_parameters = self._parameters.copy()
        self._stop_condition.init()
        self._init_hook()
        event = OptimizationEvent(self)
        for listener in self._listeners:
            listener.optimization_initialization_performed(event)

    def _init_hook(self) -> None:
        pass

    def _do_step(self) -> float:
        raise NotImplementedError

    def step(self) -> float:
        """Perform one step and return the function value."""
        self._previous_value = self._current_value
        self._previous_parameters = self._parameters.copy()
        value = self._do_step()
        if not value <= self._previous_value:
            # Keep the better point
            self._parameters = self._previous_parameters.copy()
            value = self._evaluate(self._parameters)
        self._current_value = value
        self._tolerance_reached = self._stop_condition.is_tolerance_reached()
        event = OptimizationEvent(self)
        for listener in self._listeners:
            listener.optimization_step_performed(event)
        return value

    def optimize(self) -> float:
        """Step until convergence or until the evaluation budget is spent."""
        while not self._tolerance_reached and self._budget_left() > 0:
            self.step()
        return self._finish()

    def _finish(self) -> float:
        if self._current_value > self._initial_value:
            self._parameters = self._initial_parameters.copy()
            self._current_value = self._evaluate(self._parameters)
        else:
            self.function.set_parameters(self._parameters)
            self._current_value = float(self.function.get_value())
        return self._current_value


class BrentOneDimension(Optimizer):
    """
    Brent minimization of a single parameter.

    Bounded parameters use scipy's bounded method over the constraint
    interval; unbounded ones use Brent's method with a bracket around the
    current value, set with :meth:`set_initial_interval`.
    """

    def __init__(self, function):
        super().__init__(function)
        self._interval: Optional[tuple[float, float]] = None

    def set_initial_interval(self, lower: float, upper: float) -> None:
        if not lower < upper:
            raise ValueError(f"Empty interval ({lower}, {upper})")
        self._interval = (lower, upper)

    def _init_hook(self) -> None:
        if len(self._parameters) != 1:
            raise ValueError(
                f"BrentOneDimension optimizes one parameter, got {len(self._parameters)}"
            )

    def _do_step(self) -> float:
        parameter = self._parameters[0]
        x = parameter.value
        lower, upper = parameter_bounds(self._parameters)[0]

        def objective(value: float) -> float:
            parameters, f = self._evaluate_values(np.array([value]))
            # Rises away from a bound the bracket search stepped over
            return f + abs(value - parameters[0].value) * (1.0 + abs(f))

        if lower is not None and upper is not None:
            result = minimize_scalar(
                objective,
                bounds=(lower, upper),
                method="bounded",
                options={"xatol": self._stop_condition.tolerance, "maxiter": max(1, self._budget_left())},
            )
        else:
            a, b = self._interval if self._interval is not None else (x - 0.5, x + 0.5)
            result = minimize_scalar(
                objective,
                bracket=(a, b),
                method="brent",
                options={"xtol": self._stop_condition.tolerance, "maxiter": max(1, self._budget_left())},
            )
        best = float(result.x)
        if result.fun <= self._current_value:
            self._parameters, value = self._evaluate_values(np.array([best]))
            return value
        return self._evaluate(self._parameters)


class GradientMultiDimensions(Optimizer):
    """
    Quasi-Newton minimization (scipy L-BFGS-B) using the function's first
    order derivatives and the parameter constraints as bounds.
    """

    def _do_step(self) -> float:
        names = self._parameters.get_parameter_names()
        scale = max(1.0, abs(self._current_value))

        def value_and_gradient(values: np.ndarray):
            _, value = self._evaluate_values(values)
            gradient = np.array([self.function.get_first_order_derivative(n) for n in names])
            return value, gradient

        result = minimize(
            value_and_gradient,
            self._parameters.get_values(),
            jac=True,
            method="L-BFGS-B",
            bounds=parameter_bounds(self._parameters),
            options={
                "ftol": self._stop_condition.tolerance / scale,
                "gtol": 1e-8,
                "maxfun": max(1, self._budget_left()),
            },
        )
        self._parameters, value = self._evaluate_values(result.x)
        return value


class PseudoNewtonOptimizer(Optimizer):
    """
    Newton steps ignoring cross derivatives.

    Each parameter moves by ``-f'/|f''|``. When the proposed point is worse,
    the whole step is halved, at most ``max_halvings`` times.
    """

    def __init__(self, function, max_halvings: int = 10):
        super().__init__(function)
        self.max_halvings = max_halvings

    def _do_step(self) -> float:
        names = self._parameters.get_parameter_names()
        x = self._parameters.get_values()
        self.function.set_parameters(self._parameters)
        movements = np.zeros(len(names))
        for i, name in enumerate(names):
            d1 = self.function.get_first_order_derivative(name)
            d2 = self.function.get_second_order_derivative(name)
            if d2 != 0 and math.isfinite(d2):
                movements[i] = -d1 / abs(d2)
            else:
                movements[i] = -d1 * 1e-3

        for _ in range(self.max_halvings + 1):
            if self._budget_left() == 0:
                break
            parameters, value = self._evaluate_values(x + movements)
            if value <= self._current_value:
                self._parameters = parameters
                return value
            movements /= 2.0
        logger.debug("No improving Newton step found")
        return self._evaluate(self._parameters)


class SimpleMultiDimensions(Optimizer):
    """One step is a cycle of Brent searches, one parameter at a time."""

    def _do_step(self) -> float:
        value = self._current_value
        for name in self._parameters.get_parameter_names():
            if self._budget_left() == 0:
                break
            brent = BrentOneDimension(_OneParameterView(self, name))
            brent.set_maximum_number_of_evaluations(self._budget_left())
            brent.set_tolerance(self._stop_condition.tolerance)
            brent.init(self._parameters.sub_list([name]))
            value = brent.optimize()
            self._parameters.set_parameters_values(brent.get_parameters())
        return value


class _OneParameterView:
    """Function of one parameter of a multi-dimensional optimizer."""

    def __init__(self, optimizer: Optimizer, name: str):
        self.optimizer = optimizer
        self.name = name

    def f(self, parameters: ParameterList) -> float:
        return self.optimizer._evaluate(parameters)

    def set_parameters(self, parameters: ParameterList) -> None:
        self.optimizer.function.set_parameters(parameters)

    def get_value(self) -> float:
        return self.optimizer.function.get_value()


class DownhillSimplexMethod(Optimizer):
    """Nelder-Mead simplex search (scipy), values clamped to the constraints."""

    def _do_step(self) -> float:
        def objective(values: np.ndarray) -> float:
            return self._evaluate_values(values)[1]

        result = minimize(
            objective,
            self._parameters.get_values(),
            method="Nelder-Mead",
            options={
                "fatol": self._stop_condition.tolerance,
                "xatol": self._stop_condition.tolerance,
                "maxfev": max(1, self._budget_left()),
            },
        )
        self._parameters, value = self._evaluate_values(result.x)
        return value


@dataclass
class OptimizerGroup:
    name: str
    optimizer: Optimizer
    parameter_names: list[str]
    derivatives: int
    iteration_type: str


@dataclass
class MetaOptimizerInfos:
    """Groups of parameters, each handled by its own optimizer."""

    IT_TYPE_STEP = "step"
    IT_TYPE_FULL = "full"

    groups: list[OptimizerGroup] = field(default_factory=list)

    def add_optimizer(
        self,
        name: str,
        optimizer: Optimizer,
        parameter_names: Sequence[str],
        derivatives: int = 0,
        iteration_type: str = IT_TYPE_STEP,
    ) -> None:
        """
        Register a group.

        Parameters
        ----------
        name : str
            Label used in log messages
        optimizer : Optimizer
            Optimizer working on the same function as the meta optimizer
        parameter_names : sequence of str
            Parameters handled by this group
        derivatives : int
            Highest derivative order the optimizer uses
        iteration_type : str
            ``IT_TYPE_STEP`` performs one step per cycle, ``IT_TYPE_FULL`` a
            complete optimization
        """
        if iteration_type not in (self.IT_TYPE_STEP, self.IT_TYPE_FULL):
            raise ValueError(f"Unknown iteration type: {iteration_type}")
        self.groups.append(
            OptimizerGroup(name, optimizer, list(parameter_names), derivatives, iteration_type)
        )

    def get_number_of_optimizers(self) -> int:
        return len(self.groups)


class MetaOptimizer(Optimizer):
    """
    Cycles through parameter groups, each with its own optimizer.

    One step is a cycle over all groups. The run stops when the function
    value changes by less than the tolerance over a cycle, after ``n_step``
    cycles (0 for no limit) or when the evaluation budget is spent.
    """

    def __init__(self, function, infos: MetaOptimizerInfos, n_step: int = 0):
        super().__init__(function)
        self.infos = infos
        self.n_step = n_step
        self._cycles = 0

    def _init_hook(self) -> None:
        self._cycles = 0

    def _do_step(self) -> float:
        value = self._current_value
        for group in self.infos.groups:
            names = [n for n in group.parameter_names if n in self._parameters]
            if not names or self._budget_left() == 0:
                continue
            optimizer = group.optimizer
            optimizer.set_maximum_number_of_evaluations(self._budget_left())
            optimizer.init(self._parameters.sub_list(names))
            if group.iteration_type == MetaOptimizerInfos.IT_TYPE_STEP:
                optimizer.step()
                optimizer._finish()
            else:
                optimizer.optimize()
            self._n_evaluations += optimizer.get_number_of_evaluations()
            self._parameters.set_parameters_values(optimizer.get_parameters())
            value = optimizer.get_function_value()
            logger.debug("%s: f = %.6f", group.name, value)
        self._cycles += 1
        logger.info("Meta optimization cycle %d: f = %.6f", self._cycles, value)
        return value

    def step(self) -> float:
        value = super().step()
        if self.n_step > 0 and self._cycles >= self.n_step:
            self._tolerance_reached = True
        return value
