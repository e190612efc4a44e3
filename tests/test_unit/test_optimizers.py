"""
Unit tests for the optimizers on small analytical functions.
"""

import pytest

from phylolik.core.parameters import POSITIVE, IntervalConstraint, Parameter, ParameterList, Parametrizable
from phylolik.optimize.optimizers import (
    BrentOneDimension,
    DownhillSimplexMethod,
    FunctionStopCondition,
    GradientMultiDimensions,
    MetaOptimizer,
    MetaOptimizerInfos,
    OptimizationListener,
    ParametersStopCondition,
    PseudoNewtonOptimizer,
    SimpleMultiDimensions,
)

# Minimum of Quadratic
X_MIN = 20.0 / 7.0
Y_MIN = 2.0 / 7.0
F_MIN = 91.0 / 49.0


class Quadratic(Parametrizable):
    """f(x, y) = (x - 3)^2 + 2 (y - 1)^2 + x y, with y > 0."""

    def __init__(self, x=1.0, y=2.0):
        super().__init__()
        self._add_parameter(Parameter("x", x))
        self._add_parameter(Parameter("y", y, POSITIVE))

    def get_value(self):
        x = self.get_parameter_value("x")
        y = self.get_parameter_value("y")
        return (x - 3) ** 2 + 2 * (y - 1) ** 2 + x * y

    def f(self, parameters):
        self.set_parameters(parameters)
        return self.get_value()

    def get_first_order_derivative(self, name):
        x = self.get_parameter_value("x")
        y = self.get_parameter_value("y")
        return 2 * (x - 3) + y if name == "x" else 4 * (y - 1) + x

    def get_second_order_derivative(self, name):
        return 2.0 if name == "x" else 4.0


class Parabola(Parametrizable):

    def __init__(self, x=0.0, constraint=None):
        super().__init__()
        self._add_parameter(Parameter("x", x, constraint))

    def get_value(self):
        return (self.get_parameter_value("x") - 2.0) ** 2 + 1.0

    def f(self, parameters):
        self.set_parameters(parameters)
        return self.get_value()


class Counter(OptimizationListener):

    def __init__(self):
        self.initializations = 0
        self.steps = 0

    def optimization_initialization_performed(self, event):
        self.initializations += 1

    def optimization_step_performed(self, event):
        self.steps += 1


def run(optimizer, function):
    optimizer.init(function.get_parameters())
    return optimizer.optimize()


class TestBrent:

    def test_unbounded(self):
        function = Parabola()
        value = run(BrentOneDimension(function), function)

        assert function.get_parameter_value("x") == pytest.approx(2.0, abs=1e-4)
        assert value == pytest.approx(1.0, abs=1e-8)

    def test_initial_interval(self):
        function = Parabola(x=10.0)
        optimizer = BrentOneDimension(function)
        optimizer.set_initial_interval(8.0, 9.0)
        run(optimizer, function)

        assert function.get_parameter_value("x") == pytest.approx(2.0, abs=1e-4)

    def test_bounded_minimum_at_bound(self):
        function = Parabola(x=0.5, constraint=IntervalConstraint(0.0, 1.0))
        value = run(BrentOneDimension(function), function)

        assert function.get_parameter_value("x") == pytest.approx(1.0, abs=1e-4)
        assert value == pytest.approx(2.0, abs=1e-3)

    def test_single_parameter_only(self):
        function = Quadratic()

        with pytest.raises(ValueError):
            BrentOneDimension(function).init(function.get_parameters())

    def test_empty_interval(self):
        with pytest.raises(ValueError):
            BrentOneDimension(Parabola()).set_initial_interval(1.0, 1.0)


class TestMultiDimensions:

    @pytest.mark.parametrize(
        "cls",
        [GradientMultiDimensions, PseudoNewtonOptimizer, SimpleMultiDimensions, DownhillSimplexMethod],
    )
    def test_reaches_minimum(self, cls):
        function = Quadratic()
        optimizer = cls(function)
        optimizer.set_tolerance(1e-10)
        value = run(optimizer, function)

        assert value == pytest.approx(F_MIN, abs=1e-5)
        assert function.get_parameter_value("x") == pytest.approx(X_MIN, abs=1e-2)
        assert function.get_parameter_value("y") == pytest.approx(Y_MIN, abs=1e-2)
        assert optimizer.is_tolerance_reached()

    @pytest.mark.parametrize(
        "cls",
        [GradientMultiDimensions, PseudoNewtonOptimizer, SimpleMultiDimensions, DownhillSimplexMethod],
    )
    def test_never_worse_than_start(self, cls):
        function = Quadratic(x=X_MIN, y=Y_MIN)
        start = function.get_value()
        value = run(cls(function), function)

        assert value <= start
        assert function.get_value() == value

    def test_newton_first_step(self):
        """Diagonal Newton step from (1, 2) lands on (2, 0.75)."""
        function = Quadratic()
        optimizer = PseudoNewtonOptimizer(function)
        optimizer.init(function.get_parameters())
        value = optimizer.step()

        assert optimizer.get_parameters().get_parameter_value("x") == pytest.approx(2.0)
        assert optimizer.get_parameters().get_parameter_value("y") == pytest.approx(0.75)
        assert value == pytest.approx(2.625)

    def test_evaluation_budget(self):
        function = Quadratic()
        optimizer = PseudoNewtonOptimizer(function)
        optimizer.set_maximum_number_of_evaluations(3)
        run(optimizer, function)

        assert optimizer.get_number_of_evaluations() == 3
        assert not optimizer.is_tolerance_reached()

    def test_listeners(self):
        function = Quadratic()
        optimizer = GradientMultiDimensions(function)
        counter = Counter()
        optimizer.add_optimization_listener(counter)
        run(optimizer, function)

        assert counter.initializations == 1
        assert counter.steps >= 1

    def test_parameters_stop_condition(self):
        function = Quadratic()
        optimizer = PseudoNewtonOptimizer(function)
        optimizer.set_stop_condition(ParametersStopCondition(optimizer, tolerance=1e-8))
        run(optimizer, function)

        assert optimizer.is_tolerance_reached()
        assert function.get_parameter_value("x") == pytest.approx(X_MIN, abs=1e-6)


class TestStopConditions:

    def test_burnin(self):
        function = Quadratic()
        optimizer = PseudoNewtonOptimizer(function)
        condition = FunctionStopCondition(optimizer, tolerance=1e9, burnin=2)
        optimizer.set_stop_condition(condition)
        optimizer.init(function.get_parameters())

        optimizer.step()
        assert not optimizer.is_tolerance_reached()
        optimizer.step()
        assert not optimizer.is_tolerance_reached()
        optimizer.step()
        assert optimizer.is_tolerance_reached()

    def test_tolerance_accessors(self):
        optimizer = PseudoNewtonOptimizer(Quadratic())
        optimizer.set_tolerance(0.5)

        assert optimizer.get_stop_condition().get_tolerance() == 0.5


class TestMetaOptimizer:

    def make(self, function, n_step=0, iteration_type=MetaOptimizerInfos.IT_TYPE_FULL):
        infos = MetaOptimizerInfos()
        infos.add_optimizer("x", BrentOneDimension(function), ["x"], 0, iteration_type)
        infos.add_optimizer("y", BrentOneDimension(function), ["y"], 0, iteration_type)
        return MetaOptimizer(function, infos, n_step)

    def test_one_cycle(self):
        """x is optimized with y = 2, then y with x = 2."""
        function = Quadratic()
        optimizer = self.make(function, n_step=1)
        value = run(optimizer, function)

        assert value == pytest.approx(2.5, abs=1e-6)
        assert function.get_parameter_value("x") == pytest.approx(2.0, abs=1e-4)
        assert function.get_parameter_value("y") == pytest.approx(0.5, abs=1e-4)
        assert optimizer.is_tolerance_reached()

    def test_converges(self):
        function = Quadratic()
        optimizer = self.make(function)
        optimizer.set_tolerance(1e-10)
        value = run(optimizer, function)

        assert value == pytest.approx(F_MIN, abs=1e-6)

    def test_step_iterations(self):
        function = Quadratic()
        infos = MetaOptimizerInfos()
        infos.add_optimizer("gradient", GradientMultiDimensions(function), ["x", "y"], 1)
        optimizer = MetaOptimizer(function, infos)
        value = run(optimizer, function)

        assert infos.get_number_of_optimizers() == 1
        assert value == pytest.approx(F_MIN, abs=1e-5)

    def test_unknown_parameters_skipped(self):
        function = Quadratic()
        infos = MetaOptimizerInfos()
        infos.add_optimizer("x", BrentOneDimension(function), ["x"])
        infos.add_optimizer("z", BrentOneDimension(function), ["z"])
        optimizer = MetaOptimizer(function, infos, n_step=1)
        optimizer.init(function.get_parameters().sub_list(["x"]))
        optimizer.optimize()

        assert function.get_parameter_value("x") == pytest.approx(2.0, abs=1e-4)
        assert function.get_parameter_value("y") == 2.0

    def test_unknown_iteration_type(self):
        with pytest.raises(ValueError):
            MetaOptimizerInfos().add_optimizer("x", BrentOneDimension(Parabola()), ["x"], 0, "sometimes")
