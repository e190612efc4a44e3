"""
High level optimization of phylogenetic likelihoods.

These functions assemble wrappers and optimizers for the common tasks:
scaling the tree, estimating every numerical parameter, and searching
topologies by NNI.
"""

import logging
import warnings
from typing import Iterable, Optional

from ..core.parameters import ParameterList
from ..exceptions import UnknownOptimizationMethodError
from .functions import (
    NaNWatcher,
    ReparametrizationFunctionWrapper,
    ScaleFunction,
    ThreePointsNumericalDerivative,
    TwoPointsNumericalDerivative,
)
from .optimizers import (
    BrentOneDimension,
    DownhillSimplexMethod,
    FunctionStopCondition,
    GradientMultiDimensions,
    MetaOptimizer,
    MetaOptimizerInfos,
    OptimizationListener,
    Optimizer,
    PseudoNewtonOptimizer,
    SimpleMultiDimensions,
)
from .topology import NNI_FAST, NNITopologyListener, NNITopologyListener2, NNITopologySearch

logger = logging.getLogger(__name__)

OPTIMIZATION_GRADIENT = "gradient"
OPTIMIZATION_NEWTON = "newton"
OPTIMIZATION_METHODS = (OPTIMIZATION_GRADIENT, OPTIMIZATION_NEWTON)

# Groups holding at least this many parameters use the simplex method
SIMPLEX_THRESHOLD = 10

PARAMETER_GROUPS = ("BrLen", "Model", "Rates", "RootFreq")


def _check_method(method: str) -> None:
    if method not in OPTIMIZATION_METHODS:
        raise UnknownOptimizationMethodError(method, OPTIMIZATION_METHODS)


def _derivative_optimizer(function, method: str) -> Optimizer:
    if method == OPTIMIZATION_GRADIENT:
        return GradientMultiDimensions(function)
    return PseudoNewtonOptimizer(function)


def _configure(optimizer: Optimizer, tolerance: float, max_evaluations: int,
               listener: Optional[OptimizationListener] = None) -> None:
    optimizer.set_stop_condition(FunctionStopCondition(optimizer, tolerance))
    optimizer.set_maximum_number_of_evaluations(max_evaluations)
    if listener is not None:
        optimizer.add_optimization_listener(listener)


def _wrap(likelihood, parameters: ParameterList, reparametrization: bool, nan_log_path: str):
    function = NaNWatcher(likelihood, likelihood, nan_log_path)
    if reparametrization:
        function = ReparametrizationFunctionWrapper(function, parameters)
        parameters = function.get_parameters()
    return function, parameters


def optimize_tree_scale(
    likelihood,
    tolerance: float = 1e-6,
    max_evaluations: int = 1_000_000,
    initial_interval: tuple[float, float] = (-0.5, 0.5),
) -> int:
    """
    Multiply every branch length by the factor maximizing the likelihood.

    Returns
    -------
    int
        Number of function evaluations
    """
    function = ScaleFunction(likelihood)
    brent = BrentOneDimension(function)
    brent.set_initial_interval(*initial_interval)
    _configure(brent, tolerance, max_evaluations)
    brent.init(function.get_parameters())
    value = brent.optimize()
    logger.info("Tree scaled by %.6f, -lnL = %.6f", function.get_scale(), value)
    return brent.get_number_of_evaluations()


def optimize_numerical_parameters(
    likelihood,
    parameters: Optional[ParameterList] = None,
    listener: Optional[OptimizationListener] = None,
    n_step: int = 0,
    tolerance: float = 1e-6,
    max_evaluations: int = 1_000_000,
    reparametrization: bool = False,
    method: str = OPTIMIZATION_NEWTON,
    nan_log_path: str = "DEBUG.LOG",
) -> int:
    """
    Optimize branch lengths and model parameters in turn.

    Branch lengths are optimized with their analytical derivatives
    (quasi-Newton for ``"gradient"``, diagonal Newton for ``"newton"``);
    substitution model and rate distribution parameters with Brent searches,
    or the simplex method for large groups.

    Parameters
    ----------
    likelihood : PhyloLikelihood
        Likelihood to maximize
    parameters : ParameterList, optional
        Parameters to optimize, all of the likelihood's by default
    listener : OptimizationListener, optional
        Notified after each cycle
    n_step : int
        Maximal number of cycles over the groups, 0 for no limit
    tolerance : float
        Stop when -lnL changes by less than this over a cycle
    max_evaluations : int
        Function evaluation budget
    reparametrization : bool
        Optimize on an unconstrained scale
    method : str
        ``"newton"`` or ``"gradient"``
    nan_log_path : str
        Diagnostic file written if the likelihood becomes NaN

    Returns
    -------
    int
        Number of function evaluations
    """
    _check_method(method)
    if parameters is None:
        parameters = likelihood.get_parameters()
    function, parameters = _wrap(likelihood, parameters, reparametrization, nan_log_path)
    names = set(parameters.get_parameter_names())

    branch_names = [n for n in likelihood.get_branch_lengths_parameters().get_parameter_names() if n in names]
    model_names = [
        n for n in likelihood.get_substitution_model_parameters().get_parameter_names()
        + likelihood.get_root_frequencies_parameters().get_parameter_names()
        if n in names
    ]
    rate_names = [n for n in likelihood.get_rate_distribution_parameters().get_parameter_names() if n in names]

    infos = MetaOptimizerInfos()
    if branch_names:
        optimizer = _derivative_optimizer(function, method)
        _configure(optimizer, tolerance, max_evaluations)
        infos.add_optimizer(
            "Branch length parameters", optimizer, branch_names, 2, MetaOptimizerInfos.IT_TYPE_FULL
        )
    for label, group in (("Substitution model parameter", model_names),
                         ("Rate distribution parameter", rate_names)):
        if not group:
            continue
        if len(group) >= SIMPLEX_THRESHOLD:
            optimizer = DownhillSimplexMethod(function)
        else:
            optimizer = SimpleMultiDimensions(function)
        _configure(optimizer, tolerance, max_evaluations)
        infos.add_optimizer(label, optimizer, group, 0, MetaOptimizerInfos.IT_TYPE_STEP)

    optimizer = MetaOptimizer(function, infos, n_step)
    _configure(optimizer, tolerance, max_evaluations, listener)
    optimizer.init(parameters)
    value = optimizer.optimize()
    logger.info(
        "Numerical optimization: -lnL = %.6f after %d evaluations",
        value, optimizer.get_number_of_evaluations(),
    )
    return optimizer.get_number_of_evaluations()


def optimize_numerical_parameters2(
    likelihood,
    parameters: Optional[ParameterList] = None,
    listener: Optional[OptimizationListener] = None,
    tolerance: float = 1e-6,
    max_evaluations: int = 1_000_000,
    reparametrization: bool = False,
    method: str = OPTIMIZATION_NEWTON,
    nan_log_path: str = "DEBUG.LOG",
) -> int:
    """
    Optimize all parameters jointly with one derivative-based optimizer.

    Branch lengths use analytical derivatives, the other parameters
    finite differences (two points with h = 1e-7 for ``"gradient"``, three
    points with h = 1e-4 for ``"newton"``).

    Returns
    -------
    int
        Number of function evaluations
    """
    _check_method(method)
    if parameters is None:
        parameters = likelihood.get_parameters()
    function, parameters = _wrap(likelihood, parameters, reparametrization, nan_log_path)
    branch_names = set(likelihood.get_branch_lengths_parameters().get_parameter_names())

    if method == OPTIMIZATION_GRADIENT:
        function = TwoPointsNumericalDerivative(function, h=1e-7)
    else:
        function = ThreePointsNumericalDerivative(function, h=1e-4)
    function.set_parameters_to_derivate(
        [n for n in parameters.get_parameter_names() if n not in branch_names]
    )

    optimizer = _derivative_optimizer(function, method)
    _configure(optimizer, tolerance, max_evaluations, listener)
    optimizer.init(parameters)
    value = optimizer.optimize()
    logger.info(
        "Numerical optimization: -lnL = %.6f after %d evaluations",
        value, optimizer.get_number_of_evaluations(),
    )
    return optimizer.get_number_of_evaluations()


def optimize_branch_lengths_parameters(
    likelihood,
    parameters: Optional[ParameterList] = None,
    listener: Optional[OptimizationListener] = None,
    tolerance: float = 1e-6,
    max_evaluations: int = 1_000_000,
    method: str = OPTIMIZATION_NEWTON,
    nan_log_path: str = "DEBUG.LOG",
) -> int:
    """
    Optimize branch lengths only, with analytical derivatives.

    Names in ``parameters`` that are not branch lengths are ignored.

    Returns
    -------
    int
        Number of function evaluations
    """
    _check_method(method)
    branches = likelihood.get_branch_lengths_parameters()
    if parameters is not None:
        branches = branches.get_common_parameters_with(parameters)
    if len(branches) == 0:
        return 0
    function = NaNWatcher(likelihood, likelihood, nan_log_path)
    optimizer = _derivative_optimizer(function, method)
    _configure(optimizer, tolerance, max_evaluations, listener)
    optimizer.init(branches)
    optimizer.optimize()
    return optimizer.get_number_of_evaluations()


def optimize_tree_nni(
    likelihood,
    parameters: Optional[ParameterList] = None,
    optimize_num_first: bool = True,
    tol_before: float = 100.0,
    tol_during: float = 100.0,
    max_evaluations: int = 1_000_000,
    n_step: int = 1,
    method: str = OPTIMIZATION_NEWTON,
    nni_method: str = NNI_FAST,
    reparametrization: bool = False,
    nan_log_path: str = "DEBUG.LOG",
    listener_class=NNITopologyListener,
):
    """
    Search the topology by NNI, re-optimizing numerical parameters every
    ``n_step`` accepted moves.

    Parameters
    ----------
    likelihood : PhyloLikelihood
        Likelihood whose tree is rearranged in place
    parameters : ParameterList, optional
        Parameters re-optimized along the search
    optimize_num_first : bool
        Run a rough numerical optimization (tolerance ``tol_before``) first
    tol_before, tol_during : float
        Tolerances of the optimization before and during the search
    n_step : int
        Accepted moves between two numerical optimizations
    nni_method : str
        ``"fast"`` or ``"better"``

    Returns
    -------
    PhyloLikelihood
        The likelihood, on its final tree
    """
    _check_method(method)
    if parameters is None:
        parameters = likelihood.get_parameters()
    if optimize_num_first:
        reoptimize = (
            optimize_numerical_parameters2
            if listener_class is NNITopologyListener2
            else optimize_numerical_parameters
        )
        reoptimize(
            likelihood,
            parameters,
            tolerance=tol_before,
            max_evaluations=max_evaluations,
            reparametrization=reparametrization,
            method=method,
            nan_log_path=nan_log_path,
        )
    search = NNITopologySearch(likelihood, nni_method)
    search.add_topology_listener(
        listener_class(
            search,
            parameters,
            tolerance=tol_during,
            max_evaluations=max_evaluations,
            n_step=n_step,
            method=method,
            reparametrization=reparametrization,
            nan_log_path=nan_log_path,
        )
    )
    n_moves = search.search()
    logger.info("NNI search: %d moves, -lnL = %.6f", n_moves, likelihood.get_value())
    return likelihood


def optimize_tree_nni2(likelihood, parameters: Optional[ParameterList] = None, **kwargs):
    """:func:`optimize_tree_nni` re-optimizing with :func:`optimize_numerical_parameters2`."""
    return optimize_tree_nni(likelihood, parameters, listener_class=NNITopologyListener2, **kwargs)


def resolve_parameters_to_optimize(likelihood, ignore: Iterable[str] = ()) -> ParameterList:
    """
    Parameters of ``likelihood`` minus the ignored ones.

    Besides parameter names, ``ignore`` understands the groups ``BrLen``
    (every branch length), ``Model`` (substitution model), ``Rates`` (rate
    distribution) and ``RootFreq`` (root frequencies). Unknown names are
    warned about and skipped.
    """
    parameters = likelihood.get_parameters()
    groups = {
        "BrLen": likelihood.get_branch_lengths_parameters,
        "Model": likelihood.get_substitution_model_parameters,
        "Rates": likelihood.get_rate_distribution_parameters,
        "RootFreq": likelihood.get_root_frequencies_parameters,
    }
    removed = set()
    for name in ignore:
        name = name.strip()
        if not name:
            continue
        if name in groups:
            removed.update(groups[name]().get_parameter_names())
        elif name in parameters:
            removed.add(name)
        else:
            warnings.warn(f"Parameter '{name}' not found, it cannot be ignored", UserWarning)
    if removed:
        parameters.delete_parameters(removed)
    return parameters


def optimize_parameters(likelihood, options):
    """
    Optimize ``likelihood`` as described by an
    :class:`~phylolik.config.OptimizationOptions`.

    Returns
    -------
    PhyloLikelihood
        The optimized likelihood
    """
    if not options.optimize:
        return likelihood
    _check_method(options.method)
    parameters = resolve_parameters_to_optimize(likelihood, options.ignore_parameters)

    if options.scale_first:
        optimize_tree_scale(likelihood, options.tolerance, options.max_evaluations)
        parameters.match_parameters_values(likelihood.get_parameters())

    if options.topology:
        return optimize_tree_nni(
            likelihood,
            parameters,
            optimize_num_first=options.topology_num_first,
            tol_before=options.topology_tolerance_before,
            tol_during=options.topology_tolerance_during,
            max_evaluations=options.max_evaluations,
            n_step=options.topology_n_step,
            method=options.method,
            nni_method=options.nni_method,
            reparametrization=options.reparametrization,
            nan_log_path=options.nan_log_path,
        )
    optimize_numerical_parameters(
        likelihood,
        parameters,
        n_step=options.n_step,
        tolerance=options.tolerance,
        max_evaluations=options.max_evaluations,
        reparametrization=options.reparametrization,
        method=options.method,
        nan_log_path=options.nan_log_path,
    )
    return likelihood
