"""
Maximum likelihood estimation of parameters and topologies.

- **Function wrappers**: NaN detection, numerical derivatives,
  reparametrization, tree scaling
- **Optimizers**: Brent, quasi-Newton, pseudo-Newton, simplex and the
  meta optimizer combining them, built on scipy.optimize
- **Topology search**: nearest neighbor interchanges
- **Tools**: ready-made optimization procedures
"""

from phylolik.optimize.functions import (
    FivePointsNumericalDerivative,
    FunctionWrapper,
    NaNWatcher,
    ReparametrizationFunctionWrapper,
    ScaleFunction,
    ThreePointsNumericalDerivative,
    TwoPointsNumericalDerivative,
)
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
from phylolik.optimize.tools import (
    OPTIMIZATION_GRADIENT,
    OPTIMIZATION_NEWTON,
    optimize_branch_lengths_parameters,
    optimize_numerical_parameters,
    optimize_numerical_parameters2,
    optimize_parameters,
    optimize_tree_nni,
    optimize_tree_nni2,
    optimize_tree_scale,
    resolve_parameters_to_optimize,
)
from phylolik.optimize.topology import (
    NNITopologyListener,
    NNITopologyListener2,
    NNITopologySearch,
    TopologyListener,
)

__all__ = [
    "FunctionWrapper",
    "NaNWatcher",
    "TwoPointsNumericalDerivative",
    "ThreePointsNumericalDerivative",
    "FivePointsNumericalDerivative",
    "ReparametrizationFunctionWrapper",
    "ScaleFunction",
    "OptimizationListener",
    "FunctionStopCondition",
    "ParametersStopCondition",
    "BrentOneDimension",
    "GradientMultiDimensions",
    "PseudoNewtonOptimizer",
    "SimpleMultiDimensions",
    "DownhillSimplexMethod",
    "MetaOptimizer",
    "MetaOptimizerInfos",
    "NNITopologySearch",
    "NNITopologyListener",
    "NNITopologyListener2",
    "TopologyListener",
    "OPTIMIZATION_GRADIENT",
    "OPTIMIZATION_NEWTON",
    "optimize_tree_scale",
    "optimize_numerical_parameters",
    "optimize_numerical_parameters2",
    "optimize_branch_lengths_parameters",
    "optimize_tree_nni",
    "optimize_tree_nni2",
    "optimize_parameters",
    "resolve_parameters_to_optimize",
]
