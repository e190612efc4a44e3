"""
Core algorithms for phylogenetic likelihood calculation.

This module provides the building blocks used by the likelihood function:

- **Parameters**: named, constrained values and change notification
- **Matrix operations**: eigendecomposition and transition matrices
- **Likelihood calculation**: Felsenstein's pruning over site patterns

:class:`~phylolik.core.phylo_likelihood.PhyloLikelihood` lives in
:mod:`phylolik.core.phylo_likelihood` and is exported by the top level
package.
"""

from phylolik.core.likelihood import TreeLikelihoodCalculation
from phylolik.core.matrix import eigen_decompose_rev, matrix_exponential
from phylolik.core.parameters import (
    IntervalConstraint,
    Parameter,
    ParameterList,
    Parametrizable,
)
from phylolik.core.sites import SitePatterns

__all__ = [
    "IntervalConstraint",
    "Parameter",
    "ParameterList",
    "Parametrizable",
    "SitePatterns",
    "TreeLikelihoodCalculation",
    "eigen_decompose_rev",
    "matrix_exponential",
]
