"""
Distance-based tree reconstruction.

Pairwise distances are maximum likelihood estimates under a substitution
model and a rate distribution. Trees are built from them by neighbor joining
or UPGMA, optionally alternating with maximum likelihood estimation of the
model parameters on the reconstructed tree.
"""

import copy
import logging
import math
from dataclasses import dataclass
from typing import Iterable, Optional

import numpy as np

from .core.parameters import IntervalConstraint, Parameter, ParameterList, Parametrizable
from .core.phylo_likelihood import MIN_BRANCH_LENGTH, PhyloLikelihood
from .exceptions import AlphabetMismatchError, ConfigurationError
from .io.sequences import Alignment
from .io.trees import Tree, TreeNode, robinson_foulds_distance
from .models.base import SubstitutionModel
from .models.mixed import MixedSubstitutionModel
from .models.rate_distribution import ConstantDistribution, DiscreteDistribution
from .optimize.optimizers import FunctionStopCondition, SimpleMultiDimensions
from .optimize.tools import (
    OPTIMIZATION_NEWTON,
    optimize_numerical_parameters,
    resolve_parameters_to_optimize,
)

logger = logging.getLogger(__name__)

DISTANCEMETHOD_INIT = "init"
DISTANCEMETHOD_PAIRWISE = "pairwise"
DISTANCEMETHOD_ITERATIONS = "iterations"
DISTANCE_METHODS = (DISTANCEMETHOD_INIT, DISTANCEMETHOD_PAIRWISE, DISTANCEMETHOD_ITERATIONS)

MAX_DISTANCE = 10.0
DISTANCE_PARAMETER = "BrLen"
DISTANCE_CONSTRAINT = IntervalConstraint(MIN_BRANCH_LENGTH, MAX_DISTANCE)


@dataclass
class DistanceMatrix:
    """
    Symmetric matrix of pairwise distances.

    Attributes
    ----------
    names : list[str]
        Sequence names, in row order
    values : ndarray, shape (n, n)
        Distances, zero on the diagonal
    """

    names: list[str]
    values: np.ndarray

    def __post_init__(self):
        self.names = list(self.names)
        self.values = np.asarray(self.values, dtype=float)
        n = len(self.names)
        if self.values.shape != (n, n):
            raise ValueError(f"Distance matrix shape {self.values.shape} does not match {n} names")
        if not np.allclose(self.values, self.values.T):
            raise ValueError("Distance matrix is not symmetric")

    @property
    def size(self) -> int:
        return len(self.names)

    def index_of(self, name: str) -> int:
        return self.names.index(name)

    def get(self, name1: str, name2: str) -> float:
        return float(self.values[self.index_of(name1), self.index_of(name2)])


def p_distance_estimate(counts: np.ndarray) -> float:
    """
    Jukes-Cantor corrected distance from a matrix of paired state counts,
    used as a starting value.
    """
    n_states = counts.shape[0]
    total = counts.sum()
    if total == 0:
        return 0.1
    p = 1.0 - np.trace(counts) / total
    b = (n_states - 1.0) / n_states
    if p >= 0.95 * b:
        return MAX_DISTANCE / 2.0
    return min(MAX_DISTANCE, max(MIN_BRANCH_LENGTH, -b * math.log(1.0 - p / b)))


class PairwiseLikelihood(Parametrizable):
    """
    -lnL of two sequences separated by a distance, as a function of the
    distance (``BrLen``) and optional additional model or rate parameters.

    Sites where either sequence is unknown carry no information on the
    distance and are left out.
    """

    def __init__(
        self,
        model: SubstitutionModel,
        rate_distribution: DiscreteDistribution,
        counts: np.ndarray,
        additional: Optional[ParameterList] = None,
    ):
        super().__init__()
        self.model = model
        self.rate_distribution = rate_distribution
        self.counts = counts
        self._add_parameter(
            Parameter(DISTANCE_PARAMETER, p_distance_estimate(counts), DISTANCE_CONSTRAINT)
        )
        if additional is not None:
            self._add_parameters(additional)

    def fire_parameter_changed(self, parameters: ParameterList) -> None:
        model_part = ParameterList(p for p in parameters if self.model.has_parameter(p.name))
        rate_part = ParameterList(
            p for p in parameters if self.rate_distribution.has_parameter(p.name)
        )
        if len(model_part) > 0:
            self.model.match_parameters_values(model_part)
        if len(rate_part) > 0:
            self.rate_distribution.match_parameters_values(rate_part)

    def get_value(self) -> float:
        d = self.get_parameter_value(DISTANCE_PARAMETER)
        if isinstance(self.model, MixedSubstitutionModel):
            components = [
                (self.model.get_n_model(k), self.model.get_n_probability(k))
                for k in range(self.model.get_number_of_models())
            ]
        else:
            components = [(self.model, 1.0)]
        joint = np.zeros_like(self.counts, dtype=float)
        for model, weight in components:
            freqs = model.get_frequencies()[:, np.newaxis]
            for rate, probability in zip(
                self.rate_distribution.get_categories(), self.rate_distribution.get_probabilities()
            ):
                joint += weight * probability * freqs * model.get_Pij_t(d * rate)
        observed = self.counts > 0
        with np.errstate(divide="ignore"):
            return -float(np.sum(self.counts[observed] * np.log(joint[observed])))

    def f(self, parameters: ParameterList) -> float:
        self.set_parameters(parameters)
        return self.get_value()


class DistanceEstimation:
    """
    Maximum likelihood pairwise distances.

    Parameters
    ----------
    model : SubstitutionModel
        Substitution model, shared with the caller
    rate_distribution : DiscreteDistribution, optional
        Rate distribution, constant by default
    alignment : Alignment, optional
        Sequences, can be set later with :meth:`set_data`
    tolerance : float
        Tolerance of each pairwise optimization
    max_evaluations : int
        Evaluation budget of each pairwise optimization
    """

    def __init__(
        self,
        model: SubstitutionModel,
        rate_distribution: Optional[DiscreteDistribution] = None,
        alignment: Optional[Alignment] = None,
        tolerance: float = 1e-6,
        max_evaluations: int = 1000,
    ):
        self.model = model
        self.rate_distribution = rate_distribution or ConstantDistribution()
        self.tolerance = tolerance
        self.max_evaluations = max_evaluations
        self._additional = ParameterList()
        self._matrix: Optional[DistanceMatrix] = None
        self.alignment: Optional[Alignment] = None
        if alignment is not None:
            self.set_data(alignment)

    def set_data(self, alignment: Alignment) -> None:
        if alignment.alphabet != self.model.get_alphabet():
            raise AlphabetMismatchError(
                f"Alignment alphabet {alignment.alphabet.name} does not match "
                f"model alphabet {self.model.get_alphabet().name}"
            )
        self.alignment = alignment
        self._matrix = None

    def get_data(self) -> Optional[Alignment]:
        return self.alignment

    def get_model(self) -> SubstitutionModel:
        return self.model

    def get_rate_distribution(self) -> DiscreteDistribution:
        return self.rate_distribution

    def set_additional_parameters(self, parameters: ParameterList) -> None:
        """Parameters re-estimated for each pair along with the distance."""
        for parameter in parameters:
            if not (
                self.model.has_parameter(parameter.name)
                or self.rate_distribution.has_parameter(parameter.name)
            ):
                raise ConfigurationError(
                    f"'{parameter.name}' is neither a model nor a rate distribution parameter",
                    parameter.name,
                )
        self._additional = parameters.copy()

    def reset_additional_parameters(self) -> None:
        self._additional = ParameterList()

    def get_additional_parameters(self) -> ParameterList:
        return self._additional.copy()

    def _pair_counts(self, i: int, j: int) -> np.ndarray:
        a = self.alignment.sequences[i]
        b = self.alignment.sequences[j]
        known = (a >= 0) & (b >= 0)
        counts = np.zeros((self.alignment.alphabet.size,) * 2)
        np.add.at(counts, (a[known], b[known]), 1.0)
        return counts

    def _estimate(self, counts: np.ndarray) -> float:
        if len(self._additional) > 0:
            model = copy.deepcopy(self.model)
            rate_distribution = copy.deepcopy(self.rate_distribution)
            additional = self._additional
        else:
            model, rate_distribution, additional = self.model, self.rate_distribution, None
        function = PairwiseLikelihood(model, rate_distribution, counts, additional)
        optimizer = SimpleMultiDimensions(function)
        optimizer.set_stop_condition(FunctionStopCondition(optimizer, self.tolerance))
        optimizer.set_maximum_number_of_evaluations(self.max_evaluations)
        optimizer.init(function.get_parameters())
        optimizer.optimize()
        return function.get_parameter_value(DISTANCE_PARAMETER)

    def compute_matrix(self) -> DistanceMatrix:
        if self.alignment is None:
            raise ValueError("No data: call set_data first")
        n = self.alignment.n_species
        values = np.zeros((n, n))
        for i in range(n):
            for j in range(i + 1, n):
                values[i, j] = values[j, i] = self._estimate(self._pair_counts(i, j))
        self._matrix = DistanceMatrix(self.alignment.names, values)
        return self._matrix

    def get_matrix(self) -> DistanceMatrix:
        if self._matrix is None:
            raise ValueError("Distance matrix not computed yet")
        return self._matrix


class AgglomerativeDistanceMethod:
    """Base class of clustering methods building a tree from a distance matrix."""

    def __init__(self, matrix: Optional[DistanceMatrix] = None, positive_lengths: bool = True):
        self.matrix = matrix
        self.positive_lengths = positive_lengths
        self._tree: Optional[Tree] = None

    def set_distance_matrix(self, matrix: DistanceMatrix) -> None:
        self.matrix = matrix
        self._tree = None

    def get_tree(self) -> Tree:
        if self._tree is None:
            raise ValueError("No tree computed yet")
        return self._tree

    def _join(self, node1: TreeNode, length1: float, node2: TreeNode, length2: float) -> TreeNode:
        if self.positive_lengths:
            length1, length2 = max(0.0, length1), max(0.0, length2)
        node = TreeNode(id=-1)
        node1.branch_length, node2.branch_length = length1, length2
        node.add_child(node1)
        node.add_child(node2)
        return node

    def _build(self, leaves: list[TreeNode], dmat: np.ndarray, rooted: bool) -> TreeNode:
        raise NotImplementedError

    def compute_tree(self, rooted: bool = False) -> Tree:
        """
        Build the tree. Node ids are assigned in pre-order.

        Parameters
        ----------
        rooted : bool
            Return a bifurcating root; otherwise the root is a trifurcation
        """
        if self.matrix is None:
            raise ValueError("No distance matrix set")
        if self.matrix.size < 2:
            raise ValueError("At least two sequences are needed to build a tree")
        leaves = [TreeNode(id=-1, name=name) for name in self.matrix.names]
        root = self._build(leaves, self.matrix.values.copy(), rooted)
        stack, next_id = [root], 0
        while stack:
            node = stack.pop()
            node.id, next_id = next_id, next_id + 1
            stack.extend(reversed(node.children))
        tree = Tree(root)
        if not rooted:
            tree.unroot()
            tree.renumber()
        self._tree = tree
        return tree


class NeighborJoining(AgglomerativeDistanceMethod):
    """Saitou and Nei neighbor joining. Negative lengths are set to 0."""

    def _build(self, leaves, dmat, rooted):
        nodes = list(leaves)
        while len(nodes) > 3 or (rooted and len(nodes) > 2):
            n = len(nodes)
            udist = dmat.sum(axis=0)
            njdist = (n - 2) * dmat - udist - udist[:, np.newaxis]
            np.fill_diagonal(njdist, np.inf)
            i1, i2 = np.unravel_index(np.argmin(njdist), njdist.shape)
            if i1 > i2:
                i1, i2 = i2, i1
            d12 = dmat[i1, i2]
            dist1 = 0.5 * d12 + 0.5 * (udist[i1] - udist[i2]) / (n - 2)
            new = self._join(nodes[i1], dist1, nodes[i2], d12 - dist1)

            dist_new = 0.5 * (dmat[i1] + dmat[i2] - d12)
            dmat[i1] = dist_new
            dmat[:, i1] = dist_new
            dmat[i1, i1] = 0.0
            dmat = np.delete(np.delete(dmat, i2, axis=0), i2, axis=1)
            nodes[i1] = new
            del nodes[i2]

        if len(nodes) == 1:
            return nodes[0]
        root = TreeNode(id=-1)
        if len(nodes) == 2:
            lengths = [dmat[0, 1] / 2.0] * 2
        else:
            d01, d02, d12 = dmat[0, 1], dmat[0, 2], dmat[1, 2]
            lengths = [
                0.5 * (d01 + d02 - d12),
                0.5 * (d01 + d12 - d02),
                0.5 * (d02 + d12 - d01),
            ]
        for node, length in zip(nodes, lengths):
            node.branch_length = max(0.0, length) if self.positive_lengths else length
            root.add_child(node)
        return root


class UPGMA(AgglomerativeDistanceMethod):
    """Unweighted pair group method with arithmetic mean, ultrametric output."""

    def _build(self, leaves, dmat, rooted):
        nodes = list(leaves)
        sizes = [1] * len(nodes)
        depths = [0.0] * len(nodes)
        while len(nodes) > 1:
            masked = dmat.copy()
            np.fill_diagonal(masked, np.inf)
            i1, i2 = np.unravel_index(np.argmin(masked), masked.shape)
            if i1 > i2:
                i1, i2 = i2, i1
            depth = dmat[i1, i2] / 2.0
            new = self._join(nodes[i1], depth - depths[i1], nodes[i2], depth - depths[i2])

            dist_new = (sizes[i1] * dmat[i1] + sizes[i2] * dmat[i2]) / (sizes[i1] + sizes[i2])
            dmat[i1] = dist_new
            dmat[:, i1] = dist_new
            dmat[i1, i1] = 0.0
            dmat = np.delete(np.delete(dmat, i2, axis=0), i2, axis=1)
            nodes[i1] = new
            sizes[i1] += sizes[i2]
            depths[i1] = depth
            del nodes[i2], sizes[i2], depths[i2]
        return nodes[0]


def build_distance_tree(
    estimation: DistanceEstimation,
    reconstruction: AgglomerativeDistanceMethod,
    parameters_to_ignore: Iterable[str] = (),
    optimize_branch_lengths: bool = True,
    rooted: bool = False,
    param: str = DISTANCEMETHOD_INIT,
    tolerance: float = 1e-6,
    max_evaluations: int = 1_000_000,
    max_iterations: int = 20,
    method: str = OPTIMIZATION_NEWTON,
    reparametrization: bool = False,
) -> Tree:
    """
    Build a tree from pairwise distances.

    Parameters
    ----------
    estimation : DistanceEstimation
        Distance estimator holding the data, model and rate distribution
    reconstruction : AgglomerativeDistanceMethod
        Tree building method
    parameters_to_ignore : iterable of str
        Parameters never estimated (names or groups, see
        :func:`~phylolik.optimize.tools.resolve_parameters_to_optimize`)
    optimize_branch_lengths : bool
        Whether branch lengths are estimated along with the model in
        ``"iterations"`` mode
    rooted : bool
        Build a rooted tree
    param : str
        ``"init"`` uses the current model values; ``"pairwise"`` also
        estimates the model parameters for each pair; ``"iterations"``
        alternates tree building and maximum likelihood estimation of the
        model on the tree until the topology no longer changes
    max_iterations : int
        Bound on the number of rounds in ``"iterations"`` mode

    Returns
    -------
    Tree
        Tree built from the last distance matrix
    """
    if param not in DISTANCE_METHODS:
        raise ConfigurationError(
            f"Unknown distance method '{param}', expected one of {DISTANCE_METHODS}", "param"
        )
    ignore = list(parameters_to_ignore)
    estimation.reset_additional_parameters()
    if param == DISTANCEMETHOD_PAIRWISE:
        parameters = estimation.get_model().get_parameters()
        parameters.add_parameters(estimation.get_rate_distribution().get_parameters())
        parameters.delete_parameters([name for name in ignore if name in parameters])
        estimation.set_additional_parameters(parameters)

    tree: Optional[Tree] = None
    for iteration in range(1, max_iterations + 1):
        matrix = estimation.compute_matrix()
        reconstruction.set_distance_matrix(matrix)
        previous, tree = tree, reconstruction.compute_tree(rooted)
        changed = True
        if previous is not None:
            rf = robinson_foulds_distance(previous, tree)
            logger.info("Iteration %d: Robinson-Foulds distance to previous tree = %d", iteration, rf)
            changed = rf != 0
        if param != DISTANCEMETHOD_ITERATIONS:
            break

        likelihood = PhyloLikelihood(
            tree.copy(), estimation.get_data(), estimation.get_model(),
            estimation.get_rate_distribution(),
        )
        ignored = list(ignore)
        if not optimize_branch_lengths:
            ignored.append("BrLen")
        parameters = resolve_parameters_to_optimize(likelihood, ignored)
        optimize_numerical_parameters(
            likelihood,
            parameters,
            n_step=0,
            tolerance=tolerance,
            max_evaluations=max_evaluations,
            reparametrization=reparametrization,
            method=method,
        )
        logger.info("Iteration %d: -lnL = %.6f", iteration, likelihood.get_value())
        if not changed:
            break
    else:
        logger.warning("Distance tree did not converge after %d iterations", max_iterations)
    return tree
