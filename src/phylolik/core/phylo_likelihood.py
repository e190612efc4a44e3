"""
Phylogenetic likelihood exposed as a parametrized objective function.
"""

import logging
import math
from typing import Optional, Union

import numpy as np
from scipy.optimize import minimize_scalar

from ..exceptions import (
    AlphabetMismatchError,
    ModelSetConsistencyError,
    ParameterNotFoundError,
)
from ..io.sequences import Alignment, Alphabet
from ..io.trees import Tree
from ..models.base import SubstitutionModel
from ..models.mixed import MixedSubstitutionModel
from ..models.model_set import SubstitutionModelSet
from ..models.rate_distribution import ConstantDistribution, DiscreteDistribution
from .likelihood import TreeLikelihoodCalculation
from .parameters import IntervalConstraint, Parameter, ParameterList, Parametrizable
from .sites import SitePatterns

logger = logging.getLogger(__name__)

MIN_BRANCH_LENGTH = 1e-6
BRANCH_LENGTH_CONSTRAINT = IntervalConstraint(MIN_BRANCH_LENGTH, math.inf)
BRANCH_LENGTH_PREFIX = "BrLen"


class PhyloLikelihood(Parametrizable):
    """
    Likelihood of an alignment under a tree, a substitution process and a
    rate distribution across sites.

    The value of the function is -lnL so optimizers minimize it.

    Parameters
    ----------
    tree : Tree
        Tree referenced (not copied); branch length changes are written back
    alignment : Alignment
        Sequences, one per leaf name
    model : SubstitutionModel or SubstitutionModelSet
        A single model used on every branch (mixtures allowed), or a model
        set fully set up for ``tree``
    rate_distribution : DiscreteDistribution, optional
        Rate categories, constant rate by default

    Notes
    -----
    Parameters are ``BrLen{node_id}`` for every branch, then the model
    (or model set) parameters, then the rate distribution parameters.
    """

    def __init__(
        self,
        tree: Tree,
        alignment: Alignment,
        model: Union[SubstitutionModel, SubstitutionModelSet],
        rate_distribution: Optional[DiscreteDistribution] = None,
    ):
        super().__init__()
        if tree.root.is_leaf:
            raise ValueError("Likelihood needs a tree with at least one branch")
        self.tree = tree
        self.rate_distribution = rate_distribution or ConstantDistribution()

        if isinstance(model, SubstitutionModelSet):
            if not model.is_fully_set_up_for(tree):
                raise ModelSetConsistencyError(
                    "Substitution model set is not fully set up for this tree: "
                    f"orphan nodes {model.get_orphan_nodes(tree)}"
                )
            self.model_set = model
            self.model = None
            model_parameters = model.get_parameters()
        else:
            self.model_set = None
            self.model = model
            model_parameters = model.get_parameters()
        self.alphabet = model.get_alphabet()

        self._branch_nodes: dict[str, int] = {}
        for node in tree.preorder():
            if node.parent is None:
                continue
            name = f"{BRANCH_LENGTH_PREFIX}{node.id}"
            node.branch_length = max(MIN_BRANCH_LENGTH, node.branch_length)
            self._add_parameter(Parameter(name, node.branch_length, BRANCH_LENGTH_CONSTRAINT))
            self._branch_nodes[name] = node.id

        self._model_names = model_parameters.get_parameter_names()
        self._add_parameters(model_parameters)
        self._rate_names = self.rate_distribution.get_parameter_names()
        self._add_parameters(self.rate_distribution.get_parameters())
        if self.model_set is not None:
            self._root_names = self.model_set.get_root_frequencies_parameters().get_parameter_names()
        else:
            self._root_names = []

        self._nni_branch_lengths: dict[tuple[int, int], float] = {}
        self._derivatives: dict[int, tuple[float, float]] = {}
        self.set_data(alignment)

    # -- data ------------------------------------------------------------------

    def set_data(self, alignment: Alignment) -> None:
        """Attach sequences: compress patterns and rebuild every partial."""
        if alignment.alphabet != self.alphabet:
            raise AlphabetMismatchError(
                f"Alignment alphabet {alignment.alphabet.name} does not match "
                f"model alphabet {self.alphabet.name}"
            )
        unnamed = [leaf.id for leaf in self.tree.leaves() if not leaf.name]
        if unnamed:
            raise ValueError(f"Leaves without names: {unnamed}")
        self.alignment = alignment
        self.patterns = SitePatterns.from_alignment(alignment, self.tree.leaf_names)
        self._calculation = TreeLikelihoodCalculation(
            self.tree, self.patterns, self.alphabet.size, self.get_number_of_classes()
        )
        self._update_classes()
        for node_id in self._branch_nodes.values():
            self._update_branch(node_id)
        logger.debug(
            "%d sites compressed into %d patterns", self.patterns.n_sites, self.patterns.n_patterns
        )

    def get_data(self) -> Alignment:
        return self.alignment

    def get_tree(self) -> Tree:
        return self.tree

    def get_alphabet(self) -> Alphabet:
        return self.alphabet

    def get_model(self) -> Optional[SubstitutionModel]:
        return self.model

    def get_model_set(self) -> Optional[SubstitutionModelSet]:
        return self.model_set

    def get_rate_distribution(self) -> DiscreteDistribution:
        return self.rate_distribution

    def get_number_of_sites(self) -> int:
        return self.patterns.n_sites

    def get_number_of_states(self) -> int:
        return self.alphabet.size

    def get_site_index(self, site: int) -> int:
        """Pattern index used for ``site``."""
        return self.patterns.get_pattern_for_site(site)

    # -- classes ---------------------------------------------------------------

    def _components(self) -> list[tuple[Optional[SubstitutionModel], float]]:
        if isinstance(self.model, MixedSubstitutionModel):
            return [
                (self.model.get_n_model(k), self.model.get_n_probability(k))
                for k in range(self.model.get_number_of_models())
            ]
        return [(self.model, 1.0)]

    def get_number_of_classes(self) -> int:
        return len(self._components()) * self.rate_distribution.get_number_of_categories()

    def get_class_rates(self) -> np.ndarray:
        rates = self.rate_distribution.get_categories()
        return np.tile(rates, len(self._components()))

    def _update_classes(self) -> None:
        probabilities = self.rate_distribution.get_probabilities()
        n_rates = len(probabilities)
        weights = np.concatenate([p * probabilities for _, p in self._components()])
        self._calculation.set_class_weights(weights)
        if self.model_set is not None:
            root = np.tile(self.model_set.get_root_frequencies(), (len(weights), 1))
        else:
            root = np.repeat(
                np.array([m.get_frequencies() for m, _ in self._components()]), n_rates, axis=0
            )
        self._calculation.set_root_frequencies(root)

    def _branch_matrices(self, node_id: int, order: int) -> np.ndarray:
        length = self.tree.get_node(node_id).branch_length
        rates = self.rate_distribution.get_categories()
        if self.model_set is not None:
            models = [self.model_set.get_model_for_node(node_id)]
        else:
            models = [m for m, _ in self._components()]
        matrices = []
        for model in models:
            for rate in rates:
                t = length * rate
                if order == 0:
                    matrices.append(model.get_Pij_t(t))
                elif order == 1:
                    matrices.append(rate * model.get_dPij_dt(t))
                else:
                    matrices.append(rate * rate * model.get_d2Pij_dt2(t))
        return np.array(matrices)

    def _update_branch(self, node_id: int) -> None:
        self._calculation.set_transition_matrices(node_id, self._branch_matrices(node_id, 0))

    # -- parameters --------------------------------------------------------------

    def fire_parameter_changed(self, parameters: ParameterList) -> None:
        self._derivatives.clear()
        branches = set()
        model_changed = ParameterList()
        rate_changed = ParameterList()
        for parameter in parameters:
            node_id = self._branch_nodes.get(parameter.name)
            if node_id is not None:
                self.tree.set_branch_length(node_id, parameter.value)
                branches.add(node_id)
            elif parameter.name in self._rate_names:
                rate_changed.add_parameter(parameter)
            else:
                model_changed.add_parameter(parameter)

        update_classes = False
        if len(model_changed) > 0:
            if self.model_set is not None:
                self.model_set.match_parameters_values(model_changed)
                names = model_changed.get_parameter_names()
                touched = self.model_set.models_touched_by(names)
                for model_index in touched:
                    branches.update(self.model_set.get_nodes_with_model(model_index))
                if any(name in self._root_names for name in names) or (
                    self.model_set.stationarity and 0 in touched
                ):
                    update_classes = True
            else:
                self.model.match_parameters_values(model_changed)
                branches.update(self._branch_nodes.values())
                update_classes = True
        if len(rate_changed) > 0:
            self.rate_distribution.match_parameters_values(rate_changed)
            branches.update(self._branch_nodes.values())
            update_classes = True

        if update_classes:
            self._update_classes()
        for node_id in branches:
            if node_id != self.tree.root.id:
                self._update_branch(node_id)

    def get_branch_lengths_parameters(self) -> ParameterList:
        return self._parameters.sub_list(self._branch_nodes)

    def get_substitution_model_parameters(self) -> ParameterList:
        names = [n for n in self._model_names if n not in self._root_names]
        return self._parameters.sub_list(names)

    def get_root_frequencies_parameters(self) -> ParameterList:
        return self._parameters.sub_list(self._root_names)

    def get_rate_distribution_parameters(self) -> ParameterList:
        return self._parameters.sub_list(self._rate_names)

    def get_derivable_parameters(self) -> ParameterList:
        return self.get_branch_lengths_parameters()

    def get_non_derivable_parameters(self) -> ParameterList:
        return ParameterList(p for p in self._parameters if p.name not in self._branch_nodes)

    def get_branch_node_id(self, name: str) -> int:
        if name not in self._branch_nodes:
            raise ParameterNotFoundError(name)
        return self._branch_nodes[name]

    # -- function interface --------------------------------------------------------

    def compute_tree_likelihood(self) -> float:
        return self._calculation.compute_tree_likelihood()

    def get_log_likelihood(self) -> float:
        return self._calculation.get_log_likelihood()

    def get_value(self) -> float:
        """-lnL."""
        return -self.get_log_likelihood()

    def f(self, parameters: ParameterList) -> float:
        self.set_parameters(parameters)
        return self.get_value()

    def _branch_derivatives(self, name: str) -> tuple[float, float]:
        node_id = self._branch_nodes.get(name)
        if node_id is None:
            raise ParameterNotFoundError(
                name, f"Parameter '{name}' has no analytical derivative"
            )
        if node_id not in self._derivatives:
            self._derivatives[node_id] = self._calculation.get_branch_derivatives(
                node_id, self._branch_matrices(node_id, 1), self._branch_matrices(node_id, 2)
            )
        return self._derivatives[node_id]

    def get_first_order_derivative(self, name: str) -> float:
        """d(-lnL)/d(name), analytical for branch lengths."""
        return -self._branch_derivatives(name)[0]

    def get_second_order_derivative(self, name: str) -> float:
        """d²(-lnL)/d(name)², analytical for branch lengths."""
        return -self._branch_derivatives(name)[1]

    # -- site-level outputs ----------------------------------------------------------

    def get_log_likelihood_for_each_site(self) -> np.ndarray:
        patterns = self._calculation.get_pattern_log_likelihoods()
        return patterns[self.patterns.site_to_pattern]

    def get_likelihood_for_each_site(self) -> np.ndarray:
        return np.exp(self.get_log_likelihood_for_each_site())

    def get_log_likelihood_for_a_site(self, site: int) -> float:
        pattern = self.get_site_index(site)
        return float(self._calculation.get_pattern_log_likelihoods()[pattern])

    def get_likelihood_for_a_site(self, site: int) -> float:
        return math.exp(self.get_log_likelihood_for_a_site(site))

    def get_likelihood_for_each_site_for_each_class(self) -> np.ndarray:
        """P(site | class), shape (n_sites, n_classes)."""
        classes = self._calculation.get_pattern_class_log_likelihoods()
        return np.exp(classes[self.patterns.site_to_pattern])

    def get_likelihood_for_each_site_for_each_state(self) -> np.ndarray:
        """P(site | root state), shape (n_sites, n_states)."""
        states = self._calculation.get_pattern_state_likelihoods()
        return states[self.patterns.site_to_pattern]

    def get_posterior_probabilities_of_each_class(self) -> np.ndarray:
        posterior = self._calculation.get_posterior_class_probabilities()
        return posterior[self.patterns.site_to_pattern]

    def get_class_with_max_post_prob_of_each_site(self) -> np.ndarray:
        return np.argmax(self.get_posterior_probabilities_of_each_class(), axis=1)

    def get_posterior_rate_of_each_site(self) -> np.ndarray:
        return self.get_posterior_probabilities_of_each_class() @ self.get_class_rates()

    # -- topology ------------------------------------------------------------------

    def topology_changed(self, node_ids=None) -> None:
        self._derivatives.clear()
        self._calculation.topology_changed(node_ids)

    def _apply_nni(self, node_id: int, child_index: int) -> None:
        node = self.tree.get_node(node_id)
        parent_id = node.parent.id if node.parent is not None else node_id
        self.tree.nni(node_id, child_index)
        self.topology_changed([node_id, parent_id])

    def test_nni(self, node_id: int, child_index: int) -> float:
        """
        Change of -lnL produced by an NNI move, after optimizing the central
        branch. Negative values are improvements. The tree is left unchanged.
        """
        current = self.get_value()
        name = f"{BRANCH_LENGTH_PREFIX}{node_id}"
        old_length = self.get_parameter_value(name)

        def objective(x: float) -> float:
            self.set_parameter_value(name, max(MIN_BRANCH_LENGTH, x))
            return self.get_value()

        self._apply_nni(node_id, child_index)
        try:
            best_length, best_value = old_length, objective(old_length)
            result = minimize_scalar(
                objective,
                bounds=(MIN_BRANCH_LENGTH, max(1.0, 5.0 * old_length)),
                method="bounded",
                options={"xatol": 1e-5},
            )
            if result.fun < best_value:
                best_length, best_value = float(result.x), float(result.fun)
        finally:
            self._apply_nni(node_id, child_index)
            self.set_parameter_value(name, old_length)
        self._nni_branch_lengths[(node_id, child_index)] = best_length
        return best_value - current

    def do_nni(self, node_id: int, child_index: int) -> None:
        """Apply an NNI move, using the central branch length found by :meth:`test_nni`."""
        self._apply_nni(node_id, child_index)
        length = self._nni_branch_lengths.pop((node_id, child_index), None)
        self._nni_branch_lengths.clear()
        if length is not None:
            self.set_parameter_value(f"{BRANCH_LENGTH_PREFIX}{node_id}", length)
