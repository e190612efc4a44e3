"""
Assignment of substitution models to the branches of a tree.

A :class:`SubstitutionModelSet` owns a list of models, binds tree node ids to
them, and exposes one deduplicated list of global parameters. A global
parameter stands for a model-level parameter (``kappa_2`` for ``kappa``) and
may be shared by several models; changing it pushes the value into every
model that shares it.

Every structural mutation validates the resulting state before touching the
set, so an inconsistent intermediate state is never observable.
"""

import copy
import logging
from typing import Iterable, Optional, Sequence

import numpy as np

from ..core.parameters import Parameter, ParameterList, Parametrizable
from ..exceptions import (
    AlphabetMismatchError,
    ConfigurationError,
    IndexOutOfBoundsError,
    ModelSetConsistencyError,
    NodeNotFoundError,
    ParameterNotFoundError,
)
from ..io.sequences import Alphabet
from ..io.trees import Tree
from .base import SubstitutionModel
from .frequencies import FrequenciesSet, FullFrequenciesSet
from .mixed import MixedSubstitutionModel

logger = logging.getLogger(__name__)

ROOT_FREQUENCIES_PREFIX = "RootFreq."


class SubstitutionModelSet(Parametrizable):
    """
    Substitution models mapped onto tree nodes.

    Parameters
    ----------
    alphabet : Alphabet
        Alphabet shared by every model
    root_frequencies : FrequenciesSet, optional
        Root state prior, owned by the set. Defaults to a
        :class:`FullFrequenciesSet` with parameters prefixed ``RootFreq.``.
    stationarity : bool
        When True there is no root frequency set and the root prior is the
        equilibrium frequency vector of model 0.
    """

    def __init__(
        self,
        alphabet: Alphabet,
        root_frequencies: Optional[FrequenciesSet] = None,
        stationarity: bool = False,
    ):
        super().__init__()
        self.alphabet = alphabet
        self._models: list[SubstitutionModel] = []
        self._node_to_model: dict[int, int] = {}
        self._model_to_nodes: list[list[int]] = []
        # Global parameter name -> indices of the models sharing it
        self._param_to_models: dict[str, list[int]] = {}
        # Global parameter name -> model-level parameter name
        self._param_model_name: dict[str, str] = {}

        self.stationarity = stationarity
        self._root_frequencies: Optional[FrequenciesSet] = None
        if not stationarity:
            if root_frequencies is None:
                root_frequencies = FullFrequenciesSet(alphabet, prefix=ROOT_FREQUENCIES_PREFIX)
            elif root_frequencies.get_alphabet().size != alphabet.size:
                raise AlphabetMismatchError(
                    f"Root frequencies have {root_frequencies.get_alphabet().size} states, "
                    f"expected {alphabet.size}"
                )
            self._root_frequencies = root_frequencies
            self._add_parameters(root_frequencies.get_parameters())

    # -- accessors ---------------------------------------------------------

    def get_alphabet(self) -> Alphabet:
        return self.alphabet

    def get_number_of_models(self) -> int:
        return len(self._models)

    def get_number_of_states(self) -> int:
        return self.alphabet.size

    def _check_model_index(self, model_index: int, where: str) -> None:
        if not 0 <= model_index < len(self._models):
            raise IndexOutOfBoundsError(
                f"SubstitutionModelSet.{where}", model_index, 0, len(self._models) - 1
            )

    def get_model(self, model_index: int) -> SubstitutionModel:
        self._check_model_index(model_index, "get_model")
        return self._models[model_index]

    def find_model_index_for_node(self, node_id: int) -> Optional[int]:
        """Index of the model bound to ``node_id``, or None."""
        return self._node_to_model.get(node_id)

    def get_model_index_for_node(self, node_id: int) -> int:
        if node_id not in self._node_to_model:
            raise NodeNotFoundError(node_id, f"No model associated to node {node_id}")
        return self._node_to_model[node_id]

    def get_model_for_node(self, node_id: int) -> SubstitutionModel:
        return self._models[self.get_model_index_for_node(node_id)]

    def get_nodes_with_model(self, model_index: int) -> list[int]:
        self._check_model_index(model_index, "get_nodes_with_model")
        return list(self._model_to_nodes[model_index])

    def get_model_indices_for_parameter(self, name: str) -> list[int]:
        if name not in self._param_to_models:
            raise ParameterNotFoundError(name)
        return list(self._param_to_models[name])

    def get_nodes_with_parameter(self, name: str) -> list[int]:
        """Ids of the nodes whose model is driven by global parameter ``name``."""
        ids = []
        for model_index in self.get_model_indices_for_parameter(name):
            ids.extend(self._model_to_nodes[model_index])
        return sorted(ids)

    def get_model_parameter_name(self, name: str) -> str:
        """Model-level name behind global parameter ``name``."""
        if name not in self._param_model_name:
            raise ParameterNotFoundError(name)
        return self._param_model_name[name]

    def get_parameter_index(self, name: str) -> int:
        return self._parameters.index_of(name)

    def get_model_parameters(self) -> ParameterList:
        """Global parameters bound to models (root frequencies excluded)."""
        return ParameterList(p for p in self._parameters if p.name in self._param_to_models)

    def get_model_parameters_for(self, model_index: int) -> list[str]:
        """Global parameter names linked to model ``model_index``."""
        self._check_model_index(model_index, "get_model_parameters_for")
        return [name for name, models in self._param_to_models.items() if model_index in models]

    def is_root_frequencies_parameter(self, name: str) -> bool:
        return (
            self._root_frequencies is not None
            and self._root_frequencies.has_parameter(name)
        )

    def get_root_frequencies_set(self) -> Optional[FrequenciesSet]:
        return self._root_frequencies

    def get_root_frequencies(self) -> np.ndarray:
        if self._root_frequencies is None:
            if not self._models:
                raise ModelSetConsistencyError("Stationary model set without any model")
            return self._models[0].get_frequencies()
        return self._root_frequencies.get_frequencies()

    def get_root_frequencies_parameters(self) -> ParameterList:
        if self._root_frequencies is None:
            return ParameterList()
        return self._root_frequencies.get_parameters()

    def list_model_names(self) -> list[str]:
        return [
            f"Model {i + 1}: {model.get_name()} on nodes {self._model_to_nodes[i]}"
            for i, model in enumerate(self._models)
        ]

    # -- structural mutations ----------------------------------------------

    def _check_model_compatibility(self, model: SubstitutionModel) -> None:
        if isinstance(model, MixedSubstitutionModel):
            raise ConfigurationError(
                "Mixture models are only supported in homogeneous likelihoods, "
                "not in a substitution model set"
            )
        if model.get_alphabet() != self.alphabet:
            raise AlphabetMismatchError(
                f"Model alphabet {model.get_alphabet().name} does not match "
                f"set alphabet {self.alphabet.name}"
            )
        if model.get_number_of_states() != self.get_number_of_states():
            raise AlphabetMismatchError(
                f"Model has {model.get_number_of_states()} states, "
                f"expected {self.get_number_of_states()}"
            )

    def _new_global_name(self, name: str) -> str:
        ordinal = 1 + sum(1 for n in self._param_model_name.values() if n == name)
        while f"{name}_{ordinal}" in self._parameters:
            ordinal += 1
        return f"{name}_{ordinal}"

    def _bind_node(self, node_id: int, model_index: int) -> None:
        previous = self._node_to_model.get(node_id)
        if previous is not None:
            self._model_to_nodes[previous].remove(node_id)
        self._node_to_model[node_id] = model_index
        self._model_to_nodes[model_index].append(node_id)

    def add_model(
        self,
        model: SubstitutionModel,
        node_ids: Iterable[int],
        new_param_names: Iterable[str] = (),
    ) -> int:
        """
        Add a model, bind it to ``node_ids`` and expose some of its parameters.

        Parameters
        ----------
        model : SubstitutionModel
            Model now owned by the set (copy it first to keep your own)
        node_ids : iterable of int
            Nodes bound to this model, overriding previous bindings
        new_param_names : iterable of str
            Model parameters to expose as new global parameters, each linked to
            this model only. Unlisted parameters stay private to the model.

        Returns
        -------
        int
            Index of the new model
        """
        node_ids = list(node_ids)
        new_param_names = list(new_param_names)
        self._check_model_compatibility(model)
        for name in new_param_names:
            if not model.has_parameter(name):
                raise ParameterNotFoundError(
                    name, f"Model {model.get_name()} has no parameter '{name}'"
                )
        if len(set(new_param_names)) != len(new_param_names):
            raise ModelSetConsistencyError(f"Duplicate parameter names: {new_param_names}")

        model_index = len(self._models)
        self._models.append(model)
        self._model_to_nodes.append([])
        for node_id in node_ids:
            self._bind_node(node_id, model_index)
        for name in new_param_names:
            global_name = self._new_global_name(name)
            self._add_parameter(model.get_parameter(name).renamed(global_name))
            self._param_to_models[global_name] = [model_index]
            self._param_model_name[global_name] = name
        logger.debug("Added model %d (%s) on nodes %s", model_index, model.get_name(), node_ids)
        return model_index

    def set_model(self, model: SubstitutionModel, model_index: int) -> None:
        """
        Replace model ``model_index`` keeping every association.

        The new model receives the current values of the global parameters
        linked to this index.
        """
        self._check_model_index(model_index, "set_model")
        self._check_model_compatibility(model)
        linked = self.get_model_parameters_for(model_index)
        for global_name in linked:
            name = self._param_model_name[global_name]
            if not model.has_parameter(name):
                raise ParameterNotFoundError(
                    name, f"Model {model.get_name()} has no parameter '{name}'"
                )
        self._models[model_index] = model
        self._push_to_model(model_index, linked)

    def set_model_to_node(self, model_index: int, node_id: int) -> None:
        """Bind ``node_id`` to an existing model, dropping its previous binding."""
        self._check_model_index(model_index, "set_model_to_node")
        self._bind_node(node_id, model_index)

    def _check_link(self, parameter_index: int, model_index: int, where: str) -> str:
        if not 0 <= parameter_index < len(self._parameters):
            raise IndexOutOfBoundsError(
                f"SubstitutionModelSet.{where}", parameter_index, 0, len(self._parameters) - 1
            )
        self._check_model_index(model_index, where)
        global_name = self._parameters[parameter_index].name
        if global_name not in self._param_to_models:
            raise ModelSetConsistencyError(
                f"'{global_name}' is a root frequency parameter and cannot be linked to a model"
            )
        return global_name

    def set_parameter_to_model(self, parameter_index: int, model_index: int) -> None:
        """Share global parameter ``parameter_index`` with model ``model_index``."""
        global_name = self._check_link(parameter_index, model_index, "set_parameter_to_model")
        name = self._param_model_name[global_name]
        if model_index in self._param_to_models[global_name]:
            raise ModelSetConsistencyError(
                f"'{global_name}' is already linked to model {model_index}"
            )
        if not self._models[model_index].has_parameter(name):
            raise ParameterNotFoundError(
                name, f"Model {model_index} has no parameter '{name}'"
            )
        for other in self.get_model_parameters_for(model_index):
            if self._param_model_name[other] == name:
                raise ModelSetConsistencyError(
                    f"Parameter '{name}' of model {model_index} is already driven by '{other}'"
                )
        self._param_to_models[global_name].append(model_index)
        self._push_to_model(model_index, [global_name])

    def unset_parameter_to_model(self, parameter_index: int, model_index: int) -> None:
        """
        Stop sharing global parameter ``parameter_index`` with a model.

        Raises
        ------
        ModelSetConsistencyError
            If the parameter is not linked to the model, would be linked to no
            model, or the model would be left without any global parameter.
        """
        global_name = self._check_link(parameter_index, model_index, "unset_parameter_to_model")
        models = self._param_to_models[global_name]
        if model_index not in models:
            raise ModelSetConsistencyError(
                f"'{global_name}' is not linked to model {model_index}"
            )
        if len(models) == 1:
            raise ModelSetConsistencyError(
                f"Orphan parameter: '{global_name}' would not be linked to any model"
            )
        if len(self.get_model_parameters_for(model_index)) == 1:
            raise ModelSetConsistencyError(
                f"Orphan model: model {model_index} would be left without parameters"
            )
        models.remove(model_index)

    def add_parameter(self, parameter: Parameter, node_ids: Iterable[int]) -> str:
        """
        Add a global parameter for model-level parameter ``parameter.name``,
        linked to the models of ``node_ids``.

        Returns
        -------
        str
            Name of the new global parameter
        """
        model_indices = []
        for node_id in node_ids:
            model_index = self.get_model_index_for_node(node_id)
            if model_index not in model_indices:
                model_indices.append(model_index)
        if not model_indices:
            raise ModelSetConsistencyError(
                f"Parameter '{parameter.name}' must be linked to at least one node"
            )
        name = parameter.name
        for model_index in model_indices:
            if not self._models[model_index].has_parameter(name):
                raise ParameterNotFoundError(
                    name, f"Model {model_index} has no parameter '{name}'"
                )
            for other in self.get_model_parameters_for(model_index):
                if self._param_model_name[other] == name:
                    raise ModelSetConsistencyError(
                        f"Parameter '{name}' of model {model_index} is already driven by '{other}'"
                    )
        global_name = self._new_global_name(name)
        self._add_parameter(parameter.renamed(global_name))
        self._param_to_models[global_name] = model_indices
        self._param_model_name[global_name] = name
        for model_index in model_indices:
            self._push_to_model(model_index, [global_name])
        return global_name

    def add_parameters(self, parameters: ParameterList, node_ids: Sequence[int]) -> list[str]:
        return [self.add_parameter(parameter, node_ids) for parameter in parameters]

    def remove_model(self, model_index: int) -> None:
        """
        Remove a model together with the global parameters only it uses.

        Parameters shared with other models are unlinked. Nodes bound to the
        model become unbound and later model indices shift down by one.
        """
        self._check_model_index(model_index, "remove_model")
        exclusive = []
        for name, models in self._param_to_models.items():
            if model_index in models and len(models) == 1:
                exclusive.append(name)

        del self._models[model_index]
        for node_id in self._model_to_nodes.pop(model_index):
            del self._node_to_model[node_id]
        self._node_to_model = {
            node_id: (i - 1 if i > model_index else i)
            for node_id, i in self._node_to_model.items()
        }
        if exclusive:
            self._delete_parameters(exclusive)
        for name in exclusive:
            del self._param_to_models[name]
            del self._param_model_name[name]
        for name, models in self._param_to_models.items():
            self._param_to_models[name] = [
                i - 1 if i > model_index else i for i in models if i != model_index
            ]

    # -- consistency ---------------------------------------------------------

    def has_orphan_parameters(self) -> bool:
        return any(len(models) == 0 for models in self._param_to_models.values())

    def has_orphan_models(self) -> bool:
        return any(len(nodes) == 0 for nodes in self._model_to_nodes)

    def get_orphan_nodes(self, tree: Tree) -> list[int]:
        return [node_id for node_id in tree.get_node_ids() if node_id not in self._node_to_model]

    def is_fully_set_up_for(self, tree: Tree) -> bool:
        """
        True when every node of ``tree`` (root included) has a model, every
        model serves at least one node and no parameter is orphaned.
        """
        return (
            not self.has_orphan_models()
            and not self.has_orphan_parameters()
            and not self.get_orphan_nodes(tree)
        )

    # -- parameter propagation -------------------------------------------------

    def _push_to_model(self, model_index: int, global_names: Iterable[str]) -> None:
        values = ParameterList(
            self._parameters.get_parameter(name).renamed(self._param_model_name[name])
            for name in global_names
        )
        self._models[model_index].match_parameters_values(values)

    def fire_parameter_changed(self, parameters: ParameterList) -> None:
        root_changed = ParameterList()
        by_model: dict[int, ParameterList] = {}
        for parameter in parameters:
            if self.is_root_frequencies_parameter(parameter.name):
                root_changed.add_parameter(parameter)
                continue
            name = self._param_model_name.get(parameter.name)
            if name is None:
                continue
            for model_index in self._param_to_models[parameter.name]:
                by_model.setdefault(model_index, ParameterList()).add_parameter(
                    parameter.renamed(name)
                )
        if len(root_changed) > 0:
            self._root_frequencies.match_parameters_values(root_changed)
        for model_index, values in by_model.items():
            self._models[model_index].match_parameters_values(values)

    def models_touched_by(self, names: Iterable[str]) -> set[int]:
        touched = set()
        for name in names:
            touched.update(self._param_to_models.get(name, ()))
        return touched


def create_homogeneous_model_set(
    model: SubstitutionModel,
    root_frequencies: Optional[FrequenciesSet],
    tree: Tree,
) -> SubstitutionModelSet:
    """
    Model set using ``model`` on every node.

    All model parameters become global. Without ``root_frequencies`` the set
    is stationary.
    """
    model_set = SubstitutionModelSet(
        model.get_alphabet(), root_frequencies, stationarity=root_frequencies is None
    )
    model_set.add_model(model, tree.get_node_ids(), model.get_parameter_names())
    return model_set


def create_non_homogeneous_model_set(
    model: SubstitutionModel,
    root_frequencies: Optional[FrequenciesSet],
    tree: Tree,
    global_parameter_names: Sequence[str] = (),
) -> SubstitutionModelSet:
    """
    Model set with one copy of ``model`` per branch.

    Parameters listed in ``global_parameter_names`` are shared by every
    branch; the others are branch-specific. The root node shares the model of
    its first child.
    """
    for name in global_parameter_names:
        if not model.has_parameter(name):
            raise ParameterNotFoundError(name, f"Model {model.get_name()} has no parameter '{name}'")
    model_set = SubstitutionModelSet(
        model.get_alphabet(), root_frequencies, stationarity=root_frequencies is None
    )
    local_names = [n for n in model.get_parameter_names() if n not in global_parameter_names]
    branch_ids = tree.get_branch_node_ids()
    if not branch_ids:
        raise ValueError("Tree has no branch")

    shared_globals = []
    for i, node_id in enumerate(branch_ids):
        names = list(model.get_parameter_names()) if i == 0 else local_names
        model_index = model_set.add_model(copy.deepcopy(model), [node_id], names)
        if i == 0:
            shared_globals = [
                model_set.get_parameter_index(f"{name}_1") for name in global_parameter_names
            ]
        else:
            for parameter_index in shared_globals:
                model_set.set_parameter_to_model(parameter_index, model_index)
    model_set.set_model_to_node(model_set.get_model_index_for_node(branch_ids[0]), tree.root.id)
    return model_set
