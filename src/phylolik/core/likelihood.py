"""
Felsenstein pruning over site patterns with per-node rescaling.

Conditional likelihoods are stored per node as arrays indexed
[pattern, class, state]. A class is one combination of mixture component and
rate category. Each internal node keeps its partials rescaled so that the
largest entry of every (pattern, class) is 1, and remembers the log of the
factors it removed.

Only nodes marked dirty are recomputed. A changed transition matrix dirties
the path from the branch to the root, a topology change dirties the edited
nodes and their ancestors. Results do not depend on which path was taken.
"""

from typing import Iterable, Optional

import numpy as np
from scipy.special import logsumexp

from ..io.trees import Tree, TreeNode
from .sites import SitePatterns


class TreeLikelihoodCalculation:
    """
    Likelihood recursion for one tree and one set of site patterns.

    Parameters
    ----------
    tree : Tree
        Tree whose leaf names match ``patterns.names``
    patterns : SitePatterns
        Compressed alignment
    n_states : int
        Number of states of the alphabet
    n_classes : int
        Number of site classes (components x rate categories)
    """

    def __init__(self, tree: Tree, patterns: SitePatterns, n_states: int, n_classes: int):
        if tree.root.is_leaf:
            raise ValueError("Likelihood needs a tree with at least one branch")
        self.tree = tree
        self.patterns = patterns
        self.n_states = n_states
        self.n_classes = n_classes

        n_patterns = patterns.n_patterns
        rows = {name: i for i, name in enumerate(patterns.names)}

        self._partials: dict[int, np.ndarray] = {}
        self._log_scales: dict[int, np.ndarray] = {}
        self._local_log_scales: dict[int, np.ndarray] = {}
        self._messages: dict[int, np.ndarray] = {}
        self._probabilities: dict[int, np.ndarray] = {}

        for leaf in tree.leaves():
            states = patterns.patterns[rows[leaf.name]]
            partial = np.zeros((n_patterns, n_states))
            known = states >= 0
            partial[np.nonzero(known)[0], states[known]] = 1.0
            partial[~known] = 1.0
            self._partials[leaf.id] = np.repeat(partial[:, np.newaxis, :], n_classes, axis=1)
            self._log_scales[leaf.id] = np.zeros((n_patterns, n_classes))

        self._root_frequencies = np.full((n_classes, n_states), 1.0 / n_states)
        self._class_weights = np.full(n_classes, 1.0 / n_classes)

        self._dirty: set[int] = set()
        self._dirty_messages: set[int] = set()
        self._up_to_date = False
        self._class_log_likelihoods = np.zeros((n_patterns, n_classes))
        self._pattern_log_likelihoods = np.zeros(n_patterns)
        self._log_likelihood = 0.0
        self.topology_changed()

    # -- inputs ----------------------------------------------------------------

    def _mark_path(self, node: Optional[TreeNode]) -> None:
        while node is not None:
            self._dirty.add(node.id)
            node = node.parent
        self._up_to_date = False

    def topology_changed(self, node_ids: Optional[Iterable[int]] = None) -> None:
        """Mark edited nodes (all nodes by default) for recomputation."""
        if node_ids is None:
            self._dirty.update(n.id for n in self.tree.nodes() if not n.is_leaf)
            self._dirty_messages.update(self.tree.get_branch_node_ids())
            self._up_to_date = False
        else:
            for node_id in node_ids:
                self._mark_path(self.tree.get_node(node_id))

    def set_transition_matrices(self, node_id: int, P: np.ndarray) -> None:
        """Set the (class, state, state) transition matrices of a branch."""
        self._probabilities[node_id] = P
        self._dirty_messages.add(node_id)
        self._mark_path(self.tree.get_node(node_id).parent)

    def set_root_frequencies(self, freqs: np.ndarray) -> None:
        """Root state priors, shape (n_classes, n_states)."""
        self._root_frequencies = np.asarray(freqs, dtype=float)
        self._up_to_date = False

    def set_class_weights(self, weights: np.ndarray) -> None:
        self._class_weights = np.asarray(weights, dtype=float)
        self._up_to_date = False

    def get_class_weights(self) -> np.ndarray:
        return self._class_weights.copy()

    # -- recursion ---------------------------------------------------------------

    def _message(self, node_id: int) -> np.ndarray:
        return np.einsum('cij,pcj->pci', self._probabilities[node_id], self._partials[node_id])

    def _rescale(self, node_id: int, product: np.ndarray, child_scale: np.ndarray) -> None:
        factor = product.max(axis=2)
        factor = np.where(factor > 0, factor, 1.0)
        product /= factor[..., np.newaxis]
        local = np.log(factor)
        self._partials[node_id] = product
        self._local_log_scales[node_id] = local
        self._log_scales[node_id] = child_scale + local

    def compute_tree_likelihood(self) -> float:
        """Recompute dirty nodes and the root combination; return lnL."""
        if self._up_to_date:
            return self._log_likelihood

        recomputed = set()
        for node in self.tree.postorder():
            if node.is_leaf or node.id not in self._dirty:
                continue
            product = None
            child_scale = 0.0
            for child in node.children:
                if child.id in self._dirty_messages or child.id in recomputed:
                    self._messages[child.id] = self._message(child.id)
                message = self._messages[child.id]
                product = message.copy() if product is None else product * message
                child_scale = child_scale + self._log_scales[child.id]
            self._rescale(node.id, product, child_scale)
            recomputed.add(node.id)
        self._dirty.clear()
        self._dirty_messages.clear()

        root = self.tree.root.id
        per_class = np.einsum('pcs,cs->pc', self._partials[root], self._root_frequencies)
        with np.errstate(divide='ignore'):
            self._class_log_likelihoods = np.log(per_class) + self._log_scales[root]
            self._pattern_log_likelihoods = logsumexp(
                self._class_log_likelihoods,
                b=np.broadcast_to(self._class_weights, per_class.shape),
                axis=1,
            )
        self._log_likelihood = float(np.dot(self.patterns.weights, self._pattern_log_likelihoods))
        self._up_to_date = True
        return self._log_likelihood

    # -- outputs ---------------------------------------------------------------

    def get_log_likelihood(self) -> float:
        return self.compute_tree_likelihood()

    def get_pattern_log_likelihoods(self) -> np.ndarray:
        self.compute_tree_likelihood()
        return self._pattern_log_likelihoods.copy()

    def get_pattern_class_log_likelihoods(self) -> np.ndarray:
        """log P(pattern | class), shape (n_patterns, n_classes)."""
        self.compute_tree_likelihood()
        return self._class_log_likelihoods.copy()

    def get_pattern_state_likelihoods(self) -> np.ndarray:
        """
        Likelihood of each pattern conditional on the root state, averaged
        over classes, shape (n_patterns, n_states).
        """
        self.compute_tree_likelihood()
        root = self.tree.root.id
        scales = np.exp(self._log_scales[root]) * self._class_weights[np.newaxis, :]
        return np.einsum('pcs,pc->ps', self._partials[root], scales)

    def get_posterior_class_probabilities(self) -> np.ndarray:
        self.compute_tree_likelihood()
        with np.errstate(divide='ignore'):
            joint = self._class_log_likelihoods + np.log(self._class_weights)[np.newaxis, :]
        return np.exp(joint - self._pattern_log_likelihoods[:, np.newaxis])

    # -- branch derivatives ----------------------------------------------------

    def _propagate(self, node: TreeNode, partial: np.ndarray) -> np.ndarray:
        """
        Carry a modified partial of ``node.parent`` up to the root, using the
        cached messages of every other child and the cached scale factors.
        """
        while node.parent is not None:
            parent = node.parent
            for sibling in parent.children:
                if sibling is not node:
                    partial = partial * self._messages[sibling.id]
            partial = partial / np.exp(self._local_log_scales[parent.id])[..., np.newaxis]
            node = parent
            if node.parent is not None:
                partial = np.einsum('cij,pcj->pci', self._probabilities[node.id], partial)
        return partial

    def get_branch_derivatives(
        self, node_id: int, dP: np.ndarray, d2P: np.ndarray
    ) -> tuple[float, float]:
        """
        First and second derivatives of lnL with respect to the length of the
        branch above ``node_id``.

        Parameters
        ----------
        dP, d2P : ndarray, shape (n_classes, n_states, n_states)
            Time derivatives of the branch transition matrices

        Returns
        -------
        tuple of float
            (d lnL / dt, d² lnL / dt²)
        """
        self.compute_tree_likelihood()
        node = self.tree.get_node(node_id)
        if node.parent is None:
            raise ValueError("The root has no branch")
        child = self._partials[node_id]
        d1 = self._propagate(node, np.einsum('cij,pcj->pci', dP, child))
        d2 = self._propagate(node, np.einsum('cij,pcj->pci', d2P, child))

        root = self.tree.root.id
        scales = self._log_scales[root]
        shift = scales.max(axis=1, keepdims=True)
        weights = self._class_weights[np.newaxis, :] * np.exp(scales - shift)
        like = np.sum(weights * np.einsum('pcs,cs->pc', self._partials[root], self._root_frequencies), axis=1)
        first = np.sum(weights * np.einsum('pcs,cs->pc', d1, self._root_frequencies), axis=1) / like
        second = np.sum(weights * np.einsum('pcs,cs->pc', d2, self._root_frequencies), axis=1) / like

        w = self.patterns.weights
        return float(np.dot(w, first)), float(np.dot(w, second - first ** 2))
