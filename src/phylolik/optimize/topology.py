"""
Nearest neighbor interchange (NNI) search of tree topologies.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..core.parameters import ParameterList
from ..exceptions import UnknownOptimizationMethodError

logger = logging.getLogger(__name__)

NNI_FAST = "fast"
NNI_BETTER = "better"
NNI_METHODS = (NNI_FAST, NNI_BETTER)


@dataclass
class TopologyChangeEvent:
    """
    A tested or accepted NNI move.

    Attributes
    ----------
    search : NNITopologySearch
        Search that produced the event
    node_id : int
        Node below the central branch of the move
    child_index : int
        Child of ``node_id`` swapped with its sibling
    delta : float
        Change of -lnL produced by the move
    """

    search: "NNITopologySearch"
    node_id: int
    child_index: int
    delta: float


class TopologyListener:
    """Receives notifications from a topology search. Subclass and override."""

    def topology_change_tested(self, event: TopologyChangeEvent) -> None:
        pass

    def topology_change_successful(self, event: TopologyChangeEvent) -> None:
        pass


class NNITopologySearch:
    """
    Hill climbing over NNI moves.

    Parameters
    ----------
    likelihood : PhyloLikelihood
        Likelihood whose tree is rearranged in place
    method : str
        ``"fast"`` applies every improving move met during a pass,
        ``"better"`` applies only the best move of each pass
    tolerance : float
        Minimal decrease of -lnL for a move to count as an improvement
    max_passes : int
        Upper bound on the number of passes over the tree
    """

    def __init__(
        self,
        likelihood,
        method: str = NNI_FAST,
        tolerance: float = 1e-6,
        max_passes: int = 1000,
    ):
        if method not in NNI_METHODS:
            raise UnknownOptimizationMethodError(method, NNI_METHODS)
        self.likelihood = likelihood
        self.method = method
        self.tolerance = tolerance
        self.max_passes = max_passes
        self._listeners: list[TopologyListener] = []
        self.n_moves = 0

    def add_topology_listener(self, listener: TopologyListener) -> None:
        self._listeners.append(listener)

    def get_likelihood(self):
        return self.likelihood

    def _test(self, node_id: int, child_index: int) -> float:
        delta = self.likelihood.test_nni(node_id, child_index)
        event = TopologyChangeEvent(self, node_id, child_index, delta)
        for listener in self._listeners:
            listener.topology_change_tested(event)
        return delta

    def _accept(self, node_id: int, child_index: int, delta: float) -> None:
        self.likelihood.do_nni(node_id, child_index)
        self.n_moves += 1
        logger.info(
            "NNI on node %d (child %d): -lnL = %.6f", node_id, child_index, self.likelihood.get_value()
        )
        event = TopologyChangeEvent(self, node_id, child_index, delta)
        for listener in self._listeners:
            listener.topology_change_successful(event)

    def _fast_pass(self) -> bool:
        improved = False
        for node_id, child_index in self.likelihood.get_tree().nni_moves():
            delta = self._test(node_id, child_index)
            if delta < -self.tolerance:
                self._accept(node_id, child_index, delta)
                improved = True
        return improved

    def _better_pass(self) -> bool:
        best: Optional[tuple[float, int, int]] = None
        for node_id, child_index in self.likelihood.get_tree().nni_moves():
            delta = self._test(node_id, child_index)
            if best is None or delta < best[0]:
                best = (delta, node_id, child_index)
        if best is None or best[0] >= -self.tolerance:
            return False
        self._accept(best[1], best[2], best[0])
        return True

    def search(self) -> int:
        """Run passes until none improves the likelihood; return the number of moves."""
        self.n_moves = 0
        one_pass = self._fast_pass if self.method == NNI_FAST else self._better_pass
        for n_pass in range(1, self.max_passes + 1):
            if not one_pass():
                logger.debug("NNI search converged after %d passes", n_pass)
                break
        else:
            logger.warning("NNI search stopped after %d passes", self.max_passes)
        return self.n_moves


class NNITopologyListener(TopologyListener):
    """
    Re-optimizes the numerical parameters every ``n_step`` accepted moves.

    Parameters
    ----------
    search : NNITopologySearch
        Search whose likelihood is optimized
    parameters : ParameterList
        Parameters to optimize; values are refreshed from the likelihood
        before each optimization
    tolerance : float
        Optimization tolerance
    max_evaluations : int
        Evaluation budget of each optimization
    n_step : int
        Number of accepted moves between two optimizations
    method : str
        Optimization method, ``"newton"`` or ``"gradient"``
    reparametrization : bool
        Optimize on an unconstrained scale
    nan_log_path : str
        Diagnostic file written when the likelihood becomes NaN
    """

    def __init__(
        self,
        search: NNITopologySearch,
        parameters: ParameterList,
        tolerance: float = 1e-6,
        max_evaluations: int = 1_000_000,
        n_step: int = 1,
        method: str = "newton",
        reparametrization: bool = False,
        nan_log_path: str = "DEBUG.LOG",
    ):
        self.search = search
        self.parameters = parameters.copy()
        self.tolerance = tolerance
        self.max_evaluations = max_evaluations
        self.optimize_counter = n_step
        self.method = method
        self.reparametrization = reparametrization
        self.nan_log_path = nan_log_path
        self.counter = 0

    def set_numerical_optimization_counter(self, n: int) -> None:
        self.optimize_counter = n

    def _optimize(self, likelihood) -> int:
        from .tools import optimize_numerical_parameters

        return optimize_numerical_parameters(
            likelihood,
            self.parameters,
            tolerance=self.tolerance,
            max_evaluations=self.max_evaluations,
            reparametrization=self.reparametrization,
            method=self.method,
            nan_log_path=self.nan_log_path,
        )

    def topology_change_successful(self, event: TopologyChangeEvent) -> None:
        self.counter += 1
        if self.counter == self.optimize_counter:
            likelihood = self.search.get_likelihood()
            self.parameters.match_parameters_values(likelihood.get_parameters())
            self._optimize(likelihood)
            self.counter = 0


class NNITopologyListener2(NNITopologyListener):
    """Same as :class:`NNITopologyListener` with single-optimizer re-optimization."""

    def _optimize(self, likelihood) -> int:
        from .tools import optimize_numerical_parameters2

        return optimize_numerical_parameters2(
            likelihood,
            self.parameters,
            tolerance=self.tolerance,
            max_evaluations=self.max_evaluations,
            reparametrization=self.reparametrization,
            method=self.method,
            nan_log_path=self.nan_log_path,
        )
