"""
End-to-end estimation on simulated data: numerical optimization, tree
scaling, NNI search and distance trees.
"""

import numpy as np
import pytest

from phylolik.config import OptimizationOptions
from phylolik.core.phylo_likelihood import PhyloLikelihood
from phylolik.distance import (
    DISTANCEMETHOD_INIT,
    DISTANCEMETHOD_ITERATIONS,
    DISTANCEMETHOD_PAIRWISE,
    UPGMA,
    DistanceEstimation,
    NeighborJoining,
    build_distance_tree,
)
from phylolik.exceptions import ConfigurationError, UnknownOptimizationMethodError
from phylolik.io.sequences import DNA, Alignment
from phylolik.io.trees import Tree
from phylolik.models.model_set import create_non_homogeneous_model_set
from phylolik.models.nucleotide import HKY85, K80, JCModel
from phylolik.models.rate_distribution import GammaDiscreteDistribution
from phylolik.optimize.tools import (
    optimize_branch_lengths_parameters,
    optimize_numerical_parameters,
    optimize_numerical_parameters2,
    optimize_parameters,
    optimize_tree_nni,
    optimize_tree_nni2,
    optimize_tree_scale,
    resolve_parameters_to_optimize,
)

TRUE_NEWICK = "((A:0.10,B:0.12):0.05,(C:0.08,D:0.15):0.07,E:0.20);"


@pytest.fixture(scope="module")
def large_alignment(simulate):
    tree = Tree.from_newick(TRUE_NEWICK)
    return simulate(tree, HKY85(kappa=3.0, freqs=[0.3, 0.2, 0.2, 0.3]), 1500, seed=11)


def k80_likelihood(newick, alignment, kappa=1.0, rates=None):
    return PhyloLikelihood(Tree.from_newick(newick), alignment, K80(kappa=kappa), rates)


class TestNumericalOptimization:

    def test_methods_agree(self, five_taxa_alignment):
        values = []
        for method in ("newton", "gradient"):
            likelihood = k80_likelihood(TRUE_NEWICK, five_taxa_alignment)
            start = likelihood.get_value()
            optimize_numerical_parameters(likelihood, method=method, tolerance=1e-9)
            assert likelihood.get_value() < start
            values.append(likelihood.get_value())

        assert values[0] == pytest.approx(values[1], abs=1e-6)

    def test_star_tree_branch_lengths_agree(self, three_taxa_tree, three_taxa_alignment):
        """Gradient and Newton reach the same optimum from unit branch lengths."""
        values = []
        for method in ("gradient", "newton"):
            likelihood = PhyloLikelihood(three_taxa_tree.copy(), three_taxa_alignment, JCModel(DNA))
            optimize_branch_lengths_parameters(likelihood, tolerance=1e-10, method=method)
            values.append(likelihood.get_log_likelihood())

        assert values[0] == pytest.approx(values[1], abs=1e-6)

    def test_single_optimizer_agrees(self, five_taxa_alignment):
        meta = k80_likelihood(TRUE_NEWICK, five_taxa_alignment)
        optimize_numerical_parameters(meta, tolerance=1e-6)
        joint = k80_likelihood(TRUE_NEWICK, five_taxa_alignment)
        optimize_numerical_parameters2(joint, tolerance=1e-6)

        assert joint.get_value() == pytest.approx(meta.get_value(), abs=5e-2)

    def test_kappa_estimate(self, large_alignment):
        likelihood = k80_likelihood(TRUE_NEWICK, large_alignment)
        optimize_numerical_parameters(likelihood, tolerance=1e-4)

        assert 2.0 < likelihood.get_parameter_value("kappa") < 4.5
        assert likelihood.get_model().get_parameter_value("kappa") == likelihood.get_parameter_value("kappa")

    def test_gamma_and_reparametrization(self, five_taxa_alignment):
        likelihood = k80_likelihood(
            TRUE_NEWICK, five_taxa_alignment, rates=GammaDiscreteDistribution(4, 1.0)
        )
        start = likelihood.get_value()
        optimize_numerical_parameters(likelihood, tolerance=1e-4, reparametrization=True)

        assert likelihood.get_value() < start
        assert likelihood.get_parameter_value("Gamma.alpha") > 0
        for parameter in likelihood.get_branch_lengths_parameters():
            assert parameter.value >= 1e-6

    def test_model_set(self, five_taxa_alignment):
        tree = Tree.from_newick(TRUE_NEWICK)
        model_set = create_non_homogeneous_model_set(K80(), None, tree, [])
        likelihood = PhyloLikelihood(tree, five_taxa_alignment, model_set)
        start = likelihood.get_value()
        optimize_numerical_parameters(likelihood, tolerance=1e-3, n_step=2)

        assert likelihood.get_value() < start
        assert model_set.get_parameter_value("kappa_1") != 1.0

    def test_n_step_limits_cycles(self, five_taxa_alignment):
        one = k80_likelihood(TRUE_NEWICK, five_taxa_alignment)
        n_one = optimize_numerical_parameters(one, n_step=1)
        full = k80_likelihood(TRUE_NEWICK, five_taxa_alignment)
        n_full = optimize_numerical_parameters(full)

        assert n_one <= n_full
        assert full.get_value() <= one.get_value() + 1e-6

    def test_branch_lengths_only(self, five_taxa_alignment):
        likelihood = k80_likelihood(TRUE_NEWICK, five_taxa_alignment, kappa=2.0)
        start = likelihood.get_value()
        n_eval = optimize_branch_lengths_parameters(likelihood)

        assert n_eval > 0
        assert likelihood.get_value() < start
        assert likelihood.get_parameter_value("kappa") == 2.0

    def test_unknown_method(self, five_taxa_alignment):
        likelihood = k80_likelihood(TRUE_NEWICK, five_taxa_alignment)

        with pytest.raises(UnknownOptimizationMethodError):
            optimize_numerical_parameters(likelihood, method="bfgs")


class TestTreeScale:

    # Every leaf carries two private substitutions, so the optimal star tree
    # has equal branch lengths and is a rescaling of the unit star
    SYMMETRIC = {
        "A": "ACGTCGATAT",
        "B": "ACGTATCGAT",
        "C": "ACGTATATCG",
    }

    def test_starting_scale_does_not_matter(self):
        alignment = Alignment.from_sequences(self.SYMMETRIC)
        values, lengths = [], []
        for factor, interval in ((0.2, (-0.5, 0.5)), (3.0, (-2.0, -1.0))):
            tree = Tree.from_newick("(A:1.0,B:1.0,C:1.0);")
            tree.scale(factor)
            likelihood = PhyloLikelihood(tree, alignment, JCModel(DNA))
            optimize_tree_scale(likelihood, tolerance=1e-8, initial_interval=interval)
            values.append(likelihood.get_log_likelihood())
            lengths.append(tree.total_length())

        assert values[0] == pytest.approx(values[1], abs=1e-6)
        assert lengths[0] == pytest.approx(lengths[1], rel=1e-3)

    def test_matches_branch_length_optimization(self):
        alignment = Alignment.from_sequences(self.SYMMETRIC)
        scaled = PhyloLikelihood(Tree.from_newick("(A:1.0,B:1.0,C:1.0);"), alignment, JCModel(DNA))
        optimize_tree_scale(scaled, tolerance=1e-8)
        free = PhyloLikelihood(Tree.from_newick("(A:1.0,B:1.0,C:1.0);"), alignment, JCModel(DNA))
        optimize_branch_lengths_parameters(free, tolerance=1e-10)

        assert scaled.get_log_likelihood() == pytest.approx(free.get_log_likelihood(), abs=1e-6)
        np.testing.assert_allclose(
            free.get_branch_lengths_parameters().get_values(),
            scaled.get_tree().find_leaf("A").branch_length,
            rtol=1e-3,
        )

    def test_rescales_inflated_tree(self, five_taxa_alignment):
        tree = Tree.from_newick(TRUE_NEWICK)
        tree.scale(5.0)
        likelihood = PhyloLikelihood(tree, five_taxa_alignment, K80(kappa=3.0))
        start = likelihood.get_value()

        optimize_tree_scale(likelihood)

        assert likelihood.get_value() < start
        assert tree.total_length() < 0.5 * 5.0 * 0.77

    def test_ratios_kept(self, five_taxa_alignment):
        likelihood = k80_likelihood(TRUE_NEWICK, five_taxa_alignment, kappa=3.0)
        optimize_tree_scale(likelihood)
        tree = likelihood.get_tree()

        assert tree.find_leaf("B").branch_length / tree.find_leaf("A").branch_length == pytest.approx(1.2)


class TestTopologySearch:

    # One NNI away from the simulated tree
    WRONG_NEWICK = "((A:0.10,(C:0.08,D:0.15):0.07):0.05,B:0.12,E:0.20);"

    @pytest.mark.parametrize("search", [optimize_tree_nni, optimize_tree_nni2])
    def test_recovers_topology(self, search, five_taxa_alignment):
        likelihood = k80_likelihood(self.WRONG_NEWICK, five_taxa_alignment)
        start = likelihood.get_value()

        result = search(likelihood, tol_before=1e-2, tol_during=1e-2)

        assert result is likelihood
        assert likelihood.get_value() < start
        assert likelihood.get_tree().robinson_foulds_distance(Tree.from_newick(TRUE_NEWICK)) == 0

    def test_better_method(self, five_taxa_alignment):
        likelihood = k80_likelihood(self.WRONG_NEWICK, five_taxa_alignment)
        optimize_tree_nni(likelihood, nni_method="better", optimize_num_first=False)

        assert likelihood.get_tree().robinson_foulds_distance(Tree.from_newick(TRUE_NEWICK)) == 0


class TestOptimizeParameters:

    def test_disabled(self, five_taxa_alignment):
        likelihood = k80_likelihood(TRUE_NEWICK, five_taxa_alignment)
        start = likelihood.get_value()
        optimize_parameters(likelihood, OptimizationOptions(optimize=False))

        assert likelihood.get_value() == start

    def test_ignored_branch_lengths(self, five_taxa_alignment):
        likelihood = k80_likelihood(TRUE_NEWICK, five_taxa_alignment)
        lengths = likelihood.get_branch_lengths_parameters().get_values()
        options = OptimizationOptions.from_params({"optimization.ignore_parameter": "BrLen"})

        optimize_parameters(likelihood, options)

        np.testing.assert_array_equal(likelihood.get_branch_lengths_parameters().get_values(), lengths)
        assert likelihood.get_parameter_value("kappa") != 1.0

    def test_scale_and_topology(self, five_taxa_alignment):
        likelihood = k80_likelihood(TestTopologySearch.WRONG_NEWICK, five_taxa_alignment)
        options = OptimizationOptions(
            scale_first=True,
            topology=True,
            topology_tolerance_before=1e-2,
            topology_tolerance_during=1e-2,
        )

        result = optimize_parameters(likelihood, options)

        assert result.get_tree().robinson_foulds_distance(Tree.from_newick(TRUE_NEWICK)) == 0

    def test_unknown_ignored_name_warns(self, five_taxa_alignment):
        likelihood = k80_likelihood(TRUE_NEWICK, five_taxa_alignment)

        with pytest.warns(UserWarning, match="omega"):
            parameters = resolve_parameters_to_optimize(likelihood, ["omega", "Model"])

        assert "kappa" not in parameters
        assert "BrLen1" in parameters


class TestDistanceTree:

    @pytest.mark.parametrize(
        "param", [DISTANCEMETHOD_INIT, DISTANCEMETHOD_PAIRWISE, DISTANCEMETHOD_ITERATIONS]
    )
    def test_recovers_topology(self, param, large_alignment):
        estimation = DistanceEstimation(K80(kappa=3.0), alignment=large_alignment)
        tree = build_distance_tree(estimation, NeighborJoining(), param=param, tolerance=1e-3)

        assert tree.robinson_foulds_distance(Tree.from_newick(TRUE_NEWICK)) == 0
        assert len(tree.root.children) == 3

    def test_iterations_estimate_model(self, large_alignment):
        model = K80(kappa=1.0)
        estimation = DistanceEstimation(model, alignment=large_alignment)
        build_distance_tree(estimation, NeighborJoining(), param=DISTANCEMETHOD_ITERATIONS, tolerance=1e-3)

        assert 2.0 < model.get_parameter_value("kappa") < 4.5

    def test_ignored_model_parameters(self, large_alignment):
        model = K80(kappa=1.0)
        estimation = DistanceEstimation(model, alignment=large_alignment)
        build_distance_tree(
            estimation, NeighborJoining(), parameters_to_ignore=["kappa"],
            param=DISTANCEMETHOD_ITERATIONS, tolerance=1e-3,
        )

        assert model.get_parameter_value("kappa") == 1.0

    def test_pairwise_keeps_model(self, large_alignment):
        model = K80(kappa=1.0)
        estimation = DistanceEstimation(model, alignment=large_alignment)
        build_distance_tree(estimation, NeighborJoining(), param=DISTANCEMETHOD_PAIRWISE)

        assert model.get_parameter_value("kappa") == 1.0
        assert estimation.get_additional_parameters().get_parameter_names() == ["kappa"]

    def test_rooted_upgma(self, large_alignment):
        estimation = DistanceEstimation(K80(kappa=3.0), alignment=large_alignment)
        tree = build_distance_tree(estimation, UPGMA(), rooted=True)

        assert len(tree.root.children) == 2
        assert tree.n_leaves == 5

    def test_unknown_mode(self, large_alignment):
        estimation = DistanceEstimation(K80(), alignment=large_alignment)

        with pytest.raises(ConfigurationError):
            build_distance_tree(estimation, NeighborJoining(), param="bootstrap")
