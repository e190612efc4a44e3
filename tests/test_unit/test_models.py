"""
Unit tests for substitution models, frequencies sets, mixtures and rate
distributions.
"""

import warnings

import numpy as np
import pytest
from scipy.linalg import expm

from phylolik.core.matrix import check_detailed_balance
from phylolik.core.parameters import Parameter, ParameterList
from phylolik.exceptions import (
    AlphabetMismatchError,
    ConfigurationError,
    ConstraintError,
    FrequenciesError,
    IndexOutOfBoundsError,
)
from phylolik.io.sequences import DNA, PROTEIN, Alignment
from phylolik.models.base import check_frequencies
from phylolik.models.frequencies import (
    FixedFrequenciesSet,
    FullFrequenciesSet,
    GCFrequenciesSet,
    MarkovModulatedFrequenciesSet,
)
from phylolik.models.mixed import MixtureOfSubstitutionModels
from phylolik.models.nucleotide import GTR, HKY85, K80, T92, TN93, JCModel
from phylolik.models.rate_distribution import ConstantDistribution, GammaDiscreteDistribution


def all_models():
    return [
        JCModel(DNA),
        K80(kappa=3.0),
        T92(kappa=2.0, theta=0.6),
        HKY85(kappa=2.5, freqs=[0.1, 0.2, 0.3, 0.4]),
        TN93(kappa1=2.0, kappa2=4.0, freqs=[0.35, 0.15, 0.2, 0.3]),
        GTR(a=1.2, b=3.0, c=0.5, d=0.8, e=2.5, freqs=[0.2, 0.3, 0.25, 0.25]),
    ]


class TestSubstitutionModels:
    """Properties shared by every model."""

    @pytest.mark.parametrize("model", all_models(), ids=lambda m: m.get_name())
    def test_transition_matrix_matches_expm(self, model):
        for t in (0.0, 0.01, 0.3, 2.0):
            np.testing.assert_allclose(
                model.get_Pij_t(t), expm(model.get_generator() * t), atol=1e-10
            )

    @pytest.mark.parametrize("model", all_models(), ids=lambda m: m.get_name())
    def test_rows_sum_to_one(self, model):
        np.testing.assert_allclose(model.get_Pij_t(0.7).sum(axis=1), 1.0, rtol=1e-10)
        np.testing.assert_allclose(model.get_dPij_dt(0.7).sum(axis=1), 0.0, atol=1e-10)

    @pytest.mark.parametrize("model", all_models(), ids=lambda m: m.get_name())
    def test_time_derivatives(self, model):
        t, h = 0.4, 1e-5
        numeric1 = (model.get_Pij_t(t + h) - model.get_Pij_t(t - h)) / (2 * h)
        numeric2 = (model.get_dPij_dt(t + h) - model.get_dPij_dt(t - h)) / (2 * h)

        np.testing.assert_allclose(model.get_dPij_dt(t), numeric1, atol=1e-7)
        np.testing.assert_allclose(model.get_d2Pij_dt2(t), numeric2, atol=1e-7)

    @pytest.mark.parametrize("model", all_models(), ids=lambda m: m.get_name())
    def test_normalized_rate(self, model):
        Q = model.get_generator()
        pi = model.get_frequencies()

        assert -np.dot(pi, np.diag(Q)) == pytest.approx(1.0)
        assert check_detailed_balance(Q, pi)

    @pytest.mark.parametrize("model", all_models(), ids=lambda m: m.get_name())
    def test_stationary_limit(self, model):
        P = model.get_Pij_t(200.0)

        for row in P:
            np.testing.assert_allclose(row, model.get_frequencies(), atol=1e-8)

    def test_scalar_accessors(self):
        model = K80(kappa=2.0)

        assert model.Pij_t(0, 2, 0.1) == pytest.approx(model.get_Pij_t(0.1)[0, 2])
        assert model.dPij_dt(1, 1, 0.1) == pytest.approx(model.get_dPij_dt(0.1)[1, 1])
        assert model.Qij(0, 2) == pytest.approx(model.get_generator()[0, 2])
        assert model.freq(3) == pytest.approx(0.25)


class TestJukesCantor:

    def test_analytical_values(self):
        model = JCModel(DNA)
        e = np.exp(-4.0 / 3.0 * 0.5)
        P = model.get_Pij_t(0.5)

        np.testing.assert_allclose(np.diag(P), 0.25 + 0.75 * e)
        assert P[0, 1] == pytest.approx(0.25 - 0.25 * e)

    def test_protein(self):
        model = JCModel(PROTEIN)

        assert model.get_name() == "JCprot"
        assert model.get_number_of_states() == 20
        np.testing.assert_allclose(model.get_Pij_t(1.0).sum(axis=1), 1.0)
        np.testing.assert_allclose(model.get_frequencies(), 0.05)

    def test_no_parameters(self):
        assert JCModel(DNA).get_number_of_parameters() == 0

    def test_eigen_values(self):
        values = JCModel(DNA).get_eigen_values()

        np.testing.assert_allclose(np.sort(values), [-4 / 3, -4 / 3, -4 / 3, 0.0])


class TestNucleotideModels:

    def test_kappa_changes_generator(self):
        model = K80(kappa=1.0)
        before = model.get_generator()
        model.set_parameter_value("kappa", 4.0)
        Q = model.get_generator()

        assert not np.allclose(before, Q)
        # Transitions A<->G four times as fast as transversions A<->C
        assert Q[0, 2] / Q[0, 1] == pytest.approx(4.0)

    def test_invalid_kappa(self):
        model = K80(kappa=2.0)

        with pytest.raises(ConstraintError):
            model.set_parameter_value("kappa", -1.0)
        assert model.get_parameter_value("kappa") == 2.0

    def test_hky_frequencies_round_trip(self):
        model = HKY85(kappa=2.0, freqs=[0.1, 0.2, 0.3, 0.4])

        np.testing.assert_allclose(model.get_frequencies(), [0.1, 0.2, 0.3, 0.4])
        assert model.get_parameter_names() == ["kappa", "theta", "theta1", "theta2"]
        assert model.get_parameter_value("theta") == pytest.approx(0.5)

    def test_t92_frequencies(self):
        model = T92(kappa=1.0, theta=0.6)

        np.testing.assert_allclose(model.get_frequencies(), [0.2, 0.3, 0.3, 0.2])

    def test_tn93_two_transition_rates(self):
        model = TN93(kappa1=2.0, kappa2=5.0)
        Q = model.get_generator()

        assert Q[0, 2] / Q[0, 1] == pytest.approx(2.0)
        assert Q[1, 3] / Q[1, 0] == pytest.approx(5.0)

    def test_set_freq(self):
        model = HKY85()
        model.set_freq({0: 0.4, 1: 0.1, 2: 0.1, 3: 0.4})

        np.testing.assert_allclose(model.get_frequencies(), [0.4, 0.1, 0.1, 0.4])

    def test_set_freq_from_data(self):
        model = GTR()
        aln = Alignment.from_sequences({"A": "AAAC", "B": "GTT-"})
        model.set_freq_from_data(aln)

        np.testing.assert_allclose(model.get_frequencies(), [3 / 7, 1 / 7, 1 / 7, 2 / 7])

    def test_fixed_frequencies_warn(self):
        model = K80(kappa=2.0)

        with pytest.warns(UserWarning, match="fixed equilibrium frequencies"):
            model.set_freq({0: 0.4, 1: 0.1, 2: 0.1, 3: 0.4})
        np.testing.assert_allclose(model.get_frequencies(), 0.25)

    def test_requires_nucleotides(self):
        with pytest.raises(AlphabetMismatchError):
            HKY85(alphabet=PROTEIN)

    def test_copy_is_independent(self):
        model = HKY85(kappa=2.0)
        other = model.copy()
        other.set_parameter_value("kappa", 6.0)

        assert model.get_parameter_value("kappa") == 2.0


class TestFrequencies:

    def test_check_frequencies(self):
        with pytest.raises(FrequenciesError):
            check_frequencies([0.5, 0.5], 4)
        with pytest.raises(FrequenciesError):
            check_frequencies([0.5, 0.6, -0.1, 0.0], 4)
        with pytest.raises(FrequenciesError):
            check_frequencies([0.25, 0.25, 0.25, 0.26], 4)

    def test_full_set_keeps_input(self):
        freqs = FullFrequenciesSet(DNA, [0.1, 0.2, 0.3, 0.4])

        np.testing.assert_array_equal(freqs.get_frequencies(), [0.1, 0.2, 0.3, 0.4])
        assert freqs.get_parameter_names() == ["theta1", "theta2", "theta3"]

    def test_full_set_parameters_give_valid_vector(self):
        freqs = FullFrequenciesSet(DNA, [0.1, 0.2, 0.3, 0.4], prefix="RootFreq.")
        freqs.set_parameter_value("RootFreq.theta1", 0.5)
        values = freqs.get_frequencies()

        assert values[0] == pytest.approx(0.5)
        assert values.sum() == pytest.approx(1.0)
        assert np.all(values >= 0)

    def test_gc_set(self):
        freqs = GCFrequenciesSet(DNA, theta=0.6)

        np.testing.assert_allclose(freqs.get_frequencies(), [0.2, 0.3, 0.3, 0.2])
        freqs.set_frequencies([0.1, 0.4, 0.4, 0.1])
        assert freqs.get_parameter_value("theta") == pytest.approx(0.8)

    def test_gc_requires_nucleotides(self):
        with pytest.raises(AlphabetMismatchError):
            GCFrequenciesSet(PROTEIN)

    def test_fixed_set(self):
        freqs = FixedFrequenciesSet(DNA, [0.1, 0.2, 0.3, 0.4])

        assert freqs.get_number_of_parameters() == 0
        with pytest.raises(FrequenciesError):
            freqs.set_frequencies([0.1, 0.2, 0.3, 0.3])

    def test_markov_modulated(self):
        freqs = MarkovModulatedFrequenciesSet(GCFrequenciesSet(DNA, 0.5), [0.25, 0.75])

        assert freqs.get_number_of_frequencies() == 8
        np.testing.assert_allclose(freqs.get_frequencies(), [0.0625] * 4 + [0.1875] * 4)

        freqs.set_parameter_value("theta", 0.8)
        assert freqs.get_base_frequencies_set().get_parameter_value("theta") == 0.8
        np.testing.assert_allclose(
            freqs.get_frequencies(), [0.025, 0.1, 0.1, 0.025, 0.075, 0.3, 0.3, 0.075]
        )
        assert freqs.get_frequencies().sum() == pytest.approx(1.0)

    def test_markov_modulated_rate_class_is_outer(self):
        """One block of base frequencies per rate class, matching the alphabet."""
        freqs = MarkovModulatedFrequenciesSet(FullFrequenciesSet(DNA, [0.1, 0.2, 0.3, 0.4]), [0.25, 0.75])

        np.testing.assert_allclose(
            freqs.get_frequencies(), [0.025, 0.05, 0.075, 0.1, 0.075, 0.15, 0.225, 0.3]
        )
        assert freqs.get_alphabet().letters[:4] == freqs.get_alphabet().letters[4:]

    def test_markov_modulated_set_frequencies(self):
        freqs = MarkovModulatedFrequenciesSet(GCFrequenciesSet(DNA, 0.5), [0.25, 0.75])
        freqs.set_frequencies(np.kron([0.25, 0.75], [0.1, 0.4, 0.4, 0.1]))

        assert freqs.get_parameter_value("theta") == pytest.approx(0.8)
        np.testing.assert_allclose(freqs.get_frequencies()[:4], [0.025, 0.1, 0.1, 0.025])


class TestMixture:

    def make(self):
        return MixtureOfSubstitutionModels(
            DNA, [K80(kappa=2.0), K80(kappa=5.0), JCModel(DNA)], [0.2, 0.3, 0.5]
        )

    def test_parameter_names(self):
        mixture = self.make()

        assert mixture.get_parameter_names() == ["1_kappa", "2_kappa", "relproba1", "relproba2"]

    def test_probabilities(self):
        mixture = self.make()

        np.testing.assert_allclose(mixture.get_probabilities(), [0.2, 0.3, 0.5])
        mixture.set_parameter_value("relproba1", 0.5)
        probabilities = mixture.get_probabilities()
        assert probabilities[0] == pytest.approx(0.5)
        assert probabilities.sum() == pytest.approx(1.0)

    def test_sub_model_parameters_propagate(self):
        mixture = self.make()
        mixture.set_parameter_value("2_kappa", 7.0)

        assert mixture.get_n_model(1).get_parameter_value("kappa") == 7.0
        assert mixture.get_n_model(0).get_parameter_value("kappa") == 2.0

    def test_weighted_transition_matrix(self):
        mixture = self.make()
        expected = sum(
            mixture.get_n_probability(k) * mixture.get_n_model(k).get_Pij_t(0.3)
            for k in range(3)
        )

        np.testing.assert_allclose(mixture.get_Pij_t(0.3), expected)

    def test_no_single_generator(self):
        mixture = self.make()

        assert mixture.Qij(0, 1) == 0.0
        with pytest.warns(UserWarning):
            mixture.set_freq({0: 1.0})

    def test_index_bounds(self):
        with pytest.raises(IndexOutOfBoundsError):
            self.make().get_n_model(3)

    def test_invalid_construction(self):
        with pytest.raises(AlphabetMismatchError):
            MixtureOfSubstitutionModels(DNA, [JCModel(PROTEIN)])
        with pytest.raises(ValueError):
            MixtureOfSubstitutionModels(DNA, [K80(), K80()], [0.5, 0.6])
        with pytest.raises(ValueError):
            MixtureOfSubstitutionModels(DNA, [self.make()])


class TestRateDistributions:

    def test_constant(self):
        dist = ConstantDistribution()

        assert dist.get_number_of_categories() == 1
        assert dist.get_mean() == 1.0
        assert dist.get_number_of_parameters() == 0

    @pytest.mark.parametrize("alpha", [0.05, 0.5, 1.0, 2.0, 50.0])
    def test_gamma_mean_is_one(self, alpha):
        dist = GammaDiscreteDistribution(4, alpha)

        assert dist.get_mean() == pytest.approx(1.0, rel=1e-10)
        np.testing.assert_allclose(dist.get_probabilities(), 0.25)
        assert np.all(np.diff(dist.get_categories()) > 0)

    def test_gamma_alpha_parameter(self):
        dist = GammaDiscreteDistribution(4, 0.5)
        before = dist.get_categories()
        dist.set_parameters(ParameterList([Parameter("Gamma.alpha", 5.0)]))

        assert dist.get_parameter_value("Gamma.alpha") == 5.0
        assert dist.get_categories()[0] > before[0]

    def test_gamma_single_category(self):
        np.testing.assert_array_equal(GammaDiscreteDistribution(1, 0.3).get_categories(), [1.0])

    def test_gamma_invalid(self):
        with pytest.raises(ConfigurationError):
            GammaDiscreteDistribution(0, 1.0)
        with pytest.raises(ConfigurationError):
            GammaDiscreteDistribution(4, -1.0)
        with pytest.raises(ConstraintError):
            GammaDiscreteDistribution(4, 1.0).set_parameter_value("Gamma.alpha", 0.0)

    def test_category_bounds(self):
        with pytest.raises(IndexOutOfBoundsError):
            GammaDiscreteDistribution(4, 1.0).get_category(4)


def test_no_warning_for_free_frequency_models():
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        TN93().set_freq({0: 0.1, 1: 0.2, 2: 0.3, 3: 0.4})
