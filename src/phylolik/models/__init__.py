"""
Models of sequence evolution.

- **Substitution models**: JC69, K80, T92, HKY85, TN93, GTR
- **Frequencies sets**: parametrized root or equilibrium frequencies
- **Mixtures**: site-class mixtures of substitution models
- **Rate distributions**: constant and discretized gamma rates across sites
- **Model sets**: assignment of models to the branches of a tree
"""

from phylolik.models.base import ReversibleSubstitutionModel, SubstitutionModel
from phylolik.models.factory import get_rate_distribution, get_substitution_model
from phylolik.models.frequencies import (
    FixedFrequenciesSet,
    FrequenciesSet,
    FullFrequenciesSet,
    GCFrequenciesSet,
    MarkovModulatedFrequenciesSet,
)
from phylolik.models.mixed import MixedSubstitutionModel, MixtureOfSubstitutionModels
from phylolik.models.model_set import (
    SubstitutionModelSet,
    create_homogeneous_model_set,
    create_non_homogeneous_model_set,
)
from phylolik.models.nucleotide import GTR, HKY85, K80, T92, TN93, JCModel
from phylolik.models.rate_distribution import (
    ConstantDistribution,
    DiscreteDistribution,
    GammaDiscreteDistribution,
)

__all__ = [
    "SubstitutionModel",
    "ReversibleSubstitutionModel",
    "JCModel",
    "K80",
    "T92",
    "HKY85",
    "TN93",
    "GTR",
    "FrequenciesSet",
    "FullFrequenciesSet",
    "GCFrequenciesSet",
    "FixedFrequenciesSet",
    "MarkovModulatedFrequenciesSet",
    "MixedSubstitutionModel",
    "MixtureOfSubstitutionModels",
    "DiscreteDistribution",
    "ConstantDistribution",
    "GammaDiscreteDistribution",
    "SubstitutionModelSet",
    "create_homogeneous_model_set",
    "create_non_homogeneous_model_set",
    "get_substitution_model",
    "get_rate_distribution",
]
