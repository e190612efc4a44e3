"""
phylolik: maximum likelihood phylogenetics on nucleotide and protein data.

Likelihood of an alignment under a tree, a substitution model (or one model
per branch) and a rate distribution, with parameter and topology
optimization.

Quick Start
-----------
>>> from phylolik import Alignment, Tree, HKY85, PhyloLikelihood
>>> from phylolik import optimize_numerical_parameters
>>> tree = Tree.from_newick("((A:0.1,B:0.2):0.05,C:0.3,D:0.25);")
>>> alignment = Alignment.from_fasta("alignment.fasta")
>>> likelihood = PhyloLikelihood(tree, alignment, HKY85(kappa=2.0))
>>> optimize_numerical_parameters(likelihood)
>>> print(likelihood.get_log_likelihood())

Build a tree from distances:

>>> from phylolik import DistanceEstimation, NeighborJoining, build_distance_tree
>>> estimation = DistanceEstimation(HKY85(), alignment=alignment)
>>> tree = build_distance_tree(estimation, NeighborJoining(), param="iterations")
"""

__version__ = "0.1.0"

from .config import ModelOptions, OptimizationOptions
from .core.phylo_likelihood import PhyloLikelihood
from .distance import (
    UPGMA,
    DistanceEstimation,
    DistanceMatrix,
    NeighborJoining,
    build_distance_tree,
)
from .exceptions import PhyloLikError
from .io.sequences import DNA, PROTEIN, RNA, Alignment, Alphabet
from .io.trees import Tree, robinson_foulds_distance
from .models import (
    GTR,
    HKY85,
    K80,
    T92,
    TN93,
    ConstantDistribution,
    GammaDiscreteDistribution,
    JCModel,
    MixtureOfSubstitutionModels,
    SubstitutionModelSet,
    create_homogeneous_model_set,
    create_non_homogeneous_model_set,
    get_rate_distribution,
    get_substitution_model,
)
from .optimize import (
    optimize_numerical_parameters,
    optimize_parameters,
    optimize_tree_nni,
    optimize_tree_scale,
)

__all__ = [
    # Data
    "Alignment",
    "Alphabet",
    "DNA",
    "RNA",
    "PROTEIN",
    "Tree",
    "robinson_foulds_distance",

    # Models
    "JCModel",
    "K80",
    "T92",
    "HKY85",
    "TN93",
    "GTR",
    "MixtureOfSubstitutionModels",
    "ConstantDistribution",
    "GammaDiscreteDistribution",
    "SubstitutionModelSet",
    "create_homogeneous_model_set",
    "create_non_homogeneous_model_set",
    "get_substitution_model",
    "get_rate_distribution",

    # Likelihood and optimization
    "PhyloLikelihood",
    "optimize_tree_scale",
    "optimize_numerical_parameters",
    "optimize_tree_nni",
    "optimize_parameters",

    # Distance methods
    "DistanceEstimation",
    "DistanceMatrix",
    "NeighborJoining",
    "UPGMA",
    "build_distance_tree",

    # Configuration and errors
    "ModelOptions",
    "OptimizationOptions",
    "PhyloLikError",

    "__version__",
]
