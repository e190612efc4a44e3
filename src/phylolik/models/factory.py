"""
Construction of models and rate distributions from options.
"""

import logging
import warnings
from typing import Callable, Optional

from ..config import ModelOptions
from ..core.parameters import Parameter, ParameterList
from ..exceptions import ConfigurationError, ConstraintError, UnknownModelError
from ..io.sequences import PROTEIN, Alignment, Alphabet
from .base import SubstitutionModel
from .nucleotide import GTR, HKY85, K80, T92, TN93, JCModel
from .rate_distribution import ConstantDistribution, DiscreteDistribution, GammaDiscreteDistribution

logger = logging.getLogger(__name__)


def _nucleotide_jc(alphabet: Alphabet) -> SubstitutionModel:
    if alphabet.size != 4:
        raise ConfigurationError(
            f"JC69 is a nucleotide model, alphabet {alphabet.name} has {alphabet.size} states",
            "model",
        )
    return JCModel(alphabet)


def _protein_jc(alphabet: Alphabet) -> SubstitutionModel:
    if alphabet != PROTEIN:
        raise ConfigurationError(f"JCprot needs the protein alphabet, got {alphabet.name}", "model")
    return JCModel(alphabet)


MODELS: dict[str, Callable[[Alphabet], SubstitutionModel]] = {
    "JC69": _nucleotide_jc,
    "JCnuc": _nucleotide_jc,
    "JCprot": _protein_jc,
    "K80": lambda alphabet: K80(alphabet=alphabet),
    "T92": lambda alphabet: T92(alphabet=alphabet),
    "HKY85": lambda alphabet: HKY85(alphabet=alphabet),
    "TN93": lambda alphabet: TN93(alphabet=alphabet),
    "GTR": lambda alphabet: GTR(alphabet=alphabet),
}

RATE_DISTRIBUTIONS = ("constant", "gamma")


def get_substitution_model(
    alphabet: Alphabet,
    options: ModelOptions,
    data: Optional[Alignment] = None,
) -> SubstitutionModel:
    """
    Build the model named in ``options``.

    Parameters
    ----------
    alphabet : Alphabet
        Alphabet of the model
    options : ModelOptions
        Model name, initial parameter values, frequency settings
    data : Alignment, optional
        Required when ``options.use_observed_freq`` is set

    Raises
    ------
    UnknownModelError
        If the model name is not registered.
    ConfigurationError
        If a parameter value is invalid or observed frequencies are requested
        without data.
    """
    if options.model not in MODELS:
        raise UnknownModelError(options.model, sorted(MODELS))
    model = MODELS[options.model](alphabet)

    values = ParameterList()
    for name, value in options.parameters.items():
        if model.has_parameter(name):
            values.add_parameter(Parameter(name, value))
        else:
            warnings.warn(f"Model {model.get_name()} has no parameter '{name}', ignored", UserWarning)
    try:
        model.match_parameters_values(values)
    except ConstraintError as error:
        raise ConfigurationError(str(error), error.name) from error

    if options.use_observed_freq:
        if data is None:
            raise ConfigurationError(
                "Observed frequencies requested but no data given", "model.use_observed_freq"
            )
        model.set_freq_from_data(data)
    logger.debug("Built model %r", model)
    return model


def get_rate_distribution(options: ModelOptions) -> DiscreteDistribution:
    if options.rate_distribution == "constant":
        return ConstantDistribution()
    if options.rate_distribution == "gamma":
        return GammaDiscreteDistribution(options.n_categories, options.alpha)
    raise UnknownModelError(options.rate_distribution, RATE_DISTRIBUTIONS)
