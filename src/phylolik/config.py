"""
Options resolved from key/value maps.

Values may be given as strings (as read from an option file or a command
line) or already typed. Invalid values raise
:class:`~phylolik.exceptions.ConfigurationError` naming the offending key.
"""

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from .exceptions import ConfigurationError

MODEL_PARAMETER_KEYS = (
    "kappa", "kappa1", "kappa2", "theta", "theta1", "theta2", "a", "b", "c", "d", "e",
)

_TRUE = {"true", "yes", "1", "on"}
_FALSE = {"false", "no", "0", "off"}


def _get_bool(params: Mapping[str, Any], key: str, default: bool) -> bool:
    value = params.get(key, default)
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigurationError(f"'{key}' must be a boolean, got {value!r}", key)


def _get_float(params: Mapping[str, Any], key: str, default: Optional[float]) -> Optional[float]:
    value = params.get(key, default)
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"'{key}' must be a number, got {value!r}", key) from None


def _get_int(params: Mapping[str, Any], key: str, default: int) -> int:
    value = params.get(key, default)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"'{key}' must be an integer, got {value!r}", key) from None
    if number != int(number):
        raise ConfigurationError(f"'{key}' must be an integer, got {value!r}", key)
    return int(number)


def _get_choice(params: Mapping[str, Any], key: str, default: str, choices) -> str:
    value = str(params.get(key, default)).strip()
    if value.lower() not in choices:
        raise ConfigurationError(
            f"'{key}' must be one of {sorted(choices)}, got {value!r}", key
        )
    return value.lower()


@dataclass
class ModelOptions:
    """
    Substitution model and rate distribution settings.

    Attributes
    ----------
    model : str
        Model name, see :data:`phylolik.models.factory.MODELS`
    parameters : dict[str, float]
        Initial values of model parameters given explicitly
    use_observed_freq : bool
        Set equilibrium frequencies from the data
    rate_distribution : str
        ``"constant"`` or ``"gamma"``
    alpha : float
        Gamma shape
    n_categories : int
        Number of gamma categories
    """

    model: str = "JC69"
    parameters: dict[str, float] = field(default_factory=dict)
    use_observed_freq: bool = False
    rate_distribution: str = "constant"
    alpha: float = 1.0
    n_categories: int = 4

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "ModelOptions":
        """
        Keys: ``model``, model parameters (``kappa``, ``theta``, ``a`` ...),
        ``model.use_observed_freq``, ``rate_distribution``,
        ``rate_distribution.alpha``, ``rate_distribution.classes_number``.
        """
        parameters = {}
        for key in MODEL_PARAMETER_KEYS:
            if key in params:
                parameters[key] = _get_float(params, key, None)
        n_categories = _get_int(params, "rate_distribution.classes_number", 4)
        if n_categories < 1:
            raise ConfigurationError(
                f"'rate_distribution.classes_number' must be at least 1, got {n_categories}",
                "rate_distribution.classes_number",
            )
        alpha = _get_float(params, "rate_distribution.alpha", 1.0)
        if alpha <= 0:
            raise ConfigurationError(
                f"'rate_distribution.alpha' must be positive, got {alpha}",
                "rate_distribution.alpha",
            )
        return cls(
            model=str(params.get("model", "JC69")).strip(),
            parameters=parameters,
            use_observed_freq=_get_bool(params, "model.use_observed_freq", False),
            rate_distribution=_get_choice(
                params, "rate_distribution", "constant", {"constant", "gamma"}
            ),
            alpha=alpha,
            n_categories=n_categories,
        )


@dataclass
class OptimizationOptions:
    """
    Settings of :func:`phylolik.optimize.tools.optimize_parameters`.

    Attributes mirror the ``optimization.*`` keys read by :meth:`from_params`.
    """

    optimize: bool = True
    method: str = "newton"
    tolerance: float = 1e-6
    max_evaluations: int = 1_000_000
    scale_first: bool = False
    ignore_parameters: list[str] = field(default_factory=list)
    reparametrization: bool = False
    n_step: int = 0
    topology: bool = False
    nni_method: str = "fast"
    topology_num_first: bool = True
    topology_tolerance_before: float = 100.0
    topology_tolerance_during: float = 100.0
    topology_n_step: int = 1
    nan_log_path: str = "DEBUG.LOG"

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "OptimizationOptions":
        """
        Keys: ``optimization``, ``optimization.method``,
        ``optimization.tolerance``, ``optimization.max_number_f_eval``,
        ``optimization.scale_first``, ``optimization.ignore_parameter``,
        ``optimization.reparametrization``, ``optimization.nstep``,
        ``optimization.topology``, ``optimization.topology.algorithm_nni.method``,
        ``optimization.topology.numfirst``,
        ``optimization.topology.tolerance.before``,
        ``optimization.topology.tolerance.during``,
        ``optimization.topology.nstep``, ``optimization.nan_log``.
        """
        ignore = params.get("optimization.ignore_parameter", "")
        if isinstance(ignore, str):
            ignore = [name.strip() for name in ignore.split(",") if name.strip()]
        else:
            ignore = list(ignore)

        options = cls(
            optimize=_get_bool(params, "optimization", True),
            method=_get_choice(params, "optimization.method", "newton", {"newton", "gradient"}),
            tolerance=_get_float(params, "optimization.tolerance", 1e-6),
            max_evaluations=_get_int(params, "optimization.max_number_f_eval", 1_000_000),
            scale_first=_get_bool(params, "optimization.scale_first", False),
            ignore_parameters=ignore,
            reparametrization=_get_bool(params, "optimization.reparametrization", False),
            n_step=_get_int(params, "optimization.nstep", 0),
            topology=_get_bool(params, "optimization.topology", False),
            nni_method=_get_choice(
                params, "optimization.topology.algorithm_nni.method", "fast", {"fast", "better"}
            ),
            topology_num_first=_get_bool(params, "optimization.topology.numfirst", True),
            topology_tolerance_before=_get_float(
                params, "optimization.topology.tolerance.before", 100.0
            ),
            topology_tolerance_during=_get_float(
                params, "optimization.topology.tolerance.during", 100.0
            ),
            topology_n_step=_get_int(params, "optimization.topology.nstep", 1),
            nan_log_path=str(params.get("optimization.nan_log", "DEBUG.LOG")),
        )
        for key, value in (
            ("optimization.tolerance", options.tolerance),
            ("optimization.max_number_f_eval", options.max_evaluations),
            ("optimization.topology.nstep", options.topology_n_step),
        ):
            if value <= 0:
                raise ConfigurationError(f"'{key}' must be positive, got {value}", key)
        if options.n_step < 0:
            raise ConfigurationError(
                f"'optimization.nstep' must be non-negative, got {options.n_step}",
                "optimization.nstep",
            )
        return options
