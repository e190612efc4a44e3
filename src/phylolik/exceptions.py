"""
Exception types raised by phylolik.

Every error derives from a builtin exception so that callers catching
``ValueError``, ``KeyError`` or ``IndexError`` keep working.
"""

from typing import Optional


class PhyloLikError(Exception):
    """Base class for all phylolik errors."""


class ConfigurationError(PhyloLikError, ValueError):
    """Invalid configuration value or unsupported combination of options."""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


class UnknownModelError(ConfigurationError):
    """Requested substitution model or rate distribution is not registered."""

    def __init__(self, name: str, available=()):
        message = f"Unknown model '{name}'"
        if available:
            message += f". Available: {', '.join(sorted(available))}"
        super().__init__(message, key="model")
        self.name = name


class UnknownOptimizationMethodError(ConfigurationError):
    """Requested optimization or topology search method does not exist."""

    def __init__(self, method: str, available=()):
        message = f"Unknown optimization method '{method}'"
        if available:
            message += f". Available: {', '.join(sorted(available))}"
        super().__init__(message, key="optimization.method")
        self.method = method


class AlphabetMismatchError(PhyloLikError, ValueError):
    """A component does not share the alphabet (or state count) expected."""


class FrequenciesError(PhyloLikError, ValueError):
    """Malformed frequency vector (wrong length, negative entries, bad sum)."""


class ParameterArityError(PhyloLikError, ValueError):
    """Function received a parameter list of the wrong size."""

    def __init__(self, expected: int, got: int):
        super().__init__(f"Expected {expected} parameter(s), got {got}")
        self.expected = expected
        self.got = got


class ConstraintError(PhyloLikError, ValueError):
    """A parameter value violates its constraint."""

    def __init__(self, name: str, value: float, constraint=None):
        message = f"Value {value!r} is not valid for parameter '{name}'"
        if constraint is not None:
            message += f" (constraint {constraint})"
        super().__init__(message)
        self.name = name
        self.value = value


class ParameterExistsError(PhyloLikError, ValueError):
    """A parameter with the same name is already present in the list."""

    def __init__(self, name: str):
        super().__init__(f"Parameter '{name}' already exists")
        self.name = name


class ParameterNotFoundError(PhyloLikError, KeyError):
    """Lookup of a parameter name that does not exist."""

    def __init__(self, name: str, message: Optional[str] = None):
        super().__init__(message or f"Parameter '{name}' not found")
        self.name = name

    def __str__(self) -> str:
        return str(self.args[0])


class NodeNotFoundError(PhyloLikError, KeyError):
    """Lookup of a node id that does not exist or has no associated model."""

    def __init__(self, node_id: int, message: Optional[str] = None):
        super().__init__(message or f"Node {node_id} not found")
        self.node_id = node_id

    def __str__(self) -> str:
        return str(self.args[0])


class IndexOutOfBoundsError(PhyloLikError, IndexError):
    """Index outside the valid range [lower, upper]."""

    def __init__(self, what: str, index: int, lower: int, upper: int):
        super().__init__(f"{what}: index {index} out of bounds [{lower}, {upper}]")
        self.index = index
        self.lower = lower
        self.upper = upper


class ModelSetConsistencyError(PhyloLikError):
    """Structural mutation would leave a model set in an inconsistent state."""


class NaNLikelihoodError(PhyloLikError, ArithmeticError):
    """Likelihood evaluated to NaN; diagnostics were written to ``dump_path``."""

    def __init__(self, message: str, dump_path=None):
        super().__init__(message)
        self.dump_path = dump_path
