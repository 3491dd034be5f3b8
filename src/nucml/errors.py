"""
Exception hierarchy for nucml.

Input problems derive from ``ValueError`` and numerical failures from
``RuntimeError`` so callers catching the builtin types keep working.
"""


class NucmlError(Exception):
    """Base class for all nucml errors."""


class InvalidModelSpec(NucmlError, ValueError):
    """Malformed model symmetry string or unknown model name."""


class ParseError(NucmlError, ValueError):
    """Malformed tree or alignment input."""


class OptimizerFailure(NucmlError, RuntimeError):
    """A block optimizer or the branch-length refiner produced a non-finite objective."""


# Buffer allocation failures surface as the builtin error and are not caught
AllocationFailure = MemoryError
