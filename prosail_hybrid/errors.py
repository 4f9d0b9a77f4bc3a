"""
Exception and warning types for hybrid inversion.

ConfigurationError and ShapeMismatchError derive from ValueError, and
MissingResourceError from FileNotFoundError, so callers catching the builtin
types keep working.
"""


class HybridInversionError(Exception):
    """Base class for all hybrid inversion errors."""


class ConfigurationError(HybridInversionError, ValueError):
    """Invalid distribution spec, band selection or option value."""


class MissingResourceError(HybridInversionError, FileNotFoundError):
    """A raster, header or mask file could not be found."""


class FitFailure(HybridInversionError, RuntimeError):
    """A regression fit failed for one ensemble member."""

    def __init__(self, message: str, member: int = None, target: str = None):
        super().__init__(message)
        self.member = member
        self.target = target


class ShapeMismatchError(HybridInversionError, ValueError):
    """Feature dimensionality does not match the trained ensemble."""


class HyperparameterBoundaryWarning(UserWarning):
    """
    Hyperparameter tuning ended on the edge of its search grid.

    The message ends with a suggested bound, e.g. ``min_gamma=0.001``.
    """
