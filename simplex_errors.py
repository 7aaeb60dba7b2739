# simplex_errors.py
# Custom Exception Classes shared by every solver module.
# Infeasible / unbounded / cycle-limit outcomes are statuses (see simplex.SolveStatus), not exceptions.


class SimplexError(Exception):
    """Base class for simplex-related errors."""
    pass

class DimensionMismatchError(SimplexError, ValueError):
    """Raised when rows, columns or sign lists of a problem do not line up."""
    pass

class SingularPivotError(SimplexError):
    """Raised when a pivot element is numerically zero."""
    pass

class SingularBasisError(SimplexError):
    """Raised when the basis matrix B cannot be inverted."""
    pass

class TableauCorruptionError(SimplexError):
    """Raised when the tableau appears to be in an invalid state."""
    pass

class SensitivityError(SimplexError):
    """Raised when a sensitivity query does not fit the solved tableau."""
    pass
