# utils.py
import numpy as np
from fractions import Fraction

from config import FRACTION_DIGITS, DISPLAY_DECIMALS


def limit_fraction(value, fraction_digits=FRACTION_DIGITS):
    """Limit the number of digits in a fraction's numerator and denominator."""
    if value is None or abs(float(value)) < 1e-10:
        return Fraction(0)

    try:
        frac = Fraction(value) if not isinstance(value, Fraction) else value
    except (TypeError, ValueError):
        return Fraction(0)

    max_value = 10 ** fraction_digits - 1
    n, d = frac.numerator, frac.denominator

    if abs(n) > max_value or abs(d) > max_value:
        return Fraction(float(frac)).limit_denominator(max_value)
    return frac


def format_value(value, use_fractions=False, fraction_digits=FRACTION_DIGITS, decimals=DISPLAY_DECIMALS):
    """
    Convert a number to the string used in tableau prints and reports.

    Args:
        value: The numerical value to convert.
        use_fractions: Show a limited fraction (e.g. 4/3) instead of a decimal.
        fraction_digits: Max digits for numerator/denominator.
        decimals: Decimal places when printing floats.

    Returns:
        Formatted string representation.
    """
    try:
        float_value = float(value)
    except (ValueError, TypeError):
        return str(value)

    if np.isinf(float_value):
        return "∞" if float_value > 0 else "-∞"
    if abs(float_value) < 1e-10:
        float_value = 0.0

    if not use_fractions:
        if float_value == int(float_value):
            return str(int(float_value))
        return f"{float_value:.{decimals}f}"

    frac = limit_fraction(float_value, fraction_digits)
    # Fall back to decimals when the fraction is only an approximation
    if abs(float(frac) - float_value) > 10 ** -(decimals + 2):
        return f"{float_value:.{decimals}f}"
    return str(frac)


def validate_inputs(c, A, b):
    """Validate input dimensions and values; returns (ok, message)."""
    c = np.asarray(c, dtype=float)
    b = np.asarray(b, dtype=float)
    if c.ndim != 1 or len(c) == 0:
        return False, "Objective coefficients (c) must be a non-empty 1D array."
    if b.ndim != 1:
        return False, "RHS values (b) must be a 1D array."

    n = len(c)
    for i, row in enumerate(A):
        if len(row) != n:
            return False, f"Constraint {i + 1} has {len(row)} coefficients, objective has {n}."
    if len(A) != len(b):
        return False, f"Number of constraints ({len(A)}) doesn't match RHS values ({len(b)})."

    if not np.all(np.isfinite(c)):
        return False, "Objective coefficients (c) contain non-finite values (NaN or Inf)."
    if len(A) and not np.all(np.isfinite(np.asarray(A, dtype=float))):
        return False, "Constraint matrix (A) contains non-finite values (NaN or Inf)."
    if not np.all(np.isfinite(b)):
        return False, "RHS values (b) contain non-finite values (NaN or Inf)."

    return True, "Inputs are valid."


# --- Example problems ---
# Each returns (objective, rows, direction) with rows as (coefficients, type, rhs).

def create_example_max():
    """Textbook LP. Optimal: x1=2, x2=4, z=14"""
    c = [3, 2]
    rows = [
        ([1, 2], "<=", 10),
        ([2, 1], "<=", 8),
    ]
    return c, rows, "max"


def create_example_unbounded():
    """x2 can grow without limit once the >= row is satisfied."""
    c = [1, 1]
    rows = [
        ([1, 1], ">=", 2),
        ([1, -1], "<=", 1),
    ]
    return c, rows, "max"


def create_example_min():
    """Two >= rows, needs dual simplex first. Optimal: x1=4, x2=0, z=8"""
    c = [2, 3]
    rows = [
        ([1, 1], ">=", 4),
        ([2, 1], ">=", 6),
    ]
    return c, rows, "min"


def create_example_knapsack():
    """Six items, capacity 40."""
    values = [2, 3, 3, 5, 2, 4]
    weights = [11, 8, 6, 14, 10, 10]
    return values, weights, 40


def create_example_integer():
    """LP optimum (4.5, 3.5); integer optimum (4, 3) with z=58."""
    c = [7, 10]
    rows = [
        ([-1, 3], "<=", 6),
        ([7, 1], "<=", 35),
    ]
    return c, rows, "max"


EXAMPLES = {
    "max": create_example_max,
    "unbounded": create_example_unbounded,
    "min": create_example_min,
    "integer": create_example_integer,
}
