# test_canonical_form.py

import pytest
import numpy as np
import sys
import os
import warnings

sys.path.insert(0, os.path.abspath(os.path.dirname(__file__)))

from canonical_form import (
    CanonicalForm,
    Constraint,
    ConstraintType,
    Direction,
    LPProblem,
    VariableSign,
    check_sign_restrictions,
    transform_solution_back,
    transform_variable_sign_restrictions,
)
from output_sink import BufferSink
from simplex import DualSimplex, DimensionMismatchError
from utils import create_example_max


def test_le_rows_get_slacks():
    problem = LPProblem.from_lists(*create_example_max())
    cf = CanonicalForm(problem)
    assert cf.column_names == ["x_1", "x_2", "s_1", "s_2"]
    np.testing.assert_allclose(cf.A, [[1, 2], [2, 1]])
    np.testing.assert_allclose(cf.b, [10, 8])
    np.testing.assert_allclose(cf.c, [3, 2])
    assert cf.initial_basis() == [2, 3]


def test_ge_rows_are_negated_with_excess_columns():
    problem = LPProblem.from_lists([1, 1], [([1, 1], ">=", 2), ([1, -1], "<=", 1)], "max")
    cf = CanonicalForm(problem)
    assert cf.column_names == ["x_1", "x_2", "e_1", "s_1"]
    np.testing.assert_allclose(cf.A[0], [-1, -1])
    assert cf.b[0] == -2
    assert cf.row_types == [ConstraintType.GE, ConstraintType.LE]
    assert cf.row_sign(0) == -1.0


def test_equality_rows_are_duplicated():
    problem = LPProblem.from_lists([1, 2], [([1, 1], "=", 3)], "max")
    cf = CanonicalForm(problem)
    assert cf.m == 2
    assert cf.row_sources == [0, 0]
    np.testing.assert_allclose(cf.A, [[1, 1], [-1, -1]])
    np.testing.assert_allclose(cf.b, [3, -3])
    assert cf.column_names[2:] == ["s_1", "e_1"]


def test_minimisation_flips_objective():
    problem = LPProblem.from_lists([2, 3], [([1, 1], ">=", 4)], "min")
    cf = CanonicalForm(problem)
    np.testing.assert_allclose(cf.c, [-2, -3])
    np.testing.assert_allclose(cf.initial_tableau_matrix()[0], [2, 3, 0, 0])
    assert cf.objective_value(-8) == 8


def test_initial_tableau_layout():
    cf = CanonicalForm(LPProblem.from_lists(*create_example_max()))
    expected = [[-3, -2, 0, 0, 0],
                [1, 2, 1, 0, 10],
                [2, 1, 0, 1, 8]]
    np.testing.assert_allclose(cf.initial_tableau_matrix(), expected)


def test_inputs_are_copied_not_mutated():
    objective = [3, 2]
    rows = [[1, 2], [2, 1]]
    constraints = [Constraint(rows[0], 10, "<="), Constraint(rows[1], 8, ">=")]
    problem = LPProblem(objective, constraints, "max")
    CanonicalForm(problem)
    objective[0] = 99
    rows[0][0] = 99
    assert problem.objective == (3.0, 2.0)
    assert problem.constraints[0].coefficients == (1.0, 2.0)
    assert rows[1] == [2, 1]


def test_with_constraint_returns_new_problem():
    problem = LPProblem.from_lists(*create_example_max())
    bigger = problem.with_constraint([1, 0], "<=", 1)
    assert problem.m == 2
    assert bigger.m == 3
    assert bigger.constraints[-1].type is ConstraintType.LE


def test_ragged_rows_raise_dimension_mismatch():
    with pytest.raises(DimensionMismatchError, match="coefficients"):
        LPProblem.from_lists([1, 2], [([1, 2, 3], "<=", 4)], "max")
    with pytest.raises(DimensionMismatchError, match="sign restrictions"):
        LPProblem.from_lists([1, 2], [([1, 2], "<=", 4)], "max", variable_signs=["+"])
    with pytest.raises(DimensionMismatchError, match="non-finite"):
        LPProblem.from_lists([1, np.nan], [([1, 2], "<=", 4)], "max")
    with pytest.raises(DimensionMismatchError, match="at least one constraint"):
        LPProblem.from_lists([1, 2], [], "max")


def test_enum_parsing():
    assert ConstraintType.parse("≥") is ConstraintType.GE
    assert ConstraintType.parse("=") is ConstraintType.EQ
    assert Direction.parse("MIN") is Direction.MIN
    assert VariableSign.parse("urs") is VariableSign.UNRESTRICTED
    assert VariableSign.parse("binary") is VariableSign.BINARY
    with pytest.raises(ValueError):
        ConstraintType.parse("<")
    with pytest.raises(ValueError):
        VariableSign.parse("x")


# --- Sign transformation ---

def test_sign_transformation_columns():
    signs = [VariableSign.POSITIVE, VariableSign.UNRESTRICTED, VariableSign.NEGATIVE, VariableSign.BINARY]
    constraints = [Constraint([1, 2, 3, 4], 10, ConstraintType.LE)]
    result = transform_variable_sign_restrictions([1, 1, 1, 1], constraints, signs)

    assert [t.index for t in result.transformations] == [0, 1, 3, 4]
    assert result.transformations[1].index_neg == 2
    assert result.objective == [1, 1, -1, -1, 1]
    assert result.constraints[0].coefficients == [1, 2, -2, -3, 4]
    # the binary bound row comes after every original row
    assert len(result.constraints) == 2
    assert result.constraints[1].coefficients == [0, 0, 0, 0, 1]
    assert result.constraints[1].rhs == 1
    assert result.bound_rows == [3]


def test_transform_solution_back():
    signs = [VariableSign.NEGATIVE, VariableSign.UNRESTRICTED, VariableSign.INTEGER]
    result = transform_variable_sign_restrictions([1, 1, 1], [], signs)
    values = transform_solution_back([2, 1, 4, 3], result.transformations)
    np.testing.assert_allclose(values, [-2, -3, 3])


def test_round_trip_keeps_sign_restrictions():
    """Solving in transformed space and mapping back respects every restriction."""
    problem = LPProblem.from_lists(
        [1, -1, 2],
        [([1, 0, 0], ">=", -4), ([0, 1, 0], "<=", 3), ([0, 1, 0], ">=", -2), ([1, 1, 1], "<=", 6)],
        "min",
        variable_signs=["-", "urs", "bin"],
    )
    result = DualSimplex(problem).solve()
    assert result.is_optimal
    x = result.solution
    assert x[0] <= 1e-9
    assert -1e-9 <= x[2] <= 1 + 1e-9
    np.testing.assert_allclose(x, [-4, 3, 0], atol=1e-9)
    assert all(check_sign_restrictions(x, problem.variable_signs))


def test_check_sign_restrictions_reports_violations():
    sink = BufferSink()
    signs = [VariableSign.NEGATIVE, VariableSign.POSITIVE, VariableSign.BINARY]
    assert check_sign_restrictions([1.0, 2.0, 3.0], signs, sink=sink) == [False, True, False]
    assert "INVALID" in sink.getvalue()


def test_fractional_integer_value_only_warns():
    with warnings.catch_warnings(record=True) as w:
        warnings.simplefilter("always")
        ok = check_sign_restrictions([1.5], [VariableSign.INTEGER])
    assert ok == [True]
    assert any("not integral" in str(x.message) for x in w)


# --- Helpers used by sensitivity analysis ---

def test_transform_row_and_canonical_column():
    problem = LPProblem.from_lists([1, 1], [([1, 1], "<=", 4), ([1, 0], ">=", 1)], "max",
                                   variable_signs=["+", "urs"])
    cf = CanonicalForm(problem)
    np.testing.assert_allclose(cf.transform_row([2, 3]), [2, 3, -3])
    np.testing.assert_allclose(cf.canonical_column([5, 7]), [5, -7])
    with pytest.raises(DimensionMismatchError):
        cf.transform_row([1])


def test_print_canonical():
    cf = CanonicalForm(LPProblem.from_lists(*create_example_max()))
    sink = BufferSink()
    cf.print_canonical(sink)
    lines = sink.lines
    assert "max z = 3x_1 + 2x_2" in lines
    assert "z - 3x_1 - 2x_2 = 0" in lines
    assert any(line.startswith("x_1 + 2x_2 + s_1 = 10") for line in lines)
