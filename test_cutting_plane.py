# test_cutting_plane.py

import pytest
import numpy as np
import sys
import os

sys.path.insert(0, os.path.abspath(os.path.dirname(__file__)))

from branch_and_bound import verify_integer_with_scipy
from canonical_form import LPProblem
from cutting_plane import CuttingPlane, CuttingPlaneSolver, fractional_part
from output_sink import BufferSink
from simplex import DualSimplex, SolveStatus
from utils import create_example_integer, create_example_max


def solved_integer_example():
    return DualSimplex(LPProblem.from_lists(*create_example_integer())).solve()


def test_fractional_part():
    assert fractional_part(3.5) == pytest.approx(0.5)
    assert fractional_part(-1 / 22) == pytest.approx(21 / 22)
    assert fractional_part(4.0) == 0.0
    assert fractional_part(2.9999999999) == 0.0


def test_lp_relaxation_is_fractional():
    result = solved_integer_example()
    np.testing.assert_allclose(result.solution, [4.5, 3.5])
    assert result.basis == [1, 0]


def test_cut_from_row_closest_to_half():
    """Both RHS are x.5, so the tie goes to row 1 (x_2): -7/22 s_1 - 1/22 s_2 <= -1/2"""
    result = solved_integer_example()
    cut = CuttingPlane().generate(result.final_tableau, result.basis)
    assert cut.source_row == 1
    np.testing.assert_allclose(cut.coefficients, [0, 0, -7 / 22, -1 / 22], atol=1e-9)
    assert cut.rhs == pytest.approx(-0.5)
    assert cut.rhs_fraction == pytest.approx(0.5)


def test_row_selection_prefers_fraction_nearest_half():
    result = solved_integer_example()
    tableau = result.final_tableau.copy()
    tableau.matrix[1, -1] = 3.1
    tableau.matrix[2, -1] = 4.6
    assert CuttingPlane().fractional_rows(tableau) == [1, 2]
    assert CuttingPlane().select_row(tableau) == 2


def test_no_cut_needed_for_integral_tableau():
    result = DualSimplex(LPProblem.from_lists(*create_example_max())).solve()
    sink = BufferSink()
    assert CuttingPlane(sink=sink).generate(result.final_tableau, result.basis) is None
    assert "no cut needed" in sink.getvalue()


def test_apply_appends_row_with_new_slack():
    result = solved_integer_example()
    generator = CuttingPlane()
    cut = generator.generate(result.final_tableau, result.basis)
    tableau, basis = generator.apply(result.final_tableau, result.basis, cut, "c_1")
    assert tableau.matrix.shape == (4, 6)
    assert tableau.column_names[-1] == "c_1"
    assert basis == [1, 0, 4]
    assert tableau.is_unit_column(4, 3)
    assert tableau.rhs[-1] == pytest.approx(-0.5)


def test_cut_forces_a_dual_pivot():
    result = solved_integer_example()
    generator = CuttingPlane()
    cut = generator.generate(result.final_tableau, result.basis)
    tableau, basis = generator.apply(result.final_tableau, result.basis, cut, "c_1")
    resolved = DualSimplex(tableau=tableau, basis=basis).solve()
    assert resolved.is_optimal
    assert resolved.pivots[0].row == 3
    assert resolved.objective_value < result.objective_value


def test_cutting_plane_loop_reaches_integer_optimum():
    problem = LPProblem.from_lists(*create_example_integer())
    sink = BufferSink()
    outcome = CuttingPlaneSolver(problem, sink=sink).solve()
    assert outcome.status is SolveStatus.OPTIMAL
    assert len(outcome.cuts) >= 1
    np.testing.assert_allclose(outcome.result.solution, [4, 3], atol=1e-6)
    assert outcome.result.objective_value == pytest.approx(58)
    _, scipy_z = verify_integer_with_scipy(problem)
    assert outcome.result.objective_value == pytest.approx(scipy_z)
    assert "Cut:" in sink.getvalue()


def test_integral_relaxation_needs_no_cut():
    outcome = CuttingPlaneSolver(LPProblem.from_lists(*create_example_max())).solve()
    assert outcome.status is SolveStatus.OPTIMAL
    assert outcome.cuts == []


def test_cut_cap_reports_cycle_limit():
    problem = LPProblem.from_lists(*create_example_integer())
    with pytest.warns(UserWarning, match="cuts"):
        outcome = CuttingPlaneSolver(problem, max_cuts=0).solve()
    assert outcome.status is SolveStatus.CYCLE_LIMIT_EXCEEDED
