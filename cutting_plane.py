import math
import warnings
from collections import namedtuple

import numpy as np
from tabulate import tabulate

from config import FEASIBILITY_TOL, FRACTION_DIGITS, MAX_CUTS
from output_sink import resolve_sink
from simplex import DualSimplex, SolveStatus
from utils import format_value

MIRCut = namedtuple("MIRCut", ["source_row", "coefficients", "rhs", "fractional_parts", "rhs_fraction"])
CuttingPlaneResult = namedtuple("CuttingPlaneResult", ["status", "result", "cuts"])


def fractional_part(value, tol=FEASIBILITY_TOL):
    """value - floor(value), snapped to 0 when within ``tol`` of an integer."""
    frac = value - math.floor(value)
    if frac < tol or frac > 1 - tol:
        return 0.0
    return frac


class CuttingPlane:
    """
    Derives one Gomory/MIR cut from a tableau.

    The source row is the one whose RHS fractional part is closest to 0.5
    (lowest row on ties). With ``f_j`` the fractional part of each
    coefficient and ``f_0`` that of the RHS the cut is
    ``-sum f_j x_j + c_k = -f_0`` for a new slack ``c_k``.
    """

    def __init__(self, sink=None, use_fractions=False, fraction_digits=FRACTION_DIGITS, tol=FEASIBILITY_TOL):
        self.sink = resolve_sink(sink)
        self.use_fractions = use_fractions
        self.fraction_digits = fraction_digits
        self.tol = tol

    def _fmt(self, value):
        return format_value(value, self.use_fractions, self.fraction_digits)

    def fractional_rows(self, tableau):
        """Constraint rows (1-based) whose RHS is not integral."""
        return [i for i in range(1, tableau.m + 1) if fractional_part(tableau.matrix[i, -1], self.tol) > 0]

    def select_row(self, tableau):
        best_row, best_distance = None, None
        for i in self.fractional_rows(tableau):
            distance = abs(fractional_part(tableau.matrix[i, -1], self.tol) - 0.5)
            if best_distance is None or distance < best_distance - self.tol:
                best_row, best_distance = i, distance
        return best_row

    def generate(self, tableau, basis=None):
        """Return the MIRCut for ``tableau``, or None when every RHS is integral."""
        sink = self.sink
        sink.start_section("Cutting Plane")
        row = self.select_row(tableau)
        if row is None:
            sink.write_line("No fractional RHS → no cut needed.")
            return None

        values = tableau.matrix[row, :-1]
        fractions = np.array([fractional_part(v, self.tol) for v in values])
        rhs_fraction = fractional_part(tableau.matrix[row, -1], self.tol)
        cut = MIRCut(row, -fractions, -rhs_fraction, fractions, rhs_fraction)

        label = tableau.column_names[basis[row - 1]] if basis is not None else f"R{row}"
        sink.write_line(f"Source row {row} ({label}), RHS = {self._fmt(tableau.matrix[row, -1])}")
        rows = []
        for name, v, f in zip(tableau.column_names, values, fractions):
            if abs(v) > self.tol:
                rows.append([name, self._fmt(v), self._fmt(math.floor(v) if f > 0 else round(v)), self._fmt(f)])
        rhs = tableau.matrix[row, -1]
        rows.append(["rhs", self._fmt(rhs), self._fmt(math.floor(rhs)), self._fmt(rhs_fraction)])
        sink.write_line(tabulate(rows, headers=["", "a", "integer", "fraction"],
                                 stralign="right", disable_numparse=True))

        terms = " ".join(f"- {self._fmt(f)}{name}" for name, f in zip(tableau.column_names, fractions) if f > 0)
        sink.write_line(f"Cut: {terms} ≤ {self._fmt(cut.rhs)}")
        return cut

    def apply(self, tableau, basis, cut, name):
        """Append ``cut`` as a new row with slack ``name``; returns (tableau, basis)."""
        extended = tableau.with_constraint(cut.coefficients, cut.rhs, name)
        return extended, list(basis) + [extended.n - 1]


class CuttingPlaneSolver:
    """
    Solve, cut, re-solve: repeats until every integer variable is integral.

    After each cut the dual simplex continues from the extended tableau and
    its known basis.
    """

    def __init__(self, problem, integer_indices=None, sink=None, max_cuts=MAX_CUTS,
                 use_fractions=False, fraction_digits=FRACTION_DIGITS, tol=FEASIBILITY_TOL):
        self.problem = problem
        if integer_indices is None:
            integer_indices = problem.integer_indices or list(range(problem.n))
        self.integer_indices = sorted(integer_indices)
        self.sink = resolve_sink(sink)
        self.max_cuts = max_cuts
        self.use_fractions = use_fractions
        self.fraction_digits = fraction_digits
        self.tol = tol
        self.generator = CuttingPlane(self.sink, use_fractions, fraction_digits, tol)

    def _is_integral(self, solution):
        return all(abs(solution[j] - round(solution[j])) <= self.tol for j in self.integer_indices)

    def solve(self):
        options = dict(sink=self.sink, use_fractions=self.use_fractions, fraction_digits=self.fraction_digits)
        engine = DualSimplex(self.problem, **options)
        canonical = engine.canonical
        result = engine.solve()
        cuts = []

        while result.is_optimal and not self._is_integral(result.solution):
            if len(cuts) >= self.max_cuts:
                warnings.warn(f"Stopped after {self.max_cuts} cuts without an integral solution.", UserWarning)
                return CuttingPlaneResult(SolveStatus.CYCLE_LIMIT_EXCEEDED, result, cuts)

            tableau = result.final_tableau
            cut = self.generator.generate(tableau, result.basis)
            if cut is None:
                break
            cuts.append(cut)
            tableau, basis = self.generator.apply(tableau, result.basis, cut, f"c_{len(cuts)}")
            engine = DualSimplex(tableau=tableau, basis=basis, canonical=canonical, **options)
            result = engine.solve()

        return CuttingPlaneResult(result.status, result, cuts)
