import warnings
from collections import namedtuple
from enum import Enum

import numpy as np
from scipy.optimize import linprog
from tabulate import tabulate

from canonical_form import CanonicalForm, ConstraintType, Direction, LPProblem, VariableSign
from config import CLEANUP_TOL, FEASIBILITY_TOL, FRACTION_DIGITS, MAX_ITERATIONS, PIVOT_TOL
from output_sink import resolve_sink
from simplex_errors import (
    DimensionMismatchError,
    SensitivityError,
    SimplexError,
    SingularBasisError,
    SingularPivotError,
    TableauCorruptionError,
)
from utils import format_value

__all__ = [
    "Tableau", "DualSimplex", "SolveResult", "SolveStatus", "Phase", "PivotRecord", "solve_lp_scipy",
    "SimplexError", "DimensionMismatchError", "SingularPivotError", "SingularBasisError",
    "TableauCorruptionError", "SensitivityError",
]


class Tableau:
    """
    Dense simplex tableau: row 0 is the z-row, rows 1..m the constraints,
    the last column holds the right-hand side.

    ``pivot`` mutates in place; use ``copy`` to keep a snapshot.
    """

    def __init__(self, matrix, column_names=None, pivot_tol=PIVOT_TOL):
        self.matrix = np.array(matrix, dtype=float)
        if self.matrix.ndim != 2 or self.matrix.shape[0] < 2 or self.matrix.shape[1] < 2:
            raise DimensionMismatchError(
                f"Tableau needs a z-row, at least one constraint row and a RHS column, got shape {self.matrix.shape}."
            )
        n = self.matrix.shape[1] - 1
        if column_names is None:
            column_names = [f"x_{j + 1}" for j in range(n)]
        if len(column_names) != n:
            raise DimensionMismatchError(f"Got {len(column_names)} column names for {n} columns.")
        self.column_names = list(column_names)
        self.pivot_tol = pivot_tol

    @property
    def m(self):
        return self.matrix.shape[0] - 1

    @property
    def n(self):
        return self.matrix.shape[1] - 1

    @property
    def z_row(self):
        return self.matrix[0, :-1]

    @property
    def rhs(self):
        return self.matrix[1:, -1]

    @property
    def objective(self):
        return self.matrix[0, -1]

    def copy(self):
        return Tableau(self.matrix.copy(), self.column_names, self.pivot_tol)

    def pivot(self, row, col):
        """Make column ``col`` a unit vector with its 1 in tableau row ``row`` (1-based constraint row)."""
        if not 1 <= row <= self.m or not 0 <= col < self.n:
            raise IndexError(f"Pivot position ({row}, {col}) outside the tableau.")
        pivot_element = self.matrix[row, col]
        if abs(pivot_element) <= self.pivot_tol:
            raise SingularPivotError(
                f"Pivot element {pivot_element:.2e} at ({row}, {col}) is too small."
            )
        if abs(pivot_element) < FEASIBILITY_TOL:
            warnings.warn(f"Small pivot element {pivot_element:.2e} may cause numerical instability.", UserWarning)

        # Normalize pivot row
        self.matrix[row, :] /= pivot_element

        # Eliminate other entries in pivot column
        for i in range(self.m + 1):
            if i != row:
                factor = self.matrix[i, col]
                if abs(factor) > CLEANUP_TOL:
                    self.matrix[i, :] -= factor * self.matrix[row, :]

        # Clean up numerical errors
        self.matrix[np.abs(self.matrix) < CLEANUP_TOL] = 0.0
        self.matrix[:, col] = 0.0
        self.matrix[row, col] = 1.0

        self.check_integrity()

    def validate_basis(self, basis):
        if len(basis) != self.m:
            raise DimensionMismatchError(f"Basis has {len(basis)} entries, tableau has {self.m} rows.")
        if len(set(basis)) != len(basis):
            raise DimensionMismatchError(f"Basis entries must be distinct: {list(basis)}")
        for col in basis:
            if not 0 <= col < self.n:
                raise DimensionMismatchError(f"Basis column {col} outside [0, {self.n}).")

    def canonicalize_to_basis(self, basis):
        """Pivot once per row so every declared basic column becomes a unit column."""
        self.validate_basis(basis)
        for i, col in enumerate(basis):
            self.pivot(i + 1, col)

    def guess_basis(self, tol=FEASIBILITY_TOL):
        """First identity column for each constraint row, or None if a row has none."""
        basis = []
        for row in range(1, self.m + 1):
            found = None
            for col in range(self.n):
                if col in basis:
                    continue
                column = self.matrix[1:, col]
                if (abs(column[row - 1] - 1.0) <= tol and
                        np.all(np.abs(np.delete(column, row - 1)) <= tol)):
                    found = col
                    break
            if found is None:
                return None
            basis.append(found)
        return basis

    def is_unit_column(self, col, row, tol=FEASIBILITY_TOL):
        """True if column ``col`` is 1 at ``row`` and ~0 everywhere else, z-row included."""
        column = self.matrix[:, col]
        return abs(column[row] - 1.0) <= tol and np.all(np.abs(np.delete(column, row)) <= tol)

    def basic_values(self, basis):
        """Value of every column: RHS for basic ones, 0 for the rest."""
        values = np.zeros(self.n)
        for i, col in enumerate(basis):
            values[col] = self.matrix[i + 1, -1]
        return values

    def with_constraint(self, coefficients, rhs, name):
        """
        Return a new tableau with one extra row ``coefficients . x + name = rhs``.

        The new auxiliary column is inserted just before the RHS.
        """
        coefficients = np.asarray(coefficients, dtype=float)
        if len(coefficients) != self.n:
            raise DimensionMismatchError(f"New row has {len(coefficients)} coefficients, tableau has {self.n} columns.")
        m, n = self.m, self.n
        matrix = np.zeros((m + 2, n + 2), dtype=float)
        matrix[:m + 1, :n] = self.matrix[:, :n]
        matrix[:m + 1, -1] = self.matrix[:, -1]
        matrix[m + 1, :n] = coefficients
        matrix[m + 1, n] = 1.0
        matrix[m + 1, -1] = rhs
        return Tableau(matrix, self.column_names + [name], self.pivot_tol)

    def check_integrity(self):
        """Check tableau for corruption (NaN/Inf values)."""
        if not np.all(np.isfinite(self.matrix)):
            rows, cols = np.where(~np.isfinite(self.matrix))
            first_bad_row, first_bad_col = rows[0], cols[0]
            bad_value = self.matrix[first_bad_row, first_bad_col]
            raise TableauCorruptionError(
                f"Tableau corruption: non-finite value {bad_value} at ({first_bad_row}, {first_bad_col}). "
                f"Total {len(rows)} corrupted entries."
            )

    def format(self, basis=None, use_fractions=False, fraction_digits=FRACTION_DIGITS, theta=None, theta_label="θ"):
        """Render with tabulate. ``theta`` is an optional per-row list of ratios (None for blanks)."""
        headers = [""] + self.column_names + ["rhs"]
        if theta is not None:
            headers.append(theta_label)

        rows = []
        for i in range(self.m + 1):
            if i == 0:
                label = "z"
            elif basis is not None:
                label = self.column_names[basis[i - 1]]
            else:
                label = f"R{i}"
            cells = [format_value(v, use_fractions, fraction_digits) for v in self.matrix[i]]
            if theta is not None:
                value = theta[i] if i < len(theta) else None
                cells.append("" if value is None else format_value(value, use_fractions, fraction_digits))
            rows.append([label] + cells)
        return tabulate(rows, headers=headers, stralign="right", disable_numparse=True)

    def __repr__(self):
        return f"Tableau(m={self.m}, n={self.n})"


class SolveStatus(Enum):
    OPTIMAL = "Optimal"
    INFEASIBLE = "Infeasible"
    UNBOUNDED = "Unbounded"
    CYCLE_LIMIT_EXCEEDED = "CycleLimitExceeded"


class Phase(Enum):
    DUAL = "Dual"
    PRIMAL = "Primal"
    OPTIMAL = "Optimal"
    INFEASIBLE = "Infeasible"
    UNBOUNDED = "Unbounded"


PivotRecord = namedtuple("PivotRecord", ["phase", "row", "column", "entering", "leaving", "theta"])


class SolveResult(namedtuple("SolveResult", [
        "status", "variable_values", "solution", "objective_value", "z",
        "tableau_history", "basis", "pivots", "column_names", "message"])):
    """
    Outcome of one solve.

    ``variable_values`` maps every tableau column index to its value,
    ``solution`` holds the original variables (None without a canonical form),
    ``objective_value`` is in the problem's own sense while ``z`` is the raw
    tableau value.
    """
    __slots__ = ()

    @property
    def is_optimal(self):
        return self.status is SolveStatus.OPTIMAL

    @property
    def first_tableau(self):
        return self.tableau_history[0]

    @property
    def final_tableau(self):
        return self.tableau_history[-1]


class DualSimplex:
    """
    Dual simplex Phase 1 followed by primal simplex Phase 2 on one tableau.

    Phase 1 pivots while a right-hand side is negative. Phase 2 pivots while
    the z-row has a negative entry. The canonical form always maximises.

    Either pass an ``LPProblem``, or a ``tableau`` (plus ``basis``, guessed
    from identity columns when omitted) to continue from an existing state.
    """

    def __init__(self, problem=None, sink=None, tableau=None, basis=None, canonical=None,
                 use_fractions=False, fraction_digits=FRACTION_DIGITS,
                 feasibility_tol=FEASIBILITY_TOL, pivot_tol=PIVOT_TOL, max_iterations=MAX_ITERATIONS):
        self.sink = resolve_sink(sink)
        self.use_fractions = use_fractions
        self.fraction_digits = fraction_digits
        self.feasibility_tol = feasibility_tol
        self.pivot_tol = pivot_tol
        self.max_iterations = max_iterations
        self.phase = Phase.DUAL

        if problem is not None:
            if not isinstance(problem, LPProblem):
                raise TypeError(f"Expected LPProblem instance, got {type(problem).__name__}")
            self.canonical = CanonicalForm(problem, use_fractions, fraction_digits)
            self._print_canonical = True
            self.tableau = Tableau(self.canonical.initial_tableau_matrix(), self.canonical.column_names, pivot_tol)
            self.basis = self.canonical.initial_basis()
        elif tableau is not None:
            self.canonical = canonical
            self._print_canonical = False
            if isinstance(tableau, Tableau):
                self.tableau = tableau.copy()
                self.tableau.pivot_tol = pivot_tol
            else:
                self.tableau = Tableau(tableau, pivot_tol=pivot_tol)
            if basis is None:
                basis = self.tableau.guess_basis(feasibility_tol)
                if basis is None:
                    raise SimplexError("No basis given and the tableau has no full set of identity columns.")
            self.basis = list(basis)
            self.tableau.validate_basis(self.basis)
        else:
            raise ValueError("Either a problem or a tableau is required.")

    # --- Pivot selection ---

    def _dual_pivot_row(self):
        """Row with the most negative RHS (lowest row on ties), or None."""
        rhs = self.tableau.rhs
        row = int(np.argmin(rhs))
        if rhs[row] < -self.feasibility_tol:
            return row + 1
        return None

    def _dual_pivot_column(self, row):
        """
        Entering column for a dual pivot on ``row``.

        Columns with a negative row entry and a negative z-row entry come
        first; without any, every column with a negative row entry is a
        candidate. Either way the smallest |z_j / a_rj| wins, lowest column
        on ties. Returns (column, theta) or (None, None).
        """
        a = self.tableau.matrix[row, :-1]
        z = self.tableau.z_row
        negative = [j for j in range(self.tableau.n) if a[j] < -self.pivot_tol]
        if not negative:
            return None, None
        improving = [j for j in negative if z[j] < -self.feasibility_tol]
        candidates = improving or negative
        best_col, best_theta = None, None
        for j in candidates:
            theta = abs(z[j] / a[j])
            if best_theta is None or theta < best_theta - self.pivot_tol:
                best_col, best_theta = j, theta
        return best_col, best_theta

    def _primal_pivot_column(self):
        """Most negative z-row entry (lowest column on ties), or None."""
        z = self.tableau.z_row
        col = int(np.argmin(z))
        if z[col] < -self.feasibility_tol:
            return col
        return None

    def _ratio_test(self, col):
        """Minimum RHS / a over rows with a > tol, lowest row on ties. Returns (row, theta) or (None, None)."""
        best_row, best_theta = None, None
        for i in range(1, self.tableau.m + 1):
            a = self.tableau.matrix[i, col]
            if a > self.pivot_tol:
                theta = max(0.0, self.tableau.matrix[i, -1]) / a
                if best_theta is None or theta < best_theta - self.pivot_tol:
                    best_row, best_theta = i, theta
        return best_row, best_theta

    # --- Narration ---

    def _fmt(self, value):
        return format_value(value, self.use_fractions, self.fraction_digits)

    def _print_tableau(self, header, theta=None):
        self.sink.start_section(header)
        self.sink.write_line(self.tableau.format(self.basis, self.use_fractions, self.fraction_digits, theta))

    def _dual_theta_row(self, row):
        """θ = |z_j / a_rj| under each column with a negative entry in ``row``."""
        a = self.tableau.matrix[row, :-1]
        z = self.tableau.z_row
        cells = []
        for j in range(self.tableau.n):
            cells.append(self._fmt(abs(z[j] / a[j])) if a[j] < -self.pivot_tol else "")
        return cells

    def _primal_theta_column(self, col):
        theta = [None]
        for i in range(1, self.tableau.m + 1):
            a = self.tableau.matrix[i, col]
            theta.append(max(0.0, self.tableau.matrix[i, -1]) / a if a > self.pivot_tol else None)
        return theta

    # --- Main loop ---

    def solve(self):
        """Run both phases and return a SolveResult. Infeasible and unbounded are statuses, not errors."""
        sink = self.sink
        if self._print_canonical:
            self.canonical.print_canonical(sink)

        self.tableau.canonicalize_to_basis(self.basis)
        history = [self.tableau.copy()]
        pivots = []
        self._print_tableau("t-i")
        self.phase = Phase.DUAL
        message = ""
        iteration = 0

        while self.phase in (Phase.DUAL, Phase.PRIMAL):
            if self.phase is Phase.DUAL:
                row = self._dual_pivot_row()
                if row is None:
                    self.phase = Phase.PRIMAL
                    continue
                col, theta = self._dual_pivot_column(row)
                if col is None:
                    message = (f"No valid entering column for row {row} "
                               f"({self.tableau.column_names[self.basis[row - 1]]}) → Primal is infeasible")
                    sink.write_line(message)
                    self.phase = Phase.INFEASIBLE
                    break
                sink.write_line("θ  | " + " | ".join(self._dual_theta_row(row)))
            else:
                col = self._primal_pivot_column()
                if col is None:
                    self.phase = Phase.OPTIMAL
                    break
                row, theta = self._ratio_test(col)
                if row is None:
                    message = f"All entries in pivot column {self.tableau.column_names[col]} ≤ 0 → Unbounded"
                    sink.write_line(message)
                    self.phase = Phase.UNBOUNDED
                    break
                self._print_tableau(f"Ratio test (t-{iteration + 1})", self._primal_theta_column(col))

            if iteration >= self.max_iterations:
                message = f"Maximum iterations ({self.max_iterations}) reached without convergence."
                warnings.warn(message, UserWarning)
                sink.write_line(message)
                return self._result(SolveStatus.CYCLE_LIMIT_EXCEEDED, history, pivots, message)

            record = PivotRecord(
                phase=self.phase,
                row=row,
                column=col,
                entering=self.tableau.column_names[col],
                leaving=self.tableau.column_names[self.basis[row - 1]],
                theta=theta,
            )
            sink.write_line(
                f"[{record.phase.value}] Pivot: Entering = {record.entering}, Leaving = {record.leaving} "
                f"(row {row}, col {col}, θ={self._fmt(theta)})"
            )
            try:
                self.tableau.pivot(row, col)
            except TableauCorruptionError:
                raise TableauCorruptionError(
                    f"Tableau corruption after pivot at iteration {iteration}. "
                    f"Pivot: row {row}, column {col}."
                ) from None
            self.basis[row - 1] = col
            pivots.append(record)
            iteration += 1
            history.append(self.tableau.copy())
            self._print_tableau(f"t-{iteration}")

        status = {
            Phase.OPTIMAL: SolveStatus.OPTIMAL,
            Phase.INFEASIBLE: SolveStatus.INFEASIBLE,
            Phase.UNBOUNDED: SolveStatus.UNBOUNDED,
        }[self.phase]
        result = self._result(status, history, pivots, message)
        if result.is_optimal:
            self._print_solution(result)
        return result

    def _result(self, status, history, pivots, message):
        values = self.tableau.basic_values(self.basis)
        values[np.abs(values) < CLEANUP_TOL] = 0.0
        z = float(self.tableau.objective)
        if self.canonical is not None:
            solution = self.canonical.recover_solution(values)
            objective_value = float(self.canonical.objective_value(z))
        else:
            solution = None
            objective_value = z
        return SolveResult(
            status=status,
            variable_values={j: float(v) for j, v in enumerate(values)},
            solution=solution,
            objective_value=objective_value,
            z=z,
            tableau_history=history,
            basis=list(self.basis),
            pivots=pivots,
            column_names=list(self.tableau.column_names),
            message=message,
        )

    def _print_solution(self, result):
        sink = self.sink
        sink.start_section("Dual Simplex Optimal Solution")
        for j, name in enumerate(result.column_names):
            sink.write_line(f"{name} = {self._fmt(result.variable_values[j])}")
        if result.solution is not None:
            original = ", ".join(f"x_{j + 1} = {self._fmt(v)}" for j, v in enumerate(result.solution))
            sink.write_line(f"Original variables: {original}")
        sink.write_line(f"z = {self._fmt(result.objective_value)}")


def solve_lp_scipy(problem):
    """
    Solve the LP relaxation of an LPProblem with SciPy's linprog (HiGHS).

    Returns (x, objective) in the problem's own sense; raises ValueError if
    SciPy reports infeasible, unbounded or any other failure.
    """
    c = np.asarray(problem.objective, dtype=float)
    sign = -1.0 if problem.direction is Direction.MAX else 1.0

    A_ub, b_ub, A_eq, b_eq = [], [], [], []
    for con in problem.constraints:
        if con.type is ConstraintType.LE:
            A_ub.append(con.coefficients)
            b_ub.append(con.rhs)
        elif con.type is ConstraintType.GE:
            A_ub.append([-a for a in con.coefficients])
            b_ub.append(-con.rhs)
        else:
            A_eq.append(con.coefficients)
            b_eq.append(con.rhs)

    bounds = []
    for s in problem.variable_signs:
        if s is VariableSign.NEGATIVE:
            bounds.append((None, 0))
        elif s is VariableSign.UNRESTRICTED:
            bounds.append((None, None))
        elif s is VariableSign.BINARY:
            bounds.append((0, 1))
        else:
            bounds.append((0, None))

    result = linprog(
        sign * c,
        A_ub=np.array(A_ub) if A_ub else None, b_ub=np.array(b_ub) if b_ub else None,
        A_eq=np.array(A_eq) if A_eq else None, b_eq=np.array(b_eq) if b_eq else None,
        bounds=bounds, method='highs',
    )

    if result.success:
        return result.x, sign * result.fun
    error_messages = {
        2: "Problem is infeasible",
        3: "Problem is unbounded"
    }
    msg = error_messages.get(result.status, f"SciPy linprog failed: {result.message} (Status: {result.status})")
    raise ValueError(msg)
