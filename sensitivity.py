import warnings
from collections import namedtuple

import numpy as np
from tabulate import tabulate

from canonical_form import ConstraintType
from config import CONSISTENCY_TOL, FEASIBILITY_TOL, FRACTION_DIGITS, PIVOT_TOL, SINGULAR_TOL
from output_sink import resolve_sink
from simplex import DualSimplex, SolveResult
from simplex_errors import SensitivityError, SingularBasisError
from utils import format_value


def gauss_jordan_inverse(matrix, tol=SINGULAR_TOL):
    """
    Invert a square matrix by Gauss-Jordan elimination on ``[M | I]``.

    A pivot smaller than ``tol`` is replaced by swapping in the first lower
    row with a usable entry; if there is none the matrix is singular.
    """
    M = np.array(matrix, dtype=float)
    if M.ndim != 2 or M.shape[0] != M.shape[1]:
        raise SingularBasisError(f"Basis matrix not square: {M.shape}")
    size = M.shape[0]
    augmented = np.hstack((M, np.eye(size)))

    for k in range(size):
        if abs(augmented[k, k]) < tol:
            swap = next((r for r in range(k + 1, size) if abs(augmented[r, k]) >= tol), None)
            if swap is None:
                raise SingularBasisError(f"Basis matrix is singular: no nonzero pivot in column {k}.")
            augmented[[k, swap]] = augmented[[swap, k]]
        augmented[k, :] /= augmented[k, k]
        for i in range(size):
            if i != k and augmented[i, k] != 0.0:
                augmented[i, :] -= augmented[i, k] * augmented[k, :]

    return augmented[:, size:]


RhsChange = namedtuple("RhsChange", ["basic_values", "objective_value", "feasible"])
CostChange = namedtuple("CostChange", ["reduced_cost", "still_optimal"])
ActivityResult = namedtuple("ActivityResult", ["reduced_cost", "column", "improves"])
ConstraintAddition = namedtuple("ConstraintAddition", ["tableau", "basis", "result"])


class SensitivityAnalysis:
    """
    Sensitivity analysis on an optimal solve.

    Rebuilds ``B`` from the first tableau at the optimal basis columns,
    inverts it by Gauss-Jordan and derives ``cbv``, ``cbv.B^-1``, the revised
    tableau, shadow prices and ranges from there. Everything is read-only
    against the solve; ``do_preliminaries`` recomputes the derived matrices.

    Ranges and shadow prices are reported in the problem's own terms
    (original constraint orientation and objective sense) whenever the
    canonical form is known.
    """

    def __init__(self, result, canonical=None, sink=None, use_fractions=False, fraction_digits=FRACTION_DIGITS,
                 feasibility_tol=FEASIBILITY_TOL, consistency_tol=CONSISTENCY_TOL):
        if not isinstance(result, SolveResult):
            raise TypeError(f"Expected SolveResult instance, got {type(result).__name__}")
        if not result.is_optimal:
            raise SensitivityError(f"Sensitivity analysis needs an optimal solve, got {result.status.value}.")

        self.result = result
        self.canonical = canonical
        self.sink = resolve_sink(sink)
        self.use_fractions = use_fractions
        self.fraction_digits = fraction_digits
        self.feasibility_tol = feasibility_tol
        self.consistency_tol = consistency_tol
        self.column_names = list(result.column_names)
        self.basis = list(result.basis)
        self.do_preliminaries()

    @classmethod
    def from_engine(cls, engine, result, sink=None, **kwargs):
        """Convenience: take the canonical form from the DualSimplex that produced ``result``."""
        return cls(result, engine.canonical, sink=sink, **kwargs)

    def do_preliminaries(self):
        first = self.result.first_tableau.matrix
        self.final = self.result.final_tableau.matrix
        self.A = first[1:, :-1]
        self.b = first[1:, -1]
        self.c = -first[0, :-1]
        self.z0 = first[0, -1]

        self.B = self.A[:, self.basis]
        self.B_inv = gauss_jordan_inverse(self.B)
        self.cbv = self.c[self.basis]
        self.cbv_B_inv = self.cbv @ self.B_inv
        self.basic_values = self.B_inv @ self.b
        self.revised = self.revised_tableau()

    # --- Orientation helpers ---

    def _row_sign(self, k):
        return self.canonical.row_sign(k) if self.canonical is not None else 1.0

    def _objective_sign(self):
        return self.canonical.objective_sign() if self.canonical is not None else 1.0

    def _flip(self, bounds, sign):
        lower, upper = bounds
        return (lower, upper) if sign > 0 else (-upper, -lower)

    def _position(self, col):
        return self.basis.index(col) if col in self.basis else None

    def _check_column(self, col):
        if not 0 <= col < len(self.column_names):
            raise SensitivityError(f"Column {col} outside [0, {len(self.column_names)}).")

    def _check_row(self, k):
        if not 0 <= k < len(self.basis):
            raise SensitivityError(f"Row {k} outside [0, {len(self.basis)}).")

    # --- Reconstruction ---

    def revised_tableau(self):
        """Optimal tableau rebuilt from B^-1: z_j = cbv.B^-1.A_j - c_j, rows B^-1.A, RHS B^-1.b."""
        m, n = self.A.shape
        matrix = np.zeros((m + 1, n + 1))
        matrix[0, :-1] = self.cbv_B_inv @ self.A - self.c
        matrix[0, -1] = self.cbv_B_inv @ self.b + self.z0
        matrix[1:, :-1] = self.B_inv @ self.A
        matrix[1:, -1] = self.basic_values
        return matrix

    def verify_consistency(self):
        """True if the rebuilt tableau matches the solver's final tableau entry by entry."""
        drift = float(np.max(np.abs(self.revised - self.final)))
        if drift > self.consistency_tol:
            warnings.warn(
                f"Revised tableau differs from the simplex result by {drift:.2e} (tolerance {self.consistency_tol:.0e}).",
                UserWarning,
            )
            return False
        return True

    # --- Shadow prices ---

    def shadow_prices(self):
        """Objective change per unit increase of each canonical row's original RHS."""
        sign = self._objective_sign()
        return np.array([sign * self._row_sign(k) * y for k, y in enumerate(self.cbv_B_inv)])

    def constraint_shadow_prices(self):
        """Shadow price per original constraint; both halves of a split '=' row are summed."""
        if self.canonical is None:
            return self.shadow_prices()
        prices = np.zeros(self.canonical.problem.m)
        for k, price in enumerate(self.shadow_prices()):
            source = self.canonical.row_sources[k]
            if source is not None:
                prices[source] += price
        return prices

    # --- Ranging ---

    def nonbasic_variable_range(self, col):
        """[0, min RHS_i / -a_ij over rows with a_ij < 0]; +inf when no entry is negative."""
        self._check_column(col)
        if col in self.basis:
            raise SensitivityError(f"{self.column_names[col]} is basic.")
        upper = np.inf
        for i in range(1, self.final.shape[0]):
            a = self.final[i, col]
            if a < -self.feasibility_tol:
                upper = min(upper, self.final[i, -1] / -a)
        return 0.0, upper

    def basic_variable_range(self, col):
        """
        Range of a basic variable's value before another basic variable goes negative.

        Ratio-tests the other basic values against the variable's B^-1 row;
        the lower end never drops below 0.
        """
        self._check_column(col)
        pos = self._position(col)
        if pos is None:
            raise SensitivityError(f"{self.column_names[col]} is not basic.")

        row = self.B_inv[pos]
        current = self.basic_values[pos]
        decrease, increase = -np.inf, np.inf
        for i, value in enumerate(self.basic_values):
            if i == pos or abs(row[i]) <= SINGULAR_TOL:
                continue
            ratio = value / row[i]
            if row[i] > 0:
                increase = min(increase, ratio)
            else:
                decrease = max(decrease, ratio)
        return max(0.0, current + decrease), current + increase

    def _basic_cost_range(self, col, pos):
        """Objective coefficient range of a basic column: every non-basic reduced cost stays >= 0."""
        row = self.B_inv[pos] @ self.A
        reduced = self.revised[0, :-1]
        decrease, increase = -np.inf, np.inf
        for k in range(len(self.column_names)):
            if k in self.basis:
                continue
            a = row[k]
            if a > PIVOT_TOL:
                decrease = max(decrease, -reduced[k] / a)
            elif a < -PIVOT_TOL:
                increase = min(increase, reduced[k] / -a)
        bounds = (self.c[col] + decrease, self.c[col] + increase)
        return self._flip(bounds, self._objective_sign())

    def objective_range(self, col):
        """Objective coefficient range of any column, in the problem's objective sense."""
        self._check_column(col)
        pos = self._position(col)
        if pos is not None:
            return self._basic_cost_range(col, pos)
        bounds = (-np.inf, self.c[col] + self.revised[0, col])
        return self._flip(bounds, self._objective_sign())

    def objective_ranges(self):
        count = self.canonical.num_decision if self.canonical is not None else len(self.column_names)
        return {j: self.objective_range(j) for j in range(count)}

    def rhs_range(self, k):
        """RHS interval of canonical row k over which B^-1.b stays non-negative."""
        self._check_row(k)
        column = self.B_inv[:, k]
        decrease, increase = -np.inf, np.inf
        for i, value in enumerate(self.basic_values):
            if column[i] > PIVOT_TOL:
                decrease = max(decrease, -value / column[i])
            elif column[i] < -PIVOT_TOL:
                increase = min(increase, value / -column[i])
        bounds = (self.b[k] + decrease, self.b[k] + increase)
        return self._flip(bounds, self._row_sign(k))

    def rhs_ranges(self):
        return {k: self.rhs_range(k) for k in range(len(self.basis))}

    def nonbasic_column_range(self, col, k):
        """Range of the coefficient of non-basic ``col`` in row ``k`` keeping its reduced cost >= 0."""
        self._check_column(col)
        self._check_row(k)
        if col in self.basis:
            raise SensitivityError(f"{self.column_names[col]} is basic; changing its column changes B.")
        y = self.cbv_B_inv[k]
        reduced = self.revised[0, col]
        lower, upper = -np.inf, np.inf
        if y > PIVOT_TOL:
            lower = -reduced / y
        elif y < -PIVOT_TOL:
            upper = reduced / -y
        bounds = (self.A[k, col] + lower, self.A[k, col] + upper)
        return self._flip(bounds, self._row_sign(k))

    # --- What-if ---

    def apply_rhs_change(self, k, delta):
        """Basic values and objective after changing row k's original RHS by ``delta``, without re-solving."""
        self._check_row(k)
        step = self._row_sign(k) * delta
        values = self.basic_values + self.B_inv[:, k] * step
        z = self.revised[0, -1] + self.cbv_B_inv[k] * step
        change = RhsChange(
            basic_values={self.basis[i]: float(v) for i, v in enumerate(values)},
            objective_value=float(self._objective_sign() * z),
            feasible=bool(np.all(values >= -self.feasibility_tol)),
        )
        sink = self.sink
        sink.start_section(f"RHS change on row {k + 1}: Δ = {self._fmt(delta)}")
        for col, value in change.basic_values.items():
            sink.write_line(f"{self.column_names[col]} = {self._fmt(value)}")
        sink.write_line(f"z = {self._fmt(change.objective_value)}")
        if not change.feasible:
            sink.write_line("Basis is no longer feasible; dual simplex needed.")
        return change

    def apply_nonbasic_variable_change(self, col, delta):
        """Reduced cost of non-basic ``col`` after changing its objective coefficient by ``delta``."""
        self._check_column(col)
        if col in self.basis:
            raise SensitivityError(f"{self.column_names[col]} is basic.")
        reduced = float(self.revised[0, col] - self._objective_sign() * delta)
        change = CostChange(reduced, reduced >= -self.feasibility_tol)
        self.sink.start_section(f"Cost change on {self.column_names[col]}: Δ = {self._fmt(delta)}")
        self.sink.write_line(f"z_j - c_j = {self._fmt(reduced)}")
        self.sink.write_line("Current basis stays optimal." if change.still_optimal
                             else f"{self.column_names[col]} should enter the basis.")
        return change

    def apply_nonbasic_column_change(self, col, k, delta):
        """Reduced cost of non-basic ``col`` after changing its original coefficient in row k by ``delta``."""
        self._check_column(col)
        self._check_row(k)
        if col in self.basis:
            raise SensitivityError(f"{self.column_names[col]} is basic; changing its column changes B.")
        step = self._row_sign(k) * delta
        reduced = float(self.revised[0, col] + self.cbv_B_inv[k] * step)
        change = CostChange(reduced, reduced >= -self.feasibility_tol)
        self.sink.start_section(f"Column change on {self.column_names[col]}, row {k + 1}: Δ = {self._fmt(delta)}")
        self.sink.write_line(f"z_j - c_j = {self._fmt(reduced)}")
        self.sink.write_line("Current basis stays optimal." if change.still_optimal
                             else f"{self.column_names[col]} should enter the basis.")
        return change

    def add_activity(self, coefficients, cost, name="x_new"):
        """
        Price out a new column without re-solving.

        ``coefficients`` has one entry per original constraint (per canonical
        row when no canonical form is known). Returns the new z-row entry
        ``cbv.B^-1.a - c`` and the body ``B^-1.a``.
        """
        if self.canonical is not None:
            column = self.canonical.canonical_column(coefficients)
        else:
            column = np.asarray(coefficients, dtype=float)
            if len(column) != len(self.basis):
                raise SensitivityError(f"Expected {len(self.basis)} coefficients, got {len(column)}.")
        c = self._objective_sign() * float(cost)
        reduced = float(self.cbv_B_inv @ column - c)
        body = self.B_inv @ column
        activity = ActivityResult(reduced, body, reduced < -self.feasibility_tol)

        rows = [["z", self._fmt(reduced)]] + [
            [self.column_names[col], self._fmt(v)] for col, v in zip(self.basis, body)
        ]
        self.sink.start_section(f"Add activity {name}")
        self.sink.write_line(tabulate(rows, headers=["", name], stralign="right", disable_numparse=True))
        if activity.improves:
            self.sink.write_line(f"{name} would improve the objective.")
        return activity

    def add_constraint(self, coefficients, ctype, rhs, reoptimize=True):
        """
        Append a constraint to the optimal tableau.

        The new row (negated when it is '>=') gets its own slack column and is
        cleared against every basic column. With ``reoptimize`` the dual
        simplex continues from the extended tableau.
        """
        ctype = ConstraintType.parse(ctype)
        if self.canonical is not None:
            decision = self.canonical.transform_row(coefficients)
        else:
            decision = np.asarray(coefficients, dtype=float)
        tableau = self.result.final_tableau.copy()
        basis = list(self.basis)

        kinds = [ConstraintType.LE, ConstraintType.GE] if ctype is ConstraintType.EQ else [ctype]
        for kind in kinds:
            sign = 1.0 if kind is ConstraintType.LE else -1.0
            row = np.zeros(tableau.n)
            row[:len(decision)] = sign * decision
            value = sign * float(rhs)
            for i, col in enumerate(basis):
                factor = row[col]
                if abs(factor) > PIVOT_TOL:
                    row -= factor * tableau.matrix[i + 1, :-1]
                    value -= factor * tableau.matrix[i + 1, -1]
            prefix = "s_" if kind is ConstraintType.LE else "e_"
            count = sum(1 for name in tableau.column_names if name.startswith(prefix))
            tableau = tableau.with_constraint(row, value, f"{prefix}{count + 1}")
            basis.append(tableau.n - 1)

        self.sink.start_section("Add constraint")
        self.sink.write_line(tableau.format(basis, self.use_fractions, self.fraction_digits))

        result = None
        if reoptimize:
            engine = DualSimplex(tableau=tableau, basis=basis, canonical=self.canonical, sink=self.sink,
                                 use_fractions=self.use_fractions, fraction_digits=self.fraction_digits)
            result = engine.solve()
        return ConstraintAddition(tableau, basis, result)

    # --- Reporting ---

    def _fmt(self, value):
        return format_value(value, self.use_fractions, self.fraction_digits)

    def format_range(self, range_tuple, var_value=None):
        """Format a sensitivity range in a readable way."""
        lower, upper = range_tuple
        lower_str = "-∞" if lower == -np.inf else self._fmt(lower)
        upper_str = "+∞" if upper == np.inf else self._fmt(upper)

        if var_value is not None:
            delta_lower = "any decrease" if lower == -np.inf else self._fmt(var_value - lower)
            delta_upper = "any increase" if upper == np.inf else self._fmt(upper - var_value)
            return f"[{lower_str}, {upper_str}] (Current: {self._fmt(var_value)}, Δ-: {delta_lower}, Δ+: {delta_upper})"
        return f"[{lower_str}, {upper_str}]"

    def _matrix_table(self, matrix, headers, labels):
        rows = [[label] + [self._fmt(v) for v in row] for label, row in zip(labels, np.atleast_2d(matrix))]
        return tabulate(rows, headers=[""] + headers, stralign="right", disable_numparse=True)

    def report(self):
        """Print B, B^-1, cbv, cbv.B^-1, the revised tableau, shadow prices and ranges."""
        sink = self.sink
        basic_names = [self.column_names[col] for col in self.basis]
        row_names = [f"R{k + 1}" for k in range(len(self.basis))]

        sink.start_section("B")
        sink.write_line(self._matrix_table(self.B, basic_names, row_names))
        sink.start_section("B⁻¹")
        sink.write_line(self._matrix_table(self.B_inv, row_names, basic_names))
        sink.start_section("cbv / cbv·B⁻¹")
        sink.write_line(self._matrix_table(self.cbv, basic_names, ["cbv"]))
        sink.write_line(self._matrix_table(self.cbv_B_inv, row_names, ["cbv·B⁻¹"]))

        sink.start_section("Revised Tableau")
        labels = ["z"] + basic_names
        sink.write_line(self._matrix_table(self.revised, self.column_names + ["rhs"], labels))
        consistent = self.verify_consistency()
        sink.write_line(f"Matches simplex tableau: {'yes' if consistent else 'NO'}")

        sink.start_section("Shadow Prices")
        for k, price in enumerate(self.shadow_prices()):
            label = self.canonical.row_labels[k] if self.canonical is not None else row_names[k]
            sink.write_line(f"{label}: {self._fmt(price)}")

        sink.start_section("RHS Ranges")
        for k, bounds in self.rhs_ranges().items():
            current = self._row_sign(k) * self.b[k]
            sink.write_line(f"{row_names[k]}: {self.format_range(bounds, current)}")

        sink.start_section("Objective Coefficient Ranges")
        for j, bounds in self.objective_ranges().items():
            current = self._objective_sign() * self.c[j]
            sink.write_line(f"{self.column_names[j]}: {self.format_range(bounds, current)}")

        sink.start_section("Basic Variable Ranges")
        for pos, j in enumerate(self.basis):
            sink.write_line(f"{self.column_names[j]}: {self.format_range(self.basic_variable_range(j), self.basic_values[pos])}")

        sink.start_section("Non-basic Variable Ranges")
        for j in range(len(self.column_names)):
            if j not in self.basis:
                sink.write_line(f"{self.column_names[j]}: {self.format_range(self.nonbasic_variable_range(j))}")
        return consistent
