# canonical_form.py
import warnings
from collections import namedtuple
from enum import Enum

import numpy as np

from config import FEASIBILITY_TOL, FRACTION_DIGITS
from output_sink import resolve_sink
from simplex_errors import DimensionMismatchError
from utils import format_value, validate_inputs


class VariableSign(Enum):
    POSITIVE = "+"
    NEGATIVE = "-"
    UNRESTRICTED = "urs"
    INTEGER = "int"
    BINARY = "bin"

    @classmethod
    def parse(cls, token):
        if isinstance(token, cls):
            return token
        key = str(token).strip().lower()
        aliases = {"positive": "+", "negative": "-", "unrestricted": "urs",
                   "free": "urs", "integer": "int", "binary": "bin"}
        key = aliases.get(key, key)
        for sign in cls:
            if sign.value == key:
                return sign
        raise ValueError(f"Unknown variable sign restriction '{token}'")

    @property
    def is_integral(self):
        return self in (VariableSign.INTEGER, VariableSign.BINARY)


class ConstraintType(Enum):
    LE = "<="
    GE = ">="
    EQ = "="

    @classmethod
    def parse(cls, token):
        if isinstance(token, cls):
            return token
        aliases = {"<=": cls.LE, "≤": cls.LE, "=<": cls.LE,
                   ">=": cls.GE, "≥": cls.GE, "=>": cls.GE,
                   "=": cls.EQ, "==": cls.EQ}
        try:
            return aliases[str(token).strip()]
        except KeyError:
            raise ValueError(f"Unknown constraint type '{token}'") from None


class Direction(Enum):
    MAX = "max"
    MIN = "min"

    @classmethod
    def parse(cls, token):
        if isinstance(token, cls):
            return token
        key = str(token).strip().lower()
        if key in ("max", "maximize", "maximise"):
            return cls.MAX
        if key in ("min", "minimize", "minimise"):
            return cls.MIN
        raise ValueError(f"Unknown optimization direction '{token}'")


Constraint = namedtuple("Constraint", ["coefficients", "rhs", "type"])


class LPProblem:
    """
    A parsed linear (or integer) program in its original form.

    The constructor copies everything it is given, so callers can keep
    mutating their own lists without touching the problem.
    """

    def __init__(self, objective, constraints, direction=Direction.MAX, variable_signs=None):
        self.objective = tuple(float(v) for v in objective)
        self.constraints = tuple(
            Constraint(tuple(float(a) for a in con.coefficients), float(con.rhs), ConstraintType.parse(con.type))
            for con in constraints
        )
        self.direction = Direction.parse(direction)
        if variable_signs is None:
            variable_signs = [VariableSign.POSITIVE] * len(self.objective)
        self.variable_signs = tuple(VariableSign.parse(s) for s in variable_signs)
        self._validate()

    @classmethod
    def from_lists(cls, objective, rows, direction="max", variable_signs=None):
        """Build from plain ``(coefficients, type, rhs)`` rows, e.g. the utils examples."""
        constraints = [Constraint(coeffs, rhs, ConstraintType.parse(ctype)) for coeffs, ctype, rhs in rows]
        return cls(objective, constraints, direction, variable_signs)

    def _validate(self):
        if not self.constraints:
            raise DimensionMismatchError("Problem must have at least one constraint.")
        ok, msg = validate_inputs(
            self.objective,
            [con.coefficients for con in self.constraints],
            [con.rhs for con in self.constraints],
        )
        if not ok:
            raise DimensionMismatchError(msg)
        if len(self.variable_signs) != self.n:
            raise DimensionMismatchError(
                f"Got {len(self.variable_signs)} sign restrictions for {self.n} variables."
            )

    @property
    def n(self):
        return len(self.objective)

    @property
    def m(self):
        return len(self.constraints)

    @property
    def integer_indices(self):
        return [j for j, sign in enumerate(self.variable_signs) if sign.is_integral]

    def with_constraint(self, coefficients, ctype, rhs):
        """Return a new problem with one more constraint appended."""
        extra = Constraint(coefficients, rhs, ConstraintType.parse(ctype))
        return LPProblem(self.objective, list(self.constraints) + [extra], self.direction, self.variable_signs)

    def __repr__(self):
        return f"LPProblem({self.direction.value}, n={self.n}, m={self.m})"


# --- Variable sign transformation ---

class VariableTransformation(namedtuple("VariableTransformation", ["sign", "original_index", "index", "index_neg"])):
    """Where an original variable lives in the transformed column space."""
    __slots__ = ()

    def expand(self, coefficient):
        """Coefficient of the original variable as (column, value) pairs in transformed space."""
        if self.sign in (VariableSign.POSITIVE, VariableSign.INTEGER, VariableSign.BINARY):
            return [(self.index, coefficient)]
        if self.sign is VariableSign.NEGATIVE:
            return [(self.index, -coefficient)]
        if self.sign is VariableSign.UNRESTRICTED:
            return [(self.index, coefficient), (self.index_neg, -coefficient)]
        raise ValueError(f"Unhandled sign restriction {self.sign}")

    def recover(self, values):
        """Value of the original variable from transformed column values."""
        if self.sign in (VariableSign.POSITIVE, VariableSign.INTEGER, VariableSign.BINARY):
            return values[self.index]
        if self.sign is VariableSign.NEGATIVE:
            return -values[self.index]
        if self.sign is VariableSign.UNRESTRICTED:
            return values[self.index] - values[self.index_neg]
        raise ValueError(f"Unhandled sign restriction {self.sign}")

    def names(self):
        k = self.original_index + 1
        if self.sign is VariableSign.UNRESTRICTED:
            return [f"x_{k}+", f"x_{k}-"]
        return [f"x_{k}"]


SignTransform = namedtuple("SignTransform", ["objective", "constraints", "transformations", "bound_rows"])


def transform_variable_sign_restrictions(objective, constraints, variable_signs):
    """
    Rewrite a problem so every column is non-negative.

    Negative variables flip sign, unrestricted variables are split into two
    adjacent columns and every binary variable gets an ``x <= 1`` row appended
    after all original rows.
    """
    if len(variable_signs) != len(objective):
        raise DimensionMismatchError(
            f"Got {len(variable_signs)} sign restrictions for {len(objective)} variables."
        )

    transformations = []
    col = 0
    for j, sign in enumerate(variable_signs):
        sign = VariableSign.parse(sign)
        if sign is VariableSign.UNRESTRICTED:
            transformations.append(VariableTransformation(sign, j, col, col + 1))
            col += 2
        else:
            transformations.append(VariableTransformation(sign, j, col, None))
            col += 1

    def expand_row(coefficients):
        row = [0.0] * col
        for t, a in zip(transformations, coefficients):
            for index, value in t.expand(float(a)):
                row[index] = value
        return row

    new_objective = expand_row(objective)
    new_constraints = []
    for con in constraints:
        if len(con.coefficients) != len(objective):
            raise DimensionMismatchError(
                f"Constraint has {len(con.coefficients)} coefficients, objective has {len(objective)}."
            )
        new_constraints.append(Constraint(expand_row(con.coefficients), float(con.rhs), ConstraintType.parse(con.type)))

    bound_rows = []
    for t in transformations:
        if t.sign is VariableSign.BINARY:
            row = [0.0] * col
            row[t.index] = 1.0
            new_constraints.append(Constraint(row, 1.0, ConstraintType.LE))
            bound_rows.append(t.original_index)

    return SignTransform(new_objective, new_constraints, tuple(transformations), bound_rows)


def transform_solution_back(values, transformations):
    """Map transformed column values back to the original variables."""
    return np.array([t.recover(values) for t in transformations], dtype=float)


def check_sign_restrictions(solution, variable_signs, tol=FEASIBILITY_TOL, sink=None):
    """
    Report, per original variable, whether its value respects its sign restriction.

    Returns a list of booleans. A fractional value on an integer or binary
    variable only raises a warning; it does not make the entry invalid.
    """
    sink = resolve_sink(sink)
    sink.start_section("Sign Restrictions")
    results = []
    for j, (value, sign) in enumerate(zip(solution, variable_signs)):
        sign = VariableSign.parse(sign)
        if sign is VariableSign.NEGATIVE:
            ok = value <= tol
        elif sign is VariableSign.UNRESTRICTED:
            ok = True
        elif sign is VariableSign.BINARY:
            ok = -tol <= value <= 1 + tol
        else:
            ok = value >= -tol
        if sign.is_integral and abs(value - round(value)) > tol:
            warnings.warn(f"x_{j + 1} = {value:.6g} is not integral.", UserWarning)
        results.append(ok)
        sink.write_line(f"x_{j + 1} ({sign.value}) = {format_value(value)}: {'valid' if ok else 'INVALID'}")
    return results


# --- Canonical form ---

class CanonicalForm:
    """
    Standard maximisation form ``max c.x  s.t.  A x + I s = b`` of an LPProblem.

    ``<=`` rows get a slack ``s_k``; ``>=`` rows are negated and get an excess
    ``e_k``; ``=`` rows are duplicated as a ``<=`` and a ``>=`` row. The
    auxiliary columns form an identity, so the initial basis is always
    available, possibly with negative right-hand sides.
    """

    def __init__(self, problem, use_fractions=False, fraction_digits=FRACTION_DIGITS):
        self.problem = problem
        self.use_fractions = use_fractions
        self.fraction_digits = fraction_digits

        transformed = transform_variable_sign_restrictions(
            problem.objective, problem.constraints, problem.variable_signs
        )
        self.transformations = transformed.transformations
        self.decision_names = [name for t in self.transformations for name in t.names()]
        self.num_decision = len(self.decision_names)

        rows, rhs, row_types, row_sources, row_labels = [], [], [], [], []
        for k, con in enumerate(transformed.constraints):
            if k < problem.m:
                source, label = k, f"c{k + 1}"
            else:
                source, label = None, f"x_{transformed.bound_rows[k - problem.m] + 1} <= 1"

            split = [ConstraintType.LE, ConstraintType.GE] if con.type is ConstraintType.EQ else [con.type]
            for kind in split:
                sign = 1.0 if kind is ConstraintType.LE else -1.0
                rows.append([sign * a for a in con.coefficients])
                rhs.append(sign * con.rhs)
                row_types.append(kind)
                row_sources.append(source)
                row_labels.append(label if len(split) == 1 else f"{label} ({kind.value})")

        self.A = np.array(rows, dtype=float).reshape(len(rows), self.num_decision)
        self.b = np.array(rhs, dtype=float)
        self.row_types = row_types
        self.row_sources = row_sources
        self.row_labels = row_labels

        aux_names = []
        n_slack = n_excess = 0
        for kind in row_types:
            if kind is ConstraintType.LE:
                n_slack += 1
                aux_names.append(f"s_{n_slack}")
            else:
                n_excess += 1
                aux_names.append(f"e_{n_excess}")
        self.column_names = self.decision_names + aux_names

        objective = np.array(transformed.objective, dtype=float)
        self.c = objective if problem.direction is Direction.MAX else -objective

    @property
    def m(self):
        return len(self.b)

    @property
    def num_columns(self):
        return len(self.column_names)

    def row_sign(self, k):
        """+1 if canonical row k kept its orientation, -1 if it was negated."""
        return 1.0 if self.row_types[k] is ConstraintType.LE else -1.0

    def objective_sign(self):
        return 1.0 if self.problem.direction is Direction.MAX else -1.0

    def initial_tableau_matrix(self):
        """(m+1) x (N+1) matrix: z-row ``-c`` on top, then ``[A | I | b]``."""
        m = self.m
        matrix = np.zeros((m + 1, self.num_columns + 1), dtype=float)
        matrix[0, :self.num_decision] = -self.c
        matrix[1:, :self.num_decision] = self.A
        matrix[1:, self.num_decision:-1] = np.eye(m)
        matrix[1:, -1] = self.b
        return matrix

    def initial_basis(self):
        return list(range(self.num_decision, self.num_decision + self.m))

    def transform_row(self, coefficients):
        """Original-variable coefficients -> decision-column coefficients."""
        if len(coefficients) != self.problem.n:
            raise DimensionMismatchError(
                f"Expected {self.problem.n} coefficients, got {len(coefficients)}."
            )
        row = np.zeros(self.num_decision)
        for t, a in zip(self.transformations, coefficients):
            for index, value in t.expand(float(a)):
                row[index] = value
        return row

    def canonical_column(self, coefficients):
        """Column of a new activity: its coefficient in every canonical row."""
        if len(coefficients) != self.problem.m:
            raise DimensionMismatchError(
                f"Expected one coefficient per constraint ({self.problem.m}), got {len(coefficients)}."
            )
        column = np.zeros(self.m)
        for k, source in enumerate(self.row_sources):
            if source is not None:
                column[k] = self.row_sign(k) * float(coefficients[source])
        return column

    def objective_value(self, z):
        """Canonical (maximised) z -> objective value in the problem's own sense."""
        return self.objective_sign() * z

    def recover_solution(self, column_values):
        return transform_solution_back(np.asarray(column_values, dtype=float)[:self.num_decision], self.transformations)

    def _signed_terms(self, coefficients, names):
        """'+ 3x_1 - 2x_2' style text, empty when every coefficient is zero."""
        terms = []
        for a, name in zip(coefficients, names):
            if abs(a) < 1e-12:
                continue
            sign = "-" if a < 0 else "+"
            magnitude = abs(a)
            text = name if abs(magnitude - 1.0) < 1e-12 else f"{format_value(magnitude, self.use_fractions, self.fraction_digits)}{name}"
            terms.append(f"{sign} {text}")
        return " ".join(terms)

    def _format_terms(self, coefficients, names):
        text = self._signed_terms(coefficients, names)
        if not text:
            return "0"
        return text[2:] if text.startswith("+") else "-" + text[2:]

    def print_canonical(self, sink):
        sink = resolve_sink(sink)
        problem = self.problem
        sink.start_section("Canonical Form")
        original = self._format_terms(problem.objective, [f"x_{j + 1}" for j in range(problem.n)])
        sink.write_line(f"{problem.direction.value} z = {original}")
        if problem.direction is Direction.MIN:
            sink.write_line(f"max -z = {self._format_terms(self.c, self.decision_names)}")
        z_terms = self._signed_terms(-self.c, self.decision_names)
        sink.write_line(f"z {z_terms} = 0" if z_terms else "z = 0")
        aux = self.column_names[self.num_decision:]
        for k in range(self.m):
            lhs = self._format_terms(self.A[k], self.decision_names)
            lhs = f"{lhs} + {aux[k]}" if lhs != "0" else aux[k]
            sink.write_line(f"{lhs} = {format_value(self.b[k], self.use_fractions, self.fraction_digits)}    [{self.row_labels[k]}]")
        restrictions = ", ".join(
            f"x_{t.original_index + 1} {t.sign.value}" for t in self.transformations
        )
        sink.write_line(f"Sign restrictions: {restrictions}")
