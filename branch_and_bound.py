import math
import warnings
from collections import namedtuple

import numpy as np
from scipy.optimize import milp, LinearConstraint, Bounds
from tabulate import tabulate

from canonical_form import ConstraintType, Direction, LPProblem, VariableSign
from config import FEASIBILITY_TOL, FRACTION_DIGITS, MAX_NODES
from output_sink import resolve_sink
from simplex import DualSimplex, SolveStatus
from simplex_errors import DimensionMismatchError
from utils import format_value

Item = namedtuple("Item", ["index", "value", "weight", "ratio"])

# Nodes are plain values kept in an arena list; the label path ("1.2.1") replaces parent links.
KnapsackNode = namedtuple("KnapsackNode", ["label", "level", "value", "weight", "bound", "fixed", "status"])
Candidate = namedtuple("Candidate", ["name", "label", "value", "weight", "selection"])
KnapsackResult = namedtuple("KnapsackResult", ["best_value", "selection", "best_candidate", "candidates", "nodes"])


def make_items(values, weights):
    """Items in their original order; ratio is value per unit of weight."""
    if len(values) != len(weights):
        raise DimensionMismatchError(f"Got {len(values)} values but {len(weights)} weights.")
    items = []
    for j, (v, w) in enumerate(zip(values, weights)):
        if w < 0:
            raise ValueError(f"Item {j + 1} has negative weight {w}.")
        items.append(Item(index=j, value=v, weight=w, ratio=v / w if w > 0 else float('inf')))
    return items


def candidate_name(position):
    """0 -> A, 25 -> Z, 26 -> AA"""
    name = ""
    position += 1
    while position:
        position, rest = divmod(position - 1, 26)
        name = chr(ord("A") + rest) + name
    return name


# --- Bounding Function ---
def calculate_bound(fixed, capacity, items, tol=FEASIBILITY_TOL):
    """
    Greedy LP-relaxation bound for a sub-problem.

    ``items`` must already be sorted by ratio. Unfixed items are taken whole
    while they fit; the first one that does not fit is taken fractionally.
    Returns (bound, fill, fractional_item) where ``fill`` maps item index to
    the greedy amount taken and ``fractional_item`` is None when the fill is
    all-integer.
    """
    bound_value = sum(item.value for item in items if fixed.get(item.index) == 1)
    remaining_capacity = capacity - sum(item.weight for item in items if fixed.get(item.index) == 1)
    fill = {}
    fractional = None
    for item in items:
        if item.index in fixed:
            continue
        if fractional is not None:
            fill[item.index] = 0.0
        elif item.weight <= remaining_capacity + tol:
            fill[item.index] = 1.0
            remaining_capacity -= item.weight
            bound_value += item.value
        elif remaining_capacity > tol:
            fraction = remaining_capacity / item.weight
            fill[item.index] = fraction
            bound_value += item.value * fraction
            remaining_capacity = 0
            fractional = item
        else:
            fill[item.index] = 0.0
    return bound_value, fill, fractional


class KnapsackBranchAndBound:
    """
    Depth-first 0/1 knapsack branch and bound with greedy ratio bounds.

    Each sub-problem fixes some items to 0 or 1. A sub-problem whose greedy
    fill is all-integer is completed and becomes a lettered candidate; the
    incumbent changes only on a strictly better candidate. With ``prune``
    sub-problems whose bound cannot beat the incumbent are cut off.
    """

    def __init__(self, values, weights, capacity, sink=None, prune=True,
                 use_fractions=False, fraction_digits=FRACTION_DIGITS, tol=FEASIBILITY_TOL):
        self.items = make_items(values, weights)
        # Stable sort keeps the lower index first on equal ratios
        self.sorted_items = sorted(self.items, key=lambda x: x.ratio, reverse=True)
        self.capacity = capacity
        self.sink = resolve_sink(sink)
        self.prune = prune
        self.use_fractions = use_fractions
        self.fraction_digits = fraction_digits
        self.tol = tol

    @classmethod
    def from_problem(cls, problem, **kwargs):
        """Values from the objective, weights and capacity from the first constraint."""
        if problem.direction is not Direction.MAX:
            raise ValueError("A knapsack problem must be a maximisation.")
        first = problem.constraints[0]
        if first.type is not ConstraintType.LE:
            raise ValueError("The knapsack constraint must be a '<=' row.")
        return cls(list(problem.objective), list(first.coefficients), first.rhs, **kwargs)

    def _fmt(self, value):
        return format_value(value, self.use_fractions, self.fraction_digits)

    def solve(self):
        self.nodes = []
        self.candidates = []
        self.best = None

        self._print_ratio_test()
        self._explore("", {})

        sink = self.sink
        sink.start_section("Branch & Bound Result")
        if self.best is None:
            sink.write_line("No feasible candidate.")
            return KnapsackResult(0, [0] * len(self.items), None, self.candidates, self.nodes)
        sink.write_line(f"Best Candidate: {self.best.name} (Sub-P {self.best.label or '0'}) z = {self._fmt(self.best.value)}")
        chosen = ", ".join(f"x_{j + 1}" for j, taken in enumerate(self.best.selection) if taken)
        sink.write_line(f"Items taken: {chosen or 'none'}")
        return KnapsackResult(self.best.value, list(self.best.selection), self.best, self.candidates, self.nodes)

    def _print_ratio_test(self):
        rows = [[f"x_{item.index + 1}", self._fmt(item.value), self._fmt(item.weight), self._fmt(item.ratio), rank + 1]
                for rank, item in enumerate(self.sorted_items)]
        self.sink.start_section("Ratio Test")
        self.sink.write_line(tabulate(rows, headers=["item", "value", "weight", "ratio", "rank"],
                                      stralign="right", disable_numparse=True))

    def _print_subproblem(self, fixed, fill):
        remaining = self.capacity
        rows = []
        for item in self.sorted_items:
            if item.index in fixed:
                amount, marker = fixed[item.index], "*"
            elif item.index in fill:
                amount, marker = fill[item.index], ""
            else:
                continue
            remaining -= item.weight * amount
            rows.append([f"{marker} x_{item.index + 1}", self._fmt(amount), self._fmt(remaining)])
        self.sink.write_line(tabulate(rows, headers=["", "x", "cap-w"], stralign="right", disable_numparse=True))

    def _explore(self, label, fixed):
        sink = self.sink
        taken = [item for item in self.items if fixed.get(item.index) == 1]
        weight = sum(item.weight for item in taken)
        value = sum(item.value for item in taken)
        sink.start_section(f"Sub-P {label or '0'}")

        if weight > self.capacity + self.tol:
            self._print_subproblem(fixed, {})
            sink.write_line("Infeasible")
            self.nodes.append(KnapsackNode(label, len(fixed), value, weight, None, dict(fixed), "infeasible"))
            return

        bound, fill, fractional = calculate_bound(fixed, self.capacity, self.sorted_items, self.tol)
        self._print_subproblem(fixed, fill)
        sink.write_line(f"Bound: z = {self._fmt(bound)}")

        if self.prune and self.best is not None and bound <= self.best.value + self.tol:
            sink.write_line(f"Pruned: bound {self._fmt(bound)} cannot beat candidate {self.best.name}")
            self.nodes.append(KnapsackNode(label, len(fixed), value, weight, bound, dict(fixed), "pruned"))
            return

        if fractional is None:
            completed = dict(fixed)
            for index, amount in fill.items():
                completed[index] = 1 if amount >= 1 - self.tol else 0
            self.nodes.append(KnapsackNode(label, len(fixed), value, weight, bound, completed, "candidate"))
            self._finalize(label, completed)
            return

        # An all-integer fill was finalized above, so a fractional item always exists here
        item = fractional
        self.nodes.append(KnapsackNode(label, len(fixed), value, weight, bound, dict(fixed), "branched"))
        left = f"{label}.1" if label else "1"
        right = f"{label}.2" if label else "2"
        sink.write_line(f"Sub-P {left}: x_{item.index + 1} = 0    Sub-P {right}: x_{item.index + 1} = 1")
        self._explore(left, {**fixed, item.index: 0})
        self._explore(right, {**fixed, item.index: 1})

    def _finalize(self, label, completed):
        selection = [completed.get(item.index, 0) for item in self.items]
        taken = [item for item in self.items if selection[item.index]]
        value = sum(item.value for item in taken)
        weight = sum(item.weight for item in taken)
        candidate = Candidate(candidate_name(len(self.candidates)), label, value, weight, selection)
        self.candidates.append(candidate)

        terms = " + ".join(self._fmt(item.value) for item in taken) or "0"
        self.sink.write_line(f"Candidate {candidate.name}: z = {terms} = {self._fmt(value)}")
        if self.best is None or value > self.best.value + self.tol:
            self.best = candidate
            self.sink.write_line("Best Candidate")


def knapsack_exhaustive(values, weights, capacity):
    """
    Naive baseline: recurse into include/exclude for every item, no bounding.

    Exponential in the number of items; only meant for small checks.
    Returns (max_value, selection).
    """
    if len(values) != len(weights):
        raise DimensionMismatchError(f"Got {len(values)} values but {len(weights)} weights.")
    n = len(values)

    def explore(i, weight, value, taken):
        if weight > capacity:
            return None
        if i == n:
            return value, taken
        outcomes = [
            explore(i + 1, weight, value, taken + [0]),
            explore(i + 1, weight + weights[i], value + values[i], taken + [1]),
        ]
        outcomes = [o for o in outcomes if o is not None]
        return max(outcomes, key=lambda o: o[0])

    return explore(0, 0, 0, [])


# --- General integer programs ---

IntegerNode = namedtuple("IntegerNode", ["label", "status", "objective_value", "solution"])
IntegerCandidate = namedtuple("IntegerCandidate", ["name", "label", "objective_value", "solution"])
IntegerResult = namedtuple("IntegerResult", ["status", "solution", "objective_value", "candidates", "nodes"])


class IntegerBranchAndBound:
    """
    Branch and bound over LP relaxations solved by DualSimplex.

    Branches on the lowest-index fractional integer variable: sub-problem
    ``.1`` adds ``x_j <= floor(v)``, ``.2`` adds ``x_j >= ceil(v)``.
    """

    def __init__(self, problem, integer_indices=None, sink=None, prune=True, max_nodes=MAX_NODES,
                 show_tableaus=False, use_fractions=False, fraction_digits=FRACTION_DIGITS,
                 tol=FEASIBILITY_TOL):
        if not isinstance(problem, LPProblem):
            raise TypeError(f"Expected LPProblem instance, got {type(problem).__name__}")
        self.problem = problem
        if integer_indices is None:
            integer_indices = problem.integer_indices or list(range(problem.n))
        for j in integer_indices:
            if not 0 <= j < problem.n:
                raise DimensionMismatchError(f"Integer variable index {j} outside [0, {problem.n}).")
        self.integer_indices = sorted(integer_indices)
        self.sink = resolve_sink(sink)
        self.prune = prune
        self.max_nodes = max_nodes
        self.show_tableaus = show_tableaus
        self.use_fractions = use_fractions
        self.fraction_digits = fraction_digits
        self.tol = tol

    def _fmt(self, value):
        return format_value(value, self.use_fractions, self.fraction_digits)

    def _better(self, a, b):
        if self.problem.direction is Direction.MAX:
            return a > b + self.tol
        return a < b - self.tol

    def _first_fractional(self, solution):
        for j in self.integer_indices:
            if abs(solution[j] - round(solution[j])) > self.tol:
                return j
        return None

    def solve(self):
        self.nodes = []
        self.candidates = []
        self.best = None
        self._limit_hit = False
        self._unbounded = False

        self._explore(self.problem, "")

        sink = self.sink
        sink.start_section("Branch & Bound Result")
        if self._limit_hit:
            warnings.warn(f"Node limit ({self.max_nodes}) reached; result may not be optimal.", UserWarning)
        if self.best is not None:
            status = SolveStatus.CYCLE_LIMIT_EXCEEDED if self._limit_hit else SolveStatus.OPTIMAL
            sink.write_line(f"Best Candidate: {self.best.name} (Sub-P {self.best.label or '0'}) "
                            f"z = {self._fmt(self.best.objective_value)}")
            values = ", ".join(f"x_{j + 1} = {self._fmt(v)}" for j, v in enumerate(self.best.solution))
            sink.write_line(values)
            return IntegerResult(status, self.best.solution, self.best.objective_value, self.candidates, self.nodes)

        if self._limit_hit:
            status = SolveStatus.CYCLE_LIMIT_EXCEEDED
        elif self._unbounded:
            status = SolveStatus.UNBOUNDED
        else:
            status = SolveStatus.INFEASIBLE
        sink.write_line(f"No integer solution: {status.value}")
        return IntegerResult(status, None, None, self.candidates, self.nodes)

    def _explore(self, problem, label):
        if len(self.nodes) >= self.max_nodes:
            self._limit_hit = True
            return

        sink = self.sink
        sink.start_section(f"Sub-P {label or '0'}")
        for con in problem.constraints[self.problem.m:]:
            j = next(k for k, a in enumerate(con.coefficients) if a != 0)
            sink.write_line(f"  x_{j + 1} {con.type.value} {self._fmt(con.rhs)}")

        engine = DualSimplex(problem, sink=sink if self.show_tableaus else None,
                             use_fractions=self.use_fractions, fraction_digits=self.fraction_digits)
        result = engine.solve()

        if not result.is_optimal:
            sink.write_line(result.status.value)
            self.nodes.append(IntegerNode(label, result.status, None, None))
            if result.status is SolveStatus.UNBOUNDED:
                self._unbounded = True
            elif result.status is SolveStatus.CYCLE_LIMIT_EXCEEDED:
                self._limit_hit = True
            return

        x, z = result.solution, result.objective_value
        sink.write_line("LP: " + ", ".join(f"x_{j + 1} = {self._fmt(v)}" for j, v in enumerate(x))
                        + f"  z = {self._fmt(z)}")

        if self.prune and self.best is not None and not self._better(z, self.best.objective_value):
            sink.write_line(f"Pruned: z = {self._fmt(z)} cannot beat candidate {self.best.name}")
            self.nodes.append(IntegerNode(label, "pruned", z, x))
            return

        j = self._first_fractional(x)
        if j is None:
            solution = np.array(x, dtype=float)
            for k in self.integer_indices:
                solution[k] = round(solution[k])
            candidate = IntegerCandidate(candidate_name(len(self.candidates)), label, z, solution)
            self.candidates.append(candidate)
            self.nodes.append(IntegerNode(label, "candidate", z, solution))
            sink.write_line(f"Candidate {candidate.name}: z = {self._fmt(z)}")
            if self.best is None or self._better(z, self.best.objective_value):
                self.best = candidate
                sink.write_line("Best Candidate")
            return

        self.nodes.append(IntegerNode(label, "branched", z, x))
        low, high = math.floor(x[j]), math.ceil(x[j])
        left = f"{label}.1" if label else "1"
        right = f"{label}.2" if label else "2"
        sink.write_line(f"Sub-P {left}: x_{j + 1} <= {low}    Sub-P {right}: x_{j + 1} >= {high}")
        row = [0.0] * problem.n
        row[j] = 1.0
        self._explore(problem.with_constraint(row, ConstraintType.LE, low), left)
        self._explore(problem.with_constraint(row, ConstraintType.GE, high), right)


# --- SciPy Verification Functions ---
def verify_with_scipy(capacity, values, weights):
    """
    Solves the 0/1 Knapsack problem using scipy.optimize.milp for verification.

    Args:
        capacity (int): The maximum weight capacity of the knapsack.
        values (list): List of item values.
        weights (list): List of item weights.

    Returns:
        tuple: (max_value, selection_list) or (None, None) if failed.
    """
    n = len(values)
    if n == 0:
        return 0, []

    c = -np.array(values, dtype=float)  # negative for maximization
    constraints = LinearConstraint([weights], [-np.inf], [capacity])
    integrality = np.ones_like(c)
    bounds = Bounds(0, 1)

    result = milp(c=c, constraints=constraints, integrality=integrality, bounds=bounds)
    if not result.success:
        warnings.warn(f"SciPy MILP failed. Status: {result.status}, Message: {result.message}", UserWarning)
        return None, None

    max_value = -result.fun
    selection = np.round(result.x).astype(int).tolist()
    return max_value, selection


def verify_integer_with_scipy(problem, integer_indices=None):
    """Solve an LPProblem as a MILP with scipy; returns (x, objective) or (None, None)."""
    c = np.asarray(problem.objective, dtype=float)
    sign = -1.0 if problem.direction is Direction.MAX else 1.0

    A = np.array([con.coefficients for con in problem.constraints], dtype=float)
    lower, upper = [], []
    for con in problem.constraints:
        lower.append(con.rhs if con.type in (ConstraintType.GE, ConstraintType.EQ) else -np.inf)
        upper.append(con.rhs if con.type in (ConstraintType.LE, ConstraintType.EQ) else np.inf)

    lb, ub = [], []
    for s in problem.variable_signs:
        lb.append(-np.inf if s in (VariableSign.NEGATIVE, VariableSign.UNRESTRICTED) else 0)
        ub.append(0 if s is VariableSign.NEGATIVE else 1 if s is VariableSign.BINARY else np.inf)

    if integer_indices is None:
        integer_indices = problem.integer_indices or list(range(problem.n))
    integrality = np.zeros(problem.n)
    integrality[list(integer_indices)] = 1

    result = milp(c=sign * c, constraints=LinearConstraint(A, lower, upper),
                  integrality=integrality, bounds=Bounds(lb, ub))
    if not result.success:
        warnings.warn(f"SciPy MILP failed. Status: {result.status}, Message: {result.message}", UserWarning)
        return None, None
    return result.x, sign * result.fun
