# problem_parser.py
"""
Reads the plain-text problem format::

    max 3 2
    1 2 <= 10
    2 1 <= 8
    + urs          # optional sign line, one token per variable (+ - urs int bin)
    bin 1          # optional, 1-based variables to make binary; bare 'bin' = all

Blank lines and anything after '#' are ignored.
"""
from canonical_form import ConstraintType, Direction, LPProblem, VariableSign, Constraint
from simplex_errors import DimensionMismatchError

SIGN_TOKENS = {"+", "-", "urs", "int", "bin"}
RELATIONS = {"<=", ">=", "=", "≤", "≥", "==", "=<", "=>"}


class ProblemFormatError(ValueError):
    """Raised when a problem file cannot be parsed."""
    pass


def _numbers(tokens, line_no):
    try:
        return [float(t) for t in tokens]
    except ValueError as e:
        raise ProblemFormatError(f"Line {line_no}: {e}") from None


def parse_problem(text):
    lines = []
    for line_no, raw in enumerate(text.splitlines(), start=1):
        stripped = raw.split("#", 1)[0].strip()
        if stripped:
            lines.append((line_no, stripped.split()))
    if not lines:
        raise ProblemFormatError("Empty problem.")

    line_no, tokens = lines[0]
    try:
        direction = Direction.parse(tokens[0])
    except ValueError as e:
        raise ProblemFormatError(f"Line {line_no}: {e}") from None
    objective = _numbers(tokens[1:], line_no)
    if not objective:
        raise ProblemFormatError(f"Line {line_no}: objective has no coefficients.")
    n = len(objective)

    constraints = []
    signs = None
    binary = set()
    for line_no, tokens in lines[1:]:
        if tokens[0].lower() == "bin" and all(t.isdigit() for t in tokens[1:]):
            indices = [int(t) for t in tokens[1:]] or list(range(1, n + 1))
            for k in indices:
                if not 1 <= k <= n:
                    raise DimensionMismatchError(f"Line {line_no}: binary variable {k} outside 1..{n}.")
                binary.add(k - 1)
            continue

        relation = [i for i, t in enumerate(tokens) if t in RELATIONS]
        if not relation and all(t.lower() in SIGN_TOKENS for t in tokens):
            if len(tokens) != n:
                raise DimensionMismatchError(f"Line {line_no}: {len(tokens)} sign tokens for {n} variables.")
            signs = [VariableSign.parse(t) for t in tokens]
            continue

        if len(relation) != 1 or relation[0] != len(tokens) - 2:
            raise ProblemFormatError(f"Line {line_no}: expected 'a1 ... an <=|>=|= rhs'.")
        pos = relation[0]
        coefficients = _numbers(tokens[:pos], line_no)
        if len(coefficients) != n:
            raise DimensionMismatchError(
                f"Line {line_no}: {len(coefficients)} coefficients, objective has {n}."
            )
        rhs = _numbers(tokens[pos + 1:], line_no)[0]
        constraints.append(Constraint(coefficients, rhs, ConstraintType.parse(tokens[pos])))

    if not constraints:
        raise ProblemFormatError("Problem has no constraints.")

    if signs is None:
        signs = [VariableSign.POSITIVE] * n
    for j in binary:
        signs[j] = VariableSign.BINARY
    return LPProblem(objective, constraints, direction, signs)


def load_problem(path):
    with open(path, "r", encoding="utf-8") as f:
        return parse_problem(f.read())
