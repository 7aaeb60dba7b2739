# test_problem_parser.py

import pytest
import sys
import os
from pathlib import Path

sys.path.insert(0, os.path.abspath(os.path.dirname(__file__)))

from canonical_form import ConstraintType, Direction, VariableSign
from lp_ip_solver import main
from problem_parser import ProblemFormatError, load_problem, parse_problem
from simplex import DimensionMismatchError

PROBLEMS = Path(__file__).parent / "problems"


def test_parse_textbook_problem():
    problem = parse_problem("max 3 2\n1 2 <= 10\n2 1 <= 8\n")
    assert problem.direction is Direction.MAX
    assert problem.objective == (3.0, 2.0)
    assert problem.m == 2
    assert problem.constraints[1].coefficients == (2.0, 1.0)
    assert problem.constraints[1].rhs == 8.0
    assert problem.variable_signs == (VariableSign.POSITIVE, VariableSign.POSITIVE)


def test_comments_blank_lines_and_unicode_relations():
    text = """
    # a comment line
    min 2 3   # trailing comment

    1 1 ≥ 4
    2 1 = 6
    """
    problem = parse_problem(text)
    assert problem.direction is Direction.MIN
    assert [c.type for c in problem.constraints] == [ConstraintType.GE, ConstraintType.EQ]


def test_sign_line():
    problem = parse_problem("max 1 1 1\n1 1 1 <= 4\n- urs int\n")
    assert problem.variable_signs == (VariableSign.NEGATIVE, VariableSign.UNRESTRICTED, VariableSign.INTEGER)


def test_bin_line_marks_listed_or_all_variables():
    listed = parse_problem("max 1 2 3\n1 1 1 <= 2\nbin 1 3\n")
    assert listed.variable_signs == (VariableSign.BINARY, VariableSign.POSITIVE, VariableSign.BINARY)
    everything = parse_problem("max 1 2\n1 1 <= 2\nbin\n")
    assert everything.variable_signs == (VariableSign.BINARY, VariableSign.BINARY)


def test_parse_errors_carry_line_numbers():
    with pytest.raises(ProblemFormatError, match="Line 1"):
        parse_problem("maximum 1 2\n1 1 <= 2\n")
    with pytest.raises(ProblemFormatError, match="Line 2"):
        parse_problem("max 1 2\n1 x <= 2\n")
    with pytest.raises(ProblemFormatError, match="Line 3"):
        parse_problem("max 1 2\n1 1 <= 2\n1 1 2\n")
    with pytest.raises(ProblemFormatError, match="no constraints"):
        parse_problem("max 1 2\n")
    with pytest.raises(ProblemFormatError, match="Empty"):
        parse_problem("# nothing here\n")


def test_count_mismatches_raise_dimension_errors():
    with pytest.raises(DimensionMismatchError, match="Line 2"):
        parse_problem("max 1 2\n1 2 3 <= 4\n")
    with pytest.raises(DimensionMismatchError, match="sign tokens"):
        parse_problem("max 1 2\n1 1 <= 4\n+ + +\n")
    with pytest.raises(DimensionMismatchError, match="binary variable 3"):
        parse_problem("max 1 2\n1 1 <= 4\nbin 3\n")


def test_load_problem(tmp_path):
    path = tmp_path / "p.txt"
    path.write_text("min 2 3\n1 1 >= 4\n", encoding="utf-8")
    problem = load_problem(path)
    assert problem.direction is Direction.MIN
    assert problem.m == 1


def test_bundled_problem_files_parse():
    knapsack = load_problem(PROBLEMS / "knapsack.txt")
    assert knapsack.n == 6
    assert all(s is VariableSign.BINARY for s in knapsack.variable_signs)
    integer = load_problem(PROBLEMS / "integer.txt")
    assert integer.integer_indices == [0, 1]


# --- Command line ---

def test_cli_example_prints_status(capsys):
    assert main(["--example", "max"]) == 0
    out = capsys.readouterr().out
    assert "Dual Simplex Optimal Solution" in out
    assert "Status: Optimal" in out


def test_cli_unbounded_returns_one(capsys):
    assert main([str(PROBLEMS / "unbounded.txt")]) == 1
    assert "Status: Unbounded" in capsys.readouterr().out


@pytest.mark.parametrize("filename,algorithm", [
    ("min_cost.txt", "simplex"),
    ("textbook_max.txt", "sensitivity"),
    ("knapsack.txt", "knapsack"),
    ("integer.txt", "bnb"),
    ("integer.txt", "cutting-plane"),
])
def test_cli_algorithms(capsys, filename, algorithm):
    assert main([str(PROBLEMS / filename), "--algorithm", algorithm]) == 0
    assert "Status: Optimal" in capsys.readouterr().out


def test_cli_missing_file_returns_two(capsys, tmp_path):
    assert main([str(tmp_path / "missing.txt")]) == 2
    assert "Error" in capsys.readouterr().err


def test_cli_bad_file_returns_two(capsys, tmp_path):
    path = tmp_path / "bad.txt"
    path.write_text("max 1 2\n1 2 3 <= 4\n", encoding="utf-8")
    assert main([str(path)]) == 2


def test_cli_output_file(capsys, tmp_path):
    target = tmp_path / "narration.txt"
    assert main(["--example", "min", "--fractions", "--output", str(target)]) == 0
    out = capsys.readouterr().out
    text = target.read_text(encoding="utf-8")
    assert "t-1" in text
    assert "t-1" not in out
    assert "Status: Optimal" in out
