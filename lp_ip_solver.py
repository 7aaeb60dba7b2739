# lp_ip_solver.py
"""Command-line driver: pick an algorithm, narrate it to the console or a file."""
import argparse
import sys

from branch_and_bound import IntegerBranchAndBound, KnapsackBranchAndBound
from canonical_form import LPProblem, check_sign_restrictions
from cutting_plane import CuttingPlaneSolver
from output_sink import ConsoleSink
from problem_parser import ProblemFormatError, load_problem
from sensitivity import SensitivityAnalysis
from simplex import DualSimplex, SolveStatus
from simplex_errors import SimplexError
from utils import EXAMPLES

ALGORITHMS = ["simplex", "bnb", "knapsack", "cutting-plane", "sensitivity"]


def build_parser():
    p = argparse.ArgumentParser(description="Tableau LP/IP solver (dual + primal simplex, B&B, cuts, sensitivity)")
    source = p.add_mutually_exclusive_group(required=True)
    source.add_argument("problem", nargs="?", help="Path to a problem text file")
    source.add_argument("--example", choices=sorted(EXAMPLES), help="Use a built-in example problem")
    p.add_argument("--algorithm", "-a", choices=ALGORITHMS, default="simplex")
    p.add_argument("--fractions", action="store_true", help="Print tableau entries as fractions")
    p.add_argument("--output", "-o", help="Write the narration to this file instead of stdout")
    return p


def run(problem, algorithm, sink, use_fractions=False):
    """Run one algorithm; returns the final SolveStatus."""
    options = dict(sink=sink, use_fractions=use_fractions)

    if algorithm == "simplex":
        engine = DualSimplex(problem, **options)
        result = engine.solve()
        if result.is_optimal:
            check_sign_restrictions(result.solution, problem.variable_signs, sink=sink)
        return result.status

    if algorithm == "sensitivity":
        engine = DualSimplex(problem, **options)
        result = engine.solve()
        if result.is_optimal:
            SensitivityAnalysis.from_engine(engine, result, **options).report()
        return result.status

    if algorithm == "knapsack":
        result = KnapsackBranchAndBound.from_problem(problem, **options).solve()
        return SolveStatus.OPTIMAL if result.best_candidate is not None else SolveStatus.INFEASIBLE

    if algorithm == "bnb":
        return IntegerBranchAndBound(problem, **options).solve().status

    if algorithm == "cutting-plane":
        return CuttingPlaneSolver(problem, **options).solve().status

    raise ValueError(f"Unknown algorithm '{algorithm}'")


def main(argv=None):
    args = build_parser().parse_args(argv)
    try:
        if args.example:
            problem = LPProblem.from_lists(*EXAMPLES[args.example]())
        else:
            problem = load_problem(args.problem)
    except (OSError, ProblemFormatError, SimplexError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    try:
        if args.output:
            with open(args.output, "w", encoding="utf-8") as f:
                status = run(problem, args.algorithm, ConsoleSink(f), args.fractions)
        else:
            status = run(problem, args.algorithm, ConsoleSink(), args.fractions)
    except (ValueError, SimplexError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    print(f"Status: {status.value}")
    return 0 if status is SolveStatus.OPTIMAL else 1


if __name__ == "__main__":
    sys.exit(main())
