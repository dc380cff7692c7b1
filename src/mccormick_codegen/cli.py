"""
McCormick Codegen Command-Line Interface

Relaxes an expression over a box and prints its bounds at a point:

    mccormick-codegen relax "x*y" --bound x=-1,4 --bound y=0.5,3 --point x=2.5 --point y=1.5
"""

import sys
import argparse
import json
from typing import Dict, List, Optional, Tuple
import sympy as sp

from . import (
    RelaxationError,
    RewriteConfig,
    assemble,
    compile_spec,
    from_sympy,
    rewrite,
)


def parse_assignment(text: str) -> Tuple[str, List[float]]:
    """Parse 'name=v1,v2,...' into (name, [v1, v2, ...])."""
    name, sep, values = text.partition('=')
    name = name.strip()
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"Expected name=value[,value], got '{text}'")
    try:
        numbers = [float(v) for v in values.split(',')]
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid number in '{text}'")
    return name, numbers


def _collect_bounds(items) -> Dict[str, Tuple[float, float]]:
    bounds = {}
    for name, values in items:
        if len(values) != 2:
            raise ValueError(f"Bound for '{name}' needs two values lo,hi")
        if not values[0] <= values[1]:
            raise ValueError(f"Bound for '{name}' has lo > hi: {values[0]:g} > {values[1]:g}")
        bounds[name] = (values[0], values[1])
    return bounds


def _collect_points(items) -> Dict[str, float]:
    points = {}
    for name, values in items:
        if len(values) != 1:
            raise ValueError(f"Point for '{name}' needs one value")
        points[name] = values[0]
    return points


def cmd_relax(args):
    """Relax an expression and evaluate its bounds."""
    print("=" * 60)
    print("McCormick Relaxation")
    print("=" * 60)

    try:
        expr = sp.sympify(args.expression)
        bounds = _collect_bounds(args.bound or [])
        points = _collect_points(args.point or [])
    except (sp.SympifyError, ValueError) as e:
        print(f"Error: {e}")
        return 1

    config = RewriteConfig(
        apply_cuts=not args.no_cuts,
        specialize_signs=not args.no_specialize
    )

    try:
        graph, _ = from_sympy(expr)
        result = rewrite(graph, bounds, config=config)
    except RelaxationError as e:
        print(f"Error: {e}")
        return 1

    spec = assemble(result)
    evaluators = compile_spec(spec)

    names = [bset.base for bset in result.inputs]
    missing = [n for n in names if n not in bounds]
    if missing:
        print(f"Error: no bounds given for: {', '.join(missing)}")
        return 1
    outside = [n for n in points if n in bounds and not bounds[n][0] <= points[n] <= bounds[n][1]]
    if outside:
        print(f"Error: point outside bounds for: {', '.join(outside)}")
        return 1

    values = {}
    for name in names:
        lo, hi = bounds[name]
        values[name] = (lo, hi, points.get(name, (lo + hi) / 2.0))
    lo, hi, cv, cc = (float(v) for v in evaluators.evaluate(values))

    print(f"\nExpression: {expr}")
    for name in names:
        lo_n, hi_n, x = values[name]
        print(f"  {name} in [{lo_n:g}, {hi_n:g}] at {x:g}")
    print(f"Auxiliary sets: {len(result.aux_sets)} ({result.num_equations} equations)")
    print(f"Ordering: {', '.join(evaluators.ordering)}")
    print(f"Fingerprint: {spec.fingerprint()[:16]}")

    print("\n" + "-" * 60)
    print("BOUNDS")
    print("-" * 60)
    print(f"lo = {lo:.12g}")
    print(f"hi = {hi:.12g}")
    print(f"cv = {cv:.12g}")
    print(f"cc = {cc:.12g}")

    if args.show_source:
        print("\n" + "-" * 60)
        print("SOURCE")
        print("-" * 60)
        print(evaluators.all_eval.__source__)

    if args.output:
        output_data = {
            'expression': str(expr),
            'bounds': {n: list(bounds[n]) for n in names},
            'point': {n: values[n][2] for n in names},
            'ordering': evaluators.ordering,
            'lo': lo,
            'hi': hi,
            'cv': cv,
            'cc': cc,
            'num_equations': result.num_equations,
            'fingerprint': spec.fingerprint(),
        }
        with open(args.output, 'w') as f:
            json.dump(output_data, f, indent=2)
        print(f"\nResults saved to: {args.output}")

    return 0


def cmd_version(args):
    """Print version information."""
    from . import __version__
    print(f"mccormick-codegen {__version__}")
    print("Interval and McCormick relaxation code generation")
    return 0


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog='mccormick-codegen',
        description='McCormick Codegen - Interval and McCormick relaxations of expressions'
    )
    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # Relax command
    relax_parser = subparsers.add_parser('relax', help='Relax an expression over a box')
    relax_parser.add_argument('expression',
                              help='Expression in SymPy syntax, e.g. "x*y + exp(x)"')
    relax_parser.add_argument('--bound', '-b', type=parse_assignment, action='append',
                              metavar='NAME=LO,HI', help='Bounds of a symbol (repeatable)')
    relax_parser.add_argument('--point', '-p', type=parse_assignment, action='append',
                              metavar='NAME=X', help='Relaxation point of a symbol (default: midpoint)')
    relax_parser.add_argument('--show-source', action='store_true',
                              help='Print the generated evaluator source')
    relax_parser.add_argument('--no-cuts', action='store_true',
                              help='Do not intersect relaxations with interval bounds')
    relax_parser.add_argument('--no-specialize', action='store_true',
                              help='Keep sign case splits in the generated code')
    relax_parser.add_argument('--output', '-o', type=str,
                              help='Output JSON file')
    relax_parser.set_defaults(func=cmd_relax)

    # Version command
    ver_parser = subparsers.add_parser('version', help='Print version')
    ver_parser.set_defaults(func=cmd_version)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
