"""
Numeric Code Generation

Compiles one or more roots of an expression graph into a numpy function
with sympy.lambdify:

    f = compile_function([cv_root, cc_root], ["x_cc", "x_cv", "x_hi", "x_lo"])
    cv, cc = f(x_cc, x_cv, x_hi, x_lo)

Roots are converted to SymPy (min/max/where as inert functions bound to
np.minimum, np.maximum and np.where) and lambdified with common
subexpression elimination, so shared sub-expressions of the bound DAG are
computed once. Arguments are converted to float64 arrays and every output
has their broadcast shape, so one call evaluates a whole batch of boxes.
Selections evaluate both branches; errstate silences the discarded
branch's 0/0.
"""

import inspect
import logging
from typing import Any, Callable, Sequence
import numpy as np
import sympy as sp

from ..expr_graph import ExprNode
from ..sympy_io import to_sympy


logger = logging.getLogger(__name__)


def _select_positive(test, if_pos, otherwise):
    return np.where(np.greater(test, 0), if_pos, otherwise)


NUMPY_FUNCTIONS = {
    "minimum": np.minimum,
    "maximum": np.maximum,
    "select_positive": _select_positive,
}


def compile_function(
    outputs: Sequence[ExprNode],
    arg_names: Sequence[str]
) -> Callable[..., Any]:
    """
    Compile a numpy function computing `outputs` from positional arguments.

    Args:
        outputs: Nodes to return (a tuple if more than one)
        arg_names: Variable names bound to the positional parameters

    Returns:
        Function of len(arg_names) positional arguments. The lambdified
        source is attached as `__source__`.

    Raises:
        ValueError: if an output uses a variable not in `arg_names`
    """
    symbols = {name: sp.Symbol(name) for name in arg_names}
    exprs = [to_sympy(node, symbols, numeric=True) for node in outputs]

    free = set()
    for expr in exprs:
        free |= {s.name for s in expr.free_symbols}
    missing = sorted(free - set(arg_names))
    if missing:
        raise ValueError(f"Variable(s) not bound to an argument: {', '.join(missing)}")

    func = sp.lambdify(
        [symbols[name] for name in arg_names],
        tuple(exprs),
        modules=[NUMPY_FUNCTIONS, "numpy"],
        cse=True,
    )
    single = len(exprs) == 1

    def evaluate(*args):
        arrays = [np.asarray(a, dtype=np.float64) for a in args]
        zero = np.zeros(np.broadcast_shapes(*(a.shape for a in arrays)))
        with np.errstate(divide="ignore", invalid="ignore"):
            values = func(*arrays)
        # Every output takes the broadcast shape of all arguments
        values = tuple(np.asarray(v, dtype=np.float64) + zero for v in values)
        return values[0] if single else values

    evaluate.__source__ = inspect.getsource(func)
    evaluate.__doc__ = f"Generated evaluator over ({', '.join(arg_names)})"

    logger.debug(
        "Compiled %d outputs over %d arguments", len(exprs), len(arg_names)
    )
    return evaluate
