"""
McCormick Codegen - Interval and McCormick Relaxation Code Generation

Turns an arithmetic expression into four compiled evaluators:
- lo, hi: natural interval extension
- cv: convex underestimator
- cc: concave overestimator

satisfying lo <= cv <= cc <= hi on every box inside the declared bounds.
Intended for the bounding step of branch-and-bound global optimizers.

Key Features:
- Hash-consed expression DAGs, rewritten once per distinct sub-expression
- Immutable, extensible per-operator relaxation rule table
- Branch-free numpy evaluators that broadcast over batches of boxes
- Relaxed ODE right-hand sides for bounding dynamic systems
"""

from .errors import (
    RelaxationError,
    UnsupportedOperatorError,
    DomainViolationError,
    NamingCollisionError,
)
from .naming import (
    BoundedSymbolSet,
    Namer,
    derive_bounds,
)
from .expr_graph import (
    ExpressionGraph,
    ExprNode,
    Variable,
    Constant,
    UnaryOp,
    BinaryOp,
    Conditional,
    OpType,
    TracedVar,
)
from .bounds.interval import (
    Interval,
    IntervalEvaluator,
    interval_evaluate,
)
from .bounds.mccormick import (
    BoundTuple,
    RelaxationRule,
    rule_table,
    extend_rules,
)
from .transform.rewriter import (
    RewriteConfig,
    RewriteResult,
    Equation,
    rewrite,
)
from .transform.assembly import (
    EvaluatorSpec,
    CompiledEvaluators,
    RelaxationBounds,
    input_ordering,
    assemble,
    compile_spec,
    relax,
)
from .sympy_io import (
    from_sympy,
    to_sympy,
)
from .dynamics.system import (
    ODESystem,
    ExpandedSystem,
    expand,
)

__version__ = "0.1.0"

__all__ = [
    # Errors
    "RelaxationError",
    "UnsupportedOperatorError",
    "DomainViolationError",
    "NamingCollisionError",
    # Naming
    "BoundedSymbolSet",
    "Namer",
    "derive_bounds",
    # Expression Graph
    "ExpressionGraph",
    "ExprNode",
    "Variable",
    "Constant",
    "UnaryOp",
    "BinaryOp",
    "Conditional",
    "OpType",
    "TracedVar",
    # Interval
    "Interval",
    "IntervalEvaluator",
    "interval_evaluate",
    # Rules
    "BoundTuple",
    "RelaxationRule",
    "rule_table",
    "extend_rules",
    # Rewrite & assembly
    "RewriteConfig",
    "RewriteResult",
    "Equation",
    "rewrite",
    "EvaluatorSpec",
    "CompiledEvaluators",
    "RelaxationBounds",
    "input_ordering",
    "assemble",
    "compile_spec",
    "relax",
    # SymPy
    "from_sympy",
    "to_sympy",
    # Dynamics
    "ODESystem",
    "ExpandedSystem",
    "expand",
]
