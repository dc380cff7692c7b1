"""
Transform Module: expression graph -> bound equations -> evaluators

- rewriter: per-node interval / McCormick defining equations
- assembly: calling convention and inlining into four root expressions
- codegen: numpy evaluators via sympy.lambdify
"""

from .rewriter import (
    RewriteConfig,
    RewriteResult,
    Equation,
    rewrite,
)
from .assembly import (
    EvaluatorSpec,
    CompiledEvaluators,
    RelaxationBounds,
    input_ordering,
    assemble,
    compile_spec,
    relax,
    canonical_dumps,
    canonical_hash,
)
from .codegen import (
    compile_function,
)

__all__ = [
    'RewriteConfig',
    'RewriteResult',
    'Equation',
    'rewrite',
    'EvaluatorSpec',
    'CompiledEvaluators',
    'RelaxationBounds',
    'input_ordering',
    'assemble',
    'compile_spec',
    'relax',
    'canonical_dumps',
    'canonical_hash',
    'compile_function',
]
