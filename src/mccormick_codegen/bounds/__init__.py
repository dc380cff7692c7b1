"""
Bounds Module

- interval: static interval arithmetic over declared variable bounds
- mccormick: the primitive relaxation rule table
"""

from .interval import (
    Interval,
    IntervalEvaluator,
    interval_evaluate,
)
from .mccormick import (
    BoundTuple,
    Operand,
    Convexity,
    Monotonicity,
    FormulaBuilder,
    RelaxationRule,
    monotone_univariate,
    rule_table,
    extend_rules,
    lookup_rule,
)

__all__ = [
    # Interval
    'Interval',
    'IntervalEvaluator',
    'interval_evaluate',
    # McCormick rules
    'BoundTuple',
    'Operand',
    'Convexity',
    'Monotonicity',
    'FormulaBuilder',
    'RelaxationRule',
    'monotone_univariate',
    'rule_table',
    'extend_rules',
    'lookup_rule',
]
