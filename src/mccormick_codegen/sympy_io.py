"""
SymPy Interchange

Converts SymPy expressions into expression graph nodes and back, so
expressions can be written symbolically (or parsed from strings) and the
generated bound expressions inspected symbolically.

Conversion into the graph keeps SymPy's canonical structure with a few
normalisations the rule table relies on:
- subtraction instead of adding a negated term
- one division per product (all negative powers gathered in the denominator)
- x**2 as square, x**(1/2) as sqrt, x**-1 as 1/x
"""

from typing import Dict, Mapping, Optional, Tuple
import sympy as sp

from .errors import UnsupportedOperatorError
from .expr_graph import (
    ExpressionGraph,
    ExprNode,
    Variable,
    Constant,
    UnaryOp,
    BinaryOp,
    Conditional,
    OpType,
)


_SYMPY_UNARY = {
    sp.exp: OpType.EXP,
    sp.log: OpType.LOG,
    sp.Abs: OpType.ABS,
    sp.sin: OpType.SIN,
    sp.cos: OpType.COS,
    sp.tanh: OpType.TANH,
}

_SYMPY_MINMAX = {
    sp.Min: OpType.MIN,
    sp.Max: OpType.MAX,
}

# Inert stand-ins for min/max/where, printed by name so numeric backends
# can bind them to elementwise functions
MINIMUM = sp.Function("minimum")
MAXIMUM = sp.Function("maximum")
SELECT_POSITIVE = sp.Function("select_positive")


class _SympyConverter:
    """Converts one SymPy expression tree into a graph, sharing repeated subtrees."""

    def __init__(self, graph: ExpressionGraph):
        self.graph = graph
        self._memo: Dict[sp.Basic, ExprNode] = {}

    def convert(self, expr: sp.Basic) -> ExprNode:
        node = self._memo.get(expr)
        if node is None:
            node = self._convert(expr)
            self._memo[expr] = node
        return node

    def _convert(self, expr: sp.Basic) -> ExprNode:
        g = self.graph

        if expr.is_Symbol:
            return g.variable(expr.name)

        if expr.is_number:
            if not expr.is_real:
                raise UnsupportedOperatorError(f"non-real constant {expr}")
            return g.constant(float(expr))

        if expr.is_Add:
            return self._add(expr)

        if expr.is_Mul:
            return self._mul(expr)

        if expr.is_Pow:
            return self._pow(expr.base, expr.exp)

        func = expr.func
        if func in _SYMPY_UNARY:
            if len(expr.args) != 1:
                raise UnsupportedOperatorError(f"{func.__name__} with {len(expr.args)} arguments")
            return g.unary(_SYMPY_UNARY[func], self.convert(expr.args[0]))

        if func in _SYMPY_MINMAX:
            op = _SYMPY_MINMAX[func]
            args = [self.convert(a) for a in expr.args]
            node = args[0]
            for arg in args[1:]:
                node = g.binary(op, node, arg)
            return node

        raise UnsupportedOperatorError(type(expr).__name__)

    def _add(self, expr: sp.Add) -> ExprNode:
        g = self.graph
        terms = list(expr.args)
        node = self.convert(terms[0])
        for term in terms[1:]:
            if term.could_extract_minus_sign():
                node = g.binary(OpType.SUB, node, self.convert(-term))
            else:
                node = g.binary(OpType.ADD, node, self.convert(term))
        return node

    def _mul(self, expr: sp.Mul) -> ExprNode:
        g = self.graph
        coeff, factors = expr.as_coeff_mul()

        negate = coeff.is_negative
        if negate:
            coeff = -coeff

        numer = []
        denom = []
        if coeff != 1:
            numer.append(g.constant(float(coeff)))
        for factor in factors:
            if factor.is_Pow and factor.exp.is_Number and factor.exp.is_negative:
                denom.append(self.convert(factor.base ** (-factor.exp)))
            else:
                numer.append(self.convert(factor))

        node = self._product(numer) if numer else g.constant(1.0)
        if denom:
            node = g.binary(OpType.DIV, node, self._product(denom))
        if negate:
            node = g.unary(OpType.NEG, node)
        return node

    def _product(self, nodes) -> ExprNode:
        node = nodes[0]
        for other in nodes[1:]:
            node = self.graph.binary(OpType.MUL, node, other)
        return node

    def _pow(self, base: sp.Basic, exponent: sp.Basic) -> ExprNode:
        g = self.graph
        if exponent == sp.Rational(1, 2):
            return g.unary(OpType.SQRT, self.convert(base))
        if exponent.is_Integer:
            n = int(exponent)
            if n == 0:
                return g.constant(1.0)
            if n > 0:
                return self._int_power(self.convert(base), n)
            return g.binary(OpType.DIV, g.constant(1.0), self._int_power(self.convert(base), -n))
        if exponent.is_Rational and exponent.is_negative:
            return g.binary(OpType.DIV, g.constant(1.0), self._pow(base, -exponent))
        return g.binary(OpType.POW, self.convert(base), self.convert(exponent))

    def _int_power(self, base: ExprNode, n: int) -> ExprNode:
        """base**n for n >= 1 by repeated squaring."""
        if n == 1:
            return base
        if n % 2 == 0:
            return self.graph.unary(OpType.SQUARE, self._int_power(base, n // 2))
        return self.graph.binary(OpType.MUL, base, self._int_power(base, n - 1))


def from_sympy(
    expr: sp.Basic,
    graph: Optional[ExpressionGraph] = None
) -> Tuple[ExpressionGraph, ExprNode]:
    """
    Convert a SymPy expression into an expression graph.

    Args:
        expr: SymPy expression (or anything sympy.sympify accepts)
        graph: Graph to add nodes to (default: a fresh graph, whose
            output is set to the converted node)

    Returns:
        Tuple of (graph, node)

    Raises:
        UnsupportedOperatorError: for SymPy functions with no graph operator
    """
    expr = sp.sympify(expr)
    fresh = graph is None
    graph = graph if graph is not None else ExpressionGraph()
    node = _SympyConverter(graph).convert(expr)
    if fresh:
        graph.set_output(node)
    return graph, node


def _constant_to_sympy(value: float) -> sp.Expr:
    if value == float('inf'):
        return sp.oo
    if value == float('-inf'):
        return -sp.oo
    if float(value).is_integer():
        return sp.Integer(int(value))
    return sp.Float(value)


def to_sympy(
    node: ExprNode,
    symbols: Optional[Mapping[str, sp.Symbol]] = None,
    *,
    numeric: bool = False
) -> sp.Expr:
    """
    Convert a graph node into a SymPy expression.

    min/max are kept unevaluated; conditionals become Piecewise. With
    `numeric=True` they become the inert functions MINIMUM, MAXIMUM and
    SELECT_POSITIVE instead, for code generation.

    Args:
        node: Root node
        symbols: Optional map from variable name to SymPy symbol
            (default: plain sympy.Symbol(name))
        numeric: Emit inert functions for min/max/where

    Returns:
        SymPy expression
    """
    symbols = dict(symbols or {})
    done: Dict[int, sp.Expr] = {}
    stack = [(node, False)]

    while stack:
        current, expanded = stack.pop()
        nid = current.node_id
        if nid in done:
            continue
        if not expanded:
            stack.append((current, True))
            for child in current.children():
                if child.node_id not in done:
                    stack.append((child, False))
            continue
        done[nid] = _node_to_sympy(current, done, symbols, numeric)

    return done[node.node_id]


def _node_to_sympy(
    node: ExprNode,
    done: Dict[int, sp.Expr],
    symbols: Dict[str, sp.Symbol],
    numeric: bool
) -> sp.Expr:
    if isinstance(node, Variable):
        if node.name not in symbols:
            symbols[node.name] = sp.Symbol(node.name)
        return symbols[node.name]

    if isinstance(node, Constant):
        return _constant_to_sympy(node.value)

    if isinstance(node, UnaryOp):
        x = done[node.child.node_id]
        if node.op == OpType.NEG:
            return -x
        if node.op == OpType.SQUARE:
            return x ** 2
        if node.op == OpType.SQRT:
            return sp.sqrt(x)
        for func, op in _SYMPY_UNARY.items():
            if op == node.op:
                return func(x)
        raise ValueError(f"Unknown unary op: {node.op}")

    if isinstance(node, BinaryOp):
        l, r = done[node.left.node_id], done[node.right.node_id]
        if node.op == OpType.ADD:
            return l + r
        if node.op == OpType.SUB:
            return l - r
        if node.op == OpType.MUL:
            return l * r
        if node.op == OpType.DIV:
            return l / r
        if node.op == OpType.POW:
            return l ** r
        if node.op == OpType.MIN and numeric:
            return MINIMUM(l, r)
        if node.op == OpType.MAX and numeric:
            return MAXIMUM(l, r)
        if node.op == OpType.MIN:
            return sp.Min(l, r, evaluate=False)
        if node.op == OpType.MAX:
            return sp.Max(l, r, evaluate=False)
        raise ValueError(f"Unknown binary op: {node.op}")

    if isinstance(node, Conditional):
        t, a, b = (done[c.node_id] for c in node.children())
        if numeric:
            return SELECT_POSITIVE(t, a, b)
        return sp.Piecewise((a, t > 0), (b, True))

    raise ValueError(f"Unknown node type: {type(node)}")
