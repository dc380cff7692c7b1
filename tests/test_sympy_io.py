"""
Tests for SymPy Interchange
"""

import numpy as np
import pytest
import sympy as sp
from mccormick_codegen.errors import UnsupportedOperatorError
from mccormick_codegen.expr_graph import BinaryOp, Conditional, ExpressionGraph, OpType, UnaryOp
from mccormick_codegen.sympy_io import from_sympy, to_sympy
from mccormick_codegen.transform import relax


x, y = sp.symbols("x y")


class TestFromSympy:
    """Normalisation of SymPy structure."""

    def test_sets_output(self):
        graph, node = from_sympy(x + y)
        assert graph.output_node is node
        assert node.op == OpType.ADD

    def test_into_existing_graph(self):
        g = ExpressionGraph()
        graph, node = from_sympy(x * y, g)
        assert graph is g
        assert g.output_node is None
        assert node.op == OpType.MUL

    def test_string_input(self):
        _, node = from_sympy("exp(x)")
        assert node.op == OpType.EXP

    def test_subtraction(self):
        _, node = from_sympy(x - y)
        assert node.op == OpType.SUB

    def test_negation(self):
        _, node = from_sympy(-x)
        assert isinstance(node, UnaryOp) and node.op == OpType.NEG

    def test_division(self):
        _, node = from_sympy(x / y)
        assert node.op == OpType.DIV
        assert node.left.name == "x" and node.right.name == "y"

    def test_reciprocal(self):
        _, node = from_sympy(1 / x)
        assert node.op == OpType.DIV
        assert node.left.value == 1.0

    @pytest.mark.parametrize("expr,op", [
        (x ** 2, OpType.SQUARE),
        (sp.sqrt(x), OpType.SQRT),
        (sp.Abs(x), OpType.ABS),
        (sp.log(x), OpType.LOG),
        (x ** 3, OpType.MUL),
        (x ** 4, OpType.SQUARE),
        (x ** -2, OpType.DIV),
        (x ** sp.Float(1.5), OpType.POW),
        (sp.Min(x, y), OpType.MIN),
    ])
    def test_operator(self, expr, op):
        _, node = from_sympy(expr)
        assert node.op == op

    def test_shared_subtrees(self):
        graph, _ = from_sympy(sp.exp(x * y) + (x * y) ** 2)
        muls = [n for n in graph.topological_order() if isinstance(n, BinaryOp) and n.op == OpType.MUL]
        assert len(muls) == 1

    def test_unsupported_function(self):
        with pytest.raises(UnsupportedOperatorError) as info:
            from_sympy(sp.erf(x))
        assert info.value.op == "erf"

    def test_complex_constant(self):
        with pytest.raises(UnsupportedOperatorError):
            from_sympy(x + sp.I)

    def test_numeric_agreement(self):
        """Converted graphs evaluate like SymPy's own lambdify."""
        expr = x * y - sp.exp(x) / (y ** 2 + 1) + sp.Abs(x - 2 * y) + sp.sqrt(y + 4) - 2 * x / (3 * y)
        graph, _ = from_sympy(expr)
        rng = np.random.default_rng(3)
        xs = rng.uniform(-2, 2, 50)
        ys = rng.uniform(0.5, 3, 50)
        expected = sp.lambdify((x, y), expr, "numpy")(xs, ys)
        np.testing.assert_allclose(graph.evaluate({"x": xs, "y": ys}), expected)

    def test_constant(self):
        graph, node = from_sympy(sp.pi * x)
        assert graph.evaluate({"x": 2.0}) == pytest.approx(2 * np.pi)


class TestToSympy:
    """Graph nodes back to SymPy."""

    def test_round_trip(self):
        expr = x * y + sp.exp(x) - 2 * x / y + sp.sqrt(y)
        _, node = from_sympy(expr)
        assert sp.simplify(to_sympy(node) - expr) == 0

    def test_minmax_unevaluated(self):
        g = ExpressionGraph()
        node = g.binary(OpType.MIN, g.variable("x"), g.constant(1.0))
        assert isinstance(to_sympy(node), sp.Min)

    def test_conditional(self):
        g = ExpressionGraph()
        a = g.variable("x")
        node = g.where(a, a, g.constant(0.0))
        assert isinstance(node, Conditional)
        out = to_sympy(node)
        assert isinstance(out, sp.Piecewise)
        assert out.subs(x, 2) == 2
        assert out.subs(x, -1) == 0

    def test_infinite_constant(self):
        g = ExpressionGraph()
        assert to_sympy(g.constant(float("inf"))) == sp.oo
        assert to_sympy(g.constant(-3.0)) == sp.Integer(-3)

    def test_custom_symbols(self):
        g = ExpressionGraph()
        xp = sp.Symbol("x", positive=True)
        out = to_sympy(g.unary(OpType.EXP, g.variable("x")), {"x": xp})
        assert out == sp.exp(xp)


class TestRelaxSympy:
    """Relaxing expressions built with SymPy."""

    def test_product(self):
        graph, _ = from_sympy(x * y)
        ev = relax(graph, {"x": (-1, 4), "y": (0.5, 3)})
        bounds = ev.evaluate({"x": (-1, 4, 2.5), "y": (0.5, 3, 1.5)})
        assert [float(v) for v in bounds] == pytest.approx([-3.0, 12.0, 1.5, 5.25])

    def test_quotient_over_positive_box(self):
        graph, _ = from_sympy("x/y")
        ev = relax(graph, {"x": (-1, 4), "y": (0.5, 3)})
        lo, hi, cv, cc = (float(v) for v in ev.evaluate({"x": (-1, 4, 2.5), "y": (0.5, 3, 1.5)}))
        assert lo <= cv <= 2.5 / 1.5 <= cc <= hi


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
