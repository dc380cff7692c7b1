"""
Tests for Evaluator Ordering, Assembly and Code Generation
"""

import numpy as np
import pytest
import sympy as sp
from mccormick_codegen.errors import DomainViolationError
from mccormick_codegen.expr_graph import ExpressionGraph, OpType, TracedVar, exp
from mccormick_codegen.naming import derive_bounds
from mccormick_codegen.transform import (
    assemble,
    compile_function,
    compile_spec,
    input_ordering,
    relax,
    rewrite,
)


BOX = {"x": (-1, 4), "y": (0.5, 3)}
POINT = {"x": (-1, 4, 2.5), "y": (0.5, 3, 1.5)}


class TestOrdering:
    """Positional calling convention."""

    def test_input_ordering(self):
        inputs = [derive_bounds("x"), derive_bounds("y")]
        assert input_ordering(inputs) == [
            "x_cc", "x_cv", "x_hi", "x_lo",
            "y_cc", "y_cv", "y_hi", "y_lo",
        ]

    def test_first_seen(self):
        g = ExpressionGraph()
        x, y = TracedVar.symbols(g, "x", "y")
        spec = assemble(rewrite(y * x, BOX))
        assert spec.ordering[:4] == ["y_cc", "y_cv", "y_hi", "y_lo"]

    def test_positional_evaluators(self):
        """Each evaluator takes the ordering vector positionally."""
        g = ExpressionGraph()
        x, y = TracedVar.symbols(g, "x", "y")
        ev = relax(x + y, BOX)
        # x_cc, x_cv, x_hi, x_lo, y_cc, y_cv, y_hi, y_lo
        args = [2.5, 2.5, 4.0, -1.0, 1.5, 1.5, 3.0, 0.5]
        assert float(ev.lo_eval(*args)) == -0.5
        assert float(ev.hi_eval(*args)) == 7.0
        assert float(ev.cv_eval(*args)) == 4.0
        assert float(ev.cc_eval(*args)) == 4.0


class TestScenarios:
    """End-to-end relaxations at known points."""

    def test_sum(self):
        g = ExpressionGraph()
        x, y = TracedVar.symbols(g, "x", "y")
        lo, hi, cv, cc = relax(x + y, BOX).evaluate(POINT)
        assert (float(lo), float(hi), float(cv), float(cc)) == (-0.5, 7.0, 4.0, 4.0)

    def test_product(self):
        g = ExpressionGraph()
        x, y = TracedVar.symbols(g, "x", "y")
        bounds = relax(x * y, BOX).evaluate(POINT)
        assert [float(v) for v in bounds] == pytest.approx([-3.0, 12.0, 1.5, 5.25])

    def test_quotient(self):
        g = ExpressionGraph()
        x, y = TracedVar.symbols(g, "x", "y")
        lo, hi, cv, cc = relax(x / y, BOX).evaluate(POINT)
        assert float(lo) <= float(cv) <= 2.5 / 1.5 <= float(cc) <= float(hi)

    def test_quotient_crossing_zero(self):
        g = ExpressionGraph()
        x, y = TracedVar.symbols(g, "x", "y")
        with pytest.raises(DomainViolationError):
            relax(x / y, {"x": (-1, 4), "y": (-1, 3)})


class TestCompiledEvaluators:
    """Compiled evaluator behaviour."""

    def test_all_eval_matches_single(self):
        g = ExpressionGraph()
        x, y = TracedVar.symbols(g, "x", "y")
        ev = relax(exp(x * y) - x / y, BOX)
        args = ev.pack(POINT)
        combined = ev.all_eval(*args)
        singles = (ev.lo_eval(*args), ev.hi_eval(*args), ev.cv_eval(*args), ev.cc_eval(*args))
        assert [float(v) for v in combined] == pytest.approx([float(v) for v in singles])

    def test_broadcast(self):
        """Array arguments evaluate a batch of boxes at once."""
        g = ExpressionGraph()
        x, y = TracedVar.symbols(g, "x", "y")
        ev = relax(x * y, BOX)
        xs = np.array([-1.0, 0.0, 2.5])
        bounds = ev.evaluate({"x": (-1, 4, xs), "y": (0.5, 3, 1.5)})
        assert all(np.shape(b) == (3,) for b in bounds)
        assert np.all(bounds.cv <= xs * 1.5 + 1e-12)
        assert np.all(xs * 1.5 <= bounds.cc + 1e-12)

    def test_pack_variants(self):
        g = ExpressionGraph()
        x, = TracedVar.symbols(g, "x")
        ev = relax(exp(x), {"x": (0, 2)})
        assert ev.pack({"x": (0, 2)}) == [1.0, 1.0, 2, 0]
        assert ev.pack({"x": (0, 2, 0.5)}) == [0.5, 0.5, 2, 0]
        assert ev.pack({"x": (0, 2, 0.25, 0.75)}) == [0.75, 0.25, 2, 0]

    def test_pack_errors(self):
        g = ExpressionGraph()
        x, = TracedVar.symbols(g, "x")
        ev = relax(exp(x), {"x": (0, 2)})
        with pytest.raises(KeyError):
            ev.pack({})
        with pytest.raises(ValueError):
            ev.pack({"x": (0,)})

    def test_leaf_root_broadcasts(self):
        g = ExpressionGraph()
        x, y = TracedVar.symbols(g, "x", "y")
        ev = relax(x, BOX)
        bounds = ev.evaluate({"x": (np.zeros(2), np.ones(2))})
        assert [b.tolist() for b in bounds] == [[0.0, 0.0], [1.0, 1.0], [0.5, 0.5], [0.5, 0.5]]

    def test_constant_root(self):
        g = ExpressionGraph.from_callable(lambda x: 3.0, ["x"])
        ev = compile_spec(assemble(rewrite(g)))
        assert ev.ordering == []
        assert [float(v) for v in ev.evaluate({})] == [3.0, 3.0, 3.0, 3.0]

    def test_exact_symbol_argument(self):
        g = ExpressionGraph()
        t, x = TracedVar.symbols(g, "t", "x")
        spec = assemble(rewrite(t * x, {"x": (0, 1)}, exact_symbols=("t",)))
        assert spec.arg_names[-1] == "t"
        ev = spec.compile()
        lo, hi, cv, cc = ev.evaluate({"x": (0.0, 1.0, 0.5)}, t=2.0)
        assert [float(v) for v in (lo, hi, cv, cc)] == pytest.approx([0.0, 2.0, 1.0, 1.0])
        with pytest.raises(KeyError):
            ev.evaluate({"x": (0.0, 1.0)})


class TestAssembly:
    """Inlining of auxiliary definitions."""

    def test_no_aux_symbols_left(self):
        g = ExpressionGraph()
        x, y = TracedVar.symbols(g, "x", "y")
        spec = assemble(rewrite(exp(x * y) + (x - y) ** 2, BOX))
        names = {n.name for n in spec.graph.free_variables(spec.roots)}
        assert names <= set(spec.ordering)
        assert not any(name.startswith("aux") for name in names)

    def test_shared_graph(self):
        """Assembling into one graph shares common nodes."""
        g = ExpressionGraph()
        x, y = TracedVar.symbols(g, "x", "y")
        target = ExpressionGraph()
        s1 = assemble(rewrite(x * y, BOX), graph=target)
        s2 = assemble(rewrite(x * y + 1, BOX), graph=target)
        assert s1.graph is s2.graph is target
        assert s1.cv is not s2.cv
        assert target.variable("x_lo") in target.free_variables(s2.roots)
        assert s1.lo in target.topological_order([s2.lo])

    def test_to_sympy(self):
        g = ExpressionGraph()
        x, y = TracedVar.symbols(g, "x", "y")
        exprs = assemble(rewrite(x + y, BOX)).to_sympy()
        assert set(exprs) == {"lo", "hi", "cv", "cc"}
        assert exprs["lo"] == sp.Symbol("x_lo") + sp.Symbol("y_lo")

    def test_canonical_form(self):
        g = ExpressionGraph()
        x, y = TracedVar.symbols(g, "x", "y")
        canon = assemble(rewrite(x + y, BOX)).to_canonical()
        assert canon["ordering"][0] == "x_cc"
        assert len(canon["roots"]) == 4


class TestCodegen:
    """Lambdified evaluators."""

    def test_shared_subexpression_computed_once(self):
        g = ExpressionGraph()
        x, y = g.variable("x"), g.variable("y")
        e = g.unary(OpType.EXP, g.binary(OpType.MUL, x, y))
        outputs = [g.binary(OpType.ADD, e, x), g.binary(OpType.SUB, e, y)]
        f = compile_function(outputs, ["x", "y"])
        assert f.__source__.count("exp(") == 1
        a, b = f(0.0, 2.0)
        assert float(a) == pytest.approx(1.0)
        assert float(b) == pytest.approx(-1.0)

    def test_where_and_minmax(self):
        g = ExpressionGraph()
        x = g.variable("x")
        node = g.where(x, g.binary(OpType.MAX, x, g.constant(0.0)), g.constant(-1.0))
        f = compile_function([node], ["x"])
        assert "select_positive(" in f.__source__
        assert "maximum(" in f.__source__
        np.testing.assert_array_equal(f(np.array([-2.0, 3.0])), [-1.0, 3.0])

    def test_division_by_zero_silenced(self):
        """The discarded branch of a selection may divide by zero."""
        g = ExpressionGraph()
        x = g.variable("x")
        node = g.where(x, g.binary(OpType.DIV, g.constant(1.0), x), g.constant(0.0))
        f = compile_function([node], ["x"])
        with np.errstate(all="raise"):
            np.testing.assert_array_equal(f(np.array([0.0, 2.0])), [0.0, 0.5])

    def test_infinite_constant(self):
        g = ExpressionGraph()
        x = g.variable("x")
        node = g.binary(OpType.MIN, x, g.constant(float("inf")))
        f = compile_function([node], ["x"])
        assert float(f(2.0)) == 2.0

    def test_scalar_arguments_give_arrays(self):
        g = ExpressionGraph()
        x = g.variable("x")
        f = compile_function([g.constant(3.0), x], ["x"])
        a, b = f(np.zeros(2))
        assert a.tolist() == [3.0, 3.0]
        assert b.tolist() == [0.0, 0.0]

    def test_unbound_variable(self):
        g = ExpressionGraph()
        x = g.variable("x")
        with pytest.raises(ValueError):
            compile_function([g.unary(OpType.EXP, x)], [])

    def test_deep_graph(self):
        """Long chains compile without recursion."""
        g = ExpressionGraph()
        node = g.variable("x")
        for i in range(2000):
            node = g.binary(OpType.ADD, node, g.constant(1.0))
        f = compile_function([node], ["x"])
        assert float(f(0.0)) == 2000.0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
