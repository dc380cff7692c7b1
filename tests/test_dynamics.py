"""
Tests for Relaxed Dynamic Systems
"""

import numpy as np
import pytest
import sympy as sp
from mccormick_codegen.bounds.interval import Interval
from mccormick_codegen.dynamics import ODESystem, expand
from mccormick_codegen.errors import NamingCollisionError
from mccormick_codegen.expr_graph import ExpressionGraph, OpType, TracedVar


def decay_system(**kwargs):
    """dx/dt = -k x with x(0) in [1, 2], k in [0.5, 1]."""
    return ODESystem(
        states=["x"],
        parameters=["k"],
        equations={"x": "-k*x"},
        bounds={"x": (1.0, 2.0), "k": (0.5, 1.0)},
        **kwargs
    )


class TestExpansion:
    """Structure of the expanded system."""

    def test_names(self):
        expanded = expand(decay_system())
        assert expanded.states == ["x_lo", "x_hi", "x_cv", "x_cc"]
        assert expanded.parameters == ["k_lo", "k_hi", "k_cv", "k_cc"]
        assert list(expanded.equations) == expanded.states

    def test_initial_values(self):
        expanded = expand(decay_system())
        np.testing.assert_array_equal(expanded.initial_state(), [1.0, 2.0, 1.5, 1.5])
        np.testing.assert_array_equal(expanded.parameter_values(), [0.5, 1.0, 0.75, 0.75])

    def test_defaults(self):
        expanded = expand(decay_system(defaults={"x": 1.25, "k": 0.6}))
        np.testing.assert_array_equal(expanded.initial_state(), [1.0, 2.0, 1.25, 1.25])
        np.testing.assert_array_equal(expanded.parameter_values(), [0.5, 1.0, 0.6, 0.6])

    def test_bounds_and_defaults_per_expanded_name(self):
        expanded = expand(decay_system(defaults={"x": 1.25}))
        for name in expanded.states + expanded.parameters:
            assert name in expanded.defaults
            assert expanded.bounds[name].contains(expanded.defaults[name])
        assert expanded.defaults["x_lo"] == 1.0
        assert expanded.defaults["x_hi"] == 2.0
        assert expanded.defaults["x_cv"] == expanded.defaults["x_cc"] == 1.25
        assert expanded.defaults["k_cv"] == 0.75
        assert expanded.bounds["k_cc"] == Interval(0.5, 1.0)

    def test_rhs_at_start(self):
        """Right-hand sides at t = 0 from the interval and McCormick product rules."""
        expanded = expand(decay_system())
        f = expanded.rhs_function()
        dy = f(0.0, expanded.initial_state(), expanded.parameter_values())
        assert dy.shape == (4,)
        np.testing.assert_allclose(dy, [-2.0, -0.5, -1.25, -1.0])

    def test_rhs_vectorized(self):
        expanded = expand(decay_system())
        f = expanded.rhs_function()
        y = np.tile(expanded.initial_state()[:, None], (1, 3))
        dy = f(0.0, y, expanded.parameter_values())
        assert dy.shape == (4, 3)
        np.testing.assert_allclose(dy[:, 2], [-2.0, -0.5, -1.25, -1.0])

    def test_rhs_compiled_once(self):
        expanded = expand(decay_system())
        assert expanded.rhs_function() is expanded.rhs_function()

    def test_time_passed_through(self):
        system = ODESystem(
            states=["x"],
            parameters=["k"],
            equations={"x": "-k*x + t"},
            bounds={"x": (1.0, 2.0), "k": (0.5, 1.0)},
        )
        expanded = expand(system)
        assert "t_lo" not in expanded.states
        f = expanded.rhs_function()
        y0, p = expanded.initial_state(), expanded.parameter_values()
        np.testing.assert_allclose(f(1.0, y0, p) - f(0.0, y0, p), [1.0, 1.0, 1.0, 1.0])

    def test_domains_specialize(self):
        """A declared state domain removes runtime case splits, not values."""
        plain = expand(decay_system())
        narrowed = expand(decay_system(domains={"x": (0.0, 10.0)}))
        assert len(narrowed.graph) < len(plain.graph)
        y0, p = plain.initial_state(), plain.parameter_values()
        np.testing.assert_allclose(
            narrowed.rhs_function()(0.0, y0, p),
            plain.rhs_function()(0.0, y0, p)
        )

    def test_traced_rhs(self):
        g = ExpressionGraph()
        x, k = TracedVar.symbols(g, "x", "k")
        system = ODESystem(
            states=["x"], parameters=["k"],
            equations={"x": -(k * x)},
            bounds={"x": (1.0, 2.0), "k": (0.5, 1.0)},
        )
        traced = expand(system).rhs_function()
        parsed = expand(decay_system()).rhs_function()
        y0 = np.array([1.0, 2.0, 1.5, 1.5])
        p = np.array([0.5, 1.0, 0.75, 0.75])
        np.testing.assert_allclose(traced(0.0, y0, p), parsed(0.0, y0, p))

    def test_node_rhs(self):
        g = ExpressionGraph()
        x = g.variable("x")
        k = g.variable("k")
        rhs = g.unary(OpType.NEG, g.binary(OpType.MUL, k, x))
        system = ODESystem(
            states=["x"], parameters=["k"],
            equations={"x": rhs},
            bounds={"x": (1.0, 2.0), "k": (0.5, 1.0)},
            graph=g,
        )
        assert len(expand(system).equations) == 4

    def test_two_states(self):
        """Coupled system: every state gets four equations."""
        system = ODESystem(
            states=["a", "b"],
            parameters=["k"],
            equations={"a": "-k*a", "b": "k*a - b"},
            bounds={"a": (1.0, 1.0), "b": (0.0, 0.0), "k": (1.0, 2.0)},
        )
        expanded = expand(system)
        assert len(expanded.states) == 8
        assert list(expanded.equations)[4:] == ["b_lo", "b_hi", "b_cv", "b_cc"]

    def test_to_sympy(self):
        exprs = expand(decay_system()).to_sympy()
        assert set(exprs) == {"x_lo", "x_hi", "x_cv", "x_cc"}
        assert exprs["x_lo"].free_symbols <= {
            sp.Symbol(n) for n in ["x_lo", "x_hi", "x_cv", "x_cc", "k_lo", "k_hi", "k_cv", "k_cc"]
        }


class TestSimulation:
    """Integrated bounds enclose true trajectories."""

    def test_decay_containment(self):
        expanded = expand(decay_system())
        t_eval = np.linspace(0.0, 1.0, 21)
        sol = expanded.simulate((0.0, 1.0), t_eval=t_eval, rtol=1e-9, atol=1e-12)
        assert sol.success
        x_lo, x_hi = sol.y[0], sol.y[1]

        rng = np.random.default_rng(7)
        x0s = np.concatenate([[1.0, 2.0, 1.0, 2.0], rng.uniform(1.0, 2.0, 30)])
        ks = np.concatenate([[0.5, 0.5, 1.0, 1.0], rng.uniform(0.5, 1.0, 30)])
        for x0, k in zip(x0s, ks):
            x = x0 * np.exp(-k * sol.t)
            assert np.all(x_lo <= x + 1e-7)
            assert np.all(x <= x_hi + 1e-7)

    def test_explicit_initial_state(self):
        expanded = expand(decay_system())
        y0 = np.array([1.5, 1.5, 1.5, 1.5])
        p = np.array([1.0, 1.0, 1.0, 1.0])
        sol = expanded.simulate((0.0, 1.0), y0=y0, p=p, rtol=1e-10, atol=1e-12)
        # Degenerate box: all four bounds follow the exact solution
        exact = 1.5 * np.exp(-1.0)
        np.testing.assert_allclose(sol.y[:, -1], [exact] * 4, rtol=1e-6)


class TestValidation:
    """Malformed systems are rejected eagerly."""

    def test_missing_equation(self):
        with pytest.raises(ValueError):
            ODESystem(states=["x", "y"], parameters=[], equations={"x": "-x"},
                      bounds={"x": (0, 1), "y": (0, 1)})

    def test_equation_for_unknown_state(self):
        with pytest.raises(ValueError):
            ODESystem(states=["x"], parameters=[], equations={"x": "-x", "z": "1"},
                      bounds={"x": (0, 1)})

    def test_missing_bounds(self):
        with pytest.raises(ValueError):
            ODESystem(states=["x"], parameters=["k"], equations={"x": "-k*x"},
                      bounds={"x": (0, 1)})

    def test_unknown_symbol(self):
        with pytest.raises(ValueError):
            ODESystem(states=["x"], parameters=[], equations={"x": "-q*x"},
                      bounds={"x": (0, 1)})

    def test_time_clash(self):
        with pytest.raises(ValueError):
            ODESystem(states=["t"], parameters=[], equations={"t": "1"},
                      bounds={"t": (0, 1)})

    def test_default_outside_bounds(self):
        with pytest.raises(ValueError):
            decay_system(defaults={"x": 3.0})

    def test_time_with_reserved_suffix(self):
        with pytest.raises(NamingCollisionError):
            ODESystem(states=["x"], parameters=[], equations={"x": "-x"},
                      bounds={"x": (0, 1)}, time="x_lo")

    def test_reserved_name(self):
        with pytest.raises(NamingCollisionError):
            ODESystem(states=["x_cv"], parameters=[], equations={"x_cv": "-x_cv"},
                      bounds={"x_cv": (0, 1)})

    def test_node_without_graph(self):
        g = ExpressionGraph()
        with pytest.raises(ValueError):
            ODESystem(states=["x"], parameters=[], equations={"x": g.variable("x")},
                      bounds={"x": (0, 1)})


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
