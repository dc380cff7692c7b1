"""
Relaxed Dynamic Systems

Given a system of first-order ODEs

    dx_i/dt = f_i(x, p, t),    x(0) in X0,  p in P

expand() produces the 4n-dimensional system obtained by replacing every
state and parameter by its four bound companions and every right-hand
side by its four bound expressions:

    d/dt x_lo = f_lo(...),  d/dt x_hi = f_hi(...),
    d/dt x_cv = f_cv(...),  d/dt x_cc = f_cc(...)

Time is passed through unrelaxed. Static intervals of the states default
to the whole real line, because declared initial bounds do not hold for
later times; parameters keep their declared bounds. Containment of the
true trajectories in the integrated bounds is an assumption of the
caller and is not re-verified here.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple
import numpy as np
import sympy as sp
from scipy.integrate import solve_ivp

from ..bounds.interval import Interval
from ..bounds.mccormick import RelaxationRule
from ..expr_graph import ExpressionGraph, ExprNode, OpType, TracedVar
from ..naming import check_name, derive_bounds
from ..sympy_io import from_sympy, to_sympy
from ..transform.assembly import EvaluatorSpec, assemble
from ..transform.codegen import compile_function
from ..transform.rewriter import RewriteConfig, rewrite


logger = logging.getLogger(__name__)


@dataclass
class ODESystem:
    """
    A system of first-order ODEs with bounded states and parameters.

    Attributes:
        states: State names, in order
        parameters: Parameter names, in order
        equations: Right-hand side per state (TracedVar, ExprNode of
            `graph`, or SymPy expression / string)
        bounds: (lo, hi) per state (initial bounds) and per parameter
        defaults: Initial relaxation point per state or parameter
            (default: midpoint of its bounds)
        time: Name of the time symbol
        domains: Optional static intervals for states valid over the
            whole time horizon; used to resolve sign case splits
        graph: Graph owning ExprNode right-hand sides
    """
    states: Sequence[str]
    parameters: Sequence[str]
    equations: Mapping[str, Any]
    bounds: Mapping[str, Any]
    defaults: Mapping[str, float] = field(default_factory=dict)
    time: str = "t"
    domains: Mapping[str, Any] = field(default_factory=dict)
    graph: Optional[ExpressionGraph] = None

    def __post_init__(self):
        self.states = list(self.states)
        self.parameters = list(self.parameters)
        self._validate_symbols()
        self.bounds = {name: Interval.coerce(self.bounds[name]) for name in self.symbols}
        self.domains = {name: Interval.coerce(iv) for name, iv in self.domains.items()}
        self._validate_defaults()
        self.rhs: Dict[str, Tuple[ExpressionGraph, ExprNode]] = {
            state: self._resolve_rhs(state, self.equations[state])
            for state in self.states
        }

    @property
    def symbols(self) -> List[str]:
        """States followed by parameters."""
        return self.states + self.parameters

    def _validate_symbols(self) -> None:
        check_name(self.time)
        seen = set()
        for name in self.symbols:
            if name in seen:
                raise ValueError(f"Duplicate symbol '{name}'")
            if name == self.time:
                raise ValueError(f"Symbol '{name}' clashes with the time symbol")
            derive_bounds(name)
            seen.add(name)

        missing = [s for s in self.states if s not in self.equations]
        if missing:
            raise ValueError(f"No equation for state(s): {', '.join(missing)}")
        extra = [s for s in self.equations if s not in self.states]
        if extra:
            raise ValueError(f"Equation(s) for unknown state(s): {', '.join(extra)}")

        unbounded = [s for s in self.symbols if s not in self.bounds]
        if unbounded:
            raise ValueError(f"No bounds for symbol(s): {', '.join(unbounded)}")

    def _validate_defaults(self) -> None:
        for name, value in self.defaults.items():
            if name not in self.bounds:
                raise ValueError(f"Default given for unknown symbol '{name}'")
            if not self.bounds[name].contains(value):
                raise ValueError(
                    f"Default {value} for '{name}' lies outside its bounds {self.bounds[name]}"
                )

    def _resolve_rhs(self, state: str, rhs: Any) -> Tuple[ExpressionGraph, ExprNode]:
        if isinstance(rhs, TracedVar):
            graph, node = rhs.graph, rhs.node
        elif isinstance(rhs, ExprNode):
            if self.graph is None:
                raise ValueError(f"Equation for '{state}' is a graph node but no graph was given")
            graph, node = self.graph, rhs
        else:
            if self.graph is None:
                self.graph = ExpressionGraph()
            graph, node = from_sympy(rhs, self.graph)

        allowed = set(self.symbols) | {self.time}
        unknown = sorted(v.name for v in graph.free_variables([node]) if v.name not in allowed)
        if unknown:
            raise ValueError(f"Equation for '{state}' uses unknown symbol(s): {', '.join(unknown)}")
        return graph, node

    def initial_point(self, name: str) -> Tuple[float, float, float, float]:
        """(lo, hi, cv, cc) of a state at t = 0, or of a parameter."""
        iv = self.bounds[name]
        point = self.defaults.get(name, iv.midpoint)
        return iv.lo, iv.hi, float(point), float(point)


@dataclass
class ExpandedSystem:
    """
    The relaxed 4n-dimensional system.

    Mirrors ODESystem: states, parameters, equations, bounds and defaults
    are keyed by the expanded names.

    Attributes:
        system: The original system
        graph: Graph holding every expanded right-hand side
        states: Expanded state names (lo, hi, cv, cc per original state)
        parameters: Expanded parameter names (lo, hi, cv, cc per parameter)
        equations: Right-hand side per expanded state, in `states` order
        bounds: Declared interval of the original symbol, per expanded name
            (for states, valid at t = 0)
        defaults: Initial value per expanded state and parameter
        specs: Assembled bound expressions per original state
    """
    system: ODESystem
    graph: ExpressionGraph
    states: List[str]
    parameters: List[str]
    equations: Dict[str, ExprNode]
    bounds: Dict[str, Interval]
    defaults: Dict[str, float]
    specs: Dict[str, EvaluatorSpec]
    _rhs: Optional[Callable] = field(default=None, repr=False)

    @property
    def time(self) -> str:
        return self.system.time

    @property
    def arg_names(self) -> List[str]:
        """Argument names of the compiled right-hand side."""
        return self.states + self.parameters + [self.time]

    def initial_state(self) -> np.ndarray:
        """Initial values of the expanded states."""
        return np.array([self.defaults[name] for name in self.states])

    def parameter_values(self) -> np.ndarray:
        """Values of the expanded parameters."""
        return np.array([self.defaults[name] for name in self.parameters])

    def rhs_function(self) -> Callable[[float, np.ndarray, np.ndarray], np.ndarray]:
        """
        Compiled right-hand side f(t, y, p) of the expanded system.

        y and p are ordered like `states` and `parameters`. A 2-D y
        (columns are points in time, as with solve_ivp's vectorized
        mode) gives a 2-D result.
        """
        if self._rhs is None:
            outputs = [self.equations[name] for name in self.states]
            func = compile_function(outputs, self.arg_names)

            def rhs(t, y, p):
                return np.stack(func(*y, *p, t))

            rhs.__source__ = func.__source__
            self._rhs = rhs
        return self._rhs

    def simulate(
        self,
        t_span: Tuple[float, float],
        y0: Optional[Sequence[float]] = None,
        p: Optional[Sequence[float]] = None,
        **kwargs
    ):
        """
        Integrate the expanded system with scipy.integrate.solve_ivp.

        Args:
            t_span: (t0, tf)
            y0: Initial expanded state (default: initial_state())
            p: Expanded parameter values (default: parameter_values())
            **kwargs: Passed on to solve_ivp (method, t_eval, rtol, ...)

        Returns:
            scipy OdeResult; rows of `.y` follow `states`
        """
        y0 = self.initial_state() if y0 is None else np.asarray(y0, dtype=float)
        p = self.parameter_values() if p is None else np.asarray(p, dtype=float)
        return solve_ivp(self.rhs_function(), t_span, y0, args=(p,), **kwargs)

    def to_sympy(self) -> Dict[str, sp.Expr]:
        """Expanded right-hand sides as SymPy expressions."""
        return {name: to_sympy(node) for name, node in self.equations.items()}


def expand(
    system: ODESystem,
    rules: Optional[Mapping[OpType, RelaxationRule]] = None,
    config: Optional[RewriteConfig] = None
) -> ExpandedSystem:
    """
    Expand an ODE system into its relaxed 4n-dimensional counterpart.

    Args:
        system: The system to expand
        rules: Rule table (default: rule_table())
        config: Rewriter configuration

    Returns:
        ExpandedSystem

    Raises:
        UnsupportedOperatorError, DomainViolationError: as in rewrite()
    """
    graph = ExpressionGraph()

    expanded_states = []
    for name in system.states:
        expanded_states.extend(derive_bounds(name).names())
    expanded_params = []
    for name in system.parameters:
        expanded_params.extend(derive_bounds(name).names())
    for name in expanded_states + expanded_params + [system.time]:
        graph.variable(name)

    bounds: Dict[str, Interval] = {}
    defaults: Dict[str, float] = {}
    for name in system.symbols:
        for expanded_name, value in zip(derive_bounds(name).names(), system.initial_point(name)):
            bounds[expanded_name] = system.bounds[name]
            defaults[expanded_name] = value

    static: Dict[str, Interval] = {p: system.bounds[p] for p in system.parameters}
    static.update(system.domains)

    equations: Dict[str, ExprNode] = {}
    specs: Dict[str, EvaluatorSpec] = {}
    for state in system.states:
        source, node = system.rhs[state]
        result = rewrite(
            source, static,
            node=node, rules=rules, config=config, exact_symbols=(system.time,)
        )
        spec = assemble(result, graph=graph)
        specs[state] = spec
        for name, root in zip(derive_bounds(state).names(), spec.roots):
            equations[name] = root

    logger.debug(
        "Expanded %d states and %d parameters into %d equations (%d nodes)",
        len(system.states), len(system.parameters), len(equations), len(graph)
    )

    return ExpandedSystem(
        system=system,
        graph=graph,
        states=expanded_states,
        parameters=expanded_params,
        equations=equations,
        bounds=bounds,
        defaults=defaults,
        specs=specs,
    )
