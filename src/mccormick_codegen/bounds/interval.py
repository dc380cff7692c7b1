"""
Static Interval Arithmetic

Propagates the caller-declared variable bounds through an expression
graph at rewrite time. The resulting enclosures are what the relaxation
rules consult to:
- check structural preconditions (division needs a zero-free denominator)
- resolve sign case splits ahead of time, so generated code only carries
  the branch that can actually occur

Runtime bounds produced by the generated evaluators on any sub-box of the
declared box are contained in these static enclosures (inclusion
monotonicity of the natural interval extension).
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union
import math
import numpy as np

from ..expr_graph import (
    ExpressionGraph,
    ExprNode,
    Variable,
    Constant,
    UnaryOp,
    BinaryOp,
    Conditional,
    OpType,
)


INF = float('inf')


def _mul(a: float, b: float) -> float:
    """Extended-real product with 0 * inf = 0."""
    if a == 0.0 or b == 0.0:
        return 0.0
    return a * b


def _widen(lo: float, hi: float) -> 'Interval':
    """Interval from computed endpoints; inf - inf widens to the whole line."""
    return Interval(-INF if math.isnan(lo) else lo, INF if math.isnan(hi) else hi)


@dataclass(frozen=True)
class Interval:
    """
    A closed interval [lo, hi] over the extended reals.
    """
    lo: float
    hi: float

    def __post_init__(self):
        if math.isnan(self.lo) or math.isnan(self.hi):
            raise ValueError(f"Invalid interval: [{self.lo}, {self.hi}]")
        if self.lo > self.hi:
            raise ValueError(f"Invalid interval: [{self.lo}, {self.hi}]")

    @classmethod
    def point(cls, x: float) -> 'Interval':
        """Create a point interval [x, x]."""
        return cls(float(x), float(x))

    @classmethod
    def entire(cls) -> 'Interval':
        """Create the entire real line."""
        return cls(-INF, INF)

    @classmethod
    def coerce(cls, value: Union['Interval', Tuple[float, float], float]) -> 'Interval':
        """Build an interval from an Interval, a (lo, hi) pair or a number."""
        if isinstance(value, Interval):
            return value
        if isinstance(value, (int, float, np.floating, np.integer)):
            return cls.point(float(value))
        lo, hi = value
        return cls(float(lo), float(hi))

    @property
    def width(self) -> float:
        return self.hi - self.lo

    @property
    def midpoint(self) -> float:
        return (self.lo + self.hi) / 2.0

    @property
    def is_point(self) -> bool:
        return self.lo == self.hi

    @property
    def is_nonneg(self) -> bool:
        return self.lo >= 0

    @property
    def is_nonpos(self) -> bool:
        return self.hi <= 0

    @property
    def is_positive(self) -> bool:
        return self.lo > 0

    @property
    def is_negative(self) -> bool:
        return self.hi < 0

    def contains(self, x: float) -> bool:
        return self.lo <= x <= self.hi

    def contains_zero(self) -> bool:
        return self.lo <= 0 <= self.hi

    def union_hull(self, other: 'Interval') -> 'Interval':
        """Convex hull of two intervals."""
        return Interval(min(self.lo, other.lo), max(self.hi, other.hi))

    def __neg__(self) -> 'Interval':
        return Interval(-self.hi, -self.lo)

    def __add__(self, other: 'Interval') -> 'Interval':
        other = Interval.coerce(other)
        return _widen(self.lo + other.lo, self.hi + other.hi)

    def __sub__(self, other: 'Interval') -> 'Interval':
        other = Interval.coerce(other)
        return _widen(self.lo - other.hi, self.hi - other.lo)

    def __mul__(self, other: 'Interval') -> 'Interval':
        other = Interval.coerce(other)
        products = [
            _mul(self.lo, other.lo),
            _mul(self.lo, other.hi),
            _mul(self.hi, other.lo),
            _mul(self.hi, other.hi)
        ]
        return Interval(min(products), max(products))

    def reciprocal(self) -> 'Interval':
        """1/x; the entire line if the interval touches zero."""
        if self.contains_zero():
            return Interval.entire()
        return Interval(1.0 / self.hi, 1.0 / self.lo)

    def __truediv__(self, other: 'Interval') -> 'Interval':
        other = Interval.coerce(other)
        return self * other.reciprocal()

    def square(self) -> 'Interval':
        """Optimized x^2 computation."""
        if self.hi <= 0:
            return Interval(self.hi * self.hi, self.lo * self.lo)
        elif self.lo >= 0:
            return Interval(self.lo * self.lo, self.hi * self.hi)
        else:
            # Interval contains zero
            return Interval(0.0, max(self.lo * self.lo, self.hi * self.hi))

    def abs(self) -> 'Interval':
        """Absolute value."""
        if self.lo >= 0:
            return Interval(self.lo, self.hi)
        elif self.hi <= 0:
            return Interval(-self.hi, -self.lo)
        else:
            return Interval(0.0, max(-self.lo, self.hi))

    def sqrt(self) -> 'Interval':
        """Square root over the non-negative part."""
        lo = max(0.0, self.lo)
        hi = max(0.0, self.hi)
        return Interval(math.sqrt(lo), math.sqrt(hi) if hi < INF else INF)

    def exp(self) -> 'Interval':
        """Exponential function."""
        return Interval(float(np.exp(self.lo)), float(np.exp(self.hi)))

    def log(self) -> 'Interval':
        """Natural logarithm over the positive part."""
        lo = float(np.log(self.lo)) if self.lo > 0 else -INF
        hi = float(np.log(self.hi)) if self.hi > 0 else -INF
        return Interval(lo, hi)

    def tanh(self) -> 'Interval':
        return Interval(float(np.tanh(self.lo)), float(np.tanh(self.hi)))

    def sin(self) -> 'Interval':
        """Sine function with proper range handling."""
        if not (math.isfinite(self.lo) and math.isfinite(self.hi)) or self.width >= 2 * np.pi:
            return Interval(-1.0, 1.0)

        # Reduce to [0, 2*pi]
        lo_red = self.lo % (2 * np.pi)
        hi_red = lo_red + self.width

        vals = [np.sin(lo_red), np.sin(hi_red)]

        # Max at pi/2 + 2k*pi
        if lo_red <= np.pi/2 <= hi_red or lo_red <= np.pi/2 + 2*np.pi <= hi_red:
            vals.append(1.0)
        # Min at 3*pi/2 + 2k*pi
        if lo_red <= 3*np.pi/2 <= hi_red or lo_red <= 3*np.pi/2 + 2*np.pi <= hi_red:
            vals.append(-1.0)

        return Interval(float(min(vals)), float(max(vals)))

    def cos(self) -> 'Interval':
        """Cosine function."""
        return (self + np.pi/2).sin()

    def to_canonical(self) -> Dict[str, Any]:
        return {"lo": self.lo, "hi": self.hi}

    def __repr__(self) -> str:
        return f"[{self.lo:.6g}, {self.hi:.6g}]"


class IntervalEvaluator:
    """
    Evaluates an expression graph over intervals.

    Given variable bounds (as intervals), computes interval enclosures
    for every node reachable from the requested roots. Variables with no
    declared bounds are taken as the entire real line.
    """

    def __init__(self, graph: ExpressionGraph):
        self.graph = graph
        self._node_intervals: Dict[int, Interval] = {}

    def evaluate(
        self,
        var_intervals: Mapping[str, Any],
        roots: Optional[Iterable[ExprNode]] = None
    ) -> Dict[int, Interval]:
        """
        Evaluate the graph over given variable intervals.

        Args:
            var_intervals: Map from variable name to Interval or (lo, hi)
            roots: Nodes to enclose (default: the graph output)

        Returns:
            Map from node_id to interval enclosure
        """
        self._node_intervals = {}
        intervals = {name: Interval.coerce(v) for name, v in var_intervals.items()}

        # Process nodes in topological order
        for node in self.graph.topological_order(roots):
            self._node_intervals[node.node_id] = self._eval_node(node, intervals)

        return dict(self._node_intervals)

    def _eval_node(self, node: ExprNode, var_intervals: Dict[str, Interval]) -> Interval:
        """Evaluate a single node."""

        if isinstance(node, Variable):
            return var_intervals.get(node.name, Interval.entire())

        elif isinstance(node, Constant):
            return Interval.point(node.value)

        elif isinstance(node, UnaryOp):
            child_int = self._node_intervals[node.child.node_id]
            return self._eval_unary(node.op, child_int)

        elif isinstance(node, BinaryOp):
            left_int = self._node_intervals[node.left.node_id]
            right_int = self._node_intervals[node.right.node_id]
            return self._eval_binary(node.op, left_int, right_int)

        elif isinstance(node, Conditional):
            a = self._node_intervals[node.if_pos.node_id]
            b = self._node_intervals[node.otherwise.node_id]
            return a.union_hull(b)

        else:
            raise ValueError(f"Unknown node type: {type(node)}")

    def _eval_unary(self, op: OpType, x: Interval) -> Interval:
        """Evaluate a unary operation on an interval."""
        if op == OpType.NEG:
            return -x
        elif op == OpType.ABS:
            return x.abs()
        elif op == OpType.SQRT:
            return x.sqrt()
        elif op == OpType.EXP:
            return x.exp()
        elif op == OpType.LOG:
            return x.log()
        elif op == OpType.SIN:
            return x.sin()
        elif op == OpType.COS:
            return x.cos()
        elif op == OpType.TANH:
            return x.tanh()
        elif op == OpType.SQUARE:
            return x.square()
        else:
            raise ValueError(f"Unknown unary op: {op}")

    def _eval_binary(self, op: OpType, l: Interval, r: Interval) -> Interval:
        """Evaluate a binary operation on intervals."""
        if op == OpType.ADD:
            return l + r
        elif op == OpType.SUB:
            return l - r
        elif op == OpType.MUL:
            return l * r
        elif op == OpType.DIV:
            return l / r
        elif op == OpType.POW:
            if r.is_point and r.lo == 2:
                return l.square()
            if r.is_point and r.lo == 1:
                return l
            if r.is_point and r.lo == -1:
                return l.reciprocal()
            # General powers are not relaxed; only a loose enclosure is needed here
            return Interval.entire()
        elif op == OpType.MIN:
            return Interval(min(l.lo, r.lo), min(l.hi, r.hi))
        elif op == OpType.MAX:
            return Interval(max(l.lo, r.lo), max(l.hi, r.hi))
        else:
            raise ValueError(f"Unknown binary op: {op}")


def interval_evaluate(
    graph: ExpressionGraph,
    bounds: Mapping[str, Any],
    node: Optional[ExprNode] = None
) -> Interval:
    """
    Enclose an expression over a box using interval arithmetic.

    Args:
        graph: The expression graph
        bounds: Map from variable name to Interval or (lo, hi)
        node: Node to enclose (default: the graph output)

    Returns:
        Interval enclosure of the expression over the box
    """
    root = node if node is not None else graph.output_node
    if root is None:
        raise ValueError("No output node set")
    intervals = IntervalEvaluator(graph).evaluate(bounds, roots=[root])
    return intervals[root.node_id]
