"""
McCormick Relaxation Rules

For every primitive operator, a declarative rule turns the bound tuples
(lo, hi, cv, cc) of the operands into the bound tuple of the result,
expressed as nodes of an output expression graph:
- lo, hi: natural interval extension
- cv: convex underestimator (McCormick composition)
- cc: concave overestimator

Key rules:
- Bilinear x*y: the four McCormick envelope planes, each evaluated at the
  operand relaxation point that minimises (cv) or maximises (cc) it; the
  choice is a case split on the sign of the envelope coefficient
- Univariate convex f: cv = f(mid(x.cv, x.cc, argmin f)), cc = secant
- Univariate concave f: cc = f(mid(x.cv, x.cc, argmax f)), cv = secant
- Division x/y = x * (1/y), defined only when y's interval excludes zero

Every rule preserves lo <= cv <= cc <= hi whenever its operands do.

Sign case splits are resolved at rewrite time when the static interval of
the coefficient is sign-definite; otherwise both candidates are emitted
under a min/max so the generated code stays branch-free.

The table is built once, is immutable, and is extended by building a new
table with extend_rules().
"""

from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from types import MappingProxyType
from typing import Callable, Mapping, NamedTuple, Optional, Sequence, Tuple
import numpy as np

from .interval import Interval
from ..errors import DomainViolationError, UnsupportedOperatorError
from ..expr_graph import (
    ExpressionGraph,
    ExprNode,
    Constant,
    OpType,
    _eval_binary,
    _eval_unary,
)


class BoundTuple(NamedTuple):
    """The four bound expressions of one (sub-)expression."""
    lo: ExprNode
    hi: ExprNode
    cv: ExprNode
    cc: ExprNode


@dataclass(frozen=True)
class Operand:
    """
    An operand as seen by a rule.

    Attributes:
        bounds: Bound expressions of the operand in the output graph
        interval: Static enclosure of the operand over the declared box
        literal: The numeric value if the operand is a literal
    """
    bounds: BoundTuple
    interval: Interval
    literal: Optional[float] = None


class Convexity(Enum):
    AFFINE = "affine"
    CONVEX = "convex"
    CONCAVE = "concave"
    NONE = "none"


class Monotonicity(Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    NONE = "none"


class FormulaBuilder:
    """
    Builds bound formulas in an output graph.

    Folds operations whose operands are all constants and a few trivial
    identities (x + 0, x * 1, min(x, x)); nothing else is simplified.
    """

    def __init__(self, graph: ExpressionGraph, specialize_signs: bool = True):
        self.graph = graph
        self.specialize_signs = specialize_signs

    def const(self, value: float) -> ExprNode:
        return self.graph.constant(value)

    def _fold(self, op: OpType, *args: ExprNode) -> Optional[ExprNode]:
        if all(isinstance(a, Constant) for a in args):
            with np.errstate(all="ignore"):
                if len(args) == 1:
                    value = _eval_unary(op, np.float64(args[0].value))
                else:
                    value = _eval_binary(op, np.float64(args[0].value), np.float64(args[1].value))
            return self.const(float(value))
        return None

    def _is(self, node: ExprNode, value: float) -> bool:
        return isinstance(node, Constant) and node.value == value

    def unary(self, op: OpType, a: ExprNode) -> ExprNode:
        folded = self._fold(op, a)
        if folded is not None:
            return folded
        return self.graph.unary(op, a)

    def binary(self, op: OpType, a: ExprNode, b: ExprNode) -> ExprNode:
        folded = self._fold(op, a, b)
        if folded is not None:
            return folded
        return self.graph.binary(op, a, b)

    def add(self, a: ExprNode, b: ExprNode) -> ExprNode:
        if self._is(a, 0.0):
            return b
        if self._is(b, 0.0):
            return a
        return self.binary(OpType.ADD, a, b)

    def sub(self, a: ExprNode, b: ExprNode) -> ExprNode:
        if self._is(b, 0.0):
            return a
        return self.binary(OpType.SUB, a, b)

    def mul(self, a: ExprNode, b: ExprNode) -> ExprNode:
        if self._is(a, 1.0):
            return b
        if self._is(b, 1.0):
            return a
        return self.binary(OpType.MUL, a, b)

    def div(self, a: ExprNode, b: ExprNode) -> ExprNode:
        if self._is(b, 1.0):
            return a
        return self.binary(OpType.DIV, a, b)

    def neg(self, a: ExprNode) -> ExprNode:
        return self.unary(OpType.NEG, a)

    def min(self, a: ExprNode, b: ExprNode) -> ExprNode:
        if a is b:
            return a
        return self.binary(OpType.MIN, a, b)

    def max(self, a: ExprNode, b: ExprNode) -> ExprNode:
        if a is b:
            return a
        return self.binary(OpType.MAX, a, b)

    def where(self, test: ExprNode, if_pos: ExprNode, otherwise: ExprNode) -> ExprNode:
        """if_pos where test > 0, else otherwise."""
        if isinstance(test, Constant):
            return if_pos if test.value > 0 else otherwise
        if if_pos is otherwise:
            return if_pos
        return self.graph.where(test, if_pos, otherwise)

    def clamp(self, z: ExprNode, lo: ExprNode, hi: ExprNode) -> ExprNode:
        """mid(lo, hi, z) for lo <= hi."""
        return self.max(lo, self.min(hi, z))

    def secant(
        self,
        f_lo: ExprNode,
        f_hi: ExprNode,
        lo: ExprNode,
        hi: ExprNode,
        z: ExprNode
    ) -> ExprNode:
        """Chord of f through (lo, f_lo), (hi, f_hi) evaluated at z."""
        width = self.sub(hi, lo)
        chord = self.add(
            f_lo,
            self.div(self.mul(self.sub(f_hi, f_lo), self.sub(z, lo)), width)
        )
        return self.where(width, chord, f_hi)

    def scaled_min(self, coef: ExprNode, coef_iv: Interval, a: BoundTuple) -> ExprNode:
        """min(coef * a.cv, coef * a.cc), using a.cv <= a.cc."""
        if self.specialize_signs and coef_iv.is_nonneg:
            return self.mul(coef, a.cv)
        if self.specialize_signs and coef_iv.is_nonpos:
            return self.mul(coef, a.cc)
        return self.min(self.mul(coef, a.cv), self.mul(coef, a.cc))

    def scaled_max(self, coef: ExprNode, coef_iv: Interval, a: BoundTuple) -> ExprNode:
        """max(coef * a.cv, coef * a.cc), using a.cv <= a.cc."""
        if self.specialize_signs and coef_iv.is_nonneg:
            return self.mul(coef, a.cc)
        if self.specialize_signs and coef_iv.is_nonpos:
            return self.mul(coef, a.cv)
        return self.max(self.mul(coef, a.cv), self.mul(coef, a.cc))


DomainCheck = Callable[[Sequence[Interval]], Optional[str]]
RuleBuilder = Callable[[FormulaBuilder, Sequence[Operand]], BoundTuple]


@dataclass(frozen=True)
class RelaxationRule:
    """
    Rule record for one operator.

    Attributes:
        op: Operator the rule handles
        arity: Number of operands
        build: Produces the result bound tuple from the operands
        convexity: Convexity class of the operator (informative)
        monotonicity: Monotonicity class of the operator (informative)
        cut: Whether cv/cc must be intersected with [lo, hi]
        domain: Returns a description of the violated precondition, or None
        domain_operand: Index of the operand the precondition is about
    """
    op: OpType
    arity: int
    build: RuleBuilder
    convexity: Convexity = Convexity.NONE
    monotonicity: Monotonicity = Monotonicity.NONE
    cut: bool = False
    domain: Optional[DomainCheck] = None
    domain_operand: int = -1

    def apply(
        self,
        builder: FormulaBuilder,
        operands: Sequence[Operand],
        apply_cuts: bool = True,
        node: Optional[ExprNode] = None
    ) -> BoundTuple:
        if len(operands) != self.arity:
            raise ValueError(f"Rule '{self.op.value}' expects {self.arity} operands, got {len(operands)}")
        if self.domain is not None:
            problem = self.domain([o.interval for o in operands])
            if problem is not None:
                bad = operands[self.domain_operand].interval
                raise DomainViolationError(self.op.value, bad, problem, node)
        result = self.build(builder, operands)
        if self.cut and apply_cuts:
            result = BoundTuple(
                result.lo,
                result.hi,
                builder.max(result.cv, result.lo),
                builder.min(result.cc, result.hi),
            )
        return result


# ---------------------------------------------------------------------------
# Linear operators

def _neg(b: FormulaBuilder, ops: Sequence[Operand]) -> BoundTuple:
    a = ops[0].bounds
    return BoundTuple(b.neg(a.hi), b.neg(a.lo), b.neg(a.cc), b.neg(a.cv))


def _add(b: FormulaBuilder, ops: Sequence[Operand]) -> BoundTuple:
    x, y = ops[0].bounds, ops[1].bounds
    return BoundTuple(
        b.add(x.lo, y.lo),
        b.add(x.hi, y.hi),
        b.add(x.cv, y.cv),
        b.add(x.cc, y.cc),
    )


def _sub(b: FormulaBuilder, ops: Sequence[Operand]) -> BoundTuple:
    x, y = ops[0].bounds, ops[1].bounds
    return BoundTuple(
        b.sub(x.lo, y.hi),
        b.sub(x.hi, y.lo),
        b.sub(x.cv, y.cc),
        b.sub(x.cc, y.cv),
    )


# ---------------------------------------------------------------------------
# Bilinear product

def _product_interval(b: FormulaBuilder, x: Operand, y: Operand) -> Tuple[ExprNode, ExprNode]:
    """Natural interval extension of x*y."""
    xb, yb = x.bounds, y.bounds
    xi, yi = x.interval, y.interval

    if b.specialize_signs:
        if xi.is_nonneg and yi.is_nonneg:
            return b.mul(xb.lo, yb.lo), b.mul(xb.hi, yb.hi)
        if xi.is_nonneg and yi.is_nonpos:
            return b.mul(xb.hi, yb.lo), b.mul(xb.lo, yb.hi)
        if xi.is_nonpos and yi.is_nonneg:
            return b.mul(xb.lo, yb.hi), b.mul(xb.hi, yb.lo)
        if xi.is_nonpos and yi.is_nonpos:
            return b.mul(xb.hi, yb.hi), b.mul(xb.lo, yb.lo)

    ll = b.mul(xb.lo, yb.lo)
    lh = b.mul(xb.lo, yb.hi)
    hl = b.mul(xb.hi, yb.lo)
    hh = b.mul(xb.hi, yb.hi)
    lo = b.min(b.min(ll, lh), b.min(hl, hh))
    hi = b.max(b.max(ll, lh), b.max(hl, hh))
    return lo, hi


def _product(b: FormulaBuilder, x: Operand, y: Operand) -> BoundTuple:
    """
    McCormick relaxation of x*y.

    Envelope planes over [xL, xU] x [yL, yU]:
        under 1: yL*x + xL*y - xL*yL
        under 2: yU*x + xU*y - xU*yU
        over 1:  yL*x + xU*y - xU*yL
        over 2:  yU*x + xL*y - xL*yU
    Each plane is affine, so its extreme over the relaxation box
    [x.cv, x.cc] x [y.cv, y.cc] is attained at a corner picked by the
    sign of its coefficients.
    """
    xb, yb = x.bounds, y.bounds
    xi, yi = x.interval, y.interval

    lo, hi = _product_interval(b, x, y)

    under1 = b.sub(
        b.add(b.scaled_min(yb.lo, yi, xb), b.scaled_min(xb.lo, xi, yb)),
        b.mul(xb.lo, yb.lo)
    )
    under2 = b.sub(
        b.add(b.scaled_min(yb.hi, yi, xb), b.scaled_min(xb.hi, xi, yb)),
        b.mul(xb.hi, yb.hi)
    )
    over1 = b.sub(
        b.add(b.scaled_max(yb.lo, yi, xb), b.scaled_max(xb.hi, xi, yb)),
        b.mul(xb.hi, yb.lo)
    )
    over2 = b.sub(
        b.add(b.scaled_max(yb.hi, yi, xb), b.scaled_max(xb.lo, xi, yb)),
        b.mul(xb.lo, yb.hi)
    )
    return BoundTuple(lo, hi, b.max(under1, under2), b.min(over1, over2))


def _mul(b: FormulaBuilder, ops: Sequence[Operand]) -> BoundTuple:
    return _product(b, ops[0], ops[1])


# ---------------------------------------------------------------------------
# Reciprocal and division

def _zero_free(intervals: Sequence[Interval]) -> Optional[str]:
    denom = intervals[-1]
    if denom.contains_zero():
        return "denominator interval must exclude zero"
    return None


def _reciprocal(b: FormulaBuilder, y: Operand) -> Operand:
    """
    Relaxation of 1/y on a zero-free interval.

    On y > 0, 1/y is convex decreasing: cv = 1/y.cc, cc = chord at y.cv.
    On y < 0, 1/y is concave decreasing: cc = 1/y.cv, cv = chord at y.cc.
    The chord through (yL, 1/yL), (yU, 1/yU) is (yL + yU - z) / (yL * yU).
    """
    yb = y.bounds
    one = b.const(1.0)
    lo = b.div(one, yb.hi)
    hi = b.div(one, yb.lo)
    denom = b.mul(yb.lo, yb.hi)
    span = b.add(yb.lo, yb.hi)

    if y.interval.is_positive:
        cv = b.div(one, yb.cc)
        cc = b.div(b.sub(span, yb.cv), denom)
    else:
        cv = b.div(b.sub(span, yb.cc), denom)
        cc = b.div(one, yb.cv)

    literal = 1.0 / y.literal if y.literal is not None else None
    return Operand(BoundTuple(lo, hi, cv, cc), y.interval.reciprocal(), literal)


def _inv(b: FormulaBuilder, ops: Sequence[Operand]) -> BoundTuple:
    return _reciprocal(b, ops[0]).bounds


def _div(b: FormulaBuilder, ops: Sequence[Operand]) -> BoundTuple:
    x, y = ops
    return _product(b, x, _reciprocal(b, y))


# ---------------------------------------------------------------------------
# Univariate compositions

def _square(b: FormulaBuilder, ops: Sequence[Operand]) -> BoundTuple:
    """
    x^2: convex with minimiser clamp(0, xL, xU).

    cv = (mid(x.cv, x.cc, xmin))^2
    cc = chord (xL + xU) * z - xL * xU at the maximising z in {x.cv, x.cc}
    """
    x = ops[0]
    a = x.bounds
    iv = x.interval
    zero = b.const(0.0)

    def sq(node: ExprNode) -> ExprNode:
        return b.unary(OpType.SQUARE, node)

    if b.specialize_signs and iv.is_nonneg:
        lo, hi, cv = sq(a.lo), sq(a.hi), sq(a.cv)
    elif b.specialize_signs and iv.is_nonpos:
        lo, hi, cv = sq(a.hi), sq(a.lo), sq(a.cc)
    else:
        lo = b.add(sq(b.max(a.lo, zero)), sq(b.min(a.hi, zero)))
        hi = b.max(sq(a.lo), sq(a.hi))
        xmin = b.clamp(zero, a.lo, a.hi)
        cv = sq(b.clamp(xmin, a.cv, a.cc))

    slope = b.add(a.lo, a.hi)
    cc = b.sub(b.scaled_max(slope, iv + iv, a), b.mul(a.lo, a.hi))
    return BoundTuple(lo, hi, cv, cc)


def _abs(b: FormulaBuilder, ops: Sequence[Operand]) -> BoundTuple:
    """|x|: convex with minimiser clamp(0, xL, xU); chord overestimator."""
    x = ops[0]
    a = x.bounds
    iv = x.interval

    if b.specialize_signs and iv.is_nonneg:
        return a
    if b.specialize_signs and iv.is_nonpos:
        return _neg(b, ops)

    zero = b.const(0.0)
    f_lo = b.unary(OpType.ABS, a.lo)
    f_hi = b.unary(OpType.ABS, a.hi)
    lo = b.sub(b.max(a.lo, zero), b.min(a.hi, zero))
    hi = b.max(b.neg(a.lo), a.hi)
    xmin = b.clamp(zero, a.lo, a.hi)
    cv = b.unary(OpType.ABS, b.clamp(xmin, a.cv, a.cc))
    cc = b.max(
        b.secant(f_lo, f_hi, a.lo, a.hi, a.cv),
        b.secant(f_lo, f_hi, a.lo, a.hi, a.cc)
    )
    return BoundTuple(lo, hi, cv, cc)


def monotone_univariate(
    op: OpType,
    convexity: Convexity,
    monotonicity: Monotonicity,
    domain: Optional[DomainCheck] = None,
    cut: bool = False
) -> RelaxationRule:
    """
    Build a rule for a monotone convex or concave univariate function.

    The function itself is the graph operator `op`; only its
    classification is needed:
        convex increasing:  cv = f(x.cv), cc = chord at x.cc
        convex decreasing:  cv = f(x.cc), cc = chord at x.cv
        concave increasing: cc = f(x.cc), cv = chord at x.cv
        concave decreasing: cc = f(x.cv), cv = chord at x.cc
    """
    if convexity not in (Convexity.CONVEX, Convexity.CONCAVE):
        raise ValueError("monotone_univariate needs a convex or concave function")
    if monotonicity == Monotonicity.NONE:
        raise ValueError("monotone_univariate needs a monotone function")

    increasing = monotonicity == Monotonicity.INCREASING

    def build(b: FormulaBuilder, ops: Sequence[Operand]) -> BoundTuple:
        a = ops[0].bounds
        f_lo = b.unary(op, a.lo)
        f_hi = b.unary(op, a.hi)
        lo, hi = (f_lo, f_hi) if increasing else (f_hi, f_lo)

        # Point where f itself is the relaxation, and where the chord is
        direct, chord_at = (a.cv, a.cc) if increasing else (a.cc, a.cv)
        if convexity == Convexity.CONCAVE:
            direct, chord_at = chord_at, direct

        value = b.unary(op, direct)
        chord = b.secant(f_lo, f_hi, a.lo, a.hi, chord_at)
        if convexity == Convexity.CONVEX:
            return BoundTuple(lo, hi, value, chord)
        return BoundTuple(lo, hi, chord, value)

    return RelaxationRule(
        op=op,
        arity=1,
        build=build,
        convexity=convexity,
        monotonicity=monotonicity,
        cut=cut,
        domain=domain,
    )


def _positive(intervals: Sequence[Interval]) -> Optional[str]:
    if not intervals[0].is_positive:
        return "argument interval must be strictly positive"
    return None


def _nonneg(intervals: Sequence[Interval]) -> Optional[str]:
    if not intervals[0].is_nonneg:
        return "argument interval must be non-negative"
    return None


# ---------------------------------------------------------------------------
# Powers with a literal exponent

def _pow(b: FormulaBuilder, ops: Sequence[Operand]) -> BoundTuple:
    base, exponent = ops
    if exponent.literal == 2.0:
        return _square(b, [base])
    if exponent.literal == 1.0:
        return base.bounds
    if exponent.literal == -1.0:
        return _reciprocal(b, base).bounds
    if exponent.literal is None:
        raise UnsupportedOperatorError("pow with a non-literal exponent")
    raise UnsupportedOperatorError(f"pow with exponent {exponent.literal:g}")


def _pow_domain(intervals: Sequence[Interval]) -> Optional[str]:
    base, exponent = intervals
    if exponent.is_point and exponent.lo == -1.0 and base.contains_zero():
        return "base interval of a reciprocal power must exclude zero"
    return None


def _build_rule_table() -> Mapping[OpType, RelaxationRule]:
    rules = [
        RelaxationRule(OpType.NEG, 1, _neg, Convexity.AFFINE, Monotonicity.DECREASING),
        RelaxationRule(OpType.ADD, 2, _add, Convexity.AFFINE, Monotonicity.INCREASING),
        RelaxationRule(OpType.SUB, 2, _sub, Convexity.AFFINE),
        RelaxationRule(OpType.MUL, 2, _mul, cut=True),
        RelaxationRule(OpType.DIV, 2, _div, cut=True, domain=_zero_free),
        RelaxationRule(OpType.SQUARE, 1, _square, Convexity.CONVEX),
        RelaxationRule(OpType.ABS, 1, _abs, Convexity.CONVEX),
        RelaxationRule(OpType.POW, 2, _pow, cut=True, domain=_pow_domain, domain_operand=0),
        monotone_univariate(OpType.EXP, Convexity.CONVEX, Monotonicity.INCREASING),
        monotone_univariate(OpType.LOG, Convexity.CONCAVE, Monotonicity.INCREASING, domain=_positive),
        monotone_univariate(OpType.SQRT, Convexity.CONCAVE, Monotonicity.INCREASING, domain=_nonneg),
    ]
    return {rule.op: rule for rule in rules}


@lru_cache(maxsize=None)
def rule_table() -> Mapping[OpType, RelaxationRule]:
    """The default rule table; built on first use, read-only afterwards."""
    return MappingProxyType(_build_rule_table())


def extend_rules(
    table: Mapping[OpType, RelaxationRule],
    *rules: RelaxationRule
) -> Mapping[OpType, RelaxationRule]:
    """Return a new read-only table with `rules` added or replaced."""
    extended = dict(table)
    for rule in rules:
        extended[rule.op] = rule
    return MappingProxyType(extended)


def lookup_rule(
    table: Mapping[OpType, RelaxationRule],
    op: OpType,
    node: Optional[ExprNode] = None
) -> RelaxationRule:
    """Find the rule for `op` or raise UnsupportedOperatorError."""
    rule = table.get(op)
    if rule is None:
        raise UnsupportedOperatorError(op.value, node)
    return rule
