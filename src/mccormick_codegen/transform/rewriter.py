"""
Expression Graph Rewriter

Turns an expression graph into a flat list of defining equations, four
per operator node:

    aux_k_lo := formula over operand bound symbols
    aux_k_hi := ...
    aux_k_cv := ...
    aux_k_cc := ...

Traversal is post-order (children before parents). Every structurally
distinct sub-expression is rewritten exactly once; a sub-expression
reachable through several parents reuses the bound symbols of its first
rewrite. Leaf symbols become free inputs (no equation); literals stand for
all four of their own bounds.

Any rule failure aborts the whole rewrite. No partial result is returned.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Hashable, Iterable, List, Mapping, Optional, Tuple, Union

from ..bounds.interval import Interval, IntervalEvaluator
from ..bounds.mccormick import (
    BoundTuple,
    FormulaBuilder,
    Operand,
    RelaxationRule,
    lookup_rule,
    rule_table,
)
from ..errors import UnsupportedOperatorError
from ..expr_graph import (
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
from ..naming import BoundedSymbolSet, Namer, check_name


logger = logging.getLogger(__name__)


BoundsSpec = Mapping[str, Union[Interval, Tuple[float, float]]]


@dataclass
class RewriteConfig:
    """Configuration for the rewriter."""
    aux_prefix: str = "aux"
    apply_cuts: bool = True
    specialize_signs: bool = True


@dataclass(frozen=True)
class Equation:
    """A defining equation `lhs := rhs` of the rewritten graph."""
    lhs: str
    rhs: ExprNode

    def __repr__(self) -> str:
        return f"{self.lhs} := {self.rhs!r}"


@dataclass
class RewriteResult:
    """
    Output of one rewrite.

    Attributes:
        graph: Graph holding every equation right-hand side
        root: Bound expressions of the root (aux variables, input
            variables, or constants)
        root_set: Bound symbols of the root; None for a literal root
        equations: Defining equations in dependency order
        aux_sets: Auxiliary bound sets in allocation order
        inputs: Bound sets of the free symbols, in first-seen order
        exact_symbols: Symbols passed through unrelaxed (e.g. time)
        root_interval: Static enclosure of the root
    """
    graph: ExpressionGraph
    root: BoundTuple
    root_set: Optional[BoundedSymbolSet]
    equations: List[Equation] = field(default_factory=list)
    aux_sets: List[BoundedSymbolSet] = field(default_factory=list)
    inputs: List[BoundedSymbolSet] = field(default_factory=list)
    exact_symbols: List[str] = field(default_factory=list)
    root_interval: Interval = field(default_factory=Interval.entire)

    @property
    def num_equations(self) -> int:
        return len(self.equations)


class _RewriteContext:
    """Mutable state of a single rewrite; never shared between calls."""

    def __init__(self, namer: Namer, builder: FormulaBuilder):
        self.namer = namer
        self.builder = builder
        self.memo: Dict[int, Tuple[Operand, Optional[BoundedSymbolSet]]] = {}
        self.canon: Dict[Hashable, int] = {}
        self.node_keys: Dict[int, int] = {}
        self.equations: List[Equation] = []
        self.aux_sets: List[BoundedSymbolSet] = []
        self.inputs: List[BoundedSymbolSet] = []
        self.exact_seen: List[str] = []


def _resolve_source(
    source: Union[ExpressionGraph, TracedVar],
    node: Optional[ExprNode]
) -> Tuple[ExpressionGraph, ExprNode]:
    if isinstance(source, TracedVar):
        return source.graph, node if node is not None else source.node
    if isinstance(source, ExpressionGraph):
        root = node if node is not None else source.output_node
        if root is None:
            raise ValueError("No output node set and no node given")
        return source, root
    raise TypeError(f"Cannot rewrite object of type {type(source).__name__}")


def _structural_key(node: ExprNode, node_keys: Dict[int, int]) -> Hashable:
    """Key identifying a node by its structure; children by canonical number."""
    if isinstance(node, Variable):
        return ("variable", node.name)
    if isinstance(node, Constant):
        return ("constant", node.value)
    if isinstance(node, UnaryOp):
        return ("unary", node.op, node_keys[node.child.node_id])
    if isinstance(node, BinaryOp):
        return ("binary", node.op, node_keys[node.left.node_id], node_keys[node.right.node_id])
    if isinstance(node, Conditional):
        return ("where",) + tuple(node_keys[c.node_id] for c in node.children())
    raise ValueError(f"Unknown node type: {type(node)}")


def rewrite(
    source: Union[ExpressionGraph, TracedVar],
    bounds: Optional[BoundsSpec] = None,
    *,
    node: Optional[ExprNode] = None,
    rules: Optional[Mapping[OpType, RelaxationRule]] = None,
    config: Optional[RewriteConfig] = None,
    exact_symbols: Iterable[str] = (),
    output: Optional[ExpressionGraph] = None
) -> RewriteResult:
    """
    Rewrite an expression into interval / McCormick defining equations.

    Args:
        source: Expression graph (its output node is rewritten) or a TracedVar
        bounds: Declared (lo, hi) per symbol; undeclared symbols are unbounded.
            Used for domain checks and to resolve sign case splits.
        node: Rewrite this node of `source` instead of the output node
        rules: Rule table (default: rule_table())
        config: Rewriter configuration
        exact_symbols: Symbols whose four bounds are the symbol itself
        output: Graph to build equations in (default: a fresh graph)

    Returns:
        RewriteResult

    Raises:
        UnsupportedOperatorError: an operator has no rule
        DomainViolationError: a rule precondition fails
        NamingCollisionError: a symbol name (exact symbols included) ends
            with a reserved suffix
    """
    graph, root = _resolve_source(source, node)
    rules = rules if rules is not None else rule_table()
    config = config or RewriteConfig()
    exact = set(exact_symbols)
    bounds = dict(bounds or {})

    order = graph.topological_order([root])

    # Exact symbols share the output name space with derived bound names
    for name in sorted(exact):
        check_name(name)

    # Reserve user names up front so auxiliary names never shadow them
    user_names = [n.name for n in order if isinstance(n, Variable)]
    for name in user_names:
        check_name(name)
    namer = Namer(reserved=user_names, aux_prefix=config.aux_prefix)

    static = IntervalEvaluator(graph).evaluate(bounds, roots=[root])

    out = output if output is not None else ExpressionGraph()
    builder = FormulaBuilder(out, specialize_signs=config.specialize_signs)
    ctx = _RewriteContext(namer, builder)

    for current in order:
        key = _structural_key(current, ctx.node_keys)
        canon = ctx.canon.setdefault(key, len(ctx.canon))
        ctx.node_keys[current.node_id] = canon
        if canon in ctx.memo:
            continue
        ctx.memo[canon] = _rewrite_node(current, ctx, rules, config, exact, static)

    root_operand, root_set = ctx.memo[ctx.node_keys[root.node_id]]

    logger.debug(
        "Rewrote %d nodes into %d auxiliary sets (%d equations, %d inputs)",
        len(order), len(ctx.aux_sets), len(ctx.equations), len(ctx.inputs)
    )

    return RewriteResult(
        graph=out,
        root=root_operand.bounds,
        root_set=root_set,
        equations=ctx.equations,
        aux_sets=ctx.aux_sets,
        inputs=ctx.inputs,
        exact_symbols=ctx.exact_seen,
        root_interval=root_operand.interval,
    )


def _rewrite_node(
    node: ExprNode,
    ctx: _RewriteContext,
    rules: Mapping[OpType, RelaxationRule],
    config: RewriteConfig,
    exact: set,
    static: Dict[int, Interval]
) -> Tuple[Operand, Optional[BoundedSymbolSet]]:
    out = ctx.builder.graph
    interval = static[node.node_id]

    if isinstance(node, Variable):
        if node.name in exact:
            ctx.exact_seen.append(node.name)
            v = out.variable(node.name)
            return Operand(BoundTuple(v, v, v, v), interval), None
        bset = ctx.namer.symbol(node.name)
        ctx.inputs.append(bset)
        bound_vars = BoundTuple(*(out.variable(name) for name in bset.names()))
        return Operand(bound_vars, interval), bset

    if isinstance(node, Constant):
        c = out.constant(node.value)
        return Operand(BoundTuple(c, c, c, c), interval, literal=node.value), None

    if isinstance(node, Conditional):
        raise UnsupportedOperatorError(OpType.WHERE.value, node)

    rule = lookup_rule(rules, node.op, node)
    operands = [ctx.memo[ctx.node_keys[child.node_id]][0] for child in node.children()]
    result = rule.apply(ctx.builder, operands, apply_cuts=config.apply_cuts, node=node)

    aux = ctx.namer.fresh()
    ctx.aux_sets.append(aux)
    for name, rhs in zip(aux.names(), result):
        ctx.equations.append(Equation(name, rhs))

    literal = _literal_value(result)
    if literal is not None:
        # Fully constant sub-expression: downstream rules see the value itself
        c = out.constant(literal)
        return Operand(BoundTuple(c, c, c, c), Interval.point(literal), literal=literal), aux

    bound_vars = BoundTuple(*(out.variable(name) for name in aux.names()))
    return Operand(bound_vars, interval), aux


def _literal_value(result: BoundTuple) -> Optional[float]:
    first = result.lo
    if isinstance(first, Constant) and all(n is first for n in result):
        return first.value
    return None
