"""
Evaluator Ordering & Assembly

Fixes the calling convention of the generated evaluators and threads the
defining equations of a rewrite into four closed-form root expressions.

Calling convention: free symbols in order of first appearance during the
rewrite, each expanded to its four bounds in the order cc, cv, hi, lo:

    (x_cc, x_cv, x_hi, x_lo, y_cc, y_cv, y_hi, y_lo, ...)

Inlining substitutes every auxiliary symbol by its definition inside a
hash-consed graph, so the result stays a DAG of the same size as the
equation list rather than an expanded tree.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, NamedTuple, Optional, Sequence, Tuple, Union

from ..bounds.mccormick import BoundTuple, RelaxationRule
from ..expr_graph import (
    ExpressionGraph,
    ExprNode,
    OpType,
    TracedVar,
    Variable,
    Constant,
    UnaryOp,
    BinaryOp,
    Conditional,
)
from ..naming import BoundedSymbolSet
from ..sympy_io import to_sympy
from .codegen import compile_function
from .rewriter import BoundsSpec, RewriteConfig, RewriteResult, rewrite


logger = logging.getLogger(__name__)


def canonical_dumps(obj: Any, indent: int = None) -> str:
    """
    Canonical JSON serialization with sorted keys.

    This ensures identical objects produce identical JSON strings.
    """
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(',', ':') if indent is None else None,
        indent=indent,
        default=str
    )


def canonical_hash(obj: Any) -> str:
    """Compute SHA-256 hash of canonical JSON."""
    return hashlib.sha256(canonical_dumps(obj).encode()).hexdigest()


def input_ordering(inputs: Sequence[BoundedSymbolSet]) -> List[str]:
    """Flat positional argument names for the given free inputs."""
    return [name for bset in inputs for name in bset.call_order()]


class RelaxationBounds(NamedTuple):
    """Numeric values of the four bounds."""
    lo: Any
    hi: Any
    cv: Any
    cc: Any


@dataclass
class EvaluatorSpec:
    """
    Four closed-form root expressions plus their calling convention.

    Attributes:
        graph: Graph owning the root expressions (inputs only, no aux symbols)
        roots: Root bound expressions (lo, hi, cv, cc)
        inputs: Bound sets of the free symbols, in first-seen order
        ordering: Positional argument names (cc, cv, hi, lo per input)
        extra_args: Unrelaxed symbols (e.g. time) appended after `ordering`
    """
    graph: ExpressionGraph
    roots: BoundTuple
    inputs: List[BoundedSymbolSet]
    ordering: List[str]
    extra_args: List[str] = field(default_factory=list)

    @property
    def lo(self) -> ExprNode:
        return self.roots.lo

    @property
    def hi(self) -> ExprNode:
        return self.roots.hi

    @property
    def cv(self) -> ExprNode:
        return self.roots.cv

    @property
    def cc(self) -> ExprNode:
        return self.roots.cc

    @property
    def arg_names(self) -> List[str]:
        return list(self.ordering) + list(self.extra_args)

    def to_canonical(self) -> Dict[str, Any]:
        nodes = self.graph.topological_order(self.roots)
        return {
            "ordering": list(self.ordering),
            "extra_args": list(self.extra_args),
            "nodes": [n.to_canonical() for n in nodes],
            "roots": [n.node_id for n in self.roots],
        }

    def fingerprint(self) -> str:
        """SHA-256 of the canonical structure; equal for equal rewrites."""
        return canonical_hash(self.to_canonical())

    def to_sympy(self) -> Dict[str, Any]:
        """The four root expressions as SymPy expressions."""
        return {
            name: to_sympy(node)
            for name, node in zip(BoundTuple._fields, self.roots)
        }

    def compile(self) -> 'CompiledEvaluators':
        return compile_spec(self)


@dataclass
class CompiledEvaluators:
    """
    Compiled evaluators of one expression.

    Each evaluator takes the flat positional arguments listed in
    `ordering` (then `extra_args`) and broadcasts over array inputs.
    """
    lo_eval: Callable[..., Any]
    hi_eval: Callable[..., Any]
    cv_eval: Callable[..., Any]
    cc_eval: Callable[..., Any]
    all_eval: Callable[..., Tuple[Any, Any, Any, Any]]
    ordering: List[str]
    inputs: List[BoundedSymbolSet]
    extra_args: List[str] = field(default_factory=list)

    def pack(self, values: Mapping[str, Sequence[Any]], **extra: Any) -> List[Any]:
        """
        Build the positional argument list.

        Args:
            values: Per base symbol either (lo, hi, cv, cc), (lo, hi, x)
                meaning cv = cc = x, or (lo, hi) meaning cv = cc = midpoint
            **extra: Values of the unrelaxed symbols in `extra_args`

        Returns:
            Arguments in evaluator order
        """
        args: List[Any] = []
        for bset in self.inputs:
            if bset.base not in values:
                raise KeyError(f"No bounds given for symbol '{bset.base}'")
            lo, hi, cv, cc = _expand_bounds(values[bset.base])
            by_field = {"lo": lo, "hi": hi, "cv": cv, "cc": cc}
            args.extend(by_field[name[len(bset.base) + 1:]] for name in bset.call_order())
        for name in self.extra_args:
            if name not in extra:
                raise KeyError(f"No value given for symbol '{name}'")
            args.append(extra[name])
        return args

    def evaluate(self, values: Mapping[str, Sequence[Any]], **extra: Any) -> RelaxationBounds:
        """Evaluate all four bounds from per-symbol bound tuples."""
        return RelaxationBounds(*self.all_eval(*self.pack(values, **extra)))


def _expand_bounds(value: Sequence[Any]) -> Tuple[Any, Any, Any, Any]:
    value = tuple(value)
    if len(value) == 4:
        return value
    if len(value) == 3:
        lo, hi, x = value
        return lo, hi, x, x
    if len(value) == 2:
        lo, hi = value
        mid = (lo + hi) / 2.0
        return lo, hi, mid, mid
    raise ValueError(f"Expected 2, 3 or 4 bound values, got {len(value)}")


class _Inliner:
    """Copies nodes of a rewrite graph into a target graph, expanding aux symbols."""

    def __init__(self, source: ExpressionGraph, target: ExpressionGraph):
        self.source = source
        self.target = target
        self.definitions: Dict[str, ExprNode] = {}
        self._copied: Dict[int, ExprNode] = {}

    def define(self, name: str, rhs: ExprNode) -> None:
        self.definitions[name] = self.inline(rhs)

    def inline(self, node: ExprNode) -> ExprNode:
        target = self.target
        for current in self.source.topological_order([node]):
            nid = current.node_id
            if nid in self._copied:
                continue
            if isinstance(current, Variable):
                copied = self.definitions.get(current.name)
                if copied is None:
                    copied = target.variable(current.name)
            elif isinstance(current, Constant):
                copied = target.constant(current.value)
            elif isinstance(current, UnaryOp):
                copied = target.unary(current.op, self._copied[current.child.node_id])
            elif isinstance(current, BinaryOp):
                copied = target.binary(
                    current.op,
                    self._copied[current.left.node_id],
                    self._copied[current.right.node_id]
                )
            elif isinstance(current, Conditional):
                copied = target.where(*(self._copied[c.node_id] for c in current.children()))
            else:
                raise ValueError(f"Unknown node type: {type(current)}")
            self._copied[nid] = copied
        return self._copied[node.node_id]


def assemble(result: RewriteResult, graph: Optional[ExpressionGraph] = None) -> EvaluatorSpec:
    """
    Assemble a rewrite into an EvaluatorSpec.

    Args:
        result: Output of rewrite()
        graph: Target graph (default: a fresh graph). Passing a shared
            graph lets several assembled expressions share nodes.

    Returns:
        EvaluatorSpec with closed-form roots over the free inputs
    """
    target = graph if graph is not None else ExpressionGraph()
    ordering = input_ordering(result.inputs)
    for name in ordering:
        target.variable(name)

    inliner = _Inliner(result.graph, target)
    # Equations are in dependency order, so each definition only uses earlier ones
    for eq in result.equations:
        inliner.define(eq.lhs, eq.rhs)

    roots = BoundTuple(*(inliner.inline(node) for node in result.root))

    logger.debug(
        "Assembled %d equations into %d nodes over %d arguments",
        len(result.equations), len(target.topological_order(roots)), len(ordering)
    )

    return EvaluatorSpec(
        graph=target,
        roots=roots,
        inputs=list(result.inputs),
        ordering=ordering,
        extra_args=list(result.exact_symbols),
    )


def compile_spec(spec: EvaluatorSpec) -> CompiledEvaluators:
    """Compile the four evaluators (and a combined one) of a spec."""
    args = spec.arg_names
    evaluators = {
        name: compile_function([node], args)
        for name, node in zip(BoundTuple._fields, spec.roots)
    }
    all_eval = compile_function(list(spec.roots), args)
    return CompiledEvaluators(
        lo_eval=evaluators["lo"],
        hi_eval=evaluators["hi"],
        cv_eval=evaluators["cv"],
        cc_eval=evaluators["cc"],
        all_eval=all_eval,
        ordering=list(spec.ordering),
        inputs=list(spec.inputs),
        extra_args=list(spec.extra_args),
    )


def relax(
    source: Union[ExpressionGraph, TracedVar],
    bounds: Optional[BoundsSpec] = None,
    *,
    rules: Optional[Mapping[OpType, RelaxationRule]] = None,
    config: Optional[RewriteConfig] = None
) -> CompiledEvaluators:
    """
    Rewrite, assemble and compile an expression in one call.

    Example:
        >>> g = ExpressionGraph()
        >>> x, y = TracedVar.symbols(g, "x", "y")
        >>> ev = relax(x * y, {"x": (-1, 4), "y": (0.5, 3)})
        >>> b = ev.evaluate({"x": (-1, 4, 2.5), "y": (0.5, 3, 1.5)})
        >>> float(b.lo), float(b.hi), float(b.cv), float(b.cc)
        (-3.0, 12.0, 1.5, 5.25)
    """
    result = rewrite(source, bounds, rules=rules, config=config)
    return compile_spec(assemble(result))
