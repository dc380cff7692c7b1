"""
Expression Graph for Factorable Functions

Represents arithmetic expressions as directed acyclic graphs (DAGs)
of elementary operations. This enables:
1. Point and array evaluation
2. Rewriting into interval / McCormick bound expressions
3. Code generation of the rewritten bounds

Each node is either:
- Variable: a named scalar symbol
- Constant: a fixed value
- UnaryOp: f(child) for f in {neg, abs, sqrt, exp, log, square, ...}
- BinaryOp: f(left, right) for f in {add, sub, mul, div, pow, min, max}
- Conditional: where(test > 0, if_pos, otherwise)

Nodes live in an arena (the graph's node list) and are hash-consed:
building the same operation over the same children twice returns the
same node, so shared sub-expressions are represented exactly once.
"""

from enum import Enum
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, Sequence, Tuple, Union
from dataclasses import dataclass, field
import numpy as np


class OpType(Enum):
    """Elementary operations for expression graphs."""

    # Binary operations
    ADD = "add"
    SUB = "sub"
    MUL = "mul"
    DIV = "div"
    POW = "pow"
    MIN = "min"
    MAX = "max"

    # Unary operations
    NEG = "neg"
    ABS = "abs"
    SQRT = "sqrt"
    EXP = "exp"
    LOG = "log"
    SIN = "sin"
    COS = "cos"
    TANH = "tanh"
    SQUARE = "square"  # x^2 (special case with tighter bounds)

    # Ternary operations
    WHERE = "where"


# Categorize operations
BINARY_OPS = {OpType.ADD, OpType.SUB, OpType.MUL, OpType.DIV, OpType.POW, OpType.MIN, OpType.MAX}
UNARY_OPS = {OpType.NEG, OpType.ABS, OpType.SQRT, OpType.EXP, OpType.LOG,
             OpType.SIN, OpType.COS, OpType.TANH, OpType.SQUARE}


@dataclass(eq=False)
class ExprNode:
    """Base class for expression graph nodes."""
    node_id: int = field(default=-1)

    def evaluate(self, var_values: Dict[str, Any]) -> Any:
        """Evaluate the node given variable values."""
        raise NotImplementedError

    def children(self) -> Tuple['ExprNode', ...]:
        return ()

    def key(self) -> Hashable:
        """Structural key used for hash-consing."""
        raise NotImplementedError

    def to_canonical(self) -> Dict[str, Any]:
        """Convert to canonical dictionary form."""
        raise NotImplementedError


@dataclass(eq=False)
class Variable(ExprNode):
    """
    A variable node representing a named symbol.

    Attributes:
        name: Symbol name (identity of the variable)
        var_index: Order of first creation within the graph
    """
    name: str = ""
    var_index: int = 0

    def evaluate(self, var_values: Dict[str, Any]) -> Any:
        return var_values[self.name]

    def key(self) -> Hashable:
        return ("variable", self.name)

    def to_canonical(self) -> Dict[str, Any]:
        return {
            "type": "variable",
            "node_id": self.node_id,
            "name": self.name
        }

    def __repr__(self) -> str:
        return self.name


@dataclass(eq=False)
class Constant(ExprNode):
    """
    A constant node with a fixed value.

    Attributes:
        value: The constant value
    """
    value: float = 0.0

    def evaluate(self, var_values: Dict[str, Any]) -> Any:
        return self.value

    def key(self) -> Hashable:
        return ("constant", self.value)

    def to_canonical(self) -> Dict[str, Any]:
        return {
            "type": "constant",
            "node_id": self.node_id,
            "value": self.value
        }

    def __repr__(self) -> str:
        return repr(self.value)


@dataclass(eq=False)
class UnaryOp(ExprNode):
    """
    A unary operation node: f(child).

    Attributes:
        op: The operation type
        child: The operand node
    """
    op: OpType = OpType.NEG
    child: ExprNode = None

    def evaluate(self, var_values: Dict[str, Any]) -> Any:
        x = self.child.evaluate(var_values)
        return _eval_unary(self.op, x)

    def children(self) -> Tuple[ExprNode, ...]:
        return (self.child,)

    def key(self) -> Hashable:
        return ("unary", self.op, self.child.node_id)

    def to_canonical(self) -> Dict[str, Any]:
        return {
            "type": "unary",
            "node_id": self.node_id,
            "op": self.op.value,
            "child_id": self.child.node_id
        }

    def __repr__(self) -> str:
        return f"{self.op.value}({self.child!r})"


@dataclass(eq=False)
class BinaryOp(ExprNode):
    """
    A binary operation node: f(left, right).

    Attributes:
        op: The operation type
        left: The left operand
        right: The right operand
    """
    op: OpType = OpType.ADD
    left: ExprNode = None
    right: ExprNode = None

    def evaluate(self, var_values: Dict[str, Any]) -> Any:
        l = self.left.evaluate(var_values)
        r = self.right.evaluate(var_values)
        return _eval_binary(self.op, l, r)

    def children(self) -> Tuple[ExprNode, ...]:
        return (self.left, self.right)

    def key(self) -> Hashable:
        return ("binary", self.op, self.left.node_id, self.right.node_id)

    def to_canonical(self) -> Dict[str, Any]:
        return {
            "type": "binary",
            "node_id": self.node_id,
            "op": self.op.value,
            "left_id": self.left.node_id,
            "right_id": self.right.node_id
        }

    def __repr__(self) -> str:
        return f"{self.op.value}({self.left!r}, {self.right!r})"


@dataclass(eq=False)
class Conditional(ExprNode):
    """
    A selection node: if_pos where test > 0, otherwise `otherwise`.

    Only produced by relaxation rules (e.g. to guard a secant slope
    against a degenerate interval); never part of user input.
    """
    test: ExprNode = None
    if_pos: ExprNode = None
    otherwise: ExprNode = None

    def evaluate(self, var_values: Dict[str, Any]) -> Any:
        t = self.test.evaluate(var_values)
        a = self.if_pos.evaluate(var_values)
        b = self.otherwise.evaluate(var_values)
        return np.where(np.asarray(t) > 0, a, b)

    def children(self) -> Tuple[ExprNode, ...]:
        return (self.test, self.if_pos, self.otherwise)

    def key(self) -> Hashable:
        return ("where", self.test.node_id, self.if_pos.node_id, self.otherwise.node_id)

    def to_canonical(self) -> Dict[str, Any]:
        return {
            "type": "where",
            "node_id": self.node_id,
            "test_id": self.test.node_id,
            "if_pos_id": self.if_pos.node_id,
            "otherwise_id": self.otherwise.node_id
        }

    def __repr__(self) -> str:
        return f"where({self.test!r} > 0, {self.if_pos!r}, {self.otherwise!r})"


def _eval_unary(op: OpType, x: Any) -> Any:
    """Evaluate a unary operation."""
    if op == OpType.NEG:
        return -x
    elif op == OpType.ABS:
        return np.abs(x)
    elif op == OpType.SQRT:
        return np.sqrt(x)
    elif op == OpType.EXP:
        return np.exp(x)
    elif op == OpType.LOG:
        return np.log(x)
    elif op == OpType.SIN:
        return np.sin(x)
    elif op == OpType.COS:
        return np.cos(x)
    elif op == OpType.TANH:
        return np.tanh(x)
    elif op == OpType.SQUARE:
        return x * x
    else:
        raise ValueError(f"Unknown unary op: {op}")


def _eval_binary(op: OpType, l: Any, r: Any) -> Any:
    """Evaluate a binary operation."""
    if op == OpType.ADD:
        return l + r
    elif op == OpType.SUB:
        return l - r
    elif op == OpType.MUL:
        return l * r
    elif op == OpType.DIV:
        return l / r
    elif op == OpType.POW:
        return np.power(l, r)
    elif op == OpType.MIN:
        return np.minimum(l, r)
    elif op == OpType.MAX:
        return np.maximum(l, r)
    else:
        raise ValueError(f"Unknown binary op: {op}")


class ExpressionGraph:
    """
    A hash-consed expression DAG.

    The graph is an arena with:
    - Variable nodes as leaves (one per name)
    - Constant nodes as leaves (one per value)
    - Operation nodes as internal nodes (one per structure)
    - An optional designated output node

    Provides:
    - Evaluation at a point (scalars or numpy arrays)
    - Topological traversal from one or more roots
    - Serialization to canonical form
    """

    def __init__(self):
        self.nodes: List[ExprNode] = []
        self.variables: Dict[str, Variable] = {}  # name -> Variable node
        self.output_node: Optional[ExprNode] = None
        self._index: Dict[Hashable, ExprNode] = {}

    def _add_node(self, node: ExprNode) -> ExprNode:
        """Add a node to the arena unless a structurally equal one exists."""
        key = node.key()
        existing = self._index.get(key)
        if existing is not None:
            return existing
        node.node_id = len(self.nodes)
        self.nodes.append(node)
        self._index[key] = node
        return node

    def _check_owned(self, *nodes: ExprNode) -> None:
        for node in nodes:
            if not isinstance(node, ExprNode):
                raise TypeError(f"Expected an ExprNode, got {type(node).__name__}")
            if node.node_id < 0 or node.node_id >= len(self.nodes) or self.nodes[node.node_id] is not node:
                raise ValueError(f"Node {node!r} does not belong to this graph")

    def variable(self, name: str) -> Variable:
        """
        Get or create a variable node.

        Args:
            name: Symbol name

        Returns:
            Variable node
        """
        if name in self.variables:
            return self.variables[name]

        var = Variable(name=name, var_index=len(self.variables))
        self._add_node(var)
        self.variables[name] = var
        return var

    def constant(self, value: float) -> Constant:
        """Get or create a constant node."""
        return self._add_node(Constant(value=float(value)))

    def unary(self, op: OpType, child: ExprNode) -> ExprNode:
        """Get or create a unary operation node."""
        if op not in UNARY_OPS:
            raise ValueError(f"{op} is not a unary operation")
        self._check_owned(child)
        return self._add_node(UnaryOp(op=op, child=child))

    def binary(self, op: OpType, left: ExprNode, right: ExprNode) -> ExprNode:
        """Get or create a binary operation node."""
        if op not in BINARY_OPS:
            raise ValueError(f"{op} is not a binary operation")
        self._check_owned(left, right)
        return self._add_node(BinaryOp(op=op, left=left, right=right))

    def where(self, test: ExprNode, if_pos: ExprNode, otherwise: ExprNode) -> ExprNode:
        """Get or create a conditional node."""
        self._check_owned(test, if_pos, otherwise)
        return self._add_node(Conditional(test=test, if_pos=if_pos, otherwise=otherwise))

    def set_output(self, node: ExprNode) -> None:
        """Set the output node of the graph."""
        self._check_owned(node)
        self.output_node = node

    def evaluate(self, values: Union[Dict[str, Any], Sequence[Any], np.ndarray]) -> Any:
        """
        Evaluate the output expression.

        Args:
            values: Mapping from variable name to value, or a sequence
                ordered like `self.variables`

        Returns:
            Function value (broadcast over array inputs)
        """
        if self.output_node is None:
            raise ValueError("No output node set")

        if isinstance(values, dict):
            var_values = values
        else:
            var_values = dict(zip(self.variables, values))

        return self.output_node.evaluate(var_values)

    def __call__(self, values: Union[Dict[str, Any], Sequence[Any]]) -> Any:
        """Shorthand for evaluate."""
        return self.evaluate(values)

    def num_variables(self) -> int:
        """Return the number of variables."""
        return len(self.variables)

    def __len__(self) -> int:
        return len(self.nodes)

    def topological_order(self, roots: Optional[Iterable[ExprNode]] = None) -> List[ExprNode]:
        """
        Return the nodes reachable from `roots` in topological order (leaves first).

        Defaults to the output node. Iterative, so deep graphs do not hit
        the recursion limit.
        """
        if roots is None:
            roots = [self.output_node] if self.output_node is not None else []

        visited = set()
        order = []

        for root in roots:
            stack = [(root, False)]
            while stack:
                node, expanded = stack.pop()
                if expanded:
                    order.append(node)
                    continue
                if node.node_id in visited:
                    continue
                visited.add(node.node_id)
                stack.append((node, True))
                for child in reversed(node.children()):
                    if child.node_id not in visited:
                        stack.append((child, False))

        return order

    def free_variables(self, roots: Optional[Iterable[ExprNode]] = None) -> List[Variable]:
        """Variables reachable from `roots`, in first-seen (post-order) order."""
        return [n for n in self.topological_order(roots) if isinstance(n, Variable)]

    def to_canonical(self) -> Dict[str, Any]:
        """Convert the entire graph to canonical form."""
        return {
            "nodes": [n.to_canonical() for n in self.nodes],
            "output_node_id": self.output_node.node_id if self.output_node else None,
            "num_variables": self.num_variables()
        }

    @classmethod
    def from_callable(
        cls,
        func: Callable,
        var_names: Sequence[str]
    ) -> 'ExpressionGraph':
        """
        Create an expression graph by tracing a callable.

        This uses operator overloading to capture the computation.

        Args:
            func: A callable that takes traced variables
            var_names: Variable names, one per positional argument

        Returns:
            ExpressionGraph representing the function
        """
        graph = cls()
        vars = [TracedVar(graph, graph.variable(name)) for name in var_names]
        result = func(*vars)

        if isinstance(result, TracedVar):
            graph.set_output(result.node)
        else:
            # Constant result
            graph.set_output(graph.constant(float(result)))

        return graph


class TracedVar:
    """
    A traced variable for expression graph construction.

    Supports operator overloading to build the graph automatically.
    """

    def __init__(self, graph: ExpressionGraph, node: ExprNode):
        self.graph = graph
        self.node = node

    @classmethod
    def symbols(cls, graph: ExpressionGraph, *names: str) -> List['TracedVar']:
        """Create traced variables for the given names."""
        return [cls(graph, graph.variable(name)) for name in names]

    def _ensure_traced(self, other) -> 'TracedVar':
        """Ensure the other operand is a TracedVar."""
        if isinstance(other, TracedVar):
            if other.graph is not self.graph:
                raise ValueError("Cannot combine expressions from different graphs")
            return other
        else:
            return TracedVar(self.graph, self.graph.constant(float(other)))

    def _binary(self, op: OpType, left: 'TracedVar', right: 'TracedVar') -> 'TracedVar':
        return TracedVar(self.graph, self.graph.binary(op, left.node, right.node))

    def __add__(self, other) -> 'TracedVar':
        return self._binary(OpType.ADD, self, self._ensure_traced(other))

    def __radd__(self, other) -> 'TracedVar':
        return self._binary(OpType.ADD, self._ensure_traced(other), self)

    def __sub__(self, other) -> 'TracedVar':
        return self._binary(OpType.SUB, self, self._ensure_traced(other))

    def __rsub__(self, other) -> 'TracedVar':
        return self._binary(OpType.SUB, self._ensure_traced(other), self)

    def __mul__(self, other) -> 'TracedVar':
        return self._binary(OpType.MUL, self, self._ensure_traced(other))

    def __rmul__(self, other) -> 'TracedVar':
        return self._binary(OpType.MUL, self._ensure_traced(other), self)

    def __truediv__(self, other) -> 'TracedVar':
        return self._binary(OpType.DIV, self, self._ensure_traced(other))

    def __rtruediv__(self, other) -> 'TracedVar':
        return self._binary(OpType.DIV, self._ensure_traced(other), self)

    def __pow__(self, other) -> 'TracedVar':
        # Special case for x^2
        if isinstance(other, int) and other == 2:
            return TracedVar(
                self.graph,
                self.graph.unary(OpType.SQUARE, self.node)
            )
        return self._binary(OpType.POW, self, self._ensure_traced(other))

    def __rpow__(self, other) -> 'TracedVar':
        return self._binary(OpType.POW, self._ensure_traced(other), self)

    def __neg__(self) -> 'TracedVar':
        return TracedVar(
            self.graph,
            self.graph.unary(OpType.NEG, self.node)
        )

    def __pos__(self) -> 'TracedVar':
        return self

    def __abs__(self) -> 'TracedVar':
        return TracedVar(
            self.graph,
            self.graph.unary(OpType.ABS, self.node)
        )

    def __repr__(self) -> str:
        return f"TracedVar({self.node!r})"


# Module-level math functions for tracing
def _unary(op: OpType, x: TracedVar) -> TracedVar:
    return TracedVar(x.graph, x.graph.unary(op, x.node))


def sqrt(x: TracedVar) -> TracedVar:
    return _unary(OpType.SQRT, x)


def exp(x: TracedVar) -> TracedVar:
    return _unary(OpType.EXP, x)


def log(x: TracedVar) -> TracedVar:
    return _unary(OpType.LOG, x)


def sin(x: TracedVar) -> TracedVar:
    return _unary(OpType.SIN, x)


def cos(x: TracedVar) -> TracedVar:
    return _unary(OpType.COS, x)


def tanh(x: TracedVar) -> TracedVar:
    return _unary(OpType.TANH, x)
