"""Compilation error taxonomy.

Every failure of the pipeline is raised as a subclass of
:class:`CompilationError`. Errors carry the offending node id (``None`` for
graph-level failures) and a context mapping used in the message, so the
caller can patch the input graph and retry.
"""

__docformat__ = "restructuredtext"
__all__ = [
    "AmbiguousBinding",
    "CompilationError",
    "CyclicGraph",
    "DanglingReference",
    "GraphConstructionError",
    "InvalidNodeArity",
    "MalformedGraph",
    "MissingWeights",
    "ShapeMismatch",
    "TypeMismatch",
    "UnsupportedElementType",
    "UnsupportedFeature",
    "UnsupportedOperator",
    "UnsupportedOpsetVersion",
]

from typing import Any


class CompilationError(ValueError):
    """Base class for all compilation failures.

    :param message: Human-readable description
    :param node_id: Id of the offending node, or None for graph-level errors
    :param context: Extra key/value pairs shown after the message
    """

    def __init__(
        self,
        message: str,
        node_id: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        self.message = message
        self.node_id = node_id
        self.context = context or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        parts = [self.message]
        if self.node_id is not None:
            parts.append(f"[node: {self.node_id}]")
        parts.extend(f"[{key}: {value}]" for key, value in self.context.items())
        return " ".join(parts)


class MalformedGraph(CompilationError):
    """The serialized graph is not structurally well-formed."""


class InvalidNodeArity(MalformedGraph):
    """A node declares a number of inputs or outputs its operator does not allow."""


class GraphConstructionError(CompilationError):
    """An invariant of the IR graph would be violated."""


class CyclicGraph(GraphConstructionError):
    """The node graph contains a cycle.

    :param cycle: Ids of the nodes that could not be ordered
    """

    def __init__(self, cycle: list[str]):
        self.cycle = list(cycle)
        super().__init__(
            f"Graph contains a cycle through {len(self.cycle)} node(s)",
            node_id=self.cycle[0] if self.cycle else None,
            context={"nodes": ", ".join(self.cycle)},
        )


class DanglingReference(GraphConstructionError):
    """A tensor name resolves to no producer, initializer or graph input."""

    def __init__(self, tensor_name: str, node_id: str | None = None):
        self.tensor_name = tensor_name
        super().__init__(
            f"Tensor '{tensor_name}' is not produced by any node, initializer or graph input",
            node_id=node_id,
        )


class AmbiguousBinding(GraphConstructionError):
    """A tensor name is bound by more than one source."""

    def __init__(self, tensor_name: str, sources: list[str], node_id: str | None = None):
        self.tensor_name = tensor_name
        self.sources = list(sources)
        super().__init__(
            f"Tensor '{tensor_name}' has more than one producer",
            node_id=node_id,
            context={"sources": ", ".join(self.sources)},
        )


class UnsupportedFeature(CompilationError, NotImplementedError):
    """A known limitation of the compiler."""


class UnsupportedOperator(UnsupportedFeature):
    """The operator (or one of its attribute settings) is not supported."""

    def __init__(self, message: str, op_type: str, node_id: str | None = None):
        self.op_type = op_type
        super().__init__(message, node_id=node_id, context={"operator": op_type})


class UnsupportedOpsetVersion(UnsupportedFeature):
    """No known variant of the operator matches its opset version."""

    def __init__(self, op_type: str, version: int, node_id: str | None = None):
        self.op_type = op_type
        self.version = version
        super().__init__(
            f"{op_type} has no supported variant for opset {version}",
            node_id=node_id,
            context={"operator": op_type, "opset": version},
        )


class UnsupportedElementType(UnsupportedFeature):
    """A tensor uses an element type outside the supported set."""

    def __init__(self, tensor_name: str, onnx_type: int, node_id: str | None = None):
        self.tensor_name = tensor_name
        self.onnx_type = onnx_type
        super().__init__(
            f"Tensor '{tensor_name}' has unsupported element type {onnx_type}",
            node_id=node_id,
        )


class ShapeMismatch(CompilationError):
    """Shape inference found two contradicting shapes.

    :param expected: First shape (or element type) involved in the conflict
    :param actual: Second shape (or element type) involved in the conflict
    """

    def __init__(self, message: str, expected: Any, actual: Any, node_id: str | None = None):
        self.expected = expected
        self.actual = actual
        super().__init__(
            message,
            node_id=node_id,
            context={"expected": expected, "actual": actual},
        )


class TypeMismatch(ShapeMismatch):
    """Shape inference found two contradicting element types."""


class MissingWeights(CompilationError):
    """An operation needs a learned parameter that no initializer provides."""

    def __init__(self, op_type: str, role: str, tensor_name: str, node_id: str | None = None):
        self.op_type = op_type
        self.role = role
        self.tensor_name = tensor_name
        super().__init__(
            f"{op_type} requires its {role} '{tensor_name}' to be an initializer",
            node_id=node_id,
        )
