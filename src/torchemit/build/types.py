"""Stage 2: Intermediate Representation (IR) Type Definitions.

Defines TensorEdge, IRNode and IRGraph. Edges are owned by the graph and
referenced by id from both endpoints, so later stages never look names up
in the parser's separate tables.
"""

__docformat__ = "restructuredtext"
__all__ = ["EdgeSource", "IRGraph", "IRNode", "TensorEdge"]

from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import numpy as np

from torchemit.parse.types import Initializer, TensorDescriptor, TensorSignature


class EdgeSource(Enum):
    """Where the value carried by an edge comes from."""

    NODE = "node"
    INITIALIZER = "initializer"
    GRAPH_INPUT = "graph_input"


@dataclass(frozen=True)
class TensorEdge:
    """A named tensor connecting its producer to its consumers.

    :param edge_id: Index of the edge in :attr:`IRGraph.edges`
    :param name: Tensor name in the source graph
    :param source: Kind of producer
    :param producer: Producing node id when ``source`` is NODE, else None
    :param descriptor: Declared descriptor for initializers and graph
        inputs; None for node outputs (computed by shape inference)
    """

    edge_id: int
    name: str
    source: EdgeSource
    producer: str | None = None
    descriptor: TensorDescriptor | None = None


def _same_value(a: Any, b: Any) -> bool:
    if isinstance(a, np.ndarray) or isinstance(b, np.ndarray):
        return bool(np.array_equal(np.asarray(a), np.asarray(b)))
    return bool(a == b)


@dataclass
class IRNode:
    """Typed IR node.

    The variant is bound exactly once by the opset resolver. Attributes are
    refined monotonically: entries may be added, never changed or removed.

    :param node_id: Unique node id
    :param op_type: ONNX operator type
    :param domain: Operator domain ("" for the default domain)
    :param opset_version: Opset version governing the node
    :param attributes: Attribute set owned by this node
    :param inputs: Input edge ids in order, None for omitted optional inputs
    :param outputs: Output edge ids in order, None for omitted optional outputs
    :param variant: Operator variant bound by the opset resolver
    """

    node_id: str
    op_type: str
    domain: str
    opset_version: int
    attributes: dict[str, Any]
    inputs: tuple[int | None, ...]
    outputs: tuple[int | None, ...]
    variant: Enum | None = None

    def bind_variant(self, variant: Enum) -> None:
        if self.variant is not None:
            raise RuntimeError(
                f"Node {self.node_id} is already bound to {self.variant.name}"
            )
        self.variant = variant

    def refine(self, name: str, value: Any) -> None:
        """Add a concretized attribute.

        Re-setting an attribute to an identical value is allowed; any other
        change would revert an earlier refinement.

        :param name: Attribute name
        :param value: Concrete value
        """
        if name in self.attributes and not _same_value(self.attributes[name], value):
            raise RuntimeError(
                f"Node {self.node_id}: attribute '{name}' is already "
                f"{self.attributes[name]!r}, cannot refine to {value!r}"
            )
        self.attributes[name] = value

    def input_ids(self) -> list[int]:
        """Ids of the inputs that are present."""
        return [edge_id for edge_id in self.inputs if edge_id is not None]


@dataclass(frozen=True)
class IRGraph:
    """Typed DAG built from a parsed graph.

    :param name: Graph name
    :param nodes: Nodes by id, in declaration order
    :param edges: All edges, indexed by edge id
    :param order: Node ids in topological order
    :param inputs: Edge ids of the declared runtime inputs, in order
    :param outputs: Edge ids of the declared outputs, in order
    :param output_signatures: Declared output signatures, aligned with outputs
    :param initializers: Initializer table by name
    :param consumers: Consuming node ids per edge id, in topological order
    :param opset_imports: Opset version per domain
    """

    name: str
    nodes: dict[str, IRNode]
    edges: tuple[TensorEdge, ...]
    order: tuple[str, ...]
    inputs: tuple[int, ...]
    outputs: tuple[int, ...]
    output_signatures: tuple[TensorSignature, ...]
    initializers: dict[str, Initializer]
    consumers: dict[int, tuple[str, ...]]
    opset_imports: dict[str, int] = field(default_factory=dict)
    _names: dict[str, int] = field(default_factory=dict, repr=False, compare=False)

    def __post_init__(self):
        if not self._names:
            self._names.update({edge.name: edge.edge_id for edge in self.edges})

    def edge_by_name(self, name: str) -> TensorEdge:
        return self.edges[self._names[name]]

    def producer_of(self, edge_id: int) -> IRNode | None:
        producer = self.edges[edge_id].producer
        return None if producer is None else self.nodes[producer]

    def consumers_of(self, edge_id: int) -> tuple[IRNode, ...]:
        return tuple(self.nodes[node_id] for node_id in self.consumers.get(edge_id, ()))

    def constant_value(self, edge_id: int | None) -> np.ndarray | None:
        """Return the initializer data behind an edge, or None if not constant."""
        if edge_id is None:
            return None
        edge = self.edges[edge_id]
        if edge.source is not EdgeSource.INITIALIZER:
            return None
        return self.initializers[edge.name].data

    def ordered_nodes(self) -> Iterator[IRNode]:
        """Iterate nodes in topological order."""
        for node_id in self.order:
            yield self.nodes[node_id]
