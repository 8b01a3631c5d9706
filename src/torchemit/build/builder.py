"""Stage 2: IR Builder.

Builds the typed DAG from a parsed graph: one edge per tensor name, one
IRNode per raw node, DAG validation and a stable topological order.
"""

__docformat__ = "restructuredtext"
__all__ = ["build_ir_graph"]

import heapq
import warnings

from torchemit.build.types import EdgeSource, IRGraph, IRNode, TensorEdge
from torchemit.errors import AmbiguousBinding, CyclicGraph, DanglingReference
from torchemit.parse.types import ParsedGraph, RawNode


class _EdgeIndex:
    """Single name -> edge table shared by inputs, initializers and node outputs."""

    def __init__(self):
        self.edges: list[TensorEdge] = []
        self.ids: dict[str, int] = {}

    def bind(self, edge: TensorEdge, node_id: str | None = None) -> int:
        if edge.name in self.ids:
            existing = self.edges[self.ids[edge.name]]
            raise AmbiguousBinding(
                edge.name,
                [_describe_source(existing), _describe_source(edge)],
                node_id=node_id,
            )
        edge_id = len(self.edges)
        self.ids[edge.name] = edge_id
        self.edges.append(edge)
        return edge_id

    def lookup(self, name: str, node_id: str | None = None) -> int:
        if name not in self.ids:
            raise DanglingReference(name, node_id=node_id)
        return self.ids[name]


def _describe_source(edge: TensorEdge) -> str:
    if edge.source is EdgeSource.NODE:
        return f"node {edge.producer}"
    return edge.source.value


def _bind_node_outputs(index: _EdgeIndex, node: RawNode) -> tuple[int | None, ...]:
    outputs: list[int | None] = []
    for name in node.outputs:
        if not name:
            outputs.append(None)
            continue
        edge = TensorEdge(len(index.edges), name, EdgeSource.NODE, producer=node.node_id)
        outputs.append(index.bind(edge, node_id=node.node_id))
    return tuple(outputs)


def _resolve_node_inputs(index: _EdgeIndex, node: RawNode) -> tuple[int | None, ...]:
    return tuple(
        index.lookup(name, node_id=node.node_id) if name else None for name in node.inputs
    )


def _find_cycle(
    remaining: list[str], deps: dict[str, set[str]], rank: dict[str, int]
) -> list[str]:
    """Walk producer links among unordered nodes until a node repeats.

    :param remaining: Node ids that could not be ordered, in declaration order
    :param deps: Producer node ids per node id
    :param rank: Declaration index per node id
    :return: Node ids forming one cycle, in dependency order
    """
    pending = set(remaining)
    path: list[str] = []
    position: dict[str, int] = {}
    current = remaining[0]
    while current not in position:
        position[current] = len(path)
        path.append(current)
        candidates = sorted((d for d in deps[current] if d in pending), key=rank.__getitem__)
        current = candidates[0]
    return path[position[current]:]


def _topological_order(
    nodes: list[RawNode],
    edges: list[TensorEdge],
    inputs: dict[str, tuple[int | None, ...]],
) -> list[str]:
    """Kahn's algorithm with ties broken by declaration order.

    :param nodes: Raw nodes in declaration order
    :param edges: Edge table
    :param inputs: Resolved input edge ids per node id
    :return: Node ids in topological order
    """
    rank = {node.node_id: idx for idx, node in enumerate(nodes)}
    deps: dict[str, set[str]] = {node.node_id: set() for node in nodes}
    dependents: dict[str, list[str]] = {node.node_id: [] for node in nodes}
    for node in nodes:
        for edge_id in inputs[node.node_id]:
            if edge_id is None:
                continue
            producer = edges[edge_id].producer
            if producer is not None and producer not in deps[node.node_id]:
                deps[node.node_id].add(producer)
                dependents[producer].append(node.node_id)

    indegree = {node_id: len(producers) for node_id, producers in deps.items()}
    ready = [rank[node_id] for node_id, degree in indegree.items() if degree == 0]
    heapq.heapify(ready)

    order: list[str] = []
    while ready:
        node_id = nodes[heapq.heappop(ready)].node_id
        order.append(node_id)
        for dependent in dependents[node_id]:
            indegree[dependent] -= 1
            if indegree[dependent] == 0:
                heapq.heappush(ready, rank[dependent])

    if len(order) != len(nodes):
        ordered = set(order)
        remaining = [node.node_id for node in nodes if node.node_id not in ordered]
        raise CyclicGraph(_find_cycle(remaining, deps, rank))
    return order


def _warn_unreferenced_initializers(parsed: ParsedGraph, consumed: set[str]) -> None:
    output_names = {sig.name for sig in parsed.outputs}
    unused = [
        name for name in parsed.initializers if name not in consumed and name not in output_names
    ]
    if unused:
        warnings.warn(
            f"Ignoring {len(unused)} initializer(s) no node references: {', '.join(unused)}",
            UserWarning,
            stacklevel=3,
        )


def build_ir_graph(parsed: ParsedGraph) -> IRGraph:
    """Build the typed IR graph from a parsed graph.

    Every tensor name binds exactly once: a node output that repeats the
    name of an initializer, a graph input or another node output is an
    :class:`AmbiguousBinding`. References to unknown names are
    :class:`DanglingReference`, cycles are :class:`CyclicGraph`.

    :param parsed: Parser output
    :return: IR graph with a stable topological order
    """
    index = _EdgeIndex()

    input_ids = tuple(
        index.bind(
            TensorEdge(len(index.edges), sig.name, EdgeSource.GRAPH_INPUT, descriptor=sig.descriptor)
        )
        for sig in parsed.inputs
    )
    for initializer in parsed.initializers.values():
        index.bind(
            TensorEdge(
                len(index.edges),
                initializer.name,
                EdgeSource.INITIALIZER,
                descriptor=initializer.descriptor,
            )
        )

    # All producers are known before any input is resolved
    node_outputs = {node.node_id: _bind_node_outputs(index, node) for node in parsed.nodes}
    node_inputs = {node.node_id: _resolve_node_inputs(index, node) for node in parsed.nodes}
    output_ids = tuple(index.lookup(sig.name) for sig in parsed.outputs)

    order = _topological_order(list(parsed.nodes), index.edges, node_inputs)

    consumers: dict[int, list[str]] = {}
    consumed_names: set[str] = set()
    for node_id in order:
        for edge_id in node_inputs[node_id]:
            if edge_id is None:
                continue
            consumed_names.add(index.edges[edge_id].name)
            node_list = consumers.setdefault(edge_id, [])
            if node_id not in node_list:
                node_list.append(node_id)
    _warn_unreferenced_initializers(parsed, consumed_names)

    nodes = {
        node.node_id: IRNode(
            node_id=node.node_id,
            op_type=node.op_type,
            domain=node.domain,
            opset_version=node.opset_version,
            attributes=dict(node.attributes),
            inputs=node_inputs[node.node_id],
            outputs=node_outputs[node.node_id],
        )
        for node in parsed.nodes
    }

    return IRGraph(
        name=parsed.name,
        nodes=nodes,
        edges=tuple(index.edges),
        order=tuple(order),
        inputs=input_ids,
        outputs=output_ids,
        output_signatures=parsed.outputs,
        initializers=dict(parsed.initializers),
        consumers={edge_id: tuple(ids) for edge_id, ids in consumers.items()},
        opset_imports=dict(parsed.opset_imports),
    )
