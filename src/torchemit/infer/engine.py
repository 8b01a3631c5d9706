"""Stage 4: Shape/Type Inference.

Forward-propagates tensor descriptors through the topological order. Each
rule is a pure function of the node's resolved attributes and its input
descriptors; the graph itself is never modified.
"""

__docformat__ = "restructuredtext"
__all__ = ["infer_shapes"]

from torchemit.build.types import IRGraph
from torchemit.errors import ShapeMismatch, TypeMismatch
from torchemit.infer import _elementwise, _layers, _shape_ops  # noqa: F401  (register rules)
from torchemit.infer._registry import get_shape_rule, merge_dims
from torchemit.infer.types import ShapeTable
from torchemit.parse.types import TensorDescriptor


def _check_declared_outputs(graph: IRGraph, descriptors: dict[int, TensorDescriptor]) -> None:
    """Compare inferred graph outputs with their declarations.

    Symbolic declared dimensions accept any inferred size; two different
    concrete sizes, a different rank or a different element type fail.
    """
    for edge_id, signature in zip(graph.outputs, graph.output_signatures):
        inferred = descriptors[edge_id]
        declared = signature.descriptor
        producer = graph.edges[edge_id].producer
        if declared.dtype is not None and declared.dtype != inferred.dtype:
            raise TypeMismatch(
                f"Output '{signature.name}' is declared with another element type",
                declared.dtype.name,
                inferred.dtype.name if inferred.dtype else None,
                node_id=producer,
            )
        if not signature.has_shape:
            continue
        mismatch = declared.rank != inferred.rank
        if not mismatch:
            try:
                for declared_dim, inferred_dim in zip(declared.shape, inferred.shape):
                    merge_dims(declared_dim, inferred_dim)
            except ValueError:
                mismatch = True
        if mismatch:
            raise ShapeMismatch(
                f"Output '{signature.name}' is declared with another shape",
                declared.shape,
                inferred.shape,
                node_id=producer,
            )


def infer_shapes(graph: IRGraph) -> ShapeTable:
    """Infer the descriptor of every edge in the graph.

    :param graph: IR graph with every node's variant bound
    :return: Descriptor per edge id
    """
    descriptors: dict[int, TensorDescriptor] = {
        edge.edge_id: edge.descriptor for edge in graph.edges if edge.descriptor is not None
    }
    for node in graph.ordered_nodes():
        if node.variant is None:
            raise RuntimeError(f"Node {node.node_id} has no operator variant; resolve opsets first")
        rule = get_shape_rule(node.op_type)
        inputs = [None if edge_id is None else descriptors[edge_id] for edge_id in node.inputs]
        outputs = rule(node, inputs)
        for edge_id, descriptor in zip(node.outputs, outputs):
            if edge_id is not None:
                descriptors[edge_id] = descriptor
    _check_declared_outputs(graph, descriptors)
    return ShapeTable(descriptors)
