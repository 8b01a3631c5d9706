"""Stage 5: Lowering Pass.

Maps every resolved IR node, in topological order, to one canonical
operation with fully concretized attributes, and collects the learned
parameters and constant tensors of the model.
"""

__docformat__ = "restructuredtext"
__all__ = ["lower_graph"]

from torchemit.build.types import IRGraph, IRNode
from torchemit.errors import UnsupportedOperator
from torchemit.infer.types import ShapeTable
from torchemit.lower._context import MAX_INLINE_CONSTANT_NUMEL, LoweringContext
from torchemit.lower._layers import LAYER_LOWERINGS
from torchemit.lower._operations import OPERATION_LOWERINGS
from torchemit.lower._operators import OPERATOR_LOWERINGS
from torchemit.lower.types import CanonicalOp, ConstantInfo, ModelDefinition, VariableInfo

# Tried in this order; a layer lowering returns None to decline
_LOWERING_TABLES = (LAYER_LOWERINGS, OPERATION_LOWERINGS, OPERATOR_LOWERINGS)


def _lower_node(ctx: LoweringContext, node: IRNode) -> CanonicalOp:
    for table in _LOWERING_TABLES:
        lowering = table.get(node.op_type)
        if lowering is None:
            continue
        op = lowering(ctx, node)
        if op is not None:
            return op
    raise UnsupportedOperator(
        f"No lowering for operator {node.op_type}", node.op_type, node_id=node.node_id
    )


def _graph_outputs(
    ctx: LoweringContext, graph: IRGraph
) -> tuple[VariableInfo | ConstantInfo, ...]:
    outputs: list[VariableInfo | ConstantInfo] = []
    for edge_id in graph.outputs:
        if edge_id in ctx.variables:
            outputs.append(ctx.variables[edge_id])
        else:
            outputs.append(ctx.constant(edge_id))
    return tuple(outputs)


def lower_graph(
    graph: IRGraph,
    shapes: ShapeTable,
    max_inline_numel: int = MAX_INLINE_CONSTANT_NUMEL,
) -> ModelDefinition:
    """Lower a resolved and shape-annotated IR graph.

    Runtime inputs are named first (``x0``, ``x1``, ...) in declaration
    order; rank-0 inputs become Python scalars. Layer instances, values and
    constant buffers are then numbered in topological order, so the result
    is a pure function of the graph.

    :param graph: IR graph with every variant bound
    :param shapes: Descriptors from shape inference
    :param max_inline_numel: Constants up to this size are embedded as literals
    :return: Immutable model definition
    """
    ctx = LoweringContext(graph, shapes, max_inline_numel=max_inline_numel)
    inputs = tuple(
        ctx.new_variable(edge_id, python_scalar=shapes[edge_id].is_scalar)
        for edge_id in graph.inputs
    )
    ops = tuple(_lower_node(ctx, node) for node in graph.ordered_nodes())
    outputs = _graph_outputs(ctx, graph)
    return ModelDefinition(
        name=graph.name,
        ops=ops,
        inputs=inputs,
        outputs=outputs,
        parameters=dict(ctx.parameters),
        constants=tuple(ctx.constants.values()),
    )
