"""Stage 3: Opset Resolver.

Binds every IR node to the operator variant selected by its opset version,
validates the node's arity against that variant and copies the
version-dependent attributes (defaults, attribute-vs-input locations) into
one version-independent attribute set.
"""

__docformat__ = "restructuredtext"
__all__ = ["FLT_MAX", "resolve_opsets"]

from collections.abc import Callable
from typing import Any

import numpy as np

from torchemit.build.types import IRGraph, IRNode
from torchemit.errors import (
    InvalidNodeArity,
    MalformedGraph,
    UnsupportedOperator,
    UnsupportedOpsetVersion,
)
from torchemit.resolve.variants import VARIANT_TABLE, OpVariant, select_variant

# Largest float32; ONNX uses +/- this value as "no bound"
FLT_MAX = float(np.finfo(np.float32).max)

# (min inputs, max inputs, min outputs, max outputs)
_UNARY = (1, 1, 1, 1)
_BINARY = (2, 2, 1, 1)

ARITY_RULES: dict[OpVariant, tuple[int, int, int, int]] = {
    OpVariant.ADD_V7: _BINARY,
    OpVariant.SUB_V7: _BINARY,
    OpVariant.MUL_V7: _BINARY,
    OpVariant.DIV_V7: _BINARY,
    OpVariant.EQUAL_V7: _BINARY,
    OpVariant.CONV_V1: (2, 3, 1, 1),
    OpVariant.MAXPOOL_V1: _UNARY,
    OpVariant.MAXPOOL_V8: (1, 1, 1, 2),
    OpVariant.AVGPOOL_V1: _UNARY,
    OpVariant.AVGPOOL_V7: _UNARY,
    OpVariant.GLOBAL_AVGPOOL_V1: _UNARY,
    OpVariant.BATCHNORM_V1: (5, 5, 1, 5),
    OpVariant.BATCHNORM_V9: (5, 5, 1, 5),
    OpVariant.GEMM_V1: (3, 3, 1, 1),
    OpVariant.GEMM_V11: (2, 3, 1, 1),
    OpVariant.MATMUL_V1: _BINARY,
    OpVariant.RESHAPE_V1: _UNARY,
    OpVariant.RESHAPE_V5: _BINARY,
    OpVariant.FLATTEN_V1: _UNARY,
    OpVariant.FLATTEN_V11: _UNARY,
    OpVariant.TRANSPOSE_V1: _UNARY,
    OpVariant.CONCAT_V1: (1, 2**31, 1, 1),
    OpVariant.CONCAT_V4: (1, 2**31, 1, 1),
    OpVariant.GATHER_V1: _BINARY,
    OpVariant.SOFTMAX_V1: _UNARY,
    OpVariant.SOFTMAX_V13: _UNARY,
    OpVariant.LOG_SOFTMAX_V1: _UNARY,
    OpVariant.LOG_SOFTMAX_V13: _UNARY,
    OpVariant.RELU_V1: _UNARY,
    OpVariant.SIGMOID_V1: _UNARY,
    OpVariant.TANH_V1: _UNARY,
    OpVariant.SQRT_V1: _UNARY,
    OpVariant.RECIPROCAL_V1: _UNARY,
    OpVariant.ERF_V1: _UNARY,
    OpVariant.IDENTITY_V1: _UNARY,
    OpVariant.CLIP_V1: _UNARY,
    OpVariant.CLIP_V11: (1, 3, 1, 1),
    OpVariant.DROPOUT_V1: (1, 1, 1, 1),
    OpVariant.DROPOUT_V7: (1, 1, 1, 2),
    OpVariant.DROPOUT_V12: (1, 3, 1, 2),
}


def _check_arity(node: IRNode, variant: OpVariant) -> None:
    min_in, max_in, min_out, max_out = ARITY_RULES[variant]
    n_in = len(node.inputs)
    n_out = len(node.outputs)
    if not min_in <= n_in <= max_in:
        raise InvalidNodeArity(
            f"{node.op_type} ({variant.name}) takes {min_in}..{max_in} inputs, got {n_in}",
            node_id=node.node_id,
        )
    if not min_out <= n_out <= max_out:
        raise InvalidNodeArity(
            f"{node.op_type} ({variant.name}) produces {min_out}..{max_out} outputs, got {n_out}",
            node_id=node.node_id,
        )
    # Leading inputs are mandatory for every supported operator
    for position in range(min_in):
        if node.inputs[position] is None:
            raise InvalidNodeArity(
                f"{node.op_type} input {position} is required",
                node_id=node.node_id,
            )
    if node.outputs[0] is None:
        raise InvalidNodeArity(f"{node.op_type} output 0 is required", node_id=node.node_id)


def _set_default(node: IRNode, name: str, value: Any) -> None:
    if name not in node.attributes:
        node.refine(name, value)


def _constant_input(graph: IRGraph, node: IRNode, position: int) -> np.ndarray | None:
    """Constant data of an optional input, None if the input is omitted.

    A present input that is not a compile-time constant is rejected.
    """
    if position >= len(node.inputs) or node.inputs[position] is None:
        return None
    value = graph.constant_value(node.inputs[position])
    if value is None:
        name = graph.edges[node.inputs[position]].name
        raise UnsupportedOperator(
            f"{node.op_type} input {position} ('{name}') must be a constant initializer",
            node.op_type,
            node_id=node.node_id,
        )
    return value


def _scalar_of(value: np.ndarray, node: IRNode, what: str) -> Any:
    if value.size != 1:
        raise MalformedGraph(
            f"{node.op_type} {what} must be a scalar, got shape {tuple(value.shape)}",
            node_id=node.node_id,
        )
    item = value.reshape(-1)[0]
    if value.dtype == np.float32:
        # Same decimal form as decoded float attributes
        return float(str(item))
    return item.item()


def _attribute_bound(value: float | None, unbounded: float) -> float | None:
    if value is None:
        return None
    if (unbounded < 0 and value <= unbounded) or (unbounded > 0 and value >= unbounded):
        return None
    return float(value)


def _normalize_clip_v1(graph: IRGraph, node: IRNode) -> None:
    node.refine("clip_min", _attribute_bound(node.attributes.get("min"), -FLT_MAX))
    node.refine("clip_max", _attribute_bound(node.attributes.get("max"), FLT_MAX))


def _normalize_clip_v11(graph: IRGraph, node: IRNode) -> None:
    low = _constant_input(graph, node, 1)
    high = _constant_input(graph, node, 2)
    node.refine("clip_min", None if low is None else _scalar_of(low, node, "min"))
    node.refine("clip_max", None if high is None else _scalar_of(high, node, "max"))


def _normalize_dropout_v1(graph: IRGraph, node: IRNode) -> None:
    _set_default(node, "ratio", 0.5)
    node.refine("training_mode", False)


def _normalize_dropout_v12(graph: IRGraph, node: IRNode) -> None:
    ratio = None
    if len(node.inputs) > 1 and node.inputs[1] is not None:
        value = graph.constant_value(node.inputs[1])
        ratio = 0.5 if value is None else float(_scalar_of(value, node, "ratio"))
    node.refine("ratio", 0.5 if ratio is None else ratio)
    training = _constant_input(graph, node, 2)
    training_mode = False if training is None else bool(_scalar_of(training, node, "training_mode"))
    if training_mode:
        raise UnsupportedOperator(
            "Dropout with training_mode=True is not supported for inference",
            node.op_type,
            node_id=node.node_id,
        )
    node.refine("training_mode", training_mode)


def _normalize_reshape_v1(graph: IRGraph, node: IRNode) -> None:
    if "shape" not in node.attributes:
        raise MalformedGraph("Reshape requires a 'shape' attribute", node_id=node.node_id)
    node.refine("target_shape", tuple(int(d) for d in node.attributes["shape"]))
    node.refine("allowzero", 0)


def _normalize_reshape_v5(graph: IRGraph, node: IRNode) -> None:
    target = _constant_input(graph, node, 1)
    if target.ndim != 1:
        raise MalformedGraph(
            f"Reshape target shape must be 1-D, got shape {tuple(target.shape)}",
            node_id=node.node_id,
        )
    node.refine("target_shape", tuple(int(d) for d in target.tolist()))
    _set_default(node, "allowzero", 0)


def _normalize_flatten_v1(graph: IRGraph, node: IRNode) -> None:
    _set_default(node, "axis", 1)
    if node.attributes["axis"] < 0:
        raise MalformedGraph(
            f"Flatten axis must be non-negative before opset 11, got {node.attributes['axis']}",
            node_id=node.node_id,
        )


def _normalize_concat_v4(graph: IRGraph, node: IRNode) -> None:
    if "axis" not in node.attributes:
        raise MalformedGraph("Concat requires an 'axis' attribute", node_id=node.node_id)


def _normalize_softmax_v1(graph: IRGraph, node: IRNode) -> None:
    _set_default(node, "axis", 1)
    node.refine("coerce_2d", True)


def _normalize_softmax_v13(graph: IRGraph, node: IRNode) -> None:
    _set_default(node, "axis", -1)
    node.refine("coerce_2d", False)


def _normalize_gemm(graph: IRGraph, node: IRNode) -> None:
    _set_default(node, "alpha", 1.0)
    _set_default(node, "beta", 1.0)
    _set_default(node, "transA", 0)
    _set_default(node, "transB", 0)


def _normalize_batchnorm_v1(graph: IRGraph, node: IRNode) -> None:
    if node.attributes.get("spatial", 1) != 1:
        raise UnsupportedOperator(
            "BatchNormalization with spatial=0 is not supported",
            node.op_type,
            node_id=node.node_id,
        )
    _normalize_batchnorm_v9(graph, node)


def _normalize_batchnorm_v9(graph: IRGraph, node: IRNode) -> None:
    if any(output is not None for output in node.outputs[1:]):
        raise UnsupportedOperator(
            "BatchNormalization training outputs are not supported",
            node.op_type,
            node_id=node.node_id,
        )
    _set_default(node, "epsilon", 1e-5)
    _set_default(node, "momentum", 0.9)


def _require_kernel_shape(node: IRNode) -> None:
    if "kernel_shape" not in node.attributes:
        raise MalformedGraph(
            f"{node.op_type} requires a 'kernel_shape' attribute", node_id=node.node_id
        )


def _normalize_maxpool_v1(graph: IRGraph, node: IRNode) -> None:
    _require_kernel_shape(node)
    _set_default(node, "ceil_mode", 0)


def _normalize_maxpool_v8(graph: IRGraph, node: IRNode) -> None:
    if len(node.outputs) > 1 and node.outputs[1] is not None:
        raise UnsupportedOperator(
            "MaxPool Indices output is not supported", node.op_type, node_id=node.node_id
        )
    _require_kernel_shape(node)
    _set_default(node, "ceil_mode", 0)


def _normalize_avgpool_v1(graph: IRGraph, node: IRNode) -> None:
    _require_kernel_shape(node)
    _set_default(node, "ceil_mode", 0)
    node.refine("count_include_pad", 0)


def _normalize_avgpool_v7(graph: IRGraph, node: IRNode) -> None:
    _require_kernel_shape(node)
    _set_default(node, "ceil_mode", 0)
    _set_default(node, "count_include_pad", 0)


def _normalize_nothing(graph: IRGraph, node: IRNode) -> None:
    pass


NORMALIZERS: dict[OpVariant, Callable[[IRGraph, IRNode], None]] = {
    OpVariant.CLIP_V1: _normalize_clip_v1,
    OpVariant.CLIP_V11: _normalize_clip_v11,
    OpVariant.DROPOUT_V1: _normalize_dropout_v1,
    OpVariant.DROPOUT_V7: _normalize_dropout_v1,
    OpVariant.DROPOUT_V12: _normalize_dropout_v12,
    OpVariant.RESHAPE_V1: _normalize_reshape_v1,
    OpVariant.RESHAPE_V5: _normalize_reshape_v5,
    OpVariant.FLATTEN_V1: _normalize_flatten_v1,
    OpVariant.FLATTEN_V11: lambda graph, node: _set_default(node, "axis", 1),
    OpVariant.CONCAT_V1: lambda graph, node: _set_default(node, "axis", 1),
    OpVariant.CONCAT_V4: _normalize_concat_v4,
    OpVariant.SOFTMAX_V1: _normalize_softmax_v1,
    OpVariant.SOFTMAX_V13: _normalize_softmax_v13,
    OpVariant.LOG_SOFTMAX_V1: _normalize_softmax_v1,
    OpVariant.LOG_SOFTMAX_V13: _normalize_softmax_v13,
    OpVariant.GEMM_V1: _normalize_gemm,
    OpVariant.GEMM_V11: _normalize_gemm,
    OpVariant.BATCHNORM_V1: _normalize_batchnorm_v1,
    OpVariant.BATCHNORM_V9: _normalize_batchnorm_v9,
    OpVariant.MAXPOOL_V1: _normalize_maxpool_v1,
    OpVariant.MAXPOOL_V8: _normalize_maxpool_v8,
    OpVariant.AVGPOOL_V1: _normalize_avgpool_v1,
    OpVariant.AVGPOOL_V7: _normalize_avgpool_v7,
    OpVariant.GATHER_V1: lambda graph, node: _set_default(node, "axis", 0),
}


def _resolve_node(graph: IRGraph, node: IRNode) -> OpVariant:
    if node.domain != "" or node.op_type not in VARIANT_TABLE:
        name = node.op_type if node.domain == "" else f"{node.domain}::{node.op_type}"
        raise UnsupportedOperator(
            f"Operator {name} is not supported", node.op_type, node_id=node.node_id
        )
    variant = select_variant(node.op_type, node.opset_version)
    if variant is None:
        raise UnsupportedOpsetVersion(node.op_type, node.opset_version, node_id=node.node_id)
    _check_arity(node, variant)
    NORMALIZERS.get(variant, _normalize_nothing)(graph, node)
    return variant


def resolve_opsets(graph: IRGraph) -> IRGraph:
    """Bind an operator variant to every node of the graph.

    Nodes are visited in topological order; the first failure aborts.

    :param graph: IR graph from the builder
    :return: The same graph, with every node's variant bound
    """
    for node in graph.ordered_nodes():
        node.bind_variant(_resolve_node(graph, node))
    return graph
