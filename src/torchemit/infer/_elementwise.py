"""Shape rules for elementwise operators."""

__docformat__ = "restructuredtext"
__all__: list[str] = []

from torchemit.build.types import IRNode
from torchemit.errors import TypeMismatch
from torchemit.infer._registry import (
    broadcast_shapes,
    normalize_axis,
    register_shape_inference,
    require_float,
    require_same_dtype,
)
from torchemit.parse.types import ElementType, TensorDescriptor


@register_shape_inference("Add", "Sub", "Mul", "Div")
def infer_arithmetic(node: IRNode, inputs: list[TensorDescriptor]) -> list[TensorDescriptor]:
    a, b = inputs
    dtype = require_same_dtype(node, [a, b])
    if dtype is ElementType.BOOL:
        raise TypeMismatch(
            f"{node.op_type} is not defined for boolean tensors",
            "numeric",
            dtype.name,
            node_id=node.node_id,
        )
    return [TensorDescriptor(dtype, broadcast_shapes(a.shape, b.shape, node.node_id))]


@register_shape_inference("Equal")
def infer_equal(node: IRNode, inputs: list[TensorDescriptor]) -> list[TensorDescriptor]:
    a, b = inputs
    require_same_dtype(node, [a, b])
    return [TensorDescriptor(ElementType.BOOL, broadcast_shapes(a.shape, b.shape, node.node_id))]


@register_shape_inference("Sqrt", "Reciprocal", "Erf", "Sigmoid", "Tanh")
def infer_float_unary(node: IRNode, inputs: list[TensorDescriptor]) -> list[TensorDescriptor]:
    require_float(node, inputs[0])
    return [inputs[0]]


@register_shape_inference("Relu", "Identity")
def infer_unary(node: IRNode, inputs: list[TensorDescriptor]) -> list[TensorDescriptor]:
    if node.op_type == "Relu" and inputs[0].dtype is ElementType.BOOL:
        raise TypeMismatch(
            "Relu is not defined for boolean tensors", "numeric", "BOOL", node_id=node.node_id
        )
    return [inputs[0]]


@register_shape_inference("Softmax", "LogSoftmax")
def infer_softmax(node: IRNode, inputs: list[TensorDescriptor]) -> list[TensorDescriptor]:
    x = inputs[0]
    require_float(node, x)
    normalize_axis(node.attributes["axis"], x.rank, node)
    return [x]


@register_shape_inference("Clip")
def infer_clip(node: IRNode, inputs: list[TensorDescriptor | None]) -> list[TensorDescriptor]:
    x = inputs[0]
    if x.dtype is ElementType.BOOL:
        raise TypeMismatch(
            "Clip is not defined for boolean tensors", "numeric", "BOOL", node_id=node.node_id
        )
    for bound in inputs[1:]:
        if bound is not None and bound.dtype != x.dtype:
            raise TypeMismatch(
                "Clip bounds must have the input's element type",
                x.dtype.name,
                bound.dtype.name if bound.dtype else None,
                node_id=node.node_id,
            )
    return [x]


@register_shape_inference("Dropout")
def infer_dropout(node: IRNode, inputs: list[TensorDescriptor | None]) -> list[TensorDescriptor]:
    x = inputs[0]
    outputs = [x]
    if len(node.outputs) > 1:
        outputs.append(TensorDescriptor(ElementType.BOOL, x.shape))
    return outputs
