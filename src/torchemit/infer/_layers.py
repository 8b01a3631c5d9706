"""Shape rules for convolution, pooling, normalization and linear layers."""

__docformat__ = "restructuredtext"
__all__: list[str] = []

from torchemit.build.types import IRNode
from torchemit.errors import MalformedGraph, ShapeMismatch
from torchemit.infer._registry import (
    broadcast_shapes,
    merge_dims,
    register_shape_inference,
    require_float,
    require_same_dtype,
)
from torchemit.infer._spatial import resolve_spatial_attributes
from torchemit.parse.types import Dim, TensorDescriptor


def _require_rank(node: IRNode, x: TensorDescriptor, minimum: int, what: str = "input") -> None:
    if x.rank < minimum:
        raise ShapeMismatch(
            f"{node.op_type} {what} must have rank >= {minimum}",
            f"rank >= {minimum}",
            x.shape,
            node_id=node.node_id,
        )


def _check_dim(node: IRNode, expected: Dim, actual: Dim, what: str) -> None:
    try:
        merge_dims(expected, actual)
    except ValueError:
        raise ShapeMismatch(
            f"{node.op_type} {what} does not match", expected, actual, node_id=node.node_id
        ) from None


@register_shape_inference("Conv")
def infer_conv(node: IRNode, inputs: list[TensorDescriptor | None]) -> list[TensorDescriptor]:
    x, w = inputs[0], inputs[1]
    bias = inputs[2] if len(inputs) > 2 else None
    require_float(node, x)
    require_same_dtype(node, [x, w])
    _require_rank(node, x, 3)
    if w.rank != x.rank:
        raise ShapeMismatch(
            f"{node.op_type} weight rank must equal input rank {x.rank}",
            x.rank,
            w.rank,
            node_id=node.node_id,
        )
    group = int(node.attributes.get("group", 1))
    out_channels, in_per_group = w.shape[0], w.shape[1]
    if isinstance(in_per_group, int):
        _check_dim(node, x.shape[1], in_per_group * group, "input channels")
    if isinstance(out_channels, int) and out_channels % group != 0:
        raise MalformedGraph(
            f"Conv output channels {out_channels} not divisible by group {group}",
            node_id=node.node_id,
        )
    if bias is not None:
        if bias.rank != 1:
            raise ShapeMismatch("Conv bias must be 1-D", (out_channels,), bias.shape, node.node_id)
        _check_dim(node, out_channels, bias.shape[0], "bias length")

    kernel = w.shape[2:]
    if not all(isinstance(k, int) for k in kernel):
        raise MalformedGraph("Conv weight must have a concrete kernel size", node_id=node.node_id)
    spatial = resolve_spatial_attributes(node, x.shape[2:], kernel=tuple(kernel))
    if tuple(kernel) != spatial.kernel:
        raise ShapeMismatch(
            "Conv kernel_shape does not match the weight", spatial.kernel, tuple(kernel), node.node_id
        )
    out_spatial = spatial.output_dims(x.shape[2:], node.node_id)
    return [TensorDescriptor(x.dtype, (x.shape[0], out_channels) + out_spatial)]


@register_shape_inference("MaxPool", "AveragePool")
def infer_pool(node: IRNode, inputs: list[TensorDescriptor]) -> list[TensorDescriptor]:
    x = inputs[0]
    require_float(node, x)
    _require_rank(node, x, 3)
    spatial = resolve_spatial_attributes(node, x.shape[2:])
    out_spatial = spatial.output_dims(x.shape[2:], node.node_id)
    return [TensorDescriptor(x.dtype, x.shape[:2] + out_spatial)]


@register_shape_inference("GlobalAveragePool")
def infer_global_pool(node: IRNode, inputs: list[TensorDescriptor]) -> list[TensorDescriptor]:
    x = inputs[0]
    require_float(node, x)
    _require_rank(node, x, 3)
    return [TensorDescriptor(x.dtype, x.shape[:2] + (1,) * (x.rank - 2))]


@register_shape_inference("BatchNormalization")
def infer_batchnorm(node: IRNode, inputs: list[TensorDescriptor]) -> list[TensorDescriptor]:
    x = inputs[0]
    require_float(node, x)
    _require_rank(node, x, 2)
    channels = x.shape[1]
    for role, descriptor in zip(("scale", "bias", "mean", "var"), inputs[1:5]):
        if descriptor.rank != 1:
            raise ShapeMismatch(
                f"BatchNormalization {role} must be 1-D", (channels,), descriptor.shape, node.node_id
            )
        _check_dim(node, channels, descriptor.shape[0], f"{role} length")
    return [x] + [None] * (len(node.outputs) - 1)


@register_shape_inference("Gemm")
def infer_gemm(node: IRNode, inputs: list[TensorDescriptor | None]) -> list[TensorDescriptor]:
    a, b = inputs[0], inputs[1]
    c = inputs[2] if len(inputs) > 2 else None
    dtype = require_same_dtype(node, [a, b])
    for operand in (a, b):
        if operand.rank != 2:
            raise ShapeMismatch(
                "Gemm operands must be 2-D", "rank 2", operand.shape, node_id=node.node_id
            )
    m, k_a = a.shape[::-1] if node.attributes["transA"] else a.shape
    k_b, n = b.shape[::-1] if node.attributes["transB"] else b.shape
    _check_dim(node, k_a, k_b, "inner dimension")
    if c is not None:
        # C broadcasts unidirectionally to (M, N)
        result = broadcast_shapes((m, n), c.shape, node.node_id)
        if c.rank > 2 or (result != (m, n) and all(isinstance(d, int) for d in result)):
            raise ShapeMismatch(
                "Gemm C cannot be broadcast to (M, N)", (m, n), c.shape, node_id=node.node_id
            )
    return [TensorDescriptor(dtype, (m, n))]


@register_shape_inference("MatMul")
def infer_matmul(node: IRNode, inputs: list[TensorDescriptor]) -> list[TensorDescriptor]:
    a, b = inputs
    dtype = require_same_dtype(node, [a, b])
    if a.rank == 0 or b.rank == 0:
        raise ShapeMismatch(
            "MatMul operands must have rank >= 1", a.shape, b.shape, node_id=node.node_id
        )
    # 1-D operands are promoted and the added axis removed afterwards
    a_shape = (1,) + a.shape if a.rank == 1 else a.shape
    b_shape = b.shape + (1,) if b.rank == 1 else b.shape
    try:
        merge_dims(a_shape[-1], b_shape[-2])
    except ValueError:
        raise ShapeMismatch(
            "MatMul inner dimensions do not match", a.shape, b.shape, node_id=node.node_id
        ) from None
    batch = broadcast_shapes(a_shape[:-2], b_shape[:-2], node.node_id)
    shape = batch + (a_shape[-2], b_shape[-1])
    if a.rank == 1:
        shape = shape[:-2] + shape[-1:]
    if b.rank == 1:
        shape = shape[:-1]
    return [TensorDescriptor(dtype, shape)]
