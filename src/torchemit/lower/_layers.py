"""Lowering of operators that become nn.Module layers.

Each function maps one resolved ONNX node to a LAYER CanonicalOp whose
arguments are the PyTorch constructor arguments, and binds the node's
learned parameters.
"""

__docformat__ = "restructuredtext"
__all__ = ["LAYER_LOWERINGS"]

from collections.abc import Callable
from typing import Any

import numpy as np

from torchemit.build.types import IRNode
from torchemit.errors import UnsupportedOperator
from torchemit.infer import SpatialAttributes, resolve_spatial_attributes
from torchemit.lower._context import LoweringContext
from torchemit.lower.types import ArgumentInfo, CanonicalOp, OpKind, OperatorClass, ParameterInfo


def _simplify_tuple(arg: tuple[int, ...]) -> tuple[int, ...] | int:
    """Collapse a tuple whose entries are all equal to a single int."""
    if len(arg) > 0 and all(x == arg[0] for x in arg):
        return arg[0]
    return arg


def _torch_pad(spatial: SpatialAttributes) -> tuple[int, ...]:
    """Per-side pads in ``F.pad`` order (last dimension first)."""
    pads: list[int] = []
    for begin, end in zip(reversed(spatial.pads_begin), reversed(spatial.pads_end)):
        pads.extend((begin, end))
    return tuple(pads)


def _refine_spatial(node: IRNode, spatial: SpatialAttributes) -> dict[str, Any]:
    """Record the per-side window attributes on the node and return them."""
    resolved = {
        "kernel": spatial.kernel,
        "strides": spatial.strides,
        "dilations": spatial.dilations,
        "pads_begin": spatial.pads_begin,
        "pads_end": spatial.pads_end,
        "ceil_mode": spatial.ceil_mode,
    }
    for name, value in resolved.items():
        node.refine(name, value)
    return resolved


def _needs_explicit_pad(spatial: SpatialAttributes) -> bool:
    # PyTorch pooling rejects padding larger than half the kernel
    too_large = any(p > k // 2 for p, k in zip(spatial.pads_begin, spatial.kernel))
    return not spatial.is_symmetric or too_large


def _layer(
    ctx: LoweringContext,
    node: IRNode,
    kind: OpKind,
    arguments: list[ArgumentInfo],
    parameters: list[ParameterInfo],
    attributes: dict[str, Any],
) -> CanonicalOp:
    name = ctx.instance_name(kind)
    ctx.register_parameters(name, parameters)
    x = ctx.operand(node.inputs[0])
    return CanonicalOp(
        name=name,
        node_id=node.node_id,
        kind=kind,
        operator_class=OperatorClass.LAYER,
        inputs=(x, *parameters),
        outputs=ctx.new_outputs(node),
        arguments=tuple(arguments),
        attributes=attributes,
        requires_parameters=bool(parameters),
    )


def _lower_conv(ctx: LoweringContext, node: IRNode) -> CanonicalOp:
    x = ctx.descriptor(node.inputs[0])
    weight = ctx.parameter(node, 1, "weight")
    parameters = [weight]
    if len(node.inputs) > 2 and node.inputs[2] is not None:
        parameters.append(ctx.parameter(node, 2, "bias"))

    kernel = weight.descriptor.shape[2:]
    kinds = {1: OpKind.CONV1D, 2: OpKind.CONV2D}
    if len(kernel) not in kinds:
        raise UnsupportedOperator(
            f"Conv with {len(kernel)} spatial dimensions is not supported",
            node.op_type,
            node_id=node.node_id,
        )
    spatial = resolve_spatial_attributes(node, x.shape[2:], kernel=kernel)
    attributes = _refine_spatial(node, spatial)
    group = int(node.attributes.get("group", 1))
    explicit_pad = not spatial.is_symmetric
    attributes.update(
        {
            "group": group,
            "dtype": x.dtype,
            "explicit_pad": _torch_pad(spatial) if explicit_pad else None,
            "pad_value": 0.0,
        }
    )
    padding = (0,) * len(kernel) if explicit_pad else spatial.pads_begin
    arguments = [
        ArgumentInfo(None, "in_channels", weight.descriptor.shape[1] * group),
        ArgumentInfo(None, "out_channels", weight.descriptor.shape[0]),
        ArgumentInfo("kernel_shape", "kernel_size", _simplify_tuple(spatial.kernel)),
        ArgumentInfo("strides", "stride", _simplify_tuple(spatial.strides), 1),
        ArgumentInfo("pads", "padding", _simplify_tuple(padding), 0),
        ArgumentInfo("dilations", "dilation", _simplify_tuple(spatial.dilations), 1),
        ArgumentInfo("group", "groups", group, 1),
        ArgumentInfo(None, "bias", len(parameters) > 1, True),
    ]
    return _layer(ctx, node, kinds[len(kernel)], arguments, parameters, attributes)


def _pool_spatial(ctx: LoweringContext, node: IRNode) -> SpatialAttributes:
    x = ctx.descriptor(node.inputs[0])
    if x.rank != 4:
        raise UnsupportedOperator(
            f"{node.op_type} is only supported on 4-D inputs, got rank {x.rank}",
            node.op_type,
            node_id=node.node_id,
        )
    return resolve_spatial_attributes(node, x.shape[2:])


def _lower_maxpool(ctx: LoweringContext, node: IRNode) -> CanonicalOp:
    spatial = _pool_spatial(ctx, node)
    explicit_pad = _needs_explicit_pad(spatial)
    if explicit_pad and spatial.ceil_mode:
        raise UnsupportedOperator(
            "MaxPool with ceil_mode and asymmetric padding is not supported",
            node.op_type,
            node_id=node.node_id,
        )
    attributes = _refine_spatial(node, spatial)
    attributes.update(
        {
            "explicit_pad": _torch_pad(spatial) if explicit_pad else None,
            "pad_value": float("-inf"),
        }
    )
    padding = (0, 0) if explicit_pad else spatial.pads_begin
    arguments = [
        ArgumentInfo("kernel_shape", "kernel_size", _simplify_tuple(spatial.kernel)),
        ArgumentInfo("strides", "stride", _simplify_tuple(spatial.strides)),
        ArgumentInfo("pads", "padding", _simplify_tuple(padding), 0),
        ArgumentInfo("dilations", "dilation", _simplify_tuple(spatial.dilations), 1),
        ArgumentInfo("ceil_mode", "ceil_mode", spatial.ceil_mode, False),
    ]
    return _layer(ctx, node, OpKind.MAXPOOL2D, arguments, [], attributes)


def _lower_avgpool(ctx: LoweringContext, node: IRNode) -> CanonicalOp:
    spatial = _pool_spatial(ctx, node)
    count_include_pad = bool(node.attributes["count_include_pad"])
    if any(d != 1 for d in spatial.dilations):
        raise UnsupportedOperator(
            "AveragePool with dilations is not supported", node.op_type, node_id=node.node_id
        )
    explicit_pad = _needs_explicit_pad(spatial)
    if explicit_pad and (spatial.ceil_mode or not count_include_pad):
        raise UnsupportedOperator(
            "AveragePool with asymmetric padding requires count_include_pad=1 "
            "and ceil_mode=0",
            node.op_type,
            node_id=node.node_id,
        )
    attributes = _refine_spatial(node, spatial)
    attributes.update(
        {
            "count_include_pad": count_include_pad,
            "explicit_pad": _torch_pad(spatial) if explicit_pad else None,
            "pad_value": 0.0,
        }
    )
    padding = (0, 0) if explicit_pad else spatial.pads_begin
    arguments = [
        ArgumentInfo("kernel_shape", "kernel_size", _simplify_tuple(spatial.kernel)),
        ArgumentInfo("strides", "stride", _simplify_tuple(spatial.strides)),
        ArgumentInfo("pads", "padding", _simplify_tuple(padding), 0),
        ArgumentInfo("ceil_mode", "ceil_mode", spatial.ceil_mode, False),
        ArgumentInfo("count_include_pad", "count_include_pad", count_include_pad, True),
    ]
    return _layer(ctx, node, OpKind.AVGPOOL2D, arguments, [], attributes)


def _lower_global_avgpool(ctx: LoweringContext, node: IRNode) -> CanonicalOp:
    x = ctx.descriptor(node.inputs[0])
    spatial_rank = x.rank - 2
    if spatial_rank not in (1, 2, 3):
        raise UnsupportedOperator(
            f"GlobalAveragePool over {spatial_rank} spatial dimensions is not supported",
            node.op_type,
            node_id=node.node_id,
        )
    output_size = 1 if spatial_rank == 1 else (1,) * spatial_rank
    arguments = [ArgumentInfo(None, "output_size", output_size)]
    attributes = {"spatial_rank": spatial_rank}
    return _layer(ctx, node, OpKind.GLOBAL_AVGPOOL, arguments, [], attributes)


def _lower_batchnorm(ctx: LoweringContext, node: IRNode) -> CanonicalOp:
    x = ctx.descriptor(node.inputs[0])
    if x.rank not in (2, 3, 4):
        raise UnsupportedOperator(
            f"BatchNormalization on rank-{x.rank} inputs is not supported",
            node.op_type,
            node_id=node.node_id,
        )
    parameters = [
        ctx.parameter(node, 1, "weight"),
        ctx.parameter(node, 2, "bias"),
        ctx.parameter(node, 3, "running_mean"),
        ctx.parameter(node, 4, "running_var"),
    ]
    # ONNX momentum weighs the running value, PyTorch weighs the new batch
    momentum = round(1.0 - float(node.attributes["momentum"]), 7)
    arguments = [
        ArgumentInfo(None, "num_features", parameters[0].descriptor.shape[0]),
        ArgumentInfo("epsilon", "eps", float(node.attributes["epsilon"]), 1e-5),
        ArgumentInfo("momentum", "momentum", momentum, 0.1),
    ]
    attributes = {"spatial_rank": 2 if x.rank == 4 else 1, "dtype": x.dtype}
    return _layer(ctx, node, OpKind.BATCHNORM, arguments, parameters, attributes)


def _linear(
    ctx: LoweringContext,
    node: IRNode,
    weight: ParameterInfo,
    bias: ParameterInfo | None,
) -> CanonicalOp:
    parameters = [weight] if bias is None else [weight, bias]
    arguments = [
        ArgumentInfo(None, "in_features", weight.descriptor.shape[1]),
        ArgumentInfo(None, "out_features", weight.descriptor.shape[0]),
        ArgumentInfo(None, "bias", bias is not None, True),
    ]
    attributes = {"dtype": weight.descriptor.dtype}
    return _layer(ctx, node, OpKind.LINEAR, arguments, parameters, attributes)


def _gemm_bias(ctx: LoweringContext, node: IRNode, out_features: int) -> np.ndarray | None:
    if len(node.inputs) < 3 or node.inputs[2] is None:
        return None
    c = ctx.require_constant(node, 2, "bias")
    if c.ndim == 2:
        if c.shape[0] != 1:
            raise UnsupportedOperator(
                f"Gemm C of shape {c.shape} varies along M and cannot become a Linear bias",
                node.op_type,
                node_id=node.node_id,
            )
        c = c[0]
    return np.broadcast_to(c.reshape(-1) if c.size > 1 else c.reshape(()), (out_features,))


def _lower_gemm(ctx: LoweringContext, node: IRNode) -> CanonicalOp:
    if node.attributes["transA"]:
        raise UnsupportedOperator(
            "Gemm with transA=1 is not supported", node.op_type, node_id=node.node_id
        )
    if not ctx.descriptor(node.inputs[0]).dtype.is_float:
        raise UnsupportedOperator(
            "Gemm on integer inputs is not supported", node.op_type, node_id=node.node_id
        )
    b = ctx.require_constant(node, 1, "weight")
    alpha = float(node.attributes["alpha"])
    beta = float(node.attributes["beta"])
    # Linear stores weight as (out_features, in_features)
    matrix = b if node.attributes["transB"] else b.T
    weight = ctx.parameter(node, 1, "weight", data=matrix * alpha)
    bias = None
    bias_data = _gemm_bias(ctx, node, weight.descriptor.shape[0])
    if bias_data is not None:
        bias = ctx.parameter(node, 2, "bias", data=bias_data * beta)
    return _linear(ctx, node, weight, bias)


def _lower_matmul(ctx: LoweringContext, node: IRNode) -> CanonicalOp | None:
    """Linear when the right operand is a constant float matrix, else None."""
    b = ctx.graph.constant_value(node.inputs[1])
    if b is None or b.ndim != 2 or not ctx.descriptor(node.inputs[0]).dtype.is_float:
        return None
    weight = ctx.parameter(node, 1, "weight", data=b.T)
    return _linear(ctx, node, weight, None)


LAYER_LOWERINGS: dict[str, Callable[[LoweringContext, IRNode], CanonicalOp | None]] = {
    "Conv": _lower_conv,
    "MaxPool": _lower_maxpool,
    "AveragePool": _lower_avgpool,
    "GlobalAveragePool": _lower_global_avgpool,
    "BatchNormalization": _lower_batchnorm,
    "Gemm": _lower_gemm,
    "MatMul": _lower_matmul,
}
