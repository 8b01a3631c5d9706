"""Lowering of operators that become function or method calls.

Shape operators get their targets fully resolved here, so the emitter only
prints literals: reshape entries, flatten and concat axes, permutations and
clip bounds.
"""

__docformat__ = "restructuredtext"
__all__ = ["OPERATION_LOWERINGS"]

from collections.abc import Callable
from typing import Any

from torchemit.build.types import IRNode
from torchemit.infer import resolve_reshape_target
from torchemit.lower._context import LoweringContext
from torchemit.lower.types import ArgumentInfo, CanonicalOp, Operand, OpKind, OperatorClass


def _positive_axis(axis: int, rank: int) -> int:
    return axis + rank if axis < 0 else axis


def _operation(
    ctx: LoweringContext,
    node: IRNode,
    kind: OpKind,
    inputs: list[Operand],
    attributes: dict[str, Any] | None = None,
    arguments: list[ArgumentInfo] | None = None,
) -> CanonicalOp:
    return CanonicalOp(
        name=node.node_id,
        node_id=node.node_id,
        kind=kind,
        operator_class=OperatorClass.OPERATION,
        inputs=tuple(inputs),
        outputs=ctx.new_outputs(node),
        arguments=tuple(arguments or ()),
        attributes=attributes or {},
    )


def _lower_reshape(ctx: LoweringContext, node: IRNode) -> CanonicalOp:
    x = ctx.descriptor(node.inputs[0])
    target = node.attributes["target_shape"]
    allowzero = bool(node.attributes["allowzero"])
    resolved = resolve_reshape_target(node, x.shape, target, allowzero)
    # Entry None copies the runtime size of the input dimension
    shape: list[int | None] = []
    for index, dim in enumerate(target):
        if dim == 0 and not allowzero:
            shape.append(x.shape[index] if isinstance(x.shape[index], int) else None)
        else:
            shape.append(dim)
    attributes = {"shape": tuple(shape), "output_shape": resolved}
    return _operation(ctx, node, OpKind.RESHAPE, [ctx.operand(node.inputs[0])], attributes)


def _lower_flatten(ctx: LoweringContext, node: IRNode) -> CanonicalOp:
    rank = ctx.descriptor(node.inputs[0]).rank
    axis = _positive_axis(int(node.attributes["axis"]), rank)
    return _operation(
        ctx, node, OpKind.FLATTEN, [ctx.operand(node.inputs[0])], {"axis": axis, "rank": rank}
    )


def _lower_transpose(ctx: LoweringContext, node: IRNode) -> CanonicalOp:
    rank = ctx.descriptor(node.inputs[0]).rank
    perm = node.attributes.get("perm")
    perm = tuple(reversed(range(rank))) if perm is None else tuple(int(p) for p in perm)
    return _operation(
        ctx, node, OpKind.TRANSPOSE, [ctx.operand(node.inputs[0])], {"perm": perm}
    )


def _lower_concat(ctx: LoweringContext, node: IRNode) -> CanonicalOp:
    edge_ids = node.input_ids()
    rank = ctx.descriptor(edge_ids[0]).rank
    axis = _positive_axis(int(node.attributes["axis"]), rank)
    inputs = [ctx.operand(edge_id) for edge_id in edge_ids]
    return _operation(ctx, node, OpKind.CONCAT, inputs, {"axis": axis})


def _lower_gather(ctx: LoweringContext, node: IRNode) -> CanonicalOp:
    rank = ctx.descriptor(node.inputs[0]).rank
    axis = _positive_axis(int(node.attributes["axis"]), rank)
    inputs = [ctx.operand(node.inputs[0]), ctx.operand(node.inputs[1], fold_scalar=True)]
    return _operation(ctx, node, OpKind.GATHER, inputs, {"axis": axis})


def _lower_softmax(ctx: LoweringContext, node: IRNode) -> CanonicalOp:
    rank = ctx.descriptor(node.inputs[0]).rank
    axis = _positive_axis(int(node.attributes["axis"]), rank)
    # Old opsets normalize over all dimensions from axis on
    coerce_2d = bool(node.attributes["coerce_2d"]) and axis != rank - 1
    kind = OpKind.SOFTMAX if node.op_type == "Softmax" else OpKind.LOG_SOFTMAX
    return _operation(
        ctx,
        node,
        kind,
        [ctx.operand(node.inputs[0])],
        {"axis": axis, "coerce_2d": coerce_2d},
        [ArgumentInfo("axis", "dim", -1 if coerce_2d else axis)],
    )


_UNARY_KINDS = {
    "Relu": OpKind.RELU,
    "Sigmoid": OpKind.SIGMOID,
    "Tanh": OpKind.TANH,
    "Sqrt": OpKind.SQRT,
    "Reciprocal": OpKind.RECIPROCAL,
    "Erf": OpKind.ERF,
    "Identity": OpKind.IDENTITY,
}


def _lower_unary(ctx: LoweringContext, node: IRNode) -> CanonicalOp:
    return _operation(ctx, node, _UNARY_KINDS[node.op_type], [ctx.operand(node.inputs[0])])


def _lower_clip(ctx: LoweringContext, node: IRNode) -> CanonicalOp:
    dtype = ctx.descriptor(node.inputs[0]).dtype
    low = node.attributes["clip_min"]
    high = node.attributes["clip_max"]
    if not dtype.is_float:
        low = None if low is None else int(low)
        high = None if high is None else int(high)
    else:
        low = None if low is None else float(low)
        high = None if high is None else float(high)
    return _operation(
        ctx,
        node,
        OpKind.CLIP,
        [ctx.operand(node.inputs[0])],
        {"clip_min": low, "clip_max": high},
        [ArgumentInfo("min", "min", low), ArgumentInfo("max", "max", high)],
    )


def _lower_dropout(ctx: LoweringContext, node: IRNode) -> CanonicalOp:
    attributes = {"ratio": float(node.attributes["ratio"]), "training_mode": False}
    return _operation(ctx, node, OpKind.DROPOUT, [ctx.operand(node.inputs[0])], attributes)


OPERATION_LOWERINGS: dict[str, Callable[[LoweringContext, IRNode], CanonicalOp]] = {
    "Reshape": _lower_reshape,
    "Flatten": _lower_flatten,
    "Transpose": _lower_transpose,
    "Concat": _lower_concat,
    "Gather": _lower_gather,
    "Softmax": _lower_softmax,
    "LogSoftmax": _lower_softmax,
    "Clip": _lower_clip,
    "Dropout": _lower_dropout,
    **{op_type: _lower_unary for op_type in _UNARY_KINDS},
}
