"""Lowering of infix arithmetic, comparison and matrix product."""

__docformat__ = "restructuredtext"
__all__ = ["OPERATOR_LOWERINGS"]

from collections.abc import Callable

from torchemit.build.types import IRNode
from torchemit.lower._context import LoweringContext
from torchemit.lower.types import (
    CanonicalOp,
    Operand,
    OperatorClass,
    OpKind,
    ScalarInfo,
    VariableInfo,
)

_BINARY_KINDS = {
    "Add": OpKind.ADD,
    "Sub": OpKind.SUB,
    "Mul": OpKind.MUL,
    "Div": OpKind.DIV,
    "Equal": OpKind.EQUAL,
}


def _is_python_scalar(operand: Operand) -> bool:
    if isinstance(operand, ScalarInfo):
        return True
    return isinstance(operand, VariableInfo) and operand.python_scalar


def _lower_binary(ctx: LoweringContext, node: IRNode) -> CanonicalOp:
    """Lower a binary elementwise operator.

    Rank-0 constants fold into literals. When both operands are Python
    scalars at runtime, so is the result.
    """
    a = ctx.operand(node.inputs[0], fold_scalar=True)
    b = ctx.operand(node.inputs[1], fold_scalar=True)
    python_scalar = _is_python_scalar(a) and _is_python_scalar(b)
    dtype = ctx.descriptor(node.inputs[0]).dtype
    return CanonicalOp(
        name=node.node_id,
        node_id=node.node_id,
        kind=_BINARY_KINDS[node.op_type],
        operator_class=OperatorClass.OPERATOR,
        inputs=(a, b),
        outputs=ctx.new_outputs(node, python_scalar=python_scalar),
        attributes={"integer_division": node.op_type == "Div" and dtype.is_integer},
    )


def _lower_matmul(ctx: LoweringContext, node: IRNode) -> CanonicalOp:
    return CanonicalOp(
        name=node.node_id,
        node_id=node.node_id,
        kind=OpKind.MATMUL,
        operator_class=OperatorClass.OPERATOR,
        inputs=(ctx.operand(node.inputs[0]), ctx.operand(node.inputs[1])),
        outputs=ctx.new_outputs(node),
    )


OPERATOR_LOWERINGS: dict[str, Callable[[LoweringContext, IRNode], CanonicalOp]] = {
    **{op_type: _lower_binary for op_type in _BINARY_KINDS},
    "MatMul": _lower_matmul,
}
