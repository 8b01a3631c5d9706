"""OPERATOR handlers for code generation.

Handlers for infix operators (OPERATOR class).
Generate code like: x2 = x0 + x1, x3 = x1 @ x2, etc.
"""

__docformat__ = "restructuredtext"
__all__ = ["register_operator_handlers"]

from torchemit.generate._handlers._registry import register_handler
from torchemit.generate._utils import operand_code, tensor_code
from torchemit.lower import CanonicalOp, OpKind, ScalarInfo, VariableInfo

_SYMBOLS = {
    OpKind.ADD: "+",
    OpKind.SUB: "-",
    OpKind.MUL: "*",
    OpKind.DIV: "/",
    OpKind.EQUAL: "==",
}


def _is_python_scalar(operand) -> bool:
    if isinstance(operand, ScalarInfo):
        return True
    return isinstance(operand, VariableInfo) and operand.python_scalar


def _handle_binary(op: CanonicalOp) -> str:
    """Handle Add, Sub, Mul, Div and Equal.

    Scalar operands (folded literals or Python-scalar inputs) are used as
    plain Python numbers, so every tensor-scalar form keeps the tensor's
    element type.

    :param op: Canonical operation
    :return: Generated code line
    """
    a, b = op.inputs
    output = op.outputs[0].code_name
    if op.kind is OpKind.DIV and op.attributes.get("integer_division"):
        return _integer_division(output, a, b)
    return f"{output} = {operand_code(a)} {_SYMBOLS[op.kind]} {operand_code(b)}"


def _integer_division(output: str, a, b) -> str:
    # ONNX integer division truncates toward zero
    if _is_python_scalar(a) and _is_python_scalar(b):
        return f"{output} = int({operand_code(a)} / {operand_code(b)})"
    return f'{output} = torch.div({tensor_code(a)}, {operand_code(b)}, rounding_mode="trunc")'


def _handle_matmul(op: CanonicalOp) -> str:
    """Handle MatMul between two non-parameter operands.

    :param op: Canonical operation
    :return: Generated code line
    """
    a, b = op.inputs
    output = op.outputs[0].code_name
    return f"{output} = {tensor_code(a)} @ {tensor_code(b)}"


def register_operator_handlers() -> None:
    """Register all OPERATOR handlers."""
    for kind in _SYMBOLS:
        register_handler(kind, _handle_binary)
    register_handler(OpKind.MATMUL, _handle_matmul)
