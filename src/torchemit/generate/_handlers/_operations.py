"""OPERATION handlers for code generation.

Handlers for functional operations (OPERATION class).
Generate code like: x2 = x0.reshape(...), x3 = F.softmax(x1, dim=1), etc.
"""

__docformat__ = "restructuredtext"
__all__ = ["register_operation_handlers"]

from torchemit.generate._handlers._registry import register_handler
from torchemit.generate._utils import format_argument, operand_code, tensor_code
from torchemit.lower import CanonicalOp, OpKind


def _output(op: CanonicalOp) -> str:
    return op.outputs[0].code_name


def _handle_reshape(op: CanonicalOp) -> str:
    """Handle Reshape.

    Every target entry is already resolved to a literal; ``None`` entries
    copy the runtime size of the input dimension at that index.

    :param op: Canonical operation
    :return: Generated code line
    """
    x = tensor_code(op.inputs[0])
    parts = [
        f"{x}.shape[{index}]" if dim is None else str(dim)
        for index, dim in enumerate(op.attributes["shape"])
    ]
    if not parts:
        return f"{_output(op)} = {x}.reshape(())"
    return f"{_output(op)} = {x}.reshape({', '.join(parts)})"


def _handle_flatten(op: CanonicalOp) -> str:
    """Handle Flatten: always produces a 2-D tensor split at ``axis``.

    :param op: Canonical operation
    :return: Generated code line
    """
    x = tensor_code(op.inputs[0])
    axis = op.attributes["axis"]
    rank = op.attributes["rank"]
    if axis == 0:
        return f"{_output(op)} = {x}.reshape(1, -1)"
    if axis == rank:
        return f"{_output(op)} = {x}.reshape(-1, 1)"
    if axis == 1:
        return f"{_output(op)} = {x}.flatten(1)"
    return f"{_output(op)} = {x}.flatten(0, {axis - 1}).flatten(1)"


def _handle_transpose(op: CanonicalOp) -> str:
    x = tensor_code(op.inputs[0])
    perm = op.attributes["perm"]
    if not perm:
        return f"{_output(op)} = {x}"
    return f"{_output(op)} = {x}.permute({', '.join(str(p) for p in perm)})"


def _handle_concat(op: CanonicalOp) -> str:
    tensors = ", ".join(tensor_code(inp) for inp in op.inputs)
    return f"{_output(op)} = torch.cat([{tensors}], dim={op.attributes['axis']})"


def _handle_gather(op: CanonicalOp) -> str:
    """Handle Gather as indexing along one axis.

    A scalar index removes the axis, an index tensor replaces it with its
    own shape, matching ONNX.

    :param op: Canonical operation
    :return: Generated code line
    """
    data = tensor_code(op.inputs[0])
    index = operand_code(op.inputs[1])
    leading = ":, " * op.attributes["axis"]
    return f"{_output(op)} = {data}[{leading}{index}]"


def _handle_softmax(op: CanonicalOp) -> str:
    """Handle Softmax and LogSoftmax.

    With ``coerce_2d`` all dimensions from ``axis`` on are normalized
    together: flatten them, normalize the last dimension, restore the
    input shape.

    :param op: Canonical operation
    :return: Generated code line
    """
    function = "F.softmax" if op.kind is OpKind.SOFTMAX else "F.log_softmax"
    x = tensor_code(op.inputs[0])
    if op.attributes["coerce_2d"]:
        axis = op.attributes["axis"]
        return f"{_output(op)} = {function}({x}.flatten({axis}), dim=-1).reshape({x}.shape)"
    return f"{_output(op)} = {function}({x}, dim={op.argument('dim')})"


_UNARY_FUNCTIONS = {
    OpKind.RELU: "torch.relu",
    OpKind.SIGMOID: "torch.sigmoid",
    OpKind.TANH: "torch.tanh",
    OpKind.SQRT: "torch.sqrt",
    OpKind.RECIPROCAL: "torch.reciprocal",
    OpKind.ERF: "torch.erf",
}


def _handle_unary(op: CanonicalOp) -> str:
    function = _UNARY_FUNCTIONS[op.kind]
    return f"{_output(op)} = {function}({tensor_code(op.inputs[0])})"


def _handle_identity(op: CanonicalOp) -> str:
    return f"{_output(op)} = {tensor_code(op.inputs[0])}"


def _handle_clip(op: CanonicalOp) -> str:
    """Handle Clip. Missing bounds are omitted; no bounds is an identity.

    :param op: Canonical operation
    :return: Generated code line
    """
    x = tensor_code(op.inputs[0])
    bounds = [
        f"{name}={format_argument(op.argument(name))}"
        for name in ("min", "max")
        if op.argument(name) is not None
    ]
    if not bounds:
        return f"{_output(op)} = {x}"
    return f"{_output(op)} = torch.clamp({x}, {', '.join(bounds)})"


def _handle_dropout(op: CanonicalOp) -> str:
    """Handle Dropout in inference mode.

    The data passes through unchanged; a requested mask is all true.

    :param op: Canonical operation
    :return: Generated code lines
    """
    output = _output(op)
    lines = [f"{output} = {tensor_code(op.inputs[0])}"]
    if len(op.outputs) > 1 and op.outputs[1] is not None:
        mask = op.outputs[1].code_name
        lines.append(f"{mask} = torch.ones_like({output}, dtype=torch.bool)")
    return "\n".join(lines)


def register_operation_handlers() -> None:
    """Register all OPERATION handlers."""
    register_handler(OpKind.RESHAPE, _handle_reshape)
    register_handler(OpKind.FLATTEN, _handle_flatten)
    register_handler(OpKind.TRANSPOSE, _handle_transpose)
    register_handler(OpKind.CONCAT, _handle_concat)
    register_handler(OpKind.GATHER, _handle_gather)
    register_handler(OpKind.SOFTMAX, _handle_softmax)
    register_handler(OpKind.LOG_SOFTMAX, _handle_softmax)
    register_handler(OpKind.CLIP, _handle_clip)
    register_handler(OpKind.DROPOUT, _handle_dropout)
    register_handler(OpKind.IDENTITY, _handle_identity)
    for kind in _UNARY_FUNCTIONS:
        register_handler(kind, _handle_unary)
