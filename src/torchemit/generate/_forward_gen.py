"""Generate forward() method from a model definition.

Main forward generation logic with handler dispatch.
"""

__docformat__ = "restructuredtext"
__all__ = ["generate_forward_method"]

from torchemit.generate._handlers import (
    HANDLERS,
    get_handler,
    register_layer_handlers,
    register_operation_handlers,
    register_operator_handlers,
)
from torchemit.generate._templates import FORWARD_TEMPLATE, INDENT
from torchemit.generate._utils import tensor_code
from torchemit.lower import CanonicalOp, ModelDefinition, VariableInfo


def _ensure_handlers_registered() -> None:
    """Ensure all handlers are registered (lazy initialization).

    Registers handlers only once, on first call. This avoids module-level
    side effects while ensuring handlers are available when needed.
    """
    if not HANDLERS:
        register_layer_handlers()
        register_operation_handlers()
        register_operator_handlers()


def _annotation(variable: VariableInfo) -> str:
    if variable.python_scalar:
        return variable.descriptor.dtype.python_type.__name__
    return "torch.Tensor"


def _format_input_args(definition: ModelDefinition) -> str:
    return "".join(f", {var.code_name}: {_annotation(var)}" for var in definition.inputs)


def _return_annotation(definition: ModelDefinition) -> str:
    if not definition.outputs:
        return " -> None"
    if len(definition.outputs) == 1:
        return " -> torch.Tensor"
    return f" -> tuple[{', '.join('torch.Tensor' for _ in definition.outputs)}]"


def _generate_op_code(op: CanonicalOp) -> str:
    """Generate code for a single operation using its registered handler.

    :param op: Canonical operation
    :return: Generated code, one or more lines
    """
    handler = get_handler(op.kind)
    if handler is None:
        raise ValueError(f"No handler registered for {op.kind.value} (node {op.node_id})")
    return handler(op)


def generate_forward_method(definition: ModelDefinition) -> str:
    """Generate forward() method code.

    Generates code for each operation using registered handlers, then
    assembles the complete forward method. Outputs that are Python scalars
    at runtime are returned as 0-d tensors.

    :param definition: Model definition from the lowering pass
    :return: Generated forward method code
    """
    _ensure_handlers_registered()

    body_lines: list[str] = []
    for op in definition.ops:
        for line in _generate_op_code(op).split("\n"):
            body_lines.append(f"{INDENT}{INDENT}{line}")

    output_return = ", ".join(tensor_code(output) for output in definition.outputs) or "None"
    body = "\n".join(body_lines) if body_lines else f"{INDENT}{INDENT}pass"

    return FORWARD_TEMPLATE.format(
        indent=INDENT,
        input_args=_format_input_args(definition),
        return_annotation=_return_annotation(definition),
        body=body,
        output_return=output_return,
    )
