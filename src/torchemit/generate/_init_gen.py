"""Generate __init__ method from a model definition.

Creates constant buffer registration and layer instantiation code.
"""

__docformat__ = "restructuredtext"
__all__ = ["generate_init_method", "layer_type"]

from torchemit.generate._templates import INDENT, INIT_TEMPLATE
from torchemit.generate._utils import format_argument, format_array, format_dtype
from torchemit.lower import CanonicalOp, ModelDefinition, OperatorClass, OpKind
from torchemit.parse import ElementType

# Canonical kind to nn class; BatchNorm and global pooling depend on rank
_LAYER_TYPES = {
    OpKind.CONV1D: "nn.Conv1d",
    OpKind.CONV2D: "nn.Conv2d",
    OpKind.MAXPOOL2D: "nn.MaxPool2d",
    OpKind.AVGPOOL2D: "nn.AvgPool2d",
    OpKind.LINEAR: "nn.Linear",
}


def layer_type(op: CanonicalOp) -> str:
    """PyTorch class instantiated for a LAYER operation.

    :param op: Canonical layer operation
    :return: Class expression such as "nn.Conv2d"
    """
    if op.kind is OpKind.BATCHNORM:
        return f"nn.BatchNorm{op.attributes['spatial_rank']}d"
    if op.kind is OpKind.GLOBAL_AVGPOOL:
        return f"nn.AdaptiveAvgPool{op.attributes['spatial_rank']}d"
    return _LAYER_TYPES[op.kind]


def _register_buffers(lines: list[str], definition: ModelDefinition) -> None:
    """Register constant tensors as buffers.

    Small constants are written as literals and kept out of the state dict;
    larger ones are allocated empty and filled by ``load_state_dict``.

    :param lines: List to append registration lines to
    :param definition: Model definition
    """
    for const in definition.constants:
        dtype = format_dtype(const.descriptor.dtype)
        if const.inline and const.data.size > 0:
            value = format_array(const.data)
            lines.append(
                f"{INDENT}{INDENT}self.register_buffer("
                f'"{const.code_name}", torch.tensor({value}, dtype={dtype}), persistent=False)'
            )
        else:
            shape = format_argument(tuple(int(d) for d in const.data.shape))
            persistent = "" if not const.inline else ", persistent=False"
            lines.append(
                f"{INDENT}{INDENT}self.register_buffer("
                f'"{const.code_name}", torch.empty({shape}, dtype={dtype}){persistent})'
            )


def _format_layer_arguments(op: CanonicalOp) -> str:
    """Format layer constructor arguments, leaving out PyTorch defaults.

    :param op: Canonical layer operation
    :return: Formatted argument string
    """
    args = [
        f"{arg.pytorch_name}={format_argument(arg.value)}"
        for arg in op.arguments
        if not arg.is_default()
    ]
    if op.attributes.get("dtype") is ElementType.FLOAT64:
        args.append("dtype=torch.float64")
    return ", ".join(args)


def _instantiate_layers(lines: list[str], definition: ModelDefinition) -> None:
    for op in definition.ops:
        if op.operator_class is OperatorClass.LAYER:
            lines.append(
                f"{INDENT}{INDENT}self.{op.name} = {layer_type(op)}({_format_layer_arguments(op)})"
            )


def generate_init_method(definition: ModelDefinition) -> str:
    """Generate __init__ method code.

    Generates:
    1. Buffer registration for constant tensors
    2. Layer instantiation for LAYER operations

    :param definition: Model definition from the lowering pass
    :return: Complete __init__ method code
    """
    lines: list[str] = []
    _register_buffers(lines, definition)
    _instantiate_layers(lines, definition)
    body = "\n".join(lines) if lines else ""
    return INIT_TEMPLATE.format(indent=INDENT, body=body).rstrip("\n")
